"""
Team Store — local teams, members, users and external group refs.

Every method opens its own short session; nothing here is held across an
adapter call. Read methods return pydantic snapshots, never ORM objects.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..errors import NotFoundError, ValidationError
from .database import Database
from .models import (
    ExternalGroupRef,
    ExternalGroupRefModel,
    MemberInfo,
    Team,
    TeamInfo,
    TeamMember,
    User,
    generate_id,
)

logger = logging.getLogger(__name__)


def _team_info(team: Team) -> TeamInfo:
    return TeamInfo(
        id=team.id,
        name=team.name,
        kind=team.kind,
        subtype=team.subtype,
        description=team.description,
        parent_key=team.parent_key,
    )


def _ref_info(ref: ExternalGroupRefModel) -> ExternalGroupRef:
    return ExternalGroupRef(
        team_id=ref.team_id,
        system=ref.system,
        external_id=ref.external_id,
        data=dict(ref.data or {}),
        member_ids=list(ref.member_ids or []),
    )


class TeamStore:
    """
    Persistence for teams and their external identifiers.

    Usage:
        store = TeamStore(db)
        team = store.create_team("alpha", kind="competition", subtype="red")
        store.add_member(team.id, user.id)
        store.upsert_ref(team.id, "directory", "grp-1", member_ids=[user.id])
    """

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Users
    # =========================================================================

    def create_user(self, email: str, display_name: Optional[str] = None,
                    user_id: Optional[str] = None) -> str:
        """Create a user, or return the id of the existing user with this email."""
        email = email.strip()
        if not email:
            raise ValidationError("email must not be empty")
        with self.db.session() as s:
            existing = s.scalar(select(User).where(User.email == email))
            if existing is not None:
                return existing.id
            user = User(id=user_id or generate_id("usr"), email=email, display_name=display_name)
            s.add(user)
            return user.id

    # =========================================================================
    # Teams
    # =========================================================================

    def create_team(
        self,
        name: str,
        kind: str = "development",
        subtype: Optional[str] = None,
        description: Optional[str] = None,
        parent_key: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> TeamInfo:
        """
        Create a local team row.

        Args:
            name: Team name (non-empty)
            kind: Team kind (competition, development)
            subtype: Optional subtype (blue, red, ctf)
            description: Free text
            parent_key: Optional parent grouping key
            team_id: Explicit id (generated when omitted)

        Returns:
            Snapshot of the created team
        """
        if not name or not name.strip():
            raise ValidationError("team name must not be empty")
        with self.db.session() as s:
            team = Team(
                id=team_id or generate_id("team"),
                name=name.strip(),
                kind=kind,
                subtype=subtype,
                description=description,
                parent_key=parent_key,
            )
            s.add(team)
            s.flush()
            logger.info(f"Team created: {team.name} ({team.id})")
            return _team_info(team)

    def get_team(self, team_id: str) -> Optional[TeamInfo]:
        with self.db.session() as s:
            team = s.get(Team, team_id)
            return _team_info(team) if team else None

    def require_team(self, team_id: str) -> TeamInfo:
        """Like get_team, but unknown ids raise NotFoundError."""
        team = self.get_team(team_id)
        if team is None:
            raise NotFoundError(f"Team {team_id} not found")
        return team

    def update_team(self, team_id: str, **fields: Any) -> TeamInfo:
        """Apply non-None field changes (name, kind, subtype, description)."""
        allowed = {"name", "kind", "subtype", "description", "parent_key"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValidationError(f"Unknown team fields: {sorted(unknown)}")
        with self.db.session() as s:
            team = s.get(Team, team_id)
            if team is None:
                raise NotFoundError(f"Team {team_id} not found")
            for key, value in fields.items():
                if value is not None:
                    setattr(team, key, value)
            s.flush()
            return _team_info(team)

    def delete_team(self, team_id: str) -> bool:
        """Delete a team with its members and refs. Returns False if absent."""
        with self.db.session() as s:
            team = s.get(Team, team_id)
            if team is None:
                return False
            s.delete(team)
        logger.info(f"Team deleted: {team_id}")
        return True

    # =========================================================================
    # Members
    # =========================================================================

    def add_member(self, team_id: str, user_id: str, role: str = "member") -> bool:
        """Add a member. Returns False when the person is already on the team."""
        with self.db.session() as s:
            if s.get(Team, team_id) is None:
                raise NotFoundError(f"Team {team_id} not found")
            if s.get(User, user_id) is None:
                raise NotFoundError(f"User {user_id} not found")
            existing = s.scalar(
                select(TeamMember).where(
                    TeamMember.team_id == team_id, TeamMember.user_id == user_id
                )
            )
            if existing is not None:
                return False
            s.add(TeamMember(team_id=team_id, user_id=user_id, role=role))
            return True

    def remove_member(self, team_id: str, user_id: str) -> bool:
        with self.db.session() as s:
            member = s.scalar(
                select(TeamMember).where(
                    TeamMember.team_id == team_id, TeamMember.user_id == user_id
                )
            )
            if member is None:
                return False
            s.delete(member)
            return True

    def list_members(self, team_id: str) -> List[MemberInfo]:
        """Current members, in the order they joined."""
        with self.db.session() as s:
            rows = s.execute(
                select(TeamMember, User)
                .join(User, TeamMember.user_id == User.id)
                .where(TeamMember.team_id == team_id)
                .order_by(TeamMember.id)
            ).all()
            return [
                MemberInfo(
                    user_id=user.id,
                    email=user.email,
                    display_name=user.display_name,
                    role=member.role,
                )
                for member, user in rows
            ]

    # =========================================================================
    # External group refs
    # =========================================================================

    def get_ref(self, team_id: str, system: str) -> Optional[ExternalGroupRef]:
        with self.db.session() as s:
            ref = self._find_ref(s, team_id, system)
            return _ref_info(ref) if ref else None

    def list_refs(self, team_id: str) -> Dict[str, ExternalGroupRef]:
        """All refs of a team keyed by system."""
        with self.db.session() as s:
            rows = s.scalars(
                select(ExternalGroupRefModel).where(ExternalGroupRefModel.team_id == team_id)
            ).all()
            return {r.system: _ref_info(r) for r in rows}

    def upsert_ref(
        self,
        team_id: str,
        system: str,
        external_id: str,
        data: Optional[Dict[str, Any]] = None,
        member_ids: Optional[List[str]] = None,
    ) -> ExternalGroupRef:
        """
        Insert or update the ref for (team, system).

        data and member_ids are replaced only when given, so a retry that
        only knows the identifier does not erase the recorded members.
        """
        with self.db.session() as s:
            ref = self._find_ref(s, team_id, system)
            if ref is None:
                ref = ExternalGroupRefModel(
                    team_id=team_id,
                    system=system,
                    external_id=external_id,
                    data=data or {},
                    member_ids=list(member_ids or []),
                )
                s.add(ref)
            else:
                ref.external_id = external_id
                if data is not None:
                    ref.data = dict(data)
                if member_ids is not None:
                    ref.member_ids = list(member_ids)
            s.flush()
            logger.debug(f"Ref upserted: team={team_id} system={system} id={external_id}")
            return _ref_info(ref)

    def set_ref_members(self, team_id: str, system: str, member_ids: List[str]) -> None:
        with self.db.session() as s:
            ref = self._find_ref(s, team_id, system)
            if ref is None:
                raise NotFoundError(f"No {system} ref for team {team_id}")
            ref.member_ids = list(member_ids)

    def delete_ref(self, team_id: str, system: str) -> bool:
        with self.db.session() as s:
            ref = self._find_ref(s, team_id, system)
            if ref is None:
                return False
            s.delete(ref)
            return True

    @staticmethod
    def _find_ref(s, team_id: str, system: str) -> Optional[ExternalGroupRefModel]:
        return s.scalar(
            select(ExternalGroupRefModel).where(
                ExternalGroupRefModel.team_id == team_id,
                ExternalGroupRefModel.system == system,
            )
        )
