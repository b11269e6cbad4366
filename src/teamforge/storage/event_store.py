"""
Event Store — events, RSVPs and event sub-teams.

The reconciliation engine reads rosters through this store on every pass so
membership decisions are always made against fresh state.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select

from ..errors import NotFoundError, ValidationError
from .database import Database
from .models import (
    RSVP,
    Attendee,
    Event,
    EventInfo,
    EventTeam,
    EventTeamInfo,
    EventTeamMember,
    EventTeamMemberInfo,
    RSVPStatus,
    User,
    generate_id,
)

logger = logging.getLogger(__name__)


def _event_info(event: Event) -> EventInfo:
    return EventInfo(
        id=event.id,
        title=event.title,
        members_per_team=event.members_per_team,
        workshop_id=event.workshop_id,
        teams_enabled=event.teams_enabled,
        allow_team_switching=event.allow_team_switching,
        auto_create_teams=event.auto_create_teams,
    )


def _event_team_info(team: EventTeam) -> EventTeamInfo:
    return EventTeamInfo(
        id=team.id,
        event_id=team.event_id,
        team_number=team.team_number,
        name=team.name,
        external_team_id=team.external_team_id,
        members=[EventTeamMemberInfo(user_id=m.user_id, email=m.email) for m in team.members],
    )


class EventStore:
    """Persistence for events, attendance and event sub-teams."""

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Events
    # =========================================================================

    def create_event(
        self,
        title: str,
        members_per_team: Optional[int] = None,
        workshop_id: Optional[str] = None,
        teams_enabled: bool = True,
        allow_team_switching: bool = False,
        auto_create_teams: bool = False,
        event_id: Optional[str] = None,
    ) -> EventInfo:
        if members_per_team is not None and members_per_team < 1:
            raise ValidationError("members_per_team must be at least 1")
        with self.db.session() as s:
            event = Event(
                id=event_id or generate_id("evt"),
                title=title,
                members_per_team=members_per_team,
                workshop_id=workshop_id,
                teams_enabled=teams_enabled,
                allow_team_switching=allow_team_switching,
                auto_create_teams=auto_create_teams,
            )
            s.add(event)
            s.flush()
            return _event_info(event)

    def get_event(self, event_id: str) -> Optional[EventInfo]:
        with self.db.session() as s:
            event = s.get(Event, event_id)
            return _event_info(event) if event else None

    def require_event(self, event_id: str) -> EventInfo:
        event = self.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")
        return event

    # =========================================================================
    # RSVPs
    # =========================================================================

    def set_rsvp(self, event_id: str, user_id: str, status: RSVPStatus) -> None:
        """Create or update the attendance record of a person."""
        with self.db.session() as s:
            if s.get(Event, event_id) is None:
                raise NotFoundError(f"Event {event_id} not found")
            rsvp = s.scalar(
                select(RSVP).where(RSVP.event_id == event_id, RSVP.user_id == user_id)
            )
            if rsvp is None:
                s.add(RSVP(event_id=event_id, user_id=user_id, status=RSVPStatus(status)))
            else:
                rsvp.status = RSVPStatus(status)

    def list_attendees(self, event_id: str, status: Optional[RSVPStatus] = None) -> List[Attendee]:
        """Attendees ordered by RSVP creation time, optionally filtered by status."""
        with self.db.session() as s:
            query = (
                select(RSVP, User)
                .join(User, RSVP.user_id == User.id)
                .where(RSVP.event_id == event_id)
                .order_by(RSVP.created_at, RSVP.id)
            )
            if status is not None:
                query = query.where(RSVP.status == RSVPStatus(status))
            return [
                Attendee(user_id=user.id, email=user.email, status=rsvp.status)
                for rsvp, user in s.execute(query).all()
            ]

    def confirmed_attendees(self, event_id: str) -> List[Attendee]:
        return self.list_attendees(event_id, RSVPStatus.CONFIRMED)

    def rsvp_statuses(self, event_id: str) -> Dict[str, RSVPStatus]:
        """user_id -> RSVP status for the event."""
        return {a.user_id: a.status for a in self.list_attendees(event_id)}

    # =========================================================================
    # Event teams
    # =========================================================================

    def list_event_teams(self, event_id: str) -> List[EventTeamInfo]:
        """Sub-teams in creation order, each with its current roster."""
        with self.db.session() as s:
            rows = s.scalars(
                select(EventTeam).where(EventTeam.event_id == event_id).order_by(EventTeam.id)
            ).all()
            return [_event_team_info(t) for t in rows]

    def next_team_number(self, event_id: str) -> int:
        with self.db.session() as s:
            current = s.scalar(
                select(func.max(EventTeam.team_number)).where(EventTeam.event_id == event_id)
            )
            return (current or 0) + 1

    def create_event_team(
        self,
        event_id: str,
        team_number: Optional[int] = None,
        name: Optional[str] = None,
        external_team_id: Optional[str] = None,
    ) -> EventTeamInfo:
        """
        Create a sub-team.

        Args:
            event_id: Owning event
            team_number: Explicit number (next available when omitted)
            name: Display name (defaults to "Team <number>")
            external_team_id: Workshop-side team id, if mirrored

        Returns:
            Snapshot of the created sub-team
        """
        if team_number is None:
            team_number = self.next_team_number(event_id)
        with self.db.session() as s:
            if s.get(Event, event_id) is None:
                raise NotFoundError(f"Event {event_id} not found")
            team = EventTeam(
                event_id=event_id,
                team_number=team_number,
                name=name or f"Team {team_number}",
                external_team_id=external_team_id,
            )
            s.add(team)
            s.flush()
            logger.info(f"Event team created: event={event_id} number={team_number} id={team.id}")
            return _event_team_info(team)

    def add_event_team_member(self, event_team_id: int, user_id: str, email: str) -> bool:
        """Add a person to a sub-team. Returns False when already a member."""
        with self.db.session() as s:
            if s.get(EventTeam, event_team_id) is None:
                raise NotFoundError(f"Event team {event_team_id} not found")
            existing = s.scalar(
                select(EventTeamMember).where(
                    EventTeamMember.event_team_id == event_team_id,
                    EventTeamMember.user_id == user_id,
                )
            )
            if existing is not None:
                return False
            s.add(EventTeamMember(event_team_id=event_team_id, user_id=user_id, email=email))
            return True

    def remove_event_team_member(self, event_team_id: int, user_id: str) -> bool:
        with self.db.session() as s:
            result = s.execute(
                delete(EventTeamMember).where(
                    EventTeamMember.event_team_id == event_team_id,
                    EventTeamMember.user_id == user_id,
                )
            )
            return result.rowcount > 0

    def delete_event_teams(self, event_id: str) -> int:
        """Delete every sub-team of an event with its members. Returns the count."""
        with self.db.session() as s:
            teams = s.scalars(select(EventTeam).where(EventTeam.event_id == event_id)).all()
            for team in teams:
                s.delete(team)
            count = len(teams)
        logger.info(f"Deleted {count} event teams for event {event_id}")
        return count

    def set_external_team_id(self, event_team_id: int, external_team_id: str) -> None:
        with self.db.session() as s:
            team = s.get(EventTeam, event_team_id)
            if team is None:
                raise NotFoundError(f"Event team {event_team_id} not found")
            team.external_team_id = external_team_id
