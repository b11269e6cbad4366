"""
In-memory adapter implementations.

Creation calls are idempotent by name: calling create_group("x") twice returns
the same object, so re-running a provisioning job never duplicates external
state. Every call is appended to ``calls`` so tests can assert on traffic.
"""

import itertools
import logging
from typing import Dict, List, Optional, Set, Tuple

from .base import (
    ChatAdapter,
    ChatDispatcher,
    DirectoryAdapter,
    GroupwareAdapter,
    VcsAdapter,
    WikiAdapter,
    WorkshopAdapter,
)
from .models import (
    AcceptedJob,
    ChatOperation,
    ExternalGroup,
    ExternalResource,
    PendingAssignment,
    WikiPage,
    WorkshopTeam,
    WorkshopUser,
)

logger = logging.getLogger(__name__)


class _Recorder:
    """Shared id generation and call log."""

    prefix = "mem"

    def __init__(self):
        self._ids = itertools.count(1)
        self.calls: List[Tuple[str, tuple]] = []

    def _record(self, method: str, *args) -> None:
        self.calls.append((method, args))

    def _next_id(self, kind: str) -> str:
        return f"{self.prefix}-{kind}-{next(self._ids)}"

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)


class InMemoryDirectory(_Recorder, DirectoryAdapter):
    prefix = "dir"

    def __init__(self, parent_groups: Optional[List[str]] = None):
        super().__init__()
        self.groups: Dict[str, ExternalGroup] = {}
        self.members: Dict[str, Set[str]] = {}
        self.parents: Dict[str, Optional[str]] = {}
        for name in parent_groups or []:
            group = ExternalGroup(id=self._next_id("parent"), name=name)
            self.groups[group.id] = group
            self.members[group.id] = set()

    def _by_name(self, name: str) -> Optional[ExternalGroup]:
        for group in self.groups.values():
            if group.name == name:
                return group
        return None

    async def get_parent_group(self, name: str) -> Optional[ExternalGroup]:
        self._record("get_parent_group", name)
        return self._by_name(name)

    async def create_group(self, name, description, parent_id) -> ExternalGroup:
        self._record("create_group", name, description, parent_id)
        existing = self._by_name(name)
        if existing is not None:
            return existing
        group = ExternalGroup(id=self._next_id("group"), name=name)
        self.groups[group.id] = group
        self.members[group.id] = set()
        self.parents[group.id] = parent_id
        return group

    async def add_users(self, group_id, user_ids) -> None:
        self._record("add_users", group_id, tuple(user_ids))
        self.members.setdefault(group_id, set()).update(user_ids)

    async def remove_users(self, group_id, user_ids) -> None:
        self._record("remove_users", group_id, tuple(user_ids))
        self.members.setdefault(group_id, set()).difference_update(user_ids)

    async def delete_group(self, group_id) -> None:
        self._record("delete_group", group_id)
        self.groups.pop(group_id, None)
        self.members.pop(group_id, None)


class InMemoryWiki(_Recorder, WikiAdapter):
    prefix = "wiki"

    def __init__(self):
        super().__init__()
        self.pages: Dict[str, WikiPage] = {}

    async def create_team_index_page(self, kind, name) -> WikiPage:
        self._record("create_team_index_page", kind, name)
        path = f"teams/{kind}/{name}".lower().replace(" ", "-")
        if path not in self.pages:
            self.pages[path] = WikiPage(id=self._next_id("page"), path=path, title=f"{name} Team")
        return self.pages[path]

    async def delete_page(self, path) -> None:
        self._record("delete_page", path)
        self.pages.pop(path, None)


class InMemoryGroupware(_Recorder, GroupwareAdapter):
    prefix = "gw"

    def __init__(self):
        super().__init__()
        self.groups: Dict[str, ExternalGroup] = {}
        self.members: Dict[str, Set[str]] = {}
        self.resources: Dict[str, ExternalResource] = {}
        self.calendar_grants: Dict[str, str] = {}

    async def create_group(self, name) -> ExternalGroup:
        self._record("create_group", name)
        for group in self.groups.values():
            if group.name == name:
                return group
        group = ExternalGroup(id=self._next_id("group"), name=name)
        self.groups[group.id] = group
        self.members[group.id] = set()
        return group

    async def add_users_to_group(self, group_id, user_ids) -> None:
        self._record("add_users_to_group", group_id, tuple(user_ids))
        self.members.setdefault(group_id, set()).update(user_ids)

    async def remove_users_from_group(self, group_id, user_ids) -> None:
        self._record("remove_users_from_group", group_id, tuple(user_ids))
        self.members.setdefault(group_id, set()).difference_update(user_ids)

    def _resource(self, kind: str, name: str) -> ExternalResource:
        for res in self.resources.values():
            if res.kind == kind and res.name == name:
                return res
        res = ExternalResource(id=self._next_id(kind), name=name, kind=kind)
        self.resources[res.id] = res
        return res

    async def create_folder(self, name, group_id) -> ExternalResource:
        self._record("create_folder", name, group_id)
        return self._resource("folder", name)

    async def create_calendar(self, name, group_id) -> ExternalResource:
        self._record("create_calendar", name, group_id)
        return self._resource("calendar", name)

    async def grant_group_calendar_access(self, name, group_id, level) -> None:
        self._record("grant_group_calendar_access", name, group_id, level)
        self.calendar_grants[name] = level

    async def create_board(self, name, group_id) -> ExternalResource:
        self._record("create_board", name, group_id)
        return self._resource("board", name)

    async def delete_group(self, group_id) -> None:
        self._record("delete_group", group_id)
        self.groups.pop(group_id, None)
        self.members.pop(group_id, None)

    async def delete_resource(self, kind, resource_id) -> None:
        self._record("delete_resource", kind, resource_id)
        self.resources.pop(resource_id, None)


class InMemoryVcs(_Recorder, VcsAdapter):
    prefix = "vcs"

    def __init__(self):
        super().__init__()
        self.teams: Dict[str, ExternalGroup] = {}
        self.members: Dict[str, Set[str]] = {}
        self.repositories: Dict[str, ExternalResource] = {}
        self.repo_teams: Set[Tuple[str, str]] = set()

    async def create_team(self, name, description) -> ExternalGroup:
        self._record("create_team", name, description)
        for team in self.teams.values():
            if team.name == name:
                return team
        team = ExternalGroup(id=self._next_id("team"), name=name)
        self.teams[team.id] = team
        self.members[team.id] = set()
        return team

    async def create_repository(self, name, description) -> ExternalResource:
        self._record("create_repository", name, description)
        for repo in self.repositories.values():
            if repo.name == name:
                return repo
        repo = ExternalResource(id=self._next_id("repo"), name=name, kind="repository")
        self.repositories[repo.id] = repo
        return repo

    async def add_team_to_repository(self, team_id, repository_id) -> None:
        self._record("add_team_to_repository", team_id, repository_id)
        self.repo_teams.add((team_id, repository_id))

    async def add_users_to_team(self, team_id, user_ids) -> None:
        self._record("add_users_to_team", team_id, tuple(user_ids))
        self.members.setdefault(team_id, set()).update(user_ids)

    async def remove_users_from_team(self, team_id, user_ids) -> None:
        self._record("remove_users_from_team", team_id, tuple(user_ids))
        self.members.setdefault(team_id, set()).difference_update(user_ids)

    async def delete_team(self, team_id) -> None:
        self._record("delete_team", team_id)
        self.teams.pop(team_id, None)
        self.members.pop(team_id, None)

    async def delete_repository(self, repository_id) -> None:
        self._record("delete_repository", repository_id)
        self.repositories.pop(repository_id, None)


class InMemoryChat(_Recorder, ChatAdapter):
    prefix = "chat"

    def __init__(self):
        super().__init__()
        self.roles: Dict[str, ExternalResource] = {}
        self.channels: Dict[str, ExternalResource] = {}
        self.permissions: Set[Tuple[str, str]] = set()
        self.role_members: Dict[str, Set[str]] = {}

    async def create_role(self, name) -> ExternalResource:
        self._record("create_role", name)
        for role in self.roles.values():
            if role.name == name:
                return role
        role = ExternalResource(id=self._next_id("role"), name=name, kind="role")
        self.roles[role.id] = role
        self.role_members[role.id] = set()
        return role

    async def create_channel(self, name, category) -> ExternalResource:
        self._record("create_channel", name, category)
        for channel in self.channels.values():
            if channel.name == name:
                return channel
        channel = ExternalResource(id=self._next_id("channel"), name=name, kind="channel")
        self.channels[channel.id] = channel
        return channel

    async def set_channel_permissions(self, channel_id, role_id) -> None:
        self._record("set_channel_permissions", channel_id, role_id)
        self.permissions.add((channel_id, role_id))

    async def assign_role_to_users(self, role_id, user_ids) -> None:
        self._record("assign_role_to_users", role_id, tuple(user_ids))
        self.role_members.setdefault(role_id, set()).update(user_ids)

    async def remove_role_from_users(self, role_id, user_ids) -> None:
        self._record("remove_role_from_users", role_id, tuple(user_ids))
        self.role_members.setdefault(role_id, set()).difference_update(user_ids)

    async def delete_role(self, role_id) -> None:
        self._record("delete_role", role_id)
        self.roles.pop(role_id, None)
        self.role_members.pop(role_id, None)

    async def delete_channel(self, channel_id) -> None:
        self._record("delete_channel", channel_id)
        self.channels.pop(channel_id, None)


class InMemoryChatDispatcher(ChatDispatcher):
    """Keeps submitted batches in a list instead of queueing them."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.submitted: List[Tuple[str, str, List[ChatOperation]]] = []

    async def submit(self, team_id, operations) -> AcceptedJob:
        job_id = f"chat-job-{next(self._ids)}"
        self.submitted.append((job_id, team_id, list(operations)))
        logger.info(f"Chat batch accepted: {job_id} team={team_id} ops={len(operations)}")
        return AcceptedJob(job_id=job_id, operations=[op.op for op in operations])


class InMemoryWorkshop(_Recorder, WorkshopAdapter):
    """
    Workshop service double.

    Emails registered via register_user become real team members; any other
    email becomes a pending assignment, like an invitation to a new account.
    """

    prefix = "ws"

    def __init__(self):
        super().__init__()
        self.teams: Dict[str, WorkshopTeam] = {}
        self.workshop_teams: Dict[str, List[str]] = {}
        self.users: Dict[str, WorkshopUser] = {}
        self.team_users: Dict[str, List[str]] = {}
        self.pending: Dict[str, List[PendingAssignment]] = {}

    def register_user(self, email: str) -> WorkshopUser:
        key = email.lower()
        if key not in self.users:
            self.users[key] = WorkshopUser(id=self._next_id("user"), email=email)
        return self.users[key]

    def add_team(self, workshop_id: str, name: str, team_number: Optional[int] = None) -> WorkshopTeam:
        team = WorkshopTeam(id=self._next_id("team"), name=name, team_number=team_number)
        self.teams[team.id] = team
        self.workshop_teams.setdefault(workshop_id, []).append(team.id)
        self.team_users[team.id] = []
        self.pending[team.id] = []
        return team

    def emails_in(self, team_id: str) -> Set[str]:
        """Registered member emails of a team (lowercased)."""
        by_id = {u.id: u for u in self.users.values()}
        return {by_id[uid].email.lower() for uid in self.team_users.get(team_id, [])}

    def pending_emails(self, team_id: str) -> Set[str]:
        return {p.email.lower() for p in self.pending.get(team_id, [])}

    async def list_workshop_teams(self, workshop_id) -> List[WorkshopTeam]:
        self._record("list_workshop_teams", workshop_id)
        return [self.teams[tid] for tid in self.workshop_teams.get(workshop_id, [])]

    async def add_team_member_by_email(self, team_id, email) -> None:
        self._record("add_team_member_by_email", team_id, email)
        if team_id not in self.teams:
            raise KeyError(f"unknown workshop team {team_id}")
        user = self.users.get(email.lower())
        if user is not None:
            if user.id not in self.team_users[team_id]:
                self.team_users[team_id].append(user.id)
            return
        if email.lower() not in self.pending_emails(team_id):
            self.pending[team_id].append(
                PendingAssignment(id=self._next_id("pending"), email=email)
            )

    async def list_team_users(self, team_id) -> List[WorkshopUser]:
        self._record("list_team_users", team_id)
        by_id = {u.id: u for u in self.users.values()}
        return [by_id[uid] for uid in self.team_users.get(team_id, [])]

    async def remove_team_user(self, team_id, user_id) -> None:
        self._record("remove_team_user", team_id, user_id)
        members = self.team_users.get(team_id, [])
        if user_id in members:
            members.remove(user_id)

    async def list_pending_assignments(self, team_id) -> List[PendingAssignment]:
        self._record("list_pending_assignments", team_id)
        return list(self.pending.get(team_id, []))

    async def remove_pending_assignment(self, email, team_id) -> None:
        self._record("remove_pending_assignment", email, team_id)
        self.pending[team_id] = [
            p for p in self.pending.get(team_id, []) if p.email.lower() != email.lower()
        ]
