"""
External system adapter contracts.

Each external system sits behind an async abstract base class. Concrete REST
clients live outside this package; memory.py provides idempotent in-memory
implementations for local runs and tests.

Adapters raise AdapterError (or any exception) on failure. The orchestrator
converts failures into subtask results; adapters never see Tasks.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, List, Optional

from ..errors import AdapterTimeoutError
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


class DirectoryAdapter(ABC):
    """Identity/group directory."""

    name = "directory"

    @abstractmethod
    async def get_parent_group(self, name: str) -> Optional[ExternalGroup]:
        """Look up a parent group by name (None when absent)."""

    @abstractmethod
    async def create_group(self, name: str, description: Optional[str],
                           parent_id: Optional[str]) -> ExternalGroup:
        ...

    @abstractmethod
    async def add_users(self, group_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def remove_users(self, group_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def delete_group(self, group_id: str) -> None:
        ...


class WikiAdapter(ABC):
    """Team knowledge base."""

    name = "wiki"

    @abstractmethod
    async def create_team_index_page(self, kind: str, name: str) -> WikiPage:
        ...

    @abstractmethod
    async def delete_page(self, path: str) -> None:
        ...


class GroupwareAdapter(ABC):
    """Groupware service: group plus folder, calendar and board."""

    name = "groupware"

    @abstractmethod
    async def create_group(self, name: str) -> ExternalGroup:
        ...

    @abstractmethod
    async def add_users_to_group(self, group_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def remove_users_from_group(self, group_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def create_folder(self, name: str, group_id: str) -> ExternalResource:
        ...

    @abstractmethod
    async def create_calendar(self, name: str, group_id: str) -> ExternalResource:
        ...

    @abstractmethod
    async def grant_group_calendar_access(self, name: str, group_id: str, level: str) -> None:
        ...

    @abstractmethod
    async def create_board(self, name: str, group_id: str) -> ExternalResource:
        ...

    @abstractmethod
    async def delete_group(self, group_id: str) -> None:
        ...

    @abstractmethod
    async def delete_resource(self, kind: str, resource_id: str) -> None:
        """Delete a folder, calendar or board."""


class VcsAdapter(ABC):
    """Source-control service."""

    name = "vcs"

    @abstractmethod
    async def create_team(self, name: str, description: Optional[str]) -> ExternalGroup:
        ...

    @abstractmethod
    async def create_repository(self, name: str, description: Optional[str]) -> ExternalResource:
        ...

    @abstractmethod
    async def add_team_to_repository(self, team_id: str, repository_id: str) -> None:
        ...

    @abstractmethod
    async def add_users_to_team(self, team_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def remove_users_from_team(self, team_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def delete_team(self, team_id: str) -> None:
        ...

    @abstractmethod
    async def delete_repository(self, repository_id: str) -> None:
        ...


class ChatAdapter(ABC):
    """Chat service. Called only from the rate-limited chat batch job."""

    name = "chat"

    @abstractmethod
    async def create_role(self, name: str) -> ExternalResource:
        ...

    @abstractmethod
    async def create_channel(self, name: str, category: Optional[str]) -> ExternalResource:
        ...

    @abstractmethod
    async def set_channel_permissions(self, channel_id: str, role_id: str) -> None:
        ...

    @abstractmethod
    async def assign_role_to_users(self, role_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def remove_role_from_users(self, role_id: str, user_ids: List[str]) -> None:
        ...

    @abstractmethod
    async def delete_role(self, role_id: str) -> None:
        ...

    @abstractmethod
    async def delete_channel(self, channel_id: str) -> None:
        ...


class ChatDispatcher(ABC):
    """Queues chat batches; the orchestrator only ever gets an AcceptedJob back."""

    @abstractmethod
    async def submit(self, team_id: str, operations: List[ChatOperation]) -> AcceptedJob:
        ...


class WorkshopAdapter(ABC):
    """Workshop/lab-assignment service holding the external copy of event sub-teams."""

    name = "workshop"

    @abstractmethod
    async def list_workshop_teams(self, workshop_id: str) -> List[WorkshopTeam]:
        ...

    @abstractmethod
    async def add_team_member_by_email(self, team_id: str, email: str) -> None:
        """Add a member; unregistered emails become pending assignments."""

    @abstractmethod
    async def list_team_users(self, team_id: str) -> List[WorkshopUser]:
        ...

    @abstractmethod
    async def remove_team_user(self, team_id: str, user_id: str) -> None:
        ...

    @abstractmethod
    async def list_pending_assignments(self, team_id: str) -> List[PendingAssignment]:
        ...

    @abstractmethod
    async def remove_pending_assignment(self, email: str, team_id: str) -> None:
        ...


@dataclass
class AdapterSet:
    """
    Adapters injected into the orchestrator, engine and chat batch runner.

    chat is only needed by the worker running chat batches; workshop only by
    the reconciliation engine.
    """
    directory: DirectoryAdapter
    wiki: WikiAdapter
    groupware: GroupwareAdapter
    vcs: VcsAdapter
    chat_dispatcher: ChatDispatcher
    chat: Optional[ChatAdapter] = None
    workshop: Optional[WorkshopAdapter] = None


async def bounded_call(integration: str, awaitable: Awaitable[Any], timeout: float) -> Any:
    """Await an adapter call; exceeding the timeout raises AdapterTimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise AdapterTimeoutError(integration, timeout) from e
