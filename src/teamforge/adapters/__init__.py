"""
External system adapters for TeamForge.

Abstract async contracts per system plus idempotent in-memory implementations.
"""

from .base import (
    AdapterSet,
    ChatAdapter,
    ChatDispatcher,
    DirectoryAdapter,
    GroupwareAdapter,
    VcsAdapter,
    WikiAdapter,
    WorkshopAdapter,
)
from .memory import (
    InMemoryChat,
    InMemoryChatDispatcher,
    InMemoryDirectory,
    InMemoryGroupware,
    InMemoryVcs,
    InMemoryWiki,
    InMemoryWorkshop,
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


def in_memory_adapters(parent_groups=("competition-team", "development-team")) -> AdapterSet:
    """AdapterSet backed entirely by in-memory implementations."""
    return AdapterSet(
        directory=InMemoryDirectory(parent_groups=list(parent_groups)),
        wiki=InMemoryWiki(),
        groupware=InMemoryGroupware(),
        vcs=InMemoryVcs(),
        chat_dispatcher=InMemoryChatDispatcher(),
        chat=InMemoryChat(),
        workshop=InMemoryWorkshop(),
    )


__all__ = [
    "AdapterSet",
    "DirectoryAdapter",
    "WikiAdapter",
    "GroupwareAdapter",
    "VcsAdapter",
    "ChatAdapter",
    "ChatDispatcher",
    "WorkshopAdapter",
    "InMemoryDirectory",
    "InMemoryWiki",
    "InMemoryGroupware",
    "InMemoryVcs",
    "InMemoryChat",
    "InMemoryChatDispatcher",
    "InMemoryWorkshop",
    "in_memory_adapters",
    "AcceptedJob",
    "ChatOperation",
    "ExternalGroup",
    "ExternalResource",
    "PendingAssignment",
    "WikiPage",
    "WorkshopTeam",
    "WorkshopUser",
]
