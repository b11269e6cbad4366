"""
Pydantic models for membership reconciliation.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class SyncMode(str, Enum):
    """Which reconciliation passes run in pass 3."""
    AUTO_ASSIGN = "auto_assign"
    REMOVE_DECLINED = "remove_declined"
    SYNC_ALL = "sync_all"

    @property
    def assigns(self) -> bool:
        return self in (SyncMode.AUTO_ASSIGN, SyncMode.SYNC_ALL)

    @property
    def removes(self) -> bool:
        return self in (SyncMode.REMOVE_DECLINED, SyncMode.SYNC_ALL)


class UnassignedAttendee(BaseModel):
    """Confirmed attendee left without a sub-team."""
    user_id: str
    email: str
    reason: str = Field(default="no_capacity")


class SyncResult(BaseModel):
    """Counters of one sync run."""
    event_id: str
    mode: SyncMode
    capacity: int
    users_assigned: int = 0
    users_removed: int = 0
    teams_updated: int = Field(default=0, description="Workshop teams mirrored or relinked locally")
    teams_created: int = Field(default=0, description="Sub-teams auto-created for confirmed attendees")
    external_syncs: int = 0
    external_failures: int = 0
    unassigned: List[UnassignedAttendee] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class SwitchResult(BaseModel):
    """Outcome of moving one attendee between sub-teams."""
    event_id: str
    user_id: str
    from_team_id: int
    to_team_id: int
    external_syncs: int = 0
    external_failures: int = 0
    warnings: List[str] = Field(default_factory=list)
