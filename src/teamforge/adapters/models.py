"""
Pydantic models exchanged with external system adapters.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ExternalGroup(BaseModel):
    """A group/team object on an external system."""
    id: str = Field(..., description="External identifier")
    name: str = Field(..., description="External display name")


class ExternalResource(BaseModel):
    """A sub-resource (folder, calendar, board, repository, role, channel)."""
    id: str
    name: str
    kind: str = Field(..., description="folder, calendar, board, repository, role, channel")


class WikiPage(BaseModel):
    """Team index page on the wiki."""
    id: str
    path: str
    title: str


class WorkshopTeam(BaseModel):
    """Team on the workshop/lab-assignment service."""
    id: str
    name: str
    team_number: Optional[int] = None


class WorkshopUser(BaseModel):
    """Registered member of a workshop team."""
    id: str
    email: str


class PendingAssignment(BaseModel):
    """Invitation for an email that has not registered on the workshop yet."""
    id: str
    email: str


class ChatOperation(BaseModel):
    """
    One step of a chat batch.

    op values: create_role, create_channel, set_channel_permissions,
    assign_role, remove_role, delete_role, delete_channel.
    """
    op: str
    params: Dict[str, Any] = Field(default_factory=dict)


class AcceptedJob(BaseModel):
    """Acknowledgement that a chat batch was queued."""
    job_id: str
    operations: List[str] = Field(default_factory=list)
