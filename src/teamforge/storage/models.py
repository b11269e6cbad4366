"""
Storage Models — SQLAlchemy models for TeamForge persistence.

This module provides:
- Team, TeamMember, User — locally owned team records
- ExternalGroupRefModel — per (team, system) external identifier
- TaskModel, SubtaskModel — long-running operation tracking
- Event, RSVP, EventTeam, EventTeamMember — event sub-teams

Invariants enforced by the schema:
- A person appears at most once per team (team_members unique constraint)
- At most one ref per (team, system)
- A person appears at most once per event sub-team
"""

import enum
import uuid
from datetime import datetime, timezone

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time."""
    return datetime.now(timezone.utc)


def generate_id(prefix: str) -> str:
    """
    Generate a prefixed unique ID.

    Example: task_a1b2c3d4-e5f6-7890-abcd-ef1234567890
    """
    return f"{prefix}_{uuid.uuid4()}"


# =============================================================================
# Enums
# =============================================================================

class TaskStatus(str, enum.Enum):
    """Status of a task or subtask."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class RSVPStatus(str, enum.Enum):
    """Attendance status of a person for an event."""
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    PENDING = "pending"
    WAITLISTED = "waitlisted"


# =============================================================================
# Teams
# =============================================================================

class User(Base):
    """A person known to the application."""
    __tablename__ = "users"

    id = Column(String(100), primary_key=True, default=lambda: generate_id("usr"))
    email = Column(String(255), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Team(Base):
    """Logical team mirrored across external systems."""
    __tablename__ = "teams"

    id = Column(String(100), primary_key=True, default=lambda: generate_id("team"))
    name = Column(String(100), nullable=False)
    kind = Column(String(50), nullable=False, default="development")
    subtype = Column(String(50), nullable=True)
    description = Column(Text, nullable=True)
    parent_key = Column(String(100), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    members = relationship(
        "TeamMember", back_populates="team", cascade="all, delete-orphan"
    )
    refs = relationship(
        "ExternalGroupRefModel", back_populates="team", cascade="all, delete-orphan"
    )


class TeamMember(Base):
    """(team, person, role) membership row."""
    __tablename__ = "team_members"
    __table_args__ = (UniqueConstraint("team_id", "user_id", name="uq_team_member"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(100), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(100), ForeignKey("users.id"), nullable=False)
    role = Column(String(50), nullable=False, default="member")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    team = relationship("Team", back_populates="members")
    user = relationship("User")


class ExternalGroupRefModel(Base):
    """
    Mapping from a local team to its identifier on one external system.

    Absence of a row means "not yet provisioned on that system".
    member_ids holds the members last pushed to the system.
    """
    __tablename__ = "external_group_refs"
    __table_args__ = (UniqueConstraint("team_id", "system", name="uq_team_system"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(String(100), ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True)
    system = Column(String(50), nullable=False)
    external_id = Column(String(255), nullable=False)
    data = Column(JSON, nullable=True)
    member_ids = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    team = relationship("Team", back_populates="refs")


# =============================================================================
# Tasks
# =============================================================================

class TaskModel(Base):
    """One row per lifecycle intent execution."""
    __tablename__ = "tasks"

    id = Column(String(100), primary_key=True, default=lambda: generate_id("task"))
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    intent = Column(String(20), nullable=True)
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(100), nullable=False, index=True)
    status = Column(Enum(TaskStatus), nullable=False, default=TaskStatus.PENDING)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    warnings = Column(JSON, nullable=False, default=list)
    errors = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    subtasks = relationship(
        "SubtaskModel",
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="SubtaskModel.order_index",
    )


class SubtaskModel(Base):
    """One step of a task; the set is fixed at task creation."""
    __tablename__ = "subtasks"
    __table_args__ = (UniqueConstraint("task_id", "order_index", name="uq_subtask_index"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(100), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    order_index = Column(Integer, nullable=False)
    status = Column(Enum(TaskStatus), nullable=False, default=TaskStatus.PENDING)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    task = relationship("TaskModel", back_populates="subtasks")


# =============================================================================
# Events
# =============================================================================

class Event(Base):
    """An event whose attendees are grouped into sub-teams."""
    __tablename__ = "events"

    id = Column(String(100), primary_key=True, default=lambda: generate_id("evt"))
    title = Column(String(200), nullable=False)
    members_per_team = Column(Integer, nullable=True)
    workshop_id = Column(String(255), nullable=True)
    teams_enabled = Column(Boolean, nullable=False, default=True)
    allow_team_switching = Column(Boolean, nullable=False, default=False)
    auto_create_teams = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    rsvps = relationship("RSVP", back_populates="event", cascade="all, delete-orphan")
    teams = relationship(
        "EventTeam",
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="EventTeam.id",
    )


class RSVP(Base):
    """Attendance record (source of truth for who should be on a sub-team)."""
    __tablename__ = "rsvps"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_rsvp"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(100), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(100), ForeignKey("users.id"), nullable=False)
    status = Column(Enum(RSVPStatus), nullable=False, default=RSVPStatus.PENDING)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    event = relationship("Event", back_populates="rsvps")
    user = relationship("User")


class EventTeam(Base):
    """Sub-team scoped to a single event, optionally mirrored externally."""
    __tablename__ = "event_teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(100), ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    team_number = Column(Integer, nullable=False)
    name = Column(String(200), nullable=True)
    external_team_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    event = relationship("Event", back_populates="teams")
    members = relationship(
        "EventTeamMember",
        back_populates="event_team",
        cascade="all, delete-orphan",
        order_by="EventTeamMember.id",
    )


class EventTeamMember(Base):
    """Membership of a person in an event sub-team."""
    __tablename__ = "event_team_members"
    __table_args__ = (UniqueConstraint("event_team_id", "user_id", name="uq_event_team_member"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_team_id = Column(Integer, ForeignKey("event_teams.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(100), ForeignKey("users.id"), nullable=False)
    email = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    event_team = relationship("EventTeam", back_populates="members")


# =============================================================================
# Pydantic Models (read views handed to the orchestrator and engine)
# =============================================================================

class TeamInfo(BaseModel):
    """Snapshot of a team row."""
    id: str
    name: str
    kind: str
    subtype: Optional[str] = None
    description: Optional[str] = None
    parent_key: Optional[str] = None


class MemberInfo(BaseModel):
    """Team member resolved to the person's identity."""
    user_id: str
    email: str
    display_name: Optional[str] = None
    role: str = "member"


class ExternalGroupRef(BaseModel):
    """Stored identifier of a team on one external system."""
    team_id: str
    system: str
    external_id: str
    data: Dict[str, Any] = Field(default_factory=dict)
    member_ids: List[str] = Field(default_factory=list)


class EventInfo(BaseModel):
    """Snapshot of an event row."""
    id: str
    title: str
    members_per_team: Optional[int] = None
    workshop_id: Optional[str] = None
    teams_enabled: bool = True
    allow_team_switching: bool = False
    auto_create_teams: bool = False


class Attendee(BaseModel):
    """A person with an RSVP for an event."""
    user_id: str
    email: str
    status: RSVPStatus


class EventTeamMemberInfo(BaseModel):
    user_id: str
    email: str


class EventTeamInfo(BaseModel):
    """Sub-team with its current roster, freshly read."""
    id: int
    event_id: str
    team_number: int
    name: Optional[str] = None
    external_team_id: Optional[str] = None
    members: List[EventTeamMemberInfo] = Field(default_factory=list)

    def has_member(self, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.members)
