"""
Storage module for TeamForge.

SQLAlchemy models and stores for teams, external group refs, tasks and
event sub-teams.
"""

from .database import Database
from .event_store import EventStore
from .models import (
    Attendee,
    EventInfo,
    EventTeamInfo,
    EventTeamMemberInfo,
    ExternalGroupRef,
    MemberInfo,
    RSVPStatus,
    TaskStatus,
    TeamInfo,
)
from .team_store import TeamStore

__all__ = [
    "Database",
    "TeamStore",
    "EventStore",
    "TeamInfo",
    "MemberInfo",
    "ExternalGroupRef",
    "EventInfo",
    "Attendee",
    "EventTeamInfo",
    "EventTeamMemberInfo",
    "RSVPStatus",
    "TaskStatus",
]
