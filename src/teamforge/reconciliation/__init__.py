"""
Membership reconciliation for event sub-teams.
"""

from .engine import ReconciliationEngine
from .models import SwitchResult, SyncMode, SyncResult, UnassignedAttendee

__all__ = [
    "ReconciliationEngine",
    "SyncMode",
    "SyncResult",
    "SwitchResult",
    "UnassignedAttendee",
]
