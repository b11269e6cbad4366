"""
Provisioning module for TeamForge.

Lifecycle intents, team classification and the orchestrator that applies
them to external systems.
"""

from .chat_batch import ChatBatchRunner
from .classification import TeamClassification, TeamClassifier
from .intents import (
    CreateTeam,
    DeleteTeam,
    Intent,
    IntegrationOptions,
    SyncTeams,
    TeamChanges,
    UpdateTeam,
    parse_intent,
    subtask_names_for,
)
from .models import CREATION_ORDER, Integration, IntegrationResult, ProvisioningResult
from .orchestrator import ProvisioningOrchestrator

__all__ = [
    "ChatBatchRunner",
    "TeamClassification",
    "TeamClassifier",
    "CreateTeam",
    "UpdateTeam",
    "DeleteTeam",
    "SyncTeams",
    "Intent",
    "IntegrationOptions",
    "TeamChanges",
    "parse_intent",
    "subtask_names_for",
    "CREATION_ORDER",
    "Integration",
    "IntegrationResult",
    "ProvisioningResult",
    "ProvisioningOrchestrator",
]
