"""
Lifecycle intents.

An intent is a discriminated union on ``action``:
CreateTeam | UpdateTeam | DeleteTeam | SyncTeams.
Intents travel through the queue as JSON (model_dump(mode="json")) and are
parsed back with parse_intent.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import CREATION_ORDER

SYNC_PASSES = ["mirror_external_teams", "push_external_membership", "assign_and_remove"]


class IntegrationOptions(BaseModel):
    """
    Optional integrations enabled for a create.

    directory and the groupware group are always provisioned.
    """
    wiki: bool = Field(default=False, description="Create the team index page")
    groupware_folder: bool = Field(default=False, description="Create the shared folder")
    groupware_calendar: bool = Field(default=False, description="Create the shared calendar")
    groupware_board: bool = Field(default=False, description="Create the task board")
    vcs: bool = Field(default=False, description="Create VCS team and repository")
    chat: bool = Field(default=False, description="Create chat role and channel")

    @classmethod
    def all_enabled(cls) -> "IntegrationOptions":
        return cls(**{name: True for name in cls.model_fields})


class TeamChanges(BaseModel):
    """Local changes applied before an update is pushed outward."""
    name: Optional[str] = None
    kind: Optional[str] = None
    subtype: Optional[str] = None
    description: Optional[str] = None
    add_user_ids: List[str] = Field(default_factory=list)
    remove_user_ids: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("name must not be blank")
        return v


class CreateTeam(BaseModel):
    action: Literal["create"] = "create"
    team_id: str = Field(..., min_length=1)
    options: IntegrationOptions = Field(default_factory=IntegrationOptions)


class UpdateTeam(BaseModel):
    action: Literal["update"] = "update"
    team_id: str = Field(..., min_length=1)
    changes: TeamChanges = Field(default_factory=TeamChanges)
    options: IntegrationOptions = Field(default_factory=IntegrationOptions)


class DeleteTeam(BaseModel):
    action: Literal["delete"] = "delete"
    team_id: str = Field(..., min_length=1)
    options: IntegrationOptions = Field(
        default_factory=IntegrationOptions,
        description="Ignored: delete evaluates every integration with refs",
    )


class SyncTeams(BaseModel):
    action: Literal["sync"] = "sync"
    event_id: str = Field(..., min_length=1)
    mode: Literal["auto_assign", "remove_declined", "sync_all"] = "sync_all"
    members_per_team: Optional[int] = Field(None, ge=1)


Intent = Annotated[
    Union[CreateTeam, UpdateTeam, DeleteTeam, SyncTeams],
    Field(discriminator="action"),
]

TeamIntent = Union[CreateTeam, UpdateTeam, DeleteTeam]

_intent_adapter = TypeAdapter(Intent)


def parse_intent(data: Union[Dict[str, Any], BaseModel]) -> Intent:
    """
    Parse a JSON-like dict into a typed intent.

    Raises:
        ValidationError: On unknown action or bad shape
    """
    if isinstance(data, (CreateTeam, UpdateTeam, DeleteTeam, SyncTeams)):
        return data
    try:
        return _intent_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid intent: {e}") from e


def subtask_names_for(intent: Intent) -> List[str]:
    """One subtask per evaluated integration, or per reconciliation pass."""
    if isinstance(intent, SyncTeams):
        return list(SYNC_PASSES)
    names = [integration.value for integration in CREATION_ORDER]
    if isinstance(intent, DeleteTeam):
        names.reverse()
    return names


def entity_of(intent: Intent) -> tuple:
    """(entity_type, entity_id) the intent's Task is filed under."""
    if isinstance(intent, SyncTeams):
        return "event", intent.event_id
    return "team", intent.team_id


def describe(intent: Intent) -> str:
    """Human-readable Task name."""
    if isinstance(intent, SyncTeams):
        return f"Sync event teams ({intent.mode}) for {intent.event_id}"
    return f"{intent.action.capitalize()} team {intent.team_id}"
