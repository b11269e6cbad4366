"""
Pydantic models for provisioning results.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..errors import PartialFailure


class Integration(str, Enum):
    """External systems touched by a team lifecycle intent."""
    DIRECTORY = "directory"
    WIKI = "wiki"
    GROUPWARE = "groupware"
    VCS = "vcs"
    CHAT = "chat"

    @property
    def mandatory(self) -> bool:
        return self in MANDATORY


# Fixed priority order for create/update; delete runs it reversed.
CREATION_ORDER: List[Integration] = [
    Integration.DIRECTORY,
    Integration.WIKI,
    Integration.GROUPWARE,
    Integration.VCS,
    Integration.CHAT,
]

MANDATORY = frozenset({Integration.DIRECTORY, Integration.GROUPWARE})


class IntegrationResult(BaseModel):
    """Outcome of one integration step."""
    integration: Integration
    success: bool
    skipped: bool = Field(default=False, description="Disabled or nothing to do")
    mandatory: bool = False
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list, description="Non-fatal sub-step failures")
    duration_ms: float = 0.0


class ProvisioningResult(BaseModel):
    """
    Aggregate of one provisioning run.

    success is False iff a mandatory integration failed. Optional failures
    only add warnings.
    """
    team_id: str
    action: str
    success: bool = True
    results: List[IntegrationResult] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    def get(self, integration: Integration) -> Optional[IntegrationResult]:
        for result in self.results:
            if result.integration == integration:
                return result
        return None

    def failed_integrations(self, mandatory_only: bool = False) -> List[str]:
        return [
            r.integration.value
            for r in self.results
            if not r.success and (r.mandatory or not mandatory_only)
        ]

    def raise_for_failure(self) -> None:
        """Raise PartialFailure when a mandatory integration failed."""
        if not self.success:
            raise PartialFailure(self)
