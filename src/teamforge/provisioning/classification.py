"""
Team classification: kind/subtype normalization and external naming.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from ..config import Settings

logger = logging.getLogger(__name__)


class TeamClassification(BaseModel):
    """Normalized kind/subtype plus the names derived from them."""
    kind: str
    subtype: Optional[str] = None
    parent_group_name: str
    warnings: List[str] = Field(default_factory=list)


class TeamClassifier:
    """
    Maps a team's kind and subtype onto external naming.

    Unknown kinds fall back to the configured default kind; unknown subtypes
    are dropped. Both cases produce a warning instead of an error.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def classify(self, kind: Optional[str], subtype: Optional[str] = None) -> TeamClassification:
        warnings: List[str] = []

        normalized_kind = (kind or "").strip().lower()
        if normalized_kind not in self.settings.known_team_kinds:
            fallback = self.settings.default_team_kind
            warnings.append(f"Unknown team kind '{kind}', using '{fallback}'")
            normalized_kind = fallback

        normalized_subtype = (subtype or "").strip().lower() or None
        if normalized_subtype and normalized_subtype not in self.settings.known_team_subtypes:
            warnings.append(f"Unknown team subtype '{subtype}' ignored")
            normalized_subtype = None

        for warning in warnings:
            logger.warning(warning)

        return TeamClassification(
            kind=normalized_kind,
            subtype=normalized_subtype,
            parent_group_name=self.settings.parent_group_template.format(
                parent_team_type=normalized_kind
            ),
            warnings=warnings,
        )

    def group_name(self, kind: str, name: str) -> str:
        """External group name, e.g. competition-team-alpha."""
        return self.settings.group_name_template.format(kind=kind, name=name)

    def folder_name(self, kind: str, name: str) -> str:
        return f"{kind}-team/{name}"
