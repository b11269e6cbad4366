"""
TeamForge application settings.

Settings are built once at process startup (from environment variables and an
optional YAML file) and passed explicitly into constructors. There is no
module-level settings instance.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml


@dataclass(frozen=True)
class Settings:
    """Database, adapter and domain settings."""

    # Persistence
    database_url: str = "sqlite:///.data/teamforge.db"

    # Adapters
    adapter_factory: str = "teamforge.adapters:in_memory_adapters"
    adapter_call_timeout_seconds: float = 30.0

    # Team classification
    parent_group_template: str = "{parent_team_type}-team"
    group_name_template: str = "{kind}-team-{name}"
    known_team_kinds: Tuple[str, ...] = ("competition", "development")
    known_team_subtypes: Tuple[str, ...] = ("blue", "red", "ctf")
    default_team_kind: str = "development"

    # Groupware
    calendar_access_level: str = "read-write"

    # Reconciliation
    default_members_per_team: int = 4

    # Chat batch
    chat_channel_category: Optional[str] = None

    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        defaults = cls()
        return cls(
            database_url=os.getenv("DATABASE_URL", defaults.database_url),
            adapter_factory=os.getenv("TEAMFORGE_ADAPTERS", defaults.adapter_factory),
            adapter_call_timeout_seconds=float(
                os.getenv("TEAMFORGE_ADAPTER_TIMEOUT", str(defaults.adapter_call_timeout_seconds))
            ),
            parent_group_template=os.getenv(
                "DIRECTORY_PARENT_GROUP_TEMPLATE", defaults.parent_group_template
            ),
            group_name_template=os.getenv("TEAMFORGE_GROUP_NAME_TEMPLATE", defaults.group_name_template),
            default_team_kind=os.getenv("TEAMFORGE_DEFAULT_TEAM_KIND", defaults.default_team_kind),
            calendar_access_level=os.getenv("GROUPWARE_CALENDAR_ACCESS", defaults.calendar_access_level),
            default_members_per_team=int(
                os.getenv("TEAMFORGE_MEMBERS_PER_TEAM", str(defaults.default_members_per_team))
            ),
            chat_channel_category=os.getenv("CHAT_CHANNEL_CATEGORY") or None,
        )

    @classmethod
    def from_yaml(cls, config_path: str, base: Optional["Settings"] = None) -> "Settings":
        """
        Overlay values from a YAML file onto base settings.

        The file may nest everything under a top-level ``teamforge`` key.
        Unknown keys are kept in ``extra``.

        Args:
            config_path: Path to YAML config file
            base: Settings to overlay (defaults to Settings.from_env())

        Returns:
            New Settings instance
        """
        base = base or cls.from_env()
        path = Path(config_path)
        if not path.exists():
            return base

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "teamforge" in data and isinstance(data["teamforge"], dict):
            data = data["teamforge"]

        known = {f.name for f in fields(cls)}
        updates: Dict[str, Any] = {}
        extra = dict(base.extra)
        for key, value in data.items():
            if key not in known or key == "extra":
                extra[key] = value
            elif key in ("known_team_kinds", "known_team_subtypes"):
                updates[key] = tuple(str(v).lower() for v in value)
            else:
                updates[key] = value
        return replace(base, extra=extra, **updates)
