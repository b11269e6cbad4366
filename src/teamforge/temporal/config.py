"""
Temporal configuration for TeamForge workers and clients.

Loaded from environment variables at startup and passed explicitly.
"""

import os
from dataclasses import dataclass
from typing import Dict, List

# Raised by the intent runner for failures a retry cannot fix.
NON_RETRYABLE_ERRORS: List[str] = [
    "PartialFailure",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
]


@dataclass(frozen=True)
class TemporalConfig:
    """Temporal connection, queue and retry configuration."""

    # Connection
    host: str = "localhost"
    port: int = 7233
    namespace: str = "default"

    # Task Queues
    provisioning_task_queue: str = "teamforge-provisioning"
    reconciliation_task_queue: str = "teamforge-reconciliation"
    chat_task_queue: str = "teamforge-chat"

    # Timeouts (seconds)
    workflow_execution_timeout: int = 3600
    activity_start_to_close_timeout: int = 600
    activity_heartbeat_timeout: int = 60

    # Retry Policy (whole intent)
    activity_max_attempts: int = 3
    activity_initial_interval: float = 5.0
    activity_backoff_coefficient: float = 2.0
    activity_max_interval: float = 300.0

    # Workers
    reconciliation_concurrency: int = 4
    chat_operation_interval: float = 1.0

    @property
    def target(self) -> str:
        """Temporal server address."""
        return f"{self.host}:{self.port}"

    def job_options(self) -> Dict[str, float]:
        """Activity options handed to workflows as plain workflow input."""
        return {
            "start_to_close_timeout": self.activity_start_to_close_timeout,
            "heartbeat_timeout": self.activity_heartbeat_timeout,
            "max_attempts": self.activity_max_attempts,
            "initial_interval": self.activity_initial_interval,
            "backoff_coefficient": self.activity_backoff_coefficient,
            "max_interval": self.activity_max_interval,
        }

    @classmethod
    def from_env(cls) -> "TemporalConfig":
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("TEMPORAL_HOST", "localhost"),
            port=int(os.getenv("TEMPORAL_PORT", "7233")),
            namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            provisioning_task_queue=os.getenv("TEMPORAL_PROVISIONING_QUEUE", "teamforge-provisioning"),
            reconciliation_task_queue=os.getenv("TEMPORAL_RECONCILIATION_QUEUE", "teamforge-reconciliation"),
            chat_task_queue=os.getenv("TEMPORAL_CHAT_QUEUE", "teamforge-chat"),
            workflow_execution_timeout=int(os.getenv("TEMPORAL_WORKFLOW_TIMEOUT", "3600")),
            activity_start_to_close_timeout=int(os.getenv("TEMPORAL_ACTIVITY_TIMEOUT", "600")),
            activity_heartbeat_timeout=int(os.getenv("TEMPORAL_HEARTBEAT_TIMEOUT", "60")),
            activity_max_attempts=int(os.getenv("TEMPORAL_MAX_ATTEMPTS", "3")),
            activity_initial_interval=float(os.getenv("TEMPORAL_RETRY_INITIAL_INTERVAL", "5.0")),
            activity_backoff_coefficient=float(os.getenv("TEMPORAL_RETRY_BACKOFF", "2.0")),
            activity_max_interval=float(os.getenv("TEMPORAL_RETRY_MAX_INTERVAL", "300.0")),
            reconciliation_concurrency=int(os.getenv("TEAMFORGE_RECONCILIATION_CONCURRENCY", "4")),
            chat_operation_interval=float(os.getenv("TEAMFORGE_CHAT_INTERVAL", "1.0")),
        )
