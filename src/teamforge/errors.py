"""
Error taxonomy for TeamForge.

Structural errors (ValidationError, NotFoundError, InvalidStateError) propagate
to callers of the Task API and the intent runner. AdapterError never leaves the
orchestrator: it is converted into a subtask failure plus an entry in the
result's errors or warnings.
"""

from typing import Any, Optional


class TeamForgeError(Exception):
    """Base class for all TeamForge errors."""


class ValidationError(TeamForgeError):
    """Bad intent shape or invalid input."""


class NotFoundError(TeamForgeError):
    """Unknown team, event, task or subtask index."""


class InvalidStateError(TeamForgeError):
    """Illegal state transition (e.g. finishing a task with open subtasks)."""


class AdapterError(TeamForgeError):
    """
    Failure reported by (or while calling) an external system adapter.

    Attributes:
        integration: Integration name (directory, wiki, groupware, ...)
        message: Underlying error message
    """

    def __init__(self, integration: str, message: str):
        self.integration = integration
        self.message = message
        super().__init__(f"{integration}: {message}")


class AdapterTimeoutError(AdapterError):
    """Adapter call exceeded the per-call timeout."""

    def __init__(self, integration: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(integration, f"call timed out after {timeout_seconds}s")


class PartialFailure(TeamForgeError):
    """
    A mandatory integration failed while others may have succeeded.

    Carries the aggregate result so the still-useful partial results are not
    lost.
    """

    def __init__(self, result: Any, message: Optional[str] = None):
        self.result = result
        errors = getattr(result, "errors", None) or []
        super().__init__(message or "; ".join(errors) or "mandatory integration failed")
