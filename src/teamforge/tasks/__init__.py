"""
Task tracking for TeamForge.

Persisted Task/Subtask state machine polled by callers.
"""

from .models import Subtask, Task, TaskPage
from .task_store import TaskStore

__all__ = ["Task", "Subtask", "TaskPage", "TaskStore"]
