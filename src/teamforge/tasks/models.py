"""
Pydantic models for Task/Subtask tracking.

A Task tracks one lifecycle intent execution; its Subtasks (one per evaluated
integration or reconciliation pass) are fixed at creation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..storage.models import TaskStatus


class Subtask(BaseModel):
    """One step of a Task."""
    index: int = Field(..., ge=0, description="Position in execution order")
    name: str = Field(..., description="Integration or pass name")
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    result: Optional[Dict[str, Any]] = Field(None, description="Step payload when completed")
    error: Optional[str] = Field(None, description="Failure message")
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class Task(BaseModel):
    """
    Persisted progress record of a multi-step operation.

    Invariant: a terminal Task has only terminal Subtasks.
    """
    id: str
    name: str
    description: Optional[str] = None
    intent: Optional[str] = Field(None, description="create | update | delete | sync")
    entity_type: str
    entity_id: str
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    subtasks: List[Subtask] = Field(default_factory=list)
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def subtask(self, name: str) -> Optional[Subtask]:
        """First subtask with the given name."""
        for sub in self.subtasks:
            if sub.name == name:
                return sub
        return None


class TaskPage(BaseModel):
    """One page of tasks, newest first."""
    tasks: List[Task]
    total: int
    page: int
    limit: int
    total_pages: int
