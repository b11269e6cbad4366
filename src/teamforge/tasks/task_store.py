"""
Task Store — persisted Task/Subtask state machine.

States: pending -> running -> {completed, failed}. Terminal states are
immutable except through repair_task (operator override).

A pending subtask may be completed or failed directly: it passes through
running implicitly and gets its started_at stamped.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..storage.database import Database
from ..storage.models import SubtaskModel, TaskModel, TaskStatus, generate_id, utcnow
from .models import Subtask, Task, TaskPage

logger = logging.getLogger(__name__)


def _to_task(row: TaskModel) -> Task:
    return Task(
        id=row.id,
        name=row.name,
        description=row.description,
        intent=row.intent,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        status=row.status,
        result=row.result,
        error=row.error,
        warnings=list(row.warnings or []),
        errors=list(row.errors or []),
        subtasks=[
            Subtask(
                index=sub.order_index,
                name=sub.name,
                status=sub.status,
                result=sub.result,
                error=sub.error,
                started_at=sub.started_at,
                finished_at=sub.finished_at,
            )
            for sub in row.subtasks
        ],
        created_at=row.created_at,
        started_at=row.started_at,
        finished_at=row.finished_at,
    )


class TaskStore:
    """
    Task/Subtask persistence and transitions.

    Usage:
        store = TaskStore(db)
        task = store.create_task("Create team alpha", "team", team.id,
                                 ["directory", "wiki"], intent="create")
        store.mark_task_running(task.id)
        store.mark_subtask_completed(task.id, 0, {"group_id": "g1"})
        store.mark_subtask_completed(task.id, 1, {"skipped": True})
        store.mark_task_completed(task.id, {"success": True})
    """

    def __init__(self, db: Database):
        self.db = db

    # =========================================================================
    # Creation and reads
    # =========================================================================

    def create_task(
        self,
        name: str,
        entity_type: str,
        entity_id: str,
        subtask_names: List[str],
        intent: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Task:
        """
        Create a pending Task with pending Subtasks in the given order.

        Raises:
            ValidationError: If subtask_names is empty
        """
        if not subtask_names:
            raise ValidationError("A task needs at least one subtask")

        with self.db.session() as s:
            row = TaskModel(
                id=generate_id("task"),
                name=name,
                description=description,
                intent=intent,
                entity_type=entity_type,
                entity_id=entity_id,
                status=TaskStatus.PENDING,
                warnings=[],
                errors=[],
                created_at=utcnow(),
            )
            row.subtasks = [
                SubtaskModel(name=sub_name, order_index=i, status=TaskStatus.PENDING)
                for i, sub_name in enumerate(subtask_names)
            ]
            s.add(row)
            s.flush()
            task = _to_task(row)

        logger.info(f"Task created: {task.id} ({name}) subtasks={list(subtask_names)}")
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        """Read-only snapshot, or None for an unknown id."""
        with self.db.session() as s:
            row = self._load(s, task_id)
            return _to_task(row) if row else None

    def list_tasks(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> TaskPage:
        """
        List tasks newest first.

        Args:
            entity_type: Filter by entity type (team, event)
            entity_id: Filter by entity id
            page: 1-based page number
            limit: Page size

        Returns:
            TaskPage with pagination metadata
        """
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")

        with self.db.session() as s:
            query = select(TaskModel)
            count_query = select(func.count()).select_from(TaskModel)
            if entity_type:
                query = query.where(TaskModel.entity_type == entity_type)
                count_query = count_query.where(TaskModel.entity_type == entity_type)
            if entity_id:
                query = query.where(TaskModel.entity_id == entity_id)
                count_query = count_query.where(TaskModel.entity_id == entity_id)

            total = s.scalar(count_query) or 0
            rows = s.scalars(
                query.options(selectinload(TaskModel.subtasks))
                .order_by(TaskModel.created_at.desc(), TaskModel.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
            tasks = [_to_task(r) for r in rows]

        return TaskPage(
            tasks=tasks,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    # =========================================================================
    # Task transitions
    # =========================================================================

    def mark_task_running(self, task_id: str) -> None:
        """pending -> running. Already running is a no-op."""
        with self.db.session() as s:
            row = self._require(s, task_id)
            if row.status == TaskStatus.RUNNING:
                return
            if row.status.is_terminal:
                raise InvalidStateError(f"Task {task_id} is already {row.status.value}")
            row.status = TaskStatus.RUNNING
            row.started_at = utcnow()
        logger.info(f"Task running: {task_id}")

    def mark_task_completed(
        self,
        task_id: str,
        result: Optional[Dict[str, Any]],
        warnings: Optional[List[str]] = None,
    ) -> None:
        with self.db.session() as s:
            row = self._require_finishable(s, task_id)
            self._finish(row, TaskStatus.COMPLETED, result=result, warnings=warnings)
        logger.info(f"Task completed: {task_id} warnings={len(warnings or [])}")

    def mark_task_failed(
        self,
        task_id: str,
        error: str,
        result: Optional[Dict[str, Any]] = None,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        with self.db.session() as s:
            row = self._require_finishable(s, task_id)
            self._finish(
                row, TaskStatus.FAILED, result=result, error=error,
                errors=errors, warnings=warnings,
            )
        logger.warning(f"Task failed: {task_id}: {error}")

    # =========================================================================
    # Subtask transitions
    # =========================================================================

    def mark_subtask_running(self, task_id: str, index: int) -> None:
        with self.db.session() as s:
            sub = self._require_open_subtask(s, task_id, index)
            if sub.status == TaskStatus.PENDING:
                sub.status = TaskStatus.RUNNING
                sub.started_at = utcnow()

    def mark_subtask_completed(self, task_id: str, index: int,
                               result: Optional[Dict[str, Any]] = None) -> None:
        with self.db.session() as s:
            sub = self._require_open_subtask(s, task_id, index)
            now = utcnow()
            sub.started_at = sub.started_at or now
            sub.status = TaskStatus.COMPLETED
            sub.result = result
            sub.finished_at = now
        logger.debug(f"Subtask completed: {task_id}[{index}]")

    def mark_subtask_failed(self, task_id: str, index: int, error: str) -> None:
        with self.db.session() as s:
            sub = self._require_open_subtask(s, task_id, index)
            now = utcnow()
            sub.started_at = sub.started_at or now
            sub.status = TaskStatus.FAILED
            sub.error = error
            sub.finished_at = now
        logger.debug(f"Subtask failed: {task_id}[{index}]: {error}")

    # =========================================================================
    # Recovery
    # =========================================================================

    def abort_open_subtasks(self, task_id: str, error: str) -> int:
        """
        Fail every pending or running subtask.

        Returns:
            Number of subtasks aborted
        """
        with self.db.session() as s:
            row = self._require(s, task_id)
            now = utcnow()
            aborted = 0
            for sub in row.subtasks:
                if not sub.status.is_terminal:
                    sub.started_at = sub.started_at or now
                    sub.status = TaskStatus.FAILED
                    sub.error = error
                    sub.finished_at = now
                    aborted += 1
        if aborted:
            logger.warning(f"Aborted {aborted} open subtasks of {task_id}: {error}")
        return aborted

    def repair_task(self, task_id: str, status: TaskStatus, note: str) -> Task:
        """
        Operator override of a task's final status.

        Open subtasks are failed with the note so the terminal invariant
        holds; the note is appended to the task's warnings.

        Raises:
            ValidationError: If status is not terminal or note is empty
        """
        status = TaskStatus(status)
        if not status.is_terminal:
            raise ValidationError("repair_task only sets completed or failed")
        if not note or not note.strip():
            raise ValidationError("A repair note is required")

        self.abort_open_subtasks(task_id, f"repaired: {note}")
        with self.db.session() as s:
            row = self._require(s, task_id)
            previous = row.status
            row.status = status
            row.warnings = list(row.warnings or []) + [f"Operator repair: {note}"]
            row.started_at = row.started_at or utcnow()
            row.finished_at = utcnow()
            if status == TaskStatus.FAILED and not row.error:
                row.error = note
            s.flush()
            task = _to_task(row)
        logger.warning(f"Task repaired: {task_id} {previous.value} -> {status.value} ({note})")
        return task

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _load(s: Session, task_id: str) -> Optional[TaskModel]:
        return s.scalar(
            select(TaskModel)
            .options(selectinload(TaskModel.subtasks))
            .where(TaskModel.id == task_id)
        )

    def _require(self, s: Session, task_id: str) -> TaskModel:
        row = self._load(s, task_id)
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return row

    def _require_finishable(self, s: Session, task_id: str) -> TaskModel:
        row = self._require(s, task_id)
        if row.status.is_terminal:
            raise InvalidStateError(f"Task {task_id} is already {row.status.value}")
        open_subtasks = [sub.name for sub in row.subtasks if not sub.status.is_terminal]
        if open_subtasks:
            raise InvalidStateError(f"Task {task_id} has open subtasks: {open_subtasks}")
        return row

    def _require_open_subtask(self, s: Session, task_id: str, index: int) -> SubtaskModel:
        row = self._require(s, task_id)
        if index < 0 or index >= len(row.subtasks):
            raise NotFoundError(f"Task {task_id} has no subtask {index}")
        sub = row.subtasks[index]
        if sub.status.is_terminal:
            raise InvalidStateError(
                f"Subtask {task_id}[{index}] ({sub.name}) is already {sub.status.value}"
            )
        return sub

    @staticmethod
    def _finish(
        row: TaskModel,
        status: TaskStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        errors: Optional[List[str]] = None,
        warnings: Optional[List[str]] = None,
    ) -> None:
        now = utcnow()
        row.started_at = row.started_at or now
        row.status = status
        row.result = result
        row.error = error
        row.errors = list(errors or [])
        row.warnings = list(row.warnings or []) + list(warnings or [])
        row.finished_at = now
