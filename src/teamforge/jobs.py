"""
Intent runner.

Executes one queued intent against its Task:

    mark running -> dispatch (orchestrator or reconciliation engine) -> finalize

A retried delivery of an already finished Task returns the stored result
without touching external systems. A failed mandatory integration finalizes
the Task as failed and then raises PartialFailure, which the queue treats as
non-retryable.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .errors import InvalidStateError, NotFoundError, PartialFailure, ValidationError
from .provisioning.intents import (
    CreateTeam,
    DeleteTeam,
    Intent,
    SyncTeams,
    UpdateTeam,
    describe,
    entity_of,
    parse_intent,
    subtask_names_for,
)
from .provisioning.models import Integration, ProvisioningResult
from .provisioning.orchestrator import ProvisioningOrchestrator
from .reconciliation.engine import ReconciliationEngine
from .storage.team_store import TeamStore
from .tasks.models import Task
from .tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


class IntentRunner:
    """
    Runs intents and keeps their Task in step.

    Usage:
        runner = IntentRunner(task_store, team_store, orchestrator, engine)
        summary = await runner.run(intent, task.id)
    """

    def __init__(
        self,
        task_store: TaskStore,
        team_store: TeamStore,
        orchestrator: ProvisioningOrchestrator,
        engine: ReconciliationEngine,
    ):
        self.task_store = task_store
        self.team_store = team_store
        self.orchestrator = orchestrator
        self.engine = engine

    async def run(self, intent: Any, task_id: str) -> Dict[str, Any]:
        """
        Execute an intent and finalize its Task.

        Args:
            intent: Typed intent or its JSON dict
            task_id: Task created at enqueue time

        Returns:
            Summary dict: task_id, status, result

        Raises:
            ValidationError: Malformed intent, or a Task created for another intent
            NotFoundError: Unknown task, team or event
            PartialFailure: A mandatory integration failed (Task already finalized)
        """
        intent = parse_intent(intent)
        task = self.check_task(intent, task_id)
        if task.is_terminal:
            logger.info(f"Task {task_id} already {task.status.value}, returning stored result")
            return {"task_id": task_id, "status": task.status.value, "result": task.result}

        self.task_store.mark_task_running(task_id)
        return await self._dispatch(intent, task_id)

    async def _dispatch(self, intent: Intent, task_id: str) -> Dict[str, Any]:
        match intent:
            case SyncTeams(event_id=event_id, mode=mode, members_per_team=capacity):
                sync_result = await self.engine.sync(event_id, mode, capacity, task_id=task_id)
                payload = sync_result.model_dump(mode="json")
                self.task_store.mark_task_completed(task_id, payload, warnings=sync_result.errors)
                return {"task_id": task_id, "status": "completed", "result": payload}

            case CreateTeam() | UpdateTeam() | DeleteTeam():
                result = await self.orchestrator.provision(intent, task_id=task_id)
                payload = result.model_dump(mode="json")
                if not result.success:
                    failed = ", ".join(result.failed_integrations(mandatory_only=True))
                    self.task_store.mark_task_failed(
                        task_id,
                        f"Mandatory integration failed: {failed}",
                        result=payload,
                        errors=result.errors,
                        warnings=result.warnings,
                    )
                    result.raise_for_failure()

                warnings = list(result.warnings)
                if isinstance(intent, DeleteTeam):
                    warnings.extend(self._finish_delete(intent.team_id, result))
                self.task_store.mark_task_completed(task_id, payload, warnings=warnings)
                return {"task_id": task_id, "status": "completed", "result": payload}

            case _:
                raise TypeError(f"Unsupported intent: {type(intent).__name__}")

    def check_task(self, intent: Intent, task_id: str) -> Task:
        """
        Load the Task an intent reports on.

        Raises:
            NotFoundError: Unknown task
            ValidationError: Task was created for a different intent, entity
                or subtask layout
        """
        task = self.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found")

        entity_type, entity_id = entity_of(intent)
        expected = (intent.action, entity_type, entity_id, subtask_names_for(intent))
        actual = (task.intent, task.entity_type, task.entity_id, [s.name for s in task.subtasks])
        if actual != expected:
            raise ValidationError(
                f"Task {task_id} tracks {task.intent} of {task.entity_type} {task.entity_id}, "
                f"not: {describe(intent)}"
            )
        return task

    def _finish_delete(self, team_id: str, result: ProvisioningResult) -> List[str]:
        """
        Drop the local team once no external ref is left.

        Chat refs whose deletion was queued go with the team; the job id is
        kept in the returned warnings so a failed batch can be traced.
        """
        chat = result.get(Integration.CHAT)
        chat_job = chat.data.get("job_id") if chat is not None and chat.success else None
        leftover = sorted(
            system for system in self.team_store.list_refs(team_id)
            if not (chat_job and system.startswith("chat."))
        )
        if leftover:
            logger.warning(f"Team {team_id} kept, refs remain: {leftover}")
            return [f"Team kept: external refs remain for {', '.join(leftover)}"]

        self.team_store.delete_team(team_id)
        if chat_job:
            return [f"chat: deletion queued as job {chat_job}"]
        return []

    def abort(self, task_id: str, error: str) -> Optional[str]:
        """
        Fail a Task whose job gave up (retries exhausted).

        Returns:
            Final status, or None for an unknown task
        """
        task = self.task_store.get_task(task_id)
        if task is None:
            logger.error(f"Cannot abort unknown task {task_id}")
            return None
        if task.is_terminal:
            return task.status.value

        self.task_store.abort_open_subtasks(task_id, error)
        self.task_store.mark_task_failed(task_id, f"Job aborted: {error}", errors=[error])
        return "failed"


# =============================================================================
# Queues
# =============================================================================

def create_task_for(task_store: TaskStore, intent: Intent) -> Task:
    """Create the pending Task an intent reports progress on."""
    entity_type, entity_id = entity_of(intent)
    return task_store.create_task(
        name=describe(intent),
        entity_type=entity_type,
        entity_id=entity_id,
        subtask_names=subtask_names_for(intent),
        intent=intent.action,
    )


class IntentQueue(ABC):
    """Accepts intents for asynchronous execution."""

    @abstractmethod
    async def enqueue(self, intent: Any, task_id: Optional[str] = None) -> str:
        """
        Queue an intent.

        Args:
            intent: Typed intent or its JSON dict
            task_id: Existing pending Task to reuse (created when omitted)

        Returns:
            Task id to poll

        Raises:
            ValidationError: Bad intent, or task_id tracks a different intent
        """


class LocalIntentQueue(IntentQueue):
    """
    Runs intents in-process, one at a time, without retries.

    Used for local runs and tests; failures end up on the Task exactly as
    they would with the Temporal queue once retries are exhausted.
    """

    def __init__(self, task_store: TaskStore, runner: IntentRunner):
        self.task_store = task_store
        self.runner = runner

    async def enqueue(self, intent: Any, task_id: Optional[str] = None) -> str:
        intent = parse_intent(intent)
        if task_id is None:
            task_id = create_task_for(self.task_store, intent).id
        else:
            self.runner.check_task(intent, task_id)
        try:
            await self.runner.run(intent, task_id)
        except PartialFailure as e:
            logger.warning(f"Task {task_id} failed: {e}")
        except (ValidationError, NotFoundError, InvalidStateError) as e:
            logger.error(f"Task {task_id} rejected: {e}")
            self.runner.abort(task_id, str(e))
        except Exception as e:
            logger.exception(f"Task {task_id} crashed")
            self.runner.abort(task_id, f"{type(e).__name__}: {e}")
        return task_id
