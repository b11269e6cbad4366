"""
Temporal workflows for TeamForge.

IntentWorkflow
    One queued intent. Runs the run_intent activity with bounded retries and
    exponential backoff. When the activity gives up for any reason other than
    a recorded PartialFailure, the abort activity fails the Task so pollers
    never see it stuck in running.

ChatBatchWorkflow
    Sequential chat operations for one team with a pause between calls.
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, List, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError

with workflow.unsafe.imports_passed_through():
    from .activities import IntentActivities
    from .config import NON_RETRYABLE_ERRORS

ABORT_TIMEOUT = timedelta(seconds=60)
ABORT_RETRY = RetryPolicy(maximum_attempts=5)


def _retry_policy(job: Dict[str, Any]) -> RetryPolicy:
    return RetryPolicy(
        initial_interval=timedelta(seconds=job["initial_interval"]),
        backoff_coefficient=job["backoff_coefficient"],
        maximum_interval=timedelta(seconds=job["max_interval"]),
        maximum_attempts=int(job["max_attempts"]),
        non_retryable_error_types=NON_RETRYABLE_ERRORS,
    )


def _failure_message(error: ActivityError) -> str:
    cause = error.cause
    if isinstance(cause, ApplicationError):
        return f"{cause.type}: {cause.message}" if cause.type else cause.message
    return str(cause or error)


@workflow.defn
class IntentWorkflow:
    """
    Queries:
    - status: initialized, running, aborting, completed or failed
    """

    def __init__(self) -> None:
        self._status = "initialized"

    @workflow.run
    async def run(self, intent: Dict[str, Any], task_id: str, job: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute an intent.

        Args:
            intent: Intent JSON
            task_id: Task created at enqueue time
            job: Activity options from TemporalConfig.job_options()

        Returns:
            Summary dict: task_id, status and result or error
        """
        self._status = "running"
        try:
            summary = await workflow.execute_activity_method(
                IntentActivities.run_intent,
                args=[intent, task_id],
                start_to_close_timeout=timedelta(seconds=job["start_to_close_timeout"]),
                heartbeat_timeout=timedelta(seconds=job["heartbeat_timeout"]),
                retry_policy=_retry_policy(job),
            )
        except ActivityError as e:
            cause = e.cause
            if isinstance(cause, ApplicationError) and cause.type == "PartialFailure":
                # Task already finalized by the runner
                self._status = "failed"
                return {"task_id": task_id, "status": "failed", "error": cause.message}

            error = _failure_message(e)
            workflow.logger.warning(f"Intent for task {task_id} gave up: {error}")
            self._status = "aborting"
            await workflow.execute_activity_method(
                IntentActivities.abort_intent_task,
                args=[task_id, error],
                start_to_close_timeout=ABORT_TIMEOUT,
                retry_policy=ABORT_RETRY,
            )
            self._status = "failed"
            return {"task_id": task_id, "status": "failed", "error": error}

        self._status = "completed"
        return summary

    @workflow.query
    def status(self) -> str:
        return self._status


@workflow.defn
class ChatBatchWorkflow:
    """
    Applies chat operations one at a time.

    A failed operation is recorded and the batch moves on; later operations
    that depend on a missing role or channel fail on their own.
    """

    def __init__(self) -> None:
        self._applied: List[str] = []
        self._current: Optional[str] = None

    @workflow.run
    async def run(self, team_id: str, operations: List[Dict[str, Any]], job: Dict[str, Any]) -> Dict[str, Any]:
        failures: List[Dict[str, str]] = []
        for index, operation in enumerate(operations):
            if index:
                await asyncio.sleep(job["interval"])
            self._current = operation["op"]
            try:
                await workflow.execute_activity_method(
                    IntentActivities.apply_chat_operation,
                    args=[team_id, operation],
                    start_to_close_timeout=timedelta(seconds=job["start_to_close_timeout"]),
                    retry_policy=_retry_policy(job),
                )
                self._applied.append(operation["op"])
            except ActivityError as e:
                error = _failure_message(e)
                workflow.logger.warning(f"Chat op {operation['op']} failed for team {team_id}: {error}")
                failures.append({"op": operation["op"], "error": error})

        self._current = None
        return {"team_id": team_id, "applied": list(self._applied), "failed": failures}

    @workflow.query
    def progress(self) -> Dict[str, Any]:
        return {"applied": list(self._applied), "current": self._current}
