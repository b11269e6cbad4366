"""
Temporal activities for TeamForge.

Activities are thin wrappers: the work itself lives in IntentRunner and
ChatBatchRunner, which are testable without Temporal. Exceptions propagate
unchanged so Temporal can match their class names against the non-retryable
error types.
"""

import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional

from temporalio import activity

from ..adapters.models import ChatOperation
from ..jobs import IntentRunner
from ..provisioning.chat_batch import ChatBatchRunner

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_INTERVAL = 10.0


async def _with_heartbeat(awaitable: Awaitable[Any], detail: str) -> Any:
    """Await work while heartbeating at a third of the heartbeat timeout."""
    timeout = activity.info().heartbeat_timeout
    interval = timeout.total_seconds() / 3 if timeout else DEFAULT_HEARTBEAT_INTERVAL

    async def beat() -> None:
        while True:
            activity.heartbeat(detail)
            await asyncio.sleep(interval)

    beater = asyncio.create_task(beat())
    try:
        return await awaitable
    finally:
        beater.cancel()


class IntentActivities:
    """
    Activities bound to the services of one worker process.

    Usage:
        acts = IntentActivities(services.runner, services.chat_runner)
        Worker(client, task_queue=..., activities=[acts.run_intent, acts.abort_intent_task])
    """

    def __init__(self, runner: IntentRunner, chat_runner: Optional[ChatBatchRunner] = None):
        self.runner = runner
        self.chat_runner = chat_runner

    @activity.defn(name="run_intent")
    async def run_intent(self, intent: Dict[str, Any], task_id: str) -> Dict[str, Any]:
        """Execute one intent against its Task (retried by Temporal)."""
        info = activity.info()
        logger.info(f"Intent {intent.get('action')} task={task_id} attempt={info.attempt}")
        return await _with_heartbeat(self.runner.run(intent, task_id), task_id)

    @activity.defn(name="abort_intent_task")
    async def abort_intent_task(self, task_id: str, error: str) -> Optional[str]:
        """Fail the Task after the intent gave up."""
        logger.warning(f"Aborting task {task_id}: {error}")
        return self.runner.abort(task_id, error)

    @activity.defn(name="apply_chat_operation")
    async def apply_chat_operation(self, team_id: str, operation: Dict[str, Any]) -> Dict[str, Any]:
        """Apply one chat batch operation."""
        if self.chat_runner is None:
            raise RuntimeError("No chat adapter configured on this worker")
        op = ChatOperation.model_validate(operation)
        activity.heartbeat(op.op)
        return await self.chat_runner.apply(team_id, op)
