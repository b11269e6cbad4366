"""
Temporal client for TeamForge.

TemporalClient wraps the connection; TemporalIntentQueue and
TemporalChatDispatcher put intents and chat batches on their task queues.
"""

import logging
from datetime import timedelta
from typing import Any, List, Optional
from uuid import uuid4

from temporalio.client import Client, WorkflowHandle
from temporalio.common import RetryPolicy

from ..adapters.base import ChatDispatcher
from ..adapters.models import AcceptedJob, ChatOperation
from ..jobs import IntentQueue, IntentRunner, create_task_for
from ..provisioning.intents import Intent, SyncTeams, parse_intent
from .config import TemporalConfig
from .workflows import ChatBatchWorkflow, IntentWorkflow

logger = logging.getLogger(__name__)


class TemporalClient:
    """
    Temporal client wrapper for TeamForge.

    Usage:
        async with TemporalClient(TemporalConfig.from_env()) as client:
            handle = await client.start_intent(intent, task.id)
    """

    def __init__(self, config: TemporalConfig):
        self.config = config
        self._client: Optional[Client] = None

    async def connect(self) -> "TemporalClient":
        """Connect to Temporal server."""
        self._client = await Client.connect(
            self.config.target,
            namespace=self.config.namespace,
        )
        return self

    async def close(self) -> None:
        """Drop the reference; the SDK client owns no closable resources."""
        self._client = None

    async def __aenter__(self) -> "TemporalClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def client(self) -> Client:
        """Get underlying Temporal client."""
        if self._client is None:
            raise RuntimeError("Client not connected. Use 'async with TemporalClient(config)' or call connect()")
        return self._client

    async def ensure_connected(self) -> Client:
        """Connect on first use (inside the caller's event loop)."""
        if self._client is None:
            await self.connect()
        return self.client

    @classmethod
    def from_client(cls, client: Client, config: TemporalConfig) -> "TemporalClient":
        """Wrap an already connected client (worker processes, tests)."""
        wrapper = cls(config)
        wrapper._client = client
        return wrapper

    def queue_for(self, intent: Intent) -> str:
        if isinstance(intent, SyncTeams):
            return self.config.reconciliation_task_queue
        return self.config.provisioning_task_queue

    async def start_intent(self, intent: Intent, task_id: str) -> WorkflowHandle:
        """
        Start IntentWorkflow for a queued intent.

        The workflow id is derived from the task id, so a duplicate start for
        the same Task is rejected by Temporal.
        """
        return await self.client.start_workflow(
            IntentWorkflow.run,
            args=[intent.model_dump(mode="json"), task_id, self.config.job_options()],
            id=f"intent-{task_id}",
            task_queue=self.queue_for(intent),
            execution_timeout=timedelta(seconds=self.config.workflow_execution_timeout),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )

    async def start_chat_batch(self, team_id: str, operations: List[ChatOperation],
                               batch_id: str) -> WorkflowHandle:
        job = {**self.config.job_options(), "interval": self.config.chat_operation_interval}
        return await self.client.start_workflow(
            ChatBatchWorkflow.run,
            args=[team_id, [op.model_dump(mode="json") for op in operations], job],
            id=batch_id,
            task_queue=self.config.chat_task_queue,
            execution_timeout=timedelta(seconds=self.config.workflow_execution_timeout),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )


class TemporalIntentQueue(IntentQueue):
    """Durable intent queue backed by Temporal workflows."""

    def __init__(self, client: TemporalClient, runner: IntentRunner):
        self.client = client
        self.runner = runner

    async def enqueue(self, intent: Any, task_id: Optional[str] = None) -> str:
        intent = parse_intent(intent)
        if task_id is None:
            task_id = create_task_for(self.runner.task_store, intent).id
        else:
            self.runner.check_task(intent, task_id)
        try:
            await self.client.ensure_connected()
            await self.client.start_intent(intent, task_id)
        except Exception as e:
            logger.error(f"Could not queue task {task_id}: {e}")
            self.runner.abort(task_id, f"Enqueue failed: {e}")
            raise
        logger.info(f"Queued {intent.action} intent as task {task_id}")
        return task_id


class TemporalChatDispatcher(ChatDispatcher):
    """Starts a ChatBatchWorkflow per submitted batch."""

    def __init__(self, client: TemporalClient):
        self.client = client

    async def submit(self, team_id: str, operations: List[ChatOperation]) -> AcceptedJob:
        batch_id = f"chat-{team_id}-{uuid4().hex[:12]}"
        await self.client.start_chat_batch(team_id, operations, batch_id)
        logger.info(f"Chat batch {batch_id} queued for team {team_id} ({len(operations)} ops)")
        return AcceptedJob(job_id=batch_id, operations=[op.op for op in operations])
