"""
Tests for Temporal Workflows

Uses Temporal's local test server; skipped when it cannot be started.
"""

import uuid
from contextlib import AsyncExitStack

import pytest
from temporalio.testing import WorkflowEnvironment

from teamforge.adapters import ChatOperation, in_memory_adapters
from teamforge.jobs import create_task_for
from teamforge.provisioning import CreateTeam, UpdateTeam
from teamforge.services import build_services
from teamforge.storage import TaskStatus
from teamforge.temporal import (
    IntentWorkflow,
    TemporalChatDispatcher,
    TemporalClient,
    TemporalConfig,
    create_workers,
)


@pytest.fixture
async def workflow_env():
    """Create Temporal test environment."""
    try:
        env = await WorkflowEnvironment.start_local()
    except (RuntimeError, OSError) as e:
        pytest.skip(f"Temporal test server unavailable: {e}")
    async with env:
        yield env


@pytest.fixture
def temporal_config():
    suffix = uuid.uuid4().hex[:8]
    return TemporalConfig(
        provisioning_task_queue=f"test-provisioning-{suffix}",
        reconciliation_task_queue=f"test-reconciliation-{suffix}",
        chat_task_queue=f"test-chat-{suffix}",
        activity_start_to_close_timeout=30,
        activity_heartbeat_timeout=10,
        activity_max_attempts=2,
        activity_initial_interval=0.1,
        activity_max_interval=0.5,
        chat_operation_interval=0.01,
    )


@pytest.fixture
def client(workflow_env, temporal_config):
    return TemporalClient.from_client(workflow_env.client, temporal_config)


async def running(stack, workflow_env, services, temporal_config):
    for worker in create_workers(workflow_env.client, services, temporal_config):
        await stack.enter_async_context(worker)


class TestIntentWorkflow:
    """Tests for IntentWorkflow."""

    async def test_create_completes(self, workflow_env, client, services, temporal_config, make_team):
        team = make_team("alpha", members=["ann@x.io"])
        intent = CreateTeam(team_id=team.id)
        task = create_task_for(services.task_store, intent)

        async with AsyncExitStack() as stack:
            await running(stack, workflow_env, services, temporal_config)
            handle = await client.start_intent(intent, task.id)
            result = await handle.result()
            status = await handle.query(IntentWorkflow.status)

        assert result["status"] == "completed"
        assert status == "completed"
        assert services.task_store.get_task(task.id).status == TaskStatus.COMPLETED

    async def test_partial_failure_returns_failed_summary(
        self, workflow_env, client, settings, db, temporal_config, make_team
    ):
        services = build_services(settings, in_memory_adapters(parent_groups=()), db=db)
        team = make_team("alpha")
        intent = CreateTeam(team_id=team.id)
        task = create_task_for(services.task_store, intent)

        async with AsyncExitStack() as stack:
            await running(stack, workflow_env, services, temporal_config)
            result = await (await client.start_intent(intent, task.id)).result()

        stored = services.task_store.get_task(task.id)
        assert result["status"] == "failed"
        assert stored.status == TaskStatus.FAILED
        assert stored.error == "Mandatory integration failed: directory"

    async def test_rejected_intent_aborts_task(self, workflow_env, client, services, temporal_config):
        intent = UpdateTeam(team_id="team_missing")
        task = create_task_for(services.task_store, intent)

        async with AsyncExitStack() as stack:
            await running(stack, workflow_env, services, temporal_config)
            result = await (await client.start_intent(intent, task.id)).result()

        stored = services.task_store.get_task(task.id)
        assert result["status"] == "failed"
        assert stored.status == TaskStatus.FAILED
        assert stored.error.startswith("Job aborted: NotFoundError")


class TestChatBatchWorkflow:
    """Tests for ChatBatchWorkflow."""

    async def test_applies_in_order_and_records_failures(
        self, workflow_env, client, services, temporal_config, make_team, team_store
    ):
        team = make_team("alpha")
        ops = [
            ChatOperation(op="create_role", params={"name": "alpha"}),
            ChatOperation(op="archive_everything"),
            ChatOperation(op="create_channel", params={"name": "alpha"}),
            ChatOperation(op="set_channel_permissions"),
        ]

        async with AsyncExitStack() as stack:
            await running(stack, workflow_env, services, temporal_config)
            job = await TemporalChatDispatcher(client).submit(team.id, ops)
            result = await workflow_env.client.get_workflow_handle(job.job_id).result()

        assert result["applied"] == ["create_role", "create_channel", "set_channel_permissions"]
        assert [f["op"] for f in result["failed"]] == ["archive_everything"]
        assert set(team_store.list_refs(team.id)) == {"chat.role", "chat.channel"}
