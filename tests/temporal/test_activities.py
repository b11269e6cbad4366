"""
Tests for Temporal Activities

Runs activities through ActivityEnvironment against in-memory services
(no Temporal server).
"""

import pytest
from temporalio.testing import ActivityEnvironment

from teamforge.adapters import in_memory_adapters
from teamforge.errors import PartialFailure
from teamforge.jobs import create_task_for
from teamforge.provisioning import CreateTeam
from teamforge.services import build_services
from teamforge.storage import TaskStatus
from teamforge.temporal import IntentActivities


@pytest.fixture
def activity_env():
    return ActivityEnvironment()


@pytest.fixture
def acts(services):
    return IntentActivities(services.runner, services.chat_runner)


class TestRunIntent:
    """Tests for run_intent activity."""

    async def test_completes_task(self, activity_env, acts, task_store, make_team):
        team = make_team("alpha")
        intent = CreateTeam(team_id=team.id)
        task = create_task_for(task_store, intent)

        summary = await activity_env.run(acts.run_intent, intent.model_dump(mode="json"), task.id)

        assert summary["status"] == "completed"
        assert task_store.get_task(task.id).status == TaskStatus.COMPLETED

    async def test_partial_failure_propagates(self, activity_env, settings, db, make_team):
        services = build_services(settings, in_memory_adapters(parent_groups=()), db=db)
        acts = IntentActivities(services.runner)
        team = make_team("alpha")
        intent = CreateTeam(team_id=team.id)
        task = create_task_for(services.task_store, intent)

        with pytest.raises(PartialFailure):
            await activity_env.run(acts.run_intent, intent.model_dump(mode="json"), task.id)

        assert services.task_store.get_task(task.id).status == TaskStatus.FAILED


class TestAbortIntentTask:

    async def test_aborts_open_task(self, activity_env, acts, task_store):
        task = create_task_for(task_store, CreateTeam(team_id="team_x"))

        status = await activity_env.run(acts.abort_intent_task, task.id, "attempts exhausted")

        assert status == "failed"
        assert task_store.get_task(task.id).error == "Job aborted: attempts exhausted"


class TestApplyChatOperation:

    async def test_applies_operation(self, activity_env, acts, make_team, team_store):
        team = make_team("alpha")

        payload = await activity_env.run(
            acts.apply_chat_operation, team.id, {"op": "create_role", "params": {"name": "alpha"}}
        )

        assert team_store.get_ref(team.id, "chat.role").external_id == payload["role_id"]

    async def test_requires_chat_runner(self, activity_env, services):
        acts = IntentActivities(services.runner)
        with pytest.raises(RuntimeError):
            await activity_env.run(acts.apply_chat_operation, "team_x", {"op": "create_role"})
