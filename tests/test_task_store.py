"""
Tests for the Task/Subtask state machine.
"""

import pytest

from teamforge.errors import InvalidStateError, NotFoundError, ValidationError
from teamforge.storage import TaskStatus


@pytest.fixture
def task(task_store):
    return task_store.create_task(
        name="Create team alpha",
        entity_type="team",
        entity_id="team-1",
        subtask_names=["directory", "wiki", "groupware"],
        intent="create",
    )


class TestTaskCreation:
    """Tests for create_task and reads."""

    def test_subtasks_created_pending_in_order(self, task):
        """Subtasks keep the given order and start pending."""
        assert task.status == TaskStatus.PENDING
        assert [s.name for s in task.subtasks] == ["directory", "wiki", "groupware"]
        assert [s.index for s in task.subtasks] == [0, 1, 2]
        assert all(s.status == TaskStatus.PENDING for s in task.subtasks)

    def test_empty_subtasks_rejected(self, task_store):
        """A task without subtasks is invalid."""
        with pytest.raises(ValidationError):
            task_store.create_task("x", "team", "t", subtask_names=[])

    def test_get_unknown_task_returns_none(self, task_store):
        assert task_store.get_task("task_missing") is None

    def test_subtask_lookup_by_name(self, task):
        assert task.subtask("wiki").index == 1
        assert task.subtask("chat") is None


class TestTaskTransitions:
    """Tests for task and subtask transitions."""

    def test_running_is_idempotent(self, task_store, task):
        """Marking running twice is a no-op."""
        task_store.mark_task_running(task.id)
        task_store.mark_task_running(task.id)
        loaded = task_store.get_task(task.id)
        assert loaded.status == TaskStatus.RUNNING
        assert loaded.started_at is not None

    def test_complete_with_open_subtasks_fails(self, task_store, task):
        """Terminal invariant: no finishing while subtasks are open."""
        task_store.mark_task_running(task.id)
        task_store.mark_subtask_completed(task.id, 0, {"ok": True})

        with pytest.raises(InvalidStateError):
            task_store.mark_task_completed(task.id, {})
        with pytest.raises(InvalidStateError):
            task_store.mark_task_failed(task.id, "boom")

        assert task_store.get_task(task.id).status == TaskStatus.RUNNING

    def test_complete_after_all_subtasks_terminal(self, task_store, task):
        task_store.mark_task_running(task.id)
        task_store.mark_subtask_completed(task.id, 0, {"group_id": "g1"})
        task_store.mark_subtask_failed(task.id, 1, "wiki down")
        task_store.mark_subtask_completed(task.id, 2)
        task_store.mark_task_completed(task.id, {"success": True}, warnings=["wiki: wiki down"])

        loaded = task_store.get_task(task.id)
        assert loaded.status == TaskStatus.COMPLETED
        assert loaded.finished_at is not None
        assert loaded.warnings == ["wiki: wiki down"]
        assert loaded.subtasks[0].result == {"group_id": "g1"}
        assert loaded.subtasks[1].error == "wiki down"

    def test_terminal_task_cannot_restart(self, task_store, task):
        task_store.abort_open_subtasks(task.id, "stop")
        task_store.mark_task_failed(task.id, "stop")

        with pytest.raises(InvalidStateError):
            task_store.mark_task_running(task.id)
        with pytest.raises(InvalidStateError):
            task_store.mark_task_completed(task.id, {})

    def test_terminal_subtask_cannot_change(self, task_store, task):
        task_store.mark_subtask_completed(task.id, 0)
        with pytest.raises(InvalidStateError):
            task_store.mark_subtask_failed(task.id, 0, "late failure")

    def test_unknown_subtask_index(self, task_store, task):
        with pytest.raises(NotFoundError):
            task_store.mark_subtask_completed(task.id, 7)

    def test_unknown_task(self, task_store):
        with pytest.raises(NotFoundError):
            task_store.mark_task_running("task_missing")

    def test_subtask_completion_stamps_started_at(self, task_store, task):
        task_store.mark_subtask_completed(task.id, 2)
        sub = task_store.get_task(task.id).subtasks[2]
        assert sub.started_at is not None
        assert sub.finished_at is not None


class TestRecovery:
    """Tests for abort and operator repair."""

    def test_abort_fails_only_open_subtasks(self, task_store, task):
        task_store.mark_subtask_completed(task.id, 0)
        task_store.mark_subtask_running(task.id, 1)

        aborted = task_store.abort_open_subtasks(task.id, "worker lost")

        assert aborted == 2
        subs = task_store.get_task(task.id).subtasks
        assert subs[0].status == TaskStatus.COMPLETED
        assert subs[1].status == TaskStatus.FAILED
        assert subs[2].error == "worker lost"

    def test_repair_closes_task_and_records_note(self, task_store, task):
        task_store.mark_task_running(task.id)
        task_store.mark_subtask_completed(task.id, 0)

        repaired = task_store.repair_task(task.id, TaskStatus.FAILED, "groupware group removed by hand")

        assert repaired.status == TaskStatus.FAILED
        assert repaired.error == "groupware group removed by hand"
        assert "Operator repair: groupware group removed by hand" in repaired.warnings
        assert all(s.is_terminal for s in repaired.subtasks)

    def test_repair_requires_terminal_status_and_note(self, task_store, task):
        with pytest.raises(ValidationError):
            task_store.repair_task(task.id, TaskStatus.RUNNING, "note")
        with pytest.raises(ValidationError):
            task_store.repair_task(task.id, TaskStatus.COMPLETED, "  ")


class TestListTasks:
    """Tests for paginated task listing."""

    def test_filters_and_pagination(self, task_store):
        for i in range(3):
            task_store.create_task(f"t{i}", "team", "team-a", ["directory"])
        task_store.create_task("other", "event", "evt-1", ["assign_and_remove"])

        page = task_store.list_tasks(entity_type="team", entity_id="team-a", page=1, limit=2)

        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.tasks) == 2
        assert all(t.entity_id == "team-a" for t in page.tasks)

    def test_invalid_page(self, task_store):
        with pytest.raises(ValidationError):
            task_store.list_tasks(page=0)
