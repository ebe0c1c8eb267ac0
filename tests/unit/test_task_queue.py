"""Tests for TaskQueue: readiness, blocking, replacement, cascading failure."""

import time
from unittest.mock import MagicMock

import pytest

from maestro.core.task import FailureReason, Task, TaskPriority, TaskStatus, create_task
from maestro.errors import TaskNotFoundError
from maestro.queue.task_queue import QueueEvent, TaskQueue


def _make_task(task_id: str, deps=(), **overrides) -> Task:
    return create_task(f"Goal for {task_id}", task_id=task_id, dependencies=deps, **overrides)


def _set_status(queue: TaskQueue, task_id: str, status: TaskStatus) -> Task:
    task = queue.get(task_id)
    task.update_status(status)
    queue.update(task)
    return task


class TestAddAndUpdate:
    def test_add_emits_task_added(self):
        queue = TaskQueue()
        listener = MagicMock()
        queue.on(QueueEvent.TASK_ADDED, listener)
        task = _make_task("a")

        assert queue.add(task)
        listener.assert_called_once_with(task)
        assert queue.get("a") is task
        assert len(queue) == 1

    def test_duplicate_add_is_ignored(self):
        queue = TaskQueue()
        original = _make_task("a")
        queue.add(original)

        assert queue.add(_make_task("a")) is False
        assert queue.get("a") is original
        assert queue.size() == 1

    def test_update_unknown_task_raises(self):
        queue = TaskQueue()
        with pytest.raises(TaskNotFoundError) as exc_info:
            queue.update(_make_task("ghost"))
        assert exc_info.value.task_id == "ghost"

    def test_update_maintains_id_caches(self):
        queue = TaskQueue([_make_task("a")])

        _set_status(queue, "a", TaskStatus.REVIEWING)
        assert queue.get_reviewing_ids() == {"a"}

        _set_status(queue, "a", TaskStatus.COMPLETED)
        assert queue.get_reviewing_ids() == set()
        assert queue.get_completed_ids() == {"a"}
        assert queue.get_failed_ids() == set()

    def test_update_emits_in_order(self):
        queue = TaskQueue([_make_task("a")])
        calls = []
        queue.on(QueueEvent.TASK_UPDATED, lambda t: calls.append("updated"))
        queue.on(QueueEvent.TASK_COMPLETED, lambda t: calls.append("completed"))
        queue.on(QueueEvent.QUEUE_EMPTY, lambda: calls.append("empty"))

        _set_status(queue, "a", TaskStatus.COMPLETED)

        assert calls == ["updated", "completed", "empty"]

    def test_failed_emits_task_failed(self):
        queue = TaskQueue([_make_task("a"), _make_task("b")])
        failed = MagicMock()
        empty = MagicMock()
        queue.on(QueueEvent.TASK_FAILED, failed)
        queue.on(QueueEvent.QUEUE_EMPTY, empty)

        task = _set_status(queue, "a", TaskStatus.FAILED)

        failed.assert_called_once_with(task)
        empty.assert_not_called()

    def test_returned_id_sets_are_copies(self):
        queue = TaskQueue([_make_task("a")])
        _set_status(queue, "a", TaskStatus.COMPLETED)
        queue.get_completed_ids().clear()
        assert queue.get_completed_ids() == {"a"}


class TestReadiness:
    def test_get_next_prefers_priority_then_age(self):
        queue = TaskQueue()
        queue.add(_make_task("low", priority=TaskPriority.LOW))
        time.sleep(0.001)
        queue.add(_make_task("high-old", priority=TaskPriority.HIGH))
        time.sleep(0.001)
        queue.add(_make_task("high-new", priority=TaskPriority.HIGH))

        assert queue.get_next().id == "high-old"

    def test_get_next_none_when_nothing_ready(self):
        queue = TaskQueue([_make_task("b", deps=["a"])])
        assert queue.get_next() is None

    def test_dependency_under_review_counts_as_satisfied(self):
        queue = TaskQueue([_make_task("a"), _make_task("b", deps=["a"])])
        _set_status(queue, "a", TaskStatus.REVIEWING)

        ready_ids = {t.id for t in queue.get_ready()}
        assert ready_ids == {"a", "b"}

    def test_ready_iff_dependencies_completed_or_reviewing(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b"),
            _make_task("c", deps=["a", "b"]),
        ])
        _set_status(queue, "a", TaskStatus.COMPLETED)
        assert "c" not in {t.id for t in queue.get_ready()}

        _set_status(queue, "b", TaskStatus.IN_PROGRESS)
        assert "c" not in {t.id for t in queue.get_ready()}

        _set_status(queue, "b", TaskStatus.REVIEWING)
        assert "c" in {t.id for t in queue.get_ready()}

    def test_reviewing_task_is_itself_ready(self):
        queue = TaskQueue([_make_task("a")])
        _set_status(queue, "a", TaskStatus.REVIEWING)
        assert queue.get_next().id == "a"

    def test_in_progress_not_ready(self):
        queue = TaskQueue([_make_task("a")])
        _set_status(queue, "a", TaskStatus.IN_PROGRESS)
        assert queue.get_ready() == []
        assert [t.id for t in queue.get_in_progress()] == ["a"]

    def test_assigned_counts_as_in_progress(self):
        queue = TaskQueue([_make_task("a")])
        _set_status(queue, "a", TaskStatus.ASSIGNED)
        assert [t.id for t in queue.get_in_progress()] == ["a"]


class TestBlocked:
    def test_blocked_excludes_doomed_tasks(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b", deps=["a"]),
            _make_task("x"),
            _make_task("y", deps=["x"]),
        ])
        _set_status(queue, "a", TaskStatus.FAILED)

        assert [t.id for t in queue.get_blocked()] == ["y"]

    def test_has_failed_dependency_returns_first_in_order(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b"),
            _make_task("c", deps=["a", "b"]),
        ])
        _set_status(queue, "b", TaskStatus.FAILED)
        assert queue.has_failed_dependency(queue.get("c")) == "b"

        _set_status(queue, "a", TaskStatus.FAILED)
        assert queue.has_failed_dependency(queue.get("c")) == "a"

    def test_has_failed_dependency_none(self):
        queue = TaskQueue([_make_task("a"), _make_task("b", deps=["a"])])
        assert queue.has_failed_dependency(queue.get("b")) is None


class TestGraph:
    def test_transitive_dependents_visit_once(self):
        # Diamond: a -> b, a -> c, (b, c) -> d
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b", deps=["a"]),
            _make_task("c", deps=["a"]),
            _make_task("d", deps=["b", "c"]),
            _make_task("unrelated"),
        ])
        ids = [t.id for t in queue.get_transitive_dependents("a")]
        assert sorted(ids) == ["b", "c", "d"]
        assert len(ids) == 3

    def test_dependents_and_dependencies(self):
        queue = TaskQueue([_make_task("a"), _make_task("b", deps=["a", "missing"])])
        assert [t.id for t in queue.get_dependents("a")] == ["b"]
        assert [t.id for t in queue.get_dependencies("b")] == ["a"]
        assert queue.get_dependencies("nope") == []


class TestReplaceWithRefinedTasks:
    def test_replaces_task_and_transitive_dependents(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b", deps=["a"]),
            _make_task("c", deps=["b"]),
            _make_task("other"),
        ])
        listener = MagicMock()
        queue.on(QueueEvent.TASK_REPLANNED, listener)
        old = queue.get("a")
        new_tasks = [_make_task("a1"), _make_task("a2", deps=["a1"])]

        assert queue.replace_with_refined_tasks("a", new_tasks, inherit_dependents=True)

        assert sorted(t.id for t in queue.get_all()) == ["a1", "a2", "other"]
        listener.assert_called_once_with(old, new_tasks)

    def test_keeps_dependents_when_not_inherited(self):
        queue = TaskQueue([_make_task("a"), _make_task("b", deps=["a"])])
        queue.replace_with_refined_tasks("a", [_make_task("a1")], inherit_dependents=False)
        assert sorted(t.id for t in queue.get_all()) == ["a1", "b"]

    def test_clears_caches_of_removed_tasks(self):
        queue = TaskQueue([_make_task("a")])
        _set_status(queue, "a", TaskStatus.FAILED)
        queue.replace_with_refined_tasks("a", [_make_task("a1")])
        assert queue.get_failed_ids() == set()

    def test_unknown_id_is_noop(self):
        queue = TaskQueue([_make_task("a")])
        listener = MagicMock()
        queue.on(QueueEvent.TASK_REPLANNED, listener)

        assert queue.replace_with_refined_tasks("ghost", [_make_task("n")]) is False
        assert [t.id for t in queue.get_all()] == ["a"]
        listener.assert_not_called()


class TestCascadeFailure:
    def test_fails_pending_transitive_dependents(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b", deps=["a"]),
            _make_task("c", deps=["b"]),
        ])
        failed = _set_status(queue, "a", TaskStatus.FAILED)
        listener = MagicMock()
        queue.on(QueueEvent.TASK_CASCADE_FAILED, listener)

        cascaded = queue.cascade_failure(failed)

        assert [t.id for t in cascaded] == ["b", "c"]
        for task in cascaded:
            assert task.status == TaskStatus.FAILED
            assert task.failure_info.reason == FailureReason.DEPENDENCY_FAILED
            # Root failure, even two hops away
            assert task.failure_info.failed_dependency == "a"
        assert queue.get_failed_ids() == {"a", "b", "c"}
        assert listener.call_count == 2
        listener.assert_any_call(queue.get("c"), failed)

    def test_terminal_dependents_untouched(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b", deps=["a"]),
            _make_task("c", deps=["a"]),
        ])
        _set_status(queue, "b", TaskStatus.COMPLETED)
        failed = _set_status(queue, "a", TaskStatus.FAILED)

        cascaded = queue.cascade_failure(failed)

        assert [t.id for t in cascaded] == ["c"]
        assert queue.get("b").status == TaskStatus.COMPLETED
        assert queue.get("b").failure_info is None

    def test_cascade_leaving_queue_terminal_emits_queue_empty(self):
        queue = TaskQueue([_make_task("a"), _make_task("b", deps=["a"])])
        failed = _set_status(queue, "a", TaskStatus.FAILED)
        empty = MagicMock()
        queue.on(QueueEvent.QUEUE_EMPTY, empty)

        queue.cascade_failure(failed)

        empty.assert_called_once_with()
        assert queue.is_complete()


class TestStats:
    def test_live_counts(self):
        queue = TaskQueue([
            _make_task("a"),
            _make_task("b", deps=["a"]),
            _make_task("c"),
            _make_task("d"),
        ])
        _set_status(queue, "c", TaskStatus.IN_PROGRESS)
        _set_status(queue, "d", TaskStatus.FAILED)

        stats = queue.get_stats()

        assert stats.total == 4
        assert stats.pending == 2
        assert stats.in_progress == 1
        assert stats.completed == 0
        assert stats.failed == 1
        assert stats.blocked == 1

    def test_remove_and_clear(self):
        queue = TaskQueue([_make_task("a"), _make_task("b")])
        _set_status(queue, "a", TaskStatus.COMPLETED)

        assert queue.remove("a")
        assert not queue.remove("a")
        assert queue.get_completed_ids() == set()

        queue.clear()
        assert queue.is_empty()
        assert queue.is_complete()
