"""In-memory task queue with a dependency graph and cascading failure.

The queue owns every task object and keeps three id caches
(completed, reviewing, failed) in sync with task status inside update(),
so readiness checks stay O(dependencies). The caches are never a source of
truth on their own; callers mutate a task and then hand it back to update().
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

from ..core.events import EventEmitter
from ..core.task import FailureInfo, FailureReason, Task, TaskStatus
from ..errors import TaskNotFoundError

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS})


class QueueEvent(str, Enum):
    TASK_ADDED = "task_added"
    TASK_UPDATED = "task_updated"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    QUEUE_EMPTY = "queue_empty"
    TASK_REPLANNED = "task_replanned"
    TASK_CASCADE_FAILED = "task_cascade_failed"


@dataclass
class QueueStats:
    total: int
    pending: int
    in_progress: int
    reviewing: int
    completed: int
    failed: int
    blocked: int


class TaskQueue(EventEmitter):
    """Dependency-aware priority queue of tasks."""

    def __init__(self, tasks: Iterable[Task] = ()):
        super().__init__()
        self._tasks: Dict[str, Task] = {}
        self._completed_ids: Set[str] = set()
        self._reviewing_ids: Set[str] = set()
        self._failed_ids: Set[str] = set()
        self.add_many(tasks)

    # -- insertion / removal -------------------------------------------------

    def add(self, task: Task) -> bool:
        """Insert a task. Returns False (and changes nothing) for a duplicate id."""
        if task.id in self._tasks:
            logger.warning(f"Task {task.id} already queued, ignoring duplicate add")
            return False
        self._tasks[task.id] = task
        self._sync_indices(task)
        self.emit(QueueEvent.TASK_ADDED, task)
        return True

    def add_many(self, tasks: Iterable[Task]) -> None:
        for task in tasks:
            self.add(task)

    def remove(self, task_id: str) -> bool:
        task = self._tasks.pop(task_id, None)
        self._drop_indices(task_id)
        return task is not None

    def clear(self) -> None:
        self._tasks.clear()
        self._completed_ids.clear()
        self._reviewing_ids.clear()
        self._failed_ids.clear()

    # -- status changes ------------------------------------------------------

    def update(self, task: Task) -> None:
        """Replace a task by id and re-sync the derived id caches.

        Raises:
            TaskNotFoundError: if the id was never added (or has been removed)
        """
        if task.id not in self._tasks:
            raise TaskNotFoundError(task.id)

        self._tasks[task.id] = task
        self._sync_indices(task)
        self.emit(QueueEvent.TASK_UPDATED, task)

        if task.status == TaskStatus.COMPLETED:
            self.emit(QueueEvent.TASK_COMPLETED, task)
            self._check_queue_empty()
        elif task.status == TaskStatus.FAILED:
            self.emit(QueueEvent.TASK_FAILED, task)
            self._check_queue_empty()

    def _sync_indices(self, task: Task) -> None:
        self._drop_indices(task.id)
        if task.status == TaskStatus.COMPLETED:
            self._completed_ids.add(task.id)
        elif task.status == TaskStatus.REVIEWING:
            self._reviewing_ids.add(task.id)
        elif task.status == TaskStatus.FAILED:
            self._failed_ids.add(task.id)

    def _drop_indices(self, task_id: str) -> None:
        self._completed_ids.discard(task_id)
        self._reviewing_ids.discard(task_id)
        self._failed_ids.discard(task_id)

    def _check_queue_empty(self) -> None:
        if self._tasks and self.is_complete():
            self.emit(QueueEvent.QUEUE_EMPTY)

    # -- scheduling queries --------------------------------------------------

    def _satisfied_ids(self) -> Set[str]:
        # A dependency under review counts as satisfied so its dependents don't deadlock
        return self._completed_ids | self._reviewing_ids

    def get_ready(self) -> List[Task]:
        satisfied = self._satisfied_ids()
        return [
            task for task in self._tasks.values()
            if task.status == TaskStatus.REVIEWING or task.can_start(satisfied)
        ]

    def get_next(self) -> Optional[Task]:
        """Highest-priority ready task, oldest first on ties."""
        ready = self.get_ready()
        if not ready:
            return None
        ready.sort(key=lambda t: (-t.priority_rank, t.created_at))
        return ready[0]

    def get_blocked(self) -> List[Task]:
        """Pending tasks waiting on dependencies that can still be satisfied.

        Tasks doomed by a failed dependency are left out so a real deadlock can
        be told apart from a chain that will never run.
        """
        satisfied = self._satisfied_ids()
        return [
            task for task in self._tasks.values()
            if task.status == TaskStatus.PENDING
            and not task.can_start(satisfied)
            and self.has_failed_dependency(task) is None
        ]

    def has_failed_dependency(self, task: Task) -> Optional[str]:
        """First dependency id (in declaration order) that has failed."""
        for dep_id in task.dependencies:
            if dep_id in self._failed_ids:
                return dep_id
        return None

    # -- lookups -------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def get_by_status(self, status: TaskStatus) -> List[Task]:
        return [task for task in self._tasks.values() if task.status == status]

    def get_pending(self) -> List[Task]:
        return self.get_by_status(TaskStatus.PENDING)

    def get_in_progress(self) -> List[Task]:
        """Tasks currently held by an agent (assigned or in_progress)."""
        return [task for task in self._tasks.values() if task.status in ACTIVE_STATUSES]

    def get_completed(self) -> List[Task]:
        return self.get_by_status(TaskStatus.COMPLETED)

    def get_failed(self) -> List[Task]:
        return self.get_by_status(TaskStatus.FAILED)

    def get_all(self) -> List[Task]:
        return list(self._tasks.values())

    def get_completed_ids(self) -> Set[str]:
        return set(self._completed_ids)

    def get_reviewing_ids(self) -> Set[str]:
        return set(self._reviewing_ids)

    def get_failed_ids(self) -> Set[str]:
        return set(self._failed_ids)

    def get_dependents(self, task_id: str) -> List[Task]:
        return [task for task in self._tasks.values() if task_id in task.dependencies]

    def get_dependencies(self, task_id: str) -> List[Task]:
        task = self._tasks.get(task_id)
        if task is None:
            return []
        return [self._tasks[dep] for dep in task.dependencies if dep in self._tasks]

    def get_transitive_dependents(self, task_id: str) -> List[Task]:
        """Every task reachable through reverse dependency edges, breadth first."""
        visited: Set[str] = {task_id}
        result: List[Task] = []
        frontier = deque([task_id])
        while frontier:
            current = frontier.popleft()
            for dependent in self.get_dependents(current):
                if dependent.id in visited:
                    continue
                visited.add(dependent.id)
                result.append(dependent)
                frontier.append(dependent.id)
        return result

    def size(self) -> int:
        return len(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def is_empty(self) -> bool:
        return not self._tasks

    def is_complete(self) -> bool:
        """True when every task is completed or failed."""
        return all(task.is_terminal for task in self._tasks.values())

    def get_stats(self) -> QueueStats:
        return QueueStats(
            total=len(self._tasks),
            pending=len(self.get_pending()),
            in_progress=len(self.get_in_progress()),
            reviewing=len(self._reviewing_ids),
            completed=len(self._completed_ids),
            failed=len(self._failed_ids),
            blocked=len(self.get_blocked()),
        )

    # -- recovery ------------------------------------------------------------

    def replace_with_refined_tasks(
        self,
        failed_task_id: str,
        new_tasks: List[Task],
        inherit_dependents: bool = True,
    ) -> bool:
        """Swap a failed task (and optionally its dependents) for replanned tasks.

        Returns False without touching the queue when failed_task_id is unknown.
        """
        old_task = self._tasks.get(failed_task_id)
        if old_task is None:
            logger.warning(f"Cannot replace unknown task {failed_task_id}")
            return False

        removed = [old_task]
        if inherit_dependents:
            removed.extend(self.get_transitive_dependents(failed_task_id))
        for task in removed:
            self.remove(task.id)

        self.add_many(new_tasks)
        logger.info(
            f"Replaced task {failed_task_id} ({len(removed) - 1} dependents removed) "
            f"with {len(new_tasks)} refined tasks"
        )
        self.emit(QueueEvent.TASK_REPLANNED, old_task, list(new_tasks))
        return True

    def cascade_failure(self, failed_task: Task) -> List[Task]:
        """Fail every pending transitive dependent of failed_task.

        Non-pending dependents are left alone. Each cascaded task records
        failed_task.id as the root cause, however many hops away it is.
        """
        cascaded: List[Task] = []
        for dependent in self.get_transitive_dependents(failed_task.id):
            if dependent.status != TaskStatus.PENDING:
                continue
            dependent.failure_info = FailureInfo(
                reason=FailureReason.DEPENDENCY_FAILED,
                message=f"Dependency {failed_task.id} failed",
                failed_dependency=failed_task.id,
            )
            dependent.update_status(TaskStatus.FAILED)
            self._sync_indices(dependent)
            cascaded.append(dependent)
            self.emit(QueueEvent.TASK_CASCADE_FAILED, dependent, failed_task)

        if cascaded:
            logger.warning(f"Cascaded failure of {failed_task.id} to {len(cascaded)} dependent tasks")
            self._check_queue_empty()
        return cascaded
