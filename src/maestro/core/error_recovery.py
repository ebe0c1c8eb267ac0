"""Terminal failure handling: failure records, replanning, cascading failure."""

import logging
from typing import Dict, List, Optional, Protocol, assert_never, runtime_checkable

from ..errors import (
    AgentStuckError,
    HandoffCycleLimitError,
    MaestroError,
    NoConfidentAgentError,
    TaskTimeoutError,
)
from ..queue.task_queue import TaskQueue
from .config import RecoveryConfig
from .events import EventEmitter, LoopEvent
from .task import FailureInfo, FailureReason, ProjectContext, Task, TaskStatus

logger = logging.getLogger(__name__)

# Trailing excerpt of the last attempt's output included in replan feedback
FEEDBACK_OUTPUT_CHARS = 500


@runtime_checkable
class TaskPlanner(Protocol):
    """Collaborator that can rewrite a failed task into replacement tasks."""

    async def refine_task(
        self,
        task: Task,
        feedback: str,
        project_context: ProjectContext,
    ) -> List[Task]:
        ...


class ReplanError(MaestroError):
    def __init__(self, task_id: str, message: str):
        super().__init__(message, "REPLAN_FAILED", {"task_id": task_id})
        self.task_id = task_id


def failure_reason_for(error: BaseException) -> FailureReason:
    if isinstance(error, NoConfidentAgentError):
        return FailureReason.NO_CONFIDENT_AGENT
    if isinstance(error, HandoffCycleLimitError):
        return FailureReason.HANDOFF_LIMIT
    if isinstance(error, TaskTimeoutError):
        return FailureReason.TIMEOUT
    if isinstance(error, AgentStuckError):
        return FailureReason.AGENT_STUCK
    return FailureReason.EXECUTION_ERROR


def replan_guidance(reason: FailureReason) -> str:
    """Reason-specific advice appended to replan feedback."""
    match reason:
        case FailureReason.HANDOFF_LIMIT:
            return (
                "The task caused too many handoffs between agents. Please break it into "
                "smaller, more focused tasks that can be completed by a single agent."
            )
        case FailureReason.NO_CONFIDENT_AGENT:
            return (
                "No agent was confident enough to handle this task. Please simplify the task "
                "or break it into parts that match agent capabilities."
            )
        case FailureReason.TIMEOUT | FailureReason.AGENT_STUCK:
            return (
                "The task took too long or the agent got stuck. "
                "Please break it into smaller, quicker tasks."
            )
        case FailureReason.EXECUTION_ERROR | FailureReason.DEPENDENCY_FAILED:
            return ""
        case _:
            assert_never(reason)


def build_replan_feedback(task: Task, error: BaseException, reason: FailureReason) -> str:
    message = error.message if isinstance(error, MaestroError) else str(error)
    lines = [
        f"Task failed with error: {message}",
        f"Failure reason: {reason.value}",
        f"Attempts made: {len(task.attempts)}",
    ]

    guidance = replan_guidance(reason)
    if guidance:
        lines.extend(["", guidance])

    last_attempt = task.last_attempt
    if last_attempt is not None and last_attempt.output:
        lines.extend(["", "Last output before failure:", last_attempt.output[-FEEDBACK_OUTPUT_CHARS:]])

    return "\n".join(lines) + "\n"


class RecoveryManager:
    """Marks tasks failed, then tries replanning before cascading the failure."""

    def __init__(
        self,
        queue: TaskQueue,
        config: RecoveryConfig,
        project_context: ProjectContext,
        emitter: EventEmitter,
        task_planner: Optional[TaskPlanner] = None,
    ):
        self.queue = queue
        self.config = config
        self.project_context = project_context
        self.emitter = emitter
        self.task_planner = task_planner
        self.replan_attempts: Dict[str, int] = {}

    async def handle_task_failure(
        self,
        task: Task,
        error: BaseException,
        reason: Optional[FailureReason] = None,
    ) -> bool:
        """Fail a task terminally and try to recover. Returns True if it was replanned."""
        reason = reason or failure_reason_for(error)
        message = error.message if isinstance(error, MaestroError) else str(error)

        task.failure_info = FailureInfo(reason=reason, message=message)
        task.update_status(TaskStatus.FAILED)
        self.queue.update(task)
        logger.error(f"Task {task.id} failed ({reason.value}): {message}")
        self.emitter.emit(LoopEvent.TASK_FAILED, task, error)

        replan_attempted = self._can_replan(task)
        if replan_attempted and await self.attempt_recovery(task, error, reason):
            task.failure_info.replan_attempted = True
            return True

        if self.config.cascade_on_replan_failure:
            for cascaded in self.queue.cascade_failure(task):
                self.emitter.emit(LoopEvent.TASK_CASCADE_FAILED, cascaded, task)
        return False

    def _can_replan(self, task: Task) -> bool:
        if not self.config.enabled or self.task_planner is None:
            return False
        return self.replan_attempts.get(task.id, 0) < self.config.max_replan_attempts

    async def attempt_recovery(self, task: Task, error: BaseException, reason: FailureReason) -> bool:
        """Ask the planner for replacement tasks and swap them into the queue."""
        if not self._can_replan(task):
            return False

        self.replan_attempts[task.id] = self.replan_attempts.get(task.id, 0) + 1
        self.emitter.emit(LoopEvent.TASK_REPLAN_STARTED, task)
        logger.info(f"Replanning task {task.id} (attempt {self.replan_attempts[task.id]})")

        try:
            feedback = build_replan_feedback(task, error, reason)
            refined = await self.task_planner.refine_task(task, feedback, self.project_context)
            if not refined:
                raise ReplanError(task.id, "Replanning produced no tasks")
        except Exception as e:
            logger.warning(f"Replanning failed for task {task.id}: {e}")
            self.emitter.emit(LoopEvent.TASK_REPLAN_FAILED, task, e)
            return False

        self.queue.replace_with_refined_tasks(task.id, list(refined), inherit_dependents=True)
        self.emitter.emit(LoopEvent.TASK_REPLANNED, task, list(refined))
        return True
