"""Top-level control loop: pull ready tasks, route, execute, interpret, recover.

Each attempt races the agent's execution against a hard task deadline and
the watchdog's abort handle. Whichever finishes first wins; the losers are
abandoned, and side effects an abandoned agent call already committed are
not rolled back.
"""

import asyncio
import logging
from typing import Dict, List, Optional, assert_never

from ..errors import (
    AgentStuckError,
    DeadlockError,
    ExecutionError,
    ExecutionLoopError,
    HandoffCycleLimitError,
    TaskTimeoutError,
    format_error,
)
from ..queue.task_queue import TaskQueue
from ..safeguards.retry_handler import RetryHandler
from ..safeguards.watchdog import ActivityWatchdog, WatchdogEvent
from ..utils.rich_logging import ContextLogger
from .agent import (
    Agent,
    AgentResponse,
    AgentRole,
    CompleteAction,
    ContinueAction,
    EscalateAction,
    HandoffAction,
    RetryAction,
)
from .config import ExecutionConfig
from .error_recovery import RecoveryManager, TaskPlanner, failure_reason_for
from .events import EventEmitter, LoopEvent
from .handoff import update_handoff_with_response
from .routing import ConfidenceRouter
from .task import FailureReason, ProjectContext, Task, TaskContext, TaskResult, TaskStatus

logger = logging.getLogger(__name__)


class ExecutionLoop(EventEmitter):
    """Drives every task in a queue to a terminal status."""

    def __init__(
        self,
        queue: TaskQueue,
        router: ConfidenceRouter,
        project_context: ProjectContext,
        config: Optional[ExecutionConfig] = None,
        task_planner: Optional[TaskPlanner] = None,
        retry_handler: Optional[RetryHandler] = None,
        watchdog: Optional[ActivityWatchdog] = None,
        context_logger: Optional[ContextLogger] = None,
    ):
        super().__init__()
        self.queue = queue
        self.router = router
        self.project_context = project_context
        self.config = config or ExecutionConfig()
        self.retry_handler = retry_handler or RetryHandler(
            initial_backoff_ms=self.config.retry_backoff_ms,
            max_retries=self.config.max_retries,
        )
        self.watchdog = watchdog or ActivityWatchdog(self.config.watchdog)
        self.recovery = RecoveryManager(
            queue,
            self.config.recovery,
            project_context,
            emitter=self,
            task_planner=task_planner,
        )
        self.logger = context_logger or ContextLogger(logger, "execution-loop")

        self._running = False
        self._results: List[TaskResult] = []
        self._current_agent_by_task: Dict[str, Agent] = {}

        self.watchdog.on(WatchdogEvent.AGENT_STUCK, self._on_agent_stuck)
        self.watchdog.on(WatchdogEvent.HANDOFF_CYCLE_WARNING, self._on_handoff_cycle_warning)

    @property
    def results(self) -> List[TaskResult]:
        return list(self._results)

    @property
    def replan_attempts(self) -> Dict[str, int]:
        return self.recovery.replan_attempts

    def _on_agent_stuck(self, agent_id: str, task_id: str, elapsed_ms: float) -> None:
        task = self.queue.get(task_id)
        agent = self._current_agent_by_task.get(task_id)
        if task is not None and agent is not None:
            self.emit(LoopEvent.AGENT_STUCK, task, agent, elapsed_ms)

    def _on_handoff_cycle_warning(self, task_id: str, cycle_count: int, max_cycles: int) -> None:
        task = self.queue.get(task_id)
        if task is not None:
            self.emit(LoopEvent.HANDOFF_CYCLE_WARNING, task, cycle_count, max_cycles)

    # -- lifecycle -----------------------------------------------------------

    async def run(self) -> List[TaskResult]:
        """Execute queued tasks until every task is terminal.

        Raises:
            ExecutionLoopError: if the loop is already running
            DeadlockError: if pending tasks wait on dependencies that can never run
        """
        if self._running:
            raise ExecutionLoopError("Execution loop is already running")

        self._running = True
        self._results = []
        self.emit(LoopEvent.LOOP_STARTED)
        self.watchdog.start()

        try:
            while self._running and not self.queue.is_complete():
                task = self.queue.get_next()
                if task is None:
                    if self.queue.get_in_progress():
                        await asyncio.sleep(self.config.idle_poll_ms / 1000)
                        continue

                    blocked = self.queue.get_blocked()
                    if blocked:
                        raise DeadlockError([t.id for t in blocked])

                    remaining = len(self.queue.get_pending())
                    logger.warning(
                        f"No runnable tasks left; {remaining} pending tasks depend on failed tasks"
                    )
                    break

                await self.execute_task(task)

            results = list(self._results)
            stats = self.queue.get_stats()
            logger.info(
                f"Execution loop finished: {stats.completed} completed, {stats.failed} failed, "
                f"{len(results)} results"
            )
            self.emit(LoopEvent.LOOP_COMPLETED, results)
            return results
        except Exception as e:
            logger.error(f"Execution loop aborted: {format_error(e)}")
            self.emit(LoopEvent.LOOP_ERROR, e)
            raise
        finally:
            self._running = False
            self.watchdog.stop()
            self._current_agent_by_task.clear()

    def stop(self) -> None:
        """Request a stop; the loop exits after the current task."""
        self._running = False

    def is_running(self) -> bool:
        return self._running

    # -- per-task execution --------------------------------------------------

    async def execute_task(self, task: Task) -> None:
        max_retries = self.retry_handler.max_retries
        preferred_role: Optional[AgentRole] = None
        under_review = task.status == TaskStatus.REVIEWING
        if under_review:
            preferred_role = AgentRole.REVIEWER

        task.update_status(TaskStatus.ASSIGNED)
        self.queue.update(task)

        attempt = 1
        while attempt <= max_retries:
            try:
                context = self._build_context(task)
                if preferred_role is not None:
                    decision = await self.router.route_with_preference(task, context, preferred_role)
                else:
                    decision = await self.router.route(task, context)
                self.emit(LoopEvent.TASK_ROUTED, task, decision)
                agent = decision.selected_agent

                task.assigned_to = agent.role.value
                task.update_status(TaskStatus.IN_PROGRESS)
                task.add_attempt(agent.id, agent.role.value)
                self.queue.update(task)
                self.emit(LoopEvent.TASK_STARTED, task, agent)
                self.logger.task_started(task.id, task.goal, agent.role.value)

                response = await self._execute_with_timeout(agent, task, self._build_context(task))
                preferred_role = self._handle_response(task, response, agent, under_review)
            except Exception as e:
                task.complete_attempt(False, error=format_error(e))
                if isinstance(e, HandoffCycleLimitError):
                    self.watchdog.clear_task(task.id)

                if self.retry_handler.should_retry(e, attempt):
                    self.queue.update(task)
                    self.logger.warning(f"Attempt {attempt}/{max_retries} failed: {format_error(e)}")
                    self.emit(LoopEvent.TASK_RETRYING, task, attempt, max_retries)
                    await asyncio.sleep(self.retry_handler.calculate_backoff(attempt))
                    attempt += 1
                    continue

                self.logger.task_failed(format_error(e), attempt)
                await self.recovery.handle_task_failure(task, e, failure_reason_for(e))
                return

            if task.status == TaskStatus.COMPLETED:
                result = self._build_result(task, response, agent)
                self._results.append(result)
                self.watchdog.clear_task(task.id)
                self.logger.task_completed(result.duration_ms)
                self.emit(LoopEvent.TASK_COMPLETED, task, result)
                return

            if task.status == TaskStatus.REVIEWING:
                self.logger.progress(f"Task {task.id} awaiting review")
                self.logger.clear_context()
                return

            if task.status == TaskStatus.FAILED:
                # Only an escalation leaves the task failed here
                reason = task.metadata.get("escalation_reason", "")
                error = ExecutionError(f"Escalated: {reason}", agent.id, agent.role.value, {"task_id": task.id})
                self.logger.task_failed(error.message, attempt)
                await self.recovery.handle_task_failure(task, error, FailureReason.EXECUTION_ERROR)
                return

            # Rerouted (handoff or retry request): not charged against the retry budget
            task.update_status(TaskStatus.ASSIGNED)
            self.queue.update(task)
            under_review = False
            attempt = 1

    async def _execute_with_timeout(self, agent: Agent, task: Task, context: TaskContext) -> AgentResponse:
        timeout_ms = self.config.task_timeout_ms
        self._current_agent_by_task[task.id] = agent
        agent.set_activity_callback(self.watchdog.record_activity)
        abort_handle = self.watchdog.create_abort_handle(agent.id, task.id)

        execution = asyncio.ensure_future(agent.execute(task, context))
        abort_waiter = asyncio.ensure_future(abort_handle.wait())
        try:
            done, _ = await asyncio.wait(
                {execution, abort_waiter},
                timeout=timeout_ms / 1000,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if execution in done:
                return execution.result()
            if abort_waiter in done:
                raise AgentStuckError(
                    agent.id,
                    agent.role.value,
                    abort_handle.elapsed_ms or 0.0,
                    self.watchdog.config.activity_timeout_ms,
                )
            raise TaskTimeoutError(task.id, timeout_ms)
        finally:
            abort_waiter.cancel()
            if not execution.done():
                logger.warning(f"Abandoning execution of task {task.id} by {agent.id}")
                execution.add_done_callback(self._consume_abandoned)
            agent.clear_activity_callback()
            self.watchdog.clear_agent(agent.id, task.id)
            self._current_agent_by_task.pop(task.id, None)

    @staticmethod
    def _consume_abandoned(future: "asyncio.Future[AgentResponse]") -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.debug(f"Abandoned execution finished with error: {error}")

    def _handle_response(
        self,
        task: Task,
        response: AgentResponse,
        agent: Agent,
        under_review: bool = False,
    ) -> Optional[AgentRole]:
        """Apply a response to the task. Returns the role the next attempt should prefer.

        Persists the new status, except for an escalation which the caller
        hands to recovery.

        Raises:
            HandoffCycleLimitError: if the requested handoff hits the cycle limit
            ExecutionError: if the agent reported failure without a next action
        """
        task.complete_attempt(
            response.success,
            output=response.output,
            error=None if response.success else "Execution failed",
            artifacts=response.artifacts,
        )
        task.handoff = update_handoff_with_response(task.handoff, response)

        next_role: Optional[AgentRole] = None
        action = response.next_action
        match action:
            case CompleteAction():
                task.update_status(TaskStatus.COMPLETED)

            case HandoffAction(target_role=target):
                self.watchdog.record_handoff(task.id, agent.role.value, AgentRole(target).value)
                if self.watchdog.is_handoff_limit_exceeded(task.id):
                    raise HandoffCycleLimitError(
                        task.id,
                        self.watchdog.get_handoff_cycle_count(task.id),
                        self.watchdog.config.max_handoff_cycles,
                        self.watchdog.get_handoff_history(task.id),
                    )
                task.assigned_to = AgentRole(target).value
                task.update_status(TaskStatus.PENDING)
                next_role = AgentRole(target)

            case RetryAction():
                task.update_status(TaskStatus.PENDING)

            case EscalateAction(reason=reason):
                task.metadata["escalated"] = True
                task.metadata["escalation_reason"] = reason
                task.update_status(TaskStatus.FAILED)
                return None

            case ContinueAction() | None:
                if not response.success:
                    raise ExecutionError(
                        f"Agent {agent.id} reported failure: {response.output[:200]}",
                        agent.id,
                        agent.role.value,
                        {"task_id": task.id},
                    )
                if self.config.review_required and agent.role != AgentRole.REVIEWER and not under_review:
                    task.update_status(TaskStatus.REVIEWING)
                else:
                    task.update_status(TaskStatus.COMPLETED)

            case _:
                assert_never(action)

        self.queue.update(task)
        return next_role

    def _build_context(self, task: Task) -> TaskContext:
        related = self.queue.get_dependencies(task.id) + self.queue.get_dependents(task.id)
        return TaskContext(
            related_tasks=related,
            project_context=self.project_context,
            execution_history=list(task.attempts),
        )

    @staticmethod
    def _build_result(task: Task, response: AgentResponse, agent: Agent) -> TaskResult:
        attempt = task.last_attempt
        duration_ms = attempt.duration_ms if attempt is not None and attempt.duration_ms is not None else 0.0
        return TaskResult(
            task_id=task.id,
            success=response.success,
            output=response.output,
            artifacts=list(response.artifacts),
            duration_ms=duration_ms,
            agent_role=agent.role.value,
        )


__all__ = ["ExecutionLoop", "LoopEvent"]
