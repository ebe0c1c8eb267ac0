"""Orchestration errors.

Every error carries a machine-readable ``code`` and a ``context`` dict so
failure notifications and ``FailureInfo`` records can be built without
parsing messages.
"""

from typing import Any, Dict, List, Optional, Tuple


class MaestroError(Exception):
    """Base class for all orchestration errors."""

    def __init__(self, message: str, code: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
        }


class ConfigurationError(MaestroError):
    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFIGURATION_ERROR", context)


class ExecutionLoopError(MaestroError):
    """Misuse of the execution loop itself (e.g. re-entrant run())."""

    def __init__(self, message: str):
        super().__init__(message, "EXECUTION_LOOP_ERROR")


class ExecutionError(MaestroError):
    """Catch-all wrapper for a failure inside an agent's execution."""

    def __init__(
        self,
        message: str,
        agent_id: str,
        agent_role: str,
        context: Optional[Dict[str, Any]] = None,
        code: str = "EXECUTION_ERROR",
    ):
        super().__init__(message, code, {**(context or {}), "agent_id": agent_id, "agent_role": agent_role})
        self.agent_id = agent_id
        self.agent_role = agent_role


class AgentStuckError(ExecutionError):
    def __init__(self, agent_id: str, agent_role: str, elapsed_ms: float, activity_timeout_ms: float):
        super().__init__(
            f"Agent {agent_id} ({agent_role}) stuck - no activity for {elapsed_ms:.0f}ms",
            agent_id,
            agent_role,
            {"elapsed_ms": elapsed_ms, "activity_timeout_ms": activity_timeout_ms},
            code="AGENT_STUCK",
        )
        self.elapsed_ms = elapsed_ms
        self.activity_timeout_ms = activity_timeout_ms


class NoConfidentAgentError(MaestroError):
    def __init__(
        self,
        task_id: str,
        assessments: List[Tuple[str, float]],
        threshold: float,
        recovery_attempted: bool = False,
    ):
        recovery_note = " (recovery attempted)" if recovery_attempted else ""
        super().__init__(
            f"No agent met confidence threshold {threshold} for task {task_id}{recovery_note}",
            "NO_CONFIDENT_AGENT",
            {
                "task_id": task_id,
                "assessments": [{"agent_id": a, "confidence": c} for a, c in assessments],
                "threshold": threshold,
                "recovery_attempted": recovery_attempted,
            },
        )
        self.task_id = task_id
        self.assessments = list(assessments)
        self.threshold = threshold
        self.recovery_attempted = recovery_attempted


class TaskError(MaestroError):
    def __init__(
        self,
        message: str,
        task_id: str,
        context: Optional[Dict[str, Any]] = None,
        code: str = "TASK_ERROR",
    ):
        super().__init__(message, code, {**(context or {}), "task_id": task_id})
        self.task_id = task_id


class TaskNotFoundError(TaskError):
    def __init__(self, task_id: str):
        super().__init__(f"Task {task_id} not found in queue", task_id, code="TASK_NOT_FOUND")


class TaskTimeoutError(TaskError):
    def __init__(self, task_id: str, timeout_ms: float):
        super().__init__(
            f"Task {task_id} timed out after {timeout_ms:.0f}ms",
            task_id,
            {"timeout_ms": timeout_ms},
            code="TASK_TIMEOUT",
        )
        self.timeout_ms = timeout_ms


class HandoffCycleLimitError(TaskError):
    def __init__(
        self,
        task_id: str,
        handoff_count: int,
        max_handoffs: int,
        history: List[Tuple[str, str]],
    ):
        super().__init__(
            f"Task {task_id} exceeded max handoff cycles ({handoff_count}/{max_handoffs})",
            task_id,
            {
                "handoff_count": handoff_count,
                "max_handoffs": max_handoffs,
                "history": [{"from": f, "to": t} for f, t in history],
            },
            code="HANDOFF_CYCLE_LIMIT",
        )
        self.handoff_count = handoff_count
        self.max_handoffs = max_handoffs
        self.history = list(history)


class DeadlockError(TaskError):
    def __init__(self, blocked_task_ids: List[str]):
        super().__init__(
            f"Deadlock detected: {len(blocked_task_ids)} blocked tasks with no tasks in progress",
            blocked_task_ids[0] if blocked_task_ids else "unknown",
            {"blocked_count": len(blocked_task_ids), "blocked_task_ids": blocked_task_ids},
            code="DEADLOCK",
        )
        self.blocked_task_ids = list(blocked_task_ids)


def is_retryable_error(error: BaseException) -> bool:
    """True for failures worth another attempt on the same task."""
    if isinstance(error, (NoConfidentAgentError, HandoffCycleLimitError, DeadlockError)):
        return False
    if isinstance(error, (ConfigurationError, ExecutionLoopError, TaskNotFoundError)):
        return False
    return True


def format_error(error: BaseException) -> str:
    if isinstance(error, MaestroError):
        return f"[{error.code}] {error.message}"
    return str(error)
