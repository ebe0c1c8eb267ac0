"""Exception taxonomy for the orchestration core."""

from .exceptions import (
    AgentStuckError,
    ConfigurationError,
    DeadlockError,
    ExecutionError,
    ExecutionLoopError,
    HandoffCycleLimitError,
    MaestroError,
    NoConfidentAgentError,
    TaskError,
    TaskNotFoundError,
    TaskTimeoutError,
    format_error,
    is_retryable_error,
)

__all__ = [
    "AgentStuckError",
    "ConfigurationError",
    "DeadlockError",
    "ExecutionError",
    "ExecutionLoopError",
    "HandoffCycleLimitError",
    "MaestroError",
    "NoConfidentAgentError",
    "TaskError",
    "TaskNotFoundError",
    "TaskTimeoutError",
    "format_error",
    "is_retryable_error",
]
