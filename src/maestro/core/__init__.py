"""Core models and configuration."""

from .agent import (
    Agent,
    AgentCapability,
    AgentResponse,
    AgentRole,
    AgentStatus,
    ConfidenceScore,
)
from .config import ExecutionConfig, MaestroConfig, load_config
from .task import Task, TaskPriority, TaskStatus, create_task

__all__ = [
    "Agent",
    "AgentCapability",
    "AgentResponse",
    "AgentRole",
    "AgentStatus",
    "ConfidenceScore",
    "ExecutionConfig",
    "MaestroConfig",
    "load_config",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "create_task",
]
