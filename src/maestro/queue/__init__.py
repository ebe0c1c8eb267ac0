"""Task queue."""

from .task_queue import QueueEvent, QueueStats, TaskQueue

__all__ = ["QueueEvent", "QueueStats", "TaskQueue"]
