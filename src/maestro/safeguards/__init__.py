"""Runtime safeguards: stuck detection, handoff cycles, retry budget."""

from .retry_handler import RetryHandler
from .watchdog import ActivityWatchdog, AbortHandle, AgentActivityState, WatchdogEvent

__all__ = [
    "AbortHandle",
    "ActivityWatchdog",
    "AgentActivityState",
    "RetryHandler",
    "WatchdogEvent",
]
