"""Synchronous publish/subscribe used by the queue, watchdog and loop."""

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List

from ..utils.error_handling import log_and_ignore

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


def _event_key(event: str) -> str:
    return event.value if isinstance(event, Enum) else event


class EventEmitter:
    """
    Explicit per-event listener lists.

    emit() calls every listener registered for the event, in registration
    order, before returning. A listener that raises is logged and skipped so
    one bad observer cannot break scheduling.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unregisters it."""
        self._listeners[_event_key(event)].append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(_event_key(event))
        if listeners and listener in listeners:
            listeners.remove(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(_event_key(event), ()))

    def emit(self, event: str, *args: Any) -> bool:
        """Notify listeners; returns True if any were registered."""
        listeners = list(self._listeners.get(_event_key(event), ()))
        for listener in listeners:
            try:
                listener(*args)
            except Exception as e:
                log_and_ignore(e, f"Listener for '{_event_key(event)}' raised", logger_instance=logger)
        return bool(listeners)


class LoopEvent(str, Enum):
    """Notifications published by the execution loop."""
    LOOP_STARTED = "loop_started"
    LOOP_COMPLETED = "loop_completed"
    LOOP_ERROR = "loop_error"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_RETRYING = "task_retrying"
    TASK_ROUTED = "task_routed"
    AGENT_STUCK = "agent_stuck"
    HANDOFF_CYCLE_WARNING = "handoff_cycle_warning"
    TASK_REPLAN_STARTED = "task_replan_started"
    TASK_REPLANNED = "task_replanned"
    TASK_REPLAN_FAILED = "task_replan_failed"
    TASK_CASCADE_FAILED = "task_cascade_failed"
