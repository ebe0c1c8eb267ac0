"""Activity watchdog: stuck-agent and handoff-cycle detection.

Two independent failure modes are watched:

- Stuck agents: every (agent, task) pair being executed reports activity.
  A periodic check compares the time since the last report against the
  activity timeout (or the longer LLM grace period while a request is in
  flight). A pair that goes quiet for too long gets an ``agent_stuck``
  event, its abort handle is fired, and its tracking is dropped.
- Handoff cycles: each agent-to-agent handoff of a task is recorded. Every
  repeat of an exact (from, to) transition counts as one cycle.

The watchdog never calls into agents; the execution loop observes the abort
handle and abandons the call.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from ..core.activity import ActivityEvent, ActivityType
from ..core.config import WatchdogConfig
from ..core.events import EventEmitter
from ..utils.error_handling import ErrorContext

logger = logging.getLogger(__name__)

WARNING_RATIO = 0.8


class WatchdogEvent(str, Enum):
    AGENT_STUCK = "agent_stuck"
    HANDOFF_CYCLE_WARNING = "handoff_cycle_warning"
    HANDOFF_CYCLE_EXCEEDED = "handoff_cycle_exceeded"


class AbortHandle:
    """One-shot cancellation signal for a single (agent, task) execution."""

    def __init__(self, agent_id: str, task_id: str):
        self.agent_id = agent_id
        self.task_id = task_id
        self.elapsed_ms: Optional[float] = None
        self._event = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, elapsed_ms: Optional[float] = None) -> None:
        if self._event.is_set():
            return
        self.elapsed_ms = elapsed_ms
        self._event.set()

    async def wait(self) -> Optional[float]:
        """Block until aborted; returns the elapsed silence that triggered it."""
        await self._event.wait()
        return self.elapsed_ms


@dataclass
class AgentActivityState:
    agent_id: str
    task_id: str
    last_activity: float  # time.monotonic()
    last_activity_type: Optional[ActivityType] = None
    in_llm_request: bool = False
    abort_handle: Optional[AbortHandle] = None


@dataclass
class HandoffRecord:
    from_role: str
    to_role: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class TaskHandoffState:
    history: List[HandoffRecord] = field(default_factory=list)
    seen_transitions: Set[str] = field(default_factory=set)
    cycle_count: int = 0


class ActivityWatchdog(EventEmitter):
    """Timer-driven monitor for agent activity and handoff oscillation."""

    def __init__(self, config: Optional[WatchdogConfig] = None):
        super().__init__()
        self.config = config or WatchdogConfig()
        self._agent_states: Dict[Tuple[str, str], AgentActivityState] = {}
        self._task_handoffs: Dict[str, TaskHandoffState] = {}
        self._check_task: Optional[asyncio.Task] = None
        self._running = False

    # -- lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Start the periodic check. Must be called from a running event loop."""
        if not self.config.enabled or self._running:
            return
        self._running = True
        self._check_task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(
            f"Watchdog started (timeout {self.config.activity_timeout_ms}ms, "
            f"interval {self.config.check_interval_ms}ms)"
        )

    def stop(self) -> None:
        """Cancel the periodic check and drop all tracking state."""
        self._running = False
        if self._check_task is not None:
            self._check_task.cancel()
            self._check_task = None
        self._agent_states.clear()
        self._task_handoffs.clear()

    def is_running(self) -> bool:
        return self._running

    async def _run(self) -> None:
        interval = self.config.check_interval_ms / 1000
        while self._running:
            await asyncio.sleep(interval)
            with ErrorContext("watchdog stuck check", raise_on_error=False, logger_instance=logger):
                self.check_for_stuck_agents()

    # -- activity tracking ---------------------------------------------------

    @property
    def tracked_agents(self) -> int:
        return len(self._agent_states)

    def record_activity(self, event: ActivityEvent, now: Optional[float] = None) -> None:
        if not self.config.enabled:
            return

        now = time.monotonic() if now is None else now
        key = (event.agent_id, event.task_id)
        state = self._agent_states.get(key)
        if state is None:
            state = AgentActivityState(agent_id=event.agent_id, task_id=event.task_id, last_activity=now)
            self._agent_states[key] = state

        state.last_activity = now
        state.last_activity_type = ActivityType(event.type)
        if state.last_activity_type == ActivityType.LLM_REQUEST_START:
            state.in_llm_request = True
        elif state.last_activity_type == ActivityType.LLM_RESPONSE_RECEIVED:
            state.in_llm_request = False

    def create_abort_handle(self, agent_id: str, task_id: str) -> AbortHandle:
        """Return the pair's abort handle, creating it (and tracking) on first use."""
        key = (agent_id, task_id)
        state = self._agent_states.get(key)
        if state is None:
            state = AgentActivityState(agent_id=agent_id, task_id=task_id, last_activity=time.monotonic())
            self._agent_states[key] = state
        if state.abort_handle is None:
            state.abort_handle = AbortHandle(agent_id, task_id)
        return state.abort_handle

    def get_abort_handle(self, agent_id: str, task_id: str) -> Optional[AbortHandle]:
        state = self._agent_states.get((agent_id, task_id))
        return state.abort_handle if state else None

    def clear_agent(self, agent_id: str, task_id: str) -> None:
        """Stop tracking a pair without firing its abort handle."""
        self._agent_states.pop((agent_id, task_id), None)

    def _effective_timeout_ms(self, state: AgentActivityState) -> int:
        if self.config.grace_periods_enabled and state.in_llm_request:
            return self.config.llm_request_grace_period_ms
        return self.config.activity_timeout_ms

    def check_for_stuck_agents(self, now: Optional[float] = None) -> List[AgentActivityState]:
        """Run one detection pass. Returns the pairs found stuck (and dropped)."""
        if not self.config.enabled:
            return []

        now = time.monotonic() if now is None else now
        stuck = []
        for key, state in list(self._agent_states.items()):
            elapsed_ms = (now - state.last_activity) * 1000
            if elapsed_ms <= self._effective_timeout_ms(state):
                continue

            logger.warning(
                f"Agent {state.agent_id} stuck on task {state.task_id}: "
                f"no activity for {elapsed_ms:.0f}ms"
            )
            self._agent_states.pop(key, None)
            stuck.append(state)
            self.emit(WatchdogEvent.AGENT_STUCK, state.agent_id, state.task_id, elapsed_ms)
            if state.abort_handle is not None:
                state.abort_handle.abort(elapsed_ms)
        return stuck

    # -- handoff cycles ------------------------------------------------------

    @property
    def warning_threshold(self) -> int:
        return math.floor(self.config.max_handoff_cycles * WARNING_RATIO)

    def record_handoff(self, task_id: str, from_role: str, to_role: str) -> int:
        """Append a transition and return the task's updated cycle count."""
        if not self.config.enabled:
            return 0

        state = self._task_handoffs.setdefault(task_id, TaskHandoffState())
        state.history.append(HandoffRecord(from_role=from_role, to_role=to_role))

        previous = state.cycle_count
        transition = f"{from_role}->{to_role}"
        if transition in state.seen_transitions:
            state.cycle_count += 1
        state.seen_transitions.add(transition)

        max_cycles = self.config.max_handoff_cycles
        threshold = self.warning_threshold
        if threshold > 0 and previous < threshold <= state.cycle_count:
            logger.warning(f"Task {task_id} nearing handoff limit ({state.cycle_count}/{max_cycles})")
            self.emit(WatchdogEvent.HANDOFF_CYCLE_WARNING, task_id, state.cycle_count, max_cycles)

        if state.cycle_count >= max_cycles:
            self.emit(WatchdogEvent.HANDOFF_CYCLE_EXCEEDED, task_id, state.cycle_count)

        return state.cycle_count

    def is_handoff_limit_exceeded(self, task_id: str) -> bool:
        state = self._task_handoffs.get(task_id)
        return state is not None and state.cycle_count >= self.config.max_handoff_cycles

    def get_handoff_history(self, task_id: str) -> List[Tuple[str, str]]:
        state = self._task_handoffs.get(task_id)
        if state is None:
            return []
        return [(record.from_role, record.to_role) for record in state.history]

    def get_handoff_cycle_count(self, task_id: str) -> int:
        state = self._task_handoffs.get(task_id)
        return state.cycle_count if state else 0

    def clear_task(self, task_id: str) -> None:
        self._task_handoffs.pop(task_id, None)
