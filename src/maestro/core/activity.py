"""Activity reports emitted by agents while they work on a task."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Callable, Dict

from pydantic import BaseModel, Field


class ActivityType(str, Enum):
    """Kinds of progress an agent can report."""
    LLM_REQUEST_START = "llm_request_start"
    LLM_RESPONSE_RECEIVED = "llm_response_received"
    TOOL_EXECUTION_START = "tool_execution_start"
    TOOL_EXECUTION_COMPLETE = "tool_execution_complete"


class ActivityEvent(BaseModel):
    """A single progress signal from an agent."""
    type: ActivityType
    agent_id: str
    task_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    metadata: Dict[str, Any] = Field(default_factory=dict)


ActivityCallback = Callable[[ActivityEvent], None]
