"""Agent boundary: roles, confidence scores, responses, and the abstract base."""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, Field

from ..errors import ExecutionError, MaestroError
from .activity import ActivityCallback, ActivityEvent, ActivityType
from .task import Artifact, ArtifactType, Task, TaskContext

logger = logging.getLogger(__name__)


class AgentRole(str, Enum):
    ORCHESTRATOR = "orchestrator"
    ARCHITECT = "architect"
    IMPLEMENTER = "implementer"
    REVIEWER = "reviewer"
    DEVOPS = "devops"


class AgentCapability(str, Enum):
    PLANNING = "planning"
    DESIGN = "design"
    CODING = "coding"
    TESTING = "testing"
    REVIEW = "review"
    DEPLOYMENT = "deployment"
    DOCUMENTATION = "documentation"


class AgentStatus(str, Enum):
    """Status gate: an agent only accepts work while idle."""
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"


class ConfidenceScore(BaseModel):
    """An agent's self-reported fitness for a task."""
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str = ""


class CompleteAction(BaseModel):
    type: Literal["complete"] = "complete"
    reason: str = ""


class HandoffAction(BaseModel):
    type: Literal["handoff"] = "handoff"
    target_role: AgentRole
    reason: str = ""


class RetryAction(BaseModel):
    type: Literal["retry"] = "retry"
    reason: str = ""


class EscalateAction(BaseModel):
    type: Literal["escalate"] = "escalate"
    reason: str = ""


class ContinueAction(BaseModel):
    type: Literal["continue"] = "continue"
    reason: str = ""


NextAction = Annotated[
    Union[CompleteAction, HandoffAction, RetryAction, EscalateAction, ContinueAction],
    Field(discriminator="type"),
]


class AgentResponse(BaseModel):
    """What an agent returns from a single execution."""
    success: bool
    output: str = ""
    artifacts: List[Artifact] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    next_action: Optional[NextAction] = None


class Agent(ABC):
    """
    Base class for every worker the orchestrator can route to.

    Subclasses implement assess_task() and perform(). execute() owns the
    status gate, so a second concurrent execute() fails fast instead of
    running two tasks on one agent.
    """

    def __init__(
        self,
        agent_id: str,
        role: AgentRole,
        capabilities: Sequence[AgentCapability] = (),
    ):
        self.id = agent_id
        self.role = AgentRole(role)
        self.capabilities: List[AgentCapability] = list(capabilities)
        self.status = AgentStatus.IDLE
        self.current_task_id: Optional[str] = None
        self._activity_callback: Optional[ActivityCallback] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r}, role={self.role.value!r}, status={self.status.value!r})"

    def get_status(self) -> AgentStatus:
        return self.status

    @property
    def is_idle(self) -> bool:
        return self.status == AgentStatus.IDLE

    def set_activity_callback(self, callback: ActivityCallback) -> None:
        self._activity_callback = callback

    def clear_activity_callback(self) -> None:
        self._activity_callback = None

    def report_activity(self, activity_type: ActivityType, metadata: Optional[Dict[str, Any]] = None) -> None:
        """Forward a progress signal; ignored when no task is executing."""
        if self._activity_callback is None or self.current_task_id is None:
            return
        self._activity_callback(ActivityEvent(
            type=activity_type,
            agent_id=self.id,
            task_id=self.current_task_id,
            metadata=metadata or {},
        ))

    @abstractmethod
    async def assess_task(self, task: Task, context: TaskContext) -> ConfidenceScore:
        """Estimate how well this agent can handle the task. Must not mutate anything."""

    @abstractmethod
    async def perform(self, task: Task, context: TaskContext) -> AgentResponse:
        """Do the actual work for a task."""

    async def execute(self, task: Task, context: TaskContext) -> AgentResponse:
        if self.status == AgentStatus.BUSY:
            raise ExecutionError(
                f"Agent {self.id} is busy with task {self.current_task_id}",
                self.id,
                self.role.value,
                {"task_id": task.id, "current_task_id": self.current_task_id},
            )

        self.status = AgentStatus.BUSY
        self.current_task_id = task.id
        try:
            return await self.perform(task, context)
        except MaestroError:
            raise
        except Exception as e:
            raise ExecutionError(
                f"Agent {self.id} failed on task {task.id}: {e}",
                self.id,
                self.role.value,
                {"task_id": task.id},
            ) from e
        finally:
            self.status = AgentStatus.IDLE
            self.current_task_id = None


__all__ = [
    "Agent",
    "AgentCapability",
    "AgentResponse",
    "AgentRole",
    "AgentStatus",
    "Artifact",
    "ArtifactType",
    "CompleteAction",
    "ConfidenceScore",
    "ContinueAction",
    "EscalateAction",
    "HandoffAction",
    "NextAction",
    "RetryAction",
]
