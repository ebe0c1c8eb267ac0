"""Task model: status state machine, attempt log, and failure metadata."""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer


class TaskStatus(str, Enum):
    """Task status values.

    pending -> assigned -> in_progress -> {reviewing, completed, failed, pending}
    reviewing -> {completed, failed}. "blocked" is derived by the queue, never stored.
    """
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REVIEWING = "reviewing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER = {
    TaskPriority.CRITICAL: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class FailureReason(str, Enum):
    """Why a task ended up failed."""
    NO_CONFIDENT_AGENT = "no_confident_agent"
    HANDOFF_LIMIT = "handoff_limit"
    TIMEOUT = "timeout"
    AGENT_STUCK = "agent_stuck"
    EXECUTION_ERROR = "execution_error"
    DEPENDENCY_FAILED = "dependency_failed"  # Set only by cascading failure


class ArtifactType(str, Enum):
    CODE = "code"
    DESIGN = "design"
    PLAN = "plan"
    REVIEW = "review"
    DOCUMENTATION = "documentation"
    TEST = "test"
    CONFIG = "config"


class Artifact(BaseModel):
    """A piece of work product attached to a response or attempt."""

    id: str
    type: ArtifactType
    name: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class TaskAttempt(BaseModel):
    """Record of a single execution try."""

    agent_id: str
    agent_role: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: Optional[datetime] = None
    success: bool = False
    output: Optional[str] = None
    error: Optional[str] = None
    artifacts: List[Artifact] = Field(default_factory=list)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000


class FailureInfo(BaseModel):
    """Machine-readable record attached to every terminally failed task."""

    reason: FailureReason
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    replan_attempted: bool = False
    failed_dependency: Optional[str] = None  # Root failure id for cascaded tasks


class HandoffPayload(BaseModel):
    """Context handed from one agent to the next."""

    task: str
    context: str = ""
    constraints: List[str] = Field(default_factory=list)
    artifacts: List[str] = Field(default_factory=list)
    previous_attempts: List[TaskAttempt] = Field(default_factory=list)


class Task(BaseModel):
    """A schedulable unit of work."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    goal: str
    description: str
    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    assigned_to: Optional[str] = None  # Agent role
    handoff: HandoffPayload
    attempts: List[TaskAttempt] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    completed_at: Optional[datetime] = None
    failure_info: Optional[FailureInfo] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_serializer("created_at", "updated_at", "completed_at")
    def serialize_datetime(self, v: Optional[datetime]) -> Optional[str]:
        return v.isoformat() if v else None

    @property
    def priority_rank(self) -> int:
        return PRIORITY_ORDER[self.priority]

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_attempt(self) -> Optional[TaskAttempt]:
        return self.attempts[-1] if self.attempts else None

    @property
    def successful_attempts(self) -> List[TaskAttempt]:
        return [a for a in self.attempts if a.success]

    @property
    def failed_attempts(self) -> List[TaskAttempt]:
        return [a for a in self.attempts if not a.success]

    @property
    def duration_ms(self) -> Optional[float]:
        """Wall time from creation to terminal status."""
        if not self.completed_at:
            return None
        return (self.completed_at - self.created_at).total_seconds() * 1000

    def touch(self) -> None:
        self.updated_at = datetime.now(UTC)

    def update_status(self, status: TaskStatus) -> None:
        """Set status; terminal statuses also stamp completed_at."""
        self.status = status
        self.touch()
        if status in TERMINAL_STATUSES:
            self.completed_at = self.updated_at

    def add_attempt(self, agent_id: str, agent_role: str) -> TaskAttempt:
        """Append a new, open attempt record."""
        attempt = TaskAttempt(agent_id=agent_id, agent_role=agent_role)
        self.attempts.append(attempt)
        self.touch()
        return attempt

    def complete_attempt(
        self,
        success: bool,
        output: Optional[str] = None,
        error: Optional[str] = None,
        artifacts: Optional[List[Artifact]] = None,
    ) -> bool:
        """Complete the most recent attempt in place.

        Returns False when there is no open attempt (e.g. routing failed before
        an attempt was recorded); already-completed attempts are left as-is.
        """
        attempt = self.last_attempt
        if attempt is None or attempt.completed_at is not None:
            return False
        attempt.completed_at = datetime.now(UTC)
        attempt.success = success
        attempt.output = output
        attempt.error = error
        if artifacts:
            attempt.artifacts = list(artifacts)
        self.touch()
        return True

    def can_start(self, satisfied_ids: "set[str] | frozenset[str]") -> bool:
        if self.status != TaskStatus.PENDING:
            return False
        return all(dep in satisfied_ids for dep in self.dependencies)


class TaskResult(BaseModel):
    """Outcome of a completed task, collected by the execution loop."""

    task_id: str
    success: bool
    output: str
    artifacts: List[Artifact] = Field(default_factory=list)
    duration_ms: float = 0.0
    agent_role: str


class ProjectContext(BaseModel):
    name: str
    description: str = ""
    working_directory: str = "."
    constraints: List[str] = Field(default_factory=list)
    preferences: dict[str, Any] = Field(default_factory=dict)


class TaskContext(BaseModel):
    """Everything an agent sees alongside the task itself."""

    parent_task: Optional[Task] = None
    related_tasks: List[Task] = Field(default_factory=list)
    project_context: ProjectContext
    execution_history: List[TaskAttempt] = Field(default_factory=list)


def generate_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


def create_task(
    goal: str,
    description: Optional[str] = None,
    priority: TaskPriority = TaskPriority.MEDIUM,
    dependencies: Iterable[str] = (),
    handoff: Optional[dict[str, Any]] = None,
    metadata: Optional[dict[str, Any]] = None,
    task_id: Optional[str] = None,
) -> Task:
    """Build a pending task with a fresh id."""
    handoff = handoff or {}
    return Task(
        id=task_id or generate_task_id(),
        goal=goal,
        description=description or goal,
        priority=priority,
        handoff=HandoffPayload(
            task=goal,
            context=handoff.get("context", ""),
            constraints=list(handoff.get("constraints", [])),
            artifacts=list(handoff.get("artifacts", [])),
        ),
        dependencies=list(dependencies),
        metadata=dict(metadata or {}),
    )
