"""Confidence-based routing of tasks to idle agents.

Every idle candidate is asked for a self-assessed confidence score. The best
score above the threshold wins. If nobody clears the bar, one recovery pass
re-assesses the lowest-scoring idle candidate with a more permissive context
before giving up with NoConfidentAgentError.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..errors import ConfigurationError, NoConfidentAgentError
from .agent import Agent, AgentRole, AgentStatus, ConfidenceScore
from .config import ExecutionConfig
from .registry import AgentAssessment, AgentRegistry, assess_agent, sort_assessments
from .task import Task, TaskAttempt, TaskContext

logger = logging.getLogger(__name__)

# Sequential assessment stops at the first agent at least this confident
SHORT_CIRCUIT_CONFIDENCE = 0.9

RECOVERY_CONSTRAINTS = [
    "Partial solutions are acceptable",
    "Focus on core requirements first",
]


@dataclass
class RecoveryResult:
    attempted: bool
    success: bool
    agent: Optional[Agent] = None
    original_score: Optional[ConfidenceScore] = None
    enhanced_score: Optional[ConfidenceScore] = None


@dataclass
class RoutingDecision:
    selected_agent: Agent
    score: ConfidenceScore
    reason: str
    alternatives: List[AgentAssessment] = field(default_factory=list)
    recovery_attempt: Optional[RecoveryResult] = None


class ConfidenceRouter:
    """Selects an idle agent for a task by self-reported confidence."""

    def __init__(
        self,
        registry: AgentRegistry,
        confidence_threshold: float = 0.6,
        parallel_assessment: bool = True,
        recovery_enabled: bool = True,
    ):
        self.registry = registry
        self.parallel_assessment = parallel_assessment
        self.recovery_enabled = recovery_enabled
        self._threshold = 0.0
        self.set_threshold(confidence_threshold)

    @classmethod
    def from_config(cls, registry: AgentRegistry, config: ExecutionConfig) -> "ConfidenceRouter":
        return cls(
            registry,
            confidence_threshold=config.confidence_threshold,
            parallel_assessment=config.parallel_assessment,
            recovery_enabled=config.router_recovery_enabled,
        )

    def set_threshold(self, threshold: float) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ConfigurationError(
                "Confidence threshold must be between 0 and 1",
                {"threshold": threshold},
            )
        self._threshold = threshold

    def get_threshold(self) -> float:
        return self._threshold

    async def route(
        self,
        task: Task,
        context: TaskContext,
        exclude_roles: Iterable[AgentRole] = (),
    ) -> RoutingDecision:
        excluded = {AgentRole(r) for r in exclude_roles}
        candidates = [
            agent for agent in self.registry.get_all()
            if agent.role not in excluded and agent.get_status() == AgentStatus.IDLE
        ]
        if not candidates:
            raise NoConfidentAgentError(task.id, [], self._threshold)

        if self.parallel_assessment:
            assessments = await self._assess_parallel(candidates, task, context)
        else:
            assessments = await self._assess_sequential(candidates, task, context)
        assessments = sort_assessments(assessments)

        best = assessments[0]
        if best.confidence >= self._threshold:
            logger.debug(f"Routed task {task.id} to {best.agent.id} ({best.confidence:.2f})")
            return RoutingDecision(
                selected_agent=best.agent,
                score=best.score,
                reason=self._build_routing_reason(best, assessments),
                alternatives=assessments[1:],
            )

        if self.recovery_enabled:
            recovery = await self._attempt_recovery(task, context, assessments)
            if recovery.success and recovery.agent is not None and recovery.enhanced_score is not None:
                logger.info(
                    f"Routing recovery for task {task.id}: {recovery.agent.id} improved from "
                    f"{recovery.original_score.confidence:.2f} to {recovery.enhanced_score.confidence:.2f}"
                )
                return RoutingDecision(
                    selected_agent=recovery.agent,
                    score=recovery.enhanced_score,
                    reason=(
                        f"Recovery successful: {recovery.agent.role.value} improved from "
                        f"{recovery.original_score.confidence:.2f} to {recovery.enhanced_score.confidence:.2f}"
                    ),
                    alternatives=[a for a in assessments if a.agent is not recovery.agent],
                    recovery_attempt=recovery,
                )

        raise NoConfidentAgentError(
            task.id,
            [(a.agent.id, a.confidence) for a in assessments],
            self._threshold,
            recovery_attempted=self.recovery_enabled,
        )

    async def route_with_preference(
        self,
        task: Task,
        context: TaskContext,
        preferred_role: AgentRole,
    ) -> RoutingDecision:
        """Try idle agents of preferred_role first, then fall back to route()."""
        preferred_role = AgentRole(preferred_role)
        idle_preferred = [
            a for a in self.registry.get_by_role(preferred_role)
            if a.get_status() == AgentStatus.IDLE
        ]
        if idle_preferred:
            assessments = sort_assessments(await self._assess_parallel(idle_preferred, task, context))
            best = assessments[0]
            if best.confidence >= self._threshold:
                return RoutingDecision(
                    selected_agent=best.agent,
                    score=best.score,
                    reason=(
                        f"Preferred role '{preferred_role.value}' agent selected "
                        f"with confidence {best.confidence:.2f}"
                    ),
                    alternatives=assessments[1:],
                )

        return await self.route(task, context)

    async def assess_for_role(
        self,
        task: Task,
        context: TaskContext,
        role: AgentRole,
    ) -> List[AgentAssessment]:
        return await self._assess_parallel(self.registry.get_by_role(role), task, context)

    async def _assess_parallel(
        self, agents: List[Agent], task: Task, context: TaskContext
    ) -> List[AgentAssessment]:
        return list(await asyncio.gather(*(assess_agent(a, task, context) for a in agents)))

    async def _assess_sequential(
        self, agents: List[Agent], task: Task, context: TaskContext
    ) -> List[AgentAssessment]:
        results = []
        for agent in agents:
            assessment = await assess_agent(agent, task, context)
            results.append(assessment)
            if assessment.confidence >= SHORT_CIRCUIT_CONFIDENCE:
                break
        return results

    def _build_routing_reason(self, selected: AgentAssessment, assessments: List[AgentAssessment]) -> str:
        others = [a for a in assessments if a.agent is not selected.agent][:2]
        alternatives = ", ".join(f"{a.agent.role.value}:{a.confidence:.2f}" for a in others)
        alt_text = f" (alternatives: {alternatives})" if alternatives else ""
        return (
            f"Selected {selected.agent.role.value} with confidence {selected.confidence:.2f}"
            f"{alt_text}. Reason: {selected.score.reason}"
        )

    async def _attempt_recovery(
        self,
        task: Task,
        context: TaskContext,
        assessments: List[AgentAssessment],
    ) -> RecoveryResult:
        candidate = self._select_recovery_candidate(assessments)
        if candidate is None:
            return RecoveryResult(attempted=False, success=False)

        enhanced_context = self._enhance_context(context, candidate.agent)
        try:
            enhanced_score = await candidate.agent.assess_task(task, enhanced_context)
        except Exception as e:
            logger.warning(f"Recovery assessment by {candidate.agent.id} failed: {e}")
            return RecoveryResult(attempted=True, success=False, agent=candidate.agent,
                                  original_score=candidate.score)

        return RecoveryResult(
            attempted=True,
            success=enhanced_score.confidence >= self._threshold,
            agent=candidate.agent,
            original_score=candidate.score,
            enhanced_score=enhanced_score,
        )

    @staticmethod
    def _select_recovery_candidate(assessments: List[AgentAssessment]) -> Optional[AgentAssessment]:
        """Lowest-confidence idle candidate: the one with the most room to improve."""
        idle = [a for a in assessments if a.agent.get_status() == AgentStatus.IDLE]
        return idle[-1] if idle else None

    @staticmethod
    def _enhance_context(context: TaskContext, agent: Agent) -> TaskContext:
        capabilities = ", ".join(c.value for c in agent.capabilities) or "none listed"
        hints = "\n".join([
            "RECOVERY HINT: You are being asked to reconsider this task.",
            f"Your capabilities ({capabilities}) are relevant here.",
            "Focus on what you CAN do. A partial solution is better than no solution.",
            "Consider: Can you handle just the core requirement?",
        ])
        project = context.project_context.model_copy(update={
            "constraints": [*context.project_context.constraints, *RECOVERY_CONSTRAINTS],
        })
        hint_attempt = TaskAttempt(
            agent_id="system",
            agent_role=agent.role.value,
            success=False,
            output=hints,
        )
        return context.model_copy(update={
            "project_context": project,
            "execution_history": [*context.execution_history, hint_attempt],
        })
