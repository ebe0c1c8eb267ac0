"""Agent registry: explicit, non-owning lookup of agents by id and role."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set

from ..errors import NoConfidentAgentError
from .agent import Agent, AgentRole, AgentStatus, ConfidenceScore
from .task import Task, TaskContext

logger = logging.getLogger(__name__)


@dataclass
class AgentAssessment:
    agent: Agent
    score: ConfidenceScore

    @property
    def confidence(self) -> float:
        return self.score.confidence


async def assess_agent(agent: Agent, task: Task, context: TaskContext) -> AgentAssessment:
    """Ask one agent for a score; a failing assessment becomes confidence 0."""
    try:
        score = await agent.assess_task(task, context)
    except Exception as e:
        logger.warning(f"Assessment by {agent.id} failed for task {task.id}: {e}")
        score = ConfidenceScore(confidence=0.0, reason=f"Assessment error: {e}")
    return AgentAssessment(agent=agent, score=score)


def sort_assessments(assessments: List[AgentAssessment]) -> List[AgentAssessment]:
    """Highest confidence first; ties keep registration order."""
    return sorted(assessments, key=lambda a: a.score.confidence, reverse=True)


class AgentRegistry:
    """Holds references to agents; does not manage their lifecycle."""

    def __init__(self):
        self._agents: Dict[str, Agent] = {}
        self._role_index: Dict[AgentRole, Set[str]] = {}

    def register(self, agent: Agent) -> None:
        if agent.id in self._agents:
            self.unregister(agent.id)
        self._agents[agent.id] = agent
        self._role_index.setdefault(agent.role, set()).add(agent.id)

    def unregister(self, agent_id: str) -> bool:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return False
        ids = self._role_index.get(agent.role)
        if ids is not None:
            ids.discard(agent_id)
            if not ids:
                del self._role_index[agent.role]
        return True

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def get_by_role(self, role: AgentRole) -> List[Agent]:
        ids = self._role_index.get(AgentRole(role), set())
        return [agent for agent in self._agents.values() if agent.id in ids]

    def get_all(self) -> List[Agent]:
        return list(self._agents.values())

    def get_all_roles(self) -> List[AgentRole]:
        return list(self._role_index.keys())

    def get_idle_agents(self) -> List[Agent]:
        return [a for a in self._agents.values() if a.get_status() == AgentStatus.IDLE]

    def get_busy_agents(self) -> List[Agent]:
        return [a for a in self._agents.values() if a.get_status() == AgentStatus.BUSY]

    def has_role(self, role: AgentRole) -> bool:
        return bool(self._role_index.get(AgentRole(role)))

    def count(self) -> int:
        return len(self._agents)

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def clear(self) -> None:
        self._agents.clear()
        self._role_index.clear()

    async def assess_all(
        self,
        task: Task,
        context: TaskContext,
        exclude_roles: Iterable[AgentRole] = (),
    ) -> List[AgentAssessment]:
        """Assess every registered agent regardless of status, sorted best first."""
        excluded = {AgentRole(r) for r in exclude_roles}
        agents = [a for a in self._agents.values() if a.role not in excluded]
        assessments = await asyncio.gather(*(assess_agent(a, task, context) for a in agents))
        return sort_assessments(list(assessments))

    async def select_best(
        self,
        task: Task,
        context: TaskContext,
        threshold: float,
        exclude_roles: Iterable[AgentRole] = (),
    ) -> Agent:
        assessments = await self.assess_all(task, context, exclude_roles)
        if not assessments or assessments[0].confidence < threshold:
            raise NoConfidentAgentError(
                task.id,
                [(a.agent.id, a.confidence) for a in assessments],
                threshold,
            )
        return assessments[0].agent


def create_registry(*agents: Agent) -> AgentRegistry:
    """Fresh registry pre-populated with the given agents."""
    registry = AgentRegistry()
    for agent in agents:
        registry.register(agent)
    return registry
