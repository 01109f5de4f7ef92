"""
Agent registry: stateful store of DCAs with capacity, load and performance stats.

AgentRegistry is the storage-agnostic interface the engine talks to;
InMemoryAgentRegistry is the in-process implementation. Every mutation of an
agent's (current_load, case_ids) pair happens under the registry lock.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Iterable

from dca_engine.errors import AgentNotFound, CapacityExceeded, DataIntegrityError
from dca_engine.models import Agent

logger = logging.getLogger(__name__)


class AgentRegistry(ABC):
    """Get/reserve/release operations over the agent pool."""

    @abstractmethod
    def get(self, agent_id: str) -> Agent:
        """Snapshot of one agent. Raises AgentNotFound."""

    @abstractmethod
    def list_agents(self) -> list[Agent]:
        """Snapshots of every agent, ordered by agent_id."""

    @abstractmethod
    def list_available(self) -> list[Agent]:
        """Snapshots of agents with current_load < capacity, ordered by agent_id."""

    @abstractmethod
    def reserve(self, agent_id: str, case_id: str) -> Agent:
        """Increment load and record case_id. Raises CapacityExceeded if full."""

    @abstractmethod
    def release(self, agent_id: str, case_id: str) -> Agent:
        """Decrement load and forget case_id."""

    @abstractmethod
    def record_breach(self, agent_id: str) -> Agent:
        """Increment the agent's SLA breach counter."""

    @abstractmethod
    def record_recovery(self, agent_id: str, amount: float) -> Agent:
        """Add amount to the agent's cumulative recovered amount."""

    def contains(self, agent_id: str) -> bool:
        try:
            self.get(agent_id)
        except AgentNotFound:
            return False
        return True


class InMemoryAgentRegistry(AgentRegistry):
    """Dict-backed registry. Returned agents are copies; callers never hold live records."""

    def __init__(self, agents: Iterable[Agent] = ()):
        self._agents: dict[str, Agent] = {}
        self._lock = threading.Lock()
        for agent in agents:
            self.register(agent)

    def register(self, agent: Agent) -> None:
        """Upsert an agent (startup provisioning). Load is derived from its case list."""
        record = agent.model_copy(deep=True)
        record.current_load = len(record.case_ids)
        if record.current_load > record.capacity:
            raise CapacityExceeded(record.agent_id, record.capacity)
        with self._lock:
            self._agents[record.agent_id] = record
        logger.info(
            "Agent %s registered (capacity=%d, region=%s, specialization=%s).",
            record.agent_id, record.capacity, record.region, ",".join(record.specialization),
        )

    def _require(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def get(self, agent_id: str) -> Agent:
        with self._lock:
            return self._require(agent_id).model_copy(deep=True)

    def list_agents(self) -> list[Agent]:
        with self._lock:
            return [self._agents[aid].model_copy(deep=True) for aid in sorted(self._agents)]

    def list_available(self) -> list[Agent]:
        with self._lock:
            return [
                self._agents[aid].model_copy(deep=True)
                for aid in sorted(self._agents)
                if self._agents[aid].current_load < self._agents[aid].capacity
            ]

    def reserve(self, agent_id: str, case_id: str) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            if agent.current_load + 1 > agent.capacity:
                raise CapacityExceeded(agent_id, agent.capacity)
            agent.case_ids.append(case_id)
            agent.current_load = len(agent.case_ids)
            logger.info("Reserved %s on agent %s (load %d/%d).",
                        case_id, agent_id, agent.current_load, agent.capacity)
            return agent.model_copy(deep=True)

    def release(self, agent_id: str, case_id: str) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            if case_id in agent.case_ids:
                agent.case_ids.remove(case_id)
                agent.current_load = len(agent.case_ids)
                logger.info("Released %s from agent %s (load %d/%d).",
                            case_id, agent_id, agent.current_load, agent.capacity)
            else:
                logger.warning("Release of %s from agent %s ignored: case not assigned there.",
                               case_id, agent_id)
            return agent.model_copy(deep=True)

    def record_breach(self, agent_id: str) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            agent.sla_breaches += 1
            return agent.model_copy(deep=True)

    def record_recovery(self, agent_id: str, amount: float) -> Agent:
        with self._lock:
            agent = self._require(agent_id)
            agent.recovered_amount += amount
            return agent.model_copy(deep=True)


def dangling_reference(case_id: str, agent_id: str) -> DataIntegrityError:
    """Log and build the error for a case pointing at an agent the registry does not hold."""
    logger.error("DATA INTEGRITY: case %s references unknown agent %s.", case_id, agent_id)
    return DataIntegrityError(f"Case {case_id} references unknown agent {agent_id}")


# Fixed DCA roster provisioned at startup
DEFAULT_AGENTS = [
    Agent(
        agent_id="DCA-001",
        display_name="John Smith",
        capacity=5,
        historical_recovery_rate=0.82,
        specialization=["High-Value", "Corporate"],
        region="North-East",
        compliance_score=0.95,
        sla_breaches=0,
        recovered_amount=450000,
        average_resolution_days=22,
    ),
    Agent(
        agent_id="DCA-002",
        display_name="Sarah Johnson",
        capacity=5,
        historical_recovery_rate=0.78,
        specialization=["Small-Medium", "Individuals"],
        region="South-West",
        compliance_score=0.88,
        sla_breaches=1,
        recovered_amount=320000,
        average_resolution_days=28,
    ),
    Agent(
        agent_id="DCA-003",
        display_name="Mike Davis",
        capacity=5,
        historical_recovery_rate=0.75,
        specialization=["Disputed", "Complex"],
        region="Central",
        compliance_score=0.92,
        sla_breaches=0,
        recovered_amount=280000,
        average_resolution_days=35,
    ),
    Agent(
        agent_id="DCA-004",
        display_name="Emma Wilson",
        capacity=5,
        historical_recovery_rate=0.80,
        specialization=["Collections", "Escalations"],
        region="West-Coast",
        compliance_score=0.90,
        sla_breaches=0,
        recovered_amount=410000,
        average_resolution_days=24,
    ),
]


def default_registry() -> InMemoryAgentRegistry:
    """Registry seeded with the default DCA roster."""
    registry = InMemoryAgentRegistry(DEFAULT_AGENTS)
    logger.info("Seeded %d default agents.", len(DEFAULT_AGENTS))
    return registry
