"""
Recovery engine: single owner of the agent registry and the case collection.

Every public operation runs under one re-entrant engine lock, so an allocation
(availability read + reservation + case update) is one atomic unit and no
agent can be double-booked past capacity. All work is in-memory; nothing here
blocks on I/O or retries on its own. Returned cases and agents are snapshots.
"""

import logging
import threading
from datetime import datetime
from typing import Callable, Optional

import numpy as np

from dca_engine.classifier import NoiseSource, classify, default_noise_source
from dca_engine.errors import AgentNotFound
from dca_engine.models import (
    Agent,
    AgentPerformance,
    AllocationMode,
    AllocationResult,
    AuditEntry,
    Case,
    CaseAttributes,
    CaseStatus,
    DocumentType,
    IngestResult,
    InteractionResult,
    InteractionType,
    NoCapacity,
    PortfolioMetrics,
    ResolutionType,
    RiskTier,
    SLAStatus,
)
from dca_engine.services import allocation_engine, case_lifecycle, sla_scheduler
from dca_engine.services.agent_registry import AgentRegistry, dangling_reference, default_registry
from dca_engine.services.case_store import CaseIdGenerator, InMemoryCaseStore, PendingQueue

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


def local_now() -> datetime:
    """Timezone-aware wall-clock time in the host's local zone."""
    return datetime.now().astimezone()


class RecoveryEngine:
    """Allocation + SLA engine facade used by the HTTP shell and the background poller."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        noise: Optional[NoiseSource] = None,
        clock: Callable[[], datetime] = local_now,
        id_generator: Optional[CaseIdGenerator] = None,
        store: Optional[InMemoryCaseStore] = None,
    ):
        self.registry = registry if registry is not None else default_registry()
        self.noise = noise if noise is not None else default_noise_source()
        self.clock = clock
        self.ids = id_generator if id_generator is not None else CaseIdGenerator()
        self.store = store if store is not None else InMemoryCaseStore()
        self.pending = PendingQueue()
        self._lock = threading.RLock()

    # --- Intake and allocation ---

    def ingest(self, attrs: CaseAttributes, actor_id: str = SYSTEM_ACTOR) -> IngestResult:
        """Create a case, classify it and make exactly one allocation attempt."""
        with self._lock:
            now = self.clock()
            case = case_lifecycle.create_case(self.ids.next_id(), attrs, actor_id, now)
            self.store.add(case)

            tier, probability = classify(case.amount, case.age_days, self.noise)
            case_lifecycle.mark_prioritized(case, tier, probability, now)
            logger.info("PRIORITIZED: %s | %s | recovery %.4f", case.case_id, tier.value, probability)

            outcome = allocation_engine.allocate(case, self.registry, now)
            if isinstance(outcome, NoCapacity):
                self.pending.push(case.case_id, tier)
            return IngestResult(case=case.model_copy(deep=True), allocation=outcome)

    def allocate_pending(self) -> list[AllocationResult]:
        """
        Retry queued cases in priority order, one attempt each, stopping at the
        first NoCapacity. Cases that left PRIORITIZED meanwhile are dropped.
        """
        allocated: list[AllocationResult] = []
        with self._lock:
            while self.pending.size():
                case = self.store.get(self.pending.peek())
                if case.status != CaseStatus.PRIORITIZED:
                    self.pending.pop()
                    continue
                outcome = allocation_engine.allocate(case, self.registry, self.clock())
                if isinstance(outcome, NoCapacity):
                    break
                self.pending.pop()
                allocated.append(outcome)
        if allocated:
            logger.info("Allocated %d pending case(s); %d still queued.", len(allocated), self.pending.size())
        return allocated

    def list_pending(self) -> list[Case]:
        with self._lock:
            cases = [self.store.get(case_id) for case_id in self.pending.snapshot()]
            return [c.model_copy(deep=True) for c in cases if c.status == CaseStatus.PRIORITIZED]

    def manual_reallocate(self, case_id: str, target_agent_id: str, actor_id: str) -> Case:
        with self._lock:
            case = self.store.get(case_id)
            allocation_engine.manual_reallocate(case, target_agent_id, self.registry, actor_id, self.clock())
            self.pending.remove(case_id)
            return case.model_copy(deep=True)

    # --- Queries ---

    def get_case(self, case_id: str) -> Case:
        with self._lock:
            return self.store.get(case_id).model_copy(deep=True)

    def list_cases(self, agent_id: Optional[str] = None) -> list[Case]:
        """All cases, or only cases currently owned by agent_id."""
        with self._lock:
            return [c.model_copy(deep=True) for c in self.store.list(agent_id)]

    def get_audit_trail(self, case_id: str) -> list[AuditEntry]:
        with self._lock:
            return list(self.store.get(case_id).audit_trail)

    def get_agent(self, agent_id: str) -> Agent:
        return self.registry.get(agent_id)

    def list_agents(self) -> list[Agent]:
        return self.registry.list_agents()

    # --- Lifecycle events ---

    def log_interaction(
        self,
        case_id: str,
        interaction_type: InteractionType,
        details: str,
        result: InteractionResult,
        actor_agent_id: str,
    ) -> Case:
        with self._lock:
            case = self.store.get(case_id)
            case_lifecycle.record_interaction(
                case, interaction_type, details, result, actor_agent_id, actor_agent_id, self.clock()
            )
            return case.model_copy(deep=True)

    def log_document(
        self,
        case_id: str,
        file_name: str,
        doc_type: DocumentType,
        content: str,
        actor_id: str,
    ) -> Case:
        with self._lock:
            case = self.store.get(case_id)
            case_lifecycle.record_document(case, file_name, doc_type, content, actor_id, self.clock())
            return case.model_copy(deep=True)

    def escalate(self, case_id: str, reason: str, target_role: str, actor_id: str) -> Case:
        with self._lock:
            case = self.store.get(case_id)
            case_lifecycle.escalate(case, reason, target_role, actor_id, self.clock())
            self.pending.remove(case_id)
            logger.info("ESCALATED: %s -> %s (%s).", case_id, target_role, reason)
            return case.model_copy(deep=True)

    def resolve(
        self,
        case_id: str,
        resolution_type: ResolutionType,
        recovered_amount: float,
        notes: str,
        actor_id: str,
    ) -> Case:
        """Close the case; a positive recovery is credited to the allocated agent."""
        if recovered_amount < 0:
            raise ValueError("recovered_amount must be >= 0")
        with self._lock:
            case = self.store.get(case_id)
            case_lifecycle.require_transition(case, CaseStatus.RESOLVED, "resolve")
            agent_id = case.allocated_agent
            credit = agent_id is not None and recovered_amount > 0
            if credit and not self.registry.contains(agent_id):
                raise dangling_reference(case_id, agent_id)

            case_lifecycle.resolve(case, resolution_type, recovered_amount, notes, actor_id, self.clock())
            self.pending.remove(case_id)
            if credit:
                try:
                    self.registry.record_recovery(agent_id, recovered_amount)
                except AgentNotFound as exc:
                    raise dangling_reference(case_id, agent_id) from exc
            logger.info("RESOLVED: %s (%s, %.2f recovered).", case_id, resolution_type.value, recovered_amount)
            return case.model_copy(deep=True)

    # --- SLA ---

    def evaluate_sla(self, now: Optional[datetime] = None) -> list[SLAStatus]:
        """
        Breach status for every non-resolved allocated case. Idempotent per case.
        A naive now is read as host local time.
        """
        with self._lock:
            now = now if now is not None else self.clock()
            if now.tzinfo is None:
                now = now.astimezone()
            return sla_scheduler.evaluate_all(self.store.list(), now, self.registry)

    # --- Reporting ---

    def portfolio_metrics(self) -> PortfolioMetrics:
        """Prediction error and allocation outcome statistics over the case collection."""
        with self._lock:
            cases = self.store.list()
            resolved = [c for c in cases if c.status == CaseStatus.RESOLVED]

            mae = rmse = success_rate = 0.0
            if resolved:
                actual = np.array([1.0 if c.recovered_amount > 0 else 0.0 for c in resolved])
                predicted = np.array([c.recovery_probability or 0.0 for c in resolved])
                errors = predicted - actual
                mae = round(float(np.mean(np.abs(errors))), 4)
                rmse = round(float(np.sqrt(np.mean(errors ** 2))), 4)
                successes = sum(1 for c in resolved if c.recovered_amount > 0 and c.allocated_agent)
                success_rate = round(successes / len(resolved), 4)

            # Winning scores of closed cases only; manual overrides carry no score
            engine_scores = [
                c.allocation_score
                for c in resolved
                if c.allocation_mode == AllocationMode.ENGINE and c.allocation_score is not None
            ]
            avg_score = round(float(np.mean(engine_scores)), 6) if engine_scores else 0.0

            return PortfolioMetrics(
                total_cases=len(cases),
                resolved_cases=len(resolved),
                critical_cases=sum(1 for c in cases if c.tier == RiskTier.CRITICAL),
                breached_cases=sum(1 for c in cases if c.sla_breached),
                pending_cases=self.pending.size(),
                recovery_prediction_mae=mae,
                recovery_prediction_rmse=rmse,
                allocation_success_rate=success_rate,
                avg_allocation_score=avg_score,
                per_agent=[
                    AgentPerformance(
                        agent_id=a.agent_id,
                        display_name=a.display_name,
                        current_load=a.current_load,
                        sla_breaches=a.sla_breaches,
                        recovered_amount=a.recovered_amount,
                        historical_recovery_rate=a.historical_recovery_rate,
                    )
                    for a in self.registry.list_agents()
                ],
            )
