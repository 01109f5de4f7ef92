"""
Allocation engine: rank agents with spare capacity and assign the case to the best one.

For every agent with current_load < capacity:
  score       = w . [historical_rate, specialization_match, geo_match, -load_penalty, -compliance_risk]
  final_score = recovery_probability * score * priority_factor(tier)
with w = (0.30, 0.25, 0.20, 0.15, 0.10). The strictly greatest final_score wins;
exact ties go to the lowest agent_id.

Callers hold the engine lock across allocate(): reading availability and
reserving capacity must not interleave with another allocation.
"""

import logging
from datetime import datetime
from typing import Union

import numpy as np

from dca_engine.errors import AgentNotFound, CapacityExceeded, InvalidTransition
from dca_engine.models import (
    Agent,
    AllocationMode,
    AllocationResult,
    CandidateScore,
    Case,
    CaseStatus,
    NoCapacity,
)
from dca_engine.services import case_lifecycle, sla_scheduler
from dca_engine.services.agent_registry import AgentRegistry, dangling_reference
from dca_engine.services.allocation_utils import (
    compliance_risk,
    geo_match,
    load_penalty,
    priority_factor,
    specialization_match,
)

logger = logging.getLogger(__name__)

# Signed weights: penalties (load, compliance risk) subtract.
SCORE_WEIGHTS = np.array([0.30, 0.25, 0.20, -0.15, -0.10], dtype=np.float64)

SYSTEM_ACTOR = "SYSTEM"


def _feature_matrix(case: Case, agents: list[Agent]) -> np.ndarray:
    """One row per agent: [historical_rate, specialization, geo, load_penalty, compliance_risk]."""
    features = np.zeros((len(agents), len(SCORE_WEIGHTS)), dtype=np.float64)
    for i, agent in enumerate(agents):
        features[i] = (
            agent.historical_recovery_rate,
            specialization_match(case.tier, agent),
            geo_match(case.region, agent),
            load_penalty(agent),
            compliance_risk(agent),
        )
    return features


def _compute_scores(case: Case, agents: list[Agent]) -> np.ndarray:
    """Weighted suitability score per agent (before priority and recovery probability)."""
    return _feature_matrix(case, agents) @ SCORE_WEIGHTS


def score_candidates(case: Case, agents: list[Agent]) -> list[CandidateScore]:
    """Score every agent for the case. Agents are assumed to have spare capacity."""
    if not agents:
        return []
    scores = _compute_scores(case, agents)
    factor = priority_factor(case.tier)
    final = case.recovery_probability * scores * factor
    return [
        CandidateScore(
            agent_id=agent.agent_id,
            score=float(scores[i]),
            priority_factor=factor,
            final_score=float(final[i]),
        )
        for i, agent in enumerate(agents)
    ]


def select_best(candidates: list[CandidateScore]) -> CandidateScore:
    """Greatest final_score; exact ties broken by ascending agent_id."""
    return min(candidates, key=lambda c: (-c.final_score, c.agent_id))


def allocate(case: Case, registry: AgentRegistry, now: datetime) -> Union[AllocationResult, NoCapacity]:
    """
    Run one allocation attempt for a PRIORITIZED case.
    On success the winner's capacity is reserved, the case moves to ALLOCATED
    with SLA deadlines and a CASE_ALLOCATED audit entry. Returns NoCapacity
    (and leaves the case untouched) when every agent is saturated.
    """
    if case.status != CaseStatus.PRIORITIZED or case.tier is None or case.recovery_probability is None:
        raise InvalidTransition(case.case_id, case.status.value, "allocate")

    agents = registry.list_available()
    if not agents:
        logger.warning("No agent with capacity for case %s; left in queue.", case.case_id)
        return NoCapacity(case_id=case.case_id)

    candidates = score_candidates(case, agents)
    best = select_best(candidates)

    registry.reserve(best.agent_id, case.case_id)
    case_lifecycle.mark_allocated(
        case,
        agent_id=best.agent_id,
        deadlines=sla_scheduler.compute_deadlines(case.tier, now),
        mode=AllocationMode.ENGINE,
        actor=SYSTEM_ACTOR,
        details=f"Allocated to {best.agent_id} with score {best.final_score:.4f}",
        now=now,
        score=best.final_score,
        candidates=candidates,
    )
    logger.info("ALLOCATED: %s -> %s (score %.4f, %d candidates).",
                case.case_id, best.agent_id, best.final_score, len(candidates))
    return AllocationResult(
        case_id=case.case_id,
        agent_id=best.agent_id,
        final_score=best.final_score,
        candidates=candidates,
    )


def manual_reallocate(
    case: Case,
    target_agent_id: str,
    registry: AgentRegistry,
    actor: str,
    now: datetime,
) -> None:
    """
    Privileged override: assign the case to target_agent_id without scoring.
    The case is released from its previous agent before the target is reserved.
    Existing SLA deadlines are kept.

    Raises AgentNotFound for an unknown target, CapacityExceeded if the target
    is full, DataIntegrityError if the previous agent no longer exists.
    """
    case_lifecycle.require_transition(case, CaseStatus.ALLOCATED, "reallocate")
    if case.tier is None:
        raise InvalidTransition(case.case_id, case.status.value, "reallocate")

    target = registry.get(target_agent_id)
    previous = case.allocated_agent
    if previous != target_agent_id and target.current_load >= target.capacity:
        raise CapacityExceeded(target_agent_id, target.capacity)

    if previous is not None:
        try:
            registry.release(previous, case.case_id)
        except AgentNotFound as exc:
            raise dangling_reference(case.case_id, previous) from exc
    registry.reserve(target_agent_id, case.case_id)

    detail = f"Manual override by {actor}: reassigned to {target_agent_id}"
    if previous is not None:
        detail += f" (from {previous})"
    case_lifecycle.mark_allocated(
        case,
        agent_id=target_agent_id,
        deadlines=sla_scheduler.compute_deadlines(case.tier, now),
        mode=AllocationMode.MANUAL,
        actor=actor,
        details=detail,
        now=now,
    )
    logger.info("MANUAL REALLOCATION: %s -> %s by %s (previous: %s).",
                case.case_id, target_agent_id, actor, previous)
