"""
SLA scheduler: per-tier deadline derivation and pull-based breach evaluation.

Deadlines are computed once, at first allocation, and never recomputed.
Breach evaluation is idempotent: the agent penalty is applied on the first
observed breach only (tracked by Case.breach_counted).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from dca_engine.errors import AgentNotFound
from dca_engine.models import Case, CaseStatus, RiskTier, SLADeadlines, SLAStatus
from dca_engine.services import case_lifecycle
from dca_engine.services.agent_registry import AgentRegistry, dangling_reference

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "SYSTEM"


@dataclass(frozen=True)
class SLAPolicy:
    """Offsets from the allocation instant."""

    first_action: timedelta
    follow_up: timedelta
    resolution: timedelta


SLA_CONFIG = {
    RiskTier.CRITICAL: SLAPolicy(timedelta(hours=24), timedelta(days=2), timedelta(days=7)),
    RiskTier.HIGH: SLAPolicy(timedelta(hours=48), timedelta(days=3), timedelta(days=15)),
    RiskTier.MEDIUM: SLAPolicy(timedelta(hours=72), timedelta(days=4), timedelta(days=20)),
    RiskTier.LOW: SLAPolicy(timedelta(hours=96), timedelta(days=7), timedelta(days=30)),
}


def compute_deadlines(tier: RiskTier, allocated_at: datetime) -> SLADeadlines:
    """Absolute first-action / follow-up / resolution deadlines for a tier."""
    policy = SLA_CONFIG[tier]
    return SLADeadlines(
        first_action=allocated_at + policy.first_action,
        follow_up=allocated_at + policy.follow_up,
        resolution=allocated_at + policy.resolution,
    )


def is_breached(case: Case, now: datetime) -> bool:
    """Breached iff not resolved and now is past the resolution deadline."""
    if case.status == CaseStatus.RESOLVED or case.sla_deadlines is None:
        return False
    return now > case.sla_deadlines.resolution


def hours_remaining(case: Case, now: datetime) -> float:
    """Hours until the resolution deadline, floored at 0, one decimal."""
    if case.sla_deadlines is None:
        return 0.0
    seconds = (case.sla_deadlines.resolution - now).total_seconds()
    return round(max(0.0, seconds / 3600), 1)


def evaluate(case: Case, now: datetime, registry: AgentRegistry) -> bool:
    """
    Evaluate one case against its resolution deadline.
    On the first observed breach: set the breach flag, charge the allocated
    agent one breach and append an SLA_BREACHED audit entry. Repeated calls
    after that change nothing.
    """
    breached = is_breached(case, now)
    if not breached or case.breach_counted:
        return breached

    agent_id = case.allocated_agent
    if agent_id is not None:
        try:
            registry.record_breach(agent_id)
        except AgentNotFound as exc:
            raise dangling_reference(case.case_id, agent_id) from exc

    case.sla_breached = True
    case.breach_counted = True
    case_lifecycle.append_audit(
        case,
        "SLA_BREACHED",
        SYSTEM_ACTOR,
        f"Resolution deadline {case.sla_deadlines.resolution.isoformat()} passed; penalty applied to {agent_id}",
        now,
    )
    logger.warning("SLA breached: case %s (agent %s).", case.case_id, agent_id)
    return True


def evaluate_all(cases: Iterable[Case], now: datetime, registry: AgentRegistry) -> list[SLAStatus]:
    """Evaluate every non-resolved allocated case and report its SLA status."""
    statuses = []
    for case in cases:
        if case.status == CaseStatus.RESOLVED or case.sla_deadlines is None:
            continue
        breached = evaluate(case, now, registry)
        statuses.append(
            SLAStatus(
                case_id=case.case_id,
                breached=breached,
                hours_remaining=hours_remaining(case, now),
                tier=case.tier,
                allocated_agent=case.allocated_agent,
                resolution_deadline=case.sla_deadlines.resolution,
            )
        )
    return statuses
