"""
Per-agent scoring features for allocation.
Each helper returns one column of the suitability feature matrix.
"""

from dca_engine.models import Agent, RiskTier

HIGH_VALUE_TAG = "High-Value"

# Business priority multiplier keyed on case tier
PRIORITY_FACTORS = {
    RiskTier.CRITICAL: 1.5,
    RiskTier.HIGH: 1.3,
    RiskTier.MEDIUM: 1.0,
    RiskTier.LOW: 0.8,
}


def specialization_match(tier: RiskTier, agent: Agent) -> float:
    """1.0 for a CRITICAL case and a High-Value specialist, else 0.7."""
    if tier == RiskTier.CRITICAL and HIGH_VALUE_TAG in agent.specialization:
        return 1.0
    return 0.7


def geo_match(case_region: str, agent: Agent) -> float:
    """1.0 when the agent works the case's region, else 0.8."""
    return 1.0 if agent.region == case_region else 0.8


def load_penalty(agent: Agent) -> float:
    return agent.current_load / agent.capacity


def compliance_risk(agent: Agent) -> float:
    return 1.0 - agent.compliance_score


def priority_factor(tier: RiskTier) -> float:
    return PRIORITY_FACTORS[tier]
