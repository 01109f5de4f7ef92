"""Risk classifier: tier thresholds + heuristic recovery probability."""

from typing import Optional, Protocol, Tuple

import numpy as np

from dca_engine.models import RiskTier


class NoiseSource(Protocol):
    """Anything with uniform(low, high) -> float, e.g. numpy.random.Generator or random.Random."""

    def uniform(self, low: float, high: float) -> float: ...


# Evaluated in order, first match wins: (tier, amount strictly above, age strictly above).
TIER_THRESHOLDS = [
    (RiskTier.CRITICAL, 100_000, 180),
    (RiskTier.HIGH, 50_000, 120),
    (RiskTier.MEDIUM, 20_000, 60),
]

NOISE_AMPLITUDE = 0.075
MIN_PROBABILITY = 0.2
MAX_PROBABILITY = 1.0


def assess_tier(amount: float, age_days: int) -> RiskTier:
    """Map amount and age to a risk tier."""
    for tier, amount_limit, age_limit in TIER_THRESHOLDS:
        if amount > amount_limit or age_days > age_limit:
            return tier
    return RiskTier.LOW


def base_recovery_probability(amount: float, age_days: int) -> float:
    """
    Noise-free estimate: (1 - age_factor) * (1 - amount_factor).
    Age caps at a 50% reduction (360 days), amount at 40% (500k).
    """
    age_factor = min(age_days / 360, 0.5)
    amount_factor = min(amount / 500_000, 0.4)
    return (1 - age_factor) * (1 - amount_factor)


def recovery_probability(amount: float, age_days: int, noise: NoiseSource) -> float:
    """Base estimate plus uniform noise in [-0.075, +0.075], clamped to [0.2, 1.0]."""
    jitter = float(noise.uniform(-NOISE_AMPLITUDE, NOISE_AMPLITUDE))
    p = base_recovery_probability(amount, age_days) + jitter
    return max(MIN_PROBABILITY, min(MAX_PROBABILITY, p))


def default_noise_source(seed: Optional[int] = None) -> NoiseSource:
    """Production noise: unseeded numpy generator unless a seed is given."""
    return np.random.default_rng(seed)


def classify(amount: float, age_days: int, noise: NoiseSource) -> Tuple[RiskTier, float]:
    """
    Run the classifier on a case's monetary and age attributes.
    Returns (tier, recovery_probability).
    """
    return assess_tier(amount, age_days), recovery_probability(amount, age_days, noise)
