"""Test doubles and builders shared across test modules."""

from datetime import datetime, timedelta, timezone

from dca_engine.models import Agent, CaseAttributes

# Monday 11:00, inside contact hours
T0 = datetime(2026, 3, 2, 11, 0, tzinfo=timezone.utc)


class FixedNoise:
    """Noise source that always draws the same value."""

    def __init__(self, value: float = 0.0):
        self.value = value
        self.calls = []

    def uniform(self, low, high):
        self.calls.append((low, high))
        return self.value


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_agent(agent_id: str, **overrides) -> Agent:
    fields = dict(
        agent_id=agent_id,
        display_name=agent_id,
        capacity=5,
        historical_recovery_rate=0.8,
        specialization=[],
        region="Central",
        compliance_score=0.9,
    )
    fields.update(overrides)
    return Agent(**fields)


def critical_case(**overrides) -> CaseAttributes:
    fields = dict(debtor="ACME Freight", amount=150000, age_days=10, region="North-East")
    fields.update(overrides)
    return CaseAttributes(**fields)


def low_case(**overrides) -> CaseAttributes:
    fields = dict(debtor="Corner Shop", amount=1000, age_days=5, region="Central")
    fields.update(overrides)
    return CaseAttributes(**fields)
