"""Shared fixtures: deterministic noise, a controllable clock, engine factories."""

import pytest

from dca_engine.engine import RecoveryEngine
from dca_engine.models import Agent
from dca_engine.services.agent_registry import InMemoryAgentRegistry, default_registry
from tests.helpers import FakeClock, FixedNoise


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def noise():
    return FixedNoise(0.0)


@pytest.fixture
def engine(clock, noise):
    """Engine over the default four-DCA roster."""
    return RecoveryEngine(registry=default_registry(), noise=noise, clock=clock)


@pytest.fixture
def make_engine(clock, noise):
    """Factory for an engine over a custom agent list."""

    def _make(*agents: Agent) -> RecoveryEngine:
        return RecoveryEngine(registry=InMemoryAgentRegistry(agents), noise=noise, clock=clock)

    return _make
