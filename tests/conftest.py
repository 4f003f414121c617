"""
Pytest Configuration and Fixtures.

Shared fixtures for the scheduler test suite: a fixed clock, a small
curriculum and a service wired to in-memory storage.
"""
from datetime import datetime, timezone

import pytest

from helix_scheduler.config import SchedulerConfig
from helix_scheduler.domain import LearnerState, RoundPerformance
from helix_scheduler.metrics import MetricsRegistry
from helix_scheduler.services import SchedulerService
from helix_scheduler.storage import InMemoryFactRepository, InMemoryLearnerStateRepository


FIXED_NOW = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)

UNIT_FACTS = {
    "add-1": ["1+1", "1+2"],
    "add-2": ["2+2", "2+3"],
    "add-3": ["3+3"],
    "mul-1": ["2x3", "3x4"],
    "mul-2": ["4x5"],
    "div-1": ["6/2"],
}


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "api: Tests driving the HTTP layer")


@pytest.fixture
def clock():
    """Clock frozen at a known instant."""
    return lambda: FIXED_NOW


@pytest.fixture
def facts():
    """Curriculum with two units per path except division."""
    return InMemoryFactRepository(unit_facts=UNIT_FACTS)


@pytest.fixture
def repository():
    return InMemoryLearnerStateRepository()


@pytest.fixture
def metrics():
    """Fresh registry so tests never share counters."""
    return MetricsRegistry()


@pytest.fixture
def make_service(repository, facts, metrics, clock):
    """Factory building a service with a custom configuration."""

    def _make(**overrides):
        return SchedulerService(
            repository,
            facts,
            metrics=metrics,
            config=SchedulerConfig(**overrides),
            clock=clock,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def seeded_units():
    return {
        "path1": ["add-1", "add-2", "add-3"],
        "path2": ["mul-1", "mul-2"],
        "path3": ["div-1"],
    }


@pytest.fixture
def learner(service, seeded_units):
    """Learner initialized at difficulty 2 with every path seeded."""
    service.initialize_learner("learner-1", initial_difficulty=2, units=seeded_units)
    return "learner-1"


@pytest.fixture
def state():
    """Bare learner state for component-level tests."""
    return LearnerState(learner_id="learner-1")


@pytest.fixture
def perfect_round():
    return RoundPerformance(correct_count=20, total_count=20, average_response_time_ms=1500.0)


@pytest.fixture
def imperfect_round():
    return RoundPerformance(correct_count=15, total_count=20, average_response_time_ms=2500.0)
