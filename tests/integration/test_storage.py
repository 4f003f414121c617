"""
Integration tests for learner state storage, curriculum loading,
configuration and the metrics registry.
"""

import json

import pytest
from pydantic import ValidationError

from helix_scheduler.config import SchedulerConfig
from helix_scheduler.domain import LearnerState, RoundPerformance, UnitProgress
from helix_scheduler.errors import ErrorCode, SchedulerError
from helix_scheduler.metrics import MetricsRegistry
from helix_scheduler.rotation import PathRotator
from helix_scheduler.services import SchedulerService
from helix_scheduler.storage import (
    InMemoryFactRepository,
    InMemoryLearnerStateRepository,
    SqliteLearnerStateRepository,
)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def sqlite_repository(tmp_path):
    repository = SqliteLearnerStateRepository(tmp_path / "scheduler.db")
    yield repository
    repository.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_repository(request, tmp_path):
    """Both repository implementations behind the same contract."""
    if request.param == "memory":
        yield InMemoryLearnerStateRepository()
        return
    repository = SqliteLearnerStateRepository(tmp_path / "contract.db")
    yield repository
    repository.close()


@pytest.fixture
def stored_state(clock):
    state = LearnerState(learner_id="learner-1", version=1)
    state.positions.assign("path1", 1, "add-1")
    state.positions.assign("path1", 1000, "add-2")
    state.unit_progress["add-2"] = UnitProgress(unit_id="add-2", skip_number=1000, completion_count=6)
    PathRotator(clock=clock).initialize(state)
    return state


# ============================================================================
# Repository contract
# ============================================================================


class TestLearnerStateRepository:
    def test_missing_learner(self, any_repository):
        assert any_repository.load("nobody") is None

    def test_create_and_load(self, any_repository, stored_state):
        any_repository.create(stored_state)

        loaded = any_repository.load("learner-1")

        assert loaded.to_dict() == stored_state.to_dict()
        assert loaded.positions.get_unit_at("path1", 1000) == "add-2"
        assert loaded.helix.active.current_unit_id == "add-1"

    def test_create_twice(self, any_repository, stored_state):
        any_repository.create(stored_state)

        with pytest.raises(SchedulerError) as exc_info:
            any_repository.create(stored_state)

        assert exc_info.value.code == ErrorCode.ALREADY_INITIALIZED

    def test_save_with_matching_version(self, any_repository, stored_state):
        any_repository.create(stored_state)
        stored_state.version = 2
        stored_state.rounds_since_rotation = 1

        any_repository.save(stored_state, expected_version=1)

        loaded = any_repository.load("learner-1")
        assert loaded.version == 2
        assert loaded.rounds_since_rotation == 1

    def test_save_with_stale_version(self, any_repository, stored_state):
        any_repository.create(stored_state)
        stored_state.version = 3
        stored_state.rounds_since_rotation = 9

        with pytest.raises(SchedulerError) as exc_info:
            any_repository.save(stored_state, expected_version=2)

        assert exc_info.value.code == ErrorCode.CONFLICT
        loaded = any_repository.load("learner-1")
        assert loaded.version == 1
        assert loaded.rounds_since_rotation == 0

    def test_save_unknown_learner(self, any_repository, stored_state):
        with pytest.raises(SchedulerError) as exc_info:
            any_repository.save(stored_state, expected_version=1)

        assert exc_info.value.code == ErrorCode.CONFLICT

    def test_loaded_state_is_independent(self, any_repository, stored_state):
        any_repository.create(stored_state)

        loaded = any_repository.load("learner-1")
        loaded.positions.remove("path1", 1)

        assert any_repository.load("learner-1").positions.get_unit_at("path1", 1) == "add-1"


class TestSqlitePersistence:
    def test_state_survives_reopen(self, tmp_path, stored_state):
        db_path = tmp_path / "reopen.db"
        first = SqliteLearnerStateRepository(db_path)
        first.create(stored_state)
        first.close()

        second = SqliteLearnerStateRepository(db_path)
        try:
            assert second.load("learner-1").to_dict() == stored_state.to_dict()
        finally:
            second.close()

    def test_service_over_sqlite(self, sqlite_repository, facts, clock):
        service = SchedulerService(
            sqlite_repository, facts, metrics=MetricsRegistry(), clock=clock
        )
        service.initialize_learner("learner-1", units={"path1": ["add-1", "add-2"]})
        performance = RoundPerformance(
            correct_count=20, total_count=20, average_response_time_ms=1200.0
        )

        outcome = service.complete_round("learner-1", "add-1", performance, expected_version=1)
        with pytest.raises(SchedulerError) as exc_info:
            service.complete_round("learner-1", "add-1", performance, expected_version=1)

        assert outcome.version == 2
        assert exc_info.value.code == ErrorCode.CONFLICT
        assert sqlite_repository.load("learner-1").positions.units("path1") == [
            (1, "add-2"),
            (4, "add-1"),
        ]


# ============================================================================
# Curriculum
# ============================================================================


class TestFactRepository:
    def test_from_json_file(self, tmp_path):
        path = tmp_path / "curriculum.json"
        path.write_text(
            json.dumps({"facts": ["7x8"], "units": {"mul-7": ["7x7", "7x8", "7x7"]}}),
            encoding="utf-8",
        )

        facts = InMemoryFactRepository.from_json_file(path)

        assert facts.fact_exists("7x8")
        assert facts.fact_exists("7x7")
        assert facts.get_fact_ids("mul-7") == ["7x7", "7x8"]
        assert facts.get_fact_ids("unknown") == []

    def test_register(self):
        facts = InMemoryFactRepository()
        facts.register_fact("1+1")
        facts.register_unit("add-1", ["1+1", "1+2"])

        assert facts.fact_exists("1+2")
        assert not facts.fact_exists("9+9")


# ============================================================================
# Configuration
# ============================================================================


class TestSchedulerConfig:
    def test_defaults(self, monkeypatch):
        for name in (
            "HELIX_ROUNDS_PER_ROTATION",
            "HELIX_AUTO_COMPRESS",
            "HELIX_ALLOW_DEMOTION",
            "HELIX_INITIAL_DIFFICULTY",
            "HELIX_HISTORY_LIMIT",
            "HELIX_DB_PATH",
            "HELIX_CURRICULUM_PATH",
        ):
            monkeypatch.delenv(name, raising=False)

        assert SchedulerConfig.from_env() == SchedulerConfig()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HELIX_ROUNDS_PER_ROTATION", "3")
        monkeypatch.setenv("HELIX_AUTO_COMPRESS", "false")
        monkeypatch.setenv("HELIX_ALLOW_DEMOTION", "0")
        monkeypatch.setenv("HELIX_INITIAL_DIFFICULTY", "4")
        monkeypatch.setenv("HELIX_DB_PATH", "/tmp/helix.db")
        monkeypatch.setenv("HELIX_HISTORY_LIMIT", "25")

        config = SchedulerConfig.from_env()

        assert config.rounds_per_rotation == 3
        assert not config.auto_compress
        assert not config.allow_demotion
        assert config.initial_difficulty == 4
        assert config.db_path == "/tmp/helix.db"
        assert config.history_limit == 25

    def test_negative_rotation_period(self):
        with pytest.raises(ValueError):
            SchedulerConfig(rounds_per_rotation=-1)

    @pytest.mark.parametrize(
        "name,value",
        [
            ("HELIX_ROUNDS_PER_ROTATION", "often"),
            ("HELIX_ROUNDS_PER_ROTATION", "-2"),
            ("HELIX_INITIAL_DIFFICULTY", "9"),
            ("HELIX_HISTORY_LIMIT", "0"),
        ],
    )
    def test_invalid_env_values_rejected(self, monkeypatch, name, value):
        monkeypatch.setenv(name, value)

        with pytest.raises(ValidationError):
            SchedulerConfig.from_env()

    def test_frozen(self):
        config = SchedulerConfig()

        with pytest.raises(ValidationError):
            config.rounds_per_rotation = 5


# ============================================================================
# Metrics
# ============================================================================


class TestMetricsRegistry:
    def test_snapshot(self):
        registry = MetricsRegistry()
        registry.record_abandon("learner-1", "add-1")
        registry.record_error("rotate", "CONFLICT")
        registry.record_error("rotate", "CONFLICT")

        snapshot = registry.snapshot()

        assert snapshot["rounds_abandoned"] == 1
        assert snapshot["perfect_round_rate"] == 0.0
        assert snapshot["errors"] == {"rotate:CONFLICT": 2}
