"""
Unit tests for triple helix path rotation.
"""

import pytest

from helix_scheduler.domain import DEFAULT_PATHS, PathStatus
from helix_scheduler.errors import ErrorCode, SchedulerError
from helix_scheduler.rotation import PathRotator


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def rotator(clock):
    return PathRotator(clock=clock)


@pytest.fixture
def helix_state(rotator, state):
    """Initialized learner with one unit queued on every path."""
    state.positions.assign("path1", 1, "add-1")
    state.positions.assign("path2", 1, "mul-1")
    state.positions.assign("path3", 1, "div-1")
    rotator.initialize(state, initial_difficulty=2)
    return state


def active_count(state):
    return sum(1 for path in state.helix.paths if path.status is PathStatus.ACTIVE)


# ============================================================================
# Initialization
# ============================================================================


class TestInitialize:
    def test_creates_one_active_two_preparing(self, rotator, state):
        helix = rotator.initialize(state, initial_difficulty=3)

        assert helix.active.id == "path1"
        assert [path.id for path in helix.preparing_paths] == ["path2", "path3"]
        assert all(path.difficulty == 3 for path in helix.paths)
        assert helix.rotation_count == 0
        assert helix.last_rotation_time is None
        assert active_count(state) == 1

    def test_stages_front_units(self, helix_state):
        helix = helix_state.helix

        assert helix.active.current_unit_id == "add-1"
        assert [path.next_unit_id for path in helix.preparing_paths] == ["mul-1", "div-1"]

    def test_empty_queues_stage_nothing(self, rotator, state):
        helix = rotator.initialize(state)

        assert helix.active.current_unit_id is None
        assert helix.active.difficulty == 2

    def test_unit_behind_empty_front_is_not_staged(self, rotator, state):
        state.positions.assign("path1", 4, "add-1")
        state.positions.assign("path2", 1, "mul-1")

        helix = rotator.initialize(state)

        assert helix.active.current_unit_id is None
        assert helix.find("path2").next_unit_id == "mul-1"

    def test_second_initialize_rejected(self, rotator, helix_state):
        with pytest.raises(SchedulerError) as exc_info:
            rotator.initialize(helix_state)

        assert exc_info.value.code == ErrorCode.ALREADY_INITIALIZED

    @pytest.mark.parametrize("difficulty", [0, 6, -1, 2.5])
    def test_invalid_difficulty(self, rotator, state, difficulty):
        with pytest.raises(SchedulerError) as exc_info:
            rotator.initialize(state, initial_difficulty=difficulty)

        assert exc_info.value.code == ErrorCode.INVALID_DIFFICULTY
        assert state.helix is None

    def test_requires_three_templates(self):
        with pytest.raises(ValueError):
            PathRotator(path_templates=DEFAULT_PATHS[:2])


# ============================================================================
# Rotation
# ============================================================================


class TestRotate:
    def test_round_robin(self, rotator, helix_state):
        result = rotator.rotate(helix_state)
        helix = helix_state.helix

        assert result.previous_active_path.id == "path1"
        assert result.new_active_path.id == "path2"
        assert result.rotation_count == 1
        assert [path.id for path in helix.preparing_paths] == ["path3", "path1"]
        assert active_count(helix_state) == 1

    def test_three_rotations_return_to_start(self, rotator, helix_state):
        for _ in range(3):
            rotator.rotate(helix_state)

        assert helix_state.helix.active.id == "path1"
        assert helix_state.helix.rotation_count == 3
        assert active_count(helix_state) == 1

    def test_staged_unit_follows_role(self, rotator, helix_state):
        rotator.rotate(helix_state)
        helix = helix_state.helix

        assert helix.active.current_unit_id == "mul-1"
        assert helix.active.next_unit_id is None
        outgoing = helix.find("path1")
        assert outgoing.status is PathStatus.PREPARING
        assert outgoing.next_unit_id == "add-1"
        assert outgoing.current_unit_id is None

    def test_records_rotation_time(self, rotator, helix_state, clock):
        rotator.rotate(helix_state)

        assert helix_state.helix.last_rotation_time == clock()

    def test_result_is_detached_from_state(self, rotator, helix_state):
        result = rotator.rotate(helix_state)
        rotator.rotate(helix_state)

        assert result.new_active_path.status is PathStatus.ACTIVE

    def test_missing_helix(self, rotator, state):
        with pytest.raises(SchedulerError) as exc_info:
            rotator.rotate(state)

        assert exc_info.value.code == ErrorCode.NO_TRIPLE_HELIX

    def test_no_preparing_path(self, rotator, helix_state):
        helix_state.helix.preparing_front = None

        with pytest.raises(SchedulerError) as exc_info:
            rotator.rotate(helix_state)

        assert exc_info.value.code == ErrorCode.ROTATION_FAILED


# ============================================================================
# Path lookup and difficulty
# ============================================================================


class TestPaths:
    def test_resolve_alias(self, rotator, helix_state):
        assert rotator.resolve_path(helix_state, "active").id == "path1"
        assert rotator.resolve_path(helix_state, None).id == "path1"
        assert rotator.resolve_path(helix_state, "path3").id == "path3"

    def test_unknown_path(self, rotator, helix_state):
        with pytest.raises(SchedulerError) as exc_info:
            rotator.find_path(helix_state, "path9")

        assert exc_info.value.code == ErrorCode.PATH_NOT_FOUND

    def test_update_difficulty_is_isolated(self, rotator, helix_state, clock):
        path = rotator.update_difficulty(helix_state, "path2", 5)

        assert path.difficulty == 5
        assert path.metadata["difficulty_updated"] == clock().isoformat()
        assert helix_state.helix.find("path1").difficulty == 2
        assert helix_state.helix.find("path3").difficulty == 2

    def test_update_difficulty_rejects_out_of_range(self, rotator, helix_state):
        with pytest.raises(SchedulerError) as exc_info:
            rotator.update_difficulty(helix_state, "path2", 9)

        assert exc_info.value.code == ErrorCode.INVALID_DIFFICULTY
        assert helix_state.helix.find("path2").difficulty == 2

    def test_update_difficulty_unknown_path(self, rotator, helix_state):
        with pytest.raises(SchedulerError) as exc_info:
            rotator.update_difficulty(helix_state, "nope", 3)

        assert exc_info.value.code == ErrorCode.PATH_NOT_FOUND
