"""
Unit tests for PositionStore.

Covers sparse assignment, range shifting and explicit compression.
"""

import pytest

from helix_scheduler.errors import ErrorCode, SchedulerError
from helix_scheduler.positions import PositionStore


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store():
    return PositionStore()


@pytest.fixture
def sparse_store():
    """Units at 1, 4 and 1000 of path1."""
    store = PositionStore()
    store.assign("path1", 1, "a")
    store.assign("path1", 4, "b")
    store.assign("path1", 1000, "c")
    return store


# ============================================================================
# Assignment
# ============================================================================


class TestAssign:
    def test_assign_and_lookup(self, store):
        store.assign("path1", 3, "unit-x")

        assert store.get_unit_at("path1", 3) == "unit-x"
        assert store.position_of("path1", "unit-x") == 3
        assert store.locate("unit-x") == ("path1", 3)

    def test_unknown_path_reads_empty(self, store):
        assert store.get_unit_at("nowhere", 1) is None
        assert store.first_occupied("nowhere") is None
        assert store.units("nowhere") == []
        assert store.is_empty("nowhere")

    def test_occupied_slot_rejected(self, store):
        store.assign("path1", 1, "a")

        with pytest.raises(SchedulerError) as exc_info:
            store.assign("path1", 1, "b")

        assert exc_info.value.code == ErrorCode.POSITION_OCCUPIED
        assert store.get_unit_at("path1", 1) == "a"

    def test_unit_already_in_path_rejected(self, store):
        store.assign("path1", 1, "a")

        with pytest.raises(SchedulerError) as exc_info:
            store.assign("path1", 5, "a")

        assert exc_info.value.code == ErrorCode.POSITION_OCCUPIED

    @pytest.mark.parametrize("position", [0, -3, True])
    def test_invalid_positions(self, store, position):
        with pytest.raises(SchedulerError) as exc_info:
            store.assign("path1", position, "a")

        assert exc_info.value.code == ErrorCode.INVALID_POSITION_RANGE

    def test_append_goes_after_largest(self, sparse_store):
        assert sparse_store.append("path1", "d") == 1001

    def test_sparse_positions_do_not_fill_gaps(self, sparse_store):
        stats = sparse_store.stats("path1")

        assert stats.total_positions == 3
        assert stats.largest_position == 1000
        assert stats.gaps == 997
        assert sparse_store.get_unit_at("path1", 500) is None

    def test_units_in_queue_order(self, sparse_store):
        assert sparse_store.units("path1") == [(1, "a"), (4, "b"), (1000, "c")]
        assert list(sparse_store) == [("path1", 1, "a"), ("path1", 4, "b"), ("path1", 1000, "c")]


class TestNextAvailablePosition:
    @pytest.mark.parametrize(
        "occupied,expected",
        [
            ([], 1),
            ([2], 1),
            ([1, 2, 4], 3),
            ([1, 2, 3], 4),
        ],
    )
    def test_first_gap_or_end(self, store, occupied, expected):
        for position in occupied:
            store.assign("path1", position, f"u{position}")

        assert store.next_available_position("path1") == expected


class TestRemove:
    def test_remove_returns_unit(self, sparse_store):
        assert sparse_store.remove("path1", 4) == "b"
        assert sparse_store.locate("b") is None
        assert sparse_store.units("path1") == [(1, "a"), (1000, "c")]

    def test_remove_empty_slot(self, sparse_store):
        with pytest.raises(SchedulerError) as exc_info:
            sparse_store.remove("path1", 2)

        assert exc_info.value.code == ErrorCode.INVALID_POSITION_RANGE


# ============================================================================
# Shifting
# ============================================================================


class TestShiftRange:
    def test_moves_occupied_slots_down_by_one(self, store):
        for position, unit_id in [(2, "a"), (3, "b"), (5, "c"), (9, "d")]:
            store.assign("path1", position, unit_id)

        moved = store.shift_range("path1", 2, 5)

        assert moved == 3
        assert store.units("path1") == [(1, "a"), (2, "b"), (4, "c"), (9, "d")]
        assert store.position_of("path1", "c") == 4

    def test_range_beyond_queue_is_noop(self, store):
        store.assign("path1", 2, "a")

        assert store.shift_range("path1", 10, 20) == 0
        assert store.units("path1") == [(2, "a")]

    def test_collision_rejected_without_mutation(self, store):
        store.assign("path1", 1, "a")
        store.assign("path1", 2, "b")
        store.assign("path1", 3, "c")

        with pytest.raises(SchedulerError) as exc_info:
            store.shift_range("path1", 2, 3)

        assert exc_info.value.code == ErrorCode.INVALID_POSITION_RANGE
        assert store.units("path1") == [(1, "a"), (2, "b"), (3, "c")]

    def test_cannot_shift_front_slot(self, store):
        store.assign("path1", 1, "a")

        with pytest.raises(SchedulerError) as exc_info:
            store.shift_range("path1", 1, 4)

        assert exc_info.value.code == ErrorCode.INVALID_POSITION_RANGE

    def test_empty_range_rejected(self, store):
        with pytest.raises(SchedulerError) as exc_info:
            store.shift_range("path1", 5, 2)

        assert exc_info.value.code == ErrorCode.INVALID_POSITION_RANGE


# ============================================================================
# Compression
# ============================================================================


class TestCompress:
    def test_reindexes_preserving_order(self, sparse_store):
        result = sparse_store.compress("path1")

        assert sparse_store.units("path1") == [(1, "a"), (2, "b"), (3, "c")]
        assert result.positions_changed == [("b", 4, 2), ("c", 1000, 3)]
        assert result.before.gaps == 997
        assert result.after.gaps == 0
        assert result.after.largest_position == 3
        assert sparse_store.position_of("path1", "c") == 3

    def test_dry_run_reports_without_mutating(self, sparse_store):
        result = sparse_store.compress("path1", dry_run=True)

        assert result.dry_run
        assert result.changed
        assert result.after.largest_position == 3
        assert sparse_store.units("path1") == [(1, "a"), (4, "b"), (1000, "c")]

    def test_dense_path_is_unchanged(self, store):
        store.append("path1", "a")
        store.append("path1", "b")

        result = store.compress("path1")

        assert not result.changed
        assert store.units("path1") == [(1, "a"), (2, "b")]

    def test_compress_is_idempotent(self, sparse_store):
        sparse_store.compress("path1")

        second = sparse_store.compress("path1")

        assert not second.changed
        assert second.before == second.after

    def test_compress_fills_empty_front(self, store):
        store.assign("path1", 4, "a")

        store.compress("path1")

        assert store.get_unit_at("path1", 1) == "a"


# ============================================================================
# Snapshots and persistence
# ============================================================================


class TestSnapshots:
    def test_restore_discards_changes(self, sparse_store):
        snapshot = sparse_store.snapshot("path1")
        sparse_store.remove("path1", 1)
        sparse_store.shift_range("path1", 1, 10)

        sparse_store.restore("path1", snapshot)

        assert sparse_store.units("path1") == [(1, "a"), (4, "b"), (1000, "c")]
        assert sparse_store.locate("a") == ("path1", 1)

    def test_serialized_form_keeps_gaps(self, sparse_store):
        sparse_store.assign("path2", 2, "m")
        payload = sparse_store.to_dict()

        assert payload == {"path1": [[1, "a"], [4, "b"], [1000, "c"]], "path2": [[2, "m"]]}
        restored = PositionStore.from_dict(payload)
        assert restored.units("path1") == sparse_store.units("path1")
        assert restored.next_available_position("path2") == 1
