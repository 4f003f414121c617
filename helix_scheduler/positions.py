"""Sparse, ordered position queues for learning paths.

Positions are logical slots. A unit parked at position 1000 does not allocate
positions 2..999; each path keeps a dict of occupied slots plus a sorted list
of the occupied positions maintained with :mod:`bisect`. Gaps are kept until
:meth:`PositionStore.compress` is called explicitly.
"""
from __future__ import annotations

from bisect import bisect_left, bisect_right, insort
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import ErrorCode, SchedulerError


@dataclass
class PositionStats:
    total_positions: int
    gaps: int
    largest_position: int

    def to_dict(self) -> dict:
        return {
            "total_positions": self.total_positions,
            "gaps": self.gaps,
            "largest_position": self.largest_position,
        }


@dataclass
class CompressionResult:
    path_id: str
    before: PositionStats
    after: PositionStats
    positions_changed: List[Tuple[str, int, int]] = field(default_factory=list)
    dry_run: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.positions_changed)


class _PathQueue:
    """Occupied slots of one path."""

    __slots__ = ("slots", "order", "index")

    def __init__(self) -> None:
        self.slots: Dict[int, str] = {}
        self.order: List[int] = []
        self.index: Dict[str, int] = {}

    def place(self, position: int, unit_id: str) -> None:
        self.slots[position] = unit_id
        self.index[unit_id] = position
        insort(self.order, position)

    def take(self, position: int) -> str:
        unit_id = self.slots.pop(position)
        del self.index[unit_id]
        del self.order[bisect_left(self.order, position)]
        return unit_id

    def stats(self) -> PositionStats:
        largest = self.order[-1] if self.order else 0
        return PositionStats(
            total_positions=len(self.order),
            gaps=largest - len(self.order),
            largest_position=largest,
        )

    def copy(self) -> "_PathQueue":
        clone = _PathQueue()
        clone.slots = dict(self.slots)
        clone.order = list(self.order)
        clone.index = dict(self.index)
        return clone


class PositionStore:
    """Maps ``(path_id, position)`` to content unit ids."""

    def __init__(self) -> None:
        self._paths: Dict[str, _PathQueue] = {}

    def _queue(self, path_id: str) -> _PathQueue:
        queue = self._paths.get(path_id)
        if queue is None:
            queue = self._paths[path_id] = _PathQueue()
        return queue

    @staticmethod
    def _check_position(position: int) -> None:
        if not isinstance(position, int) or isinstance(position, bool) or position < 1:
            raise SchedulerError(
                ErrorCode.INVALID_POSITION_RANGE,
                f"Positions are integers starting at 1, got {position!r}",
            )

    # Queries ---------------------------------------------------------------
    def path_ids(self) -> List[str]:
        return list(self._paths)

    def get_unit_at(self, path_id: str, position: int) -> Optional[str]:
        queue = self._paths.get(path_id)
        if queue is None:
            return None
        return queue.slots.get(position)

    def position_of(self, path_id: str, unit_id: str) -> Optional[int]:
        queue = self._paths.get(path_id)
        if queue is None:
            return None
        return queue.index.get(unit_id)

    def locate(self, unit_id: str) -> Optional[Tuple[str, int]]:
        """Return ``(path_id, position)`` of the unit in whichever path holds it."""

        for path_id, queue in self._paths.items():
            position = queue.index.get(unit_id)
            if position is not None:
                return path_id, position
        return None

    def first_occupied(self, path_id: str) -> Optional[Tuple[int, str]]:
        queue = self._paths.get(path_id)
        if queue is None or not queue.order:
            return None
        position = queue.order[0]
        return position, queue.slots[position]

    def units(self, path_id: str) -> List[Tuple[int, str]]:
        """Occupied ``(position, unit_id)`` pairs in queue order."""

        queue = self._paths.get(path_id)
        if queue is None:
            return []
        return [(position, queue.slots[position]) for position in queue.order]

    def __iter__(self) -> Iterator[Tuple[str, int, str]]:
        for path_id in self._paths:
            for position, unit_id in self.units(path_id):
                yield path_id, position, unit_id

    def count(self, path_id: str) -> int:
        queue = self._paths.get(path_id)
        return len(queue.order) if queue else 0

    def is_empty(self, path_id: str) -> bool:
        return self.count(path_id) == 0

    def stats(self, path_id: str) -> PositionStats:
        return self._queue(path_id).stats()

    def next_available_position(self, path_id: str) -> int:
        """First unoccupied position, reusing gaps before appending."""

        queue = self._paths.get(path_id)
        if queue is None or not queue.order:
            return 1
        for expected, position in enumerate(queue.order, start=1):
            if position != expected:
                return expected
        return queue.order[-1] + 1

    # Mutations -------------------------------------------------------------
    def assign(self, path_id: str, position: int, unit_id: str) -> None:
        self._check_position(position)
        queue = self._queue(path_id)
        occupant = queue.slots.get(position)
        if occupant is not None:
            raise SchedulerError(
                ErrorCode.POSITION_OCCUPIED,
                f"Position {position} of path {path_id} already holds unit {occupant}",
            )
        existing = queue.index.get(unit_id)
        if existing is not None:
            raise SchedulerError(
                ErrorCode.POSITION_OCCUPIED,
                f"Unit {unit_id} already occupies position {existing} of path {path_id}",
            )
        queue.place(position, unit_id)

    def append(self, path_id: str, unit_id: str) -> int:
        queue = self._queue(path_id)
        position = queue.order[-1] + 1 if queue.order else 1
        self.assign(path_id, position, unit_id)
        return position

    def remove(self, path_id: str, position: int) -> str:
        queue = self._paths.get(path_id)
        if queue is None or position not in queue.slots:
            raise SchedulerError(
                ErrorCode.INVALID_POSITION_RANGE,
                f"Position {position} of path {path_id} is not occupied",
            )
        return queue.take(position)

    def shift_range(self, path_id: str, start: int, end: int) -> int:
        """Move every occupied position ``p`` in ``[start, end]`` to ``p - 1``.

        Unoccupied slots are skipped. Returns the number of units moved. The
        call is rejected before any mutation when the slot just below the
        range is occupied or the range would leave position 1.
        """

        self._check_position(start)
        if end < start:
            raise SchedulerError(
                ErrorCode.INVALID_POSITION_RANGE,
                f"Shift range [{start}, {end}] is empty",
            )
        queue = self._paths.get(path_id)
        if queue is None:
            return 0
        lo = bisect_left(queue.order, start)
        hi = bisect_right(queue.order, end)
        if lo == hi:
            return 0
        if queue.order[lo] == start and (start == 1 or (start - 1) in queue.slots):
            raise SchedulerError(
                ErrorCode.INVALID_POSITION_RANGE,
                f"Cannot shift position {start} of path {path_id} onto an occupied or invalid slot",
            )

        moved = queue.order[lo:hi]
        for position in moved:
            unit_id = queue.slots.pop(position)
            queue.slots[position - 1] = unit_id
            queue.index[unit_id] = position - 1
        # A uniform decrement keeps the sorted order intact.
        queue.order[lo:hi] = [position - 1 for position in moved]
        return len(moved)

    def compress(self, path_id: str, dry_run: bool = False) -> CompressionResult:
        """Re-index occupied positions to ``1..n`` preserving their order."""

        queue = self._queue(path_id)
        before = queue.stats()
        changes = [
            (queue.slots[position], position, target)
            for target, position in enumerate(queue.order, start=1)
            if position != target
        ]
        if not dry_run and changes:
            slots = {target: queue.slots[position] for target, position in enumerate(queue.order, start=1)}
            queue.slots = slots
            queue.order = list(range(1, len(slots) + 1))
            queue.index = {unit_id: position for position, unit_id in slots.items()}
        after = (
            PositionStats(total_positions=before.total_positions, gaps=0, largest_position=before.total_positions)
            if dry_run
            else queue.stats()
        )
        return CompressionResult(
            path_id=path_id,
            before=before,
            after=after,
            positions_changed=changes,
            dry_run=dry_run,
        )

    # Snapshots -------------------------------------------------------------
    def snapshot(self, path_id: str) -> _PathQueue:
        return self._queue(path_id).copy()

    def restore(self, path_id: str, snapshot: _PathQueue) -> None:
        self._paths[path_id] = snapshot.copy()

    def to_dict(self) -> dict:
        return {
            path_id: [[position, queue.slots[position]] for position in queue.order]
            for path_id, queue in self._paths.items()
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "PositionStore":
        store = cls()
        for path_id, entries in payload.items():
            queue = store._queue(path_id)
            for position, unit_id in entries:
                queue.place(int(position), unit_id)
        return store


__all__ = ["CompressionResult", "PositionStats", "PositionStore"]
