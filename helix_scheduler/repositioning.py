"""Stitch repositioning: the skip-number spaced repetition algorithm.

A unit answered perfectly is pushed back in its path by its skip number; every
unit between the front and that slot moves forward by one. Each further
perfect round advances the skip number along ``SKIP_SEQUENCE``. Any mistake
keeps the unit at the front and resets its skip number.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger

from .domain import (
    DEFAULT_SKIP_NUMBER,
    SKIP_SEQUENCE,
    LearnerState,
    RepositionResult,
    RoundPerformance,
    UnitProgress,
)
from .errors import ErrorCode, SchedulerError
from .validators import validate_round_performance


FRONT_POSITION = 1
HISTORY_LIMIT = 100


def next_skip_number(current: int) -> int:
    """Successor of ``current`` in the skip sequence, clamped at the top."""

    try:
        index = SKIP_SEQUENCE.index(current)
    except ValueError:
        return DEFAULT_SKIP_NUMBER
    return SKIP_SEQUENCE[min(index + 1, len(SKIP_SEQUENCE) - 1)]


def calculate_skip_number(performance: RoundPerformance, progress: Optional[UnitProgress]) -> int:
    """Skip number to apply for a round.

    The first completion of a unit uses the start of the sequence. Later
    perfect rounds advance from the stored value; imperfect rounds reset.
    """

    validate_round_performance(performance)
    if not performance.is_perfect:
        return DEFAULT_SKIP_NUMBER
    if progress is None or progress.completion_count == 0:
        return DEFAULT_SKIP_NUMBER
    return next_skip_number(progress.skip_number)


class RepositioningEngine:
    """Applies the repositioning algorithm to a learner's position store."""

    def __init__(self, clock=None, history_limit: int = HISTORY_LIMIT) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._history_limit = history_limit

    def reposition(
        self, state: LearnerState, unit_id: str, performance: RoundPerformance
    ) -> RepositionResult:
        validate_round_performance(performance)

        store = state.positions
        located = store.locate(unit_id)
        if located is None:
            if all(store.is_empty(path_id) for path_id in store.path_ids()):
                raise SchedulerError(
                    ErrorCode.REPOSITIONING_FAILED,
                    f"Learner {state.learner_id} has no scheduled units",
                )
            raise SchedulerError(
                ErrorCode.UNIT_NOT_FOUND,
                f"Unit {unit_id} is not scheduled in any path for learner {state.learner_id}",
            )
        path_id, previous_position = located
        if previous_position != FRONT_POSITION:
            raise SchedulerError(
                ErrorCode.REPOSITIONING_FAILED,
                f"Unit {unit_id} sits at position {previous_position} of path {path_id}, not at the front",
            )

        progress = state.unit_progress.get(unit_id)
        skip_number = calculate_skip_number(performance, progress)
        new_position = previous_position

        if performance.is_perfect:
            snapshot = store.snapshot(path_id)
            try:
                store.remove(path_id, FRONT_POSITION)
                store.shift_range(path_id, FRONT_POSITION, skip_number)
                store.assign(path_id, skip_number, unit_id)
            except SchedulerError as exc:
                store.restore(path_id, snapshot)
                raise SchedulerError(
                    ErrorCode.REPOSITIONING_FAILED,
                    f"Could not move unit {unit_id} to position {skip_number}: {exc.message}",
                ) from exc
            new_position = skip_number

        timestamp = performance.completed_at or self._clock()
        self._record_progress(state, unit_id, performance, skip_number, timestamp)
        result = RepositionResult(
            unit_id=unit_id,
            path_id=path_id,
            previous_position=previous_position,
            new_position=new_position,
            skip_number=skip_number,
            timestamp=timestamp,
        )
        records = state.history.setdefault(unit_id, [])
        records.insert(0, result)
        del records[self._history_limit:]
        logger.debug(
            f"Repositioned {unit_id} for {state.learner_id}: "
            f"{previous_position} -> {new_position} (skip {skip_number})"
        )
        return result

    @staticmethod
    def _record_progress(
        state: LearnerState,
        unit_id: str,
        performance: RoundPerformance,
        skip_number: int,
        timestamp: datetime,
    ) -> None:
        progress = state.unit_progress.get(unit_id)
        if progress is None:
            progress = state.unit_progress[unit_id] = UnitProgress(unit_id=unit_id)
        progress.skip_number = skip_number
        progress.completion_count += 1
        progress.correct_count += performance.correct_count
        progress.attempted_count += performance.total_count
        if performance.is_perfect:
            progress.perfect_count += 1
        progress.last_completed_at = timestamp

    @staticmethod
    def get_history(
        state: LearnerState, unit_id: str, limit: Optional[int] = None
    ) -> List[RepositionResult]:
        """Repositioning history for a unit, newest first."""

        if unit_id not in state.history and state.positions.locate(unit_id) is None:
            raise SchedulerError(
                ErrorCode.UNIT_NOT_FOUND,
                f"Unit {unit_id} is unknown for learner {state.learner_id}",
            )
        history = state.history.get(unit_id, [])
        return list(history[:limit] if limit else history)


__all__ = [
    "FRONT_POSITION",
    "HISTORY_LIMIT",
    "RepositioningEngine",
    "calculate_skip_number",
    "next_skip_number",
]
