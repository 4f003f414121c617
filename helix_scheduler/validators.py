"""Upfront validation run before any scheduler state is mutated."""
from __future__ import annotations

import math
from typing import Iterable

from .domain import (
    MAX_DIFFICULTY,
    MAX_LEVEL,
    MIN_DIFFICULTY,
    MIN_LEVEL,
    AttemptPerformance,
    FactAttempt,
    RoundPerformance,
)
from .errors import ErrorCode, SchedulerError


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_positive_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def _invalid_performance(message: str) -> SchedulerError:
    return SchedulerError(ErrorCode.INVALID_PERFORMANCE_DATA, message)


def validate_learner_id(learner_id: str) -> None:
    if not isinstance(learner_id, str) or not learner_id.strip():
        raise SchedulerError(
            ErrorCode.USER_NOT_FOUND,
            f"Learner id must be a non-empty string: {learner_id!r}",
        )


def validate_difficulty(difficulty: int) -> None:
    if not _is_int(difficulty) or not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
        raise SchedulerError(
            ErrorCode.INVALID_DIFFICULTY,
            f"Invalid difficulty level: {difficulty!r}. Must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}.",
        )


def validate_level(level: int) -> None:
    if not _is_int(level) or not MIN_LEVEL <= level <= MAX_LEVEL:
        raise SchedulerError(
            ErrorCode.INVALID_LEVEL,
            f"Invalid boundary level: {level!r}. Must be an integer between {MIN_LEVEL} and {MAX_LEVEL}.",
        )


def _validate_fact_attempts(attempts: Iterable[FactAttempt]) -> None:
    seen = set()
    for attempt in attempts:
        if not attempt.fact_id or not attempt.fact_id.strip():
            raise _invalid_performance("Fact results must name a fact id")
        if attempt.fact_id in seen:
            raise _invalid_performance(f"Duplicate fact result for {attempt.fact_id}")
        seen.add(attempt.fact_id)
        if not isinstance(attempt.correct_first_attempt, bool):
            raise _invalid_performance("correct_first_attempt must be a boolean")
        if not _is_positive_number(attempt.response_time_ms):
            raise _invalid_performance(
                f"Response time for fact {attempt.fact_id} must be a positive number"
            )


def validate_round_performance(performance: RoundPerformance) -> None:
    """Reject summaries that could not come from a fully completed round."""

    if performance is None:
        raise _invalid_performance("Performance summary is required")
    if not _is_int(performance.correct_count) or not _is_int(performance.total_count):
        raise _invalid_performance("Counts must be integers")
    if performance.total_count <= 0:
        raise _invalid_performance("A round must contain at least one item")
    if not 0 <= performance.correct_count <= performance.total_count:
        raise _invalid_performance(
            f"Correct count {performance.correct_count} is outside 0..{performance.total_count}"
        )
    if not _is_positive_number(performance.average_response_time_ms):
        raise _invalid_performance("Average response time must be a positive number")
    _validate_fact_attempts(performance.fact_results)


def validate_attempt(performance: AttemptPerformance) -> None:
    if performance is None:
        raise _invalid_performance("Attempt performance is required")
    if not isinstance(performance.correct_first_attempt, bool):
        raise _invalid_performance("correct_first_attempt must be a boolean")
    if not _is_positive_number(performance.response_time_ms):
        raise _invalid_performance("response_time_ms must be a positive number")
    streak = performance.consecutive_correct
    if streak is not None and (not _is_int(streak) or streak < 0):
        raise _invalid_performance("consecutive_correct must be a non-negative integer")


__all__ = [
    "validate_attempt",
    "validate_difficulty",
    "validate_learner_id",
    "validate_level",
    "validate_round_performance",
]
