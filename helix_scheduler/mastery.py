"""Boundary-level mastery tracking per (learner, fact).

Each fact moves through five boundary levels, each asking the learner for a
finer distinction than the last. Transitions are computed by :func:`advance`,
a pure function of the current :class:`FactMastery` and one attempt, so the
promotion and demotion rules can be exercised without any storage.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from loguru import logger

from .domain import (
    MAX_LEVEL,
    MIN_LEVEL,
    AttemptPerformance,
    BoundaryLevel,
    BoundaryUpdateResult,
    FactMastery,
    LearnerState,
)
from .errors import ErrorCode, SchedulerError
from .repositories import FactRepository
from .validators import validate_attempt, validate_learner_id, validate_level


BOUNDARY_LEVELS: Dict[int, BoundaryLevel] = {
    1: BoundaryLevel(1, "Category Boundaries", "Mathematical answers must be numerical"),
    2: BoundaryLevel(2, "Magnitude Boundaries", "Awareness of appropriate numerical ranges"),
    3: BoundaryLevel(3, "Operation Boundaries", "Differentiation between mathematical operations"),
    4: BoundaryLevel(
        4, "Related Fact Boundaries", "Distinction between adjacent facts in the same operation"
    ),
    5: BoundaryLevel(
        5, "Near Miss Boundaries", "Precise differentiation between very similar numerical answers"
    ),
}


def _default_response_ceilings() -> Dict[int, float]:
    return {1: 5000.0, 2: 4000.0, 3: 3000.0, 4: 2500.0, 5: 2000.0}


@dataclass(frozen=True)
class ProgressionThresholds:
    """Tunable constants of the boundary-level state machine."""

    mastery_threshold: float = 0.8
    consecutive_correct_threshold: int = 3
    max_response_time_ms: Dict[int, float] = field(default_factory=_default_response_ceilings)
    correct_increment: float = 0.1
    max_time_bonus: float = 0.1
    incorrect_penalty: float = 0.15
    promoted_score: float = 0.5
    allow_demotion: bool = True
    demotion_threshold: float = 0.3
    demotion_consecutive_incorrect: int = 3
    demoted_score: float = 0.7
    initial_score: float = 0.5


def get_boundary_level_description(level: int) -> BoundaryLevel:
    validate_level(level)
    return BOUNDARY_LEVELS[level]


def all_boundary_levels() -> List[BoundaryLevel]:
    return [BOUNDARY_LEVELS[level] for level in sorted(BOUNDARY_LEVELS)]


def advance(
    mastery: FactMastery,
    attempt: AttemptPerformance,
    thresholds: ProgressionThresholds = ProgressionThresholds(),
    now: Optional[datetime] = None,
) -> FactMastery:
    """Return the state after one attempt; never changes level by more than one."""

    ceiling = thresholds.max_response_time_ms[mastery.level]
    score = mastery.mastery_score
    if attempt.correct_first_attempt:
        time_bonus = max(
            0.0,
            min(thresholds.max_time_bonus, (ceiling - attempt.response_time_ms) / ceiling / 10),
        )
        score = min(1.0, score + thresholds.correct_increment + time_bonus)
        if attempt.response_time_ms <= ceiling:
            streak = mastery.consecutive_correct + 1
        else:
            streak = 0
        if attempt.consecutive_correct is not None:
            streak = attempt.consecutive_correct
        misses = 0
    else:
        score = max(0.0, score - thresholds.incorrect_penalty)
        streak = 0
        misses = mastery.consecutive_incorrect + 1

    level = mastery.level
    if (
        level < MAX_LEVEL
        and score >= thresholds.mastery_threshold
        and streak >= thresholds.consecutive_correct_threshold
    ):
        level += 1
        score = thresholds.promoted_score
        streak = 0
    elif (
        thresholds.allow_demotion
        and level > MIN_LEVEL
        and score <= thresholds.demotion_threshold
        and misses >= thresholds.demotion_consecutive_incorrect
    ):
        level -= 1
        score = thresholds.demoted_score
        misses = 0

    return replace(
        mastery,
        level=level,
        mastery_score=score,
        consecutive_correct=streak,
        consecutive_incorrect=misses,
        last_response_time_ms=attempt.response_time_ms,
        last_seen_at=now or datetime.now(timezone.utc),
    )


class MasteryTracker:
    """Reads and writes :class:`FactMastery` records inside a learner state."""

    def __init__(
        self,
        fact_repository: FactRepository,
        thresholds: Optional[ProgressionThresholds] = None,
        clock=None,
    ) -> None:
        self._facts = fact_repository
        self._thresholds = thresholds or ProgressionThresholds()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def thresholds(self) -> ProgressionThresholds:
        return self._thresholds

    def _validate(self, state: LearnerState, fact_id: str) -> None:
        validate_learner_id(state.learner_id)
        if not fact_id or not self._facts.fact_exists(fact_id):
            raise SchedulerError(ErrorCode.FACT_NOT_FOUND, f"Fact not found: {fact_id}")

    def _require(self, state: LearnerState, fact_id: str) -> FactMastery:
        self._validate(state, fact_id)
        mastery = state.fact_mastery.get(fact_id)
        if mastery is None:
            raise SchedulerError(
                ErrorCode.NO_MASTERY_DATA,
                f"No mastery data exists for learner {state.learner_id} and fact {fact_id}",
            )
        return mastery

    def has_mastery(self, state: LearnerState, fact_id: str) -> bool:
        return fact_id in state.fact_mastery

    def initialize(self, state: LearnerState, fact_id: str, start_level: int = MIN_LEVEL) -> FactMastery:
        self._validate(state, fact_id)
        validate_level(start_level)
        if fact_id in state.fact_mastery:
            raise SchedulerError(
                ErrorCode.ALREADY_INITIALIZED,
                f"Mastery data already exists for learner {state.learner_id} and fact {fact_id}",
            )
        mastery = FactMastery(
            fact_id=fact_id,
            level=start_level,
            mastery_score=self._thresholds.initial_score,
            last_seen_at=self._clock(),
        )
        state.fact_mastery[fact_id] = mastery
        return mastery

    def update(
        self, state: LearnerState, fact_id: str, attempt: AttemptPerformance
    ) -> BoundaryUpdateResult:
        validate_attempt(attempt)
        current = self._require(state, fact_id)
        updated = advance(current, attempt, self._thresholds, self._clock())
        state.fact_mastery[fact_id] = updated
        changed = updated.level != current.level
        if changed:
            logger.info(
                f"Fact {fact_id} for {state.learner_id} moved from level "
                f"{current.level} to {updated.level}"
            )
        return BoundaryUpdateResult(
            fact_id=fact_id,
            previous_level=current.level,
            new_level=updated.level,
            level_changed=changed,
            mastery_score=updated.mastery_score,
        )

    def get_current_level(self, state: LearnerState, fact_id: str) -> int:
        return self._require(state, fact_id).level

    def get_mastery(self, state: LearnerState, fact_id: str) -> FactMastery:
        return self._require(state, fact_id)

    def set_level(self, state: LearnerState, fact_id: str, level: int) -> FactMastery:
        """Explicit override of a fact's level, e.g. after a placement test."""

        validate_level(level)
        current = self._require(state, fact_id)
        updated = replace(current, level=level, consecutive_correct=0, consecutive_incorrect=0)
        state.fact_mastery[fact_id] = updated
        return updated


__all__ = [
    "BOUNDARY_LEVELS",
    "MasteryTracker",
    "ProgressionThresholds",
    "advance",
    "all_boundary_levels",
    "get_boundary_level_description",
]
