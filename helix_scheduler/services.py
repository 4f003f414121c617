"""Scheduler facade combining positions, mastery and path rotation."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from .config import SchedulerConfig
from .domain import (
    MIN_LEVEL,
    AttemptPerformance,
    BoundaryLevel,
    BoundaryUpdateResult,
    ContentUnit,
    DEFAULT_SKIP_NUMBER,
    FactMastery,
    LearnerState,
    LearningPath,
    RepositionResult,
    RotationResult,
    RoundOutcome,
    RoundPerformance,
    TripleHelixState,
)
from .errors import ErrorCode, SchedulerError
from .mastery import (
    MasteryTracker,
    ProgressionThresholds,
    all_boundary_levels,
    get_boundary_level_description,
)
from .metrics import METRICS
from .positions import CompressionResult
from .repositioning import FRONT_POSITION, RepositioningEngine
from .repositories import FactRepository, LearnerStateRepository, MetricsSink
from .rotation import PathRotator
from .validators import (
    validate_difficulty,
    validate_learner_id,
    validate_level,
    validate_round_performance,
)


class LearnerLocks:
    """One lock per learner so writers for different learners never contend.

    Entries are reference counted and dropped once no writer holds or waits on them.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, learner_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(learner_id)
            if entry is None:
                entry = self._locks[learner_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[learner_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class SchedulerService:
    """Answers "what next" and applies completed rounds for each learner.

    Every mutation runs against a private copy of the learner's state and is
    committed with a compare-and-set on the state's version. A failure at any
    step discards the copy, so callers observe either all of a round's effects
    or none of them.
    """

    def __init__(
        self,
        repository: LearnerStateRepository,
        fact_repository: FactRepository,
        metrics: Optional[MetricsSink] = None,
        config: Optional[SchedulerConfig] = None,
        clock=None,
    ) -> None:
        self._config = config or SchedulerConfig()
        self._repository = repository
        self._facts = fact_repository
        self._metrics = metrics if metrics is not None else METRICS
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = LearnerLocks()
        self._engine = RepositioningEngine(
            clock=self._clock, history_limit=self._config.history_limit
        )
        self._rotator = PathRotator(clock=self._clock)
        self._mastery = MasteryTracker(
            fact_repository,
            ProgressionThresholds(allow_demotion=self._config.allow_demotion),
            clock=self._clock,
        )

    @property
    def config(self) -> SchedulerConfig:
        return self._config

    # Internal helpers -----------------------------------------------------
    def _record_error(self, operation: str, exc: SchedulerError) -> None:
        logger.warning(f"{operation} rejected: {exc}")
        try:
            self._metrics.record_error(operation, exc.code.value)
        except Exception:  # pragma: no cover
            logger.exception("Metrics sink failed while recording an error")

    def _load(self, learner_id: str) -> LearnerState:
        validate_learner_id(learner_id)
        state = self._repository.load(learner_id)
        if state is None:
            raise SchedulerError(
                ErrorCode.NO_TRIPLE_HELIX,
                f"No triple helix exists for learner {learner_id}",
            )
        return state

    @contextmanager
    def _transaction(
        self,
        operation: str,
        learner_id: str,
        expected_version: Optional[int] = None,
        create_missing: bool = False,
    ) -> Iterator[LearnerState]:
        """Serialize a learner's writers and commit their changes atomically."""

        try:
            validate_learner_id(learner_id)
            with self._locks.hold(learner_id):
                stored = self._repository.load(learner_id)
                if stored is None:
                    if not create_missing:
                        raise SchedulerError(
                            ErrorCode.NO_TRIPLE_HELIX,
                            f"No triple helix exists for learner {learner_id}",
                        )
                    stored = LearnerState(learner_id=learner_id)
                    is_new = True
                else:
                    is_new = False
                if expected_version is not None and expected_version != stored.version:
                    raise SchedulerError(
                        ErrorCode.CONFLICT,
                        f"Learner {learner_id} is at version {stored.version}, request read {expected_version}",
                    )

                working = stored.copy()
                yield working
                working.version = stored.version + 1
                if is_new:
                    self._repository.create(working)
                else:
                    self._repository.save(working, expected_version=stored.version)
        except SchedulerError as exc:
            self._record_error(operation, exc)
            raise
        logger.info(f"{operation} committed for {learner_id} at version {working.version}")

    def _content_unit(self, state: LearnerState, path: LearningPath, unit_id: str) -> ContentUnit:
        fact_ids = self._facts.get_fact_ids(unit_id)
        fact_levels = {
            fact_id: state.fact_mastery[fact_id].level
            for fact_id in fact_ids
            if fact_id in state.fact_mastery
        }
        progress = state.unit_progress.get(unit_id)
        return ContentUnit(
            id=unit_id,
            path_id=path.id,
            position=state.positions.position_of(path.id, unit_id),
            difficulty=path.difficulty,
            skip_number=progress.skip_number if progress else DEFAULT_SKIP_NUMBER,
            boundary_level=min(fact_levels.values(), default=MIN_LEVEL),
            fact_ids=fact_ids,
            fact_levels=fact_levels,
            version=state.version,
        )

    def _fact_attempts(
        self, unit_id: str, performance: RoundPerformance
    ) -> List[Tuple[str, AttemptPerformance]]:
        if performance.fact_results:
            return [
                (
                    result.fact_id,
                    AttemptPerformance(
                        correct_first_attempt=result.correct_first_attempt,
                        response_time_ms=result.response_time_ms,
                    ),
                )
                for result in performance.fact_results
            ]
        attempt = AttemptPerformance(
            correct_first_attempt=performance.is_perfect,
            response_time_ms=performance.average_response_time_ms,
        )
        return [(fact_id, attempt) for fact_id in self._facts.get_fact_ids(unit_id)]

    def _should_rotate(self, state: LearnerState) -> bool:
        every = self._config.rounds_per_rotation
        return every > 0 and state.rounds_since_rotation >= every

    def _publish(self, learner_id: str, outcome: RoundOutcome) -> None:
        try:
            self._metrics.record_round(learner_id, outcome)
        except Exception:  # fire-and-forget analytics
            logger.exception(f"Metrics sink failed for round of {learner_id}")

    # Learner lifecycle ----------------------------------------------------
    def initialize_learner(
        self,
        learner_id: str,
        initial_difficulty: Optional[int] = None,
        units: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> TripleHelixState:
        """Create the three learning paths, optionally seeding their queues."""

        difficulty = self._config.initial_difficulty if initial_difficulty is None else initial_difficulty
        validate_difficulty(difficulty)
        with self._transaction("initialize_learner", learner_id, create_missing=True) as state:
            helix = self._rotator.initialize(state, difficulty)
            for path_id, unit_ids in (units or {}).items():
                self._rotator.find_path(state, path_id)
                for unit_id in unit_ids:
                    if state.positions.locate(unit_id) is not None:
                        raise SchedulerError(
                            ErrorCode.POSITION_OCCUPIED,
                            f"Unit {unit_id} is listed more than once for learner {learner_id}",
                        )
                    state.positions.append(path_id, unit_id)
                self._rotator.stage_unit(state, path_id)
        return helix

    def get_state(self, learner_id: str) -> LearnerState:
        return self._load(learner_id)

    # Queries --------------------------------------------------------------
    def get_next_unit(self, learner_id: str, path_id: Optional[str] = None) -> ContentUnit:
        """Unit at position 1 of the requested path (``"active"`` by default)."""

        try:
            state = self._load(learner_id)
            path = self._rotator.resolve_path(state, path_id)
            unit_id = state.positions.get_unit_at(path.id, FRONT_POSITION)
        except SchedulerError as exc:
            self._record_error("get_next_unit", exc)
            raise

        if unit_id is None and self._config.auto_compress and not state.positions.is_empty(path.id):
            with self._transaction("compress_path", learner_id) as state:
                state.positions.compress(path.id)
                self._rotator.stage_unit(state, path.id)
            path = self._rotator.find_path(state, path.id)
            unit_id = state.positions.get_unit_at(path.id, FRONT_POSITION)

        if unit_id is None:
            exc = SchedulerError(
                ErrorCode.NO_UNITS_AVAILABLE,
                f"No unit at the front of path {path.id} for learner {learner_id}",
            )
            self._record_error("get_next_unit", exc)
            raise exc
        logger.debug(f"Next unit for {learner_id} on {path.id}: {unit_id}")
        return self._content_unit(state, path, unit_id)

    def get_queue(
        self, learner_id: str, path_id: Optional[str] = None
    ) -> Tuple[str, List[Tuple[int, str]]]:
        """Resolved path id and its occupied (position, unit) pairs in order."""

        state = self._load(learner_id)
        path = self._rotator.resolve_path(state, path_id)
        return path.id, state.positions.units(path.id)

    def get_history(
        self, learner_id: str, unit_id: str, limit: Optional[int] = None
    ) -> List[RepositionResult]:
        return self._engine.get_history(self._load(learner_id), unit_id, limit)

    # Round lifecycle ------------------------------------------------------
    def complete_round(
        self,
        learner_id: str,
        unit_id: str,
        performance: RoundPerformance,
        expected_version: int,
    ) -> RoundOutcome:
        """Apply repositioning, mastery updates and rotation as one commit."""

        try:
            validate_round_performance(performance)
        except SchedulerError as exc:
            self._record_error("complete_round", exc)
            raise

        with self._transaction("complete_round", learner_id, expected_version) as state:
            self._rotator.get_active_path(state)
            reposition = self._engine.reposition(state, unit_id, performance)
            self._rotator.stage_unit(state, reposition.path_id)

            updates: List[BoundaryUpdateResult] = []
            for fact_id, attempt in self._fact_attempts(unit_id, performance):
                if not self._mastery.has_mastery(state, fact_id):
                    self._mastery.initialize(state, fact_id)
                updates.append(self._mastery.update(state, fact_id, attempt))

            rotation: Optional[RotationResult] = None
            state.rounds_since_rotation += 1
            if self._should_rotate(state):
                rotation = self._rotator.rotate(state)
                state.rounds_since_rotation = 0

        outcome = RoundOutcome(
            reposition=reposition,
            mastery_updates=updates,
            rotation=rotation,
            version=state.version,
        )
        self._publish(learner_id, outcome)
        return outcome

    def abandon_round(self, learner_id: str, unit_id: str) -> None:
        """A round left before completion changes nothing; it is only counted."""

        self._load(learner_id)
        logger.info(f"Round of {unit_id} abandoned by {learner_id}; no state changed")
        try:
            self._metrics.record_abandon(learner_id, unit_id)
        except Exception:  # pragma: no cover - fire-and-forget analytics
            logger.exception(f"Metrics sink failed for abandoned round of {learner_id}")

    # Path management ------------------------------------------------------
    def rotate(self, learner_id: str, expected_version: Optional[int] = None) -> RotationResult:
        with self._transaction("rotate", learner_id, expected_version) as state:
            result = self._rotator.rotate(state)
            state.rounds_since_rotation = 0
        return result

    def update_path_difficulty(
        self,
        learner_id: str,
        path_id: str,
        difficulty: int,
        expected_version: Optional[int] = None,
    ) -> LearningPath:
        try:
            validate_difficulty(difficulty)
        except SchedulerError as exc:
            self._record_error("update_path_difficulty", exc)
            raise
        with self._transaction("update_path_difficulty", learner_id, expected_version) as state:
            path = self._rotator.resolve_path(state, path_id)
            updated = self._rotator.update_difficulty(state, path.id, difficulty)
        return updated

    def add_unit(
        self,
        learner_id: str,
        path_id: str,
        unit_id: str,
        position: Optional[int] = None,
        expected_version: Optional[int] = None,
    ) -> Tuple[str, int]:
        """Schedule a newly authored unit, filling the first gap by default.

        Returns the resolved path id and the position the unit landed on.
        """

        with self._transaction("add_unit", learner_id, expected_version) as state:
            path = self._rotator.resolve_path(state, path_id)
            if state.positions.locate(unit_id) is not None:
                raise SchedulerError(
                    ErrorCode.POSITION_OCCUPIED,
                    f"Unit {unit_id} is already scheduled for learner {learner_id}",
                )
            if position is None:
                position = state.positions.next_available_position(path.id)
            state.positions.assign(path.id, position, unit_id)
            self._rotator.stage_unit(state, path.id)
        return path.id, position

    def compress_path(
        self,
        learner_id: str,
        path_id: str,
        dry_run: bool = False,
        expected_version: Optional[int] = None,
    ) -> CompressionResult:
        if dry_run:
            state = self._load(learner_id)
            path = self._rotator.resolve_path(state, path_id)
            return state.positions.compress(path.id, dry_run=True)
        with self._transaction("compress_path", learner_id, expected_version) as state:
            path = self._rotator.resolve_path(state, path_id)
            result = state.positions.compress(path.id)
            self._rotator.stage_unit(state, path.id)
        return result

    # Mastery --------------------------------------------------------------
    def get_fact_mastery(self, learner_id: str, fact_id: str) -> FactMastery:
        validate_learner_id(learner_id)
        state = self._repository.load(learner_id) or LearnerState(learner_id=learner_id)
        return self._mastery.get_mastery(state, fact_id)

    def get_fact_level(self, learner_id: str, fact_id: str) -> int:
        return self.get_fact_mastery(learner_id, fact_id).level

    def initialize_fact_mastery(
        self, learner_id: str, fact_id: str, start_level: int = MIN_LEVEL
    ) -> FactMastery:
        with self._transaction("initialize_fact_mastery", learner_id, create_missing=True) as state:
            mastery = self._mastery.initialize(state, fact_id, start_level)
        return mastery

    def set_fact_level(
        self,
        learner_id: str,
        fact_id: str,
        level: int,
        expected_version: Optional[int] = None,
    ) -> FactMastery:
        try:
            validate_level(level)
        except SchedulerError as exc:
            self._record_error("set_fact_level", exc)
            raise
        with self._transaction(
            "set_fact_level", learner_id, expected_version, create_missing=True
        ) as state:
            mastery = self._mastery.set_level(state, fact_id, level)
        return mastery

    @staticmethod
    def get_boundary_level_description(level: int) -> BoundaryLevel:
        return get_boundary_level_description(level)

    @staticmethod
    def all_boundary_levels() -> List[BoundaryLevel]:
        return all_boundary_levels()


__all__ = ["LearnerLocks", "SchedulerService"]
