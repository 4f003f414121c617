"""Triple helix path rotation.

Each learner keeps three learning paths: one active and two preparing. While
the active path is practiced the preparing ones have their next unit staged,
so switching topics never waits on content preparation. Rotation is a strict
round-robin over the three roles.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from loguru import logger

from .domain import (
    ACTIVE_PATH_ALIAS,
    DEFAULT_DIFFICULTY,
    DEFAULT_PATHS,
    LearnerState,
    LearningPath,
    PathStatus,
    RotationResult,
    TripleHelixState,
)
from .errors import ErrorCode, SchedulerError
from .repositioning import FRONT_POSITION
from .validators import validate_difficulty


class PathRotator:
    """Owns every mutation of a learner's :class:`TripleHelixState`."""

    def __init__(self, path_templates: Sequence[dict] = DEFAULT_PATHS, clock=None) -> None:
        if len(path_templates) != 3:
            raise ValueError("The rotation model requires exactly three path templates")
        self._templates = list(path_templates)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _require_helix(self, state: LearnerState) -> TripleHelixState:
        if state.helix is None:
            raise SchedulerError(
                ErrorCode.NO_TRIPLE_HELIX,
                f"No triple helix exists for learner {state.learner_id}",
            )
        return state.helix

    def initialize(
        self, state: LearnerState, initial_difficulty: int = DEFAULT_DIFFICULTY
    ) -> TripleHelixState:
        validate_difficulty(initial_difficulty)
        if state.helix is not None:
            raise SchedulerError(
                ErrorCode.ALREADY_INITIALIZED,
                f"Triple helix already initialized for learner {state.learner_id}",
            )
        now = self._clock().isoformat()
        active, front, back = (
            LearningPath(
                id=template["id"],
                name=template.get("name", template["id"]),
                description=template.get("description", ""),
                category=template.get("category", ""),
                difficulty=initial_difficulty,
                status=PathStatus.ACTIVE if index == 0 else PathStatus.PREPARING,
                metadata={"created_at": now},
            )
            for index, template in enumerate(self._templates)
        )
        state.helix = TripleHelixState(active=active, preparing_front=front, preparing_back=back)
        for path in state.helix.paths:
            self.stage_unit(state, path.id)
        logger.info(
            f"Initialized triple helix for {state.learner_id} at difficulty {initial_difficulty}"
        )
        return state.helix

    def get_active_path(self, state: LearnerState) -> LearningPath:
        return self._require_helix(state).active

    def get_preparing_paths(self, state: LearnerState) -> List[LearningPath]:
        return self._require_helix(state).preparing_paths

    def find_path(self, state: LearnerState, path_id: str) -> LearningPath:
        path = self._require_helix(state).find(path_id)
        if path is None:
            raise SchedulerError(
                ErrorCode.PATH_NOT_FOUND,
                f"Learning path not found: {path_id} for learner {state.learner_id}",
            )
        return path

    def resolve_path(self, state: LearnerState, path_id: Optional[str]) -> LearningPath:
        """Map the ``active`` alias (or ``None``) to the active path."""

        if path_id is None or path_id == ACTIVE_PATH_ALIAS:
            return self.get_active_path(state)
        return self.find_path(state, path_id)

    def stage_unit(self, state: LearnerState, path_id: str) -> LearningPath:
        """Refresh a path's unit reference from position 1 of its queue.

        The active path exposes the unit as ``current_unit_id``; preparing
        paths hold it as ``next_unit_id`` until they are rotated in.
        """

        path = self.find_path(state, path_id)
        unit_id = state.positions.get_unit_at(path_id, FRONT_POSITION)
        if path.status is PathStatus.ACTIVE:
            path.current_unit_id = unit_id
        else:
            path.next_unit_id = unit_id
        return path

    def rotate(self, state: LearnerState) -> RotationResult:
        helix = self._require_helix(state)
        if helix.preparing_front is None:
            raise SchedulerError(
                ErrorCode.ROTATION_FAILED,
                f"Failed to rotate learning paths for learner {state.learner_id}: no preparing paths available",
            )

        outgoing = helix.active
        outgoing.status = PathStatus.PREPARING
        outgoing.next_unit_id = outgoing.current_unit_id
        outgoing.current_unit_id = None

        incoming = helix.preparing_front
        incoming.status = PathStatus.ACTIVE
        incoming.current_unit_id = incoming.next_unit_id
        incoming.next_unit_id = None

        helix.active = incoming
        helix.preparing_front = helix.preparing_back
        helix.preparing_back = outgoing
        helix.rotation_count += 1
        helix.last_rotation_time = self._clock()
        logger.info(
            f"Rotated {state.learner_id}: {outgoing.id} -> {incoming.id} "
            f"(rotation {helix.rotation_count})"
        )
        return RotationResult(
            previous_active_path=replace(outgoing, metadata=dict(outgoing.metadata)),
            new_active_path=replace(incoming, metadata=dict(incoming.metadata)),
            rotation_count=helix.rotation_count,
        )

    def update_difficulty(self, state: LearnerState, path_id: str, difficulty: int) -> LearningPath:
        validate_difficulty(difficulty)
        path = self.find_path(state, path_id)
        path.difficulty = difficulty
        path.metadata["difficulty_updated"] = self._clock().isoformat()
        logger.info(f"Path {path_id} of {state.learner_id} set to difficulty {difficulty}")
        return path


__all__ = ["PathRotator"]
