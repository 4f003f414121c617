"""Repository interfaces for scheduler collaborators."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from .domain import LearnerState, RoundOutcome


class LearnerStateRepository(ABC):
    """Durable store for per-learner scheduling state."""

    @abstractmethod
    def load(self, learner_id: str) -> Optional[LearnerState]:
        """Return an independent copy of the stored state, if present."""

    @abstractmethod
    def create(self, state: LearnerState) -> None:
        """Persist a brand new learner; fails with ALREADY_INITIALIZED if one exists."""

    @abstractmethod
    def save(self, state: LearnerState, expected_version: int) -> None:
        """Persist ``state`` only if the stored version equals ``expected_version``.

        Raises a CONFLICT error otherwise, leaving the stored state untouched.
        """


class FactRepository(ABC):
    """Read-only access to curriculum facts and the units that exercise them."""

    @abstractmethod
    def fact_exists(self, fact_id: str) -> bool:
        """Return whether the fact is part of the curriculum."""

    @abstractmethod
    def get_fact_ids(self, unit_id: str) -> List[str]:
        """Return the facts exercised by a content unit."""


class MetricsSink(ABC):
    """Write-only analytics collaborator."""

    @abstractmethod
    def record_round(self, learner_id: str, outcome: RoundOutcome) -> None:
        """Receive the result of a committed round."""

    @abstractmethod
    def record_abandon(self, learner_id: str, unit_id: str) -> None:
        """Receive notice of a round abandoned before completion."""

    @abstractmethod
    def record_error(self, operation: str, code: str) -> None:
        """Receive the error code of a rejected operation."""


__all__ = ["FactRepository", "LearnerStateRepository", "MetricsSink"]
