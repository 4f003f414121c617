"""Domain records shared across the scheduler components and repositories."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .positions import PositionStore


SKIP_SEQUENCE: Tuple[int, ...] = (4, 8, 15, 30, 100, 1000)
DEFAULT_SKIP_NUMBER = SKIP_SEQUENCE[0]

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
DEFAULT_DIFFICULTY = 2

MIN_LEVEL = 1
MAX_LEVEL = 5

# Callers may address the currently active path without knowing its id.
ACTIVE_PATH_ALIAS = "active"


class PathStatus(str, Enum):
    ACTIVE = "active"
    PREPARING = "preparing"


DEFAULT_PATHS: Tuple[Dict[str, str], ...] = (
    {
        "id": "path1",
        "name": "Addition Facts",
        "description": "Basic addition facts from 1+1 to 12+12",
        "category": "addition",
    },
    {
        "id": "path2",
        "name": "Multiplication Facts",
        "description": "Basic multiplication facts from 1x1 to 12x12",
        "category": "multiplication",
    },
    {
        "id": "path3",
        "name": "Division Facts",
        "description": "Basic division facts",
        "category": "division",
    },
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class LearningPath:
    """One of the three concurrently maintained content streams ("tubes")."""

    id: str
    name: str
    difficulty: int
    status: PathStatus
    description: str = ""
    category: str = ""
    current_unit_id: Optional[str] = None
    next_unit_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "difficulty": self.difficulty,
            "status": self.status.value,
            "description": self.description,
            "category": self.category,
            "current_unit_id": self.current_unit_id,
            "next_unit_id": self.next_unit_id,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "LearningPath":
        return cls(
            id=payload["id"],
            name=payload.get("name", payload["id"]),
            difficulty=int(payload["difficulty"]),
            status=PathStatus(payload["status"]),
            description=payload.get("description", ""),
            category=payload.get("category", ""),
            current_unit_id=payload.get("current_unit_id"),
            next_unit_id=payload.get("next_unit_id"),
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass
class TripleHelixState:
    """One active path performing while two are prepared backstage.

    The roles are explicit attributes so that exactly one path can be active.
    """

    active: LearningPath
    preparing_front: LearningPath
    preparing_back: LearningPath
    rotation_count: int = 0
    last_rotation_time: Optional[datetime] = None

    @property
    def preparing_paths(self) -> List[LearningPath]:
        return [path for path in (self.preparing_front, self.preparing_back) if path is not None]

    @property
    def paths(self) -> List[LearningPath]:
        return [self.active, *self.preparing_paths]

    def find(self, path_id: str) -> Optional[LearningPath]:
        for path in self.paths:
            if path.id == path_id:
                return path
        return None

    def to_dict(self) -> dict:
        return {
            "active": self.active.to_dict(),
            "preparing": [path.to_dict() for path in self.preparing_paths],
            "rotation_count": self.rotation_count,
            "last_rotation_time": _iso(self.last_rotation_time),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "TripleHelixState":
        front, back = (LearningPath.from_dict(item) for item in payload["preparing"])
        return cls(
            active=LearningPath.from_dict(payload["active"]),
            preparing_front=front,
            preparing_back=back,
            rotation_count=int(payload.get("rotation_count", 0)),
            last_rotation_time=_parse_iso(payload.get("last_rotation_time")),
        )


@dataclass(frozen=True)
class FactAttempt:
    """Outcome of a single fact within a practice round."""

    fact_id: str
    correct_first_attempt: bool
    response_time_ms: float


@dataclass(frozen=True)
class RoundPerformance:
    """Summary of one fully completed practice round."""

    correct_count: int
    total_count: int
    average_response_time_ms: float
    completed_at: Optional[datetime] = None
    fact_results: Tuple[FactAttempt, ...] = ()

    @property
    def is_perfect(self) -> bool:
        return self.correct_count == self.total_count


@dataclass(frozen=True)
class AttemptPerformance:
    """Input to a boundary-level transition for one fact."""

    correct_first_attempt: bool
    response_time_ms: float
    consecutive_correct: Optional[int] = None


@dataclass
class RepositionResult:
    unit_id: str
    path_id: str
    previous_position: int
    new_position: int
    skip_number: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "path_id": self.path_id,
            "previous_position": self.previous_position,
            "new_position": self.new_position,
            "skip_number": self.skip_number,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "RepositionResult":
        return cls(
            unit_id=payload["unit_id"],
            path_id=payload["path_id"],
            previous_position=int(payload["previous_position"]),
            new_position=int(payload["new_position"]),
            skip_number=int(payload["skip_number"]),
            timestamp=datetime.fromisoformat(payload["timestamp"]),
        )


@dataclass
class UnitProgress:
    """Per learner progress on a content unit ("stitch")."""

    unit_id: str
    skip_number: int = DEFAULT_SKIP_NUMBER
    completion_count: int = 0
    perfect_count: int = 0
    correct_count: int = 0
    attempted_count: int = 0
    last_completed_at: Optional[datetime] = None

    @property
    def mastery_score(self) -> float:
        if self.attempted_count == 0:
            return 0.0
        return self.correct_count / self.attempted_count

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "skip_number": self.skip_number,
            "completion_count": self.completion_count,
            "perfect_count": self.perfect_count,
            "correct_count": self.correct_count,
            "attempted_count": self.attempted_count,
            "last_completed_at": _iso(self.last_completed_at),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "UnitProgress":
        return cls(
            unit_id=payload["unit_id"],
            skip_number=int(payload.get("skip_number", DEFAULT_SKIP_NUMBER)),
            completion_count=int(payload.get("completion_count", 0)),
            perfect_count=int(payload.get("perfect_count", 0)),
            correct_count=int(payload.get("correct_count", 0)),
            attempted_count=int(payload.get("attempted_count", 0)),
            last_completed_at=_parse_iso(payload.get("last_completed_at")),
        )


@dataclass(frozen=True)
class FactMastery:
    """Boundary-level state for one (learner, fact) pair."""

    fact_id: str
    level: int = MIN_LEVEL
    mastery_score: float = 0.5
    consecutive_correct: int = 0
    consecutive_incorrect: int = 0
    last_response_time_ms: Optional[float] = None
    last_seen_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "fact_id": self.fact_id,
            "level": self.level,
            "mastery_score": self.mastery_score,
            "consecutive_correct": self.consecutive_correct,
            "consecutive_incorrect": self.consecutive_incorrect,
            "last_response_time_ms": self.last_response_time_ms,
            "last_seen_at": _iso(self.last_seen_at),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "FactMastery":
        return cls(
            fact_id=payload["fact_id"],
            level=int(payload.get("level", MIN_LEVEL)),
            mastery_score=float(payload.get("mastery_score", 0.5)),
            consecutive_correct=int(payload.get("consecutive_correct", 0)),
            consecutive_incorrect=int(payload.get("consecutive_incorrect", 0)),
            last_response_time_ms=payload.get("last_response_time_ms"),
            last_seen_at=_parse_iso(payload.get("last_seen_at")),
        )


@dataclass(frozen=True)
class BoundaryLevel:
    level: int
    name: str
    description: str


@dataclass
class BoundaryUpdateResult:
    fact_id: str
    previous_level: int
    new_level: int
    level_changed: bool
    mastery_score: float


@dataclass
class RotationResult:
    previous_active_path: LearningPath
    new_active_path: LearningPath
    rotation_count: int


@dataclass
class ContentUnit:
    """The unit a learner should practice next, with difficulty hints."""

    id: str
    path_id: str
    position: int
    difficulty: int
    skip_number: int
    boundary_level: int
    fact_ids: List[str] = field(default_factory=list)
    fact_levels: Dict[str, int] = field(default_factory=dict)
    version: int = 0


@dataclass
class RoundOutcome:
    reposition: RepositionResult
    mastery_updates: List[BoundaryUpdateResult]
    rotation: Optional[RotationResult]
    version: int


@dataclass
class LearnerState:
    """Everything the scheduler knows about one learner.

    This is the unit of persistence, locking and optimistic versioning.
    """

    learner_id: str
    version: int = 0
    helix: Optional[TripleHelixState] = None
    positions: PositionStore = field(default_factory=PositionStore)
    unit_progress: Dict[str, UnitProgress] = field(default_factory=dict)
    history: Dict[str, List[RepositionResult]] = field(default_factory=dict)
    fact_mastery: Dict[str, FactMastery] = field(default_factory=dict)
    rounds_since_rotation: int = 0

    def copy(self) -> "LearnerState":
        return LearnerState.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        return {
            "learner_id": self.learner_id,
            "version": self.version,
            "helix": self.helix.to_dict() if self.helix else None,
            "positions": self.positions.to_dict(),
            "unit_progress": {key: value.to_dict() for key, value in self.unit_progress.items()},
            "history": {
                key: [record.to_dict() for record in records]
                for key, records in self.history.items()
            },
            "fact_mastery": {key: value.to_dict() for key, value in self.fact_mastery.items()},
            "rounds_since_rotation": self.rounds_since_rotation,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "LearnerState":
        helix = payload.get("helix")
        return cls(
            learner_id=payload["learner_id"],
            version=int(payload.get("version", 0)),
            helix=TripleHelixState.from_dict(helix) if helix else None,
            positions=PositionStore.from_dict(payload.get("positions") or {}),
            unit_progress={
                key: UnitProgress.from_dict(value)
                for key, value in (payload.get("unit_progress") or {}).items()
            },
            history={
                key: [RepositionResult.from_dict(item) for item in records]
                for key, records in (payload.get("history") or {}).items()
            },
            fact_mastery={
                key: FactMastery.from_dict(value)
                for key, value in (payload.get("fact_mastery") or {}).items()
            },
            rounds_since_rotation=int(payload.get("rounds_since_rotation", 0)),
        )


__all__ = [
    "ACTIVE_PATH_ALIAS",
    "AttemptPerformance",
    "BoundaryLevel",
    "BoundaryUpdateResult",
    "ContentUnit",
    "DEFAULT_DIFFICULTY",
    "DEFAULT_PATHS",
    "DEFAULT_SKIP_NUMBER",
    "FactAttempt",
    "FactMastery",
    "LearnerState",
    "LearningPath",
    "MAX_DIFFICULTY",
    "MAX_LEVEL",
    "MIN_DIFFICULTY",
    "MIN_LEVEL",
    "PathStatus",
    "RepositionResult",
    "RotationResult",
    "RoundOutcome",
    "RoundPerformance",
    "SKIP_SEQUENCE",
    "TripleHelixState",
    "UnitProgress",
]
