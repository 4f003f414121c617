"""Pydantic models for the scheduler HTTP API."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .domain import (
    BoundaryLevel,
    BoundaryUpdateResult,
    ContentUnit,
    FactAttempt,
    FactMastery,
    LearnerState,
    LearningPath,
    RepositionResult,
    RotationResult,
    RoundOutcome,
    RoundPerformance,
    TripleHelixState,
)
from .positions import CompressionResult


class LearningPathModel(BaseModel):
    id: str
    name: str
    description: str
    category: str
    difficulty: int
    status: Literal["active", "preparing"]
    current_unit_id: Optional[str] = None
    next_unit_id: Optional[str] = None

    @classmethod
    def from_domain(cls, path: LearningPath) -> "LearningPathModel":
        return cls(
            id=path.id,
            name=path.name,
            description=path.description,
            category=path.category,
            difficulty=path.difficulty,
            status=path.status.value,
            current_unit_id=path.current_unit_id,
            next_unit_id=path.next_unit_id,
        )


class TripleHelixModel(BaseModel):
    active_path: LearningPathModel
    preparing_paths: List[LearningPathModel]
    rotation_count: int
    last_rotation_time: Optional[datetime] = None

    @classmethod
    def from_domain(cls, helix: TripleHelixState) -> "TripleHelixModel":
        return cls(
            active_path=LearningPathModel.from_domain(helix.active),
            preparing_paths=[LearningPathModel.from_domain(path) for path in helix.preparing_paths],
            rotation_count=helix.rotation_count,
            last_rotation_time=helix.last_rotation_time,
        )


class InitializeLearnerRequest(BaseModel):
    """Input body for learner onboarding."""

    initial_difficulty: Optional[int] = None
    units: Dict[str, List[str]] = Field(default_factory=dict)


class LearnerStateResponse(BaseModel):
    learner_id: str
    version: int
    helix: Optional[TripleHelixModel]
    rounds_since_rotation: int

    @classmethod
    def from_domain(cls, state: LearnerState) -> "LearnerStateResponse":
        return cls(
            learner_id=state.learner_id,
            version=state.version,
            helix=TripleHelixModel.from_domain(state.helix) if state.helix else None,
            rounds_since_rotation=state.rounds_since_rotation,
        )


class ContentUnitResponse(BaseModel):
    """Unit handed to the question generator."""

    id: str
    path_id: str
    position: int
    difficulty: int
    skip_number: int
    boundary_level: int
    fact_ids: List[str]
    fact_levels: Dict[str, int]
    version: int

    @classmethod
    def from_domain(cls, unit: ContentUnit) -> "ContentUnitResponse":
        return cls(
            id=unit.id,
            path_id=unit.path_id,
            position=unit.position,
            difficulty=unit.difficulty,
            skip_number=unit.skip_number,
            boundary_level=unit.boundary_level,
            fact_ids=list(unit.fact_ids),
            fact_levels=dict(unit.fact_levels),
            version=unit.version,
        )


class FactResultModel(BaseModel):
    fact_id: str
    correct_first_attempt: bool
    response_time_ms: float


class CompleteRoundRequest(BaseModel):
    """Summary of a fully completed round plus the state version it was served at."""

    unit_id: str
    correct_count: int
    total_count: int
    average_response_time_ms: float
    expected_version: int
    completed_at: Optional[datetime] = None
    fact_results: List[FactResultModel] = Field(default_factory=list)

    @field_validator("unit_id")
    @classmethod
    def validate_unit_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("unit_id must be non-empty")
        return value

    def to_performance(self) -> RoundPerformance:
        return RoundPerformance(
            correct_count=self.correct_count,
            total_count=self.total_count,
            average_response_time_ms=self.average_response_time_ms,
            completed_at=self.completed_at,
            fact_results=tuple(
                FactAttempt(
                    fact_id=result.fact_id,
                    correct_first_attempt=result.correct_first_attempt,
                    response_time_ms=result.response_time_ms,
                )
                for result in self.fact_results
            ),
        )


class RepositionModel(BaseModel):
    unit_id: str
    path_id: str
    previous_position: int
    new_position: int
    skip_number: int
    timestamp: datetime

    @classmethod
    def from_domain(cls, result: RepositionResult) -> "RepositionModel":
        return cls(**result.to_dict())


class BoundaryUpdateModel(BaseModel):
    fact_id: str
    previous_level: int
    new_level: int
    level_changed: bool
    mastery_score: float

    @classmethod
    def from_domain(cls, result: BoundaryUpdateResult) -> "BoundaryUpdateModel":
        return cls(
            fact_id=result.fact_id,
            previous_level=result.previous_level,
            new_level=result.new_level,
            level_changed=result.level_changed,
            mastery_score=result.mastery_score,
        )


class RotationModel(BaseModel):
    previous_active_path: LearningPathModel
    new_active_path: LearningPathModel
    rotation_count: int

    @classmethod
    def from_domain(cls, result: RotationResult) -> "RotationModel":
        return cls(
            previous_active_path=LearningPathModel.from_domain(result.previous_active_path),
            new_active_path=LearningPathModel.from_domain(result.new_active_path),
            rotation_count=result.rotation_count,
        )


class CompleteRoundResponse(BaseModel):
    reposition: RepositionModel
    mastery_updates: List[BoundaryUpdateModel]
    rotation: Optional[RotationModel] = None
    version: int

    @classmethod
    def from_domain(cls, outcome: RoundOutcome) -> "CompleteRoundResponse":
        return cls(
            reposition=RepositionModel.from_domain(outcome.reposition),
            mastery_updates=[BoundaryUpdateModel.from_domain(item) for item in outcome.mastery_updates],
            rotation=RotationModel.from_domain(outcome.rotation) if outcome.rotation else None,
            version=outcome.version,
        )


class AbandonRoundRequest(BaseModel):
    unit_id: str


class VersionedRequest(BaseModel):
    expected_version: Optional[int] = None


class DifficultyRequest(VersionedRequest):
    difficulty: int


class AddUnitRequest(VersionedRequest):
    unit_id: str
    position: Optional[int] = None


class AddUnitResponse(BaseModel):
    unit_id: str
    path_id: str
    position: int


class CompressRequest(VersionedRequest):
    dry_run: bool = False


class PositionStatsModel(BaseModel):
    total_positions: int
    gaps: int
    largest_position: int


class PositionChangeModel(BaseModel):
    unit_id: str
    from_position: int
    to_position: int


class CompressionResponse(BaseModel):
    path_id: str
    dry_run: bool
    before: PositionStatsModel
    after: PositionStatsModel
    positions_changed: List[PositionChangeModel]

    @classmethod
    def from_domain(cls, result: CompressionResult) -> "CompressionResponse":
        return cls(
            path_id=result.path_id,
            dry_run=result.dry_run,
            before=PositionStatsModel(**result.before.to_dict()),
            after=PositionStatsModel(**result.after.to_dict()),
            positions_changed=[
                PositionChangeModel(unit_id=unit_id, from_position=old, to_position=new)
                for unit_id, old, new in result.positions_changed
            ],
        )


class QueueEntryModel(BaseModel):
    position: int
    unit_id: str


class QueueResponse(BaseModel):
    path_id: str
    entries: List[QueueEntryModel]


class HistoryResponse(BaseModel):
    unit_id: str
    history: List[RepositionModel]


class FactMasteryResponse(BaseModel):
    fact_id: str
    level: int
    mastery_score: float
    consecutive_correct: int
    consecutive_incorrect: int
    last_response_time_ms: Optional[float] = None
    last_seen_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, mastery: FactMastery) -> "FactMasteryResponse":
        return cls(
            fact_id=mastery.fact_id,
            level=mastery.level,
            mastery_score=mastery.mastery_score,
            consecutive_correct=mastery.consecutive_correct,
            consecutive_incorrect=mastery.consecutive_incorrect,
            last_response_time_ms=mastery.last_response_time_ms,
            last_seen_at=mastery.last_seen_at,
        )


class SetLevelRequest(VersionedRequest):
    level: int


class InitializeFactRequest(BaseModel):
    start_level: int = 1


class BoundaryLevelModel(BaseModel):
    level: int
    name: str
    description: str

    @classmethod
    def from_domain(cls, level: BoundaryLevel) -> "BoundaryLevelModel":
        return cls(level=level.level, name=level.name, description=level.description)


__all__ = [
    "AbandonRoundRequest",
    "AddUnitRequest",
    "AddUnitResponse",
    "BoundaryLevelModel",
    "BoundaryUpdateModel",
    "CompleteRoundRequest",
    "CompleteRoundResponse",
    "CompressRequest",
    "CompressionResponse",
    "ContentUnitResponse",
    "DifficultyRequest",
    "FactMasteryResponse",
    "HistoryResponse",
    "InitializeFactRequest",
    "InitializeLearnerRequest",
    "LearnerStateResponse",
    "LearningPathModel",
    "QueueEntryModel",
    "QueueResponse",
    "RepositionModel",
    "RotationModel",
    "SetLevelRequest",
    "TripleHelixModel",
    "VersionedRequest",
]
