"""FastAPI application wiring for the curriculum scheduler."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from .config import SchedulerConfig
from .errors import NOT_FOUND_CODES, VALIDATION_CODES, ErrorCode, SchedulerError
from .metrics import METRICS
from .models import (
    AbandonRoundRequest,
    AddUnitRequest,
    AddUnitResponse,
    BoundaryLevelModel,
    CompleteRoundRequest,
    CompleteRoundResponse,
    CompressionResponse,
    CompressRequest,
    ContentUnitResponse,
    DifficultyRequest,
    FactMasteryResponse,
    HistoryResponse,
    InitializeFactRequest,
    InitializeLearnerRequest,
    LearnerStateResponse,
    LearningPathModel,
    QueueEntryModel,
    QueueResponse,
    RepositionModel,
    RotationModel,
    SetLevelRequest,
    TripleHelixModel,
    VersionedRequest,
)
from .services import SchedulerService
from .storage import (
    InMemoryFactRepository,
    InMemoryLearnerStateRepository,
    SqliteLearnerStateRepository,
)


app = FastAPI(title="Helix Scheduler", version="0.1.0")


def status_for(code: ErrorCode) -> int:
    if code in NOT_FOUND_CODES:
        return 404
    if code in VALIDATION_CODES:
        return 400
    return 409


@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc.code), content=exc.to_dict())


def get_scheduler_service() -> SchedulerService:
    return app.state.scheduler_service


@app.on_event("startup")
def startup() -> None:
    config = SchedulerConfig.from_env()
    if config.db_path:
        repository = SqliteLearnerStateRepository(Path(config.db_path))
    else:
        repository = InMemoryLearnerStateRepository()
    if config.curriculum_path:
        facts = InMemoryFactRepository.from_json_file(Path(config.curriculum_path))
    else:
        facts = InMemoryFactRepository()

    app.state.config = config
    app.state.repository = repository
    app.state.scheduler_service = SchedulerService(repository, facts, metrics=METRICS, config=config)
    logger.info(
        f"Scheduler started (store={'sqlite' if config.db_path else 'memory'}, "
        f"rounds_per_rotation={config.rounds_per_rotation})"
    )


@app.post("/v1/learners/{learner_id}", response_model=TripleHelixModel, status_code=201)
def initialize_learner(
    learner_id: str,
    request: InitializeLearnerRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> TripleHelixModel:
    helix = service.initialize_learner(
        learner_id, initial_difficulty=request.initial_difficulty, units=request.units
    )
    return TripleHelixModel.from_domain(helix)


@app.get("/v1/learners/{learner_id}", response_model=LearnerStateResponse)
def get_learner(
    learner_id: str, service: SchedulerService = Depends(get_scheduler_service)
) -> LearnerStateResponse:
    return LearnerStateResponse.from_domain(service.get_state(learner_id))


@app.get("/v1/learners/{learner_id}/paths/{path_id}/next", response_model=ContentUnitResponse)
def next_unit(
    learner_id: str, path_id: str, service: SchedulerService = Depends(get_scheduler_service)
) -> ContentUnitResponse:
    return ContentUnitResponse.from_domain(service.get_next_unit(learner_id, path_id))


@app.get("/v1/learners/{learner_id}/paths/{path_id}/queue", response_model=QueueResponse)
def path_queue(
    learner_id: str, path_id: str, service: SchedulerService = Depends(get_scheduler_service)
) -> QueueResponse:
    resolved, entries = service.get_queue(learner_id, path_id)
    return QueueResponse(
        path_id=resolved,
        entries=[QueueEntryModel(position=position, unit_id=unit_id) for position, unit_id in entries],
    )


@app.post("/v1/learners/{learner_id}/paths/{path_id}/units", response_model=AddUnitResponse, status_code=201)
def add_unit(
    learner_id: str,
    path_id: str,
    request: AddUnitRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> AddUnitResponse:
    resolved, position = service.add_unit(
        learner_id,
        path_id,
        request.unit_id,
        position=request.position,
        expected_version=request.expected_version,
    )
    return AddUnitResponse(unit_id=request.unit_id, path_id=resolved, position=position)


@app.post("/v1/learners/{learner_id}/paths/{path_id}/compress", response_model=CompressionResponse)
def compress_path(
    learner_id: str,
    path_id: str,
    request: CompressRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> CompressionResponse:
    result = service.compress_path(
        learner_id, path_id, dry_run=request.dry_run, expected_version=request.expected_version
    )
    return CompressionResponse.from_domain(result)


@app.put("/v1/learners/{learner_id}/paths/{path_id}/difficulty", response_model=LearningPathModel)
def update_difficulty(
    learner_id: str,
    path_id: str,
    request: DifficultyRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> LearningPathModel:
    path = service.update_path_difficulty(
        learner_id, path_id, request.difficulty, expected_version=request.expected_version
    )
    return LearningPathModel.from_domain(path)


@app.post("/v1/learners/{learner_id}/rotate", response_model=RotationModel)
def rotate(
    learner_id: str,
    request: VersionedRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> RotationModel:
    return RotationModel.from_domain(service.rotate(learner_id, request.expected_version))


@app.post("/v1/learners/{learner_id}/rounds", response_model=CompleteRoundResponse)
def complete_round(
    learner_id: str,
    request: CompleteRoundRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> CompleteRoundResponse:
    outcome = service.complete_round(
        learner_id,
        request.unit_id,
        request.to_performance(),
        expected_version=request.expected_version,
    )
    return CompleteRoundResponse.from_domain(outcome)


@app.post("/v1/learners/{learner_id}/rounds/abandon", status_code=204)
def abandon_round(
    learner_id: str,
    request: AbandonRoundRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> None:
    service.abandon_round(learner_id, request.unit_id)


@app.get("/v1/learners/{learner_id}/units/{unit_id}/history", response_model=HistoryResponse)
def unit_history(
    learner_id: str,
    unit_id: str,
    limit: Optional[int] = None,
    service: SchedulerService = Depends(get_scheduler_service),
) -> HistoryResponse:
    history = service.get_history(learner_id, unit_id, limit)
    return HistoryResponse(
        unit_id=unit_id, history=[RepositionModel.from_domain(record) for record in history]
    )


@app.post("/v1/learners/{learner_id}/facts/{fact_id}", response_model=FactMasteryResponse, status_code=201)
def initialize_fact(
    learner_id: str,
    fact_id: str,
    request: InitializeFactRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> FactMasteryResponse:
    mastery = service.initialize_fact_mastery(learner_id, fact_id, request.start_level)
    return FactMasteryResponse.from_domain(mastery)


@app.get("/v1/learners/{learner_id}/facts/{fact_id}", response_model=FactMasteryResponse)
def fact_mastery(
    learner_id: str, fact_id: str, service: SchedulerService = Depends(get_scheduler_service)
) -> FactMasteryResponse:
    return FactMasteryResponse.from_domain(service.get_fact_mastery(learner_id, fact_id))


@app.put("/v1/learners/{learner_id}/facts/{fact_id}/level", response_model=FactMasteryResponse)
def set_fact_level(
    learner_id: str,
    fact_id: str,
    request: SetLevelRequest,
    service: SchedulerService = Depends(get_scheduler_service),
) -> FactMasteryResponse:
    mastery = service.set_fact_level(
        learner_id, fact_id, request.level, expected_version=request.expected_version
    )
    return FactMasteryResponse.from_domain(mastery)


@app.get("/v1/boundary-levels", response_model=List[BoundaryLevelModel])
def boundary_levels() -> List[BoundaryLevelModel]:
    return [BoundaryLevelModel.from_domain(level) for level in SchedulerService.all_boundary_levels()]


@app.get("/v1/boundary-levels/{level}", response_model=BoundaryLevelModel)
def boundary_level(level: int) -> BoundaryLevelModel:
    return BoundaryLevelModel.from_domain(SchedulerService.get_boundary_level_description(level))


@app.get("/v1/metrics")
def metrics() -> dict:
    return METRICS.snapshot()


__all__ = ["app", "status_for"]
