"""
Standards mastery router.

Endpoints for:
- Per-standard mastery for a (class, grade), recomputed and reconciled
- Manual status cycling and intervention edits
- Quick-check recording
- Per-class threshold configuration
- Per-domain summary
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.database import get_async_session
from src.db.stores import build_sql_stores
from src.mastery import (
    EvidenceCache,
    InterventionNotEditableError,
    InterventionStatus,
    InvalidThresholdConfigError,
    MasteryEngine,
    MasteryError,
    MasteryStores,
    QuickCheckMark,
    StandardMasteryView,
    StorageError,
    UnknownStandardError,
    summarize_by_domain,
)

router = APIRouter()

DEFAULT_ACTOR = "teacher"

_ERROR_STATUS: dict[type[MasteryError], int] = {
    StorageError: 503,
    InvalidThresholdConfigError: 422,
    InterventionNotEditableError: 409,
    UnknownStandardError: 404,
}


# ========================================
# Dependencies
# ========================================


async def get_stores(session: AsyncSession = Depends(get_async_session)) -> MasteryStores:
    """SQL stores bound to the request's session."""
    return build_sql_stores(session)


def get_evidence_cache(request: Request) -> EvidenceCache:
    """Evidence cache shared by every request of the app."""
    return request.app.state.evidence_cache


def get_mastery_engine(
    stores: MasteryStores = Depends(get_stores),
    cache: EvidenceCache = Depends(get_evidence_cache),
) -> MasteryEngine:
    return MasteryEngine(stores, cache=cache)


def _http_error(exc: MasteryError) -> HTTPException:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.warning(f"Mastery request failed: {exc}")
            return HTTPException(status_code=status_code, detail=str(exc))
    logger.exception("Unexpected mastery error")
    return HTTPException(status_code=500, detail=str(exc))


# ========================================
# Request/Response Models
# ========================================


class StandardMasteryResponse(BaseModel):
    """Effective mastery state of one standard."""

    standard_code: str
    effective_status: str
    computed_percentage: Optional[float]
    suggested_status: str
    intervention_status: str
    has_manual_override: bool
    intervention_editable: bool
    domain: Optional[str] = None

    @classmethod
    def from_view(cls, view: StandardMasteryView) -> StandardMasteryResponse:
        return cls(**view.to_dict())


class ClassMasteryResponse(BaseModel):
    """Mastery for every standard of a (class, grade)."""

    class_name: str
    grade: int
    semester: Optional[str]
    thresholds: Dict[str, float]
    standards: List[StandardMasteryResponse]


class CycleRequest(BaseModel):
    actor: str = Field(DEFAULT_ACTOR, description="Who made the change")


class InterventionRequest(BaseModel):
    intervention_status: InterventionStatus
    actor: str = Field(DEFAULT_ACTOR, description="Who made the change")


class QuickCheckRequest(BaseModel):
    """Request model for recording one quick-check mark."""

    class_name: str
    grade: int
    student_id: str
    standard_code: str
    mark: QuickCheckMark


class QuickCheckResponse(BaseModel):
    class_name: str
    grade: int
    student_id: str
    standard_code: str
    mark: str
    created_at: datetime


class ThresholdRequest(BaseModel):
    """Per-class cutoffs; ordering is validated by the engine."""

    above: float
    on: float
    approaching: float


class ThresholdsResponse(BaseModel):
    default: Dict[str, float]
    classes: Dict[str, Dict[str, float]]


class DomainSummaryResponse(BaseModel):
    domain: str
    total: int
    counts: Dict[str, int]
    on_or_above: int
    active_interventions: int


# ========================================
# Thresholds
# ========================================


@router.get("/thresholds", response_model=ThresholdsResponse, summary="List class thresholds")
async def list_thresholds(engine: MasteryEngine = Depends(get_mastery_engine)) -> ThresholdsResponse:
    """Stored per-class cutoffs; invalid stored entries are shown as the default."""
    try:
        configs = await engine.get_all_thresholds()
    except MasteryError as exc:
        raise _http_error(exc) from exc
    return ThresholdsResponse(
        default=engine.default_thresholds.to_dict(),
        classes={name: cfg.to_dict() for name, cfg in configs.items()},
    )


@router.put(
    "/thresholds/{class_name}",
    response_model=Dict[str, float],
    summary="Replace one class's thresholds",
)
async def update_thresholds(
    class_name: str,
    request: ThresholdRequest,
    engine: MasteryEngine = Depends(get_mastery_engine),
) -> Dict[str, float]:
    logger.info(f"Updating thresholds for {class_name}")
    try:
        cfg = await engine.update_thresholds(class_name, request.model_dump())
    except MasteryError as exc:
        raise _http_error(exc) from exc
    return cfg.to_dict()


# ========================================
# Quick Checks
# ========================================


@router.post(
    "/quick-checks",
    response_model=QuickCheckResponse,
    status_code=201,
    summary="Record a quick check",
)
async def record_quick_check(
    request: QuickCheckRequest,
    engine: MasteryEngine = Depends(get_mastery_engine),
) -> QuickCheckResponse:
    engine.select(request.class_name, request.grade)
    try:
        quick_check = await engine.record_quick_check(
            request.student_id, request.standard_code, request.mark
        )
    except MasteryError as exc:
        raise _http_error(exc) from exc
    return QuickCheckResponse(
        class_name=quick_check.class_name,
        grade=quick_check.grade,
        student_id=quick_check.student_id,
        standard_code=quick_check.standard_code,
        mark=quick_check.mark.value,
        created_at=quick_check.created_at,
    )


# ========================================
# Class Mastery
# ========================================


@router.get(
    "/{class_name}/{grade}",
    response_model=ClassMasteryResponse,
    summary="Get mastery for a class and grade",
)
async def get_class_mastery(
    class_name: str,
    grade: int,
    semester: Optional[str] = Query(None, description="Restrict evidence to one semester"),
    engine: MasteryEngine = Depends(get_mastery_engine),
) -> ClassMasteryResponse:
    """
    Recompute suggestions, reconcile them against stored statuses, and
    return the effective state of every standard.

    Stored teacher 'above' statuses are never lowered by reconciliation.
    """
    engine.select(class_name, grade, semester)
    try:
        views = await engine.refresh() or []
    except MasteryError as exc:
        raise _http_error(exc) from exc
    return ClassMasteryResponse(
        class_name=class_name,
        grade=grade,
        semester=semester,
        thresholds=engine.thresholds.to_dict(),
        standards=[StandardMasteryResponse.from_view(v) for v in views],
    )


@router.get(
    "/{class_name}/{grade}/summary",
    response_model=List[DomainSummaryResponse],
    summary="Per-domain mastery summary",
)
async def get_domain_summary(
    class_name: str,
    grade: int,
    semester: Optional[str] = Query(None),
    engine: MasteryEngine = Depends(get_mastery_engine),
) -> List[DomainSummaryResponse]:
    engine.select(class_name, grade, semester)
    try:
        views = await engine.refresh() or []
    except MasteryError as exc:
        raise _http_error(exc) from exc
    return [DomainSummaryResponse(**s.to_dict()) for s in summarize_by_domain(views)]


@router.post(
    "/{class_name}/{grade}/{standard_code}/cycle",
    response_model=StandardMasteryResponse,
    summary="Advance a standard's manual status",
)
async def cycle_status(
    class_name: str,
    grade: int,
    standard_code: str,
    request: Optional[CycleRequest] = None,
    engine: MasteryEngine = Depends(get_mastery_engine),
) -> StandardMasteryResponse:
    """not_started -> below -> approaching -> on -> above -> not_started."""
    actor = request.actor if request else DEFAULT_ACTOR
    engine.select(class_name, grade)
    try:
        await engine.recompute()
        view = await engine.cycle(standard_code, actor)
    except MasteryError as exc:
        raise _http_error(exc) from exc
    if view is None:
        raise HTTPException(status_code=409, detail="Selection changed during update")
    return StandardMasteryResponse.from_view(view)


@router.put(
    "/{class_name}/{grade}/{standard_code}/intervention",
    response_model=StandardMasteryResponse,
    summary="Set a standard's intervention status",
)
async def set_intervention(
    class_name: str,
    grade: int,
    standard_code: str,
    request: InterventionRequest,
    engine: MasteryEngine = Depends(get_mastery_engine),
) -> StandardMasteryResponse:
    """Only allowed while the effective status is below or approaching."""
    engine.select(class_name, grade)
    try:
        await engine.recompute()
        view = await engine.set_intervention(
            standard_code, request.intervention_status, request.actor
        )
    except MasteryError as exc:
        raise _http_error(exc) from exc
    if view is None:
        raise HTTPException(status_code=409, detail="Selection changed during update")
    return StandardMasteryResponse.from_view(view)
