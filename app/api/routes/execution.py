"""
Monthly Execution API Routes
Start, complete and undo monthly execution tracking; read derived progress

Month labels are YYYY-MM (UTC calendar month).
"""

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field
from typing import Dict, List, Optional

from app.api.dependencies import get_catalog, get_execution_service
from app.domain.errors import (
    ExecutionError,
    InvalidStateError,
    RecordAlreadyExistsError,
    RecordNotFoundError,
    UndoPeriodExpiredError,
)
from app.domain.models import ExecutionStatus, MonthlyExecutionRecord, PlannedAmount
from app.domain.services.execution_tracking_service import ExecutionTrackingService
from app.infrastructure.db.repositories.catalog_repository import CatalogRepository
from app.utils.time import month_label as month_label_for, to_utc_iso

router = APIRouter()

MONTH_LABEL_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"

# -------------------------------------------------------------------
# Request / Response models
# -------------------------------------------------------------------

class PlanItem(BaseModel):
    goal_id: str
    planned_amount: float = Field(..., ge=0)
    required_amount: float = Field(0.0, ge=0)
    flex_state: str = "flexible"


class StartTrackingRequest(BaseModel):
    """Request to start tracking a month"""
    month_label: Optional[str] = Field(
        None, pattern=MONTH_LABEL_PATTERN, description="Month in YYYY-MM format (default: current month)"
    )
    plans: List[PlanItem] = Field(default_factory=list)


class GoalSnapshotResponse(BaseModel):
    goal_id: str
    goal_name: str
    currency: str
    planned_amount: float
    required_amount: float


class ExecutionRecordResponse(BaseModel):
    id: str
    month_label: str
    status: str
    status_display: str
    goal_ids: List[str]
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    can_undo_until: Optional[str] = None
    total_planned: float = 0.0
    goal_snapshots: List[GoalSnapshotResponse] = Field(default_factory=list)
    is_frozen: bool = False


class TotalsResponse(BaseModel):
    month_label: str
    status: str
    is_frozen: bool
    totals: Dict[str, float]


class GoalProgressResponse(BaseModel):
    goal_id: str
    goal_name: str
    currency: str
    planned_amount: float
    contributed: float
    remaining_to_close: float
    is_fulfilled: bool


class ProgressResponse(BaseModel):
    month_label: str
    status: str
    progress_pct: float
    goals: List[GoalProgressResponse]


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------

def _http_error(exc: ExecutionError) -> HTTPException:
    if isinstance(exc, RecordNotFoundError):
        status_code = 404
    elif isinstance(exc, (RecordAlreadyExistsError, InvalidStateError)):
        status_code = 409
    elif isinstance(exc, UndoPeriodExpiredError):
        status_code = 410
    else:
        status_code = 400
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})


def _iso(value) -> Optional[str]:
    return to_utc_iso(value) if value is not None else None


def _to_response(record: MonthlyExecutionRecord) -> ExecutionRecordResponse:
    snapshots = record.snapshot.goal_snapshots if record.snapshot else ()
    return ExecutionRecordResponse(
        id=record.id,
        month_label=record.month_label,
        status=record.status.value,
        status_display=record.status.display_name,
        goal_ids=list(record.goal_ids),
        started_at=_iso(record.started_at),
        completed_at=_iso(record.completed_at),
        can_undo_until=_iso(record.can_undo_until),
        total_planned=record.snapshot.total_planned if record.snapshot else 0.0,
        goal_snapshots=[
            GoalSnapshotResponse(
                goal_id=s.goal_id,
                goal_name=s.goal_name,
                currency=s.currency,
                planned_amount=s.planned_amount,
                required_amount=s.required_amount,
            )
            for s in snapshots
        ],
        is_frozen=record.completed_execution is not None,
    )


async def _require_record(service: ExecutionTrackingService, month_label: str) -> MonthlyExecutionRecord:
    record = await service.get_record(month_label)
    if record is None:
        raise _http_error(RecordNotFoundError(f"No execution record for {month_label}"))
    return record


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------

@router.post("/start", response_model=ExecutionRecordResponse)
async def start_tracking(
    request: StartTrackingRequest,
    service: ExecutionTrackingService = Depends(get_execution_service),
    catalog: CatalogRepository = Depends(get_catalog),
):
    month_label = request.month_label or month_label_for(service.clock())
    plans = [
        PlannedAmount(
            goal_id=p.goal_id,
            planned_amount=p.planned_amount,
            required_amount=p.required_amount,
            flex_state=p.flex_state,
        )
        for p in request.plans
    ]
    goals = await catalog.get_goals([p.goal_id for p in plans])
    try:
        record = await service.start_tracking(month_label, plans, goals)
    except ExecutionError as exc:
        raise _http_error(exc)
    return _to_response(record)


@router.get("/history", response_model=List[ExecutionRecordResponse])
async def get_history(
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    records = await service.get_completed_records(limit=limit, offset=offset)
    return [_to_response(r) for r in records]


@router.get("/{month_label}", response_model=ExecutionRecordResponse)
async def get_record(
    month_label: str,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    return _to_response(await _require_record(service, month_label))


@router.post("/{month_label}/complete", response_model=ExecutionRecordResponse)
async def mark_complete(
    month_label: str,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    record = await _require_record(service, month_label)
    try:
        record = await service.mark_complete(record)
    except ExecutionError as exc:
        raise _http_error(exc)
    return _to_response(record)


@router.post("/{month_label}/undo-completion", response_model=ExecutionRecordResponse)
async def undo_completion(
    month_label: str,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    record = await _require_record(service, month_label)
    try:
        record = await service.undo_completion(record)
    except ExecutionError as exc:
        raise _http_error(exc)
    return _to_response(record)


@router.post("/{month_label}/undo-start", response_model=ExecutionRecordResponse)
async def undo_start_tracking(
    month_label: str,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    record = await _require_record(service, month_label)
    try:
        record = await service.undo_start_tracking(record)
    except ExecutionError as exc:
        raise _http_error(exc)
    return _to_response(record)


@router.get("/{month_label}/totals", response_model=TotalsResponse)
async def get_totals(
    month_label: str,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    record = await _require_record(service, month_label)
    totals = await service.get_derived_contribution_totals(record)
    return TotalsResponse(
        month_label=record.month_label,
        status=record.status.value,
        is_frozen=record.status == ExecutionStatus.CLOSED and record.completed_execution is not None,
        totals={goal_id: round(amount, 8) for goal_id, amount in totals.items()},
    )


@router.get("/{month_label}/progress", response_model=ProgressResponse)
async def get_progress(
    month_label: str,
    service: ExecutionTrackingService = Depends(get_execution_service),
):
    record = await _require_record(service, month_label)
    progress_pct = await service.calculate_progress(record)
    goals = await service.get_goal_progress(record)
    return ProgressResponse(
        month_label=record.month_label,
        status=record.status.value,
        progress_pct=round(progress_pct, 4),
        goals=[
            GoalProgressResponse(
                goal_id=g.goal_snapshot.goal_id,
                goal_name=g.goal_snapshot.goal_name,
                currency=g.goal_snapshot.currency,
                planned_amount=g.planned_amount,
                contributed=round(g.contributed, 8),
                remaining_to_close=round(g.remaining_to_close, 8),
                is_fulfilled=g.is_fulfilled,
            )
            for g in goals
        ],
    )
