"""Recurrence router - FastAPI endpoints for recurring service visits"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ...database import get_db
from ...locks import RuleLockManager, build_lock_manager
from ...shared.validators import parse_service_type, parse_status, parse_window_bound
from .entities import RuleFilters
from .providers import SqlAppointmentFactory, SqlDirectory, SqlTeamCalendar
from .repository import SqlRecurrenceRepository
from .schemas import (
    ExecutionRequest,
    OccurrenceResponse,
    RecurrenceCreate,
    RecurrenceListResponse,
    RecurrenceResponse,
    RecurrenceUpdate,
    ScheduleBatchResponse,
    ScheduleWindowRequest,
)
from .service import RecurrenceService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recurrences", tags=["Recurrences"])

# One lock manager per process so every request shares the same local locks
_lock_manager: Optional[RuleLockManager] = None


def get_lock_manager() -> RuleLockManager:
    global _lock_manager
    if _lock_manager is None:
        _lock_manager = build_lock_manager()
    return _lock_manager


def get_recurrence_service(
    db: Session = Depends(get_db),
    locks: RuleLockManager = Depends(get_lock_manager),
) -> RecurrenceService:
    """Dependency injection for RecurrenceService"""
    return RecurrenceService(
        repo=SqlRecurrenceRepository(db),
        calendar=SqlTeamCalendar(db),
        appointments=SqlAppointmentFactory(db),
        directory=SqlDirectory(db),
        locks=locks,
    )


def _parse_filter(parser, value, name: str):
    if value is None or value == "":
        return None
    try:
        return parser(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {e}")


def _parse_window(value: str, name: str):
    try:
        return parse_window_bound(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {e}")


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=RecurrenceListResponse)
def list_recurrences(
    status: Optional[str] = Query(None, description="active, paused, completed, cancelled or a status code"),
    type: Optional[str] = Query(None, description="Service type name or code"),
    search: Optional[str] = Query(None, description="Matches title, address and notes"),
    companyId: Optional[int] = Query(None),
    teamId: Optional[int] = Query(None),
    customerId: Optional[int] = Query(None),
    startDate: Optional[date] = Query(None, description="Rules still running on or after this date"),
    endDate: Optional[date] = Query(None, description="Rules starting on or before this date"),
    pageNumber: int = Query(1, ge=1),
    pageSize: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    service: RecurrenceService = Depends(get_recurrence_service),
):
    """List recurrences with filters, newest first"""
    filters = RuleFilters(
        status=_parse_filter(parse_status, status, "status"),
        service_type=_parse_filter(parse_service_type, type, "type"),
        search=search or None,
        company_id=companyId,
        team_id=teamId,
        customer_id=customerId,
        start_date=startDate,
        end_date=endDate,
    )
    page = service.list_rules(filters, pageNumber, pageSize)
    return RecurrenceListResponse.from_page(page)


@router.get("/{recurrence_id}", response_model=RecurrenceResponse)
def get_recurrence(recurrence_id: int, service: RecurrenceService = Depends(get_recurrence_service)):
    return RecurrenceResponse.from_rule(service.get(recurrence_id))


@router.post("", response_model=RecurrenceResponse, status_code=201)
def create_recurrence(data: RecurrenceCreate, service: RecurrenceService = Depends(get_recurrence_service)):
    """Create a recurrence; its first visit becomes nextExecution"""
    return RecurrenceResponse.from_rule(service.create(data))


@router.put("/{recurrence_id}", response_model=RecurrenceResponse)
def update_recurrence(
    recurrence_id: int,
    data: RecurrenceUpdate,
    service: RecurrenceService = Depends(get_recurrence_service),
):
    return RecurrenceResponse.from_rule(service.update(recurrence_id, data))


@router.delete("/{recurrence_id}", response_model=RecurrenceResponse)
def cancel_recurrence(recurrence_id: int, service: RecurrenceService = Depends(get_recurrence_service)):
    """Cancel a recurrence. The record and its existing appointments are kept."""
    return RecurrenceResponse.from_rule(service.cancel(recurrence_id))


# ============================================================================
# LIFECYCLE
# ============================================================================


@router.post("/{recurrence_id}/pause", response_model=RecurrenceResponse)
def pause_recurrence(recurrence_id: int, service: RecurrenceService = Depends(get_recurrence_service)):
    return RecurrenceResponse.from_rule(service.pause(recurrence_id))


@router.post("/{recurrence_id}/resume", response_model=RecurrenceResponse)
def resume_recurrence(recurrence_id: int, service: RecurrenceService = Depends(get_recurrence_service)):
    """Resume a paused recurrence; visits missed while paused are skipped"""
    return RecurrenceResponse.from_rule(service.resume(recurrence_id))


@router.post("/{recurrence_id}/executions", response_model=RecurrenceResponse)
def record_execution(
    recurrence_id: int,
    data: ExecutionRequest,
    service: RecurrenceService = Depends(get_recurrence_service),
):
    """Record a completed visit and advance nextExecution"""
    return RecurrenceResponse.from_rule(service.record_execution(recurrence_id, data.occurrenceTime))


# ============================================================================
# OCCURRENCES & SCHEDULING
# ============================================================================


@router.get("/{recurrence_id}/occurrences", response_model=list[OccurrenceResponse])
def list_occurrences(
    recurrence_id: int,
    windowStart: str = Query(..., description="Inclusive; a bare date means its first instant"),
    windowEnd: str = Query(..., description="Inclusive; a bare date means the whole day"),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    service: RecurrenceService = Depends(get_recurrence_service),
):
    """Preview the visits a recurrence produces in a window"""
    window_start = _parse_window(windowStart, "windowStart")
    window_end = _parse_window(windowEnd, "windowEnd")
    occurrences = service.list_occurrences(recurrence_id, window_start, window_end, limit)
    return [OccurrenceResponse.from_occurrence(o) for o in occurrences]


@router.post("/{recurrence_id}/schedule", response_model=ScheduleBatchResponse)
def schedule_recurrence(
    recurrence_id: int,
    data: ScheduleWindowRequest,
    service: RecurrenceService = Depends(get_recurrence_service),
):
    """
    Create appointments for the window's visits.

    Conflicting visits are reported, not created; visits already on the
    calendar are skipped.
    """
    batch = service.schedule_occurrences(recurrence_id, data.windowStart, data.windowEnd)
    return ScheduleBatchResponse.from_batch(batch)
