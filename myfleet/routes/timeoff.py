import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin, require_driver
from ..db import get_db
from ..models.enums import TimeOffStatus
from ..models.models import User
from ..schemas.timeoff import (
    TimeOffCreate,
    TimeOffDecision,
    TimeOffDetailsUpdate,
    TimeOffResponse,
    TimeOffYearStats,
)
from ..services import timeoff as timeoff_service
from ..services.permissions import resolve_company_id
from ..services.time_rules import Clock, get_clock


router = APIRouter(prefix="/timeoff", tags=["timeoff"])


@router.get("", response_model=List[TimeOffResponse])
def list_requests(
    status: Optional[TimeOffStatus] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scope = resolve_company_id(user, company_id)
    return timeoff_service.list_requests(db, user, scope, status, user_id)


@router.post("", response_model=TimeOffResponse, status_code=201)
def submit_request(
    payload: TimeOffCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_driver),
    clock: Clock = Depends(get_clock),
):
    return timeoff_service.submit_request(db, user, payload.request_date, payload.end_date, payload.reason, clock)


@router.get("/driver-stats", response_model=TimeOffYearStats)
def driver_stats(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    return timeoff_service.yearly_stats(db, user, scope, year or clock.today().year)


@router.get("/{request_id}", response_model=TimeOffResponse)
def get_request(request_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return timeoff_service.get_request(db, request_id, user)


@router.put("/{request_id}/approve", response_model=TimeOffResponse)
def approve_request(
    request_id: uuid.UUID,
    payload: Optional[TimeOffDecision] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    request = timeoff_service.get_request(db, request_id, user)
    notes = payload.admin_notes if payload else None
    return timeoff_service.decide_request(db, request, user, "approve", notes, clock)


@router.put("/{request_id}/reject", response_model=TimeOffResponse)
def reject_request(
    request_id: uuid.UUID,
    payload: Optional[TimeOffDecision] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    request = timeoff_service.get_request(db, request_id, user)
    notes = payload.admin_notes if payload else None
    return timeoff_service.decide_request(db, request, user, "reject", notes, clock)


@router.put("/{request_id}/details", response_model=TimeOffResponse)
def update_details(
    request_id: uuid.UUID,
    payload: TimeOffDetailsUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    request = timeoff_service.get_request(db, request_id, user)
    return timeoff_service.update_details(db, request, user, payload.model_dump(exclude_unset=True), clock)


@router.delete("/{request_id}")
def delete_request(request_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    request = timeoff_service.get_request(db, request_id, user)
    timeoff_service.delete_request(db, request, user)
    return {"message": "Time off request deleted successfully"}
