import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin, require_driver
from ..db import get_db
from ..models.enums import TaskStatus
from ..models.models import User
from ..schemas.tasks import TaskResponse
from ..services import analytics
from ..services.permissions import resolve_company_id
from ..services.time_rules import Clock, get_clock


router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/tasks/status-distribution")
def status_distribution(
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    scope = resolve_company_id(user, company_id)
    return analytics.status_distribution(db, user, scope)


@router.get("/tasks/trend")
def task_trend(
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    return analytics.task_trend(db, user, scope, clock)


@router.get("/tasks/calendar")
def task_calendar(
    month: Optional[str] = Query(None, description="YYYY-MM, defaults to the current month"),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    return analytics.task_calendar(db, user, scope, analytics.parse_month(month, clock))


@router.get("/drivers/performance")
def driver_performance(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    scope = resolve_company_id(user, company_id)
    return analytics.driver_performance(db, scope, start_date, end_date, limit)


@router.get("/history", response_model=List[TaskResponse])
def driver_history(
    status: Optional[TaskStatus] = Query(None),
    limit: int = Query(analytics.HISTORY_LIMIT, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(require_driver),
):
    """The signed-in driver's tasks, most recent scheduled date first."""
    return analytics.driver_history(db, user, status, limit)
