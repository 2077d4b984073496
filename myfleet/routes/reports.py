import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin, require_driver
from ..config import settings
from ..db import get_db
from ..models.enums import TaskStatus
from ..models.models import User
from ..services import activity, reports
from ..services.errors import ValidationError
from ..services.permissions import is_admin, resolve_company_id
from ..services.time_rules import Clock, get_clock, parse_week_start, resolve_window


router = APIRouter(prefix="/reports", tags=["reports"])


def _window(
    start_date: Optional[date],
    end_date: Optional[date],
    anchor: Optional[date],
    week_start: Optional[str],
    default_week_start: str,
    clock: Clock,
):
    return resolve_window(start_date, end_date, anchor, parse_week_start(week_start or default_week_start), clock)


@router.get("/driver-activity")
def driver_activity(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    anchor: Optional[date] = Query(None),
    week_start: Optional[str] = Query(None),
    include_pending_time_off: bool = Query(False),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    start, end = _window(start_date, end_date, anchor, week_start, settings.admin_week_start, clock)
    return activity.driver_activity(db, scope, start, end, include_pending_time_off)


@router.get("/weekly")
def weekly_report(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    anchor: Optional[date] = Query(None),
    week_start: Optional[str] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    start, end = _window(start_date, end_date, anchor, week_start, settings.admin_week_start, clock)
    return reports.weekly_report(db, scope, start, end)


@router.get("/driver-summary")
def driver_summary(
    db: Session = Depends(get_db),
    user: User = Depends(require_driver),
    clock: Clock = Depends(get_clock),
):
    return reports.driver_summary(db, user, clock)


@router.get("/export/csv")
def export_csv(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    anchor: Optional[date] = Query(None),
    week_start: Optional[str] = Query(None),
    status: Optional[TaskStatus] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    start, end = _window(start_date, end_date, anchor, week_start, settings.admin_week_start, clock)
    filename, content = reports.export_weekly_csv(db, scope, start, end, status)
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export/pdf")
def export_pdf(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    anchor: Optional[date] = Query(None),
    week_start: Optional[str] = Query(None),
    driver_id: Optional[uuid.UUID] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    """Weekly invoice. Drivers always get their own; admins pick a driver."""
    scope = resolve_company_id(user, company_id)
    if is_admin(user):
        if driver_id is None:
            raise ValidationError("driver_id is required")
        target = driver_id
        default_week = settings.admin_week_start
    else:
        target = user.id
        default_week = settings.driver_week_start
    start, end = _window(start_date, end_date, anchor, week_start, default_week, clock)
    filename, pdf_bytes = reports.export_invoice_pdf(db, scope, target, start, end, clock)
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
