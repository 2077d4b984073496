"""
Time-off requests.
A request covers request_date..end_date (end_date NULL = single day) and is
decided once: PENDING -> APPROVED | REJECTED. Repeating the same decision is
idempotent; crossing from one decision to the other is refused.
"""
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..models.enums import TimeOffStatus, UserRole
from ..models.models import TimeOffRequest, User
from .audit import compute_diff
from .errors import InvalidTransition, NotFound, PermissionDenied, ValidationError
from .events import (
    bus,
    EventBus,
    TimeOffSubmitted,
    TimeOffApproved,
    TimeOffRejected,
    TimeOffUpdated,
    TimeOffDeleted,
)
from .permissions import ensure_admin, ensure_company_access, ensure_driver, is_admin, is_driver
from .time_rules import Clock, clip_range


DECISIONS = {
    "approve": TimeOffStatus.approved,
    "reject": TimeOffStatus.rejected,
}


def _validate_range(request_date: Optional[date], end_date: Optional[date]) -> None:
    if request_date is None:
        raise ValidationError("request_date is required")
    if end_date is not None and end_date < request_date:
        raise ValidationError("end_date must be on or after request_date")


def request_snapshot(request: TimeOffRequest) -> Dict[str, Any]:
    return {
        "request_date": request.request_date.isoformat(),
        "end_date": request.end_date.isoformat() if request.end_date else None,
        "reason": request.reason,
        "admin_notes": request.admin_notes,
        "status": request.status,
    }


def _context(request: TimeOffRequest, driver: Optional[User] = None) -> Dict[str, Any]:
    context = {"request_date": request.request_date.isoformat(), "days": request.days}
    if request.end_date:
        context["end_date"] = request.end_date.isoformat()
    if driver is not None:
        context["driver_name"] = driver.name
    return context


def get_request(db: Session, request_id: uuid.UUID, actor: User) -> TimeOffRequest:
    request = db.query(TimeOffRequest).filter(TimeOffRequest.id == request_id).populate_existing().first()
    if not request:
        raise NotFound("Time off request not found")
    ensure_company_access(actor, request, "Time off request")
    if not is_admin(actor) and request.user_id != actor.id:
        raise PermissionDenied("Not allowed to access this request")
    return request


def list_requests(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    status: Optional[TimeOffStatus] = None,
    user_id: Optional[uuid.UUID] = None,
) -> List[TimeOffRequest]:
    query = db.query(TimeOffRequest).filter(TimeOffRequest.company_id == company_id)
    if is_driver(actor):
        query = query.filter(TimeOffRequest.user_id == actor.id)
    elif user_id:
        query = query.filter(TimeOffRequest.user_id == user_id)
    if status:
        query = query.filter(TimeOffRequest.status == TimeOffStatus(status).value)
    return query.order_by(TimeOffRequest.request_date.desc(), TimeOffRequest.created_at.desc()).all()


def submit_request(
    db: Session,
    driver: User,
    request_date: date,
    end_date: Optional[date],
    reason: Optional[str],
    clock: Clock,
    event_bus: EventBus = bus,
) -> TimeOffRequest:
    ensure_driver(driver, "request time off")
    _validate_range(request_date, end_date)
    if end_date == request_date:
        end_date = None

    request = TimeOffRequest(
        company_id=driver.company_id,
        user_id=driver.id,
        request_date=request_date,
        end_date=end_date,
        reason=reason,
        status=TimeOffStatus.pending.value,
        created_at=clock.now(),
    )
    db.add(request)
    db.commit()
    db.refresh(request)

    event_bus.publish(db, TimeOffSubmitted(
        entity_id=request.id,
        company_id=request.company_id,
        actor_id=driver.id,
        actor_role=driver.role,
        driver_id=driver.id,
        changes={"after": request_snapshot(request)},
        context=_context(request, driver),
    ))
    return request


def decide_request(
    db: Session,
    request: TimeOffRequest,
    actor: User,
    decision: str,
    admin_notes: Optional[str],
    clock: Clock,
    event_bus: EventBus = bus,
) -> TimeOffRequest:
    """
    Approve or reject. Re-applying the current decision only updates the
    notes when they differ, and is a complete no-op when they do not.
    """
    ensure_admin(actor)
    ensure_company_access(actor, request, "Time off request")
    if decision not in DECISIONS:
        raise ValidationError(f"Unknown decision: {decision}")
    target = DECISIONS[decision]
    current = request.status

    if current == target.value:
        if admin_notes is None or admin_notes == request.admin_notes:
            return request
        before = request_snapshot(request)
        request.admin_notes = admin_notes
        request.updated_at = clock.now()
        db.commit()
        db.refresh(request)
        event_bus.publish(db, TimeOffUpdated(
            entity_id=request.id,
            company_id=request.company_id,
            actor_id=actor.id,
            actor_role=actor.role,
            changes=compute_diff(before, request_snapshot(request)),
        ))
        return request

    if current != TimeOffStatus.pending.value:
        raise InvalidTransition(f"Cannot {decision} a request that is already {current}")

    now = clock.now()
    result = db.execute(
        update(TimeOffRequest)
        .where(TimeOffRequest.id == request.id, TimeOffRequest.status == TimeOffStatus.pending.value)
        .values(
            status=target.value,
            admin_notes=admin_notes if admin_notes is not None else request.admin_notes,
            reviewed_by_id=actor.id,
            reviewed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransition("Request was decided by another admin; reload and try again")
    db.commit()
    db.refresh(request)

    event_type = TimeOffApproved if target == TimeOffStatus.approved else TimeOffRejected
    event_bus.publish(db, event_type(
        entity_id=request.id,
        company_id=request.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        driver_id=request.user_id,
        changes={"status": {"before": current, "after": request.status}},
        context=_context(request),
    ))
    return request


def update_details(
    db: Session,
    request: TimeOffRequest,
    actor: User,
    fields: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> TimeOffRequest:
    """Admin correction of dates/reason; status is untouched."""
    ensure_admin(actor)
    ensure_company_access(actor, request, "Time off request")
    request_date = fields.get("request_date", request.request_date)
    end_date = fields.get("end_date", request.end_date)
    _validate_range(request_date, end_date)
    if end_date == request_date:
        end_date = None

    before = request_snapshot(request)
    request.request_date = request_date
    request.end_date = end_date
    if "reason" in fields:
        request.reason = fields["reason"]
    if "admin_notes" in fields:
        request.admin_notes = fields["admin_notes"]
    request.updated_at = clock.now()
    db.commit()
    db.refresh(request)

    changes = compute_diff(before, request_snapshot(request))
    if changes:
        event_bus.publish(db, TimeOffUpdated(
            entity_id=request.id,
            company_id=request.company_id,
            actor_id=actor.id,
            actor_role=actor.role,
            changes=changes,
        ))
    return request


def delete_request(db: Session, request: TimeOffRequest, actor: User, event_bus: EventBus = bus) -> None:
    """Admins delete any request of their company; drivers only their own PENDING ones."""
    ensure_company_access(actor, request, "Time off request")
    if not is_admin(actor):
        if request.user_id != actor.id:
            raise PermissionDenied("You can only delete your own requests")
        if request.status != TimeOffStatus.pending.value:
            raise InvalidTransition("Only pending requests can be deleted")

    event = TimeOffDeleted(
        entity_id=request.id,
        company_id=request.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        changes={"before": request_snapshot(request)},
    )
    db.delete(request)
    db.commit()
    event_bus.publish(db, event)


def days_in_year(request, year: int) -> int:
    clipped = clip_range(request.request_date, request.end_date or request.request_date, date(year, 1, 1), date(year, 12, 31))
    if not clipped:
        return 0
    return (clipped[1] - clipped[0]).days + 1


def yearly_stats(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    year: int,
) -> Dict[str, Any]:
    """Approved and pending day counts per driver, counting only days inside year."""
    drivers_query = db.query(User).filter(User.company_id == company_id, User.role == UserRole.driver.value)
    if is_driver(actor):
        drivers_query = drivers_query.filter(User.id == actor.id)
    drivers = drivers_query.order_by(User.name.asc()).all()

    requests = db.query(TimeOffRequest).filter(
        TimeOffRequest.company_id == company_id,
        TimeOffRequest.status.in_([TimeOffStatus.approved.value, TimeOffStatus.pending.value]),
        TimeOffRequest.request_date <= date(year, 12, 31),
    ).all()

    totals: Dict[Any, Dict[str, int]] = {d.id: {"approved_days": 0, "pending_days": 0} for d in drivers}
    for request in requests:
        if request.user_id not in totals:
            continue
        days = days_in_year(request, year)
        key = "approved_days" if request.status == TimeOffStatus.approved.value else "pending_days"
        totals[request.user_id][key] += days

    return {
        "year": year,
        "drivers": [
            {"user_id": d.id, "name": d.name, "personal_id": d.personal_id, **totals[d.id]}
            for d in drivers
        ],
    }
