"""
Driver deductions (van rental, insurance, fuel, ...).
They are informational: invoices list them and show a net figure, but task
earnings are never reduced by them.
"""
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.enums import DeductionFrequency, DeductionStatus
from ..models.models import Deduction, User
from .activity import money
from .audit import compute_diff
from .errors import NotFound, PermissionDenied, ValidationError
from .events import bus, EventBus, DeductionCreated, DeductionUpdated, DeductionDeleted
from .permissions import ensure_admin, ensure_company_access, is_admin, is_driver
from .time_rules import Clock


UPDATABLE_FIELDS = ("type", "description", "amount", "frequency", "status", "start_date", "end_date", "applied")


def deduction_snapshot(deduction: Deduction) -> Dict[str, Any]:
    return {
        "type": deduction.type,
        "description": deduction.description,
        "amount": str(deduction.amount),
        "frequency": deduction.frequency,
        "status": deduction.status,
        "start_date": deduction.start_date.isoformat() if deduction.start_date else None,
        "end_date": deduction.end_date.isoformat() if deduction.end_date else None,
        "applied": deduction.applied,
    }


def is_applicable(deduction, week_start: date, week_end: date) -> bool:
    """
    Whether a deduction shows on the invoice for [week_start, week_end].
    WEEKLY always; MONTHLY in the week starting within the first seven days
    of a month; ONE_TIME until it is marked applied.
    """
    if deduction.status != DeductionStatus.active.value:
        return False
    if deduction.start_date > week_end:
        return False
    if deduction.end_date is not None and deduction.end_date < week_start:
        return False
    if deduction.frequency == DeductionFrequency.weekly.value:
        return True
    if deduction.frequency == DeductionFrequency.monthly.value:
        return week_start.day <= 7
    if deduction.frequency == DeductionFrequency.one_time.value:
        return not deduction.applied
    return False


def applicable_deductions(deductions: Iterable, week_start: date, week_end: date) -> List:
    return [d for d in deductions if is_applicable(d, week_start, week_end)]


def deduction_totals(deductions: Iterable) -> Dict[str, Any]:
    """Totals over ACTIVE deductions, grouped by frequency."""
    weekly = monthly = one_time = Decimal("0")
    count = 0
    for d in deductions:
        if d.status != DeductionStatus.active.value:
            continue
        count += 1
        amount = Decimal(d.amount)
        if d.frequency == DeductionFrequency.weekly.value:
            weekly += amount
        elif d.frequency == DeductionFrequency.monthly.value:
            monthly += amount
        elif not d.applied:
            one_time += amount
    return {
        "weekly_total": money(weekly),
        "monthly_total": money(monthly),
        "one_time_total": money(one_time),
        "active_count": count,
    }


def list_deductions(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
) -> List[Deduction]:
    query = db.query(Deduction).filter(Deduction.company_id == company_id)
    if is_driver(actor):
        query = query.filter(Deduction.user_id == actor.id)
    elif user_id:
        query = query.filter(Deduction.user_id == user_id)
    if status:
        query = query.filter(Deduction.status == status)
    return query.order_by(Deduction.start_date.desc(), Deduction.created_at.desc()).all()


def get_deduction(db: Session, deduction_id: uuid.UUID, actor: User) -> Deduction:
    deduction = db.query(Deduction).filter(Deduction.id == deduction_id).first()
    if not deduction:
        raise NotFound("Deduction not found")
    ensure_company_access(actor, deduction, "Deduction")
    if not is_admin(actor) and deduction.user_id != actor.id:
        raise PermissionDenied("Not allowed to view this deduction")
    return deduction


def deductions_for_week(db: Session, company_id: uuid.UUID, driver_id: uuid.UUID, week_start: date, week_end: date) -> List[Deduction]:
    rows = db.query(Deduction).filter(
        Deduction.company_id == company_id,
        Deduction.user_id == driver_id,
        Deduction.status == DeductionStatus.active.value,
        Deduction.start_date <= week_end,
        or_(Deduction.end_date.is_(None), Deduction.end_date >= week_start),
    ).order_by(Deduction.start_date.asc()).all()
    return applicable_deductions(rows, week_start, week_end)


def _validate(values: Dict[str, Any]) -> None:
    if "amount" in values:
        if values["amount"] is None or Decimal(str(values["amount"])) <= 0:
            raise ValidationError("amount must be greater than zero")
    start, end = values.get("start_date"), values.get("end_date")
    if start and end and end < start:
        raise ValidationError("end_date must be on or after start_date")


def create_deduction(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    data: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> Deduction:
    ensure_admin(actor)
    driver = db.query(User).filter(User.id == data.get("user_id")).first()
    if not driver or driver.company_id != company_id or not is_driver(driver):
        raise ValidationError("Deduction must target a driver of this company")
    values = dict(data)
    if not values.get("start_date"):
        values["start_date"] = clock.today()
    _validate(values)

    deduction = Deduction(
        company_id=company_id,
        user_id=driver.id,
        type=values["type"],
        description=values.get("description"),
        amount=Decimal(str(values["amount"])),
        frequency=values.get("frequency") or DeductionFrequency.weekly.value,
        status=values.get("status") or DeductionStatus.active.value,
        start_date=values["start_date"],
        end_date=values.get("end_date"),
        created_by_id=actor.id,
        created_at=clock.now(),
    )
    db.add(deduction)
    db.commit()
    db.refresh(deduction)

    event_bus.publish(db, DeductionCreated(
        entity_id=deduction.id,
        company_id=company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        changes={"after": deduction_snapshot(deduction)},
        context={"driver_id": str(driver.id)},
    ))
    return deduction


def update_deduction(
    db: Session,
    deduction: Deduction,
    actor: User,
    fields: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> Deduction:
    ensure_admin(actor)
    ensure_company_access(actor, deduction, "Deduction")
    values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
    _validate({"start_date": deduction.start_date, "end_date": deduction.end_date, **values})

    before = deduction_snapshot(deduction)
    for key, value in values.items():
        if key == "amount":
            value = Decimal(str(value))
        setattr(deduction, key, value)
    deduction.updated_at = clock.now()
    db.commit()
    db.refresh(deduction)

    changes = compute_diff(before, deduction_snapshot(deduction))
    if changes:
        event_bus.publish(db, DeductionUpdated(
            entity_id=deduction.id,
            company_id=deduction.company_id,
            actor_id=actor.id,
            actor_role=actor.role,
            changes=changes,
        ))
    return deduction


def delete_deduction(db: Session, deduction: Deduction, actor: User, event_bus: EventBus = bus) -> None:
    ensure_admin(actor)
    ensure_company_access(actor, deduction, "Deduction")
    event = DeductionDeleted(
        entity_id=deduction.id,
        company_id=deduction.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        changes={"before": deduction_snapshot(deduction)},
    )
    db.delete(deduction)
    db.commit()
    event_bus.publish(db, event)
