"""
Driver activity aggregation.

Folds tasks and time-off records into a driver x date matrix where each cell
is WORKED (at least one task that day, any status), OFF (covered by time off
and no task) or IDLE. A task on a day-off date wins: the day counts as worked.
Earnings only ever come from COMPLETED tasks.
"""
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.enums import DayType, TaskStatus, TimeOffStatus, UserRole
from ..models.models import Task, TimeOffRequest, User
from .time_rules import clip_range, date_range


CENT = Decimal("0.01")


def money(value) -> float:
    return float(Decimal(value or 0).quantize(CENT))


def driver_digest(driver) -> Dict[str, Any]:
    return {
        "id": str(driver.id),
        "name": driver.name,
        "personal_id": driver.personal_id,
        "rating": driver.rating,
    }


def task_digest(task) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "scheduled_time": task.scheduled_time,
        "location": task.location,
        "status": task.status,
        "price": money(task.price),
    }


def _empty_summary() -> Dict[str, Any]:
    return {
        "days_worked": 0,
        "days_off": 0,
        "days_idle": 0,
        "total_tasks": 0,
        "completed_tasks": 0,
        "total_earnings": Decimal("0"),
    }


def classify_day(tasks: Sequence, is_off: bool) -> Dict[str, Any]:
    """One cell of the matrix."""
    if tasks:
        completed = [t for t in tasks if t.status == TaskStatus.completed.value]
        earnings = sum((Decimal(t.price or 0) for t in completed), Decimal("0"))
        ordered = sorted(tasks, key=lambda t: (t.scheduled_time or "", t.title or ""))
        return {
            "type": DayType.worked.value,
            "task_count": len(tasks),
            "completed_count": len(completed),
            "earnings": earnings,
            "tasks": [task_digest(t) for t in ordered],
        }
    return {
        "type": DayType.off.value if is_off else DayType.idle.value,
        "task_count": 0,
        "completed_count": 0,
        "earnings": Decimal("0"),
        "tasks": [],
    }


def build_activity_matrix(
    drivers: Iterable,
    tasks: Iterable,
    time_offs: Iterable,
    start_date: date,
    end_date: date,
) -> Dict[str, Any]:
    """
    Pure aggregation over already-loaded rows.

    Args:
        drivers: objects with id, name, personal_id, rating
        tasks: objects with assigned_to_id, scheduled_date, status, price (unassigned ones are ignored)
        time_offs: objects with user_id, request_date, end_date (already filtered by status)
        start_date, end_date: inclusive window

    Returns:
        {"dates": [...], "drivers": [{driver, daily_activity, summary}], "totals": {...}}
    """
    dates = list(date_range(start_date, end_date))
    drivers = sorted(drivers, key=lambda d: ((d.name or "").lower(), str(d.id)))
    driver_ids = {d.id for d in drivers}

    tasks_by_cell: Dict[Any, Dict[date, List]] = defaultdict(lambda: defaultdict(list))
    for task in tasks:
        if task.assigned_to_id in driver_ids and start_date <= task.scheduled_date <= end_date:
            tasks_by_cell[task.assigned_to_id][task.scheduled_date].append(task)

    off_days: Dict[Any, set] = defaultdict(set)
    for request in time_offs:
        if request.user_id not in driver_ids:
            continue
        clipped = clip_range(request.request_date, request.end_date or request.request_date, start_date, end_date)
        if clipped:
            off_days[request.user_id].update(date_range(*clipped))

    by_date = {
        d: {"worked": 0, "off": 0, "idle": 0, "tasks": 0, "completed": 0, "earnings": Decimal("0")}
        for d in dates
    }
    totals = _empty_summary()
    rows = []
    for driver in drivers:
        summary = _empty_summary()
        daily = {}
        for day in dates:
            cell = classify_day(tasks_by_cell[driver.id].get(day, []), day in off_days[driver.id])
            day_totals = by_date[day]
            if cell["type"] == DayType.worked.value:
                summary["days_worked"] += 1
                day_totals["worked"] += 1
            elif cell["type"] == DayType.off.value:
                summary["days_off"] += 1
                day_totals["off"] += 1
            else:
                summary["days_idle"] += 1
                day_totals["idle"] += 1
            summary["total_tasks"] += cell["task_count"]
            summary["completed_tasks"] += cell["completed_count"]
            summary["total_earnings"] += cell["earnings"]
            day_totals["tasks"] += cell["task_count"]
            day_totals["completed"] += cell["completed_count"]
            day_totals["earnings"] += cell["earnings"]
            cell["earnings"] = money(cell["earnings"])
            daily[day.isoformat()] = cell

        for key in totals:
            totals[key] += summary[key]
        summary["total_earnings"] = money(summary["total_earnings"])
        rows.append({"driver": driver_digest(driver), "daily_activity": daily, "summary": summary})

    totals["total_earnings"] = money(totals["total_earnings"])
    totals["drivers"] = len(rows)
    totals["by_date"] = {
        d.isoformat(): {**v, "earnings": money(v["earnings"])} for d, v in by_date.items()
    }
    return {
        "period": {"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        "dates": [d.isoformat() for d in dates],
        "drivers": rows,
        "totals": totals,
    }


def load_drivers(db: Session, company_id: uuid.UUID, driver_id: Optional[uuid.UUID] = None) -> List[User]:
    query = db.query(User).filter(
        User.company_id == company_id,
        User.role == UserRole.driver.value,
        User.is_active == True,  # noqa: E712
    )
    if driver_id:
        query = query.filter(User.id == driver_id)
    return query.order_by(User.name.asc()).all()


def load_tasks(
    db: Session,
    company_id: uuid.UUID,
    start_date: date,
    end_date: date,
    driver_ids: Optional[Sequence[uuid.UUID]] = None,
) -> List[Task]:
    query = db.query(Task).filter(
        Task.company_id == company_id,
        Task.scheduled_date >= start_date,
        Task.scheduled_date <= end_date,
    )
    if driver_ids is not None:
        query = query.filter(Task.assigned_to_id.in_(list(driver_ids)))
    return query.all()


def load_time_off(
    db: Session,
    company_id: uuid.UUID,
    start_date: date,
    end_date: date,
    include_pending: bool = False,
    driver_ids: Optional[Sequence[uuid.UUID]] = None,
) -> List[TimeOffRequest]:
    """Requests overlapping the window. Approved only unless include_pending."""
    statuses = [TimeOffStatus.approved.value]
    if include_pending:
        statuses.append(TimeOffStatus.pending.value)
    query = db.query(TimeOffRequest).filter(
        TimeOffRequest.company_id == company_id,
        TimeOffRequest.status.in_(statuses),
        TimeOffRequest.request_date <= end_date,
        or_(
            TimeOffRequest.end_date >= start_date,
            (TimeOffRequest.end_date.is_(None)) & (TimeOffRequest.request_date >= start_date),
        ),
    )
    if driver_ids is not None:
        query = query.filter(TimeOffRequest.user_id.in_(list(driver_ids)))
    return query.all()


def driver_activity(
    db: Session,
    company_id: uuid.UUID,
    start_date: date,
    end_date: date,
    include_pending_time_off: bool = False,
    driver_id: Optional[uuid.UUID] = None,
) -> Dict[str, Any]:
    drivers = load_drivers(db, company_id, driver_id)
    ids = [d.id for d in drivers]
    tasks = load_tasks(db, company_id, start_date, end_date, ids)
    time_offs = load_time_off(db, company_id, start_date, end_date, include_pending_time_off, ids)
    return build_activity_matrix(drivers, tasks, time_offs, start_date, end_date)
