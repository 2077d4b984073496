"""
Dashboard aggregates over tasks: status counts, a two-week created/completed
trend, per-day counts for a month calendar, driver performance and a driver's
own task history. Drivers only ever see their own tasks.
"""
import uuid
from collections import Counter
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

import pytz
from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.enums import TaskStatus
from ..models.models import Task, User
from .activity import driver_digest, load_drivers, money
from .errors import ValidationError
from .permissions import is_driver
from .time_rules import Clock, date_range, month_bounds, parse_week_start, week_bounds


TREND_DAYS = 14
HISTORY_LIMIT = 50


def _scoped(query, actor: User, company_id: uuid.UUID):
    query = query.filter(Task.company_id == company_id)
    if is_driver(actor):
        query = query.filter(Task.assigned_to_id == actor.id)
    return query


def _local_date(moment: datetime) -> date:
    # naive values are already local (SQLite drops the offset)
    if moment.tzinfo is None:
        return moment.date()
    return moment.astimezone(pytz.timezone(settings.tz_default)).date()


def parse_month(value: Optional[str], clock: Clock) -> date:
    if not value:
        return clock.today().replace(day=1)
    try:
        return datetime.strptime(value + "-01", "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError("month must look like YYYY-MM")


def status_distribution(db: Session, actor: User, company_id: uuid.UUID) -> Dict[str, int]:
    query = _scoped(db.query(Task.status, func.count(Task.id)), actor, company_id)
    counts = dict(query.group_by(Task.status).all())
    result = {status.name: counts.get(status.value, 0) for status in TaskStatus}
    result["total"] = sum(result.values())
    return result


def task_trend(db: Session, actor: User, company_id: uuid.UUID, clock: Clock) -> List[Dict[str, Any]]:
    """Tasks created and completed per day over the previous and current week."""
    default = settings.driver_week_start if is_driver(actor) else settings.admin_week_start
    _, end = week_bounds(clock.today(), parse_week_start(default))
    start = end - timedelta(days=TREND_DAYS - 1)

    # one day of slack either side of the local window for stored UTC values
    floor = datetime.combine(start - timedelta(days=1), time.min)
    query = _scoped(db.query(Task.created_at, Task.completed_at), actor, company_id)
    rows = query.filter(or_(Task.created_at >= floor, Task.completed_at >= floor)).all()

    created: Counter = Counter()
    completed: Counter = Counter()
    for created_at, completed_at in rows:
        if created_at is not None:
            created[_local_date(created_at)] += 1
        if completed_at is not None:
            completed[_local_date(completed_at)] += 1

    return [
        {"date": day.isoformat(), "created": created[day], "completed": completed[day]}
        for day in date_range(start, end)
    ]


def task_calendar(db: Session, actor: User, company_id: uuid.UUID, month: date) -> List[Dict[str, Any]]:
    """Scheduled task count for every day of month."""
    start, end = month_bounds(month)
    query = _scoped(db.query(Task.scheduled_date, func.count(Task.id)), actor, company_id)
    counts = dict(
        query.filter(Task.scheduled_date >= start, Task.scheduled_date <= end)
        .group_by(Task.scheduled_date)
        .all()
    )
    return [{"date": day.isoformat(), "count": counts.get(day, 0)} for day in date_range(start, end)]


def driver_performance(
    db: Session,
    company_id: uuid.UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 10,
) -> List[Dict[str, Any]]:
    """
    Active drivers ranked by completion rate, then by number of tasks.
    Earnings are the completed task prices, optionally limited to tasks
    scheduled between start_date and end_date.
    """
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    is_completed = Task.status == TaskStatus.completed.value
    query = db.query(
        Task.assigned_to_id,
        func.count(Task.id).label("total"),
        func.sum(case((is_completed, 1), else_=0)).label("completed"),
        func.sum(case((is_completed, Task.price), else_=0)).label("earnings"),
    ).filter(Task.company_id == company_id, Task.assigned_to_id.isnot(None))
    if start_date:
        query = query.filter(Task.scheduled_date >= start_date)
    if end_date:
        query = query.filter(Task.scheduled_date <= end_date)
    rows = {row.assigned_to_id: row for row in query.group_by(Task.assigned_to_id).all()}

    ranking = []
    for driver in load_drivers(db, company_id):
        row = rows.get(driver.id)
        total = row.total if row else 0
        done = int(row.completed or 0) if row else 0
        ranking.append({
            **driver_digest(driver),
            "total_tasks": total,
            "completed_tasks": done,
            "completion_rate": round(done * 100.0 / total, 1) if total else 0.0,
            "earnings": money(row.earnings if row else 0),
        })
    ranking.sort(key=lambda r: (-r["completion_rate"], -r["total_tasks"], r["name"]))
    return ranking[:limit]


def driver_history(
    db: Session,
    driver: User,
    status: Optional[TaskStatus] = None,
    limit: int = HISTORY_LIMIT,
) -> List[Task]:
    query = db.query(Task).filter(Task.assigned_to_id == driver.id)
    if status:
        query = query.filter(Task.status == TaskStatus(status).value)
    return query.order_by(Task.scheduled_date.desc(), Task.created_at.desc()).limit(limit).all()
