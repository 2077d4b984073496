"""
Recurring task generation.
Expands a template over selected weekdays of a date range and creates one
task per matching day. Each creation stands alone; a failure is recorded
and the batch moves on.
"""
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Union

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import Task, User
from .errors import DomainError, ValidationError
from .events import bus, EventBus
from .permissions import ensure_admin
from .task_lifecycle import create_task
from .time_rules import Clock, WEEKDAY_NAMES, date_range, weekday_name


logger = structlog.get_logger(__name__)

# Upper bound on a single expansion (roughly two years of daily tasks)
MAX_RECURRENCE_DAYS = 731


@dataclass
class RecurringResult:
    created: int = 0
    failed: int = 0
    tasks: List[Task] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)


def normalize_weekdays(selected: Union[Iterable[str], Mapping[str, bool], None]) -> List[str]:
    """
    Accept either a list of weekday names or a {name: bool} map and return
    the selected names in calendar order.
    """
    if selected is None:
        raise ValidationError("Select at least one weekday")
    if isinstance(selected, Mapping):
        names = [name for name, on in selected.items() if on]
    else:
        names = list(selected)
    cleaned = {str(n).strip().lower() for n in names}
    unknown = sorted(cleaned - set(WEEKDAY_NAMES))
    if unknown:
        raise ValidationError(f"Unknown weekday(s): {', '.join(unknown)}")
    if not cleaned:
        raise ValidationError("Select at least one weekday")
    return [name for name in WEEKDAY_NAMES if name in cleaned]


def expand_recurrence(
    start_date: date,
    end_date: date,
    weekdays: Union[Iterable[str], Mapping[str, bool]],
) -> List[date]:
    """Every date in [start_date, end_date] whose weekday is selected, ascending."""
    if end_date < start_date:
        raise ValidationError("end_date must be on or after start_date")
    if (end_date - start_date).days + 1 > MAX_RECURRENCE_DAYS:
        raise ValidationError(f"Recurrence range cannot exceed {MAX_RECURRENCE_DAYS} days")
    selected = set(normalize_weekdays(weekdays))
    return [day for day in date_range(start_date, end_date) if weekday_name(day) in selected]


def create_recurring_tasks(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    template: Dict[str, Any],
    start_date: date,
    end_date: date,
    weekdays: Union[Iterable[str], Mapping[str, bool]],
    clock: Clock,
    event_bus: EventBus = bus,
) -> RecurringResult:
    ensure_admin(actor)
    dates = expand_recurrence(start_date, end_date, weekdays)
    if not dates:
        raise ValidationError("No dates in range match the selected weekdays")

    result = RecurringResult()
    for day in dates:
        data = dict(template)
        data["scheduled_date"] = day
        try:
            task = create_task(db, actor, company_id, data, clock, event_bus=event_bus)
        except (DomainError, SQLAlchemyError) as e:
            db.rollback()
            result.failed += 1
            result.errors.append({"date": day.isoformat(), "error": str(e)})
            logger.warning("recurring_task_failed", date=day.isoformat(), error=str(e))
            continue
        result.created += 1
        result.tasks.append(task)

    logger.info(
        "recurring_tasks_created",
        company_id=str(company_id),
        created=result.created,
        failed=result.failed,
        start_date=start_date.isoformat(),
        end_date=end_date.isoformat(),
    )
    return result
