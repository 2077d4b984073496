"""
Task lifecycle state machine.

PENDING -> ACCEPTED | REJECTED
ACCEPTED -> COMPLETED | CANCELLED | REJECTED
REJECTED, COMPLETED and CANCELLED are terminal.

Every transition is a conditional UPDATE guarded by the status that was read,
so two actors racing on the same task cannot both win. Side effects (rating
changes) are written in the same transaction; audit and notifications
happen in event subscribers after commit.
"""
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from sqlalchemy import update, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.enums import TaskStatus
from ..models.models import Task, User
from .audit import compute_diff
from .errors import InvalidTransition, NotFound, PermissionDenied, ValidationError
from .events import (
    bus,
    EventBus,
    TaskCreated,
    TaskUpdated,
    TaskAssigned,
    TaskAccepted,
    TaskRejected,
    TaskCompleted,
    TaskCancelled,
    TaskDeleted,
)
from .permissions import (
    ensure_admin,
    ensure_company_access,
    ensure_driver,
    is_admin,
    is_driver,
)
from .time_rules import Clock


TRANSITIONS: Dict[str, Tuple[FrozenSet[TaskStatus], TaskStatus]] = {
    "accept": (frozenset({TaskStatus.pending}), TaskStatus.accepted),
    "reject": (frozenset({TaskStatus.pending, TaskStatus.accepted}), TaskStatus.rejected),
    "complete": (frozenset({TaskStatus.accepted}), TaskStatus.completed),
    "cancel": (frozenset({TaskStatus.accepted}), TaskStatus.cancelled),
}

TERMINAL_STATUSES = frozenset({TaskStatus.rejected, TaskStatus.completed, TaskStatus.cancelled})

EDITABLE_FIELDS = ("title", "description", "location", "notes", "scheduled_date", "scheduled_time", "price")


def plan_transition(current: str, action: str) -> TaskStatus:
    """Return the target status for action, or raise InvalidTransition."""
    if action not in TRANSITIONS:
        raise ValidationError(f"Unknown task action: {action}")
    allowed, target = TRANSITIONS[action]
    if TaskStatus(current) not in allowed:
        raise InvalidTransition(f"Cannot {action} a task that is {current}")
    return target


def apply_rating_change(
    rating: float,
    delta: float,
    floor: Optional[float] = None,
    ceiling: Optional[float] = None,
) -> float:
    floor = settings.rating_min if floor is None else floor
    ceiling = settings.rating_max if ceiling is None else ceiling
    return round(min(max(rating + delta, floor), ceiling), 2)


def can_complete_today(task: Task, clock: Clock) -> bool:
    return task.scheduled_date == clock.today()


def completion_rating_delta(scheduled: date, completed_on: date) -> float:
    """Bonus for finishing early or on the day, penalty for finishing late."""
    if completed_on < scheduled:
        return settings.complete_early_bonus
    if completed_on == scheduled:
        return settings.complete_on_time_bonus
    return -settings.complete_late_penalty


def task_snapshot(task: Task) -> Dict[str, Any]:
    return {
        "title": task.title,
        "description": task.description,
        "location": task.location,
        "notes": task.notes,
        "scheduled_date": task.scheduled_date.isoformat() if task.scheduled_date else None,
        "scheduled_time": task.scheduled_time,
        "price": str(Decimal(task.price).quantize(Decimal("0.01"))) if task.price is not None else None,
        "assigned_to_id": str(task.assigned_to_id) if task.assigned_to_id else None,
        "status": task.status,
    }


def _event_context(task: Task, driver: Optional[User] = None) -> Dict[str, Any]:
    context = {"title": task.title, "scheduled_date": task.scheduled_date.isoformat()}
    if driver is not None:
        context["driver_name"] = driver.name
    return context


def load_task(db: Session, task_id: uuid.UUID, actor: User) -> Task:
    """Fetch a task of the actor's company, fresh from the database."""
    task = db.query(Task).filter(Task.id == task_id).populate_existing().first()
    if not task:
        raise NotFound("Task not found")
    ensure_company_access(actor, task, "Task")
    return task


def get_task(db: Session, task_id: uuid.UUID, actor: User) -> Task:
    """Like load_task, but drivers only see their own tasks and the open marketplace."""
    task = load_task(db, task_id, actor)
    if is_driver(actor):
        is_open = task.assigned_to_id is None and task.status == TaskStatus.pending.value
        if task.assigned_to_id != actor.id and not is_open:
            raise PermissionDenied("Not allowed to view this task")
    return task


def list_tasks(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    status: Optional[TaskStatus] = None,
    driver_id: Optional[uuid.UUID] = None,
) -> List[Task]:
    query = db.query(Task).filter(Task.company_id == company_id)
    if start_date:
        query = query.filter(Task.scheduled_date >= start_date)
    if end_date:
        query = query.filter(Task.scheduled_date <= end_date)
    if status:
        query = query.filter(Task.status == TaskStatus(status).value)
    if is_driver(actor):
        query = query.filter(
            or_(
                Task.assigned_to_id == actor.id,
                (Task.assigned_to_id.is_(None)) & (Task.status == TaskStatus.pending.value),
            )
        )
    elif driver_id:
        query = query.filter(Task.assigned_to_id == driver_id)
    return query.order_by(Task.scheduled_date.asc(), Task.scheduled_time.asc(), Task.created_at.asc()).all()


def _validate_assignee(db: Session, company_id: uuid.UUID, driver_id: Optional[uuid.UUID]) -> Optional[User]:
    if driver_id is None:
        return None
    driver = db.query(User).filter(User.id == driver_id).first()
    if not driver or driver.company_id != company_id or not is_driver(driver):
        raise ValidationError("Assigned user must be a driver of this company")
    if not driver.is_active:
        raise ValidationError("Assigned driver is not active")
    return driver


def _validate_fields(fields: Dict[str, Any]) -> None:
    if "title" in fields and not (fields["title"] or "").strip():
        raise ValidationError("title is required")
    if "price" in fields:
        if fields["price"] is None:
            raise ValidationError("price is required")
        if Decimal(str(fields["price"])) < 0:
            raise ValidationError("price must be non-negative")
    if "scheduled_date" in fields and fields["scheduled_date"] is None:
        raise ValidationError("scheduled_date is required")


def create_task(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    data: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> Task:
    ensure_admin(actor)
    for required in ("title", "scheduled_date", "price"):
        if data.get(required) in (None, ""):
            raise ValidationError(f"{required} is required")
    _validate_fields(data)
    driver = _validate_assignee(db, company_id, data.get("assigned_to_id"))

    task = Task(
        company_id=company_id,
        title=data["title"].strip(),
        description=data.get("description"),
        location=data.get("location"),
        notes=data.get("notes"),
        scheduled_date=data["scheduled_date"],
        scheduled_time=data.get("scheduled_time"),
        price=Decimal(str(data["price"])),
        assigned_to_id=driver.id if driver else None,
        created_by_id=actor.id,
        status=TaskStatus.pending.value,
        created_at=clock.now(),
    )
    db.add(task)
    db.commit()
    db.refresh(task)

    event_bus.publish(db, TaskCreated(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        driver_id=task.assigned_to_id,
        context=_event_context(task, driver),
    ))
    return task


def update_task(
    db: Session,
    task: Task,
    actor: User,
    fields: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> Task:
    """
    Admin edit of task details. Reassignment is only possible while PENDING;
    status never changes through an edit.
    """
    ensure_admin(actor)
    ensure_company_access(actor, task, "Task")
    if TaskStatus(task.status) in TERMINAL_STATUSES:
        raise InvalidTransition(f"Cannot edit a task that is {task.status}")

    fields = dict(fields)
    fields.pop("status", None)
    _validate_fields(fields)

    reassigned = False
    driver = None
    if "assigned_to_id" in fields:
        new_driver_id = fields.pop("assigned_to_id")
        if new_driver_id != task.assigned_to_id:
            if task.status != TaskStatus.pending.value:
                raise InvalidTransition("Tasks can only be reassigned while PENDING")
            driver = _validate_assignee(db, task.company_id, new_driver_id)
            reassigned = True

    before = task_snapshot(task)
    values: Dict[str, Any] = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
    if "price" in values:
        values["price"] = Decimal(str(values["price"]))
    if "title" in values:
        values["title"] = values["title"].strip()
    if reassigned:
        values["assigned_to_id"] = driver.id if driver else None
    if not values:
        return task
    values["updated_at"] = clock.now()

    _compare_and_set(db, task, task.status, values)
    db.commit()
    db.refresh(task)

    changes = compute_diff(before, task_snapshot(task))
    event_bus.publish(db, TaskUpdated(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        changes=changes,
        context=_event_context(task),
    ))
    if reassigned and task.assigned_to_id:
        event_bus.publish(db, TaskAssigned(
            entity_id=task.id,
            company_id=task.company_id,
            actor_id=actor.id,
            actor_role=actor.role,
            driver_id=task.assigned_to_id,
            context=_event_context(task, driver),
        ))
    return task


def delete_task(db: Session, task: Task, actor: User, event_bus: EventBus = bus) -> None:
    ensure_admin(actor)
    ensure_company_access(actor, task, "Task")
    event = TaskDeleted(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        changes={"before": task_snapshot(task)},
        context=_event_context(task),
    )
    db.delete(task)
    db.commit()
    event_bus.publish(db, event)


def _compare_and_set(db: Session, task: Task, expected: str, values: Dict[str, Any], *criteria) -> None:
    """Write values only if the row still has the expected status."""
    result = db.execute(
        update(Task)
        .where(Task.id == task.id, Task.status == expected, *criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidTransition("Task was changed by another request; reload and try again")


def _adjust_rating(db: Session, driver_id: uuid.UUID, delta: float) -> Optional[float]:
    """Add delta to the driver's rating inside the current transaction."""
    # re-read under a row lock; the session copy may predate another request's change
    driver = (
        db.query(User)
        .filter(User.id == driver_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if driver is None:
        return None
    current = driver.rating if driver.rating is not None else settings.rating_default
    driver.rating = apply_rating_change(current, delta)
    return driver.rating


def accept_task(db: Session, task: Task, actor: User, clock: Clock, event_bus: EventBus = bus) -> Task:
    ensure_driver(actor, "accept tasks")
    ensure_company_access(actor, task, "Task")
    plan_transition(task.status, "accept")
    if task.assigned_to_id is not None and task.assigned_to_id != actor.id:
        raise PermissionDenied("This task is assigned to another driver")

    _compare_and_set(
        db,
        task,
        TaskStatus.pending.value,
        {"status": TaskStatus.accepted.value, "assigned_to_id": actor.id, "updated_at": clock.now()},
        or_(Task.assigned_to_id.is_(None), Task.assigned_to_id == actor.id),
    )
    db.commit()
    db.refresh(task)

    event_bus.publish(db, TaskAccepted(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        driver_id=actor.id,
        changes={"status": {"before": TaskStatus.pending.value, "after": task.status}},
        context=_event_context(task, actor),
    ))
    return task


def reject_task(db: Session, task: Task, actor: User, clock: Clock, event_bus: EventBus = bus) -> Task:
    """
    Drivers reject tasks assigned to them; admins may reject any company task.
    A driver rejecting work they already accepted pays reject_accepted_penalty.
    """
    ensure_company_access(actor, task, "Task")
    previous = task.status
    plan_transition(previous, "reject")
    if is_driver(actor):
        if task.assigned_to_id != actor.id:
            raise PermissionDenied("Drivers can only reject tasks assigned to them")
    elif not is_admin(actor):
        raise PermissionDenied("Not allowed to reject this task")

    penalty = 0.0
    if is_driver(actor) and previous == TaskStatus.accepted.value:
        penalty = settings.reject_accepted_penalty

    _compare_and_set(db, task, previous, {"status": TaskStatus.rejected.value, "updated_at": clock.now()})
    if penalty:
        _adjust_rating(db, actor.id, -penalty)
    db.commit()
    db.refresh(task)

    event_bus.publish(db, TaskRejected(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        driver_id=task.assigned_to_id,
        penalty=penalty,
        changes={"status": {"before": previous, "after": task.status}},
        context=_event_context(task, actor if is_driver(actor) else None),
    ))
    return task


def complete_task(db: Session, task: Task, actor: User, clock: Clock, event_bus: EventBus = bus) -> Task:
    """
    The assigned driver completes on the scheduled day. Admins may also
    complete, including after the day has passed. The driver's rating moves
    by completion_rating_delta in the same transaction.
    """
    ensure_company_access(actor, task, "Task")
    plan_transition(task.status, "complete")
    if is_driver(actor):
        if task.assigned_to_id != actor.id:
            raise PermissionDenied("Only the assigned driver can complete this task")
        if not can_complete_today(task, clock):
            raise InvalidTransition(
                f"Task is scheduled for {task.scheduled_date.isoformat()} and can only be completed on that day"
            )
    elif not is_admin(actor):
        raise PermissionDenied("Not allowed to complete this task")

    now = clock.now()
    driver_id = task.assigned_to_id
    delta = completion_rating_delta(task.scheduled_date, clock.today())
    _compare_and_set(
        db,
        task,
        TaskStatus.accepted.value,
        {"status": TaskStatus.completed.value, "completed_at": now, "updated_at": now},
    )
    new_rating = _adjust_rating(db, driver_id, delta) if driver_id else None
    db.commit()
    db.refresh(task)

    driver = db.get(User, driver_id) if driver_id else None
    event_bus.publish(db, TaskCompleted(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        driver_id=driver_id,
        rating_delta=delta if driver_id else 0.0,
        changes={"status": {"before": TaskStatus.accepted.value, "after": task.status}},
        context={**_event_context(task, driver), "price": str(task.price), "rating": new_rating},
    ))
    return task


def cancel_task(db: Session, task: Task, actor: User, clock: Clock, event_bus: EventBus = bus) -> Task:
    ensure_driver(actor, "cancel tasks")
    ensure_company_access(actor, task, "Task")
    plan_transition(task.status, "cancel")
    if task.assigned_to_id != actor.id:
        raise PermissionDenied("You can only cancel your own tasks")

    penalty = settings.cancel_penalty
    _compare_and_set(
        db,
        task,
        TaskStatus.accepted.value,
        {"status": TaskStatus.cancelled.value, "updated_at": clock.now()},
    )
    new_rating = _adjust_rating(db, actor.id, -penalty)
    db.commit()
    db.refresh(task)

    event_bus.publish(db, TaskCancelled(
        entity_id=task.id,
        company_id=task.company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        driver_id=actor.id,
        penalty=penalty,
        changes={"status": {"before": TaskStatus.accepted.value, "after": task.status}},
        context={**_event_context(task, actor), "rating": new_rating},
    ))
    return task


ACTIONS = {
    "accept": accept_task,
    "reject": reject_task,
    "complete": complete_task,
    "cancel": cancel_task,
}
