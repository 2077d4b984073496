"""
In-app notification service.
Subscribes to domain events and writes Notification rows for the drivers
and admins who need to know.
"""
import uuid
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from ..models.enums import UserRole
from ..models.models import Notification, User
from .errors import NotFound
from .events import (
    EventBus,
    DomainEvent,
    TaskCreated,
    TaskAssigned,
    TaskAccepted,
    TaskRejected,
    TaskCompleted,
    TaskCancelled,
    TimeOffSubmitted,
    TimeOffApproved,
    TimeOffRejected,
    VehicleServiceDueSoon,
    VehicleAssigned,
)


def create_notification(
    db: Session,
    user_id: uuid.UUID,
    title: str,
    message: Optional[str] = None,
    template_key: Optional[str] = None,
    payload: Optional[Dict[str, Any]] = None,
    company_id: Optional[uuid.UUID] = None,
    commit: bool = True,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        company_id=company_id,
        title=title,
        message=message,
        template_key=template_key,
        payload_json=payload,
    )
    db.add(notification)
    if commit:
        db.commit()
        db.refresh(notification)
    return notification


def list_notifications(db: Session, user_id: uuid.UUID, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        query = query.filter(Notification.is_read == False)  # noqa: E712
    return query.order_by(Notification.created_at.desc()).limit(limit).all()


def mark_read(db: Session, user_id: uuid.UUID, notification_id: uuid.UUID) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == user_id,
    ).first()
    if not notification:
        raise NotFound("Notification not found")
    if not notification.is_read:
        notification.is_read = True
        db.commit()
        db.refresh(notification)
    return notification


def _company_admin_ids(db: Session, company_id: Optional[uuid.UUID]) -> List[uuid.UUID]:
    if company_id is None:
        return []
    rows = db.query(User.id).filter(
        User.company_id == company_id,
        User.role == UserRole.company_admin.value,
        User.is_active == True,  # noqa: E712
    ).all()
    return [r[0] for r in rows]


def _payload(event: DomainEvent) -> Dict[str, Any]:
    return {"event": event.name, "entity_type": event.entity_type, "entity_id": str(event.entity_id)}


def _notify_many(db: Session, user_ids: List[uuid.UUID], event: DomainEvent, title: str, message: str) -> None:
    for user_id in user_ids:
        create_notification(
            db,
            user_id=user_id,
            title=title,
            message=message,
            template_key=event.name,
            payload=_payload(event),
            company_id=event.company_id,
            commit=False,
        )
    if user_ids:
        db.commit()


def _task_title(event: DomainEvent) -> str:
    return (event.context or {}).get("title") or "Task"


def notify_driver_of_task(db: Session, event: DomainEvent) -> None:
    driver_id = getattr(event, "driver_id", None)
    if not driver_id or driver_id == event.actor_id:
        return
    date_str = (event.context or {}).get("scheduled_date", "")
    _notify_many(db, [driver_id], event, "New task assigned", f"{_task_title(event)} on {date_str}".strip())


def notify_admins_of_task(db: Session, event: DomainEvent) -> None:
    verb = {
        TaskAccepted: "accepted",
        TaskRejected: "rejected",
        TaskCompleted: "completed",
        TaskCancelled: "cancelled",
    }.get(type(event), "updated")
    driver_name = (event.context or {}).get("driver_name") or "A driver"
    _notify_many(
        db,
        _company_admin_ids(db, event.company_id),
        event,
        f"Task {verb}",
        f"{driver_name} {verb} {_task_title(event)}",
    )


def notify_admins_of_time_off(db: Session, event: DomainEvent) -> None:
    ctx = event.context or {}
    _notify_many(
        db,
        _company_admin_ids(db, event.company_id),
        event,
        "Time off requested",
        f"{ctx.get('driver_name') or 'A driver'} requested {ctx.get('days', 1)} day(s) from {ctx.get('request_date', '')}",
    )


def notify_driver_of_time_off_decision(db: Session, event: DomainEvent) -> None:
    driver_id = getattr(event, "driver_id", None)
    if not driver_id:
        return
    decision = "approved" if isinstance(event, TimeOffApproved) else "rejected"
    _notify_many(
        db,
        [driver_id],
        event,
        f"Time off {decision}",
        f"Your time off from {(event.context or {}).get('request_date', '')} was {decision}",
    )


def notify_service_due(db: Session, event: VehicleServiceDueSoon) -> None:
    _notify_many(
        db,
        _company_admin_ids(db, event.company_id),
        event,
        "Service due soon",
        f"Vehicle {event.plate} is due for service in {event.remaining} miles",
    )


def notify_vehicle_assigned(db: Session, event: VehicleAssigned) -> None:
    if not event.driver_id:
        return
    _notify_many(db, [event.driver_id], event, "Vehicle assigned", f"You have been assigned vehicle {event.plate}")


def register(event_bus: EventBus) -> None:
    event_bus.subscribe(TaskCreated, notify_driver_of_task)
    event_bus.subscribe(TaskAssigned, notify_driver_of_task)
    for event_type in (TaskAccepted, TaskRejected, TaskCompleted, TaskCancelled):
        event_bus.subscribe(event_type, notify_admins_of_task)
    event_bus.subscribe(TimeOffSubmitted, notify_admins_of_time_off)
    event_bus.subscribe(TimeOffApproved, notify_driver_of_time_off_decision)
    event_bus.subscribe(TimeOffRejected, notify_driver_of_time_off_decision)
    event_bus.subscribe(VehicleServiceDueSoon, notify_service_due)
    event_bus.subscribe(VehicleAssigned, notify_vehicle_assigned)
