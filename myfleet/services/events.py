"""
In-process domain events.
State changes publish an event after their own commit; audit and notification
subscribers are registered once in create_app and receive the request session.
"""
import uuid
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type

import structlog
from sqlalchemy.orm import Session


logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DomainEvent:
    entity_id: uuid.UUID
    company_id: Optional[uuid.UUID]
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    changes: Optional[Dict[str, Any]] = None
    context: Dict[str, Any] = field(default_factory=dict)

    entity_type: ClassVar[str] = "entity"
    action: ClassVar[str] = "UPDATE"

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = self.name
        return data


# Tasks

@dataclass(frozen=True)
class TaskCreated(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "CREATE"


@dataclass(frozen=True)
class TaskUpdated(DomainEvent):
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "UPDATE"


@dataclass(frozen=True)
class TaskAssigned(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "ASSIGN"


@dataclass(frozen=True)
class TaskAccepted(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "ACCEPT"


@dataclass(frozen=True)
class TaskRejected(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    penalty: float = 0.0
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "REJECT"


@dataclass(frozen=True)
class TaskCompleted(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    rating_delta: float = 0.0
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "COMPLETE"


@dataclass(frozen=True)
class TaskCancelled(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    penalty: float = 0.0
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "CANCEL"


@dataclass(frozen=True)
class TaskDeleted(DomainEvent):
    entity_type: ClassVar[str] = "task"
    action: ClassVar[str] = "DELETE"


# Time off

@dataclass(frozen=True)
class TimeOffSubmitted(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    entity_type: ClassVar[str] = "time_off"
    action: ClassVar[str] = "CREATE"


@dataclass(frozen=True)
class TimeOffApproved(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    entity_type: ClassVar[str] = "time_off"
    action: ClassVar[str] = "APPROVE"


@dataclass(frozen=True)
class TimeOffRejected(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    entity_type: ClassVar[str] = "time_off"
    action: ClassVar[str] = "REJECT"


@dataclass(frozen=True)
class TimeOffUpdated(DomainEvent):
    entity_type: ClassVar[str] = "time_off"
    action: ClassVar[str] = "UPDATE"


@dataclass(frozen=True)
class TimeOffDeleted(DomainEvent):
    entity_type: ClassVar[str] = "time_off"
    action: ClassVar[str] = "DELETE"


# Vehicles

@dataclass(frozen=True)
class VehicleCreated(DomainEvent):
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "CREATE"


@dataclass(frozen=True)
class VehicleUpdated(DomainEvent):
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "UPDATE"


@dataclass(frozen=True)
class VehicleMileageUpdated(DomainEvent):
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "MILEAGE"


@dataclass(frozen=True)
class VehicleServiceDueSoon(DomainEvent):
    plate: str = ""
    remaining: int = 0
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "SERVICE_DUE"


@dataclass(frozen=True)
class VehicleStatusChanged(DomainEvent):
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "STATUS"


@dataclass(frozen=True)
class VehicleAssigned(DomainEvent):
    driver_id: Optional[uuid.UUID] = None
    plate: str = ""
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "ASSIGN"


@dataclass(frozen=True)
class VehicleUnassigned(DomainEvent):
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "UNASSIGN"


@dataclass(frozen=True)
class VehicleDeleted(DomainEvent):
    entity_type: ClassVar[str] = "vehicle"
    action: ClassVar[str] = "DELETE"


# Deductions

@dataclass(frozen=True)
class DeductionCreated(DomainEvent):
    entity_type: ClassVar[str] = "deduction"
    action: ClassVar[str] = "CREATE"


@dataclass(frozen=True)
class DeductionUpdated(DomainEvent):
    entity_type: ClassVar[str] = "deduction"
    action: ClassVar[str] = "UPDATE"


@dataclass(frozen=True)
class DeductionDeleted(DomainEvent):
    entity_type: ClassVar[str] = "deduction"
    action: ClassVar[str] = "DELETE"


Handler = Callable[[Session, DomainEvent], None]


class EventBus:
    def __init__(self):
        self._handlers: List[Tuple[Type[DomainEvent], Handler]] = []

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        # Re-registering the same pair is a no-op so create_app can run more than once
        if (event_type, handler) not in self._handlers:
            self._handlers.append((event_type, handler))

    def clear(self) -> None:
        self._handlers.clear()

    def publish(self, db: Session, event: DomainEvent) -> None:
        """Deliver to every matching handler. A failing handler is logged and skipped."""
        for event_type, handler in list(self._handlers):
            if not isinstance(event, event_type):
                continue
            try:
                handler(db, event)
            except Exception as e:
                db.rollback()
                logger.error(
                    "event_handler_failed",
                    event_name=event.name,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )


bus = EventBus()
