"""
Vehicles: mileage tracking and the service cycle.

Mileage only moves forward. next_service_mileage is fixed at creation
(current + interval) and re-armed when a vehicle comes back from
IN_SERVICE to ACTIVE.
"""
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config import settings
from ..models.enums import UserRole, VehicleStatus
from ..models.models import User, Vehicle
from .audit import compute_diff
from .errors import InvalidMileage, NotFound, PermissionDenied, ValidationError
from .events import (
    bus,
    EventBus,
    VehicleCreated,
    VehicleUpdated,
    VehicleMileageUpdated,
    VehicleServiceDueSoon,
    VehicleStatusChanged,
    VehicleAssigned,
    VehicleUnassigned,
    VehicleDeleted,
)
from .permissions import ensure_admin, ensure_company_access, is_admin, is_driver
from .time_rules import Clock


UPDATABLE_FIELDS = (
    "plate", "type", "make", "model", "year", "color", "capacity", "mileage_unit",
    "service_interval_miles", "insurance_expiry", "mot_expiry", "tax_expiry", "service_notes",
)


def normalize_plate(plate: Optional[str]) -> str:
    cleaned = (plate or "").strip().upper()
    if not cleaned:
        raise ValidationError("plate is required")
    return cleaned


def vehicle_snapshot(vehicle: Vehicle) -> Dict[str, Any]:
    data = {}
    for key in UPDATABLE_FIELDS + ("current_mileage", "last_service_mileage", "next_service_mileage", "status"):
        value = getattr(vehicle, key)
        data[key] = value.isoformat() if hasattr(value, "isoformat") else value
    data["assigned_to_id"] = str(vehicle.assigned_to_id) if vehicle.assigned_to_id else None
    return data


def service_state(vehicle: Vehicle) -> Dict[str, Any]:
    remaining = vehicle.next_service_mileage - vehicle.current_mileage
    return {
        "miles_until_service": remaining,
        "needs_service": remaining <= 0,
        "service_due_soon": 0 < remaining <= settings.service_warning_miles,
    }


def _ensure_unique_plate(db: Session, company_id: uuid.UUID, plate: str, exclude_id: Optional[uuid.UUID] = None) -> None:
    query = db.query(Vehicle.id).filter(Vehicle.company_id == company_id, Vehicle.plate == plate)
    if exclude_id:
        query = query.filter(Vehicle.id != exclude_id)
    if query.first():
        raise ValidationError(f"A vehicle with plate {plate} already exists")


def _company_driver(db: Session, company_id: uuid.UUID, driver_id: uuid.UUID) -> User:
    driver = db.query(User).filter(User.id == driver_id).first()
    if not driver or driver.company_id != company_id or not is_driver(driver):
        raise ValidationError("Vehicles can only be assigned to drivers of this company")
    return driver


def list_vehicles(db: Session, company_id: uuid.UUID, status: Optional[VehicleStatus] = None) -> List[Vehicle]:
    query = db.query(Vehicle).filter(Vehicle.company_id == company_id)
    if status:
        query = query.filter(Vehicle.status == VehicleStatus(status).value)
    return query.order_by(Vehicle.plate.asc()).all()


def get_vehicle(db: Session, vehicle_id: uuid.UUID, actor: User) -> Vehicle:
    vehicle = db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()
    if not vehicle:
        raise NotFound("Vehicle not found")
    ensure_company_access(actor, vehicle, "Vehicle")
    if is_driver(actor) and vehicle.assigned_to_id != actor.id:
        raise PermissionDenied("Not allowed to view this vehicle")
    return vehicle


def my_vehicle(db: Session, driver: User) -> Optional[Vehicle]:
    return db.query(Vehicle).filter(Vehicle.assigned_to_id == driver.id).order_by(Vehicle.created_at.asc()).first()


def available_drivers(db: Session, company_id: uuid.UUID) -> List[User]:
    """Active drivers that currently hold no vehicle."""
    taken = select(Vehicle.assigned_to_id).where(
        Vehicle.company_id == company_id,
        Vehicle.assigned_to_id.isnot(None),
    )
    return db.query(User).filter(
        User.company_id == company_id,
        User.role == UserRole.driver.value,
        User.is_active == True,  # noqa: E712
        User.id.notin_(taken),
    ).order_by(User.name.asc()).all()


def create_vehicle(
    db: Session,
    actor: User,
    company_id: uuid.UUID,
    data: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> Vehicle:
    ensure_admin(actor)
    plate = normalize_plate(data.get("plate"))
    _ensure_unique_plate(db, company_id, plate)
    mileage = data.get("current_mileage") or 0
    if mileage < 0:
        raise InvalidMileage("Mileage must be a non-negative number")
    interval = data.get("service_interval_miles") or settings.default_service_interval
    if interval <= 0:
        raise ValidationError("service_interval_miles must be positive")
    driver = _company_driver(db, company_id, data["assigned_to_id"]) if data.get("assigned_to_id") else None

    vehicle = Vehicle(
        company_id=company_id,
        plate=plate,
        type=data.get("type"),
        make=data.get("make"),
        model=data.get("model"),
        year=data.get("year"),
        color=data.get("color"),
        capacity=data.get("capacity"),
        mileage_unit=data.get("mileage_unit") or "miles",
        current_mileage=mileage,
        service_interval_miles=interval,
        last_service_mileage=mileage,
        next_service_mileage=mileage + interval,
        insurance_expiry=data.get("insurance_expiry"),
        mot_expiry=data.get("mot_expiry"),
        tax_expiry=data.get("tax_expiry"),
        status=VehicleStatus.active.value,
        assigned_to_id=driver.id if driver else None,
        created_at=clock.now(),
    )
    db.add(vehicle)
    db.commit()
    db.refresh(vehicle)

    event_bus.publish(db, VehicleCreated(
        entity_id=vehicle.id,
        company_id=company_id,
        actor_id=actor.id,
        actor_role=actor.role,
        changes={"after": vehicle_snapshot(vehicle)},
    ))
    if driver:
        event_bus.publish(db, VehicleAssigned(
            entity_id=vehicle.id, company_id=company_id, actor_id=actor.id, actor_role=actor.role,
            driver_id=driver.id, plate=vehicle.plate,
        ))
    return vehicle


def update_vehicle(
    db: Session,
    vehicle: Vehicle,
    actor: User,
    fields: Dict[str, Any],
    clock: Clock,
    event_bus: EventBus = bus,
) -> Vehicle:
    """Descriptive fields only; mileage, status and assignment have their own operations."""
    ensure_admin(actor)
    ensure_company_access(actor, vehicle, "Vehicle")
    values = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
    if "plate" in values:
        values["plate"] = normalize_plate(values["plate"])
        _ensure_unique_plate(db, vehicle.company_id, values["plate"], exclude_id=vehicle.id)
    if "service_interval_miles" in values and (values["service_interval_miles"] or 0) <= 0:
        raise ValidationError("service_interval_miles must be positive")

    before = vehicle_snapshot(vehicle)
    for key, value in values.items():
        setattr(vehicle, key, value)
    vehicle.updated_at = clock.now()
    db.commit()
    db.refresh(vehicle)

    changes = compute_diff(before, vehicle_snapshot(vehicle))
    if changes:
        event_bus.publish(db, VehicleUpdated(
            entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
            changes=changes,
        ))
    return vehicle


def update_mileage(
    db: Session,
    vehicle: Vehicle,
    actor: User,
    new_mileage: int,
    clock: Clock,
    event_bus: EventBus = bus,
) -> Vehicle:
    ensure_company_access(actor, vehicle, "Vehicle")
    if not is_admin(actor) and vehicle.assigned_to_id != actor.id:
        raise PermissionDenied("Only an admin or the assigned driver can update mileage")
    if new_mileage is None or new_mileage < 0:
        raise InvalidMileage("Mileage must be a non-negative number")
    previous = vehicle.current_mileage
    if new_mileage < previous:
        raise InvalidMileage(f"New mileage ({new_mileage}) cannot be lower than current mileage ({previous})")

    # guarded write: a concurrent higher reading wins
    result = db.execute(
        update(Vehicle)
        .where(Vehicle.id == vehicle.id, Vehicle.current_mileage <= new_mileage)
        .values(current_mileage=new_mileage, updated_at=clock.now())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise InvalidMileage(f"New mileage ({new_mileage}) is lower than the mileage recorded meanwhile")
    db.commit()
    db.refresh(vehicle)

    event_bus.publish(db, VehicleMileageUpdated(
        entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
        changes={"current_mileage": {"before": previous, "after": new_mileage}},
    ))
    state = service_state(vehicle)
    if state["service_due_soon"]:
        event_bus.publish(db, VehicleServiceDueSoon(
            entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
            plate=vehicle.plate, remaining=state["miles_until_service"],
        ))
    return vehicle


def set_status(
    db: Session,
    vehicle: Vehicle,
    actor: User,
    status: VehicleStatus,
    clock: Clock,
    service_notes: Optional[str] = None,
    unassign_driver: bool = False,
    event_bus: EventBus = bus,
) -> Vehicle:
    """
    Any status can follow any other. Leaving IN_SERVICE for ACTIVE records
    the service: last service = current mileage, next = current + interval.
    """
    ensure_admin(actor)
    ensure_company_access(actor, vehicle, "Vehicle")
    target = VehicleStatus(status)
    before = vehicle_snapshot(vehicle)
    previous_status = vehicle.status
    unassigned_driver = None

    if target == VehicleStatus.in_service:
        if service_notes is not None:
            vehicle.service_notes = service_notes
        if unassign_driver and vehicle.assigned_to_id:
            unassigned_driver = vehicle.assigned_to_id
            vehicle.assigned_to_id = None
    elif target == VehicleStatus.active and previous_status == VehicleStatus.in_service.value:
        vehicle.last_service_mileage = vehicle.current_mileage
        vehicle.next_service_mileage = vehicle.current_mileage + vehicle.service_interval_miles
        vehicle.last_service_date = clock.today()
        vehicle.service_notes = None
    elif service_notes is not None:
        vehicle.service_notes = service_notes

    vehicle.status = target.value
    vehicle.updated_at = clock.now()
    db.commit()
    db.refresh(vehicle)

    event_bus.publish(db, VehicleStatusChanged(
        entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
        changes=compute_diff(before, vehicle_snapshot(vehicle)),
    ))
    if unassigned_driver:
        event_bus.publish(db, VehicleUnassigned(
            entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
            context={"driver_id": str(unassigned_driver)},
        ))
    return vehicle


def assign_driver(
    db: Session,
    vehicle: Vehicle,
    actor: User,
    driver_id: uuid.UUID,
    clock: Clock,
    event_bus: EventBus = bus,
) -> Vehicle:
    ensure_admin(actor)
    ensure_company_access(actor, vehicle, "Vehicle")
    driver = _company_driver(db, vehicle.company_id, driver_id)
    previous = vehicle.assigned_to_id
    if previous == driver.id:
        return vehicle
    vehicle.assigned_to_id = driver.id
    vehicle.updated_at = clock.now()
    db.commit()
    db.refresh(vehicle)

    event_bus.publish(db, VehicleAssigned(
        entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
        driver_id=driver.id, plate=vehicle.plate,
        changes={"assigned_to_id": {"before": str(previous) if previous else None, "after": str(driver.id)}},
    ))
    return vehicle


def unassign_driver(db: Session, vehicle: Vehicle, actor: User, clock: Clock, event_bus: EventBus = bus) -> Vehicle:
    ensure_admin(actor)
    ensure_company_access(actor, vehicle, "Vehicle")
    previous = vehicle.assigned_to_id
    if previous is None:
        return vehicle
    vehicle.assigned_to_id = None
    vehicle.updated_at = clock.now()
    db.commit()
    db.refresh(vehicle)

    event_bus.publish(db, VehicleUnassigned(
        entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
        changes={"assigned_to_id": {"before": str(previous), "after": None}},
    ))
    return vehicle


def delete_vehicle(db: Session, vehicle: Vehicle, actor: User, event_bus: EventBus = bus) -> None:
    ensure_admin(actor)
    ensure_company_access(actor, vehicle, "Vehicle")
    event = VehicleDeleted(
        entity_id=vehicle.id, company_id=vehicle.company_id, actor_id=actor.id, actor_role=actor.role,
        changes={"before": vehicle_snapshot(vehicle)},
    )
    db.delete(vehicle)
    db.commit()
    event_bus.publish(db, event)
