import uuid
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_admin, require_driver
from ..db import get_db
from ..models.enums import VehicleStatus
from ..models.models import User, Vehicle
from ..schemas.tasks import UserBrief
from ..schemas.vehicles import (
    VehicleCreate,
    VehicleUpdate,
    VehicleResponse,
    MileageUpdate,
    VehicleStatusUpdate,
    VehicleAssign,
)
from ..services import vehicles as vehicle_service
from ..services.permissions import resolve_company_id
from ..services.time_rules import Clock, get_clock


router = APIRouter(prefix="/vehicles", tags=["vehicles"])
logger = structlog.get_logger(__name__)


def _out(vehicle: Vehicle) -> VehicleResponse:
    response = VehicleResponse.model_validate(vehicle)
    return response.model_copy(update=vehicle_service.service_state(vehicle))


@router.get("", response_model=List[VehicleResponse])
def list_vehicles(
    status: Optional[VehicleStatus] = Query(None),
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    scope = resolve_company_id(user, company_id)
    return [_out(v) for v in vehicle_service.list_vehicles(db, scope, status)]


@router.post("", response_model=VehicleResponse, status_code=201)
def create_vehicle(
    payload: VehicleCreate,
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    scope = resolve_company_id(user, company_id)
    vehicle = vehicle_service.create_vehicle(db, user, scope, payload.model_dump(), clock)
    logger.info("vehicle_created", vehicle_id=str(vehicle.id), plate=vehicle.plate)
    return _out(vehicle)


@router.get("/my", response_model=Optional[VehicleResponse])
def my_vehicle(db: Session = Depends(get_db), user: User = Depends(require_driver)):
    vehicle = vehicle_service.my_vehicle(db, user)
    return _out(vehicle) if vehicle else None


@router.get("/drivers/available", response_model=List[UserBrief])
def available_drivers(
    company_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
):
    scope = resolve_company_id(user, company_id)
    return vehicle_service.available_drivers(db, scope)


@router.get("/{vehicle_id}", response_model=VehicleResponse)
def get_vehicle(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _out(vehicle_service.get_vehicle(db, vehicle_id, user))


@router.put("/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    vehicle_id: uuid.UUID,
    payload: VehicleUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    vehicle = vehicle_service.get_vehicle(db, vehicle_id, user)
    return _out(vehicle_service.update_vehicle(db, vehicle, user, payload.model_dump(exclude_unset=True), clock))


@router.put("/{vehicle_id}/mileage", response_model=VehicleResponse)
def update_mileage(
    vehicle_id: uuid.UUID,
    payload: MileageUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
):
    vehicle = vehicle_service.get_vehicle(db, vehicle_id, user)
    vehicle = vehicle_service.update_mileage(db, vehicle, user, payload.mileage, clock)
    logger.info("vehicle_mileage_updated", vehicle_id=str(vehicle.id), mileage=vehicle.current_mileage)
    return _out(vehicle)


@router.put("/{vehicle_id}/status", response_model=VehicleResponse)
def update_status(
    vehicle_id: uuid.UUID,
    payload: VehicleStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    vehicle = vehicle_service.get_vehicle(db, vehicle_id, user)
    vehicle = vehicle_service.set_status(
        db,
        vehicle,
        user,
        payload.status,
        clock,
        service_notes=payload.service_notes,
        unassign_driver=payload.unassign_driver,
    )
    return _out(vehicle)


@router.put("/{vehicle_id}/assign", response_model=VehicleResponse)
def assign_vehicle(
    vehicle_id: uuid.UUID,
    payload: VehicleAssign,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    vehicle = vehicle_service.get_vehicle(db, vehicle_id, user)
    return _out(vehicle_service.assign_driver(db, vehicle, user, payload.driver_id, clock))


@router.put("/{vehicle_id}/unassign", response_model=VehicleResponse)
def unassign_vehicle(
    vehicle_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    clock: Clock = Depends(get_clock),
):
    vehicle = vehicle_service.get_vehicle(db, vehicle_id, user)
    return _out(vehicle_service.unassign_driver(db, vehicle, user, clock))


@router.delete("/{vehicle_id}")
def delete_vehicle(vehicle_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(require_admin)):
    vehicle = vehicle_service.get_vehicle(db, vehicle_id, user)
    vehicle_service.delete_vehicle(db, vehicle, user)
    return {"message": "Vehicle deleted successfully"}
