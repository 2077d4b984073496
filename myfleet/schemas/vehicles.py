import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.enums import MileageUnit, VehicleStatus
from .tasks import UserBrief


class VehicleBase(BaseModel):
    plate: str = Field(min_length=1, max_length=20)
    type: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    capacity: Optional[str] = None
    mileage_unit: MileageUnit = MileageUnit.miles
    service_interval_miles: Optional[int] = Field(default=None, gt=0)
    insurance_expiry: Optional[date] = None
    mot_expiry: Optional[date] = None
    tax_expiry: Optional[date] = None


class VehicleCreate(VehicleBase):
    current_mileage: int = 0
    assigned_to_id: Optional[uuid.UUID] = None

    class Config:
        use_enum_values = True


class VehicleUpdate(BaseModel):
    plate: Optional[str] = Field(default=None, min_length=1, max_length=20)
    type: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    capacity: Optional[str] = None
    mileage_unit: Optional[MileageUnit] = None
    service_interval_miles: Optional[int] = Field(default=None, gt=0)
    insurance_expiry: Optional[date] = None
    mot_expiry: Optional[date] = None
    tax_expiry: Optional[date] = None
    service_notes: Optional[str] = None

    class Config:
        use_enum_values = True


class MileageUpdate(BaseModel):
    mileage: int


class VehicleStatusUpdate(BaseModel):
    status: VehicleStatus
    service_notes: Optional[str] = None
    unassign_driver: bool = False


class VehicleAssign(BaseModel):
    driver_id: uuid.UUID


class VehicleResponse(BaseModel):
    id: uuid.UUID
    company_id: uuid.UUID
    plate: str
    type: Optional[str] = None
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    color: Optional[str] = None
    capacity: Optional[str] = None
    mileage_unit: str
    current_mileage: int
    service_interval_miles: int
    last_service_mileage: int
    next_service_mileage: int
    last_service_date: Optional[date] = None
    insurance_expiry: Optional[date] = None
    mot_expiry: Optional[date] = None
    tax_expiry: Optional[date] = None
    status: VehicleStatus
    service_notes: Optional[str] = None
    assigned_to_id: Optional[uuid.UUID] = None
    assigned_to: Optional[UserBrief] = None
    miles_until_service: int
    needs_service: bool
    service_due_soon: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
