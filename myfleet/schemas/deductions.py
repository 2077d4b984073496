import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from ..models.enums import DeductionFrequency, DeductionStatus, DeductionType
from .tasks import UserBrief


class DeductionCreate(BaseModel):
    user_id: uuid.UUID
    type: DeductionType
    description: Optional[str] = None
    amount: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    frequency: DeductionFrequency = DeductionFrequency.weekly
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    class Config:
        use_enum_values = True


class DeductionUpdate(BaseModel):
    type: Optional[DeductionType] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    frequency: Optional[DeductionFrequency] = None
    status: Optional[DeductionStatus] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    applied: Optional[bool] = None

    class Config:
        use_enum_values = True


class DeductionResponse(BaseModel):
    id: uuid.UUID
    company_id: uuid.UUID
    user_id: uuid.UUID
    user: Optional[UserBrief] = None
    type: DeductionType
    description: Optional[str] = None
    amount: float
    frequency: DeductionFrequency
    status: DeductionStatus
    start_date: date
    end_date: Optional[date] = None
    applied: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DeductionSummary(BaseModel):
    weekly_total: float
    monthly_total: float
    one_time_total: float
    active_count: int
