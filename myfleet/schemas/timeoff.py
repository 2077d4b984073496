import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, model_validator

from ..models.enums import TimeOffStatus
from .tasks import UserBrief


class TimeOffCreate(BaseModel):
    request_date: date
    end_date: Optional[date] = None
    reason: Optional[str] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.end_date is not None and self.end_date < self.request_date:
            raise ValueError("end_date must be on or after request_date")
        return self


class TimeOffDecision(BaseModel):
    admin_notes: Optional[str] = None


class TimeOffDetailsUpdate(BaseModel):
    request_date: Optional[date] = None
    end_date: Optional[date] = None
    reason: Optional[str] = None
    admin_notes: Optional[str] = None


class TimeOffResponse(BaseModel):
    id: uuid.UUID
    company_id: uuid.UUID
    user_id: uuid.UUID
    user: Optional[UserBrief] = None
    request_date: date
    end_date: Optional[date] = None
    days: int
    reason: Optional[str] = None
    admin_notes: Optional[str] = None
    status: TimeOffStatus
    reviewed_by_id: Optional[uuid.UUID] = None
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TimeOffDriverDays(BaseModel):
    user_id: uuid.UUID
    name: str
    personal_id: str
    approved_days: int
    pending_days: int


class TimeOffYearStats(BaseModel):
    year: int
    drivers: List[TimeOffDriverDays]
