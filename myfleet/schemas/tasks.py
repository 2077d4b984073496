import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.enums import TaskStatus


TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _check_time(value: Optional[str]) -> Optional[str]:
    if value in (None, ""):
        return None
    if not TIME_RE.match(value):
        raise ValueError("scheduled_time must be HH:MM")
    return value


class UserBrief(BaseModel):
    id: uuid.UUID
    name: str
    personal_id: str
    rating: Optional[float] = None

    class Config:
        from_attributes = True


class TaskBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    scheduled_time: Optional[str] = None
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    assigned_to_id: Optional[uuid.UUID] = None

    @field_validator("scheduled_time")
    @classmethod
    def validate_scheduled_time(cls, v):
        return _check_time(v)


class TaskCreate(TaskBase):
    scheduled_date: date


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    assigned_to_id: Optional[uuid.UUID] = None

    @field_validator("scheduled_time")
    @classmethod
    def validate_scheduled_time(cls, v):
        return _check_time(v)


class TaskResponse(BaseModel):
    id: uuid.UUID
    company_id: uuid.UUID
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    scheduled_date: date
    scheduled_time: Optional[str] = None
    price: float
    status: TaskStatus
    assigned_to_id: Optional[uuid.UUID] = None
    assigned_to: Optional[UserBrief] = None
    created_by_id: Optional[uuid.UUID] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class RecurringTaskCreate(TaskBase):
    start_date: date
    end_date: date
    days: Optional[List[str]] = None
    selected_days: Optional[Dict[str, bool]] = None

    @model_validator(mode="after")
    def check_days_given(self):
        if self.days is None and self.selected_days is None:
            raise ValueError("Provide days or selected_days")
        return self

    def template(self) -> dict:
        return self.model_dump(exclude={"start_date", "end_date", "days", "selected_days"})

    def weekdays(self):
        return self.days if self.days is not None else self.selected_days


class RecurringTaskError(BaseModel):
    date: date
    error: str


class RecurringTaskResult(BaseModel):
    created: int
    failed: int
    tasks: List[TaskResponse]
    errors: List[RecurringTaskError]
