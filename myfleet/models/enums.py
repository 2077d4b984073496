from enum import Enum


class UserRole(str, Enum):
    driver = "DRIVER"
    company_admin = "COMPANY_ADMIN"
    super_admin = "SUPER_ADMIN"


class TaskStatus(str, Enum):
    pending = "PENDING"
    accepted = "ACCEPTED"
    rejected = "REJECTED"
    completed = "COMPLETED"
    cancelled = "CANCELLED"


class TimeOffStatus(str, Enum):
    pending = "PENDING"
    approved = "APPROVED"
    rejected = "REJECTED"


class VehicleStatus(str, Enum):
    active = "ACTIVE"
    in_service = "IN_SERVICE"
    needs_service = "NEEDS_SERVICE"
    inactive = "INACTIVE"


class MileageUnit(str, Enum):
    miles = "miles"
    km = "km"


class DeductionType(str, Enum):
    van_rental = "VAN_RENTAL"
    penalty = "PENALTY"
    insurance = "INSURANCE"
    fuel = "FUEL"
    equipment = "EQUIPMENT"
    other = "OTHER"


class DeductionFrequency(str, Enum):
    weekly = "WEEKLY"
    monthly = "MONTHLY"
    one_time = "ONE_TIME"


class DeductionStatus(str, Enum):
    active = "ACTIVE"
    inactive = "INACTIVE"


class DayType(str, Enum):
    worked = "WORKED"
    off = "OFF"
    idle = "IDLE"
