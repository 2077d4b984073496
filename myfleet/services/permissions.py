"""
Permission checks shared by the task, vehicle, time-off and deduction services.
"""
import uuid
from typing import Optional

from ..models.enums import UserRole
from ..models.models import User
from .errors import NotFound, PermissionDenied


def is_super_admin(user: User) -> bool:
    return user.role == UserRole.super_admin.value


def is_admin(user: User) -> bool:
    """Company admins and super admins."""
    return user.role in (UserRole.company_admin.value, UserRole.super_admin.value)


def is_driver(user: User) -> bool:
    return user.role == UserRole.driver.value


def same_company(user: User, company_id: Optional[uuid.UUID]) -> bool:
    if is_super_admin(user):
        return True
    return user.company_id is not None and user.company_id == company_id


def ensure_admin(user: User) -> None:
    if not is_admin(user):
        raise PermissionDenied("Admin access required")


def ensure_driver(user: User, action: str = "perform this action") -> None:
    if not is_driver(user):
        raise PermissionDenied(f"Only drivers can {action}")


def ensure_company_access(user: User, entity, label: str = "Resource") -> None:
    """
    Entities from another company are reported as missing rather than forbidden,
    so other tenants cannot tell which ids exist.
    """
    if not same_company(user, getattr(entity, "company_id", None)):
        raise NotFound(f"{label} not found")


def resolve_company_id(user: User, requested: Optional[uuid.UUID] = None) -> uuid.UUID:
    """Company a request operates on. Only super admins may pick one explicitly."""
    if is_super_admin(user):
        if requested is None:
            raise PermissionDenied("company_id is required for super admins")
        return requested
    if requested is not None and requested != user.company_id:
        raise PermissionDenied("Cannot access another company")
    if user.company_id is None:
        raise PermissionDenied("User is not attached to a company")
    return user.company_id
