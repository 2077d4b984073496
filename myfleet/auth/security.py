"""
Bearer token identity.
Tokens are issued by the login service and only verified here. A token
names the user (sub) and the role it was issued for; a role change since
issue makes the token stale.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.enums import UserRole
from ..models.models import User


http_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(user_id, role: Optional[str] = None, ttl_seconds: Optional[int] = None) -> str:
    """Signed token for user_id. Used by the login service and by tests."""
    issued = datetime.now(tz=timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise _unauthorized("Not authenticated")
    claims = decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(claims.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid subject")

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise _unauthorized("User not active")
    if claims.get("role") and claims["role"] != user.role:
        raise _unauthorized("Token role is stale, sign in again")
    return user


def require_roles(*roles: UserRole) -> Callable[..., User]:
    allowed = {r.value for r in roles}
    label = " or ".join(r.value.replace("_", " ").title() for r in roles)

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{label} access required")
        return user

    return dependency


require_admin = require_roles(UserRole.company_admin, UserRole.super_admin)
require_driver = require_roles(UserRole.driver)
