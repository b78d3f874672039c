"""
Bearer-token checks for the admin import endpoints.

Token issuance belongs to the platform's auth service; this module only
verifies HS256 JWTs signed with the shared secret and exposes the caller as
an ``AuthenticatedUser``. ``create_access_token`` exists for tests and
operational scripts.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24  # 24 hours
VALID_ROLES = {"admin", "student"}

security = HTTPBearer()


@dataclass(frozen=True)
class AuthenticatedUser:
    id: str
    role: str


def create_access_token(
    user_id: str,
    role: str = "admin",
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a JWT access token for ``user_id``."""
    if role not in VALID_ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of {sorted(VALID_ROLES)}")
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AuthenticatedUser:
    """Get the current authenticated user from the bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in VALID_ROLES:
        raise credentials_exception

    return AuthenticatedUser(id=str(user_id), role=role)


def require_admin(current_user: AuthenticatedUser = Depends(get_current_user)) -> AuthenticatedUser:
    """Dependency that ensures the current user has admin role."""
    if current_user.role != "admin":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required"
        )
    return current_user
