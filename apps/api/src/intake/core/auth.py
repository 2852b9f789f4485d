"""
Authentication and Authorization Module

Provides the FastAPI dependency that identifies the administrator behind an
admin request. Tokens are issued by the session service; this module only
verifies them (see security.decode_token) and checks the role claim.

SECURITY NOTE:
- Development test tokens are ONLY accepted when PYTHON_ENV=development
- Production environments MUST set PYTHON_ENV=production
"""

import logging
import os
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from intake.core.config import settings
from intake.core.security import decode_token

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

# Security scheme for OpenAPI documentation
security = HTTPBearer(
    auto_error=True,
    description="JWT Bearer token for authentication",
)


@dataclass
class AdminUser:
    """
    Represents an authenticated administrator.

    Populated from JWT claims after token validation.

    Attributes:
        id: Identity record id of the administrator
        email: Administrator's email address
        role: Role claim (must be 'admin' for admin endpoints)
    """

    id: UUID
    email: str
    role: str

    def __str__(self) -> str:
        return f"AdminUser(id={self.id}, email={self.email}, role={self.role})"


def _is_dev_mode_safe() -> bool:
    """
    Check if development test tokens may be accepted.

    Requires settings.is_development AND the raw PYTHON_ENV variable not to
    name a production-like environment.
    """
    env_var = os.getenv("PYTHON_ENV", "").lower()

    is_safe = (
        settings.is_development
        and not settings.is_production
        and env_var not in ("production", "staging")
    )

    if is_safe:
        logger.warning(
            "SECURITY: Development auth mode is ENABLED. This MUST NOT be used in production!"
        )

    return is_safe


_DEVELOPMENT_MODE = _is_dev_mode_safe()

_DEV_ADMIN = AdminUser(
    id=UUID("00000000-0000-0000-0000-000000000001"),
    email="admin@intake.dev",
    role=ADMIN_ROLE,
)


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _user_from_token(token: str) -> AdminUser:
    """
    Validate a JWT token and extract the caller's claims.

    Raises:
        HTTPException 401: If token is invalid, expired or missing claims
    """
    if _DEVELOPMENT_MODE and token in ("dev-token", "test-token"):
        logger.debug("Development mode: Using test token")
        return _DEV_ADMIN

    payload = decode_token(token)

    if payload is None:
        logger.warning("Invalid or expired JWT token")
        raise _unauthorized("INVALID_TOKEN", "Invalid or expired authentication token.")

    if payload.get("type", "access") != "access":
        logger.warning(f"Invalid token type: {payload.get('type')}")
        raise _unauthorized("INVALID_TOKEN_TYPE", "This endpoint requires an access token.")

    try:
        return AdminUser(
            id=UUID(payload["sub"]),
            email=payload.get("email", ""),
            role=payload.get("role", ""),
        )
    except (ValueError, KeyError) as e:
        logger.warning(f"Invalid token claims: {e}")
        raise _unauthorized(
            "INVALID_TOKEN_CLAIMS", "Token contains invalid or missing claims."
        ) from e


async def get_current_admin_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> AdminUser:
    """
    FastAPI dependency that returns the authenticated administrator.

    Raises:
        HTTPException 401: If token is missing, invalid, or expired
        HTTPException 403: If the caller is not an administrator
    """
    user = _user_from_token(credentials.credentials)

    if user.role != ADMIN_ROLE:
        logger.warning(
            f"Access denied: User {user.id} ({user.email}) has role '{user.role}', "
            f"but '{ADMIN_ROLE}' is required"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "ADMIN_ACCESS_REQUIRED",
                "message": "Administrator access is required for this endpoint.",
            },
        )

    logger.debug(f"Authenticated admin: {user.id} ({user.email})")
    return user


__all__ = ["AdminUser", "get_current_admin_user"]
