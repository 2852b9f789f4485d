"""
Tests for the administrator authentication dependency.
"""

from uuid import UUID

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from intake.core.auth import get_current_admin_user
from intake.core.config import settings

ADMIN_ID = "3f1c2b7e-4b9a-4a55-9d41-7c1e5a0d2e11"


def _credentials(**claims) -> HTTPAuthorizationCredentials:
    token = jwt.encode(
        {"sub": ADMIN_ID, "email": "admin@example.com", "role": "admin", **claims},
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestGetCurrentAdminUser:
    @pytest.mark.asyncio
    async def test_admin_token(self):
        admin = await get_current_admin_user(_credentials())

        assert admin.id == UUID(ADMIN_ID)
        assert admin.role == "admin"

    @pytest.mark.asyncio
    async def test_member_role_is_forbidden(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin_user(_credentials(role="member"))

        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_invalid_token_is_unauthorized(self):
        bad = HTTPAuthorizationCredentials(scheme="Bearer", credentials="garbage")

        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin_user(bad)

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail["error"] == "INVALID_TOKEN"

    @pytest.mark.asyncio
    async def test_refresh_token_is_refused(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin_user(_credentials(type="refresh"))

        assert exc_info.value.detail["error"] == "INVALID_TOKEN_TYPE"

    @pytest.mark.asyncio
    async def test_missing_subject(self):
        token = jwt.encode({"role": "admin"}, settings.jwt_secret_key, algorithm="HS256")

        with pytest.raises(HTTPException) as exc_info:
            await get_current_admin_user(
                HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
            )

        assert exc_info.value.detail["error"] == "INVALID_TOKEN_CLAIMS"
