"""
Password Recovery Router

Endpoints:
- POST /auth/forgot-password - Request a verification code (rate limited)
- POST /auth/verify-otp - Exchange the code for a reset token
- POST /auth/reset-password - Set a new password with the reset token
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from intake.core.config import settings
from intake.core.email import Notifier
from intake.core.exceptions import ServiceError
from intake.core.rate_limit import enforce_rate_limit
from intake.modules.admissions.dependencies import get_notifier, get_store
from intake.modules.admissions.store import AdmissionStore
from intake.modules.recovery import service
from intake.modules.recovery.schemas import (
    ForgotPasswordRequest,
    MessageResponse,
    ResetPasswordRequest,
    VerifyCodeRequest,
    VerifyCodeResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _handle_service_error(e: ServiceError) -> None:
    raise HTTPException(
        status_code=e.status_code,
        detail={"error": e.error_code, "message": e.message},
    )


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    body: ForgotPasswordRequest,
    request: Request,
    store: AdmissionStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
) -> MessageResponse:
    client_ip = request.client.host if request.client else "unknown"
    await enforce_rate_limit(
        f"recovery:request:{body.email.lower()}:{client_ip}",
        settings.recovery_rate_limit_requests,
        settings.recovery_rate_limit_window_seconds,
    )

    try:
        result = await service.request_code(store, body.email, body.role, notifier=notifier)
    except ServiceError as e:
        _handle_service_error(e)

    return MessageResponse(message=result.message)


@router.post("/verify-otp", response_model=VerifyCodeResponse)
async def verify_otp(
    body: VerifyCodeRequest,
    store: AdmissionStore = Depends(get_store),
) -> VerifyCodeResponse:
    try:
        token = await service.verify_code(store, body.email, body.role, body.code)
    except ServiceError as e:
        _handle_service_error(e)

    return VerifyCodeResponse(reset_token=token)


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest,
    store: AdmissionStore = Depends(get_store),
) -> MessageResponse:
    try:
        await service.reset_secret(store, body.email, body.role, body.reset_token, body.password)
    except ServiceError as e:
        _handle_service_error(e)

    return MessageResponse(
        message="Password reset successfully. You can now log in with your new password."
    )
