"""
Recovery Schemas

Pydantic schemas for the password recovery endpoints.
"""

from pydantic import BaseModel, EmailStr, Field

from intake.modules.users.models import UserRole


class ForgotPasswordRequest(BaseModel):
    email: EmailStr
    role: UserRole


class VerifyCodeRequest(BaseModel):
    email: EmailStr
    role: UserRole
    code: str = Field(..., pattern=r"^[0-9]{6}$")


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    role: UserRole
    reset_token: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1, max_length=128)


class MessageResponse(BaseModel):
    message: str


class VerifyCodeResponse(BaseModel):
    reset_token: str
    message: str = "Verification code accepted."
