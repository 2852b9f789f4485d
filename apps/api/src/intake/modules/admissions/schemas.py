"""
Admissions Schemas

Pydantic schemas for request validation and response serialization.
"""

from datetime import date
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from intake.modules.admissions.models import AdmissionStatus, Gender


class AdmissionCreate(BaseModel):
    """Request body for POST /admissions."""

    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    mobile: str = Field(..., pattern=r"^[0-9]{10}$")
    date_of_birth: date
    gender: Gender
    blood_group: str | None = Field(None, pattern=r"^(A|B|AB|O)[+-]$")
    address: str | None = Field(None, max_length=500)
    standard: str = Field(..., min_length=1, max_length=100)
    previous_school: str | None = Field(None, max_length=200)
    previous_percentage: float | None = Field(None, ge=0, le=100)
    photo_url: str | None = Field(None, max_length=500)
    photo_public_id: str | None = Field(None, max_length=255)


class AdmissionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str
    last_name: str
    email: str
    standard: str
    status: AdmissionStatus
    student_id: str | None = None


class RejectRequest(BaseModel):
    # Minimum length is a form rule; the service only requires a non-blank reason
    reason: str = Field(..., min_length=10, max_length=1000)


class ApproveResponse(BaseModel):
    applicant_id: UUID
    student_id: str
    identity_id: UUID
    status: AdmissionStatus = AdmissionStatus.APPROVED
    notification_sent: bool
    message: str = "Application approved. Login credentials have been sent to the applicant."


class RejectResponse(BaseModel):
    applicant_id: UUID
    status: AdmissionStatus
    failed_effects: list[str] = []
    message: str = "Application rejected."


class IdentifierResponse(BaseModel):
    student_id: str


class MemberCreate(BaseModel):
    """Request body for POST /admin/members."""

    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field("", max_length=100)
    mobile: str | None = Field(None, max_length=20)


class CredentialsResponse(BaseModel):
    identity_id: UUID
    student_id: str | None
    notification_sent: bool


class SetActiveRequest(BaseModel):
    is_active: bool


class MemberResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    student_id: str | None
    first_name: str
    last_name: str
    is_active: bool
