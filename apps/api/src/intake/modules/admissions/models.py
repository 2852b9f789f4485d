"""
Admissions Models

Database models for admission applications and the registry of assigned
student identifiers.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, Index, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from intake.core.database import Base, enum_values


class AdmissionStatus(str, enum.Enum):
    """Status of an admission application."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class IdentifierOwner(str, enum.Enum):
    """Which record set an assigned identifier was reserved for."""

    APPLICANT = "applicant"
    IDENTITY = "identity"


class Admission(Base):
    """
    Admission application.

    Created as PENDING on submission and decided exactly once by an
    administrator. student_id is set iff the application is APPROVED;
    rejection_reason is set iff it is REJECTED.
    """

    __tablename__ = "admissions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Personal information
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile: Mapped[str] = mapped_column(String(20), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[Gender] = mapped_column(
        Enum(Gender, name="gender", values_callable=enum_values), nullable=False
    )
    blood_group: Mapped[str | None] = mapped_column(String(3), nullable=True)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Academic information
    standard: Mapped[str] = mapped_column(String(100), nullable=False)
    previous_school: Mapped[str | None] = mapped_column(String(200), nullable=True)
    previous_percentage: Mapped[float | None] = mapped_column(Numeric(5, 2), nullable=True)

    # Uploaded photo (reference into the document store)
    photo_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    photo_public_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Decision
    status: Mapped[AdmissionStatus] = mapped_column(
        Enum(AdmissionStatus, name="admission_status", values_callable=enum_values),
        nullable=False,
        default=AdmissionStatus.PENDING,
    )
    student_id: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)

    # Audit timestamps
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_admissions_status", "status"),
        Index("ix_admissions_email", "email"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class AssignedIdentifier(Base):
    """
    Registry of every student identifier ever handed out.

    The primary key is the single uniqueness constraint spanning both
    admissions.student_id and users.student_id: an identifier is only used
    after its row here was inserted successfully.
    """

    __tablename__ = "assigned_identifiers"

    value: Mapped[str] = mapped_column(String(20), primary_key=True)
    owner_kind: Mapped[IdentifierOwner] = mapped_column(
        Enum(IdentifierOwner, name="identifier_owner", values_callable=enum_values), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
