"""
User Models

Identity records: administrators and members (approved applicants).
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from intake.core.database import Base, enum_values


class UserRole(str, enum.Enum):
    """User roles in the system."""

    ADMIN = "admin"
    MEMBER = "member"


class RecoveryState(str, enum.Enum):
    """Derived state of a user's password recovery challenge."""

    NONE = "none"
    CODE_ISSUED = "code_issued"
    TOKEN_ISSUED = "token_issued"


class User(Base):
    """
    Identity record for anyone who can authenticate.

    Members carry a student_id drawn from the same sequence as approved
    applications. Administrators normally have none.

    The password recovery challenge lives on the row itself: at most one of
    otp_code_hash / reset_token_hash is set at any time.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Authentication fields
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=enum_values),
        nullable=False,
        default=UserRole.MEMBER,
    )

    # Shared identifier space with admissions.student_id
    student_id: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)

    # Profile fields
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    mobile: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Account status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    must_change_password: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Password recovery challenge (codes and tokens are stored hashed)
    otp_code_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    otp_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    otp_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    reset_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reset_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_users_email_role", "email", "role"),)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"

    @property
    def full_name(self) -> str:
        """Return user's full name."""
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def recovery_state(self) -> RecoveryState:
        """Current position in the recovery challenge."""
        if self.reset_token_hash:
            return RecoveryState.TOKEN_ISSUED
        if self.otp_code_hash:
            return RecoveryState.CODE_ISSUED
        return RecoveryState.NONE
