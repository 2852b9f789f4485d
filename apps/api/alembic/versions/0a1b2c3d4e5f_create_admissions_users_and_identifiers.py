"""create admissions, users and assigned identifiers

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-18 09:00:00.000000

This migration:
1. Creates the enum types used by the models
2. Creates the users table (administrators and members)
3. Creates the admissions table
4. Creates the assigned_identifiers registry and backfills it with every
   student ID already present on admissions or users, so the registry's
   primary key covers the whole identifier space from the start
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

user_role = postgresql.ENUM("admin", "member", name="user_role", create_type=False)
admission_status = postgresql.ENUM(
    "pending", "approved", "rejected", name="admission_status", create_type=False
)
gender = postgresql.ENUM("male", "female", "other", name="gender", create_type=False)
identifier_owner = postgresql.ENUM(
    "applicant", "identity", name="identifier_owner", create_type=False
)


def _updated_at() -> list[sa.Column]:
    return [
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Create the initial schema."""
    bind = op.get_bind()
    for enum_type in (user_role, admission_status, gender, identifier_owner):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("role", user_role, nullable=False),
        sa.Column("student_id", sa.String(length=20), nullable=True),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=""),
        sa.Column("mobile", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "must_change_password", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        # Password recovery challenge
        sa.Column("otp_code_hash", sa.String(length=64), nullable=True),
        sa.Column("otp_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("otp_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reset_token_hash", sa.String(length=64), nullable=True),
        sa.Column("reset_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        *_updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_email_role", "users", ["email", "role"])

    op.create_table(
        "admissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("first_name", sa.String(length=50), nullable=False),
        sa.Column("last_name", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("mobile", sa.String(length=20), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("gender", gender, nullable=False),
        sa.Column("blood_group", sa.String(length=3), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("standard", sa.String(length=100), nullable=False),
        sa.Column("previous_school", sa.String(length=200), nullable=True),
        sa.Column("previous_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("photo_url", sa.String(length=500), nullable=True),
        sa.Column("photo_public_id", sa.String(length=255), nullable=True),
        sa.Column("status", admission_status, nullable=False, server_default="pending"),
        sa.Column("student_id", sa.String(length=20), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "submitted_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        *_updated_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id"),
    )
    op.create_index("ix_admissions_status", "admissions", ["status"])
    op.create_index("ix_admissions_email", "admissions", ["email"])

    op.create_table(
        "assigned_identifiers",
        sa.Column("value", sa.String(length=20), nullable=False),
        sa.Column("owner_kind", identifier_owner, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("value"),
    )

    # Backfill from any rows loaded before the registry existed
    op.execute(
        """
        INSERT INTO assigned_identifiers (value, owner_kind)
        SELECT student_id, 'applicant'::identifier_owner FROM admissions
        WHERE student_id IS NOT NULL
        UNION
        SELECT student_id, 'identity'::identifier_owner FROM users
        WHERE student_id IS NOT NULL
        ON CONFLICT (value) DO NOTHING
        """
    )


def downgrade() -> None:
    """Drop the initial schema."""
    op.drop_table("assigned_identifiers")
    op.drop_index("ix_admissions_email", table_name="admissions")
    op.drop_index("ix_admissions_status", table_name="admissions")
    op.drop_table("admissions")
    op.drop_index("ix_users_email_role", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum_type in (identifier_owner, gender, admission_status, user_role):
        enum_type.drop(bind, checkfirst=True)
