"""
Credential Issuer

Generates temporary secrets and attaches them to identity records.

The plaintext secret is handed to the notifier exactly once. It is never
logged and never stored; only its bcrypt hash is persisted.
"""

import logging
import secrets
import string
from dataclasses import dataclass, field
from uuid import UUID

from intake.core.config import settings
from intake.core.email import Notifier
from intake.core.exceptions import ServiceError
from intake.core.security import hash_password
from intake.modules.admissions.allocator import IdentifierAllocator
from intake.modules.admissions.effects import SideEffect, run_side_effects
from intake.modules.admissions.models import IdentifierOwner
from intake.modules.admissions.store import AdmissionStore, DuplicateRecord
from intake.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*"
SECRET_ALPHABET = UPPERCASE + LOWERCASE + DIGITS + SYMBOLS

_system_random = secrets.SystemRandom()


class IdentityNotFound(ServiceError):
    """Raised when an identity record does not exist."""

    def __init__(self, identity_id: UUID | None = None):
        message = f"User {identity_id} not found" if identity_id else "User not found"
        super().__init__(message=message, error_code="IDENTITY_NOT_FOUND", status_code=404)


class DuplicateEmail(ServiceError):
    """Raised when an account with the e-mail address already exists."""

    def __init__(self, email: str):
        super().__init__(
            message=f"An account with email {email} already exists.",
            error_code="DUPLICATE_EMAIL",
            status_code=409,
        )


@dataclass
class CredentialsResult:
    identity_id: UUID
    student_id: str | None
    failed_effects: list[str] = field(default_factory=list)

    @property
    def notified(self) -> bool:
        return not self.failed_effects


def generate_temporary_secret(length: int | None = None) -> str:
    """
    Generate a random temporary secret.

    Contains at least one upper-case letter, lower-case letter, digit and
    symbol; the rest is drawn from the combined alphabet and the whole string
    is shuffled so the guaranteed characters have no fixed position.

    Raises:
        ValueError: If length is shorter than the four required classes
    """
    length = settings.temporary_secret_length if length is None else length
    if length < 4:
        raise ValueError("Temporary secret length must be at least 4")

    chars = [secrets.choice(charset) for charset in (UPPERCASE, LOWERCASE, DIGITS, SYMBOLS)]
    chars += [secrets.choice(SECRET_ALPHABET) for _ in range(length - 4)]
    _system_random.shuffle(chars)
    return "".join(chars)


async def issue_credentials(
    store: AdmissionStore,
    identity_id: UUID,
    *,
    notifier: Notifier,
    allocator: IdentifierAllocator,
) -> CredentialsResult:
    """
    Issue a fresh temporary secret to an existing member and send it.

    Members without a student ID get one allocated first. The account is
    flagged so the member must change the secret on next login.

    Raises:
        IdentityNotFound: If the identity does not exist
    """
    async with store.transaction():
        identity = await store.get_identity(identity_id)
        if identity is None:
            raise IdentityNotFound(identity_id)

        student_id = identity.student_id
        if not student_id and identity.role == UserRole.MEMBER:
            student_id = await allocator.allocate(IdentifierOwner.IDENTITY)

        secret = generate_temporary_secret()
        await store.update_identity(
            identity,
            student_id=student_id,
            password_hash=hash_password(secret),
            must_change_password=True,
        )

    logger.info(f"Issued new credentials for user {identity.id}")

    failed = await run_side_effects(
        [
            SideEffect(
                "send_credentials",
                lambda: notifier.send_credentials(
                    email=identity.email,
                    name=identity.full_name,
                    student_id=student_id or "",
                    temporary_password=secret,
                ),
            )
        ],
        context=f"user {identity.id}",
    )
    return CredentialsResult(identity_id=identity.id, student_id=student_id, failed_effects=failed)


async def provision_member(
    store: AdmissionStore,
    *,
    email: str,
    first_name: str,
    last_name: str = "",
    mobile: str | None = None,
    notifier: Notifier,
    allocator: IdentifierAllocator,
) -> CredentialsResult:
    """
    Create a member account directly (no admission application).

    Raises:
        DuplicateEmail: If an account with the e-mail already exists
    """
    email = email.strip().lower()
    secret = generate_temporary_secret()

    async with store.transaction():
        if await store.get_identity_by_email(email) is not None:
            raise DuplicateEmail(email)

        student_id = await allocator.allocate(IdentifierOwner.IDENTITY)
        try:
            identity = await store.create_identity(
                email=email,
                password_hash=hash_password(secret),
                role=UserRole.MEMBER,
                student_id=student_id,
                first_name=first_name,
                last_name=last_name,
                mobile=mobile,
                is_active=True,
                must_change_password=True,
            )
        except DuplicateRecord as e:
            raise DuplicateEmail(email) from e

    failed = await run_side_effects(
        [
            SideEffect(
                "send_credentials",
                lambda: notifier.send_credentials(
                    email=identity.email,
                    name=identity.full_name,
                    student_id=student_id,
                    temporary_password=secret,
                ),
            )
        ],
        context=f"user {identity.id}",
    )
    return CredentialsResult(identity_id=identity.id, student_id=student_id, failed_effects=failed)


async def provision_admin(
    store: AdmissionStore,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str = "",
) -> User:
    """
    Create an administrator account. Administrators get no student ID.

    Raises:
        DuplicateEmail: If an account with the e-mail already exists
    """
    email = email.strip().lower()
    async with store.transaction():
        if await store.get_identity_by_email(email) is not None:
            raise DuplicateEmail(email)
        try:
            return await store.create_identity(
                email=email,
                password_hash=hash_password(password),
                role=UserRole.ADMIN,
                first_name=first_name,
                last_name=last_name,
                is_active=True,
                must_change_password=False,
            )
        except DuplicateRecord as e:
            raise DuplicateEmail(email) from e


async def set_identity_active(store: AdmissionStore, identity_id: UUID, active: bool) -> User:
    """
    Enable or disable an account.

    Raises:
        IdentityNotFound: If the identity does not exist
    """
    identity = await store.get_identity(identity_id)
    if identity is None:
        raise IdentityNotFound(identity_id)

    identity = await store.update_identity(identity, is_active=active)
    logger.info(f"User {identity.id} {'activated' if active else 'deactivated'}")
    return identity


__all__ = [
    "CredentialsResult",
    "DuplicateEmail",
    "IdentityNotFound",
    "generate_temporary_secret",
    "issue_credentials",
    "provision_admin",
    "provision_member",
    "set_identity_active",
]
