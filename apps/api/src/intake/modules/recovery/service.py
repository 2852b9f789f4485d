"""
Password Recovery Service

Three-step challenge on a single identity record, keyed by e-mail + role:

1. request_code: issue a 6-digit code valid for a few minutes and e-mail it
2. verify_code: exchange the code for a one-time reset token
3. reset_secret: consume the token to set a new password

State lives on the user row: none -> code issued -> token issued -> none.
Issuing a new code overwrites any previous code or token (last write wins).
Expiry is checked lazily when a code or token is presented.

Security considerations:
- Codes and tokens are SHA-256 hashed before storage and compared in
  constant time
- Wrong codes are counted; once the limit is hit the challenge is discarded
- Unknown accounts get the same response as known ones, including when
  the e-mail cannot be delivered
- Attempts are counted and tokens consumed with conditional writes
- Codes, tokens and passwords are never logged
"""

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from intake.core.config import settings
from intake.core.email import Notifier
from intake.core.exceptions import ServiceError
from intake.core.security import hash_password, hash_token, tokens_match
from intake.modules.admissions.effects import SideEffect, run_side_effects
from intake.modules.admissions.store import AdmissionStore
from intake.modules.users.models import User, UserRole

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
RESET_TOKEN_BYTES = 32
MIN_SECRET_LENGTH = 8

REQUEST_CODE_MESSAGE = "If this email exists in our system, you will receive a verification code."

_CLEARED_CHALLENGE = {
    "otp_code_hash": None,
    "otp_expires_at": None,
    "otp_attempts": 0,
    "reset_token_hash": None,
    "reset_token_expires_at": None,
}


# ============================================
# Errors
# ============================================


class AccountDisabled(ServiceError):
    def __init__(self):
        super().__init__(
            message="Account is deactivated. Please contact administration.",
            error_code="ACCOUNT_DISABLED",
            status_code=403,
        )


class NoActiveChallenge(ServiceError):
    def __init__(self):
        super().__init__(
            message="No verification code has been requested. Please request a new code.",
            error_code="NO_ACTIVE_CHALLENGE",
            status_code=400,
        )


class ChallengeExpired(ServiceError):
    def __init__(self):
        super().__init__(
            message="Verification code has expired. Please request a new code.",
            error_code="CHALLENGE_EXPIRED",
            status_code=400,
        )


class InvalidCode(ServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid verification code.",
            error_code="INVALID_CODE",
            status_code=400,
        )


class TooManyAttempts(ServiceError):
    def __init__(self):
        super().__init__(
            message="Too many incorrect attempts. Please request a new code.",
            error_code="TOO_MANY_ATTEMPTS",
            status_code=429,
        )


class InvalidOrExpiredToken(ServiceError):
    def __init__(self):
        super().__init__(
            message="Invalid or expired reset token.",
            error_code="INVALID_OR_EXPIRED_TOKEN",
            status_code=400,
        )


class WeakSecret(ServiceError):
    def __init__(self, message: str):
        super().__init__(message=message, error_code="WEAK_SECRET", status_code=422)


@dataclass
class RecoveryRequestResult:
    message: str = REQUEST_CODE_MESSAGE


# ============================================
# Helpers
# ============================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


def generate_code() -> str:
    """Uniformly random, zero-padded 6-digit code."""
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


def generate_reset_token() -> str:
    return secrets.token_urlsafe(RESET_TOKEN_BYTES)


def validate_secret_strength(secret: str) -> None:
    """
    Require at least 8 characters with an upper-case letter, a lower-case
    letter and a digit.

    Raises:
        WeakSecret: If the secret does not meet the policy
    """
    if len(secret) < MIN_SECRET_LENGTH:
        raise WeakSecret(f"Password must be at least {MIN_SECRET_LENGTH} characters long.")
    if not (
        re.search(r"[a-z]", secret) and re.search(r"[A-Z]", secret) and re.search(r"\d", secret)
    ):
        raise WeakSecret(
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number."
        )


def _normalize(email: str) -> str:
    return email.strip().lower()


async def _find(store: AdmissionStore, email: str, role: UserRole) -> User | None:
    return await store.find_identity(_normalize(email), role)


# ============================================
# Operations
# ============================================


async def request_code(
    store: AdmissionStore,
    email: str,
    role: UserRole,
    *,
    notifier: Notifier,
) -> RecoveryRequestResult:
    """
    Issue a verification code and e-mail it.

    Returns the same result whether or not the account exists, and whether
    or not the e-mail could be delivered. A code that could not be delivered
    is cleared again.

    Raises:
        AccountDisabled: If the member account is deactivated
    """
    identity = await _find(store, email, role)
    if identity is None:
        logger.info(f"Password reset requested for unknown {role.value} account")
        return RecoveryRequestResult()

    if role == UserRole.MEMBER and not identity.is_active:
        raise AccountDisabled()

    code = generate_code()
    code_hash = hash_token(code)
    await store.update_identity(
        identity,
        otp_code_hash=code_hash,
        otp_expires_at=_utcnow() + timedelta(minutes=settings.otp_expiry_minutes),
        otp_attempts=0,
        reset_token_hash=None,
        reset_token_expires_at=None,
    )

    failed = await run_side_effects(
        [
            SideEffect(
                "send_recovery_code",
                lambda: notifier.send_recovery_code(
                    email=identity.email,
                    name=identity.full_name or "User",
                    code=code,
                    role=role.value,
                ),
            ),
        ],
        context=f"recovery for user {identity.id}",
    )
    if failed:
        # Only clear our own code; a newer request may already have replaced it
        await store.update_identity_if(identity, {"otp_code_hash": code_hash}, **_CLEARED_CHALLENGE)
    else:
        logger.info(f"Recovery code issued for user {identity.id}")
    return RecoveryRequestResult()


async def verify_code(store: AdmissionStore, email: str, role: UserRole, code: str) -> str:
    """
    Exchange a valid code for a reset token.

    Every attempt is counted with an atomic increment before the code is
    compared, so parallel guesses share one attempt budget.

    Returns:
        The plain reset token (only its hash is stored)

    Raises:
        NoActiveChallenge: If no code is on file
        ChallengeExpired: If the code has expired
        TooManyAttempts: If too many wrong codes were tried
        InvalidCode: If the code does not match
    """
    identity = await _find(store, email, role)
    if identity is None or not identity.otp_code_hash:
        raise NoActiveChallenge()

    if identity.otp_expires_at is None or _utcnow() > identity.otp_expires_at:
        raise ChallengeExpired()

    code_hash = identity.otp_code_hash
    attempts = await store.increment_code_attempts(identity, code_hash)
    if attempts is None:
        raise NoActiveChallenge()

    if attempts > settings.otp_max_attempts:
        await store.update_identity_if(identity, {"otp_code_hash": code_hash}, **_CLEARED_CHALLENGE)
        logger.warning(f"Recovery challenge discarded for user {identity.id}: too many attempts")
        raise TooManyAttempts()

    if not tokens_match(code, code_hash):
        logger.info(f"Wrong recovery code for user {identity.id}")
        raise InvalidCode()

    token = generate_reset_token()
    exchanged = await store.update_identity_if(
        identity,
        {"otp_code_hash": code_hash},
        otp_code_hash=None,
        otp_expires_at=None,
        otp_attempts=0,
        reset_token_hash=hash_token(token),
        reset_token_expires_at=_utcnow() + timedelta(minutes=settings.reset_token_expiry_minutes),
    )
    if exchanged is None:
        raise NoActiveChallenge()

    logger.info(f"Recovery code verified for user {identity.id}")
    return token


async def reset_secret(
    store: AdmissionStore,
    email: str,
    role: UserRole,
    token: str,
    new_secret: str,
) -> None:
    """
    Consume a reset token and set a new password.

    The token is consumed by a conditional write, so concurrent resets with
    the same token succeed exactly once.

    Raises:
        InvalidOrExpiredToken: If the token is missing, wrong, expired or
            already used
        WeakSecret: If the new password fails the strength policy
    """
    identity = await _find(store, email, role)
    if identity is None or not tokens_match(token, identity.reset_token_hash):
        raise InvalidOrExpiredToken()

    token_hash = identity.reset_token_hash
    if identity.reset_token_expires_at is None or _utcnow() > identity.reset_token_expires_at:
        await store.update_identity_if(
            identity,
            {"reset_token_hash": token_hash},
            reset_token_hash=None,
            reset_token_expires_at=None,
        )
        raise InvalidOrExpiredToken()

    validate_secret_strength(new_secret)

    consumed = await store.update_identity_if(
        identity,
        {"reset_token_hash": token_hash},
        password_hash=hash_password(new_secret),
        must_change_password=False,
        **_CLEARED_CHALLENGE,
    )
    if consumed is None:
        raise InvalidOrExpiredToken()

    logger.info(f"Password reset completed for user {identity.id}")


__all__ = [
    "AccountDisabled",
    "ChallengeExpired",
    "InvalidCode",
    "InvalidOrExpiredToken",
    "NoActiveChallenge",
    "RecoveryRequestResult",
    "TooManyAttempts",
    "WeakSecret",
    "request_code",
    "reset_secret",
    "validate_secret_strength",
    "verify_code",
]
