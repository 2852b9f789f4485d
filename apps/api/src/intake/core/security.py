"""
Security Utilities

Password hashing, token hashing and caller-token verification.

Access tokens are issued by the session service, not by this API; only
verification lives here.
"""

import hashlib
import hmac
import logging
from typing import Any

import bcrypt
import jwt

from intake.core.config import settings

logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a plain password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        logger.warning("Stored password hash could not be parsed")
        return False


def hash_token(token: str) -> str:
    """
    Hash a one-time value (OTP code or reset token) for storage using SHA-256.

    Args:
        token: The plain value to hash

    Returns:
        Hex-encoded SHA-256 digest
    """
    return hashlib.sha256(token.encode()).hexdigest()


def tokens_match(plain: str, stored_hash: str | None) -> bool:
    """Constant-time comparison of a plain value against its stored hash."""
    if not stored_hash:
        return False
    return hmac.compare_digest(hash_token(plain), stored_hash)


def decode_token(token: str) -> dict[str, Any] | None:
    """
    Verify a JWT and return its claims.

    Returns:
        The decoded payload, or None if the signature, algorithm or expiry
        check fails.
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.PyJWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None
