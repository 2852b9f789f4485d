"""
Core module - Configuration, database, security, and utilities.
"""

from intake.core.config import get_settings, settings
from intake.core.database import Base, close_db, get_db, init_db
from intake.core.exceptions import ServiceError, TransientError
from intake.core.security import (
    decode_token,
    hash_password,
    hash_token,
    tokens_match,
    verify_password,
)

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "close_db",
    # Errors
    "ServiceError",
    "TransientError",
    # Security
    "hash_password",
    "verify_password",
    "hash_token",
    "tokens_match",
    "decode_token",
]
