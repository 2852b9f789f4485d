"""
Users module - Identity records for administrators and members.
"""

from intake.modules.users.models import RecoveryState, User, UserRole

__all__ = ["RecoveryState", "User", "UserRole"]
