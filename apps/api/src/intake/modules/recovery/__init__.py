"""
Recovery module - One-time code password recovery.
"""

from intake.modules.recovery.router import router

__all__ = ["router"]
