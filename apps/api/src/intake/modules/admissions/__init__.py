"""
Admissions module - Applications, student ID allocation and member credentials.
"""

from intake.modules.admissions.router import router

__all__ = ["router"]
