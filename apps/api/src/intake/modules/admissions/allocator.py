"""
Sequential Identifier Allocator

Hands out human-readable student identifiers (STU0001, STU0002, ...) from one
sequence shared by admission applications and user accounts.

Allocation is optimistic: read the current maximum across both record sets,
try to reserve max + 1, and treat a uniqueness conflict as the signal that a
concurrent writer got there first. Conflicts are retried a bounded number of
times with a fixed delay; nothing is locked.
"""

import asyncio
import logging
import re

from intake.core.config import settings
from intake.core.exceptions import ServiceError
from intake.modules.admissions.models import IdentifierOwner
from intake.modules.admissions.store import AdmissionStore, IdentifierConflict

logger = logging.getLogger(__name__)


class AllocationExhausted(ServiceError):
    """Raised when every allocation attempt hit a conflict."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            message=f"Could not allocate a student ID after {attempts} attempts. Please try again.",
            error_code="ALLOCATION_EXHAUSTED",
            status_code=503,
        )


def format_identifier(number: int, prefix: str | None = None, width: int | None = None) -> str:
    """
    Format a sequence number as an identifier.

    Numbers wider than ``width`` are kept whole (``STU10000``), never truncated.
    """
    prefix = settings.student_id_prefix if prefix is None else prefix
    width = settings.student_id_width if width is None else width
    return f"{prefix}{number:0{width}d}"


def parse_identifier(value: str | None, prefix: str | None = None) -> int:
    """
    Return the numeric part of an identifier.

    Anything that is not exactly ``prefix`` followed by digits counts as 0,
    so legacy or malformed values never break allocation.
    """
    prefix = settings.student_id_prefix if prefix is None else prefix
    if not value:
        return 0
    match = re.fullmatch(re.escape(prefix) + r"(\d+)", value)
    return int(match.group(1)) if match else 0


class IdentifierAllocator:
    """Allocates identifiers against an AdmissionStore."""

    def __init__(
        self,
        store: AdmissionStore,
        prefix: str | None = None,
        width: int | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ):
        self.store = store
        self.prefix = settings.student_id_prefix if prefix is None else prefix
        self.width = settings.student_id_width if width is None else width
        self.max_attempts = (
            settings.id_allocation_max_attempts if max_attempts is None else max_attempts
        )
        self.retry_delay = (
            settings.id_allocation_retry_delay_seconds if retry_delay is None else retry_delay
        )

    async def current_maximum(self) -> int:
        values = await self.store.assigned_identifiers(self.prefix)
        return max((parse_identifier(v, self.prefix) for v in values), default=0)

    async def allocate(self, owner_kind: IdentifierOwner = IdentifierOwner.IDENTITY) -> str:
        """
        Reserve and return the next identifier.

        Raises:
            AllocationExhausted: If every attempt conflicted
            TransientError: If the store is unavailable
        """
        for attempt in range(1, self.max_attempts + 1):
            candidate = format_identifier(await self.current_maximum() + 1, self.prefix, self.width)
            try:
                await self.store.reserve_identifier(candidate, owner_kind)
            except IdentifierConflict:
                logger.warning(
                    f"Student ID {candidate} already taken "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                if attempt < self.max_attempts:
                    await asyncio.sleep(self.retry_delay)
                continue

            logger.info(f"Allocated student ID {candidate} for {owner_kind.value}")
            return candidate

        logger.error(f"Student ID allocation exhausted after {self.max_attempts} attempts")
        raise AllocationExhausted(self.max_attempts)


__all__ = [
    "AllocationExhausted",
    "IdentifierAllocator",
    "format_identifier",
    "parse_identifier",
]
