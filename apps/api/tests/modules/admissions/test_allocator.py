"""
Tests for the sequential identifier allocator.

These tests verify:
- Identifier formatting and parsing (including malformed legacy values)
- The next identifier follows the maximum across applicants and users
- Concurrent allocations never hand out the same identifier
- Conflicts are retried with a fixed delay and exhaust after the bound
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from intake.modules.admissions.allocator import (
    AllocationExhausted,
    IdentifierAllocator,
    format_identifier,
    parse_identifier,
)
from intake.modules.admissions.models import AdmissionStatus, IdentifierOwner
from intake.modules.admissions.store import IdentifierConflict, MemoryAdmissionStore

# ============================================
# Formatting
# ============================================


class TestFormatIdentifier:
    def test_zero_pads_to_width(self):
        assert format_identifier(7, "STU", 4) == "STU0007"

    def test_does_not_truncate_past_width(self):
        assert format_identifier(10000, "STU", 4) == "STU10000"


class TestParseIdentifier:
    def test_parses_prefix_and_digits(self):
        assert parse_identifier("STU0042", "STU") == 42

    @pytest.mark.parametrize(
        "value",
        [None, "", "STU", "STU12A", "ABC0001", "stu0001", "STU-0001", " STU0001"],
    )
    def test_malformed_values_count_as_zero(self, value):
        assert parse_identifier(value, "STU") == 0


# ============================================
# Allocation
# ============================================


class TestAllocate:
    @pytest.mark.asyncio
    async def test_first_identifier_in_empty_store(self, allocator):
        assert await allocator.allocate() == "STU0001"

    @pytest.mark.asyncio
    async def test_uses_maximum_across_applicants_and_users(
        self, memory_store, allocator, applicant_factory, identity_factory
    ):
        await applicant_factory(
            email="a@example.com", status=AdmissionStatus.APPROVED, student_id="STU0004"
        )
        await identity_factory(email="m@example.com", student_id="STU0006")

        assert await allocator.allocate() == "STU0007"
        assert memory_store.registry["STU0007"] == IdentifierOwner.IDENTITY

    @pytest.mark.asyncio
    async def test_malformed_identifiers_do_not_break_allocation(
        self, allocator, identity_factory
    ):
        await identity_factory(email="legacy@example.com", student_id="STU12AB")
        await identity_factory(email="m@example.com", student_id="STU0002")

        assert await allocator.allocate() == "STU0003"

    @pytest.mark.asyncio
    async def test_sequential_allocations_increase(self, allocator):
        first = await allocator.allocate()
        second = await allocator.allocate()

        assert (first, second) == ("STU0001", "STU0002")

    @pytest.mark.asyncio
    async def test_concurrent_allocations_are_distinct(self, identity_factory, memory_store):
        await identity_factory(email="m@example.com", student_id="STU0010")

        class SlowReadStore:
            """Yields between reading the maximum and reserving, forcing races."""

            def __init__(self, inner):
                self.inner = inner

            async def assigned_identifiers(self, prefix):
                values = await self.inner.assigned_identifiers(prefix)
                await asyncio.sleep(0)
                return values

            async def reserve_identifier(self, value, owner_kind):
                await self.inner.reserve_identifier(value, owner_kind)

        racing = IdentifierAllocator(
            SlowReadStore(memory_store), prefix="STU", width=4, max_attempts=10, retry_delay=0
        )

        results = await asyncio.gather(*(racing.allocate() for _ in range(5)))

        assert len(set(results)) == 5
        assert all(parse_identifier(r, "STU") > 10 for r in results)

    @pytest.mark.asyncio
    async def test_retries_after_conflict(self):
        store = AsyncMock()
        store.assigned_identifiers = AsyncMock(side_effect=[["STU0003"], ["STU0003", "STU0004"]])
        store.reserve_identifier = AsyncMock(side_effect=[IdentifierConflict("STU0004"), None])
        allocator = IdentifierAllocator(store, prefix="STU", width=4, max_attempts=5, retry_delay=0.1)

        with patch(
            "intake.modules.admissions.allocator.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            result = await allocator.allocate()

        assert result == "STU0005"
        assert store.reserve_identifier.await_count == 2
        mock_sleep.assert_awaited_once_with(0.1)

    @pytest.mark.asyncio
    async def test_exhausts_after_max_attempts(self):
        store = AsyncMock()
        store.assigned_identifiers = AsyncMock(return_value=["STU0001"])
        store.reserve_identifier = AsyncMock(side_effect=IdentifierConflict("STU0002"))
        allocator = IdentifierAllocator(store, prefix="STU", width=4, max_attempts=5, retry_delay=0.1)

        with patch(
            "intake.modules.admissions.allocator.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            with pytest.raises(AllocationExhausted) as exc_info:
                await allocator.allocate()

        assert exc_info.value.error_code == "ALLOCATION_EXHAUSTED"
        assert exc_info.value.status_code == 503
        assert store.reserve_identifier.await_count == 5
        # No delay after the final attempt
        assert mock_sleep.await_count == 4

    @pytest.mark.asyncio
    async def test_reserved_identifier_is_not_reissued(self, memory_store, allocator):
        memory_store.registry["STU0001"] = IdentifierOwner.APPLICANT

        assert await allocator.allocate() == "STU0002"


class TestMemoryStoreReservation:
    @pytest.mark.asyncio
    async def test_conflicts_with_existing_identity(self):
        store = MemoryAdmissionStore()
        await store.create_identity(
            email="m@example.com", password_hash="x", first_name="M", student_id="STU0001"
        )

        with pytest.raises(IdentifierConflict):
            await store.reserve_identifier("STU0001", IdentifierOwner.IDENTITY)
