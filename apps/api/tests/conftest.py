"""
Shared fixtures for the Intake API tests.

Behavioural tests run against MemoryAdmissionStore; outbound collaborators
(notifier, document store) are AsyncMocks so calls can be asserted.
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest

from intake.core.documents import NullDocumentStore
from intake.core.email import EmailNotifier
from intake.modules.admissions.allocator import IdentifierAllocator
from intake.modules.admissions.models import Gender
from intake.modules.admissions.store import MemoryAdmissionStore
from intake.modules.users.models import UserRole


@pytest.fixture(autouse=True)
def fast_password_hashing():
    """bcrypt at 12 rounds is slow; tests only need a deterministic stand-in."""
    def _fake_hash(password: str) -> str:
        return f"hashed:{password}"

    with (
        patch("intake.modules.admissions.credentials.hash_password", side_effect=_fake_hash),
        patch("intake.modules.admissions.service.hash_password", side_effect=_fake_hash),
        patch("intake.modules.recovery.service.hash_password", side_effect=_fake_hash),
    ):
        yield


@pytest.fixture
def memory_store():
    """A fresh in-memory store per test."""
    return MemoryAdmissionStore()


@pytest.fixture
def mock_notifier():
    """Notifier whose sends all succeed."""
    return AsyncMock(spec=EmailNotifier)


@pytest.fixture
def mock_documents():
    """Document store whose deletes all succeed."""
    return AsyncMock(spec=NullDocumentStore)


@pytest.fixture
def allocator(memory_store):
    """Allocator with the production prefix/width and no retry delay."""
    return IdentifierAllocator(memory_store, prefix="STU", width=4, max_attempts=5, retry_delay=0)


@pytest.fixture
def applicant_factory(memory_store):
    """Create applicants directly in the memory store."""

    async def _create(**overrides):
        fields = {
            "first_name": "Asha",
            "last_name": "Verma",
            "email": "asha@example.com",
            "mobile": "9876543210",
            "date_of_birth": date(2010, 5, 17),
            "gender": Gender.FEMALE,
            "standard": "Grade 8",
            "photo_url": "https://res.cloudinary.com/demo/image/upload/admissions/asha.jpg",
            "photo_public_id": "admissions/asha",
        }
        fields.update(overrides)
        return await memory_store.create_applicant(**fields)

    return _create


@pytest.fixture
def identity_factory(memory_store):
    """Create identity records directly in the memory store."""

    async def _create(**overrides):
        fields = {
            "email": "member@example.com",
            "password_hash": "hashed:OldPass1",
            "role": UserRole.MEMBER,
            "first_name": "Ravi",
            "last_name": "Kumar",
            "is_active": True,
        }
        fields.update(overrides)
        return await memory_store.create_identity(**fields)

    return _create
