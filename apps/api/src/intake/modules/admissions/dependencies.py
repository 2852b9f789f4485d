"""
Request-scoped dependencies for the admission and recovery routers.

The application sets ``app.state.memory_store`` when
``settings.storage_backend`` is "memory"; otherwise each request gets a
SqlAdmissionStore on its own session. Keeping the memory store on the app
gives every application instance (and every test client) its own.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from intake.core.config import settings
from intake.core.database import async_session_maker
from intake.core.documents import DocumentStore, NullDocumentStore
from intake.core.email import EmailNotifier, Notifier
from intake.modules.admissions.allocator import IdentifierAllocator
from intake.modules.admissions.store import AdmissionStore, SqlAdmissionStore


async def _optional_db(request: Request):
    if getattr(request.app.state, "memory_store", None) is not None:
        yield None
        return
    async with async_session_maker() as session:
        yield session


async def get_store(
    request: Request,
    db: AsyncSession | None = Depends(_optional_db),
) -> AdmissionStore:
    if db is None:
        return request.app.state.memory_store
    return SqlAdmissionStore(db)


def get_notifier(request: Request) -> Notifier:
    return getattr(request.app.state, "notifier", None) or EmailNotifier()


def get_document_store(request: Request) -> DocumentStore:
    return getattr(request.app.state, "document_store", None) or NullDocumentStore()


def get_allocator(store: AdmissionStore = Depends(get_store)) -> IdentifierAllocator:
    return IdentifierAllocator(
        store,
        prefix=settings.student_id_prefix,
        width=settings.student_id_width,
        max_attempts=settings.id_allocation_max_attempts,
        retry_delay=settings.id_allocation_retry_delay_seconds,
    )


__all__ = ["get_allocator", "get_document_store", "get_notifier", "get_store"]
