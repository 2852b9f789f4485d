"""
Document Storage

Interface to the external store holding applicant photos and documents.
The admission service only ever deletes artifacts (on rejection); uploads
happen elsewhere.
"""

import asyncio
import logging
from typing import Any, Protocol

import cloudinary
import cloudinary.uploader

from intake.core.config import Settings
from intake.core.exceptions import DocumentDeletionError

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    """Minimal interface to delete a stored artifact by its reference."""

    async def delete(self, reference: str) -> None: ...


class CloudinaryDocumentStore:
    """
    DocumentStore backed by the Cloudinary uploader.

    ``destroy(public_id)`` returns a mapping with a ``result`` key (``"ok"``
    on success). The SDK call is synchronous, so it runs in a worker thread.
    """

    def __init__(self, uploader: Any = cloudinary.uploader):
        self._uploader = uploader

    async def delete(self, reference: str) -> None:
        response = await asyncio.to_thread(self._uploader.destroy, reference)
        result = response.get("result") if isinstance(response, dict) else None
        if result not in ("ok", "not found"):
            raise DocumentDeletionError(reference)
        logger.info(f"Deleted stored document {reference} ({result})")


class NullDocumentStore:
    """DocumentStore that only logs; used when no storage backend is configured."""

    async def delete(self, reference: str) -> None:
        logger.info(f"No document store configured - skipping delete of {reference}")


def build_document_store(config: Settings) -> DocumentStore:
    """Cloudinary when credentials are configured, otherwise the logging null store."""
    if not config.cloudinary_configured:
        logger.warning("Cloudinary credentials not set - rejected applicants' photos are kept")
        return NullDocumentStore()

    cloudinary.config(
        cloud_name=config.cloudinary_cloud_name,
        api_key=config.cloudinary_api_key,
        api_secret=config.cloudinary_api_secret,
        secure=True,
    )
    return CloudinaryDocumentStore(cloudinary.uploader)


__all__ = [
    "CloudinaryDocumentStore",
    "DocumentStore",
    "NullDocumentStore",
    "build_document_store",
]
