"""
Service Errors

Base exception types shared by the admission and recovery services.
Each error carries a stable error code and the HTTP status the API layer
should answer with.
"""


class ServiceError(Exception):
    """Base exception for service errors."""

    def __init__(self, message: str, error_code: str, status_code: int = 400):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        super().__init__(message)


class TransientError(ServiceError):
    """Raised when the persistence layer times out or drops the connection.

    Safe to retry the whole operation.
    """

    def __init__(self, message: str = "Temporary storage failure. Please try again."):
        super().__init__(
            message=message,
            error_code="TRANSIENT_ERROR",
            status_code=503,
        )


class NotificationError(ServiceError):
    """Raised by a notifier when the message could not be delivered."""

    def __init__(self, message: str = "Failed to send notification."):
        super().__init__(
            message=message,
            error_code="NOTIFICATION_FAILED",
            status_code=502,
        )


class DocumentDeletionError(ServiceError):
    """Raised by a document store when a stored artifact could not be deleted."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(
            message=f"Failed to delete stored document {reference}",
            error_code="DOCUMENT_DELETION_FAILED",
            status_code=502,
        )
