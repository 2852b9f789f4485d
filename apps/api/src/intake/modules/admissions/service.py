"""
Admissions Service Layer

Business logic for admission applications.

This module implements:
1. Submission:
   - Reject a second pending application for the same e-mail
   - Reject applicants who already hold a member account
   - Create the application as PENDING

2. Approval (pending -> approved):
   - Claim the application with a conditional status update, before
     anything else happens
   - Allocate a student ID from the shared sequence
   - Generate a temporary secret and create the member account
   - Record the student ID and who processed the application
   - After commit: send the acceptance e-mail (best-effort)

3. Rejection (pending -> rejected):
   - Validate the reason
   - Claim the application with a conditional status update
   - After commit: send the rejection e-mail and delete the uploaded photo
     (both best-effort)

Consistency:
- The pending check and the status write are one atomic UPDATE, so two
  concurrent decisions on the same application yield exactly one winner
- Everything up to the status write runs in one store transaction; a failure
  there leaves the application PENDING with no account and no student ID
- Notification and document cleanup failures are logged and reported in the
  result, never raised
"""

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from intake.core.documents import DocumentStore
from intake.core.email import Notifier
from intake.core.exceptions import ServiceError
from intake.core.security import hash_password
from intake.modules.admissions.allocator import IdentifierAllocator
from intake.modules.admissions.credentials import DuplicateEmail, generate_temporary_secret
from intake.modules.admissions.effects import SideEffect, run_side_effects
from intake.modules.admissions.models import Admission, AdmissionStatus, IdentifierOwner
from intake.modules.admissions.store import AdmissionStore, DuplicateRecord
from intake.modules.users.models import UserRole

logger = logging.getLogger(__name__)

# Valid status transitions. Terminal states have none.
VALID_STATUS_TRANSITIONS: dict[AdmissionStatus, set[AdmissionStatus]] = {
    AdmissionStatus.PENDING: {AdmissionStatus.APPROVED, AdmissionStatus.REJECTED},
    AdmissionStatus.APPROVED: set(),
    AdmissionStatus.REJECTED: set(),
}


# ============================================
# Errors
# ============================================


class ApplicantNotFound(ServiceError):
    """Raised when an application does not exist."""

    def __init__(self, applicant_id: UUID | None = None):
        message = f"Application {applicant_id} not found" if applicant_id else "Application not found"
        super().__init__(message=message, error_code="APPLICANT_NOT_FOUND", status_code=404)


class AlreadyProcessed(ServiceError):
    """Raised when a decision is attempted on an application that is no longer pending."""

    def __init__(self, applicant_id: UUID, current_status: AdmissionStatus | None = None):
        self.current_status = current_status
        status_text = f" (status: {current_status.value})" if current_status else ""
        super().__init__(
            message=f"Application {applicant_id} has already been processed{status_text}.",
            error_code="ALREADY_PROCESSED",
            status_code=409,
        )


class InvalidRejectionReason(ServiceError):
    """Raised when a rejection has no reason."""

    def __init__(self):
        super().__init__(
            message="A rejection reason is required.",
            error_code="INVALID_REJECTION_REASON",
            status_code=422,
        )


class DuplicateApplication(ServiceError):
    """Raised when a pending application already exists for the e-mail."""

    def __init__(self, email: str):
        super().__init__(
            message=f"An application for {email} is already pending review.",
            error_code="DUPLICATE_APPLICATION",
            status_code=409,
        )


class AccountExists(ServiceError):
    """Raised when the applicant already has a member account."""

    def __init__(self, email: str):
        super().__init__(
            message=f"An account for {email} already exists. Please log in instead.",
            error_code="ACCOUNT_EXISTS",
            status_code=409,
        )


class StudentIdConflict(ServiceError):
    """Raised when an allocated student ID is already recorded on another application."""

    def __init__(self, student_id: str):
        super().__init__(
            message=f"Student ID {student_id} is already recorded on another application.",
            error_code="STUDENT_ID_CONFLICT",
            status_code=409,
        )


# ============================================
# Results
# ============================================


@dataclass
class ApprovalResult:
    applicant_id: UUID
    student_id: str
    identity_id: UUID
    failed_effects: list[str] = field(default_factory=list)


@dataclass
class RejectionResult:
    applicant_id: UUID
    status: AdmissionStatus = AdmissionStatus.REJECTED
    failed_effects: list[str] = field(default_factory=list)


# ============================================
# Helpers
# ============================================


async def _claim(
    store: AdmissionStore,
    applicant_id: UUID,
    target: AdmissionStatus,
    **changes,
) -> Admission:
    """
    Conditionally move a PENDING application to ``target``.

    Raises:
        ApplicantNotFound: If the application does not exist
        AlreadyProcessed: If it is no longer pending
    """
    if target not in VALID_STATUS_TRANSITIONS[AdmissionStatus.PENDING]:
        raise ValueError(f"Cannot transition an application to {target.value}")

    applicant = await store.transition_applicant(
        applicant_id, AdmissionStatus.PENDING, target, **changes
    )
    if applicant is not None:
        return applicant

    current = await store.get_applicant(applicant_id)
    if current is None:
        raise ApplicantNotFound(applicant_id)

    logger.info(
        f"Refused to {target.value} application {applicant_id}: already {current.status.value}"
    )
    raise AlreadyProcessed(applicant_id, current.status)


# ============================================
# Operations
# ============================================


async def allocate_identifier(allocator: IdentifierAllocator) -> str:
    """Allocate a student ID without attaching it to a record."""
    async with allocator.store.transaction():
        return await allocator.allocate(IdentifierOwner.IDENTITY)


async def submit_application(store: AdmissionStore, **data) -> Admission:
    """
    Create a new PENDING application.

    Raises:
        DuplicateApplication: If a pending application exists for the e-mail
        AccountExists: If a member account exists for the e-mail
    """
    email = data["email"].strip().lower()
    data["email"] = email

    if await store.find_pending_applicant_by_email(email) is not None:
        raise DuplicateApplication(email)

    if await store.find_identity(email, UserRole.MEMBER) is not None:
        raise AccountExists(email)

    applicant = await store.create_applicant(**data)
    logger.info(f"Created admission application {applicant.id}")
    return applicant


async def approve_applicant(
    store: AdmissionStore,
    applicant_id: UUID,
    admin_id: UUID,
    *,
    notifier: Notifier,
    allocator: IdentifierAllocator,
) -> ApprovalResult:
    """
    Approve a pending application and turn the applicant into a member.

    Raises:
        ApplicantNotFound: If the application does not exist
        AlreadyProcessed: If it is no longer pending
        DuplicateEmail: If an account with the applicant's e-mail exists
        AllocationExhausted: If no student ID could be allocated
        StudentIdConflict: If the student ID is already on another application
        TransientError: If the store is unavailable
    """
    secret = generate_temporary_secret()

    async with store.transaction():
        applicant = await _claim(
            store,
            applicant_id,
            AdmissionStatus.APPROVED,
            processed_at=datetime.now(UTC),
            processed_by=admin_id,
        )

        student_id = await allocator.allocate(IdentifierOwner.IDENTITY)

        if await store.get_identity_by_email(applicant.email) is not None:
            raise DuplicateEmail(applicant.email)
        try:
            identity = await store.create_identity(
                email=applicant.email,
                password_hash=hash_password(secret),
                role=UserRole.MEMBER,
                student_id=student_id,
                first_name=applicant.first_name,
                last_name=applicant.last_name,
                mobile=applicant.mobile,
                is_active=True,
                must_change_password=True,
            )
        except DuplicateRecord as e:
            raise DuplicateEmail(applicant.email) from e

        try:
            await store.update_applicant(applicant, student_id=student_id)
        except DuplicateRecord as e:
            raise StudentIdConflict(student_id) from e

    logger.info(
        f"Application {applicant_id} approved by {admin_id}: "
        f"student ID {student_id}, user {identity.id}"
    )

    failed = await run_side_effects(
        [
            SideEffect(
                "send_acceptance",
                lambda: notifier.send_acceptance(
                    email=applicant.email,
                    name=applicant.full_name,
                    student_id=student_id,
                    temporary_password=secret,
                ),
            ),
        ],
        context=f"application {applicant_id}",
    )

    return ApprovalResult(
        applicant_id=applicant.id,
        student_id=student_id,
        identity_id=identity.id,
        failed_effects=failed,
    )


async def reject_applicant(
    store: AdmissionStore,
    applicant_id: UUID,
    admin_id: UUID,
    reason: str,
    *,
    notifier: Notifier,
    documents: DocumentStore,
) -> RejectionResult:
    """
    Reject a pending application.

    Raises:
        InvalidRejectionReason: If the reason is empty
        ApplicantNotFound: If the application does not exist
        AlreadyProcessed: If it is no longer pending
        TransientError: If the store is unavailable
    """
    reason = (reason or "").strip()
    if not reason:
        raise InvalidRejectionReason()

    async with store.transaction():
        applicant = await _claim(
            store,
            applicant_id,
            AdmissionStatus.REJECTED,
            rejection_reason=reason,
            processed_at=datetime.now(UTC),
            processed_by=admin_id,
        )

    logger.info(f"Application {applicant_id} rejected by {admin_id}")

    effects = [
        SideEffect(
            "send_rejection",
            lambda: notifier.send_rejection(
                email=applicant.email,
                name=applicant.full_name,
                reason=reason,
            ),
        ),
    ]
    if applicant.photo_public_id:
        photo_reference = applicant.photo_public_id
        effects.append(SideEffect("delete_photo", lambda: documents.delete(photo_reference)))

    failed = await run_side_effects(effects, context=f"application {applicant_id}")
    return RejectionResult(applicant_id=applicant.id, failed_effects=failed)


__all__ = [
    "VALID_STATUS_TRANSITIONS",
    "AccountExists",
    "AlreadyProcessed",
    "ApplicantNotFound",
    "ApprovalResult",
    "DuplicateApplication",
    "InvalidRejectionReason",
    "RejectionResult",
    "SideEffect",
    "StudentIdConflict",
    "allocate_identifier",
    "approve_applicant",
    "reject_applicant",
    "run_side_effects",
    "submit_application",
]
