"""
Admissions Admin Router

API endpoints for administrators to decide applications and manage member
credentials. All endpoints require a valid administrator token.

Endpoints:
- POST /admin/admissions/{id}/approve - Approve and create the member account
- POST /admin/admissions/{id}/reject - Reject with a reason
- POST /admin/identifiers - Allocate a student ID
- POST /admin/members - Create a member account directly
- POST /admin/members/{id}/send-credentials - Issue and send new credentials
- PATCH /admin/members/{id}/active - Enable or disable an account
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status

from intake.core.auth import AdminUser, get_current_admin_user
from intake.core.documents import DocumentStore
from intake.core.email import Notifier
from intake.core.exceptions import ServiceError
from intake.core.rate_limit import enforce_rate_limit
from intake.modules.admissions import credentials, service
from intake.modules.admissions.allocator import IdentifierAllocator
from intake.modules.admissions.dependencies import (
    get_allocator,
    get_document_store,
    get_notifier,
    get_store,
)
from intake.modules.admissions.schemas import (
    ApproveResponse,
    CredentialsResponse,
    IdentifierResponse,
    MemberCreate,
    MemberResponse,
    RejectRequest,
    RejectResponse,
    SetActiveRequest,
)
from intake.modules.admissions.store import AdmissionStore

logger = logging.getLogger(__name__)

router = APIRouter()
members_router = APIRouter()


# ============================================
# Rate Limiting Configuration
# ============================================

RATE_LIMIT_APPROVE = (10, 60)  # 10 approvals per minute
RATE_LIMIT_REJECT = (10, 60)  # 10 rejections per minute


async def _check_admin_rate_limit(admin: AdminUser, action: str, limit: int, window: int) -> None:
    await enforce_rate_limit(f"admin:{action}:{admin.id}", limit, window)


# ============================================
# Helper Functions
# ============================================


def _handle_service_error(e: ServiceError) -> None:
    """Convert service errors to HTTPExceptions."""
    raise HTTPException(
        status_code=e.status_code,
        detail={
            "error": e.error_code,
            "message": e.message,
        },
    )


# ============================================
# Admission decisions
# ============================================


@router.post(
    "/{applicant_id}/approve",
    response_model=ApproveResponse,
    summary="Approve an application",
)
async def approve_application(
    applicant_id: UUID,
    admin: AdminUser = Depends(get_current_admin_user),
    store: AdmissionStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    allocator: IdentifierAllocator = Depends(get_allocator),
) -> ApproveResponse:
    """
    Approve a pending application.

    Allocates a student ID, creates the member account with a temporary
    password and e-mails the credentials to the applicant. A failed e-mail
    does not undo the approval; the response reports it.
    """
    await _check_admin_rate_limit(admin, "approve", *RATE_LIMIT_APPROVE)
    logger.info(f"Admin {admin.id} approving application {applicant_id}")

    try:
        result = await service.approve_applicant(
            store, applicant_id, admin.id, notifier=notifier, allocator=allocator
        )
    except ServiceError as e:
        _handle_service_error(e)

    return ApproveResponse(
        applicant_id=result.applicant_id,
        student_id=result.student_id,
        identity_id=result.identity_id,
        notification_sent=not result.failed_effects,
    )


@router.post(
    "/{applicant_id}/reject",
    response_model=RejectResponse,
    summary="Reject an application",
)
async def reject_application(
    applicant_id: UUID,
    request: RejectRequest,
    admin: AdminUser = Depends(get_current_admin_user),
    store: AdmissionStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    documents: DocumentStore = Depends(get_document_store),
) -> RejectResponse:
    """Reject a pending application and clean up its uploaded photo."""
    await _check_admin_rate_limit(admin, "reject", *RATE_LIMIT_REJECT)
    logger.info(f"Admin {admin.id} rejecting application {applicant_id}")

    try:
        result = await service.reject_applicant(
            store,
            applicant_id,
            admin.id,
            request.reason,
            notifier=notifier,
            documents=documents,
        )
    except ServiceError as e:
        _handle_service_error(e)

    return RejectResponse(
        applicant_id=result.applicant_id,
        status=result.status,
        failed_effects=result.failed_effects,
    )


# ============================================
# Identifiers and members
# ============================================


@members_router.post(
    "/identifiers",
    response_model=IdentifierResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Allocate a student ID",
)
async def allocate_identifier(
    admin: AdminUser = Depends(get_current_admin_user),
    allocator: IdentifierAllocator = Depends(get_allocator),
) -> IdentifierResponse:
    try:
        student_id = await service.allocate_identifier(allocator)
    except ServiceError as e:
        _handle_service_error(e)

    logger.info(f"Admin {admin.id} allocated student ID {student_id}")
    return IdentifierResponse(student_id=student_id)


@members_router.post(
    "/members",
    response_model=CredentialsResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a member account",
)
async def create_member(
    request: MemberCreate,
    admin: AdminUser = Depends(get_current_admin_user),
    store: AdmissionStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    allocator: IdentifierAllocator = Depends(get_allocator),
) -> CredentialsResponse:
    logger.info(f"Admin {admin.id} creating member account")
    try:
        result = await credentials.provision_member(
            store,
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            mobile=request.mobile,
            notifier=notifier,
            allocator=allocator,
        )
    except ServiceError as e:
        _handle_service_error(e)

    return CredentialsResponse(
        identity_id=result.identity_id,
        student_id=result.student_id,
        notification_sent=result.notified,
    )


@members_router.post(
    "/members/{identity_id}/send-credentials",
    response_model=CredentialsResponse,
    summary="Issue and send new credentials",
)
async def send_credentials(
    identity_id: UUID,
    admin: AdminUser = Depends(get_current_admin_user),
    store: AdmissionStore = Depends(get_store),
    notifier: Notifier = Depends(get_notifier),
    allocator: IdentifierAllocator = Depends(get_allocator),
) -> CredentialsResponse:
    logger.info(f"Admin {admin.id} issuing credentials for user {identity_id}")
    try:
        result = await credentials.issue_credentials(
            store, identity_id, notifier=notifier, allocator=allocator
        )
    except ServiceError as e:
        _handle_service_error(e)

    return CredentialsResponse(
        identity_id=result.identity_id,
        student_id=result.student_id,
        notification_sent=result.notified,
    )


@members_router.patch(
    "/members/{identity_id}/active",
    response_model=MemberResponse,
    summary="Enable or disable an account",
)
async def set_member_active(
    identity_id: UUID,
    request: SetActiveRequest,
    admin: AdminUser = Depends(get_current_admin_user),
    store: AdmissionStore = Depends(get_store),
) -> MemberResponse:
    logger.info(f"Admin {admin.id} setting user {identity_id} active={request.is_active}")
    try:
        identity = await credentials.set_identity_active(store, identity_id, request.is_active)
    except ServiceError as e:
        _handle_service_error(e)

    return MemberResponse.model_validate(identity)
