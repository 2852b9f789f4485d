"""
Admissions Public Router

Endpoints:
- POST /admissions - Submit an admission application
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from intake.core.exceptions import ServiceError
from intake.modules.admissions import service
from intake.modules.admissions.dependencies import get_store
from intake.modules.admissions.schemas import AdmissionCreate, AdmissionResponse
from intake.modules.admissions.store import AdmissionStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=AdmissionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an admission application",
)
async def submit_application(
    application: AdmissionCreate,
    store: AdmissionStore = Depends(get_store),
) -> AdmissionResponse:
    try:
        applicant = await service.submit_application(store, **application.model_dump())
    except ServiceError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail={"error": e.error_code, "message": e.message},
        ) from e

    return AdmissionResponse.model_validate(applicant)
