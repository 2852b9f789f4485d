from fastapi import APIRouter

from intake.modules.admissions import router as admissions_router
from intake.modules.admissions.admin_router import members_router as admin_members_router
from intake.modules.admissions.admin_router import router as admin_admissions_router
from intake.modules.recovery import router as recovery_router

api_router = APIRouter()

api_router.include_router(recovery_router, prefix="/auth", tags=["Password Recovery"])

api_router.include_router(admissions_router, prefix="/admissions", tags=["Admissions"])

api_router.include_router(
    admin_admissions_router,
    prefix="/admin/admissions",
    tags=["Admin - Admissions"],
)

api_router.include_router(
    admin_members_router,
    prefix="/admin",
    tags=["Admin - Members"],
)
