"""
Intake API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Storage backend (database or in-memory store)
- Redis connection (rate limiting)
- CORS middleware
- API routing
- Health check endpoints
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from intake.api import api_router
from intake.core.config import settings
from intake.core.database import close_db, init_db
from intake.core.documents import build_document_store
from intake.core.logging import configure_logging
from intake.core.rate_limit import connect_backend, disconnect_backend
from intake.modules.admissions.store import MemoryAdmissionStore


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events including:
    - Redis connection
    - Document store (Cloudinary when configured)
    - Database connection, or the in-memory store when configured
    """
    configure_logging(settings.log_level)

    # Startup
    print(f"Starting Intake API in {settings.python_env} mode...")

    # Initialize Redis
    try:
        await connect_backend(settings.redis_url)
        print("[OK] Redis connected")
    except Exception as e:
        print(f"[FAIL] Redis connection failed: {e}")
        if settings.is_production:
            raise

    app.state.document_store = build_document_store(settings)

    if settings.storage_backend == "memory":
        app.state.memory_store = MemoryAdmissionStore()
        print("[OK] Using in-memory store")
    else:
        try:
            await init_db()
            print("[OK] Database connected")
        except Exception as e:
            print(f"[FAIL] Database connection failed: {e}")
            if settings.is_production:
                raise

    yield  # Application runs here

    # Shutdown
    print("Shutting down Intake API...")

    await disconnect_backend()
    await close_db()
    print("[OK] Cleanup complete")


app = FastAPI(
    title="Intake API",
    description="Admissions, member credentials and password recovery",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to Intake API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint."""
    return {"status": "ready"}
