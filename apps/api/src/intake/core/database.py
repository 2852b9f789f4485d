"""
Database Configuration

Async SQLAlchemy engine, session factory and declarative base.
"""

import enum
import logging
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from intake.core.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


def enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum members by value (the lowercase labels the migrations create)."""
    return [member.value for member in enum_cls]


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields a database session.

    The session is closed when the request finishes. Services decide when to
    commit; anything left uncommitted is rolled back on close.
    """
    async with async_session_maker() as session:
        yield session


async def init_db() -> None:
    """
    Verify database connectivity on startup.

    In development the tables are created directly from the models so the API
    can run without applying migrations first.
    """
    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
        if settings.is_development:
            # Import models so they are registered on Base.metadata
            from intake.modules.admissions import models as _admission_models  # noqa: F401
            from intake.modules.users import models as _user_models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
            logger.info("Development schema ensured")


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()
