# ean_intake/database.py
"""
Async engine and session lifecycle for EAN Intake.

Uses SQLAlchemy 2.0 async; asyncpg in production, any async URL via DB_URL.
"""
from __future__ import annotations
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool
from sqlalchemy import text

from ean_intake.settings import settings

# ============================================================================
# Base class for all ORM models
# ============================================================================

class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


# ============================================================================
# Engine and Session Factory
# ============================================================================

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_database_url() -> str:
    """DB_URL wins; otherwise postgresql+asyncpg from the DB_* parts."""
    if settings.DB_URL:
        return settings.DB_URL
    return (
        f"postgresql+asyncpg://"
        f"{settings.DB_USER}:{settings.DB_PASSWORD}@"
        f"{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


async def init_db() -> None:
    """Create the engine and session factory once; optionally the schema."""
    global _engine, _async_session_factory

    if _engine is not None:
        return

    url = get_database_url()
    if url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        _engine = create_async_engine(url, echo=settings.DB_ECHO, poolclass=NullPool)
    else:
        _engine = create_async_engine(
            url,
            echo=settings.DB_ECHO,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
        )

    _async_session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    if settings.DB_CREATE_SCHEMA:
        await create_schema()


async def create_schema() -> None:
    """Create all tables that do not exist yet."""
    # Register models on Base.metadata
    from ean_intake import db_models  # noqa: F401

    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections."""
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """Session that commits on clean exit and rolls back on error; lazily inits the engine."""
    if _async_session_factory is None:
        await init_db()

    async with _async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency."""
    async with get_session_context() as session:
        yield session


# ============================================================================
# Health Check
# ============================================================================

async def check_db_health() -> dict:
    """Check database connectivity and return status."""
    try:
        async with get_session_context() as db:
            result = await db.execute(text("SELECT 1"))
            result.scalar()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
