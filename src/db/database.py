from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from config import get_settings
from src.db.models.base import Base

settings = get_settings()

_engine: Engine | None = None


def get_engine() -> Engine:
    """Get the sync database engine (lazy initialization)."""
    global _engine
    if _engine is None:
        _engine = create_engine(
            _get_sync_url(settings.database_url),
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def _get_sync_url(url: str) -> str:
    """Strip an async driver so schema creation can use the sync engine."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql://", 1)
    return url


def _get_async_url(url: str) -> str:
    """Convert sync postgres URL to asyncpg URL when needed."""
    if url.startswith("postgresql+asyncpg://"):
        return url
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def init_db() -> None:
    """Initialize database tables."""
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables initialized")


def check_database() -> tuple[str, str | None]:
    """
    Check database connectivity.

    Returns:
        Tuple of (status, error_message). Status is "ok" or "error".
    """
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok", None
    except Exception as e:  # Intentionally broad - any driver/connect failure means unhealthy
        return "error", str(e)


# ========================================
# Async Support
# ========================================

_async_engine: AsyncEngine | None = None
_AsyncSessionLocal: async_sessionmaker[AsyncSession] | None = None


def _get_async_engine() -> AsyncEngine:
    """Get or create async engine (lazy initialization)."""
    global _async_engine
    if _async_engine is None:
        async_url = _get_async_url(settings.database_url)
        _async_engine = create_async_engine(
            async_url,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _async_engine


def _get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create async session factory."""
    global _AsyncSessionLocal
    if _AsyncSessionLocal is None:
        _AsyncSessionLocal = async_sessionmaker(
            bind=_get_async_engine(),
            class_=AsyncSession,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )
    return _AsyncSessionLocal


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for async database sessions."""
    factory = _get_async_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            await session.rollback()
            raise


@asynccontextmanager
async def async_session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async transactional scope around a series of operations."""
    factory = _get_async_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            await session.rollback()
            raise
