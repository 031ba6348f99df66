# leadrelay/db/session.py
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from leadrelay.core.config import settings
from leadrelay.core.exceptions import DatabaseError
from leadrelay.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

# Global engine instance
engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker[AsyncSession]] = None


def create_database_engine() -> AsyncEngine:
    """Create and configure the async database engine."""
    global engine, AsyncSessionLocal

    if engine is not None:
        return engine

    if settings.is_testing:
        engine = create_async_engine(
            settings.database_url,
            poolclass=NullPool,
            echo=settings.debug,
        )
    else:
        engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
            echo=settings.debug,
            connect_args={
                "command_timeout": 60,
                "server_settings": {"application_name": "leadrelay"},
            },
        )

    AsyncSessionLocal = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info(
        "database.engine.created",
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        testing=settings.is_testing,
    )

    return engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    if AsyncSessionLocal is None:
        create_database_engine()
    return AsyncSessionLocal


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit on success, rollback and wrap SQLAlchemy errors."""
    session = get_sessionmaker()()

    try:
        yield session
        await session.commit()

    except SQLAlchemyError as e:
        await session.rollback()
        logger.error("database.session_error", error=str(e))
        raise DatabaseError(
            message="Database session error",
            details={"error": str(e)},
        ) from e

    finally:
        await session.close()


async def health_check() -> dict:
    started = time.perf_counter()
    checked_at = datetime.now(timezone.utc).isoformat()
    try:
        async with session_scope() as session:
            await session.execute(text("SELECT 1"))
    except DatabaseError as e:
        logger.error("database.health_check_failed", error=e.details.get("error", e.message))
        return {"status": "unhealthy", "error": e.message, "timestamp": checked_at}
    except (OSError, asyncio.TimeoutError) as e:
        logger.error("database.health_check_failed", error=str(e))
        return {"status": "unhealthy", "error": str(e), "timestamp": checked_at}

    return {
        "status": "healthy",
        "response_time_ms": round((time.perf_counter() - started) * 1000, 2),
        "timestamp": checked_at,
    }


async def dispose_engine() -> None:
    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None
