"""
Database Connection Management

One async SQLAlchemy 2.0 engine per storage tier. The hot endpoint holds
recent raw rows; the archive endpoint holds historical raw rows and the
rollup summaries. The two are independent connections and never share a
transaction.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.config import get_settings
from src.core.exceptions import TierConnectionError
from src.core.tiers import Tier
from src.database.models import ArchiveBase, HotBase, SummaryBase

logger = structlog.get_logger(__name__)

# Global engines and session factories, one per tier
_engines: Dict[Tier, AsyncEngine] = {}
_session_factories: Dict[Tier, async_sessionmaker[AsyncSession]] = {}

# Metadata created on each endpoint
_TIER_METADATA = {
    Tier.HOT: (HotBase.metadata,),
    Tier.ARCHIVE: (ArchiveBase.metadata, SummaryBase.metadata),
}


def _tier_url(tier: Tier) -> str:
    settings = get_settings()
    db = settings.hot_db if tier == Tier.HOT else settings.archive_db
    return db.async_url


def _tier_echo(tier: Tier) -> bool:
    settings = get_settings()
    db = settings.hot_db if tier == Tier.HOT else settings.archive_db
    return db.echo


async def init_databases(
    hot_url: Optional[str] = None,
    archive_url: Optional[str] = None,
) -> Dict[Tier, AsyncEngine]:
    """
    Initialize both tier engines.

    Explicit URLs override configuration (used by tests and the CLI).

    Returns:
        Mapping of tier to its engine

    Raises:
        TierConnectionError: If either endpoint cannot be reached
    """
    urls = {
        Tier.HOT: hot_url or _tier_url(Tier.HOT),
        Tier.ARCHIVE: archive_url or _tier_url(Tier.ARCHIVE),
    }

    for tier, url in urls.items():
        if tier in _engines:
            logger.warning("Database already initialized", tier=tier.value)
            continue

        # asyncpg pools connections itself; aiosqlite opens per use
        engine = create_async_engine(
            url,
            echo=_tier_echo(tier),
            future=True,
            pool_pre_ping=True,
            poolclass=NullPool,
        )

        try:
            async with engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
        except (OperationalError, InterfaceError, OSError) as e:
            # Any failure on the health-check query means the endpoint is unusable
            logger.error("Failed to connect to database", tier=tier.value, error=str(e))
            await engine.dispose()
            raise TierConnectionError(tier.value, str(e)) from e

        _engines[tier] = engine
        _session_factories[tier] = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info("Database connection established", tier=tier.value, dialect=engine.dialect.name)

    return dict(_engines)


async def close_databases() -> None:
    """Dispose both tier engines."""
    for tier, engine in list(_engines.items()):
        await engine.dispose()
        logger.info("Database connection pool closed", tier=tier.value)
    _engines.clear()
    _session_factories.clear()


def get_engine(tier: Tier) -> AsyncEngine:
    """
    Get the engine for a tier.

    Raises:
        RuntimeError: If databases are not initialized
    """
    if tier not in _engines:
        raise RuntimeError("Database not initialized. Call init_databases() first.")
    return _engines[tier]


async def create_schema() -> None:
    """Create every relation on its endpoint (idempotent)."""
    for tier, metadatas in _TIER_METADATA.items():
        engine = get_engine(tier)
        async with engine.begin() as conn:
            for metadata in metadatas:
                await conn.run_sync(metadata.create_all)
        logger.info("Schema ensured", tier=tier.value, tables=sum(len(m.tables) for m in metadatas))


@asynccontextmanager
async def get_session(tier: Tier) -> AsyncGenerator[AsyncSession, None]:
    """
    Get a session bound to one tier.

    Commits on success, rolls back on error, always closes. Driver
    connection failures surface as TierConnectionError.

    Example:
        async with get_session(Tier.HOT) as db:
            result = await db.execute(query)
    """
    if tier not in _session_factories:
        logger.error("Database not initialized when get_session() called", tier=tier.value)
        raise RuntimeError("Database not initialized. Call init_databases() first.")

    session = _session_factories[tier]()
    try:
        yield session
        await session.commit()
    except Exception as e:
        logger.error(
            "Database session error, rolling back",
            tier=tier.value,
            error=str(e),
            error_type=type(e).__name__,
        )
        await session.rollback()
        if _is_connection_failure(e):
            raise TierConnectionError(tier.value, str(e)) from e
        raise
    finally:
        await session.close()


def _is_connection_failure(exc: BaseException) -> bool:
    if isinstance(exc, (InterfaceError, OSError)):
        return True
    return isinstance(exc, OperationalError) and exc.connection_invalidated


async def check_database_health(tier: Tier) -> dict:
    """
    Check one tier's health status.

    Returns:
        dict: Health status with latency information
    """
    try:
        start = time.perf_counter()
        async with get_session(tier) as db:
            await db.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000

        return {
            "tier": tier.value,
            "status": "healthy",
            "latency_ms": round(latency_ms, 2),
        }
    except Exception as e:
        return {
            "tier": tier.value,
            "status": "unhealthy",
            "error": str(e),
        }
