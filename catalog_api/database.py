"""
Catalog Backend — Database Session Management
=============================================

What:  Async SQLAlchemy engine, session factory, and declarative base.
Why:   Centralizes all database connection logic in one place.
How:   Creates an async engine with connection pooling and a session factory
       that the regional store opens one session per transaction from.
Who:   Used by the regional store (reconciler + read APIs) and the health probes.
When:  Engine is created at module import; sessions are created per operation.

Connection Pooling Strategy:
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes
    pool_pre_ping:     Validates connections before use
    pool_recycle=3600: Recycles connections every hour

    SQLite URLs (local runs and tests) skip the pool sizing options, since
    SQLAlchemy picks a pool class for SQLite that does not accept them.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from catalog_api.config import settings


def _engine_options(database_url: str) -> Dict[str, Any]:
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if database_url.startswith("sqlite"):
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=3600,
    )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: records returned by the store stay readable after
# the transaction that loaded them has committed and the session has closed.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares a single metadata object, which Alembic reads for migrations and
    the test suite uses to create the schema in an in-memory database.
    """
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """Gracefully closes all connections in the pool during shutdown."""
    await engine.dispose()


# ── FastAPI Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Read-only: nothing is committed. Only the health probes use it; the
    regional read and write paths go through RegionalStore, which opens its
    own sessions and transactions.

    Example usage in a route:
        @router.get("/health/readiness")
        async def readiness(db: AsyncSession = Depends(get_db_session)):
            await db.execute(text("SELECT 1"))
    """
    async with async_session_factory() as session:
        yield session
