"""
Catalog Backend — Test Configuration (conftest.py)
==================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Every layer is tested against a real (in-memory) database and a
       controllable upstream, without network access or a PostgreSQL server.

Fixture Hierarchy (all function-scoped):
    db_engine             in-memory sqlite+aiosqlite, schema created per test
    └── session_factory   async_sessionmaker bound to that engine
        └── store         RegionalStore over the test database
            ├── seed          await seed((1, "Sul"), (2, "Norte")) inserts active rows
            └── table_state   await table_state() → every row as a tuple
    snapshot              snapshot((1, "Sul")) → FetchOk
    fetcher               AsyncMock(spec=RegionalFetcher), set .fetch per test
    make_sync_service     builds RegionalSyncService(store, fetcher) with test timings
    test_client           httpx AsyncClient over ASGITransport, dependencies overridden
"""

import os

# Override settings for testing BEFORE any catalog_api import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["UPSTREAM_URL"] = "http://upstream.test/v1/regionais"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["SYNC_ENABLED"] = "false"

from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from catalog_api.database import Base
from catalog_api.services.regional_store import RegionalStore
from catalog_api.services.regional_sync import RegionalReconciler, RegionalSyncService
from catalog_api.services.sync_applier import SyncApplier
from catalog_api.services.sync_planner import ExternalRegional
from catalog_api.services.upstream_client import FetchEmpty, FetchOk, RegionalFetcher


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def db_engine():
    """
    Fresh in-memory database per test.

    StaticPool keeps a single connection, so every session of the test sees
    the same database (each new connection to :memory: would be empty).
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def store(session_factory):
    return RegionalStore(session_factory)


@pytest.fixture
def seed(store):
    """Insert active rows directly, bypassing the reconciler."""

    async def _seed(*pairs):
        async def work(tx):
            for external_id, name in pairs:
                await tx.insert_active(external_id, name)

        await store.run_in_transaction(work)

    return _seed


@pytest.fixture
def table_state(store):
    """Every row as a comparable tuple, in (external_id, id) order."""

    async def _state():
        return [
            (r.id, r.external_id, r.name, r.active, r.created_at, r.updated_at)
            for r in await store.list_all()
        ]

    return _state


# ══════════════════════════════════════════════════════════════════════════
# Sync Fixtures
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def snapshot():
    """FetchOk from (external_id, name) pairs: snapshot((1, "Sul"), (2, "Norte"))."""

    def _snapshot(*pairs):
        return FetchOk(records=tuple(ExternalRegional(external_id=k, name=n) for k, n in pairs))

    return _snapshot


@pytest.fixture
def fetcher():
    """
    Canned upstream. Tests set the outcome with:
        fetcher.fetch.return_value = snapshot((1, "Sul"))
    or a coroutine side_effect to control timing.
    """
    mock = AsyncMock(spec=RegionalFetcher)
    mock.fetch.return_value = FetchEmpty()
    return mock


@pytest.fixture
def make_sync_service(store, fetcher):
    """Factory so each test can pick its own interval / lock wait."""

    def _make(interval: float = 3600.0, lock_wait_timeout: float = 1.0, enabled: bool = True):
        reconciler = RegionalReconciler(fetcher=fetcher, store=store, applier=SyncApplier(store))
        return RegionalSyncService(
            reconciler,
            interval=interval,
            lock_wait_timeout=lock_wait_timeout,
            enabled=enabled,
        )

    return _make


@pytest.fixture
def sync_service(make_sync_service):
    return make_sync_service()


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def test_client(store, sync_service, session_factory):
    """
    HTTPX AsyncClient talking to the FastAPI app through ASGITransport.

    The lifespan does not run, so no background loop is started; the routes
    get the test store, sync service and database via dependency overrides.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from catalog_api.database import get_db_session
    from catalog_api.main import app
    from catalog_api.routes.regionais import get_regional_store, get_sync_service

    async def override_db_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_regional_store] = lambda: store
    app.dependency_overrides[get_sync_service] = lambda: sync_service
    app.dependency_overrides[get_db_session] = override_db_session

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
