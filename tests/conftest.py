"""Pytest configuration and fixtures."""
import os

# Settings are read once at import time; tokens need a signing secret.
os.environ.setdefault("SCOREBOOK_ACCESS_TOKEN_SECRET", "test-secret-" + "0" * 52)

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from scorebook.main import app
from scorebook.api.routes import sync as sync_routes
from scorebook.db.database import Base, get_db
from scorebook.storage.blob_store import LocalBlobStore, get_blob_store

from factories import TEST_USER_ID


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Clear slowapi's in-memory counters so sync-heavy tests never hit 429."""
    sync_routes.limiter.reset()
    yield


@pytest_asyncio.fixture
async def db_session():
    """Create an in-memory test database session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_factory() as session:
        async def override_get_db():
            yield session
        app.dependency_overrides[get_db] = override_get_db
        try:
            yield session
        finally:
            app.dependency_overrides.pop(get_db, None)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def blob_store(tmp_path):
    """Blob store rooted in a per-test temp dir, also injected into the app."""
    store = LocalBlobStore(tmp_path / "scores")
    store.ensure_root()
    app.dependency_overrides[get_blob_store] = lambda: store
    yield store
    app.dependency_overrides.pop(get_blob_store, None)


@pytest_asyncio.fixture
async def client(db_session, blob_store):
    """Create an async test client bound to the test database and blob store."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# -----------------------------------------------------------------------------
# Auth fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def auth_token():
    """JWT for the test user (1 hour)."""
    from scorebook.auth.tokens import create_access_token
    return create_access_token(user_id=TEST_USER_ID, expires_hours=1)


@pytest.fixture
def auth_headers(auth_token):
    """Headers with Bearer token."""
    return {"Authorization": f"Bearer {auth_token}"}
