"""
Shared fixtures for Newsletter Wizard backend tests.

Defaults to a throw-away SQLite database (aiosqlite); set TEST_DATABASE_URL
to run against PostgreSQL + pgvector instead. Each test function gets its
own session. Tables are created before and dropped after every test so each
test starts with a clean slate.
"""
from __future__ import annotations

import os
import tempfile
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override settings *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB and no
# provider key from a local .env leaks into the tests.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./test_newsletter_wizard.db",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="nw-uploads-")
os.environ["INTERNAL_API_KEY"] = "test-internal-key"
for _key in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "SENDGRID_API_KEY", "RESEND_API_KEY"):
    os.environ[_key] = ""

from app.database import Base, get_db, get_session_factory  # noqa: E402
from app.main import app  # noqa: E402
from app.services import embedding  # noqa: E402


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a DB session for each test. After the test, all tables are dropped
    so each test starts with a clean slate.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB dependency
    overridden to use the per-test session. Background tasks share that
    session too.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    @asynccontextmanager
    async def _shared_session():
        yield db_session

    app.dependency_overrides[get_session_factory] = lambda: _shared_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _clear_embedding_cache():
    embedding._embedding_cache.clear()
    yield
    embedding._embedding_cache.clear()


@pytest.fixture(autouse=True)
def _isolated_upload_dir(tmp_path, monkeypatch):
    # Each test gets its own fresh database, so tenant ids restart at 1;
    # give each test its own upload directory as well.
    from app.config import settings

    monkeypatch.setattr(settings, "UPLOAD_DIR", str(tmp_path / "uploads"))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}

INTERNAL_HEADERS = {"Authorization": "Bearer test-internal-key"}


async def create_workspace(client: AsyncClient, headers: Dict[str, str] = AUTH_HEADERS) -> int:
    """Create the caller's workspace and return its tenant id."""
    resp = await client.post("/api/workspace", headers=headers)
    assert resp.status_code == 200
    return resp.json()["tenant_id"]


def unit_vector(index: int, dim: int = 1536) -> list:
    """A one-hot embedding with the configured dimension."""
    vec = [0.0] * dim
    vec[index] = 1.0
    return vec
