"""
NoteKeeper Backend — Test Configuration (conftest.py)
=======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets its own SQLite database (aiosqlite) and blob storage
       root under pytest's tmp_path, wired through the real ServiceContainer.

Fixture Hierarchy:
    test_settings ── container ──┬── note_id / make_note (committed notes)
                                 ├── put_object (attachments straight into the store)
                                 └── test_client (HTTPX AsyncClient over ASGITransport)

Sessions:
    The store adapters open their own connections. A test that writes through
    a request-style session must commit before calling a store adapter, or
    SQLite reports "database is locked". `db()` gives a committed unit of
    work per call.
"""

import os
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Override settings for testing BEFORE any notekeeper imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./notekeeper-test.db"
os.environ["LOG_LEVEL"] = "WARNING"

from notekeeper.config import Settings  # noqa: E402
from notekeeper.container import build_container  # noqa: E402
from notekeeper.database import Base, session_scope  # noqa: E402
from notekeeper.models.note import Note  # noqa: E402
from notekeeper.services.blob_store import PublicAccess  # noqa: E402

# Register every table on Base.metadata
import notekeeper.models.archive_job  # noqa: E402,F401
import notekeeper.models.queue_message  # noqa: E402,F401


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a per-test SQLite file and storage root."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'notekeeper.db'}",
        storage_root=str(tmp_path / "storage"),
        queue_poll_interval=0.05,
        retry_min_wait=0,
        retry_max_wait=1,
        archive_spool_max_bytes=1024,  # roll over to disk early
        log_level="WARNING",
    )


@pytest_asyncio.fixture
async def container(test_settings):
    """A fully wired ServiceContainer with all tables created."""
    c = build_container(test_settings)
    async with c.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield c
    await c.dispose()


@pytest.fixture
def db(container):
    """
    Factory for committed units of work.

    Usage:
        async with db() as session:
            await container.note_service.create_note(session, payload)
    """
    @asynccontextmanager
    async def _scope():
        async with session_scope(container.session_factory) as session:
            yield session
    return _scope


@pytest.fixture
def make_note(container):
    """Insert a note and return its id; pass `note_id` to choose the id."""
    async def _make(note_id=None, summary="Running grocery list", details="Milk Eggs Oranges"):
        async with session_scope(container.session_factory) as session:
            note = Note(summary=summary, details=details)
            if note_id is not None:
                note.id = note_id
            session.add(note)
        return note.id
    return _make


@pytest_asyncio.fixture
async def note_id(make_note):
    return await make_note()


@pytest.fixture
def put_object(container):
    """Store an attachment directly, creating the namespace if needed."""
    async def _put(namespace, key, content, content_type="image/png"):
        await container.object_store.create_namespace(namespace, public_access=PublicAccess.BLOB)
        return await container.object_store.upload(
            namespace, key, content, content_type=content_type,
            metadata={"NoteId": namespace},
        )
    return _put


@pytest_asyncio.fixture
async def test_client(container, test_settings):
    """
    HTTPX AsyncClient talking to the FastAPI app in-process.

    ASGITransport does not run the lifespan, so the container is attached
    to app.state directly.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
            assert response.status_code == 200
    """
    from notekeeper.main import create_app

    app = create_app(test_settings)
    app.state.container = container
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
