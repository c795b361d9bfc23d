"""
NoteKeeper Backend — Service Container
========================================

What:  Builds every store client and service once per process and hands them
       out explicitly.
How:   `build_container(settings)` wires engine → session factory → store
       adapters → services. The API keeps the container on `app.state` and
       route dependencies read it from the request; the queue worker holds it
       in its main coroutine. `dispose()` closes the database pool.
Who:   main.py lifespan, notekeeper.worker, and the test fixtures (which build
       one against SQLite and a temporary storage root).

Wiring:
    Settings
      ├── AsyncEngine ── session_factory
      │       ├── MessageQueue (archive queue)
      │       └── StatusStore
      └── ObjectStore (storage_root)
              ├── ArchiveBuilder
              ├── ArchiveWorker     (ObjectStore, StatusStore, ArchiveBuilder, sessions)
              ├── ArchiveDispatcher (MessageQueue, StatusStore)
              ├── StatusQueryService(StatusStore)
              ├── ArchiveService    (ObjectStore)
              ├── NoteService       (ObjectStore, StatusStore)
              └── AttachmentService (ObjectStore)
"""

import logging
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from notekeeper.config import Settings
from notekeeper.database import create_engine, create_session_factory
from notekeeper.services.archive_builder import ArchiveBuilder
from notekeeper.services.archive_dispatcher import ArchiveDispatcher
from notekeeper.services.archive_service import ArchiveService
from notekeeper.services.archive_worker import ArchiveWorker
from notekeeper.services.attachment_service import AttachmentService
from notekeeper.services.blob_store import ObjectStore
from notekeeper.services.message_queue import MessageQueue
from notekeeper.services.note_service import NoteService
from notekeeper.services.status_query import StatusQueryService
from notekeeper.services.status_store import StatusStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    object_store: ObjectStore
    archive_queue: MessageQueue
    status_store: StatusStore
    archive_builder: ArchiveBuilder
    archive_worker: ArchiveWorker
    archive_dispatcher: ArchiveDispatcher
    status_query: StatusQueryService
    archive_service: ArchiveService
    note_service: NoteService
    attachment_service: AttachmentService

    async def ensure_stores(self) -> None:
        """Create the queue and status tables if a migration has not."""
        await self.archive_queue.create_if_not_exists()
        await self.status_store.create_if_not_exists()

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine disposed")


def build_container(settings: Settings) -> ServiceContainer:
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    object_store = ObjectStore(settings.storage_root)
    archive_queue = MessageQueue(
        engine,
        session_factory,
        settings.archive_queue_name,
        visibility_timeout=settings.queue_visibility_timeout,
    )
    status_store = StatusStore(engine, session_factory)
    archive_builder = ArchiveBuilder(object_store, spool_max_bytes=settings.archive_spool_max_bytes)

    return ServiceContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        object_store=object_store,
        archive_queue=archive_queue,
        status_store=status_store,
        archive_builder=archive_builder,
        archive_worker=ArchiveWorker(
            settings, object_store, status_store, archive_builder, session_factory,
        ),
        archive_dispatcher=ArchiveDispatcher(archive_queue, status_store),
        status_query=StatusQueryService(status_store),
        archive_service=ArchiveService(settings, object_store),
        note_service=NoteService(settings, object_store, status_store),
        attachment_service=AttachmentService(settings, object_store),
    )


# ── Route Dependency ──────────────────────────────────────────────────────
def get_container(request: Request) -> ServiceContainer:
    """
    FastAPI dependency returning the container attached at startup.

    Example usage in a route:
        @router.get("/notes")
        async def list_notes(container: ServiceContainer = Depends(get_container)):
            ...
    """
    return request.app.state.container
