"""
NoteKeeper Backend — Note Service (Business Logic Orchestrator)
=================================================================

What:  Note CRUD plus owner deletion, which cascades to the note's
       attachments, archives and archive job status records.
How:   Notes live in the relational store (request-scoped session passed in);
       cascaded resources live in the object store and status store handed
       over by the service container.
Who:   Called by the notes routes. `get_note_or_404` is also the owner
       existence check used by the archive and attachment services.

Deletion Flow (DELETE /api/notes/{id}):
    ┌──────────┐   ┌──────────────────────┐   ┌──────────────┐   ┌──────────┐
    │ note     │──▶│ status partition:    │──▶│ delete note  │──▶│ delete   │
    │ exists?  │   │ any InProgress → 409 │   │ ns + archive │   │ note row │
    └──────────┘   │ else delete records  │   │ ns           │   └──────────┘
         │         │ (one transaction)    │   └──────────────┘
         ▼         └──────────────────────┘
        404

    The note row goes last: while it exists the note can still be found and
    the deletion retried if a later step fails.
"""

import logging
from datetime import datetime, timezone
from typing import List

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.config import Settings
from notekeeper.exceptions import (
    ConflictError,
    DatabaseError,
    LimitExceededError,
    NotFoundError,
)
from notekeeper.models.note import Note
from notekeeper.schemas.note import NoteCreatePayload, NoteUpdatePayload
from notekeeper.services.blob_store import ObjectStore
from notekeeper.services.status_store import StatusStore

logger = logging.getLogger(__name__)


async def get_note_or_404(db: AsyncSession, note_id: str) -> Note:
    """
    Fetch a note by id.

    Raises:
        NotFoundError: no note has this id (→ 404)
        DatabaseError: the query failed (→ 500)
    """
    try:
        note = await db.get(Note, note_id)
    except SQLAlchemyError as e:
        logger.error("Database error fetching note %s: %s", note_id, e)
        raise DatabaseError(
            message="Could not retrieve the note.",
            context={"note_id": note_id, "error_type": type(e).__name__},
        )
    if note is None:
        raise NotFoundError(resource="note", resource_id=note_id)
    return note


class NoteService:
    """
    Business logic layer for note operations.

    Responsibilities:
        - create_note(): insert, bounded by settings.max_notes
        - get_note() / list_notes(): reads
        - update_note(): partial update, blank fields ignored
        - delete_note(): cascade delete guarded by in-progress archive jobs
    """

    def __init__(self, settings: Settings, store: ObjectStore, status_store: StatusStore):
        self.settings = settings
        self.store = store
        self.status_store = status_store

    async def create_note(self, db: AsyncSession, payload: NoteCreatePayload) -> Note:
        """
        Create a note.

        Raises:
            LimitExceededError: max_notes notes already exist (→ 403)
            DatabaseError: query or insert failed (→ 500)
        """
        try:
            total = (await db.execute(select(func.count(Note.id)))).scalar() or 0
            if total >= self.settings.max_notes:
                raise LimitExceededError(
                    title="Note limit reached",
                    limit_name="MaxNotes",
                    limit=self.settings.max_notes,
                )

            note = Note(
                summary=payload.summary,
                details=payload.details,
                created_date_utc=datetime.now(timezone.utc),
                modified_date_utc=None,
            )
            db.add(note)
            await db.flush()  # Assigns the id without committing
        except SQLAlchemyError as e:
            logger.error("Database error creating note: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not create the note.",
                context={"error_type": type(e).__name__},
            )

        logger.info("Note created: %s", note.id)
        return note

    async def get_note(self, db: AsyncSession, note_id: str) -> Note:
        return await get_note_or_404(db, note_id)

    async def list_notes(self, db: AsyncSession) -> List[Note]:
        """All notes, oldest first."""
        try:
            result = await db.execute(
                select(Note).order_by(Note.created_date_utc, Note.id)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error listing notes: %s", e, exc_info=True)
            raise DatabaseError(
                message="Could not retrieve notes.",
                context={"error_type": type(e).__name__},
            )

    async def update_note(
        self,
        db: AsyncSession,
        note_id: str,
        payload: NoteUpdatePayload,
    ) -> bool:
        """
        Apply the non-blank fields of `payload`.

        Returns True if anything changed; modified_date_utc is only touched then.
        """
        note = await get_note_or_404(db, note_id)

        changed = False
        if payload.summary is not None and payload.summary.strip():
            note.summary = payload.summary
            changed = True
        if payload.details is not None and payload.details.strip():
            note.details = payload.details
            changed = True

        if not changed:
            return False

        note.modified_date_utc = datetime.now(timezone.utc)
        try:
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error updating note %s: %s", note_id, e)
            raise DatabaseError(
                message="Could not update the note.",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )
        logger.info("Note updated: %s", note_id)
        return True

    async def delete_note(self, db: AsyncSession, note_id: str) -> None:
        """
        Delete a note with its attachments, archives and archive job records.

        Raises:
            NotFoundError: note does not exist (→ 404)
            ConflictError: an archive job of this note is InProgress (→ 409);
                nothing has been deleted
        """
        note = await get_note_or_404(db, note_id)

        # ── Step 1: Status records ────────────────────────────────────────
        # Check and delete run in one transaction: a worker that claims a job
        # before it commits makes this raise, with nothing deleted yet.
        try:
            await self.status_store.delete_partition(note_id)
        except ConflictError as e:
            logger.warning("Delete of note %s refused: %s", note_id, e.message)
            raise

        # ── Step 2: Blob namespaces ───────────────────────────────────────
        await self.store.delete_namespace(note_id)
        await self.store.delete_namespace(self.settings.archive_namespace(note_id))

        # ── Step 3: The note itself ───────────────────────────────────────
        try:
            await db.delete(note)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Database error deleting note %s: %s", note_id, e)
            raise DatabaseError(
                message="Could not delete the note.",
                context={"note_id": note_id, "error_type": type(e).__name__},
            )
        logger.info("Note deleted: %s", note_id)
