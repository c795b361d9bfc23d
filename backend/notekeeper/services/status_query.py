"""
NoteKeeper Backend — Archive Job Status Queries
=================================================

What:  Read-only views of archive job status records for one note.
How:   Owner check against the note store, then a point read or a partition
       query on the status store. Never writes.
Who:   Called by GET /api/notes/{id}/archives/jobs and .../{job_id}/status.

A poll is a snapshot: a worker may advance the record right after it is read.
"""

import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.exceptions import NotFoundError
from notekeeper.models.archive_job import JobStatusRecord
from notekeeper.services.note_service import get_note_or_404
from notekeeper.services.status_store import StatusStore

logger = logging.getLogger(__name__)


class StatusQueryService:

    def __init__(self, status_store: StatusStore):
        self.status_store = status_store

    async def get_one(self, db: AsyncSession, owner_id: str, job_id: str) -> JobStatusRecord:
        """The status of one job. NotFoundError if the note or the record is missing."""
        await get_note_or_404(db, owner_id)
        record = await self.status_store.get(owner_id, job_id)
        if record is None:
            raise NotFoundError(resource="archive job", resource_id=job_id,
                                context={"note_id": owner_id})
        return record

    async def get_all(self, db: AsyncSession, owner_id: str) -> List[JobStatusRecord]:
        """
        Every job of a note, oldest update first.

        An owner with no jobs is reported as NotFoundError rather than an
        empty list.
        """
        await get_note_or_404(db, owner_id)
        records = await self.status_store.query_partition(owner_id)
        if not records:
            raise NotFoundError(
                resource="archive jobs for note",
                resource_id=owner_id,
            )
        logger.debug("Note %s has %d archive job(s)", owner_id, len(records))
        return records
