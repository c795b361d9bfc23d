"""
NoteKeeper Backend — Archive Job Dispatcher
=============================================

What:  Accepts a "zip my attachments" request for a note: mints the job id,
       records the job as Queued and publishes the work request.
How:   Sequential calls, no transaction across stores:

           note exists? ──▶ ensure queue ──▶ ensure status table
                                                   │
           ArchiveTicket ◀── publish request ◀── create Queued record

       The Queued record is written before the message is published, so the
       worker never sees a job the status store does not know. If publishing
       fails the Queued record stays behind with no worker to advance it;
       the failure is logged and surfaces as a 500.
Who:   Called by POST /api/notes/{note_id}/archives.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.exceptions import QueueError
from notekeeper.models.archive_job import JobState, JobStatusRecord
from notekeeper.schemas.archive import ArchiveRequest
from notekeeper.services.message_queue import MessageQueue
from notekeeper.services.note_service import get_note_or_404
from notekeeper.services.status_store import StatusStore

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".zip"


def new_job_id() -> str:
    """A fresh job id; doubles as the archive's object name."""
    return f"{uuid.uuid4()}{ARCHIVE_EXTENSION}"


def archive_path(owner_id: str, job_id: str) -> str:
    return f"/api/notes/{owner_id}/archives/{job_id}"


def status_path(owner_id: str, job_id: str) -> str:
    return f"{archive_path(owner_id, job_id)}/status"


@dataclass(frozen=True)
class ArchiveTicket:
    """What the caller gets back: where to poll and where the archive will appear."""

    owner_id: str
    job_id: str
    archive_url: str
    status_url: str
    record: JobStatusRecord


class ArchiveDispatcher:

    def __init__(self, queue: MessageQueue, status_store: StatusStore):
        self.queue = queue
        self.status_store = status_store

    async def request_archive(self, db: AsyncSession, owner_id: str) -> ArchiveTicket:
        """
        Queue an archive job for `owner_id`.

        Raises:
            NotFoundError: the note does not exist; nothing is recorded or sent
            StatusStoreError / QueueError: a store call failed
        """
        await get_note_or_404(db, owner_id)
        job_id = new_job_id()

        await self.queue.create_if_not_exists()
        await self.status_store.create_if_not_exists()

        record = await self.status_store.create(
            owner_id,
            job_id,
            JobState.QUEUED,
            f"{JobState.QUEUED.value}: Zip File Id: {job_id} NoteId: {owner_id}",
        )

        request = ArchiveRequest(owner_id=owner_id, job_id=job_id)
        try:
            await self.queue.send(request.encode())
        except QueueError:
            logger.error(
                "Archive job %s for note %s recorded as Queued but not published",
                job_id, owner_id,
            )
            raise

        logger.info("Archive job %s queued for note %s", job_id, owner_id)
        return ArchiveTicket(
            owner_id=owner_id,
            job_id=job_id,
            archive_url=archive_path(owner_id, job_id),
            status_url=status_path(owner_id, job_id),
            record=record,
        )
