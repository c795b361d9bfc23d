"""
NoteKeeper Backend — Archive Worker
=====================================

What:  Runs one archive job from a delivered ArchiveRequest and drives its
       status record to a terminal state.
How:
    1. Status → InProgress. A record that is already Completed or Failed
       means this is a redelivery of a finished job: log and stop, leaving
       record and archive untouched.
    2. Source namespace (the note's attachments) missing → Failed, or, when
       the note itself has been deleted meanwhile, the record is removed.
    3. Ensure the archive namespace exists, objects publicly readable.
    4. Build the archive, bounded by settings.archive_build_timeout_seconds.
    5. Completed on success; Failed on any exception from steps 2-4.

    `process_one` never raises (apart from cancellation of the worker
    itself). Delivery is at-least-once, so the same request may be processed
    more than once and concurrently; the forward-only status store decides
    which write wins.
Who:   Called by the queue consumer (`notekeeper.worker`) once per message.
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notekeeper.config import Settings
from notekeeper.exceptions import StatusTransitionError
from notekeeper.models.archive_job import JobState, JobStatusRecord
from notekeeper.models.note import Note
from notekeeper.schemas.archive import ArchiveRequest
from notekeeper.services.archive_builder import ArchiveBuilder
from notekeeper.services.blob_store import ObjectStore, PublicAccess
from notekeeper.services.status_store import StatusStore

logger = logging.getLogger(__name__)


class ArchiveWorker:
    """
    Per-process worker; holds no per-job state, so one instance serves any
    number of concurrent `process_one` calls.
    """

    def __init__(
        self,
        settings: Settings,
        store: ObjectStore,
        status_store: StatusStore,
        builder: ArchiveBuilder,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.store = store
        self.status_store = status_store
        self.builder = builder

    async def process_one(self, request: ArchiveRequest) -> Optional[JobStatusRecord]:
        """
        Process one archive request.

        Returns the terminal record this call wrote, or None when it wrote
        none (job already finished by another delivery, note deleted since
        the job was queued, or the status store was unreachable).
        """
        owner_id, job_id = request.owner_id, request.job_id
        source_ns = owner_id
        dest_ns = self.settings.archive_namespace(owner_id)

        # ── Step 1: Claim the job ─────────────────────────────────────────
        try:
            await self.status_store.transition(
                owner_id,
                job_id,
                JobState.IN_PROGRESS,
                f"{JobState.IN_PROGRESS.value}: Zip File Id: {job_id} NoteId: {owner_id}",
            )
        except StatusTransitionError as e:
            logger.info(
                "Archive job %s for note %s already %s; skipping redelivery",
                job_id, owner_id, e.current,
            )
            return None
        except Exception as e:
            logger.error(
                "Could not mark archive job %s for note %s in progress: %s",
                job_id, owner_id, e, exc_info=True,
            )
            return await self.mark_failed(request)

        # ── Steps 2-4: Build ──────────────────────────────────────────────
        try:
            if not await self.store.namespace_exists(source_ns):
                if not await self._note_exists(owner_id):
                    # Note deleted after the job was queued; leave no record behind
                    await self.status_store.delete(owner_id, job_id)
                    logger.warning(
                        "Archive job %s: note %s was deleted; job dropped",
                        job_id, owner_id,
                    )
                    return None
                logger.warning(
                    "Archive job %s: attachments of note %s no longer exist",
                    job_id, owner_id,
                )
                return await self.mark_failed(
                    request, reason=f"attachment container {source_ns} does not exist",
                )

            created = await self.store.create_namespace(dest_ns, public_access=PublicAccess.BLOB)
            if not created:
                await self.store.set_public_access(dest_ns, PublicAccess.BLOB)

            build = self.builder.build(source_ns, job_id, dest_ns)
            timeout = self.settings.archive_build_timeout_seconds
            if timeout is not None:
                result = await asyncio.wait_for(build, timeout=timeout)
            else:
                result = await build
        except asyncio.TimeoutError:
            logger.error(
                "Archive job %s for note %s exceeded %ss",
                job_id, owner_id, self.settings.archive_build_timeout_seconds,
            )
            return await self.mark_failed(
                request,
                reason=f"build exceeded {self.settings.archive_build_timeout_seconds}s",
            )
        except Exception as e:
            logger.error(
                "Archive job %s for note %s failed: %s",
                job_id, owner_id, e, exc_info=True,
            )
            return await self.mark_failed(request)

        # ── Step 5: Done ──────────────────────────────────────────────────
        logger.info(
            "Archive job %s for note %s built: %d entries, %d bytes",
            job_id, owner_id, result.entry_count, result.archive_size,
        )
        return await self._finish(
            request,
            JobState.COMPLETED,
            f"{JobState.COMPLETED.value}: ZipFileId: {job_id} containerId: {dest_ns}",
        )

    async def _note_exists(self, owner_id: str) -> bool:
        async with self.session_factory() as session:
            return await session.get(Note, owner_id) is not None

    async def mark_failed(
        self,
        request: ArchiveRequest,
        reason: Optional[str] = None,
    ) -> Optional[JobStatusRecord]:
        """Write a Failed record for `request`. Never raises."""
        detail = f"{JobState.FAILED.value}: ZipFileId: {request.job_id} NoteId: {request.owner_id}"
        if reason:
            detail = f"{detail} Reason: {reason}"
        return await self._finish(request, JobState.FAILED, detail)

    async def _finish(
        self,
        request: ArchiveRequest,
        state: JobState,
        detail: str,
    ) -> Optional[JobStatusRecord]:
        try:
            return await self.status_store.transition(request.owner_id, request.job_id, state, detail)
        except StatusTransitionError as e:
            logger.warning(
                "Archive job %s for note %s: %s not recorded, job is already %s",
                request.job_id, request.owner_id, state.value, e.current,
            )
        except Exception as e:
            logger.error(
                "Archive job %s for note %s: could not record %s: %s",
                request.job_id, request.owner_id, state.value, e, exc_info=True,
            )
        return None
