"""
NoteKeeper Backend — Job Status Store Adapter
===============================================

What:  Keyed storage of archive job status records: insert-only create,
       forward-only transitions, point reads, partition queries, and record
       and partition deletes.
How:   Rows of the `archive_jobs` table, one short-lived session per call.
       A transition reads the current row, checks `JobState.can_advance_to`,
       then writes with an UPDATE conditional on the state and version it read.
       If another writer got there first the read-check-write is repeated.
Who:   Dispatcher (create), worker (transition, delete of records whose note
       is gone), status query (get/query), note deletion (delete_partition).

Timestamps:
    `updated_at` never goes backwards for a record: a write stores
    max(now, previous updated_at), so clock skew between API and worker hosts
    cannot make a newer state look older.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from notekeeper.database import session_scope
from notekeeper.exceptions import (
    ConflictError,
    StatusRecordExistsError,
    StatusStoreError,
    StatusTransitionError,
)
from notekeeper.models.archive_job import ArchiveJob, JobState, JobStatusRecord

logger = logging.getLogger(__name__)


class StatusStore:
    """Adapter over the `archive_jobs` table."""

    # Read-check-write rounds before giving up on a contended record
    MAX_WRITE_ATTEMPTS = 5

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self._engine = engine
        self._session_factory = session_factory

    async def create_if_not_exists(self) -> None:
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(ArchiveJob.__table__.create, checkfirst=True)
        except SQLAlchemyError as e:
            raise self._store_error("create status table", e)

    async def create(
        self,
        owner_id: str,
        job_id: str,
        state: JobState,
        detail: str,
    ) -> JobStatusRecord:
        """
        Insert a new record.

        Raises:
            StatusRecordExistsError: a record with the same key already exists
            StatusStoreError: the store failed
        """
        row = ArchiveJob(
            owner_id=owner_id,
            job_id=job_id,
            state=state,
            detail=detail,
            updated_at=datetime.now(timezone.utc),
            version=uuid.uuid4().hex,
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(row)
        except IntegrityError as e:
            raise StatusRecordExistsError(
                message=f"Status record for job {job_id} of note {owner_id} already exists",
                context={"owner_id": owner_id, "job_id": job_id,
                         "error_type": type(e).__name__},
            )
        except SQLAlchemyError as e:
            raise self._store_error(f"create status record {owner_id}/{job_id}", e)

        logger.info("Status %s/%s created: %s", owner_id, job_id, state.value)
        return JobStatusRecord.from_row(row)

    async def get(self, owner_id: str, job_id: str) -> Optional[JobStatusRecord]:
        try:
            async with self._session_factory() as session:
                row = await session.get(ArchiveJob, (owner_id, job_id))
        except SQLAlchemyError as e:
            raise self._store_error(f"read status record {owner_id}/{job_id}", e)
        return JobStatusRecord.from_row(row) if row is not None else None

    async def transition(
        self,
        owner_id: str,
        job_id: str,
        state: JobState,
        detail: str,
    ) -> JobStatusRecord:
        """
        Move a record to `state`, creating it if it does not exist.

        Raises:
            StatusTransitionError: the stored state does not allow `state`
                (e.g. the record is already Completed).
            StatusStoreError: the store failed, or the record kept changing
                underneath us for MAX_WRITE_ATTEMPTS rounds.
        """
        for _ in range(self.MAX_WRITE_ATTEMPTS):
            current = await self.get(owner_id, job_id)
            if current is None:
                try:
                    return await self.create(owner_id, job_id, state, detail)
                except StatusRecordExistsError:
                    # Lost an insert race; re-read and apply the transition rule
                    continue

            if not current.state.can_advance_to(state):
                raise StatusTransitionError(
                    owner_id=owner_id,
                    job_id=job_id,
                    current=current.state.value,
                    requested=state.value,
                )

            updated_at = max(datetime.now(timezone.utc), current.updated_at)
            version = uuid.uuid4().hex
            try:
                async with session_scope(self._session_factory) as session:
                    result = await session.execute(
                        update(ArchiveJob)
                        .where(
                            ArchiveJob.owner_id == owner_id,
                            ArchiveJob.job_id == job_id,
                            ArchiveJob.state == current.state,
                            ArchiveJob.version == current.version,
                        )
                        .values(
                            state=state,
                            detail=detail,
                            updated_at=updated_at,
                            version=version,
                        )
                        .execution_options(synchronize_session=False)
                    )
            except SQLAlchemyError as e:
                raise self._store_error(f"update status record {owner_id}/{job_id}", e)

            if result.rowcount == 1:
                logger.info(
                    "Status %s/%s: %s -> %s",
                    owner_id, job_id, current.state.value, state.value,
                )
                return JobStatusRecord(
                    owner_id=owner_id,
                    job_id=job_id,
                    state=state,
                    detail=detail,
                    updated_at=updated_at,
                    version=version,
                )
            logger.debug("Status %s/%s changed concurrently; retrying", owner_id, job_id)

        raise StatusStoreError(
            message=f"Status record for job {job_id} of note {owner_id} is under contention",
            context={"owner_id": owner_id, "job_id": job_id},
        )

    async def query_partition(self, owner_id: str) -> List[JobStatusRecord]:
        """All records of an owner, oldest update first. Empty list if none."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(ArchiveJob)
                    .where(ArchiveJob.owner_id == owner_id)
                    .order_by(ArchiveJob.updated_at, ArchiveJob.job_id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise self._store_error(f"query status records of {owner_id}", e)
        return [JobStatusRecord.from_row(row) for row in rows]

    async def delete_partition(self, owner_id: str) -> int:
        """
        Delete every record of an owner in one transaction.

        Raises ConflictError, deleting nothing, if any record is InProgress.
        Returns the number of records deleted.
        """
        try:
            async with session_scope(self._session_factory) as session:
                in_progress = (await session.execute(
                    select(ArchiveJob.job_id).where(
                        ArchiveJob.owner_id == owner_id,
                        ArchiveJob.state == JobState.IN_PROGRESS,
                    )
                )).scalars().all()
                if in_progress:
                    raise ConflictError(
                        message=(
                            f"Note {owner_id} has archive jobs in progress: "
                            f"{', '.join(in_progress)}"
                        ),
                        context={"owner_id": owner_id, "job_ids": list(in_progress)},
                    )
                result = await session.execute(
                    delete(ArchiveJob)
                    .where(ArchiveJob.owner_id == owner_id)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise self._store_error(f"delete status records of {owner_id}", e)

        logger.info("Deleted %d status record(s) of note %s", result.rowcount, owner_id)
        return result.rowcount

    async def delete(self, owner_id: str, job_id: str) -> bool:
        """Delete one record. Returns False if there was none."""
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    delete(ArchiveJob)
                    .where(ArchiveJob.owner_id == owner_id, ArchiveJob.job_id == job_id)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise self._store_error(f"delete status record {owner_id}/{job_id}", e)
        return result.rowcount == 1

    @staticmethod
    def _store_error(action: str, error: Exception) -> StatusStoreError:
        logger.error("Failed to %s: %s", action, error)
        return StatusStoreError(
            message=f"Failed to {action}",
            context={"error_type": type(error).__name__},
        )

