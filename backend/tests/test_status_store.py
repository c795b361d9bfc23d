"""
NoteKeeper Backend — Job Status Store Tests
=============================================

What we test:
    ✅ Records are created once per (owner, job)
    ✅ A lost insert race is retried; a store failure is not
    ✅ Forward-only transitions, including InProgress → InProgress
    ✅ Terminal states refuse further writes
    ✅ updated_at never goes backwards
    ✅ Partition queries and the InProgress guard on partition deletes
    ✅ Single-record delete
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from notekeeper.exceptions import (
    ConflictError,
    StatusRecordExistsError,
    StatusStoreError,
    StatusTransitionError,
)
from notekeeper.models.archive_job import ArchiveJob, JobState


class TestJobState:

    def test_terminal_states(self):
        assert JobState.COMPLETED.is_terminal
        assert JobState.FAILED.is_terminal
        assert not JobState.QUEUED.is_terminal
        assert not JobState.IN_PROGRESS.is_terminal

    @pytest.mark.parametrize("source,target,allowed", [
        (JobState.QUEUED, JobState.IN_PROGRESS, True),
        (JobState.QUEUED, JobState.FAILED, True),
        (JobState.QUEUED, JobState.COMPLETED, False),
        (JobState.IN_PROGRESS, JobState.IN_PROGRESS, True),
        (JobState.IN_PROGRESS, JobState.COMPLETED, True),
        (JobState.IN_PROGRESS, JobState.QUEUED, False),
        (JobState.COMPLETED, JobState.IN_PROGRESS, False),
        (JobState.FAILED, JobState.COMPLETED, False),
    ])
    def test_transition_table(self, source, target, allowed):
        assert source.can_advance_to(target) is allowed


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_and_get(self, container):
        store = container.status_store
        record = await store.create("note-1", "job.zip", JobState.QUEUED, "Queued: job.zip")

        fetched = await store.get("note-1", "job.zip")
        assert fetched == record
        assert fetched.state is JobState.QUEUED
        assert fetched.updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_create_twice_fails(self, container):
        store = container.status_store
        await store.create("note-1", "job.zip", JobState.QUEUED, "first")

        with pytest.raises(StatusRecordExistsError):
            await store.create("note-1", "job.zip", JobState.QUEUED, "second")

        assert (await store.get("note-1", "job.zip")).detail == "first"

    @pytest.mark.asyncio
    async def test_get_missing(self, container):
        assert await container.status_store.get("note-1", "missing.zip") is None

    @pytest.mark.asyncio
    async def test_create_if_not_exists_is_repeatable(self, container):
        await container.status_store.create_if_not_exists()
        await container.status_store.create_if_not_exists()


class TestTransition:

    @pytest.mark.asyncio
    async def test_full_lifecycle(self, container):
        store = container.status_store
        await store.create("note-1", "job.zip", JobState.QUEUED, "queued")

        first = await store.transition("note-1", "job.zip", JobState.IN_PROGRESS, "working")
        again = await store.transition("note-1", "job.zip", JobState.IN_PROGRESS, "working again")
        done = await store.transition("note-1", "job.zip", JobState.COMPLETED, "done")

        assert first.version != again.version != done.version
        stored = await store.get("note-1", "job.zip")
        assert stored.state is JobState.COMPLETED
        assert stored.detail == "done"

    @pytest.mark.asyncio
    async def test_transition_creates_missing_record(self, container):
        store = container.status_store
        record = await store.transition("note-1", "late.zip", JobState.IN_PROGRESS, "working")

        assert record.state is JobState.IN_PROGRESS
        assert (await store.get("note-1", "late.zip")).state is JobState.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_transition_after_lost_insert_race(self, container):
        """Another writer inserts first; the transition re-reads and applies its rule."""
        store = container.status_store
        real_create = store.create

        async def create_behind_our_back(owner_id, job_id, state, detail):
            await real_create(owner_id, job_id, JobState.QUEUED, "queued elsewhere")
            raise StatusRecordExistsError(message="exists")

        with patch.object(store, "create", AsyncMock(side_effect=create_behind_our_back)):
            record = await store.transition("note-1", "race.zip", JobState.IN_PROGRESS, "working")

        assert record.state is JobState.IN_PROGRESS
        assert (await store.get("note-1", "race.zip")).detail == "working"

    @pytest.mark.asyncio
    async def test_transition_does_not_retry_store_failures(self, container):
        store = container.status_store
        create = AsyncMock(side_effect=StatusStoreError(message="db down"))

        with patch.object(store, "create", create):
            with pytest.raises(StatusStoreError) as exc_info:
                await store.transition("note-1", "late.zip", JobState.IN_PROGRESS, "working")

        assert not isinstance(exc_info.value, StatusRecordExistsError)
        assert exc_info.value.message == "db down"
        create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_terminal_record_refuses_writes(self, container):
        store = container.status_store
        await store.create("note-1", "job.zip", JobState.QUEUED, "queued")
        await store.transition("note-1", "job.zip", JobState.FAILED, "failed")

        with pytest.raises(StatusTransitionError) as exc_info:
            await store.transition("note-1", "job.zip", JobState.IN_PROGRESS, "retry")

        assert exc_info.value.current == "Failed"
        assert exc_info.value.requested == "InProgress"
        assert (await store.get("note-1", "job.zip")).state is JobState.FAILED

    @pytest.mark.asyncio
    async def test_updated_at_is_monotonic(self, container):
        store = container.status_store
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        async with container.session_factory() as session:
            session.add(ArchiveJob(
                owner_id="note-1", job_id="skewed.zip", state=JobState.QUEUED,
                detail="queued by a host with a fast clock", updated_at=future,
                version="v1",
            ))
            await session.commit()

        record = await store.transition("note-1", "skewed.zip", JobState.IN_PROGRESS, "working")

        assert record.updated_at >= future
        assert (await store.get("note-1", "skewed.zip")).updated_at >= future


class TestPartition:

    @pytest.mark.asyncio
    async def test_query_orders_by_update(self, container):
        store = container.status_store
        await store.create("note-1", "b.zip", JobState.QUEUED, "b")
        await store.create("note-1", "a.zip", JobState.QUEUED, "a")
        await store.create("note-2", "c.zip", JobState.QUEUED, "c")
        await store.transition("note-1", "b.zip", JobState.IN_PROGRESS, "b working")

        records = await store.query_partition("note-1")

        assert [r.job_id for r in records] == ["a.zip", "b.zip"]
        assert await store.query_partition("nobody") == []

    @pytest.mark.asyncio
    async def test_delete_partition(self, container):
        store = container.status_store
        await store.create("note-1", "a.zip", JobState.QUEUED, "a")
        await store.create("note-1", "b.zip", JobState.QUEUED, "b")
        await store.transition("note-1", "b.zip", JobState.FAILED, "b failed")
        await store.create("note-2", "c.zip", JobState.QUEUED, "c")

        assert await store.delete_partition("note-1") == 2
        assert await store.query_partition("note-1") == []
        assert len(await store.query_partition("note-2")) == 1

    @pytest.mark.asyncio
    async def test_delete_partition_with_job_in_progress(self, container):
        store = container.status_store
        await store.create("note-1", "a.zip", JobState.QUEUED, "a")
        await store.create("note-1", "b.zip", JobState.QUEUED, "b")
        await store.transition("note-1", "b.zip", JobState.IN_PROGRESS, "b working")

        with pytest.raises(ConflictError):
            await store.delete_partition("note-1")

        assert len(await store.query_partition("note-1")) == 2

    @pytest.mark.asyncio
    async def test_delete_one(self, container):
        store = container.status_store
        await store.create("note-1", "a.zip", JobState.QUEUED, "a")
        await store.create("note-1", "b.zip", JobState.QUEUED, "b")

        assert await store.delete("note-1", "a.zip") is True
        assert await store.delete("note-1", "a.zip") is False
        assert [r.job_id for r in await store.query_partition("note-1")] == ["b.zip"]
