"""
NoteKeeper Backend — Archive Job Tests
========================================

What:  Tests for the archive job path below the HTTP layer: dispatcher,
       worker, status queries and archive access.
How:   Real SQLite + filesystem stores from the `container` fixture. The
       builder is swapped for a mock where a failure has to be forced.

Test Strategy:
    ✅ Dispatch records Queued before anything else happens, then publishes
    ✅ Unknown note → NotFoundError, no record, no message
    ✅ Worker drives Queued → InProgress → Completed and stores the archive
    ✅ Redelivery of a finished job leaves record and archive alone
    ✅ Missing attachment namespace / build failure / timeout → Failed
    ✅ Job of a note deleted after queueing → dropped, no record left
    ✅ Concurrent deliveries of one request → a single Completed write
    ✅ Status queries and archive listing/download/delete
"""

import asyncio
import io
import zipfile
from unittest.mock import AsyncMock, patch

import pytest

from notekeeper.exceptions import ArchiveBuildError, NotFoundError, QueueError
from notekeeper.models.archive_job import JobState
from notekeeper.schemas.archive import ArchiveRequest
from notekeeper.services.archive_dispatcher import new_job_id


async def _dispatch(container, db, owner_id):
    async with db() as session:
        return await container.archive_dispatcher.request_archive(session, owner_id)


# ── Dispatcher ────────────────────────────────────────────────────────────

class TestDispatcher:

    @pytest.mark.asyncio
    async def test_request_is_queued(self, container, db, note_id):
        ticket = await _dispatch(container, db, note_id)

        assert ticket.job_id.endswith(".zip")
        assert ticket.record.state is JobState.QUEUED
        assert ticket.record.detail == f"Queued: Zip File Id: {ticket.job_id} NoteId: {note_id}"
        assert ticket.status_url == f"/api/notes/{note_id}/archives/{ticket.job_id}/status"
        assert ticket.archive_url == f"/api/notes/{note_id}/archives/{ticket.job_id}"

        stored = await container.status_store.get(note_id, ticket.job_id)
        assert stored.state is JobState.QUEUED

        [message] = await container.archive_queue.receive()
        request = ArchiveRequest.decode(message.body)
        assert request.owner_id == note_id
        assert request.job_id == ticket.job_id

    @pytest.mark.asyncio
    async def test_unknown_note(self, container, db):
        with pytest.raises(NotFoundError):
            await _dispatch(container, db, "no-such-note")

        assert await container.status_store.query_partition("no-such-note") == []
        assert await container.archive_queue.approximate_count() == 0

    @pytest.mark.asyncio
    async def test_each_request_gets_its_own_job(self, container, db, note_id):
        first = await _dispatch(container, db, note_id)
        second = await _dispatch(container, db, note_id)

        assert first.job_id != second.job_id
        assert len(await container.status_store.query_partition(note_id)) == 2
        assert await container.archive_queue.approximate_count() == 2

    @pytest.mark.asyncio
    async def test_publish_failure_leaves_queued_record(self, container, db, note_id):
        with patch.object(
            container.archive_queue, "send",
            AsyncMock(side_effect=QueueError(message="queue down")),
        ):
            with pytest.raises(QueueError):
                await _dispatch(container, db, note_id)

        [record] = await container.status_store.query_partition(note_id)
        assert record.state is JobState.QUEUED

    def test_job_ids_are_unique(self):
        assert len({new_job_id() for _ in range(100)}) == 100


# ── Worker ────────────────────────────────────────────────────────────────

class TestWorker:

    @pytest.mark.asyncio
    async def test_completes_job(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a" * 10)
        await put_object(note_id, "b.png", b"b" * 20)
        ticket = await _dispatch(container, db, note_id)

        record = await container.archive_worker.process_one(
            ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        )

        assert record.state is JobState.COMPLETED
        assert record.detail == (
            f"Completed: ZipFileId: {ticket.job_id} containerId: {note_id}-archive"
        )
        archive_ns = container.settings.archive_namespace(note_id)
        data = await container.object_store.download(archive_ns, ticket.job_id)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert sorted((i.filename, i.file_size) for i in archive.infolist()) == [
                ("a.png", 10), ("b.png", 20),
            ]

    @pytest.mark.asyncio
    async def test_redelivery_of_finished_job(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a" * 10)
        ticket = await _dispatch(container, db, note_id)
        request = ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        await container.archive_worker.process_one(request)
        archive_ns = container.settings.archive_namespace(note_id)
        before = await container.object_store.get_properties(archive_ns, ticket.job_id)
        record_before = await container.status_store.get(note_id, ticket.job_id)

        assert await container.archive_worker.process_one(request) is None

        assert await container.status_store.get(note_id, ticket.job_id) == record_before
        after = await container.object_store.get_properties(archive_ns, ticket.job_id)
        assert after.last_modified == before.last_modified

    @pytest.mark.asyncio
    async def test_missing_attachment_namespace(self, container, db, note_id):
        ticket = await _dispatch(container, db, note_id)

        record = await container.archive_worker.process_one(
            ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        )

        assert record.state is JobState.FAILED
        assert record.detail.startswith(f"Failed: ZipFileId: {ticket.job_id} NoteId: {note_id}")
        assert "does not exist" in record.detail

    @pytest.mark.asyncio
    async def test_note_deleted_after_queueing(self, container, db, note_id, put_object):
        """A job for a deleted note leaves no status record behind."""
        await put_object(note_id, "a.png", b"a")
        ticket = await _dispatch(container, db, note_id)
        async with db() as session:
            await container.note_service.delete_note(session, note_id)

        result = await container.archive_worker.process_one(
            ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        )

        assert result is None
        assert await container.status_store.query_partition(note_id) == []
        archive_ns = container.settings.archive_namespace(note_id)
        assert not await container.object_store.namespace_exists(archive_ns)

    @pytest.mark.asyncio
    async def test_concurrent_deliveries(self, container, db, note_id, put_object):
        """The same request processed three times at once still completes once."""
        await put_object(note_id, "a.png", b"a" * 10)
        await put_object(note_id, "b.png", b"b" * 20)
        ticket = await _dispatch(container, db, note_id)
        request = ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)

        results = await asyncio.gather(
            *(container.archive_worker.process_one(request) for _ in range(3))
        )

        written = [r for r in results if r is not None]
        assert len(written) == 1
        assert written[0].state is JobState.COMPLETED
        stored = await container.status_store.get(note_id, ticket.job_id)
        assert stored.state is JobState.COMPLETED
        archive_ns = container.settings.archive_namespace(note_id)
        data = await container.object_store.download(archive_ns, ticket.job_id)
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            assert archive.testzip() is None
            assert sorted((i.filename, i.file_size) for i in archive.infolist()) == [
                ("a.png", 10), ("b.png", 20),
            ]

    @pytest.mark.asyncio
    async def test_build_failure(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a")
        ticket = await _dispatch(container, db, note_id)

        with patch.object(
            container.archive_builder, "build",
            AsyncMock(side_effect=ArchiveBuildError(message="boom")),
        ):
            record = await container.archive_worker.process_one(
                ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
            )

        assert record.state is JobState.FAILED
        assert record.detail == f"Failed: ZipFileId: {ticket.job_id} NoteId: {note_id}"

    @pytest.mark.asyncio
    async def test_build_timeout(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a")
        ticket = await _dispatch(container, db, note_id)

        async def slow_build(*args, **kwargs):
            await asyncio.sleep(10)

        container.settings.archive_build_timeout_seconds = 0.05
        with patch.object(container.archive_builder, "build", side_effect=slow_build):
            record = await container.archive_worker.process_one(
                ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
            )

        assert record.state is JobState.FAILED
        assert "exceeded" in record.detail

    @pytest.mark.asyncio
    async def test_archive_namespace_is_public(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a")
        ticket = await _dispatch(container, db, note_id)

        await container.archive_worker.process_one(
            ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        )

        archive_ns = container.settings.archive_namespace(note_id)
        access = await container.object_store.get_public_access(archive_ns)
        assert access.value == "blob"

    @pytest.mark.asyncio
    async def test_empty_attachment_namespace(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a")
        await container.object_store.delete(note_id, "a.png")
        ticket = await _dispatch(container, db, note_id)

        record = await container.archive_worker.process_one(
            ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        )

        assert record.state is JobState.COMPLETED


# ── Status queries and archives ───────────────────────────────────────────

class TestStatusQuery:

    @pytest.mark.asyncio
    async def test_get_one(self, container, db, note_id):
        ticket = await _dispatch(container, db, note_id)

        async with db() as session:
            record = await container.status_query.get_one(session, note_id, ticket.job_id)

        assert record.state is JobState.QUEUED

    @pytest.mark.asyncio
    async def test_get_one_unknown_job(self, container, db, note_id):
        async with db() as session:
            with pytest.raises(NotFoundError):
                await container.status_query.get_one(session, note_id, "nope.zip")

    @pytest.mark.asyncio
    async def test_get_all(self, container, db, note_id):
        first = await _dispatch(container, db, note_id)
        second = await _dispatch(container, db, note_id)

        async with db() as session:
            records = await container.status_query.get_all(session, note_id)

        assert {r.job_id for r in records} == {first.job_id, second.job_id}

    @pytest.mark.asyncio
    async def test_get_all_without_jobs(self, container, db, note_id):
        async with db() as session:
            with pytest.raises(NotFoundError):
                await container.status_query.get_all(session, note_id)


class TestArchiveService:

    @pytest.mark.asyncio
    async def test_download_list_delete(self, container, db, note_id, put_object):
        await put_object(note_id, "a.png", b"a" * 10)
        ticket = await _dispatch(container, db, note_id)
        await container.archive_worker.process_one(
            ArchiveRequest(owner_id=note_id, job_id=ticket.job_id)
        )
        service = container.archive_service

        async with db() as session:
            props, content = await service.get_archive(session, note_id, ticket.job_id)
            listed = await service.list_archives(session, note_id)
        assert props.content_type == "application/zip"
        assert props.length == len(content)
        assert [p.key for p in listed] == [ticket.job_id]

        async with db() as session:
            await service.delete_archive(session, note_id, ticket.job_id)
        async with db() as session:
            with pytest.raises(NotFoundError):
                await service.get_archive(session, note_id, ticket.job_id)

        # The job record outlives its archive
        assert (await container.status_store.get(note_id, ticket.job_id)).state is JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_before_any_archive(self, container, db, note_id):
        async with db() as session:
            with pytest.raises(NotFoundError) as exc_info:
                await container.archive_service.list_archives(session, note_id)
        assert exc_info.value.resource == "container"
