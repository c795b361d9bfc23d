"""
NoteKeeper Backend — HTTP API Tests
=====================================

What:  End-to-end tests through the FastAPI app.
How:   HTTPX AsyncClient over ASGITransport (no network); the queue worker is
       run in-process with `QueueConsumer.run(once=True)` where a job has to
       finish.

What we test:
    ✅ Note CRUD, Location headers, 403 at the note limit
    ✅ Attachment upload (201 then 204), download, list, delete
    ✅ Non-ASCII attachment ids survive the Location and Content-Disposition headers
    ✅ Archive request → Queued → worker → Completed → zip download
    ✅ 404 / 409 / 400 mapping and the error body shape
    ✅ Health check and request id propagation
"""

import io
import zipfile
from urllib.parse import quote

import pytest

from notekeeper.models.archive_job import JobState
from notekeeper.worker import QueueConsumer


async def _create_note(client, summary="Groceries", details="Milk, eggs"):
    response = await client.post("/api/notes", json={"summary": summary, "details": details})
    assert response.status_code == 201
    return response.json()["id"]


async def _upload(client, note_id, attachment_id, content, content_type="image/png"):
    return await client.put(
        f"/api/notes/{note_id}/attachments/{attachment_id}",
        files={"fileData": (attachment_id, content, content_type)},
    )


# ── Notes ─────────────────────────────────────────────────────────────────

class TestNotesApi:

    @pytest.mark.asyncio
    async def test_create_and_get(self, test_client):
        response = await test_client.post(
            "/api/notes", json={"summary": "Groceries", "details": "Milk, eggs"},
        )

        assert response.status_code == 201
        body = response.json()
        assert response.headers["location"].endswith(f"/api/notes/{body['id']}")
        assert body["summary"] == "Groceries"
        assert body["createdDateUtc"]
        assert body["modifiedDateUtc"] is None

        fetched = await test_client.get(f"/api/notes/{body['id']}")
        assert fetched.status_code == 200
        assert fetched.json()["details"] == "Milk, eggs"

    @pytest.mark.asyncio
    async def test_list(self, test_client):
        first = await _create_note(test_client, summary="first")
        second = await _create_note(test_client, summary="second")

        response = await test_client.get("/api/notes")

        assert response.status_code == 200
        assert [n["id"] for n in response.json()] == [first, second]

    @pytest.mark.asyncio
    async def test_patch(self, test_client):
        note_id = await _create_note(test_client)

        response = await test_client.patch(f"/api/notes/{note_id}", json={"summary": "Hardware"})

        assert response.status_code == 204
        body = (await test_client.get(f"/api/notes/{note_id}")).json()
        assert body["summary"] == "Hardware"
        assert body["details"] == "Milk, eggs"
        assert body["modifiedDateUtc"] is not None

    @pytest.mark.asyncio
    async def test_summary_too_long(self, test_client):
        response = await test_client.post(
            "/api/notes", json={"summary": "x" * 61, "details": "ok"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_note_limit(self, test_client, container, make_note):
        for _ in range(container.settings.max_notes):
            await make_note()

        response = await test_client.post("/api/notes", json={"summary": "s", "details": "d"})

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "limit_exceeded"
        assert "MaxNotes" in body["message"]

    @pytest.mark.asyncio
    async def test_unknown_note(self, test_client):
        response = await test_client.get("/api/notes/does-not-exist")

        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "not_found"
        assert body["request_id"]

    @pytest.mark.asyncio
    async def test_delete(self, test_client):
        note_id = await _create_note(test_client)
        await _upload(test_client, note_id, "a.png", b"a")

        response = await test_client.delete(f"/api/notes/{note_id}")

        assert response.status_code == 204
        assert (await test_client.get(f"/api/notes/{note_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_delete_while_archiving(self, test_client, container, note_id):
        await container.status_store.create(note_id, "busy.zip", JobState.QUEUED, "queued")
        await container.status_store.transition(note_id, "busy.zip", JobState.IN_PROGRESS, "working")

        response = await test_client.delete(f"/api/notes/{note_id}")

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"
        assert (await test_client.get(f"/api/notes/{note_id}")).status_code == 200


# ── Attachments ───────────────────────────────────────────────────────────

class TestAttachmentsApi:

    @pytest.mark.asyncio
    async def test_upload_replace_download(self, test_client, note_id):
        created = await _upload(test_client, note_id, "photo.png", b"x" * 10)
        assert created.status_code == 201
        assert created.headers["location"].endswith(
            f"/api/notes/{note_id}/attachments/photo.png"
        )

        replaced = await _upload(test_client, note_id, "photo.png", b"y" * 4, "image/jpeg")
        assert replaced.status_code == 204

        download = await test_client.get(f"/api/notes/{note_id}/attachments/photo.png")
        assert download.status_code == 200
        assert download.content == b"yyyy"
        assert download.headers["content-type"] == "image/jpeg"

        listed = (await test_client.get(f"/api/notes/{note_id}/attachments")).json()
        assert [a["attachmentId"] for a in listed] == ["photo.png"]
        assert listed[0]["length"] == 4

    @pytest.mark.asyncio
    async def test_unicode_attachment_id(self, test_client, note_id):
        attachment_id = "文件.png"
        created = await test_client.put(
            f"/api/notes/{note_id}/attachments/{attachment_id}",
            files={"fileData": ("upload.png", b"x" * 3, "image/png")},
        )

        assert created.status_code == 201
        assert created.headers["location"].endswith(
            f"/api/notes/{note_id}/attachments/{quote(attachment_id)}"
        )

        download = await test_client.get(created.headers["location"])
        assert download.status_code == 200
        assert download.content == b"xxx"
        disposition = download.headers["content-disposition"]
        assert "filename*=UTF-8''%E6%96%87%E4%BB%B6.png" in disposition
        assert 'filename="__.png"' in disposition

        listed = (await test_client.get(f"/api/notes/{note_id}/attachments")).json()
        assert [a["attachmentId"] for a in listed] == [attachment_id]

    @pytest.mark.asyncio
    async def test_attachment_limit(self, test_client, container, note_id):
        for i in range(container.settings.max_attachments):
            assert (await _upload(test_client, note_id, f"f{i}.png", b"x")).status_code == 201

        response = await _upload(test_client, note_id, "extra.png", b"x")

        assert response.status_code == 403
        assert "MaxAttachments" in response.json()["message"]

    @pytest.mark.asyncio
    async def test_invalid_attachment_id(self, test_client, note_id):
        response = await _upload(test_client, note_id, ".hidden", b"x")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_delete(self, test_client, note_id):
        await _upload(test_client, note_id, "a.png", b"a")

        response = await test_client.delete(f"/api/notes/{note_id}/attachments/a.png")

        assert response.status_code == 204
        missing = await test_client.get(f"/api/notes/{note_id}/attachments/a.png")
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_list_before_first_upload(self, test_client, note_id):
        response = await test_client.get(f"/api/notes/{note_id}/attachments")
        assert response.status_code == 404


# ── Archives ──────────────────────────────────────────────────────────────

class TestArchivesApi:

    @pytest.mark.asyncio
    async def test_archive_round_trip(self, test_client, container, make_note, put_object):
        """Two attachments in, one zip with both out."""
        note_id = await make_note("note-42")
        await put_object(note_id, "a.png", b"a" * 10)
        await put_object(note_id, "b.png", b"b" * 20)

        accepted = await test_client.post(f"/api/notes/{note_id}/archives")

        assert accepted.status_code == 202
        body = accepted.json()
        job_id = body["zipFileId"]
        assert body["status"] == "Queued"
        assert accepted.headers["location"] == body["archiveUrl"]
        assert body["statusUrl"].endswith(f"/api/notes/note-42/archives/{job_id}/status")

        status = await test_client.get(f"/api/notes/note-42/archives/{job_id}/status")
        assert status.status_code == 200
        assert status.json()["status"] == "Queued"

        # Not produced yet
        early = await test_client.get(f"/api/notes/note-42/archives/{job_id}")
        assert early.status_code == 404

        await QueueConsumer(container).run(once=True)

        status = (await test_client.get(f"/api/notes/note-42/archives/{job_id}/status")).json()
        assert status["status"] == "Completed"
        assert status["zipFileId"] == job_id
        assert status["statusDetails"] == (
            f"Completed: ZipFileId: {job_id} containerId: note-42-archive"
        )

        download = await test_client.get(f"/api/notes/note-42/archives/{job_id}")
        assert download.status_code == 200
        assert download.headers["content-type"] == "application/zip"
        with zipfile.ZipFile(io.BytesIO(download.content)) as archive:
            sizes = {info.filename: info.file_size for info in archive.infolist()}
        assert sizes == {"a.png": 10, "b.png": 20}

        listed = (await test_client.get("/api/notes/note-42/archives")).json()
        assert [a["zipFileId"] for a in listed] == [job_id]

        jobs = (await test_client.get("/api/notes/note-42/archives/jobs")).json()
        assert [j["zipFileId"] for j in jobs] == [job_id]

        deleted = await test_client.delete(f"/api/notes/note-42/archives/{job_id}")
        assert deleted.status_code == 204

    @pytest.mark.asyncio
    async def test_unknown_note(self, test_client, container):
        response = await test_client.post("/api/notes/missing/archives")

        assert response.status_code == 404
        assert await container.archive_queue.approximate_count() == 0

    @pytest.mark.asyncio
    async def test_no_jobs_yet(self, test_client, note_id):
        response = await test_client.get(f"/api/notes/{note_id}/archives/jobs")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_unknown_job_status(self, test_client, note_id):
        response = await test_client.get(f"/api/notes/{note_id}/archives/nope.zip/status")
        assert response.status_code == 404


# ── Health & middleware ───────────────────────────────────────────────────

class TestHealth:

    @pytest.mark.asyncio
    async def test_healthy(self, test_client):
        response = await test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "connected"
        assert body["storage"] == "available"
        assert body["archive_queue_depth"] == 0

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["x-request-id"] == "trace-123"

    @pytest.mark.asyncio
    async def test_request_id_generated(self, test_client):
        response = await test_client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
        generated = response.headers["x-request-id"]
        assert generated != "bad id with spaces"
        assert len(generated) == 8
