"""
NoteKeeper Backend — Archive Builder
======================================

What:  Packs every object of a source namespace into one zip archive and stores
       it as a single object in a destination namespace.
How:   Lists the source page by page, streams each object into its own
       deflate-compressed entry, finalizes the central directory, then uploads
       the archive by streaming it back out of the spool.
Who:   Called by ArchiveWorker once per job.

Assembly:
    ┌──────────────┐   chunks   ┌────────────────────────┐   chunks   ┌──────────────┐
    │ source ns    │──────────▶│ ZipFile over a spooled │──────────▶│ dest ns      │
    │ (paged list) │  entry by  │ temp file (memory up   │  upload    │ <jobId>.zip  │
    └──────────────┘  entry     │ to the limit, then     │            └──────────────┘
                                │ local disk)            │
                                └────────────────────────┘

    Entries are written strictly one after another: a zip entry is a local
    header followed by its data, so an entry must be closed before the next
    one is opened. Zip writes are synchronous and run in a worker thread.

Snapshot semantics:
    Objects added to the source after its listing page was read may or may
    not be included. The source namespace is never locked.
"""

import asyncio
import logging
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import datetime
from typing import IO, AsyncIterator

from notekeeper.exceptions import ArchiveBuildError
from notekeeper.services.blob_store import ObjectProperties, ObjectStore

logger = logging.getLogger(__name__)

ARCHIVE_CONTENT_TYPE = "application/zip"


@dataclass(frozen=True)
class BuildResult:
    entry_count: int
    archive_size: int


class ArchiveBuilder:
    """
    Stateless apart from its store handle and spool limit; one instance can run
    any number of builds concurrently.
    """

    def __init__(self, store: ObjectStore, spool_max_bytes: int = 16 * 1024 * 1024):
        self.store = store
        self.spool_max_bytes = spool_max_bytes

    async def build(
        self,
        source_namespace: str,
        dest_object_id: str,
        dest_namespace: str,
    ) -> BuildResult:
        """
        Build `dest_namespace/dest_object_id` from every object in `source_namespace`.

        An empty source produces a valid zero-entry archive, uploaded normally.

        Raises:
            ArchiveBuildError: on any fault while listing, reading, compressing
                or uploading. Nothing is uploaded unless the archive was
                finalized.
            asyncio.CancelledError: propagated untouched, so a caller-side
                timeout stops the build at the next suspension point.
        """
        logger.info(
            "Building archive %s/%s from namespace %s",
            dest_namespace, dest_object_id, source_namespace,
        )
        try:
            with tempfile.SpooledTemporaryFile(max_size=self.spool_max_bytes) as spool:
                entry_count = await self._write_archive(spool, source_namespace, dest_object_id)

                archive_size = spool.tell()
                spool.seek(0)
                await self.store.upload(
                    dest_namespace,
                    dest_object_id,
                    self._read_spool(spool),
                    content_type=ARCHIVE_CONTENT_TYPE,
                )
        except asyncio.CancelledError:
            logger.warning("Archive build %s/%s cancelled", dest_namespace, dest_object_id)
            raise
        except Exception as e:
            logger.error(
                "Archive build %s/%s failed: %s",
                dest_namespace, dest_object_id, e, exc_info=True,
            )
            raise ArchiveBuildError(
                message=f"Failed to build archive {dest_object_id}: {e}",
                context={
                    "source_namespace": source_namespace,
                    "dest_namespace": dest_namespace,
                    "dest_object_id": dest_object_id,
                    "error_type": type(e).__name__,
                },
            ) from e

        logger.info(
            "Archive %s/%s stored: %d entries, %d bytes",
            dest_namespace, dest_object_id, entry_count, archive_size,
        )
        return BuildResult(entry_count=entry_count, archive_size=archive_size)

    async def _write_archive(self, spool: IO[bytes], source_namespace: str, job_id: str) -> int:
        entry_count = 0
        archive = zipfile.ZipFile(spool, mode="w", compression=zipfile.ZIP_DEFLATED, allowZip64=True)
        try:
            async for page in self.store.iter_pages(source_namespace):
                for props in page.items:
                    await self._write_entry(archive, props)
                    entry_count += 1
                    logger.debug(
                        "Archive %s: entry %d appended (%s, %d bytes)",
                        job_id, entry_count, props.key, props.length,
                    )
        finally:
            # Writes the central directory; on the error path it just releases the handle
            await asyncio.to_thread(archive.close)
        return entry_count

    async def _write_entry(self, archive: zipfile.ZipFile, props: ObjectProperties) -> None:
        info = zipfile.ZipInfo(filename=props.key, date_time=_zip_timestamp(props.last_modified))
        info.compress_type = zipfile.ZIP_DEFLATED
        force_zip64 = props.length >= zipfile.ZIP64_LIMIT

        entry = await asyncio.to_thread(archive.open, info, "w", force_zip64=force_zip64)
        try:
            async for chunk in self.store.open_read(props.namespace, props.key):
                await asyncio.to_thread(entry.write, chunk)
        finally:
            await asyncio.to_thread(entry.close)

    async def _read_spool(self, spool: IO[bytes]) -> AsyncIterator[bytes]:
        while True:
            chunk = await asyncio.to_thread(spool.read, ObjectStore.CHUNK_SIZE)
            if not chunk:
                return
            yield chunk


def _zip_timestamp(value: datetime) -> tuple:
    # Zip timestamps start at 1980 and carry no zone
    if value.year < 1980:
        return (1980, 1, 1, 0, 0, 0)
    return (value.year, value.month, value.day, value.hour, value.minute, value.second)
