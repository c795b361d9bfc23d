"""
NoteKeeper Backend — Archive Artifact Access
==============================================

What:  Download, list and delete the finished archives of a note.
How:   Archives are objects named by job id in the note's archive namespace
       (`<note_id>-archive`). The status record of a job is left alone when
       its archive is deleted.
Who:   Called by the archive routes.
"""

import logging
from typing import List, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.config import Settings
from notekeeper.exceptions import NotFoundError
from notekeeper.services.blob_store import ObjectProperties, ObjectStore
from notekeeper.services.note_service import get_note_or_404

logger = logging.getLogger(__name__)


class ArchiveService:

    def __init__(self, settings: Settings, store: ObjectStore):
        self.settings = settings
        self.store = store

    async def get_archive(
        self,
        db: AsyncSession,
        owner_id: str,
        job_id: str,
    ) -> Tuple[ObjectProperties, bytes]:
        """
        Fetch a finished archive.

        NotFoundError while the job has not completed, as well as for an
        unknown note, namespace or archive.
        """
        await get_note_or_404(db, owner_id)
        namespace = await self._require_namespace(owner_id)
        props = await self.store.get_properties(namespace, ObjectStore.validate_key(job_id))
        content = await self.store.download(namespace, job_id)
        return props, content

    async def list_archives(self, db: AsyncSession, owner_id: str) -> List[ObjectProperties]:
        await get_note_or_404(db, owner_id)
        namespace = await self._require_namespace(owner_id)
        return await self.store.list_objects(namespace)

    async def delete_archive(self, db: AsyncSession, owner_id: str, job_id: str) -> None:
        await get_note_or_404(db, owner_id)
        namespace = await self._require_namespace(owner_id)
        if not await self.store.delete(namespace, ObjectStore.validate_key(job_id)):
            raise NotFoundError(resource="archive", resource_id=job_id)
        logger.info("Archive %s of note %s deleted", job_id, owner_id)

    async def _require_namespace(self, owner_id: str) -> str:
        namespace = self.settings.archive_namespace(owner_id)
        if not await self.store.namespace_exists(namespace):
            raise NotFoundError(resource="container", resource_id=namespace)
        return namespace
