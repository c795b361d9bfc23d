"""
NoteKeeper Backend — Attachment Service
=========================================

What:  Upload, download, list and delete the attachments of a note.
How:   A note's attachments are the objects of the blob namespace named after
       the note id. The namespace is created on first upload, readable
       anonymously at object level.
Who:   Called by the attachment routes.

Validation Pipeline (PUT):
    ┌──────────┐    ┌────────────┐    ┌──────────────┐    ┌────────────┐
    │ note     │───▶│ key + size │───▶│ ensure ns,   │───▶│ upload,    │
    │ exists?  │    │ checks     │    │ quota check  │    │ NoteId md  │
    └──────────┘    └────────────┘    └──────────────┘    └────────────┘
       404             400                 403              201 / 204
"""

import logging
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from notekeeper.config import Settings
from notekeeper.exceptions import LimitExceededError, NotFoundError, ValidationError
from notekeeper.services.blob_store import ObjectProperties, ObjectStore, PublicAccess
from notekeeper.services.note_service import get_note_or_404

logger = logging.getLogger(__name__)

NOTE_ID_METADATA = "NoteId"


class AttachmentService:

    def __init__(self, settings: Settings, store: ObjectStore):
        self.settings = settings
        self.store = store

    async def put_attachment(
        self,
        db: AsyncSession,
        note_id: str,
        attachment_id: str,
        content: bytes,
        content_type: Optional[str] = None,
    ) -> Tuple[ObjectProperties, bool]:
        """
        Create or replace an attachment.

        Returns: (properties, created). `created` is False for a replacement.
        Raises:
            NotFoundError: note does not exist
            ValidationError: bad attachment id or content over max_attachment_size
            LimitExceededError: a new attachment would exceed max_attachments
        """
        await get_note_or_404(db, note_id)
        ObjectStore.validate_key(attachment_id)

        if len(content) > self.settings.max_attachment_size:
            size_mb = len(content) / (1024 * 1024)
            max_mb = self.settings.max_attachment_size / (1024 * 1024)
            raise ValidationError(
                message=f"Attachment too large ({size_mb:.1f}MB). Maximum size is {max_mb:.0f}MB.",
                field="fileData",
                context={"file_size": len(content), "max_size": self.settings.max_attachment_size},
            )

        created_ns = await self.store.create_namespace(note_id, public_access=PublicAccess.BLOB)
        if not created_ns:
            await self.store.set_public_access(note_id, PublicAccess.BLOB)

        exists = await self.store.exists(note_id, attachment_id)
        if not exists:
            count = await self.store.count_objects(note_id)
            if count >= self.settings.max_attachments:
                raise LimitExceededError(
                    title="Attachment limit reached",
                    limit_name="MaxAttachments",
                    limit=self.settings.max_attachments,
                    context={"note_id": note_id},
                )

        props = await self.store.upload(
            note_id,
            attachment_id,
            content,
            content_type=content_type,
            metadata={NOTE_ID_METADATA: note_id},
        )
        logger.info(
            "Attachment %s %s on note %s (%d bytes)",
            attachment_id, "replaced" if exists else "created", note_id, props.length,
        )
        return props, not exists

    async def get_attachment(
        self,
        db: AsyncSession,
        note_id: str,
        attachment_id: str,
    ) -> Tuple[ObjectProperties, bytes]:
        await get_note_or_404(db, note_id)
        await self._require_namespace(note_id)
        props = await self.store.get_properties(note_id, ObjectStore.validate_key(attachment_id))
        content = await self.store.download(note_id, attachment_id)
        return props, content

    async def list_attachments(self, db: AsyncSession, note_id: str) -> List[ObjectProperties]:
        await get_note_or_404(db, note_id)
        await self._require_namespace(note_id)
        return await self.store.list_objects(note_id)

    async def delete_attachment(self, db: AsyncSession, note_id: str, attachment_id: str) -> None:
        await get_note_or_404(db, note_id)
        await self._require_namespace(note_id)
        deleted = await self.store.delete(note_id, ObjectStore.validate_key(attachment_id))
        if not deleted:
            raise NotFoundError(resource="attachment", resource_id=attachment_id)
        logger.info("Attachment %s deleted from note %s", attachment_id, note_id)

    async def _require_namespace(self, note_id: str) -> None:
        if not await self.store.namespace_exists(note_id):
            raise NotFoundError(resource="container", resource_id=note_id)
