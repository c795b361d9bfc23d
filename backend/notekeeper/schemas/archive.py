"""
NoteKeeper Backend — Archive Job Schemas
==========================================

What:  The queue message payload of an archive job and the API shapes of job
       status records and stored archives.
How:   Pydantic models with camelCase aliases for the wire format. The queue
       payload is compact JSON, base64-wrapped so it survives any transport
       that only carries text.
Who:   Dispatcher (encode), queue consumer (decode), archive routes (responses).
"""

import base64
import binascii
import json
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from notekeeper.models.archive_job import JobState, JobStatusRecord
from notekeeper.services.blob_store import ObjectProperties


# ══════════════════════════════════════════════════════════════════════════
# Queue Payload
# ══════════════════════════════════════════════════════════════════════════


class ArchiveRequest(BaseModel):
    """
    One "zip my attachments" request as it travels on the queue.

    Wire form: base64(utf8('{"ownerId":"...","jobId":"...zip"}')).
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    owner_id: str = Field(alias="ownerId", min_length=1)
    job_id: str = Field(alias="jobId", min_length=1)

    def encode(self) -> str:
        payload = self.model_dump_json(by_alias=True)
        return base64.b64encode(payload.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, body: str) -> "ArchiveRequest":
        """
        Parse a queue message body.

        Raises ValueError (pydantic's ValidationError included) when the body
        is not base64, not UTF-8 JSON, or lacks either id.
        """
        try:
            raw = base64.b64decode(body, validate=True)
            data = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"Message body is not base64-wrapped UTF-8: {e}") from e
        return cls.model_validate(data)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class JobStatusResponse(BaseModel):
    """External shape of a status record: `{zipFileId, timeStamp, status, statusDetails}`."""

    model_config = ConfigDict(populate_by_name=True)

    zip_file_id: str = Field(alias="zipFileId")
    time_stamp: datetime = Field(alias="timeStamp")
    status: JobState
    status_details: str = Field(alias="statusDetails")

    @classmethod
    def from_record(cls, record: JobStatusRecord) -> "JobStatusResponse":
        return cls(
            zip_file_id=record.job_id,
            time_stamp=record.updated_at,
            status=record.state,
            status_details=record.detail,
        )


class ArchiveAcceptedResponse(BaseModel):
    """Body of the 202 returned when an archive job is queued."""

    model_config = ConfigDict(populate_by_name=True)

    zip_file_id: str = Field(alias="zipFileId")
    status: JobState = JobState.QUEUED
    status_url: str = Field(alias="statusUrl")
    archive_url: str = Field(alias="archiveUrl")


class ArchiveResponse(BaseModel):
    """A finished archive stored in the note's archive namespace."""

    model_config = ConfigDict(populate_by_name=True)

    zip_file_id: str = Field(alias="zipFileId")
    content_type: str = Field(alias="contentType")
    created_date: datetime = Field(alias="createdDate")
    last_modified_date: Optional[datetime] = Field(default=None, alias="lastModifiedDate")
    length: int

    @classmethod
    def from_properties(cls, props: ObjectProperties) -> "ArchiveResponse":
        return cls(
            zip_file_id=props.key,
            content_type=props.content_type,
            created_date=props.created,
            last_modified_date=props.last_modified,
            length=props.length,
        )
