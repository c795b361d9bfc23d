"""
NoteKeeper Backend — Pydantic Request/Response Schemas
========================================================

What:  Pydantic models defining the API contract for notes, attachments,
       errors and health.
How:   FastAPI validates request bodies against the payload models (422 on
       mismatch) and serializes responses through the response models, using
       the camelCase aliases on the wire.
Who:   Used by route handlers as request/response types.

Design Decision:
    Schemas are separate from SQLAlchemy models: the API exposes camelCase
    names and a subset of fields, and validation rules (e.g. "blank PATCH
    fields are ignored") differ from database constraints.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from notekeeper.models.note import DETAILS_MAX_LENGTH, SUMMARY_MAX_LENGTH, Note
from notekeeper.services.blob_store import ObjectProperties


# ══════════════════════════════════════════════════════════════════════════
# Request Payloads
# ══════════════════════════════════════════════════════════════════════════


class NoteCreatePayload(BaseModel):
    """Body of POST /api/notes. Both fields are required."""

    summary: str = Field(min_length=1, max_length=SUMMARY_MAX_LENGTH)
    details: str = Field(min_length=1, max_length=DETAILS_MAX_LENGTH)


class NoteUpdatePayload(BaseModel):
    """
    Body of PATCH /api/notes/{id}.

    Omitted, null or whitespace-only fields leave the stored value unchanged.
    """

    summary: Optional[str] = Field(default=None, min_length=1, max_length=SUMMARY_MAX_LENGTH)
    details: Optional[str] = Field(default=None, min_length=1, max_length=DETAILS_MAX_LENGTH)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class NoteResponse(BaseModel):
    """Full representation of a note."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    summary: str
    details: str
    created_date_utc: datetime = Field(alias="createdDateUtc")
    modified_date_utc: Optional[datetime] = Field(default=None, alias="modifiedDateUtc")

    @classmethod
    def from_note(cls, note: Note) -> "NoteResponse":
        return cls(
            id=note.id,
            summary=note.summary,
            details=note.details,
            created_date_utc=note.created_date_utc,
            modified_date_utc=note.modified_date_utc,
        )


class AttachmentResponse(BaseModel):
    """Properties of one attachment stored in a note's namespace."""

    model_config = ConfigDict(populate_by_name=True)

    attachment_id: str = Field(alias="attachmentId")
    content_type: str = Field(alias="contentType")
    created_date: datetime = Field(alias="createdDate")
    last_modified_date: Optional[datetime] = Field(default=None, alias="lastModifiedDate")
    length: int

    @classmethod
    def from_properties(cls, props: ObjectProperties) -> "AttachmentResponse":
        return cls(
            attachment_id=props.key,
            content_type=props.content_type,
            created_date=props.created,
            last_modified_date=props.last_modified,
            length=props.length,
        )


# ══════════════════════════════════════════════════════════════════════════
# Error / Health Models
# ══════════════════════════════════════════════════════════════════════════


class ErrorResponse(BaseModel):
    """
    Standardized error body for every non-2xx response.

    Example:
        {
            "error": "limit_exceeded",
            "message": "Note limit reached: MaxNotes [10]",
            "details": {"MaxNotes": 10},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Service and dependency status returned by GET /health."""

    status: str = Field(description="healthy or unhealthy")
    version: str
    database: str = Field(description="connected or disconnected")
    storage: str = Field(description="available or unavailable")
    archive_queue_depth: Optional[int] = Field(
        default=None,
        description="Messages waiting on the archive queue (null if unknown)",
    )
    uptime_seconds: float
