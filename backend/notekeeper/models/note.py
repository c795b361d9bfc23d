"""
NoteKeeper Backend — Note SQLAlchemy Model
============================================

What:  ORM model representing the `notes` table.
Who:   Used by NoteService for CRUD, by the archive services to check that an
       owner exists, and by Alembic for schema management.

Table Design:
    - id: opaque string (UUID4 text). The same string names the note's blob
      namespaces and the partition of its archive job status records, so it
      must be a valid namespace name.
    - summary / details: bounded text, validated again by the API schemas.
    - created_date_utc / modified_date_utc: UTC; modified stays NULL until the
      first effective update.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from notekeeper.database import Base

SUMMARY_MAX_LENGTH = 60
DETAILS_MAX_LENGTH = 1024


class Note(Base):
    """
    A note owned by the client.

    Lifecycle:
        1. Created by POST /api/notes (count bounded by settings.max_notes)
        2. Updated in place by PATCH (modified_date_utc set)
        3. Deleted together with its attachments, archives and job records
    """

    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Opaque note id; also the attachment namespace name",
    )

    summary: Mapped[str] = mapped_column(
        String(SUMMARY_MAX_LENGTH),
        nullable=False,
    )

    details: Mapped[str] = mapped_column(
        String(DETAILS_MAX_LENGTH),
        nullable=False,
    )

    created_date_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    modified_date_utc: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    __table_args__ = (
        Index("idx_notes_created_date_utc", created_date_utc),
    )

    def __repr__(self) -> str:
        return f"<Note(id={self.id}, summary='{self.summary}')>"
