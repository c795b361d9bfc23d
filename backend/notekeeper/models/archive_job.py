"""
NoteKeeper Backend — Archive Job Status Model
===============================================

What:  The state machine and storage model of one "zip my attachments" job.
How:   `JobState` is the closed set of states with its forward-only transition
       table; `ArchiveJob` is the `archive_jobs` table row; `JobStatusRecord`
       is the immutable value handed out by the status store.
Who:   Written by the dispatcher (create) and the worker (transitions), read by
       the status query surface and by note deletion.

State machine:
    Queued ──▶ InProgress ──▶ Completed
      │            │  ▲
      │            └──┘ (redelivery of the same message)
      │            └────────▶ Failed
      └─────────────────────▶ Failed

    Completed and Failed are terminal.

Table layout:
    owner_id (partition) + job_id (row) form the primary key. `version` is
    regenerated on every write and plays the role of an entity tag.
"""

import enum
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import FrozenSet

from sqlalchemy import DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notekeeper.database import Base


class JobState(str, enum.Enum):
    """Lifecycle state of an archive job. Values are the wire names."""

    QUEUED = "Queued"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return not self.successors

    @property
    def successors(self) -> FrozenSet["JobState"]:
        """States a record in this state may be rewritten to."""
        match self:
            case JobState.QUEUED:
                return frozenset({JobState.IN_PROGRESS, JobState.FAILED})
            case JobState.IN_PROGRESS:
                return frozenset({JobState.IN_PROGRESS, JobState.COMPLETED, JobState.FAILED})
            case JobState.COMPLETED | JobState.FAILED:
                return frozenset()
            case _:
                raise ValueError(f"Unhandled job state: {self!r}")

    def can_advance_to(self, target: "JobState") -> bool:
        return target in self.successors


class ArchiveJob(Base):
    """One row of the status table: the latest known state of one job."""

    __tablename__ = "archive_jobs"

    owner_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    job_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Stored by value ("InProgress"), checked in Python against the enum
    state: Mapped[JobState] = mapped_column(
        Enum(
            JobState,
            name="archive_job_state",
            native_enum=False,
            length=16,
            values_callable=lambda states: [s.value for s in states],
        ),
        nullable=False,
    )

    detail: Mapped[str] = mapped_column(Text, nullable=False, default="")

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    version: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=lambda: uuid.uuid4().hex,
    )

    def __repr__(self) -> str:
        return (
            f"<ArchiveJob(owner_id={self.owner_id}, job_id={self.job_id}, "
            f"state={self.state.value})>"
        )


def as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class JobStatusRecord:
    """Read-only snapshot of an `ArchiveJob` row."""

    owner_id: str
    job_id: str
    state: JobState
    detail: str
    updated_at: datetime
    version: str

    @classmethod
    def from_row(cls, row: ArchiveJob) -> "JobStatusRecord":
        return cls(
            owner_id=row.owner_id,
            job_id=row.job_id,
            state=JobState(row.state),
            detail=row.detail,
            updated_at=as_utc(row.updated_at),
            version=row.version,
        )
