"""
NoteKeeper Backend — Queue Message Model
==========================================

What:  ORM model for the `queue_messages` table backing the message queue.
How:   One row per message. `visible_at` hides a received message until its
       visibility timeout expires; `pop_receipt` changes on every receive and
       must be presented to delete the message.
Who:   Used only by `notekeeper.services.message_queue.MessageQueue`.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notekeeper.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueMessage(Base):
    __tablename__ = "queue_messages"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
    )

    queue_name: Mapped[str] = mapped_column(String(63), nullable=False)

    # Opaque text; the archive queue stores base64-wrapped JSON
    body: Mapped[str] = mapped_column(Text, nullable=False)

    inserted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    visible_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow,
    )

    dequeue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    pop_receipt: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=lambda: uuid.uuid4().hex,
    )

    __table_args__ = (
        Index("idx_queue_messages_visible", "queue_name", "visible_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QueueMessage(id={self.id}, queue='{self.queue_name}', "
            f"dequeue_count={self.dequeue_count})>"
        )
