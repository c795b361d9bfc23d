"""
NoteKeeper Backend — Message Queue Adapter
============================================

What:  A named, at-least-once message queue stored in the `queue_messages`
       table of the main database.
How:   `send` inserts a row. `receive` claims visible rows by bumping
       `visible_at` by the visibility timeout and issuing a fresh pop receipt;
       the claim is an UPDATE guarded by the previous receipt, so two
       consumers never both win the same delivery. `delete` needs the current
       receipt. A message that is received but never deleted becomes visible
       again once its timeout lapses.
Who:   Job dispatcher (send), queue consumer process (receive/delete/poison),
       health route (approximate depth).

Message bodies are opaque text. The archive queue carries base64-wrapped JSON
(see `notekeeper.schemas.archive.ArchiveRequest`).
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from notekeeper.database import session_scope
from notekeeper.exceptions import QueueError
from notekeeper.models.archive_job import as_utc
from notekeeper.models.queue_message import QueueMessage

logger = logging.getLogger(__name__)

POISON_SUFFIX = "-poison"


@dataclass(frozen=True)
class ReceivedMessage:
    """One delivery of a message. `pop_receipt` is valid until the next delivery."""

    message_id: str
    queue_name: str
    body: str
    pop_receipt: str
    dequeue_count: int
    inserted_at: datetime


class MessageQueue:
    """Handle on one named queue."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        queue_name: str,
        visibility_timeout: int = 300,
    ):
        self._engine = engine
        self._session_factory = session_factory
        self.queue_name = queue_name
        self.visibility_timeout = visibility_timeout

    @property
    def poison_queue_name(self) -> str:
        return f"{self.queue_name}{POISON_SUFFIX}"

    def poison_queue(self) -> "MessageQueue":
        return MessageQueue(
            self._engine,
            self._session_factory,
            self.poison_queue_name,
            self.visibility_timeout,
        )

    async def create_if_not_exists(self) -> None:
        """Make sure the backing table exists. Cheap when it already does."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(QueueMessage.__table__.create, checkfirst=True)
        except SQLAlchemyError as e:
            raise self._queue_error("create queue", e)

    async def send(self, body: str) -> str:
        """Publish a message; returns its id. The message is visible immediately."""
        now = datetime.now(timezone.utc)
        message = QueueMessage(
            queue_name=self.queue_name,
            body=body,
            inserted_at=now,
            visible_at=now,
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(message)
        except SQLAlchemyError as e:
            raise self._queue_error("send message to", e)
        logger.debug("Message %s sent to queue %s", message.id, self.queue_name)
        return message.id

    async def receive(
        self,
        max_messages: int = 1,
        visibility_timeout: Optional[int] = None,
    ) -> List[ReceivedMessage]:
        """
        Claim up to `max_messages` visible messages, oldest first.

        Each claimed message is hidden for `visibility_timeout` seconds (the
        queue default when None) and its `dequeue_count` is incremented.
        Returns an empty list when nothing is visible.
        """
        timeout = visibility_timeout if visibility_timeout is not None else self.visibility_timeout
        now = datetime.now(timezone.utc)
        claimed: List[ReceivedMessage] = []
        try:
            async with session_scope(self._session_factory) as session:
                candidates = (await session.execute(
                    select(
                        QueueMessage.id,
                        QueueMessage.body,
                        QueueMessage.pop_receipt,
                        QueueMessage.dequeue_count,
                        QueueMessage.inserted_at,
                    )
                    .where(
                        QueueMessage.queue_name == self.queue_name,
                        QueueMessage.visible_at <= now,
                    )
                    .order_by(QueueMessage.inserted_at, QueueMessage.id)
                    .limit(max_messages)
                )).all()

                for row in candidates:
                    receipt = uuid.uuid4().hex
                    result = await session.execute(
                        update(QueueMessage)
                        .where(
                            QueueMessage.id == row.id,
                            QueueMessage.pop_receipt == row.pop_receipt,
                        )
                        .values(
                            visible_at=now + timedelta(seconds=timeout),
                            pop_receipt=receipt,
                            dequeue_count=row.dequeue_count + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        # Another consumer claimed it between select and update
                        continue
                    claimed.append(ReceivedMessage(
                        message_id=row.id,
                        queue_name=self.queue_name,
                        body=row.body,
                        pop_receipt=receipt,
                        dequeue_count=row.dequeue_count + 1,
                        inserted_at=as_utc(row.inserted_at),
                    ))
        except SQLAlchemyError as e:
            raise self._queue_error("receive from", e)

        if claimed:
            logger.debug("Received %d message(s) from queue %s", len(claimed), self.queue_name)
        return claimed

    async def delete(self, message: ReceivedMessage) -> bool:
        """
        Remove a received message for good.

        Returns False if the receipt is stale (the message timed out and was
        delivered again, or was already deleted).
        """
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    delete(QueueMessage)
                    .where(
                        QueueMessage.id == message.message_id,
                        QueueMessage.pop_receipt == message.pop_receipt,
                    )
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            raise self._queue_error("delete message from", e)

        if result.rowcount != 1:
            logger.warning(
                "Message %s on queue %s was not deleted: pop receipt is stale",
                message.message_id, self.queue_name,
            )
            return False
        return True

    async def move_to_poison(self, message: ReceivedMessage) -> bool:
        """
        Re-home a message onto `<queue>-poison` in one transaction.

        Returns False (and moves nothing) if the receipt is stale.
        """
        now = datetime.now(timezone.utc)
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    delete(QueueMessage)
                    .where(
                        QueueMessage.id == message.message_id,
                        QueueMessage.pop_receipt == message.pop_receipt,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return False
                session.add(QueueMessage(
                    queue_name=self.poison_queue_name,
                    body=message.body,
                    inserted_at=now,
                    visible_at=now,
                    dequeue_count=message.dequeue_count,
                ))
        except SQLAlchemyError as e:
            raise self._queue_error("move poison message from", e)

        logger.warning(
            "Message %s moved to %s after %d deliveries",
            message.message_id, self.poison_queue_name, message.dequeue_count,
        )
        return True

    async def approximate_count(self) -> int:
        """Number of messages on the queue, visible or not."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(func.count(QueueMessage.id))
                    .where(QueueMessage.queue_name == self.queue_name)
                )
                return result.scalar() or 0
        except SQLAlchemyError as e:
            raise self._queue_error("count messages on", e)

    def _queue_error(self, action: str, error: Exception) -> QueueError:
        logger.error("Failed to %s queue %s: %s", action, self.queue_name, error)
        return QueueError(
            message=f"Failed to {action} queue {self.queue_name}",
            context={"queue": self.queue_name, "error_type": type(error).__name__},
        )
