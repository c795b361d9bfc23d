"""
NoteKeeper Backend — Archive Queue Consumer
=============================================

What:  The worker process: polls the archive queue and runs one
       ArchiveWorker.process_one per message, several at a time.
How:   asyncio tasks bounded by settings.worker_concurrency; no lock around
       jobs. Receives are retried with tenacity on transient queue errors.
Who:   Started as its own process:

           python -m notekeeper.worker            # run until SIGINT/SIGTERM
           python -m notekeeper.worker --once     # drain the queue and exit
           notekeeper-worker --concurrency 8      # console script

Message handling:
    ┌─────────┐  dequeue_count > max   ┌──────────────────────────────┐
    │ receive │──────────────────────▶│ move to <queue>-poison,      │
    └─────────┘                        │ job → Failed (if decodable)  │
         │                             └──────────────────────────────┘
         │ undecodable body ─────────▶ log + delete
         ▼
    process_one(request) ──▶ delete message (consumed either way)

    A worker that dies mid-job leaves the message invisible until its
    visibility timeout lapses; it is then delivered again and the job re-run.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import List, Optional, Set

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from notekeeper.config import Settings, settings as default_settings
from notekeeper.container import ServiceContainer, build_container
from notekeeper.exceptions import QueueError
from notekeeper.logging_setup import setup_logging
from notekeeper.schemas.archive import ArchiveRequest
from notekeeper.services.message_queue import ReceivedMessage

logger = logging.getLogger(__name__)


class QueueConsumer:
    """Pulls archive requests off the queue and hands them to the ArchiveWorker."""

    def __init__(self, container: ServiceContainer, concurrency: Optional[int] = None):
        self.container = container
        self.settings: Settings = container.settings
        self.queue = container.archive_queue
        self.worker = container.archive_worker
        self.concurrency = concurrency or self.settings.worker_concurrency
        self._stop = asyncio.Event()
        self._in_flight: Set[asyncio.Task] = set()

    def request_stop(self) -> None:
        if not self._stop.is_set():
            logger.info("Stop requested; finishing %d in-flight job(s)", len(self._in_flight))
        self._stop.set()

    async def run(self, once: bool = False) -> int:
        """
        Consume until stopped, or with `once` until the queue is drained.

        Returns the number of messages handled.
        """
        handled = 0
        logger.info(
            "Consuming queue %s (concurrency=%d, once=%s)",
            self.queue.queue_name, self.concurrency, once,
        )
        try:
            while not self._stop.is_set():
                free = self.concurrency - len(self._in_flight)
                messages: List[ReceivedMessage] = []
                if free > 0:
                    messages = await self._receive(free)

                for message in messages:
                    task = asyncio.create_task(self.handle_message(message))
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)
                handled += len(messages)

                if messages:
                    continue
                if once and not self._in_flight:
                    break
                await self._idle()
        finally:
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)

        logger.info("Queue consumer stopped after %d message(s)", handled)
        return handled

    async def _idle(self) -> None:
        """Wait for a slot to free up, a stop request, or the next poll."""
        waiters = [asyncio.ensure_future(self._stop.wait())]
        waiters.extend(self._in_flight)
        done, _ = await asyncio.wait(
            waiters,
            timeout=self.settings.queue_poll_interval,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if waiters[0] not in done:
            waiters[0].cancel()

    async def _receive(self, max_messages: int) -> List[ReceivedMessage]:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(QueueError),
            stop=stop_after_attempt(self.settings.retry_max_attempts),
            wait=wait_exponential_jitter(
                initial=self.settings.retry_min_wait,
                max=self.settings.retry_max_wait,
                jitter=1,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return await self.queue.receive(max_messages=max_messages)
        return []

    async def handle_message(self, message: ReceivedMessage) -> None:
        """Handle one delivery. Never raises."""
        try:
            if message.dequeue_count > self.settings.queue_max_dequeue_count:
                await self._poison(message)
                return

            try:
                request = ArchiveRequest.decode(message.body)
            except ValueError as e:
                logger.error("Discarding undecodable message %s: %s", message.message_id, e)
                await self.queue.delete(message)
                return

            logger.info(
                "Message %s: archive job %s for note %s (delivery %d)",
                message.message_id, request.job_id, request.owner_id, message.dequeue_count,
            )
            await self.worker.process_one(request)
            await self.queue.delete(message)
        except Exception as e:
            # The message becomes visible again after its timeout
            logger.error("Message %s not completed: %s", message.message_id, e, exc_info=True)

    async def _poison(self, message: ReceivedMessage) -> None:
        try:
            request: Optional[ArchiveRequest] = ArchiveRequest.decode(message.body)
        except ValueError:
            request = None

        if not await self.queue.move_to_poison(message):
            return
        if request is not None:
            await self.worker.mark_failed(
                request,
                reason=f"gave up after {message.dequeue_count} deliveries",
            )


async def run_worker(settings: Settings, once: bool = False, concurrency: Optional[int] = None) -> int:
    container = build_container(settings)
    try:
        await container.ensure_stores()
        consumer = QueueConsumer(container, concurrency=concurrency)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):  # not on Windows
                loop.add_signal_handler(sig, consumer.request_stop)

        return await consumer.run(once=once)
    finally:
        await container.dispose()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="notekeeper-worker",
        description="Process queued attachment archive jobs.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="drain the queue and exit instead of polling forever",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="messages processed at once (default: WORKER_CONCURRENCY)",
    )
    args = parser.parse_args(argv)

    settings = default_settings
    setup_logging(settings)
    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        return 2

    asyncio.run(run_worker(settings, once=args.once, concurrency=args.concurrency))
    return 0


if __name__ == "__main__":
    sys.exit(main())
