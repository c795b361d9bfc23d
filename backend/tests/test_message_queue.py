"""
NoteKeeper Backend — Message Queue Tests
==========================================

What we test:
    ✅ Send → receive → delete
    ✅ Received messages stay hidden until their visibility timeout lapses
    ✅ Redelivery bumps dequeue_count and invalidates the old pop receipt
    ✅ Poison queue hand-off
    ✅ Queues with different names do not see each other's messages
"""

import asyncio

import pytest

from notekeeper.services.message_queue import MessageQueue


@pytest.fixture
def queue(container):
    return container.archive_queue


class TestSendReceive:

    @pytest.mark.asyncio
    async def test_round_trip(self, queue):
        message_id = await queue.send("hello")

        [message] = await queue.receive()
        assert message.message_id == message_id
        assert message.body == "hello"
        assert message.dequeue_count == 1

        assert await queue.delete(message) is True
        assert await queue.receive() == []
        assert await queue.approximate_count() == 0

    @pytest.mark.asyncio
    async def test_oldest_first_and_batch_limit(self, queue):
        for body in ("one", "two", "three"):
            await queue.send(body)

        batch = await queue.receive(max_messages=2)

        assert [m.body for m in batch] == ["one", "two"]
        assert [m.body for m in await queue.receive(max_messages=5)] == ["three"]

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        assert await queue.receive(max_messages=3) == []

    @pytest.mark.asyncio
    async def test_queues_are_isolated(self, container, queue):
        other = MessageQueue(container.engine, container.session_factory, "other-queue")
        await queue.send("for archive queue")

        assert await other.receive() == []
        assert await other.approximate_count() == 0
        assert await queue.approximate_count() == 1


class TestVisibility:

    @pytest.mark.asyncio
    async def test_hidden_while_invisible(self, queue):
        await queue.send("job")
        [first] = await queue.receive(visibility_timeout=60)

        assert await queue.receive() == []
        # Still counted while in flight
        assert await queue.approximate_count() == 1
        assert await queue.delete(first) is True

    @pytest.mark.asyncio
    async def test_redelivery_after_timeout(self, queue):
        await queue.send("job")
        [first] = await queue.receive(visibility_timeout=0)
        await asyncio.sleep(0.01)

        [second] = await queue.receive(visibility_timeout=60)

        assert second.message_id == first.message_id
        assert second.dequeue_count == 2
        assert second.pop_receipt != first.pop_receipt

        # The first delivery's receipt is stale now
        assert await queue.delete(first) is False
        assert await queue.delete(second) is True


class TestPoison:

    @pytest.mark.asyncio
    async def test_move_to_poison(self, queue):
        await queue.send("bad job")
        [message] = await queue.receive()

        assert await queue.move_to_poison(message) is True

        assert await queue.approximate_count() == 0
        poison = queue.poison_queue()
        assert poison.queue_name == "attachment-zip-requests-poison"
        [parked] = await poison.receive()
        assert parked.body == "bad job"
        assert parked.dequeue_count == message.dequeue_count + 1

    @pytest.mark.asyncio
    async def test_move_with_stale_receipt(self, queue):
        await queue.send("job")
        [message] = await queue.receive()
        await queue.delete(message)

        assert await queue.move_to_poison(message) is False
        assert await queue.poison_queue().approximate_count() == 0
