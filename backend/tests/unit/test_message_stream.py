import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bonfire.domain.messages.models import Message
from bonfire.domain.messages.stream import MessageStream

T0 = datetime(2026, 3, 14, 10, 0, 0, tzinfo=timezone.utc)


def _message(message_id, seconds, bonfire_id="b1"):
    return Message(
        id=message_id,
        bonfire_id=bonfire_id,
        sender_id="u1",
        type="text",
        content=f"hello {message_id}",
        created_at=T0 + timedelta(seconds=seconds),
    )


class QueueSubscription:
    def __init__(self):
        self.queue = asyncio.Queue()
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self.queue.get()
            if item is None:
                return
            yield item

    async def aclose(self):
        self.closed = True


class FakeSource:
    def __init__(self, history):
        self.history = list(history)
        self.calls = []
        self.subscriptions = []

    async def subscribe(self, bonfire_id):
        self.calls.append("subscribe")
        subscription = QueueSubscription()
        self.subscriptions.append(subscription)
        return subscription

    async def fetch_messages(self, bonfire_id):
        self.calls.append("fetch")
        return list(self.history)


@pytest.mark.asyncio
async def test_duplicate_ids_are_ignored():
    stream = MessageStream("b1")
    assert await stream.insert(_message("m1", 1))
    assert not await stream.insert(_message("m1", 1))
    assert len(stream) == 1


@pytest.mark.asyncio
async def test_out_of_order_arrivals_are_sorted():
    stream = MessageStream("b1")
    added = await stream.merge([_message("m3", 30), _message("m1", 10), _message("m2", 20)])
    assert added == 3
    assert [m.id for m in stream.snapshot()] == ["m1", "m2", "m3"]


@pytest.mark.asyncio
async def test_equal_timestamps_keep_arrival_order():
    stream = MessageStream("b1")
    await stream.merge([_message("late", 5), _message("a", 1), _message("b", 1)])
    assert [m.id for m in stream.snapshot()] == ["a", "b", "late"]


@pytest.mark.asyncio
async def test_messages_for_other_bonfires_are_rejected():
    stream = MessageStream("b1")
    assert not await stream.insert(_message("m1", 1, bonfire_id="b2"))
    assert len(stream) == 0


@pytest.mark.asyncio
async def test_concurrent_inserts_do_not_duplicate():
    stream = MessageStream("b1")
    message = _message("m1", 1)
    results = await asyncio.gather(*(stream.insert(message) for _ in range(10)))
    assert results.count(True) == 1
    assert len(stream) == 1


@pytest.mark.asyncio
async def test_start_subscribes_before_fetching_and_absorbs_overlap():
    source = FakeSource([_message("m1", 1), _message("m2", 2)])
    received = []

    async def on_message(message):
        received.append(message.id)

    stream = MessageStream("b1", source, on_message=on_message)
    await stream.start()
    try:
        assert source.calls == ["subscribe", "fetch"]
        live = source.subscriptions[0]
        # m2 raced through both paths; m3 is genuinely new
        await live.queue.put(_message("m2", 2))
        await live.queue.put(_message("m3", 3))
        for _ in range(50):
            if len(stream) == 3:
                break
            await asyncio.sleep(0.01)
        assert [m.id for m in stream.snapshot()] == ["m1", "m2", "m3"]
        assert received == ["m1", "m2", "m3"]
    finally:
        await stream.close()
    assert source.subscriptions[0].closed
    assert not stream.running


@pytest.mark.asyncio
async def test_listener_failure_does_not_break_insert():
    async def on_message(message):
        raise RuntimeError("render failed")

    stream = MessageStream("b1", on_message=on_message)
    assert await stream.insert(_message("m1", 1))
    assert len(stream) == 1


@pytest.mark.asyncio
async def test_reconnects_after_feed_ends():
    source = FakeSource([_message("m1", 1)])
    stream = MessageStream("b1", source, reconnect_delay=0.01)
    await stream.start()
    try:
        await source.subscriptions[0].queue.put(None)
        for _ in range(100):
            if len(source.subscriptions) >= 2:
                break
            await asyncio.sleep(0.01)
        assert len(source.subscriptions) >= 2
        assert source.calls[:4] == ["subscribe", "fetch", "subscribe", "fetch"]
        assert len(stream) == 1
    finally:
        await stream.close()


@pytest.mark.asyncio
async def test_clear_empties_the_sequence():
    stream = MessageStream("b1")
    await stream.insert(_message("m1", 1))
    await stream.clear()
    assert stream.snapshot() == []
    assert await stream.insert(_message("m1", 1))
