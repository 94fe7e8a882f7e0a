import asyncio

import httpx
import pytest
from socketio import exceptions as socketio_exceptions

from bonfire.client.http import BonfireClient, PollingMessageSource, PollingSubscription
from bonfire.client.realtime import NAMESPACE, SocketMessageSource, SocketSubscription
from bonfire.domain.messages.stream import MessageStream


class FakeSocketClient:
    def __init__(self, ack=None, refuse_connect=False):
        self.handlers = {}
        self.ack = {"ok": True} if ack is None else ack
        self.refuse_connect = refuse_connect
        self.connected_with = None
        self.calls = []
        self.disconnected = False

    def on(self, event, handler, namespace=None):
        self.handlers[(namespace, event)] = handler

    async def connect(self, url, auth=None, namespaces=None):
        if self.refuse_connect:
            raise socketio_exceptions.ConnectionError("refused")
        self.connected_with = (url, auth, namespaces)

    async def call(self, event, data, namespace=None, timeout=None):
        self.calls.append((event, data, namespace))
        return self.ack

    async def disconnect(self):
        self.disconnected = True

    async def push(self, event, *args):
        await self.handlers[(NAMESPACE, event)](*args)


def _payload(message_id, bonfire_id="b1", minute=1):
    return {
        "id": message_id,
        "bonfire_id": bonfire_id,
        "sender_id": "u2",
        "type": "text",
        "content": "hey",
        "created_at": f"2026-03-14T10:{minute:02d}:00+00:00",
    }


def _http_client(items=()):
    def handler(request):
        return httpx.Response(200, json={"items": list(items)})

    return BonfireClient("http://bonfire.test", user_id="u1", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_subscription_joins_room_and_yields_pushed_messages():
    fake = FakeSocketClient()
    subscription = await SocketSubscription(
        "b1", url="http://bonfire.test", auth={"userId": "u1"}, client_factory=lambda: fake
    ).open()

    assert fake.connected_with == ("http://bonfire.test", {"userId": "u1"}, [NAMESPACE])
    assert fake.calls == [("bonfire_join", {"bonfire_id": "b1"}, NAMESPACE)]

    await fake.push("bonfire:message", _payload("m1"))
    await fake.push("bonfire:message", _payload("x1", bonfire_id="other"))
    await fake.push("bonfire:message", _payload("m2", minute=2))

    feed = subscription.__aiter__()
    assert (await feed.__anext__()).id == "m1"
    assert (await feed.__anext__()).id == "m2"
    await feed.aclose()
    await subscription.aclose()
    assert fake.disconnected


@pytest.mark.asyncio
async def test_dropped_connection_ends_feed_with_error():
    fake = FakeSocketClient()
    subscription = await SocketSubscription(
        "b1", url="http://bonfire.test", auth={}, client_factory=lambda: fake
    ).open()

    await fake.push("disconnect", "transport close")

    with pytest.raises(ConnectionError):
        async for _ in subscription:
            pass


@pytest.mark.asyncio
async def test_refused_join_falls_back_to_polling():
    fake = FakeSocketClient(ack={"ok": False, "detail": "not_participant"})
    async with _http_client() as client:
        source = SocketMessageSource(
            client,
            fallback=PollingMessageSource(client, poll_interval=0.01),
            client_factory=lambda: fake,
        )
        subscription = await source.subscribe("b1")
        await subscription.aclose()

    assert isinstance(subscription, PollingSubscription)
    assert fake.disconnected


@pytest.mark.asyncio
async def test_unreachable_socket_falls_back_to_polling():
    async with _http_client() as client:
        source = SocketMessageSource(
            client,
            fallback=PollingMessageSource(client),
            client_factory=lambda: FakeSocketClient(refuse_connect=True),
        )
        subscription = await source.subscribe("b1")
        await subscription.aclose()

    assert isinstance(subscription, PollingSubscription)


@pytest.mark.asyncio
async def test_message_stream_merges_history_with_socket_push():
    fake = FakeSocketClient()
    async with _http_client([_payload("m1")]) as client:
        source = SocketMessageSource(
            client,
            fallback=PollingMessageSource(client),
            client_factory=lambda: fake,
        )
        stream = MessageStream("b1", source)
        await stream.start()
        await fake.push("bonfire:message", _payload("m1"))
        await fake.push("bonfire:message", _payload("m2", minute=2))
        for _ in range(100):
            if len(stream.snapshot()) == 2:
                break
            await asyncio.sleep(0.01)
        snapshot = stream.snapshot()
        await stream.close()

    assert [m.id for m in snapshot] == ["m1", "m2"]
