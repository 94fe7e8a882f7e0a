import asyncio
from datetime import datetime, timezone

import pytest

from bonfire.client.sampler import LocationSampler
from bonfire.client.session_view import SessionView
from bonfire.domain.messages.models import Message

T0 = datetime(2026, 3, 14, 10, 0, 0, tzinfo=timezone.utc)


class IdleSubscription:
    def __init__(self):
        self.closed = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        await self.closed.wait()
        return
        yield

    async def aclose(self):
        self.closed.set()


class HistorySource:
    def __init__(self):
        self.subscription = IdleSubscription()

    async def subscribe(self, bonfire_id):
        return self.subscription

    async def fetch_messages(self, bonfire_id):
        return [
            Message(id="m1", bonfire_id=bonfire_id, sender_id="u2", type="text", content="hi", created_at=T0),
        ]


class NullGateway:
    async def update_location(self, lat, lon, accuracy=None):
        return False

    async def find_nearby(self, lat, lon, radius_m=None):
        return []


@pytest.mark.asyncio
async def test_open_and_close_scope_all_session_effects():
    touches = []

    async def touch(bonfire_id, user_id, ts):
        touches.append(bonfire_id)

    async def provider():
        return None

    sampler = LocationSampler(provider, NullGateway())
    source = HistorySource()
    view = SessionView("b1", "u1", source=source, touch=touch, sampler=sampler, heartbeat_interval=0.01)

    async with view:
        assert view.is_open
        assert [m.id for m in view.messages] == ["m1"]
        assert sampler.owner_updates_enabled
        assert view.stream.running
        await asyncio.sleep(0.03)

    assert not view.is_open
    assert not sampler.owner_updates_enabled
    assert not view.heartbeat.running
    assert not view.stream.running
    assert source.subscription.closed.is_set()
    assert touches and set(touches) == {"b1"}
