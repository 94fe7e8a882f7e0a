import asyncio
from datetime import datetime, timezone

import pytest

from bonfire.domain.presence import PresenceHeartbeat, touch_presence
from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.domain.rendezvous.schemas import BonfireCreateRequest
from bonfire.domain.rendezvous.service import BonfireService
from bonfire.infra.auth import AuthenticatedUser

T0 = datetime(2026, 3, 14, 10, 0, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_heartbeat_ticks_until_stopped():
    calls = []

    async def touch(bonfire_id, user_id, ts):
        calls.append((bonfire_id, user_id))

    heartbeat = PresenceHeartbeat("b1", "u1", touch, interval=0.01)
    heartbeat.start()
    await asyncio.sleep(0.05)
    await heartbeat.stop()
    seen = len(calls)
    await asyncio.sleep(0.03)

    assert seen >= 2
    assert len(calls) == seen
    assert calls[0] == ("b1", "u1")
    assert not heartbeat.running


@pytest.mark.asyncio
async def test_heartbeat_failures_are_logged_not_raised(caplog):
    async def touch(bonfire_id, user_id, ts):
        raise ConnectionError("offline")

    heartbeat = PresenceHeartbeat("b1", "u1", touch, interval=0.01)
    assert not await heartbeat.tick()
    heartbeat.start()
    await asyncio.sleep(0.03)
    assert heartbeat.running
    await heartbeat.stop()
    assert heartbeat.failures >= 2
    assert any("presence heartbeat failed" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_hung_touch_times_out():
    async def touch(bonfire_id, user_id, ts):
        await asyncio.sleep(10)

    heartbeat = PresenceHeartbeat("b1", "u1", touch, interval=1, timeout=0.01)
    assert not await heartbeat.tick()
    assert heartbeat.failures == 1


@pytest.mark.asyncio
async def test_touch_presence_updates_last_seen():
    owner = AuthenticatedUser(id="owner")
    summary = await BonfireService().create_bonfire(
        owner,
        BonfireCreateRequest(name="Quad fire", latitude=45.5, longitude=-73.57),
        now=T0,
    )
    later = datetime(2026, 3, 14, 10, 30, tzinfo=timezone.utc)
    assert await touch_presence(summary.id, "owner", later)
    participant = await BonfireRepository().get_participant(summary.id, "owner")
    assert participant.last_seen_at == later

    assert not await touch_presence(summary.id, "stranger", later)
