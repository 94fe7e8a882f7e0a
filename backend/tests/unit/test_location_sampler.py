import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bonfire.client.notifier import DiscoveryNotifier
from bonfire.client.sampler import LocationSample, LocationSampler
from bonfire.domain.rendezvous.models import NearbyBonfire

T0 = datetime(2026, 3, 14, 10, 0, 0, tzinfo=timezone.utc)
LAT, LON = 45.5048, -73.5772


def _sample(seconds=0, north_m=0.0):
    # ~111_320 m per degree of latitude
    return LocationSample(lat=LAT + north_m / 111_320, lon=LON, taken_at=T0 + timedelta(seconds=seconds))


class FakeGateway:
    def __init__(self, candidates=None, fail_updates=False):
        self.candidates = candidates or []
        self.fail_updates = fail_updates
        self.updates = []
        self.searches = []

    async def update_location(self, lat, lon, accuracy=None):
        self.updates.append((lat, lon))
        if self.fail_updates:
            raise RuntimeError("offline")
        return True

    async def find_nearby(self, lat, lon, radius_m=None):
        self.searches.append((lat, lon, radius_m))
        return list(self.candidates)


def _sampler(gateway, **kwargs):
    async def provider():
        return None

    return LocationSampler(provider, gateway, DiscoveryNotifier(), **kwargs)


def test_first_fix_is_always_emitted():
    sampler = _sampler(FakeGateway())
    assert sampler.should_emit(_sample())


@pytest.mark.asyncio
async def test_emits_on_distance_or_elapsed_time():
    gateway = FakeGateway()
    sampler = _sampler(gateway)
    assert await sampler.process(_sample(0))
    assert not await sampler.process(_sample(10, north_m=5))
    assert await sampler.process(_sample(12, north_m=25))
    assert not await sampler.process(_sample(20, north_m=25))
    assert await sampler.process(_sample(42, north_m=25))
    assert len(gateway.searches) == 3
    assert gateway.searches[0][2] == 50


@pytest.mark.asyncio
async def test_owner_updates_only_while_enabled():
    gateway = FakeGateway()
    sampler = _sampler(gateway)
    await sampler.process(_sample(0))
    assert gateway.updates == []

    sampler.set_owner_updates(True)
    await sampler.process(_sample(31))
    assert len(gateway.updates) == 1

    sampler.set_owner_updates(False)
    await sampler.process(_sample(62))
    assert len(gateway.updates) == 1


@pytest.mark.asyncio
async def test_update_failure_does_not_block_discovery():
    candidate = NearbyBonfire(
        id="b1",
        name="Quad fire",
        description=None,
        creator_id="owner",
        distance_meters=8.0,
        participant_count=2,
        has_pin=False,
        expires_at=T0 + timedelta(hours=12),
        proximity_radius_meters=50,
    )
    gateway = FakeGateway(candidates=[candidate], fail_updates=True)
    sampler = _sampler(gateway)
    sampler.set_owner_updates(True)
    assert await sampler.process(_sample(0))
    assert "b1" in sampler.notifier


@pytest.mark.asyncio
async def test_run_loop_polls_provider_and_survives_errors():
    gateway = FakeGateway()
    fixes = [RuntimeError("gps unavailable"), _sample(0), _sample(1)]

    async def provider():
        item = fixes.pop(0) if fixes else None
        if isinstance(item, Exception):
            raise item
        return item

    sampler = LocationSampler(provider, gateway, poll_seconds=0.01)
    sampler.start()
    try:
        for _ in range(100):
            if not fixes:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.02)
    finally:
        await sampler.stop()
    assert not sampler.running
    assert len(gateway.searches) == 1
