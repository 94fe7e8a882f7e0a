"""Device location sampling with distance/time debounce.

Each emitted sample drives two independent side effects: moving the user's
own bonfire (only while a session view enables it) and proximity discovery.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol

from bonfire.client.notifier import DiscoveryNotifier
from bonfire.domain.rendezvous import clock
from bonfire.domain.rendezvous.matcher import haversine
from bonfire.domain.rendezvous.models import NearbyBonfire
from bonfire.settings import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class LocationSample:
	lat: float
	lon: float
	taken_at: datetime
	accuracy: Optional[float] = None


PositionProvider = Callable[[], Awaitable[Optional[LocationSample]]]


class SamplerGateway(Protocol):
	async def update_location(self, lat: float, lon: float, accuracy: Optional[float] = None) -> bool:
		...

	async def find_nearby(self, lat: float, lon: float, radius_m: Optional[float] = None) -> List[NearbyBonfire]:
		...


class LocationSampler:
	def __init__(
		self,
		provider: PositionProvider,
		gateway: SamplerGateway,
		notifier: Optional[DiscoveryNotifier] = None,
		*,
		radius_m: Optional[float] = None,
		min_distance_m: Optional[float] = None,
		max_interval_seconds: Optional[float] = None,
		poll_seconds: Optional[float] = None,
	) -> None:
		self._provider = provider
		self._gateway = gateway
		self.notifier = notifier or DiscoveryNotifier()
		self._radius_m = float(radius_m if radius_m is not None else settings.discovery_radius_m)
		self._min_distance_m = float(min_distance_m if min_distance_m is not None else settings.sampler_min_distance_m)
		self._max_interval = float(
			max_interval_seconds if max_interval_seconds is not None else settings.sampler_max_interval_seconds
		)
		self._poll_seconds = max(
			0.01, float(poll_seconds if poll_seconds is not None else settings.sampler_poll_seconds)
		)
		self._last: Optional[LocationSample] = None
		self._owner_updates = False
		self._task: Optional[asyncio.Task] = None

	@property
	def last_sample(self) -> Optional[LocationSample]:
		return self._last

	@property
	def owner_updates_enabled(self) -> bool:
		return self._owner_updates

	def set_owner_updates(self, enabled: bool) -> None:
		self._owner_updates = bool(enabled)

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def should_emit(self, sample: LocationSample) -> bool:
		last = self._last
		if last is None:
			return True
		moved = haversine(last.lat, last.lon, sample.lat, sample.lon)
		if moved >= self._min_distance_m:
			return True
		elapsed = (clock.as_utc(sample.taken_at) - clock.as_utc(last.taken_at)).total_seconds()
		return elapsed >= self._max_interval

	async def process(self, sample: LocationSample) -> bool:
		"""Handle one fix; return True when it was emitted."""
		if not self.should_emit(sample):
			return False
		self._last = sample
		await self._emit(sample)
		return True

	async def _emit(self, sample: LocationSample) -> None:
		jobs = [self._discover(sample)]
		if self._owner_updates:
			jobs.append(self._update_owner(sample))
		results = await asyncio.gather(*jobs, return_exceptions=True)
		for result in results:
			if isinstance(result, BaseException) and not isinstance(result, Exception):
				raise result
			if isinstance(result, Exception):
				logger.warning("location side effect failed: %s", type(result).__name__, exc_info=result)

	async def _update_owner(self, sample: LocationSample) -> None:
		await self._gateway.update_location(sample.lat, sample.lon, sample.accuracy)

	async def _discover(self, sample: LocationSample) -> None:
		candidates = await self._gateway.find_nearby(sample.lat, sample.lon, self._radius_m)
		await self.notifier.process(candidates)

	def start(self) -> None:
		if self.running:
			return
		self._task = asyncio.create_task(self._loop(), name="location-sampler")

	async def _loop(self) -> None:
		while True:
			try:
				sample = await self._provider()
				if sample is not None:
					await self.process(sample)
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.warning("location sampling failed", exc_info=True)
			await asyncio.sleep(self._poll_seconds)

	async def stop(self) -> None:
		task, self._task = self._task, None
		if task is None:
			return
		task.cancel()
		with suppress(asyncio.CancelledError):
			await task
