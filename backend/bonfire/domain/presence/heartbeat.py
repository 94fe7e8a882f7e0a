"""Periodic best-effort liveness signal for one (bonfire, user) pair."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import datetime
from typing import Awaitable, Callable, Optional

from bonfire.domain.rendezvous import clock
from bonfire.settings import settings

logger = logging.getLogger(__name__)

PresenceTouch = Callable[[str, str, datetime], Awaitable[object]]


class PresenceHeartbeat:
	"""Fire-and-forget presence ticks.

	A failing tick is logged and skipped; the next tick is the only retry.
	"""

	def __init__(
		self,
		bonfire_id: str,
		user_id: str,
		touch: PresenceTouch,
		*,
		interval: Optional[float] = None,
		timeout: Optional[float] = None,
		now: Callable[[], datetime] = clock.utcnow,
	) -> None:
		self.bonfire_id = bonfire_id
		self.user_id = user_id
		self._touch = touch
		self._interval = max(0.01, float(interval if interval is not None else settings.presence_interval_seconds))
		self._timeout = float(timeout if timeout is not None else settings.client_timeout_seconds)
		self._now = now
		self._task: Optional[asyncio.Task] = None
		self.ticks = 0
		self.failures = 0

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		if self.running:
			return
		self._task = asyncio.create_task(self._loop(), name=f"presence-heartbeat:{self.bonfire_id}:{self.user_id}")

	async def tick(self) -> bool:
		self.ticks += 1
		try:
			await asyncio.wait_for(self._touch(self.bonfire_id, self.user_id, self._now()), timeout=self._timeout)
			return True
		except asyncio.CancelledError:
			raise
		except Exception:
			self.failures += 1
			logger.warning(
				"presence heartbeat failed bonfire=%s user=%s",
				self.bonfire_id,
				self.user_id,
				exc_info=True,
			)
			return False

	async def _loop(self) -> None:
		while True:
			await self.tick()
			await asyncio.sleep(self._interval)

	async def stop(self) -> None:
		task, self._task = self._task, None
		if task is None:
			return
		task.cancel()
		with suppress(asyncio.CancelledError):
			await task
