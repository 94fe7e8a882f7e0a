"""Client-side scope for viewing one bonfire."""

from __future__ import annotations

import logging
from typing import List, Optional

from bonfire.client.sampler import LocationSampler
from bonfire.domain.messages.models import Message
from bonfire.domain.messages.stream import MessageListener, MessageSource, MessageStream
from bonfire.domain.presence.heartbeat import PresenceHeartbeat, PresenceTouch

logger = logging.getLogger(__name__)


class SessionView:
	"""Owns the message stream, the presence heartbeat and the sampler's
	owner-location side effect for as long as the view is open.

	The sampler itself is device-wide and keeps running after ``close``.
	"""

	def __init__(
		self,
		bonfire_id: str,
		user_id: str,
		*,
		source: MessageSource,
		touch: PresenceTouch,
		sampler: Optional[LocationSampler] = None,
		on_message: Optional[MessageListener] = None,
		heartbeat_interval: Optional[float] = None,
	) -> None:
		self.bonfire_id = bonfire_id
		self.user_id = user_id
		self.stream = MessageStream(bonfire_id, source, on_message=on_message)
		self.heartbeat = PresenceHeartbeat(bonfire_id, user_id, touch, interval=heartbeat_interval)
		self._sampler = sampler
		self._open = False

	@property
	def is_open(self) -> bool:
		return self._open

	@property
	def messages(self) -> List[Message]:
		return self.stream.snapshot()

	async def open(self) -> "SessionView":
		if self._open:
			return self
		await self.stream.start()
		self.heartbeat.start()
		if self._sampler is not None:
			self._sampler.set_owner_updates(True)
		self._open = True
		logger.debug("session view opened bonfire=%s user=%s", self.bonfire_id, self.user_id)
		return self

	async def close(self) -> None:
		if not self._open:
			return
		self._open = False
		if self._sampler is not None:
			self._sampler.set_owner_updates(False)
		await self.heartbeat.stop()
		await self.stream.close()
		logger.debug("session view closed bonfire=%s user=%s", self.bonfire_id, self.user_id)

	async def __aenter__(self) -> "SessionView":
		return await self.open()

	async def __aexit__(self, *exc_info) -> None:
		await self.close()
