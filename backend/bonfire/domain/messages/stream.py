"""Ordered, duplicate-free view of one bonfire's messages.

The stream merges a bulk history fetch with a live delta feed. Redelivered
messages (subscription race, reconnects) are dropped by id, and the sequence
stays sorted by ``created_at``; equal timestamps keep their arrival order.
All mutation goes through ``insert`` under a single lock.
"""

from __future__ import annotations

import asyncio
import bisect
import logging
from contextlib import suppress
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Protocol, Set

from bonfire.domain.messages.models import Message

logger = logging.getLogger(__name__)

MessageListener = Callable[[Message], Awaitable[None]]


class Subscription(Protocol):
	def __aiter__(self) -> AsyncIterator[Message]:
		...

	async def aclose(self) -> None:
		...


class MessageSource(Protocol):
	async def fetch_messages(self, bonfire_id: str) -> List[Message]:
		...

	async def subscribe(self, bonfire_id: str) -> Subscription:
		...


def _created_at(message: Message):
	return message.created_at


class MessageStream:
	def __init__(
		self,
		bonfire_id: str,
		source: Optional[MessageSource] = None,
		*,
		on_message: Optional[MessageListener] = None,
		reconnect_delay: float = 1.0,
		max_reconnect_delay: float = 30.0,
	) -> None:
		self.bonfire_id = bonfire_id
		self._source = source
		self._on_message = on_message
		self._reconnect_delay = reconnect_delay
		self._max_reconnect_delay = max_reconnect_delay
		self._lock = asyncio.Lock()
		self._items: List[Message] = []
		self._ids: Set[str] = set()
		self._subscription: Optional[Subscription] = None
		self._task: Optional[asyncio.Task] = None

	def __len__(self) -> int:
		return len(self._items)

	def snapshot(self) -> List[Message]:
		return list(self._items)

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	async def insert(self, message: Message) -> bool:
		"""Merge one message; return False when it was already present or foreign."""
		if message.bonfire_id != self.bonfire_id:
			return False
		async with self._lock:
			if message.id in self._ids:
				return False
			bisect.insort_right(self._items, message, key=_created_at)
			self._ids.add(message.id)
		if self._on_message is not None:
			try:
				await self._on_message(message)
			except Exception:
				logger.exception("message listener failed bonfire=%s message=%s", self.bonfire_id, message.id)
		return True

	async def merge(self, messages: Iterable[Message]) -> int:
		added = 0
		for message in messages:
			if await self.insert(message):
				added += 1
		return added

	async def start(self) -> None:
		"""Subscribe to the live feed, then backfill history."""
		if self._source is None:
			raise RuntimeError("message stream has no source")
		if self.running:
			return
		subscription = await self._connect()
		self._task = asyncio.create_task(self._run(subscription), name=f"message-stream:{self.bonfire_id}")

	async def _connect(self) -> Subscription:
		source = self._source
		if source is None:
			raise RuntimeError("message stream has no source")
		# Subscribe before fetching so nothing inserted in between is missed.
		subscription = await source.subscribe(self.bonfire_id)
		self._subscription = subscription
		try:
			history = await source.fetch_messages(self.bonfire_id)
		except Exception:
			await subscription.aclose()
			self._subscription = None
			raise
		added = await self.merge(history)
		logger.debug("message stream backfilled bonfire=%s added=%s", self.bonfire_id, added)
		return subscription

	async def _run(self, subscription: Subscription) -> None:
		delay = self._reconnect_delay
		while True:
			try:
				async for message in subscription:
					await self.insert(message)
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.warning("message feed dropped bonfire=%s; reconnecting", self.bonfire_id, exc_info=True)
			with suppress(Exception):
				await subscription.aclose()
			self._subscription = None
			await asyncio.sleep(delay)
			delay = min(delay * 2, self._max_reconnect_delay)
			try:
				subscription = await self._connect()
				delay = self._reconnect_delay
			except asyncio.CancelledError:
				raise
			except Exception:
				logger.warning("message feed reconnect failed bonfire=%s", self.bonfire_id, exc_info=True)
				subscription = _EmptySubscription()

	async def close(self) -> None:
		task, self._task = self._task, None
		if task is not None:
			task.cancel()
			with suppress(asyncio.CancelledError):
				await task
		subscription, self._subscription = self._subscription, None
		if subscription is not None:
			await subscription.aclose()

	async def clear(self) -> None:
		async with self._lock:
			self._items.clear()
			self._ids.clear()


class _EmptySubscription:
	"""Placeholder after a failed reconnect; ends immediately so the loop retries."""

	def __aiter__(self) -> AsyncIterator[Message]:
		return self._iterate()

	async def _iterate(self) -> AsyncIterator[Message]:
		return
		yield  # pragma: no cover

	async def aclose(self) -> None:
		return None
