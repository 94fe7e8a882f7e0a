"""Live message feed over a per-bonfire Redis stream.

Every persisted message is appended to ``bonfire:{id}:messages``. A feed
remembers the stream tail at ``open`` time and yields only entries after it,
so consumers pair it with a bulk fetch (see ``MessageStream``).
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, List, Mapping, Optional

from bonfire.domain.messages.models import Message
from bonfire.domain.messages.repo import MessageRepository
from bonfire.infra.redis import redis_client

logger = logging.getLogger(__name__)

STREAM_MAXLEN = 1000


def stream_key(bonfire_id: str) -> str:
	return f"bonfire:{bonfire_id}:messages"


async def publish(message: Message) -> str:
	return await redis_client.xadd(
		stream_key(message.bonfire_id),
		{"payload": json.dumps(message.to_dict())},
		maxlen=STREAM_MAXLEN,
		approximate=True,
	)


def _decode(fields: Mapping[Any, Any]) -> Optional[Message]:
	raw = fields.get("payload") or fields.get(b"payload")
	if raw is None:
		return None
	if isinstance(raw, bytes):
		raw = raw.decode("utf-8")
	return Message.from_dict(json.loads(raw))


class RedisMessageFeed:
	"""Tail of one bonfire's message stream."""

	def __init__(
		self,
		bonfire_id: str,
		client=None,
		*,
		batch_size: int = 100,
		poll_interval: float = 0.2,
	) -> None:
		self.bonfire_id = bonfire_id
		self._client = client or redis_client
		self._key = stream_key(bonfire_id)
		self._batch_size = batch_size
		self._poll_interval = poll_interval
		self.last_id: Optional[str] = None
		self._closed = False

	async def open(self) -> "RedisMessageFeed":
		latest = await self._client.xrevrange(self._key, count=1)
		self.last_id = latest[0][0] if latest else "0-0"
		return self

	def __aiter__(self) -> AsyncIterator[Message]:
		return self._iterate()

	async def _iterate(self) -> AsyncIterator[Message]:
		if self.last_id is None:
			await self.open()
		while not self._closed:
			batches = await self._client.xread({self._key: self.last_id}, count=self._batch_size)
			if not batches:
				await asyncio.sleep(self._poll_interval)
				continue
			for _stream, entries in batches:
				for entry_id, fields in entries:
					self.last_id = entry_id
					try:
						message = _decode(fields)
					except (KeyError, TypeError, ValueError):
						logger.warning("discarding malformed entry %s on %s", entry_id, self._key)
						continue
					if message is not None:
						yield message

	async def aclose(self) -> None:
		self._closed = True


class RepositoryMessageSource:
	"""Bulk history from the repository plus the Redis live feed."""

	def __init__(self, repository: Optional[MessageRepository] = None, *, poll_interval: float = 0.2) -> None:
		self._repo = repository or MessageRepository()
		self._poll_interval = poll_interval

	async def fetch_messages(self, bonfire_id: str) -> List[Message]:
		return await self._repo.list_messages(bonfire_id)

	async def subscribe(self, bonfire_id: str) -> RedisMessageFeed:
		return await RedisMessageFeed(bonfire_id, poll_interval=self._poll_interval).open()
