"""Socket.IO push feed for ``MessageStream``.

A subscription connects to the ``/bonfires`` namespace, asks to enter the
bonfire's room with ``bonfire_join`` and yields every ``bonfire:message``
payload. The client never reconnects on its own: a dropped connection ends the
iterator with an error so the stream resubscribes and backfills the gap.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Callable, List, Optional

import socketio
from socketio import exceptions as socketio_exceptions

from bonfire.domain.messages.models import Message

if TYPE_CHECKING:
	from bonfire.client.http import BonfireClient, PollingMessageSource

logger = logging.getLogger(__name__)

NAMESPACE = "/bonfires"
MESSAGE_EVENT = "bonfire:message"

_DISCONNECTED = object()


class SocketJoinRefused(RuntimeError):
	def __init__(self, bonfire_id: str, detail: str) -> None:
		super().__init__(f"bonfire_join refused for {bonfire_id}: {detail}")
		self.bonfire_id = bonfire_id
		self.detail = detail


class SocketSubscription:
	def __init__(
		self,
		bonfire_id: str,
		*,
		url: str,
		auth: dict,
		client_factory: Optional[Callable[[], Any]] = None,
		join_timeout: float = 10.0,
	) -> None:
		self.bonfire_id = bonfire_id
		self._url = url
		self._auth = auth
		self._join_timeout = join_timeout
		factory = client_factory or (lambda: socketio.AsyncClient(reconnection=False))
		self._sio = factory()
		self._queue: asyncio.Queue = asyncio.Queue()
		self._closed = False
		self._sio.on(MESSAGE_EVENT, self._on_message, namespace=NAMESPACE)
		self._sio.on("disconnect", self._on_disconnect, namespace=NAMESPACE)

	async def open(self) -> "SocketSubscription":
		await self._sio.connect(self._url, auth=self._auth, namespaces=[NAMESPACE])
		try:
			ack = await self._sio.call(
				"bonfire_join",
				{"bonfire_id": self.bonfire_id},
				namespace=NAMESPACE,
				timeout=self._join_timeout,
			)
		except socketio_exceptions.TimeoutError:
			await self._sio.disconnect()
			raise
		if not isinstance(ack, dict) or not ack.get("ok"):
			await self._sio.disconnect()
			detail = ack.get("detail") if isinstance(ack, dict) else None
			raise SocketJoinRefused(self.bonfire_id, str(detail or "refused"))
		return self

	async def _on_message(self, data: Any) -> None:
		self._queue.put_nowait(data)

	async def _on_disconnect(self, *args: Any) -> None:
		self._queue.put_nowait(_DISCONNECTED)

	def __aiter__(self) -> AsyncIterator[Message]:
		return self._iterate()

	async def _iterate(self) -> AsyncIterator[Message]:
		while not self._closed:
			item = await self._queue.get()
			if item is _DISCONNECTED:
				if self._closed:
					return
				raise ConnectionError(f"socket feed for {self.bonfire_id} disconnected")
			try:
				message = Message.from_dict(item)
			except (KeyError, TypeError, ValueError):
				logger.warning("discarding malformed socket payload bonfire=%s", self.bonfire_id)
				continue
			if message.bonfire_id == self.bonfire_id:
				yield message

	async def aclose(self) -> None:
		if self._closed:
			return
		self._closed = True
		self._queue.put_nowait(_DISCONNECTED)
		await self._sio.disconnect()


class SocketMessageSource:
	"""History over HTTP, live messages over Socket.IO, polling when the socket cannot be opened."""

	def __init__(
		self,
		client: "BonfireClient",
		*,
		fallback: "PollingMessageSource",
		client_factory: Optional[Callable[[], Any]] = None,
	) -> None:
		self._client = client
		self._fallback = fallback
		self._client_factory = client_factory

	async def fetch_messages(self, bonfire_id: str) -> List[Message]:
		return await self._fallback.fetch_messages(bonfire_id)

	async def subscribe(self, bonfire_id: str):
		subscription = SocketSubscription(
			bonfire_id,
			url=self._client.base_url,
			auth=self._client.socket_auth(),
			client_factory=self._client_factory,
		)
		try:
			return await subscription.open()
		except (socketio_exceptions.ConnectionError, socketio_exceptions.TimeoutError, SocketJoinRefused):
			logger.warning("socket feed unavailable bonfire=%s; polling instead", bonfire_id, exc_info=True)
			return await self._fallback.subscribe(bonfire_id)
