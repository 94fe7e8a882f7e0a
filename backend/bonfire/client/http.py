"""HTTP client for the bonfire API.

Validation outcomes come back as the same typed results the server produces
(``JoinResult``, ``SecretFetchResult``). Transport failures and timeouts are
folded into a ``NETWORK_ERROR`` rejection. Only idempotent reads are retried;
``join`` is sent exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import httpx

from bonfire.client.realtime import SocketMessageSource
from bonfire.domain.messages.models import Message
from bonfire.domain.rendezvous.errors import ErrorCode, Rejection
from bonfire.domain.rendezvous.models import NearbyBonfire
from bonfire.domain.rendezvous.schemas import BonfireDetail
from bonfire.domain.rendezvous.secrets import SecretWindow
from bonfire.domain.rendezvous.service import SecretFetchResult
from bonfire.domain.rendezvous.validator import JoinResult
from bonfire.settings import settings

logger = logging.getLogger(__name__)

_RETRY_STATUSES = frozenset({502, 503, 504})
POLL_OVERLAP = timedelta(seconds=2)


class BonfireClientError(RuntimeError):
	"""Raised by calls that have no typed result to carry a rejection."""

	def __init__(self, rejection: Rejection, *, status_code: Optional[int] = None) -> None:
		super().__init__(rejection.message or rejection.code.value)
		self.rejection = rejection
		self.status_code = status_code

	@property
	def code(self) -> ErrorCode:
		return self.rejection.code


def _parse_datetime(value: Any) -> Optional[datetime]:
	if not value:
		return None
	if isinstance(value, datetime):
		return value
	return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _network_rejection(exc: Exception) -> Rejection:
	return Rejection(code=ErrorCode.NETWORK_ERROR, message=type(exc).__name__)


def rejection_from_response(response: httpx.Response) -> Optional[Rejection]:
	"""Decode a typed rejection body; ``None`` when the error is not one of ours."""
	try:
		body = response.json()
	except ValueError:
		return None
	if not isinstance(body, dict):
		return None
	try:
		code = ErrorCode(str(body.get("detail")))
	except ValueError:
		return None
	retry_after = _parse_datetime(body.get("retry_after"))
	return Rejection(code=code, retry_after=retry_after, message=body.get("message"))


def _nearby_from_dict(data: Dict[str, Any]) -> NearbyBonfire:
	return NearbyBonfire(
		id=str(data["id"]),
		name=str(data["name"]),
		description=data.get("description"),
		creator_id=str(data["creator_id"]),
		distance_meters=float(data["distance_meters"]),
		participant_count=int(data.get("participant_count") or 0),
		has_pin=bool(data.get("has_pin")),
		expires_at=_parse_datetime(data["expires_at"]),
		proximity_radius_meters=int(data["proximity_radius_meters"]),
	)


class BonfireClient:
	def __init__(
		self,
		base_url: Optional[str] = None,
		*,
		token: Optional[str] = None,
		user_id: Optional[str] = None,
		timeout: Optional[float] = None,
		read_retries: Optional[int] = None,
		retry_backoff: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.base_url = base_url or settings.api_base_url
		self._token = token
		self._user_id = user_id
		headers: Dict[str, str] = {}
		if token:
			headers["Authorization"] = f"Bearer {token}"
		elif user_id:
			headers["X-User-Id"] = user_id
		self._http = httpx.AsyncClient(
			base_url=self.base_url,
			headers=headers,
			timeout=timeout if timeout is not None else settings.client_timeout_seconds,
			transport=transport,
		)
		self._read_retries = max(1, int(read_retries if read_retries is not None else settings.client_read_retries))
		self._retry_backoff = float(retry_backoff if retry_backoff is not None else settings.client_retry_backoff_seconds)

	async def __aenter__(self) -> "BonfireClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	async def aclose(self) -> None:
		await self._http.aclose()

	def socket_auth(self) -> Dict[str, str]:
		"""Credentials for the ``/bonfires`` Socket.IO handshake."""
		if self._token:
			return {"token": self._token}
		if self._user_id:
			return {"userId": self._user_id}
		return {}

	async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
		try:
			return await self._http.request(method, path, **kwargs)
		except httpx.TransportError as exc:
			# TimeoutException is a TransportError subclass.
			logger.warning("bonfire api unreachable method=%s path=%s error=%s", method, path, type(exc).__name__)
			raise BonfireClientError(_network_rejection(exc)) from exc

	async def _read(self, path: str, **kwargs: Any) -> httpx.Response:
		"""GET with bounded exponential backoff on transport errors and gateway statuses."""
		last_error = BonfireClientError(Rejection(code=ErrorCode.NETWORK_ERROR, message="no attempt made"))
		for attempt in range(self._read_retries):
			if attempt:
				await asyncio.sleep(self._retry_backoff * (2 ** (attempt - 1)))
			try:
				response = await self._send("GET", path, **kwargs)
			except BonfireClientError as exc:
				last_error = exc
				continue
			if response.status_code in _RETRY_STATUSES:
				last_error = BonfireClientError(
					Rejection(code=ErrorCode.NETWORK_ERROR, message=f"HTTP {response.status_code}"),
					status_code=response.status_code,
				)
				continue
			return response
		raise last_error

	@staticmethod
	def _raise_for_status(response: httpx.Response) -> None:
		if response.is_success:
			return
		rejection = rejection_from_response(response)
		if rejection is not None:
			raise BonfireClientError(rejection, status_code=response.status_code)
		response.raise_for_status()

	async def find_nearby(self, lat: float, lon: float, radius_m: Optional[float] = None) -> List[NearbyBonfire]:
		params: Dict[str, Any] = {"lat": lat, "lon": lon}
		if radius_m is not None:
			params["radius_m"] = radius_m
		response = await self._read("/bonfires/nearby", params=params)
		self._raise_for_status(response)
		return [_nearby_from_dict(item) for item in response.json().get("items", [])]

	async def get_bonfire(self, bonfire_id: str) -> BonfireDetail:
		response = await self._read(f"/bonfires/{bonfire_id}")
		self._raise_for_status(response)
		return BonfireDetail.model_validate(response.json())

	async def fetch_current_secret(self, bonfire_id: str, lat: float, lon: float) -> SecretFetchResult:
		try:
			response = await self._send("POST", f"/bonfires/{bonfire_id}/secret", json={"lat": lat, "lon": lon})
		except BonfireClientError as exc:
			return SecretFetchResult(ok=False, rejection=exc.rejection)
		if response.is_success:
			body = response.json()
			window = SecretWindow(window_start=_parse_datetime(body["window_start"]), secret=str(body["secret_code"]))
			return SecretFetchResult(ok=True, window=window)
		rejection = rejection_from_response(response)
		if rejection is None:
			response.raise_for_status()
		return SecretFetchResult(ok=False, rejection=rejection)

	async def join(self, bonfire_id: str, secret_code: str, pin: Optional[str] = None) -> JoinResult:
		payload: Dict[str, Any] = {"secret_code": secret_code}
		if pin:
			payload["pin"] = pin
		try:
			response = await self._send("POST", f"/bonfires/{bonfire_id}/join", json=payload)
		except BonfireClientError as exc:
			return JoinResult(ok=False, rejection=exc.rejection)
		if response.is_success:
			return JoinResult.accepted(already_member=bool(response.json().get("already_member")))
		rejection = rejection_from_response(response)
		if rejection is None:
			response.raise_for_status()
		return JoinResult(ok=False, rejection=rejection)

	async def end_bonfire(self, bonfire_id: str) -> None:
		response = await self._send("POST", f"/bonfires/{bonfire_id}/end")
		self._raise_for_status(response)

	async def leave_bonfire(self, bonfire_id: str) -> None:
		response = await self._send("POST", f"/bonfires/{bonfire_id}/leave")
		self._raise_for_status(response)

	async def update_location(self, lat: float, lon: float, accuracy: Optional[float] = None) -> bool:
		payload: Dict[str, Any] = {"lat": lat, "lon": lon}
		if accuracy is not None:
			payload["accuracy"] = accuracy
		response = await self._send("POST", "/bonfires/location", json=payload)
		self._raise_for_status(response)
		return bool(response.json().get("updated"))

	async def touch_presence(self, bonfire_id: str, user_id: str, ts: datetime) -> None:
		# The server stamps its own clock and takes the user from auth.
		response = await self._send("POST", f"/bonfires/{bonfire_id}/presence")
		self._raise_for_status(response)

	async def fetch_messages(self, bonfire_id: str, since: Optional[datetime] = None) -> List[Message]:
		params: Dict[str, Any] = {}
		if since is not None:
			params["since"] = since.isoformat()
		response = await self._read(f"/bonfires/{bonfire_id}/messages", params=params)
		self._raise_for_status(response)
		return [Message.from_dict(item) for item in response.json().get("items", [])]

	async def send_text(self, bonfire_id: str, content: str) -> Message:
		return await self._post_message(bonfire_id, {"type": "text", "content": content})

	async def send_image(
		self,
		bonfire_id: str,
		image_url: str,
		*,
		width: Optional[int] = None,
		height: Optional[int] = None,
		size_bytes: Optional[int] = None,
		caption: Optional[str] = None,
	) -> Message:
		payload: Dict[str, Any] = {"type": "image", "image_url": image_url}
		if caption:
			payload["content"] = caption
		if width is not None:
			payload["image_width"] = width
		if height is not None:
			payload["image_height"] = height
		if size_bytes is not None:
			payload["image_size_bytes"] = size_bytes
		return await self._post_message(bonfire_id, payload)

	async def _post_message(self, bonfire_id: str, payload: Dict[str, Any]) -> Message:
		response = await self._send("POST", f"/bonfires/{bonfire_id}/messages", json=payload)
		self._raise_for_status(response)
		return Message.from_dict(response.json())

	def message_source(self, *, realtime: bool = True, poll_interval: float = 2.0):
		"""Live source for ``MessageStream``: Socket.IO push, or polling when ``realtime`` is off or unreachable."""
		polling = PollingMessageSource(self, poll_interval=poll_interval)
		if not realtime:
			return polling
		return SocketMessageSource(self, fallback=polling)


class PollingSubscription:
	"""Periodic ``since`` fetches from the newest message seen; the stream drops repeats."""

	def __init__(
		self,
		client: BonfireClient,
		bonfire_id: str,
		*,
		poll_interval: float,
		overlap: timedelta = POLL_OVERLAP,
	) -> None:
		self._client = client
		self._bonfire_id = bonfire_id
		self._poll_interval = max(0.01, poll_interval)
		self._overlap = overlap
		self.cursor: Optional[datetime] = None
		self._closed = False

	def advance(self, messages: Iterable[Message]) -> None:
		for message in messages:
			if self.cursor is None or message.created_at > self.cursor:
				self.cursor = message.created_at

	def __aiter__(self) -> AsyncIterator[Message]:
		return self._iterate()

	async def _iterate(self) -> AsyncIterator[Message]:
		while not self._closed:
			await asyncio.sleep(self._poll_interval)
			if self._closed:
				return
			# Back off the cursor a little so late commits with earlier timestamps are not skipped.
			since = self.cursor - self._overlap if self.cursor is not None else None
			batch = await self._client.fetch_messages(self._bonfire_id, since=since)
			self.advance(batch)
			for message in batch:
				yield message

	async def aclose(self) -> None:
		self._closed = True


class PollingMessageSource:
	def __init__(self, client: BonfireClient, *, poll_interval: float = 2.0) -> None:
		self._client = client
		self._poll_interval = poll_interval
		self._subscriptions: Dict[str, PollingSubscription] = {}

	async def fetch_messages(self, bonfire_id: str) -> List[Message]:
		history = await self._client.fetch_messages(bonfire_id)
		subscription = self._subscriptions.get(bonfire_id)
		if subscription is not None:
			# Later polls only ask for what came after the backfill.
			subscription.advance(history)
		return history

	async def subscribe(self, bonfire_id: str) -> PollingSubscription:
		subscription = PollingSubscription(self._client, bonfire_id, poll_interval=self._poll_interval)
		self._subscriptions[bonfire_id] = subscription
		return subscription
