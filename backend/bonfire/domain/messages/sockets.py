"""Socket.IO namespace fanning bonfire messages out to participants."""

from __future__ import annotations

from typing import Dict, Optional

import socketio

from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.infra.auth import AuthenticatedUser, verify_access_jwt
from bonfire.obs import metrics as obs_metrics
from bonfire.settings import settings

_namespace: "BonfiresNamespace" | None = None


def _header(scope: dict, name: str) -> Optional[str]:
	target = name.encode().lower()
	for key, value in scope.get("headers", []):
		if key.lower() == target:
			return value.decode()
	return None


class BonfiresNamespace(socketio.AsyncNamespace):
	"""Places participants in one channel per bonfire."""

	def __init__(self, repository: Optional[BonfireRepository] = None) -> None:
		super().__init__("/bonfires")
		self._sessions: Dict[str, AuthenticatedUser] = {}
		self._repo = repository or BonfireRepository()

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		obs_metrics.socket_connected(self.namespace)
		try:
			user = self._authorise(environ, auth)
		except Exception:
			obs_metrics.socket_disconnected(self.namespace)
			raise ConnectionRefusedError("unauthorized") from None
		self._sessions[sid] = user
		await self.emit("bonfire:ack", {"ok": True}, room=sid)

	async def on_disconnect(self, sid: str, *args) -> None:
		obs_metrics.socket_disconnected(self.namespace)
		self._sessions.pop(sid, None)

	async def on_bonfire_join(self, sid: str, payload: dict) -> dict:
		obs_metrics.socket_event(self.namespace, "bonfire_join")
		user = self._sessions.get(sid)
		if not user:
			raise ConnectionRefusedError("unauthenticated")
		bonfire_id = str(payload.get("bonfire_id") or "")
		if not bonfire_id:
			return {"ok": False, "detail": "missing_bonfire_id"}
		if await self._repo.get_participant(bonfire_id, user.id) is None:
			return {"ok": False, "detail": "not_participant"}
		await self.enter_room(sid, self.bonfire_channel(bonfire_id))
		return {"ok": True}

	async def on_bonfire_leave(self, sid: str, payload: dict) -> dict:
		obs_metrics.socket_event(self.namespace, "bonfire_leave")
		bonfire_id = str(payload.get("bonfire_id") or "")
		if bonfire_id:
			await self.leave_room(sid, self.bonfire_channel(bonfire_id))
		return {"ok": True}

	def _authorise(self, environ: dict, auth: Optional[dict]) -> AuthenticatedUser:
		scope = environ.get("asgi.scope", environ)
		token = (auth or {}).get("token")
		if token:
			return verify_access_jwt(str(token))
		user_id = (auth or {}).get("userId") or _header(scope, "x-user-id")
		if settings.is_dev() and user_id:
			return AuthenticatedUser(id=str(user_id))
		raise ValueError("missing credentials")

	@staticmethod
	def bonfire_channel(bonfire_id: str) -> str:
		return f"bonfire:{bonfire_id}"


def set_namespace(namespace: BonfiresNamespace) -> None:
	global _namespace
	_namespace = namespace


async def emit_message(bonfire_id: str, payload: dict) -> None:
	if _namespace is None:
		return
	obs_metrics.socket_event(_namespace.namespace, "bonfire:message")
	await _namespace.emit("bonfire:message", payload, room=BonfiresNamespace.bonfire_channel(bonfire_id))
