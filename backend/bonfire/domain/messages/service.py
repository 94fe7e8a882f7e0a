"""Message send/list service for bonfires."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import ulid

from bonfire.domain.messages import feed, sockets
from bonfire.domain.messages.models import ImageMeta, Message
from bonfire.domain.messages.repo import MessageRepository
from bonfire.domain.messages.schemas import MessageListResponse, MessageResponse, MessageSendRequest
from bonfire.domain.rendezvous import clock
from bonfire.domain.rendezvous.service import BonfireService
from bonfire.infra.auth import AuthenticatedUser
from bonfire.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class MessageService:
	def __init__(
		self,
		repository: Optional[MessageRepository] = None,
		bonfires: Optional[BonfireService] = None,
	) -> None:
		self._repo = repository or MessageRepository()
		self._bonfires = bonfires or BonfireService()

	async def send_message(
		self,
		sender: AuthenticatedUser,
		bonfire_id: str,
		payload: MessageSendRequest,
		*,
		now: Optional[datetime] = None,
	) -> MessageResponse:
		now = now or clock.utcnow()
		await self._bonfires.require_participant(bonfire_id, sender.id, now=now)
		image = None
		if payload.type == "image" and payload.image_url:
			image = ImageMeta(
				url=payload.image_url,
				width=payload.image_width,
				height=payload.image_height,
				size_bytes=payload.image_size_bytes,
			)
		message = Message(
			id=str(ulid.new()),
			bonfire_id=bonfire_id,
			sender_id=sender.id,
			type=payload.type,
			content=payload.content,
			created_at=now,
			image=image,
		)
		message = await self._repo.append(message)
		obs_metrics.inc_message_sent(message.type)
		data = message.to_dict()
		try:
			await feed.publish(message)
			await sockets.emit_message(bonfire_id, data)
		except Exception:
			# The message is durable; subscribers recover it on their next bulk fetch.
			logger.warning("message fan-out failed bonfire=%s message=%s", bonfire_id, message.id, exc_info=True)
		return MessageResponse(**data)

	async def list_messages(
		self,
		viewer: AuthenticatedUser,
		bonfire_id: str,
		*,
		since: Optional[datetime] = None,
		now: Optional[datetime] = None,
	) -> MessageListResponse:
		await self._bonfires.require_participant(bonfire_id, viewer.id, now=now)
		messages = await self._repo.list_messages(bonfire_id, clock.as_utc(since) if since is not None else None)
		return MessageListResponse(items=[MessageResponse.from_message(message) for message in messages])
