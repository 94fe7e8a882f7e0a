"""Append-only message persistence with an in-memory fallback."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Dict, List, Optional

import asyncpg

from bonfire.domain.messages.models import ImageMeta, Message
from bonfire.infra.postgres import get_pool


class _MessageStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.messages: Dict[str, List[Message]] = {}

	async def append(self, message: Message) -> Message:
		async with self._lock:
			self.messages.setdefault(message.bonfire_id, []).append(message)
			return message

	async def list_messages(self, bonfire_id: str, since: Optional[datetime] = None) -> List[Message]:
		async with self._lock:
			items = self.messages.get(bonfire_id, [])
			if since is not None:
				items = [message for message in items if message.created_at >= since]
			return sorted(items, key=lambda message: message.created_at)

	async def reset(self) -> None:
		async with self._lock:
			self.messages.clear()


_STORE = _MessageStore()


async def reset_message_store() -> None:
	await _STORE.reset()


def _row_to_message(row: asyncpg.Record) -> Message:
	image = None
	if row["image_url"]:
		image = ImageMeta(
			url=row["image_url"],
			width=row["image_width"],
			height=row["image_height"],
			size_bytes=row["image_size_bytes"],
		)
	return Message(
		id=str(row["id"]),
		bonfire_id=str(row["bonfire_id"]),
		sender_id=str(row["user_id"]),
		type=row["message_type"],
		content=row["content"],
		created_at=row["created_at"],
		image=image,
	)


class MessageRepository:
	def __init__(self) -> None:
		self._pool_checked = False
		self._pool_instance: Optional[asyncpg.Pool] = None

	async def _get_pool(self) -> Optional[asyncpg.Pool]:
		if self._pool_checked:
			return self._pool_instance
		self._pool_checked = True
		try:
			pool = await get_pool()
		except (AssertionError, OSError, asyncpg.PostgresError):
			pool = None
		self._pool_instance = pool
		return pool

	async def append(self, message: Message) -> Message:
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.append(message)
		await pool.execute(
			"""
			INSERT INTO bonfire_messages (
				id, bonfire_id, user_id, message_type, content,
				image_url, image_width, image_height, image_size_bytes, created_at
			)
			VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10)
			""",
			message.id,
			message.bonfire_id,
			message.sender_id,
			message.type,
			message.content,
			message.image.url if message.image else None,
			message.image.width if message.image else None,
			message.image.height if message.image else None,
			message.image.size_bytes if message.image else None,
			message.created_at,
		)
		return message

	async def list_messages(self, bonfire_id: str, since: Optional[datetime] = None) -> List[Message]:
		"""History in send order; ``since`` keeps messages created at or after that instant."""
		pool = await self._get_pool()
		if pool is None:
			return await _STORE.list_messages(bonfire_id, since)
		rows = await pool.fetch(
			"""
			SELECT * FROM bonfire_messages
			WHERE bonfire_id = $1 AND ($2::timestamptz IS NULL OR created_at >= $2)
			ORDER BY created_at ASC, id ASC
			""",
			bonfire_id,
			since,
		)
		return [_row_to_message(row) for row in rows]
