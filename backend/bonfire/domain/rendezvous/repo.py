"""Bonfire persistence.

Backed by Postgres (``bonfires`` and ``bonfire_participants`` tables, the latter
with a unique ``(bonfire_id, user_id)`` key). When no pool is available the
repository falls back to a process-local store, which is what the tests use.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import asyncpg

from bonfire.domain.rendezvous import models
from bonfire.infra.postgres import get_pool


class _MemoryStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.bonfires: Dict[str, models.Bonfire] = {}
		self.participants: Dict[str, Dict[str, models.Participant]] = {}

	def _with_count(self, bonfire: models.Bonfire) -> models.Bonfire:
		return replace(bonfire, participant_count=len(self.participants.get(bonfire.id, {})))

	async def create(self, bonfire: models.Bonfire, creator: models.Participant) -> models.Bonfire:
		async with self._lock:
			self.bonfires[bonfire.id] = bonfire
			self.participants[bonfire.id] = {creator.user_id: creator}
			return self._with_count(bonfire)

	async def get(self, bonfire_id: str) -> Optional[models.Bonfire]:
		async with self._lock:
			bonfire = self.bonfires.get(bonfire_id)
			return self._with_count(bonfire) if bonfire else None

	async def get_many(self, bonfire_ids: Iterable[str]) -> Dict[str, models.Bonfire]:
		async with self._lock:
			return {
				bonfire_id: self._with_count(self.bonfires[bonfire_id])
				for bonfire_id in bonfire_ids
				if bonfire_id in self.bonfires
			}

	async def active_for_creator(self, creator_id: str, now: datetime) -> Optional[models.Bonfire]:
		async with self._lock:
			for bonfire in self.bonfires.values():
				if bonfire.creator_id == creator_id and bonfire.is_joinable(now):
					return self._with_count(bonfire)
			return None

	async def update_location(self, bonfire_id: str, latitude: float, longitude: float) -> bool:
		async with self._lock:
			bonfire = self.bonfires.get(bonfire_id)
			if bonfire is None:
				return False
			bonfire.latitude = latitude
			bonfire.longitude = longitude
			return True

	async def deactivate(self, bonfire_id: str) -> bool:
		async with self._lock:
			bonfire = self.bonfires.get(bonfire_id)
			if bonfire is None or not bonfire.is_active:
				return False
			bonfire.is_active = False
			self.participants.pop(bonfire_id, None)
			return True

	async def upsert_participant(self, participant: models.Participant) -> bool:
		async with self._lock:
			members = self.participants.setdefault(participant.bonfire_id, {})
			if participant.user_id in members:
				return False
			members[participant.user_id] = participant
			return True

	async def remove_participant(self, bonfire_id: str, user_id: str) -> bool:
		async with self._lock:
			return self.participants.get(bonfire_id, {}).pop(user_id, None) is not None

	async def get_participant(self, bonfire_id: str, user_id: str) -> Optional[models.Participant]:
		async with self._lock:
			return self.participants.get(bonfire_id, {}).get(user_id)

	async def list_participants(self, bonfire_id: str) -> List[models.Participant]:
		async with self._lock:
			members = self.participants.get(bonfire_id, {})
			return sorted(members.values(), key=lambda member: member.joined_at)

	async def touch_participant(self, bonfire_id: str, user_id: str, seen_at: datetime) -> bool:
		async with self._lock:
			member = self.participants.get(bonfire_id, {}).get(user_id)
			if member is None:
				return False
			member.last_seen_at = max(member.last_seen_at, seen_at)
			return True

	async def reset(self) -> None:
		async with self._lock:
			self.bonfires.clear()
			self.participants.clear()


_MEMORY = _MemoryStore()


async def reset_memory_state() -> None:
	await _MEMORY.reset()


def _row_to_bonfire(row: asyncpg.Record) -> models.Bonfire:
	return models.Bonfire(
		id=str(row["id"]),
		creator_id=str(row["creator_id"]),
		name=row["name"],
		description=row["description"],
		latitude=float(row["latitude"]),
		longitude=float(row["longitude"]),
		proximity_radius_meters=int(row["proximity_radius_meters"]),
		has_pin=bool(row["has_pin"]),
		pin_hash=row["pin_hash"],
		expires_at=row["expires_at"],
		is_active=bool(row["is_active"]),
		created_at=row["created_at"],
		participant_count=int(row["participant_count"] or 0),
	)


def _row_to_participant(row: asyncpg.Record) -> models.Participant:
	return models.Participant(
		bonfire_id=str(row["bonfire_id"]),
		user_id=str(row["user_id"]),
		joined_at=row["joined_at"],
		last_seen_at=row["last_seen_at"],
	)


_SELECT_BONFIRE = """
	SELECT b.*,
		(SELECT COUNT(*) FROM bonfire_participants p WHERE p.bonfire_id = b.id) AS participant_count
	FROM bonfires b
"""


class BonfireRepository:
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

	async def create_bonfire(self, bonfire: models.Bonfire) -> models.Bonfire:
		creator = models.Participant(
			bonfire_id=bonfire.id,
			user_id=bonfire.creator_id,
			joined_at=bonfire.created_at,
			last_seen_at=bonfire.created_at,
		)
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.create(bonfire, creator)
		async with pool.acquire() as conn:
			async with conn.transaction():
				await conn.execute(
					"""
					INSERT INTO bonfires (
						id, creator_id, name, description, latitude, longitude,
						proximity_radius_meters, has_pin, pin_hash, expires_at, is_active, created_at
					)
					VALUES ($1,$2,$3,$4,$5,$6,$7,$8,$9,$10,TRUE,$11)
					""",
					bonfire.id,
					bonfire.creator_id,
					bonfire.name,
					bonfire.description,
					bonfire.latitude,
					bonfire.longitude,
					bonfire.proximity_radius_meters,
					bonfire.has_pin,
					bonfire.pin_hash,
					bonfire.expires_at,
					bonfire.created_at,
				)
				await conn.execute(
					"""
					INSERT INTO bonfire_participants (bonfire_id, user_id, joined_at, last_seen_at)
					VALUES ($1,$2,$3,$3)
					ON CONFLICT (bonfire_id, user_id) DO NOTHING
					""",
					bonfire.id,
					bonfire.creator_id,
					bonfire.created_at,
				)
		return replace(bonfire, participant_count=1)

	async def get_bonfire(self, bonfire_id: str) -> Optional[models.Bonfire]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get(bonfire_id)
		row = await pool.fetchrow(_SELECT_BONFIRE + " WHERE b.id = $1", bonfire_id)
		return _row_to_bonfire(row) if row else None

	async def get_bonfires(self, bonfire_ids: Iterable[str]) -> Dict[str, models.Bonfire]:
		ids = list(dict.fromkeys(bonfire_ids))
		if not ids:
			return {}
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_many(ids)
		rows = await pool.fetch(_SELECT_BONFIRE + " WHERE b.id = ANY($1::text[])", ids)
		return {str(row["id"]): _row_to_bonfire(row) for row in rows}

	async def get_active_for_creator(self, creator_id: str, now: datetime) -> Optional[models.Bonfire]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.active_for_creator(creator_id, now)
		row = await pool.fetchrow(
			_SELECT_BONFIRE
			+ " WHERE b.creator_id = $1 AND b.is_active = TRUE AND b.expires_at > $2 ORDER BY b.created_at DESC LIMIT 1",
			creator_id,
			now,
		)
		return _row_to_bonfire(row) if row else None

	async def update_location(self, bonfire_id: str, latitude: float, longitude: float) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.update_location(bonfire_id, latitude, longitude)
		result = await pool.execute(
			"UPDATE bonfires SET latitude = $2, longitude = $3 WHERE id = $1",
			bonfire_id,
			latitude,
			longitude,
		)
		return result.endswith(" 1")

	async def deactivate(self, bonfire_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.deactivate(bonfire_id)
		async with pool.acquire() as conn:
			async with conn.transaction():
				result = await conn.execute(
					"UPDATE bonfires SET is_active = FALSE WHERE id = $1 AND is_active = TRUE",
					bonfire_id,
				)
				await conn.execute("DELETE FROM bonfire_participants WHERE bonfire_id = $1", bonfire_id)
		return result.endswith(" 1")

	async def upsert_participant(self, bonfire_id: str, user_id: str, now: datetime) -> bool:
		"""Insert the participant row if absent; return True when a row was created."""
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.upsert_participant(
				models.Participant(bonfire_id=bonfire_id, user_id=user_id, joined_at=now, last_seen_at=now)
			)
		row = await pool.fetchrow(
			"""
			INSERT INTO bonfire_participants (bonfire_id, user_id, joined_at, last_seen_at)
			VALUES ($1,$2,$3,$3)
			ON CONFLICT (bonfire_id, user_id) DO NOTHING
			RETURNING user_id
			""",
			bonfire_id,
			user_id,
			now,
		)
		return row is not None

	async def remove_participant(self, bonfire_id: str, user_id: str) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.remove_participant(bonfire_id, user_id)
		result = await pool.execute(
			"DELETE FROM bonfire_participants WHERE bonfire_id = $1 AND user_id = $2",
			bonfire_id,
			user_id,
		)
		return result.endswith(" 1")

	async def get_participant(self, bonfire_id: str, user_id: str) -> Optional[models.Participant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.get_participant(bonfire_id, user_id)
		row = await pool.fetchrow(
			"SELECT * FROM bonfire_participants WHERE bonfire_id = $1 AND user_id = $2",
			bonfire_id,
			user_id,
		)
		return _row_to_participant(row) if row else None

	async def list_participants(self, bonfire_id: str) -> List[models.Participant]:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.list_participants(bonfire_id)
		rows = await pool.fetch(
			"SELECT * FROM bonfire_participants WHERE bonfire_id = $1 ORDER BY joined_at ASC",
			bonfire_id,
		)
		return [_row_to_participant(row) for row in rows]

	async def touch_participant(self, bonfire_id: str, user_id: str, seen_at: datetime) -> bool:
		pool = await self._get_pool()
		if pool is None:
			return await _MEMORY.touch_participant(bonfire_id, user_id, seen_at)
		result = await pool.execute(
			"""
			UPDATE bonfire_participants
			SET last_seen_at = GREATEST(last_seen_at, $3)
			WHERE bonfire_id = $1 AND user_id = $2
			""",
			bonfire_id,
			user_id,
			seen_at,
		)
		return result.endswith(" 1")
