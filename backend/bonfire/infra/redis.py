"""Redis connection management.

Provides a stable proxy object so imports like `from bonfire.infra.redis import redis_client`
always reference the same proxy instance. The underlying client can be swapped at
runtime (e.g., to fakeredis in tests) without breaking previously imported references.

GEOADD additionally accepts a mapping {member: (lon, lat)} and flattens it as triplets.
"""

from __future__ import annotations

import redis.asyncio as redis

from bonfire.settings import settings


class RedisProxy:
	"""Lightweight proxy that forwards attribute access to an underlying Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	async def geoadd(self, name, values, nx: bool = False, xx: bool = False, ch: bool = False):
		"""Allow mapping input {member: (lon, lat)} by flattening to triplets."""
		if isinstance(values, dict):
			flat: list = []
			for member, coords in values.items():
				lon, lat = coords
				flat.extend([lon, lat, member])
			return await self._client.geoadd(name, flat, nx=nx, xx=xx, ch=ch)  # type: ignore[arg-type]
		return await self._client.geoadd(name, values, nx=nx, xx=xx, ch=ch)

	# Fallback: delegate everything else to the underlying client
	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
