"""Proximity matching for bonfires.

The core only consumes a distance-ranked candidate list. The shipped adapter
keeps bonfire positions in a Redis GEO set and hydrates candidates from the
repository, dropping anything inactive or expired.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import List, Optional, Protocol

from bonfire.domain.rendezvous import clock
from bonfire.domain.rendezvous.models import Bonfire, NearbyBonfire
from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.infra.redis import redis_client

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6_371_000
GEO_KEY = "geo:bonfires"
MAX_CANDIDATES = 200


def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
	"""Return the great-circle distance between two points in meters."""

	phi1, phi2 = math.radians(lat1), math.radians(lat2)
	dphi = math.radians(lat2 - lat1)
	dlambda = math.radians(lon2 - lon1)
	a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
	return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def within_radius(bonfire: Bonfire, lat: float, lon: float) -> bool:
	return haversine(bonfire.latitude, bonfire.longitude, lat, lon) <= bonfire.proximity_radius_meters


class ProximityMatcher(Protocol):
	async def find_nearby(
		self, lat: float, lon: float, radius_m: float, *, now: Optional[datetime] = None
	) -> List[NearbyBonfire]:
		...


async def index_bonfire(bonfire: Bonfire) -> None:
	await redis_client.geoadd(GEO_KEY, {bonfire.id: (bonfire.longitude, bonfire.latitude)})


async def unindex_bonfire(bonfire_id: str) -> None:
	# GEO sets are sorted sets under the hood
	await redis_client.zrem(GEO_KEY, bonfire_id)


class RedisProximityMatcher:
	def __init__(self, repository: Optional[BonfireRepository] = None) -> None:
		self._repo = repository or BonfireRepository()

	async def find_nearby(
		self, lat: float, lon: float, radius_m: float, *, now: Optional[datetime] = None
	) -> List[NearbyBonfire]:
		now = now or clock.utcnow()
		results = await redis_client.geosearch(
			GEO_KEY,
			longitude=lon,
			latitude=lat,
			radius=radius_m,
			unit="m",
			withdist=True,
			sort="ASC",
			count=MAX_CANDIDATES,
		)
		ranked = [(str(member), float(distance)) for member, distance in results or []]
		bonfires = await self._repo.get_bonfires(member for member, _ in ranked)

		items: List[NearbyBonfire] = []
		stale: List[str] = []
		for bonfire_id, distance in ranked:
			bonfire = bonfires.get(bonfire_id)
			if bonfire is None or not bonfire.is_joinable(now):
				stale.append(bonfire_id)
				continue
			items.append(
				NearbyBonfire(
					id=bonfire.id,
					name=bonfire.name,
					description=bonfire.description,
					creator_id=bonfire.creator_id,
					distance_meters=round(distance, 2),
					participant_count=bonfire.participant_count,
					has_pin=bonfire.has_pin,
					expires_at=bonfire.expires_at,
					proximity_radius_meters=bonfire.proximity_radius_meters,
				)
			)
		if stale:
			logger.debug("dropping %s stale bonfires from geo index", len(stale))
			await redis_client.zrem(GEO_KEY, *stale)
		return items
