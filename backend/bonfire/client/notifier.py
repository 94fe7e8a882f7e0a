"""Notify-once surfacing of nearby bonfires."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from bonfire.domain.rendezvous.models import NearbyBonfire

logger = logging.getLogger(__name__)

DISCOVERY_TYPE = "bonfire_discovery"
DISCOVERY_TITLE = "🔥 Bonfire nearby!"


@dataclass(slots=True, frozen=True)
class DiscoveryEvent:
	bonfire_id: str
	name: str
	distance_meters: float

	@property
	def title(self) -> str:
		return DISCOVERY_TITLE

	@property
	def body(self) -> str:
		return f'"{self.name}" is {round(self.distance_meters)}m away'

	def to_payload(self) -> Dict[str, str]:
		return {
			"type": DISCOVERY_TYPE,
			"bonfire_id": self.bonfire_id,
			"title": self.title,
			"body": self.body,
		}


DiscoverySink = Callable[[DiscoveryEvent], Awaitable[None]]


async def log_discovery(event: DiscoveryEvent) -> None:
	logger.info("bonfire discovered", extra={"event": "bonfire_discovery", "bonfire_id": event.bonfire_id})


class DiscoveryNotifier:
	"""Emits at most one discovery event per bonfire id for its lifetime.

	The id is recorded before the sink runs, so overlapping ``process`` calls
	cannot surface the same bonfire twice. ``clear`` forgets everything.
	"""

	def __init__(self, on_discovery: Optional[DiscoverySink] = None) -> None:
		self._sink = on_discovery or log_discovery
		self._seen: Set[str] = set()

	def __contains__(self, bonfire_id: object) -> bool:
		return bonfire_id in self._seen

	def __len__(self) -> int:
		return len(self._seen)

	async def process(self, candidates: Iterable[NearbyBonfire]) -> List[DiscoveryEvent]:
		fresh: List[DiscoveryEvent] = []
		for candidate in candidates:
			if candidate.id in self._seen:
				continue
			self._seen.add(candidate.id)
			fresh.append(
				DiscoveryEvent(
					bonfire_id=candidate.id,
					name=candidate.name,
					distance_meters=candidate.distance_meters,
				)
			)
		for event in fresh:
			try:
				await self._sink(event)
			except Exception:
				logger.warning("discovery sink failed bonfire=%s", event.bonfire_id, exc_info=True)
		return fresh

	def clear(self) -> None:
		self._seen.clear()
