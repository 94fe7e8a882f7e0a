"""Domain models for bonfires and their participants."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class Bonfire:
	"""Persisted representation of a bonfire.

	The join secret is deliberately absent: it is derived from ``id`` and the
	current window whenever it is needed.
	"""

	id: str
	creator_id: str
	name: str
	description: Optional[str]
	latitude: float
	longitude: float
	proximity_radius_meters: int
	has_pin: bool
	pin_hash: Optional[str]
	expires_at: datetime
	is_active: bool
	created_at: datetime
	participant_count: int = 0

	def is_joinable(self, now: datetime) -> bool:
		return self.is_active and now < self.expires_at

	def is_creator(self, user_id: str) -> bool:
		return self.creator_id == user_id


@dataclass(slots=True)
class Participant:
	bonfire_id: str
	user_id: str
	joined_at: datetime
	last_seen_at: datetime


@dataclass(slots=True)
class NearbyBonfire:
	"""Candidate returned by the proximity matcher, ranked by distance."""

	id: str
	name: str
	description: Optional[str]
	creator_id: str
	distance_meters: float
	participant_count: int
	has_pin: bool
	expires_at: datetime
	proximity_radius_meters: int

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"name": self.name,
			"description": self.description,
			"creator_id": self.creator_id,
			"distance_meters": self.distance_meters,
			"participant_count": self.participant_count,
			"has_pin": self.has_pin,
			"expires_at": self.expires_at.isoformat(),
			"proximity_radius_meters": self.proximity_radius_meters,
		}


@dataclass(slots=True, frozen=True)
class LockState:
	"""Rate-limit bookkeeping for one (bonfire, user) pair."""

	failures: int = 0
	locked_until: Optional[datetime] = None

	def is_locked(self, now: datetime) -> bool:
		return self.locked_until is not None and now < self.locked_until
