"""Bonfire lifecycle service layer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

import ulid

from bonfire.domain.rendezvous import clock, matcher, models, schemas, secrets
from bonfire.domain.rendezvous.errors import BonfirePolicyError, ErrorCode, Rejection
from bonfire.domain.rendezvous.matcher import ProximityMatcher, RedisProximityMatcher
from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.domain.rendezvous.validator import JoinResult, JoinValidator
from bonfire.infra.auth import AuthenticatedUser
from bonfire.infra.password import hash_pin
from bonfire.infra.rate_limit import allow
from bonfire.obs import metrics as obs_metrics
from bonfire.settings import settings

logger = logging.getLogger(__name__)

SECRET_FETCH_LIMIT_PER_MINUTE = 30
NEARBY_LIMIT_PER_MINUTE = 60


@dataclass(slots=True, frozen=True)
class SecretFetchResult:
	ok: bool
	window: Optional[secrets.SecretWindow] = None
	rejection: Optional[Rejection] = None

	@classmethod
	def rejected(cls, code: ErrorCode, *, retry_after: Optional[datetime] = None) -> "SecretFetchResult":
		return cls(ok=False, rejection=Rejection(code=code, retry_after=retry_after))


def _to_summary(bonfire: models.Bonfire, *, window: Optional[secrets.SecretWindow] = None) -> schemas.BonfireSummary:
	return schemas.BonfireSummary(
		id=bonfire.id,
		creator_id=bonfire.creator_id,
		name=bonfire.name,
		description=bonfire.description,
		latitude=bonfire.latitude,
		longitude=bonfire.longitude,
		proximity_radius_meters=bonfire.proximity_radius_meters,
		has_pin=bonfire.has_pin,
		expires_at=bonfire.expires_at,
		is_active=bonfire.is_active,
		participant_count=bonfire.participant_count,
		current_secret_code=window.secret if window else None,
		secret_window_start=window.window_start if window else None,
	)


class BonfireService:
	def __init__(
		self,
		repository: Optional[BonfireRepository] = None,
		proximity: Optional[ProximityMatcher] = None,
		validator: Optional[JoinValidator] = None,
	) -> None:
		self._repo = repository or BonfireRepository()
		self._proximity = proximity or RedisProximityMatcher(self._repo)
		self._validator = validator or JoinValidator(self._repo)

	async def create_bonfire(
		self,
		creator: AuthenticatedUser,
		payload: schemas.BonfireCreateRequest,
		*,
		now: Optional[datetime] = None,
	) -> schemas.BonfireSummary:
		now = now or clock.utcnow()
		if await self._repo.get_active_for_creator(creator.id, now):
			raise BonfirePolicyError("active_bonfire_exists", status_code=409)
		pin_hash = await asyncio.to_thread(hash_pin, payload.pin) if payload.pin else None
		bonfire = models.Bonfire(
			id=str(ulid.new()),
			creator_id=creator.id,
			name=payload.name,
			description=payload.description,
			latitude=payload.latitude,
			longitude=payload.longitude,
			proximity_radius_meters=payload.proximity_radius_meters,
			has_pin=pin_hash is not None,
			pin_hash=pin_hash,
			expires_at=now + timedelta(hours=payload.expiry_hours),
			is_active=True,
			created_at=now,
		)
		bonfire = await self._repo.create_bonfire(bonfire)
		await matcher.index_bonfire(bonfire)
		obs_metrics.inc_bonfire_created()
		logger.info("bonfire created id=%s creator=%s has_pin=%s", bonfire.id, creator.id, bonfire.has_pin)
		return _to_summary(bonfire, window=secrets.current_secret(bonfire.id, now))

	async def get_bonfire(
		self,
		viewer: AuthenticatedUser,
		bonfire_id: str,
		*,
		now: Optional[datetime] = None,
	) -> schemas.BonfireDetail:
		now = now or clock.utcnow()
		bonfire = await self._require_joinable(bonfire_id, now)
		if await self._repo.get_participant(bonfire_id, viewer.id) is None:
			raise BonfirePolicyError("not_participant", status_code=403)
		participants = await self._repo.list_participants(bonfire_id)
		# Only the creator's device displays the rotating code.
		window = secrets.current_secret(bonfire.id, now) if bonfire.is_creator(viewer.id) else None
		summary = _to_summary(bonfire, window=window)
		return schemas.BonfireDetail(
			**summary.model_dump(),
			participants=[
				schemas.ParticipantSummary(
					user_id=participant.user_id,
					joined_at=participant.joined_at,
					last_seen_at=participant.last_seen_at,
				)
				for participant in participants
			],
		)

	async def find_nearby(
		self,
		user: AuthenticatedUser,
		lat: float,
		lon: float,
		radius_m: Optional[float] = None,
		*,
		now: Optional[datetime] = None,
	) -> schemas.NearbyResponse:
		if not await allow("bonfire:nearby", user.id, limit=NEARBY_LIMIT_PER_MINUTE):
			raise BonfirePolicyError("rate_limited:nearby", status_code=429)
		radius = float(radius_m or settings.discovery_radius_m)
		items = await self._proximity.find_nearby(lat, lon, radius, now=now)
		obs_metrics.observe_nearby(len(items))
		return schemas.NearbyResponse(
			items=[schemas.NearbyBonfireItem(**item.to_dict()) for item in items],
		)

	async def fetch_current_secret(
		self,
		bonfire_id: str,
		lat: float,
		lon: float,
		*,
		user_id: Optional[str] = None,
		now: Optional[datetime] = None,
	) -> SecretFetchResult:
		"""Hand out the current code only to callers inside the bonfire's radius."""
		now = now or clock.utcnow()
		if user_id and not await allow("bonfire:secret", user_id, limit=SECRET_FETCH_LIMIT_PER_MINUTE):
			obs_metrics.inc_secret_fetch("rate_limited")
			return SecretFetchResult.rejected(ErrorCode.RATE_LIMITED, retry_after=now + timedelta(seconds=60))
		bonfire = await self._repo.get_bonfire(bonfire_id)
		if bonfire is None or not bonfire.is_joinable(now):
			obs_metrics.inc_secret_fetch("not_found")
			return SecretFetchResult.rejected(ErrorCode.NOT_FOUND)
		if not matcher.within_radius(bonfire, lat, lon):
			obs_metrics.inc_secret_fetch("proximity_denied")
			return SecretFetchResult.rejected(ErrorCode.PROXIMITY_DENIED)
		obs_metrics.inc_secret_fetch("ok")
		return SecretFetchResult(ok=True, window=secrets.current_secret(bonfire.id, now))

	async def join(
		self,
		user: AuthenticatedUser,
		bonfire_id: str,
		payload: schemas.JoinRequest,
		*,
		now: Optional[datetime] = None,
	) -> JoinResult:
		return await self._validator.validate_join(bonfire_id, user.id, payload.secret_code, payload.pin, now)

	async def end_bonfire(self, user: AuthenticatedUser, bonfire_id: str) -> None:
		bonfire = await self._repo.get_bonfire(bonfire_id)
		if bonfire is None:
			raise BonfirePolicyError("not_found", status_code=404)
		if not bonfire.is_creator(user.id):
			raise BonfirePolicyError("not_creator", status_code=403)
		if await self._repo.deactivate(bonfire_id):
			obs_metrics.inc_bonfire_ended()
			logger.info("bonfire ended id=%s", bonfire_id)
		await matcher.unindex_bonfire(bonfire_id)

	async def leave_bonfire(self, user: AuthenticatedUser, bonfire_id: str) -> None:
		bonfire = await self._repo.get_bonfire(bonfire_id)
		if bonfire is None:
			raise BonfirePolicyError("not_found", status_code=404)
		if bonfire.is_creator(user.id):
			raise BonfirePolicyError("creator_must_end", status_code=409)
		await self._repo.remove_participant(bonfire_id, user.id)

	async def update_creator_location(
		self,
		user: AuthenticatedUser,
		lat: float,
		lon: float,
		*,
		now: Optional[datetime] = None,
	) -> schemas.LocationUpdateResponse:
		"""Move the caller's active bonfire along with them, if they host one."""
		now = now or clock.utcnow()
		bonfire = await self._repo.get_active_for_creator(user.id, now)
		if bonfire is None:
			return schemas.LocationUpdateResponse(ok=True, updated=False)
		updated = await self._repo.update_location(bonfire.id, lat, lon)
		if updated:
			bonfire.latitude = lat
			bonfire.longitude = lon
			await matcher.index_bonfire(bonfire)
		return schemas.LocationUpdateResponse(ok=True, updated=updated, bonfire_id=bonfire.id)

	async def require_participant(self, bonfire_id: str, user_id: str, *, now: Optional[datetime] = None) -> models.Bonfire:
		bonfire = await self._require_joinable(bonfire_id, now or clock.utcnow())
		if await self._repo.get_participant(bonfire_id, user_id) is None:
			raise BonfirePolicyError("not_participant", status_code=403)
		return bonfire

	async def _require_joinable(self, bonfire_id: str, now: datetime) -> models.Bonfire:
		bonfire = await self._repo.get_bonfire(bonfire_id)
		if bonfire is None or not bonfire.is_joinable(now):
			raise BonfirePolicyError("not_found", status_code=404)
		return bonfire
