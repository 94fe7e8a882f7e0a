"""Join authorization: rotating secret, optional PIN, and PIN lockout."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from bonfire.domain.rendezvous import clock, lockout, secrets
from bonfire.domain.rendezvous.errors import ErrorCode, Rejection
from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.infra.password import verify_pin
from bonfire.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class JoinResult:
	ok: bool
	rejection: Optional[Rejection] = None
	already_member: bool = False

	@classmethod
	def accepted(cls, *, already_member: bool = False) -> "JoinResult":
		return cls(ok=True, already_member=already_member)

	@classmethod
	def rejected(cls, code: ErrorCode, *, retry_after: Optional[datetime] = None) -> "JoinResult":
		return cls(ok=False, rejection=Rejection(code=code, retry_after=retry_after))


class JoinValidator:
	def __init__(self, repository: Optional[BonfireRepository] = None) -> None:
		self._repo = repository or BonfireRepository()

	async def validate_secret(self, bonfire_id: str, provided_code: str, now: Optional[datetime] = None) -> bool:
		return secrets.is_secret_valid(bonfire_id, provided_code, now or clock.utcnow())

	async def validate_join(
		self,
		bonfire_id: str,
		user_id: str,
		provided_code: str,
		provided_pin: Optional[str] = None,
		now: Optional[datetime] = None,
	) -> JoinResult:
		now = now or clock.utcnow()
		result = await self._validate(bonfire_id, user_id, provided_code, provided_pin, now)
		if result.rejection is None:
			obs_metrics.inc_join("already_member" if result.already_member else "joined")
		else:
			obs_metrics.inc_join(result.rejection.code.value)
			logger.info(
				"join rejected bonfire=%s user=%s reason=%s",
				bonfire_id,
				user_id,
				result.rejection.code.value,
			)
		return result

	async def _validate(
		self,
		bonfire_id: str,
		user_id: str,
		provided_code: str,
		provided_pin: Optional[str],
		now: datetime,
	) -> JoinResult:
		bonfire = await self._repo.get_bonfire(bonfire_id)
		if bonfire is None or not bonfire.is_joinable(now):
			return JoinResult.rejected(ErrorCode.NOT_FOUND)

		state = await lockout.get_state(bonfire_id, user_id)
		if state.is_locked(now):
			return JoinResult.rejected(ErrorCode.RATE_LIMITED, retry_after=state.locked_until)

		if not await self.validate_secret(bonfire_id, provided_code, now):
			return JoinResult.rejected(ErrorCode.INVALID_SECRET)

		if bonfire.has_pin:
			attempt = await lockout.reserve_attempt(bonfire_id, user_id, now)
			if attempt.is_locked(now):
				return JoinResult.rejected(ErrorCode.RATE_LIMITED, retry_after=attempt.locked_until)
			pin_ok = False
			if provided_pin and bonfire.pin_hash:
				pin_ok = await asyncio.to_thread(verify_pin, bonfire.pin_hash, provided_pin)
			if not pin_ok:
				state = await lockout.record_failure(bonfire_id, user_id, attempt.failures, now)
				if state.is_locked(now):
					# The attempt that trips the threshold still reports the wrong PIN.
					return JoinResult.rejected(ErrorCode.INVALID_PIN, retry_after=state.locked_until)
				return JoinResult.rejected(ErrorCode.INVALID_PIN)
			await lockout.clear(bonfire_id, user_id)

		created = await self._repo.upsert_participant(bonfire_id, user_id, now)
		return JoinResult.accepted(already_member=not created)
