"""PIN failure bookkeeping per (bonfire, user) pair.

Every PIN submission claims an attempt slot with INCR before the PIN is
compared. Racing submissions therefore receive distinct slot numbers, and at
most ``pin_max_failures`` of them per lockout round ever reach the comparison.
The slot that reaches the threshold with a wrong PIN engages the lock.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from bonfire.domain.rendezvous.models import LockState
from bonfire.infra.redis import redis_client
from bonfire.obs import metrics as obs_metrics
from bonfire.settings import settings

logger = logging.getLogger(__name__)


def _failure_key(bonfire_id: str, user_id: str) -> str:
	return f"bonfire:pin:fail:{bonfire_id}:{user_id}"


def _lock_key(bonfire_id: str, user_id: str) -> str:
	return f"bonfire:pin:lock:{bonfire_id}:{user_id}"


def _lockout_seconds() -> int:
	return max(1, int(settings.pin_lockout_seconds))


def _parse_until(raw: Optional[str]) -> Optional[datetime]:
	if not raw:
		return None
	try:
		return datetime.fromtimestamp(float(raw), tz=timezone.utc)
	except (TypeError, ValueError):
		return None


async def get_state(bonfire_id: str, user_id: str) -> LockState:
	failures_raw, until_raw = await redis_client.mget(
		_failure_key(bonfire_id, user_id),
		_lock_key(bonfire_id, user_id),
	)
	return LockState(failures=int(failures_raw or 0), locked_until=_parse_until(until_raw))


async def reserve_attempt(bonfire_id: str, user_id: str, now: datetime) -> LockState:
	"""Claim the next attempt slot; the returned state is locked when the caller must not check the PIN."""
	lockout_seconds = _lockout_seconds()
	failure_key = _failure_key(bonfire_id, user_id)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(failure_key)
		pipe.expire(failure_key, lockout_seconds)
		pipe.get(_lock_key(bonfire_id, user_id))
		count, _, until_raw = await pipe.execute()
	count = int(count)
	locked_until = _parse_until(until_raw)
	if locked_until is not None and locked_until > now:
		return LockState(failures=count, locked_until=locked_until)
	if count > settings.pin_max_failures:
		# Every slot of this round is taken by attempts still being checked.
		return LockState(failures=count, locked_until=now + timedelta(seconds=lockout_seconds))
	return LockState(failures=count)


async def record_failure(bonfire_id: str, user_id: str, attempt: int, now: datetime) -> LockState:
	"""Settle a wrong PIN for the slot ``attempt``; lock the pair when it is the last slot."""
	if attempt < settings.pin_max_failures:
		return LockState(failures=attempt)

	lockout_seconds = _lockout_seconds()
	until = now + timedelta(seconds=lockout_seconds)
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.set(_lock_key(bonfire_id, user_id), f"{until.timestamp():.6f}", ex=lockout_seconds)
		pipe.delete(_failure_key(bonfire_id, user_id))
		await pipe.execute()
	obs_metrics.inc_pin_lockout()
	logger.warning(
		"pin lockout engaged bonfire=%s user=%s failures=%s",
		bonfire_id,
		user_id,
		attempt,
	)
	return LockState(failures=attempt, locked_until=until)


async def clear(bonfire_id: str, user_id: str) -> None:
	"""Reset the failure count after a correct PIN.

	The lock key is left alone: a lock engaged by a racing wrong PIN stays in
	force until it expires.
	"""
	await redis_client.delete(_failure_key(bonfire_id, user_id))
