"""Secret window clock: maps wall-clock time onto fixed rotation windows."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from bonfire.settings import settings

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def window_duration(seconds: Optional[int] = None) -> timedelta:
	return timedelta(seconds=int(seconds if seconds is not None else settings.secret_window_seconds))


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def as_utc(now: datetime) -> datetime:
	# Naive datetimes are treated as UTC.
	if now.tzinfo is None:
		return now.replace(tzinfo=timezone.utc)
	return now.astimezone(timezone.utc)


def window_start(now: datetime, *, seconds: Optional[int] = None) -> datetime:
	"""Align ``now`` down to the start of its window."""
	duration = window_duration(seconds)
	elapsed = as_utc(now) - _EPOCH
	return _EPOCH + (elapsed // duration) * duration


def previous_window(now: datetime, *, seconds: Optional[int] = None) -> datetime:
	return window_start(now, seconds=seconds) - window_duration(seconds)


def next_rotation(now: datetime, *, seconds: Optional[int] = None) -> datetime:
	"""Return the instant the current window's code stops being the newest."""
	return window_start(now, seconds=seconds) + window_duration(seconds)
