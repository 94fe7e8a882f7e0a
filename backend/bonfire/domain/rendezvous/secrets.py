"""Join-secret derivation.

The owner's device and the server derive the same code independently, so the
derivation must stay deterministic for a given (bonfire, window) pair.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from bonfire.domain.rendezvous import clock
from bonfire.domain.rendezvous.errors import ConfigurationError
from bonfire.settings import settings


@dataclass(slots=True, frozen=True)
class SecretWindow:
	window_start: datetime
	secret: str


def master_key() -> str:
	key = (settings.bonfire_master_key or "").strip()
	if not key:
		raise ConfigurationError("BONFIRE_SECRET_KEY is not configured")
	return key


def normalise_code(code: str) -> str:
	return (code or "").strip().upper()


def derive(bonfire_id: str, window_start: datetime, key: Optional[str] = None, *, length: Optional[int] = None) -> str:
	"""Return the secret code for ``bonfire_id`` during the window starting at ``window_start``."""
	secret_key = key if key is not None else master_key()
	size = int(length or settings.secret_code_length)
	message = f"{bonfire_id}:{clock.as_utc(window_start).isoformat()}"
	digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
	return digest[:size].upper()


def current_secret(bonfire_id: str, now: Optional[datetime] = None) -> SecretWindow:
	start = clock.window_start(now or clock.utcnow())
	return SecretWindow(window_start=start, secret=derive(bonfire_id, start))


def is_secret_valid(bonfire_id: str, provided_code: str, now: Optional[datetime] = None) -> bool:
	"""Accept the code for the current window or the one immediately before it."""
	provided = normalise_code(provided_code)
	if not provided:
		return False
	moment = now or clock.utcnow()
	candidates = (
		derive(bonfire_id, clock.window_start(moment)),
		derive(bonfire_id, clock.previous_window(moment)),
	)
	# Evaluate both comparisons so timing does not reveal which window matched.
	matches = [hmac.compare_digest(provided.encode("utf-8"), candidate.encode("utf-8")) for candidate in candidates]
	return any(matches)
