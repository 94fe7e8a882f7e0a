"""Typed outcomes for the rendezvous boundary.

Validation failures travel back to callers as values (``Rejection``) so the
UI can tell "wrong code" from "too many attempts". Policy violations on the
lifecycle endpoints raise ``BonfirePolicyError`` like the other domains.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
	INVALID_SECRET = "invalid_secret"
	INVALID_PIN = "invalid_pin"
	RATE_LIMITED = "rate_limited"
	PROXIMITY_DENIED = "proximity_denied"
	NOT_FOUND = "not_found"
	NETWORK_ERROR = "network_error"


RETRYABLE = frozenset({ErrorCode.INVALID_SECRET, ErrorCode.INVALID_PIN, ErrorCode.PROXIMITY_DENIED, ErrorCode.NETWORK_ERROR})


@dataclass(slots=True, frozen=True)
class Rejection:
	code: ErrorCode
	retry_after: Optional[datetime] = None
	message: Optional[str] = None

	@property
	def retryable(self) -> bool:
		return self.code in RETRYABLE

	def to_dict(self) -> dict:
		payload: dict = {"detail": self.code.value}
		if self.retry_after is not None:
			payload["retry_after"] = self.retry_after.isoformat()
		if self.message:
			payload["message"] = self.message
		return payload


class ConfigurationError(RuntimeError):
	"""Raised when the process is missing required configuration."""


class BonfirePolicyError(RuntimeError):
	def __init__(self, code: str, *, status_code: int = 400, message: str | None = None) -> None:
		super().__init__(message or code)
		self.code = code
		self.status_code = status_code
		self.detail = message or code
