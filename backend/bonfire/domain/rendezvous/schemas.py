"""Pydantic schemas for the bonfire endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class BonfireCreateRequest(BaseModel):
	name: str = Field(..., min_length=1, max_length=100)
	description: Optional[str] = Field(default=None, max_length=500)
	latitude: float = Field(..., ge=-90.0, le=90.0)
	longitude: float = Field(..., ge=-180.0, le=180.0)
	proximity_radius_meters: int = Field(default=50, ge=10, le=1000)
	expiry_hours: int = Field(default=12, ge=1, le=24)
	pin: Optional[str] = None

	@field_validator("name")
	def strip_name(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("name must not be blank")
		return value

	@field_validator("pin")
	def validate_pin(cls, value: Optional[str]) -> Optional[str]:
		if value is None or value == "":
			return None
		if not value.isdigit() or not 4 <= len(value) <= 6:
			raise ValueError("PIN must be 4-6 digits")
		return value


class BonfireSummary(BaseModel):
	id: str
	creator_id: str
	name: str
	description: Optional[str] = None
	latitude: float
	longitude: float
	proximity_radius_meters: int
	has_pin: bool
	expires_at: datetime
	is_active: bool
	participant_count: int = 0
	current_secret_code: Optional[str] = None
	secret_window_start: Optional[datetime] = None


class ParticipantSummary(BaseModel):
	user_id: str
	joined_at: datetime
	last_seen_at: datetime


class BonfireDetail(BonfireSummary):
	participants: List[ParticipantSummary] = Field(default_factory=list)


class NearbyBonfireItem(BaseModel):
	id: str
	name: str
	description: Optional[str] = None
	creator_id: str
	distance_meters: float = Field(..., ge=0)
	participant_count: int
	has_pin: bool
	expires_at: datetime
	proximity_radius_meters: int


class NearbyResponse(BaseModel):
	items: List[NearbyBonfireItem]


class SecretFetchRequest(BaseModel):
	lat: float = Field(..., ge=-90.0, le=90.0)
	lon: float = Field(..., ge=-180.0, le=180.0)


class SecretResponse(BaseModel):
	secret_code: str
	window_start: datetime
	rotates_at: datetime


class JoinRequest(BaseModel):
	secret_code: str = Field(..., min_length=1, max_length=64)
	pin: Optional[str] = Field(default=None, max_length=6)


class JoinResponse(BaseModel):
	ok: bool
	already_member: bool = False


class LocationUpdateRequest(BaseModel):
	lat: float = Field(..., ge=-90.0, le=90.0)
	lon: float = Field(..., ge=-180.0, le=180.0)
	accuracy: Optional[float] = Field(default=None, ge=0)


class LocationUpdateResponse(BaseModel):
	ok: bool
	updated: bool
	bonfire_id: Optional[str] = None
