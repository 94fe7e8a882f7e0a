"""FastAPI routes for bonfire discovery, rendezvous and lifecycle."""

from __future__ import annotations

from typing import Optional, cast

from fastapi import APIRouter, Depends, Query, status

from bonfire.api.errors import rejection_response
from bonfire.domain.rendezvous import BonfireService, clock, schemas, secrets
from bonfire.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/bonfires", tags=["bonfires"])

_bonfire_service = BonfireService()


@router.post("", response_model=schemas.BonfireSummary, status_code=status.HTTP_201_CREATED)
async def create_bonfire_endpoint(
	payload: schemas.BonfireCreateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.BonfireSummary:
	return await _bonfire_service.create_bonfire(auth_user, payload)


@router.get("/nearby", response_model=schemas.NearbyResponse)
async def nearby_endpoint(
	lat: float = Query(..., ge=-90.0, le=90.0),
	lon: float = Query(..., ge=-180.0, le=180.0),
	radius_m: Optional[float] = Query(default=None, gt=0, le=5000),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.NearbyResponse:
	return await _bonfire_service.find_nearby(auth_user, lat, lon, radius_m)


@router.post("/location", response_model=schemas.LocationUpdateResponse)
async def update_location_endpoint(
	payload: schemas.LocationUpdateRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.LocationUpdateResponse:
	return await _bonfire_service.update_creator_location(auth_user, payload.lat, payload.lon)


@router.post("/{bonfire_id}/secret", response_model=schemas.SecretResponse)
async def fetch_secret_endpoint(
	bonfire_id: str,
	payload: schemas.SecretFetchRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
):
	now = clock.utcnow()
	result = await _bonfire_service.fetch_current_secret(
		bonfire_id, payload.lat, payload.lon, user_id=auth_user.id, now=now
	)
	if result.rejection is not None:
		return rejection_response(result.rejection, now=now)
	window = cast(secrets.SecretWindow, result.window)
	return schemas.SecretResponse(
		secret_code=window.secret,
		window_start=window.window_start,
		rotates_at=clock.next_rotation(now),
	)


@router.post("/{bonfire_id}/join", response_model=schemas.JoinResponse)
async def join_endpoint(
	bonfire_id: str,
	payload: schemas.JoinRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
):
	now = clock.utcnow()
	result = await _bonfire_service.join(auth_user, bonfire_id, payload, now=now)
	if result.rejection is not None:
		return rejection_response(result.rejection, now=now)
	return schemas.JoinResponse(ok=True, already_member=result.already_member)


@router.get("/{bonfire_id}", response_model=schemas.BonfireDetail)
async def get_bonfire_endpoint(
	bonfire_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.BonfireDetail:
	return await _bonfire_service.get_bonfire(auth_user, bonfire_id)


@router.post("/{bonfire_id}/end", status_code=status.HTTP_200_OK)
async def end_bonfire_endpoint(
	bonfire_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	await _bonfire_service.end_bonfire(auth_user, bonfire_id)
	return {"ok": True}


@router.post("/{bonfire_id}/leave", status_code=status.HTTP_200_OK)
async def leave_bonfire_endpoint(
	bonfire_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	await _bonfire_service.leave_bonfire(auth_user, bonfire_id)
	return {"ok": True}
