"""FastAPI routes for bonfire chat and participant presence."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from bonfire.domain.messages import MessageService
from bonfire.domain.messages import schemas
from bonfire.domain.presence import touch_presence
from bonfire.domain.rendezvous import BonfireService
from bonfire.domain.rendezvous.errors import BonfirePolicyError
from bonfire.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/bonfires", tags=["bonfire-messages"])

_bonfire_service = BonfireService()
_message_service = MessageService(bonfires=_bonfire_service)


@router.get("/{bonfire_id}/messages", response_model=schemas.MessageListResponse)
async def list_messages_endpoint(
	bonfire_id: str,
	since: Optional[datetime] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MessageListResponse:
	return await _message_service.list_messages(auth_user, bonfire_id, since=since)


@router.post("/{bonfire_id}/messages", response_model=schemas.MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(
	bonfire_id: str,
	payload: schemas.MessageSendRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.MessageResponse:
	return await _message_service.send_message(auth_user, bonfire_id, payload)


@router.post("/{bonfire_id}/presence", status_code=status.HTTP_200_OK)
async def presence_endpoint(
	bonfire_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> dict:
	if not await touch_presence(bonfire_id, auth_user.id):
		raise BonfirePolicyError("not_participant", status_code=status.HTTP_403_FORBIDDEN)
	return {"ok": True}
