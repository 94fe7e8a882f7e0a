"""Pydantic schemas for bonfire messages."""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from .models import Message


class MessageSendRequest(BaseModel):
	type: Literal["text", "image"] = "text"
	content: Optional[str] = Field(default=None, max_length=4000)
	image_url: Optional[str] = Field(default=None, max_length=2048)
	image_width: Optional[int] = Field(default=None, ge=1)
	image_height: Optional[int] = Field(default=None, ge=1)
	image_size_bytes: Optional[int] = Field(default=None, ge=0)

	@model_validator(mode="after")
	def check_payload(self) -> "MessageSendRequest":
		if self.content is not None:
			self.content = self.content.strip() or None
		if self.type == "text" and not self.content:
			raise ValueError("message content cannot be empty")
		if self.type == "image" and not self.image_url:
			raise ValueError("image messages require image_url")
		return self


class MessageResponse(BaseModel):
	id: str
	bonfire_id: str
	sender_id: str
	type: str
	content: Optional[str] = None
	image_url: Optional[str] = None
	image_width: Optional[int] = None
	image_height: Optional[int] = None
	image_size_bytes: Optional[int] = None
	created_at: datetime

	@classmethod
	def from_message(cls, message: Message) -> "MessageResponse":
		return cls(**message.to_dict())


class MessageListResponse(BaseModel):
	items: List[MessageResponse]
