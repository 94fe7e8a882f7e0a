"""Domain models for bonfire messages."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Literal, Optional

MessageType = Literal["text", "image"]


@dataclass(slots=True, frozen=True)
class ImageMeta:
	url: str
	width: Optional[int] = None
	height: Optional[int] = None
	size_bytes: Optional[int] = None


@dataclass(slots=True, frozen=True)
class Message:
	id: str
	bonfire_id: str
	sender_id: str
	type: MessageType
	content: Optional[str]
	created_at: datetime
	image: Optional[ImageMeta] = None

	def to_dict(self) -> Dict[str, Any]:
		return {
			"id": self.id,
			"bonfire_id": self.bonfire_id,
			"sender_id": self.sender_id,
			"type": self.type,
			"content": self.content,
			"image_url": self.image.url if self.image else None,
			"image_width": self.image.width if self.image else None,
			"image_height": self.image.height if self.image else None,
			"image_size_bytes": self.image.size_bytes if self.image else None,
			"created_at": self.created_at.isoformat(),
		}

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> "Message":
		created_at = data["created_at"]
		if isinstance(created_at, str):
			created_at = datetime.fromisoformat(created_at)
		image = None
		if data.get("image_url"):
			image = ImageMeta(
				url=str(data["image_url"]),
				width=data.get("image_width"),
				height=data.get("image_height"),
				size_bytes=data.get("image_size_bytes"),
			)
		return cls(
			id=str(data["id"]),
			bonfire_id=str(data["bonfire_id"]),
			sender_id=str(data["sender_id"]),
			type=data.get("type") or "text",
			content=data.get("content"),
			created_at=created_at,
			image=image,
		)
