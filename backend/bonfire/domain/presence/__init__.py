"""Presence domain exports."""

from .heartbeat import PresenceHeartbeat
from .service import touch_presence

__all__ = ["PresenceHeartbeat", "touch_presence"]
