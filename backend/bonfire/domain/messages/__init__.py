"""Messages domain exports."""

from .service import MessageService
from .stream import MessageSource, MessageStream

__all__ = ["MessageService", "MessageSource", "MessageStream"]
