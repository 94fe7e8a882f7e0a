"""Device-side helpers: location sampling, discovery and session scoping."""

from .http import BonfireClient, BonfireClientError, PollingMessageSource
from .notifier import DiscoveryEvent, DiscoveryNotifier
from .realtime import SocketMessageSource
from .sampler import LocationSample, LocationSampler
from .session_view import SessionView

__all__ = [
	"BonfireClient",
	"BonfireClientError",
	"DiscoveryEvent",
	"DiscoveryNotifier",
	"LocationSample",
	"LocationSampler",
	"PollingMessageSource",
	"SessionView",
	"SocketMessageSource",
]
