"""Request ID helper for endpoints.

The observability middleware binds the request id into the logging context;
error handlers read it back from there.
"""

from __future__ import annotations

from bonfire.obs import logging as obs_logging


def get_request_id(default: str = "unknown") -> str:
	"""Return the current request id if bound, else a default."""
	return obs_logging.current_request_id() or default
