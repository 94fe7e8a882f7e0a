"""Server side of the presence heartbeat."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from bonfire.domain.rendezvous import clock
from bonfire.domain.rendezvous.repo import BonfireRepository
from bonfire.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


async def touch_presence(
	bonfire_id: str,
	user_id: str,
	seen_at: Optional[datetime] = None,
	*,
	repository: Optional[BonfireRepository] = None,
) -> bool:
	"""Record liveness for a participant; unknown pairs are ignored."""
	repo = repository or BonfireRepository()
	updated = await repo.touch_participant(bonfire_id, user_id, seen_at or clock.utcnow())
	if updated:
		obs_metrics.inc_presence_touch()
	elif logger.isEnabledFor(logging.DEBUG):
		logger.debug("presence touch ignored bonfire=%s user=%s", bonfire_id, user_id)
	return updated
