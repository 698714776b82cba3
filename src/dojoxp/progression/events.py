"""Best-effort pub/sub fan-out of progression events."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)

PROGRESS_CHANNEL = "pubsub:progress_update"
STREAK_CHANNEL = "pubsub:streak_update"
BADGE_CHANNEL = "pubsub:badge_earned"


async def publish_event(redis: object, channel: str, payload: dict) -> bool:
    """Publish ``payload`` as JSON. Returns False if redis is absent or the publish failed.

    Runs after the transaction commits; a failure here never undoes progress.
    """
    if redis is None:
        return False
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)
        return False
    return True
