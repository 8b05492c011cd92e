"""Redis pub/sub notifier."""

import json
import logging
from typing import Any, Dict, Optional

import redis

from flexo_api.notifications.base import NotificationError, ProgramNotifier, build_event

logger = logging.getLogger(__name__)


class RedisNotifier(ProgramNotifier):
    """Publish program events to a Redis channel.

    Any number of API processes or external consumers may subscribe to
    the channel; Redis pub/sub gives the same at-most-once semantics as
    the in-process hub.

    Configuration:
        redis_url: Redis connection URL
        channel: Channel name events are published on
    """

    def __init__(self, redis_url: str, channel: str, client: Optional[Any] = None):
        self.channel = channel
        self._client = client if client is not None else redis.from_url(redis_url)

    def publish(self, event_type: str, payload: Dict[str, Any]) -> None:
        message = json.dumps(build_event(event_type, payload), default=str)
        try:
            receivers = self._client.publish(self.channel, message)
        except redis.RedisError as e:
            raise NotificationError(f"Failed to publish {event_type}: {e}")

        logger.debug(f"Published {event_type} to {self.channel} ({receivers} receivers)")

    def close(self) -> None:
        try:
            self._client.close()
        except redis.RedisError as e:
            logger.warning(f"Failed to close Redis notifier client: {e}")
