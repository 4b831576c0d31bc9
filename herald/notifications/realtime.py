"""Redis pub/sub publisher for in-app refresh events."""

from __future__ import annotations

import logging
from typing import Any

import msgspec

logger = logging.getLogger(__name__)


class RedisRealtimePublisher:
  """Publish ``{userId, id, message, count}`` on the real-time channel.

  The gateway subscribed to the channel maps ``userId`` to live connections.
  """

  def __init__(self, redis: Any, *, channel: str) -> None:
    self._redis = redis
    self._channel = channel

  async def publish(self, *, user_id: str, notification_id: str, message: str, count: int) -> None:
    payload = msgspec.json.encode({"userId": user_id, "id": notification_id, "message": message, "count": count})
    receivers = await self._redis.publish(self._channel, payload.decode("utf-8"))
    logger.debug("Published realtime event user_id=%s notification_id=%s receivers=%s", user_id, notification_id, receivers)
