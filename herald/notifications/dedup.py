"""Short-lived Redis markers that decide between a new notification and aggregation."""

from __future__ import annotations

import uuid
from typing import Any

PENDING_MARKER = "pending"


def build_dedup_key(recipient_id: str, template_id: uuid.UUID | str, entity_id: str) -> str:
  return f"dedupe:{recipient_id}:{template_id}:{entity_id}"


class DedupCache:
  """Wrap the Redis calls for the dedup marker.

  The marker has two states. ``acquire`` is an atomic SET NX EX of ``"pending"``, so exactly
  one concurrent caller for a key wins the right to create a row. Once that row is committed
  the winner calls ``arm`` to replace the value with the notification id. Callers that lose
  the race read the value with ``peek`` to tell an insert in flight from a committed row.
  """

  def __init__(self, redis: Any, *, ttl_seconds: int) -> None:
    self._redis = redis
    self._ttl_seconds = ttl_seconds

  @property
  def ttl_seconds(self) -> int:
    return self._ttl_seconds

  async def acquire(self, key: str) -> bool:
    """Set the pending marker if absent; True means the caller owns the window."""
    result = await self._redis.set(key, PENDING_MARKER, nx=True, ex=self._ttl_seconds)
    return bool(result)

  async def arm(self, key: str, notification_id: uuid.UUID | str) -> None:
    """Point the marker at a committed notification and restart its TTL."""
    await self._redis.set(key, str(notification_id), ex=self._ttl_seconds)

  async def peek(self, key: str) -> str | None:
    value = await self._redis.get(key)
    # Clients built without decode_responses hand back bytes.
    if isinstance(value, bytes):
      return value.decode("utf-8")
    return value

  async def release(self, key: str) -> None:
    await self._redis.delete(key)
