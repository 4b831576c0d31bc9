"""Builders for the Redis and RabbitMQ handles shared by producers and consumers.

Handles are created by the process entry points (HTTP lifespan, worker runner) and
passed into the components that use them; nothing here caches a module-level client.
"""

from __future__ import annotations

import logging

import aio_pika
import redis.asyncio as redis
from aio_pika.abc import AbstractRobustConnection

from herald.config import Settings

logger = logging.getLogger(__name__)


def build_redis_client(settings: Settings) -> redis.Redis:
  """Create a Redis client for the dedup cache and real-time pub/sub."""
  return redis.from_url(settings.redis_url, decode_responses=True)


async def connect_broker(settings: Settings) -> AbstractRobustConnection:
  """Open a robust AMQP connection that reconnects after broker restarts."""
  connection = await aio_pika.connect_robust(settings.rabbitmq_url)
  logger.info("RabbitMQ connected host=%s", connection.url.host)
  return connection
