import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from herald.config import get_settings
from herald.core.connections import build_redis_client, connect_broker
from herald.core.database import dispose_engine, get_session_factory
from herald.core.logging import initialize_logging
from herald.notifications.factory import build_notification_service
from herald.notifications.ingestion import EventPublisher


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Open the Postgres, Redis and RabbitMQ handles the HTTP surface needs and close them on shutdown."""
  settings = get_settings()
  logger = logging.getLogger("herald.core.lifespan")

  initialize_logging(settings)
  logger.info("Starting up env=%s database=%s", settings.environment, _redact_dsn(settings.pg_dsn))

  session_factory = get_session_factory()
  redis = build_redis_client(settings)
  connection = await connect_broker(settings)
  try:
    amqp_channel = await connection.channel()
    app.state.notification_service = build_notification_service(settings, session_factory=session_factory, redis=redis, amqp_channel=amqp_channel)
    app.state.event_publisher = EventPublisher(amqp_channel=amqp_channel, queue_name=settings.ingestion_queue)
    logger.info("Startup complete.")
    yield
  finally:
    await connection.close()
    await redis.aclose()
    await dispose_engine()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
