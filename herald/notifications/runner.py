"""Entry point for the delivery worker process (``herald-workers``)."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from herald.config import Settings, get_settings
from herald.core.connections import build_redis_client, connect_broker
from herald.core.database import dispose_engine, get_session_factory
from herald.core.logging import initialize_logging
from herald.notifications.contracts import Channel
from herald.notifications.factory import build_notification_service, build_worker_pool
from herald.notifications.ingestion import EventConsumer

logger = logging.getLogger("herald.notifications.runner")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
  parser = argparse.ArgumentParser(description="Run the notification delivery workers.")
  parser.add_argument(
    "--channel", action="append", choices=[channel.value for channel in Channel], help="Channel to consume; repeat for several. Defaults to every channel."
  )
  parser.add_argument("--with-ingestion", action="store_true", help="Also consume the event ingestion queue.")
  return parser.parse_args(argv)


async def run_workers(settings: Settings, *, channels: list[Channel], with_ingestion: bool) -> None:
  """Run consumers until SIGINT or SIGTERM, then shut them down in order."""
  stop = asyncio.Event()
  loop = asyncio.get_running_loop()
  for sig in (signal.SIGINT, signal.SIGTERM):
    loop.add_signal_handler(sig, stop.set)

  session_factory = get_session_factory()
  redis = build_redis_client(settings)
  connection = await connect_broker(settings)
  consumer: EventConsumer | None = None
  pool = None
  try:
    pool = await build_worker_pool(settings, session_factory=session_factory, redis=redis, connection=connection, channels=channels)
    await pool.start()

    if with_ingestion:
      producer_channel = await connection.channel()
      service = build_notification_service(settings, session_factory=session_factory, redis=redis, amqp_channel=producer_channel)
      consumer = EventConsumer(service=service, amqp_channel=await connection.channel(), queue_name=settings.ingestion_queue, prefetch=settings.delivery_prefetch)
      await consumer.start()

    logger.info("Workers running channels=%s ingestion=%s", ",".join(channel.value for channel in channels), with_ingestion)
    await stop.wait()
    logger.info("Shutdown requested; stopping workers.")
  finally:
    if consumer is not None:
      await consumer.close()
    if pool is not None:
      await pool.close()
    await connection.close()
    await redis.aclose()
    await dispose_engine()


def main(argv: list[str] | None = None) -> None:
  args = _parse_args(argv)
  settings = get_settings()
  initialize_logging(settings, log_name="herald-workers")
  channels = [Channel(value) for value in args.channel] if args.channel else list(Channel)
  asyncio.run(run_workers(settings, channels=channels, with_ingestion=args.with_ingestion))


if __name__ == "__main__":
  main()
