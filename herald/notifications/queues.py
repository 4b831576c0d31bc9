"""Queue naming and declaration shared by the delivery producer and workers."""

from __future__ import annotations

from aio_pika.abc import AbstractChannel, AbstractQueue

from herald.notifications.contracts import Channel

RETRY_HEADER = "x-retry-count"


def delivery_queue_name(channel: Channel) -> str:
  return f"notification_delivery_{channel.value.lower()}"


def dead_letter_queue_name(channel: Channel) -> str:
  return f"{delivery_queue_name(channel)}_dlq"


async def declare_delivery_queue(amqp_channel: AbstractChannel, channel: Channel) -> AbstractQueue:
  """Declare the durable channel queue and its dead-letter companion.

  Producers and consumers both call this so the queue is always declared with the same
  arguments; RabbitMQ rejects a redeclaration whose arguments differ.
  """
  dlq_name = dead_letter_queue_name(channel)
  await amqp_channel.declare_queue(dlq_name, durable=True)
  # Rejected messages go through the default exchange, routed by the DLQ name.
  return await amqp_channel.declare_queue(
    delivery_queue_name(channel), durable=True, arguments={"x-dead-letter-exchange": "", "x-dead-letter-routing-key": dlq_name}
  )


def read_retry_count(headers: dict | None) -> int:
  """Return the retry counter carried in message headers; absent or malformed means 0."""
  if not headers:
    return 0
  raw = headers.get(RETRY_HEADER)
  try:
    return max(int(raw), 0) if raw is not None else 0
  except (TypeError, ValueError):
    return 0
