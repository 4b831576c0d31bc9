"""Publish delivery jobs onto the per-channel durable queues."""

from __future__ import annotations

import logging

import msgspec
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel

from herald.notifications.contracts import Channel, DeliveryJob
from herald.notifications.queues import RETRY_HEADER, declare_delivery_queue, delivery_queue_name

logger = logging.getLogger(__name__)

_ENCODER = msgspec.json.Encoder()


def build_delivery_message(job: DeliveryJob, *, retry_count: int = 0) -> Message:
  """Wrap a job in a persistent AMQP message carrying its retry counter."""
  headers = {RETRY_HEADER: retry_count} if retry_count else {}
  return Message(
    body=_ENCODER.encode(job),
    content_type="application/json",
    delivery_mode=DeliveryMode.PERSISTENT,
    headers=headers,
    correlation_id=job.trace_id,
  )


class DeliveryProducer:
  """Enqueue one job per (notification, channel) onto ``notification_delivery_<channel>``.

  The producer performs no deduplication of its own.
  """

  def __init__(self, *, amqp_channel: AbstractChannel) -> None:
    self._amqp_channel = amqp_channel
    self._declared: set[Channel] = set()

  async def enqueue(self, channel: Channel, job: DeliveryJob) -> None:
    await self.publish(channel, build_delivery_message(job))
    logger.info("Enqueued delivery job notification_id=%s channel=%s trace_id=%s", job.notification_id, channel.value, job.trace_id)

  async def publish(self, channel: Channel, message: Message) -> None:
    """Publish a prebuilt message; the worker reuses this for delayed retries."""
    if channel not in self._declared:
      await declare_delivery_queue(self._amqp_channel, channel)
      self._declared.add(channel)
    await self._amqp_channel.default_exchange.publish(message, routing_key=delivery_queue_name(channel))
