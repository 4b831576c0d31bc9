"""Event ingestion queue: publish domain events and feed them into ``handle_event``."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import msgspec
from aio_pika import DeliveryMode, Message
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

from herald.notifications.contracts import EntityType, InvalidQueueMessageError, NotificationEvent, TemplateNotFoundError
from herald.notifications.service import NotificationService

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 30


def map_topic_to_event(topic: str, payload: Mapping[str, Any]) -> NotificationEvent | None:
  """Translate a domain envelope into a NotificationEvent; None for unknown topics and self-actions."""
  if topic == "post.liked":
    event = NotificationEvent(
      recipient_id=payload["postOwnerId"],
      actor_id=payload.get("userId"),
      template_slug="post_liked",
      entity_type=EntityType.POST,
      entity_id=payload["postId"],
      data={"actorName": payload.get("userName")},
      meta_data={"actionUrl": f"/post/{payload['postId']}"},
    )
  elif topic == "comment.created":
    event = NotificationEvent(
      recipient_id=payload["postOwnerId"],
      actor_id=payload.get("userId"),
      template_slug="new_comment",
      entity_type=EntityType.COMMENT,
      entity_id=payload["commentId"],
      data={"actorName": payload.get("userName")},
    )
  elif topic == "user.followed":
    event = NotificationEvent(
      recipient_id=payload["targetUserId"],
      actor_id=payload.get("followerId"),
      template_slug="new_follower",
      entity_type=EntityType.FOLLOW,
      entity_id=payload["followerId"],
      data={"actorName": payload.get("followerName")},
    )
  elif topic == "message.received":
    content = payload.get("content") or ""
    event = NotificationEvent(
      recipient_id=payload["recipientId"],
      actor_id=payload.get("senderId"),
      template_slug="new_message",
      entity_type=EntityType.CHAT,
      entity_id=payload["chatRoomId"],
      data={"actorName": payload.get("senderName"), "snippet": content[:SNIPPET_LENGTH]},
    )
  else:
    return None

  # Users are never notified about their own actions.
  if event.actor_id is not None and event.actor_id == event.recipient_id:
    return None
  return event


def decode_ingestion_message(body: bytes) -> NotificationEvent | None:
  """Decode a NotificationEvent or a ``{topic, payload}`` envelope.

  Returns None for envelopes whose topic is not mapped; raises InvalidQueueMessageError on
  bodies that are neither shape.
  """
  try:
    raw = msgspec.json.decode(body)
    if isinstance(raw, dict) and "topic" in raw:
      payload = raw.get("payload") or {}
      if not isinstance(payload, dict):
        raise InvalidQueueMessageError("Envelope payload must be an object")
      event = map_topic_to_event(str(raw["topic"]), payload)
      if event is None:
        logger.info("Dropping unmapped event topic=%s", raw["topic"])
      return event
    return msgspec.convert(raw, NotificationEvent)
  except (msgspec.DecodeError, msgspec.ValidationError, KeyError) as exc:
    raise InvalidQueueMessageError(f"Undecodable ingestion message: {exc}") from exc


class EventPublisher:
  """Write events to the durable ingestion queue."""

  def __init__(self, *, amqp_channel: AbstractChannel, queue_name: str = "notifications_queue") -> None:
    self._amqp_channel = amqp_channel
    self._queue_name = queue_name
    self._declared = False

  async def _ensure_queue(self) -> None:
    if not self._declared:
      await self._amqp_channel.declare_queue(self._queue_name, durable=True)
      self._declared = True

  async def publish(self, event: NotificationEvent) -> None:
    await self._publish_body(msgspec.json.encode(event))
    logger.debug("Published event template=%s recipient_id=%s", event.template_slug, event.recipient_id)

  async def publish_topic(self, topic: str, payload: Mapping[str, Any]) -> None:
    """Publish a raw domain envelope; mapping happens on the consumer side."""
    await self._publish_body(msgspec.json.encode({"topic": topic, "payload": dict(payload)}))

  async def _publish_body(self, body: bytes) -> None:
    await self._ensure_queue()
    message = Message(body=body, content_type="application/json", delivery_mode=DeliveryMode.PERSISTENT)
    await self._amqp_channel.default_exchange.publish(message, routing_key=self._queue_name)


class EventConsumer:
  """Consume the ingestion queue and call ``NotificationService.handle_event`` per message."""

  def __init__(self, *, service: NotificationService, amqp_channel: AbstractChannel, queue_name: str = "notifications_queue", prefetch: int = 10) -> None:
    self._service = service
    self._amqp_channel = amqp_channel
    self._queue_name = queue_name
    self._prefetch = prefetch
    self._queue: AbstractQueue | None = None
    self._consumer_tag: str | None = None

  async def start(self) -> None:
    await self._amqp_channel.set_qos(prefetch_count=self._prefetch)
    self._queue = await self._amqp_channel.declare_queue(self._queue_name, durable=True)
    self._consumer_tag = await self._queue.consume(self.handle_message)
    logger.info("Event consumer started queue=%s", self._queue_name)

  async def handle_message(self, message: AbstractIncomingMessage) -> None:
    try:
      event = decode_ingestion_message(message.body)
    except InvalidQueueMessageError as exc:
      # Rejected without requeue; a redelivery would fail the same way.
      logger.error("Rejecting malformed event message: %s", exc)
      await message.reject(requeue=False)
      return

    # Unknown topics and self-actions decode to None and are dropped.
    if event is None:
      await message.ack()
      return

    try:
      await self._service.handle_event(event)
    except TemplateNotFoundError as exc:
      # A missing template is fatal for this event only; ack so it is not redelivered.
      logger.warning("Dropping event recipient_id=%s: %s", event.recipient_id, exc)
      await message.ack()
      return
    except Exception as exc:  # noqa: BLE001
      # Any other failure is rejected without requeue.
      logger.error("Event handling failed template=%s recipient_id=%s: %s", event.template_slug, event.recipient_id, exc, exc_info=True)
      await message.reject(requeue=False)
      return

    await message.ack()

  async def close(self) -> None:
    if self._queue is not None and self._consumer_tag is not None:
      await self._queue.cancel(self._consumer_tag)
      self._consumer_tag = None
