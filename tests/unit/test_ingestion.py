from __future__ import annotations

import msgspec
import pytest
from conftest import FakeAmqpChannel, FakeIncomingMessage

from herald.notifications.contracts import EntityType, InvalidQueueMessageError, NotificationEvent, TemplateNotFoundError
from herald.notifications.ingestion import EventConsumer, EventPublisher, decode_ingestion_message, map_topic_to_event


def test_post_liked_maps_to_owner_with_action_url():
  event = map_topic_to_event("post.liked", {"postOwnerId": "owner", "userId": "fan", "userName": "Ada", "postId": "p9"})

  assert event is not None
  assert (event.recipient_id, event.actor_id, event.template_slug) == ("owner", "fan", "post_liked")
  assert (event.entity_type, event.entity_id) == (EntityType.POST, "p9")
  assert event.meta_data == {"actionUrl": "/post/p9"}


def test_message_snippet_is_truncated():
  content = "x" * 80
  event = map_topic_to_event("message.received", {"recipientId": "u1", "senderId": "u2", "senderName": "Bo", "chatRoomId": "room-1", "content": content})

  assert event is not None
  assert event.entity_type == EntityType.CHAT
  assert event.data["snippet"] == "x" * 30


def test_self_actions_and_unknown_topics_are_dropped():
  assert map_topic_to_event("post.liked", {"postOwnerId": "u1", "userId": "u1", "postId": "p1"}) is None
  assert map_topic_to_event("user.followed", {"targetUserId": "u1", "followerId": "u1"}) is None
  assert map_topic_to_event("post.shared", {"postOwnerId": "u1"}) is None


def test_decode_accepts_events_and_envelopes():
  event = NotificationEvent(recipient_id="u1", template_slug="new_follower", entity_type=EntityType.FOLLOW, entity_id="u2", actor_id="u2")

  assert decode_ingestion_message(msgspec.json.encode(event)) == event

  envelope = msgspec.json.encode({"topic": "user.followed", "payload": {"targetUserId": "u1", "followerId": "u2", "followerName": "Bo"}})
  decoded = decode_ingestion_message(envelope)
  assert decoded is not None and decoded.template_slug == "new_follower"


@pytest.mark.parametrize("body", [b"{", msgspec.json.encode({"recipientId": "u1"}), msgspec.json.encode({"topic": "post.liked", "payload": {"userId": "u2"}})])
def test_decode_rejects_malformed_bodies(body):
  with pytest.raises(InvalidQueueMessageError):
    decode_ingestion_message(body)


class _ServiceStub:
  def __init__(self, error: Exception | None = None) -> None:
    self.error = error
    self.events: list[NotificationEvent] = []

  async def handle_event(self, event: NotificationEvent):
    self.events.append(event)
    if self.error is not None:
      raise self.error


def _envelope() -> bytes:
  return msgspec.json.encode({"topic": "post.liked", "payload": {"postOwnerId": "owner", "userId": "fan", "postId": "p1"}})


@pytest.mark.anyio
async def test_consumer_acks_handled_and_unmapped_events():
  service = _ServiceStub()
  consumer = EventConsumer(service=service, amqp_channel=FakeAmqpChannel())

  handled = FakeIncomingMessage(_envelope())
  await consumer.handle_message(handled)
  unmapped = FakeIncomingMessage(msgspec.json.encode({"topic": "post.shared", "payload": {}}))
  await consumer.handle_message(unmapped)

  assert handled.acked and unmapped.acked
  assert [event.template_slug for event in service.events] == ["post_liked"]


@pytest.mark.anyio
async def test_consumer_rejects_malformed_and_failed_events():
  malformed = FakeIncomingMessage(b"not-json")
  await EventConsumer(service=_ServiceStub(), amqp_channel=FakeAmqpChannel()).handle_message(malformed)
  assert malformed.rejected and malformed.requeue is False

  failing = FakeIncomingMessage(_envelope())
  await EventConsumer(service=_ServiceStub(RuntimeError("db down")), amqp_channel=FakeAmqpChannel()).handle_message(failing)
  assert failing.rejected and not failing.acked

  missing = FakeIncomingMessage(_envelope())
  await EventConsumer(service=_ServiceStub(TemplateNotFoundError("post_liked")), amqp_channel=FakeAmqpChannel()).handle_message(missing)
  assert missing.acked and not missing.rejected


@pytest.mark.anyio
async def test_publisher_declares_queue_and_publishes_persistently():
  amqp_channel = FakeAmqpChannel()
  publisher = EventPublisher(amqp_channel=amqp_channel, queue_name="notifications_queue")

  await publisher.publish_topic("post.liked", {"postOwnerId": "owner", "userId": "fan", "postId": "p1"})
  await publisher.publish(NotificationEvent(recipient_id="u1", template_slug="post_liked", entity_type=EntityType.POST, entity_id="p1"))

  assert [declaration["name"] for declaration in amqp_channel.declarations] == ["notifications_queue"]
  bodies = [decode_ingestion_message(message.body) for message in amqp_channel.default_exchange.routed_to("notifications_queue")]
  assert [event.recipient_id for event in bodies] == ["owner", "u1"]
