from __future__ import annotations

import uuid

import msgspec
import pytest
from aio_pika import DeliveryMode
from conftest import FakeAmqpChannel

from herald.notifications.contracts import Channel, DeliveryJob
from herald.notifications.producer import DeliveryProducer, build_delivery_message
from herald.notifications.queues import dead_letter_queue_name, delivery_queue_name, read_retry_count


def _job() -> DeliveryJob:
  return DeliveryJob(notification_id=str(uuid.uuid4()), recipient_id="u1", title="New Follower", message="Ada started following you", meta_data={"count": 1}, trace_id="trace-7")


def test_queue_names_follow_channel():
  assert delivery_queue_name(Channel.IN_APP) == "notification_delivery_in_app"
  assert dead_letter_queue_name(Channel.EMAIL) == "notification_delivery_email_dlq"


def test_delivery_message_is_persistent_and_traced():
  message = build_delivery_message(_job(), retry_count=2)

  assert message.delivery_mode == DeliveryMode.PERSISTENT
  assert message.correlation_id == "trace-7"
  assert message.content_type == "application/json"
  assert read_retry_count(message.headers) == 2
  assert msgspec.json.decode(message.body)["recipientId"] == "u1"


def test_retry_count_defaults_to_zero_for_missing_or_garbage_headers():
  assert read_retry_count(None) == 0
  assert read_retry_count({}) == 0
  assert read_retry_count({"x-retry-count": "abc"}) == 0
  assert read_retry_count({"x-retry-count": -3}) == 0


@pytest.mark.anyio
async def test_enqueue_declares_each_queue_once():
  amqp_channel = FakeAmqpChannel()
  producer = DeliveryProducer(amqp_channel=amqp_channel)

  await producer.enqueue(Channel.PUSH, _job())
  await producer.enqueue(Channel.PUSH, _job())
  await producer.enqueue(Channel.EMAIL, _job())

  declared = [declaration["name"] for declaration in amqp_channel.declarations]
  assert declared == ["notification_delivery_push_dlq", "notification_delivery_push", "notification_delivery_email_dlq", "notification_delivery_email"]
  assert [routing_key for _, routing_key in amqp_channel.default_exchange.published] == ["notification_delivery_push", "notification_delivery_push", "notification_delivery_email"]
  assert amqp_channel.queues["notification_delivery_email"].arguments["x-dead-letter-routing-key"] == "notification_delivery_email_dlq"
