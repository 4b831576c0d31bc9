from __future__ import annotations

import asyncio
import logging
import uuid

import msgspec
import pytest

from herald.notifications.contracts import DeliveryJob, EntityType, NotificationEvent, TemplateNotFoundError
from herald.notifications.dedup import PENDING_MARKER, build_dedup_key

PUSH_QUEUE = "notification_delivery_push"
EMAIL_QUEUE = "notification_delivery_email"
IN_APP_QUEUE = "notification_delivery_in_app"


def _event(**overrides) -> NotificationEvent:
  values = {"recipient_id": "u1", "template_slug": "post_liked", "entity_type": EntityType.POST, "entity_id": "p1", "data": {}}
  values.update(overrides)
  return NotificationEvent(**values)


@pytest.mark.anyio
async def test_second_event_in_window_aggregates_without_new_deliveries(harness):
  first = await harness.service.handle_event(_event(actor_id="a1"))

  assert first.message == "1 people liked your post"
  exchange = harness.amqp_channel.default_exchange
  assert len(exchange.routed_to(PUSH_QUEUE)) == 1
  assert len(exchange.routed_to(IN_APP_QUEUE)) == 1
  assert exchange.routed_to(EMAIL_QUEUE) == []
  published_before = len(exchange.published)

  second = await harness.service.handle_event(_event(actor_id="a2"))

  assert second.id == first.id
  assert second.message == "2 people liked your post"
  assert second.meta_data["count"] == 2
  assert second.meta_data["lastActorId"] == "a2"
  assert len(harness.notifications.rows) == 1
  assert len(exchange.published) == published_before

  channel, payload = harness.redis.published[-1]
  assert channel == "events:notifications"
  assert msgspec.json.decode(payload) == {"userId": "u1", "id": str(first.id), "message": "2 people liked your post", "count": 2}


@pytest.mark.anyio
async def test_count_matches_number_of_events_in_window(harness):
  for _ in range(5):
    record = await harness.service.handle_event(_event())

  assert len(harness.notifications.rows) == 1
  assert record.count == 5
  assert record.message == "5 people liked your post"


@pytest.mark.anyio
async def test_new_notification_sets_marker_and_enqueues_job_payload(harness):
  template = harness.templates.templates["post_liked"]

  record = await harness.service.handle_event(_event(actor_id="a1", meta_data={"actionUrl": "/post/p1"}))

  key = build_dedup_key("u1", template.id, "p1")
  assert harness.redis.store[key] == str(record.id)
  assert harness.redis.ttls[key] == 300
  assert record.meta_data == {"actionUrl": "/post/p1", "count": 1, "lastActorId": "a1"}

  message = harness.amqp_channel.default_exchange.routed_to(PUSH_QUEUE)[0]
  job = msgspec.json.decode(message.body, type=DeliveryJob)
  assert job.notification_id == str(record.id)
  assert job.recipient_id == "u1"
  assert job.title == "New Like"
  assert job.message == "1 people liked your post"
  assert job.trace_id
  assert b'"notificationId"' in message.body


@pytest.mark.anyio
async def test_unknown_template_is_fatal_and_writes_nothing(harness):
  with pytest.raises(TemplateNotFoundError):
    await harness.service.handle_event(_event(template_slug="missing"))

  assert harness.notifications.rows == {}
  assert harness.redis.store == {}
  assert harness.amqp_channel.default_exchange.published == []


@pytest.mark.anyio
async def test_marker_without_row_starts_new_group_and_logs_warning(harness, caplog):
  template = harness.templates.templates["post_liked"]
  key = build_dedup_key("u1", template.id, "p1")
  harness.redis.store[key] = str(uuid.uuid4())

  with caplog.at_level(logging.WARNING, logger="herald.notifications.service"):
    record = await harness.service.handle_event(_event())

  assert record.message == "1 people liked your post"
  assert len(harness.notifications.rows) == 1
  assert harness.redis.store[key] == str(record.id)
  assert any("without a notification row" in message for message in caplog.messages)
  assert len(harness.amqp_channel.default_exchange.routed_to(PUSH_QUEUE)) == 1


@pytest.mark.anyio
async def test_failed_insert_releases_marker(harness):
  harness.notifications.fail_create = True

  with pytest.raises(RuntimeError):
    await harness.service.handle_event(_event())

  assert harness.redis.store == {}


@pytest.mark.anyio
async def test_enqueue_failure_on_one_channel_does_not_block_others(harness):
  exchange = harness.amqp_channel.default_exchange
  exchange.fail_for.add(PUSH_QUEUE)

  await harness.service.handle_event(_event())

  assert exchange.routed_to(PUSH_QUEUE) == []
  assert len(exchange.routed_to(IN_APP_QUEUE)) == 1


@pytest.mark.anyio
async def test_different_entities_do_not_aggregate(harness):
  first = await harness.service.handle_event(_event(entity_id="p1"))
  second = await harness.service.handle_event(_event(entity_id="p2"))

  assert first.id != second.id
  assert second.count == 1


def _slow_create(harness, *, fail_first: bool = False):
  original = harness.notifications.create
  calls = {"count": 0}

  async def _create(entry):
    calls["count"] += 1
    # Yield mid-insert so a concurrent event observes the pending marker.
    await asyncio.sleep(0.01)
    if fail_first and calls["count"] == 1:
      raise RuntimeError("insert failed")
    return await original(entry)

  harness.notifications.create = _create
  return calls


@pytest.mark.anyio
async def test_concurrent_events_for_same_key_create_one_row(harness):
  _slow_create(harness)

  first, second = await asyncio.gather(harness.service.handle_event(_event(actor_id="a1")), harness.service.handle_event(_event(actor_id="a2")))

  assert len(harness.notifications.rows) == 1
  assert first.id == second.id
  assert {first.count, second.count} == {1, 2}
  assert len(harness.amqp_channel.default_exchange.routed_to(PUSH_QUEUE)) == 1
  assert len(harness.amqp_channel.default_exchange.routed_to(IN_APP_QUEUE)) == 1


@pytest.mark.anyio
async def test_waiting_event_takes_over_window_released_by_failed_insert(harness):
  calls = _slow_create(harness, fail_first=True)
  template = harness.templates.templates["post_liked"]

  results = await asyncio.gather(harness.service.handle_event(_event(actor_id="a1")), harness.service.handle_event(_event(actor_id="a2")), return_exceptions=True)

  errors = [result for result in results if isinstance(result, Exception)]
  records = [result for result in results if not isinstance(result, Exception)]
  assert [str(error) for error in errors] == ["insert failed"]
  assert calls["count"] == 2
  assert len(harness.notifications.rows) == 1
  assert harness.redis.store[build_dedup_key("u1", template.id, "p1")] == str(records[0].id)


@pytest.mark.anyio
async def test_marker_stuck_pending_falls_back_after_bounded_wait(harness, monkeypatch, caplog):
  template = harness.templates.templates["post_liked"]
  key = build_dedup_key("u1", template.id, "p1")
  harness.redis.store[key] = PENDING_MARKER
  delays: list[float] = []

  async def _record_delay(seconds: float) -> None:
    delays.append(seconds)

  monkeypatch.setattr(harness.service, "_delay_fn", _record_delay)

  with caplog.at_level(logging.WARNING, logger="herald.notifications.service"):
    record = await harness.service.handle_event(_event())

  assert delays == [0.05, 0.1, 0.2, 0.4, 0.8]
  assert len(harness.notifications.rows) == 1
  assert harness.redis.store[key] == str(record.id)
  assert any("still pending" in message for message in caplog.messages)
