"""In-memory doubles for the repositories, Redis and the AMQP channel."""

from __future__ import annotations

import dataclasses
import datetime
import uuid
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from herald.notifications.contracts import (
  Channel,
  DeliveryAttemptEntry,
  DeliveryStatus,
  DeviceTokenRecord,
  NotificationRecord,
  TemplateRecord,
  UserSettingsRecord,
)
from herald.notifications.dedup import DedupCache
from herald.notifications.notification_repo import NotificationEntry
from herald.notifications.preference_repo import PreferenceEntry
from herald.notifications.preferences import PreferenceResolver
from herald.notifications.producer import DeliveryProducer
from herald.notifications.realtime import RedisRealtimePublisher
from herald.notifications.service import NotificationService


@pytest.fixture
def anyio_backend():
  return "asyncio"


class FakeRedis:
  def __init__(self) -> None:
    self.store: dict[str, str] = {}
    self.ttls: dict[str, int | None] = {}
    self.published: list[tuple[str, str]] = []

  async def set(self, key: str, value: str, *, nx: bool = False, ex: int | None = None):
    if nx and key in self.store:
      return None
    self.store[key] = value
    self.ttls[key] = ex
    return True

  async def get(self, key: str) -> str | None:
    return self.store.get(key)

  async def delete(self, key: str) -> int:
    self.ttls.pop(key, None)
    return 1 if self.store.pop(key, None) is not None else 0

  async def publish(self, channel: str, message: str) -> int:
    self.published.append((channel, message))
    return 1

  async def aclose(self) -> None:
    return None


class FakeExchange:
  def __init__(self) -> None:
    self.published: list[tuple[Any, str]] = []
    self.fail_for: set[str] = set()

  async def publish(self, message, routing_key: str):
    if routing_key in self.fail_for:
      raise ConnectionError(f"broker unavailable for {routing_key}")
    self.published.append((message, routing_key))

  def routed_to(self, routing_key: str) -> list[Any]:
    return [message for message, key in self.published if key == routing_key]


class FakeQueue:
  def __init__(self, name: str, arguments: dict | None) -> None:
    self.name = name
    self.arguments = arguments
    self.callback: Callable | None = None
    self.cancelled: list[str] = []

  async def consume(self, callback) -> str:
    self.callback = callback
    return f"ctag-{self.name}"

  async def cancel(self, consumer_tag: str) -> None:
    self.cancelled.append(consumer_tag)


class FakeAmqpChannel:
  def __init__(self) -> None:
    self.default_exchange = FakeExchange()
    self.queues: dict[str, FakeQueue] = {}
    self.declarations: list[dict[str, Any]] = []
    self.prefetch_count: int | None = None

  async def declare_queue(self, name: str, *, durable: bool = False, arguments: dict | None = None) -> FakeQueue:
    self.declarations.append({"name": name, "durable": durable, "arguments": arguments})
    queue = self.queues.get(name)
    if queue is None:
      queue = FakeQueue(name, arguments)
      self.queues[name] = queue
    return queue

  async def set_qos(self, *, prefetch_count: int) -> None:
    self.prefetch_count = prefetch_count


class FakeIncomingMessage:
  def __init__(self, body: bytes, headers: dict | None = None) -> None:
    self.body = body
    self.headers = headers or {}
    self.acked = False
    self.nacked = False
    self.rejected = False
    self.requeue: bool | None = None

  @classmethod
  def from_message(cls, message) -> FakeIncomingMessage:
    return cls(message.body, dict(message.headers or {}))

  async def ack(self) -> None:
    self.acked = True

  async def nack(self, *, requeue: bool = True) -> None:
    self.nacked = True
    self.requeue = requeue

  async def reject(self, *, requeue: bool = False) -> None:
    self.rejected = True
    self.requeue = requeue


class InMemoryTemplateRepository:
  def __init__(self, templates: Iterable[TemplateRecord] = ()) -> None:
    self.templates = {template.slug: template for template in templates}

  def add(self, template: TemplateRecord) -> TemplateRecord:
    self.templates[template.slug] = template
    return template

  async def get_by_slug(self, slug: str) -> TemplateRecord | None:
    return self.templates.get(slug)

  async def get_by_id(self, template_id: uuid.UUID) -> TemplateRecord | None:
    return next((template for template in self.templates.values() if template.id == template_id), None)


class InMemoryNotificationRepository:
  def __init__(self) -> None:
    self.rows: dict[uuid.UUID, NotificationRecord] = {}
    self.fail_create = False
    self._last_created: datetime.datetime | None = None

  def _next_created_at(self) -> datetime.datetime:
    # Keep timestamps strictly increasing so cursor pagination is deterministic.
    now = datetime.datetime.now(datetime.UTC)
    if self._last_created is not None and now <= self._last_created:
      now = self._last_created + datetime.timedelta(microseconds=1)
    self._last_created = now
    return now

  async def create(self, entry: NotificationEntry) -> NotificationRecord:
    if self.fail_create:
      raise RuntimeError("database unavailable")
    record = NotificationRecord(
      id=uuid.uuid4(),
      recipient_id=entry.recipient_id,
      actor_id=entry.actor_id,
      template_id=entry.template_id,
      entity_type=entry.entity_type,
      entity_id=entry.entity_id,
      message=entry.message,
      is_read=False,
      meta_data=dict(entry.meta_data),
      created_at=self._next_created_at(),
    )
    self.rows[record.id] = record
    return record

  async def aggregate(self, *, recipient_id, entity_id, entity_type, window_seconds, actor_id, render_message):
    cutoff = datetime.datetime.now(datetime.UTC) - datetime.timedelta(seconds=window_seconds)
    candidates = [
      row for row in self.rows.values() if row.recipient_id == recipient_id and row.entity_id == entity_id and row.entity_type == entity_type and row.created_at > cutoff
    ]
    if not candidates:
      return None
    row = max(candidates, key=lambda item: item.created_at)
    meta_data = dict(row.meta_data)
    count = int(meta_data.get("count") or 1) + 1
    meta_data["count"] = count
    if actor_id:
      meta_data["lastActorId"] = actor_id
    updated = dataclasses.replace(row, meta_data=meta_data, message=render_message(count))
    self.rows[row.id] = updated
    return updated

  async def list_for_user(self, *, user_id, limit, cursor=None):
    rows = [row for row in self.rows.values() if row.recipient_id == user_id and (cursor is None or row.created_at < cursor)]
    rows.sort(key=lambda item: item.created_at, reverse=True)
    return rows[:limit]

  async def unread_count(self, *, user_id):
    return sum(1 for row in self.rows.values() if row.recipient_id == user_id and not row.is_read)

  async def mark_read(self, *, notification_id, user_id):
    row = self.rows.get(notification_id)
    if row is None or row.recipient_id != user_id:
      return None
    updated = dataclasses.replace(row, is_read=True)
    self.rows[row.id] = updated
    return updated

  async def mark_all_read(self, *, user_id):
    changed = 0
    for row in list(self.rows.values()):
      if row.recipient_id == user_id and not row.is_read:
        self.rows[row.id] = dataclasses.replace(row, is_read=True)
        changed += 1
    return changed


class InMemoryPreferenceRepository:
  def __init__(self) -> None:
    self.settings: dict[str, UserSettingsRecord] = {}
    self.preferences: dict[tuple[str, uuid.UUID, Channel], bool] = {}

  async def get_or_create_settings(self, user_id: str) -> UserSettingsRecord:
    if user_id not in self.settings:
      self.settings[user_id] = UserSettingsRecord(user_id=user_id)
    return self.settings[user_id]

  async def update_settings(self, user_id: str, changes: dict[str, Any]) -> UserSettingsRecord:
    current = await self.get_or_create_settings(user_id)
    self.settings[user_id] = dataclasses.replace(current, **changes)
    return self.settings[user_id]

  async def get_preference(self, *, user_id, template_id, channel):
    return self.preferences.get((user_id, template_id, channel))

  async def upsert_preferences(self, *, user_id: str, entries: Iterable[PreferenceEntry]) -> None:
    for entry in entries:
      self.preferences[(user_id, entry.template_id, entry.channel)] = entry.is_enabled


class InMemoryDeviceTokenRepository:
  def __init__(self) -> None:
    self.rows: dict[tuple[str, str], DeviceTokenRecord] = {}
    self.last_used: dict[tuple[str, str], datetime.datetime] = {}

  async def register(self, *, user_id, token, platform, device_id=None):
    record = DeviceTokenRecord(user_id=user_id, token=token, platform=platform, is_active=True, device_id=device_id)
    self.rows[(user_id, token)] = record
    self.last_used[(user_id, token)] = datetime.datetime.now(datetime.UTC)
    return record

  async def list_active(self, user_id):
    return [row for (owner, _), row in self.rows.items() if owner == user_id and row.is_active]

  async def deactivate(self, token):
    changed = 0
    for key, row in list(self.rows.items()):
      if row.token == token and row.is_active:
        self.rows[key] = dataclasses.replace(row, is_active=False)
        changed += 1
    return changed


class InMemoryDeliveryAttemptRepository:
  def __init__(self) -> None:
    self.attempts: dict[uuid.UUID, dict[str, Any]] = {}

  async def log(self, entry: DeliveryAttemptEntry) -> uuid.UUID:
    attempt_id = uuid.uuid4()
    self.attempts[attempt_id] = {**dataclasses.asdict(entry), "id": attempt_id}
    return attempt_id

  async def update_status(self, attempt_id, status: DeliveryStatus, *, error: str | None = None) -> None:
    self.attempts[attempt_id]["status"] = status
    self.attempts[attempt_id]["error"] = error

  def statuses(self) -> list[DeliveryStatus]:
    return [attempt["status"] for attempt in self.attempts.values()]


def make_template(slug: str = "post_liked", *, body: str = "{{count}} people liked your post", title: str = "New Like", push: bool = True, email: bool = False, in_app: bool = True) -> TemplateRecord:
  return TemplateRecord(id=uuid.uuid4(), slug=slug, title_template=title, body_template=body, is_push_enabled=push, is_email_enabled=email, is_in_app_enabled=in_app)


@dataclasses.dataclass
class ServiceHarness:
  service: NotificationService
  templates: InMemoryTemplateRepository
  notifications: InMemoryNotificationRepository
  preferences: InMemoryPreferenceRepository
  devices: InMemoryDeviceTokenRepository
  redis: FakeRedis
  amqp_channel: FakeAmqpChannel


@pytest.fixture
def harness() -> ServiceHarness:
  templates = InMemoryTemplateRepository([make_template()])
  notifications = InMemoryNotificationRepository()
  preferences = InMemoryPreferenceRepository()
  devices = InMemoryDeviceTokenRepository()
  redis = FakeRedis()
  amqp_channel = FakeAmqpChannel()
  service = NotificationService(
    template_repo=templates,
    notification_repo=notifications,
    preference_repo=preferences,
    device_repo=devices,
    dedup=DedupCache(redis, ttl_seconds=300),
    resolver=PreferenceResolver(preference_repo=preferences, template_repo=templates, clock=lambda: datetime.datetime(2026, 7, 1, 12, 0, tzinfo=datetime.UTC)),
    producer=DeliveryProducer(amqp_channel=amqp_channel),
    realtime=RedisRealtimePublisher(redis, channel="events:notifications"),
  )
  return ServiceHarness(service=service, templates=templates, notifications=notifications, preferences=preferences, devices=devices, redis=redis, amqp_channel=amqp_channel)

