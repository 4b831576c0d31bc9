"""Notification service: event ingestion plus the inbox, device and preference operations."""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from herald.notifications.contracts import (
  Channel,
  DeliveryJob,
  DeviceTokenRecord,
  NotificationEvent,
  NotificationRecord,
  Platform,
  RealtimePublisher,
  TemplateNotFoundError,
  TemplateRecord,
  UserSettingsRecord,
)
from herald.notifications.dedup import PENDING_MARKER, DedupCache, build_dedup_key
from herald.notifications.device_token_repo import DeviceTokenRepository
from herald.notifications.notification_repo import NotificationEntry, NotificationRepository
from herald.notifications.preference_repo import PreferenceEntry, PreferenceRepository
from herald.notifications.preferences import PreferenceResolver, is_valid_hhmm, is_valid_timezone
from herald.notifications.producer import DeliveryProducer
from herald.notifications.template_renderer import render, render_pair
from herald.notifications.template_repo import TemplateRepository
from herald.utils.ids import generate_trace_id

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50

_CHANNEL_ORDER = (Channel.PUSH, Channel.EMAIL, Channel.IN_APP)
_SETTINGS_FIELDS = frozenset({"push_enabled", "email_enabled", "quiet_hours_start", "quiet_hours_end", "timezone"})

# Bounded wait for a concurrent creator: 0.05 + 0.1 + 0.2 + 0.4 + 0.8 seconds.
PENDING_WAIT_ATTEMPTS = 5
PENDING_WAIT_BASE_SECONDS = 0.05


@dataclass(frozen=True)
class NotificationPage:
  items: list[NotificationRecord]
  next_cursor: str | None


@dataclass(frozen=True)
class PreferenceUpdate:
  template_slug: str
  channel: Channel
  is_enabled: bool


class NotificationService:
  """Turn domain events into stored, deduplicated notifications and fan them out per channel.

  ``handle_event`` takes the dedup marker with an atomic set-if-absent before deciding
  between creating and aggregating. The caller that wins the marker creates the row; every
  other caller inside the window aggregates into it and only emits a real-time refresh.
  While the winner's insert is still in flight the marker reads ``pending`` and losers wait
  for it with a short bounded backoff instead of starting a second row.
  """

  def __init__(
    self,
    *,
    template_repo: TemplateRepository,
    notification_repo: NotificationRepository,
    preference_repo: PreferenceRepository,
    device_repo: DeviceTokenRepository,
    dedup: DedupCache,
    resolver: PreferenceResolver,
    producer: DeliveryProducer,
    realtime: RealtimePublisher,
    dedup_window_seconds: int = 300,
    pending_wait_attempts: int = PENDING_WAIT_ATTEMPTS,
    pending_wait_base_seconds: float = PENDING_WAIT_BASE_SECONDS,
    delay_fn: Callable[[float], Awaitable[None]] = asyncio.sleep,
  ) -> None:
    self._template_repo = template_repo
    self._notification_repo = notification_repo
    self._preference_repo = preference_repo
    self._device_repo = device_repo
    self._dedup = dedup
    self._resolver = resolver
    self._producer = producer
    self._realtime = realtime
    self._dedup_window_seconds = dedup_window_seconds
    self._pending_wait_attempts = pending_wait_attempts
    self._pending_wait_base_seconds = pending_wait_base_seconds
    self._delay_fn = delay_fn

  async def handle_event(self, event: NotificationEvent) -> NotificationRecord:
    """Persist or aggregate the event's notification and enqueue its deliveries."""
    # Unknown templates are fatal for the event; nothing is written.
    template = await self._template_repo.get_by_slug(event.template_slug)
    if template is None:
      raise TemplateNotFoundError(event.template_slug)

    key = build_dedup_key(event.recipient_id, template.id, event.entity_id)
    owns_marker = await self._dedup.acquire(key)

    if not owns_marker:
      # Someone already holds the window; fold this event into their row when it exists.
      aggregated, owns_marker = await self._aggregate_into_window(event, template, key=key)
      if aggregated is not None:
        await self._realtime.publish(user_id=aggregated.recipient_id, notification_id=str(aggregated.id), message=aggregated.message, count=aggregated.count)
        logger.info("Aggregated notification_id=%s count=%s", aggregated.id, aggregated.count)
        return aggregated

    record, title = await self._create(event, template, key=key, owns_marker=owns_marker)
    await self._fan_out(record, template, title=title)
    return record

  async def _aggregate(self, event: NotificationEvent, template: TemplateRecord) -> NotificationRecord | None:
    return await self._notification_repo.aggregate(
      recipient_id=event.recipient_id,
      entity_id=event.entity_id,
      entity_type=event.entity_type,
      window_seconds=self._dedup_window_seconds,
      actor_id=event.actor_id,
      render_message=lambda count: render(template.body_template, {**event.data, "count": count}),
    )

  async def _aggregate_into_window(self, event: NotificationEvent, template: TemplateRecord, *, key: str) -> tuple[NotificationRecord | None, bool]:
    """Aggregate into the row behind an existing marker.

    Returns ``(record, False)`` on success. Returns ``(None, owns_marker)`` when the caller
    has to create a row instead; ``owns_marker`` is True when it took over a released window.
    """
    for attempt in range(self._pending_wait_attempts + 1):
      aggregated = await self._aggregate(event, template)
      if aggregated is not None:
        return aggregated, False

      marker = await self._dedup.peek(key)
      if marker is None:
        # The creator released the window after a failed insert; try to take it over.
        if await self._dedup.acquire(key):
          return None, True
        continue

      if marker != PENDING_MARKER:
        # Armed with a committed row that is no longer inside the window.
        logger.warning("Dedup marker present without a notification row key=%s marker=%s; starting a new aggregation group", key, marker)
        return None, False

      # The winner's insert is still in flight; back off and look again.
      if attempt < self._pending_wait_attempts:
        await self._delay_fn(self._pending_wait_base_seconds * (2**attempt))

    logger.warning("Dedup marker still pending after %s checks key=%s; starting a new aggregation group", self._pending_wait_attempts + 1, key)
    return None, False

  async def _create(self, event: NotificationEvent, template: TemplateRecord, *, key: str, owns_marker: bool) -> tuple[NotificationRecord, str]:
    title, body = render_pair(title_template=template.title_template, body_template=template.body_template, variables={**event.data, "count": 1})
    meta_data: dict[str, Any] = {**event.meta_data, "count": 1}
    if event.actor_id:
      meta_data["lastActorId"] = event.actor_id

    entry = NotificationEntry(
      recipient_id=event.recipient_id, actor_id=event.actor_id, template_id=template.id, entity_type=event.entity_type, entity_id=event.entity_id, message=body, meta_data=meta_data
    )
    try:
      record = await self._notification_repo.create(entry)
    except Exception:
      # Free the window so the next event for this key can create the row.
      if owns_marker:
        await self._dedup.release(key)
      raise

    # Flip the marker from pending to the committed row id; waiting callers aggregate from here.
    await self._dedup.arm(key, record.id)
    logger.info("Created notification_id=%s recipient_id=%s template=%s", record.id, record.recipient_id, template.slug)
    return record, title

  async def _fan_out(self, record: NotificationRecord, template: TemplateRecord, *, title: str) -> None:
    channels = await self._resolver.resolve_channels(record.recipient_id, template.id, template=template)
    # One trace id per notification; it follows every job and attempt row.
    trace_id = generate_trace_id()
    job = DeliveryJob(notification_id=str(record.id), recipient_id=record.recipient_id, title=title, message=record.message, meta_data=record.meta_data, trace_id=trace_id)

    # Enqueue failures are logged per channel; the other channels still go out.
    for channel in _CHANNEL_ORDER:
      if channel not in channels:
        continue
      try:
        await self._producer.enqueue(channel, job)
      except Exception as exc:  # noqa: BLE001
        logger.error("Enqueue failed notification_id=%s channel=%s trace_id=%s: %s", record.id, channel.value, trace_id, exc, exc_info=True)

  async def list_notifications(self, *, user_id: str, limit: int = DEFAULT_PAGE_SIZE, cursor: str | None = None) -> NotificationPage:
    """Return one page of the inbox; ``cursor`` is the ISO timestamp of the previous page's last item."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    before = _parse_cursor(cursor)
    items = await self._notification_repo.list_for_user(user_id=user_id, limit=limit, cursor=before)
    next_cursor = items[-1].created_at.isoformat() if len(items) == limit else None
    return NotificationPage(items=items, next_cursor=next_cursor)

  async def unread_count(self, *, user_id: str) -> int:
    return await self._notification_repo.unread_count(user_id=user_id)

  async def mark_read(self, *, notification_id: uuid.UUID, user_id: str) -> NotificationRecord | None:
    return await self._notification_repo.mark_read(notification_id=notification_id, user_id=user_id)

  async def mark_all_read(self, *, user_id: str) -> int:
    return await self._notification_repo.mark_all_read(user_id=user_id)

  async def register_device(self, *, user_id: str, token: str, platform: Platform, device_id: str | None = None) -> DeviceTokenRecord:
    record = await self._device_repo.register(user_id=user_id, token=token, platform=platform, device_id=device_id)
    logger.info("Registered device user_id=%s platform=%s", user_id, platform.value)
    return record

  async def deactivate_device_token(self, token: str) -> int:
    return await self._device_repo.deactivate(token)

  async def update_preferences(self, *, user_id: str, updates: Iterable[PreferenceUpdate]) -> None:
    """Upsert per-template channel overrides; unknown template slugs raise TemplateNotFoundError."""
    templates: dict[str, TemplateRecord] = {}
    entries: list[PreferenceEntry] = []
    for update in updates:
      template = templates.get(update.template_slug)
      if template is None:
        template = await self._template_repo.get_by_slug(update.template_slug)
        if template is None:
          raise TemplateNotFoundError(update.template_slug)
        templates[update.template_slug] = template
      entries.append(PreferenceEntry(template_id=template.id, channel=update.channel, is_enabled=update.is_enabled))

    await self._preference_repo.upsert_preferences(user_id=user_id, entries=entries)

  async def update_settings(self, *, user_id: str, changes: Mapping[str, Any]) -> UserSettingsRecord:
    """Apply a partial settings update; quiet-hours bounds may be set to None to clear them."""
    unknown = set(changes) - _SETTINGS_FIELDS
    if unknown:
      raise ValueError(f"Unknown settings fields: {', '.join(sorted(unknown))}")

    for field_name in ("quiet_hours_start", "quiet_hours_end"):
      value = changes.get(field_name)
      if value is not None and not is_valid_hhmm(value):
        raise ValueError(f"{field_name} must be HH:MM")

    if "timezone" in changes:
      timezone = changes["timezone"]
      if timezone is None or not is_valid_timezone(timezone):
        raise ValueError(f"Unknown timezone: {timezone}")

    for field_name in ("push_enabled", "email_enabled"):
      if field_name in changes and changes[field_name] is None:
        raise ValueError(f"{field_name} must be a boolean")

    return await self._preference_repo.update_settings(user_id, dict(changes))


def _parse_cursor(cursor: str | None) -> datetime.datetime | None:
  if not cursor:
    return None
  try:
    parsed = datetime.datetime.fromisoformat(cursor)
  except ValueError as exc:
    raise ValueError(f"Invalid cursor: {cursor}") from exc
  if parsed.tzinfo is None:
    parsed = parsed.replace(tzinfo=datetime.UTC)
  return parsed
