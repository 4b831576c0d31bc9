"""Factory helpers for the notification service and the delivery workers."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from aio_pika.abc import AbstractChannel, AbstractRobustConnection
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.config import Settings
from herald.core.firebase import initialize_firebase
from herald.notifications.contracts import Channel, EmailSender, PushSender
from herald.notifications.dedup import DedupCache
from herald.notifications.delivery_attempt_repo import DeliveryAttemptRepository
from herald.notifications.device_token_repo import DeviceTokenRepository
from herald.notifications.email_sender import LoggingEmailSender, NullEmailSender
from herald.notifications.notification_repo import NotificationRepository
from herald.notifications.preference_repo import PreferenceRepository
from herald.notifications.preferences import PreferenceResolver
from herald.notifications.processors import ChannelProcessor, EmailProcessor, InAppProcessor, PushProcessor
from herald.notifications.producer import DeliveryProducer
from herald.notifications.push_sender import FcmPushSender, NullPushSender
from herald.notifications.realtime import RedisRealtimePublisher
from herald.notifications.service import NotificationService
from herald.notifications.template_repo import TemplateRepository
from herald.notifications.worker import DelayFn, DeliveryWorker, DeliveryWorkerPool


def build_push_sender(settings: Settings) -> PushSender:
  # Push is disabled by default to avoid accidental delivery in dev/test.
  if settings.push_notifications_enabled and initialize_firebase(settings):
    return FcmPushSender()
  return NullPushSender()


def build_email_sender(settings: Settings) -> EmailSender:
  if settings.email_notifications_enabled:
    return LoggingEmailSender()
  return NullEmailSender()


def build_notification_service(settings: Settings, *, session_factory: async_sessionmaker[AsyncSession], redis, amqp_channel: AbstractChannel) -> NotificationService:
  """Construct the ingestion-side service from configuration and live handles."""
  template_repo = TemplateRepository(session_factory=session_factory)
  preference_repo = PreferenceRepository(session_factory=session_factory)
  return NotificationService(
    template_repo=template_repo,
    notification_repo=NotificationRepository(session_factory=session_factory),
    preference_repo=preference_repo,
    device_repo=DeviceTokenRepository(session_factory=session_factory),
    dedup=DedupCache(redis, ttl_seconds=settings.dedup_window_seconds),
    resolver=PreferenceResolver(preference_repo=preference_repo, template_repo=template_repo),
    producer=DeliveryProducer(amqp_channel=amqp_channel),
    realtime=RedisRealtimePublisher(redis, channel=settings.realtime_channel),
    dedup_window_seconds=settings.dedup_window_seconds,
  )


def build_processors(settings: Settings, *, session_factory: async_sessionmaker[AsyncSession], redis) -> dict[Channel, ChannelProcessor]:
  attempt_repo = DeliveryAttemptRepository(session_factory=session_factory)
  preference_repo = PreferenceRepository(session_factory=session_factory)
  return {
    Channel.PUSH: PushProcessor(
      push_sender=build_push_sender(settings), device_repo=DeviceTokenRepository(session_factory=session_factory), attempt_repo=attempt_repo, preference_repo=preference_repo
    ),
    Channel.EMAIL: EmailProcessor(email_sender=build_email_sender(settings), attempt_repo=attempt_repo, preference_repo=preference_repo),
    Channel.IN_APP: InAppProcessor(realtime=RedisRealtimePublisher(redis, channel=settings.realtime_channel)),
  }


async def build_worker_pool(
  settings: Settings,
  *,
  session_factory: async_sessionmaker[AsyncSession],
  redis,
  connection: AbstractRobustConnection,
  channels: Iterable[Channel] | None = None,
  delay_fn: DelayFn = asyncio.sleep,
) -> DeliveryWorkerPool:
  """Build one worker per channel, each on its own AMQP channel so prefetch applies per queue."""
  processors = build_processors(settings, session_factory=session_factory, redis=redis)
  attempt_repo = DeliveryAttemptRepository(session_factory=session_factory)
  selected = list(channels) if channels is not None else list(Channel)

  workers: list[DeliveryWorker] = []
  for channel in selected:
    amqp_channel = await connection.channel()
    workers.append(
      DeliveryWorker(
        processor=processors[channel],
        amqp_channel=amqp_channel,
        attempt_repo=attempt_repo,
        prefetch=settings.delivery_prefetch,
        max_retries=settings.delivery_max_retries,
        retry_base_delay=settings.retry_base_delay_seconds,
        delay_fn=delay_fn,
      )
    )
  return DeliveryWorkerPool(workers)
