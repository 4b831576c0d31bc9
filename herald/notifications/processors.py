"""Channel-specific side effects executed by the delivery workers.

Each processor raises on a failure that should be retried. Returning normally means the
job is done, including the cases where the recipient has the channel switched off.
"""

from __future__ import annotations

import logging
import uuid
from typing import Protocol

from starlette.concurrency import run_in_threadpool

from herald.notifications.contracts import (
  Channel,
  DeliveryAttemptEntry,
  DeliveryJob,
  DeliveryStatus,
  EmailNotification,
  EmailSender,
  InvalidDeviceTokenError,
  PushSender,
  RealtimePublisher,
)
from herald.notifications.delivery_attempt_repo import DeliveryAttemptRepository
from herald.notifications.device_token_repo import DeviceTokenRepository
from herald.notifications.preference_repo import PreferenceRepository

logger = logging.getLogger(__name__)


class ChannelProcessor(Protocol):
  channel: Channel

  async def process(self, job: DeliveryJob, *, retry_count: int) -> None: ...


def build_push_data(job: DeliveryJob) -> dict[str, str]:
  """Build the FCM data map; FCM only accepts string values."""
  data = {"notificationId": job.notification_id}
  action_url = job.meta_data.get("actionUrl")
  if action_url:
    data["actionUrl"] = str(action_url)
  return data


class PushProcessor:
  """Send a push to every active device of the recipient."""

  channel = Channel.PUSH

  def __init__(self, *, push_sender: PushSender, device_repo: DeviceTokenRepository, attempt_repo: DeliveryAttemptRepository, preference_repo: PreferenceRepository) -> None:
    self._push_sender = push_sender
    self._device_repo = device_repo
    self._attempt_repo = attempt_repo
    self._preference_repo = preference_repo

  async def process(self, job: DeliveryJob, *, retry_count: int) -> None:
    # The account-wide switch is read at delivery time so a late opt-out still wins.
    settings = await self._preference_repo.get_or_create_settings(job.recipient_id)
    if not settings.push_enabled:
      logger.debug("Push disabled for user_id=%s; skipping notification_id=%s", job.recipient_id, job.notification_id)
      return

    devices = await self._device_repo.list_active(job.recipient_id)
    if not devices:
      logger.debug("No active devices for user_id=%s", job.recipient_id)
      return

    notification_id = uuid.UUID(job.notification_id)
    data = build_push_data(job)
    sent = 0
    for device in devices:
      attempt_id = await self._attempt_repo.log(
        DeliveryAttemptEntry(notification_id=notification_id, channel=Channel.PUSH, status=DeliveryStatus.PENDING, attempt_number=retry_count + 1, trace_id=job.trace_id)
      )
      try:
        await run_in_threadpool(self._push_sender.send, token=device.token, title=job.title or "New Notification", body=job.message, data=data)
      except InvalidDeviceTokenError as exc:
        # A dead token cannot succeed on retry; drop it and carry on with the other devices.
        logger.warning("Deactivating invalid device token user_id=%s platform=%s: %s", job.recipient_id, device.platform.value, exc)
        await self._attempt_repo.update_status(attempt_id, DeliveryStatus.FAILED, error=str(exc))
        await self._device_repo.deactivate(device.token)
        continue
      except Exception as exc:
        # Record the failed attempt, then let the worker schedule a retry of the whole job.
        await self._attempt_repo.update_status(attempt_id, DeliveryStatus.FAILED, error=str(exc))
        raise
      await self._attempt_repo.update_status(attempt_id, DeliveryStatus.SENT)
      sent += 1

    logger.info("Push sent notification_id=%s devices=%s", job.notification_id, sent)


class EmailProcessor:
  """Send the rendered notification by email when the recipient allows it."""

  channel = Channel.EMAIL

  def __init__(self, *, email_sender: EmailSender, attempt_repo: DeliveryAttemptRepository, preference_repo: PreferenceRepository) -> None:
    self._email_sender = email_sender
    self._attempt_repo = attempt_repo
    self._preference_repo = preference_repo

  async def process(self, job: DeliveryJob, *, retry_count: int) -> None:
    settings = await self._preference_repo.get_or_create_settings(job.recipient_id)
    if not settings.email_enabled:
      logger.debug("Email disabled for user_id=%s; skipping notification_id=%s", job.recipient_id, job.notification_id)
      return

    attempt_id = await self._attempt_repo.log(
      DeliveryAttemptEntry(notification_id=uuid.UUID(job.notification_id), channel=Channel.EMAIL, status=DeliveryStatus.PENDING, attempt_number=retry_count + 1, trace_id=job.trace_id)
    )
    email = EmailNotification(recipient_id=job.recipient_id, subject=job.title, body=job.message, headers={"X-Trace-Id": job.trace_id} if job.trace_id else {})
    try:
      await run_in_threadpool(self._email_sender.send, email)
    except Exception as exc:
      await self._attempt_repo.update_status(attempt_id, DeliveryStatus.FAILED, error=str(exc))
      raise
    await self._attempt_repo.update_status(attempt_id, DeliveryStatus.SENT)


class InAppProcessor:
  """Signal connected clients through the real-time gateway."""

  channel = Channel.IN_APP

  def __init__(self, *, realtime: RealtimePublisher) -> None:
    self._realtime = realtime

  async def process(self, job: DeliveryJob, *, retry_count: int) -> None:
    count = int(job.meta_data.get("count") or 1)
    await self._realtime.publish(user_id=job.recipient_id, notification_id=job.notification_id, message=job.message, count=count)
