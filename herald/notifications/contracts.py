"""Contracts shared by the notification ingestion path and the delivery workers."""

from __future__ import annotations

import datetime
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import msgspec


class Channel(str, Enum):
  PUSH = "PUSH"
  EMAIL = "EMAIL"
  IN_APP = "IN_APP"


class EntityType(str, Enum):
  POST = "POST"
  COMMENT = "COMMENT"
  FOLLOW = "FOLLOW"
  CHAT = "CHAT"
  SYSTEM = "SYSTEM"


class DeliveryStatus(str, Enum):
  PENDING = "PENDING"
  SENT = "SENT"
  FAILED = "FAILED"
  PERMANENT_FAILURE = "PERMANENT_FAILURE"


class Platform(str, Enum):
  IOS = "IOS"
  ANDROID = "ANDROID"
  WEB = "WEB"


class NotificationEvent(msgspec.Struct, rename="camel", frozen=True):
  """Inbound domain event; consumed once and never persisted as-is."""

  recipient_id: str
  template_slug: str
  entity_type: EntityType
  entity_id: str
  actor_id: str | None = None
  data: dict[str, Any] = {}
  meta_data: dict[str, Any] = {}


class DeliveryJob(msgspec.Struct, rename="camel", frozen=True):
  """Queue message body for one (notification, channel) delivery."""

  notification_id: str
  recipient_id: str
  title: str
  message: str
  meta_data: dict[str, Any] = {}
  trace_id: str | None = None


@dataclass(frozen=True)
class TemplateRecord:
  """Notification template as read by the pipeline."""

  id: uuid.UUID
  slug: str
  title_template: str
  body_template: str
  is_push_enabled: bool = True
  is_email_enabled: bool = False
  is_in_app_enabled: bool = True

  def default_enabled(self, channel: Channel) -> bool:
    """Return the template's default enablement for a channel."""
    if channel is Channel.PUSH:
      return self.is_push_enabled
    if channel is Channel.EMAIL:
      return self.is_email_enabled
    return self.is_in_app_enabled


@dataclass(frozen=True)
class NotificationRecord:
  """Persisted notification row."""

  id: uuid.UUID
  recipient_id: str
  actor_id: str | None
  template_id: uuid.UUID | None
  entity_type: EntityType
  entity_id: str
  message: str
  is_read: bool
  meta_data: dict[str, Any]
  created_at: datetime.datetime

  @property
  def count(self) -> int:
    return int(self.meta_data.get("count") or 1)


@dataclass(frozen=True)
class UserSettingsRecord:
  """Per-user global switches and quiet hours."""

  user_id: str
  push_enabled: bool = True
  email_enabled: bool = False
  quiet_hours_start: str | None = None
  quiet_hours_end: str | None = None
  timezone: str = "UTC"


@dataclass(frozen=True)
class DeviceTokenRecord:
  user_id: str
  token: str
  platform: Platform
  is_active: bool = True
  device_id: str | None = None


@dataclass(frozen=True)
class DeliveryAttemptEntry:
  """Capture a single delivery attempt for the audit log."""

  notification_id: uuid.UUID
  channel: Channel
  status: DeliveryStatus
  attempt_number: int = 1
  error: str | None = None
  trace_id: str | None = None


@dataclass(frozen=True)
class EmailNotification:
  """Represents an email notification payload."""

  recipient_id: str
  subject: str
  body: str
  headers: dict[str, str] = field(default_factory=dict)


class NotificationError(Exception):
  """Base class for all notification pipeline failures."""


class TemplateNotFoundError(NotificationError):
  """Raised when an event names a template slug that does not exist."""

  def __init__(self, slug: str) -> None:
    super().__init__(f"Template not found: {slug}")
    self.slug = slug


class NotificationProviderError(NotificationError):
  """Exception raised when a delivery provider returns an error."""


class InvalidDeviceTokenError(NotificationProviderError):
  """Exception raised when a push token is unregistered or malformed."""


class InvalidQueueMessageError(NotificationError):
  """Raised when a queue message body cannot be decoded."""


class PushSender(Protocol):
  """Delivery contract for sending push notifications to one device."""

  def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> None:
    """Send a push notification synchronously; raise on failure."""


class EmailSender(Protocol):
  """Delivery contract for sending email notifications."""

  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    """Send an email notification synchronously and return provider identifiers."""


class RealtimePublisher(Protocol):
  """Publishes in-app refresh events to the real-time gateway."""

  async def publish(self, *, user_id: str, notification_id: str, message: str, count: int) -> None: ...
