"""Push notification delivery implementations."""

from __future__ import annotations

import logging

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from herald.notifications.contracts import InvalidDeviceTokenError, NotificationProviderError, PushSender

logger = logging.getLogger(__name__)


class FcmPushSender(PushSender):
  """Firebase Cloud Messaging sender for a single device token.

  The Firebase Admin SDK must already be initialized (see ``herald.core.firebase``).
  Calls are blocking; callers run them in a worker thread.
  """

  def __init__(self, *, dry_run: bool = False) -> None:
    self._dry_run = dry_run

  def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> None:
    """Send one FCM message; map SDK failures onto the notification error types."""
    message = messaging.Message(token=token, notification=messaging.Notification(title=title, body=body), data=data)

    try:
      message_id = messaging.send(message, dry_run=self._dry_run)
    except (messaging.UnregisteredError, messaging.SenderIdMismatchError) as exc:
      raise InvalidDeviceTokenError(f"Device token is no longer registered ({exc.code})") from exc
    except firebase_exceptions.InvalidArgumentError as exc:
      # FCM reports malformed registration tokens as INVALID_ARGUMENT.
      raise InvalidDeviceTokenError(f"Device token was rejected ({exc.code})") from exc
    except firebase_exceptions.FirebaseError as exc:
      raise NotificationProviderError(f"FCM delivery failed ({exc.code})") from exc

    logger.debug("FCM accepted message_id=%s", message_id)


class NullPushSender(PushSender):
  """No-op push sender used when push notifications are disabled or unconfigured."""

  def send(self, *, token: str, title: str, body: str, data: dict[str, str]) -> None:
    """Drop the notification while recording a debug log."""
    logger.debug("Push notifications disabled; dropping push title=%s token_present=%s", title, bool(token))
