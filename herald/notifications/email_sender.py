"""Email delivery implementations.

No ESP is wired in; the logging sender records the rendered message and returns a
synthetic message id, which satisfies the email sink contract.
"""

from __future__ import annotations

import logging

from herald.notifications.contracts import EmailNotification, EmailSender
from herald.utils.ids import generate_trace_id

logger = logging.getLogger(__name__)


class LoggingEmailSender(EmailSender):
  """Email sender that writes each message to the application log."""

  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    message_id = generate_trace_id()
    logger.info("Email notification recipient_id=%s subject=%s message_id=%s", notification.recipient_id, notification.subject, message_id)
    return {"provider": "log", "message_id": message_id}


class NullEmailSender(EmailSender):
  """No-op email sender used when notifications are disabled."""

  def send(self, notification: EmailNotification) -> dict[str, str | None]:
    """Drop the notification while recording a debug log."""
    logger.debug("Email notifications disabled; dropping email recipient_id=%s subject=%s", notification.recipient_id, notification.subject)
    return {"provider": None, "message_id": None}
