"""Shared FastAPI dependencies for caller identity and the notification service."""

from __future__ import annotations

from fastapi import Header, HTTPException, Request, status

from herald.notifications.service import NotificationService


async def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
  """Return the caller id forwarded by the upstream auth gateway."""
  user_id = (x_user_id or "").strip()
  if not user_id:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-User-Id header")
  return user_id


def get_notification_service(request: Request) -> NotificationService:
  service = getattr(request.app.state, "notification_service", None)
  if service is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Notification service unavailable")
  return service
