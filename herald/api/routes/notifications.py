from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field

from herald.api.deps import get_current_user_id, get_notification_service
from herald.notifications.contracts import Channel, NotificationRecord
from herald.notifications.service import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, NotificationService, PreferenceUpdate

router = APIRouter()


class PreferenceItem(BaseModel):
  """One per-template channel override."""

  template_slug: str = Field(alias="templateSlug", min_length=1, max_length=128)
  channel: Channel
  is_enabled: bool = Field(alias="isEnabled")
  model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PreferencesRequest(BaseModel):
  preferences: list[PreferenceItem] = Field(max_length=100)
  model_config = ConfigDict(extra="forbid")


class SettingsRequest(BaseModel):
  """Partial update of the caller's notification settings; omitted fields stay unchanged."""

  push_enabled: bool | None = Field(default=None, alias="pushEnabled")
  email_enabled: bool | None = Field(default=None, alias="emailEnabled")
  quiet_hours_start: str | None = Field(default=None, alias="quietHoursStart")
  quiet_hours_end: str | None = Field(default=None, alias="quietHoursEnd")
  timezone: str | None = Field(default=None, max_length=64)
  model_config = ConfigDict(extra="forbid", populate_by_name=True)


def _serialize(record: NotificationRecord) -> dict[str, Any]:
  return {
    "id": str(record.id),
    "recipientId": record.recipient_id,
    "actorId": record.actor_id,
    "templateId": str(record.template_id) if record.template_id else None,
    "entityType": record.entity_type.value,
    "entityId": record.entity_id,
    "message": record.message,
    "isRead": record.is_read,
    "metaData": record.meta_data,
    "createdAt": record.created_at.isoformat(),
  }


@router.get("")
async def list_notifications(
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
  limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),  # noqa: B008
  cursor: str | None = Query(None, max_length=64),  # noqa: B008
) -> dict[str, Any]:
  """
  Return the caller's notifications, newest first.

  - **limit**: Page size (1-50).
  - **cursor**: `nextCursor` from the previous page.
  """
  try:
    page = await service.list_notifications(user_id=user_id, limit=limit, cursor=cursor)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  return {"items": [_serialize(record) for record in page.items], "nextCursor": page.next_cursor}


@router.get("/unread-count")
async def unread_count(user_id: str = Depends(get_current_user_id), service: NotificationService = Depends(get_notification_service)) -> dict[str, int]:  # noqa: B008
  return {"count": await service.unread_count(user_id=user_id)}


@router.patch("/read-all")
async def mark_all_read(user_id: str = Depends(get_current_user_id), service: NotificationService = Depends(get_notification_service)) -> dict[str, int]:  # noqa: B008
  """Mark every unread notification of the caller read."""
  return {"updated": await service.mark_all_read(user_id=user_id)}


@router.patch("/{notification_id}/read")
async def mark_read(
  notification_id: uuid.UUID,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
) -> dict[str, Any]:
  """Mark one notification read; other users' notifications are reported as missing."""
  record = await service.mark_read(notification_id=notification_id, user_id=user_id)
  if record is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  return _serialize(record)


@router.put("/preferences", status_code=status.HTTP_204_NO_CONTENT)
async def update_preferences(
  payload: PreferencesRequest,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
) -> Response:
  updates = [PreferenceUpdate(template_slug=item.template_slug, channel=item.channel, is_enabled=item.is_enabled) for item in payload.preferences]
  # Unknown template slugs surface as 404 through the TemplateNotFoundError handler.
  await service.update_preferences(user_id=user_id, updates=updates)
  return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/settings")
async def update_settings(
  payload: SettingsRequest,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
) -> dict[str, Any]:
  try:
    settings = await service.update_settings(user_id=user_id, changes=payload.model_dump(exclude_unset=True))
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

  return {
    "pushEnabled": settings.push_enabled,
    "emailEnabled": settings.email_enabled,
    "quietHoursStart": settings.quiet_hours_start,
    "quietHoursEnd": settings.quiet_hours_end,
    "timezone": settings.timezone,
  }
