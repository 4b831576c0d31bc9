"""Routes for push device token registration."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from herald.api.deps import get_current_user_id, get_notification_service
from herald.notifications.contracts import Platform
from herald.notifications.service import NotificationService

router = APIRouter()


class DeviceRegisterRequest(BaseModel):
  """FCM registration token reported by a client device."""

  token: str = Field(min_length=1, max_length=4096)
  platform: Platform
  device_id: str | None = Field(default=None, alias="deviceId", max_length=255)
  model_config = ConfigDict(extra="forbid", populate_by_name=True)

  @field_validator("token")
  @classmethod
  def validate_token(cls, value: str) -> str:
    normalized = value.strip()
    if not normalized or any(char.isspace() for char in normalized):
      raise PydanticCustomError("device_token_format", "token must be a non-empty string without whitespace.")
    return normalized


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_device(
  payload: DeviceRegisterRequest,
  user_id: str = Depends(get_current_user_id),  # noqa: B008
  service: NotificationService = Depends(get_notification_service),  # noqa: B008
) -> dict[str, Any]:
  """Register or reactivate the caller's device token."""
  record = await service.register_device(user_id=user_id, token=payload.token, platform=payload.platform, device_id=payload.device_id)
  return {"platform": record.platform.value, "deviceId": record.device_id, "isActive": record.is_active}
