"""SQLAlchemy models for per-user notification settings and channel preferences."""

from __future__ import annotations

import uuid

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from herald.core.database import Base


class NotificationSettings(Base):
  """Global per-user switches and quiet hours; created lazily on first read."""

  __tablename__ = "notification_settings"

  user_id: Mapped[str] = mapped_column(String, primary_key=True)
  push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  quiet_hours_start: Mapped[str | None] = mapped_column(String(5), nullable=True)
  quiet_hours_end: Mapped[str | None] = mapped_column(String(5), nullable=True)
  timezone: Mapped[str] = mapped_column(String, nullable=False, default="UTC", server_default="UTC")


class NotificationPreference(Base):
  """Sparse per-template channel override; a missing row means the template default applies."""

  __tablename__ = "notification_preferences"

  user_id: Mapped[str] = mapped_column(String, primary_key=True)
  template_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("notification_templates.id"), primary_key=True)
  channel: Mapped[str] = mapped_column(String, primary_key=True)
  is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
