"""SQLAlchemy models for notification templates and persisted notifications."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from herald.core.database import Base


class NotificationTemplate(Base):
  """Read-only template keyed by slug with per-channel defaults."""

  __tablename__ = "notification_templates"

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
  title_template: Mapped[str] = mapped_column(Text, nullable=False)
  body_template: Mapped[str] = mapped_column(Text, nullable=False)
  is_push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  is_email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  is_in_app_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Notification(Base):
  """A rendered notification; aggregated in place while its dedup window is open."""

  __tablename__ = "notifications"
  __table_args__ = (
    Index("ix_notifications_recipient_unread", "recipient_id", "is_read"),
    Index("ix_notifications_aggregation", "recipient_id", "entity_id", "entity_type"),
    Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
  )

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  recipient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
  template_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("notification_templates.id"), nullable=True)
  entity_type: Mapped[str] = mapped_column(String, nullable=False)
  entity_id: Mapped[str] = mapped_column(String, nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
  meta_data: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict, server_default="{}")
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
