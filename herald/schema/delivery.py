"""SQLAlchemy models for the delivery-attempt audit log and registered device tokens."""

from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from herald.core.database import Base


class DeliveryAttempt(Base):
  """Append-only record of one physical send attempt."""

  __tablename__ = "delivery_attempts"
  __table_args__ = (Index("ix_delivery_attempts_notification_channel", "notification_id", "channel"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  notification_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("notifications.id", ondelete="CASCADE"), nullable=False)
  channel: Mapped[str] = mapped_column(String, nullable=False)
  status: Mapped[str] = mapped_column(String, nullable=False)
  attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
  error: Mapped[str | None] = mapped_column(Text, nullable=True)
  trace_id: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DeviceToken(Base):
  """Push registration for one device; reactivated rather than duplicated."""

  __tablename__ = "device_tokens"
  __table_args__ = (UniqueConstraint("user_id", "token", name="ux_device_tokens_user_token"),)

  id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
  user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  token: Mapped[str] = mapped_column(Text, nullable=False)
  platform: Mapped[str] = mapped_column(String, nullable=False)
  device_id: Mapped[str | None] = mapped_column(String, nullable=True)
  is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
  last_used_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
