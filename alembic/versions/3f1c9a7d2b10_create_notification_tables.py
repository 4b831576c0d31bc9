"""Create notification pipeline tables.

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "3f1c9a7d2b10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "notification_templates",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("slug", sa.String(length=100), nullable=False),
    sa.Column("title_template", sa.Text(), nullable=False),
    sa.Column("body_template", sa.Text(), nullable=False),
    sa.Column("is_push_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.Column("is_email_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("is_in_app_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("slug"),
  )

  op.create_table(
    "notifications",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("recipient_id", sa.String(), nullable=False),
    sa.Column("actor_id", sa.String(), nullable=True),
    sa.Column("template_id", postgresql.UUID(as_uuid=True), nullable=True),
    sa.Column("entity_type", sa.String(), nullable=False),
    sa.Column("entity_id", sa.String(), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("is_read", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("meta_data", postgresql.JSONB(astext_type=sa.Text()), server_default=sa.text("'{}'::jsonb"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["template_id"], ["notification_templates.id"]),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index(op.f("ix_notifications_recipient_id"), "notifications", ["recipient_id"], unique=False)
  op.create_index("ix_notifications_recipient_unread", "notifications", ["recipient_id", "is_read"], unique=False)
  op.create_index("ix_notifications_aggregation", "notifications", ["recipient_id", "entity_id", "entity_type"], unique=False)
  op.create_index("ix_notifications_recipient_created", "notifications", ["recipient_id", "created_at"], unique=False)

  op.create_table(
    "notification_settings",
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("push_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.Column("email_enabled", sa.Boolean(), server_default=sa.text("false"), nullable=False),
    sa.Column("quiet_hours_start", sa.String(length=5), nullable=True),
    sa.Column("quiet_hours_end", sa.String(length=5), nullable=True),
    sa.Column("timezone", sa.String(), server_default="UTC", nullable=False),
    sa.PrimaryKeyConstraint("user_id"),
  )

  op.create_table(
    "notification_preferences",
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("template_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("channel", sa.String(), nullable=False),
    sa.Column("is_enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.ForeignKeyConstraint(["template_id"], ["notification_templates.id"]),
    sa.PrimaryKeyConstraint("user_id", "template_id", "channel"),
  )

  op.create_table(
    "delivery_attempts",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("notification_id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("channel", sa.String(), nullable=False),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("attempt_number", sa.Integer(), server_default=sa.text("1"), nullable=False),
    sa.Column("error", sa.Text(), nullable=True),
    sa.Column("trace_id", sa.String(), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["notification_id"], ["notifications.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("id"),
  )
  op.create_index("ix_delivery_attempts_notification_channel", "delivery_attempts", ["notification_id", "channel"], unique=False)

  op.create_table(
    "device_tokens",
    sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("token", sa.Text(), nullable=False),
    sa.Column("platform", sa.String(), nullable=False),
    sa.Column("device_id", sa.String(), nullable=True),
    sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
    sa.Column("last_used_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("user_id", "token", name="ux_device_tokens_user_token"),
  )
  op.create_index(op.f("ix_device_tokens_user_id"), "device_tokens", ["user_id"], unique=False)


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index(op.f("ix_device_tokens_user_id"), table_name="device_tokens")
  op.drop_table("device_tokens")
  op.drop_index("ix_delivery_attempts_notification_channel", table_name="delivery_attempts")
  op.drop_table("delivery_attempts")
  op.drop_table("notification_preferences")
  op.drop_table("notification_settings")
  op.drop_index("ix_notifications_recipient_created", table_name="notifications")
  op.drop_index("ix_notifications_aggregation", table_name="notifications")
  op.drop_index("ix_notifications_recipient_unread", table_name="notifications")
  op.drop_index(op.f("ix_notifications_recipient_id"), table_name="notifications")
  op.drop_table("notifications")
  op.drop_table("notification_templates")
