"""Seed the default notification templates.

Revision ID: 8a2e4d6c1f93
Revises: 3f1c9a7d2b10
Create Date: 2026-10-19
"""

from __future__ import annotations

import uuid

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "8a2e4d6c1f93"
down_revision = "3f1c9a7d2b10"
branch_labels = None
depends_on = None

_TEMPLATES = [
  ("post_liked", "New Like", "{{actorName}} liked your post", True, False, True),
  ("new_comment", "New Comment", '{{actorName}} commented: "{{snippet}}"', True, True, True),
  ("new_reply", "New Reply", '{{actorName}} replied to your comment: "{{snippet}}"', True, False, True),
  ("new_mention", "You were mentioned", "{{actorName}} mentioned you in a comment", True, True, True),
  ("new_follower", "New Follower", "{{actorName}} started following you", True, True, True),
  ("new_message", "New Message", "{{actorName}}: {{snippet}}", True, False, True),
]


def upgrade() -> None:
  """Upgrade schema."""
  templates = sa.table(
    "notification_templates",
    sa.column("id", postgresql.UUID(as_uuid=True)),
    sa.column("slug", sa.String()),
    sa.column("title_template", sa.Text()),
    sa.column("body_template", sa.Text()),
    sa.column("is_push_enabled", sa.Boolean()),
    sa.column("is_email_enabled", sa.Boolean()),
    sa.column("is_in_app_enabled", sa.Boolean()),
  )
  op.bulk_insert(
    templates,
    [
      {"id": uuid.uuid4(), "slug": slug, "title_template": title, "body_template": body, "is_push_enabled": push, "is_email_enabled": email, "is_in_app_enabled": in_app}
      for slug, title, body, push, email, in_app in _TEMPLATES
    ],
  )


def downgrade() -> None:
  """Downgrade schema."""
  slugs = ", ".join(f"'{slug}'" for slug, *_ in _TEMPLATES)
  op.execute(f"DELETE FROM notification_templates WHERE slug IN ({slugs})")
