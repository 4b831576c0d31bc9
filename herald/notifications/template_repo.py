"""Repository helpers for read-only notification templates."""

from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.notifications.contracts import TemplateRecord
from herald.schema.notifications import NotificationTemplate


class TemplateRepository:
  """Look up notification templates in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def get_by_slug(self, slug: str) -> TemplateRecord | None:
    """Return the template with the given slug, if any."""
    async with self._session_factory() as session:
      result = await session.execute(select(NotificationTemplate).where(NotificationTemplate.slug == slug).limit(1))
      row = result.scalar_one_or_none()
    return _to_record(row) if row is not None else None

  async def get_by_id(self, template_id: uuid.UUID) -> TemplateRecord | None:
    async with self._session_factory() as session:
      row = await session.get(NotificationTemplate, template_id)
    return _to_record(row) if row is not None else None


def _to_record(row: NotificationTemplate) -> TemplateRecord:
  return TemplateRecord(
    id=row.id,
    slug=row.slug,
    title_template=row.title_template,
    body_template=row.body_template,
    is_push_enabled=row.is_push_enabled,
    is_email_enabled=row.is_email_enabled,
    is_in_app_enabled=row.is_in_app_enabled,
  )
