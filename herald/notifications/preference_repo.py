"""Repository helpers for notification settings and per-template channel preferences."""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.notifications.contracts import Channel, UserSettingsRecord
from herald.schema.notification_preferences import NotificationPreference, NotificationSettings


@dataclass(frozen=True)
class PreferenceEntry:
  """A single (template, channel) override for one user."""

  template_id: uuid.UUID
  channel: Channel
  is_enabled: bool


class PreferenceRepository:
  """Persist user notification settings and preferences in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def get_or_create_settings(self, user_id: str) -> UserSettingsRecord:
    """Return the user's settings, inserting the defaults on first read."""
    async with self._session_factory() as session:
      row = await session.get(NotificationSettings, user_id)
      if row is None:
        # Tolerate a concurrent first read creating the same row.
        await session.execute(insert(NotificationSettings).values(user_id=user_id).on_conflict_do_nothing(index_elements=["user_id"]))
        await session.commit()
        row = await session.get(NotificationSettings, user_id)
    return _settings_to_record(row)

  async def update_settings(self, user_id: str, changes: dict[str, Any]) -> UserSettingsRecord:
    """Apply a partial settings update; keys are NotificationSettings column names."""
    async with self._session_factory() as session:
      values = {"user_id": user_id, **changes}
      stmt = insert(NotificationSettings).values(**values)
      if changes:
        stmt = stmt.on_conflict_do_update(index_elements=["user_id"], set_=changes)
      else:
        stmt = stmt.on_conflict_do_nothing(index_elements=["user_id"])
      await session.execute(stmt)
      await session.commit()
      row = await session.get(NotificationSettings, user_id, populate_existing=True)
    return _settings_to_record(row)

  async def get_preference(self, *, user_id: str, template_id: uuid.UUID, channel: Channel) -> bool | None:
    """Return the explicit preference for a channel, or None when the template default applies."""
    async with self._session_factory() as session:
      stmt = select(NotificationPreference.is_enabled).where(NotificationPreference.user_id == user_id, NotificationPreference.template_id == template_id, NotificationPreference.channel == channel.value)
      result = await session.execute(stmt)
      return result.scalar_one_or_none()

  async def upsert_preferences(self, *, user_id: str, entries: Iterable[PreferenceEntry]) -> None:
    async with self._session_factory() as session:
      for entry in entries:
        stmt = insert(NotificationPreference).values(user_id=user_id, template_id=entry.template_id, channel=entry.channel.value, is_enabled=entry.is_enabled)
        stmt = stmt.on_conflict_do_update(index_elements=["user_id", "template_id", "channel"], set_={"is_enabled": entry.is_enabled})
        await session.execute(stmt)
      await session.commit()


def _settings_to_record(row: NotificationSettings) -> UserSettingsRecord:
  return UserSettingsRecord(
    user_id=row.user_id, push_enabled=row.push_enabled, email_enabled=row.email_enabled, quiet_hours_start=row.quiet_hours_start, quiet_hours_end=row.quiet_hours_end, timezone=row.timezone or "UTC"
  )
