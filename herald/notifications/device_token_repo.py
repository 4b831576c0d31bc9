"""Repository helpers for push device tokens."""

from __future__ import annotations

import logging

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import Insert, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.notifications.contracts import DeviceTokenRecord, Platform
from herald.schema.delivery import DeviceToken

logger = logging.getLogger(__name__)


def build_register_statement(*, user_id: str, token: str, platform: Platform, device_id: str | None) -> Insert:
  """Build the upsert that registers a token or reactivates an existing (user, token) pair."""
  stmt = insert(DeviceToken).values(user_id=user_id, token=token, platform=platform.value, device_id=device_id, is_active=True)
  return stmt.on_conflict_do_update(
    index_elements=[DeviceToken.user_id, DeviceToken.token], set_={"is_active": True, "last_used_at": func.now(), "platform": platform.value, "device_id": device_id}
  )


class DeviceTokenRepository:
  """Persist and query push device tokens in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def register(self, *, user_id: str, token: str, platform: Platform, device_id: str | None = None) -> DeviceTokenRecord:
    async with self._session_factory() as session:
      await session.execute(build_register_statement(user_id=user_id, token=token, platform=platform, device_id=device_id))
      await session.commit()
    return DeviceTokenRecord(user_id=user_id, token=token, platform=platform, is_active=True, device_id=device_id)

  async def list_active(self, user_id: str) -> list[DeviceTokenRecord]:
    """Return active tokens for a user."""
    async with self._session_factory() as session:
      stmt = select(DeviceToken).where(DeviceToken.user_id == user_id, DeviceToken.is_active.is_(True))
      result = await session.execute(stmt)
      return [_to_record(row) for row in result.scalars().all()]

  async def deactivate(self, token: str) -> int:
    """Deactivate every registration of a token; return the number of rows changed."""
    async with self._session_factory() as session:
      stmt = update(DeviceToken).where(DeviceToken.token == token, DeviceToken.is_active.is_(True)).values(is_active=False)
      result = await session.execute(stmt)
      await session.commit()
    changed = int(result.rowcount or 0)
    if changed:
      logger.info("Deactivated device token rows=%s", changed)
    return changed


def _to_record(row: DeviceToken) -> DeviceTokenRecord:
  return DeviceTokenRecord(user_id=row.user_id, token=row.token, platform=Platform(row.platform), is_active=bool(row.is_active), device_id=row.device_id)
