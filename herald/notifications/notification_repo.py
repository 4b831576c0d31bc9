"""Repository helpers for persisted notifications."""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Select, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.notifications.contracts import EntityType, NotificationRecord
from herald.schema.notifications import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationEntry:
  """Capture a new notification row before it is persisted."""

  recipient_id: str
  actor_id: str | None
  template_id: uuid.UUID
  entity_type: EntityType
  entity_id: str
  message: str
  meta_data: dict[str, Any] = field(default_factory=dict)


def build_aggregate_select(*, recipient_id: str, entity_id: str, entity_type: EntityType, cutoff: datetime.datetime) -> Select:
  """Select the newest notification for the entity created after ``cutoff``, locked for update."""
  # Lock the single row so concurrent aggregations serialize on it.
  return (
    select(Notification)
    .where(Notification.recipient_id == recipient_id, Notification.entity_id == entity_id, Notification.entity_type == entity_type.value, Notification.created_at > cutoff)
    .order_by(desc(Notification.created_at))
    .limit(1)
    .with_for_update()
  )


def apply_aggregation(row: Notification, *, actor_id: str | None, render_message: Callable[[int], str]) -> int:
  """Bump the row's count, remember the latest actor and re-render its message; return the new count."""
  meta_data = dict(row.meta_data or {})
  count = int(meta_data.get("count") or 1) + 1
  meta_data["count"] = count
  if actor_id:
    meta_data["lastActorId"] = actor_id
  # Reassign the dict so the JSONB change is tracked.
  row.meta_data = meta_data
  row.message = render_message(count)
  return count


class NotificationRepository:
  """Persist, aggregate and query notifications in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create(self, entry: NotificationEntry) -> NotificationRecord:
    """Insert a new notification row."""
    async with self._session_factory() as session:
      return await self._create_with_session(session=session, entry=entry)

  async def _create_with_session(self, *, session: AsyncSession, entry: NotificationEntry) -> NotificationRecord:
    # Stamp created_at client-side so the returned record needs no refresh round-trip.
    record = Notification(
      id=uuid.uuid4(),
      recipient_id=entry.recipient_id,
      actor_id=entry.actor_id,
      template_id=entry.template_id,
      entity_type=entry.entity_type.value,
      entity_id=entry.entity_id,
      message=entry.message,
      is_read=False,
      meta_data=dict(entry.meta_data),
      created_at=datetime.datetime.now(datetime.UTC),
    )
    session.add(record)
    await session.commit()
    return _to_record(record)

  async def aggregate(
    self, *, recipient_id: str, entity_id: str, entity_type: EntityType, window_seconds: int, actor_id: str | None, render_message: Callable[[int], str]
  ) -> NotificationRecord | None:
    """Increment the newest notification for the entity inside the window, or return None."""
    cutoff = datetime.datetime.now(datetime.UTC) - datetime.timedelta(seconds=window_seconds)
    async with self._session_factory() as session:
      async with session.begin():
        # Read and write the one row inside a single transaction holding its row lock.
        result = await session.execute(build_aggregate_select(recipient_id=recipient_id, entity_id=entity_id, entity_type=entity_type, cutoff=cutoff))
        row = result.scalar_one_or_none()
        if row is None:
          return None

        apply_aggregation(row, actor_id=actor_id, render_message=render_message)
        await session.flush()
        return _to_record(row)

  async def list_for_user(self, *, user_id: str, limit: int, cursor: datetime.datetime | None = None) -> list[NotificationRecord]:
    """Return a page of notifications, newest first, strictly older than the cursor."""
    async with self._session_factory() as session:
      stmt = select(Notification).where(Notification.recipient_id == user_id)
      if cursor is not None:
        stmt = stmt.where(Notification.created_at < cursor)
      stmt = stmt.order_by(desc(Notification.created_at)).limit(limit)
      result = await session.execute(stmt)
      return [_to_record(row) for row in result.scalars().all()]

  async def unread_count(self, *, user_id: str) -> int:
    async with self._session_factory() as session:
      result = await session.execute(select(func.count()).select_from(Notification).where(Notification.recipient_id == user_id, Notification.is_read.is_(False)))
      return int(result.scalar_one() or 0)

  async def mark_read(self, *, notification_id: uuid.UUID, user_id: str) -> NotificationRecord | None:
    """Mark one notification read; scoped to its recipient so users cannot touch other inboxes."""
    async with self._session_factory() as session:
      stmt = update(Notification).where(Notification.id == notification_id, Notification.recipient_id == user_id).values(is_read=True).returning(Notification)
      result = await session.execute(stmt)
      row = result.scalar_one_or_none()
      await session.commit()
    return _to_record(row) if row is not None else None

  async def mark_all_read(self, *, user_id: str) -> int:
    """Mark every unread notification for a user read and return the number changed."""
    async with self._session_factory() as session:
      stmt = update(Notification).where(Notification.recipient_id == user_id, Notification.is_read.is_(False)).values(is_read=True)
      result = await session.execute(stmt)
      await session.commit()
    return int(result.rowcount or 0)


def _to_record(row: Notification) -> NotificationRecord:
  return NotificationRecord(
    id=row.id,
    recipient_id=row.recipient_id,
    actor_id=row.actor_id,
    template_id=row.template_id,
    entity_type=EntityType(row.entity_type),
    entity_id=row.entity_id,
    message=row.message,
    is_read=bool(row.is_read),
    meta_data=dict(row.meta_data or {}),
    created_at=row.created_at,
  )
