"""Repository helpers for the delivery-attempt audit log."""

from __future__ import annotations

import uuid

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from herald.notifications.contracts import DeliveryAttemptEntry, DeliveryStatus
from herald.schema.delivery import DeliveryAttempt


class DeliveryAttemptRepository:
  """Persist delivery attempts in Postgres."""

  def __init__(self, *, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def log(self, entry: DeliveryAttemptEntry) -> uuid.UUID:
    """Insert an attempt row and return its id."""
    attempt_id = uuid.uuid4()
    async with self._session_factory() as session:
      session.add(
        DeliveryAttempt(
          id=attempt_id,
          notification_id=entry.notification_id,
          channel=entry.channel.value,
          status=entry.status.value,
          attempt_number=entry.attempt_number,
          error=entry.error,
          trace_id=entry.trace_id,
        )
      )
      await session.commit()
    return attempt_id

  async def update_status(self, attempt_id: uuid.UUID, status: DeliveryStatus, *, error: str | None = None) -> None:
    async with self._session_factory() as session:
      await session.execute(update(DeliveryAttempt).where(DeliveryAttempt.id == attempt_id).values(status=status.value, error=error))
      await session.commit()
