"""Resolve the delivery channels a user should receive for a template."""

from __future__ import annotations

import datetime
import logging
import re
import uuid
from collections.abc import Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from herald.notifications.contracts import Channel, TemplateRecord, UserSettingsRecord
from herald.notifications.preference_repo import PreferenceRepository
from herald.notifications.template_repo import TemplateRepository

logger = logging.getLogger(__name__)

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_ALL_CHANNELS = (Channel.PUSH, Channel.EMAIL, Channel.IN_APP)

Clock = Callable[[], datetime.datetime]


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def parse_hhmm(value: str | None) -> int | None:
  """Convert an HH:MM string to minutes past midnight; None when unset or malformed."""
  if not value:
    return None
  match = _HHMM_RE.match(value.strip())
  if match is None:
    logger.warning("Ignoring malformed quiet-hours value=%r", value)
    return None
  return int(match.group(1)) * 60 + int(match.group(2))


def is_valid_hhmm(value: str) -> bool:
  return _HHMM_RE.match(value) is not None


def is_valid_timezone(name: str) -> bool:
  try:
    ZoneInfo(name)
  except (ZoneInfoNotFoundError, ValueError):
    return False
  return True


def resolve_zone(name: str | None) -> ZoneInfo:
  try:
    return ZoneInfo(name or "UTC")
  except (ZoneInfoNotFoundError, ValueError):
    logger.warning("Unknown timezone=%r; using UTC", name)
    return ZoneInfo("UTC")


def is_quiet_hours(settings: UserSettingsRecord, now: datetime.datetime) -> bool:
  """Return True when ``now`` falls inside the user's quiet-hours window.

  Both bounds are inclusive. A window whose start is not before its end wraps midnight.
  """
  start = parse_hhmm(settings.quiet_hours_start)
  end = parse_hhmm(settings.quiet_hours_end)
  if start is None or end is None:
    return False

  if now.tzinfo is None:
    now = now.replace(tzinfo=datetime.UTC)
  local = now.astimezone(resolve_zone(settings.timezone))
  minutes = local.hour * 60 + local.minute

  if start < end:
    return start <= minutes <= end
  return minutes >= start or minutes <= end


class PreferenceResolver:
  """Combine quiet hours, explicit preferences and template defaults into a channel set."""

  def __init__(self, *, preference_repo: PreferenceRepository, template_repo: TemplateRepository, clock: Clock | None = None) -> None:
    self._preference_repo = preference_repo
    self._template_repo = template_repo
    self._clock = clock or _utcnow

  async def resolve_channels(self, user_id: str, template_id: uuid.UUID, *, template: TemplateRecord | None = None) -> set[Channel]:
    settings = await self._preference_repo.get_or_create_settings(user_id)
    if is_quiet_hours(settings, self._clock()):
      logger.debug("Quiet hours active user_id=%s; restricting to IN_APP", user_id)
      return {Channel.IN_APP}

    if template is None:
      template = await self._template_repo.get_by_id(template_id)

    enabled: set[Channel] = set()
    for channel in _ALL_CHANNELS:
      explicit = await self._preference_repo.get_preference(user_id=user_id, template_id=template_id, channel=channel)
      if explicit is None:
        explicit = template.default_enabled(channel) if template is not None else False
      if explicit:
        enabled.add(channel)
    return enabled
