"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_trace_id() -> str:
  """Return a new trace identifier carried by every delivery job of one event."""
  return uuid.uuid4().hex
