"""Placeholder substitution for notification titles and bodies.

Templates contain ``{{key}}`` placeholders. This is plain key/value interpolation, not a
templating language: there are no filters, conditionals or escaping rules.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

_PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}")


def render(template: str, variables: Mapping[str, Any]) -> str:
  """Replace {{placeholders}} with values; missing or null keys render as an empty string."""

  def _replace(match: re.Match[str]) -> str:
    value = variables.get(match.group(1).strip())
    return "" if value is None else str(value)

  return _PLACEHOLDER_RE.sub(_replace, template)


def render_pair(*, title_template: str, body_template: str, variables: Mapping[str, Any]) -> tuple[str, str]:
  """Render a title/body pair against the same variables."""
  return render(title_template, variables), render(body_template, variables)
