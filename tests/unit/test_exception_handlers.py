"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from herald.core.exceptions import _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "timezone"), "msg": "Value error, Unknown timezone.", "input": {"timezone": "Mars/Olympus"}, "ctx": {"error": ValueError("Unknown timezone."), "input": "Mars/Olympus"}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["loc"] == ["body", "timezone"]
  assert sanitized[0]["ctx"]["error"] == "ValueError: Unknown timezone."
  assert "input" not in sanitized[0]["ctx"]
