"""Request correlation and access logging for the notification API."""

from __future__ import annotations

import logging
import re
import time
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

from herald.utils.ids import generate_trace_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
USER_ID_HEADER = "x-user-id"

# Gateway ids are echoed back into logs and headers, so keep them short and printable.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")
_QUIET_PATHS = frozenset({"/health"})


def resolve_request_id(headers: Headers) -> str:
  """Reuse the caller's request id when it is well formed, otherwise mint a new one."""
  inbound = headers.get(REQUEST_ID_HEADER)
  if inbound and _REQUEST_ID_PATTERN.match(inbound):
    return inbound
  return generate_trace_id()


class RequestLoggingMiddleware:
  """Tag each HTTP request with a request id and log one line per request and response.

  The id lands in ``scope["state"]["request_id"]`` for the exception handlers and is
  returned in ``X-Request-Id``. Bodies are never logged; notification text is user content.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    headers = Headers(scope=scope)
    request_id = resolve_request_id(headers)
    scope.setdefault("state", {})["request_id"] = request_id

    path = scope.get("path", "")
    method = scope.get("method", "UNKNOWN")
    user_id = headers.get(USER_ID_HEADER) or "-"
    quiet = path in _QUIET_PATHS
    if not quiet:
      logger.info("Request request_id=%s user_id=%s %s %s", request_id, user_id, method, path)

    status_code = 0
    started = time.perf_counter()

    async def send_with_request_id(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
        MutableHeaders(scope=message)[REQUEST_ID_HEADER] = request_id
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      # Unhandled errors leave status 0 here; the exception handler logs the traceback.
      if status_code >= 500 or status_code == 0:
        logger.warning("Response request_id=%s user_id=%s %s %s status=%s took=%.2fms", request_id, user_id, method, path, status_code, elapsed_ms)
      elif not quiet:
        logger.info("Response request_id=%s user_id=%s status=%s took=%.2fms", request_id, user_id, status_code, elapsed_ms)
