"""Request id propagation and access logging in the HTTP middleware."""

from __future__ import annotations

import logging

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from herald.core.middleware import RequestLoggingMiddleware


async def _echo_request_id(request: Request) -> JSONResponse:
  return JSONResponse({"requestId": request.state.request_id})


async def _fail(request: Request) -> JSONResponse:
  return JSONResponse({"detail": "boom"}, status_code=503)


def _client() -> TestClient:
  app = Starlette(routes=[Route("/v1/notifications", _echo_request_id), Route("/health", _echo_request_id), Route("/broken", _fail)])
  app.add_middleware(RequestLoggingMiddleware)
  return TestClient(app)


def test_gateway_request_id_is_reused() -> None:
  response = _client().get("/v1/notifications", headers={"X-Request-Id": "gw-1234.abc"})

  assert response.headers["x-request-id"] == "gw-1234.abc"
  assert response.json() == {"requestId": "gw-1234.abc"}


def test_malformed_request_id_is_replaced() -> None:
  response = _client().get("/v1/notifications", headers={"X-Request-Id": "bad id; drop table" + "x" * 80})

  request_id = response.headers["x-request-id"]
  assert request_id != "bad id; drop table" + "x" * 80
  assert len(request_id) == 32
  assert response.json() == {"requestId": request_id}


def test_request_logs_carry_caller_user_id(caplog) -> None:
  caplog.set_level(logging.INFO, logger="herald.core.middleware")

  _client().get("/v1/notifications", headers={"X-User-Id": "u1", "X-Request-Id": "req-1"})

  messages = [record.getMessage() for record in caplog.records if record.name == "herald.core.middleware"]
  assert any(message.startswith("Request request_id=req-1 user_id=u1 GET /v1/notifications") for message in messages)
  assert any(message.startswith("Response request_id=req-1 user_id=u1 status=200") for message in messages)


def test_health_checks_are_not_logged(caplog) -> None:
  caplog.set_level(logging.INFO, logger="herald.core.middleware")

  _client().get("/health")

  assert [record for record in caplog.records if record.name == "herald.core.middleware"] == []


def test_server_errors_log_at_warning(caplog) -> None:
  caplog.set_level(logging.INFO, logger="herald.core.middleware")

  _client().get("/broken", headers={"X-Request-Id": "req-2"})

  warnings = [record for record in caplog.records if record.name == "herald.core.middleware" and record.levelno == logging.WARNING]
  assert len(warnings) == 1
  assert "request_id=req-2 user_id=- GET /broken status=503" in warnings[0].getMessage()
