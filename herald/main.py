from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from herald.api.routes import devices, notifications
from herald.config import get_settings
from herald.core.exceptions import global_exception_handler, http_exception_handler, request_validation_exception_handler, template_not_found_exception_handler
from herald.core.lifespan import lifespan
from herald.core.middleware import RequestLoggingMiddleware
from herald.notifications.contracts import TemplateNotFoundError

settings = get_settings()

app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "PUT", "PATCH", "OPTIONS"], allow_headers=["content-type", "authorization", "x-user-id"])

# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
app.add_exception_handler(TemplateNotFoundError, template_not_found_exception_handler)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": "0.1.0"}


app.include_router(notifications.router, prefix="/v1/notifications", tags=["notifications"])
app.include_router(devices.router, prefix="/v1/devices", tags=["devices"])
