from __future__ import annotations

import logging
import re
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.services.status_errors import InvalidStatus, InvalidTimeSpec, StatusUpdateValidationError, TopicNotFound

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("app.http")

RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cache-Control": "no-store",
}


def request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value or not _REQUEST_ID_RE.fullmatch(value):
        return uuid4().hex
    return value


def _error_body(request: Request, message: str, **extra) -> dict:
    body = {"success": "FAILED", "detail": message}
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        body["request_id"] = request_id
    body.update(extra)
    return body


def install_http_hardening(app: FastAPI) -> None:
    """Request ids, access logging and the status-error to HTTP mapping."""

    @app.exception_handler(TopicNotFound)
    async def _topic_not_found(request: Request, exc: TopicNotFound):
        return JSONResponse(status_code=404, content=_error_body(request, "Topic not found"))

    @app.exception_handler(InvalidStatus)
    async def _invalid_status(request: Request, exc: InvalidStatus):
        return JSONResponse(status_code=400, content=_error_body(request, str(exc)))

    @app.exception_handler(InvalidTimeSpec)
    async def _invalid_time(request: Request, exc: InvalidTimeSpec):
        return JSONResponse(status_code=400, content=_error_body(request, str(exc)))

    @app.exception_handler(StatusUpdateValidationError)
    async def _invalid_status_update(request: Request, exc: StatusUpdateValidationError):
        return JSONResponse(status_code=422, content=_error_body(request, str(exc), errors=exc.errors))

    @app.middleware("http")
    async def _http_hardening_middleware(request: Request, call_next):
        request_id = request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        started_at = perf_counter()

        response = await call_next(request)

        for key, value in RESPONSE_HEADERS.items():
            response.headers[key] = value
        response.headers[REQUEST_ID_HEADER] = request_id

        duration_ms = (perf_counter() - started_at) * 1000.0
        _LOG.info(
            "%s %s status=%s duration_ms=%.2f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            request_id,
        )
        return response
