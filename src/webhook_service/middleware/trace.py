"""Request correlation middleware.

Binds ``trace_id``/``request_id`` (taken from the caller when they are
valid UUIDs) plus any routed ``webhook_id``/``item_id`` into structlog
contextvars, so every log line emitted while handling the request can be
joined to it. Both ids are echoed back as response headers.
"""
from __future__ import annotations

import time
from uuid import UUID, uuid4

import structlog
from aiohttp import web

TRACE_ID_HEADER = "X-Trace-Id"
REQUEST_ID_HEADER = "X-Request-Id"

# Route parameters worth carrying on every log line of the request.
_CONTEXT_MATCH_KEYS = ("webhook_id", "item_id")
_QUIET_PATHS = frozenset({"/health"})

logger = structlog.get_logger(__name__)


def _incoming_id(request: web.Request, header: str) -> str:
    value = request.headers.get(header)
    if value:
        try:
            return str(UUID(value))
        except ValueError:
            pass
    return str(uuid4())


def create_trace_middleware(service_name: str):
    @web.middleware
    async def trace_middleware(request: web.Request, handler):
        started = time.monotonic()
        trace_id = _incoming_id(request, TRACE_ID_HEADER)
        request_id = _incoming_id(request, REQUEST_ID_HEADER)
        request["trace_id"] = trace_id
        request["request_id"] = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            trace_id=trace_id,
            request_id=request_id,
            service=service_name,
            method=request.method,
            path=request.path,
            **{key: request.match_info[key] for key in _CONTEXT_MATCH_KEYS if key in request.match_info},
        )
        log = logger.debug if request.path in _QUIET_PATHS else logger.info

        def duration_ms() -> float:
            return round((time.monotonic() - started) * 1000, 2)

        try:
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                level = logger.warning if exc.status_code >= 400 else log
                level("request finished", status_code=exc.status_code, duration_ms=duration_ms(), error=exc.text)
                exc.headers[TRACE_ID_HEADER] = trace_id
                exc.headers[REQUEST_ID_HEADER] = request_id
                raise
            except Exception:
                logger.exception("request crashed", duration_ms=duration_ms())
                raise
            level = logger.warning if response.status >= 400 else log
            level("request finished", status_code=response.status, duration_ms=duration_ms())
            response.headers[TRACE_ID_HEADER] = trace_id
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    return trace_middleware
