"""Structured key=value logging shared by the API, worker and migration CLI.

Every record is one line: nested strings are escaped, and each line carries
``service`` and ``component`` (``api``, ``worker`` or ``migrate``) so the
poller output can be told apart from request logs when both processes
write to the same stream.
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Third-party loggers that are too chatty at INFO for a polling process.
_QUIET_LOGGERS = ("asyncio", "aiohttp.client")


def _escape(value: Any) -> Any:
    if isinstance(value, str):
        return (
            value.replace("\\", "\\\\")
            .replace("\n", "\\n")
            .replace("\r", "\\r")
            .replace("\t", "\\t")
        )
    if isinstance(value, (list, tuple)):
        return [_escape(item) for item in value]
    if isinstance(value, dict):
        return {key: _escape(item) for key, item in value.items()}
    return value


def single_line_processor(logger, method_name, event_dict):
    """Escape control characters in every value, tracebacks included."""
    return {key: _escape(value) for key, value in event_dict.items()}


def static_fields_processor(**fields: str):
    def add_fields(logger, method_name, event_dict):
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_fields


class SingleLineFormatter(logging.Formatter):
    """Keeps stdlib records (aiohttp, asyncpg) on one line as well."""

    def format(self, record):
        return super().format(record).replace("\n", "\\n").replace("\r", "\\r")


def configure_logging(
    level: str = "INFO",
    *,
    component: str = "api",
    service: str = "webhook-service",
) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(SingleLineFormatter("%(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level.upper())

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # timestamp=... level=info logger=webhook_service.dispatcher event='webhook delivered' component=worker ...
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            static_fields_processor(service=service, component=component),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # after format_exc_info so the rendered traceback is escaped too
            single_line_processor,
            structlog.processors.KeyValueRenderer(
                key_order=["timestamp", "level", "logger", "event", "component"],
                drop_missing=True,
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
