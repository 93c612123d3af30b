"""aiohttp application entrypoint."""
from __future__ import annotations

from typing import Any

from aiohttp import web
from aiohttp_cors import ResourceOptions, setup as cors_setup

from webhook_service.api.router import setup_routes
from webhook_service.db.migrations import create_migration_runner
from webhook_service.db.pool import close_pool, get_pool, init_pool
from webhook_service.logging_config import configure_logging
from webhook_service.middleware.trace import create_trace_middleware
from webhook_service.settings import settings
from webhook_service.workers import build_poller, build_workers

_ALLOWED_HEADERS = (
    "Accept",
    "Content-Type",
    "Authorization",
    "X-Trace-Id",
    "X-Request-Id",
)
_ALLOWED_METHODS = ("GET", "HEAD", "POST", "PATCH", "DELETE", "OPTIONS")
_EXPOSED_HEADERS = ("X-Trace-Id", "X-Request-Id")

_WORKERS_KEY = "webhook_workers"
_POLLER_KEY = "webhook_poller"


async def healthcheck(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "service": settings.app_name, "env": settings.env})


async def start_webhook_workers(app: web.Application) -> None:
    poller = build_poller(await get_pool())
    await poller.open()
    workers = build_workers(poller)
    for worker in workers:
        await worker.start()
    app[_POLLER_KEY] = poller
    app[_WORKERS_KEY] = workers


async def stop_webhook_workers(app: web.Application) -> None:
    for worker in app.get(_WORKERS_KEY, ()):
        await worker.stop()
    poller = app.get(_POLLER_KEY)
    if poller is not None:
        await poller.close()


def create_app(
    *,
    with_database: bool = True,
    with_workers: bool | None = None,
    **overrides: Any,
) -> web.Application:
    """Build the API application.

    ``overrides`` are stored on the app before startup, e.g. a prebuilt
    ``webhook_service`` instance (see :mod:`webhook_service.services.dependencies`).
    """
    app = web.Application()
    app.middlewares.append(create_trace_middleware(settings.app_name))

    cors = cors_setup(
        app,
        defaults={
            origin: ResourceOptions(
                allow_credentials=True,
                expose_headers=_EXPOSED_HEADERS,
                allow_headers=_ALLOWED_HEADERS,
                allow_methods=_ALLOWED_METHODS,
            )
            for origin in settings.cors_allowed_origins
        },
    )

    for key, value in overrides.items():
        app[key] = value

    app.router.add_get("/health", healthcheck)
    setup_routes(app)

    if with_database:
        app.on_startup.append(init_pool)
        app.on_startup.append(create_migration_runner())
        app.on_cleanup.append(close_pool)
        if settings.webhook_worker_in_api if with_workers is None else with_workers:
            app.on_startup.append(start_webhook_workers)
            # must run before close_pool
            app.on_cleanup.insert(0, stop_webhook_workers)

    for route in list(app.router.routes()):
        cors.add(route)

    return app


def main() -> None:
    configure_logging(settings.log_level, component="api", service=settings.app_name)
    web.run_app(create_app(), host=settings.host, port=settings.port, access_log=None)


if __name__ == "__main__":
    main()
