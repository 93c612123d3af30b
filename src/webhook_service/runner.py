"""Standalone webhook worker process (poller + maintenance loops)."""
from __future__ import annotations

import asyncio
import signal

import structlog

from webhook_service.db.pool import close_pool, get_pool, init_pool
from webhook_service.logging_config import configure_logging
from webhook_service.settings import settings
from webhook_service.workers import build_poller, build_workers

logger = structlog.get_logger(__name__)


async def run_worker(stop_event: asyncio.Event | None = None) -> None:
    """Run both loops until ``stop_event`` is set (SIGTERM/SIGINT by default)."""
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # not available on this platform / outside the main thread
            pass

    await init_pool()
    poller = build_poller(await get_pool())
    await poller.open()
    workers = build_workers(poller)
    try:
        for worker in workers:
            await worker.start()
        logger.info("webhook worker started", batch_size=poller.batch_size)
        await stop_event.wait()
        logger.info("webhook worker stopping")
    finally:
        # timers first, then the resources in-flight deliveries depend on
        for worker in workers:
            await worker.stop()
        await poller.close()
        await close_pool()
        logger.info("webhook worker stopped")


def main() -> None:
    configure_logging(settings.log_level, component="worker", service=settings.app_name)
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
