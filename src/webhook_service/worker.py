"""Reusable periodic background worker.

Usage::

    from webhook_service.worker import BackgroundWorker, WorkerTask

    async def purge_old_items(now: datetime) -> str | None:
        deleted = await repo.delete_terminal_before(now - timedelta(days=7))
        return f"purged={deleted}" if deleted else None

    worker = BackgroundWorker(
        interval_seconds=3600.0,
        tasks=[WorkerTask(name="purge", fn=purge_old_items)],
    )

    # Standalone process
    await worker.start()
    ...
    await worker.stop()

    # Or inside an aiohttp app
    app.on_startup.append(worker.start)
    app.on_cleanup.append(worker.stop)
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

import structlog

logger = structlog.get_logger(__name__)

# Type for a single task function: receives current UTC time, returns
# an optional human-readable summary string (logged when non-empty).
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    """A named periodic task executed by :class:`BackgroundWorker`."""

    name: str
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """In-process async worker that runs a list of tasks on a fixed interval.

    Each task is executed independently: if one fails the others still run.
    The worker is resilient to transient errors and logs them via structlog.

    Every instance owns its asyncio task, so several workers can run in one
    process. :meth:`stop` lets a sweep in progress finish (bounded by
    ``stop_timeout_seconds``) instead of cancelling it mid-flight.
    """

    interval_seconds: float = 60.0
    tasks: Sequence[WorkerTask] = field(default_factory=list)
    name: str = "background_worker"
    run_on_start: bool = False
    stop_timeout_seconds: float = 35.0

    _task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _stopping: asyncio.Event | None = field(default=None, init=False, repr=False)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, _app: Any = None) -> None:
        """Start the loop. Compatible with ``app.on_startup``."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self, _app: Any = None) -> None:
        """Stop the loop after the current sweep. Compatible with ``app.on_cleanup``."""
        task = self._task
        if task is None:
            return
        assert self._stopping is not None
        self._stopping.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.stop_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("worker stop timed out, cancelling", worker=self.name)
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

    async def run_once(self, now: datetime | None = None) -> None:
        """Run every task once, isolating failures."""
        now = now or datetime.now(timezone.utc)
        for task in self.tasks:
            try:
                summary = await task.fn(now)
                if summary:
                    logger.info(
                        "background_task completed",
                        worker=self.name,
                        task=task.name,
                        summary=summary,
                    )
            except Exception:
                logger.exception(
                    "background_task failed",
                    worker=self.name,
                    task=task.name,
                )

    async def _wait_interval(self) -> bool:
        """Sleep for one interval. Returns True when a stop was requested."""
        assert self._stopping is not None
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _loop(self) -> None:
        logger.info(
            "background_worker started",
            worker=self.name,
            interval_seconds=self.interval_seconds,
            tasks=[t.name for t in self.tasks],
        )
        try:
            if self.run_on_start:
                await self.run_once()
            while not await self._wait_interval():
                try:
                    await self.run_once()
                except Exception:
                    logger.exception("background_worker sweep failed", worker=self.name)
        finally:
            logger.info("background_worker stopped", worker=self.name)
