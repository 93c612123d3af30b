"""Background workers for the webhook service.

Two independent fixed-interval loops:

* the poll worker runs :meth:`QueuePoller.poll` every
  ``webhook_poll_interval_seconds``;
* the maintenance worker reclaims orphaned ``processing`` items and purges
  old terminal items every ``webhook_maintenance_interval_seconds``.

:func:`build_workers` creates fresh instances; nothing is shared between
calls, so several independent sets can live in one process.
"""
from __future__ import annotations

import asyncpg  # type: ignore[import-untyped]

from webhook_service.dispatcher import QueuePoller
from webhook_service.repositories import WebhookQueueRepository, WebhookSubscriptionRepository
from webhook_service.settings import settings
from webhook_service.worker import BackgroundWorker, WorkerTask
from webhook_service.workers.queue_purge import webhook_queue_purge
from webhook_service.workers.queue_reclaim import webhook_queue_reclaim


def build_poller(pool: asyncpg.Pool) -> QueuePoller:
    return QueuePoller(
        WebhookSubscriptionRepository(pool),
        WebhookQueueRepository(pool),
        batch_size=settings.webhook_batch_size,
        timeout_s=settings.webhook_request_timeout_seconds,
        user_agent=settings.webhook_user_agent,
        max_attempts=settings.webhook_max_attempts,
        backoff_cap_seconds=settings.webhook_retry_backoff_max_seconds,
    )


def build_workers(poller: QueuePoller) -> tuple[BackgroundWorker, BackgroundWorker]:
    poll_worker = BackgroundWorker(
        name="webhook_poll_worker",
        interval_seconds=settings.webhook_poll_interval_seconds,
        tasks=[WorkerTask(name="webhook_queue_poll", fn=poller.poll)],
        stop_timeout_seconds=settings.worker_stop_timeout_seconds,
    )
    maintenance_worker = BackgroundWorker(
        name="webhook_maintenance_worker",
        interval_seconds=settings.webhook_maintenance_interval_seconds,
        tasks=[
            WorkerTask(name="webhook_queue_reclaim", fn=webhook_queue_reclaim),
            WorkerTask(name="webhook_queue_purge", fn=webhook_queue_purge),
        ],
        run_on_start=True,
        stop_timeout_seconds=settings.worker_stop_timeout_seconds,
    )
    return poll_worker, maintenance_worker


__all__ = [
    "build_poller",
    "build_workers",
    "webhook_queue_purge",
    "webhook_queue_reclaim",
]
