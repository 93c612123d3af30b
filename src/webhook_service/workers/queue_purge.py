"""Worker: purge old terminal queue items."""
from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from webhook_service.db.pool import get_pool
from webhook_service.repositories.queue import WebhookQueueRepository
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)


async def webhook_queue_purge(now: datetime) -> str | None:
    """Delete terminal items older than ``webhook_retention_days``.

    Items still ``processing`` are never deleted here; ones older than
    ``webhook_stuck_warn_hours`` are reported so they can be diagnosed.
    """
    pool = await get_pool()
    repo = WebhookQueueRepository(pool)

    stuck = await repo.count_stuck_processing(now - timedelta(hours=settings.webhook_stuck_warn_hours))
    if stuck:
        logger.warning(
            "webhook items stuck in processing",
            count=stuck,
            older_than_hours=settings.webhook_stuck_warn_hours,
        )

    cutoff = now - timedelta(days=settings.webhook_retention_days)
    purged = await repo.delete_terminal_before(cutoff)
    return f"purged={purged}" if purged else None
