"""Worker: reclaim queue items orphaned in ``processing``."""
from __future__ import annotations

from datetime import datetime, timedelta

import structlog

from webhook_service.db.pool import get_pool
from webhook_service.repositories.queue import WebhookQueueRepository
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)


async def webhook_queue_reclaim(now: datetime) -> str | None:
    """Reset items processing longer than the request timeout plus a safety margin.

    Every reclaim means a worker died or hung mid-delivery, so it is logged
    as a warning. The purge task's stuck check only sees items this sweep
    failed to reset.
    """
    pool = await get_pool()
    cutoff = now - timedelta(
        seconds=settings.webhook_request_timeout_seconds + settings.webhook_reclaim_margin_seconds
    )
    reclaimed = await WebhookQueueRepository(pool).reclaim_stuck(cutoff)
    if reclaimed:
        logger.warning(
            "webhook items reclaimed from processing",
            count=reclaimed,
            started_before=cutoff.isoformat(),
        )
    return f"reclaimed={reclaimed}" if reclaimed else None
