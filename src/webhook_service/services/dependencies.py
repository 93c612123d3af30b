"""Shared dependency providers for aiohttp handlers."""
# pyright: reportMissingImports=false
from __future__ import annotations

from aiohttp import web

from webhook_service.db.pool import get_pool
from webhook_service.repositories import (
    WebhookLogRepository,
    WebhookQueueRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services import WebhookService

# Set on the application to override the pool-backed service (tests, embedding).
WEBHOOK_SERVICE_KEY = "webhook_service"


async def get_webhook_service(request: web.Request) -> WebhookService:
    service = request.config_dict.get(WEBHOOK_SERVICE_KEY) or request.get(WEBHOOK_SERVICE_KEY)
    if service is None:
        pool = await get_pool()
        service = WebhookService(
            WebhookSubscriptionRepository(pool),
            WebhookQueueRepository(pool),
            WebhookLogRepository(pool),
        )
        request[WEBHOOK_SERVICE_KEY] = service
    return service
