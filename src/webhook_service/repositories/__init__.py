"""Repository package exports."""

from webhook_service.repositories.logs import WebhookLogRepository
from webhook_service.repositories.queue import WebhookQueueRepository
from webhook_service.repositories.subscriptions import WebhookSubscriptionRepository

__all__ = [
    "WebhookSubscriptionRepository",
    "WebhookQueueRepository",
    "WebhookLogRepository",
]
