"""Webhook domain service (subscriptions, enqueueing, read interfaces)."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List
from uuid import UUID

import structlog

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.dto import EnqueueDTO, WebhookCreateDTO, WebhookUpdateDTO
from webhook_service.domain.enums import QueueStatus
from webhook_service.domain.webhooks import DeliveryLogEntry, QueueItem, WebhookSubscription
from webhook_service.repositories import (
    WebhookLogRepository,
    WebhookQueueRepository,
    WebhookSubscriptionRepository,
)
from webhook_service.services.delivery import format_timestamp

logger = structlog.get_logger(__name__)


class WebhookService:
    def __init__(
        self,
        subscription_repository: WebhookSubscriptionRepository,
        queue_repository: WebhookQueueRepository,
        log_repository: WebhookLogRepository,
    ):
        self._subscriptions = subscription_repository
        self._queue = queue_repository
        self._logs = log_repository

    async def create_subscription(self, dto: WebhookCreateDTO) -> WebhookSubscription:
        return await self._subscriptions.create(
            name=dto.name,
            url=str(dto.url),
            event_types=[event.value for event in dto.event_types],
            secret=dto.secret or None,
            headers=dto.headers,
            is_active=dto.is_active,
        )

    async def get_subscription(self, subscription_id: UUID) -> WebhookSubscription:
        return await self._subscriptions.get(subscription_id)

    async def list_subscriptions(
        self, *, is_active: bool | None = None, limit: int = 50, offset: int = 0
    ) -> tuple[List[WebhookSubscription], int]:
        return await self._subscriptions.list_all(is_active=is_active, limit=limit, offset=offset)

    async def update_subscription(
        self, subscription_id: UUID, dto: WebhookUpdateDTO
    ) -> WebhookSubscription:
        changes = dto.changes()
        if "secret" in changes:
            # empty string clears the secret
            changes["secret"] = changes["secret"] or None
        return await self._subscriptions.update(subscription_id, changes)

    async def delete_subscription(self, subscription_id: UUID) -> None:
        await self._subscriptions.delete(subscription_id)

    async def list_logs(
        self,
        subscription_id: UUID,
        *,
        success: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[DeliveryLogEntry], int]:
        await self._subscriptions.get(subscription_id)
        return await self._logs.list_by_subscription(
            subscription_id, success=success, limit=limit, offset=offset
        )

    async def list_queue(
        self,
        subscription_id: UUID,
        *,
        status: QueueStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[List[QueueItem], int]:
        await self._subscriptions.get(subscription_id)
        return await self._queue.list_by_subscription(
            subscription_id, status=status, limit=limit, offset=offset
        )

    async def get_queue_item(self, item_id: UUID) -> QueueItem:
        return await self._queue.get(item_id)

    async def enqueue(self, dto: EnqueueDTO) -> QueueItem:
        """Create a pending queue item for one subscription."""
        if await self._subscriptions.find(dto.subscription_id) is None:
            raise NotFoundError("Webhook subscription not found")
        item = await self._queue.enqueue(
            subscription_id=dto.subscription_id,
            event=dto.event,
            payload=dto.payload,
            scheduled_for=dto.scheduled_for,
        )
        logger.info(
            "webhook enqueued",
            item_id=str(item.id),
            subscription_id=str(item.subscription_id),
            webhook_event=item.event,
        )
        return item

    async def emit(
        self,
        *,
        event: str,
        data: dict[str, Any],
        scheduled_for: datetime | None = None,
    ) -> List[QueueItem]:
        """Fan an event out to every active subscription listening for it."""
        subs = await self._subscriptions.list_active_matching(event)
        if not subs:
            logger.info("no webhooks subscribed to event", webhook_event=event)
            return []
        payload = {
            "event": event,
            "timestamp": format_timestamp(datetime.now(timezone.utc)),
            "data": data,
        }
        items: List[QueueItem] = []
        for sub in subs:
            item = await self._queue.enqueue(
                subscription_id=sub.id,
                event=event,
                payload=payload,
                scheduled_for=scheduled_for,
            )
            items.append(item)
        logger.info("webhook event emitted", webhook_event=event, enqueued=len(items))
        return items
