"""Webhook delivery queue (durable outbox of pending notifications)."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import NotFoundError
from webhook_service.domain.enums import QueueStatus
from webhook_service.domain.webhooks import DeliveryResult, QueueItem, WebhookSubscription
from webhook_service.repositories.base import BaseRepository


class WebhookQueueRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @classmethod
    def _to_model(cls, record: Record | dict[str, Any]) -> QueueItem:
        return QueueItem.model_validate(cls._decode_json(dict(record), "payload"))

    async def enqueue(
        self,
        *,
        subscription_id: UUID,
        event: str,
        payload: Any,
        scheduled_for: datetime | None = None,
        attempt: int = 1,
    ) -> QueueItem:
        record = await self._fetchrow(
            """
            INSERT INTO webhook_queue (subscription_id, event, payload, status, attempt, scheduled_for)
            VALUES ($1, $2, $3::jsonb, 'pending', $4, COALESCE($5, now()))
            RETURNING *
            """,
            subscription_id,
            event,
            json.dumps(payload),
            attempt,
            scheduled_for,
        )
        assert record is not None
        return self._to_model(record)

    async def get(self, item_id: UUID) -> QueueItem:
        record = await self._fetchrow("SELECT * FROM webhook_queue WHERE id = $1", item_id)
        if record is None:
            raise NotFoundError("Queue item not found")
        return self._to_model(record)

    async def list_by_subscription(
        self,
        subscription_id: UUID,
        *,
        status: QueueStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[QueueItem], int]:
        status_value = status.value if status is not None else None
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_queue
            WHERE subscription_id = $1
              AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at DESC
            LIMIT $3 OFFSET $4
            """,
            subscription_id,
            status_value,
            limit,
            offset,
        )
        rows, total = self._split_total(records)
        if total is None:
            record = await self._fetchrow(
                """
                SELECT COUNT(*) AS total FROM webhook_queue
                WHERE subscription_id = $1 AND ($2::text IS NULL OR status = $2)
                """,
                subscription_id,
                status_value,
            )
            total = int(record["total"]) if record else 0
        return [self._to_model(row) for row in rows], total

    async def claim_due(self, *, limit: int = 10) -> List[QueueItem]:
        """
        Atomically claim due pending items for delivery.

        Uses row-level locking (FOR UPDATE SKIP LOCKED) so concurrent
        pollers never claim the same item.

        Side-effects:
          - status -> processing
          - processing_started_at -> now()
        """
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                records = await conn.fetch(
                    """
                    WITH cte AS (
                        SELECT id
                        FROM webhook_queue
                        WHERE status = 'pending'
                          AND scheduled_for <= now()
                        ORDER BY created_at ASC
                        FOR UPDATE SKIP LOCKED
                        LIMIT $1
                    )
                    UPDATE webhook_queue q
                    SET status = 'processing',
                        processing_started_at = now()
                    FROM cte
                    WHERE q.id = cte.id
                      AND q.status = 'pending'
                    RETURNING q.*
                    """,
                    limit,
                )
        items = [self._to_model(r) for r in records]
        # RETURNING order is unspecified
        items.sort(key=lambda item: item.created_at)
        return items

    async def mark_cancelled(self, item_id: UUID, error_message: str) -> bool:
        result = await self._execute(
            """
            UPDATE webhook_queue
            SET status = 'cancelled',
                error_message = $2,
                completed_at = now()
            WHERE id = $1 AND status = 'processing'
            """,
            item_id,
            error_message,
        )
        return self._affected(result) == 1

    async def finalize_attempt(
        self,
        item: QueueItem,
        subscription: WebhookSubscription,
        result: DeliveryResult,
        *,
        retry_at: datetime | None = None,
    ) -> bool:
        """Record a delivery attempt as one unit of work.

        Sets the item's terminal state, appends the delivery log entry,
        bumps the subscription counters and, when ``retry_at`` is given,
        enqueues the follow-up attempt. Nothing is written if the item is
        no longer ``processing``.
        """
        status = QueueStatus.COMPLETED if result.success else QueueStatus.FAILED
        payload_json = json.dumps(item.payload)
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                updated = await conn.fetchrow(
                    """
                    UPDATE webhook_queue
                    SET status = $2,
                        status_code = $3,
                        error_message = $4,
                        completed_at = now()
                    WHERE id = $1 AND status = 'processing'
                    RETURNING id
                    """,
                    item.id,
                    status.value,
                    result.status_code,
                    result.error,
                )
                if updated is None:
                    return False
                await conn.execute(
                    """
                    INSERT INTO webhook_logs (
                        subscription_id,
                        queue_item_id,
                        event,
                        url,
                        payload,
                        status_code,
                        success,
                        error_message,
                        duration_ms
                    )
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9)
                    """,
                    subscription.id,
                    item.id,
                    item.event,
                    subscription.url,
                    payload_json,
                    result.status_code,
                    result.success,
                    result.error,
                    result.duration_ms,
                )
                await conn.execute(
                    """
                    UPDATE webhook_subscriptions
                    SET total_calls = total_calls + 1,
                        successful_calls = successful_calls + $2,
                        failed_calls = failed_calls + $3,
                        last_triggered_at = now()
                    WHERE id = $1
                    """,
                    subscription.id,
                    1 if result.success else 0,
                    0 if result.success else 1,
                )
                if retry_at is not None:
                    await conn.execute(
                        """
                        INSERT INTO webhook_queue (subscription_id, event, payload, status, attempt, scheduled_for)
                        VALUES ($1, $2, $3::jsonb, 'pending', $4, $5)
                        """,
                        item.subscription_id,
                        item.event,
                        payload_json,
                        item.attempt + 1,
                        retry_at,
                    )
        return True

    async def reclaim_stuck(self, started_before: datetime) -> int:
        """Release items stuck in ``processing`` (e.g. after a crash).

        Resets them to ``pending`` so the poller claims them again.
        Returns the number of reclaimed rows.
        """
        result = await self._execute(
            """
            UPDATE webhook_queue
            SET status = 'pending',
                processing_started_at = NULL
            WHERE status = 'processing'
              AND processing_started_at < $1
            """,
            started_before,
        )
        return self._affected(result)

    async def count_stuck_processing(self, started_before: datetime) -> int:
        record = await self._fetchrow(
            """
            SELECT COUNT(*) AS total FROM webhook_queue
            WHERE status = 'processing' AND processing_started_at < $1
            """,
            started_before,
        )
        return int(record["total"]) if record else 0

    async def delete_terminal_before(self, created_before: datetime) -> int:
        """Purge completed/failed/cancelled items older than *created_before*. Returns count."""
        result = await self._execute(
            """
            DELETE FROM webhook_queue
            WHERE status IN ('completed', 'failed', 'cancelled')
              AND created_at < $1
            """,
            created_before,
        )
        return self._affected(result)
