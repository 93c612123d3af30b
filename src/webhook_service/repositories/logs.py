"""Delivery log (append-only audit trail, read side)."""
from __future__ import annotations

from typing import Any, List, Tuple
from uuid import UUID

from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.domain.webhooks import DeliveryLogEntry
from webhook_service.repositories.base import BaseRepository


class WebhookLogRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @classmethod
    def _to_model(cls, record: Record | dict[str, Any]) -> DeliveryLogEntry:
        return DeliveryLogEntry.model_validate(cls._decode_json(dict(record), "payload"))

    async def list_by_subscription(
        self,
        subscription_id: UUID,
        *,
        success: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[DeliveryLogEntry], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_logs
            WHERE subscription_id = $1
              AND ($2::boolean IS NULL OR success = $2)
            ORDER BY triggered_at DESC
            LIMIT $3 OFFSET $4
            """,
            subscription_id,
            success,
            limit,
            offset,
        )
        rows, total = self._split_total(records)
        if total is None:
            record = await self._fetchrow(
                """
                SELECT COUNT(*) AS total FROM webhook_logs
                WHERE subscription_id = $1 AND ($2::boolean IS NULL OR success = $2)
                """,
                subscription_id,
                success,
            )
            total = int(record["total"]) if record else 0
        return [self._to_model(row) for row in rows], total
