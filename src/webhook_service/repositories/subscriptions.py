"""Webhook subscription registry."""
from __future__ import annotations

import json
from typing import Any, List, Tuple
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]
from asyncpg import Pool, Record  # type: ignore[import-untyped]

from webhook_service.core.exceptions import ConflictError, NotFoundError
from webhook_service.domain.webhooks import WebhookSubscription
from webhook_service.repositories.base import BaseRepository

# Columns an administrative update may touch; counters belong to the dispatcher.
_UPDATABLE_COLUMNS = ("name", "url", "secret", "headers", "event_types", "is_active")


class WebhookSubscriptionRepository(BaseRepository):
    def __init__(self, pool: Pool):
        super().__init__(pool)

    @classmethod
    def _to_model(cls, record: Record | dict[str, Any]) -> WebhookSubscription:
        return WebhookSubscription.model_validate(cls._decode_json(dict(record), "headers"))

    async def create(
        self,
        *,
        name: str,
        url: str,
        event_types: list[str],
        secret: str | None,
        headers: dict[str, str],
        is_active: bool = True,
    ) -> WebhookSubscription:
        try:
            record = await self._fetchrow(
                """
                INSERT INTO webhook_subscriptions (name, url, event_types, secret, headers, is_active)
                VALUES ($1, $2, $3::text[], $4, $5::jsonb, $6)
                RETURNING *
                """,
                name,
                url,
                event_types,
                secret,
                json.dumps(headers),
                is_active,
            )
        except asyncpg.exceptions.UniqueViolationError as exc:
            raise ConflictError(f"Webhook with url {url} already exists") from exc
        assert record is not None
        return self._to_model(record)

    async def find(self, subscription_id: UUID) -> WebhookSubscription | None:
        record = await self._fetchrow(
            "SELECT * FROM webhook_subscriptions WHERE id = $1",
            subscription_id,
        )
        return self._to_model(record) if record is not None else None

    async def get(self, subscription_id: UUID) -> WebhookSubscription:
        subscription = await self.find(subscription_id)
        if subscription is None:
            raise NotFoundError("Webhook subscription not found")
        return subscription

    async def list_all(
        self,
        *,
        is_active: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[WebhookSubscription], int]:
        records = await self._fetch(
            """
            SELECT *,
                   COUNT(*) OVER() AS total_count
            FROM webhook_subscriptions
            WHERE ($1::boolean IS NULL OR is_active = $1)
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            is_active,
            limit,
            offset,
        )
        rows, total = self._split_total(records)
        if total is None:
            record = await self._fetchrow(
                """
                SELECT COUNT(*) AS total FROM webhook_subscriptions
                WHERE ($1::boolean IS NULL OR is_active = $1)
                """,
                is_active,
            )
            total = int(record["total"]) if record else 0
        return [self._to_model(row) for row in rows], total

    async def update(self, subscription_id: UUID, changes: dict[str, Any]) -> WebhookSubscription:
        assignments: list[str] = []
        values: list[Any] = [subscription_id]
        for column in _UPDATABLE_COLUMNS:
            if column not in changes:
                continue
            value = changes[column]
            cast = ""
            if column == "headers":
                value = json.dumps(value or {})
                cast = "::jsonb"
            elif column == "event_types":
                cast = "::text[]"
            values.append(value)
            assignments.append(f"{column} = ${len(values)}{cast}")
        if not assignments:
            return await self.get(subscription_id)
        assignments.append("updated_at = now()")
        query = f"""
            UPDATE webhook_subscriptions
            SET {", ".join(assignments)}
            WHERE id = $1
            RETURNING *
        """
        try:
            record = await self._fetchrow(query, *values)
        except asyncpg.exceptions.UniqueViolationError as exc:
            raise ConflictError("Another webhook already uses this url") from exc
        if record is None:
            raise NotFoundError("Webhook subscription not found")
        return self._to_model(record)

    async def delete(self, subscription_id: UUID) -> None:
        try:
            record = await self._fetchrow(
                "DELETE FROM webhook_subscriptions WHERE id = $1 RETURNING id",
                subscription_id,
            )
        except asyncpg.exceptions.ForeignKeyViolationError as exc:
            raise ConflictError("Webhook still has queued deliveries") from exc
        if record is None:
            raise NotFoundError("Webhook subscription not found")

    async def list_active_matching(self, event: str) -> List[WebhookSubscription]:
        records = await self._fetch(
            """
            SELECT *
            FROM webhook_subscriptions
            WHERE is_active = true
              AND $1 = ANY(event_types)
            ORDER BY created_at ASC
            """,
            event,
        )
        return [self._to_model(r) for r in records]
