"""Shared asyncpg helpers for repositories."""
from __future__ import annotations

import json
from typing import Any, Iterable

import asyncpg  # type: ignore[import-untyped]


class BaseRepository:
    """Thin wrapper over asyncpg pool operations."""

    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def _fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self._pool.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def _fetch(self, query: str, *args: Any) -> Iterable[asyncpg.Record]:
        async with self._pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def _execute(self, query: str, *args: Any) -> str:
        async with self._pool.acquire() as conn:
            return await conn.execute(query, *args)

    @staticmethod
    def _affected(status: str) -> int:
        """Row count from an asyncpg command tag such as ``UPDATE 3``."""
        return int(status.split()[-1])

    @staticmethod
    def _decode_json(payload: dict[str, Any], *keys: str) -> dict[str, Any]:
        # asyncpg returns jsonb columns as text unless a codec is registered
        for key in keys:
            value = payload.get(key)
            if isinstance(value, str):
                payload[key] = json.loads(value)
        return payload

    @staticmethod
    def _split_total(records: Iterable[asyncpg.Record]) -> tuple[list[dict[str, Any]], int | None]:
        rows: list[dict[str, Any]] = []
        total: int | None = None
        for rec in records:
            row = dict(rec)
            total_value = row.pop("total_count", None)
            if total_value is not None:
                total = int(total_value)
            rows.append(row)
        return rows, total
