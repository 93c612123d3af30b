"""Process-wide asyncpg pool, shared by the API handlers and the worker loops."""
from __future__ import annotations

from typing import Any

import asyncpg  # type: ignore[import-untyped]

from webhook_service.settings import settings

pool: asyncpg.Pool | None = None


async def init_pool(_app: Any = None) -> None:
    """Create the pool once. Usable directly as an ``app.on_startup`` hook."""
    global pool
    if pool is not None:
        return
    pool = await asyncpg.create_pool(
        dsn=str(settings.database_url),
        min_size=1,
        max_size=settings.db_pool_size,
        command_timeout=settings.db_command_timeout_seconds,
        # shows up in pg_stat_activity next to the claim queries
        server_settings={"application_name": settings.app_name},
    )


async def close_pool(_app: Any = None) -> None:
    global pool
    if pool is not None:
        await pool.close()
        pool = None


async def get_pool() -> asyncpg.Pool:
    if pool is None:
        raise RuntimeError("Database pool not initialized. Call init_pool() first.")
    return pool
