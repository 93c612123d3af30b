"""Minimal SQL migration runner (CLI + aiohttp startup hook)."""
# pyright: reportMissingImports=false
from __future__ import annotations

import argparse
import asyncio
import hashlib
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict

import asyncpg  # type: ignore[import-untyped]
import structlog

from webhook_service.logging_config import configure_logging
from webhook_service.settings import settings

logger = structlog.get_logger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parents[3] / "migrations"


async def ensure_schema_table(conn: asyncpg.Connection) -> None:
    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version text PRIMARY KEY,
            checksum text NOT NULL,
            applied_at timestamptz NOT NULL DEFAULT now()
        );
        """
    )


def load_migrations(directory: Path) -> Dict[str, Path]:
    if not directory.exists():
        raise FileNotFoundError(f"Migrations directory does not exist: {directory}")
    migrations: Dict[str, Path] = {}
    for path in sorted(directory.glob("*.sql")):
        version = path.stem
        if version in migrations:
            raise ValueError(f"Duplicate migration version detected: {version}")
        migrations[version] = path
    if not migrations:
        raise ValueError(f"No *.sql files found in {directory}")
    return migrations


async def apply_migrations(database_url: str, migrations_dir: Path, *, dry_run: bool = False) -> int:
    """Apply pending migrations in lexicographic order. Returns the pending count."""
    migrations = load_migrations(migrations_dir)
    conn = await asyncpg.connect(database_url)
    try:
        await ensure_schema_table(conn)
        rows = await conn.fetch("SELECT version, checksum FROM schema_migrations")
        applied = {row["version"]: row["checksum"] for row in rows}
        pending = []
        for version, path in migrations.items():
            sql = path.read_text(encoding="utf-8")
            checksum = hashlib.sha256(sql.encode("utf-8")).hexdigest()
            if version in applied:
                if applied[version] != checksum:
                    raise RuntimeError(
                        f"Checksum mismatch for {version}: "
                        f"{applied[version]} (db) != {checksum} (file)"
                    )
                continue
            pending.append((version, path, sql, checksum))

        for version, path, sql, checksum in pending:
            if dry_run:
                logger.info("migration pending", migration=path.name)
                continue
            logger.info("applying migration", migration=path.name)
            async with conn.transaction():
                await conn.execute(sql)
                await conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES ($1, $2)",
                    version,
                    checksum,
                )
        return len(pending)
    finally:
        await conn.close()


def create_migration_runner(
    migrations_dir: Path = DEFAULT_MIGRATIONS_DIR,
    *,
    max_retries: int = 5,
    retry_delay: float = 2.0,
) -> Callable[[Any], Awaitable[None]]:
    """Create an aiohttp startup hook that applies pending migrations."""

    async def apply_migrations_on_startup(_app: Any) -> None:
        if not migrations_dir.exists():
            logger.warning("migrations directory not found, skipping", path=str(migrations_dir))
            return
        for attempt in range(1, max_retries + 1):
            try:
                count = await apply_migrations(str(settings.database_url), migrations_dir)
            except (OSError, asyncpg.exceptions.CannotConnectNowError) as exc:
                logger.warning(
                    "database connection error",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(exc),
                )
                if attempt == max_retries:
                    raise
                await asyncio.sleep(retry_delay)
                continue
            logger.info("migrations applied", count=count)
            return

    return apply_migrations_on_startup


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Apply SQL migrations sequentially.")
    parser.add_argument(
        "--database-url",
        "-d",
        default=str(settings.database_url),
        help="PostgreSQL connection string. Defaults to DATABASE_URL setting.",
    )
    parser.add_argument(
        "--migrations-dir",
        "-m",
        type=Path,
        default=DEFAULT_MIGRATIONS_DIR,
        help="Directory with *.sql migrations (sorted lexicographically).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only list pending migrations without applying.",
    )
    return parser.parse_args()


def main() -> None:
    configure_logging(settings.log_level, component="migrate", service=settings.app_name)
    args = parse_args()
    count = asyncio.run(apply_migrations(args.database_url, args.migrations_dir, dry_run=args.dry_run))
    logger.info("migrations finished", pending=count, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
