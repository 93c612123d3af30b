from __future__ import annotations

import asyncio
import glob
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

import asyncpg  # type: ignore[import-untyped]
import pytest
from aiohttp import ClientSession, web
from testsuite.databases.pgsql import discover

from tests.fakes import (
    FakeLogRepository,
    FakeQueueRepository,
    FakeSubscriptionRepository,
    InMemoryStore,
)
from webhook_service.main import create_app
from webhook_service.services import WebhookService

pytest_plugins = (
    "testsuite.pytest_plugin",
    "testsuite.databases.pgsql.pytest_plugin",
)

PG_SCHEMAS_PATH = Path(__file__).parent / "schemas" / "postgresql"


@dataclass
class ReceivedRequest:
    path: str
    headers: dict[str, str]
    body: bytes


@dataclass
class Receiver:
    """Local HTTP endpoint standing in for a subscriber."""

    base_url: str = ""
    status: int = 200
    delay: float = 0.0
    requests: list[ReceivedRequest] = field(default_factory=list)
    on_request: Callable[[ReceivedRequest], None] | None = None

    def url(self, path: str = "/hook") -> str:
        return f"{self.base_url}{path}"

    async def handle(self, request: web.Request) -> web.Response:
        received = ReceivedRequest(
            path=request.path,
            headers={k: v for k, v in request.headers.items()},
            body=await request.read(),
        )
        self.requests.append(received)
        if self.on_request is not None:
            self.on_request(received)
        if self.delay:
            await asyncio.sleep(self.delay)
        return web.Response(status=self.status)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def subscriptions(store) -> FakeSubscriptionRepository:
    return FakeSubscriptionRepository(store)


@pytest.fixture
def queue(store) -> FakeQueueRepository:
    return FakeQueueRepository(store)


@pytest.fixture
def logs(store) -> FakeLogRepository:
    return FakeLogRepository(store)


@pytest.fixture
def webhook_service(subscriptions, queue, logs) -> WebhookService:
    return WebhookService(subscriptions, queue, logs)


@pytest.fixture
async def service_client(aiohttp_client, webhook_service):
    app = create_app(with_database=False, webhook_service=webhook_service)
    return await aiohttp_client(app)


@pytest.fixture
async def http_session():
    session = ClientSession()
    try:
        yield session
    finally:
        await session.close()


@pytest.fixture
async def receiver():
    hook = Receiver()
    app = web.Application()
    app.router.add_post("/{tail:.*}", hook.handle)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    hook.base_url = f"http://127.0.0.1:{port}"
    try:
        yield hook
    finally:
        await runner.cleanup()


def _postgresql_available(config: pytest.Config) -> bool:
    if config.getoption("--postgresql", default=None):
        return True
    if os.environ.get("TESTSUITE_PGSQL_BINDIR"):
        return True
    if shutil.which("pg_ctl"):
        return True
    return bool(glob.glob("/usr/lib/postgresql/*/bin/pg_ctl"))


@pytest.fixture(scope="session")
def pgsql_local(pgsql_local_create):
    databases = discover.find_schemas(
        service_name=None,
        schema_dirs=[PG_SCHEMAS_PATH],
    )
    return pgsql_local_create(list(databases.values()))


@pytest.fixture
def pgsql_uri(request) -> str:
    """Connection string of the testsuite-managed ``webhook_service`` database."""
    if not _postgresql_available(request.config):
        pytest.skip("PostgreSQL binaries not found")
    pgsql = request.getfixturevalue("pgsql")
    return pgsql["webhook_service"].conninfo.get_uri()


@pytest.fixture
async def pg_pool(pgsql_uri):
    pool = await asyncpg.create_pool(dsn=pgsql_uri, min_size=2, max_size=4)
    async with pool.acquire() as conn:
        await conn.execute("TRUNCATE webhook_logs, webhook_queue, webhook_subscriptions")
    try:
        yield pool
    finally:
        await pool.close()
