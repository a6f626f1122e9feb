"""Pytest fixtures for inventory mirror backend tests."""

import asyncio
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from inventory_mirror.config import Settings
from inventory_mirror.database import Base, get_db
from inventory_mirror.main import app
from inventory_mirror.models import InventoryRecord
from inventory_mirror.rate_limit import limiter
from inventory_mirror.services.checkpoint_store import CheckpointStore
from inventory_mirror.services.completion_oracle import CompletionOracle
from inventory_mirror.services.error_classifier import ErrorClassifier
from inventory_mirror.services.ingestion import IngestionPipeline, InventoryWriter
from inventory_mirror.services.sync_orchestrator import SyncOrchestrator, get_orchestrator
from inventory_mirror.services.sync_status import SyncStatusRepository
from inventory_mirror.services.upstream_client import UpstreamClient

UPSTREAM_BASE_URL = "http://upstream.test/api"


def make_item(index: int, **overrides: Any) -> dict[str, Any]:
    """Flat upstream item with column-named keys."""
    item = {
        "id": f"car-{index:05d}",
        "make": "Toyota",
        "model": "Corolla",
        "year": 2015 + index % 8,
        "price_cents": 1_000_000 + index * 10_000,
        "mileage": 50_000 + index * 1_000,
    }
    item.update(overrides)
    return item


def make_pages(page_count: int, page_size: int) -> dict[int, list[dict[str, Any]]]:
    """Consecutive upstream pages of distinct items."""
    return {
        page: [make_item((page - 1) * page_size + i) for i in range(page_size)]
        for page in range(1, page_count + 1)
    }


class FakeUpstream:
    """
    In-memory upstream items API served through httpx.MockTransport.

    `failures` maps a page to status codes returned (in order) before the
    page succeeds. `gate` holds page 1 until set, `entered` is set once a
    request for page 1 arrives.
    """

    def __init__(
        self,
        pages: dict[int, list[dict[str, Any]]],
        total: int | None = None,
        last_page: int | None = None,
        failures: dict[int, list[int]] | None = None,
        envelope: bool = True,
    ):
        self.pages = pages
        self.total = total
        self.last_page = last_page
        self.failures = failures or {}
        self.envelope = envelope
        self.requests: list[int] = []
        self.probes = 0
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def handler(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        limit = int(request.url.params["limit"])
        if limit == 1:
            self.probes += 1
            return httpx.Response(200, json={"data": self.pages.get(1, [])[:1]})

        self.requests.append(page)
        if page == 1:
            self.entered.set()
            if self.gate is not None:
                await self.gate.wait()

        pending = self.failures.get(page)
        if pending:
            return httpx.Response(pending.pop(0), json={"error": "upstream failure"})

        items = self.pages.get(page, [])
        if not self.envelope:
            return httpx.Response(200, json=items)
        meta = {}
        if self.total is not None:
            meta["total"] = self.total
        if self.last_page is not None:
            meta["last_page"] = self.last_page
        return httpx.Response(200, json={"data": items, "meta": meta})


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Test settings with safe defaults."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        upstream_base_url=UPSTREAM_BASE_URL,
        upstream_page_size=5,
        upstream_requests_per_second=0,
        checkpoint_path=str(tmp_path / "checkpoint.json"),
        completion_page_buffer=1,
        upsert_chunk_size=2,
        upsert_concurrency=1,
        scheduler_enabled=False,
        debug=True,
    )


@pytest_asyncio.fixture
async def async_engine(tmp_path):
    """Create a file-backed SQLite engine shared by all sessions of a test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seed_inventory(session_factory):
    """Insert InventoryRecord rows built from keyword dicts."""

    async def _seed(rows: list[dict[str, Any]]) -> None:
        async with session_factory() as session:
            session.add_all(InventoryRecord(**row) for row in rows)
            await session.commit()

    return _seed


@pytest.fixture
def checkpoint_store(test_settings) -> CheckpointStore:
    return CheckpointStore(test_settings.checkpoint_path)


@pytest.fixture
def status_repo(session_factory) -> SyncStatusRepository:
    return SyncStatusRepository(session_factory, "test-sync")


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    """Three pages of five items with full pagination metadata."""
    return FakeUpstream(make_pages(3, 5), total=15, last_page=3)


@pytest.fixture
def upstream_client(fake_upstream) -> UpstreamClient:
    return UpstreamClient(
        base_url=UPSTREAM_BASE_URL,
        requests_per_second=0,
        transport=httpx.MockTransport(fake_upstream.handler),
    )


@pytest.fixture
def fake_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def pipeline_factory(
    session_factory, upstream_client, checkpoint_store, status_repo, test_settings, fake_sleep
):
    """Build an IngestionPipeline wired to the fake upstream."""

    def _build(client: UpstreamClient | None = None, **oracle_overrides: Any) -> IngestionPipeline:
        return IngestionPipeline(
            session_factory,
            client=client or upstream_client,
            classifier=ErrorClassifier(test_settings),
            oracle=CompletionOracle(settings=test_settings, **oracle_overrides),
            checkpoints=checkpoint_store,
            status=status_repo,
            writer=InventoryWriter(session_factory, chunk_size=2, concurrency=1),
            sleep=fake_sleep,
        )

    return _build


@pytest.fixture
def orchestrator(
    session_factory, upstream_client, checkpoint_store, status_repo, test_settings, fake_sleep
) -> SyncOrchestrator:
    return SyncOrchestrator(
        session_factory,
        client=upstream_client,
        checkpoints=checkpoint_store,
        status=status_repo,
        settings=test_settings,
        probe=False,
        sleep=fake_sleep,
    )


@pytest_asyncio.fixture
async def client(db_session, orchestrator) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database and orchestrator overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
    limiter.enabled = True
    await orchestrator.shutdown()


@pytest.fixture
def sample_datetime() -> datetime:
    """Sample datetime for testing."""
    return datetime(2026, 1, 18, 10, 0, 0, tzinfo=UTC)
