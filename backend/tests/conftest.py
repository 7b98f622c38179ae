"""
Pytest configuration and fixtures.

Unit tests run against in-memory fakes (store, usage tracker, session
factory) and mocked providers. Tests marked ``integration`` need a
PostgreSQL database with the pgvector extension available and only run with
``--run-integration``.

References:
-----------
- Pytest Fixtures: https://docs.pytest.org/en/stable/fixture.html
- FastAPI Testing: https://fastapi.tiangolo.com/advanced/async-tests/
"""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, List, Optional, Set
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.api.deps import get_pipeline
from app.core.config import settings
from app.db.base import Base
from app.db.deps import get_db
from app.main import app
from app.schemas.arena import ArenaBlock, ArenaChannel
from app.schemas.usage import Identity, UsageCheck
from app.services.extraction.router import ProcessedBlock


# ================================
# Pytest Configuration
# ================================

def pytest_addoption(parser):
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="run tests that need PostgreSQL + pgvector",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: needs a live PostgreSQL database")


def pytest_collection_modifyitems(config, items):
    if config.getoption("--run-integration"):
        return
    skip = pytest.mark.skip(reason="needs --run-integration")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


# ================================
# Database Fixtures (integration)
# ================================

@pytest_asyncio.fixture
async def test_engine():
    """
    Engine on settings.DATABASE_URL with all tables created.

    NullPool disables connection pooling for tests.
    """
    import app.models  # noqa: F401

    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Session inside an outer transaction that is rolled back after the test.

    Commits inside the code under test only release a SAVEPOINT.
    """
    connection = await test_engine.connect()
    transaction = await connection.begin()

    session_factory = async_sessionmaker(
        bind=connection,
        class_=AsyncSession,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )

    async with session_factory() as session:
        yield session

    await transaction.rollback()
    await connection.close()


# ================================
# Domain Builders
# ================================

@pytest.fixture
def make_block():
    """
    Build an ArenaBlock from Are.na-shaped keyword arguments.

    Usage:
        block = make_block(1, "Link", source_url="https://example.com/a")
    """
    def _make(block_id: int, block_class: str = "Link", **fields) -> ArenaBlock:
        payload = {"id": block_id, "class": block_class, "title": f"Block {block_id}"}
        payload.update(fields)
        return ArenaBlock.model_validate(payload)

    return _make


@pytest.fixture
def arena_channel() -> ArenaChannel:
    return ArenaChannel(
        id=4242,
        title="Arena Influences",
        slug="arena-influences",
        length=3,
        user={"id": 1, "username": "someone"},
    )


@pytest.fixture
def anon_identity() -> Identity:
    return Identity(session_id="anon_1718035200123_k3j9x0q2m", ip_address="203.0.113.9")


@pytest.fixture
def user_identity() -> Identity:
    return Identity(user_id="user_2abc")


# ================================
# In-memory Fakes
# ================================

class FakeStore:
    """BlockStore stand-in; shared across sessions like a real database."""

    def __init__(self):
        self.channels: Dict[int, SimpleNamespace] = {}
        self.blocks: Dict[int, Dict] = {}
        self.touched: List[int] = []
        self.fail_arena_ids: Set[int] = set()

    def __call__(self, session):
        return self

    async def upsert_channel(self, arena_channel, user_id=None):
        channel = self.channels.get(arena_channel.id)
        if channel is None:
            channel = SimpleNamespace(id=len(self.channels) + 1, arena_id=arena_channel.id)
            self.channels[arena_channel.id] = channel
        channel.slug = arena_channel.slug
        channel.title = arena_channel.title
        return channel

    async def get_existing_arena_ids(self, channel_id: int) -> Set[int]:
        return {
            arena_id for arena_id, row in self.blocks.items() if row["channel_id"] == channel_id
        }

    async def upsert_block(self, channel_id: int, processed: ProcessedBlock, embedding):
        if processed.arena_id in self.fail_arena_ids:
            raise RuntimeError("constraint violation")
        self.blocks[processed.arena_id] = {
            "channel_id": channel_id,
            "processed": processed,
            "embedding": embedding,
        }
        return processed.arena_id

    async def touch_channel(self, channel_id: int) -> None:
        self.touched.append(channel_id)


class FakeUsageTracker:
    """UsageTracker stand-in with a configurable budget."""

    def __init__(self, remaining: Optional[int] = None, message: Optional[str] = None):
        self.remaining = remaining
        self.message = message
        self.recorded: List[tuple] = []
        self.reserved: List[int] = []
        self.released: List[int] = []

    def __call__(self, session, redis=None):
        return self

    async def check_usage_limit(self, arena_channel_id, identity, requested):
        if self.remaining is None or requested <= self.remaining:
            return UsageCheck(can_process=True, processed_so_far=0, remaining=requested, limit=-1)
        if self.remaining == 0:
            return UsageCheck(
                can_process=False,
                processed_so_far=50,
                remaining=0,
                limit=50,
                message=self.message or "Free tier limit reached (50/50 blocks processed). Upgrade to process more content.",
            )
        return UsageCheck(
            can_process=True,
            processed_so_far=50 - self.remaining,
            remaining=self.remaining,
            limit=50,
            capped_count=self.remaining,
            message=self.message or f"Processing limited to {self.remaining} blocks",
        )

    async def reserve(self, identity, count):
        self.reserved.append(count)
        return True

    async def release(self, identity, count):
        self.released.append(count)

    async def record_usage(self, arena_channel_id, identity, processed_count):
        self.recorded.append((arena_channel_id, identity.key, processed_count))


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def fake_usage() -> FakeUsageTracker:
    return FakeUsageTracker()


@pytest.fixture
def fake_session() -> MagicMock:
    session = MagicMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def session_factory(fake_session):
    """Callable with the async_sessionmaker shape, always yielding fake_session."""
    @asynccontextmanager
    async def _factory():
        yield fake_session

    return _factory


@pytest.fixture
def make_usage():
    """FakeUsageTracker class, for tests that need a specific budget."""
    return FakeUsageTracker


# ================================
# FastAPI Client Fixtures
# ================================

@pytest.fixture
def fake_pipeline(arena_channel) -> SimpleNamespace:
    """Pipeline stand-in; tests replace sync.sync_channel and embedder as needed."""
    arena = MagicMock()
    arena.fetch_collection = AsyncMock(return_value=arena_channel)
    return SimpleNamespace(arena=arena, sync=MagicMock(), embedder=MagicMock(), redis=None)


@pytest_asyncio.fixture
async def client(fake_session, fake_pipeline) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for the FastAPI app.

    Overrides get_db with fake_session and get_pipeline with fake_pipeline.
    The lifespan does not run.

    Usage:
        async def test_something(client: AsyncClient):
            response = await client.get("/api/v1/usage/tiers")
            assert response.status_code == 200
    """
    async def override_get_db():
        yield fake_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipeline] = lambda: fake_pipeline

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
