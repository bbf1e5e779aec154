"""Shared pytest fixtures for store, cache, allocator and service tests."""

import datetime
import logging
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlink.allocator import InMemoryIdAllocator
from shortlink.cache import CacheAside, CacheKeySchema, InMemoryCacheAdapter
from shortlink.codec import ShortCodeCodec
from shortlink.config import Settings
from shortlink.database import close_db, create_engine, create_session_factory, init_db
from shortlink.dependencies import ShortenerContext
from shortlink.enums import AllocatorBackend, CacheBackend
from shortlink.store import ShortURLStore
from shortlink.url_service import URLShorteningService

FIXED_NOW = datetime.datetime(2025, 1, 1, 12, 0, 0, tzinfo=datetime.UTC)
TEST_SALT = "s"
TEST_MIN_LENGTH = 5


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime.datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += datetime.timedelta(**kwargs)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shortlink.db'}",
        HASHIDS_SALT=TEST_SALT,
        HASHIDS_MIN_LENGTH=TEST_MIN_LENGTH,
        CACHE_BACKEND=CacheBackend.MEMORY,
        ALLOCATOR_BACKEND=AllocatorBackend.MEMORY,
        CACHE_KEY_PREFIX="test",
        LOG_LEVEL="DEBUG",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture(scope="function")
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session: AsyncSession) -> ShortURLStore:
    return ShortURLStore(db_session)


@pytest.fixture
def cache_adapter() -> InMemoryCacheAdapter:
    return InMemoryCacheAdapter(clock=lambda: 0.0)


@pytest.fixture
def cache(cache_adapter: InMemoryCacheAdapter) -> CacheAside:
    return CacheAside(cache_adapter)


@pytest.fixture
def allocator() -> InMemoryIdAllocator:
    return InMemoryIdAllocator()


@pytest.fixture
def codec() -> ShortCodeCodec:
    return ShortCodeCodec(TEST_SALT, TEST_MIN_LENGTH)


@pytest.fixture
def context(store, cache, allocator, codec, clock, settings) -> ShortenerContext:
    return ShortenerContext(
        store=store,
        cache=cache,
        keys=CacheKeySchema(settings.CACHE_KEY_PREFIX),
        allocator=allocator,
        codec=codec,
        clock=clock,
        settings=settings,
        logger=logging.getLogger("shortlink.test"),
    )


@pytest.fixture
def service(context: ShortenerContext) -> URLShorteningService:
    return URLShorteningService.from_context(context)
