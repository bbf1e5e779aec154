"""Runtime wiring: long-lived resources and request-scoped service contexts.

``ServiceManager`` owns every long-lived connection (database engine, Redis
client, keygen HTTP client) and picks cache and allocator backends from
``Settings`` exactly once, at ``initialize()``. Request handlers never build
backends themselves; they open a session and get a ready service::

    manager = ServiceManager(get_settings())
    await manager.initialize()

    async with manager.session() as service:
        result = await service.create_short_url(payload.url)

    await manager.cleanup()

Backend Selection
=================
::
    CACHE_BACKEND       redis  -> RedisCacheAdapter(shared Redis client)
                        memory -> InMemoryCacheAdapter (this process only)
                        none   -> no cache (every lookup goes to the store)

    ALLOCATOR_BACKEND   redis  -> RedisIdAllocator(INCR ID_COUNTER_KEY)
                        keygen -> KeygenIdAllocator(httpx, KEYGEN_SERVICE_URL)
                        memory -> InMemoryIdAllocator (this process only)

Fire-and-forget side effects (click tracking after a redirect) go through
``spawn()``: the task runs detached from the caller, a reference is kept until
it finishes, and its failures are logged instead of raised.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlink.allocator import IdAllocator, InMemoryIdAllocator, KeygenIdAllocator, RedisIdAllocator
from shortlink.cache import CacheAdapter, CacheAside, CacheKeySchema, InMemoryCacheAdapter, RedisCacheAdapter
from shortlink.clock import Clock, utc_now
from shortlink.codec import ShortCodeCodec
from shortlink.config import Settings, get_settings
from shortlink.database import close_db, create_engine, create_session_factory, init_db
from shortlink.enums import AllocatorBackend, CacheBackend
from shortlink.store import ShortURLStore
from shortlink.url_service import URLShorteningService

__all__ = ["ServiceManager", "ShortenerContext"]


# ============================================================================
# REQUEST-SCOPED CAPABILITY SET
# ============================================================================


@dataclass
class ShortenerContext:
    """Everything one ``URLShorteningService`` needs, passed explicitly.

    Attributes:
        store: Store bound to the request's database session
        cache: Fail-open cache front (may wrap no adapter)
        keys: Cache key schema
        allocator: Shared ID allocator
        codec: Codec bound to the process salt
        clock: Returns the current UTC time
        settings: Process settings
        logger: Logger or adapter carrying request context
        request_id: Correlation ID for log lines
    """

    store: ShortURLStore
    cache: CacheAside
    keys: CacheKeySchema
    allocator: IdAllocator
    codec: ShortCodeCodec
    clock: Clock = utc_now
    settings: Settings = field(default_factory=get_settings)
    logger: logging.Logger | logging.LoggerAdapter = field(default_factory=lambda: logging.getLogger("shortlink"))
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owner of the process's long-lived resources.

    Construct one per process (or per test) and pass it to whatever needs
    it. Nothing here is module-level state.
    """

    def __init__(self, settings: Settings | None = None, clock: Clock = utc_now):
        self.settings = settings or get_settings()
        self.clock = clock
        self.logger: logging.Logger = logging.getLogger("shortlink")
        self.engine: AsyncEngine | None = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self.redis: redis.Redis | None = None
        self.http_client: httpx.AsyncClient | None = None
        self.cache_adapter: CacheAdapter | None = None
        self.allocator: IdAllocator | None = None
        self.codec: ShortCodeCodec | None = None
        self.cache_keys: CacheKeySchema | None = None
        self._background_tasks: set[asyncio.Task] = set()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create connections and select backends. Safe to call twice."""
        if self._initialized:
            return

        self.logger = self._setup_logger()
        self.codec = ShortCodeCodec(self.settings.HASHIDS_SALT, self.settings.HASHIDS_MIN_LENGTH)
        self.cache_keys = CacheKeySchema(self.settings.CACHE_KEY_PREFIX)

        self.engine = create_engine(self.settings)
        self.session_factory = create_session_factory(self.engine)
        await init_db(self.engine)

        if self._needs_redis():
            self.redis = self._setup_redis()
        self.cache_adapter = self._setup_cache_adapter()
        self.allocator = self._setup_allocator()

        self._initialized = True
        self.logger.info(
            f"Shortlink runtime ready (cache={self.settings.CACHE_BACKEND}, "
            f"allocator={self.settings.ALLOCATOR_BACKEND})"
        )

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    def _needs_redis(self) -> bool:
        return (
            self.settings.CACHE_BACKEND is CacheBackend.REDIS
            or self.settings.ALLOCATOR_BACKEND is AllocatorBackend.REDIS
        )

    def _setup_redis(self) -> redis.Redis:
        return redis.from_url(
            self.settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=self.settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )

    def _setup_cache_adapter(self) -> CacheAdapter | None:
        backend = self.settings.CACHE_BACKEND
        if backend is CacheBackend.REDIS:
            return RedisCacheAdapter(self.redis)
        if backend is CacheBackend.MEMORY:
            return InMemoryCacheAdapter()
        return None

    def _setup_allocator(self) -> IdAllocator:
        backend = self.settings.ALLOCATOR_BACKEND
        if backend is AllocatorBackend.REDIS:
            return RedisIdAllocator(self.redis, self.settings.ID_COUNTER_KEY)
        if backend is AllocatorBackend.KEYGEN:
            self.http_client = httpx.AsyncClient(
                base_url=self.settings.KEYGEN_SERVICE_URL,
                timeout=self.settings.KEYGEN_TIMEOUT_SECONDS,
            )
            return KeygenIdAllocator(self.http_client)
        self.logger.warning("Using in-memory ID allocator; IDs are not shared between processes")
        return InMemoryIdAllocator()

    # ========================================================================
    # REQUEST SCOPE
    # ========================================================================

    def context(self, db: AsyncSession, request_id: str | None = None) -> ShortenerContext:
        """Build the capability set for one request bound to ``db``."""
        if not self._initialized:
            raise RuntimeError("ServiceManager.initialize() must be awaited first")
        request_id = request_id or str(uuid.uuid4())
        logger = logging.LoggerAdapter(self.logger, {"request_id": request_id})
        return ShortenerContext(
            store=ShortURLStore(db),
            cache=CacheAside(self.cache_adapter, ttl=self.settings.CACHE_TTL_SECONDS, log=logger),
            keys=self.cache_keys,
            allocator=self.allocator,
            codec=self.codec,
            clock=self.clock,
            settings=self.settings,
            logger=logger,
            request_id=request_id,
        )

    @asynccontextmanager
    async def session(self, request_id: str | None = None) -> AsyncIterator[URLShorteningService]:
        """Yield a service bound to a fresh database session."""
        if not self._initialized:
            raise RuntimeError("ServiceManager.initialize() must be awaited first")
        async with self.session_factory() as db:
            yield URLShorteningService.from_context(self.context(db, request_id))

    # ========================================================================
    # BACKGROUND WORK AND ADMIN OPERATIONS
    # ========================================================================

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Run ``coro`` detached from the caller; failures are only logged."""
        task = asyncio.create_task(self._run_detached(coro, name or "background"), name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def _run_detached(self, coro: Coroutine[Any, Any, Any], name: str) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logger.warning(f"Background task {name} failed: {exc}")
            return None

    def track_click_in_background(self, short_code: str) -> asyncio.Task:
        return self.spawn(self._record_click(short_code), name=f"click:{short_code}")

    async def _record_click(self, short_code: str) -> bool:
        async with self.session() as service:
            return await service.record_click(short_code)

    async def purge_expired(self) -> int:
        async with self.session() as service:
            return await service.purge_expired()

    async def reset_counter(self, value: int | None = None) -> None:
        """Administrative reset: the next ID becomes ``value`` (default 1)."""
        if not self._initialized:
            raise RuntimeError("ServiceManager.initialize() must be awaited first")
        await self.allocator.reset(value)
        self.logger.warning(f"ID counter reset, next id will be {value or 1}")

    async def drain(self) -> None:
        """Wait for every spawned background task to finish."""
        if self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    async def cleanup(self) -> None:
        """Release every resource created by ``initialize()``."""
        await self.drain()
        if self.http_client is not None:
            await self.http_client.aclose()
            self.http_client = None
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
        if self.engine is not None:
            await close_db(self.engine)
            self.engine = None
        self.session_factory = None
        self._initialized = False
