"""Short URL orchestrator - core business logic.

Composes the normalizer, codec, allocator, cache-aside layer and durable
store into the two operations callers need: create (or reuse) a short code
for a URL, and resolve a short code back to its URL.

Architecture Overview
=====================
::
    ┌───────────────────────────────────────────────────────────────┐
    │                     URLShorteningService                       │
    │  ┌───────────────┐  ┌───────────────┐  ┌───────────────────┐  │
    │  │  Normalizer   │  │ Codec         │  │ CacheAside        │  │
    │  │ canonical URL │  │ id <-> code   │  │ fail-open lookups │  │
    │  └───────────────┘  └───────────────┘  └───────────────────┘  │
    └───────────────────────────────────────────────────────────────┘
                │                    │                    │
                ▼                    ▼                    ▼
    ┌─────────────────┐  ┌─────────────────┐  ┌─────────────────┐
    │  ShortURLStore  │  │   IdAllocator   │  │  CacheAdapter   │
    │ (record of truth)│  │ (total order)   │  │ (optional)      │
    └─────────────────┘  └─────────────────┘  └─────────────────┘

Every collaborator arrives through a ``ShortenerContext``; the service never
looks anything up from global state.

Request Flow Diagrams
=====================

Generated Code Flow
-------------------
::
    ┌──────────────┐
    │ normalize URL │──── InvalidUrl (nothing allocated)
    └──────┬───────┘
           ▼
    ┌──────────────┐  permanent only
    │ cache get     │──── HIT ──► return (is_existing=True)
    └──────┬───────┘
      MISS │ (or cache error)
           ▼
    ┌──────────────┐
    │ store lookup  │──── live match ──► read-repair cache (permanent)
    │ own, then anon│                     return (is_existing=True)
    └──────┬───────┘
      none │ (or only expired matches)
           ▼
    ┌──────────────┐
    │ allocate id   │──── AllocatorUnavailable
    │ encode code   │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ store insert  │──── StoreUnavailable / ShortCodeCollision
    └──────┬───────┘
           ▼
    ┌──────────────┐  permanent only, best effort
    │ cache set     │
    └──────┬───────┘
           ▼
    return (is_existing=False)

Custom Code Flow
----------------
::
    normalize ─► code taken? ─► yes: ShortCodeConflict (store untouched)
                             └► no:  insert ─► return (is_existing=False)

Custom codes skip deduplication and never touch the cache.

Resolution Flow
---------------
::
    code well-formed? ─► no: None
    store lookup     ─► no row: None
    expires_at <= now ─► ResolvedURL(expired=True)
    otherwise        ─► ResolvedURL(expired=False)

Key Behaviours
==============
- Permanent and expiring requests never deduplicate against each other.
- An expired record never blocks creation and is never resolved as live.
- The store insert is the last fallible step before a successful return; the
  cache write that follows can fail without affecting the result.
- Two concurrent first requests for one URL may both create records. That is
  accepted; the uniqueness guarantee is on ``short_code`` only.

Usage Example
=============
```python
async with manager.session() as service:
    result = await service.create_short_url("https://Example.com/docs/")
    resolved = await service.get_original_url(result.short_code)
    if resolved and not resolved.expired:
        manager.track_click_in_background(result.short_code)
```
"""

import datetime
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from prometheus_client import Counter, Histogram

from shortlink.enums import CacheStatus, RequestStatus
from shortlink.exceptions import InvalidUrl, ShortCodeCollision, ShortCodeConflict
from shortlink.models import ShortURL, as_utc
from shortlink.normalizer import normalize_url
from shortlink.schemas import ResolvedURL, ShortenRequest, ShortenResult, check_custom_code

if TYPE_CHECKING:
    from shortlink.dependencies import ShortenerContext

__all__ = ["PerformanceMetrics", "URLShorteningService"]


# ============================================================================
# PROMETHEUS METRICS
# ============================================================================

URL_CREATION_REQUESTS_TOTAL = Counter(
    "shortlink_creation_requests_total",
    "Total short URL creation requests",
    ["status"],
)
URL_RESOLUTION_REQUESTS_TOTAL = Counter(
    "shortlink_resolution_requests_total",
    "Total short code resolution requests",
    ["status"],
)
DEDUP_LOOKUPS_TOTAL = Counter(
    "shortlink_dedup_cache_lookups_total",
    "Deduplication cache lookups for permanent requests",
    ["cache_hit"],
)
IDS_ALLOCATED_TOTAL = Counter(
    "shortlink_ids_allocated_total",
    "Total IDs taken from the allocator",
)
EXPIRED_RECORDS_PURGED_TOTAL = Counter(
    "shortlink_expired_records_purged_total",
    "Total expired records deleted by the sweep",
)

URL_CREATION_DURATION = Histogram(
    "shortlink_creation_duration_seconds",
    "Time taken to create or reuse short URLs",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)
URL_RESOLUTION_DURATION = Histogram(
    "shortlink_resolution_duration_seconds",
    "Time taken to resolve short codes",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)


# ============================================================================
# DATA STRUCTURES
# ============================================================================


@dataclass
class PerformanceMetrics:
    """Per-service counters, handy in tests and debug logs."""

    operation_count: int = 0
    total_duration: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0
    store_reads: int = 0
    store_writes: int = 0
    allocations: int = 0

    @property
    def average_duration(self) -> float:
        return self.total_duration / max(self.operation_count, 1)

    @property
    def cache_hit_rate(self) -> float:
        total_requests = self.cache_hits + self.cache_misses
        return (self.cache_hits / max(total_requests, 1)) * 100


# ============================================================================
# CORE SERVICE CLASS
# ============================================================================


class URLShorteningService:
    """Create and resolve short URLs over an injected capability set.

    Example:
        >>> ctx = ShortenerContext(store=store, cache=cache, keys=keys,
        ...                        allocator=allocator, codec=codec)
        >>> service = URLShorteningService.from_context(ctx)
        >>> result = await service.create_short_url("https://example.com/a/")
        >>> result.is_existing
        False
    """

    def __init__(self, ctx: "ShortenerContext"):
        self._store = ctx.store
        self._cache = ctx.cache
        self._keys = ctx.keys
        self._allocator = ctx.allocator
        self._codec = ctx.codec
        self._clock = ctx.clock
        self._settings = ctx.settings
        self._logger = ctx.logger
        self._metrics = PerformanceMetrics()

    @classmethod
    def from_context(cls, ctx: "ShortenerContext") -> "URLShorteningService":
        return cls(ctx)

    @property
    def metrics(self) -> PerformanceMetrics:
        return self._metrics

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def create_short_url(
        self,
        url: str,
        expires_at: datetime.datetime | None = None,
        owner_id: str | None = None,
        custom_code: str | None = None,
    ) -> ShortenResult:
        """Return a short code for ``url``, reusing a live one where possible.

        Args:
            url: Raw URL; normalized before anything else happens.
            expires_at: Optional expiry, must be in the future. Naive values
                are taken as UTC.
            owner_id: Creating principal, ``None`` for anonymous.
            custom_code: Caller-chosen code; skips deduplication. An empty
                string counts as no custom code.

        Returns:
            ShortenResult: ``short_code``, ``is_existing`` and the effective
            ``expires_at`` (the existing record's expiry on reuse).

        Raises:
            InvalidUrl: ``url`` is not an absolute http/https URL.
            ValueError: ``expires_at`` is not in the future, or
                ``custom_code`` is malformed.
            ShortCodeConflict: ``custom_code`` is already taken.
            ShortCodeCollision: A generated code already exists in the store.
            AllocatorUnavailable: The allocator backend is unreachable.
            StoreUnavailable: The durable store is unreachable.
        """
        start_time = time.perf_counter()
        status = RequestStatus.ERROR
        try:
            normalized = normalize_url(url)
            now = self._clock()
            expires_at = self._validate_expiry(expires_at, now)
            owner_id = owner_id or None
            custom_code = check_custom_code(custom_code)

            if custom_code is not None:
                result = await self._create_with_custom_code(normalized, custom_code, expires_at, owner_id, now)
            else:
                result = await self._create_with_generated_code(normalized, expires_at, owner_id, now)

            status = RequestStatus.EXISTING if result.is_existing else RequestStatus.SUCCESS
            return result

        except ShortCodeConflict as exc:
            status = RequestStatus.CONFLICT
            self._logger.info(f"Short URL creation rejected: {exc}")
            raise

        except (InvalidUrl, ValueError) as exc:
            status = RequestStatus.VALIDATION_ERROR
            self._logger.warning(f"Short URL creation failed validation: {exc}")
            raise

        except Exception as exc:
            self._logger.error(f"Short URL creation error: {exc}")
            raise

        finally:
            duration = time.perf_counter() - start_time
            URL_CREATION_DURATION.observe(duration)
            URL_CREATION_REQUESTS_TOTAL.labels(status=status).inc()
            self._metrics.operation_count += 1
            self._metrics.total_duration += duration

    async def shorten(self, request: ShortenRequest) -> ShortenResult:
        """Entry point for a validated request model; same contract as create_short_url."""
        return await self.create_short_url(
            request.url,
            expires_at=request.expires_at,
            owner_id=request.owner_id,
            custom_code=request.custom_code,
        )

    async def get_original_url(self, short_code: str) -> ResolvedURL | None:
        """Resolve a short code.

        Returns ``None`` when no record has the code (malformed codes are
        rejected without a store query). A record past its ``expires_at`` is
        returned with ``expired=True`` and must not be redirected to, whether
        or not the sweep has deleted it yet.
        """
        start_time = time.perf_counter()
        status = RequestStatus.ERROR
        try:
            if not self._is_well_formed_code(short_code):
                status = RequestStatus.NOT_FOUND
                self._logger.debug(f"Rejected malformed short code {short_code!r}")
                return None

            record = await self._store.get_by_code(short_code)
            self._metrics.store_reads += 1
            if record is None:
                status = RequestStatus.NOT_FOUND
                return None

            expired = record.is_expired(self._clock())
            status = RequestStatus.EXPIRED if expired else RequestStatus.SUCCESS
            if expired:
                self._logger.info(f"Short code {short_code} resolved but expired")
            return ResolvedURL(
                short_code=record.short_code,
                url=record.original_url,
                expired=expired,
                expires_at=as_utc(record.expires_at),
            )

        except Exception as exc:
            self._logger.error(f"Short code resolution error for {short_code!r}: {exc}")
            raise

        finally:
            URL_RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
            URL_RESOLUTION_REQUESTS_TOTAL.labels(status=status).inc()

    async def record_click(self, short_code: str) -> bool:
        """Atomically bump the click counter; False if the code is unknown."""
        updated = await self._store.record_access(short_code, self._clock())
        self._metrics.store_writes += 1
        if not updated:
            self._logger.debug(f"Click for unknown short code {short_code!r} ignored")
        return updated

    async def purge_expired(self) -> int:
        """Delete every record whose ``expires_at`` has passed."""
        deleted = await self._store.delete_expired(self._clock())
        self._metrics.store_writes += 1
        EXPIRED_RECORDS_PURGED_TOTAL.inc(deleted)
        self._logger.info(f"Purged {deleted} expired short URLs")
        return deleted

    # ========================================================================
    # CREATION PATHS
    # ========================================================================

    async def _create_with_custom_code(
        self,
        normalized: str,
        custom_code: str,
        expires_at: datetime.datetime | None,
        owner_id: str | None,
        now: datetime.datetime,
    ) -> ShortenResult:
        taken = await self._store.code_exists(custom_code)
        self._metrics.store_reads += 1
        if taken:
            raise ShortCodeConflict(custom_code)

        # Codes in the generated namespace would collide with a future allocation.
        if self._codec.decode(custom_code) is not None:
            self._logger.info(f"Custom code {custom_code} is reserved for generated codes")
            raise ShortCodeConflict(custom_code)

        await self._store.insert(
            short_code=custom_code,
            original_url=normalized,
            owner_id=owner_id,
            expires_at=expires_at,
            now=now,
        )
        self._metrics.store_writes += 1
        self._logger.info(f"Created custom short code {custom_code} for {normalized}")
        return ShortenResult(short_code=custom_code, is_existing=False, expires_at=expires_at)

    async def _create_with_generated_code(
        self,
        normalized: str,
        expires_at: datetime.datetime | None,
        owner_id: str | None,
        now: datetime.datetime,
    ) -> ShortenResult:
        permanent = expires_at is None
        cache_key = self._keys.url_key(normalized, owner_id, expires_at)

        if permanent:
            cached_code = await self._cache.get(cache_key)
            if cached_code:
                self._record_cache_lookup(CacheStatus.HIT)
                self._logger.debug(f"Cache hit for {normalized}: {cached_code}")
                return ShortenResult(short_code=cached_code, is_existing=True, expires_at=None)
            self._record_cache_lookup(CacheStatus.MISS)

        existing = await self._find_existing(normalized, expires_at, owner_id, now)
        if existing is not None:
            if permanent:
                await self._cache.set(cache_key, existing.short_code)
            self._logger.debug(f"Reusing short code {existing.short_code} for {normalized}")
            return ShortenResult(
                short_code=existing.short_code,
                is_existing=True,
                expires_at=as_utc(existing.expires_at),
            )

        new_id = await self._allocator.next_id()
        self._metrics.allocations += 1
        IDS_ALLOCATED_TOTAL.inc()
        short_code = self._codec.encode(new_id)

        try:
            await self._store.insert(
                short_code=short_code,
                original_url=normalized,
                owner_id=owner_id,
                expires_at=expires_at,
                now=now,
            )
        except ShortCodeConflict as exc:
            self._logger.error(
                f"Generated short code {short_code} (id {new_id}) already exists; "
                f"check the ID counter and salt configuration"
            )
            raise ShortCodeCollision(short_code) from exc
        self._metrics.store_writes += 1

        if permanent:
            await self._cache.set(cache_key, short_code)

        self._logger.info(f"Created short code {short_code} for {normalized}")
        return ShortenResult(short_code=short_code, is_existing=False, expires_at=expires_at)

    async def _find_existing(
        self,
        normalized: str,
        expires_at: datetime.datetime | None,
        owner_id: str | None,
        now: datetime.datetime,
    ) -> ShortURL | None:
        """Owner's own live record first, then (optionally) an anonymous one."""
        expiring = expires_at is not None
        record = await self._store.find_reusable(normalized, expiring=expiring, owner_id=owner_id, now=now)
        self._metrics.store_reads += 1

        if record is None and owner_id is not None and self._settings.OWNER_FALLBACK_TO_ANONYMOUS:
            record = await self._store.find_reusable(normalized, expiring=expiring, owner_id=None, now=now)
            self._metrics.store_reads += 1

        if record is not None and record.is_expired(now):
            return None
        return record

    # ========================================================================
    # VALIDATION HELPERS
    # ========================================================================

    @staticmethod
    def _validate_expiry(
        expires_at: datetime.datetime | None, now: datetime.datetime
    ) -> datetime.datetime | None:
        if expires_at is None:
            return None
        expires_at = as_utc(expires_at)
        if expires_at <= now:
            raise ValueError(f"expires_at must be in the future, got {expires_at.isoformat()}")
        return expires_at

    def _is_well_formed_code(self, short_code: str) -> bool:
        return (
            isinstance(short_code, str)
            and 0 < len(short_code) <= self._settings.SHORT_CODE_MAX_LENGTH
            and short_code.isascii()
            and short_code.isalnum()
        )

    def _record_cache_lookup(self, status: CacheStatus) -> None:
        DEDUP_LOOKUPS_TOTAL.labels(cache_hit=status).inc()
        if status is CacheStatus.HIT:
            self._metrics.cache_hits += 1
        else:
            self._metrics.cache_misses += 1

    def __repr__(self) -> str:
        return f"<URLShorteningService(allocator={self._allocator!r}, codec={self._codec!r})>"
