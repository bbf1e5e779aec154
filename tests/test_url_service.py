"""Tests for the short URL orchestrator.

Runs the real store (aiosqlite), in-memory cache and in-memory allocator, with
a settable clock. Failure scenarios swap single collaborators for mocks.
"""

import dataclasses
import datetime
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select, update

from shortlink.allocator import IdAllocator
from shortlink.cache import DEFAULT_CACHE_TTL_SECONDS, CacheAdapter, CacheAside
from shortlink.codec import encode_id
from shortlink.exceptions import (
    AllocatorUnavailable,
    CacheError,
    InvalidUrl,
    ShortCodeCollision,
    ShortCodeConflict,
    StoreUnavailable,
)
from shortlink.models import ShortURL
from shortlink.schemas import ShortenRequest
from shortlink.url_service import PerformanceMetrics, URLShorteningService

URL = "https://example.com/docs"


class ExplodingCacheAdapter(CacheAdapter):
    async def get(self, key):
        raise CacheError("cache is down")

    async def set(self, key, value, ttl=DEFAULT_CACHE_TTL_SECONDS):
        raise CacheError("cache is down")

    async def delete(self, key):
        raise CacheError("cache is down")


async def _count_records(db_session) -> int:
    result = await db_session.execute(select(func.count()).select_from(ShortURL))
    return result.scalar_one()


def _service_with(context, **changes) -> URLShorteningService:
    return URLShorteningService.from_context(dataclasses.replace(context, **changes))


# ============================================================================
# GENERATED CODES AND DEDUPLICATION
# ============================================================================


class TestCreateGenerated:
    @pytest.mark.asyncio
    async def test_first_allocation_encodes_id_one(self, service):
        result = await service.create_short_url(URL)

        assert result.short_code == encode_id(1, "s", 5)
        assert len(result.short_code) >= 5
        assert result.short_code.isalnum()
        assert result.is_existing is False
        assert result.expires_at is None

    @pytest.mark.asyncio
    async def test_same_url_twice_returns_same_code(self, service):
        first = await service.create_short_url(URL)
        second = await service.create_short_url(URL)

        assert first.short_code == second.short_code
        assert (first.is_existing, second.is_existing) == (False, True)

    @pytest.mark.asyncio
    async def test_equivalent_inputs_deduplicate(self, service):
        first = await service.create_short_url("https://EXAMPLE.com/docs/")
        second = await service.create_short_url("https://example.com/docs#section")

        assert second.short_code == first.short_code
        assert second.is_existing is True

    @pytest.mark.asyncio
    async def test_distinct_urls_get_distinct_codes(self, service):
        codes = {(await service.create_short_url(f"https://example.com/{i}")).short_code for i in range(20)}
        assert len(codes) == 20

    @pytest.mark.asyncio
    async def test_original_url_stored_normalized(self, service, store):
        result = await service.create_short_url("  https://Example.com/Path/?q=A#frag ")
        record = await store.get_by_code(result.short_code)
        assert record.original_url == "https://example.com/Path?q=A"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["ftp://example.com/file", "https://ex<ample>.com/x", "http://-bad-/"])
    async def test_invalid_url_rejected_before_allocation(self, context, db_session, bad):
        allocator = AsyncMock(spec=IdAllocator)
        service = _service_with(context, allocator=allocator)

        with pytest.raises(InvalidUrl):
            await service.create_short_url(bad)

        allocator.next_id.assert_not_called()
        assert await _count_records(db_session) == 0


class TestCacheBehaviour:
    @pytest.mark.asyncio
    async def test_permanent_code_written_to_cache(self, service, cache_adapter, context):
        result = await service.create_short_url(URL)

        key = context.keys.url_key(URL)
        assert await cache_adapter.get(key) == result.short_code

    @pytest.mark.asyncio
    async def test_cache_hit_skips_store_and_allocator(self, service, context):
        first = await service.create_short_url(URL)
        reads_before = service.metrics.store_reads
        allocations_before = service.metrics.allocations

        second = await service.create_short_url(URL)

        assert second.short_code == first.short_code
        assert second.is_existing is True
        assert service.metrics.cache_hits == 1
        assert service.metrics.store_reads == reads_before
        assert service.metrics.allocations == allocations_before

    @pytest.mark.asyncio
    async def test_store_hit_repairs_cache(self, service, cache_adapter, context):
        first = await service.create_short_url(URL)
        key = context.keys.url_key(URL)
        await cache_adapter.delete(key)

        second = await service.create_short_url(URL)

        assert second.is_existing is True
        assert second.short_code == first.short_code
        assert await cache_adapter.get(key) == first.short_code

    @pytest.mark.asyncio
    async def test_expiring_requests_never_cached(self, service, cache_adapter, clock):
        await service.create_short_url(URL, expires_at=clock() + datetime.timedelta(hours=1))
        assert len(cache_adapter) == 0

    @pytest.mark.asyncio
    async def test_cache_get_failure_falls_back_to_store(self, context):
        service = _service_with(context, cache=CacheAside(ExplodingCacheAdapter()))

        first = await service.create_short_url(URL)
        second = await service.create_short_url(URL)

        assert first.is_existing is False
        assert second.is_existing is True
        assert second.short_code == first.short_code

    @pytest.mark.asyncio
    async def test_without_cache_dedup_still_works(self, context):
        service = _service_with(context, cache=CacheAside(None))

        first = await service.create_short_url(URL)
        second = await service.create_short_url(URL)

        assert second.short_code == first.short_code
        assert second.is_existing is True


class TestExpirationClasses:
    @pytest.mark.asyncio
    async def test_permanent_and_expiring_not_deduplicated(self, service, clock):
        permanent = await service.create_short_url(URL)
        expiring = await service.create_short_url(URL, expires_at=clock() + datetime.timedelta(days=1))

        assert expiring.short_code != permanent.short_code
        assert expiring.is_existing is False

    @pytest.mark.asyncio
    async def test_expiring_request_reuses_live_expiring_record(self, service, clock):
        expires_at = clock() + datetime.timedelta(days=1)
        first = await service.create_short_url(URL, expires_at=expires_at)
        second = await service.create_short_url(URL, expires_at=clock() + datetime.timedelta(days=2))

        assert second.short_code == first.short_code
        assert second.is_existing is True
        assert second.expires_at == expires_at

    @pytest.mark.asyncio
    async def test_expired_record_yields_new_code(self, service, clock):
        first = await service.create_short_url(URL, expires_at=clock() + datetime.timedelta(hours=1))
        clock.advance(hours=2)

        second = await service.create_short_url(URL, expires_at=clock() + datetime.timedelta(hours=1))

        assert second.is_existing is False
        assert second.short_code != first.short_code

    @pytest.mark.asyncio
    async def test_expires_at_must_be_in_future(self, service, clock):
        with pytest.raises(ValueError):
            await service.create_short_url(URL, expires_at=clock())
        with pytest.raises(ValueError):
            await service.create_short_url(URL, expires_at=clock() - datetime.timedelta(seconds=1))

    @pytest.mark.asyncio
    async def test_naive_expiry_is_treated_as_utc(self, service, clock):
        naive = (clock() + datetime.timedelta(days=1)).replace(tzinfo=None)
        result = await service.create_short_url(URL, expires_at=naive)
        assert result.expires_at == naive.replace(tzinfo=datetime.UTC)


class TestOwnerScope:
    @pytest.mark.asyncio
    async def test_owner_falls_back_to_anonymous_record(self, service):
        anonymous = await service.create_short_url(URL)
        owned = await service.create_short_url(URL, owner_id="u1")

        assert owned.short_code == anonymous.short_code
        assert owned.is_existing is True

    @pytest.mark.asyncio
    async def test_own_record_preferred_over_anonymous(self, service, store, clock):
        await store.insert(short_code="anonX", original_url=URL, owner_id=None, expires_at=None, now=clock())
        await store.insert(short_code="mineX", original_url=URL, owner_id="u1", expires_at=None, now=clock())

        result = await service.create_short_url(URL, owner_id="u1")

        assert result.short_code == "mineX"
        assert result.is_existing is True

    @pytest.mark.asyncio
    async def test_anonymous_never_sees_owned_record(self, service):
        owned = await service.create_short_url(URL, owner_id="u1")
        anonymous = await service.create_short_url(URL)

        assert anonymous.short_code != owned.short_code
        assert anonymous.is_existing is False

    @pytest.mark.asyncio
    async def test_other_owner_does_not_reuse_owned_record(self, service):
        first = await service.create_short_url(URL, owner_id="u1")
        second = await service.create_short_url(URL, owner_id="u2")

        assert second.short_code != first.short_code

    @pytest.mark.asyncio
    async def test_fallback_can_be_disabled(self, context, settings):
        service = _service_with(
            context, settings=settings.model_copy(update={"OWNER_FALLBACK_TO_ANONYMOUS": False})
        )
        anonymous = await service.create_short_url(URL)
        owned = await service.create_short_url(URL, owner_id="u1")

        assert owned.short_code != anonymous.short_code
        assert owned.is_existing is False


# ============================================================================
# CUSTOM CODES
# ============================================================================


class TestCustomCodes:
    @pytest.mark.asyncio
    async def test_custom_code_is_stored_as_is(self, service, store, cache_adapter):
        result = await service.create_short_url(URL, custom_code="myLink")

        assert result.short_code == "myLink"
        assert result.is_existing is False
        assert (await store.get_by_code("myLink")).original_url == URL
        assert len(cache_adapter) == 0

    @pytest.mark.asyncio
    async def test_custom_code_skips_deduplication(self, service):
        await service.create_short_url(URL)
        result = await service.create_short_url(URL, custom_code="another")
        assert result.short_code == "another"
        assert result.is_existing is False

    @pytest.mark.asyncio
    async def test_taken_custom_code_conflicts_without_mutation(self, service, db_session):
        await service.create_short_url(URL, custom_code="taken1")
        count_before = await _count_records(db_session)

        with pytest.raises(ShortCodeConflict) as exc_info:
            await service.create_short_url("https://other.example", custom_code="taken1")

        assert exc_info.value.short_code == "taken1"
        assert await _count_records(db_session) == count_before

    @pytest.mark.asyncio
    async def test_generated_code_cannot_be_claimed(self, service, db_session):
        generated = await service.create_short_url(URL)

        with pytest.raises(ShortCodeConflict):
            await service.create_short_url("https://other.example", custom_code=generated.short_code)
        assert await _count_records(db_session) == 1

    @pytest.mark.asyncio
    async def test_code_reserved_for_generation_is_rejected(self, service, db_session):
        with pytest.raises(ShortCodeConflict):
            await service.create_short_url(URL, custom_code=encode_id(500, "s", 5))
        assert await _count_records(db_session) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["ab", "has-dash", "x" * 21, "ünï"])
    async def test_malformed_custom_code_rejected(self, service, bad):
        with pytest.raises(ValueError):
            await service.create_short_url(URL, custom_code=bad)

    @pytest.mark.asyncio
    async def test_custom_code_does_not_use_allocator(self, context):
        allocator = AsyncMock(spec=IdAllocator)
        service = _service_with(context, allocator=allocator)

        await service.create_short_url(URL, custom_code="custom1")

        allocator.next_id.assert_not_called()

    @pytest.mark.asyncio
    async def test_empty_custom_code_takes_generated_path(self, service, settings):
        result = await service.create_short_url(URL, custom_code="")

        assert result.short_code == encode_id(1, settings.HASHIDS_SALT, settings.HASHIDS_MIN_LENGTH)
        assert (await service.create_short_url(URL)).short_code == result.short_code

    @pytest.mark.asyncio
    async def test_shorten_accepts_request_model(self, service, store):
        result = await service.shorten(ShortenRequest(url=URL, owner_id="alice", custom_code="fromModel"))

        assert result.short_code == "fromModel"
        record = await store.get_by_code("fromModel")
        assert record.original_url == URL
        assert record.user_id == "alice"

    @pytest.mark.asyncio
    async def test_shorten_deduplicates_like_create(self, service):
        first = await service.create_short_url(URL)
        second = await service.shorten(ShortenRequest(url="https://EXAMPLE.com/docs/"))

        assert second.short_code == first.short_code
        assert second.is_existing is True


# ============================================================================
# FAILURE PROPAGATION
# ============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_allocator_outage_fails_without_record(self, context, db_session, cache_adapter):
        allocator = AsyncMock(spec=IdAllocator)
        allocator.next_id = AsyncMock(side_effect=AllocatorUnavailable("redis down"))
        service = _service_with(context, allocator=allocator)

        with pytest.raises(AllocatorUnavailable):
            await service.create_short_url(URL)

        assert await _count_records(db_session) == 0
        assert len(cache_adapter) == 0

    @pytest.mark.asyncio
    async def test_store_outage_on_insert_fails_without_cache_entry(self, service, store, cache_adapter):
        with patch.object(store, "insert", AsyncMock(side_effect=StoreUnavailable("db down"))):
            with pytest.raises(StoreUnavailable):
                await service.create_short_url(URL)

        assert len(cache_adapter) == 0

    @pytest.mark.asyncio
    async def test_generated_collision_is_reported(self, service, store, clock):
        await store.insert(
            short_code=encode_id(1, "s", 5),
            original_url="https://squatter.example",
            owner_id=None,
            expires_at=None,
            now=clock(),
        )

        with pytest.raises(ShortCodeCollision):
            await service.create_short_url(URL)


# ============================================================================
# RESOLUTION, CLICKS, SWEEP
# ============================================================================


class TestResolution:
    @pytest.mark.asyncio
    async def test_resolves_live_code(self, service):
        created = await service.create_short_url(URL)

        resolved = await service.get_original_url(created.short_code)

        assert resolved.url == URL
        assert resolved.expired is False

    @pytest.mark.asyncio
    async def test_expired_code_is_flagged(self, service, db_session, clock):
        created = await service.create_short_url(URL)
        await db_session.execute(
            update(ShortURL)
            .where(ShortURL.short_code == created.short_code)
            .values(expires_at=clock() - datetime.timedelta(minutes=1))
        )
        await db_session.commit()

        resolved = await service.get_original_url(created.short_code)

        assert resolved is not None
        assert resolved.expired is True

    @pytest.mark.asyncio
    async def test_code_expires_with_time(self, service, clock):
        created = await service.create_short_url(URL, expires_at=clock() + datetime.timedelta(hours=1))
        assert (await service.get_original_url(created.short_code)).expired is False

        clock.advance(hours=1)

        assert (await service.get_original_url(created.short_code)).expired is True

    @pytest.mark.asyncio
    async def test_unknown_code(self, service):
        assert await service.get_original_url("zzzzzz") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad", ["", "bad-code", "a" * 33, "../etc"])
    async def test_malformed_code_skips_store(self, service, store, bad):
        with patch.object(store, "get_by_code", AsyncMock()) as get_by_code:
            assert await service.get_original_url(bad) is None
        get_by_code.assert_not_called()


class TestClicksAndSweep:
    @pytest.mark.asyncio
    async def test_record_click(self, service, db_session):
        created = await service.create_short_url(URL)

        assert await service.record_click(created.short_code) is True
        assert await service.record_click(created.short_code) is True
        assert await service.record_click("unknown1") is False

        result = await db_session.execute(select(ShortURL.clicks).where(ShortURL.short_code == created.short_code))
        assert result.scalar_one() == 2

    @pytest.mark.asyncio
    async def test_purge_expired_removes_only_expired(self, service, clock):
        permanent = await service.create_short_url(URL)
        short_lived = await service.create_short_url(
            "https://example.com/short", expires_at=clock() + datetime.timedelta(minutes=5)
        )
        long_lived = await service.create_short_url(
            "https://example.com/long", expires_at=clock() + datetime.timedelta(days=5)
        )
        clock.advance(hours=1)

        assert await service.purge_expired() == 1

        assert await service.get_original_url(short_lived.short_code) is None
        assert await service.get_original_url(permanent.short_code) is not None
        assert await service.get_original_url(long_lived.short_code) is not None


class TestPerformanceMetrics:
    def test_rates_with_no_operations(self):
        metrics = PerformanceMetrics()
        assert metrics.average_duration == 0.0
        assert metrics.cache_hit_rate == 0.0

    def test_cache_hit_rate(self):
        metrics = PerformanceMetrics(cache_hits=3, cache_misses=1)
        assert metrics.cache_hit_rate == 75.0

    @pytest.mark.asyncio
    async def test_operations_are_counted(self, service):
        await service.create_short_url(URL)
        await service.create_short_url(URL)
        assert service.metrics.operation_count == 2
        assert service.metrics.allocations == 1
