"""Tests for the archive search TTL cache (SQLite-backed)."""

import pytest
from sqlalchemy import select

from imagery_cache.database import create_session_factory
from imagery_cache.errors import MalformedParamsError, StorageUnavailableError
from imagery_cache.models import ArchiveSearch
from imagery_cache.services.accounting import AccessAccountant
from imagery_cache.services.archive_cache import ArchiveSearchCache


@pytest.fixture
def cache(store):
    return store.archives


class TestGetSet:
    @pytest.mark.asyncio
    async def test_miss_on_empty(self, cache, archive_params):
        assert await cache.get(archive_params) is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response)
        assert await cache.get(archive_params) == archive_response

    @pytest.mark.asyncio
    async def test_equivalent_request_hits(self, cache, archive_params, archive_response):
        """Product types in a different order hash to the same entry."""
        await cache.set({**archive_params, "productTypes": ["SAR", "DAY"]}, archive_response)
        hit = await cache.get({**archive_params, "productTypes": ["DAY", "SAR"]})
        assert hit == archive_response

    @pytest.mark.asyncio
    async def test_different_request_misses(self, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response)
        assert await cache.get({**archive_params, "maxCloudCoveragePercent": 90}) is None

    @pytest.mark.asyncio
    async def test_overwrite_replaces_payload(self, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response)
        await cache.set(archive_params, {"archives": [], "total": 0})
        assert await cache.get(archive_params) == {"archives": [], "total": 0}

    @pytest.mark.asyncio
    async def test_miss_does_not_create_row(self, cache, archive_params):
        await cache.get(archive_params)
        assert await cache.peek(archive_params) is None

    @pytest.mark.asyncio
    async def test_malformed_params_propagate(self, cache, archive_response):
        with pytest.raises(MalformedParamsError):
            await cache.get({"fromDate": "2025-01-01"})
        with pytest.raises(MalformedParamsError):
            await cache.set({"fromDate": "2025-01-01"}, archive_response)


class TestExpiry:
    @pytest.mark.asyncio
    async def test_default_ttl_is_24h(self, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response)
        info = await cache.peek(archive_params)
        assert (info.expires_at - info.created_at).total_seconds() == 86400

    @pytest.mark.asyncio
    async def test_hit_before_expiry(self, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response, ttl_seconds=60)
        clock.advance(59)
        assert await cache.get(archive_params) == archive_response

    @pytest.mark.asyncio
    async def test_miss_at_expiry_without_sweep(self, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response, ttl_seconds=60)
        clock.advance(60)
        assert await cache.get(archive_params) is None
        # Row is still physically present until swept
        info = await cache.peek(archive_params)
        assert info is not None
        assert info.expired is True

    @pytest.mark.asyncio
    async def test_zero_ttl_is_immediate_miss(self, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response, ttl_seconds=0)
        assert await cache.get(archive_params) is None

    @pytest.mark.asyncio
    async def test_pre_expired_set_is_stored(self, cache, archive_params, archive_response):
        """A negative TTL is a deliberate pre-expired warm, not an error."""
        await cache.set(archive_params, archive_response, ttl_seconds=-3600)
        info = await cache.peek(archive_params)
        assert info is not None
        assert info.expired is True
        assert await cache.get(archive_params) is None

    @pytest.mark.asyncio
    async def test_overwrite_revives_expired_entry(self, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response, ttl_seconds=10)
        clock.advance(20)
        assert await cache.get(archive_params) is None
        await cache.set(archive_params, archive_response, ttl_seconds=10)
        assert await cache.get(archive_params) == archive_response

    @pytest.mark.asyncio
    async def test_clear_expired(self, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response, ttl_seconds=10)
        await cache.set({**archive_params, "pageSize": 5}, archive_response, ttl_seconds=1000)
        clock.advance(100)
        assert await cache.clear_expired() == 1
        assert await cache.peek(archive_params) is None
        assert await cache.get({**archive_params, "pageSize": 5}) == archive_response

    @pytest.mark.asyncio
    async def test_clear_expired_nothing_to_do(self, cache):
        assert await cache.clear_expired() == 0


class TestHitAccounting:
    @pytest.mark.asyncio
    async def test_hit_increments_count(self, store, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response)
        clock.advance(5)
        await cache.get(archive_params)
        await cache.get(archive_params)
        await store.accounting.flush()
        info = await cache.peek(archive_params)
        assert info.hit_count == 2
        assert info.last_accessed_at == clock.now

    @pytest.mark.asyncio
    async def test_overwrite_resets_hit_count(self, store, cache, archive_params, archive_response):
        await cache.set(archive_params, {"archives": [], "v": 1})
        await cache.get(archive_params)
        await store.accounting.flush()
        assert (await cache.peek(archive_params)).hit_count == 1

        await cache.set(archive_params, {"archives": [], "v": 2})
        info = await cache.peek(archive_params)
        assert info.hit_count == 0
        assert info.last_accessed_at is None

        assert await cache.get(archive_params) == {"archives": [], "v": 2}
        await store.accounting.flush()
        assert (await cache.peek(archive_params)).hit_count == 1

    @pytest.mark.asyncio
    async def test_peek_is_not_a_hit(self, store, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response)
        await cache.peek(archive_params)
        await store.accounting.flush()
        assert (await cache.peek(archive_params)).hit_count == 0


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_clear_removes_entry(self, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response)
        assert await cache.clear(archive_params) is True
        assert await cache.get(archive_params) is None

    @pytest.mark.asyncio
    async def test_clear_absent_is_noop(self, cache, archive_params, archive_response):
        other = {**archive_params, "pageSize": 50}
        await cache.set(other, archive_response)
        assert await cache.clear(archive_params) is False
        assert await cache.clear(archive_params) is False
        assert (await cache.stats()).total_entries == 1

    @pytest.mark.asyncio
    async def test_clear_all(self, cache, archive_params, archive_response):
        for size in (10, 20, 30):
            await cache.set({**archive_params, "pageSize": size}, archive_response)
        assert await cache.clear_all() == 3
        assert (await cache.stats()).total_entries == 0

    @pytest.mark.asyncio
    async def test_stats_empty(self, cache):
        stats = await cache.stats()
        assert stats.total_entries == 0
        assert stats.total_hits == 0
        assert stats.avg_hits_per_entry == 0.0
        assert stats.last_accessed is None

    @pytest.mark.asyncio
    async def test_stats_counts_hits(self, store, cache, archive_params, archive_response, clock):
        """Three entries, two of them read once each."""
        requests = [{**archive_params, "pageSize": size} for size in (10, 20, 30)]
        for params in requests:
            await cache.set(params, archive_response)
        clock.advance(30)
        await cache.get(requests[0])
        await cache.get(requests[1])
        await store.accounting.flush()

        stats = await cache.stats()
        assert stats.total_entries == 3
        assert stats.total_hits == 2
        assert stats.avg_hits_per_entry == pytest.approx(2 / 3)
        assert stats.last_accessed == clock.now
        assert stats.expired_entries == 0

    @pytest.mark.asyncio
    async def test_stats_counts_expired(self, cache, archive_params, archive_response, clock):
        await cache.set(archive_params, archive_response, ttl_seconds=10)
        await cache.set({**archive_params, "pageSize": 5}, archive_response, ttl_seconds=1000)
        clock.advance(11)
        stats = await cache.stats()
        assert stats.total_entries == 2
        assert stats.expired_entries == 1

    @pytest.mark.asyncio
    async def test_projection_columns(self, session_factory, cache, archive_params, archive_response):
        await cache.set(archive_params, archive_response)
        async with session_factory() as session:
            row = await session.scalar(select(ArchiveSearch))
        assert row.result_count == 2
        assert row.product_type == "DAY,SAR"
        assert row.resolution == "HIGH,MEDIUM"
        assert row.max_cloud_coverage == 20
        assert row.open_data_only is False
        assert row.start_date.year == 2025 and row.start_date.month == 1
        assert row.aoi_wkt == archive_params["aoi"]

    @pytest.mark.asyncio
    async def test_prefix_for(self, cache, archive_params):
        assert cache.prefix_for(archive_params) == "archive_2025-01_20cloud_high"


class TestStorageFailures:
    @pytest.fixture
    def broken(self, bare_engine, clock):
        factory = create_session_factory(bare_engine)
        return ArchiveSearchCache(factory, AccessAccountant(factory, clock=clock), clock=clock)

    @pytest.mark.asyncio
    async def test_get_degrades_to_miss(self, broken, archive_params):
        assert await broken.get(archive_params) is None

    @pytest.mark.asyncio
    async def test_set_is_swallowed(self, broken, archive_params, archive_response):
        await broken.set(archive_params, archive_response)

    @pytest.mark.asyncio
    async def test_maintenance_raises(self, broken, archive_params):
        with pytest.raises(StorageUnavailableError):
            await broken.clear(archive_params)
        with pytest.raises(StorageUnavailableError):
            await broken.clear_all()
        with pytest.raises(StorageUnavailableError):
            await broken.clear_expired()
        with pytest.raises(StorageUnavailableError):
            await broken.stats()
