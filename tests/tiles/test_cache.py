"""Tests for RasterCache."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from domain.errors import TileLoadTimeoutError, TileUnavailableError
from domain.models import CacheSettings, DirectorySource
from tiles.cache import CacheStats, RasterCache
from tiles.catalog import Catalog, TileKey
from tiles.codec import decode

SEAM_KEYS = [
    TileKey(500_000, 102_000),
    TileKey(501_000, 102_000),
    TileKey(500_000, 101_000),
    TileKey(501_000, 101_000),
]
# 20x20 float32
TILE_BYTES = 20 * 20 * 4


class CountingDecoder:
    """Decoder wrapper counting calls, optionally slow or failing for some keys."""

    def __init__(self, delay: float = 0.0, fail_first: int = 0) -> None:
        self.calls = 0
        self.delay = delay
        self.fail_first = fail_first
        self._lock = threading.Lock()

    def __call__(self, data: bytes):
        with self._lock:
            self.calls += 1
            call = self.calls
        if self.delay:
            time.sleep(self.delay)
        if call <= self.fail_first:
            msg = 'simulated corrupt file'
            raise ValueError(msg)
        return decode(data)


@pytest.fixture
def seam_catalog(seam_dir) -> Catalog:
    return Catalog.build(DirectorySource(path=seam_dir))


class TestRasterCacheBasics:
    """Tests for hits, misses and stats."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, seam_catalog):
        decoder = CountingDecoder()
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        first = await cache.get(SEAM_KEYS[0])
        second = await cache.get(SEAM_KEYS[0])
        assert first is second
        assert decoder.calls == 1
        stats = cache.stats()
        assert isinstance(stats, CacheStats)
        assert (stats.hits, stats.misses, stats.loads) == (1, 1, 1)
        assert stats.resident_bytes == TILE_BYTES

    @pytest.mark.asyncio
    async def test_peek_and_contains(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4))
        assert cache.peek(SEAM_KEYS[0]) is None
        raster = await cache.get(SEAM_KEYS[0])
        assert cache.peek(SEAM_KEYS[0]) is raster
        assert SEAM_KEYS[0] in cache
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_clear(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4))
        await cache.get(SEAM_KEYS[0])
        cache.clear()
        assert len(cache) == 0
        assert cache.resident_bytes == 0

    @pytest.mark.asyncio
    async def test_returned_raster_is_read_only(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4))
        raster = await cache.get(SEAM_KEYS[0])
        assert not raster.data.flags.writeable


class TestRasterCacheEviction:
    """Tests for LRU eviction under tile and byte limits."""

    @pytest.mark.asyncio
    async def test_max_tiles_bound(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=2))
        for key in SEAM_KEYS:
            await cache.get(key)
            assert len(cache) <= 2
        assert cache.stats().evictions == 2

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=2))
        await cache.get(SEAM_KEYS[0])
        await cache.get(SEAM_KEYS[1])
        await cache.get(SEAM_KEYS[0])  # touch
        await cache.get(SEAM_KEYS[2])
        assert SEAM_KEYS[0] in cache
        assert SEAM_KEYS[1] not in cache
        assert SEAM_KEYS[2] in cache

    @pytest.mark.asyncio
    async def test_max_bytes_bound(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_bytes=2 * TILE_BYTES + 10))
        for key in SEAM_KEYS * 2:
            await cache.get(key)
            assert cache.resident_bytes <= 2 * TILE_BYTES + 10
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_both_limits(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=3, max_bytes=TILE_BYTES))
        for key in SEAM_KEYS:
            await cache.get(key)
        assert len(cache) == 1

    @pytest.mark.asyncio
    async def test_oversized_raster_returned_but_not_kept(self, seam_catalog):
        decoder = CountingDecoder()
        cache = RasterCache(seam_catalog, CacheSettings(max_bytes=100), decoder=decoder)
        raster = await cache.get(SEAM_KEYS[0])
        assert raster.header.rows == 20
        assert len(cache) == 0
        await cache.get(SEAM_KEYS[0])
        assert decoder.calls == 2


class TestRasterCacheConcurrency:
    """Tests for the single in-flight load per key."""

    @pytest.mark.asyncio
    async def test_thundering_herd_decodes_once(self, seam_catalog):
        decoder = CountingDecoder(delay=0.05)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        results = await asyncio.gather(*(cache.get(SEAM_KEYS[0]) for _ in range(50)))
        assert decoder.calls == 1
        assert all(r is results[0] for r in results)

    @pytest.mark.asyncio
    async def test_different_keys_load_independently(self, seam_catalog):
        decoder = CountingDecoder(delay=0.02)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        await asyncio.gather(*(cache.get(k) for k in SEAM_KEYS for _ in range(5)))
        assert decoder.calls == 4

    @pytest.mark.asyncio
    async def test_timeout_does_not_cancel_load(self, seam_catalog):
        decoder = CountingDecoder(delay=0.3)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        with pytest.raises(TileLoadTimeoutError) as exc_info:
            await cache.get(SEAM_KEYS[0], timeout=0.01)
        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.key == SEAM_KEYS[0]
        raster = await cache.get(SEAM_KEYS[0])
        assert raster.header.cols == 20
        assert decoder.calls == 1

    @pytest.mark.asyncio
    async def test_timed_out_load_still_fills_cache(self, seam_catalog):
        cache = RasterCache(
            seam_catalog, CacheSettings(max_tiles=4), decoder=CountingDecoder(delay=0.1)
        )
        with pytest.raises(TileLoadTimeoutError):
            await cache.get(SEAM_KEYS[0], timeout=0.01)
        await asyncio.sleep(0.3)
        assert SEAM_KEYS[0] in cache


class TestRasterCacheFailures:
    """Tests for load failures."""

    @pytest.mark.asyncio
    async def test_failure_surfaces_as_tile_unavailable(self, seam_catalog):
        cache = RasterCache(
            seam_catalog, CacheSettings(max_tiles=4), decoder=CountingDecoder(fail_first=1)
        )
        with pytest.raises(TileUnavailableError) as exc_info:
            await cache.get(SEAM_KEYS[0])
        assert exc_info.value.key == SEAM_KEYS[0]
        assert isinstance(exc_info.value.cause, ValueError)

    @pytest.mark.asyncio
    async def test_failure_does_not_poison_cache(self, seam_catalog):
        decoder = CountingDecoder(fail_first=1)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        with pytest.raises(TileUnavailableError):
            await cache.get(SEAM_KEYS[0])
        assert (await cache.get(SEAM_KEYS[1])).header.rows == 20
        assert (await cache.get(SEAM_KEYS[0])).header.rows == 20
        assert cache.stats().failures == 1

    @pytest.mark.asyncio
    async def test_all_waiters_see_failure(self, seam_catalog):
        cache = RasterCache(
            seam_catalog,
            CacheSettings(max_tiles=4),
            decoder=CountingDecoder(delay=0.05, fail_first=1),
        )
        results = await asyncio.gather(
            *(cache.get(SEAM_KEYS[0]) for _ in range(5)), return_exceptions=True
        )
        assert all(isinstance(r, TileUnavailableError) for r in results)

    @pytest.mark.asyncio
    async def test_missing_file(self, seam_catalog, seam_dir):
        (seam_dir / f'{SEAM_KEYS[3].sheet_code}.d50').unlink()
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4, read_retries=0))
        with pytest.raises(TileUnavailableError) as exc_info:
            await cache.get(SEAM_KEYS[3])
        assert isinstance(exc_info.value.cause, FileNotFoundError)

    @pytest.mark.asyncio
    async def test_corrupt_file(self, seam_catalog, seam_dir):
        path = seam_dir / f'{SEAM_KEYS[2].sheet_code}.d50'
        path.write_bytes(path.read_bytes()[:-4])
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4))
        with pytest.raises(TileUnavailableError):
            await cache.get(SEAM_KEYS[2])

    @pytest.mark.asyncio
    async def test_unknown_key(self, seam_catalog):
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4))
        with pytest.raises(TileUnavailableError):
            await cache.get(TileKey(1_000, 1_000))

    @pytest.mark.asyncio
    async def test_custom_reader(self, seam_catalog, seam_dir):
        seen = []

        def reader(path):
            seen.append(path.name)
            return path.read_bytes()

        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), reader=reader)
        await cache.get(SEAM_KEYS[0])
        assert seen == ['500_102.d50']


class TestRasterCacheAcrossLoops:
    """Tests for callers on separate threads, each with its own event loop."""

    @staticmethod
    def run_in_threads(cache, key, count=2):
        results = [None] * count
        barrier = threading.Barrier(count)

        def worker(i):
            barrier.wait()
            try:
                results[i] = asyncio.run(cache.get(key))
            except Exception as e:  # noqa: BLE001
                results[i] = e

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)
        return results

    def test_two_loops_share_one_decode(self, seam_catalog):
        decoder = CountingDecoder(delay=0.2)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        results = self.run_in_threads(cache, SEAM_KEYS[0])
        assert decoder.calls == 1
        assert results[0] is results[1]
        assert results[0].header.cols == 20
        assert cache.stats().misses == 2

    def test_failure_reaches_every_loop(self, seam_catalog):
        decoder = CountingDecoder(delay=0.2, fail_first=1)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        results = self.run_in_threads(cache, SEAM_KEYS[0])
        assert decoder.calls == 1
        assert all(isinstance(r, TileUnavailableError) for r in results)

    def test_load_outlives_the_loop_that_started_it(self, seam_catalog):
        decoder = CountingDecoder(delay=0.2)
        cache = RasterCache(seam_catalog, CacheSettings(max_tiles=4), decoder=decoder)
        with pytest.raises(TileLoadTimeoutError):
            asyncio.run(cache.get(SEAM_KEYS[0], timeout=0.01))
        raster = asyncio.run(cache.get(SEAM_KEYS[0]))
        assert raster.header.rows == 20
        assert decoder.calls == 1
