"""Bounded in-memory pool of decoded rasters with LRU eviction.

This module provides RasterCache, the only mutable shared state of the
elevation engine. Concurrent requests for the same missing tile share one
in-flight load, whichever thread or event loop they come from.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

from domain.errors import TileLoadTimeoutError, TileUnavailableError
from domain.models import CacheSettings
from shared.constants import (
    CACHE_DECODE_WORKERS,
    DEFAULT_CACHE_MAX_TILES,
    DEFAULT_MAX_DIMENSION,
)
from tiles.codec import Raster, decode
from tiles.loader import TileOpener, open_local, read_tile_bytes

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Executor, Future
    from pathlib import Path

    from tiles.catalog import Catalog, TileKey

logger = logging.getLogger(__name__)

# Общий пул чтения и декодирования тайлов для всех кэшей
_DECODE_POOL = ThreadPoolExecutor(
    max_workers=CACHE_DECODE_WORKERS, thread_name_prefix='dem-decode'
)


@dataclass
class CacheStats:
    """Counters and occupancy of the raster cache."""

    hits: int
    misses: int
    loads: int
    failures: int
    evictions: int
    resident_tiles: int
    resident_bytes: int
    max_tiles: int | None
    max_bytes: int | None


class RasterCache:
    """LRU cache of decoded tiles keyed by TileKey.

    Features:
    - Capacity by tile count, byte budget, or both
    - At most one read+decode in flight per key (shared future)
    - Decoding runs in a thread pool not tied to any event loop, so
      callers on different threads and loops share one load
    - A failed load is reported to its waiters only; nothing is cached

    Usage:
        cache = RasterCache(catalog, CacheSettings(max_tiles=32))
        raster = await cache.get(key)
        value = raster.sample(0, 0)
    """

    def __init__(
        self,
        catalog: Catalog,
        settings: CacheSettings | None = None,
        *,
        decoder: Callable[[bytes], Raster] | None = None,
        reader: Callable[[Path], bytes] | None = None,
        opener: TileOpener = open_local,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
        executor: Executor | None = None,
    ) -> None:
        """Initialize the cache.

        Args:
            catalog: Catalog used to resolve keys to file paths.
            settings: Capacity and read-retry settings.
            decoder: Bytes-to-raster function. Defaults to the tile codec.
            reader: Path-to-bytes function. Defaults to a retrying file read.
            opener: File opener used by the default reader.
            max_dimension: Header sanity ceiling passed to the default decoder.
            executor: Pool running read+decode. Defaults to the shared
                module pool.
        """
        self._catalog = catalog
        self._settings = settings or CacheSettings(max_tiles=DEFAULT_CACHE_MAX_TILES)
        self._decoder = decoder or partial(decode, max_dimension=max_dimension)
        self._reader = reader or partial(
            read_tile_bytes,
            retries=self._settings.read_retries,
            backoff=self._settings.read_backoff_s,
            opener=opener,
        )
        self._executor = executor or _DECODE_POOL
        self._lock = threading.Lock()
        self._slots: OrderedDict[TileKey, Raster] = OrderedDict()
        self._inflight: dict[TileKey, Future[Raster]] = {}
        self._bytes = 0
        self._hits = 0
        self._misses = 0
        self._loads = 0
        self._failures = 0
        self._evictions = 0

    @property
    def max_tiles(self) -> int | None:
        return self._settings.max_tiles

    @property
    def max_bytes(self) -> int | None:
        return self._settings.max_bytes

    @property
    def resident_bytes(self) -> int:
        with self._lock:
            return self._bytes

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._slots

    def peek(self, key: TileKey) -> Raster | None:
        """Resident raster for a key without touching recency, or None."""
        with self._lock:
            return self._slots.get(key)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                loads=self._loads,
                failures=self._failures,
                evictions=self._evictions,
                resident_tiles=len(self._slots),
                resident_bytes=self._bytes,
                max_tiles=self.max_tiles,
                max_bytes=self.max_bytes,
            )

    def clear(self) -> None:
        """Drop every resident raster. Loads in flight still complete."""
        with self._lock:
            self._slots.clear()
            self._bytes = 0
        logger.debug('Raster cache cleared')

    async def get(self, key: TileKey, *, timeout: float | None = None) -> Raster:
        """Return the raster for a key, loading it on a miss.

        May be awaited from any thread and any event loop: the load runs in
        the decode pool and its future is shared by every waiter.

        Args:
            key: Tile to fetch.
            timeout: Seconds this caller is willing to wait. The load itself
                is not cancelled when the caller gives up.

        Returns:
            Decoded raster. Its sample array is read-only and must not be
            retained beyond the query that requested it.

        Raises:
            TileUnavailableError: The file could not be read or decoded.
            TileLoadTimeoutError: ``timeout`` elapsed before the load finished.
        """
        with self._lock:
            raster = self._slots.get(key)
            if raster is not None:
                self._slots.move_to_end(key)
                self._hits += 1
                return raster
            self._misses += 1
            fut = self._inflight.get(key)
            if fut is None:
                logger.debug('Cache miss for tile %s, loading', key)
                fut = self._executor.submit(self._load, key)
                self._inflight[key] = fut

        # Своя обёртка на цикле вызывающего, общая загрузка не отменяется
        waiter = asyncio.shield(asyncio.wrap_future(fut))
        if timeout is None:
            return await waiter
        try:
            return await asyncio.wait_for(waiter, timeout)
        except asyncio.TimeoutError:
            logger.warning('Timed out after %.3fs waiting for tile %s', timeout, key)
            raise TileLoadTimeoutError(key, timeout) from None

    def _read_and_decode(self, key: TileKey) -> Raster:
        entry = self._catalog.entry(key)
        data = self._reader(entry.path)
        return self._decoder(data)

    def _load(self, key: TileKey) -> Raster:
        """Read, decode and insert one tile. Runs in the decode pool."""
        try:
            raster = self._read_and_decode(key)
        except Exception as e:
            with self._lock:
                self._failures += 1
            logger.warning('Tile %s unavailable: %s', key, e)
            raise TileUnavailableError(key, e) from e
        else:
            self._insert(key, raster)
            return raster
        finally:
            with self._lock:
                self._loads += 1
                self._inflight.pop(key, None)

    def _over_capacity(self, incoming: int) -> bool:
        max_tiles = self.max_tiles
        max_bytes = self.max_bytes
        if max_tiles is not None and len(self._slots) + 1 > max_tiles:
            return True
        return max_bytes is not None and self._bytes + incoming > max_bytes

    def _insert(self, key: TileKey, raster: Raster) -> None:
        size = raster.nbytes
        max_bytes = self.max_bytes
        if max_bytes is not None and size > max_bytes:
            logger.warning(
                'Tile %s (%d bytes) exceeds the cache byte budget %d, not cached',
                key,
                size,
                max_bytes,
            )
            return
        with self._lock:
            previous = self._slots.pop(key, None)
            if previous is not None:
                self._bytes -= previous.nbytes
            while self._slots and self._over_capacity(size):
                old_key, old = self._slots.popitem(last=False)
                self._bytes -= old.nbytes
                self._evictions += 1
                logger.debug('Evicted tile %s (%d bytes)', old_key, old.nbytes)
            self._slots[key] = raster
            self._bytes += size
