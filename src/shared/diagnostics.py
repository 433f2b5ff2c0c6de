"""
Diagnostic utilities.

This module reports process memory and the state of the tile catalog and
raster cache.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any

import psutil

if TYPE_CHECKING:
    from tiles.cache import RasterCache
    from tiles.catalog import Catalog

logger = logging.getLogger(__name__)


def _mb(n_bytes: float) -> float:
    return round(n_bytes / 1024 / 1024, 2)


def get_memory_info(cache: RasterCache | None = None) -> dict[str, Any]:
    """
    Process and system memory, plus the share held by decoded rasters.

    With ``cache`` given, ``cache_resident_mb`` is the sample payload of the
    resident tiles and ``cache_share_percent`` its part of the process RSS.
    """
    info: dict[str, Any] = {}
    try:
        rss = psutil.Process().memory_info().rss
        available = psutil.virtual_memory().available
    except psutil.Error as e:
        return {'error': f'Failed to get memory info: {e}'}
    info['process_rss_mb'] = _mb(rss)
    info['system_available_mb'] = _mb(available)
    if cache is not None:
        resident = cache.resident_bytes
        info['cache_resident_mb'] = _mb(resident)
        info['cache_share_percent'] = round(100.0 * resident / rss, 1) if rss else 0.0
    return info


def get_thread_info() -> dict[str, Any]:
    """Get information about active threads (decode workers included)."""
    info: dict[str, Any] = {
        'active_count': threading.active_count(),
        'thread_names': [t.name for t in threading.enumerate()],
    }
    try:
        info['system_threads'] = psutil.Process().num_threads()
    except psutil.Error as e:
        logger.debug('Failed to get system thread count: %s', e)
    return info


def log_memory_usage(context: str = '', cache: RasterCache | None = None) -> None:
    info = get_memory_info(cache)
    suffix = f' ({context})' if context else ''
    if 'error' in info:
        logger.warning('Memory usage%s unavailable: %s', suffix, info['error'])
        return
    if cache is None:
        logger.info(
            'Memory usage%s: RSS=%.1fMB, available=%.1fMB',
            suffix,
            info['process_rss_mb'],
            info['system_available_mb'],
        )
    else:
        logger.info(
            'Memory usage%s: RSS=%.1fMB, available=%.1fMB, rasters=%.1fMB (%.1f%% of RSS)',
            suffix,
            info['process_rss_mb'],
            info['system_available_mb'],
            info['cache_resident_mb'],
            info['cache_share_percent'],
        )


def log_cache_stats(cache: RasterCache, context: str = '') -> None:
    """Log hit/miss counters and occupancy of a raster cache."""
    stats = cache.stats()
    context_label = f' ({context})' if context else ''
    lookups = stats.hits + stats.misses
    hit_rate = 100.0 * stats.hits / lookups if lookups else 0.0
    logger.info(
        'Raster cache%s: %d tiles, %.1fMB resident (limits: tiles=%s, bytes=%s); '
        'hits=%d misses=%d (%.1f%%) loads=%d failures=%d evictions=%d',
        context_label,
        stats.resident_tiles,
        stats.resident_bytes / 1024 / 1024,
        stats.max_tiles if stats.max_tiles is not None else '-',
        stats.max_bytes if stats.max_bytes is not None else '-',
        stats.hits,
        stats.misses,
        hit_rate,
        stats.loads,
        stats.failures,
        stats.evictions,
    )


def log_catalog_summary(catalog: Catalog) -> None:
    """Log catalog size, overall extent, skipped files and anomalies."""
    ext = catalog.extent
    logger.info(
        'Catalog: %d tiles covering E %.0f..%.0f, N %.0f..%.0f',
        len(catalog),
        ext.west,
        ext.east,
        ext.south,
        ext.north,
    )
    for skipped in catalog.skipped:
        logger.warning('  skipped %s: %s', skipped.path, skipped.error)
    for anomaly in catalog.anomalies:
        logger.warning('  %s: %s', anomaly.kind, anomaly.message)
