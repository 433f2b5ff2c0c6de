"""DEM 0050 tiles: binary codec, catalog and raster cache.

This module provides:
- codec: decode/encode of one tile file, header peeking
- Catalog: origin keys, extents, lookup and adjacency
- RasterCache: bounded LRU pool of decoded rasters
- xyz_import: conversion of the ASCII .xyz distribution
"""

from tiles.cache import CacheStats, RasterCache
from tiles.catalog import (
    Catalog,
    CatalogAnomaly,
    CatalogEntry,
    SkippedTile,
    TileKey,
    build_catalog,
)
from tiles.codec import Raster, SampleType, TileHeader, build_raster, decode, encode, peek_header

__all__ = [
    'CacheStats',
    'Catalog',
    'CatalogAnomaly',
    'CatalogEntry',
    'Raster',
    'RasterCache',
    'SampleType',
    'SkippedTile',
    'TileHeader',
    'TileKey',
    'build_catalog',
    'build_raster',
    'decode',
    'encode',
    'peek_header',
]
