"""Elevation query engine over a tile catalog and raster cache.

The engine holds no mutable state of its own: every query reads the shared
catalog and goes through the cache for samples.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from domain.errors import DemError, EdgeOfCoverageError, NotCoveredError
from domain.models import EngineSettings, QuerySettings
from elevation.interpolation import (
    AxisStencil,
    axis_stencil,
    collapse_axis,
    fallback_methods,
    interpolate,
    snap,
)
from geo.geometry import GridPoint
from shared.constants import EdgeMode
from tiles.cache import RasterCache
from tiles.catalog import Catalog, TileKey
from tiles.loader import TileOpener, open_local

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterable

    from tiles.codec import Raster, TileHeader

logger = logging.getLogger(__name__)

BatchResult = float | DemError | None


class _MissingSample(Exception):
    """Stencil sample lies outside every cataloged tile."""

    def __init__(self, row: int, col: int, where: str) -> None:
        super().__init__(f'sample ({row}, {col}) {where}')
        self.row = row
        self.col = col
        self.where = where


@dataclass(frozen=True)
class ProfilePoint:
    """One sample of an elevation profile."""

    distance_m: float
    easting: float
    northing: float
    elevation_m: float | None
    error: DemError | None = None


class ElevationQueryEngine:
    """Point, batch and profile elevation queries.

    Usage:
        engine = ElevationQueryEngine(catalog, cache)
        z = await engine.elevation_at(462_025.0, 101_975.0)
        values = await engine.elevation_at_batch([(462_025.0, 101_975.0), ...])
        async for point in engine.profile(a, b, 100):
            ...
    """

    def __init__(
        self,
        catalog: Catalog,
        cache: RasterCache,
        settings: QuerySettings | None = None,
        *,
        geodetic_to_grid: Callable[[float, float], tuple[float, float]] | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            catalog: Immutable tile catalog.
            cache: Raster cache built over the same catalog.
            settings: Interpolation, edge handling and batch settings.
            geodetic_to_grid: Optional ``(lat, lon) -> (easting, northing)``
                transform used by :meth:`elevation_at_latlon`.
        """
        self._catalog = catalog
        self._cache = cache
        self._settings = settings or QuerySettings()
        self._geodetic_to_grid = geodetic_to_grid

    @classmethod
    def from_settings(
        cls,
        settings: EngineSettings,
        *,
        geodetic_to_grid: Callable[[float, float], tuple[float, float]] | None = None,
        opener: TileOpener = open_local,
    ) -> ElevationQueryEngine:
        """Build catalog, cache and engine from one settings object."""
        catalog = Catalog.build(
            settings.catalog.source,
            max_dimension=settings.catalog.max_dimension,
            opener=opener,
        )
        cache = RasterCache(
            catalog,
            settings.cache,
            opener=opener,
            max_dimension=settings.catalog.max_dimension,
        )
        return cls(catalog, cache, settings.query, geodetic_to_grid=geodetic_to_grid)

    @property
    def catalog(self) -> Catalog:
        return self._catalog

    @property
    def cache(self) -> RasterCache:
        return self._cache

    @property
    def settings(self) -> QuerySettings:
        return self._settings

    def _timeout(self, timeout: float | None) -> float | None:
        return self._settings.tile_timeout_s if timeout is None else timeout

    # --- point queries

    async def elevation_at(
        self, easting: float, northing: float, *, timeout: float | None = None
    ) -> float | None:
        """Elevation at a grid coordinate.

        Returns:
            Elevation in metres, or None when a stencil sample is nodata.

        Raises:
            NotCoveredError: No cataloged tile contains the coordinate.
            EdgeOfCoverageError: Strict edge mode and the stencil needs an
                absent neighbour tile.
            TileUnavailableError: A required tile failed to load.
            TileLoadTimeoutError: A required tile did not load in time.
        """
        key = self._catalog.lookup(easting, northing)
        return await self._elevation_in(key, easting, northing, self._timeout(timeout))

    async def elevation_at_latlon(
        self, lat: float, lon: float, *, timeout: float | None = None
    ) -> float | None:
        """Elevation at a geodetic coordinate via the configured transform."""
        if self._geodetic_to_grid is None:
            msg = 'No geodetic_to_grid transform configured for this engine'
            raise RuntimeError(msg)
        easting, northing = self._geodetic_to_grid(lat, lon)
        return await self.elevation_at(easting, northing, timeout=timeout)

    async def _elevation_in(
        self,
        key: TileKey,
        easting: float,
        northing: float,
        timeout: float | None,
    ) -> float | None:
        header = self._catalog.entry(key).header
        row_f, col_f = header.grid_position(easting, northing)
        row_f = snap(row_f)
        col_f = snap(col_f)

        methods = fallback_methods(self._settings.interpolation)
        attempts: list[tuple[AxisStencil, AxisStencil]] = [
            (axis_stencil(row_f, m), axis_stencil(col_f, m)) for m in methods
        ]
        strict = self._settings.edge_mode is EdgeMode.STRICT
        if not strict:
            base = methods[-1]
            rows_full = axis_stencil(row_f, base)
            cols_full = axis_stencil(col_f, base)
            rows_one = collapse_axis(row_f, header.rows)
            cols_one = collapse_axis(col_f, header.cols)
            attempts += [
                (rows_full, cols_one),
                (rows_one, cols_full),
                (rows_one, cols_one),
            ]

        rasters: dict[TileKey, Raster] = {}
        last_missing: _MissingSample | None = None
        for attempt, (row_st, col_st) in enumerate(attempts):
            try:
                grid = await self._read_stencil(key, header, row_st, col_st, rasters, timeout)
            except _MissingSample as miss:
                if strict:
                    raise EdgeOfCoverageError(easting, northing, missing=str(miss)) from None
                last_missing = miss
                continue
            if attempt:
                logger.debug(
                    'Reduced stencil %dx%d at (%.3f, %.3f): %s',
                    len(row_st),
                    len(col_st),
                    easting,
                    northing,
                    last_missing,
                )
            if grid is None:
                return None
            return interpolate(grid, row_st, col_st)

        raise EdgeOfCoverageError(easting, northing, missing=str(last_missing))

    async def _read_stencil(
        self,
        key: TileKey,
        header: TileHeader,
        row_st: AxisStencil,
        col_st: AxisStencil,
        rasters: dict[TileKey, Raster],
        timeout: float | None,
    ) -> list[list[float]] | None:
        """Sample grid for a stencil, or None if any sample is nodata.

        Raises:
            _MissingSample: A sample falls where no cataloged tile exists.
        """
        # Сначала проверяем геометрию всех отсчётов, и только затем грузим тайлы
        located: list[list[tuple[TileKey, int, int]]] = []
        for r, _ in row_st:
            located.append([self._locate(key, header, r, c) for c, _ in col_st])

        nodata = False
        grid: list[list[float]] = []
        for row in located:
            values: list[float] = []
            for tile_key, tr, tc in row:
                raster = rasters.get(tile_key)
                if raster is None:
                    raster = await self._cache.get(tile_key, timeout=timeout)
                    rasters[tile_key] = raster
                value = float(raster.data[tr, tc])
                if raster.is_nodata(value):
                    nodata = True
                values.append(value)
            grid.append(values)
        return None if nodata else grid

    def _locate(
        self, key: TileKey, header: TileHeader, row: int, col: int
    ) -> tuple[TileKey, int, int]:
        """Tile and in-tile index of a sample addressed relative to the anchor tile."""
        d_row = -1 if row < 0 else (1 if row >= header.rows else 0)
        d_col = -1 if col < 0 else (1 if col >= header.cols else 0)
        if not d_row and not d_col:
            return key, row, col

        target = self._catalog.neighbor_at(key, d_row, d_col)
        if target is None:
            where = f'needs absent tile at offset ({d_row}, {d_col}) of {key}'
            raise _MissingSample(row, col, where)
        other = self._catalog.entry(target).header
        point = header.sample_coordinate(row, col)
        tr_f, tc_f = other.grid_position(point.easting, point.northing)
        tr = round(tr_f)
        tc = round(tc_f)
        if not (0 <= tr < other.rows and 0 <= tc < other.cols):
            raise _MissingSample(row, col, f'falls outside neighbour tile {target}')
        return target, tr, tc

    # --- batch queries

    async def elevation_at_batch(
        self,
        coordinates: Iterable[tuple[float, float]],
        *,
        timeout: float | None = None,
    ) -> list[BatchResult]:
        """Elevations for many coordinates, in input order.

        Coordinates are grouped by tile so each tile is fetched once per
        group; up to ``batch_concurrency`` groups run at a time. Each result
        slot holds a float, None (nodata) or the DemError for that point.
        Any other exception cancels the remaining groups and propagates.
        Cancelling the batch discards every partial result.
        """
        points = [(float(e), float(n)) for e, n in coordinates]
        results: list[BatchResult] = [None] * len(points)
        groups: dict[TileKey, list[int]] = {}
        for i, (e, n) in enumerate(points):
            try:
                key = self._catalog.lookup(e, n)
            except NotCoveredError as err:
                results[i] = err
                continue
            groups.setdefault(key, []).append(i)

        limit = asyncio.Semaphore(self._settings.batch_concurrency)
        effective = self._timeout(timeout)

        async def run_group(key: TileKey, indices: list[int]) -> None:
            async with limit:
                for i in indices:
                    e, n = points[i]
                    try:
                        results[i] = await self._elevation_in(key, e, n, effective)
                    except DemError as err:
                        results[i] = err

        try:
            async with asyncio.TaskGroup() as tg:
                for key, indices in groups.items():
                    tg.create_task(run_group(key, indices))
        except ExceptionGroup as group:
            # DemError остаётся в ячейке точки, сюда доходят только сбои
            raise group.exceptions[0] from None
        logger.debug('Batch of %d points over %d tiles done', len(points), len(groups))
        return results

    # --- profiles

    def profile(
        self,
        start: tuple[float, float],
        end: tuple[float, float],
        sample_count: int,
        *,
        timeout: float | None = None,
    ) -> ElevationProfile:
        """Lazy profile of ``sample_count`` evenly spaced points from start to end."""
        return ElevationProfile(
            self, GridPoint(*start), GridPoint(*end), sample_count, timeout=timeout
        )


class ElevationProfile:
    """Restartable async sequence of :class:`ProfilePoint`.

    Each ``async for`` starts a fresh pass; nothing is shared between passes.
    """

    def __init__(
        self,
        engine: ElevationQueryEngine,
        start: GridPoint,
        end: GridPoint,
        sample_count: int,
        *,
        timeout: float | None = None,
    ) -> None:
        if sample_count < 1:
            msg = f'sample_count must be at least 1, got {sample_count}'
            raise ValueError(msg)
        self._engine = engine
        self.start = start
        self.end = end
        self.sample_count = int(sample_count)
        self._timeout = timeout

    def __len__(self) -> int:
        return self.sample_count

    @property
    def length_m(self) -> float:
        return self.start.distance_to(self.end)

    def positions(self) -> list[tuple[float, GridPoint]]:
        """``(distance, point)`` pairs along the segment, endpoints included."""
        n = self.sample_count
        if n == 1:
            return [(0.0, self.start)]
        total = self.length_m
        de = self.end.easting - self.start.easting
        dn = self.end.northing - self.start.northing
        out: list[tuple[float, GridPoint]] = []
        for i in range(n):
            if i == n - 1:
                out.append((total, self.end))
                continue
            t = i / (n - 1)
            point = GridPoint(self.start.easting + de * t, self.start.northing + dn * t)
            out.append((total * t, point))
        return out

    def __aiter__(self) -> AsyncIterator[ProfilePoint]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ProfilePoint]:
        for distance, point in self.positions():
            try:
                value = await self._engine.elevation_at(
                    point.easting, point.northing, timeout=self._timeout
                )
            except DemError as err:
                yield ProfilePoint(distance, point.easting, point.northing, None, err)
                continue
            yield ProfilePoint(distance, point.easting, point.northing, value)

    async def collect(self) -> list[ProfilePoint]:
        return [p async for p in self]

