"""Tile catalog: grid-sheet keys, extents, spatial lookup and adjacency.

A catalog is built once (directory scan or manifest) and is read-only
afterwards, so it can be shared between concurrent queries without locking.
Files that cannot be read or decoded are recorded as skipped rather than
aborting the build; origins claimed twice are recorded as anomalies.
"""

from __future__ import annotations

import logging
import math
import re
import warnings
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING

from domain.errors import (
    CatalogEmptyError,
    CatalogOverlapWarning,
    DemError,
    HeaderInvalidError,
    NotCoveredError,
)
from domain.models import DirectorySource, ManifestSource
from shared.constants import (
    DEFAULT_MAX_DIMENSION,
    EDGE_MATCH_TOLERANCE_M,
    SHEET_KEY_UNIT_M,
    SHEET_NAME_PATTERN,
    TILE_FILE_SUFFIX,
    Direction,
)
from tiles.codec import TileHeader, peek_header
from tiles.loader import TileOpener, open_local, read_tile_prefix

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

    from geo.geometry import Extent

logger = logging.getLogger(__name__)

_SHEET_RE = re.compile(SHEET_NAME_PATTERN)


@dataclass(frozen=True, order=True)
class TileKey:
    """Tile identity: upper-left sample origin in whole metres.

    The kilometre sheet code is used for file naming only. Tiles whose
    origins fall inside the same kilometre still get distinct keys.
    """

    easting_m: int
    northing_m: int

    def __str__(self) -> str:
        return self.code

    @property
    def sheet(self) -> tuple[int, int]:
        """Kilometre sheet ``(easting_km, northing_km)`` holding the origin."""
        return self.easting_m // SHEET_KEY_UNIT_M, self.northing_m // SHEET_KEY_UNIT_M

    @property
    def offset_m(self) -> tuple[int, int]:
        return self.easting_m % SHEET_KEY_UNIT_M, self.northing_m % SHEET_KEY_UNIT_M

    @property
    def sheet_code(self) -> str:
        easting_km, northing_km = self.sheet
        return f'{easting_km:03d}_{northing_km:03d}'

    @property
    def code(self) -> str:
        """Sheet code, with metre offsets appended when the origin is off the kilometre grid."""
        de, dn = self.offset_m
        if not de and not dn:
            return self.sheet_code
        return f'{self.sheet_code}_{de:03d}_{dn:03d}'

    def file_name(self, prefix: str = '', *, exact: bool = False) -> str:
        """Tile file name by sheet code; ``exact`` also encodes the metre offsets."""
        head = f'{prefix}_' if prefix else ''
        code = self.code if exact else self.sheet_code
        return f'{head}{code}{TILE_FILE_SUFFIX}'

    def matches_name(self, named: TileKey) -> bool:
        """Whether a key parsed from a file name agrees with this one.

        A bare sheet code names any origin inside its kilometre.
        """
        if named == self:
            return True
        return named.offset_m == (0, 0) and named.sheet == self.sheet

    @classmethod
    def from_origin(cls, easting: float, northing: float) -> TileKey:
        return cls(round(easting), round(northing))

    @classmethod
    def from_sheet_code(cls, code: str) -> TileKey:
        key = cls.parse_filename(f'{code}{TILE_FILE_SUFFIX}')
        if key is None:
            msg = f'Invalid sheet code: {code!r}'
            raise ValueError(msg)
        return key

    @classmethod
    def parse_filename(cls, name: str) -> TileKey | None:
        """Key encoded in a tile file name, or None if the name does not follow the convention."""
        m = _SHEET_RE.match(name)
        if m is None:
            return None
        easting_km = int(m.group('easting_km'))
        northing_km = int(m.group('northing_km'))
        return cls(
            easting_km * SHEET_KEY_UNIT_M + int(m.group('easting_off') or 0),
            northing_km * SHEET_KEY_UNIT_M + int(m.group('northing_off') or 0),
        )


@dataclass(frozen=True)
class CatalogEntry:
    key: TileKey
    extent: Extent
    path: Path
    header: TileHeader


@dataclass(frozen=True)
class SkippedTile:
    """File left out of the catalog, with the reason."""

    path: Path
    error: Exception


@dataclass(frozen=True)
class CatalogAnomaly:
    """Two entries claiming the same origin or the same ground."""

    kind: str  # 'duplicate_key' | 'overlap'
    key: TileKey
    other: TileKey
    path: Path
    message: str


def _close(a: float, b: float) -> bool:
    return math.isclose(a, b, rel_tol=0.0, abs_tol=EDGE_MATCH_TOLERANCE_M)


class Catalog:
    """Immutable index of tiles by sheet key and by geographic extent.

    Usage:
        catalog = Catalog.build(DirectorySource(path=Path('data/dem0050')))
        key = catalog.lookup(462000.0, 101000.0)
        east = catalog.neighbors(key, Direction.EAST)
    """

    def __init__(
        self,
        entries: Sequence[CatalogEntry],
        *,
        skipped: Sequence[SkippedTile] = (),
        anomalies: Sequence[CatalogAnomaly] = (),
    ) -> None:
        if not entries:
            raise CatalogEmptyError(skipped)
        by_key: dict[TileKey, CatalogEntry] = {}
        for entry in entries:
            if entry.key in by_key:
                msg = f'Duplicate catalog key {entry.key}'
                raise ValueError(msg)
            by_key[entry.key] = entry

        self._entries: tuple[CatalogEntry, ...] = tuple(entries)
        self._by_key = MappingProxyType(by_key)
        self._bucket_size = max(
            max(e.extent.width for e in self._entries),
            max(e.extent.height for e in self._entries),
        )
        self._buckets = self._build_buckets()
        self.skipped: tuple[SkippedTile, ...] = tuple(skipped)
        self.anomalies: tuple[CatalogAnomaly, ...] = tuple(anomalies) + tuple(
            self._find_overlaps()
        )
        self._adjacency = MappingProxyType(self._build_adjacency())

    # --- construction

    @classmethod
    def build(
        cls,
        source: DirectorySource | ManifestSource,
        *,
        max_dimension: int = DEFAULT_MAX_DIMENSION,
        opener: TileOpener = open_local,
    ) -> Catalog:
        """Scan a directory or manifest and index every readable tile."""
        return build_catalog(source, max_dimension=max_dimension, opener=opener)

    def _bucket_of(self, easting: float, northing: float) -> tuple[int, int]:
        return (
            math.floor(easting / self._bucket_size),
            math.floor(northing / self._bucket_size),
        )

    def _buckets_for(self, extent: Extent) -> Iterator[tuple[int, int]]:
        bx0, by0 = self._bucket_of(extent.west, extent.south)
        bx1, by1 = self._bucket_of(extent.east, extent.north)
        for bx in range(bx0, bx1 + 1):
            for by in range(by0, by1 + 1):
                yield bx, by

    def _build_buckets(self) -> dict[tuple[int, int], list[CatalogEntry]]:
        buckets: dict[tuple[int, int], list[CatalogEntry]] = {}
        for entry in self._entries:
            for b in self._buckets_for(entry.extent):
                buckets.setdefault(b, []).append(entry)
        return buckets

    def _find_overlaps(self) -> list[CatalogAnomaly]:
        found: list[CatalogAnomaly] = []
        order = {e.key: i for i, e in enumerate(self._entries)}
        seen: set[tuple[TileKey, TileKey]] = set()
        for entry in self._entries:
            for b in self._buckets_for(entry.extent):
                for other in self._buckets.get(b, ()):
                    if order[other.key] >= order[entry.key]:
                        continue
                    pair = (other.key, entry.key)
                    if pair in seen or not other.extent.intersects(entry.extent):
                        continue
                    seen.add(pair)
                    msg = (
                        f'Tile {entry.key} ({entry.path}) overlaps earlier tile '
                        f'{other.key} ({other.path}); {other.key} wins'
                    )
                    logger.warning(msg)
                    found.append(
                        CatalogAnomaly(
                            kind='overlap',
                            key=other.key,
                            other=entry.key,
                            path=entry.path,
                            message=msg,
                        )
                    )
        return found

    def _build_adjacency(self) -> dict[tuple[TileKey, Direction], TileKey]:
        table: dict[tuple[TileKey, Direction], TileKey] = {}
        for entry in self._entries:
            ext = entry.extent
            spacing = entry.header.spacing

            east = self._entry_at(ext.east, ext.north)
            if (
                east is not None
                and east.key != entry.key
                and _close(east.extent.west, ext.east)
                and _close(east.extent.north, ext.north)
                and _close(east.header.spacing, spacing)
            ):
                table.setdefault((entry.key, Direction.EAST), east.key)
                table.setdefault((east.key, Direction.WEST), entry.key)

            south = self._entry_at(ext.west, ext.south)
            if (
                south is not None
                and south.key != entry.key
                and _close(south.extent.north, ext.south)
                and _close(south.extent.west, ext.west)
                and _close(south.header.spacing, spacing)
            ):
                table.setdefault((entry.key, Direction.SOUTH), south.key)
                table.setdefault((south.key, Direction.NORTH), entry.key)
        return table

    # --- queries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CatalogEntry]:
        return iter(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def keys(self) -> list[TileKey]:
        return [e.key for e in self._entries]

    def entry(self, key: TileKey) -> CatalogEntry:
        """Catalog entry for a key; raises KeyError when absent."""
        return self._by_key[key]

    @property
    def extent(self) -> Extent:
        """Bounding rectangle of all cataloged tiles."""
        total = self._entries[0].extent
        for entry in self._entries[1:]:
            total = total.union(entry.extent)
        return total

    def _matches(self, easting: float, northing: float) -> list[CatalogEntry]:
        candidates = self._buckets.get(self._bucket_of(easting, northing), ())
        return [c for c in candidates if c.extent.contains(easting, northing)]

    def _entry_at(self, easting: float, northing: float) -> CatalogEntry | None:
        matches = self._matches(easting, northing)
        return matches[0] if matches else None

    def lookup(self, easting: float, northing: float) -> TileKey:
        """Key of the tile whose extent contains the coordinate.

        Raises:
            NotCoveredError: No tile contains the coordinate.
        """
        matches = self._matches(easting, northing)
        if not matches:
            raise NotCoveredError(easting, northing)
        if len(matches) > 1:
            others = ', '.join(str(m.key) for m in matches[1:])
            msg = (
                f'Coordinate ({easting:.3f}, {northing:.3f}) is claimed by '
                f'{len(matches)} tiles; using {matches[0].key}, ignoring {others}'
            )
            logger.warning(msg)
            warnings.warn(msg, CatalogOverlapWarning, stacklevel=2)
        return matches[0].key

    def neighbors(self, key: TileKey, direction: Direction) -> TileKey | None:
        """Adjacent tile in a cardinal direction, or None at the edge of the data."""
        return self._adjacency.get((key, Direction(direction)))

    def neighbor_at(self, key: TileKey, d_row: int, d_col: int) -> TileKey | None:
        """Tile ``d_row`` rows (south positive) and ``d_col`` columns (east positive) away.

        Offsets are -1, 0 or 1. Diagonals are reached through either cardinal
        neighbour, horizontal step first.
        """
        vertical = {-1: Direction.NORTH, 1: Direction.SOUTH}.get(d_row)
        horizontal = {-1: Direction.WEST, 1: Direction.EAST}.get(d_col)
        if vertical is None and horizontal is None:
            return key
        if vertical is None:
            return self.neighbors(key, horizontal)
        if horizontal is None:
            return self.neighbors(key, vertical)
        for first, second in ((horizontal, vertical), (vertical, horizontal)):
            step = self.neighbors(key, first)
            if step is not None:
                found = self.neighbors(step, second)
                if found is not None:
                    return found
        return None

    def covering(self, extent: Extent) -> list[TileKey]:
        """Keys of all tiles intersecting a rectangle, in discovery order."""
        return [e.key for e in self._entries if e.extent.intersects(extent)]


def _discover(source: DirectorySource | ManifestSource) -> list[Path]:
    if isinstance(source, ManifestSource):
        return [Path(p) for p in source.paths]

    root = Path(source.path)
    if not root.is_dir():
        logger.error('Tile directory not found: %s', root)
        return []
    pattern_iter: Iterable[Path] = root.rglob('*') if source.recursive else root.glob('*')
    found: list[Path] = []
    for p in sorted(pattern_iter):
        if not p.is_file():
            continue
        if TileKey.parse_filename(p.name) is None:
            logger.debug('Ignoring %s: name does not follow the sheet convention', p)
            continue
        found.append(p)
    return found


def _read_entry(path: Path, max_dimension: int, opener: TileOpener) -> CatalogEntry:
    prefix = read_tile_prefix(path, opener=opener)
    header = peek_header(prefix, max_dimension=max_dimension)
    key = TileKey.from_origin(header.origin_easting, header.origin_northing)
    named = TileKey.parse_filename(path.name)
    if named is not None and not key.matches_name(named):
        msg = f'Sheet code {named} in file name does not match header origin {key}'
        raise HeaderInvalidError(msg)
    return CatalogEntry(key=key, extent=header.extent, path=path, header=header)


def build_catalog(
    source: DirectorySource | ManifestSource,
    *,
    max_dimension: int = DEFAULT_MAX_DIMENSION,
    opener: TileOpener = open_local,
) -> Catalog:
    """Build a catalog from a directory scan or an explicit manifest.

    Unreadable or corrupt files are skipped and reported in
    ``catalog.skipped``; a second file with the origin of an already
    cataloged tile is reported in ``catalog.anomalies``.

    Raises:
        CatalogEmptyError: No valid tile was found.
    """
    paths = _discover(source)
    entries: list[CatalogEntry] = []
    skipped: list[SkippedTile] = []
    anomalies: list[CatalogAnomaly] = []
    seen: dict[TileKey, CatalogEntry] = {}

    for path in paths:
        try:
            entry = _read_entry(path, max_dimension, opener)
        except (DemError, OSError) as e:
            logger.warning('Skipping tile %s: %s', path, e)
            skipped.append(SkippedTile(path=path, error=e))
            continue

        first = seen.get(entry.key)
        if first is not None:
            # Одинаковый угол: тот же лист либо тайл другого размера поверх него
            same = first.extent == entry.extent
            what = 'Duplicate tile' if same else 'Tile with the same origin as'
            msg = f'{what} {entry.key}: ignoring {path}, keeping {first.path}'
            logger.warning(msg)
            warnings.warn(msg, CatalogOverlapWarning, stacklevel=2)
            anomalies.append(
                CatalogAnomaly(
                    kind='duplicate_key' if same else 'overlap',
                    key=entry.key,
                    other=first.key,
                    path=path,
                    message=msg,
                )
            )
            continue
        seen[entry.key] = entry
        entries.append(entry)

    if not entries:
        logger.error('No valid tiles found (%d files skipped)', len(skipped))
        raise CatalogEmptyError(skipped)

    catalog = Catalog(entries, skipped=skipped, anomalies=anomalies)
    logger.info(
        'Catalog built: %d tiles, %d skipped, %d anomalies',
        len(catalog),
        len(catalog.skipped),
        len(catalog.anomalies),
    )
    return catalog
