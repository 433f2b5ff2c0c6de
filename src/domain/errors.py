"""Error hierarchy for tile decoding, cataloging, caching and elevation queries.

Decode errors are fatal for a single file only. Catalog errors are fatal for
catalog construction. Cache errors are surfaced per query and leave the cache
usable for other keys. Query errors are expected outcomes a caller handles
explicitly; "no data" is not an error and is reported as ``None``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from tiles.catalog import SkippedTile, TileKey


class DemError(Exception):
    """Base error for DEM 0050 operations."""


# --- Decoding
class DecodeError(DemError):
    """A single tile file could not be decoded."""


class TruncatedFileError(DecodeError):
    """File is shorter than its header declares."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'Truncated tile: expected {expected} bytes, got {actual}'
        )


class HeaderInvalidError(DecodeError):
    """Header is malformed or declares impossible geometry."""


class VersionUnsupportedError(DecodeError):
    """Format version or sample type code is not recognized."""

    def __init__(self, field: str, value: int) -> None:
        self.field = field
        self.value = value
        super().__init__(f'Unsupported {field}: {value}')


class ChecksumMismatchError(DecodeError):
    """Sample payload does not match the CRC-32 stored in the header."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'Payload checksum mismatch: header {expected:#010x}, data {actual:#010x}'
        )


class XyzFormatError(DecodeError):
    """ASCII ``.xyz`` point file is malformed.

    Attributes:
        line_no: 1-based line number of the offending line (0 if not line-specific).
        component: Index of the first missing component (0 = x, 1 = y, 2 = height).
    """

    def __init__(self, message: str, line_no: int = 0, component: int | None = None) -> None:
        self.line_no = line_no
        self.component = component
        super().__init__(message)


# --- Catalog
class CatalogError(DemError):
    """Catalog could not be constructed."""


class CatalogEmptyError(CatalogError):
    """No valid tile was found in the catalog source."""

    def __init__(self, skipped: Sequence[SkippedTile] = ()) -> None:
        self.skipped = tuple(skipped)
        super().__init__(
            f'No valid tiles found ({len(self.skipped)} files skipped)'
        )


class CatalogOverlapWarning(UserWarning):
    """Two catalog entries claim the same ground; the first discovered wins."""


# --- Cache
class CacheError(DemError):
    """Tile could not be provided by the raster cache."""


class TileUnavailableError(CacheError):
    """Loading a tile failed (missing, unreadable or corrupt file)."""

    def __init__(self, key: TileKey, cause: BaseException) -> None:
        self.key = key
        self.cause = cause
        super().__init__(f'Tile {key} unavailable: {cause}')


class TileLoadTimeoutError(CacheError, TimeoutError):
    """Caller gave up waiting for a tile; the load itself keeps running."""

    def __init__(self, key: TileKey, timeout: float) -> None:
        self.key = key
        self.timeout = timeout
        super().__init__(f'Timed out after {timeout:.3f}s waiting for tile {key}')


# --- Queries
class QueryError(DemError):
    """Expected, non-exceptional query outcome other than a value."""


class NotCoveredError(QueryError):
    """No cataloged tile contains the coordinate."""

    def __init__(self, easting: float, northing: float) -> None:
        self.easting = easting
        self.northing = northing
        super().__init__(f'Coordinate ({easting:.3f}, {northing:.3f}) is not covered')


class EdgeOfCoverageError(QueryError):
    """The interpolation stencil needs a tile that is not in the catalog."""

    def __init__(self, easting: float, northing: float, missing: str = '') -> None:
        self.easting = easting
        self.northing = northing
        self.missing = missing
        detail = f' (missing {missing})' if missing else ''
        super().__init__(
            f'Coordinate ({easting:.3f}, {northing:.3f}) is at the edge of coverage{detail}'
        )
