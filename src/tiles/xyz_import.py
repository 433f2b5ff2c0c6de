"""Import of the ASCII ``.xyz`` distribution into binary tiles.

Each ``.xyz`` file holds one ``x y height`` line per grid point of a sheet,
in D96/TM metres on a regular 50 m grid. Points are gridded into a raster
(row 0 northernmost) and written as one ``.d50`` tile per input file.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path

import numpy as np

from domain.errors import XyzFormatError
from shared.constants import (
    DEFAULT_NODATA_F32,
    DEM0050_SPACING_M,
    TILE_FORMAT_VERSION_PLAIN,
    XYZ_GRID_TOLERANCE,
)
from tiles.catalog import TileKey
from tiles.codec import Raster, SampleType, build_raster, encode

logger = logging.getLogger(__name__)

XYZ_SUFFIX = '.xyz'

_COMPONENT_NAMES = ('x', 'y', 'height')


def find_xyz_files(root: Path) -> list[Path]:
    """All ``.xyz`` files under ``root`` (recursive, sorted); other files are ignored."""
    return sorted(
        p for p in Path(root).rglob('*') if p.is_file() and p.suffix.lower() == XYZ_SUFFIX
    )


def _parse_float(token: str) -> float | None:
    try:
        return float(token)
    except ValueError:
        return None


def read_xyz_points(path: Path) -> np.ndarray:
    """Read an ``.xyz`` file into an ``(n, 3)`` float64 array.

    Tokens that are not numbers are ignored; blank lines are skipped.

    Raises:
        XyzFormatError: A line has fewer than three numeric components.
    """
    rows: list[tuple[float, float, float]] = []
    with Path(path).open(encoding='utf-8') as fh:
        for line_no, line in enumerate(fh, start=1):
            if not line.strip():
                continue
            values = [v for v in map(_parse_float, line.split()) if v is not None]
            if len(values) < len(_COMPONENT_NAMES):
                missing = len(values)
                msg = (
                    f'{path}:{line_no}: expected 3 components, '
                    f'missing {_COMPONENT_NAMES[missing]}'
                )
                raise XyzFormatError(msg, line_no=line_no, component=missing)
            rows.append((values[0], values[1], values[2]))
    logger.debug('Read %d points from %s', len(rows), path)
    return np.asarray(rows, dtype=np.float64).reshape(-1, 3)


def _grid_index(value: float, origin: float, spacing: float, what: str) -> int:
    pos = (value - origin) / spacing
    idx = round(pos)
    if abs(pos - idx) > XYZ_GRID_TOLERANCE:
        msg = f'{what} {value} is not on the {spacing} m grid anchored at {origin}'
        raise XyzFormatError(msg)
    return idx


def points_to_raster(
    points: np.ndarray,
    *,
    spacing: float = DEM0050_SPACING_M,
    nodata: float | int = DEFAULT_NODATA_F32,
    sample_type: SampleType = SampleType.FLOAT32,
    scale: float = 1.0,
    version: int = TILE_FORMAT_VERSION_PLAIN,
) -> Raster:
    """Grid ``x y height`` points into a raster.

    The upper-left sample is (min x, max y). Grid cells with no point get the
    nodata sentinel.

    Raises:
        XyzFormatError: No points, a point off the grid, or two different
            heights for the same grid cell.
    """
    pts = np.asarray(points, dtype=np.float64)
    if pts.size == 0:
        msg = 'Cannot build a raster from zero points'
        raise XyzFormatError(msg)
    west = float(pts[:, 0].min())
    north = float(pts[:, 1].max())
    cols = _grid_index(float(pts[:, 0].max()), west, spacing, 'x') + 1
    rows = _grid_index(north, float(pts[:, 1].min()), spacing, 'y') + 1

    values = np.full((rows, cols), np.nan, dtype=np.float64)
    for x, y, z in pts:
        c = _grid_index(x, west, spacing, 'x')
        r = _grid_index(north - y, 0.0, spacing, 'y')
        current = values[r, c]
        if not math.isnan(current) and current != z:
            msg = f'Conflicting heights {current} and {z} at ({x}, {y})'
            raise XyzFormatError(msg)
        values[r, c] = z

    holes = int(np.isnan(values).sum())
    if holes:
        logger.info('%d of %d grid cells have no point, stored as nodata', holes, values.size)
    return build_raster(
        values,
        origin_easting=west,
        origin_northing=north,
        spacing=spacing,
        nodata=nodata,
        sample_type=sample_type,
        scale=scale,
        version=version,
    )


def write_tile(raster: Raster, path: Path) -> Path:
    """Encode a raster and write it to ``path``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode(raster))
    return path


def convert_xyz_directory(
    src: Path,
    dst: Path,
    *,
    spacing: float = DEM0050_SPACING_M,
    nodata: float | int = DEFAULT_NODATA_F32,
    sample_type: SampleType = SampleType.FLOAT32,
    scale: float = 1.0,
    version: int = TILE_FORMAT_VERSION_PLAIN,
    prefix: str = '',
) -> list[Path]:
    """Convert every ``.xyz`` file under ``src`` into a ``.d50`` tile in ``dst``.

    Tiles are named by sheet code. When another origin in the same kilometre
    already took that name, the metre offsets are appended. A second file
    producing an already written origin is skipped with a warning.

    Returns:
        Paths of the written tiles, in input order.
    """
    written: dict[TileKey, Path] = {}
    names: set[str] = set()
    for xyz in find_xyz_files(src):
        raster = points_to_raster(
            read_xyz_points(xyz),
            spacing=spacing,
            nodata=nodata,
            sample_type=sample_type,
            scale=scale,
            version=version,
        )
        key = TileKey.from_origin(raster.header.origin_easting, raster.header.origin_northing)
        if key in written:
            logger.warning('Skipping %s: tile %s already written from another file', xyz, key)
            continue
        name = key.file_name(prefix)
        if name in names:
            # Другой тайл того же километра уже занял имя листа
            name = key.file_name(prefix, exact=True)
        names.add(name)
        written[key] = write_tile(raster, Path(dst) / name)
        logger.info('Converted %s -> %s', xyz, written[key])
    return list(written.values())
