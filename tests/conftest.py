"""Pytest configuration and fixtures for DEM 0050 tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from domain.models import CacheSettings, DirectorySource, QuerySettings  # noqa: E402
from elevation.engine import ElevationQueryEngine  # noqa: E402
from tiles.cache import RasterCache  # noqa: E402
from tiles.catalog import Catalog, TileKey  # noqa: E402
from tiles.codec import build_raster, encode  # noqa: E402

# Тайл из сценария: начало (500000, 100000), шаг 50, 10x10, все 300, кроме (0, 0)
SCENARIO_ORIGIN = (500_000.0, 100_000.0)
SCENARIO_SPACING = 50.0
SCENARIO_NODATA = -9999.0

# (строка, столбец) листов в блоке 2x2 для проверки швов
SEAM_LAYOUT = ((0, 0), (0, 1), (1, 0), (1, 1))


def scenario_values() -> np.ndarray:
    values = np.full((10, 10), 300.0)
    values[0, 0] = SCENARIO_NODATA
    return values


def write_tile(directory: Path, values, origin, spacing=50.0, name=None, **kwargs) -> Path:
    """Encode a tile from an elevation array and write it under ``directory``."""
    raster = build_raster(
        np.asarray(values, dtype=np.float64),
        origin_easting=origin[0],
        origin_northing=origin[1],
        spacing=spacing,
        **kwargs,
    )
    if name is None:
        name = TileKey.from_origin(*origin).file_name()
    path = Path(directory) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode(raster))
    return path


def ramp_values(rows: int, cols: int, *, col0: int = 0, row0: int = 0) -> np.ndarray:
    """Plane z = 100 + 2*global_col - global_row, continuous across tiles."""
    r = np.arange(rows)[:, None] + row0
    c = np.arange(cols)[None, :] + col0
    return 100.0 + 2.0 * c - 1.0 * r


@pytest.fixture
def tile_writer(tmp_path):
    """Factory writing tiles into a per-test directory."""

    def _write(values, origin, spacing=50.0, name=None, **kwargs) -> Path:
        return write_tile(tmp_path, values, origin, spacing, name, **kwargs)

    return _write


@pytest.fixture
def scenario_dir(tmp_path) -> Path:
    write_tile(tmp_path, scenario_values(), SCENARIO_ORIGIN, SCENARIO_SPACING)
    return tmp_path


@pytest.fixture
def scenario_catalog(scenario_dir) -> Catalog:
    return Catalog.build(DirectorySource(path=scenario_dir))


@pytest.fixture
def seam_dir(tmp_path) -> Path:
    """2x2 block of 20x20 one-kilometre sheets sampling one continuous plane."""
    for i, j in SEAM_LAYOUT:
        origin = (500_000.0 + 1000.0 * j, 102_000.0 - 1000.0 * i)
        write_tile(tmp_path, ramp_values(20, 20, col0=20 * j, row0=20 * i), origin)
    return tmp_path


def make_engine(catalog: Catalog, *, max_tiles: int = 16, **query) -> ElevationQueryEngine:
    cache = RasterCache(catalog, CacheSettings(max_tiles=max_tiles))
    return ElevationQueryEngine(catalog, cache, QuerySettings(**query))
