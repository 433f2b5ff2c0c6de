"""Geo module - D96/TM coordinates and planar geometry."""

from .coords_d96 import (
    GeodeticToGrid,
    build_d96_tm_crs,
    build_geodetic_to_grid,
    validate_d96_bounds,
)
from .geometry import Extent, GridPoint

__all__ = [
    'Extent',
    'GeodeticToGrid',
    'GridPoint',
    'build_d96_tm_crs',
    'build_geodetic_to_grid',
    'validate_d96_bounds',
]
