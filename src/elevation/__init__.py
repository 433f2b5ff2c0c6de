"""Elevation module - point, batch and profile queries over DEM tiles."""

from .engine import ElevationProfile, ElevationQueryEngine, ProfilePoint

__all__ = [
    'ElevationProfile',
    'ElevationQueryEngine',
    'ProfilePoint',
]
