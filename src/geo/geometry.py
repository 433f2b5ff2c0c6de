"""Planar geometry in the D96/TM grid (metres)."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

if TYPE_CHECKING:
    from collections.abc import Iterable


class GridPoint(NamedTuple):
    """Point in the flat grid system (easting, northing)."""

    easting: float
    northing: float

    def distance_sq(self, other: tuple[float, float]) -> float:
        de = self.easting - other[0]
        dn = self.northing - other[1]
        return de * de + dn * dn

    def distance_to(self, other: tuple[float, float]) -> float:
        """Distance in metres."""
        return math.sqrt(self.distance_sq(other))


@dataclass(frozen=True)
class Extent:
    """Axis-aligned rectangle.

    ``contains`` is half-open so that adjacent tile extents partition the
    plane: the west and north edges are inside, the east and south edges
    belong to the neighbouring rectangle.
    """

    west: float
    south: float
    east: float
    north: float

    def __post_init__(self) -> None:
        if self.east < self.west or self.north < self.south:
            msg = f'Degenerate extent: {self}'
            raise ValueError(msg)

    @classmethod
    def from_points(cls, points: Iterable[tuple[float, float]]) -> Extent:
        """Minimum rectangle containing all the points."""
        west = south = math.inf
        east = north = -math.inf
        for e, n in points:
            west = min(west, e)
            east = max(east, e)
            south = min(south, n)
            north = max(north, n)
        if west is math.inf:
            msg = 'Cannot build an extent from zero points'
            raise ValueError(msg)
        return cls(west=west, south=south, east=east, north=north)

    @classmethod
    def square(cls, center: tuple[float, float], radius: float) -> Extent:
        """Square with side ``2 * radius`` around ``center``."""
        e, n = center
        return cls(west=e - radius, south=n - radius, east=e + radius, north=n + radius)

    @property
    def width(self) -> float:
        return self.east - self.west

    @property
    def height(self) -> float:
        return self.north - self.south

    @property
    def center(self) -> GridPoint:
        return GridPoint(
            (self.west + self.east) / 2.0,
            (self.south + self.north) / 2.0,
        )

    def contains(self, easting: float, northing: float) -> bool:
        return self.west <= easting < self.east and self.south < northing <= self.north

    def intersects(self, other: Extent) -> bool:
        """True when the interiors overlap (touching edges do not count)."""
        return (
            self.west < other.east
            and other.west < self.east
            and self.south < other.north
            and other.south < self.north
        )

    def union(self, other: Extent) -> Extent:
        return Extent(
            west=min(self.west, other.west),
            south=min(self.south, other.south),
            east=max(self.east, other.east),
            north=max(self.north, other.north),
        )
