from __future__ import annotations

from pyproj import CRS, Transformer

from shared.constants import (
    D96_TM_CODE,
    D96_VALID_LAT_MAX,
    D96_VALID_LAT_MIN,
    D96_VALID_LON_MAX,
    D96_VALID_LON_MIN,
    WGS84_CODE,
)


def build_d96_tm_crs() -> CRS:
    """Slovenian national grid D96/TM (EPSG:3794)."""
    return CRS.from_epsg(D96_TM_CODE)


def validate_d96_bounds(lat: float, lon: float) -> None:
    """Validate that geodetic coordinates lie in the D96/TM area of use."""
    if not (
        D96_VALID_LON_MIN <= lon <= D96_VALID_LON_MAX
        and D96_VALID_LAT_MIN <= lat <= D96_VALID_LAT_MAX
    ):
        msg = (
            f'Точка ({lat:.5f}, {lon:.5f}) вне зоны применимости D96/TM'
        )
        raise ValueError(msg)


class GeodeticToGrid:
    """
    WGS84 latitude/longitude to D96/TM easting/northing.

    Instances are callables ``(lat, lon) -> (easting, northing)`` that the
    elevation engine accepts as its geodetic transform.
    """

    def __init__(self, *, check_bounds: bool = True) -> None:
        wgs84 = CRS.from_epsg(WGS84_CODE)
        d96 = build_d96_tm_crs()
        self._forward = Transformer.from_crs(wgs84, d96, always_xy=True)
        self._inverse = Transformer.from_crs(d96, wgs84, always_xy=True)
        self.check_bounds = check_bounds

    def __call__(self, lat: float, lon: float) -> tuple[float, float]:
        if self.check_bounds:
            validate_d96_bounds(lat, lon)
        easting, northing = self._forward.transform(lon, lat)
        return float(easting), float(northing)

    def grid_to_geodetic(self, easting: float, northing: float) -> tuple[float, float]:
        """Inverse transform, returns (lat, lon)."""
        lon, lat = self._inverse.transform(easting, northing)
        return float(lat), float(lon)


def build_geodetic_to_grid(*, check_bounds: bool = True) -> GeodeticToGrid:
    return GeodeticToGrid(check_bounds=check_bounds)
