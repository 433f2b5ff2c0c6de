"""Binary codec for DEM 0050 tile files.

Layout (all multi-byte fields in the byte order declared at offset 6):

    0   magic b'D050'                    4 bytes
    4   format version                   uint8   (1 plain, 2 with payload CRC-32)
    5   sample type                      uint8   (1 float32, 2 int16, 3 int32)
    6   byte order                       uint8   (0 little, 1 big)
    7   reserved                         uint8   (0)
    8   origin easting                   float64 (upper-left sample)
    16  origin northing                  float64
    24  cell spacing                     float64
    32  column count                     uint32
    36  row count                        uint32
    40  scale factor                     float64 (1.0 for float32)
    48  payload CRC-32                   uint32  (version 2 only)
    ..  nodata sentinel                  raw sample type

Samples follow the header row-major, row 0 being the northernmost row.
"""

from __future__ import annotations

import logging
import math
import struct
import zlib
from dataclasses import dataclass, replace
from enum import IntEnum

import numpy as np

from domain.errors import (
    ChecksumMismatchError,
    HeaderInvalidError,
    TruncatedFileError,
    VersionUnsupportedError,
)
from geo.geometry import Extent, GridPoint
from shared.constants import (
    BYTE_ORDER_BIG,
    BYTE_ORDER_LITTLE,
    DEFAULT_MAX_DIMENSION,
    DEFAULT_NODATA_F32,
    SUPPORTED_FORMAT_VERSIONS,
    TILE_FORMAT_VERSION_CRC,
    TILE_FORMAT_VERSION_PLAIN,
    TILE_MAGIC,
)

logger = logging.getLogger(__name__)

_PREFIX = struct.Struct('4sBBBB')
_GEOMETRY_FMT = 'dddIId'
_GEOMETRY_SIZE = struct.calcsize('<' + _GEOMETRY_FMT)
_CRC_FMT = 'I'
_CRC_SIZE = 4


class SampleType(IntEnum):
    FLOAT32 = 1
    INT16 = 2
    INT32 = 3

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_SAMPLE_DTYPES[self])

    @property
    def is_scaled(self) -> bool:
        return self is not SampleType.FLOAT32


_SAMPLE_DTYPES = {
    SampleType.FLOAT32: 'f4',
    SampleType.INT16: 'i2',
    SampleType.INT32: 'i4',
}


@dataclass(frozen=True)
class TileHeader:
    """Geometry and encoding of one tile.

    ``nodata`` holds the raw sentinel in the sample type (an int for scaled
    integer tiles); ``nodata_value`` is the sentinel as it appears in the
    decoded raster.
    """

    origin_easting: float
    origin_northing: float
    spacing: float
    cols: int
    rows: int
    nodata: float | int
    sample_type: SampleType = SampleType.FLOAT32
    scale: float = 1.0
    version: int = TILE_FORMAT_VERSION_PLAIN
    byte_order: str = '<'
    checksum: int | None = None

    @property
    def sample_dtype(self) -> np.dtype:
        return self.sample_type.dtype.newbyteorder(self.byte_order)

    @property
    def sample_size(self) -> int:
        return self.sample_type.dtype.itemsize

    @property
    def header_size(self) -> int:
        crc = _CRC_SIZE if self.version == TILE_FORMAT_VERSION_CRC else 0
        return _PREFIX.size + _GEOMETRY_SIZE + crc + self.sample_size

    @property
    def payload_size(self) -> int:
        return self.rows * self.cols * self.sample_size

    @property
    def file_size(self) -> int:
        return self.header_size + self.payload_size

    @property
    def nodata_value(self) -> float:
        if self.sample_type.is_scaled:
            return float(self.nodata) * self.scale
        return float(self.nodata)

    @property
    def extent(self) -> Extent:
        return Extent(
            west=self.origin_easting,
            south=self.origin_northing - self.rows * self.spacing,
            east=self.origin_easting + self.cols * self.spacing,
            north=self.origin_northing,
        )

    def sample_coordinate(self, row: int, col: int) -> GridPoint:
        """Grid coordinate of sample (row, col)."""
        return GridPoint(
            self.origin_easting + col * self.spacing,
            self.origin_northing - row * self.spacing,
        )

    def grid_position(self, easting: float, northing: float) -> tuple[float, float]:
        """Fractional (row, col) of a coordinate relative to sample (0, 0)."""
        row = (self.origin_northing - northing) / self.spacing
        col = (easting - self.origin_easting) / self.spacing
        return row, col


@dataclass(eq=False)
class Raster:
    """Decoded tile: header plus a read-only ``(rows, cols)`` sample array."""

    header: TileHeader
    data: np.ndarray

    def __post_init__(self) -> None:
        expected = (self.header.rows, self.header.cols)
        if self.data.shape != expected:
            msg = f'Raster data shape {self.data.shape} does not match header {expected}'
            raise ValueError(msg)
        self.data.setflags(write=False)

    @property
    def nbytes(self) -> int:
        return int(self.data.nbytes)

    @property
    def extent(self) -> Extent:
        return self.header.extent

    @property
    def nodata_value(self) -> float:
        return self.header.nodata_value

    def nodata_mask(self, values: np.ndarray | None = None) -> np.ndarray:
        """Boolean mask of samples equal to the nodata sentinel."""
        arr = self.data if values is None else np.asarray(values)
        if math.isnan(self.nodata_value):
            return np.isnan(arr)
        return arr == self.nodata_value

    def is_nodata(self, value: float) -> bool:
        if math.isnan(self.nodata_value):
            return math.isnan(value)
        return value == self.nodata_value

    def sample(self, row: int, col: int) -> float | None:
        """Sample value, or None when it is the nodata sentinel."""
        value = float(self.data[row, col])
        return None if self.is_nodata(value) else value

    def equals(self, other: Raster) -> bool:
        """Identical header and samples (NaN samples compare equal)."""
        return self.header == other.header and np.array_equal(
            self.data, other.data, equal_nan=True
        )


def _byte_order_char(code: int) -> str:
    return '<' if code == BYTE_ORDER_LITTLE else '>'


def _byte_order_code(char: str) -> int:
    return BYTE_ORDER_LITTLE if char == '<' else BYTE_ORDER_BIG


def _validate_header(header: TileHeader, max_dimension: int) -> None:
    if not (math.isfinite(header.origin_easting) and math.isfinite(header.origin_northing)):
        msg = 'Tile origin is not finite'
        raise HeaderInvalidError(msg)
    if not math.isfinite(header.spacing) or header.spacing <= 0:
        msg = f'Cell spacing must be positive, got {header.spacing}'
        raise HeaderInvalidError(msg)
    if header.cols <= 0 or header.rows <= 0:
        msg = f'Tile dimensions must be non-zero, got {header.rows}x{header.cols}'
        raise HeaderInvalidError(msg)
    if header.cols > max_dimension or header.rows > max_dimension:
        msg = (
            f'Tile dimensions {header.rows}x{header.cols} exceed '
            f'the configured ceiling {max_dimension}'
        )
        raise HeaderInvalidError(msg)
    if not math.isfinite(header.scale) or header.scale <= 0:
        msg = f'Scale factor must be positive, got {header.scale}'
        raise HeaderInvalidError(msg)
    if not header.sample_type.is_scaled and header.scale != 1.0:
        msg = f'Float32 tiles must have scale 1.0, got {header.scale}'
        raise HeaderInvalidError(msg)


def _parse_header(buf: bytes | memoryview, max_dimension: int) -> TileHeader:
    if len(buf) < _PREFIX.size:
        raise TruncatedFileError(_PREFIX.size, len(buf))
    magic, version, type_code, order_code, reserved = _PREFIX.unpack_from(buf, 0)
    if magic != TILE_MAGIC:
        msg = f'Bad tile signature {bytes(magic)!r}'
        raise HeaderInvalidError(msg)
    if version not in SUPPORTED_FORMAT_VERSIONS:
        raise VersionUnsupportedError('format version', version)
    try:
        sample_type = SampleType(type_code)
    except ValueError:
        raise VersionUnsupportedError('sample type', type_code) from None
    if order_code not in (BYTE_ORDER_LITTLE, BYTE_ORDER_BIG):
        msg = f'Unknown byte order code {order_code}'
        raise HeaderInvalidError(msg)
    if reserved != 0:
        msg = f'Reserved header byte must be 0, got {reserved}'
        raise HeaderInvalidError(msg)

    order = _byte_order_char(order_code)
    crc_size = _CRC_SIZE if version == TILE_FORMAT_VERSION_CRC else 0
    header_size = _PREFIX.size + _GEOMETRY_SIZE + crc_size + sample_type.dtype.itemsize
    if len(buf) < header_size:
        raise TruncatedFileError(header_size, len(buf))

    origin_e, origin_n, spacing, cols, rows, scale = struct.unpack_from(
        order + _GEOMETRY_FMT, buf, _PREFIX.size
    )
    offset = _PREFIX.size + _GEOMETRY_SIZE
    checksum = None
    if crc_size:
        (checksum,) = struct.unpack_from(order + _CRC_FMT, buf, offset)
        offset += crc_size
    nodata_dtype = sample_type.dtype.newbyteorder(order)
    nodata = np.frombuffer(buf, dtype=nodata_dtype, count=1, offset=offset)[0].item()

    header = TileHeader(
        origin_easting=origin_e,
        origin_northing=origin_n,
        spacing=spacing,
        cols=cols,
        rows=rows,
        nodata=nodata,
        sample_type=sample_type,
        scale=scale,
        version=version,
        byte_order=order,
        checksum=checksum,
    )
    _validate_header(header, max_dimension)
    return header


def _pack_header(header: TileHeader, checksum: int | None) -> bytes:
    order = header.byte_order
    parts = [
        _PREFIX.pack(
            TILE_MAGIC,
            header.version,
            int(header.sample_type),
            _byte_order_code(order),
            0,
        ),
        struct.pack(
            order + _GEOMETRY_FMT,
            header.origin_easting,
            header.origin_northing,
            header.spacing,
            header.cols,
            header.rows,
            header.scale,
        ),
    ]
    if header.version == TILE_FORMAT_VERSION_CRC:
        parts.append(struct.pack(order + _CRC_FMT, checksum or 0))
    parts.append(np.array([header.nodata], dtype=header.sample_dtype).tobytes())
    return b''.join(parts)


def _raw_to_values(raw: np.ndarray, header: TileHeader) -> np.ndarray:
    if header.sample_type.is_scaled:
        return raw.astype(np.float64) * header.scale
    # Same kind, so this is a plain copy (byte swap at most): bits are preserved
    return raw.astype(np.float32)


def _values_to_raw(values: np.ndarray, header: TileHeader) -> np.ndarray:
    if not header.sample_type.is_scaled:
        return values.astype(header.sample_dtype)
    quantized = np.rint(values / header.scale)
    info = np.iinfo(header.sample_type.dtype)
    if quantized.size and (
        not np.isfinite(quantized).all()
        or quantized.min() < info.min
        or quantized.max() > info.max
    ):
        msg = f'Values do not fit {header.sample_type.name} with scale {header.scale}'
        raise ValueError(msg)
    return quantized.astype(header.sample_dtype)


def peek_header(
    prefix: bytes | memoryview, *, max_dimension: int = DEFAULT_MAX_DIMENSION
) -> TileHeader:
    """Decode only the header from the first bytes of a tile file.

    Args:
        prefix: At least ``header_size`` bytes from the start of the file.
        max_dimension: Ceiling on rows/columns; larger headers are rejected.

    Returns:
        Parsed header.

    Raises:
        TruncatedFileError: Prefix shorter than the header.
        HeaderInvalidError: Bad signature or impossible geometry.
        VersionUnsupportedError: Unknown format version or sample type.
    """
    return _parse_header(prefix, max_dimension)


def decode(
    data: bytes | memoryview, *, max_dimension: int = DEFAULT_MAX_DIMENSION
) -> Raster:
    """Decode a complete tile file.

    Args:
        data: Whole file contents.
        max_dimension: Ceiling on rows/columns; larger headers are rejected.

    Returns:
        Raster with float32 samples (float64 for scaled integer tiles).

    Raises:
        TruncatedFileError: File shorter than the declared geometry.
        HeaderInvalidError: Bad header or trailing bytes after the payload.
        VersionUnsupportedError: Unknown format version or sample type.
        ChecksumMismatchError: Version 2 payload CRC does not match.
    """
    header = _parse_header(data, max_dimension)
    expected = header.file_size
    if len(data) < expected:
        raise TruncatedFileError(expected, len(data))
    if len(data) > expected:
        msg = f'{len(data) - expected} trailing bytes after tile payload'
        raise HeaderInvalidError(msg)

    if header.checksum is not None:
        actual = zlib.crc32(memoryview(data)[header.header_size:])
        if actual != header.checksum:
            raise ChecksumMismatchError(header.checksum, actual)

    raw = np.frombuffer(
        data,
        dtype=header.sample_dtype,
        count=header.rows * header.cols,
        offset=header.header_size,
    ).reshape(header.rows, header.cols)
    logger.debug(
        'Decoded tile %dx%d at (%.1f, %.1f), %s',
        header.rows,
        header.cols,
        header.origin_easting,
        header.origin_northing,
        header.sample_type.name,
    )
    return Raster(header=header, data=_raw_to_values(raw, header))


def encode(raster: Raster) -> bytes:
    """Encode a raster back to the tile file format.

    Rasters produced by :func:`decode` are reproduced bit-for-bit. Scaled
    integer samples are quantized with round-half-to-even, so hand-built
    values off the ``scale`` lattice do not survive unchanged.
    """
    header = raster.header
    payload = _values_to_raw(raster.data, header).tobytes()
    checksum = zlib.crc32(payload) if header.version == TILE_FORMAT_VERSION_CRC else None
    return _pack_header(header, checksum) + payload


def build_raster(
    values: np.ndarray,
    *,
    origin_easting: float,
    origin_northing: float,
    spacing: float,
    nodata: float | int = DEFAULT_NODATA_F32,
    sample_type: SampleType = SampleType.FLOAT32,
    scale: float = 1.0,
    version: int = TILE_FORMAT_VERSION_PLAIN,
    byte_order: str = '<',
    max_dimension: int = DEFAULT_MAX_DIMENSION,
) -> Raster:
    """Build a raster from elevations in metres.

    NaN cells are replaced by the nodata sentinel. Values are passed through
    the tile encoding, so the result equals what :func:`decode` would return
    for the encoded file.
    """
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim != 2:
        msg = f'Expected a 2D array, got shape {arr.shape}'
        raise ValueError(msg)
    if byte_order not in ('<', '>'):
        msg = f'byte_order must be "<" or ">", got {byte_order!r}'
        raise ValueError(msg)
    if version not in SUPPORTED_FORMAT_VERSIONS:
        msg = f'Unsupported format version {version}'
        raise ValueError(msg)
    if sample_type.is_scaled:
        nodata = int(nodata)
    else:
        nodata = float(np.float32(nodata))
    rows, cols = arr.shape
    header = TileHeader(
        origin_easting=float(origin_easting),
        origin_northing=float(origin_northing),
        spacing=float(spacing),
        cols=cols,
        rows=rows,
        nodata=nodata,
        sample_type=sample_type,
        scale=float(scale),
        version=version,
        byte_order=byte_order,
    )
    _validate_header(header, max_dimension)
    if not math.isnan(header.nodata_value):
        arr = np.where(np.isnan(arr), header.nodata_value, arr)
    raw = _values_to_raw(arr, header)
    if version == TILE_FORMAT_VERSION_CRC:
        header = replace(header, checksum=zlib.crc32(raw.tobytes()))
    return Raster(header=header, data=_raw_to_values(raw, header))
