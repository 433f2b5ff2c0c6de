"""Separable interpolation stencils over a regular grid.

A stencil along one axis is a list of ``(index, weight)`` pairs. Indices are
relative to the anchor tile and may fall outside it; the engine resolves them
through neighbouring tiles. Samples with zero weight are never included.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from shared.constants import BICUBIC_KEYS_A, GRID_SNAP_EPSILON, Interpolation

if TYPE_CHECKING:
    from collections.abc import Sequence

AxisStencil = list[tuple[int, float]]


def snap(x: float, eps: float = GRID_SNAP_EPSILON) -> float:
    """Round a fractional grid position onto a grid line when it is within ``eps``."""
    nearest = round(x)
    if abs(x - nearest) < eps:
        return float(nearest)
    return x


def nearest_axis(x: float) -> AxisStencil:
    return [(math.floor(x + 0.5), 1.0)]


def linear_axis(x: float) -> AxisStencil:
    i0 = math.floor(x)
    f = x - i0
    if f == 0.0:
        return [(i0, 1.0)]
    return [(i0, 1.0 - f), (i0 + 1, f)]


def keys_weight(t: float, a: float = BICUBIC_KEYS_A) -> float:
    """Keys cubic convolution kernel (a = -0.5 is Catmull-Rom)."""
    t = abs(t)
    if t <= 1.0:
        return (a + 2.0) * t**3 - (a + 3.0) * t**2 + 1.0
    if t < 2.0:
        return a * t**3 - 5.0 * a * t**2 + 8.0 * a * t - 4.0 * a
    return 0.0


def cubic_axis(x: float, a: float = BICUBIC_KEYS_A) -> AxisStencil:
    i0 = math.floor(x)
    f = x - i0
    if f == 0.0:
        return [(i0, 1.0)]
    stencil = [(i0 + k, keys_weight(f - k, a)) for k in (-1, 0, 1, 2)]
    return [(i, w) for i, w in stencil if w != 0.0]


def axis_stencil(x: float, method: Interpolation) -> AxisStencil:
    if method is Interpolation.NEAREST:
        return nearest_axis(x)
    if method is Interpolation.BICUBIC:
        return cubic_axis(x)
    return linear_axis(x)


def collapse_axis(x: float, size: int) -> AxisStencil:
    """Single nearest index clamped to ``[0, size)``: the axis reduced to order zero."""
    i = min(max(math.floor(x + 0.5), 0), size - 1)
    return [(i, 1.0)]


def fallback_methods(method: Interpolation) -> tuple[Interpolation, ...]:
    """Methods to try in order before collapsing axes."""
    if method is Interpolation.BICUBIC:
        return (Interpolation.BICUBIC, Interpolation.BILINEAR)
    return (method,)


def blend(values: Sequence[float], weights: Sequence[float]) -> float:
    """Weighted sum along one axis.

    Two-point blends use the lerp form so equal inputs give exactly that value
    and the result never leaves ``[min, max]`` of the inputs.
    """
    if len(values) == 1:
        return float(values[0])
    if len(values) == 2:  # noqa: PLR2004
        v0, v1 = values
        return float(v0 + (v1 - v0) * weights[1])
    return math.fsum(v * w for v, w in zip(values, weights, strict=True))


def interpolate(
    grid: Sequence[Sequence[float]],
    row_stencil: AxisStencil,
    col_stencil: AxisStencil,
) -> float:
    """Combine a ``len(row_stencil) x len(col_stencil)`` sample grid."""
    col_weights = [w for _, w in col_stencil]
    row_weights = [w for _, w in row_stencil]
    per_row = [blend(row, col_weights) for row in grid]
    return blend(per_row, row_weights)
