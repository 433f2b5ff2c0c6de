"""Tests for interpolation stencils."""

import pytest

from elevation.interpolation import (
    axis_stencil,
    blend,
    collapse_axis,
    cubic_axis,
    fallback_methods,
    interpolate,
    keys_weight,
    linear_axis,
    nearest_axis,
    snap,
)
from shared.constants import Interpolation


class TestSnap:
    """Tests for snapping onto grid lines."""

    def test_snaps_within_epsilon(self):
        assert snap(3.0 + 1e-12) == 3.0
        assert snap(3.0 - 1e-12) == 3.0

    def test_keeps_fractional_position(self):
        assert snap(3.25) == 3.25


class TestAxisStencils:
    """Tests for the one-dimensional stencils."""

    def test_nearest_rounds_half_up(self):
        assert nearest_axis(2.4) == [(2, 1.0)]
        assert nearest_axis(2.5) == [(3, 1.0)]

    def test_linear_weights(self):
        assert linear_axis(4.25) == [(4, 0.75), (5, 0.25)]

    def test_linear_on_grid_line_is_single_sample(self):
        assert linear_axis(9.0) == [(9, 1.0)]

    def test_cubic_on_grid_line_is_single_sample(self):
        assert cubic_axis(9.0) == [(9, 1.0)]

    def test_cubic_half_way(self):
        stencil = cubic_axis(4.5)
        assert [i for i, _ in stencil] == [3, 4, 5, 6]
        assert [w for _, w in stencil] == pytest.approx([-0.0625, 0.5625, 0.5625, -0.0625])

    @pytest.mark.parametrize('x', [0.1, 0.33, 0.5, 0.9, -1.7])
    def test_cubic_weights_sum_to_one(self, x):
        assert sum(w for _, w in cubic_axis(x)) == pytest.approx(1.0)

    def test_keys_kernel_support(self):
        assert keys_weight(0.0) == 1.0
        assert keys_weight(1.0) == 0.0
        assert keys_weight(2.0) == 0.0
        assert keys_weight(2.5) == 0.0

    def test_axis_stencil_dispatch(self):
        assert axis_stencil(1.5, Interpolation.NEAREST) == [(2, 1.0)]
        assert axis_stencil(1.5, Interpolation.BILINEAR) == [(1, 0.5), (2, 0.5)]
        assert len(axis_stencil(1.5, Interpolation.BICUBIC)) == 4

    def test_negative_positions_reach_previous_tile(self):
        assert linear_axis(-0.5) == [(-1, 0.5), (0, 0.5)]


class TestCollapseAxis:
    """Tests for reducing an axis to a single sample."""

    def test_clamped_high(self):
        assert collapse_axis(9.6, 10) == [(9, 1.0)]

    def test_clamped_low(self):
        assert collapse_axis(-0.7, 10) == [(0, 1.0)]

    def test_inside(self):
        assert collapse_axis(4.4, 10) == [(4, 1.0)]


class TestFallbackMethods:
    """Tests for the reduction order."""

    def test_bicubic_falls_back_to_bilinear(self):
        assert fallback_methods(Interpolation.BICUBIC) == (
            Interpolation.BICUBIC,
            Interpolation.BILINEAR,
        )

    @pytest.mark.parametrize('method', [Interpolation.BILINEAR, Interpolation.NEAREST])
    def test_other_methods_have_no_fallback(self, method):
        assert fallback_methods(method) == (method,)


class TestBlend:
    """Tests for blend and interpolate."""

    def test_equal_values_are_exact(self):
        assert blend([300.0, 300.0], [0.9, 0.1]) == 300.0
        assert blend([300.0, 300.0, 300.0, 300.0], [-0.0625, 0.5625, 0.5625, -0.0625]) == 300.0

    def test_single_value(self):
        assert blend([7], [1.0]) == 7.0

    def test_lerp_stays_in_range(self):
        value = blend([0.1, 0.7], [0.7, 0.3])
        assert 0.1 <= value <= 0.7
        assert value == pytest.approx(0.28)

    def test_bilinear_grid(self):
        grid = [[0.0, 10.0], [20.0, 30.0]]
        assert interpolate(grid, linear_axis(0.5), linear_axis(0.5)) == pytest.approx(15.0)

    def test_bicubic_reproduces_linear_ramp(self):
        rows, cols = cubic_axis(1.3), cubic_axis(2.6)
        grid = [[2.0 * c - r for c, _ in cols] for r, _ in rows]
        assert interpolate(grid, rows, cols) == pytest.approx(2.0 * 2.6 - 1.3)
