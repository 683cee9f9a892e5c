"""
Tests for toolpath data structures, path ordering and seam placement.
"""

import pytest

from fiberslice.slicing.seam_control import (
    place_seam_sharpest,
    rotate_contour,
    sharpest_corner_index,
    turn_angle,
)
from fiberslice.slicing.toolpath import (
    Feature,
    Region,
    RegionKind,
    ToolPath,
    optimize_path_order,
)


def _line(a, b, feature=Feature.INFILL):
    return ToolPath(points=[a, b], feature=feature)


class TestToolPath:
    """Tests for ToolPath."""

    def test_length(self):
        path = ToolPath(points=[(0, 0), (3, 0), (3, 4)], feature=Feature.INFILL)
        assert path.get_length() == pytest.approx(7.0)
        assert path.cumulative_lengths() == pytest.approx([0.0, 3.0, 7.0])

    def test_point_at(self):
        path = ToolPath(points=[(0, 0), (3, 0), (3, 4)], feature=Feature.INFILL)
        assert path.point_at(1.5) == pytest.approx((1.5, 0.0))
        assert path.point_at(5.0) == pytest.approx((3.0, 2.0))
        assert path.point_at(-1.0) == (0, 0)
        assert path.point_at(100.0) == (3, 4)

    def test_reverse_keeps_identity(self):
        path = ToolPath(points=[(0, 0), (1, 0)], feature=Feature.WALL_OUTER, closed=False, wall=1)
        rev = path.reverse()
        assert rev.points == [(1, 0), (0, 0)]
        assert rev.feature == Feature.WALL_OUTER
        assert rev.wall == 1

    def test_empty_path(self):
        with pytest.raises(ValueError):
            ToolPath(points=[], feature=Feature.INFILL).get_start_point()

    def test_perimeter_features(self):
        assert Feature.WALL_OUTER.is_perimeter
        assert Feature.INTERIOR_WALL_INNER.is_perimeter
        assert not Feature.SOLID_INFILL.is_perimeter

    def test_region_length(self):
        region = Region(RegionKind.SOLID_INFILL, Feature.SOLID_INFILL, [_line((0, 0), (2, 0)), _line((0, 1), (3, 1))])
        assert region.get_length() == pytest.approx(5.0)


class TestOptimizePathOrder:
    """Tests for nearest-neighbour ordering."""

    def test_nearest_first(self):
        far = _line((50, 50), (60, 50))
        near = _line((1, 0), (5, 0))
        ordered = optimize_path_order([far, near])
        assert ordered[0].points[0] == (1, 0)

    def test_open_path_reversed(self):
        """An open path is entered from its closer end."""
        ordered = optimize_path_order([_line((10, 0), (0, 1))], start=(0, 0))
        assert ordered[0].points == [(0, 1), (10, 0)]

    def test_closed_loop_not_reversed(self):
        loop = ToolPath(points=[(5, 5), (6, 5), (6, 6), (5, 5)], feature=Feature.WALL_OUTER, closed=True)
        ordered = optimize_path_order([loop], start=(6, 6))
        assert ordered[0].points == loop.points

    def test_deterministic_ties(self):
        a = _line((1, 0), (2, 0))
        b = _line((0, 1), (0, 2))
        assert optimize_path_order([a, b])[0] is a
        assert optimize_path_order([b, a])[0] is b

    def test_chains_from_previous_end(self):
        first = _line((0, 0), (10, 0))
        close_to_end = _line((11, 0), (20, 0))
        close_to_start = _line((0, 2), (-10, 2))
        ordered = optimize_path_order([close_to_start, first, close_to_end])
        assert [p.points[0] for p in ordered] == [(0, 0), (11, 0), (0, 2)]


class TestSeamControl:
    """Tests for seam placement."""

    def test_turn_angle(self):
        assert turn_angle((0, 0), (1, 0), (2, 0)) == pytest.approx(0.0)
        assert turn_angle((0, 0), (1, 0), (1, 1)) == pytest.approx(90.0)
        assert turn_angle((0, 0), (1, 0), (0, 0)) == pytest.approx(180.0)

    def test_rotate_closed(self):
        ring = [(0, 0), (1, 0), (1, 1), (0, 0)]
        assert rotate_contour(ring, 1) == [(1, 0), (1, 1), (0, 0), (1, 0)]

    def test_sharpest_corner(self):
        """Test the seam lands on the acute corner of a triangle-ish loop."""
        ring = [(0, 0), (10, 0), (10, 1), (5, 1), (0, 0)]
        assert sharpest_corner_index(ring) == 0

    def test_square_seam_is_lowest_left(self):
        ring = [(1, 1), (2, 1), (2, 2), (1, 2), (1, 1)]
        rotated = [(2, 2), (1, 2), (1, 1), (2, 1), (2, 2)]
        assert place_seam_sharpest(rotated)[0] == (1, 1)
        assert place_seam_sharpest(ring)[0] == (1, 1)
