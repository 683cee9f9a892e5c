"""
Unit tests for infill pattern generation.
"""

import math

import pytest
from shapely.geometry import LineString, box

from fiberslice.core.config import PartialInfillType, SolidInfillType
from fiberslice.slicing.infill_patterns import (
    bridge_angle,
    parallel_lines,
    partial_infill,
    partial_infill_spacing,
    solid_infill,
    solid_infill_angle,
    support_infill,
)


def _ys(lines):
    return sorted({round(line[0][1], 6) for line in lines})


@pytest.mark.unit
class TestParallelLines:
    """Tests for parallel_lines."""

    def test_horizontal_spacing(self):
        lines = parallel_lines(box(0.5, 0.5, 9.5, 9.5), 0.0, 2.0)
        assert _ys(lines) == pytest.approx([2.0, 4.0, 6.0, 8.0])
        for line in lines:
            assert LineString(line).length == pytest.approx(9.0)

    def test_anchored_to_origin(self):
        """Test line positions do not depend on where the area sits."""
        a = _ys(parallel_lines(box(0.5, 0.5, 9.5, 9.5), 0.0, 3.0))
        b = _ys(parallel_lines(box(0.5, 1.5, 9.5, 10.5), 0.0, 3.0))
        assert a == pytest.approx([3.0, 6.0, 9.0])
        assert b == pytest.approx([3.0, 6.0, 9.0])

    def test_concave_area_splits_lines(self):
        u_shape = box(0, 0, 10, 10).difference(box(3, 3, 7, 10))
        lines = parallel_lines(u_shape, 0.0, 2.0)
        assert sum(1 for line in lines if round(line[0][1]) == 4) == 2

    def test_invalid(self):
        assert parallel_lines(box(0, 0, 10, 10), 0.0, 0.0) == []


@pytest.mark.unit
class TestPartialInfill:
    """Tests for density-controlled patterns."""

    def test_spacing(self):
        assert partial_infill_spacing(0.4, 0.2) == pytest.approx(2.0)
        assert partial_infill_spacing(0.4, 1.0) == pytest.approx(0.4)
        assert partial_infill_spacing(0.4, 0.2, PartialInfillType.RECTILINEAR) == pytest.approx(4.0)
        assert math.isinf(partial_infill_spacing(0.4, 0.0))

    def test_linear_density(self):
        """Test measured line spacing matches width / density."""
        lines = partial_infill(box(0, 0, 20, 20), 0.5, 0.25, PartialInfillType.LINEAR)
        ys = _ys(lines)
        gaps = [b - a for a, b in zip(ys, ys[1:])]
        assert gaps == pytest.approx([2.0] * len(gaps))

    def test_rectilinear_two_families(self):
        lines = partial_infill(box(0, 0, 20, 20), 0.5, 0.25, PartialInfillType.RECTILINEAR)
        angles = {round(math.degrees(math.atan2(l[-1][1] - l[0][1], l[-1][0] - l[0][0]))) % 180 for l in lines}
        assert angles == {45, 135}

    def test_cubic_shifts_with_z(self):
        area = box(0, 0, 20, 20)
        low = partial_infill(area, 0.5, 0.25, PartialInfillType.CUBIC, z=0.0)
        high = partial_infill(area, 0.5, 0.25, PartialInfillType.CUBIC, z=1.0)
        assert low != high

    def test_zero_density(self):
        assert partial_infill(box(0, 0, 20, 20), 0.5, 0.0, PartialInfillType.LINEAR) == []


@pytest.mark.unit
class TestSolidInfill:
    """Tests for solid, bridge and support fills."""

    def test_angle_rotates(self):
        assert solid_infill_angle(0, SolidInfillType.RECTILINEAR) == 45.0
        assert solid_infill_angle(1, SolidInfillType.RECTILINEAR) == 165.0
        assert solid_infill_angle(1, SolidInfillType.RECTILINEAR_CUSTOM, 90.0) == 135.0

    def test_solid_covers_area(self):
        """Test solid lines one width apart cover the area."""
        area = box(0, 0, 10, 10)
        lines = solid_infill(area, 0.5, 0)
        covered = sum(LineString(line).length for line in lines) * 0.5
        assert covered == pytest.approx(area.area, rel=0.05)

    def test_bridge_picks_short_span(self):
        """Test a long thin gap is bridged across its narrow side."""
        assert bridge_angle(box(0, 0, 40, 4), 0.5) == 90.0

    def test_support_alternates(self):
        area = box(0, 0, 10, 10)
        even = support_infill(area, 2.0, 0)
        odd = support_infill(area, 2.0, 1)
        assert all(abs(l[0][1] - l[-1][1]) < 1e-9 for l in even)
        assert all(abs(l[0][0] - l[-1][0]) < 1e-9 for l in odd)
