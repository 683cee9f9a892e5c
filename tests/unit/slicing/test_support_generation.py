"""
Tests for support generation module.

Tests the per-layer overhang and the support areas carried to the bed.
"""

import pytest
from shapely.geometry import MultiPolygon, box

from fiberslice.slicing.support_generation import (
    generate_support_areas,
    overhang_area,
)


def _mp(*polys):
    return MultiPolygon(list(polys))


class TestOverhangArea:
    """Tests for the per-layer overhang."""

    def test_within_reach_is_supported(self):
        below = _mp(box(0, 0, 10, 10))
        above = _mp(box(0, 0, 10.2, 10))
        assert overhang_area(below, above, 0.6, 45.0).is_empty

    def test_beyond_reach(self):
        below = _mp(box(0, 0, 10, 10))
        above = _mp(box(0, 0, 15, 10))
        area = overhang_area(below, above, 0.5, 45.0)
        assert area.area == pytest.approx(4.5 * 10, rel=1e-3)


class TestGenerateSupportAreas:
    """Tests for support propagation."""

    def test_ledge_supported_to_bed(self):
        """A ledge at layer 3 is carried down to layer 0 beside the column."""
        column = _mp(box(0, 0, 10, 10))
        ledge = _mp(box(0, 0, 20, 10))
        areas = [column, column, column, ledge, ledge]
        supports = generate_support_areas(areas, [0.5] * 5, 45.0, 0.5)

        assert supports[3].is_empty
        assert supports[4].is_empty
        for support in supports[:3]:
            assert not support.is_empty
            assert support.intersection(column).area == pytest.approx(0.0, abs=1e-9)
            minx, _, maxx, _ = support.bounds
            assert minx == pytest.approx(10.5)
            assert maxx == pytest.approx(20.0)

    def test_no_overhang(self):
        column = _mp(box(0, 0, 10, 10))
        supports = generate_support_areas([column] * 4, [0.5] * 4, 45.0, 0.5)
        assert all(s.is_empty for s in supports)
