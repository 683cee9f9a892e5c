"""
Toolpath data structures shared by the region, fiber and motion planners.

A layer plan is an ordered list of Regions. Each Region groups the paths of
one feature (outer wall, solid infill, support, ...) so speeds and widths can
be looked up once per region.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from shapely.geometry import MultiPolygon

Point2D = Tuple[float, float]


class Feature(Enum):
    """Toolpath purpose, used to select speed, acceleration, jerk and width."""

    WALL_OUTER = "WallOuter"  # outermost loop of an outer boundary
    WALL_INNER = "WallInner"  # further loops of an outer boundary
    INTERIOR_WALL_OUTER = "InteriorWallOuter"  # outermost loop around a hole
    INTERIOR_WALL_INNER = "InteriorWallInner"  # further loops around a hole
    TOP_SOLID_INFILL = "TopSolidInfill"
    SOLID_INFILL = "SolidInfill"
    INFILL = "Infill"
    BRIDGING = "Bridging"
    SUPPORT = "Support"
    SKIRT = "Skirt"
    BRIM = "Brim"
    TRAVEL = "Travel"

    @property
    def is_perimeter(self) -> bool:
        return self in _PERIMETERS


_PERIMETERS = {
    Feature.WALL_OUTER,
    Feature.WALL_INNER,
    Feature.INTERIOR_WALL_OUTER,
    Feature.INTERIOR_WALL_INNER,
}


class RegionKind(Enum):
    """Classification of a sub-area of a layer."""

    PERIMETER = "perimeter"
    SOLID_INFILL = "solid_infill"
    TOP_SOLID_INFILL = "top_solid_infill"
    PARTIAL_INFILL = "partial_infill"
    BRIDGE = "bridge"
    SUPPORT = "support"
    SKIRT = "skirt"
    BRIM = "brim"


@dataclass
class ToolPath:
    """
    One continuous extrusion path.

    Attributes:
        points: Path vertices in mm. Closed loops repeat the first point.
        feature: Feature identity of the path.
        closed: Whether the path is a loop.
        wall: Wall number for perimeter loops (1 = outermost), else None.
    """

    points: List[Point2D]
    feature: Feature
    closed: bool = False
    wall: Optional[int] = None

    def get_length(self) -> float:
        """Calculate total length of the path."""
        return sum(
            math.hypot(b[0] - a[0], b[1] - a[1])
            for a, b in zip(self.points, self.points[1:])
        )

    def cumulative_lengths(self) -> List[float]:
        """Path-length position of every vertex."""
        out = [0.0]
        for a, b in zip(self.points, self.points[1:]):
            out.append(out[-1] + math.hypot(b[0] - a[0], b[1] - a[1]))
        return out

    def get_start_point(self) -> Point2D:
        if not self.points:
            raise ValueError("Path has no points")
        return self.points[0]

    def get_end_point(self) -> Point2D:
        if not self.points:
            raise ValueError("Path has no points")
        return self.points[-1]

    def reverse(self) -> "ToolPath":
        """Return a new path with reversed point order."""
        return replace(self, points=list(reversed(self.points)))

    def point_at(self, position: float) -> Point2D:
        """Point at a path-length position, clamped to the path."""
        if position <= 0:
            return self.points[0]
        travelled = 0.0
        for a, b in zip(self.points, self.points[1:]):
            seg = math.hypot(b[0] - a[0], b[1] - a[1])
            if travelled + seg >= position and seg > 0:
                t = (position - travelled) / seg
                return (a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1]))
            travelled += seg
        return self.points[-1]


@dataclass
class Region:
    """
    A classified sub-area of a layer and the paths that fill it.

    Attributes:
        kind: Region classification.
        feature: Feature used for speed/width lookup of every path.
        paths: Paths in print order.
        area: The area the paths cover, when the region is area based.
        fiber_infill: True when this is the dedicated fiber infill pass.
    """

    kind: RegionKind
    feature: Feature
    paths: List[ToolPath] = field(default_factory=list)
    area: Optional[MultiPolygon] = None
    fiber_infill: bool = False

    def get_length(self) -> float:
        return sum(p.get_length() for p in self.paths)


def _distance(a: Point2D, b: Point2D) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


def optimize_path_order(
    paths: List[ToolPath],
    start: Point2D = (0.0, 0.0),
) -> List[ToolPath]:
    """
    Order paths to shorten travel moves.

    Greedy nearest neighbour from ``start`` with bi-directional check. Closed
    loops keep their direction and seam; open paths may be reversed.
    Ties are broken by input order, so the result is deterministic.
    """
    remaining = list(paths)
    ordered: List[ToolPath] = []
    current = start

    while remaining:
        best_idx = 0
        best_dist = float("inf")
        use_reversed = False
        for idx, path in enumerate(remaining):
            d_start = _distance(current, path.get_start_point())
            if d_start < best_dist:
                best_dist = d_start
                best_idx = idx
                use_reversed = False
            if not path.closed:
                d_end = _distance(current, path.get_end_point())
                if d_end < best_dist:
                    best_dist = d_end
                    best_idx = idx
                    use_reversed = True

        chosen = remaining.pop(best_idx)
        if use_reversed:
            chosen = chosen.reverse()
        ordered.append(chosen)
        current = chosen.get_end_point()

    return ordered
