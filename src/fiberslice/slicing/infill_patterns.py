"""
Infill Pattern Generators — line fills for solid, partial, bridge and support areas.

Partial patterns (spacing ``s = width / density``):
1. Linear      — one family of parallel lines at 0°, spacing s
2. Rectilinear — 45° and 135° families, each at 2s
3. Triangle    — 45°, 105° and 165° families, each at 3s
4. Cubic       — 45°, 165° and 285° families at 3s, shifted with Z so the
                 stacked layers form cubes

Solid fills are parallel lines one extrusion width apart, rotated per layer.

Scan lines are anchored to the build-plate origin so the same line positions
repeat between layers and between runs. Line-area clipping uses **shapely**.

References:
- shapely: https://shapely.readthedocs.io/
"""

from __future__ import annotations

import math
import logging
from typing import Dict, List, Tuple

from shapely.geometry import LineString
from shapely.geometry.base import BaseGeometry

from fiberslice.core.config import PartialInfillType, SolidInfillType

logger = logging.getLogger(__name__)

Point2D = Tuple[float, float]
Polyline = List[Point2D]

# pattern -> (line angles in degrees, spacing multiplier, shifts with z)
INFILL_PATTERNS: Dict[PartialInfillType, Tuple[Tuple[float, ...], float, bool]] = {
    PartialInfillType.LINEAR: ((0.0,), 1.0, False),
    PartialInfillType.RECTILINEAR: ((45.0, 135.0), 2.0, False),
    PartialInfillType.TRIANGLE: ((45.0, 105.0, 165.0), 3.0, False),
    PartialInfillType.CUBIC: ((45.0, 165.0, 285.0), 3.0, True),
}

_BRIDGE_ANGLES = (0.0, 45.0, 90.0, 135.0)


def _extract_lines(geom: BaseGeometry) -> List[Polyline]:
    """Pull LineString parts out of a shapely intersection result."""
    if geom.is_empty:
        return []
    if geom.geom_type == "LineString":
        coords = [(float(x), float(y)) for x, y in geom.coords]
        return [coords] if len(coords) >= 2 else []
    lines: List[Polyline] = []
    for part in getattr(geom, "geoms", []):
        lines.extend(_extract_lines(part))
    return lines


def parallel_lines(
    area: BaseGeometry,
    angle_deg: float,
    spacing: float,
    offset: float = 0.0,
) -> List[Polyline]:
    """
    Generate parallel scan lines at given angle, clipped to an area.

    Lines sit at perpendicular distances ``k * spacing + offset`` from the
    origin. Consecutive lines alternate direction so a nearest-neighbour
    ordering prints them back and forth.

    Parameters:
        area: shapely Polygon or MultiPolygon to fill.
        angle_deg: Line direction, degrees from +X.
        spacing: Distance between neighbouring lines (mm).
        offset: Shift of the whole family along the perpendicular (mm).
    """
    if spacing <= 0 or area is None or area.is_empty:
        return []

    angle_rad = math.radians(angle_deg)
    cos_a = math.cos(angle_rad)
    sin_a = math.sin(angle_rad)
    # Direction perpendicular to scan lines
    perp_x = -sin_a
    perp_y = cos_a

    min_x, min_y, max_x, max_y = area.bounds
    corners = [(min_x, min_y), (min_x, max_y), (max_x, min_y), (max_x, max_y)]
    along = [x * cos_a + y * sin_a for x, y in corners]
    across = [x * perp_x + y * perp_y for x, y in corners]
    t0, t1 = min(along) - 1.0, max(along) + 1.0

    first = math.floor((min(across) - offset) / spacing)
    last = math.ceil((max(across) - offset) / spacing)

    lines: List[Polyline] = []
    for k in range(first, last + 1):
        v = k * spacing + offset
        p1 = (v * perp_x + t0 * cos_a, v * perp_y + t0 * sin_a)
        p2 = (v * perp_x + t1 * cos_a, v * perp_y + t1 * sin_a)
        if k % 2:
            p1, p2 = p2, p1
        for seg in _extract_lines(LineString([p1, p2]).intersection(area)):
            lines.append(seg)
    return lines


def partial_infill_spacing(
    width: float,
    density: float,
    pattern: PartialInfillType = PartialInfillType.LINEAR,
) -> float:
    """Line spacing of one family for a partial pattern (``width / density`` scaled)."""
    if density <= 0:
        return math.inf
    return INFILL_PATTERNS[pattern][1] * width / density


def partial_infill(
    area: BaseGeometry,
    width: float,
    density: float,
    pattern: PartialInfillType,
    z: float = 0.0,
) -> List[Polyline]:
    """
    Fill an area with a density-controlled pattern.

    Parameters:
        area: Area to fill.
        width: Extrusion width (mm).
        density: Fill ratio in (0, 1]; 0 yields no lines.
        pattern: Partial infill pattern.
        z: Layer height, used by patterns that shift between layers.
    """
    if density <= 0:
        return []
    angles, _multiplier, shifts = INFILL_PATTERNS[pattern]
    spacing = partial_infill_spacing(width, density, pattern)
    offset = z / math.sqrt(2.0) if shifts else 0.0

    lines: List[Polyline] = []
    for angle in angles:
        lines.extend(parallel_lines(area, angle, spacing, offset))
    return lines


def solid_infill_angle(
    layer_index: int,
    infill_type: SolidInfillType,
    angle_step: float = 120.0,
) -> float:
    step = 120.0 if infill_type == SolidInfillType.RECTILINEAR else angle_step
    return (45.0 + step * layer_index) % 360.0


def solid_infill(
    area: BaseGeometry,
    width: float,
    layer_index: int,
    infill_type: SolidInfillType = SolidInfillType.RECTILINEAR,
    angle_step: float = 120.0,
) -> List[Polyline]:
    """Fully dense parallel lines, rotated from layer to layer."""
    angle = solid_infill_angle(layer_index, infill_type, angle_step)
    return parallel_lines(area, angle, width)


def bridge_angle(area: BaseGeometry, width: float) -> float:
    """
    Pick the line direction that keeps unsupported spans shortest.

    Each candidate direction is scored by its longest clipped line.
    """
    best_angle = _BRIDGE_ANGLES[0]
    best_span = math.inf
    for angle in _BRIDGE_ANGLES:
        lines = parallel_lines(area, angle, width)
        if not lines:
            continue
        span = max(LineString(line).length for line in lines)
        if span < best_span - 1e-9:
            best_span = span
            best_angle = angle
    return best_angle


def bridge_infill(area: BaseGeometry, width: float) -> List[Polyline]:
    return parallel_lines(area, bridge_angle(area, width), width)


def support_infill(area: BaseGeometry, spacing: float, layer_index: int) -> List[Polyline]:
    """Support lines, alternating 0° / 90° between layers for interlocking."""
    angle = 0.0 if layer_index % 2 == 0 else 90.0
    return parallel_lines(area, angle, spacing)
