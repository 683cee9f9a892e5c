"""
Contour Offset — Polygon offsetting and area helpers for the region planner.

Provides polygon inset/outset operations for generating:
- Perimeter loops (repeated insets of the layer area)
- The infill boundary (area left inside the perimeters)
- Skirt, brim and support clearances (outward offsets)

Areas are carried between stages as shapely (Multi)Polygons. Offsetting
converts them to integer paths for **pyclipper** (Python bindings for
Angus Johnson's Clipper library), which handles concave polygons, holes and
collapsing islands correctly, and converts the resulting PolyTree back.

References:
- pyclipper: https://github.com/fonttools/pyclipper
- Clipper library: http://www.angusj.com/delphi/clipper.php
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Tuple

import pyclipper
from shapely.geometry import MultiPolygon, Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient

logger = logging.getLogger(__name__)

Point2D = Tuple[float, float]
Polygon = List[Point2D]

# pyclipper uses integer coordinates for precision.
# We scale floating-point mm coordinates by this factor.
_CLIPPER_SCALE = 1000  # 1 mm  → 1000 clipper units  → 0.001 mm resolution

JOIN_MITER = pyclipper.JT_MITER
JOIN_ROUND = pyclipper.JT_ROUND


def _to_clipper(polygon: Iterable[Point2D]) -> List[Tuple[int, int]]:
    """Scale floating-point polygon to pyclipper integer coordinates."""
    return [(int(round(x * _CLIPPER_SCALE)), int(round(y * _CLIPPER_SCALE)))
            for x, y in polygon]


def _from_clipper(path: list) -> Polygon:
    """Scale pyclipper integer coordinates back to floating-point mm."""
    return [(x / _CLIPPER_SCALE, y / _CLIPPER_SCALE) for x, y in path]


def polygon_area_signed(polygon: Polygon) -> float:
    """Compute signed area (positive = CCW, negative = CW)."""
    area = 0.0
    n = len(polygon)
    for i in range(n):
        j = (i + 1) % n
        area += polygon[i][0] * polygon[j][1]
        area -= polygon[j][0] * polygon[i][1]
    return area / 2.0


def open_ring(polygon: Polygon) -> Polygon:
    """Drop the repeated closing point, if any."""
    if len(polygon) > 1 and polygon[0] == polygon[-1]:
        return list(polygon[:-1])
    return list(polygon)


def close_ring(polygon: Polygon) -> Polygon:
    """Return the ring with the first point repeated at the end."""
    ring = open_ring(polygon)
    if ring:
        ring.append(ring[0])
    return ring


def as_multipolygon(geom: BaseGeometry | None) -> MultiPolygon:
    """Coerce any shapely result to a MultiPolygon, dropping lines and points."""
    if geom is None or geom.is_empty:
        return MultiPolygon()
    if isinstance(geom, MultiPolygon):
        return geom
    if isinstance(geom, ShapelyPolygon):
        return MultiPolygon([geom])
    polys: list[ShapelyPolygon] = []
    for part in getattr(geom, "geoms", []):
        polys.extend(as_multipolygon(part).geoms)
    return MultiPolygon(polys)


def _area_to_paths(area: BaseGeometry) -> list:
    """Exterior rings CCW, holes CW, as clipper integer paths."""
    paths = []
    for poly in as_multipolygon(area).geoms:
        poly = orient(poly, sign=1.0)
        paths.append(_to_clipper(open_ring(list(poly.exterior.coords))))
        for interior in poly.interiors:
            paths.append(_to_clipper(open_ring(list(interior.coords))))
    return paths


def _tree_to_polygons(node, out: list[ShapelyPolygon]) -> None:
    for outer in node.Childs:
        shell = _from_clipper(outer.Contour)
        holes = [_from_clipper(h.Contour) for h in outer.Childs if len(h.Contour) >= 3]
        if len(shell) >= 3:
            poly = ShapelyPolygon(shell, holes)
            if not poly.is_valid:
                poly = poly.buffer(0)
            out.extend(as_multipolygon(poly).geoms)
        for hole in outer.Childs:
            _tree_to_polygons(hole, out)


def offset_area(
    area: BaseGeometry,
    distance: float,
    join: int = JOIN_MITER,
) -> MultiPolygon:
    """
    Offset an area by the given distance using pyclipper.

    Holes grow while the outer boundaries shrink (and the reverse for a
    negative distance), so islands that collapse simply disappear.

    Parameters:
        area: shapely Polygon or MultiPolygon.
        distance: Offset distance in mm (positive = inward).
        join: Corner join type, ``JOIN_MITER`` or ``JOIN_ROUND``.

    Returns:
        The offset area, possibly empty.
    """
    if area is None or area.is_empty:
        return MultiPolygon()
    if distance == 0:
        return as_multipolygon(area)

    pco = pyclipper.PyclipperOffset()
    pco.MiterLimit = 2.0
    pco.ArcTolerance = 0.01 * _CLIPPER_SCALE
    for path in _area_to_paths(area):
        if len(path) >= 3:
            pco.AddPath(path, join, pyclipper.ET_CLOSEDPOLYGON)

    # Negative offset = inward for CCW polygon in Clipper convention
    tree = pco.Execute2(-int(round(distance * _CLIPPER_SCALE)))

    polys: list[ShapelyPolygon] = []
    _tree_to_polygons(tree, polys)
    return MultiPolygon(polys)


def area_rings(area: BaseGeometry) -> list[tuple[Polygon, bool]]:
    """
    Split an area into closed rings.

    Returns:
        ``(ring, is_hole)`` pairs; exterior rings are CCW, holes CW, and
        every ring repeats its first point at the end.
    """
    rings: list[tuple[Polygon, bool]] = []
    for poly in as_multipolygon(area).geoms:
        poly = orient(poly, sign=1.0)
        rings.append(([(float(x), float(y)) for x, y in poly.exterior.coords], False))
        for interior in poly.interiors:
            rings.append(([(float(x), float(y)) for x, y in interior.coords], True))
    return rings


def inset_rings(
    area: BaseGeometry,
    count: int,
    width: float,
) -> tuple[list[MultiPolygon], MultiPolygon]:
    """
    Repeatedly inset an area to place nested loops.

    The first loop centreline sits half a width inside the boundary, each
    further loop a full width inside the previous one. Stops early when the
    area collapses.

    Parameters:
        area: Layer area to inset.
        count: Number of loops to place.
        width: Extrusion width (mm).

    Returns:
        ``(loops, remaining)`` where ``loops[i]`` is the centreline area of
        loop ``i`` (outermost first) and ``remaining`` is the area left
        inside the innermost loop's outer edge.
    """
    if count <= 0:
        return [], as_multipolygon(area)

    loops: list[MultiPolygon] = []
    current = offset_area(area, width / 2.0)
    for _i in range(count):
        if current.is_empty:
            break
        loops.append(current)
        current = offset_area(current, width)

    if not loops:
        return [], MultiPolygon()
    return loops, offset_area(loops[-1], width / 2.0)
