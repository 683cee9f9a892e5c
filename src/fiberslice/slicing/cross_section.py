"""
Cross-section slicing — cut a closed mesh into planar contours.

Every layer is cut at the middle of its band. Each triangle straddling the
plane contributes one segment; segments are chained end to end into closed
loops, matching endpoints within a tolerance derived from the finest
extrusion width. Loop winding is then normalised by nesting depth (even-odd):
exteriors are counter-clockwise and holes clockwise.

Layers are independent, so ``slice_mesh`` can cut them on a thread pool.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np
from shapely.geometry import MultiPolygon, Point, Polygon as ShapelyPolygon
from shapely.ops import unary_union

from fiberslice.core.exceptions import NonManifoldError
from fiberslice.geometry.mesh import Mesh
from fiberslice.slicing.contour_offset import (
    Point2D,
    Polygon,
    as_multipolygon,
    close_ring,
    open_ring,
    polygon_area_signed,
)
from fiberslice.slicing.resolver import LayerSchedule, ResolvedLayerConfig

logger = logging.getLogger(__name__)

# Vertices this close to the plane are nudged above it so that every
# straddling triangle yields exactly two edge crossings.
_PLANE_EPSILON = 1e-7

_EDGES = ((0, 1), (1, 2), (2, 0))


@dataclass
class Contour:
    """A closed loop (first point == last point) from one cross-section."""

    points: Polygon
    is_hole: bool = False

    @property
    def area(self) -> float:
        """Signed area, positive for exteriors and negative for holes."""
        return polygon_area_signed(open_ring(self.points))

    @property
    def is_closed(self) -> bool:
        return len(self.points) >= 4 and self.points[0] == self.points[-1]


@dataclass
class Layer:
    """One sliced layer: its resolved configuration and its contours."""

    config: ResolvedLayerConfig
    contours: list[Contour] = field(default_factory=list)

    @property
    def index(self) -> int:
        return self.config.index

    @property
    def z(self) -> float:
        """Nozzle height while printing this layer (top of the band)."""
        return self.config.top

    @property
    def slice_z(self) -> float:
        return self.config.slice_z

    def polygons(self) -> MultiPolygon:
        """
        Assemble the contours into polygons with holes.

        Each hole is attached to the smallest exterior that contains it.
        """
        exteriors = sorted(
            (c for c in self.contours if not c.is_hole),
            key=lambda c: abs(c.area),
        )
        shells = [ShapelyPolygon(open_ring(c.points)) for c in exteriors]
        holes: list[list[Polygon]] = [[] for _ in exteriors]

        for contour in self.contours:
            if not contour.is_hole:
                continue
            sample = Point(contour.points[0])
            for i, shell in enumerate(shells):
                if shell.contains(sample):
                    holes[i].append(open_ring(contour.points))
                    break

        polys = []
        for contour, hole_list in zip(exteriors, holes):
            poly = ShapelyPolygon(open_ring(contour.points), hole_list)
            if not poly.is_valid:
                poly = poly.buffer(0)
            polys.append(poly)
        if not polys:
            return MultiPolygon()
        return as_multipolygon(unary_union(polys))


def _plane_segments(triangles: np.ndarray, z: float) -> np.ndarray:
    """Intersect triangles with the plane ``z``; returns ``(m, 2, 2)`` segments."""
    d = triangles[:, :, 2] - z
    d = np.where(np.abs(d) < _PLANE_EPSILON, _PLANE_EPSILON, d)

    crossing = (d.min(axis=1) < 0) & (d.max(axis=1) > 0)
    tri = triangles[crossing]
    d = d[crossing]
    if len(tri) == 0:
        return np.empty((0, 2, 2))

    points = np.zeros((len(tri), 2, 2))
    filled = np.zeros(len(tri), dtype=int)
    for a, b in _EDGES:
        da, db = d[:, a], d[:, b]
        hit = (da * db) < 0
        if not hit.any():
            continue
        t = da[hit] / (da[hit] - db[hit])
        va, vb = tri[hit, a, :2], tri[hit, b, :2]
        p = va + t[:, None] * (vb - va)
        rows = np.flatnonzero(hit)
        slots = filled[rows]
        points[rows, slots] = p
        filled[rows] += 1
    return points[filled == 2]


class _EndpointIndex:
    """Spatial hash of segment endpoints on a grid of the chaining tolerance."""

    def __init__(self, segments: np.ndarray, tolerance: float) -> None:
        self.tolerance = tolerance
        self.segments = segments
        self.cells: dict[tuple[int, int], list[tuple[int, int]]] = {}
        for s, seg in enumerate(segments):
            for end in (0, 1):
                self.cells.setdefault(self._key(seg[end]), []).append((s, end))

    def _key(self, p: np.ndarray | Point2D) -> tuple[int, int]:
        return (int(math.floor(p[0] / self.tolerance)), int(math.floor(p[1] / self.tolerance)))

    def nearest(self, p: np.ndarray, used: np.ndarray) -> Optional[tuple[int, int]]:
        kx, ky = self._key(p)
        best = None
        best_dist = self.tolerance
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for s, end in self.cells.get((kx + dx, ky + dy), ()):
                    if used[s]:
                        continue
                    q = self.segments[s, end]
                    dist = math.hypot(q[0] - p[0], q[1] - p[1])
                    if dist <= best_dist:
                        best = (s, end)
                        best_dist = dist
        return best


def _chain_segments(segments: np.ndarray, tolerance: float, z: float) -> list[Polygon]:
    """
    Chain segments into closed loops.

    Raises:
        NonManifoldError: If a chain cannot be closed within the tolerance.
    """
    index = _EndpointIndex(segments, tolerance)
    used = np.zeros(len(segments), dtype=bool)
    loops: list[Polygon] = []

    for start in range(len(segments)):
        if used[start]:
            continue
        used[start] = True
        origin = segments[start, 0]
        current = segments[start, 1]
        loop: Polygon = [(float(origin[0]), float(origin[1])), (float(current[0]), float(current[1]))]

        while True:
            if len(loop) > 2 and math.hypot(current[0] - origin[0], current[1] - origin[1]) <= tolerance:
                break
            found = index.nearest(current, used)
            if found is None:
                raise NonManifoldError(
                    f"Cross-section at z={z:.4f} does not close",
                    z=z,
                    vertex=(float(current[0]), float(current[1]), z),
                    details={"segments": int(len(segments)), "loop_points": len(loop)},
                )
            s, end = found
            used[s] = True
            current = segments[s, 1 - end]
            loop.append((float(current[0]), float(current[1])))

        # the final point duplicates the origin within tolerance
        loop[-1] = loop[0]
        loops.append(loop)
    return loops


def _simplify(loop: Polygon, min_spacing: float) -> Polygon:
    """Drop points closer than ``min_spacing`` to their predecessor."""
    out: Polygon = [loop[0]]
    for p in loop[1:-1]:
        q = out[-1]
        if math.hypot(p[0] - q[0], p[1] - q[1]) >= min_spacing:
            out.append(p)
    return close_ring(out)


def _classify(loops: list[Polygon]) -> list[Contour]:
    """Orient loops by nesting depth: even depth CCW (exterior), odd CW (hole)."""
    shells = [ShapelyPolygon(open_ring(loop)) for loop in loops]
    contours = []
    for i, loop in enumerate(loops):
        sample = Point(loop[0])
        depth = sum(
            1 for j, shell in enumerate(shells)
            if j != i and shell.contains(sample)
        )
        is_hole = depth % 2 == 1
        ring = open_ring(loop)
        area = polygon_area_signed(ring)
        if (area < 0) != is_hole:
            ring.reverse()
        contours.append(Contour(points=close_ring(ring), is_hole=is_hole))
    # outermost first, largest first
    contours.sort(key=lambda c: -abs(c.area))
    return contours


def slice_layer(
    triangles: np.ndarray,
    config: ResolvedLayerConfig,
    tolerance: float,
) -> Layer:
    """Cut one layer and return its normalised contours."""
    z = config.slice_z
    segments = _plane_segments(triangles, z)
    if len(segments) == 0:
        return Layer(config=config)

    loops = _chain_segments(segments, tolerance, z)
    loops = [_simplify(loop, tolerance / 10.0) for loop in loops]
    loops = [loop for loop in loops if len(loop) >= 4 and abs(polygon_area_signed(open_ring(loop))) > tolerance ** 2]
    return Layer(config=config, contours=_classify(loops))


def slice_mesh(
    mesh: Mesh,
    schedule: LayerSchedule | Sequence[ResolvedLayerConfig],
    workers: int | None = None,
    check_cancelled: Callable[[], None] | None = None,
) -> list[Layer]:
    """
    Slice every scheduled layer of a mesh.

    Args:
        mesh: Closed mesh in build-volume coordinates.
        schedule: Resolved layers, in ascending Z.
        workers: Thread count for per-layer slicing; ``None`` or 1 slices
            sequentially.
        check_cancelled: Called before each layer; raises to abort the run.

    Returns:
        Layers in the same order as the schedule.

    Raises:
        NonManifoldError: If the mesh or any cross-section is not closed.
    """
    mesh.check_closed()
    configs = list(schedule)
    if not configs:
        return []

    tolerance = configs[0].profile.extrusion_tolerance
    zmin = mesh.triangles[:, :, 2].min(axis=1)
    zmax = mesh.triangles[:, :, 2].max(axis=1)

    def _one(config: ResolvedLayerConfig) -> Layer:
        if check_cancelled is not None:
            check_cancelled()
        z = config.slice_z
        band = (zmin <= z + _PLANE_EPSILON) & (zmax >= z - _PLANE_EPSILON)
        return slice_layer(mesh.triangles[band], config, tolerance)

    if workers is None or workers <= 1:
        layers = [_one(config) for config in configs]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            layers = list(pool.map(_one, configs))

    logger.info(
        "Sliced %d layers, %d contours",
        len(layers),
        sum(len(layer.contours) for layer in layers),
    )
    return layers
