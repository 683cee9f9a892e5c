"""
Region planning — shells, infill classification and auxiliary geometry.

Each layer is planned in two steps:

1. Shells. The layer area is inset into ``number_of_perimeters`` nested
   loops; what is left inside, grown back by the perimeter overlap, is the
   infill boundary. Only the layer itself is needed, so shells of different
   layers are planned in parallel.
2. Infill. The boundary is split into top solid, bridge, solid and partial
   infill by comparing it with the areas of the neighbouring layers, then
   each part is filled with its pattern. Support, skirt and brim are added
   from cross-layer data computed between the two steps.

Regions of a layer come out in print order: skirt, brim, support,
perimeters, bridges, top solid, solid, partial infill.
"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import reduce
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, box
from shapely.ops import unary_union

from fiberslice.core.config import PrintProfile
from fiberslice.core.exceptions import SlicingError
from fiberslice.slicing.contour_offset import (
    JOIN_ROUND,
    area_rings,
    as_multipolygon,
    inset_rings,
    offset_area,
)
from fiberslice.slicing.cross_section import Layer
from fiberslice.slicing.fiber import InfillMode, fiber_allowed, infill_layer_mode
from fiberslice.slicing.infill_patterns import (
    bridge_infill,
    partial_infill,
    solid_infill,
    support_infill,
)
from fiberslice.slicing.seam_control import place_seam_sharpest
from fiberslice.slicing.support_generation import generate_support_areas
from fiberslice.slicing.toolpath import (
    Feature,
    Point2D,
    Region,
    RegionKind,
    ToolPath,
    optimize_path_order,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class LayerPlan:
    """
    The planned regions of one layer.

    Attributes:
        layer: The sliced layer.
        regions: Regions in print order.
        area: Layer area after shrink, before any inset.
        infill_area: Boundary available to infill.
    """

    layer: Layer
    regions: List[Region] = field(default_factory=list)
    area: MultiPolygon = field(default_factory=MultiPolygon)
    infill_area: MultiPolygon = field(default_factory=MultiPolygon)

    @property
    def index(self) -> int:
        return self.layer.index

    @property
    def z(self) -> float:
        return self.layer.z

    @property
    def profile(self) -> PrintProfile:
        return self.layer.config.profile

    def paths(self) -> List[ToolPath]:
        return [p for r in self.regions for p in r.paths]


@dataclass
class _Shells:
    area: MultiPolygon
    perimeters: List[Region]
    infill_area: MultiPolygon


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _map(func: Callable[[T], R], items: Sequence[T], workers: Optional[int]) -> List[R]:
    if workers is None or workers <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        return list(pool.map(func, items))


def _drop_slivers(geom, min_area: float) -> MultiPolygon:
    """Remove polygons too small to hold a single extrusion line."""
    polys = [p for p in as_multipolygon(geom).geoms if p.area >= min_area]
    return MultiPolygon(polys)


def _subtract(a: MultiPolygon, b: MultiPolygon, min_area: float) -> MultiPolygon:
    if a.is_empty or b.is_empty:
        return a
    return _drop_slivers(a.difference(b), min_area)


def _intersect(a: MultiPolygon, b: MultiPolygon, min_area: float) -> MultiPolygon:
    if a.is_empty or b.is_empty:
        return MultiPolygon()
    return _drop_slivers(a.intersection(b), min_area)


def _covered(areas: Sequence[MultiPolygon], count: int, inner: MultiPolygon) -> MultiPolygon:
    """Part of the plane covered by each of ``count`` neighbouring layers."""
    if count <= 0:
        return inner
    if len(areas) < count:
        return MultiPolygon()
    return as_multipolygon(reduce(lambda a, b: a.intersection(b), areas))


def _open_paths(lines: List[List[Point2D]], feature: Feature) -> List[ToolPath]:
    return [ToolPath(points=line, feature=feature) for line in lines if len(line) >= 2]


def _loop_paths(area: MultiPolygon, feature: Feature, holes: bool = True) -> List[ToolPath]:
    return [
        ToolPath(points=place_seam_sharpest(ring), feature=feature, closed=True)
        for ring, is_hole in area_rings(area)
        if holes or not is_hole
    ]


# ---------------------------------------------------------------------------
# Shells
# ---------------------------------------------------------------------------


def _loop_feature(depth: int, is_hole: bool) -> Feature:
    if is_hole:
        return Feature.INTERIOR_WALL_OUTER if depth == 0 else Feature.INTERIOR_WALL_INNER
    return Feature.WALL_OUTER if depth == 0 else Feature.WALL_INNER


def plan_shells(layer: Layer) -> _Shells:
    """Perimeter loops of one layer and the boundary left for infill."""
    profile = layer.config.profile
    area = layer.polygons()
    if profile.layer_shrink_amount.enabled and profile.layer_shrink_amount.setting > 0:
        area = offset_area(area, profile.layer_shrink_amount.setting)
    if area.is_empty:
        return _Shells(area, [], MultiPolygon())

    width = profile.extrusion_width.exterior_surface_perimeter
    loops, remaining = inset_rings(area, profile.number_of_perimeters, width)

    groups: Dict[Tuple[int, Feature], List[ToolPath]] = {}
    for depth, loop_area in enumerate(loops):
        for ring, is_hole in area_rings(loop_area):
            feature = _loop_feature(depth, is_hole)
            groups.setdefault((depth, feature), []).append(ToolPath(
                points=place_seam_sharpest(ring),
                feature=feature,
                closed=True,
                wall=depth + 1,
            ))

    keys = sorted(groups, key=lambda k: (k[0], k[1].value))
    if profile.inner_perimeters_first:
        keys.sort(key=lambda k: -k[0])
    perimeters = [
        Region(kind=RegionKind.PERIMETER, feature=feature, paths=groups[(depth, feature)])
        for depth, feature in keys
    ]

    if loops:
        overlap = profile.infill_perimeter_overlap_percentage * width
        infill_area = _intersect(offset_area(remaining, -overlap), area, 0.0)
    else:
        infill_area = area
    return _Shells(area, perimeters, infill_area)


# ---------------------------------------------------------------------------
# Infill classification
# ---------------------------------------------------------------------------


@dataclass
class InfillSplit:
    """The infill boundary of a layer split by how it is filled."""

    top_solid: MultiPolygon
    bridge: MultiPolygon
    solid: MultiPolygon
    partial: MultiPolygon


def classify_infill(
    index: int,
    inner: MultiPolygon,
    areas: Sequence[MultiPolygon],
    profile: PrintProfile,
) -> InfillSplit:
    """
    Split one layer's infill boundary.

    - top solid: not covered by the layer above (exposed surface);
    - bridge: not carried by the layer below;
    - solid: not covered by every one of the ``top_layers`` layers above or
      the ``bottom_layers`` layers below, so the first ``bottom_layers`` and
      last ``top_layers`` layers are solid throughout;
    - partial: everything else.
    """
    empty = MultiPolygon()
    if inner.is_empty:
        return InfillSplit(empty, empty, empty, empty)

    width = profile.extrusion_width.solid_infill
    min_area = width * width
    n = len(areas)

    if profile.top_layers > 0:
        above = areas[index + 1] if index + 1 < n else empty
        top_solid = _subtract(inner, above, min_area) if not above.is_empty else inner
    else:
        top_solid = empty

    rest = _subtract(inner, top_solid, min_area) if not top_solid.is_empty else inner
    if index > 0 and not rest.is_empty:
        below = areas[index - 1]
        bridge = _subtract(rest, below, min_area) if not below.is_empty else rest
    else:
        bridge = empty
    rest = _subtract(rest, bridge, min_area) if not bridge.is_empty else rest

    covered_above = _covered(areas[index + 1:index + 1 + profile.top_layers], profile.top_layers, inner)
    covered_below = _covered(areas[max(0, index - profile.bottom_layers):index], profile.bottom_layers, inner)
    covered = _intersect(covered_above, covered_below, 0.0)
    partial = _intersect(rest, covered, min_area)
    solid = _subtract(rest, partial, min_area) if not partial.is_empty else rest

    return InfillSplit(top_solid, bridge, solid, partial)


def _partial_region(
    plan_index: int,
    area: MultiPolygon,
    profile: PrintProfile,
    z: float,
    model_top: Optional[float],
) -> Optional[Region]:
    width = profile.extrusion_width.infill
    mode = infill_layer_mode(plan_index, profile.fiber)
    if mode == InfillMode.FIBER and (model_top is None or fiber_allowed(z, model_top, profile.fiber)):
        settings = profile.fiber.infill.setting
        lines = partial_infill(area, width, settings.infill_percentage, settings.partial_infill_type, z)
        return Region(
            kind=RegionKind.PARTIAL_INFILL,
            feature=Feature.INFILL,
            paths=_open_paths(lines, Feature.INFILL),
            area=area,
            fiber_infill=True,
        )
    if mode == InfillMode.AIR:
        return None
    lines = partial_infill(area, width, profile.infill_percentage, profile.partial_infill_type, z)
    return Region(
        kind=RegionKind.PARTIAL_INFILL,
        feature=Feature.INFILL,
        paths=_open_paths(lines, Feature.INFILL),
        area=area,
    )


def fill_regions(
    index: int,
    split: InfillSplit,
    profile: PrintProfile,
    z: float,
    model_top: Optional[float] = None,
) -> List[Region]:
    """Fill each part of a split infill boundary with its pattern."""
    widths = profile.extrusion_width
    step = profile.solid_infill_angle_step
    regions: List[Region] = []

    if not split.bridge.is_empty:
        lines = bridge_infill(split.bridge, widths.bridge)
        regions.append(Region(RegionKind.BRIDGE, Feature.BRIDGING, _open_paths(lines, Feature.BRIDGING), split.bridge))
    if not split.top_solid.is_empty:
        lines = solid_infill(split.top_solid, widths.solid_top_infill, index, profile.solid_infill_type, step)
        regions.append(Region(
            RegionKind.TOP_SOLID_INFILL,
            Feature.TOP_SOLID_INFILL,
            _open_paths(lines, Feature.TOP_SOLID_INFILL),
            split.top_solid,
        ))
    if not split.solid.is_empty:
        lines = solid_infill(split.solid, widths.solid_infill, index, profile.solid_infill_type, step)
        regions.append(Region(RegionKind.SOLID_INFILL, Feature.SOLID_INFILL, _open_paths(lines, Feature.SOLID_INFILL), split.solid))
    if not split.partial.is_empty:
        region = _partial_region(index, split.partial, profile, z, model_top)
        if region is not None:
            regions.append(region)
    return [r for r in regions if r.paths]


# ---------------------------------------------------------------------------
# Auxiliary geometry
# ---------------------------------------------------------------------------


def skirt_paths(areas: Sequence[MultiPolygon], profile: PrintProfile) -> List[ToolPath]:
    """
    Skirt loops around the convex hull of the first ``skirt.layers`` layers.

    Loops sit ``distance`` away from the hull, one extrusion width apart,
    clipped to the build plate.
    """
    settings = profile.skirt.setting
    outline = unary_union([a for a in areas[:max(settings.layers, 1)] if not a.is_empty])
    if outline.is_empty:
        return []
    hull = as_multipolygon(outline.convex_hull)
    width = profile.extrusion_width.exterior_surface_perimeter
    plate = box(0.0, 0.0, profile.print_x, profile.print_y)

    paths: List[ToolPath] = []
    for k in range(settings.loops):
        ring_area = offset_area(hull, -(settings.distance + width / 2.0 + k * width), JOIN_ROUND)
        ring_area = as_multipolygon(ring_area.intersection(plate))
        paths.extend(_loop_paths(ring_area, Feature.SKIRT, holes=False))
    return paths


def brim_paths(area: MultiPolygon, profile: PrintProfile) -> List[ToolPath]:
    """Concentric loops filling a band of ``brim_width`` around the first layer, inside out."""
    width = profile.extrusion_width.exterior_surface_perimeter
    count = int(math.floor(profile.brim_width.setting / width + 1e-9))
    paths: List[ToolPath] = []
    for i in range(count):
        ring_area = offset_area(area, -(i * width + width / 2.0))
        paths.extend(_loop_paths(ring_area, Feature.BRIM, holes=False))
    return paths


# ---------------------------------------------------------------------------
# Layer assembly
# ---------------------------------------------------------------------------


def _order(regions: List[Region]) -> List[Region]:
    """Order paths inside each region, continuing from where the last region ended."""
    current: Point2D = (0.0, 0.0)
    for region in regions:
        region.paths = optimize_path_order(region.paths, current)
        if region.paths:
            current = region.paths[-1].get_end_point()
    return regions


def plan_regions(
    layers: Sequence[Layer],
    model_top: Optional[float] = None,
    workers: Optional[int] = None,
    check_cancelled: Optional[Callable[[], None]] = None,
) -> List[LayerPlan]:
    """
    Plan the regions of every layer.

    Args:
        layers: Sliced layers, bottom up.
        model_top: Z of the model top, used to keep fiber infill away from it.
        workers: Thread count for the per-layer steps.
        check_cancelled: Called before each layer; raises to abort the run.

    Returns:
        One LayerPlan per layer, in the same order.
    """
    if not layers:
        return []

    def _shells(layer: Layer) -> _Shells:
        if check_cancelled is not None:
            check_cancelled()
        try:
            return plan_shells(layer)
        except GEOSException as exc:
            raise SlicingError(
                f"Shell planning failed on layer {layer.index}: {exc}",
                details={"layer": layer.index, "step": "shells"},
            ) from exc

    shells = _map(_shells, list(layers), workers)
    areas = [s.area for s in shells]

    first = layers[0].config.profile
    supports: List[MultiPolygon] = [MultiPolygon() for _ in layers]
    if first.support.enabled:
        supports = generate_support_areas(
            areas,
            [layer.config.height for layer in layers],
            first.support.setting.max_overhang_angle,
            first.extrusion_width.support,
        )

    skirt: List[ToolPath] = []
    if first.skirt.enabled:
        skirt = skirt_paths(areas, first)

    def _assemble(i: int) -> LayerPlan:
        if check_cancelled is not None:
            check_cancelled()
        try:
            return _fill(i)
        except GEOSException as exc:
            raise SlicingError(
                f"Region planning failed on layer {i}: {exc}",
                details={"layer": i, "step": "regions"},
            ) from exc

    def _fill(i: int) -> LayerPlan:
        layer = layers[i]
        profile = layer.config.profile
        regions: List[Region] = []

        if skirt and i < first.skirt.setting.layers:
            regions.append(Region(RegionKind.SKIRT, Feature.SKIRT, list(skirt)))
        if i == 0 and profile.brim_width.enabled and not areas[0].is_empty:
            brim = brim_paths(areas[0], profile)
            if brim:
                regions.append(Region(RegionKind.BRIM, Feature.BRIM, brim))
        if profile.support.enabled and not supports[i].is_empty:
            lines = support_infill(supports[i], profile.support.setting.support_spacing, i)
            regions.append(Region(RegionKind.SUPPORT, Feature.SUPPORT, _open_paths(lines, Feature.SUPPORT), supports[i]))

        regions.extend(shells[i].perimeters)
        split = classify_infill(i, shells[i].infill_area, areas, profile)
        regions.extend(fill_regions(i, split, profile, layer.z, model_top))

        return LayerPlan(
            layer=layer,
            regions=_order(regions),
            area=shells[i].area,
            infill_area=shells[i].infill_area,
        )

    plans = _map(_assemble, list(range(len(layers))), workers)
    logger.info(
        "Planned %d layers, %d regions",
        len(plans),
        sum(len(p.regions) for p in plans),
    )
    return plans
