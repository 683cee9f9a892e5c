"""
Support structure generation for additive manufacturing.

Support areas are derived per layer from the sliced areas: the part of
the layer above that reaches further out than
``layer_height * tan(max_overhang_angle)`` from the current layer needs
support, and that requirement is carried down to the bed.

Uses **pyclipper** (through ``contour_offset``) plus shapely for the 2D
area operations.
"""

from __future__ import annotations

import logging
import math
from typing import List, Sequence

from shapely.geometry import MultiPolygon

from fiberslice.slicing.contour_offset import as_multipolygon, offset_area

logger = logging.getLogger(__name__)


def overhang_area(
    below: MultiPolygon,
    above: MultiPolygon,
    layer_height: float,
    max_overhang_angle: float,
) -> MultiPolygon:
    """
    Part of ``above`` that the layer ``below`` cannot carry.

    A layer supports material up to ``layer_height * tan(angle)`` beyond its
    own outline.
    """
    if above.is_empty:
        return MultiPolygon()
    reach = layer_height * math.tan(math.radians(max_overhang_angle))
    supported = offset_area(below, -reach) if not below.is_empty else MultiPolygon()
    return as_multipolygon(above.difference(supported))


def generate_support_areas(
    areas: Sequence[MultiPolygon],
    layer_heights: Sequence[float],
    max_overhang_angle: float,
    clearance: float,
) -> List[MultiPolygon]:
    """
    Compute the support area of every layer.

    Walks the layers from the top down. Each layer's support is its own
    overhang under the layer above plus whatever the layer above still needs
    carried, kept ``clearance`` away from the part on this layer.

    Args:
        areas: Sliced area of each layer, bottom up.
        layer_heights: Height of each layer, bottom up.
        max_overhang_angle: Steepest self-supporting overhang (degrees).
        clearance: Gap kept between support and the part (mm).

    Returns:
        Support area per layer, bottom up; empty where none is needed.
    """
    n = len(areas)
    supports: List[MultiPolygon] = [MultiPolygon() for _ in range(n)]
    carried = MultiPolygon()

    for i in range(n - 2, -1, -1):
        height = layer_heights[i + 1]
        need = overhang_area(areas[i], areas[i + 1], height, max_overhang_angle)
        if not carried.is_empty:
            need = as_multipolygon(need.union(carried))
        if need.is_empty:
            carried = MultiPolygon()
            continue
        keep_out = offset_area(areas[i], -clearance) if not areas[i].is_empty else MultiPolygon()
        supports[i] = as_multipolygon(need.difference(keep_out))
        carried = supports[i]

    logger.info(
        "Support generated on %d of %d layers",
        sum(1 for s in supports if not s.is_empty),
        n,
    )
    return supports
