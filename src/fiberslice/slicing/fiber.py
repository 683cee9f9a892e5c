"""
Continuous fiber planning.

Two placement strategies compose:

- wall-pattern fiber, embedded in perimeter loops chosen by an alternating,
  random or full schedule over layers and wall numbers;
- infill fiber, a dedicated partial-infill pass on every ``width`` of each
  ``width + spacing`` layers.

Candidate paths are split at vertices that turn more than ``max_angle`` and
runs shorter than ``min_length`` are dropped. Candidates of a layer depend
only on that layer, so they are computed independently; cut placement then
walks the layers in ascending Z threading a ``FiberState`` value from one
layer to the next, since a thread may continue across a layer change.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from fiberslice.core.config import (
    FiberInfillSettings,
    FiberSettings,
    WallPatternSettings,
    WallPatternType,
)
from fiberslice.core.exceptions import ConfigurationError, FiberContinuityWarning
from fiberslice.slicing.seam_control import turn_angle
from fiberslice.slicing.toolpath import Point2D, RegionKind, ToolPath

logger = logging.getLogger(__name__)

_EPS = 1e-9


class InfillMode(Enum):
    """What the partial infill of a layer does under the fiber infill cycle."""

    FIBER = "fiber"  # dedicated fiber pass with the fiber infill pattern
    PLAIN = "plain"  # ordinary partial infill
    AIR = "air"  # no partial infill at all


@dataclass(frozen=True)
class FiberSegment:
    """
    A contiguous run of one path that carries fiber.

    Positions are path-length coordinates along the owning path.

    Attributes:
        region_index: Index of the region in the layer plan.
        path_index: Index of the path within the region.
        start: Path-length position where the run starts.
        end: Path-length position where the run ends.
        start_angle: Turn angle (degrees) at the start vertex.
        end_angle: Turn angle (degrees) at the end vertex.
        dedicated: True for the dedicated fiber infill pass, False for
            fiber embedded in shells.
        cut_at: Path-length position at which the cutter fires, or None
            when the thread continues into the next layer.
    """

    region_index: int
    path_index: int
    start: float
    end: float
    start_angle: float = 0.0
    end_angle: float = 0.0
    dedicated: bool = False
    cut_at: Optional[float] = None

    @property
    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class FiberState:
    """
    Fiber thread state carried from one layer to the next.

    Attributes:
        engaged: A thread is laid and uncut at the end of the layer.
        end_point: Where the uncut thread ends.
        thread_length: Length laid since the last cut.
        cuts: Cuts issued so far in the run.
    """

    engaged: bool = False
    end_point: Optional[Point2D] = None
    thread_length: float = 0.0
    cuts: int = 0


@dataclass
class LayerFiberPlan:
    """Fiber runs of one layer, in print order."""

    layer_index: int
    segments: List[FiberSegment] = field(default_factory=list)
    warnings: List[FiberContinuityWarning] = field(default_factory=list)

    def for_path(self, region_index: int, path_index: int) -> List[FiberSegment]:
        return [
            s for s in self.segments
            if s.region_index == region_index and s.path_index == path_index
        ]


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


def parse_wall_ranges(text: str) -> List[Tuple[int, int]]:
    """
    Parse a wall selection like ``"1,3-4"`` into inclusive ranges.

    An empty string selects every wall.

    Raises:
        ConfigurationError: If a part is not a number or ``a-b`` range.
    """
    ranges: List[Tuple[int, int]] = []
    for part in text.replace(" ", "").split(","):
        if not part:
            continue
        try:
            if "-" in part:
                lo, hi = part.split("-", 1)
                ranges.append((int(lo), int(hi)))
            else:
                ranges.append((int(part), int(part)))
        except ValueError:
            raise ConfigurationError(
                f"Invalid wall range: {part!r}",
                details={"wall_ranges": text},
            )
    return ranges


def wall_carries_fiber(layer: int, wall: int, settings: WallPatternSettings) -> bool:
    """
    Decide whether perimeter loop ``wall`` (1 = outermost) of ``layer`` carries fiber.

    Alternating walks a layer cycle of ``spacing + width`` layers, the first
    ``spacing`` of which carry no wall fiber, and a wall cycle of
    ``spacing + width`` walls shifted by ``step`` every layer.
    """
    ranges = parse_wall_ranges(settings.wall_ranges)
    if ranges and not any(lo <= wall <= hi for lo, hi in ranges):
        return False

    if settings.pattern == WallPatternType.FULL:
        return True
    if settings.pattern == WallPatternType.RANDOM:
        return random.Random(layer * 1009 + wall).random() < 0.5

    layer_cycle = settings.alternating_layer_spacing + settings.alternating_layer_width
    if layer_cycle <= 0:
        return False
    if layer % layer_cycle < settings.alternating_layer_spacing:
        return False

    wall_cycle = settings.alternating_wall_spacing + settings.alternating_wall_width
    if wall_cycle <= 0:
        return False
    wall_pos = (wall + layer * settings.alternating_step) % wall_cycle
    return wall_pos >= settings.alternating_wall_spacing


def infill_layer_mode(layer: int, fiber: FiberSettings) -> InfillMode:
    """Decide how the partial infill of ``layer`` is printed."""
    if not (fiber.continuous.enabled and fiber.infill.enabled):
        return InfillMode.PLAIN
    settings: FiberInfillSettings = fiber.infill.setting
    cycle = settings.width + settings.spacing
    if cycle <= 0:
        return InfillMode.PLAIN
    if (layer + 1) % cycle < settings.spacing:
        return InfillMode.AIR if settings.air_space else InfillMode.PLAIN
    return InfillMode.FIBER


def fiber_allowed(layer_top: float, model_top: float, fiber: FiberSettings) -> bool:
    """Fiber is only engaged at least ``cut_before`` below the top of the model."""
    return model_top - layer_top >= fiber.cut_before


# ---------------------------------------------------------------------------
# Splitting
# ---------------------------------------------------------------------------


def _turn_angles(path: ToolPath) -> List[float]:
    pts = path.points
    n = len(pts)
    angles = [0.0] * n
    for i in range(1, n - 1):
        angles[i] = turn_angle(pts[i - 1], pts[i], pts[i + 1])
    if path.closed and n > 3:
        seam = turn_angle(pts[-2], pts[0], pts[1])
        angles[0] = angles[-1] = seam
    return angles


def split_at_sharp_turns(path: ToolPath, max_angle: float) -> List[Tuple[int, int]]:
    """
    Split a path into vertex ranges at every interior turn above ``max_angle``.

    Returns:
        Inclusive ``(first_vertex, last_vertex)`` pairs covering the path.
    """
    angles = _turn_angles(path)
    runs: List[Tuple[int, int]] = []
    first = 0
    for i in range(1, len(path.points) - 1):
        if angles[i] > max_angle:
            runs.append((first, i))
            first = i
    if len(path.points) >= 2:
        runs.append((first, len(path.points) - 1))
    return runs


def candidate_segments(
    path: ToolPath,
    region_index: int,
    path_index: int,
    fiber: FiberSettings,
    dedicated: bool,
    layer_index: int,
) -> Tuple[List[FiberSegment], List[FiberContinuityWarning]]:
    """Fiber runs of one path that survive the angle and length rules."""
    angles = _turn_angles(path)
    positions = path.cumulative_lengths()
    segments: List[FiberSegment] = []
    warnings: List[FiberContinuityWarning] = []

    for first, last in split_at_sharp_turns(path, fiber.max_angle):
        start, end = positions[first], positions[last]
        length = end - start
        if length <= 0:
            continue
        if length < fiber.min_length:
            warnings.append(FiberContinuityWarning(
                f"Fiber run of {length:.2f} mm dropped, below minimum {fiber.min_length} mm",
                layer=layer_index,
                length=length,
                min_length=fiber.min_length,
                details={"feature": path.feature.value, "wall": path.wall},
            ))
            continue
        segments.append(FiberSegment(
            region_index=region_index,
            path_index=path_index,
            start=start,
            end=end,
            start_angle=angles[first],
            end_angle=angles[last],
            dedicated=dedicated,
        ))
    return segments, warnings


def layer_candidates(plan, fiber: FiberSettings, model_top: float) -> LayerFiberPlan:
    """
    Collect the uncut fiber runs of one planned layer.

    Args:
        plan: A ``LayerPlan`` from the region planner.
        fiber: Fiber settings resolved for the layer.
        model_top: Z of the top of the model.
    """
    result = LayerFiberPlan(layer_index=plan.index)
    if not fiber.enabled or not fiber_allowed(plan.z, model_top, fiber):
        return result

    for r, region in enumerate(plan.regions):
        if region.fiber_infill:
            dedicated = True
        elif region.feature.is_perimeter and fiber.wall_pattern.enabled:
            dedicated = False
        elif region.kind == RegionKind.SOLID_INFILL and fiber.infill.enabled and fiber.infill.setting.solid_infill:
            dedicated = True
        else:
            continue

        for p, path in enumerate(region.paths):
            if not dedicated:
                if path.wall is None or not wall_carries_fiber(plan.index, path.wall, fiber.wall_pattern.setting):
                    continue
            segments, warnings = candidate_segments(path, r, p, fiber, dedicated, plan.index)
            result.segments.extend(segments)
            result.warnings.extend(warnings)
    return result


# ---------------------------------------------------------------------------
# Cut placement
# ---------------------------------------------------------------------------


def _segment_point(plan, segment: FiberSegment, at_end: bool) -> Point2D:
    path = plan.regions[segment.region_index].paths[segment.path_index]
    return path.point_at(segment.end if at_end else segment.start)


def _print_order(plan) -> List[Tuple[int, int]]:
    """(region, path) indices of the paths the motion planner extrudes, in order."""
    return [
        (r, p)
        for r, region in enumerate(plan.regions)
        for p, path in enumerate(region.paths)
        if len(path.points) >= 2
    ]


def ends_layer(plan, segment: FiberSegment) -> bool:
    """The run is the last extrusion of the layer."""
    order = _print_order(plan)
    if not order or order[-1] != (segment.region_index, segment.path_index):
        return False
    path = plan.regions[segment.region_index].paths[segment.path_index]
    return segment.end >= path.cumulative_lengths()[-1] - _EPS


def starts_layer(plan, segment: FiberSegment) -> bool:
    """The run is the first extrusion of the layer."""
    order = _print_order(plan)
    return bool(order) and order[0] == (segment.region_index, segment.path_index) and segment.start <= _EPS


def place_cuts(
    plan,
    candidates: LayerFiberPlan,
    state: FiberState,
    next_plan=None,
    next_candidates: Optional[LayerFiberPlan] = None,
    continue_tolerance: float = 0.4,
) -> Tuple[LayerFiberPlan, FiberState]:
    """
    Decide where the thread is cut on one layer.

    Every run ends in a cut ``cut_before`` ahead of its end (clamped to the
    run start). The one exception is a run that closes the layer's last
    printed path when the next layer opens with a run starting its first
    printed path within ``continue_tolerance`` of that end; that thread
    carries on through the layer change uncut.

    Returns:
        The layer's runs with cut positions, and the state for the next layer.
    """
    segments = candidates.segments
    if not segments:
        return candidates, FiberState(cuts=state.cuts)

    cut_before = plan.profile.fiber.cut_before
    placed: List[FiberSegment] = []
    thread_length = 0.0
    cuts = state.cuts

    if state.engaged and state.end_point is not None:
        first_start = _segment_point(plan, segments[0], at_end=False)
        if math.dist(first_start, state.end_point) <= continue_tolerance:
            thread_length = state.thread_length

    for i, segment in enumerate(segments):
        thread_length += segment.length
        is_last = i == len(segments) - 1
        continues = False
        if (
            is_last
            and next_plan is not None
            and next_candidates is not None
            and next_candidates.segments
            and ends_layer(plan, segment)
            and starts_layer(next_plan, next_candidates.segments[0])
        ):
            end_point = _segment_point(plan, segment, at_end=True)
            next_start = _segment_point(next_plan, next_candidates.segments[0], at_end=False)
            continues = math.dist(end_point, next_start) <= continue_tolerance

        if continues:
            placed.append(replace(segment, cut_at=None))
            next_state = FiberState(
                engaged=True,
                end_point=_segment_point(plan, segment, at_end=True),
                thread_length=thread_length,
                cuts=cuts,
            )
            return LayerFiberPlan(candidates.layer_index, placed, candidates.warnings), next_state

        placed.append(replace(segment, cut_at=max(segment.start, segment.end - cut_before)))
        cuts += 1
        thread_length = 0.0

    return (
        LayerFiberPlan(candidates.layer_index, placed, candidates.warnings),
        FiberState(cuts=cuts),
    )


def plan_fibers(plans: Sequence, model_top: float, continue_layers: bool = True) -> List[LayerFiberPlan]:
    """
    Plan fiber runs and cuts for every layer, in ascending Z.

    Args:
        plans: ``LayerPlan`` objects in layer order.
        model_top: Z of the top of the model.
        continue_layers: Allow a thread to run uncut through a layer change.
            Off when other objects print between this object's layers.
    """
    candidates = [layer_candidates(p, p.profile.fiber, model_top) for p in plans]

    state = FiberState()
    result: List[LayerFiberPlan] = []
    for i, plan in enumerate(plans):
        nxt = plans[i + 1] if continue_layers and i + 1 < len(plans) else None
        nxt_candidates = candidates[i + 1] if i + 1 < len(plans) else None
        tolerance = plan.profile.extrusion_width.exterior_surface_perimeter
        placed, state = place_cuts(plan, candidates[i], state, nxt, nxt_candidates, tolerance)
        result.append(placed)

    logger.info(
        "Planned %d fiber runs with %d cuts",
        sum(len(p.segments) for p in result),
        state.cuts,
    )
    return result
