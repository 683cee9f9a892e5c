"""
Motion planning for planned layers.

Converts the regions and fiber runs of each layer into motion primitives:

- travel between paths, retracting (and wiping) only when the travel is at
  least ``minimum_retract_distance`` long;
- extrusion along every path vertex, split where fiber runs start, end or
  are cut;
- feedrate, acceleration and jerk looked up per feature, scaled for fiber,
  then clamped to the machine limits of the axes the move actually uses.

Fan speed and the slow-down for short layers depend on the estimated time of
the finished layer, so they are applied in a second pass over the layer's
primitives. ``SetFeedrate`` changes are inserted last, once every move's
final kinematics are known.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional, Sequence, Tuple

from fiberslice.core.config import PrintProfile
from fiberslice.core.exceptions import KinematicClampWarning
from fiberslice.motion.primitives import (
    Dwell,
    Extrude,
    FeatureChange,
    FiberCut,
    LayerChange,
    MotionPrimitive,
    ObjectChange,
    Point2D,
    Retract,
    SetFan,
    SetFeedrate,
    SetTemperature,
    Travel,
    Unretract,
    Wipe,
)
from fiberslice.slicing.fiber import FiberSegment, LayerFiberPlan
from fiberslice.slicing.regions import LayerPlan
from fiberslice.slicing.toolpath import Feature, ToolPath

logger = logging.getLogger(__name__)

_EPS = 1e-9


@dataclass(frozen=True)
class Kinematics:
    """Feedrate (mm/s), acceleration (mm/s²) and jerk (mm/s) of one move."""

    feedrate: float
    acceleration: float
    jerk: float


def extrusion_amount(length: float, width: float, thickness: float, filament_diameter: float) -> float:
    """
    Filament length needed for a bead of ``length`` mm.

    The bead cross-section is a rectangle with semicircular ends:
    ``(w - t) * t + pi * (t / 2)²``.
    """
    bead = (width - thickness) * thickness + math.pi * (thickness / 2.0) ** 2
    filament = math.pi * filament_diameter ** 2 / 4.0
    return bead * length / filament


def feature_kinematics(
    profile: PrintProfile,
    feature: Feature,
    segment: Optional[FiberSegment] = None,
) -> Kinematics:
    """
    Look up the kinematics of a feature, scaled when the move lays fiber.

    Fiber embedded in shells uses each table's ``fiber_factor``; the
    dedicated fiber pass uses the fiber speed, acceleration and jerk factors.
    """
    speed = profile.speed.for_feature(feature)
    accel = profile.acceleration.for_feature(feature)
    jerk = profile.jerk.for_feature(feature)
    if segment is not None:
        if segment.dedicated:
            speed *= profile.fiber.speed_factor
            accel *= profile.fiber.acceleration_factor
            jerk *= profile.fiber.jerk_factor
        else:
            speed *= profile.speed.fiber_factor
            accel *= profile.acceleration.fiber_factor
            jerk *= profile.jerk.fiber_factor
    return Kinematics(speed, accel, jerk)


def clamp_kinematics(
    profile: PrintProfile,
    dx: float,
    dy: float,
    requested: Kinematics,
    extruding: bool,
    e_per_mm: float = 0.0,
) -> Tuple[Kinematics, List[Tuple[str, float, float]]]:
    """
    Clamp a move's kinematics to the machine limits.

    Limits apply per axis to the share of the move along that axis, so a
    diagonal move may be faster than either axis alone. Extrusion adds the
    E axis at ``e_per_mm`` filament per mm of travel.

    Returns:
        The clamped kinematics and a ``(quantity, requested, clamped)``
        record for every value that changed.
    """
    length = math.hypot(dx, dy)
    ux, uy = (abs(dx) / length, abs(dy) / length) if length > 0 else (1.0, 0.0)

    def _axis_cap(limits: Iterable[Tuple[float, float]]) -> float:
        cap = math.inf
        for share, limit in limits:
            if share > _EPS:
                cap = min(cap, limit / share)
        return cap

    f_cap = _axis_cap([
        (ux, profile.maximum_feedrate_x),
        (uy, profile.maximum_feedrate_y),
        (e_per_mm, profile.maximum_feedrate_e),
    ])
    a_cap = min(
        profile.max_acceleration_extruding if extruding else profile.max_acceleration_travel,
        _axis_cap([
            (ux, profile.max_acceleration_x),
            (uy, profile.max_acceleration_y),
            (e_per_mm, profile.max_acceleration_e),
        ]),
    )
    j_cap = _axis_cap([
        (ux, profile.max_jerk_x),
        (uy, profile.max_jerk_y),
        (e_per_mm, profile.max_jerk_e),
    ])
    f_min = profile.minimum_feedrate_print if extruding else profile.minimum_feedrate_travel

    feedrate = requested.feedrate
    if feedrate < f_min:
        feedrate = f_min
    feedrate = min(feedrate, f_cap)
    acceleration = min(requested.acceleration, a_cap)
    jerk = min(requested.jerk, j_cap)

    clamps = [
        (name, before, after)
        for name, before, after in (
            ("feedrate", requested.feedrate, feedrate),
            ("acceleration", requested.acceleration, acceleration),
            ("jerk", requested.jerk, jerk),
        )
        if abs(before - after) > _EPS
    ]
    return Kinematics(feedrate, acceleration, jerk), clamps


def estimate_layer_time(primitives: Sequence[MotionPrimitive], start: Point2D) -> float:
    """Seconds spent on the moves, retractions and pauses of a primitive sequence."""
    x, y = start
    seconds = 0.0
    for prim in primitives:
        if isinstance(prim, (Travel, Extrude)):
            if prim.feedrate > 0:
                seconds += math.hypot(prim.x - x, prim.y - y) / prim.feedrate
            x, y = prim.x, prim.y
        elif isinstance(prim, Wipe):
            for px, py in prim.points:
                if prim.feedrate > 0:
                    seconds += math.hypot(px - x, py - y) / prim.feedrate
                x, y = px, py
        elif isinstance(prim, (Retract, Unretract)) and prim.feedrate > 0:
            seconds += prim.amount / prim.feedrate
        elif isinstance(prim, Dwell):
            seconds += prim.seconds
    return seconds


def _refine(path: ToolPath, breaks: Iterable[float]) -> List[Tuple[Point2D, float]]:
    """Path vertices with extra vertices at each break position, with their positions."""
    pts = path.points
    positions = path.cumulative_lengths()
    cuts = sorted(b for b in set(breaks) if _EPS < b < positions[-1] - _EPS)
    out: List[Tuple[Point2D, float]] = [(pts[0], 0.0)]
    k = 0
    for i in range(1, len(pts)):
        a, b = positions[i - 1], positions[i]
        while k < len(cuts) and cuts[k] < b - _EPS:
            if cuts[k] > a + _EPS:
                out.append((path.point_at(cuts[k]), cuts[k]))
            k += 1
        out.append((pts[i], b))
    return out


class MotionPlanner:
    """
    Plans the primitives of a whole run, one layer at a time.

    The planner carries the machine state between layers (position, fan,
    temperatures, active object and kinematics), so layers must be planned
    in ascending order. Clamp warnings are collected on ``warnings``,
    one per distinct clamp and layer.
    """

    def __init__(self) -> None:
        self.position: Point2D = (0.0, 0.0)
        self.fan: Optional[float] = None
        self.temperatures: Tuple[Optional[float], Optional[float]] = (None, None)
        self.kinematics: Optional[Kinematics] = None
        self.current_object: Optional[str] = None
        self.warnings: List[KinematicClampWarning] = []
        self._tail: List[Point2D] = []
        self._seen: set = set()

    # -- warnings ---------------------------------------------------------

    def _record(self, layer: int, clamps: List[Tuple[str, float, float]]) -> None:
        for quantity, requested, clamped in clamps:
            key = (layer, quantity, round(requested, 6), round(clamped, 6))
            if key in self._seen:
                continue
            self._seen.add(key)
            self.warnings.append(KinematicClampWarning(
                f"{quantity} {requested:.3f} clamped to {clamped:.3f}",
                layer=layer,
                quantity=quantity,
                requested=requested,
                clamped=clamped,
            ))

    # -- moves ------------------------------------------------------------

    def _travel(self, out: List[MotionPrimitive], target: Point2D, plan: LayerPlan) -> None:
        profile = plan.profile
        distance = math.dist(self.position, target)
        if distance <= _EPS:
            return

        retract = distance >= profile.minimum_retract_distance
        lift_speed = self._z_feedrate(plan) if retract and profile.retract_lift_z > 0 else 0.0
        if retract:
            retract_speed = min(profile.retract_speed, profile.maximum_feedrate_e)
            if retract_speed != profile.retract_speed:
                self._record(plan.index, [("retract_speed", profile.retract_speed, retract_speed)])
            wipe = self._wipe_points(profile)
            if wipe:
                out.append(Retract(profile.retract_length, retract_speed, lift=0.0))
                kin = self._wipe_kinematics(plan, wipe)
                out.append(Wipe(
                    points=tuple(wipe),
                    feedrate=kin.feedrate,
                    acceleration=kin.acceleration,
                    lift=profile.retract_lift_z,
                    lift_feedrate=lift_speed,
                ))
                self.position = wipe[-1]
            else:
                out.append(Retract(
                    profile.retract_length,
                    retract_speed,
                    lift=profile.retract_lift_z,
                    lift_feedrate=lift_speed,
                ))

        dx, dy = target[0] - self.position[0], target[1] - self.position[1]
        kin, clamps = clamp_kinematics(
            profile, dx, dy, feature_kinematics(profile, Feature.TRAVEL), extruding=False
        )
        self._record(plan.index, clamps)
        out.append(Travel(target[0], target[1], kin.feedrate, kin.acceleration, kin.jerk))
        self.position = target

        if retract:
            out.append(Unretract(
                profile.retract_length,
                min(profile.retract_speed, profile.maximum_feedrate_e),
                lift_feedrate=lift_speed,
            ))

    def _z_feedrate(self, plan: LayerPlan) -> float:
        """Travel speed capped to the Z axis, for lifts and layer changes."""
        profile = plan.profile
        speed = min(profile.speed.travel, profile.maximum_feedrate_z)
        if speed != profile.speed.travel:
            self._record(plan.index, [("z_feedrate", profile.speed.travel, speed)])
        return speed

    def _wipe_kinematics(self, plan: LayerPlan, points: List[Point2D]) -> Kinematics:
        """Wipe speed and acceleration, clamped for the tightest wipe segment."""
        profile = plan.profile
        settings = profile.retraction_wipe.setting
        requested = Kinematics(settings.speed, settings.acceleration, profile.jerk.travel)
        feedrate, acceleration = requested.feedrate, requested.acceleration
        for a, b in zip([self.position] + points, points):
            kin, clamps = clamp_kinematics(profile, b[0] - a[0], b[1] - a[1], requested, extruding=False)
            # the wipe line carries no jerk word
            self._record(plan.index, [c for c in clamps if c[0] != "jerk"])
            feedrate = min(feedrate, kin.feedrate)
            acceleration = min(acceleration, kin.acceleration)
        return Kinematics(feedrate, acceleration, requested.jerk)

    def _wipe_points(self, profile: PrintProfile) -> List[Point2D]:
        """Points back along the last extruded path, up to the wipe distance."""
        if not profile.retraction_wipe.enabled or len(self._tail) < 2:
            return []
        remaining = profile.retraction_wipe.setting.distance
        points: List[Point2D] = []
        trail = list(reversed(self._tail))
        for a, b in zip(trail, trail[1:]):
            seg = math.dist(a, b)
            if seg <= _EPS:
                continue
            if seg >= remaining:
                t = remaining / seg
                points.append((a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1])))
                break
            points.append(b)
            remaining -= seg
        return points

    def _extrude_path(
        self,
        out: List[MotionPrimitive],
        plan: LayerPlan,
        path: ToolPath,
        feature: Feature,
        segments: List[FiberSegment],
    ) -> None:
        profile = plan.profile
        thickness = plan.layer.config.height
        base_width = profile.extrusion_width.for_feature(feature)
        cuts = [s.cut_at for s in segments if s.cut_at is not None]
        breaks = [p for s in segments for p in (s.start, s.end)] + cuts

        refined = _refine(path, breaks)
        self._tail = [path.get_start_point()]
        for cut in cuts:
            if cut <= _EPS:
                out.append(FiberCut())

        for (a, pa), (b, pb) in zip(refined, refined[1:]):
            length = math.dist(a, b)
            if length <= _EPS:
                continue
            mid = (pa + pb) / 2.0
            segment = next((s for s in segments if s.start - _EPS <= mid <= s.end + _EPS), None)
            width = base_width * profile.extrusion_width.fiber_factor if segment else base_width
            amount = extrusion_amount(length, width, thickness, profile.filament.diameter)

            kin, clamps = clamp_kinematics(
                profile,
                b[0] - a[0],
                b[1] - a[1],
                feature_kinematics(profile, feature, segment),
                extruding=True,
                e_per_mm=amount / length,
            )
            self._record(plan.index, clamps)
            out.append(Extrude(
                x=b[0],
                y=b[1],
                amount=amount,
                feedrate=kin.feedrate,
                acceleration=kin.acceleration,
                jerk=kin.jerk,
                width=width,
                thickness=thickness,
                feature=feature,
                fiber=segment is not None,
            ))
            self._tail.append(b)
            self.position = b
            if any(abs(pb - c) <= _EPS for c in cuts):
                out.append(FiberCut())

    # -- layers -----------------------------------------------------------

    def _slow_down(self, layer: List[MotionPrimitive], start: Point2D, profile: PrintProfile) -> Tuple[List[MotionPrimitive], bool]:
        threshold = profile.fan.slow_down_threshold
        seconds = estimate_layer_time(layer, start)
        if threshold <= 0 or seconds <= 0 or seconds >= threshold:
            return layer, False

        factor = seconds / threshold
        floor = max(profile.fan.min_print_speed, profile.minimum_feedrate_print)
        slowed: List[MotionPrimitive] = []
        for prim in layer:
            if isinstance(prim, Extrude):
                feedrate = min(prim.feedrate, max(prim.feedrate * factor, floor))
                prim = replace(prim, feedrate=feedrate)
            slowed.append(prim)
        if profile.fan.pause_short_layers:
            remaining = threshold - estimate_layer_time(slowed, start)
            if remaining > _EPS:
                slowed.append(Dwell(remaining))
        return slowed, True

    def _with_feedrates(self, layer: List[MotionPrimitive]) -> List[MotionPrimitive]:
        out: List[MotionPrimitive] = []
        for prim in layer:
            if isinstance(prim, (Travel, Extrude)):
                kin = Kinematics(prim.feedrate, prim.acceleration, prim.jerk)
                if kin != self.kinematics:
                    out.append(SetFeedrate(kin.feedrate, kin.acceleration, kin.jerk))
                    self.kinematics = kin
            elif isinstance(prim, (Retract, Wipe, Unretract)):
                # these carry their own F word
                self.kinematics = None
            out.append(prim)
        return out

    def plan_layer(
        self,
        objects: Sequence[Tuple[str, LayerPlan, LayerFiberPlan]],
    ) -> List[MotionPrimitive]:
        """
        Plan one layer across every object that has geometry on it.

        Args:
            objects: ``(object name, layer plan, fiber plan)`` per object,
                all for the same layer index.

        Returns:
            The layer's primitives, starting with its LayerChange.
        """
        active = [(name, plan, fibers) for name, plan, fibers in objects if plan.paths()]
        if not active:
            return []

        first = active[0][1]
        profile = first.profile
        start = self.position
        body: List[MotionPrimitive] = []

        for name, plan, fibers in active:
            if self.current_object is not None and name != self.current_object:
                body.append(ObjectChange(previous=self.current_object, current=name))
            self.current_object = name

            feature: Optional[Feature] = None
            for r, region in enumerate(plan.regions):
                for p, path in enumerate(region.paths):
                    if len(path.points) < 2:
                        continue
                    self._travel(body, path.get_start_point(), plan)
                    if region.feature != feature:
                        body.append(FeatureChange(region.feature))
                        feature = region.feature
                    self._extrude_path(body, plan, path, region.feature, fibers.for_path(r, p))

        body, slowed = self._slow_down(body, start, profile)

        head: List[MotionPrimitive] = [LayerChange(first.index, first.z, self._z_feedrate(first))]
        temps = (profile.filament.extruder_temp, profile.filament.bed_temp)
        if temps != self.temperatures:
            head.append(SetTemperature(
                extruder=temps[0] if temps[0] != self.temperatures[0] else None,
                bed=temps[1] if temps[1] != self.temperatures[1] else None,
            ))
            self.temperatures = temps

        fan_allowed = first.index >= profile.fan.disable_fan_for_layers
        fan = 0.0
        if fan_allowed:
            fan = 100.0 if slowed else profile.fan.fan_speed
        if fan != self.fan:
            head.append(SetFan(fan))
            self.fan = fan

        # the layer change Z move sets its own F
        self.kinematics = None
        return head + self._with_feedrates(body)

    def plan(
        self,
        layers: Sequence[Sequence[Tuple[str, LayerPlan, LayerFiberPlan]]],
        check_cancelled=None,
    ) -> List[MotionPrimitive]:
        """Plan every layer in order; ``check_cancelled`` runs between layers."""
        primitives: List[MotionPrimitive] = []
        for objects in layers:
            if check_cancelled is not None:
                check_cancelled()
            primitives.extend(self.plan_layer(objects))
        logger.info(
            "Planned %d motion primitives, %d clamp warnings",
            len(primitives),
            len(self.warnings),
        )
        return primitives
