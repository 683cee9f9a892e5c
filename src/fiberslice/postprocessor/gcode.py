"""
GcodeEmitter — serializes motion primitives into a G-code program.

The emitter walks the primitive stream in order and keeps the machine state
it needs to avoid redundant words: position, Z, feedrate, acceleration,
jerk, lift, fan and temperatures.

Lifecycle scripts come from the profile and may use these placeholders:

  [First Layer Extruder Temp]  — extruder temperature of layer 0 (start script)
  [First Layer Bed Temp]       — bed temperature of layer 0 (start script)
  [Extruder Temperature]       — current extruder temperature
  [Bed Temperature]            — current bed temperature
  [Z Position]                 — current nozzle height
  [Layer Count]                — index of the current layer
  [Previous Object]            — object printed before an object change
  [Current Object]             — object printed after an object change

Layer-change scripts only see the layer placeholders. A placeholder left in
a script after substitution raises PlaceholderResolutionError.
"""

import io
import logging
import re
from typing import Dict, List, Optional, Sequence, TextIO

from fiberslice.core.config import PrintProfile
from fiberslice.core.exceptions import PlaceholderResolutionError
from fiberslice.motion.primitives import (
    Dwell,
    Extrude,
    FeatureChange,
    FiberCut,
    LayerChange,
    MotionPrimitive,
    ObjectChange,
    Retract,
    SetFan,
    SetFeedrate,
    SetTemperature,
    Travel,
    Unretract,
    Wipe,
)

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\[[^\[\]\n]+\]")

_LAYER_TOKENS = ("Extruder Temperature", "Bed Temperature", "Z Position", "Layer Count")
_START_TOKENS = _LAYER_TOKENS + ("First Layer Extruder Temp", "First Layer Bed Temp")
_OBJECT_TOKENS = _LAYER_TOKENS + ("Previous Object", "Current Object")
_END_TOKENS = _LAYER_TOKENS + ("Current Object",)

# script field -> placeholders it may use
SCRIPT_TOKENS = {
    "starting_instructions": _START_TOKENS,
    "ending_instructions": _END_TOKENS,
    "before_layer_change_instructions": _LAYER_TOKENS,
    "after_layer_change_instructions": _LAYER_TOKENS,
    "object_change_instructions": _OBJECT_TOKENS,
}


def fmt(value: float, digits: int = 5) -> str:
    """Fixed-point number, never in scientific notation and never ``-0``."""
    text = f"{value:.{digits}f}"
    if float(text) == 0.0:
        text = f"{0.0:.{digits}f}"
    return text


def resolve_placeholders(script: str, values: Dict[str, str], script_name: str) -> List[str]:
    """
    Substitute placeholders in a script and split it into lines.

    Raises:
        PlaceholderResolutionError: If a ``[...]`` token is left over.
    """
    for name, value in values.items():
        script = script.replace(f"[{name}]", value)
    leftover = _PLACEHOLDER.search(script)
    if leftover:
        raise PlaceholderResolutionError(
            f"Unresolved placeholder {leftover.group(0)} in {script_name}",
            script=script_name,
            token=leftover.group(0),
            details={"allowed": list(SCRIPT_TOKENS.get(script_name, ()))},
        )
    return [line.rstrip() for line in script.strip("\n").split("\n") if line.strip()]


def check_scripts(profile: PrintProfile) -> None:
    """
    Resolve every lifecycle script against dummy values.

    Lets a run fail on a bad placeholder before any slicing work.
    """
    for name, tokens in SCRIPT_TOKENS.items():
        resolve_placeholders(getattr(profile, name), {t: "0" for t in tokens}, name)


class GcodeEmitter:
    """
    Stateful G-code serializer.

    Parameters:
        profile: Global profile (machine limits, retraction, scripts).
        first_layer: Profile resolved for layer 0, used by the start script.
    """

    def __init__(self, profile: PrintProfile, first_layer: Optional[PrintProfile] = None):
        self.profile = profile
        self.first_layer = first_layer or profile
        self.layer_lines: List[int] = []
        self._reset()

    def _reset(self) -> None:
        self._lines: List[str] = []
        self.layer_lines = []
        self._z = 0.0
        self._layer = 0
        self._lifted = False
        self._feedrate: Optional[float] = None
        self._acceleration: Optional[float] = None
        self._jerk: Optional[float] = None
        self._fan: Optional[int] = None
        self._extruder: Optional[float] = None
        self._bed: Optional[float] = None
        self._object: Optional[str] = None

    # ── Script context ────────────────────────────────────────────────

    def _layer_values(self) -> Dict[str, str]:
        extruder = self._extruder if self._extruder is not None else self.first_layer.filament.extruder_temp
        bed = self._bed if self._bed is not None else self.first_layer.filament.bed_temp
        return {
            "Extruder Temperature": fmt(extruder, 1),
            "Bed Temperature": fmt(bed, 1),
            "Z Position": fmt(self._z, 5),
            "Layer Count": str(self._layer),
        }

    def _script(self, name: str, extra: Optional[Dict[str, str]] = None) -> None:
        script = getattr(self.profile, name)
        if not script.strip():
            return
        values = self._layer_values()
        if extra:
            values.update(extra)
        allowed = SCRIPT_TOKENS[name]
        values = {k: v for k, v in values.items() if k in allowed}
        self._lines.extend(resolve_placeholders(script, values, name))

    # ── Sections ──────────────────────────────────────────────────────

    def header(self) -> List[str]:
        p = self.profile
        return [
            f"M201 X{fmt(p.max_acceleration_x, 1)} Y{fmt(p.max_acceleration_y, 1)} "
            f"Z{fmt(p.max_acceleration_z, 1)} E{fmt(p.max_acceleration_e, 1)}"
            "; sets maximum accelerations, mm/sec^2",
            f"M203 X{fmt(p.maximum_feedrate_x, 1)} Y{fmt(p.maximum_feedrate_y, 1)} "
            f"Z{fmt(p.maximum_feedrate_z, 1)} E{fmt(p.maximum_feedrate_e, 1)}"
            "; sets maximum feedrates, mm/sec",
            f"M204 P{fmt(p.max_acceleration_extruding, 1)} R{fmt(p.max_acceleration_retracting, 1)} "
            f"T{fmt(p.max_acceleration_travel, 1)}"
            "; sets acceleration (P, T) and retract acceleration (R), mm/sec^2",
            f"M205 X{fmt(p.max_jerk_x, 1)} Y{fmt(p.max_jerk_y, 1)} "
            f"Z{fmt(p.max_jerk_z, 1)} E{fmt(p.max_jerk_e, 1)}"
            "; sets the jerk limits, mm/sec",
            f"M205 S{fmt(p.minimum_feedrate_print, 1)} T{fmt(p.minimum_feedrate_travel, 1)}"
            " ; sets the minimum extruding and travel feed rate, mm/sec",
        ]

    def _start(self) -> None:
        self._lines.extend(self.header())
        self._script("starting_instructions", {
            "First Layer Extruder Temp": fmt(self.first_layer.filament.extruder_temp, 1),
            "First Layer Bed Temp": fmt(self.first_layer.filament.bed_temp, 1),
        })
        self._lines.append("G21 ; set units to millimeters")
        self._lines.append("G90 ; use absolute Coords")
        self._lines.append("M83 ; use relative distances for extrusion")

    def _end(self) -> None:
        self._script("ending_instructions", {"Current Object": self._object or ""})

    # ── Primitives ────────────────────────────────────────────────────

    def _set_kinematics(self, feedrate: float, acceleration: Optional[float] = None, jerk: Optional[float] = None) -> None:
        f = fmt(feedrate * 60.0, 5)
        if f != self._feedrate:
            self._lines.append(f"G1 F{f}")
            self._feedrate = f
        if acceleration is not None:
            a = fmt(acceleration, 1)
            if a != self._acceleration:
                self._lines.append(f"M204 S{a}")
                self._acceleration = a
        if jerk is not None:
            j = fmt(jerk, 1)
            if j != self._jerk:
                self._lines.append(f"M205 X{j} Y{j}")
                self._jerk = j

    def _z_move(self, z: float, feedrate: float, comment: str = "") -> None:
        if feedrate <= 0:
            feedrate = min(self.profile.speed.travel, self.profile.maximum_feedrate_z)
        self._lines.append(f"G1 Z{fmt(z)} F{fmt(60.0 * feedrate)}{comment}")
        self._feedrate = None

    def _lift(self, lift: float, feedrate: float) -> None:
        if lift > 0 and not self._lifted:
            self._z_move(self._z + lift, feedrate, "; z Lift")
            self._lifted = True

    def emit_primitive(self, prim: MotionPrimitive) -> None:
        if isinstance(prim, Travel):
            self._lines.append(f"G1 X{fmt(prim.x)} Y{fmt(prim.y)}")
        elif isinstance(prim, Extrude):
            e = fmt(prim.amount)
            line = f"G1 X{fmt(prim.x)} Y{fmt(prim.y)} E{e}"
            if prim.fiber:
                line += f" D{e}"
            self._lines.append(line)
        elif isinstance(prim, SetFeedrate):
            self._set_kinematics(prim.feedrate, prim.acceleration, prim.jerk)
        elif isinstance(prim, Retract):
            self._lines.append(f"G1 E{fmt(-prim.amount)} F{fmt(60.0 * prim.feedrate)}; Retract")
            self._feedrate = None
            self._lift(prim.lift, prim.lift_feedrate)
        elif isinstance(prim, Wipe):
            self._set_kinematics(prim.feedrate, prim.acceleration)
            for x, y in prim.points:
                self._lines.append(f"G1 X{fmt(x)} Y{fmt(y)}; Wipe")
            self._lift(prim.lift, prim.lift_feedrate)
        elif isinstance(prim, Unretract):
            if self._lifted:
                self._z_move(self._z, prim.lift_feedrate, "; z unlift")
                self._lifted = False
            self._lines.append(f"G1 E{fmt(prim.amount)} F{fmt(60.0 * prim.feedrate)}; Unretract")
            self._feedrate = None
        elif isinstance(prim, FiberCut):
            self._lines.append("M300; cut fiber")
        elif isinstance(prim, SetTemperature):
            if prim.extruder is not None and prim.extruder != self._extruder:
                self._lines.append(f"M104 S{fmt(prim.extruder, 1)} ; set extruder temp")
                self._extruder = prim.extruder
            if prim.bed is not None and prim.bed != self._bed:
                self._lines.append(f"M140 S{fmt(prim.bed, 1)} ; set bed temp")
                self._bed = prim.bed
        elif isinstance(prim, SetFan):
            value = int(round(2.55 * prim.speed))
            if value != self._fan:
                self._lines.append(f"M106 S{value} ; set fan speed")
                self._fan = value
        elif isinstance(prim, Dwell):
            self._lines.append(f"G4 P{int(round(prim.seconds * 1000.0))}")
        elif isinstance(prim, LayerChange):
            self.layer_lines.append(len(self._lines))
            self._lines.append(f";LAYER:{prim.index}")
            self._layer = prim.index
            # before-layer scripts still see the previous Z
            self._script("before_layer_change_instructions")
            self._z = prim.z
            self._lifted = False
            self._z_move(prim.z, prim.feedrate)
            self._script("after_layer_change_instructions")
        elif isinstance(prim, ObjectChange):
            self._object = prim.current
            self._script("object_change_instructions", {
                "Previous Object": prim.previous or "",
                "Current Object": prim.current,
            })
        elif isinstance(prim, FeatureChange):
            self._lines.append(f";TYPE:{prim.feature.value}")
        else:
            raise TypeError(f"Unknown motion primitive: {type(prim).__name__}")

    # ── Main generation ───────────────────────────────────────────────

    def generate(self, primitives: Sequence[MotionPrimitive]) -> str:
        """
        Generate the complete program.

        Returns:
            The program text, one instruction per line.

        Raises:
            PlaceholderResolutionError: If a script holds an unknown placeholder.
        """
        self._reset()
        self._start()
        for prim in primitives:
            self.emit_primitive(prim)
        self._end()
        logger.info("Emitted %d lines, %d layers", len(self._lines), len(self.layer_lines))
        return "\n".join(self._lines) + "\n"

    def write(self, primitives: Sequence[MotionPrimitive], stream: TextIO) -> None:
        """Generate the program and write it to ``stream`` in one piece."""
        stream.write(self.generate(primitives))


def to_gcode(primitives: Sequence[MotionPrimitive], profile: PrintProfile,
             first_layer: Optional[PrintProfile] = None) -> str:
    """Convenience wrapper: emit a program as a string."""
    buffer = io.StringIO()
    GcodeEmitter(profile, first_layer).write(primitives, buffer)
    return buffer.getvalue()
