"""
Motion primitives — the atomic machine actions handed to the emitter.

Every primitive is an immutable dataclass. Moves carry their resolved
feedrate (mm/s), acceleration (mm/s²) and jerk (mm/s); the emitter only
formats them. Markers (layer, object and feature changes) carry no motion.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from fiberslice.slicing.toolpath import Feature

Point2D = Tuple[float, float]


@dataclass(frozen=True)
class Travel:
    """Non-extruding move to ``(x, y)``."""

    x: float
    y: float
    feedrate: float
    acceleration: float
    jerk: float


@dataclass(frozen=True)
class Extrude:
    """
    Extruding move to ``(x, y)``.

    Attributes:
        amount: Filament length pushed during the move (relative E, mm).
        width: Extrusion width used for ``amount``.
        thickness: Layer thickness used for ``amount``.
        feature: Feature the move belongs to.
        fiber: The move lays continuous fiber.
    """

    x: float
    y: float
    amount: float
    feedrate: float
    acceleration: float
    jerk: float
    width: float
    thickness: float
    feature: Feature
    fiber: bool = False


@dataclass(frozen=True)
class Retract:
    """Pull filament back, optionally lifting the nozzle by ``lift`` at ``lift_feedrate``."""

    amount: float
    feedrate: float
    lift: float = 0.0
    lift_feedrate: float = 0.0


@dataclass(frozen=True)
class Wipe:
    """Non-extruding move back along the last path, right after a retract."""

    points: Tuple[Point2D, ...]
    feedrate: float
    acceleration: float
    lift: float = 0.0
    lift_feedrate: float = 0.0


@dataclass(frozen=True)
class Unretract:
    """Push filament back after a travel, dropping any lift first."""

    amount: float
    feedrate: float
    lift_feedrate: float = 0.0


@dataclass(frozen=True)
class FiberCut:
    """Fire the fiber cutter at the current position."""

    pass


@dataclass(frozen=True)
class SetFeedrate:
    """Change the active feedrate, acceleration and jerk."""

    feedrate: float
    acceleration: float
    jerk: float


@dataclass(frozen=True)
class SetTemperature:
    extruder: Optional[float] = None
    bed: Optional[float] = None


@dataclass(frozen=True)
class SetFan:
    """Fan speed in percent."""

    speed: float


@dataclass(frozen=True)
class Dwell:
    seconds: float


@dataclass(frozen=True)
class LayerChange:
    """Move to the layer height ``z`` at ``feedrate`` (Z axis, mm/s)."""

    index: int
    z: float
    feedrate: float = 0.0


@dataclass(frozen=True)
class ObjectChange:
    previous: Optional[str]
    current: str


@dataclass(frozen=True)
class FeatureChange:
    feature: Feature


MotionPrimitive = Union[
    Travel,
    Extrude,
    Retract,
    Wipe,
    Unretract,
    FiberCut,
    SetFeedrate,
    SetTemperature,
    SetFan,
    Dwell,
    LayerChange,
    ObjectChange,
    FeatureChange,
]
