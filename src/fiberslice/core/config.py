"""
Print profile configuration for fiberslice.

The profile is a tree of frozen pydantic models. Optional features (skirt,
support, brim, wipe, fiber sub-modes) use an ``{enabled, setting}`` block so
a profile can switch a feature off without losing its parameters. Profiles
are loaded from YAML documents with the same layout.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fiberslice.core.exceptions import ConfigurationError, SettingsWarning

T = TypeVar("T")


class _ProfileModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class SolidInfillType(str, Enum):
    """Pattern used for fully dense infill."""

    RECTILINEAR = "Rectilinear"
    RECTILINEAR_CUSTOM = "RectilinearCustom"


class PartialInfillType(str, Enum):
    """Pattern used for density-controlled infill."""

    LINEAR = "Linear"
    RECTILINEAR = "Rectilinear"
    TRIANGLE = "Triangle"
    CUBIC = "Cubic"


class WallPatternType(str, Enum):
    """How fiber is distributed over the shell loops."""

    ALTERNATING = "Alternating"
    RANDOM = "Random"
    FULL = "Full"


class OptionalSetting(_ProfileModel, Generic[T]):
    """A feature block that can be switched off without losing its values."""

    enabled: bool = False
    setting: T


# Feature value -> MovementParameter field. Keys are the ``Feature`` enum
# values from fiberslice.slicing.toolpath.
# Slack when matching a layer bottom against a height range.
_Z_TOLERANCE = 1e-6

_FEATURE_FIELDS = {
    "WallOuter": "exterior_surface_perimeter",
    "WallInner": "interior_surface_perimeter",
    "InteriorWallOuter": "exterior_inner_perimeter",
    "InteriorWallInner": "interior_inner_perimeter",
    "TopSolidInfill": "solid_top_infill",
    "SolidInfill": "solid_infill",
    "Infill": "infill",
    "Bridging": "bridge",
    "Support": "support",
    "Skirt": "exterior_surface_perimeter",
    "Brim": "exterior_surface_perimeter",
    "Travel": "travel",
}


class MovementParameter(_ProfileModel):
    """One value per feature kind, used for speeds, accelerations, jerks and widths."""

    interior_inner_perimeter: float
    interior_surface_perimeter: float
    exterior_inner_perimeter: float
    exterior_surface_perimeter: float
    solid_top_infill: float
    solid_infill: float
    infill: float
    travel: float
    bridge: float
    support: float
    fiber_factor: float = 1.0

    @classmethod
    def uniform(cls, value: float, travel: float | None = None, fiber_factor: float = 1.0) -> "MovementParameter":
        """Build a table holding the same value for every printing feature."""
        return cls(
            interior_inner_perimeter=value,
            interior_surface_perimeter=value,
            exterior_inner_perimeter=value,
            exterior_surface_perimeter=value,
            solid_top_infill=value,
            solid_infill=value,
            infill=value,
            travel=value if travel is None else travel,
            bridge=value,
            support=value,
            fiber_factor=fiber_factor,
        )

    def for_feature(self, feature: Any) -> float:
        """Look up the value for a ``Feature`` (or its string value)."""
        key = getattr(feature, "value", feature)
        return getattr(self, _FEATURE_FIELDS[key])

    def printing_values(self) -> list[float]:
        return [
            self.interior_inner_perimeter,
            self.interior_surface_perimeter,
            self.exterior_inner_perimeter,
            self.exterior_surface_perimeter,
            self.solid_top_infill,
            self.solid_infill,
            self.infill,
            self.bridge,
            self.support,
        ]


def _default_speed() -> MovementParameter:
    return MovementParameter(
        interior_inner_perimeter=40.0,
        interior_surface_perimeter=40.0,
        exterior_inner_perimeter=40.0,
        exterior_surface_perimeter=40.0,
        solid_top_infill=200.0,
        solid_infill=200.0,
        infill=200.0,
        travel=180.0,
        bridge=30.0,
        support=50.0,
        fiber_factor=0.5,
    )


def _default_acceleration() -> MovementParameter:
    return MovementParameter(
        interior_inner_perimeter=900.0,
        interior_surface_perimeter=900.0,
        exterior_inner_perimeter=800.0,
        exterior_surface_perimeter=800.0,
        solid_top_infill=1000.0,
        solid_infill=1000.0,
        infill=1000.0,
        travel=1000.0,
        bridge=1000.0,
        support=1000.0,
        fiber_factor=0.5,
    )


class FilamentSettings(_ProfileModel):
    """Filament geometry and temperatures."""

    diameter: float = 1.75
    density: float = 1.24
    cost: float = 24.99
    extruder_temp: float = 210.0
    bed_temp: float = 60.0


class FanSettings(_ProfileModel):
    fan_speed: float = 100.0
    disable_fan_for_layers: int = 1
    slow_down_threshold: float = 15.0
    min_print_speed: float = 15.0
    pause_short_layers: bool = False


class SkirtSettings(_ProfileModel):
    layers: int = 1
    loops: int = 1
    distance: float = 10.0


class SupportSettings(_ProfileModel):
    max_overhang_angle: float = 45.0
    support_spacing: float = 2.0


class RetractionWipeSettings(_ProfileModel):
    speed: float = 40.0
    acceleration: float = 1000.0
    distance: float = 2.0


class WallPatternSettings(_ProfileModel):
    """Schedule deciding which shell loops carry fiber."""

    pattern: WallPatternType = WallPatternType.ALTERNATING
    alternating_layer_width: int = 1
    alternating_layer_spacing: int = 0
    alternating_wall_width: int = 1
    alternating_wall_spacing: int = 1
    alternating_step: int = 1
    wall_ranges: str = ""


class FiberInfillSettings(_ProfileModel):
    """Dedicated fiber infill pass, alternating with plain infill layers."""

    partial_infill_type: PartialInfillType = PartialInfillType.LINEAR
    infill_percentage: float = 0.2
    width: int = 1
    spacing: int = 1
    solid_infill: bool = False
    air_space: bool = False


class ContinuousFiberSettings(_ProfileModel):
    pass


class FiberSettings(_ProfileModel):
    """Continuous fiber reinforcement."""

    diameter: float = 0.15
    cut_before: float = 20.0
    min_length: float = 25.0
    max_angle: float = 45.0
    speed_factor: float = 1.4
    acceleration_factor: float = 1.0
    jerk_factor: float = 1.0
    continuous: OptionalSetting[ContinuousFiberSettings] = Field(
        default_factory=lambda: OptionalSetting[ContinuousFiberSettings](
            enabled=True, setting=ContinuousFiberSettings()
        )
    )
    wall_pattern: OptionalSetting[WallPatternSettings] = Field(
        default_factory=lambda: OptionalSetting[WallPatternSettings](
            enabled=True, setting=WallPatternSettings()
        )
    )
    infill: OptionalSetting[FiberInfillSettings] = Field(
        default_factory=lambda: OptionalSetting[FiberInfillSettings](
            enabled=True, setting=FiberInfillSettings()
        )
    )

    @property
    def enabled(self) -> bool:
        return self.continuous.enabled and (self.wall_pattern.enabled or self.infill.enabled)


class LayerRange(_ProfileModel):
    """
    Override of a subset of profile fields for one layer or an inclusive range.

    ``end`` is None for a single-layer override. ``settings`` uses the same
    layout as the profile itself; nested tables may be given partially.
    """

    start: int = Field(ge=0)
    end: Optional[int] = None
    settings: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_single(self) -> bool:
        return self.end is None

    def covers(self, index: int, bottom: float = 0.0) -> bool:
        if self.end is None:
            return index == self.start
        return self.start <= index <= self.end

    def bounds(self) -> tuple[float, Optional[float]]:
        return (self.start, self.end)


class HeightRange(_ProfileModel):
    """
    Override for every layer whose bottom lies in ``[min_z, max_z]`` (mm).

    Height ranges rank with layer ranges: single-layer overrides still win.
    """

    min_z: float = Field(ge=0)
    max_z: float
    settings: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_single(self) -> bool:
        return False

    def covers(self, index: int, bottom: float = 0.0) -> bool:
        return self.min_z - _Z_TOLERANCE <= bottom <= self.max_z + _Z_TOLERANCE

    def bounds(self) -> tuple[float, Optional[float]]:
        return (self.min_z, self.max_z)


LayerOverride = Union[LayerRange, HeightRange]


class PrintProfile(_ProfileModel):
    """Process-wide configuration for one slice run."""

    layer_height: float = 0.6
    nozzle_diameter: float = 0.8
    extrusion_width: MovementParameter = Field(
        default_factory=lambda: MovementParameter.uniform(0.4, fiber_factor=0.5)
    )
    filament: FilamentSettings = Field(default_factory=FilamentSettings)
    fiber: FiberSettings = Field(default_factory=FiberSettings)
    fan: FanSettings = Field(default_factory=FanSettings)

    skirt: OptionalSetting[SkirtSettings] = Field(
        default_factory=lambda: OptionalSetting[SkirtSettings](setting=SkirtSettings())
    )
    support: OptionalSetting[SupportSettings] = Field(
        default_factory=lambda: OptionalSetting[SupportSettings](setting=SupportSettings())
    )
    brim_width: OptionalSetting[float] = Field(
        default_factory=lambda: OptionalSetting[float](setting=0.0)
    )
    layer_shrink_amount: OptionalSetting[float] = Field(
        default_factory=lambda: OptionalSetting[float](setting=0.0)
    )

    retract_length: float = 0.8
    retract_lift_z: float = 0.6
    retract_speed: float = 35.0
    minimum_retract_distance: float = 1.0
    retraction_wipe: OptionalSetting[RetractionWipeSettings] = Field(
        default_factory=lambda: OptionalSetting[RetractionWipeSettings](
            setting=RetractionWipeSettings()
        )
    )

    speed: MovementParameter = Field(default_factory=_default_speed)
    acceleration: MovementParameter = Field(default_factory=_default_acceleration)
    jerk: MovementParameter = Field(
        default_factory=lambda: MovementParameter.uniform(8.0)
    )

    infill_percentage: float = 0.2
    inner_perimeters_first: bool = True
    number_of_perimeters: int = 3
    top_layers: int = 3
    bottom_layers: int = 3
    infill_perimeter_overlap_percentage: float = 0.25
    solid_infill_type: SolidInfillType = SolidInfillType.RECTILINEAR
    solid_infill_angle_step: float = 120.0
    partial_infill_type: PartialInfillType = PartialInfillType.LINEAR

    print_x: float = 210.0
    print_y: float = 210.0
    print_z: float = 210.0

    starting_instructions: str = ""
    ending_instructions: str = ""
    before_layer_change_instructions: str = ""
    after_layer_change_instructions: str = ""
    object_change_instructions: str = ""

    max_acceleration_x: float = 1000.0
    max_acceleration_y: float = 1000.0
    max_acceleration_z: float = 1000.0
    max_acceleration_e: float = 5000.0
    max_acceleration_extruding: float = 1250.0
    max_acceleration_travel: float = 1250.0
    max_acceleration_retracting: float = 1250.0
    max_jerk_x: float = 8.0
    max_jerk_y: float = 8.0
    max_jerk_z: float = 0.4
    max_jerk_e: float = 1.5
    minimum_feedrate_print: float = 0.0
    minimum_feedrate_travel: float = 0.0
    maximum_feedrate_x: float = 200.0
    maximum_feedrate_y: float = 200.0
    maximum_feedrate_z: float = 12.0
    maximum_feedrate_e: float = 120.0

    layer_settings: list[LayerOverride] = Field(default_factory=list)

    @property
    def extrusion_tolerance(self) -> float:
        """Chaining tolerance for cross-section segments, a fraction of the finest width."""
        return min(self.extrusion_width.printing_values()) * 0.05


def load_profile(path: Path | str) -> PrintProfile:
    """
    Load a print profile from a YAML document.

    Args:
        path: Path to the profile file.

    Raises:
        ConfigurationError: If the file is missing, malformed or invalid.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Profile not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return PrintProfile.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigurationError(
            f"Failed to load profile: {path}",
            details={"error": str(e)},
        )


def dump_profile(profile: PrintProfile, path: Path | str) -> None:
    """Write a profile back out as YAML."""
    with open(path, "w") as f:
        yaml.safe_dump(profile.model_dump(mode="json"), f, sort_keys=False)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

_POSITIVE_FIELDS = (
    "print_x", "print_y", "print_z", "nozzle_diameter", "layer_height",
    "retract_speed",
    "max_acceleration_x", "max_acceleration_y", "max_acceleration_z", "max_acceleration_e",
    "max_jerk_x", "max_jerk_y", "max_jerk_z", "max_jerk_e",
    "max_acceleration_extruding", "max_acceleration_travel", "max_acceleration_retracting",
    "maximum_feedrate_x", "maximum_feedrate_y", "maximum_feedrate_z", "maximum_feedrate_e",
)

_NON_NEGATIVE_FIELDS = (
    "number_of_perimeters", "infill_percentage", "top_layers", "bottom_layers",
    "retract_length", "retract_lift_z",
    "minimum_feedrate_travel", "minimum_feedrate_print", "minimum_retract_distance",
)


def _check_layer_height(height: float, nozzle: float, layer: int | None) -> list[SettingsWarning]:
    if height < nozzle * 0.2:
        return [SettingsWarning(
            f"Layer height {height} is below 20% of the nozzle diameter {nozzle}",
            layer=layer,
        )]
    if height > nozzle * 0.8:
        return [SettingsWarning(
            f"Layer height {height} is above 80% of the nozzle diameter {nozzle}",
            layer=layer,
        )]
    return []


def _check_extruder_temp(temp: float, layer: int | None) -> list[SettingsWarning]:
    if temp < 140.0:
        return [SettingsWarning(f"Nozzle temperature {temp} is too low", layer=layer)]
    if temp > 260.0:
        return [SettingsWarning(f"Nozzle temperature {temp} is too high", layer=layer)]
    return []


def _check_extrusions(widths: MovementParameter, nozzle: float, layer: int | None) -> list[SettingsWarning]:
    warnings = []
    for name in dict.fromkeys(_FEATURE_FIELDS.values()):
        if name == "travel":
            continue
        width = getattr(widths, name)
        if width < nozzle * 0.6:
            warnings.append(SettingsWarning(
                f"Extrusion width {width} for {name} is below 60% of the nozzle diameter",
                layer=layer,
                details={"feature": name, "nozzle_diameter": nozzle},
            ))
        elif width > nozzle * 2.0:
            warnings.append(SettingsWarning(
                f"Extrusion width {width} for {name} is above twice the nozzle diameter",
                layer=layer,
                details={"feature": name, "nozzle_diameter": nozzle},
            ))
    return warnings


def _check_accelerations(
    acceleration: MovementParameter,
    speed: MovementParameter,
    bed_size: float,
    layer: int | None,
) -> list[SettingsWarning]:
    warnings = []
    for name in dict.fromkeys(_FEATURE_FIELDS.values()):
        accel = getattr(acceleration, name)
        velocity = getattr(speed, name)
        if accel > 0 and velocity * velocity / (2.0 * accel) > bed_size:
            warnings.append(SettingsWarning(
                f"Acceleration {accel} for {name} cannot reach speed {velocity} within the bed",
                layer=layer,
                details={"feature": name, "bed_size": bed_size},
            ))
    return warnings


def validate_profile(profile: PrintProfile) -> list[SettingsWarning]:
    """
    Check a profile for impossible and suspicious values.

    Impossible values (non-positive machine limits, negative counts and
    distances) raise ConfigurationError. Suspicious values are returned as
    SettingsWarning records.

    Raises:
        ConfigurationError: On the first impossible value.
    """
    for name in _POSITIVE_FIELDS:
        value = getattr(profile, name)
        if value <= 0:
            raise ConfigurationError(
                f"Setting {name} must be greater than zero",
                details={"setting": name, "value": value},
            )
    for name in _NON_NEGATIVE_FIELDS:
        value = getattr(profile, name)
        if value < 0:
            raise ConfigurationError(
                f"Setting {name} must not be negative",
                details={"setting": name, "value": value},
            )

    warnings: list[SettingsWarning] = []
    bed_size = min(profile.print_x, profile.print_y)
    warnings += _check_layer_height(profile.layer_height, profile.nozzle_diameter, None)
    warnings += _check_extrusions(profile.extrusion_width, profile.nozzle_diameter, None)
    warnings += _check_accelerations(profile.acceleration, profile.speed, bed_size, None)

    if profile.skirt.enabled and profile.brim_width.enabled:
        if profile.skirt.setting.distance <= profile.brim_width.setting:
            warnings.append(SettingsWarning(
                "Skirt distance is inside the brim",
                details={
                    "skirt_distance": profile.skirt.setting.distance,
                    "brim_width": profile.brim_width.setting,
                },
            ))

    warnings += _check_extruder_temp(profile.filament.extruder_temp, None)

    for override in profile.layer_settings:
        settings = override.settings
        layer = override.start if isinstance(override, LayerRange) else None
        height = settings.get("layer_height")
        if height is not None:
            if height <= 0:
                raise ConfigurationError(
                    "Override layer_height must be greater than zero",
                    details={"layer": layer, "value": height},
                )
            warnings += _check_layer_height(height, profile.nozzle_diameter, layer)
        if settings.get("infill_percentage", 0) < 0:
            raise ConfigurationError(
                "Override infill_percentage must not be negative",
                details={"layer": layer},
            )
        temp = settings.get("filament", {}).get("extruder_temp")
        if temp is not None:
            warnings += _check_extruder_temp(temp, layer)

    return warnings
