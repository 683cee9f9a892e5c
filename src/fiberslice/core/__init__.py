"""
Core module - Profile configuration, exceptions and logging.
"""

from fiberslice.core.config import (
    HeightRange,
    LayerRange,
    MovementParameter,
    OptionalSetting,
    PrintProfile,
    dump_profile,
    load_profile,
    validate_profile,
)
from fiberslice.core.exceptions import (
    ConfigError,
    ConfigurationError,
    FiberContinuityWarning,
    FiberSliceError,
    GeometryError,
    KinematicClampWarning,
    NonManifoldError,
    PlaceholderResolutionError,
    SettingsWarning,
    SliceCancelledError,
    SliceWarning,
    SlicingError,
)

__all__ = [
    # Config
    "HeightRange",
    "LayerRange",
    "MovementParameter",
    "OptionalSetting",
    "PrintProfile",
    "dump_profile",
    "load_profile",
    "validate_profile",
    # Exceptions
    "FiberSliceError",
    "ConfigurationError",
    "ConfigError",
    "GeometryError",
    "NonManifoldError",
    "SlicingError",
    "PlaceholderResolutionError",
    "SliceCancelledError",
    # Warnings
    "SliceWarning",
    "SettingsWarning",
    "KinematicClampWarning",
    "FiberContinuityWarning",
]
