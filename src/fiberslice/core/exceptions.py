"""
Custom exceptions and warning records for fiberslice.

All fatal errors inherit from FiberSliceError for easy catching. Non-fatal
conditions are plain dataclass records collected on the slice result instead
of being raised.
"""

from dataclasses import dataclass, field
from typing import Any


class FiberSliceError(Exception):
    """Base exception for all fiberslice errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class ConfigurationError(FiberSliceError):
    """Raised when a profile or a layer override is invalid."""

    pass


ConfigError = ConfigurationError


class GeometryError(FiberSliceError):
    """Raised when the input mesh cannot be sliced safely."""

    pass


class NonManifoldError(GeometryError):
    """Raised when a mesh edge or a cross-section chain is not closed."""

    def __init__(
        self,
        message: str,
        z: float | None = None,
        vertex: tuple[float, ...] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.z = z
        self.vertex = vertex


class SlicingError(FiberSliceError):
    """Raised when region or toolpath generation fails."""

    pass


class PlaceholderResolutionError(FiberSliceError):
    """Raised when a lifecycle script still holds an unknown placeholder."""

    def __init__(
        self,
        message: str,
        script: str,
        token: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.script = script
        self.token = token


class SliceCancelledError(FiberSliceError):
    """Raised when a run is cancelled between layers."""

    pass


# ---------------------------------------------------------------------------
# Non-fatal warnings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SliceWarning:
    """Base record for a recoverable condition reported to the operator."""

    message: str
    layer: int | None = None
    details: dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class SettingsWarning(SliceWarning):
    """A profile value that is legal but likely to print badly."""

    pass


@dataclass(frozen=True)
class KinematicClampWarning(SliceWarning):
    """A requested feedrate, acceleration or jerk was clamped to a machine limit."""

    quantity: str = ""
    requested: float = 0.0
    clamped: float = 0.0


@dataclass(frozen=True)
class FiberContinuityWarning(SliceWarning):
    """A fiber run was dropped because it was shorter than the minimum length."""

    length: float = 0.0
    min_length: float = 0.0
