"""
Per-layer configuration resolution.

Layer overrides are an ordered list of partial records merged over the global
profile by a pure function. The effective profile for a layer is:

1. the global profile,
2. every matching range override (layer index or height), in declaration order,
3. every matching single-layer override, in declaration order.

Merging is field by field and recurses into nested tables, so a later
override only replaces the fields it names. Single-layer overrides always
beat ranges covering the same index regardless of where they were declared.
Height ranges match a layer by its bottom Z and are never bounds-checked:
a range above the model simply matches nothing.

Absolute Z is the running sum of the resolved per-layer heights, and each
layer is cut at the middle of its band.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

from pydantic import ValidationError

from fiberslice.core.config import HeightRange, LayerOverride, PrintProfile
from fiberslice.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Guards the loop in LayerSchedule.build against float drift at the top.
_Z_EPSILON = 1e-9


@dataclass(frozen=True)
class ResolvedLayerConfig:
    """The profile in effect for one layer plus its Z band."""

    index: int
    bottom: float
    top: float
    profile: PrintProfile

    @property
    def height(self) -> float:
        return self.top - self.bottom

    @property
    def slice_z(self) -> float:
        """Height of the cutting plane, the middle of the band."""
        return self.bottom + self.height / 2.0


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def matching_overrides(
    overrides: Sequence[LayerOverride], index: int, bottom: float = 0.0
) -> list[LayerOverride]:
    """Overrides covering a layer in application order (ranges, then single layers)."""
    matching = [o for o in overrides if o.covers(index, bottom)]
    return sorted(matching, key=lambda o: o.is_single)


def merge_overrides(profile: PrintProfile, overrides: Sequence[LayerOverride]) -> PrintProfile:
    """
    Apply overrides to a profile in the given order.

    Raises:
        ConfigurationError: If an override names an unknown field or an
            invalid value.
    """
    if not overrides:
        return profile

    data = profile.model_dump()
    for override in overrides:
        if "layer_settings" in override.settings:
            raise ConfigurationError(
                "Layer overrides cannot contain layer_settings",
                details={"range": override.bounds()},
            )
        data = _deep_merge(data, override.settings)

    try:
        return PrintProfile.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid layer override",
            details={
                "ranges": [o.bounds() for o in overrides],
                "error": str(e),
            },
        )


def check_override_fields(profile: PrintProfile) -> None:
    """Validate every override on its own, before any layer is scheduled."""
    for override in profile.layer_settings:
        low, high = override.bounds()
        if high is not None and high < low:
            raise ConfigurationError(
                f"Override range {low}-{high} is inverted",
                details={"range": (low, high)},
            )
        resolved = merge_overrides(profile, [override])
        if resolved.layer_height <= 0:
            raise ConfigurationError(
                "Override layer_height must be greater than zero",
                details={"range": override.bounds(), "value": resolved.layer_height},
            )


def check_override_bounds(profile: PrintProfile, total_layers: int) -> None:
    """
    Reject overrides that reference layers past the end of the schedule.

    Raises:
        ConfigurationError: If a range starts or ends at or beyond
            ``total_layers``.
    """
    for override in profile.layer_settings:
        if isinstance(override, HeightRange):
            continue
        last = override.start if override.end is None else override.end
        if last >= total_layers:
            raise ConfigurationError(
                f"Layer override references layer {last} but the model has "
                f"{total_layers} layers",
                details={
                    "start": override.start,
                    "end": override.end,
                    "total_layers": total_layers,
                },
            )


def resolve_layer_config(
    index: int,
    profile: PrintProfile,
    bottom: float = 0.0,
    total_layers: int | None = None,
) -> ResolvedLayerConfig:
    """
    Resolve the configuration effective for one layer.

    Args:
        index: Layer index (0 = first layer on the bed).
        profile: Global profile carrying the ``layer_settings`` overrides.
        bottom: Z of the bottom of this layer.
        total_layers: When given, override ranges are bounds-checked against it.
    """
    if total_layers is not None:
        check_override_bounds(profile, total_layers)
    effective = merge_overrides(profile, matching_overrides(profile.layer_settings, index, bottom))
    return ResolvedLayerConfig(
        index=index,
        bottom=bottom,
        top=bottom + effective.layer_height,
        profile=effective,
    )


@dataclass(frozen=True)
class LayerSchedule:
    """Ordered, resolved layers covering a model from the bed to its top."""

    layers: tuple[ResolvedLayerConfig, ...]
    model_top: float

    @classmethod
    def build(cls, profile: PrintProfile, max_height: float) -> "LayerSchedule":
        """
        Accumulate layers until the next cutting plane would leave the model.

        Overrides are validated up front, then bounds-checked against the
        final layer count, so every configuration error surfaces before
        slicing starts.
        """
        check_override_fields(profile)

        cache: dict[tuple[int, ...], PrintProfile] = {}
        layers: list[ResolvedLayerConfig] = []
        bottom = 0.0
        index = 0
        while True:
            matching = matching_overrides(profile.layer_settings, index, bottom)
            key = tuple(id(o) for o in matching)
            if key not in cache:
                cache[key] = merge_overrides(profile, matching)
            effective = cache[key]

            layer = ResolvedLayerConfig(
                index=index,
                bottom=bottom,
                top=bottom + effective.layer_height,
                profile=effective,
            )
            if layer.slice_z >= max_height - _Z_EPSILON:
                break
            layers.append(layer)
            bottom = layer.top
            index += 1

        check_override_bounds(profile, len(layers))
        logger.debug("Scheduled %d layers up to z=%.3f", len(layers), bottom)
        return cls(layers=tuple(layers), model_top=max_height)

    def __len__(self) -> int:
        return len(self.layers)

    def __iter__(self) -> Iterator[ResolvedLayerConfig]:
        return iter(self.layers)

    def __getitem__(self, index: int) -> ResolvedLayerConfig:
        return self.layers[index]

    @property
    def heights(self) -> list[float]:
        return [layer.top for layer in self.layers]
