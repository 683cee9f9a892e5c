"""
Tests for per-layer configuration resolution and the layer schedule.
"""

import pytest

from fiberslice.core.config import HeightRange, LayerRange
from fiberslice.core.exceptions import ConfigurationError
from fiberslice.slicing.resolver import (
    LayerSchedule,
    matching_overrides,
    merge_overrides,
    resolve_layer_config,
)


def _with_overrides(profile, *overrides):
    return profile.model_copy(update={"layer_settings": list(overrides)})


@pytest.mark.unit
class TestMergeOverrides:
    """Tests for the override merge."""

    def test_no_overrides_returns_profile(self, profile):
        assert merge_overrides(profile, []) is profile

    def test_nested_fields_merge_partially(self, profile):
        """Test a nested override only replaces the fields it names."""
        merged = merge_overrides(profile, [LayerRange(start=0, settings={"filament": {"bed_temp": 80.0}})])
        assert merged.filament.bed_temp == 80.0
        assert merged.filament.extruder_temp == profile.filament.extruder_temp

    def test_later_range_wins_per_field(self, profile):
        first = LayerRange(start=0, end=10, settings={"layer_height": 0.3, "infill_percentage": 0.5})
        second = LayerRange(start=5, end=10, settings={"layer_height": 0.4})
        merged = merge_overrides(profile, matching_overrides([first, second], 6))
        assert merged.layer_height == 0.4
        assert merged.infill_percentage == 0.5

    def test_single_layer_beats_range_declared_later(self, profile):
        """Test a single-layer override wins even when declared before its range."""
        single = LayerRange(start=4, settings={"layer_height": 0.2})
        enclosing = LayerRange(start=0, end=9, settings={"layer_height": 0.5})
        config = resolve_layer_config(4, _with_overrides(profile, single, enclosing))
        assert config.profile.layer_height == 0.2

    def test_unknown_field_rejected(self, profile):
        with pytest.raises(ConfigurationError, match="Invalid layer override"):
            merge_overrides(profile, [LayerRange(start=0, settings={"no_such_field": 1})])

    def test_nested_layer_settings_rejected(self, profile):
        with pytest.raises(ConfigurationError):
            merge_overrides(profile, [LayerRange(start=0, settings={"layer_settings": []})])


@pytest.mark.unit
class TestResolveLayerConfig:
    """Tests for resolve_layer_config."""

    def test_band(self, profile):
        config = resolve_layer_config(0, profile)
        assert config.bottom == 0.0
        assert config.top == pytest.approx(0.6)
        assert config.slice_z == pytest.approx(0.3)

    def test_unmatched_layer_uses_global(self, profile):
        config = resolve_layer_config(3, _with_overrides(profile, LayerRange(start=0, settings={"layer_height": 0.3})))
        assert config.profile.layer_height == profile.layer_height

    def test_out_of_bounds_range(self, profile):
        p = _with_overrides(profile, LayerRange(start=2, end=20, settings={"layer_height": 0.3}))
        with pytest.raises(ConfigurationError) as exc_info:
            resolve_layer_config(0, p, total_layers=10)
        assert exc_info.value.details["total_layers"] == 10


@pytest.mark.unit
class TestLayerSchedule:
    """Tests for the layer schedule."""

    def test_running_sum(self, profile):
        """Test Z is the running sum of per-layer heights."""
        p = _with_overrides(
            profile,
            LayerRange(start=0, settings={"layer_height": 0.3}),
            LayerRange(start=1, end=2, settings={"layer_height": 0.4}),
        )
        schedule = LayerSchedule.build(p, 5.0)
        heights = [layer.height for layer in schedule]
        assert heights[:4] == pytest.approx([0.3, 0.4, 0.4, 0.6])

        total = 0.0
        for layer, height in zip(schedule, heights):
            total += height
            assert layer.top == pytest.approx(total)
        tops = schedule.heights
        assert all(b > a for a, b in zip(tops, tops[1:]))

    def test_cuts_stay_inside_model(self, profile):
        schedule = LayerSchedule.build(profile, 6.0)
        assert len(schedule) == 10
        assert all(layer.slice_z < 6.0 for layer in schedule)
        assert schedule.model_top == 6.0

    def test_idempotent(self, profile):
        """Test rebuilding with identical overrides gives identical layers."""
        p = _with_overrides(profile, LayerRange(start=0, end=3, settings={"layer_height": 0.3}))
        first = LayerSchedule.build(p, 4.0)
        second = LayerSchedule.build(p, 4.0)
        assert [(l.bottom, l.top) for l in first] == [(l.bottom, l.top) for l in second]

    def test_override_beyond_model(self, profile):
        """Test a range past the last layer fails before slicing."""
        p = _with_overrides(profile, LayerRange(start=50, settings={"layer_height": 0.3}))
        with pytest.raises(ConfigurationError, match="references layer 50"):
            LayerSchedule.build(p, 6.0)

    def test_inverted_range(self, profile):
        p = _with_overrides(profile, LayerRange(start=5, end=2, settings={}))
        with pytest.raises(ConfigurationError, match="inverted"):
            LayerSchedule.build(p, 6.0)

    def test_non_positive_height(self, profile):
        p = _with_overrides(profile, LayerRange(start=0, settings={"layer_height": 0.0}))
        with pytest.raises(ConfigurationError):
            LayerSchedule.build(p, 6.0)


@pytest.mark.unit
class TestHeightRanges:
    """Tests for overrides keyed by layer height."""

    def test_matched_by_layer_bottom(self, profile):
        p = _with_overrides(profile, HeightRange(min_z=1.2, max_z=2.4, settings={"layer_height": 0.3}))
        schedule = LayerSchedule.build(p, 6.0)
        heights = [layer.height for layer in schedule]
        assert heights[:7] == pytest.approx([0.6, 0.6, 0.3, 0.3, 0.3, 0.3, 0.3])
        assert [layer.bottom for layer in schedule][6] == pytest.approx(2.4)
        assert heights[7] == pytest.approx(0.6)

    def test_single_layer_still_wins(self, profile):
        height = HeightRange(min_z=0.0, max_z=5.0, settings={"layer_height": 0.3})
        single = LayerRange(start=0, settings={"layer_height": 0.2})
        assert [o.is_single for o in matching_overrides([single, height], 0, 0.0)] == [False, True]

    def test_above_model_is_ignored(self, profile):
        p = _with_overrides(profile, HeightRange(min_z=50.0, max_z=60.0, settings={"layer_height": 0.3}))
        schedule = LayerSchedule.build(p, 6.0)
        assert len(schedule) == 10

    def test_inverted_height_range(self, profile):
        p = _with_overrides(profile, HeightRange(min_z=3.0, max_z=1.0, settings={}))
        with pytest.raises(ConfigurationError, match="inverted"):
            LayerSchedule.build(p, 6.0)
