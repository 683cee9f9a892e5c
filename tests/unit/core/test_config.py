"""
Unit tests for profile configuration.
"""

import pytest

from fiberslice.core.config import (
    HeightRange,
    LayerRange,
    MovementParameter,
    PrintProfile,
    WallPatternType,
    dump_profile,
    load_profile,
    validate_profile,
)
from fiberslice.core.exceptions import ConfigurationError, ConfigError, FiberSliceError
from fiberslice.slicing.toolpath import Feature


@pytest.mark.unit
class TestPrintProfile:
    """Tests for the PrintProfile model."""

    def test_defaults(self):
        """Test defaults follow the stock machine profile."""
        profile = PrintProfile()
        assert profile.layer_height == 0.6
        assert profile.nozzle_diameter == 0.8
        assert profile.number_of_perimeters == 3
        assert profile.fiber.wall_pattern.setting.pattern == WallPatternType.ALTERNATING
        assert profile.fiber.enabled
        assert not profile.skirt.enabled

    def test_frozen(self):
        """Test profiles cannot be mutated after construction."""
        profile = PrintProfile()
        with pytest.raises(Exception):
            profile.layer_height = 0.2

    def test_unknown_field_rejected(self):
        """Test unknown fields are rejected."""
        with pytest.raises(Exception):
            PrintProfile.model_validate({"layer_hieght": 0.2})

    def test_fiber_disabled_without_strategy(self):
        """Test fiber is off when neither placement strategy is on."""
        profile = PrintProfile.model_validate({
            "fiber": {
                "wall_pattern": {"enabled": False, "setting": {}},
                "infill": {"enabled": False, "setting": {}},
            }
        })
        assert not profile.fiber.enabled

    def test_extrusion_tolerance(self):
        """Test chaining tolerance is a fraction of the finest width."""
        assert PrintProfile().extrusion_tolerance == pytest.approx(0.4 * 0.05)


@pytest.mark.unit
class TestMovementParameter:
    """Tests for per-feature parameter tables."""

    def test_uniform(self):
        table = MovementParameter.uniform(30.0, travel=120.0)
        assert table.infill == 30.0
        assert table.travel == 120.0
        assert table.fiber_factor == 1.0

    def test_for_feature(self):
        """Test features map onto the right table entries."""
        speed = PrintProfile().speed
        assert speed.for_feature(Feature.WALL_OUTER) == speed.exterior_surface_perimeter
        assert speed.for_feature(Feature.INTERIOR_WALL_INNER) == speed.interior_inner_perimeter
        assert speed.for_feature(Feature.BRIDGING) == speed.bridge
        assert speed.for_feature(Feature.TRAVEL) == 180.0
        assert speed.for_feature("Infill") == speed.infill


@pytest.mark.unit
class TestLayerRange:
    """Tests for LayerRange."""

    def test_single(self):
        override = LayerRange(start=3)
        assert override.is_single
        assert override.covers(3)
        assert not override.covers(4)

    def test_range_inclusive(self):
        override = LayerRange(start=2, end=4)
        assert [i for i in range(6) if override.covers(i)] == [2, 3, 4]

    def test_negative_start_rejected(self):
        with pytest.raises(Exception):
            LayerRange(start=-1)


@pytest.mark.unit
class TestHeightRange:
    """Tests for HeightRange."""

    def test_covers_by_bottom(self):
        override = HeightRange(min_z=1.0, max_z=2.0)
        assert not override.is_single
        assert override.covers(0, 1.0)
        assert override.covers(9, 2.0)
        assert not override.covers(2, 2.1)

    def test_parsed_from_profile_data(self, profile):
        data = profile.model_dump()
        data["layer_settings"] = [
            {"start": 0, "settings": {"layer_height": 0.3}},
            {"min_z": 2.0, "max_z": 4.0, "settings": {"layer_height": 0.4}},
        ]
        parsed = type(profile).model_validate(data)
        assert isinstance(parsed.layer_settings[0], LayerRange)
        assert isinstance(parsed.layer_settings[1], HeightRange)
        assert parsed.layer_settings[1].bounds() == (2.0, 4.0)


@pytest.mark.unit
class TestLoadProfile:
    """Tests for YAML loading."""

    def test_load(self, sample_profile_yaml):
        """Test loading a partial document over the defaults."""
        profile = load_profile(sample_profile_yaml)
        assert profile.layer_height == 0.4
        assert profile.number_of_perimeters == 2
        assert profile.filament.extruder_temp == 215.0
        assert profile.filament.bed_temp == 60.0
        assert profile.skirt.enabled
        assert profile.skirt.setting.loops == 2
        assert len(profile.layer_settings) == 1

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError, match="not found"):
            load_profile(temp_dir / "missing.yaml")

    def test_invalid_yaml(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("layer_height: [unclosed")
        with pytest.raises(ConfigurationError) as exc_info:
            load_profile(path)
        assert "error" in exc_info.value.details

    def test_invalid_value(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("number_of_perimeters: many\n")
        with pytest.raises(ConfigurationError):
            load_profile(path)

    def test_dump_and_reload(self, temp_dir, sample_profile_yaml):
        """Test a dumped profile loads back unchanged."""
        profile = load_profile(sample_profile_yaml)
        path = temp_dir / "out.yaml"
        dump_profile(profile, path)
        assert load_profile(path) == profile

    def test_shipped_profile_is_valid(self):
        """Test the bundled default profile loads without warnings."""
        from pathlib import Path

        path = Path(__file__).parents[3] / "profiles" / "default.yaml"
        profile = load_profile(path)
        assert profile.layer_settings[0].settings["layer_height"] == 0.3
        assert validate_profile(profile) == []


@pytest.mark.unit
class TestValidateProfile:
    """Tests for settings validation."""

    def test_default_warns_on_narrow_widths(self):
        """Test 0.4 mm widths on a 0.8 mm nozzle are flagged."""
        warnings = validate_profile(PrintProfile())
        assert any("below 60%" in w.message for w in warnings)

    def test_clean_profile(self, profile):
        assert validate_profile(profile) == []

    def test_non_positive_limit_is_error(self, profile):
        bad = profile.model_copy(update={"maximum_feedrate_x": 0.0})
        with pytest.raises(ConfigurationError) as exc_info:
            validate_profile(bad)
        assert exc_info.value.details["setting"] == "maximum_feedrate_x"

    def test_negative_count_is_error(self, profile):
        bad = profile.model_copy(update={"top_layers": -1})
        with pytest.raises(ConfigError):
            validate_profile(bad)

    def test_layer_height_warning(self, profile):
        tall = profile.model_copy(update={"layer_height": 0.7})
        warnings = validate_profile(tall)
        assert any("above 80%" in w.message for w in warnings)

    def test_temperature_warning_in_override(self, profile):
        """Test override temperatures are checked with their layer."""
        hot = profile.model_copy(update={
            "layer_settings": [LayerRange(start=2, settings={"filament": {"extruder_temp": 280.0}})]
        })
        warnings = validate_profile(hot)
        assert [w.layer for w in warnings if "too high" in w.message] == [2]

    def test_skirt_inside_brim_warning(self, profile):
        data = profile.model_dump()
        data["skirt"] = {"enabled": True, "setting": {"distance": 2.0}}
        data["brim_width"] = {"enabled": True, "setting": 5.0}
        warnings = validate_profile(PrintProfile.model_validate(data))
        assert any("brim" in w.message for w in warnings)


@pytest.mark.unit
class TestExceptions:
    """Tests for the exception hierarchy."""

    def test_details_in_message(self):
        error = ConfigurationError("Bad value", details={"setting": "x"})
        assert isinstance(error, FiberSliceError)
        assert str(error) == "Bad value - Details: {'setting': 'x'}"

    def test_plain_message(self):
        assert str(FiberSliceError("Plain")) == "Plain"
