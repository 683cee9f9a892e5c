"""
Tests for the command-line interface.
"""

import pytest
import trimesh
from click.testing import CliRunner

from fiberslice.cli import main


@pytest.fixture
def stl_path(temp_dir):
    path = temp_dir / "block.stl"
    box = trimesh.creation.box(extents=(10.0, 10.0, 3.0))
    box.apply_translation((100.0, 100.0, 1.5))
    box.export(str(path))
    return path


@pytest.mark.unit
class TestCli:
    """Tests for the click commands."""

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_slice(self, stl_path, sample_profile_yaml, temp_dir):
        output = temp_dir / "out.gcode"
        result = CliRunner().invoke(
            main, ["slice", str(stl_path), "-p", str(sample_profile_yaml), "-o", str(output)]
        )
        assert result.exit_code == 0, result.output
        assert output.read_text().count(";LAYER:") > 0

    def test_slice_default_output(self, stl_path, sample_profile_yaml):
        result = CliRunner().invoke(main, ["slice", str(stl_path), "-p", str(sample_profile_yaml)])
        assert result.exit_code == 0, result.output
        assert stl_path.with_suffix(".gcode").exists()

    def test_slice_bad_profile(self, stl_path, temp_dir):
        bad = temp_dir / "bad.yaml"
        bad.write_text("layer_height: [")
        result = CliRunner().invoke(main, ["slice", str(stl_path), "-p", str(bad)])
        assert result.exit_code == 1
        assert "Slicing failed" in result.output

    def test_validate_warnings(self, sample_profile_yaml):
        result = CliRunner().invoke(main, ["validate", str(sample_profile_yaml)])
        assert result.exit_code == 0
        assert "Warnings" in result.output

    def test_validate_clean(self, temp_dir):
        path = temp_dir / "clean.yaml"
        path.write_text("extrusion_width:\n" + "".join(
            f"  {name}: 0.8\n"
            for name in (
                "interior_inner_perimeter", "interior_surface_perimeter",
                "exterior_inner_perimeter", "exterior_surface_perimeter",
                "solid_top_infill", "solid_infill", "infill", "travel", "bridge", "support",
            )
        ))
        result = CliRunner().invoke(main, ["validate", str(path)])
        assert result.exit_code == 0, result.output
        assert "is valid" in result.output

    def test_validate_impossible_value(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("maximum_feedrate_x: 0\n")
        result = CliRunner().invoke(main, ["validate", str(path)])
        assert result.exit_code == 1

    def test_layers(self, stl_path, sample_profile_yaml):
        result = CliRunner().invoke(main, ["layers", str(stl_path), "-p", str(sample_profile_yaml)])
        assert result.exit_code == 0, result.output
        assert "0.300" in result.output
