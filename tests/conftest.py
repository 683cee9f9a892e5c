"""
Pytest configuration and shared fixtures.
"""

import tempfile
from pathlib import Path

import numpy as np
import pytest
import trimesh

from fiberslice.core.config import PrintProfile
from fiberslice.geometry.mesh import Mesh


def box_mesh(size=(20.0, 20.0, 20.0), origin=(50.0, 50.0, 0.0), name="cube") -> Mesh:
    """A closed box with its lower corner at ``origin``."""
    box = trimesh.creation.box(extents=size)
    box.apply_translation(np.asarray(origin) + np.asarray(size) / 2.0)
    return Mesh.from_trimesh(box, name=name)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_box():
    """Factory for closed boxes: ``make_box(size, origin, name)``."""
    return box_mesh


@pytest.fixture
def cube_mesh():
    """20 mm cube standing on the bed at (50, 50)."""
    return box_mesh()


@pytest.fixture
def profile():
    """Default profile with widths matched to the 0.8 mm nozzle and no fiber."""
    return PrintProfile.model_validate({
        "extrusion_width": {
            "interior_inner_perimeter": 0.8,
            "interior_surface_perimeter": 0.8,
            "exterior_inner_perimeter": 0.8,
            "exterior_surface_perimeter": 0.8,
            "solid_top_infill": 0.8,
            "solid_infill": 0.8,
            "infill": 0.8,
            "travel": 0.8,
            "bridge": 0.8,
            "support": 0.8,
            "fiber_factor": 0.5,
        },
        "fiber": {"continuous": {"enabled": False, "setting": {}}},
    })


@pytest.fixture
def fiber_profile(profile):
    """Profile with continuous fiber on every wall and short fiber limits."""
    data = profile.model_dump()
    data["fiber"] = {
        "cut_before": 2.0,
        "min_length": 5.0,
        "max_angle": 45.0,
        "continuous": {"enabled": True, "setting": {}},
        "wall_pattern": {"enabled": True, "setting": {"pattern": "Full"}},
        "infill": {"enabled": False, "setting": {}},
    }
    return PrintProfile.model_validate(data)


@pytest.fixture
def sample_profile_yaml(temp_dir):
    """Write a small profile document with one layer override."""
    text = """
layer_height: 0.4
number_of_perimeters: 2
filament:
  extruder_temp: 215.0
skirt:
  enabled: true
  setting:
    layers: 1
    loops: 2
    distance: 5.0
layer_settings:
  - start: 0
    settings:
      layer_height: 0.3
      filament:
        bed_temp: 70.0
"""
    path = temp_dir / "profile.yaml"
    path.write_text(text)
    return path
