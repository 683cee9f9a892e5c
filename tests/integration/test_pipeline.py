"""
End-to-end tests of the slicing pipeline: mesh in, G-code out.
"""

import re
import threading

import pytest

from fiberslice.core.config import load_profile
from fiberslice.core.exceptions import (
    GeometryError,
    NonManifoldError,
    PlaceholderResolutionError,
    SliceCancelledError,
)
from fiberslice.geometry.mesh import Mesh
from fiberslice.motion.primitives import Extrude, FiberCut, LayerChange, ObjectChange
from fiberslice.pipeline import SlicePipeline, slice_meshes


def _layer_z(gcode):
    """Z of every layer, read from the move after each ;LAYER: marker."""
    lines = gcode.splitlines()
    zs = []
    for i, line in enumerate(lines):
        if line.startswith(";LAYER:"):
            move = next(m for m in (re.fullmatch(r"G1 Z([\d.]+) F[\d.]+", l) for l in lines[i + 1:]) if m)
            zs.append(float(move.group(1)))
    return zs


@pytest.mark.integration
class TestSlicePipeline:
    """Full pipeline runs."""

    def test_cube(self, make_box, profile):
        cube = make_box(size=(10.0, 10.0, 6.0))
        result = slice_meshes([cube], profile)

        assert len(result.schedule) == 10
        assert len(result.layer_lines) == 10
        assert ";LAYER:0" in result.gcode
        assert ";TYPE:WallOuter" in result.gcode
        assert set(result.timings) == {"configure", "slicing", "regions", "fiber", "motion", "emit"}

        zs = _layer_z(result.gcode)
        assert zs == pytest.approx([0.6 * (i + 1) for i in range(10)])

    def test_deterministic(self, make_box, profile):
        """Test identical inputs give byte-identical programs, threaded or not."""
        cube = make_box(size=(10.0, 10.0, 6.0))
        first = SlicePipeline(profile).run([cube]).gcode
        second = SlicePipeline(profile).run([cube]).gcode
        threaded = SlicePipeline(profile, workers=4).run([cube]).gcode
        assert first == second == threaded

    def test_layer_override(self, make_box, sample_profile_yaml):
        p = load_profile(sample_profile_yaml)
        result = slice_meshes([make_box(size=(10.0, 10.0, 4.0))], p)
        zs = _layer_z(result.gcode)
        assert zs[:3] == pytest.approx([0.3, 0.7, 1.1])
        assert "M140 S70.0" in result.gcode
        assert "M140 S60.0" in result.gcode

    def test_fiber(self, cube_mesh, fiber_profile):
        """Test fiber walls produce D words and cuts below the fiber ceiling."""
        result = slice_meshes([cube_mesh], fiber_profile)
        assert " D" in result.gcode
        assert "M300; cut fiber" in result.gcode

        ceiling = cube_mesh.max_z - fiber_profile.fiber.cut_before
        for name, plans in result.fibers.items():
            for plan, layer_plan in zip(plans, result.plans[name]):
                if layer_plan.z > ceiling:
                    assert plan.segments == []

    def test_fiber_cut_before_plain_extrusion(self, cube_mesh, fiber_profile):
        """Test no plain extrusion prints while a fiber thread is still attached."""
        result = slice_meshes([cube_mesh], fiber_profile)
        attached = in_fiber = False
        for prim in result.primitives:
            if isinstance(prim, FiberCut):
                attached = False
            elif isinstance(prim, Extrude):
                if prim.fiber and not in_fiber:
                    attached = True
                if not prim.fiber:
                    assert not attached
                in_fiber = prim.fiber

        segments = [s for plans in result.fibers.values() for plan in plans for s in plan.segments]
        assert segments
        assert all(s.cut_at is not None for s in segments)

    def test_z_moves_within_axis_limit(self, make_box, profile):
        a = make_box(size=(10.0, 10.0, 3.0), origin=(20.0, 20.0, 0.0), name="a")
        b = make_box(size=(10.0, 10.0, 3.0), origin=(60.0, 60.0, 0.0), name="b")
        result = slice_meshes([a, b], profile)

        z_moves = [line for line in result.gcode.splitlines() if line.startswith("G1 Z")]
        assert z_moves
        for line in z_moves:
            feedrate = float(re.search(r" F([\d.]+)", line).group(1))
            assert feedrate <= 60.0 * profile.maximum_feedrate_z

    def test_two_objects(self, make_box, profile):
        a = make_box(size=(10.0, 10.0, 3.0), origin=(20.0, 20.0, 0.0), name="a")
        b = make_box(size=(10.0, 10.0, 3.0), origin=(60.0, 60.0, 0.0), name="b")
        result = slice_meshes([a, b], profile)

        assert set(result.layers) == {"a", "b"}
        changes = [p for p in result.primitives if isinstance(p, ObjectChange)]
        assert changes[0] == ObjectChange(previous="a", current="b")
        assert sum(isinstance(p, LayerChange) for p in result.primitives) == len(result.schedule)

    def test_duplicate_names(self, make_box, profile):
        a = make_box(size=(10.0, 10.0, 3.0), origin=(20.0, 20.0, 0.0))
        b = make_box(size=(10.0, 10.0, 3.0), origin=(60.0, 60.0, 0.0))
        assert set(slice_meshes([a, b], profile).layers) == {"cube", "cube_1"}


@pytest.mark.integration
class TestPipelineErrors:
    """Failure modes that must abort the run."""

    def test_nothing_to_slice(self, profile):
        with pytest.raises(GeometryError):
            slice_meshes([], profile)

    def test_outside_build_volume(self, make_box, profile):
        big = make_box(size=(10.0, 10.0, 10.0), origin=(205.0, 0.0, 0.0))
        with pytest.raises(GeometryError, match="outside the build volume"):
            slice_meshes([big], profile)

    def test_open_mesh(self, cube_mesh, profile):
        broken = Mesh(cube_mesh.triangles[:-1], name="broken")
        with pytest.raises(NonManifoldError):
            slice_meshes([broken], profile)

    def test_bad_placeholder_fails_before_slicing(self, cube_mesh, profile):
        steps = []
        p = profile.model_copy(update={"starting_instructions": "M109 S[Hotend]"})
        pipeline = SlicePipeline(p, progress_callback=lambda step, pct: steps.append(step))
        with pytest.raises(PlaceholderResolutionError):
            pipeline.run([cube_mesh])
        assert "slicing" not in steps

    def test_cancel_before_run(self, cube_mesh, profile):
        event = threading.Event()
        event.set()
        with pytest.raises(SliceCancelledError):
            SlicePipeline(profile, cancel_event=event).run([cube_mesh])

    def test_cancel_between_layers(self, cube_mesh, profile):
        """Test cancelling after slicing stops region planning with no output."""
        def _progress(step, pct):
            if step == "slicing" and pct == 1.0:
                pipeline.cancel()

        pipeline = SlicePipeline(profile, progress_callback=_progress)
        with pytest.raises(SliceCancelledError):
            pipeline.run([cube_mesh])
