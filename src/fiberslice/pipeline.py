"""
Pipeline orchestrator for a complete slice run.

Chains: profile checks -> layer schedule -> cross-sections -> regions ->
fiber -> motion -> G-code

Slicing and region planning run per layer on an optional thread pool. The
fiber planner walks each object's layers in ascending Z, and motion planning
and emission are sequential. Cancellation is checked between layers; a
cancelled or failed run raises and produces no output.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from fiberslice.core.config import PrintProfile, validate_profile
from fiberslice.core.exceptions import GeometryError, SliceCancelledError, SliceWarning
from fiberslice.core.logging import get_logger, slice_context
from fiberslice.geometry.mesh import Mesh
from fiberslice.motion.planner import MotionPlanner
from fiberslice.motion.primitives import MotionPrimitive
from fiberslice.postprocessor.gcode import GcodeEmitter, check_scripts
from fiberslice.slicing.cross_section import Layer, slice_mesh
from fiberslice.slicing.fiber import LayerFiberPlan, plan_fibers
from fiberslice.slicing.regions import LayerPlan, plan_regions
from fiberslice.slicing.resolver import LayerSchedule

logger = get_logger(__name__)

# Meshes may poke out of the build volume by this much (mm).
_VOLUME_TOLERANCE = 1e-6


@dataclass
class SliceResult:
    """Result of a complete slice run."""

    gcode: str
    schedule: LayerSchedule
    layers: Dict[str, List[Layer]] = field(default_factory=dict)
    plans: Dict[str, List[LayerPlan]] = field(default_factory=dict)
    fibers: Dict[str, List[LayerFiberPlan]] = field(default_factory=dict)
    primitives: List[MotionPrimitive] = field(default_factory=list)
    warnings: List[SliceWarning] = field(default_factory=list)
    layer_lines: List[int] = field(default_factory=list)
    timings: Dict[str, float] = field(default_factory=dict)


# Type alias for progress callback: (step_name, fraction 0.0-1.0)
ProgressCallback = Callable[[str, float], None]


def _noop_callback(step: str, pct: float) -> None:
    pass


def _object_names(meshes: Sequence[Mesh]) -> List[str]:
    names: List[str] = []
    for i, mesh in enumerate(meshes):
        name = mesh.name
        if name in names:
            name = f"{name}_{i}"
        names.append(name)
    return names


class SlicePipeline:
    """End-to-end slicing orchestrator.

    Usage:
        pipeline = SlicePipeline(profile, workers=4)
        result = pipeline.run([Mesh.load("part.stl")])
        Path("part.gcode").write_text(result.gcode)
    """

    def __init__(
        self,
        profile: PrintProfile,
        workers: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        self.profile = profile
        self.workers = workers
        self._cancel = cancel_event or threading.Event()
        self._progress = progress_callback or _noop_callback

    def cancel(self) -> None:
        """Request cancellation; the run stops at the next layer boundary."""
        self._cancel.set()

    def _check_cancelled(self) -> None:
        if self._cancel.is_set():
            raise SliceCancelledError("Slice cancelled")

    def _run_step(self, name: str, fn: Callable[[], Any], timings: Dict[str, float]) -> Any:
        """Execute a single pipeline step with timing; errors propagate."""
        self._progress(name, 0.0)
        t0 = time.perf_counter()
        try:
            data = fn()
        except Exception as e:
            duration = time.perf_counter() - t0
            logger.error("pipeline_step_failed", step=name, duration_s=round(duration, 2), error=str(e))
            raise
        duration = time.perf_counter() - t0
        timings[name] = duration
        self._progress(name, 1.0)
        logger.info("pipeline_step_complete", step=name, duration_s=round(duration, 2))
        return data

    def _check_volume(self, meshes: Sequence[Mesh]) -> None:
        p = self.profile
        for mesh in meshes:
            (x0, y0, z0), (x1, y1, z1) = mesh.bounds
            if (
                x0 < -_VOLUME_TOLERANCE or y0 < -_VOLUME_TOLERANCE or z0 < -_VOLUME_TOLERANCE
                or x1 > p.print_x + _VOLUME_TOLERANCE
                or y1 > p.print_y + _VOLUME_TOLERANCE
                or z1 > p.print_z + _VOLUME_TOLERANCE
            ):
                raise GeometryError(
                    f"Mesh '{mesh.name}' lies outside the build volume",
                    details={
                        "bounds": mesh.bounds.tolist(),
                        "volume": [p.print_x, p.print_y, p.print_z],
                    },
                )

    def run(self, meshes: Sequence[Mesh]) -> SliceResult:
        """
        Slice one or more meshes into a single G-code program.

        Raises:
            ConfigurationError: On an invalid profile or layer override.
            GeometryError: On a mesh that is open, degenerate or out of bounds.
            PlaceholderResolutionError: On an unknown script placeholder.
            SliceCancelledError: When cancelled between layers.
        """
        if not meshes:
            raise GeometryError("Nothing to slice")

        names = _object_names(meshes)
        timings: Dict[str, float] = {}
        warnings: List[SliceWarning] = []

        with slice_context(objects=names):
            def _configure() -> LayerSchedule:
                warnings.extend(validate_profile(self.profile))
                check_scripts(self.profile)
                self._check_volume(meshes)
                return LayerSchedule.build(self.profile, max(m.max_z for m in meshes))

            schedule = self._run_step("configure", _configure, timings)
            logger.info("layer_schedule", layers=len(schedule), model_top=schedule.model_top)
            self._check_cancelled()

            def _slice() -> Dict[str, List[Layer]]:
                out = {}
                for name, mesh in zip(names, meshes):
                    self._check_cancelled()
                    out[name] = slice_mesh(
                        mesh, schedule, workers=self.workers, check_cancelled=self._check_cancelled
                    )
                return out

            layers = self._run_step("slicing", _slice, timings)

            def _regions() -> Dict[str, List[LayerPlan]]:
                return {
                    name: plan_regions(
                        layers[name],
                        model_top=mesh.max_z,
                        workers=self.workers,
                        check_cancelled=self._check_cancelled,
                    )
                    for name, mesh in zip(names, meshes)
                }

            plans = self._run_step("regions", _regions, timings)

            def _fibers() -> Dict[str, List[LayerFiberPlan]]:
                out = {}
                for name, mesh in zip(names, meshes):
                    out[name] = plan_fibers(plans[name], mesh.max_z, continue_layers=len(meshes) == 1)
                    for layer_plan in out[name]:
                        warnings.extend(layer_plan.warnings)
                return out

            fibers = self._run_step("fiber", _fibers, timings)

            planner = MotionPlanner()

            def _motion() -> List[MotionPrimitive]:
                per_layer = [
                    [(name, plans[name][i], fibers[name][i]) for name in names]
                    for i in range(len(schedule))
                ]
                return planner.plan(per_layer, check_cancelled=self._check_cancelled)

            primitives = self._run_step("motion", _motion, timings)
            warnings.extend(planner.warnings)

            emitter = GcodeEmitter(self.profile, schedule[0].profile if len(schedule) else None)
            gcode = self._run_step("emit", lambda: emitter.generate(primitives), timings)

            logger.info(
                "slice_complete",
                layers=len(schedule),
                lines=gcode.count("\n"),
                warnings=len(warnings),
            )

        return SliceResult(
            gcode=gcode,
            schedule=schedule,
            layers=layers,
            plans=plans,
            fibers=fibers,
            primitives=primitives,
            warnings=warnings,
            layer_lines=list(emitter.layer_lines),
            timings=timings,
        )


def slice_meshes(
    meshes: Sequence[Mesh],
    profile: PrintProfile,
    workers: Optional[int] = None,
) -> SliceResult:
    """Convenience wrapper: run the pipeline once."""
    return SlicePipeline(profile, workers=workers).run(meshes)
