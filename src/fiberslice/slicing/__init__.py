"""
Slicing module - Layer schedule, cross-sections, regions and fiber placement.

Stages, in pipeline order:
- resolver: per-layer configuration and Z accumulation
- cross_section: planar contours per layer
- regions: perimeters, infill, support, skirt and brim
- fiber: fiber runs and cuts, carried across layers in ascending Z
"""

from fiberslice.slicing.cross_section import Contour, Layer, slice_mesh
from fiberslice.slicing.fiber import FiberSegment, FiberState, LayerFiberPlan, plan_fibers
from fiberslice.slicing.regions import LayerPlan, plan_regions
from fiberslice.slicing.resolver import LayerSchedule, ResolvedLayerConfig, resolve_layer_config
from fiberslice.slicing.toolpath import Feature, Region, RegionKind, ToolPath

__all__ = [
    "LayerSchedule",
    "ResolvedLayerConfig",
    "resolve_layer_config",
    "Contour",
    "Layer",
    "slice_mesh",
    "LayerPlan",
    "plan_regions",
    "FiberSegment",
    "FiberState",
    "LayerFiberPlan",
    "plan_fibers",
    "Feature",
    "Region",
    "RegionKind",
    "ToolPath",
]
