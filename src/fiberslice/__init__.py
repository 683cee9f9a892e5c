"""
fiberslice - Slicer for fused-filament printers with continuous fiber reinforcement

Turns closed triangle meshes into G-code: per-layer configuration, planar
cross-sections, shells and infill, fiber placement, kinematically clamped
motion and lifecycle scripts.
"""

__version__ = "0.1.0"
__author__ = "fiberslice Contributors"

from fiberslice.core.config import PrintProfile, load_profile
from fiberslice.geometry.mesh import Mesh
from fiberslice.pipeline import SlicePipeline, SliceResult, slice_meshes

__all__ = [
    "__version__",
    "PrintProfile",
    "load_profile",
    "Mesh",
    "SlicePipeline",
    "SliceResult",
    "slice_meshes",
]
