"""
Geometry module — Triangle mesh input and closedness checks.
"""

from fiberslice.geometry.mesh import Mesh

__all__ = ["Mesh"]
