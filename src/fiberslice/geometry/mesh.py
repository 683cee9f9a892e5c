"""
Triangle mesh input for slicing.

Meshes are held as a dense ``(n, 3, 3)`` numpy array of triangle corners with
one outward normal per face. File loading goes through trimesh; everything
downstream only needs the arrays.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import trimesh

from fiberslice.core.exceptions import GeometryError, NonManifoldError

logger = logging.getLogger(__name__)

# Corners closer than this (mm) are treated as the same vertex.
_WELD_TOLERANCE = 1e-6
_DEGENERATE_AREA = 1e-12


class Mesh:
    """
    A closed triangle mesh in build-volume coordinates.

    Attributes:
        triangles: ``(n, 3, 3)`` array of triangle corners (mm).
        normals: ``(n, 3)`` array of unit outward face normals.
        name: Object name used for object-change scripts and logging.
    """

    def __init__(
        self,
        triangles: np.ndarray,
        normals: np.ndarray | None = None,
        name: str = "object",
    ) -> None:
        tri = np.asarray(triangles, dtype=float)
        if tri.ndim != 3 or tri.shape[1:] != (3, 3):
            raise GeometryError(
                "Triangles must have shape (n, 3, 3)",
                details={"shape": tuple(tri.shape)},
            )
        if len(tri) == 0:
            raise GeometryError("Mesh has no triangles", details={"name": name})

        self.triangles = tri
        self.name = name
        if normals is None:
            normals = self._face_normals(tri)
        self.normals = np.asarray(normals, dtype=float)

    @staticmethod
    def _face_normals(tri: np.ndarray) -> np.ndarray:
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        length = np.linalg.norm(cross, axis=1)
        length[length == 0] = 1.0
        return cross / length[:, None]

    @classmethod
    def from_trimesh(cls, mesh: trimesh.Trimesh, name: str | None = None) -> "Mesh":
        """Build from a trimesh object, keeping its face normals."""
        return cls(
            np.asarray(mesh.triangles),
            np.asarray(mesh.face_normals),
            name=name or mesh.metadata.get("name", "object"),
        )

    @classmethod
    def load(cls, path: Path | str) -> "Mesh":
        """
        Load a mesh file (STL, OBJ, PLY, ...) through trimesh.

        Raises:
            GeometryError: If the file is missing or holds no triangles.
        """
        path = Path(path)
        if not path.exists():
            raise GeometryError(f"Mesh file not found: {path}")
        loaded = trimesh.load(str(path), force="mesh")
        if not isinstance(loaded, trimesh.Trimesh) or len(loaded.faces) == 0:
            raise GeometryError(f"No triangles in mesh file: {path}")
        logger.info("Loaded %s: %d faces", path.name, len(loaded.faces))
        return cls.from_trimesh(loaded, name=path.stem)

    def __len__(self) -> int:
        return len(self.triangles)

    @property
    def bounds(self) -> np.ndarray:
        """``[[min_x, min_y, min_z], [max_x, max_y, max_z]]``."""
        flat = self.triangles.reshape(-1, 3)
        return np.array([flat.min(axis=0), flat.max(axis=0)])

    @property
    def max_z(self) -> float:
        return float(self.triangles[:, :, 2].max())

    def translated(self, offset: np.ndarray | list[float]) -> "Mesh":
        return Mesh(self.triangles + np.asarray(offset, dtype=float), self.normals, self.name)

    def on_bed(self) -> "Mesh":
        """Copy of the mesh moved so its lowest point sits at z = 0."""
        return self.translated([0.0, 0.0, -float(self.triangles[:, :, 2].min())])

    def check_closed(self) -> None:
        """
        Verify every edge is shared by exactly two triangles.

        Raises:
            GeometryError: If a triangle has zero area.
            NonManifoldError: Naming the first open or over-shared edge.
        """
        tri = self.triangles
        cross = np.cross(tri[:, 1] - tri[:, 0], tri[:, 2] - tri[:, 0])
        areas = 0.5 * np.linalg.norm(cross, axis=1)
        degenerate = np.flatnonzero(areas < _DEGENERATE_AREA)
        if len(degenerate):
            face = int(degenerate[0])
            raise GeometryError(
                f"Degenerate triangle {face} in mesh '{self.name}'",
                details={"face": face, "vertices": tri[face].tolist()},
            )

        keys = np.round(tri.reshape(-1, 3) / _WELD_TOLERANCE).astype(np.int64)
        unique, inverse = np.unique(keys, axis=0, return_inverse=True)
        ids = inverse.reshape(-1, 3)

        edges = np.concatenate([ids[:, [0, 1]], ids[:, [1, 2]], ids[:, [2, 0]]])
        edges.sort(axis=1)
        edge_keys, counts = np.unique(edges, axis=0, return_counts=True)
        bad = np.flatnonzero(counts != 2)
        if len(bad):
            a, b = edge_keys[bad[0]]
            start = tuple(float(c) for c in unique[a] * _WELD_TOLERANCE)
            end = tuple(float(c) for c in unique[b] * _WELD_TOLERANCE)
            raise NonManifoldError(
                f"Mesh '{self.name}' is not closed: edge {start} -> {end} is "
                f"shared by {int(counts[bad[0]])} triangles",
                vertex=start,
                details={"edge": (start, end), "open_edges": int(len(bad))},
            )
