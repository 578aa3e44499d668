"""Triangle mesh data structures.

This module implements the 2D pixel mesh consumed by the optimizer and the 3D
mesh it produces. Vertices are keyed by a stable landmark id and stored under
a dense vertex id assigned in order of first appearance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np

from meshopt.errors import InvalidInput

logger = logging.getLogger(__name__)

DEFAULT_VERTEX_COLOR = np.array([255, 255, 0], dtype=np.uint8)  # Yellow


@dataclass
class Vertex:
    """Mesh vertex: landmark id, position and optional RGB color."""

    lmk_id: int
    position: np.ndarray
    color: Optional[np.ndarray] = None


class Mesh:
    """Polygon mesh with landmark-keyed vertices.

    Args:
        vertex_dimension: 2 for pixel meshes, 3 for reconstructed meshes
        polygon_dimension: Number of vertices per polygon
    """

    def __init__(self, vertex_dimension: int, polygon_dimension: int = 3):
        self.vertex_dimension = vertex_dimension
        self.polygon_dimension = polygon_dimension

        self._positions: List[np.ndarray] = []
        self._colors: List[Optional[np.ndarray]] = []
        self._lmk_id_to_vtx_id: Dict[int, int] = {}
        self._vtx_id_to_lmk_id: Dict[int, int] = {}
        self._polygons: List[tuple[int, ...]] = []

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(vertices={self.number_of_unique_vertices}, "
            f"polygons={self.number_of_polygons})"
        )

    @property
    def number_of_polygons(self) -> int:
        return len(self._polygons)

    @property
    def number_of_unique_vertices(self) -> int:
        return len(self._positions)

    def add_polygon(self, polygon: Sequence[Vertex]) -> None:
        """Append a polygon, registering any vertex not seen before.

        A vertex whose landmark id already exists in the mesh is shared; its
        position and color are updated to the incoming values.

        Args:
            polygon: Sequence of polygon_dimension vertices
        """
        if len(polygon) != self.polygon_dimension:
            raise InvalidInput(
                f"Expected polygon with {self.polygon_dimension} vertices, got {len(polygon)}"
            )
        lmk_ids = [vtx.lmk_id for vtx in polygon]
        if len(set(lmk_ids)) != len(lmk_ids):
            raise InvalidInput(f"Polygon repeats a landmark id: {lmk_ids}")

        vtx_ids = []
        for vtx in polygon:
            position = np.asarray(vtx.position, dtype=np.float64).reshape(-1)
            if position.shape[0] != self.vertex_dimension:
                raise InvalidInput(
                    f"Expected {self.vertex_dimension}D vertex, got shape {position.shape}"
                )
            color = None if vtx.color is None else np.asarray(vtx.color, dtype=np.uint8)

            vtx_id = self._lmk_id_to_vtx_id.get(vtx.lmk_id)
            if vtx_id is None:
                vtx_id = len(self._positions)
                self._positions.append(position)
                self._colors.append(color)
                self._lmk_id_to_vtx_id[vtx.lmk_id] = vtx_id
                self._vtx_id_to_lmk_id[vtx_id] = vtx.lmk_id
            else:
                self._positions[vtx_id] = position
                if color is not None:
                    self._colors[vtx_id] = color
            vtx_ids.append(vtx_id)

        self._polygons.append(tuple(vtx_ids))

    def get_polygon(self, k: int) -> List[Vertex]:
        """Return the vertices of polygon k."""
        return [
            Vertex(self._vtx_id_to_lmk_id[vtx_id], self._positions[vtx_id], self._colors[vtx_id])
            for vtx_id in self._polygons[k]
        ]

    def get_polygon_vtx_ids(self, k: int) -> tuple[int, ...]:
        return self._polygons[k]

    def get_vtx_id_for_lmk_id(self, lmk_id: int) -> int:
        return self._lmk_id_to_vtx_id[lmk_id]

    def get_lmk_id_for_vtx_id(self, vtx_id: int) -> int:
        return self._vtx_id_to_lmk_id[vtx_id]

    def get_vertex_position(self, lmk_id: int) -> np.ndarray:
        return self._positions[self._lmk_id_to_vtx_id[lmk_id]]

    def set_vertex_position(self, lmk_id: int, position: np.ndarray) -> bool:
        """Move an existing vertex.

        Returns:
            False if no vertex has this landmark id
        """
        vtx_id = self._lmk_id_to_vtx_id.get(lmk_id)
        if vtx_id is None:
            return False
        self._positions[vtx_id] = np.asarray(position, dtype=np.float64).reshape(-1)
        return True

    def adjacency_matrix(self) -> np.ndarray:
        """Symmetric vertex adjacency matrix.

        Returns:
            NxN uint8 matrix indexed by vertex id, 1 iff the vertices share an edge
        """
        n = self.number_of_unique_vertices
        adjacency = np.zeros((n, n), dtype=np.uint8)
        for polygon in self._polygons:
            for i in range(len(polygon)):
                a = polygon[i]
                b = polygon[(i + 1) % len(polygon)]
                adjacency[a, b] = 1
                adjacency[b, a] = 1
        return adjacency

    def vertices_array(self) -> np.ndarray:
        """Vertex positions as an N x vertex_dimension array ordered by vertex id."""
        if not self._positions:
            return np.zeros((0, self.vertex_dimension))
        return np.vstack(self._positions)

    def polygons_array(self) -> np.ndarray:
        """Polygons as a P x polygon_dimension array of vertex ids."""
        if not self._polygons:
            return np.zeros((0, self.polygon_dimension), dtype=np.int64)
        return np.array(self._polygons, dtype=np.int64)

    def lmk_ids_array(self) -> np.ndarray:
        return np.array(
            [self._vtx_id_to_lmk_id[i] for i in range(self.number_of_unique_vertices)],
            dtype=np.int64
        )

    def colors_array(self) -> np.ndarray:
        """Per-vertex RGB colors as an Nx3 uint8 array, yellow where unset."""
        colors = np.tile(DEFAULT_VERTEX_COLOR, (self.number_of_unique_vertices, 1))
        for vtx_id, color in enumerate(self._colors):
            if color is not None:
                colors[vtx_id] = color
        return colors


class Mesh2D(Mesh):
    """Triangulated mesh of 2D pixel vertices."""

    def __init__(self):
        super().__init__(vertex_dimension=2, polygon_dimension=3)

    @classmethod
    def from_arrays(
        cls,
        pixels: np.ndarray,
        lmk_ids: Sequence[int],
        triangles: np.ndarray
    ) -> "Mesh2D":
        """Build a 2D mesh from flat arrays.

        Args:
            pixels: Nx2 vertex pixel coordinates
            lmk_ids: N landmark ids, one per pixel row
            triangles: Tx3 rows of indices into pixels

        Returns:
            Mesh2D whose vertex ids follow the order of first appearance in triangles
        """
        pixels = np.asarray(pixels, dtype=np.float64)
        triangles = np.asarray(triangles, dtype=np.int64)
        if pixels.ndim != 2 or pixels.shape[1] != 2:
            raise InvalidInput(f"Expected Nx2 pixels array, got shape {pixels.shape}")
        if len(lmk_ids) != pixels.shape[0]:
            raise InvalidInput(
                f"Got {len(lmk_ids)} landmark ids for {pixels.shape[0]} pixels"
            )
        if len(set(int(i) for i in lmk_ids)) != len(lmk_ids):
            raise InvalidInput("Landmark ids must be unique, one per pixel")
        if triangles.ndim != 2 or triangles.shape[1] != 3:
            raise InvalidInput(f"Expected Tx3 triangles array, got shape {triangles.shape}")
        if triangles.size and (triangles.min() < 0 or triangles.max() >= pixels.shape[0]):
            raise InvalidInput("Triangle indices out of range")

        mesh = cls()
        for tri in triangles:
            mesh.add_polygon([Vertex(int(lmk_ids[i]), pixels[i]) for i in tri])
        return mesh


class Mesh3D(Mesh):
    """Triangulated mesh of 3D vertices with optional colors."""

    def __init__(self):
        super().__init__(vertex_dimension=3, polygon_dimension=3)
