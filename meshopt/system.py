"""Construction of the per-triangle inverse-depth systems.

For every triangle with enough samples this module computes the bearing
vectors of its vertices and one barycentric constraint per sample:

    b0 * x[v0] + b1 * x[v1] + b2 * x[v2] = 1 / ||sample||

where x[v] is the unknown inverse depth of vertex v along its bearing vector.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from meshopt.association import TriangleDatapoints
from meshopt.camera import CameraParams, backproject, to_bearing
from meshopt.errors import DegenerateProjection, DegenerateTriangle
from meshopt.geometry import barycentric_coordinates
from meshopt.mesh import Mesh2D

logger = logging.getLogger(__name__)

# Samples are already expressed in the camera frame.
_CAMERA_FRAME = np.eye(4)


@dataclass
class BarycentricConstraint:
    """One scalar inverse-depth measurement spread over a triangle's vertices."""

    vtx_ids: Tuple[int, int, int]
    weights: np.ndarray
    inv_depth: float
    tri_idx: int


@dataclass
class TriangleSystem:
    """Data needed to solve one triangle.

    Attributes:
        tri_idx: Index of the triangle in the 2D mesh
        vtx_ids: Vertex ids of the three corners
        lmk_ids: Landmark ids of the three corners
        bearings: 3x3 matrix whose columns are the corner bearing vectors
        datapoints: Nx3 samples in the camera frame
        pixels: Nx2 pixels of the samples
        constraints: One barycentric constraint per sample
    """

    tri_idx: int
    vtx_ids: Tuple[int, int, int]
    lmk_ids: Tuple[int, int, int]
    bearings: np.ndarray
    datapoints: np.ndarray
    pixels: np.ndarray
    constraints: List[BarycentricConstraint] = field(default_factory=list)


@dataclass
class LinearSystem:
    """Everything the solvers need from one mesh snapshot.

    Attributes:
        triangles: Solvable triangles in mesh storage order
        bearing_vectors: Vertex id to unit bearing vector
        vertex_pixels: Vertex id to pixel
        n_vertices: Number of unique vertices of the 2D mesh
        degenerate_triangles: Indices of skipped triangles
        n_skipped_samples: Samples dropped while building constraints
        adjacency: Symmetric vertex adjacency matrix of the 2D mesh
    """

    triangles: List[TriangleSystem]
    bearing_vectors: Dict[int, np.ndarray]
    vertex_pixels: Dict[int, np.ndarray]
    n_vertices: int
    degenerate_triangles: List[int] = field(default_factory=list)
    n_skipped_samples: int = 0
    adjacency: Optional[np.ndarray] = None

    @property
    def constraints(self) -> List[BarycentricConstraint]:
        return [c for tri in self.triangles for c in tri.constraints]

    @property
    def n_datapoints(self) -> int:
        return sum(len(tri.datapoints) for tri in self.triangles)


def build_linear_system(
    mesh_2d: Mesh2D,
    datapoints: TriangleDatapoints,
    camera_params: CameraParams,
    min_datapoints_per_triangle: int = 3
) -> LinearSystem:
    """Build per-triangle constraints for every solvable triangle.

    Args:
        mesh_2d: Triangulated pixel mesh
        datapoints: Samples associated to each triangle
        camera_params: Camera used to back-project the vertex pixels
        min_datapoints_per_triangle: Triangles with fewer samples are skipped

    Returns:
        LinearSystem with cached bearing vectors and triangle constraints
    """
    start_time = time.perf_counter()
    K = camera_params.K

    system = LinearSystem(
        triangles=[],
        bearing_vectors={},
        vertex_pixels={},
        n_vertices=mesh_2d.number_of_unique_vertices,
        adjacency=mesh_2d.adjacency_matrix()
    )

    for tri_idx in range(mesh_2d.number_of_polygons):
        polygon = mesh_2d.get_polygon(tri_idx)
        vtx_ids = mesh_2d.get_polygon_vtx_ids(tri_idx)

        for vtx, vtx_id in zip(polygon, vtx_ids):
            if vtx_id not in system.bearing_vectors:
                system.bearing_vectors[vtx_id] = backproject(vtx.position, K)
                system.vertex_pixels[vtx_id] = vtx.position

        try:
            triangle = _build_triangle_system(
                tri_idx,
                vtx_ids,
                tuple(vtx.lmk_id for vtx in polygon),
                system,
                datapoints,
                min_datapoints_per_triangle
            )
        except DegenerateTriangle as e:
            logger.warning(f"Skipping triangle {tri_idx}: {e}")
            system.degenerate_triangles.append(tri_idx)
            continue

        system.triangles.append(triangle)

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Built {len(system.constraints)} constraints over {len(system.triangles)} triangles, "
        f"{len(system.degenerate_triangles)} degenerate (elapsed time: {elapsed_time:.3f}s)"
    )
    return system


def _build_triangle_system(
    tri_idx: int,
    vtx_ids: Tuple[int, ...],
    lmk_ids: Tuple[int, ...],
    system: LinearSystem,
    datapoints: TriangleDatapoints,
    min_datapoints: int
) -> TriangleSystem:
    v0, v1, v2 = (system.vertex_pixels[v] for v in vtx_ids)

    points = []
    pixels = []
    inv_depths = []
    for point, pixel in zip(datapoints.datapoints(tri_idx), datapoints.datapoint_pixels(tri_idx)):
        try:
            _, inv_depth = to_bearing(point, _CAMERA_FRAME)
        except DegenerateProjection as e:
            logger.warning(f"Skipping sample in triangle {tri_idx}: {e}")
            system.n_skipped_samples += 1
            continue
        points.append(point)
        pixels.append(pixel)
        inv_depths.append(inv_depth)

    if len(points) < min_datapoints:
        raise DegenerateTriangle(
            f"Degenerate case optimization problem, {len(points)} datapoints "
            f"but at least {min_datapoints} are needed",
            tri_idx
        )

    triangle = TriangleSystem(
        tri_idx=tri_idx,
        vtx_ids=tuple(vtx_ids),
        lmk_ids=tuple(lmk_ids),
        bearings=np.column_stack([system.bearing_vectors[v] for v in vtx_ids]),
        datapoints=np.vstack(points),
        pixels=np.vstack(pixels)
    )

    for pixel, inv_depth in zip(pixels, inv_depths):
        b0, b1, b2, inside = barycentric_coordinates(v0, v1, v2, pixel)
        if not inside:
            # Keep the weights, the sample was associated to this triangle
            logger.error(
                f"Query pixel {pixel} is outside triangle {tri_idx}: "
                f"barycentric coordinates ({b0:.6f}, {b1:.6f}, {b2:.6f})"
            )
        triangle.constraints.append(
            BarycentricConstraint(triangle.vtx_ids, np.array([b0, b1, b2]), inv_depth, tri_idx)
        )

    return triangle
