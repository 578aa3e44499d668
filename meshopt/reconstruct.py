"""3D mesh reconstruction from solved inverse depths.

Each solved vertex is placed at depth 1/psi along its bearing vector. When the
solver also provides the Hessian diagonal, a depth standard deviation is
derived from it and used to color the vertex. This standard deviation ignores
cross-covariances and is a diagnostic, not an exact marginal.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import matplotlib
import numpy as np

from meshopt.errors import DegenerateDepth, UnreconstructedPolygon
from meshopt.mesh import Mesh2D, Mesh3D, Vertex
from meshopt.solvers import SolverResult
from meshopt.system import LinearSystem

logger = logging.getLogger(__name__)


@dataclass
class VertexEstimate:
    """Solved vertex with optional uncertainty.

    Attributes:
        lmk_id: Landmark id of the vertex in the output mesh
        inverse_depth: Solved inverse depth psi
        depth: Range along the bearing vector, 1/psi
        position: 3D position in the camera frame
        std_deviation: Depth standard deviation, factor graph only
        interval: Positions at depth - std and depth + std along the ray
        color: RGB uint8 color derived from std_deviation
    """

    lmk_id: int
    inverse_depth: float
    depth: float
    position: np.ndarray
    std_deviation: Optional[float] = None
    interval: Optional[Tuple[np.ndarray, np.ndarray]] = None
    color: Optional[np.ndarray] = None


@dataclass
class ReconstructionResult:
    """Reconstructed mesh and per-vertex diagnostics."""

    mesh: Mesh3D
    vertex_estimates: Dict[int, VertexEstimate] = field(default_factory=dict)
    unreconstructed_polygons: List[int] = field(default_factory=list)
    degenerate_depths: int = 0


def inverse_depth_to_depth(psi: float, min_inverse_depth: float = 1e-9) -> float:
    """Invert a solved inverse depth.

    Raises:
        DegenerateDepth: If |psi| is below min_inverse_depth
    """
    if not np.isfinite(psi) or abs(psi) < min_inverse_depth:
        raise DegenerateDepth(f"Inverse depth {psi} cannot be inverted")
    return 1.0 / psi


def depth_std_deviation(psi: float, hessian_diagonal: float) -> float:
    """Depth standard deviation from the information of an inverse depth.

    variance_of_inverse_depth = 1 / hessian_diagonal and
    variance_of_depth = variance_of_inverse_depth / psi^2.
    """
    if hessian_diagonal <= 0:
        return float("inf")
    variance_of_inv_depth = 1.0 / hessian_diagonal
    variance_of_depth = variance_of_inv_depth / psi ** 2
    return float(np.sqrt(variance_of_depth))


def std_deviation_color(std_deviation: float, scale: float = 0.1) -> np.ndarray:
    """Map a standard deviation to an RGB uint8 rainbow color.

    Args:
        std_deviation: Depth standard deviation
        scale: Standard deviation mapped to the top of the colormap

    Returns:
        Length 3 uint8 array
    """
    value = float(np.clip(std_deviation / scale, 0.0, 1.0))
    rgba = matplotlib.colormaps["rainbow"](value)
    return np.round(np.asarray(rgba[:3]) * 255).astype(np.uint8)


def reconstruct_disconnected_mesh(
    system: LinearSystem,
    result: SolverResult,
    min_inverse_depth: float = 1e-9
) -> ReconstructionResult:
    """Rebuild every solved triangle with its own three vertices.

    Vertices receive fresh landmark ids 0, 1, 2, ... in triangle order.
    """
    mesh = Mesh3D()
    output = ReconstructionResult(mesh)
    lmk_ids = itertools.count()

    for triangle in system.triangles:
        psi = result.triangle_inverse_depths.get(triangle.tri_idx)
        if psi is None:
            continue

        try:
            depths = [inverse_depth_to_depth(p, min_inverse_depth) for p in psi]
        except DegenerateDepth as e:
            logger.warning(f"Dropping triangle {triangle.tri_idx}: {e}")
            output.degenerate_depths += 1
            continue

        polygon = []
        for k in range(3):
            lmk_id = next(lmk_ids)
            position = depths[k] * triangle.bearings[:, k]
            polygon.append(Vertex(lmk_id, position))
            output.vertex_estimates[lmk_id] = VertexEstimate(
                lmk_id, float(psi[k]), depths[k], position
            )
        mesh.add_polygon(polygon)

    return output


def reconstruct_connected_mesh(
    mesh_2d: Mesh2D,
    system: LinearSystem,
    result: SolverResult,
    min_inverse_depth: float = 1e-9,
    std_color_scale: float = 0.1
) -> ReconstructionResult:
    """Rebuild the 2D mesh connectivity with one 3D position per vertex.

    Polygons with an unsolved vertex are dropped.
    """
    mesh = Mesh3D()
    output = ReconstructionResult(mesh)

    for vtx_id, psi in result.inverse_depths.items():
        lmk_id = mesh_2d.get_lmk_id_for_vtx_id(vtx_id)
        try:
            depth = inverse_depth_to_depth(psi, min_inverse_depth)
        except DegenerateDepth as e:
            logger.warning(f"Dropping vertex of landmark {lmk_id}: {e}")
            output.degenerate_depths += 1
            continue

        bearing = system.bearing_vectors[vtx_id]
        estimate = VertexEstimate(lmk_id, psi, depth, depth * bearing)

        if result.information is not None:
            std = depth_std_deviation(psi, result.information[vtx_id])
            estimate.std_deviation = std
            estimate.interval = ((depth - std) * bearing, (depth + std) * bearing)
            estimate.color = std_deviation_color(std, std_color_scale)

        output.vertex_estimates[lmk_id] = estimate

    for k in range(mesh_2d.number_of_polygons):
        polygon_2d = mesh_2d.get_polygon(k)
        try:
            polygon_3d = []
            for vtx in polygon_2d:
                estimate = output.vertex_estimates.get(vtx.lmk_id)
                if estimate is None:
                    raise UnreconstructedPolygon(k)
                polygon_3d.append(Vertex(vtx.lmk_id, estimate.position, estimate.color))
        except UnreconstructedPolygon as e:
            logger.warning(f"Non-reconstructed poly: {e}")
            output.unreconstructed_polygons.append(e.polygon_idx)
            continue
        mesh.add_polygon(polygon_3d)

    return output


def reconstruct_mesh(
    mesh_2d: Mesh2D,
    system: LinearSystem,
    result: SolverResult,
    connected: bool,
    min_inverse_depth: float = 1e-9,
    std_color_scale: float = 0.1
) -> ReconstructionResult:
    """Assemble the output 3D mesh from a solver result.

    Args:
        mesh_2d: Input 2D mesh, used for connectivity
        system: Linear system holding the bearing vectors
        result: Solver output
        connected: Whether the solver returned one estimate per vertex
        min_inverse_depth: Inverse depths below this magnitude are dropped
        std_color_scale: Depth standard deviation mapped to the top of the colormap

    Returns:
        ReconstructionResult with the mesh and per-vertex estimates
    """
    start_time = time.perf_counter()

    if connected:
        output = reconstruct_connected_mesh(
            mesh_2d, system, result, min_inverse_depth, std_color_scale
        )
    else:
        output = reconstruct_disconnected_mesh(system, result, min_inverse_depth)

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Reconstructed mesh: {output.mesh.number_of_unique_vertices} vertices, "
        f"{output.mesh.number_of_polygons} polygons, "
        f"{len(output.unreconstructed_polygons)} dropped (elapsed time: {elapsed_time:.3f}s)"
    )
    return output
