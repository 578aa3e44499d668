"""Mesh optimization entry point.

Optimizes the vertices of a 3D mesh given depth data (depth map, RGB-D,
lidar) on a projective setting: the 2D mesh fixes the bearing vector of each
vertex and the point cloud constrains the depths along them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from meshopt.association import collect_triangle_datapoints, validate_point_cloud
from meshopt.camera import CameraParams
from meshopt.config import MeshOptimizationConfig, MeshOptimizerType
from meshopt.errors import InvalidInput
from meshopt.evaluate import Timer
from meshopt.mesh import Mesh2D, Mesh3D
from meshopt.reconstruct import VertexEstimate, reconstruct_mesh
from meshopt.solvers import MeshSolver, make_solver
from meshopt.system import build_linear_system

logger = logging.getLogger(__name__)


@dataclass
class MeshOptimizationInput:
    """One mesh snapshot to optimize."""

    noisy_point_cloud: np.ndarray
    camera_params: CameraParams
    mesh_2d: Mesh2D


@dataclass
class MeshOptimizationOutput:
    """Optimized mesh and the data needed to inspect how it was obtained.

    Attributes:
        optimized_mesh_3d: Reconstructed mesh
        solver_type: Solver that produced the mesh
        vertex_estimates: Landmark id of an output vertex to its estimate
        degenerate_triangles: Triangles skipped for lack of samples or zero area
        singular_triangles: Triangles whose local least squares was singular
        unreconstructed_polygons: 2D polygons dropped from the output
        n_valid_datapoints: Samples associated to a triangle
        n_skipped_samples: Samples dropped while building or solving the system
        timings: Stage name to elapsed seconds
    """

    optimized_mesh_3d: Mesh3D
    solver_type: MeshOptimizerType
    vertex_estimates: Dict[int, VertexEstimate] = field(default_factory=dict)
    degenerate_triangles: List[int] = field(default_factory=list)
    singular_triangles: List[int] = field(default_factory=list)
    unreconstructed_polygons: List[int] = field(default_factory=list)
    n_valid_datapoints: int = 0
    n_skipped_samples: int = 0
    timings: Dict[str, float] = field(default_factory=dict)

    def depths(self) -> Dict[int, float]:
        """Landmark id to solved depth."""
        return {lmk_id: e.depth for lmk_id, e in self.vertex_estimates.items()}

    def std_deviations(self) -> Dict[int, float]:
        """Landmark id to depth standard deviation, empty unless the factor graph ran."""
        return {
            lmk_id: e.std_deviation
            for lmk_id, e in self.vertex_estimates.items()
            if e.std_deviation is not None
        }


class MeshOptimization:
    """Reconstructs a 3D mesh from a 2D mesh and a noisy point cloud.

    The solver and the debug toggle are fixed at construction.

    Args:
        config: Optimizer settings, defaults to the connected mesh solver
    """

    def __init__(self, config: Optional[MeshOptimizationConfig] = None):
        self.config = config or MeshOptimizationConfig()
        self.solver: MeshSolver = make_solver(self.config)
        logger.debug(f"Mesh optimizer using {self.config.solver_type.value}")

    @property
    def solver_type(self) -> MeshOptimizerType:
        return self.config.solver_type

    @property
    def debug_mode(self) -> bool:
        return self.config.debug_mode

    def spin_once(self, input: MeshOptimizationInput) -> MeshOptimizationOutput:
        return self.solve_optimal_mesh(
            input.noisy_point_cloud, input.camera_params, input.mesh_2d
        )

    def solve_optimal_mesh(
        self,
        noisy_point_cloud: np.ndarray,
        camera_params: CameraParams,
        mesh_2d: Mesh2D
    ) -> MeshOptimizationOutput:
        """Solve for the 3D mesh that best explains the point cloud.

        Args:
            noisy_point_cloud: Nx3 samples
            camera_params: Calibrated camera that observed the samples
            mesh_2d: Triangulated pixel mesh of tracked landmarks

        Returns:
            MeshOptimizationOutput with the reconstructed mesh

        Raises:
            InvalidInput: If the mesh or point cloud is malformed
            InsufficientData: If too few samples fall inside the mesh
            SingularSystem: If the global system cannot be solved
        """
        if mesh_2d.number_of_polygons == 0 or mesh_2d.number_of_unique_vertices == 0:
            raise InvalidInput("2D mesh has no polygons")
        if mesh_2d.polygon_dimension != 3:
            raise InvalidInput(f"Expected triangular mesh, got polygons of size {mesh_2d.polygon_dimension}")
        point_cloud = validate_point_cloud(noisy_point_cloud)

        timer = Timer("Mesh optimization")
        timer.start()
        logger.info(
            f"Optimizing mesh with {mesh_2d.number_of_polygons} triangles and "
            f"{len(point_cloud)} samples ({self.solver_type.value})"
        )

        datapoints = collect_triangle_datapoints(
            point_cloud,
            mesh_2d,
            camera_params,
            min_total_datapoints=self.config.min_total_datapoints,
            progress=self.debug_mode
        )
        timer.lap("association")

        system = build_linear_system(
            mesh_2d,
            datapoints,
            camera_params,
            min_datapoints_per_triangle=self.config.min_datapoints_per_triangle
        )
        timer.lap("build_system")

        result = self.solver.solve(system)
        timer.lap("solve")

        reconstruction = reconstruct_mesh(
            mesh_2d,
            system,
            result,
            connected=self.solver.connected,
            min_inverse_depth=self.config.min_inverse_depth,
            std_color_scale=self.config.std_color_scale
        )
        timer.lap("reconstruct")

        if self.debug_mode:
            for lmk_id, estimate in sorted(reconstruction.vertex_estimates.items()):
                logger.debug(
                    f"Landmark {lmk_id}: inverse depth={estimate.inverse_depth:.6f}, "
                    f"depth={estimate.depth:.4f}, std={estimate.std_deviation}"
                )

        output = MeshOptimizationOutput(
            optimized_mesh_3d=reconstruction.mesh,
            solver_type=self.solver_type,
            vertex_estimates=reconstruction.vertex_estimates,
            degenerate_triangles=system.degenerate_triangles,
            singular_triangles=result.singular_triangles,
            unreconstructed_polygons=reconstruction.unreconstructed_polygons,
            n_valid_datapoints=datapoints.n_valid,
            n_skipped_samples=system.n_skipped_samples + result.n_skipped_samples,
            timings=timer.timings
        )

        logger.info(
            f"Mesh optimization complete: {output.optimized_mesh_3d.number_of_polygons}/"
            f"{mesh_2d.number_of_polygons} polygons reconstructed "
            f"(elapsed time: {timer.stop():.3f}s)"
        )
        return output
