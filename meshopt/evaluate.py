"""Evaluation metrics for optimized meshes.

This module implements quality metrics for a reconstructed mesh (distance of
the samples to their triangle plane, Chamfer distance to the point cloud,
depth error against ground truth) and timing utilities.
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Union

import numpy as np
from scipy import spatial

logger = logging.getLogger(__name__)


def chamfer_distance(pcd_est: np.ndarray, pcd_gt: np.ndarray) -> float:
    """Calculate the Chamfer distance between two point sets.

    Args:
        pcd_est: Estimated points, Nx3 array
        pcd_gt: Reference points, Mx3 array

    Returns:
        Sum of the mean nearest-neighbour distances in both directions
    """
    if pcd_est.shape[0] == 0 or pcd_gt.shape[0] == 0:
        logger.warning("Empty point set provided for Chamfer distance calculation")
        return float('inf')

    tree_est = spatial.KDTree(pcd_est)
    tree_gt = spatial.KDTree(pcd_gt)

    distances_est_to_gt, _ = tree_gt.query(pcd_est, k=1)
    distances_gt_to_est, _ = tree_est.query(pcd_gt, k=1)

    return float(np.mean(distances_est_to_gt) + np.mean(distances_gt_to_est))


def point_to_plane_distances(vertices: np.ndarray, polygons: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Distance from each point to the plane of its nearest triangle centroid.

    Args:
        vertices: Vx3 mesh vertex positions
        polygons: Px3 vertex indices
        points: Nx3 query points

    Returns:
        N distances, empty if the mesh has no polygons
    """
    if len(polygons) == 0 or len(points) == 0:
        return np.zeros(0)

    corners = vertices[polygons]
    centroids = corners.mean(axis=1)
    normals = np.cross(corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0])
    norms = np.linalg.norm(normals, axis=1)
    valid = norms > 0
    normals[valid] /= norms[valid, None]

    _, nearest = spatial.KDTree(centroids).query(points, k=1)
    offsets = points - centroids[nearest]
    return np.abs(np.sum(offsets * normals[nearest], axis=1))


def depth_rmse(estimated: Dict[int, float], ground_truth: Dict[int, float]) -> float:
    """Root mean square depth error over the landmarks present in both maps."""
    common = sorted(set(estimated) & set(ground_truth))
    if not common:
        logger.warning("No common landmarks for depth error calculation")
        return float('inf')

    errors = np.array([estimated[k] - ground_truth[k] for k in common])
    return float(np.sqrt(np.mean(errors ** 2)))


class Timer:
    """Utility class for timing operations with context manager support."""

    def __init__(self, name: str = "Timer", logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time = None
        self._timings = {}

    def start(self) -> None:
        self.start_time = time.perf_counter()
        self._timings.pop("__last", None)

    def stop(self) -> float:
        """Stop the timer and return elapsed time in seconds."""
        if self.start_time is None:
            self.logger.warning(f"{self.name}: Timer stopped without being started")
            return 0.0

        elapsed = time.perf_counter() - self.start_time
        self.logger.debug(f"{self.name}: {elapsed:.4f}s")
        return elapsed

    def __enter__(self) -> "Timer":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    def lap(self, name: str) -> float:
        """Record the time since the previous lap (or start) under a name."""
        current_time = time.perf_counter()
        if self.start_time is None:
            self.start_time = current_time

        last_time = self._timings.get("__last", self.start_time)
        lap_time = current_time - last_time

        self._timings["__last"] = current_time
        self._timings[name] = lap_time

        self.logger.debug(f"{self.name} - {name}: {lap_time:.4f}s")
        return lap_time

    @property
    def timings(self) -> Dict[str, float]:
        return {k: v for k, v in self._timings.items() if k != "__last"}

    @property
    def elapsed(self) -> float:
        """Current elapsed time without stopping the timer."""
        if self.start_time is None:
            return 0.0
        return time.perf_counter() - self.start_time


class OptimizationMetrics:
    """Collects metrics of one mesh optimization run."""

    def __init__(self):
        self.metrics = {
            "solver_type": None,
            "n_points": 0,
            "n_valid_datapoints": 0,
            "n_input_polygons": 0,
            "n_output_polygons": 0,
            "n_output_vertices": 0,
            "n_degenerate_triangles": 0,
            "n_unreconstructed_polygons": 0,
            "runtime_s": 0.0,
            "stage_timings": {},
        }

    def update(self, metric_name: str, value: Union[int, float, str, Dict]) -> None:
        self.metrics[metric_name] = value

    def compute_output_metrics(self, output, mesh_2d, point_cloud: np.ndarray) -> None:
        """Fill the metrics from a MeshOptimizationOutput.

        Args:
            output: Result of MeshOptimization.solve_optimal_mesh
            mesh_2d: Input 2D mesh
            point_cloud: Input Nx3 samples
        """
        mesh_3d = output.optimized_mesh_3d
        self.metrics["solver_type"] = output.solver_type.value
        self.metrics["n_points"] = len(point_cloud)
        self.metrics["n_valid_datapoints"] = output.n_valid_datapoints
        self.metrics["n_input_polygons"] = mesh_2d.number_of_polygons
        self.metrics["n_output_polygons"] = mesh_3d.number_of_polygons
        self.metrics["n_output_vertices"] = mesh_3d.number_of_unique_vertices
        self.metrics["n_degenerate_triangles"] = len(output.degenerate_triangles)
        self.metrics["n_unreconstructed_polygons"] = len(output.unreconstructed_polygons)
        self.metrics["stage_timings"] = dict(output.timings)

        vertices = mesh_3d.vertices_array()
        if len(vertices) > 0:
            self.metrics["chamfer_distance"] = chamfer_distance(vertices, point_cloud)
            distances = point_to_plane_distances(vertices, mesh_3d.polygons_array(), point_cloud)
            if len(distances) > 0:
                self.metrics["mean_point_to_plane"] = float(np.mean(distances))

        stds = list(output.std_deviations().values())
        if stds:
            self.metrics["mean_depth_std"] = float(np.mean(stds))

    def to_dict(self) -> Dict:
        return self.metrics.copy()

    def summary(self) -> str:
        """Generate a human-readable summary of metrics."""
        lines = [
            "Mesh Optimization Metrics:",
            f"  Solver: {self.metrics['solver_type']}",
            f"  Samples: {self.metrics['n_valid_datapoints']}/{self.metrics['n_points']} associated",
            f"  Polygons: {self.metrics['n_output_polygons']}/{self.metrics['n_input_polygons']} reconstructed",
            f"  Vertices: {self.metrics['n_output_vertices']}",
            f"  Degenerate triangles: {self.metrics['n_degenerate_triangles']}",
        ]

        if "chamfer_distance" in self.metrics:
            lines.append(f"  Chamfer distance: {self.metrics['chamfer_distance']:.4f}")

        if "mean_point_to_plane" in self.metrics:
            lines.append(f"  Mean point-to-plane distance: {self.metrics['mean_point_to_plane']:.4f}")

        if "mean_depth_std" in self.metrics:
            lines.append(f"  Mean depth std: {self.metrics['mean_depth_std']:.4f}")

        lines.append(f"  Total runtime: {self.metrics['runtime_s']:.2f}s")

        if self.metrics["stage_timings"]:
            lines.append("  Stage timings:")
            for stage, time_s in self.metrics["stage_timings"].items():
                lines.append(f"    {stage}: {time_s:.3f}s")

        return "\n".join(lines)
