"""Synthetic scenes with known geometry.

Generates a regular triangulated pixel grid looking at a plane, together with
a noisy point cloud sampled on that plane, so that ground-truth vertex depths
are known exactly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import numpy as np

from meshopt.camera import CameraParams, backproject
from meshopt.mesh import Mesh2D

logger = logging.getLogger(__name__)


@dataclass
class SyntheticScene:
    """Inputs of one optimization and the true vertex ranges."""

    point_cloud: np.ndarray
    mesh_2d: Mesh2D
    camera_params: CameraParams
    gt_depths: Dict[int, float]


def grid_mesh(
    rows: int,
    cols: int,
    spacing: float,
    origin: Tuple[float, float] = (0.0, 0.0),
    first_lmk_id: int = 0
) -> Mesh2D:
    """Triangulate a rows x cols grid of pixels, two triangles per cell."""
    pixels = np.array(
        [[origin[0] + c * spacing, origin[1] + r * spacing] for r in range(rows) for c in range(cols)]
    )
    triangles = []
    for r in range(rows - 1):
        for c in range(cols - 1):
            i = r * cols + c
            triangles.append([i, i + 1, i + cols])
            triangles.append([i + 1, i + cols + 1, i + cols])
    lmk_ids = list(range(first_lmk_id, first_lmk_id + len(pixels)))
    return Mesh2D.from_arrays(pixels, lmk_ids, np.array(triangles))


def ray_plane_range(bearing: np.ndarray, normal: np.ndarray, offset: float) -> float:
    """Range along a unit bearing to the plane normal . X = offset."""
    return offset / float(np.dot(normal, bearing))


def make_planar_scene(
    rows: int = 4,
    cols: int = 4,
    spacing: float = 40.0,
    n_points: int = 400,
    plane_normal: Tuple[float, float, float] = (0.0, 0.0, 1.0),
    plane_offset: float = 5.0,
    noise_sigma: float = 0.0,
    camera_params: Optional[CameraParams] = None,
    seed: int = 0
) -> SyntheticScene:
    """Sample a plane seen through a grid mesh.

    Args:
        rows: Grid rows
        cols: Grid columns
        spacing: Grid spacing in pixels
        n_points: Number of point cloud samples
        plane_normal: Plane normal in the camera frame
        plane_offset: Plane offset, normal . X = offset
        noise_sigma: Standard deviation of the range noise
        camera_params: Camera, defaults to f=500 centered on the grid
        seed: Random seed

    Returns:
        SyntheticScene
    """
    rng = np.random.default_rng(seed)
    if camera_params is None:
        center = ((cols - 1) * spacing / 2.0, (rows - 1) * spacing / 2.0)
        camera_params = CameraParams(500.0, 500.0, center[0], center[1])

    normal = np.asarray(plane_normal, dtype=np.float64)
    normal /= np.linalg.norm(normal)
    K = camera_params.K

    mesh_2d = grid_mesh(rows, cols, spacing)

    gt_depths = {}
    for pixel, lmk_id in zip(mesh_2d.vertices_array(), mesh_2d.lmk_ids_array()):
        gt_depths[int(lmk_id)] = ray_plane_range(backproject(pixel, K), normal, plane_offset)

    # Stay off the outer border so every sample projects inside the mesh
    margin = 1e-3 * spacing
    us = rng.uniform(margin, (cols - 1) * spacing - margin, n_points)
    vs = rng.uniform(margin, (rows - 1) * spacing - margin, n_points)

    points = []
    for u, v in zip(us, vs):
        bearing = backproject(np.array([u, v]), K)
        depth = ray_plane_range(bearing, normal, plane_offset)
        depth += rng.normal(0.0, noise_sigma) if noise_sigma > 0 else 0.0
        points.append(depth * bearing)

    # Samples are given in the body frame
    pose = camera_params.body_pose_cam
    point_cloud = np.vstack(points) @ pose[:3, :3].T + pose[:3, 3]

    logger.debug(
        f"Synthetic scene: {mesh_2d.number_of_polygons} triangles, {n_points} samples, "
        f"noise sigma {noise_sigma}"
    )
    return SyntheticScene(point_cloud, mesh_2d, camera_params, gt_depths)
