"""Point cloud to mesh triangle data association.

Every point cloud sample is projected into the image and assigned to the first
triangle of the 2D mesh, in storage order, whose closure contains its pixel.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List

import numpy as np
from tqdm import tqdm

from meshopt.camera import CameraParams, project_points, transform_to
from meshopt.errors import InsufficientData, InvalidInput
from meshopt.geometry import points_in_triangle
from meshopt.mesh import Mesh2D

logger = logging.getLogger(__name__)


@dataclass
class TriangleDatapoints:
    """Samples associated to each triangle.

    Attributes:
        points: Triangle index to list of samples in the camera frame
        pixels: Triangle index to list of the samples' pixels, parallel to points
        n_valid: Total number of associated samples
        n_behind_camera: Samples dropped because they are not in front of the camera
    """

    points: Dict[int, List[np.ndarray]] = field(default_factory=dict)
    pixels: Dict[int, List[np.ndarray]] = field(default_factory=dict)
    n_valid: int = 0
    n_behind_camera: int = 0

    def datapoints(self, tri_idx: int) -> List[np.ndarray]:
        return self.points.get(tri_idx, [])

    def datapoint_pixels(self, tri_idx: int) -> List[np.ndarray]:
        return self.pixels.get(tri_idx, [])

    @property
    def n_triangles(self) -> int:
        """Number of triangles with at least one sample."""
        return len(self.points)


def validate_point_cloud(point_cloud: np.ndarray) -> np.ndarray:
    """Check that the point cloud is a finite Nx3 array.

    Raises:
        InvalidInput: If the shape is wrong or the cloud is empty
    """
    cloud = np.asarray(point_cloud, dtype=np.float64)
    if cloud.ndim == 3 and cloud.shape[0] == 1:
        # 1xNx3 single-row organized cloud
        cloud = cloud[0]
    if cloud.ndim != 2 or cloud.shape[1] != 3:
        raise InvalidInput(f"Expected Nx3 point cloud, got shape {cloud.shape}")
    if cloud.shape[0] == 0:
        raise InvalidInput("Point cloud is empty")
    if not np.all(np.isfinite(cloud)):
        raise InvalidInput("Point cloud contains non-finite values")
    return cloud


def collect_triangle_datapoints(
    point_cloud: np.ndarray,
    mesh_2d: Mesh2D,
    camera_params: CameraParams,
    min_total_datapoints: int = 4,
    progress: bool = False
) -> TriangleDatapoints:
    """Associate point cloud samples to the triangles of a 2D mesh.

    A sample goes to the first triangle in storage order that contains its
    projection, boundary included. Samples that hit no triangle are dropped.

    Args:
        point_cloud: Nx3 samples in the body frame
        mesh_2d: Triangulated pixel mesh
        camera_params: Camera used to project the samples
        min_total_datapoints: Minimum number of samples that must be associated
        progress: Show a progress bar over triangles

    Returns:
        TriangleDatapoints for the triangles that received samples

    Raises:
        InsufficientData: If too few samples or no triangle were matched
    """
    start_time = time.perf_counter()
    cloud = validate_point_cloud(point_cloud)

    pixels, in_front = project_points(cloud, camera_params.body_pose_cam, camera_params.K)
    cloud_cam = transform_to(camera_params.body_pose_cam, cloud)

    n_behind = int(np.sum(~in_front))
    if n_behind > 0:
        logger.debug(f"Dropping {n_behind} samples not in front of the camera")

    owner = np.full(len(cloud), -1, dtype=np.int64)
    unassigned = in_front.copy()
    vertices = mesh_2d.vertices_array()
    polygons = mesh_2d.polygons_array()

    for tri_idx in tqdm(
        range(mesh_2d.number_of_polygons), desc="Associating", disable=not progress
    ):
        if not np.any(unassigned):
            break
        v0, v1, v2 = vertices[polygons[tri_idx]]
        hits = unassigned & points_in_triangle(pixels, v0, v1, v2)
        owner[hits] = tri_idx
        unassigned &= ~hits

    result = TriangleDatapoints(n_behind_camera=n_behind)
    for i in np.flatnonzero(owner >= 0):
        tri_idx = int(owner[i])
        result.points.setdefault(tri_idx, []).append(cloud_cam[i])
        result.pixels.setdefault(tri_idx, []).append(pixels[i])
        result.n_valid += 1

    elapsed_time = time.perf_counter() - start_time
    logger.info(
        f"Associated {result.n_valid}/{len(cloud)} samples to "
        f"{result.n_triangles}/{mesh_2d.number_of_polygons} triangles "
        f"(elapsed time: {elapsed_time:.3f}s)"
    )

    if result.n_valid < min_total_datapoints:
        raise InsufficientData(
            f"Only {result.n_valid} samples fell inside the mesh, "
            f"at least {min_total_datapoints} are required"
        )
    if result.n_triangles == 0:
        raise InsufficientData("No triangle received any sample")
    if result.n_triangles != mesh_2d.number_of_polygons:
        logger.warning(
            f"{mesh_2d.number_of_polygons - result.n_triangles} triangles received no samples"
        )

    return result
