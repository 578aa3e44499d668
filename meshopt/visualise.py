"""Visualization utilities for mesh optimization results.

The optimizer itself never draws anything; these helpers consume its inputs
and outputs to render the 2D mesh with the projected point cloud, and the
reconstructed mesh with its depth confidence intervals.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np
import open3d as o3d

from meshopt.camera import CameraParams, project_points
from meshopt.io import mesh_to_open3d
from meshopt.mesh import Mesh2D

logger = logging.getLogger(__name__)


def draw_2d_mesh_on_img(
    mesh_2d: Mesh2D,
    img: np.ndarray,
    color: Tuple[int, int, int] = (255, 0, 0),
    thickness: int = 1,
    line_type: int = cv2.LINE_8
) -> np.ndarray:
    """Draw the edges of a 2D mesh on an image in place.

    Returns:
        The same image, for chaining
    """
    vertices = mesh_2d.vertices_array()
    for polygon in mesh_2d.polygons_array():
        corners = [tuple(int(round(c)) for c in vertices[v]) for v in polygon]
        for i in range(3):
            cv2.line(img, corners[i], corners[(i + 1) % 3], color, thickness, line_type)
    return img


def draw_pixels_on_img(
    pixels: np.ndarray,
    img: np.ndarray,
    color: Tuple[int, int, int] = (0, 255, 0),
    pixel_size: int = 1
) -> np.ndarray:
    """Draw filled circles at the given pixels, skipping NaNs."""
    for u, v in pixels:
        if np.isfinite(u) and np.isfinite(v):
            cv2.circle(img, (int(round(u)), int(round(v))), pixel_size, color, -1)
    return img


def render_association_image(
    mesh_2d: Mesh2D,
    point_cloud: np.ndarray,
    camera_params: CameraParams,
    image_size: Tuple[int, int]
) -> np.ndarray:
    """Render the 2D mesh and the projected point cloud on a white canvas.

    Args:
        mesh_2d: Triangulated pixel mesh
        point_cloud: Nx3 samples
        camera_params: Camera that observed the samples
        image_size: (height, width)

    Returns:
        BGR uint8 image
    """
    img = np.full((image_size[0], image_size[1], 3), 255, dtype=np.uint8)
    pixels, _ = project_points(point_cloud, camera_params.body_pose_cam, camera_params.K)
    draw_pixels_on_img(pixels, img)
    draw_2d_mesh_on_img(mesh_2d, img)
    return img


def array_to_pcd(
    points: np.ndarray,
    colors: Optional[np.ndarray] = None
) -> o3d.geometry.PointCloud:
    """Convert numpy arrays to Open3D point cloud."""
    pcd = o3d.geometry.PointCloud()
    pcd.points = o3d.utility.Vector3dVector(points)

    if colors is not None:
        if np.max(colors) > 1.0:
            colors = colors / 255.0
        pcd.colors = o3d.utility.Vector3dVector(colors)

    return pcd


def confidence_intervals_lineset(
    output,
    color: Tuple[float, float, float] = (0.2, 0.2, 0.8)
) -> Optional[o3d.geometry.LineSet]:
    """Segments [depth - std, depth + std] along each vertex ray.

    Args:
        output: MeshOptimizationOutput
        color: RGB color of the segments

    Returns:
        LineSet, or None when the solver produced no uncertainty
    """
    intervals = [e.interval for e in output.vertex_estimates.values() if e.interval is not None]
    if not intervals:
        return None

    points = np.vstack([np.vstack(interval) for interval in intervals])
    lines = np.arange(len(points)).reshape(-1, 2)

    line_set = o3d.geometry.LineSet()
    line_set.points = o3d.utility.Vector3dVector(points)
    line_set.lines = o3d.utility.Vector2iVector(lines)
    line_set.colors = o3d.utility.Vector3dVector(np.tile(color, (len(lines), 1)))
    return line_set


def build_geometries(
    output,
    point_cloud: Optional[np.ndarray] = None,
    wireframe: bool = False
) -> List[o3d.geometry.Geometry]:
    """Open3D geometries for the reconstructed mesh and its diagnostics."""
    geometries: List[o3d.geometry.Geometry] = [
        o3d.geometry.TriangleMesh.create_coordinate_frame(size=0.5)
    ]

    o3d_mesh = mesh_to_open3d(output.optimized_mesh_3d)
    o3d_mesh.compute_vertex_normals()
    if wireframe:
        geometries.append(o3d.geometry.LineSet.create_from_triangle_mesh(o3d_mesh))
    else:
        geometries.append(o3d_mesh)

    if point_cloud is not None and len(point_cloud) > 0:
        colors = np.tile([1.0, 0.0, 0.0], (len(point_cloud), 1))
        geometries.append(array_to_pcd(point_cloud, colors))

    intervals = confidence_intervals_lineset(output)
    if intervals is not None:
        geometries.append(intervals)

    return geometries


def show(
    output,
    point_cloud: Optional[np.ndarray] = None,
    save_path: Optional[str] = None,
    window_size: Tuple[int, int] = (1280, 720)
) -> None:
    """Interactively display the reconstructed mesh.

    Args:
        output: MeshOptimizationOutput
        point_cloud: Input samples to overlay (optional)
        save_path: Path to save screenshot (optional)
        window_size: Visualization window size
    """
    vis = o3d.visualization.Visualizer()
    vis.create_window(window_name="Mesh Optimization", width=window_size[0], height=window_size[1])

    for geometry in build_geometries(output, point_cloud):
        vis.add_geometry(geometry)

    opt = vis.get_render_option()
    opt.background_color = np.array([1.0, 1.0, 1.0])
    opt.point_size = 6.0
    opt.mesh_show_back_face = True

    vis.poll_events()
    vis.update_renderer()

    if save_path is not None:
        vis.capture_screen_image(save_path)
        logger.info(f"Screenshot saved to {save_path}")

    vis.run()
    vis.destroy_window()
