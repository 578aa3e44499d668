"""Scene loading and mesh export.

Scenes are stored as ``.npz`` archives holding the point cloud, the 2D mesh
and the camera calibration. A YAML sensor calibration can replace the camera
stored in the scene. Optimized meshes are written with Open3D.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple, Union

import numpy as np
import open3d as o3d
import yaml

from meshopt.camera import CameraParams
from meshopt.errors import InvalidInput
from meshopt.mesh import Mesh2D, Mesh3D

logger = logging.getLogger(__name__)

SCENE_KEYS = ("point_cloud", "vertices", "lmk_ids", "triangles", "intrinsics")


def load_calibration(path: Union[str, Path]) -> CameraParams:
    """Load camera parameters from a YAML sensor calibration.

    The file holds ``intrinsics: [fx, fy, cx, cy]`` and optionally the body to
    sensor pose as ``T_BS: {data: [16 values, row-major]}``.
    """
    with open(path, "r") as f:
        calibration = yaml.safe_load(f)

    if not isinstance(calibration, dict):
        raise InvalidInput(f"Calibration {path} is not a mapping")

    camera_params = CameraParams.from_dict(calibration)
    logger.info(f"Loaded calibration {path}: intrinsics {camera_params.intrinsics}")
    return camera_params


def load_scene(
    path: Union[str, Path],
    calibration_path: Optional[Union[str, Path]] = None
) -> Tuple[np.ndarray, Mesh2D, CameraParams]:
    """Load a mesh optimization scene.

    The archive holds ``point_cloud`` (Nx3), ``vertices`` (Vx2 pixels),
    ``lmk_ids`` (V), ``triangles`` (Tx3 indices into vertices),
    ``intrinsics`` ([fx, fy, cx, cy]) and optionally ``body_pose_cam`` (4x4).

    Args:
        path: Path to the scene archive
        calibration_path: YAML calibration overriding the stored camera

    Returns:
        Tuple of (point_cloud, mesh_2d, camera_params)
    """
    with np.load(path) as data:
        missing = [k for k in SCENE_KEYS if k not in data]
        if missing:
            raise InvalidInput(f"Scene {path} is missing arrays: {missing}")

        point_cloud = np.asarray(data["point_cloud"], dtype=np.float64)
        mesh_2d = Mesh2D.from_arrays(data["vertices"], data["lmk_ids"], data["triangles"])
        calibration = {"intrinsics": np.asarray(data["intrinsics"], dtype=np.float64).tolist()}
        if "body_pose_cam" in data:
            calibration["T_BS"] = {"data": np.asarray(data["body_pose_cam"]).ravel().tolist()}

    if calibration_path is not None:
        camera_params = load_calibration(calibration_path)
    else:
        camera_params = CameraParams.from_dict(calibration)

    logger.info(
        f"Loaded scene {path}: {len(point_cloud)} points, "
        f"{mesh_2d.number_of_polygons} triangles"
    )
    return point_cloud, mesh_2d, camera_params


def save_scene(
    path: Union[str, Path],
    point_cloud: np.ndarray,
    mesh_2d: Mesh2D,
    camera_params: CameraParams
) -> None:
    """Write a scene in the format read by load_scene."""
    np.savez(
        path,
        point_cloud=np.asarray(point_cloud, dtype=np.float64),
        vertices=mesh_2d.vertices_array(),
        lmk_ids=mesh_2d.lmk_ids_array(),
        triangles=mesh_2d.polygons_array(),
        intrinsics=np.array(camera_params.intrinsics),
        body_pose_cam=camera_params.body_pose_cam
    )
    logger.info(f"Scene saved to {path}")


def mesh_to_open3d(mesh: Mesh3D) -> o3d.geometry.TriangleMesh:
    """Convert a Mesh3D to an Open3D triangle mesh with vertex colors."""
    o3d_mesh = o3d.geometry.TriangleMesh()
    o3d_mesh.vertices = o3d.utility.Vector3dVector(mesh.vertices_array())
    o3d_mesh.triangles = o3d.utility.Vector3iVector(mesh.polygons_array().astype(np.int32))
    o3d_mesh.vertex_colors = o3d.utility.Vector3dVector(mesh.colors_array() / 255.0)
    return o3d_mesh


def save_mesh(
    mesh: Mesh3D,
    output_path: Union[str, Path],
    file_format: str = "ply"
) -> bool:
    """Save mesh to file.

    Args:
        mesh: Reconstructed mesh
        output_path: Output file path
        file_format: Output file format (ply, obj, ...)

    Returns:
        True if successful, False otherwise
    """
    o3d_mesh = mesh_to_open3d(mesh)
    o3d_mesh.compute_vertex_normals()

    if file_format.lower() == "obj":
        success = o3d.io.write_triangle_mesh(str(output_path), o3d_mesh, write_vertex_colors=True)
    else:
        success = o3d.io.write_triangle_mesh(str(output_path), o3d_mesh)

    if success:
        logger.info(f"Mesh saved to {output_path}")
    else:
        logger.error(f"Failed to save mesh to {output_path}")
    return success
