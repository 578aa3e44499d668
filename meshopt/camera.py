"""Pinhole camera model.

This module implements projection of 3D landmarks to pixels and
back-projection of pixels to unit bearing vectors for a calibrated pinhole
camera whose pose is given relative to the body frame.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Tuple

import numpy as np

from meshopt.errors import DegenerateProjection, InvalidInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CameraParams:
    """Intrinsics and extrinsics of a pinhole camera.

    Attributes:
        fx: Focal length along x in pixels
        fy: Focal length along y in pixels
        cx: Principal point x coordinate
        cy: Principal point y coordinate
        body_pose_cam: 4x4 pose of the camera expressed in the body frame
    """

    fx: float
    fy: float
    cx: float
    cy: float
    body_pose_cam: np.ndarray = field(default_factory=lambda: np.eye(4))

    def __post_init__(self) -> None:
        if self.fx <= 0 or self.fy <= 0:
            raise InvalidInput(f"Focal lengths must be positive, got fx={self.fx}, fy={self.fy}")
        pose = np.asarray(self.body_pose_cam, dtype=np.float64)
        if pose.shape != (4, 4):
            raise InvalidInput(f"Expected 4x4 body_pose_cam, got shape {pose.shape}")
        object.__setattr__(self, "body_pose_cam", pose)

    @property
    def K(self) -> np.ndarray:
        """3x3 intrinsic matrix."""
        return np.array([
            [self.fx, 0.0, self.cx],
            [0.0, self.fy, self.cy],
            [0.0, 0.0, 1.0]
        ])

    @property
    def intrinsics(self) -> list[float]:
        return [self.fx, self.fy, self.cx, self.cy]

    @classmethod
    def from_dict(cls, data: Dict) -> "CameraParams":
        """Build camera parameters from a calibration dictionary.

        The dictionary holds ``intrinsics: [fx, fy, cx, cy]`` and optionally
        ``T_BS: {data: [16 values, row-major]}``.
        """
        if "intrinsics" not in data or len(data["intrinsics"]) != 4:
            raise InvalidInput("Calibration must provide intrinsics as [fx, fy, cx, cy]")
        fx, fy, cx, cy = (float(v) for v in data["intrinsics"])
        pose = np.eye(4)
        if "T_BS" in data:
            pose = np.asarray(data["T_BS"]["data"], dtype=np.float64).reshape(4, 4)
        return cls(fx, fy, cx, cy, pose)


def transform_to(pose: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Express body-frame points in the frame of ``pose``.

    Args:
        pose: 4x4 pose of the target frame in the body frame
        points: 3-vector or Nx3 array of points

    Returns:
        Points with the same shape, expressed in the target frame
    """
    R = pose[:3, :3]
    t = pose[:3, 3]
    return (np.asarray(points, dtype=np.float64) - t) @ R


def project(lmk: np.ndarray, extrinsics: np.ndarray, intrinsics: np.ndarray) -> np.ndarray:
    """Project a 3D landmark to pixel coordinates.

    Args:
        lmk: 3D point in the body frame
        extrinsics: 4x4 camera pose in the body frame
        intrinsics: 3x3 intrinsic matrix

    Returns:
        Pixel coordinates [u, v]

    Raises:
        DegenerateProjection: If the point is not in front of the camera
    """
    p_cam = transform_to(extrinsics, lmk)
    if p_cam[2] <= 0:
        raise DegenerateProjection(f"Point {lmk} has non-positive depth {p_cam[2]:.4f}")
    p_img = intrinsics @ (p_cam / p_cam[2])
    return p_img[:2]


def project_points(
    points: np.ndarray,
    extrinsics: np.ndarray,
    intrinsics: np.ndarray
) -> Tuple[np.ndarray, np.ndarray]:
    """Project an Nx3 array of landmarks to pixels.

    Args:
        points: Nx3 points in the body frame
        extrinsics: 4x4 camera pose in the body frame
        intrinsics: 3x3 intrinsic matrix

    Returns:
        Tuple of (Nx2 pixels, N boolean mask of points in front of the camera).
        Pixels of invalid points are NaN.
    """
    p_cam = transform_to(extrinsics, points)
    valid = p_cam[:, 2] > 0

    pixels = np.full((len(p_cam), 2), np.nan)
    if np.any(valid):
        p_norm = p_cam[valid] / p_cam[valid, 2:3]
        pixels[valid] = (p_norm @ intrinsics.T)[:, :2]

    return pixels, valid


def backproject(pixel: np.ndarray, intrinsics: np.ndarray) -> np.ndarray:
    """Back-project a pixel to a unit bearing vector in the camera frame.

    Args:
        pixel: Pixel coordinates [u, v]
        intrinsics: 3x3 intrinsic matrix

    Returns:
        Unit 3-vector

    Raises:
        DegenerateProjection: If the calibrated ray has zero norm
    """
    ray = np.linalg.solve(intrinsics, np.array([pixel[0], pixel[1], 1.0]))
    norm = np.linalg.norm(ray)
    if norm == 0:
        raise DegenerateProjection(f"Pixel {pixel} back-projects to a zero-length ray")
    return ray / norm


def to_bearing(lmk: np.ndarray, extrinsics: np.ndarray) -> Tuple[np.ndarray, float]:
    """Compute the bearing vector and inverse range of a landmark.

    Args:
        lmk: 3D point in the body frame
        extrinsics: 4x4 camera pose in the body frame

    Returns:
        Tuple of (unit bearing vector in the camera frame, inverse range)

    Raises:
        DegenerateProjection: If the landmark coincides with the camera center
    """
    ray = transform_to(extrinsics, lmk)
    norm = np.linalg.norm(ray)
    if norm <= 0:
        raise DegenerateProjection(f"Point {lmk} is at the camera center")
    inverse_depth = 1.0 / norm
    return ray * inverse_depth, inverse_depth
