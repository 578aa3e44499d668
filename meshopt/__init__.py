"""Mesh optimization from sparse depth.

Reconstructs a 3D triangle mesh from a 2D mesh of tracked landmarks and a
noisy point cloud (depth map, RGB-D or lidar) observed by a calibrated camera,
by solving for the inverse depth of every mesh vertex.
"""

from __future__ import annotations

__version__ = "0.1.0"
