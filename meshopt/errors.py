"""Exception types raised by the mesh optimization engine.

Fatal errors (InvalidInput, InsufficientData and a SingularSystem raised by the
terminal global solve) propagate to the caller. The remaining ones describe a
single sample, vertex, triangle or polygon and are caught and logged where they
occur so that a partial mesh can still be reconstructed.
"""

from __future__ import annotations

from typing import Optional


class MeshOptimizationError(Exception):
    """Base class for all mesh optimization errors."""


class InvalidInput(MeshOptimizationError, ValueError):
    """Malformed mesh or point cloud."""


class InsufficientData(MeshOptimizationError, ValueError):
    """Too few point cloud samples fell inside the mesh."""


class DegenerateTriangle(MeshOptimizationError):
    """A triangle has zero area or not enough associated samples to be solved."""

    def __init__(self, message: str, tri_idx: Optional[int] = None):
        super().__init__(message)
        self.tri_idx = tri_idx


class DegenerateProjection(MeshOptimizationError):
    """A point cannot be projected or has zero range."""


class DegenerateDepth(MeshOptimizationError):
    """A solved inverse depth is too close to zero to be inverted."""


class SingularSystem(MeshOptimizationError):
    """A linear system is singular or rank deficient."""


class UnreconstructedPolygon(MeshOptimizationError):
    """A polygon whose vertices were not all solved."""

    def __init__(self, polygon_idx: int):
        super().__init__(f"Polygon {polygon_idx} could not be reconstructed")
        self.polygon_idx = polygon_idx
