"""Planar triangle geometry.

This module implements the half-plane tests used to assign projected pixels to
mesh triangles, and barycentric coordinates of a pixel with respect to a
triangle.
"""

from __future__ import annotations

import logging
from typing import Tuple

import numpy as np

from meshopt.errors import DegenerateTriangle

logger = logging.getLogger(__name__)

# Slack on barycentric weights before a pixel is reported as outside.
BARYCENTRIC_TOLERANCE = 1e-6


def sign(p: np.ndarray, a: np.ndarray, b: np.ndarray) -> float:
    """Twice the signed area of the triangle (p, a, b).

    The sign tells on which side of the line a-b the point p lies.
    """
    return (p[0] - b[0]) * (a[1] - b[1]) - (a[0] - b[0]) * (p[1] - b[1])


def point_in_triangle(
    p: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray
) -> bool:
    """Check whether a pixel lies inside a triangle.

    Points on an edge or a vertex count as inside.

    Args:
        p: Query pixel [x, y]
        v0: First triangle vertex
        v1: Second triangle vertex
        v2: Third triangle vertex

    Returns:
        True if p is inside or on the boundary of the triangle
    """
    d1 = sign(p, v0, v1)
    d2 = sign(p, v1, v2)
    d3 = sign(p, v2, v0)

    has_neg = (d1 < 0) or (d2 < 0) or (d3 < 0)
    has_pos = (d1 > 0) or (d2 > 0) or (d3 > 0)

    return not (has_neg and has_pos)


def points_in_triangle(
    pts: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray
) -> np.ndarray:
    """Vectorized point_in_triangle over an Nx2 array of pixels.

    Returns:
        Boolean mask of length N. NaN pixels are never inside.
    """
    pts = np.asarray(pts, dtype=np.float64)
    x, y = pts[:, 0], pts[:, 1]

    d1 = (x - v1[0]) * (v0[1] - v1[1]) - (v0[0] - v1[0]) * (y - v1[1])
    d2 = (x - v2[0]) * (v1[1] - v2[1]) - (v1[0] - v2[0]) * (y - v2[1])
    d3 = (x - v0[0]) * (v2[1] - v0[1]) - (v2[0] - v0[0]) * (y - v0[1])

    has_neg = (d1 < 0) | (d2 < 0) | (d3 < 0)
    has_pos = (d1 > 0) | (d2 > 0) | (d3 > 0)
    finite = np.isfinite(x) & np.isfinite(y)

    return finite & ~(has_neg & has_pos)


def barycentric_coordinates(
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    p: np.ndarray
) -> Tuple[float, float, float, bool]:
    """Compute barycentric coordinates of a pixel in a triangle.

    Weights are returned even when the pixel is outside the triangle, in
    which case some of them are negative.

    Args:
        v0: First triangle vertex
        v1: Second triangle vertex
        v2: Third triangle vertex
        p: Query pixel

    Returns:
        Tuple of (b0, b1, b2, inside) with b0 + b1 + b2 = 1

    Raises:
        DegenerateTriangle: If the triangle has zero area
    """
    e1 = np.asarray(v1, dtype=np.float64) - v0
    e2 = np.asarray(v2, dtype=np.float64) - v0
    ep = np.asarray(p, dtype=np.float64) - v0

    area = e1[0] * e2[1] - e1[1] * e2[0]
    if abs(area) < np.finfo(np.float64).eps:
        raise DegenerateTriangle(f"Triangle ({v0}, {v1}, {v2}) has zero area")

    b1 = (ep[0] * e2[1] - ep[1] * e2[0]) / area
    b2 = (e1[0] * ep[1] - e1[1] * ep[0]) / area
    b0 = 1.0 - b1 - b2

    inside = bool(
        min(b0, b1, b2) >= -BARYCENTRIC_TOLERANCE
        and max(b0, b1, b2) <= 1.0 + BARYCENTRIC_TOLERANCE
    )
    return b0, b1, b2, inside
