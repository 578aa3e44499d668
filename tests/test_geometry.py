"""Tests for geometry module.

This module tests the point-in-triangle predicates and barycentric
coordinates on a handful of known triangles.
"""

import sys
import unittest
from pathlib import Path

import numpy as np
import pytest

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from meshopt import geometry
from meshopt.errors import DegenerateTriangle


class TestGeometry(unittest.TestCase):
    """Test planar triangle predicates."""

    def setUp(self):
        """Right triangle with legs of 10 pixels, in both orientations."""
        self.v0 = np.array([0.0, 0.0])
        self.v1 = np.array([10.0, 0.0])
        self.v2 = np.array([0.0, 10.0])

        self.inside = np.array([[2.0, 3.0], [1.0, 1.0], [4.9, 4.9]])
        self.on_boundary = np.array([[0.0, 0.0], [10.0, 0.0], [5.0, 0.0], [0.0, 5.0], [5.0, 5.0]])
        self.outside = np.array([[-1.0, 1.0], [6.0, 6.0], [1.0, -0.5], [20.0, 20.0]])

    def test_sign(self):
        self.assertGreater(geometry.sign(np.array([0.0, 1.0]), self.v0, self.v1), 0)
        self.assertLess(geometry.sign(np.array([0.0, -1.0]), self.v0, self.v1), 0)
        self.assertEqual(geometry.sign(np.array([3.0, 0.0]), self.v0, self.v1), 0)

    def test_point_in_triangle(self):
        for p in self.inside:
            self.assertTrue(geometry.point_in_triangle(p, self.v0, self.v1, self.v2))
        for p in self.outside:
            self.assertFalse(geometry.point_in_triangle(p, self.v0, self.v1, self.v2))

    def test_boundary_is_inside(self):
        for p in self.on_boundary:
            self.assertTrue(geometry.point_in_triangle(p, self.v0, self.v1, self.v2), f"{p}")

    def test_orientation_independent(self):
        for p in np.vstack([self.inside, self.on_boundary]):
            self.assertTrue(geometry.point_in_triangle(p, self.v0, self.v2, self.v1))
        for p in self.outside:
            self.assertFalse(geometry.point_in_triangle(p, self.v0, self.v2, self.v1))

    def test_vectorized_matches_scalar(self):
        rng = np.random.default_rng(42)
        pts = rng.uniform(-5.0, 15.0, size=(500, 2))
        pts = np.vstack([pts, self.on_boundary])

        mask = geometry.points_in_triangle(pts, self.v0, self.v1, self.v2)
        expected = [geometry.point_in_triangle(p, self.v0, self.v1, self.v2) for p in pts]
        np.testing.assert_array_equal(mask, expected)

    def test_vectorized_nan_is_outside(self):
        pts = np.array([[np.nan, np.nan], [1.0, 1.0]])
        mask = geometry.points_in_triangle(pts, self.v0, self.v1, self.v2)
        np.testing.assert_array_equal(mask, [False, True])

    def test_barycentric_vertices(self):
        for k, vertex in enumerate([self.v0, self.v1, self.v2]):
            b0, b1, b2, inside = geometry.barycentric_coordinates(self.v0, self.v1, self.v2, vertex)
            expected = np.zeros(3)
            expected[k] = 1.0
            np.testing.assert_allclose([b0, b1, b2], expected, atol=1e-12)
            self.assertTrue(inside)

    def test_barycentric_reconstructs_point(self):
        for p in self.inside:
            b0, b1, b2, inside = geometry.barycentric_coordinates(self.v0, self.v1, self.v2, p)
            self.assertTrue(inside)
            self.assertAlmostEqual(b0 + b1 + b2, 1.0)
            np.testing.assert_allclose(b0 * self.v0 + b1 * self.v1 + b2 * self.v2, p)

    def test_barycentric_outside(self):
        b0, b1, b2, inside = geometry.barycentric_coordinates(
            self.v0, self.v1, self.v2, np.array([6.0, 6.0])
        )
        self.assertFalse(inside)
        self.assertAlmostEqual(b0 + b1 + b2, 1.0)
        self.assertLess(b0, 0)

    def test_degenerate_triangle(self):
        with pytest.raises(DegenerateTriangle):
            geometry.barycentric_coordinates(
                np.array([0.0, 0.0]), np.array([1.0, 1.0]), np.array([2.0, 2.0]), np.array([0.5, 0.5])
            )


if __name__ == "__main__":
    unittest.main()
