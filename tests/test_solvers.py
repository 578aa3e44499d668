"""Tests for the inverse-depth solvers and the system they consume."""

import sys
import unittest
from pathlib import Path

import gtsam
import numpy as np
import pytest
from scipy import sparse

# Add parent directory to path
sys.path.append(str(Path(__file__).resolve().parent.parent))

from meshopt.association import collect_triangle_datapoints
from meshopt.camera import CameraParams, backproject
from meshopt.config import MeshOptimizationConfig, MeshOptimizerType
from meshopt.errors import InsufficientData, SingularSystem
from meshopt.mesh import Mesh2D
from meshopt.solvers import (
    SOLVERS,
    ConnectedMeshSolver,
    DisconnectedMeshSolver,
    FactorGraphMeshSolver,
    make_solver,
    solve_least_squares_qr,
    solve_sample_ys,
)
from meshopt.system import LinearSystem, build_linear_system

T0_PIXELS = [[1, 1], [2, 1], [1, 2], [3, 3], [4, 1], [1, 4], [5, 2], [2, 5], [6, 1], [1, 6]]
T1_PIXELS = [[9, 9], [8, 6], [6, 8], [9, 4], [4, 9], [7, 7], [9, 8], [8, 9]]


def two_triangle_system(range_t0=5.0, range_t1=5.0, n_t1=len(T1_PIXELS)):
    """Two triangles sharing an edge, samples at a fixed range along their rays."""
    camera = CameraParams(500.0, 500.0, 0.0, 0.0)
    pixels = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0], [10.0, 10.0]])
    mesh_2d = Mesh2D.from_arrays(pixels, [0, 1, 2, 3], np.array([[0, 1, 2], [1, 3, 2]]))

    points = [range_t0 * backproject(np.array(p, dtype=float), camera.K) for p in T0_PIXELS]
    points += [range_t1 * backproject(np.array(p, dtype=float), camera.K) for p in T1_PIXELS[:n_t1]]
    datapoints = collect_triangle_datapoints(np.vstack(points), mesh_2d, camera)
    return build_linear_system(mesh_2d, datapoints, camera), mesh_2d


class TestLeastSquares(unittest.TestCase):
    """Test the column-pivoted QR solve."""

    def test_exact_system(self):
        A = np.array([[2.0, 1.0], [1.0, 3.0]])
        x = np.array([1.0, -2.0])
        np.testing.assert_allclose(solve_least_squares_qr(A, A @ x), x)

    def test_overdetermined_matches_lstsq(self):
        rng = np.random.default_rng(0)
        A = rng.normal(size=(20, 4))
        b = rng.normal(size=20)
        expected, *_ = np.linalg.lstsq(A, b, rcond=None)
        np.testing.assert_allclose(solve_least_squares_qr(A, b), expected, atol=1e-10)

    def test_sparse_input(self):
        A = sparse.csr_matrix(np.array([[1.0, 0.0], [0.0, 2.0], [1.0, 1.0]]))
        x = np.array([3.0, 0.5])
        np.testing.assert_allclose(solve_least_squares_qr(A, A @ x), x)

    def test_rank_deficient(self):
        A = np.array([[1.0, 2.0], [2.0, 4.0], [3.0, 6.0]])
        with pytest.raises(SingularSystem):
            solve_least_squares_qr(A, np.ones(3))

    def test_underdetermined(self):
        with pytest.raises(SingularSystem):
            solve_least_squares_qr(np.ones((1, 3)), np.ones(1))
        with pytest.raises(SingularSystem):
            solve_least_squares_qr(np.zeros((3, 0)), np.ones(3))


class TestLinearSystem(unittest.TestCase):
    """Test the per-triangle constraints."""

    def setUp(self):
        self.system, self.mesh_2d = two_triangle_system()

    def test_triangles_and_constraints(self):
        self.assertEqual(len(self.system.triangles), 2)
        self.assertEqual(len(self.system.constraints), len(T0_PIXELS) + len(T1_PIXELS))
        self.assertEqual(self.system.n_datapoints, len(T0_PIXELS) + len(T1_PIXELS))
        self.assertEqual(self.system.degenerate_triangles, [])
        self.assertEqual(self.system.n_vertices, 4)

    def test_constraint_values(self):
        for constraint in self.system.constraints:
            self.assertAlmostEqual(constraint.weights.sum(), 1.0)
            self.assertTrue(np.all(constraint.weights >= -1e-9))
            self.assertAlmostEqual(constraint.inv_depth, 0.2)

    def test_bearing_columns(self):
        triangle = self.system.triangles[1]
        self.assertEqual(triangle.vtx_ids, (1, 3, 2))
        self.assertEqual(triangle.bearings.shape, (3, 3))
        np.testing.assert_allclose(triangle.bearings[:, 1], self.system.bearing_vectors[3])
        np.testing.assert_allclose(np.linalg.norm(triangle.bearings, axis=0), np.ones(3))

    def test_sparse_triangle_is_degenerate(self):
        system, _ = two_triangle_system(n_t1=2)
        self.assertEqual(system.degenerate_triangles, [1])
        self.assertEqual([t.tri_idx for t in system.triangles], [0])

    def test_sample_ys_reproduce_samples(self):
        triangle = self.system.triangles[0]
        Y, n_skipped = solve_sample_ys(triangle)
        self.assertEqual(n_skipped, 0)
        self.assertEqual(Y.shape, (len(T0_PIXELS), 3))
        np.testing.assert_allclose(Y @ triangle.bearings.T, triangle.datapoints, atol=1e-9)


class TestSolvers(unittest.TestCase):
    """Test the three solver strategies."""

    def setUp(self):
        self.system, self.mesh_2d = two_triangle_system()

    def test_registry(self):
        self.assertEqual(set(SOLVERS), set(MeshOptimizerType))
        for solver_type, solver_class in SOLVERS.items():
            solver = make_solver(MeshOptimizationConfig(solver_type=solver_type))
            self.assertIsInstance(solver, solver_class)
            self.assertEqual(solver.solver_type, solver_type)

    def test_empty_system(self):
        system = LinearSystem(triangles=[], bearing_vectors={}, vertex_pixels={}, n_vertices=3)
        for solver_class in SOLVERS.values():
            with pytest.raises(InsufficientData):
                solver_class().solve(system)

    def test_disconnected(self):
        result = DisconnectedMeshSolver().solve(self.system)
        self.assertEqual(sorted(result.triangle_inverse_depths), [0, 1])
        self.assertEqual(result.inverse_depths, {})
        for psi in result.triangle_inverse_depths.values():
            np.testing.assert_allclose(psi, 0.2, rtol=1e-3)

    def test_connected(self):
        result = ConnectedMeshSolver().solve(self.system)
        self.assertEqual(sorted(result.inverse_depths), [0, 1, 2, 3])
        self.assertIsNone(result.information)
        np.testing.assert_allclose(list(result.inverse_depths.values()), 0.2, rtol=1e-3)

    def test_connected_y_matrix(self):
        Y, n_skipped = ConnectedMeshSolver().build_y_matrix(self.system)
        self.assertEqual(n_skipped, 0)
        self.assertEqual(Y.shape, (len(T0_PIXELS) + len(T1_PIXELS), 4))
        # Vertex 3 only belongs to the second triangle
        self.assertEqual(Y[:len(T0_PIXELS), 3].nnz, 0)

    def test_connected_skips_unobserved_vertex(self):
        system, _ = two_triangle_system(n_t1=2)
        result = ConnectedMeshSolver().solve(system)
        self.assertEqual(sorted(result.inverse_depths), [0, 1, 2])

    def test_factor_graph(self):
        result = FactorGraphMeshSolver().solve(self.system)
        self.assertEqual(sorted(result.inverse_depths), [0, 1, 2, 3])
        np.testing.assert_allclose(list(result.inverse_depths.values()), 0.2, rtol=1e-6)
        self.assertEqual(sorted(result.information), [0, 1, 2, 3])
        self.assertTrue(all(h > 0 for h in result.information.values()))

    def test_factor_graph_rows(self):
        solver = FactorGraphMeshSolver()
        graph = solver.build_factor_graph(self.system, self.system.adjacency)
        n_edges = 5
        self.assertEqual(graph.size(), len(self.system.constraints) + n_edges)

        ordering = gtsam.Ordering()
        for vtx_id in range(4):
            ordering.push_back(vtx_id)
        A, b = graph.jacobian(ordering)
        self.assertEqual(A.shape, (len(self.system.constraints) + n_edges, 4))
        np.testing.assert_allclose(b[-n_edges:], 0.0)
        # Whitened springs are +k/sigma and -k/sigma
        spring_rows = A[-n_edges:]
        np.testing.assert_allclose(spring_rows.sum(axis=1), 0.0, atol=1e-12)
        np.testing.assert_allclose(np.abs(spring_rows).max(axis=1), 10.0)

    def test_factor_graph_restricted_keys(self):
        system, _ = two_triangle_system()
        graph = FactorGraphMeshSolver().build_factor_graph(system, system.adjacency, np.array([0, 1, 2]))
        # Springs touching vertex 3 are left out
        self.assertEqual(graph.size(), len(system.constraints) + 3)

    def test_factor_graph_spring_fills_unobserved_vertex(self):
        system, _ = two_triangle_system(n_t1=2)
        result = FactorGraphMeshSolver().solve(system)
        self.assertEqual(sorted(result.inverse_depths), [0, 1, 2, 3])
        self.assertAlmostEqual(result.inverse_depths[3], 0.2, places=6)

    def test_stronger_springs_reduce_spread(self):
        system, _ = two_triangle_system(range_t0=5.0, range_t1=6.0)
        stiff = FactorGraphMeshSolver(
            MeshOptimizationConfig(solver_type="gtsam_mesh", spring_sigma=0.01)
        ).solve(system)
        loose = FactorGraphMeshSolver(
            MeshOptimizationConfig(solver_type="gtsam_mesh", spring_sigma=100.0)
        ).solve(system)

        stiff_spread = np.ptp(list(stiff.inverse_depths.values()))
        loose_spread = np.ptp(list(loose.inverse_depths.values()))
        self.assertLess(stiff_spread, loose_spread)

    def test_springs_reduce_spread_against_connected(self):
        system, _ = two_triangle_system(range_t0=5.0, range_t1=6.0)
        springs = FactorGraphMeshSolver().solve(system)
        no_springs = ConnectedMeshSolver().solve(system)

        self.assertEqual(sorted(springs.inverse_depths), sorted(no_springs.inverse_depths))
        springs_spread = np.ptp(list(springs.inverse_depths.values()))
        no_springs_spread = np.ptp(list(no_springs.inverse_depths.values()))
        self.assertLess(springs_spread, no_springs_spread)

    def test_observable_vertices(self):
        camera = CameraParams(500.0, 500.0, 0.0, 0.0)
        pixels = np.array([
            [0.0, 0.0], [10.0, 0.0], [0.0, 10.0],
            [20.0, 0.0], [30.0, 0.0], [20.0, 10.0],
        ])
        mesh_2d = Mesh2D.from_arrays(pixels, list(range(6)), np.array([[0, 1, 2], [3, 4, 5]]))
        points = [5.0 * backproject(np.array(p, dtype=float), camera.K) for p in T0_PIXELS]
        datapoints = collect_triangle_datapoints(np.vstack(points), mesh_2d, camera)
        system = build_linear_system(mesh_2d, datapoints, camera)

        solver = FactorGraphMeshSolver()
        np.testing.assert_array_equal(solver.observable_vertices(system, system.adjacency), [0, 1, 2])
        result = solver.solve(system)
        self.assertEqual(sorted(result.inverse_depths), [0, 1, 2])


if __name__ == "__main__":
    unittest.main()
