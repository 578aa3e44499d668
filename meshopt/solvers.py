"""Inverse-depth solvers.

This module implements the three ways of turning triangle constraints into
vertex inverse depths:

- DisconnectedMeshSolver solves every triangle on its own, so shared
  vertices get one estimate per triangle.
- ConnectedMeshSolver stacks all samples into one sparse system with a single
  unknown per vertex.
- FactorGraphMeshSolver adds smoothness springs along mesh edges to the
  barycentric inverse-depth factors, solves them as a gtsam Gaussian factor
  graph and also returns the diagonal of the information matrix.

The direct solvers rely on the plane-through-vertices parameterization: for a
sample p with p = Y_1 b_1 + Y_2 b_2 + Y_3 b_3 along the corner bearings b_k,
the inverse depths psi of the corners satisfy Y . psi = 1.
"""

from __future__ import annotations

import abc
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Type, Union

import gtsam
import numpy as np
from scipy import linalg, sparse
from scipy.sparse import csgraph

from meshopt.config import MeshOptimizationConfig, MeshOptimizerType
from meshopt.errors import InsufficientData, SingularSystem
from meshopt.system import LinearSystem, TriangleSystem

logger = logging.getLogger(__name__)


@dataclass
class SolverResult:
    """Output of a mesh solver.

    Attributes:
        inverse_depths: Vertex id to solved inverse depth (connected solvers)
        information: Vertex id to Hessian diagonal entry (factor graph only)
        triangle_inverse_depths: Triangle index to the inverse depths of its
            three corners (disconnected solver only)
        n_skipped_samples: Samples whose local 3x3 system was singular
        singular_triangles: Triangles whose local least squares was singular
    """

    inverse_depths: Dict[int, float] = field(default_factory=dict)
    information: Optional[Dict[int, float]] = None
    triangle_inverse_depths: Dict[int, np.ndarray] = field(default_factory=dict)
    n_skipped_samples: int = 0
    singular_triangles: List[int] = field(default_factory=list)


def solve_least_squares_qr(
    A: Union[np.ndarray, sparse.spmatrix],
    b: np.ndarray,
    rank_tolerance: float = 1e-9
) -> np.ndarray:
    """Solve min ||A x - b|| with a column-pivoted QR factorization.

    Args:
        A: MxN system matrix with M >= N, dense or sparse
        b: Right-hand side of length M
        rank_tolerance: Columns whose R diagonal falls below this fraction of
            the largest one are treated as linearly dependent

    Returns:
        Solution vector of length N

    Raises:
        SingularSystem: If A is empty, underdetermined or rank deficient
    """
    if sparse.issparse(A):
        A = A.toarray()
    A = np.asarray(A, dtype=np.float64)
    m, n = A.shape
    if n == 0 or m < n:
        raise SingularSystem(f"Cannot solve a {m}x{n} least squares system")

    Q, R, P = linalg.qr(A, mode="economic", pivoting=True)
    diag = np.abs(np.diag(R))
    if diag[0] == 0 or np.any(diag < rank_tolerance * diag[0]):
        rank = int(np.sum(diag >= rank_tolerance * diag[0])) if diag[0] > 0 else 0
        raise SingularSystem(f"Rank deficient {m}x{n} system (rank {rank})")

    z = linalg.solve_triangular(R, Q.T @ b)
    x = np.empty(n)
    x[P] = z

    logger.debug(
        f"QR solve: shape={A.shape}, condition~{diag[0] / diag[-1]:.2e}"
    )
    return x


def solve_sample_ys(triangle: TriangleSystem, rank_tolerance: float = 1e-9) -> Tuple[np.ndarray, int]:
    """Express every sample of a triangle in the basis of its corner bearings.

    Solves [b_0 b_1 b_2] . y = sample for each sample.

    Returns:
        Tuple of (Nx3 array of y rows for the solvable samples, number of skipped samples)
    """
    rows = []
    n_skipped = 0
    for datapoint in triangle.datapoints:
        try:
            y = solve_least_squares_qr(triangle.bearings, datapoint, rank_tolerance)
        except SingularSystem as e:
            logger.warning(f"Skipping sample {datapoint} in triangle {triangle.tri_idx}: {e}")
            n_skipped += 1
            continue
        rows.append(y)

    if not rows:
        return np.zeros((0, 3)), n_skipped
    return np.vstack(rows), n_skipped


class MeshSolver(abc.ABC):
    """Turns a LinearSystem into vertex inverse depths."""

    solver_type: MeshOptimizerType
    # Whether vertices shared by triangles receive a single estimate
    connected: bool = True

    def __init__(self, config: Optional[MeshOptimizationConfig] = None):
        self.config = config or MeshOptimizationConfig(solver_type=self.solver_type)

    def solve(self, system: LinearSystem) -> SolverResult:
        """Solve the system, timing and logging the run."""
        if not system.triangles:
            raise InsufficientData("No triangle has enough datapoints to be solved")

        start_time = time.perf_counter()
        result = self._solve(system)
        elapsed_time = time.perf_counter() - start_time

        n_solved = len(result.inverse_depths) or 3 * len(result.triangle_inverse_depths)
        logger.info(
            f"{type(self).__name__}: {n_solved} vertex estimates "
            f"(elapsed time: {elapsed_time:.3f}s)"
        )
        return result

    @abc.abstractmethod
    def _solve(self, system: LinearSystem) -> SolverResult:
        """Solver specific implementation."""


class DisconnectedMeshSolver(MeshSolver):
    """Solve each triangle independently of its neighbours."""

    solver_type = MeshOptimizerType.DISCONNECTED_MESH
    connected = False

    def _solve(self, system: LinearSystem) -> SolverResult:
        result = SolverResult()
        tol = self.config.rank_tolerance

        for triangle in system.triangles:
            Y, n_skipped = solve_sample_ys(triangle, tol)
            result.n_skipped_samples += n_skipped
            try:
                psi = solve_least_squares_qr(Y, np.ones(len(Y)), tol)
            except SingularSystem as e:
                logger.warning(f"Skipping triangle {triangle.tri_idx}: {e}")
                result.singular_triangles.append(triangle.tri_idx)
                continue
            result.triangle_inverse_depths[triangle.tri_idx] = psi

        if not result.triangle_inverse_depths:
            raise SingularSystem(
                f"All {len(system.triangles)} triangles have singular local systems"
            )

        return result


class ConnectedMeshSolver(MeshSolver):
    """Solve one global system with one inverse depth per vertex."""

    solver_type = MeshOptimizerType.CONNECTED_MESH

    def build_y_matrix(self, system: LinearSystem) -> Tuple[sparse.csr_matrix, int]:
        """Stack every sample's y row into a (samples x vertices) sparse matrix.

        Returns:
            Tuple of (sparse Y matrix, number of skipped samples)
        """
        rows, cols, data = [], [], []
        n_rows = 0
        n_skipped = 0
        for triangle in system.triangles:
            Y, skipped = solve_sample_ys(triangle, self.config.rank_tolerance)
            n_skipped += skipped
            for y in Y:
                rows.extend([n_rows] * 3)
                cols.extend(triangle.vtx_ids)
                data.extend(y)
                n_rows += 1

        Y_global = sparse.coo_matrix(
            (data, (rows, cols)), shape=(n_rows, system.n_vertices)
        ).tocsr()
        return Y_global, n_skipped

    def _solve(self, system: LinearSystem) -> SolverResult:
        Y, n_skipped = self.build_y_matrix(system)
        Y.eliminate_zeros()

        # Vertices without samples have empty columns and stay unsolved
        active = np.flatnonzero(Y.getnnz(axis=0) > 0)
        logger.debug(
            f"Global Y matrix: shape={Y.shape}, nnz={Y.nnz}, "
            f"{len(active)}/{system.n_vertices} vertices observed"
        )

        psi = solve_least_squares_qr(Y[:, active], np.ones(Y.shape[0]), self.config.rank_tolerance)

        return SolverResult(
            inverse_depths={int(v): float(p) for v, p in zip(active, psi)},
            n_skipped_samples=n_skipped
        )


class FactorGraphMeshSolver(MeshSolver):
    """Joint estimate with barycentric data factors and edge springs.

    The factors form a linear gtsam.GaussianFactorGraph keyed by vertex id.
    Only vertices connected to at least one data factor through the mesh are
    added to the graph.
    """

    solver_type = MeshOptimizerType.GTSAM_MESH

    def build_factor_graph(
        self,
        system: LinearSystem,
        adjacency: np.ndarray,
        active: Optional[np.ndarray] = None
    ) -> gtsam.GaussianFactorGraph:
        """Build the Gaussian factor graph of the mesh.

        Args:
            system: Barycentric constraints
            adjacency: Symmetric vertex adjacency matrix of the 2D mesh
            active: Vertex ids allowed in the graph, all vertices if None

        Returns:
            Graph with one data factor per constraint, then one spring per edge
        """
        graph = gtsam.GaussianFactorGraph()
        data_noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([self.config.data_sigma]))
        spring_noise = gtsam.noiseModel.Diagonal.Sigmas(np.array([self.config.spring_sigma]))
        keys = set(range(system.n_vertices)) if active is None else {int(v) for v in active}

        for constraint in system.constraints:
            i1, i2, i3 = (int(v) for v in constraint.vtx_ids)
            w1, w2, w3 = constraint.weights
            graph.push_back(gtsam.JacobianFactor(
                i1, np.array([[w1]]),
                i2, np.array([[w2]]),
                i3, np.array([[w3]]),
                np.array([constraint.inv_depth]),
                data_noise
            ))
        n_data_factors = graph.size()

        # Lower triangle only, one spring per edge
        k = self.config.spring_constant
        for i, j in zip(*np.nonzero(np.tril(adjacency, k=-1))):
            if int(i) not in keys:
                continue
            graph.push_back(gtsam.JacobianFactor(
                int(i), np.array([[k]]),
                int(j), np.array([[-k]]),
                np.array([0.0]),
                spring_noise
            ))

        logger.debug(
            f"Factor graph: {n_data_factors} data factors, "
            f"{graph.size() - n_data_factors} spring factors"
        )
        return graph

    def observable_vertices(self, system: LinearSystem, adjacency: np.ndarray) -> np.ndarray:
        """Vertices in a mesh component that holds at least one data factor."""
        _, labels = csgraph.connected_components(sparse.csr_matrix(adjacency), directed=False)
        observed = {vtx_id for c in system.constraints for vtx_id in c.vtx_ids}
        observed_labels = {labels[v] for v in observed}
        return np.flatnonzero(np.isin(labels, list(observed_labels)))

    def _solve(self, system: LinearSystem) -> SolverResult:
        adjacency = system.adjacency
        if adjacency is None:
            adjacency = np.zeros((system.n_vertices, system.n_vertices), dtype=np.uint8)

        active = self.observable_vertices(system, adjacency)
        graph = self.build_factor_graph(system, adjacency, active)

        ordering = gtsam.Ordering()
        for vtx_id in active:
            ordering.push_back(int(vtx_id))

        try:
            values = graph.optimize(ordering)
            hessian, _ = graph.hessian(ordering)
        except RuntimeError as e:
            raise SingularSystem(f"Factor graph elimination failed: {e}") from e

        psi = np.array([values.at(int(vtx_id))[0] for vtx_id in active])
        if not np.all(np.isfinite(psi)):
            raise SingularSystem("Factor graph solution is not finite")

        # One scalar variable per key, so H follows the ordering
        hessian_diagonal = np.diag(hessian)

        return SolverResult(
            inverse_depths={int(v): float(p) for v, p in zip(active, psi)},
            information={int(v): float(h) for v, h in zip(active, hessian_diagonal)}
        )


SOLVERS: Dict[MeshOptimizerType, Type[MeshSolver]] = {
    MeshOptimizerType.DISCONNECTED_MESH: DisconnectedMeshSolver,
    MeshOptimizerType.CONNECTED_MESH: ConnectedMeshSolver,
    MeshOptimizerType.GTSAM_MESH: FactorGraphMeshSolver,
}


def make_solver(config: MeshOptimizationConfig) -> MeshSolver:
    """Instantiate the solver selected in the configuration."""
    return SOLVERS[config.solver_type](config)
