# src/theta_engine/array_model.py
"""In-memory reference model over NumPy/SciPy arrays.

ArrayModel implements the :class:`theta_engine.model.Model` interface for a
system

    M dx/dt = F(x)

given as plain callables F(x) and J(x) = dF/dx plus a diagonal mass matrix M.
It is the model used by the test-suite and the examples, and a template for
wrapping a real physics code.

Linear solves follow the usual dense/sparse dispatch:
    - dense Jacobians are LU-factorized with scipy.linalg.lu_factor,
    - sparse Jacobians are converted to CSC and factorized with
      scipy.sparse.linalg.factorized.

The factorization is built lazily on the first solve after compute_jacobian,
so callers (e.g. ThetaModel) may modify get_jacobian() in place in between.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, cast

import h5py
import numpy as np
from numpy.typing import NDArray
from scipy.linalg import lu_factor, lu_solve
from scipy.sparse import csr_matrix, issparse
from scipy.sparse.linalg import factorized as sparse_factorized

from .model import vector_access

if TYPE_CHECKING:
    from .model import JacobianMatrix, VectorMode

FloatArray = NDArray[np.floating]

_STATE_1D_ERROR = "initial state must be a 1D array; got shape {shape}"
_STATE_SHAPE_ERROR = "state shape {actual} does not match expected {expected}"
_MASS_SHAPE_ERROR = "mass diagonal shape {actual} does not match expected {expected}"
_RHS_SHAPE_ERROR = "rhs shape {actual} does not match expected {expected}"
_JAC_SHAPE_ERROR = "Jacobian shape {actual} does not match expected {expected}"
_NO_JACOBIAN_ERROR = "solve called before compute_jacobian"
_NO_SNAPSHOT_ERROR = "restore called before store"

_FIELDWIDTH = 14
_PRECISION = 5

RHSFunction = Callable[[FloatArray], FloatArray]
JacobianFunction = Callable[[FloatArray], object]


@dataclass(slots=True)
class ArrayModelOptions:
    """Optional configuration for ArrayModel.

    Attributes:
        mass: Diagonal of the mass matrix; ones if None. Zero entries mark
            algebraic (non-evolving) unknowns.
        noise_pattern: Per-unknown noise amplitude used by stochastic theta
            models; ones if None.
        name: Model name written to snapshots.
    """

    mass: NDArray[np.floating] | None = None
    noise_pattern: NDArray[np.floating] | None = None
    name: str = "array"


class ArrayModel:
    """Dense or sparse model defined by F(x), J(x) and a diagonal mass matrix."""

    def __init__(
        self,
        rhs_func: RHSFunction,
        jacobian_func: JacobianFunction,
        x0: NDArray[np.floating],
        *,
        options: ArrayModelOptions | None = None,
    ) -> None:
        """Initialize ArrayModel.

        Args:
            rhs_func: Right-hand side F(x), returning an array shaped like x.
            jacobian_func: Jacobian J(x), dense ndarray or SciPy sparse matrix.
            x0: Initial state, 1D.
            options: Optional ArrayModelOptions.

        Raises:
            ValueError: If x0 is not 1D or the mass/noise arrays mismatch.
        """
        opts = options or ArrayModelOptions()

        state = np.array(x0, dtype=np.float64, copy=True)
        if state.ndim != 1:
            raise ValueError(_STATE_1D_ERROR.format(shape=state.shape))

        self.name = opts.name
        self.n = int(state.size)
        self._rhs_func = rhs_func
        self._jacobian_func = jacobian_func

        self._state = state
        self._rhs = np.zeros_like(state)
        self._sol = np.zeros_like(state)
        self._stored: FloatArray | None = None

        self._mass = self._vector_option(opts.mass, _MASS_SHAPE_ERROR)
        self._noise_pattern = self._vector_option(opts.noise_pattern, _MASS_SHAPE_ERROR)

        self._jac: JacobianMatrix | None = None
        self._solver: Callable[[FloatArray], FloatArray] | None = None

        self.theta = 1.0
        self.dt = 0.0
        self.n_pre = 0
        self.n_post = 0
        self.n_rhs = 0
        self.n_jac = 0

    def _vector_option(
        self,
        values: NDArray[np.floating] | None,
        msg: str,
    ) -> FloatArray:
        if values is None:
            return np.ones(self.n, dtype=np.float64)
        arr = np.array(values, dtype=np.float64, copy=True)
        if arr.shape != (self.n,):
            raise ValueError(msg.format(actual=arr.shape, expected=(self.n,)))
        return arr

    # ------------------------------------------------------------------
    # Vector access
    # ------------------------------------------------------------------

    def get_state(self, mode: VectorMode = "C") -> FloatArray:
        """Return the state vector."""
        return vector_access(self._state, mode)

    def get_solution(self, mode: VectorMode = "C") -> FloatArray:
        """Return the solution increment of the last solve."""
        return vector_access(self._sol, mode)

    def get_rhs(self, mode: VectorMode = "C") -> FloatArray:
        """Return the right-hand side at the last compute_rhs."""
        return vector_access(self._rhs, mode)

    def get_mass_matrix(self) -> FloatArray:
        """Return the mass-matrix diagonal."""
        return self._mass

    def get_jacobian(self) -> JacobianMatrix:
        """Return the Jacobian assembled by the last compute_jacobian.

        Raises:
            RuntimeError: If no Jacobian has been computed yet.
        """
        if self._jac is None:
            raise RuntimeError(_NO_JACOBIAN_ERROR)
        return self._jac

    def noise_pattern(self) -> FloatArray:
        """Per-unknown noise amplitude."""
        return self._noise_pattern

    def owned_indices(self) -> NDArray[np.intp]:
        """Global indices of the state entries held by this process."""
        return np.arange(self.n, dtype=np.intp)

    def set_state(self, x: NDArray[np.floating]) -> None:
        """Copy x into the state vector.

        Raises:
            ValueError: If x has the wrong shape.
        """
        x_arr = np.asarray(x, dtype=np.float64)
        if x_arr.shape != self._state.shape:
            raise ValueError(
                _STATE_SHAPE_ERROR.format(actual=x_arr.shape, expected=self._state.shape)
            )
        np.copyto(self._state, x_arr)

    # ------------------------------------------------------------------
    # Physics
    # ------------------------------------------------------------------

    def compute_rhs(self) -> None:
        """Evaluate F at the current state into the rhs vector.

        Raises:
            ValueError: If F returns an array with an unexpected shape.
        """
        f = np.asarray(self._rhs_func(self._state), dtype=np.float64)
        if f.shape != self._rhs.shape:
            raise ValueError(
                _RHS_SHAPE_ERROR.format(actual=f.shape, expected=self._rhs.shape)
            )
        np.copyto(self._rhs, f)
        self.n_rhs += 1

    def compute_jacobian(self) -> None:
        """Assemble J at the current state; drops any cached factorization.

        Raises:
            ValueError: If J is not (n, n).
        """
        jac = self._jacobian_func(self._state)
        if issparse(jac):
            owned: JacobianMatrix = csr_matrix(jac, dtype=np.float64, copy=True)
        else:
            owned = np.array(jac, dtype=np.float64, copy=True)
        if owned.shape != (self.n, self.n):
            raise ValueError(
                _JAC_SHAPE_ERROR.format(actual=owned.shape, expected=(self.n, self.n))
            )
        self._jac = owned
        self._solver = None
        self.n_jac += 1

    def _build_solver(self) -> Callable[[FloatArray], FloatArray]:
        jac = self.get_jacobian()
        if issparse(jac):
            solve_sparse = sparse_factorized(cast("csr_matrix", jac).tocsc())

            def sparse_solver(b: FloatArray) -> FloatArray:
                return np.asarray(solve_sparse(b), dtype=np.float64)

            return sparse_solver

        lu, piv = lu_factor(np.asarray(jac))

        def dense_solver(b: FloatArray) -> FloatArray:
            return np.asarray(lu_solve((lu, piv), b), dtype=np.float64)

        return dense_solver

    def solve(self, rhs: NDArray[np.floating]) -> None:
        """Solve J dx = rhs into the solution vector."""
        if self._solver is None:
            self._solver = self._build_solver()
        np.copyto(self._sol, self._solver(np.asarray(rhs, dtype=np.float64)))

    # ------------------------------------------------------------------
    # Time stepping hooks
    # ------------------------------------------------------------------

    def set_theta(self, theta: float) -> None:
        """Record the theta weight."""
        self.theta = float(theta)

    def set_timestep(self, dt: float) -> None:
        """Record the step size."""
        self.dt = float(dt)

    def init_step(self, dt: float) -> None:
        """Record the step size of an upcoming single step."""
        self.set_timestep(dt)

    def store(self) -> None:
        """Snapshot the state."""
        self._stored = self._state.copy()

    def restore(self) -> None:
        """Copy the last snapshot back into the state.

        Raises:
            RuntimeError: If store was never called.
        """
        if self._stored is None:
            raise RuntimeError(_NO_SNAPSHOT_ERROR)
        np.copyto(self._state, self._stored)

    def pre_process(self) -> None:
        """Count attempted steps."""
        self.n_pre += 1

    def post_process(self) -> None:
        """Count accepted steps."""
        self.n_post += 1

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write_data(self, describe: bool = False) -> str:
        """Return the |F| diagnostic column, or its header."""
        if describe:
            return f"{'|F|':>{_FIELDWIDTH}}"
        return f"{float(np.linalg.norm(self._rhs)):>{_FIELDWIDTH}.{_PRECISION}e}"

    def save_state_to_file(self, path: str) -> None:
        """Write the state and stepping parameters to an HDF5 file."""
        with h5py.File(path, "w") as handle:
            handle.create_dataset("State", data=self._state)
            handle.attrs["model"] = self.name
            handle.attrs["theta"] = self.theta
            handle.attrs["dt"] = self.dt
