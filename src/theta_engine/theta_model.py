# src/theta_engine/theta_model.py
"""Theta-method wrappers around a Model.

A ThetaModel turns the semi-discrete system

    M dx/dt = F(x)

into the nonlinear equation of one implicit theta step from x_old,

    M (x - x_old) / dt = theta F(x) + (1 - theta) F(x_old),

written as the residual

    G(x) = F(x) + (1 - theta)/theta F(x_old) - M (x - x_old) / (theta dt)

with Jacobian

    dG/dx = J(x) - M / (theta dt).

The wrapper exposes the same interface as the wrapped Model (it is itself a
Model), so the stepper and the step closure can drive either. It owns no
physics state: the state and solution vectors are the wrapped model's, only the
composed residual lives in the wrapper.

Variants:
    - ThetaModel: deterministic time marching.
    - StochasticThetaModel: adds an explicit noise generator for AMS sampling.
    - StochasticProjectedThetaModel: additionally restricts states to a
      low-dimensional basis V (restrict, prolongate, projected noise).
"""

from __future__ import annotations

import math
import warnings
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy.sparse import SparseEfficiencyWarning, issparse

from .config import ThetaConfig, as_config
from .distributed import sum_over_ranks
from .errors import ThetaModelError, raise_subspace_error
from .model import vector_access

if TYPE_CHECKING:
    from collections.abc import Mapping

    from numpy.typing import NDArray

    from .distributed import Communicator
    from .model import FloatArray, JacobianMatrix, Model, VectorMode

_THETA_RANGE_MSG = "theta must lie in (0, 1]; got {theta}"
_DT_RANGE_MSG = "time step must be finite and > 0; got {dt}"
_NO_OLD_STATE_MSG = (
    "ThetaModel has no previous state; call store() or init_step() before "
    "computing the theta residual or Jacobian"
)


def _shift_diagonal(jac: JacobianMatrix, delta: FloatArray) -> None:
    """Add delta to the diagonal of jac in place (dense or sparse)."""
    if issparse(jac):
        with warnings.catch_warnings():
            # Inserting missing diagonal entries into CSR is fine at this size.
            warnings.simplefilter("ignore", SparseEfficiencyWarning)
            jac.setdiag(jac.diagonal() + delta)
        return
    arr = np.asarray(jac)
    arr[np.diag_indices_from(arr)] += delta


class ThetaModel:
    """Model wrapper composing the theta-discretized residual and Jacobian."""

    def __init__(
        self,
        model: Model,
        params: ThetaConfig | Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize ThetaModel.

        Args:
            model: Wrapped physics model (shared, not owned).
            params: Configuration; "theta" and "initial time step size" are used.
        """
        cfg = as_config(params)
        self.model = model
        self.config = cfg

        state = model.get_state("V")
        self._rhs: FloatArray = np.zeros_like(state, dtype=np.float64)
        self._x_old: FloatArray = np.zeros_like(state, dtype=np.float64)
        self._f_old: FloatArray = np.zeros_like(state, dtype=np.float64)
        self._has_old = False

        self._theta = 1.0
        self._dt = cfg.initial_dt
        self.set_theta(cfg.theta)
        self.set_timestep(cfg.initial_dt)

    # ------------------------------------------------------------------
    # Theta / dt
    # ------------------------------------------------------------------

    @property
    def theta(self) -> float:
        """Theta weight."""
        return self._theta

    @property
    def dt(self) -> float:
        """Current step size."""
        return self._dt

    def set_theta(self, theta: float) -> None:
        """Set theta and forward it to the wrapped model.

        Raises:
            ThetaModelError: If theta is outside (0, 1].
        """
        theta_f = float(theta)
        if not (0.0 < theta_f <= 1.0):
            raise ThetaModelError(_THETA_RANGE_MSG.format(theta=theta))
        self._theta = theta_f
        self.model.set_theta(theta_f)

    def set_timestep(self, dt: float) -> None:
        """Set the step size and forward it to the wrapped model.

        Raises:
            ThetaModelError: If dt is not finite and positive.
        """
        dt_f = float(dt)
        if not (math.isfinite(dt_f) and dt_f > 0.0):
            raise ThetaModelError(_DT_RANGE_MSG.format(dt=dt))
        self._dt = dt_f
        self.model.set_timestep(dt_f)

    def _sync(self) -> None:
        self.model.set_theta(self._theta)
        self.model.set_timestep(self._dt)

    def _capture_old(self) -> None:
        """Record x_old and, for theta < 1, F(x_old)."""
        np.copyto(self._x_old, self.model.get_state("V"))
        if self._theta < 1.0:
            self._sync()
            self.model.compute_rhs()
            np.copyto(self._f_old, self.model.get_rhs("V"))
        self._has_old = True

    def _require_old(self) -> None:
        if not self._has_old:
            raise RuntimeError(_NO_OLD_STATE_MSG)

    # ------------------------------------------------------------------
    # Vector access (state and solution are the wrapped model's)
    # ------------------------------------------------------------------

    def get_state(self, mode: VectorMode = "C") -> FloatArray:
        """Return the wrapped model's state."""
        return self.model.get_state(mode)

    def get_solution(self, mode: VectorMode = "C") -> FloatArray:
        """Return the wrapped model's solution increment."""
        return self.model.get_solution(mode)

    def get_rhs(self, mode: VectorMode = "C") -> FloatArray:
        """Return the theta residual G from the last compute_rhs."""
        return vector_access(self._rhs, mode)

    def get_mass_matrix(self) -> FloatArray:
        """Return the wrapped model's mass diagonal."""
        return self.model.get_mass_matrix()

    def get_jacobian(self) -> JacobianMatrix:
        """Return the theta Jacobian from the last compute_jacobian."""
        return self.model.get_jacobian()

    def set_state(self, x: FloatArray) -> None:
        """Copy x into the wrapped model's state."""
        self.model.set_state(x)

    def owned_indices(self) -> NDArray[np.intp]:
        """Global indices of the locally held state entries."""
        owned = getattr(self.model, "owned_indices", None)
        if callable(owned):
            return np.asarray(owned(), dtype=np.intp)
        return np.arange(self._rhs.size, dtype=np.intp)

    # ------------------------------------------------------------------
    # Theta discretization
    # ------------------------------------------------------------------

    def compute_rhs(self) -> None:
        """Compute G(x) at the wrapped model's current state.

        Raises:
            RuntimeError: If no previous state has been recorded.
        """
        self._require_old()
        self._sync()
        self.model.compute_rhs()

        theta = self._theta
        x = self.model.get_state("V")
        mass = self.model.get_mass_matrix()

        np.subtract(x, self._x_old, out=self._rhs)
        self._rhs *= mass
        self._rhs *= -1.0 / (theta * self._dt)
        self._rhs += self.model.get_rhs("V")
        if theta < 1.0:
            self._rhs += ((1.0 - theta) / theta) * self._f_old

    def compute_jacobian(self) -> None:
        """Compute J(x) - M / (theta dt) in the wrapped model's Jacobian.

        Raises:
            RuntimeError: If no previous state has been recorded.
        """
        self._require_old()
        self._sync()
        self.model.compute_jacobian()
        shift = np.asarray(self.model.get_mass_matrix(), dtype=np.float64)
        _shift_diagonal(self.model.get_jacobian(), -shift / (self._theta * self._dt))

    def solve(self, rhs: FloatArray) -> None:
        """Solve with the theta Jacobian into the wrapped model's solution."""
        self.model.solve(rhs)

    # ------------------------------------------------------------------
    # Step lifecycle
    # ------------------------------------------------------------------

    def init_step(self, dt: float) -> None:
        """Start a single step of size dt from the current state."""
        self.set_timestep(dt)
        self.model.init_step(self._dt)
        self._capture_old()

    def store(self) -> None:
        """Snapshot the wrapped model and record x_old / F(x_old)."""
        self.model.store()
        self._capture_old()

    def restore(self) -> None:
        """Restore the wrapped model's snapshot."""
        self.model.restore()

    def pre_process(self) -> None:
        """Forward the pre-step hook."""
        self.model.pre_process()

    def post_process(self) -> None:
        """Forward the post-step hook."""
        self.model.post_process()

    def write_data(self, describe: bool = False) -> str:
        """Forward the diagnostic columns."""
        return self.model.write_data(describe)

    def save_state_to_file(self, path: str) -> None:
        """Forward the snapshot write."""
        self.model.save_state_to_file(path)


class StochasticThetaModel(ThetaModel):
    """ThetaModel with an explicit additive noise term.

    The stochastic system M dx = F(x) dt + sigma P dW is integrated by applying
    the deterministic theta step and then adding

        sigma sqrt(dt) P xi / M,    xi ~ N(0, I),

    explicitly. Rows with zero mass (algebraic unknowns) receive no noise.
    P is the model's noise_pattern() when it provides one, ones otherwise.
    """

    def __init__(
        self,
        model: Model,
        params: ThetaConfig | Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize StochasticThetaModel.

        Args:
            model: Wrapped physics model.
            params: Configuration; additionally uses "noise amplitude".
        """
        super().__init__(model, params)
        self.sigma = self.config.noise_amplitude

    def _noise_pattern(self) -> FloatArray:
        pattern = getattr(self.model, "noise_pattern", None)
        if callable(pattern):
            return np.asarray(pattern(), dtype=np.float64)
        return np.ones_like(self._rhs)

    def noise(self, rng: np.random.Generator, dt: float) -> FloatArray:
        """Draw one explicit noise increment for a step of size dt.

        Args:
            rng: Random generator of the current path.
            dt: Step size.

        Returns:
            Noise increment, shaped like the state.
        """
        xi = rng.standard_normal(self._rhs.size)
        mass = np.asarray(self.model.get_mass_matrix(), dtype=np.float64)
        out = np.zeros_like(self._rhs)
        active = mass != 0.0
        scale = self.sigma * math.sqrt(float(dt))
        out[active] = scale * self._noise_pattern()[active] * xi[active] / mass[active]
        return out


class StochasticProjectedThetaModel(StochasticThetaModel):
    """StochasticThetaModel restricted to the span of a basis V.

    V holds the locally owned rows of an (n_global, k) multivector. Reductions
    V^T x are summed across ranks when a communicator is given.
    """

    def __init__(
        self,
        model: Model,
        params: ThetaConfig | Mapping[str, Any] | None,
        basis: NDArray[np.floating],
        *,
        comm: Communicator | None = None,
    ) -> None:
        """Initialize StochasticProjectedThetaModel.

        Args:
            model: Wrapped physics model.
            params: Configuration.
            basis: Local rows of the subspace basis, shape (n_local, k).
            comm: Communicator for reductions, or None.
        """
        super().__init__(model, params)
        basis_arr = np.asarray(basis, dtype=np.float64)
        n_local = self._rhs.size
        if basis_arr.ndim != 2 or basis_arr.shape[0] != n_local or basis_arr.shape[1] < 1:
            raise_subspace_error(
                name="basis",
                expected=f"({n_local}, k) with k >= 1",
                got=basis_arr.shape,
            )
        self.basis = basis_arr
        self.comm = comm

    @property
    def rank(self) -> int:
        """Dimension of the subspace."""
        return int(self.basis.shape[1])

    def restrict(self, x: FloatArray) -> FloatArray:
        """Coordinates V^T x of x in the subspace."""
        return sum_over_ranks(self.basis.T @ np.asarray(x, dtype=np.float64), self.comm)

    def prolongate(self, coords: FloatArray) -> FloatArray:
        """Local rows of V c."""
        return self.basis @ np.asarray(coords, dtype=np.float64)

    def noise(self, rng: np.random.Generator, dt: float) -> FloatArray:
        """Noise increment projected onto span(V)."""
        return self.prolongate(self.restrict(super().noise(rng, dt)))
