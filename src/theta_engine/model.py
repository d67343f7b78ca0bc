# src/theta_engine/model.py
"""Capability interface for the physics models driven by theta_engine.

A Model owns a state vector, a residual (right-hand side) vector and a
solution-increment vector, and knows how to recompute them. The stepper and the
step closure never own these arrays; they borrow the handles returned by the
getters and mutate them in place for the duration of a step.

Vector access modes:
    - "V": return the model's own array (a view; writes go to the model).
    - "C": return a copy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, TypeAlias, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from scipy.sparse import spmatrix

FloatArray: TypeAlias = "NDArray[np.floating]"
VectorMode = Literal["V", "C"]
JacobianMatrix: TypeAlias = "NDArray[np.floating] | spmatrix"

_UNKNOWN_MODE_MSG = "Unknown vector access mode {mode!r}; expected 'V' or 'C'"


@runtime_checkable
class Model(Protocol):
    """Minimal model interface required by ThetaModel and ThetaStepper."""

    def get_state(self, mode: VectorMode = "C") -> FloatArray:
        """Return the state vector."""
        ...

    def get_solution(self, mode: VectorMode = "C") -> FloatArray:
        """Return the last linear-solve increment."""
        ...

    def get_rhs(self, mode: VectorMode = "C") -> FloatArray:
        """Return the residual vector."""
        ...

    def get_mass_matrix(self) -> FloatArray:
        """Return the diagonal of the mass matrix."""
        ...

    def get_jacobian(self) -> JacobianMatrix:
        """Return the Jacobian currently used by solve (mutable)."""
        ...

    def set_state(self, x: FloatArray) -> None:
        """Copy x into the state vector."""
        ...

    def compute_rhs(self) -> None:
        """Recompute the residual at the current state."""
        ...

    def compute_jacobian(self) -> None:
        """Recompute the Jacobian at the current state."""
        ...

    def solve(self, rhs: FloatArray) -> None:
        """Solve J dx = rhs with the current Jacobian into the solution vector."""
        ...

    def set_theta(self, theta: float) -> None:
        """Inform the model of the theta weight in use."""
        ...

    def set_timestep(self, dt: float) -> None:
        """Inform the model of the step size in use."""
        ...

    def init_step(self, dt: float) -> None:
        """Prepare a single step of size dt from the current state."""
        ...

    def store(self) -> None:
        """Snapshot the state for a later restore."""
        ...

    def restore(self) -> None:
        """Roll the state back to the last snapshot."""
        ...

    def pre_process(self) -> None:
        """Hook run before every attempted step."""
        ...

    def post_process(self) -> None:
        """Hook run after every accepted step."""
        ...

    def write_data(self, describe: bool = False) -> str:
        """Return model-specific diagnostic columns (or their header)."""
        ...

    def save_state_to_file(self, path: str) -> None:
        """Persist the current state."""
        ...


def vector_access(arr: FloatArray, mode: VectorMode) -> FloatArray:
    """Return arr itself ("V") or a copy of it ("C").

    Args:
        arr: Model-owned vector.
        mode: Access mode.

    Raises:
        ValueError: If mode is not "V" or "C".

    Returns:
        The requested view or copy.
    """
    if mode == "V":
        return arr
    if mode == "C":
        return np.array(arr, copy=True)
    raise ValueError(_UNKNOWN_MODE_MSG.format(mode=mode))
