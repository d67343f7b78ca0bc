# src/theta_engine/step_closure.py
"""Single implicit theta step as a callable map (x, dt) -> x_new.

The closure is the elementary transition handed to trajectory drivers. It
solves one theta step with the Newton corrector and nothing more: no step-size
adaptation, no rollback, no noise. A driver that needs any of those applies
them around the call.

Shared ownership is explicit: the closure holds a reference to a ThetaModel
that other components may also drive. Every residual or Jacobian evaluation
sets the model state first, so nothing carries over between calls except the
model's own arrays.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

import numpy as np

from .newton import newton

if TYPE_CHECKING:
    from .distributed import Communicator
    from .model import FloatArray
    from .theta_model import ThetaModel

STEP_TOLERANCE: Final[float] = 1e-8


class StepClosure:
    """Implicit theta step around a shared ThetaModel."""

    def __init__(
        self,
        theta_model: ThetaModel,
        *,
        tol: float = STEP_TOLERANCE,
        comm: Communicator | None = None,
    ) -> None:
        """Initialize StepClosure.

        Args:
            theta_model: Shared ThetaModel (not owned).
            tol: Absolute Newton tolerance on the residual 2-norm.
            comm: Communicator for norm reductions, or None.
        """
        self.theta_model = theta_model
        self.tol = float(tol)
        self.comm = comm

    def residual(self, x: FloatArray) -> FloatArray:
        """Theta residual G(x)."""
        self.theta_model.set_state(x)
        self.theta_model.compute_rhs()
        return self.theta_model.get_rhs("C")

    def jacobian_solve(self, x: FloatArray, b: FloatArray) -> FloatArray:
        """Solution dx of (dG/dx)(x) dx = b."""
        self.theta_model.set_state(x)
        self.theta_model.compute_jacobian()
        self.theta_model.solve(b)
        return self.theta_model.get_solution("C")

    def __call__(self, x: FloatArray, dt: float) -> FloatArray:
        """Advance x by one implicit theta step of size dt.

        Args:
            x: Start state.
            dt: Step size.

        Returns:
            Newton iterate for the new state (possibly unconverged; see
            theta_engine.newton).
        """
        x0 = np.asarray(x, dtype=np.float64)
        self.theta_model.set_state(x0)
        self.theta_model.init_step(dt)
        return newton(self.residual, self.jacobian_solve, x0, self.tol, comm=self.comm)
