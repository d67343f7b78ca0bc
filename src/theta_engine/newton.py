# src/theta_engine/newton.py
"""Undamped Newton corrector for F(x) = 0.

The corrector takes full steps (no line search, no damping): the cost of a
Jacobian factorization dominates, so globalization is left to the caller, which
in this package means step-size reduction in the theta stepper.

Contract:
    newton(...) returns the first iterate whose residual 2-norm is below tol.
    Past the iteration cap it returns the last iterate and only logs a warning.
    Callers that need to know must probe convergence separately, e.g. with
    newton_converged(...).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

import numpy as np
from numpy.typing import NDArray

from .distributed import norm

if TYPE_CHECKING:
    from .distributed import Communicator

logger = logging.getLogger(__name__)

FloatArray = NDArray[np.floating]
ResidualFunction = Callable[[FloatArray], FloatArray]
JacobianSolveFunction = Callable[[FloatArray, FloatArray], FloatArray]

NEWTON_MAX_ITERS: Final[int] = 20

_UNCONVERGED_MSG = "Newton unconverged with norm %e after %d iterations"


def newton(
    residual: ResidualFunction,
    jacobian_solve: JacobianSolveFunction,
    x0: FloatArray,
    tol: float,
    *,
    max_iter: int = NEWTON_MAX_ITERS,
    comm: Communicator | None = None,
) -> FloatArray:
    """Solve residual(x) = 0 by Newton iteration from x0.

    Each iteration computes dx = jacobian_solve(x, residual(x)) and updates
    x <- x - dx.

    Args:
        residual: Residual evaluator F(x).
        jacobian_solve: Evaluator returning the solution of J(x) dx = r.
        x0: Initial iterate; never modified.
        tol: Absolute tolerance on the residual 2-norm.
        max_iter: Iteration cap.
        comm: Communicator used to reduce norms, or None.

    Returns:
        The first converged iterate, or the last iterate if none converged.
    """
    x = np.array(x0, dtype=np.float64, copy=True)
    fx = residual(x)
    nrm = -1.0
    for i in range(max_iter):
        dx = jacobian_solve(x, fx)
        x -= dx
        fx = residual(x)
        nrm = norm(fx, comm)
        logger.debug("Newton iter %d: ||F||2 = %e", i, nrm)
        if nrm < tol:
            return x

    logger.warning(_UNCONVERGED_MSG, nrm, max_iter)
    return x


def newton_converged(
    residual: ResidualFunction,
    x: FloatArray,
    tol: float,
    *,
    comm: Communicator | None = None,
) -> bool:
    """Probe whether x satisfies ||residual(x)||_2 < tol."""
    return norm(residual(x), comm) < tol
