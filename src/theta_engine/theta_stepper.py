# src/theta_engine/theta_stepper.py
"""Adaptive implicit time integration of a ThetaModel.

The stepper advances a model from t = 0 until the end time (in years) or the
configured number of accepted steps is reached. Each attempted step is one
Newton solve of the theta residual from the stored state:

    for k in 0 .. Niters-1:
        dx = -J^-1 G(x);  x <- x + dx
        stop if ||dx||_inf < tol and ||G(x)||_2 < tol    (converged)
        stop if ||dx||_inf > 100                         (diverging)

Failed attempts are rolled back with restore() and retried from the same time
with a smaller step. Accepted steps adapt dt from the Newton iteration count:

    k < minK  ->  dt <- min(dt * increase, max_dt)
    k > maxK  ->  dt <- max(dt / decrease, min_dt)

A failure whose reduced dt reaches min_dt ends the run with status 1.

Output per accepted step:
    - one row of the tabular diagnostic stream (header once per stepper),
    - an HDF5 snapshot transient_<time>.h5 every `HDF5 output frequency` steps.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final, TextIO

import numpy as np

from .config import as_config
from .distributed import norm, norm_inf
from .theta_model import ThetaModel

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .config import ThetaConfig
    from .distributed import Communicator
    from .model import Model

logger = logging.getLogger(__name__)
tdata_logger = logging.getLogger("theta_engine.tdata")

DIVERGENCE_THRESHOLD: Final[float] = 100.0
EXIT_OK: Final[int] = 0
EXIT_MIN_DT: Final[int] = 1

_FIELDWIDTH: Final[int] = 14
_HALF_FIELDWIDTH: Final[int] = _FIELDWIDTH // 2
_PRECISION: Final[int] = 5

_EXPLODING_MSG = "Norm exploding! ||dx||inf = %e"
_NOT_CONVERGED_MSG = "Newton did not converge! ||F|| = %e; restoring model"
_MIN_DT_MSG = "minimum timestep reached, exiting..."


class ThetaStepper:
    """Outer time loop with Newton per step and step-size adaptation."""

    def __init__(
        self,
        model: Model | ThetaModel,
        params: ThetaConfig | Mapping[str, Any] | None = None,
        *,
        tdata: TextIO | None = None,
        comm: Communicator | None = None,
    ) -> None:
        """Initialize ThetaStepper.

        Args:
            model: ThetaModel to drive, or a Model that gets wrapped in one.
            params: Configuration (see theta_engine.config.ThetaConfig).
            tdata: Stream receiving the tabular diagnostics; rows go to the
                "theta_engine.tdata" logger if None.
            comm: Communicator for norm reductions, or None.
        """
        cfg = as_config(params)
        self.config = cfg
        if isinstance(model, ThetaModel):
            self.model = model
        else:
            self.model = ThetaModel(model, cfg)
        self.model.set_theta(cfg.theta)
        self.tdata = tdata
        self.comm = comm

        self.mindt = cfg.min_dt
        self.maxdt = cfg.max_dt
        self.iscale = cfg.increase_factor
        self.dscale = cfg.decrease_factor
        self.in_years = cfg.years_per_unit
        self.tend = cfg.end_time
        self.nsteps = cfg.num_steps
        self.output = cfg.output_frequency
        self.min_k = cfg.min_newton_iters
        self.max_k = cfg.max_newton_iters
        self.newton_tol = cfg.newton_tol
        self.newton_iters = cfg.newton_max_iters

        self.time = 0.0
        self.step = 0
        self.dt = cfg.initial_dt
        self.k = 0
        self.sum_k = 0
        self.norm_dx = 0.0
        self.norm_rhs = 0.0
        self.failed_rhs: np.ndarray | None = None
        self._header_written = False

    # ------------------------------------------------------------------
    # Loop conditions
    # ------------------------------------------------------------------

    def _steps_remaining(self) -> bool:
        return self.config.unbounded_steps or self.step < self.nsteps

    def _newton_solve(self) -> bool:
        """Run the Newton loop from the current state.

        Returns:
            True if both norms dropped below the tolerance.
        """
        tm = self.model
        tol = self.newton_tol
        for k in range(self.newton_iters):
            self.k = k
            tm.set_timestep(self.dt)
            tm.compute_rhs()
            tm.compute_jacobian()

            tm.solve(-tm.get_rhs("V"))
            dx = tm.get_solution("V")
            self.norm_dx = norm_inf(dx, self.comm)

            tm.set_state(tm.get_state("V") + dx)
            tm.compute_rhs()
            self.norm_rhs = norm(tm.get_rhs("V"), self.comm)

            logger.info(
                "Newton iter %d: ||F||2 = %e, ||dx||inf = %e",
                k,
                self.norm_rhs,
                self.norm_dx,
            )

            if self.norm_dx < tol and self.norm_rhs < tol:
                return True
            if self.norm_dx > DIVERGENCE_THRESHOLD:
                logger.warning(_EXPLODING_MSG, self.norm_dx)
                break

        self.k = self.newton_iters
        return False

    def _dump_failed_rhs(self) -> None:
        self.failed_rhs = self.model.get_rhs("C")
        path = self.config.failed_rhs_file
        if path:
            np.save(path, self.failed_rhs)

    def _adapt(self) -> None:
        if self.k < self.min_k:
            self.dt = min(self.dt * self.iscale, self.maxdt)
        elif self.k > self.max_k:
            self.dt = max(self.dt / self.dscale, self.mindt)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> int:
        """Integrate until the end time or the step limit.

        Returns:
            0 on normal termination, 1 if Newton failed at the minimum step size.
        """
        tm = self.model
        while self.time < self.tend and self._steps_remaining():
            logger.info("Timestepping: t = %g y", self.time)

            tm.pre_process()
            tm.store()

            if not self._newton_solve():
                logger.warning(_NOT_CONVERGED_MSG, self.norm_rhs)
                self._dump_failed_rhs()
                tm.restore()
                logger.info("adjusting time step.. old dt = %e", self.dt)
                self.dt = max(self.dt / self.dscale, self.mindt)
                logger.info("adjusting time step.. new dt = %e", self.dt)
                if self.dt == self.mindt:
                    logger.warning(_MIN_DT_MSG)
                    return EXIT_MIN_DT
                continue

            self.step += 1
            self.time += self.dt * self.in_years
            logger.info(
                "Newton converged: step = %d, time = %g, ||F||2 = %e",
                self.step,
                self.time,
                self.norm_rhs,
            )

            tm.post_process()
            if self.output > 0 and self.step % self.output == 0:
                tm.save_state_to_file(self.snapshot_name(self.time))
            self.write_data()

            self._adapt()
            self.sum_k += self.k

        return EXIT_OK

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    @staticmethod
    def snapshot_name(time: float) -> str:
        """File name of the snapshot written at time (8 significant digits)."""
        return f"transient_{time:.8g}.h5"

    def _emit(self, line: str) -> None:
        if self.tdata is None:
            tdata_logger.info(line)
        else:
            self.tdata.write(line + "\n")

    def header(self) -> str:
        """Column header of the tabular output."""
        return (
            f"{'# time_(y)':>{_FIELDWIDTH}}"
            f"{'step':>{_HALF_FIELDWIDTH}}"
            f"{'dt_(y)':>{_FIELDWIDTH}}"
            f"{'|x|':>{_FIELDWIDTH}}"
            f"{'NR':>{_HALF_FIELDWIDTH}}"
            f"{self.model.write_data(True)}"
        )

    def row(self) -> str:
        """Tabular row describing the last accepted step."""
        state_norm = norm(self.model.get_state("V"), self.comm)
        return (
            f"{self.time:>{_FIELDWIDTH}.{_PRECISION}e}"
            f"{self.step:>{_HALF_FIELDWIDTH}d}"
            f"{self.dt * self.in_years:>{_FIELDWIDTH}.{_PRECISION}e}"
            f"{state_norm:>{_FIELDWIDTH}.{_PRECISION}e}"
            f"{self.k:>{_HALF_FIELDWIDTH}d}"
            f"{self.model.write_data()}"
        )

    def write_data(self) -> None:
        """Emit the header (first call only) and one data row."""
        if not self._header_written:
            self._emit(self.header())
            self._header_written = True
        self._emit(self.row())
