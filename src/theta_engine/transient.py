# src/theta_engine/transient.py
"""Trajectory driver built around a single-step map.

A Transient repeatedly applies a time-step closure (x, dt) -> x_new from
t = 0 to the configured maximum time. Stochastic drivers add an explicit noise
increment after every implicit step:

    x_{n+1} = step(x_n, dt) + noise(rng, dt)

and track a score function along the path. The random stream of a path is
derived from the global seed, the process rank and the path index:

    SeedSequence(seed, spawn_key=(rank, path))

so every process draws independent noise for its own rows while a rerun with
the same seed reproduces every path exactly.

Branching, cloning and path weights of the full AMS algorithm are left to the
caller; this driver only produces the individual paths.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

import numpy as np
from numpy.typing import NDArray

from .config import as_config
from .distributed import comm_rank

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .config import ThetaConfig
    from .distributed import Communicator

FloatArray = NDArray[np.floating]
TimeStep = Callable[[FloatArray, float], FloatArray]
ScoreFunction = Callable[[FloatArray], float]
NoiseFunction = Callable[[np.random.Generator, float], FloatArray]

_TIME_EPS: Final[float] = 1e-12

_NO_START_MSG = "no start state: pass x0 to transient() or to the constructor"
_NO_SEED_MSG = "stochastic transient requires set_random_engine(seed) first"
_NO_SCORE_MSG = "Transient was built without a score function"


@dataclass(slots=True)
class TransientPath:
    """Result of one trajectory.

    Attributes:
        state: Final state.
        time: Final time.
        steps: Number of steps taken.
        scores: Score after every step (empty without a score function).
    """

    state: FloatArray
    time: float
    steps: int
    scores: list[float] = field(default_factory=list)

    @property
    def max_score(self) -> float:
        """Largest score reached along the path (nan if none recorded)."""
        return max(self.scores) if self.scores else float("nan")


class Transient:
    """Deterministic or stochastic trajectory driver."""

    def __init__(
        self,
        time_step: TimeStep,
        *,
        x0: FloatArray | None = None,
        score_function: ScoreFunction | None = None,
        dof: int | None = None,
        noise: NoiseFunction | None = None,
        comm: Communicator | None = None,
    ) -> None:
        """Initialize Transient.

        Args:
            time_step: Single-step map (x, dt) -> x_new.
            x0: Default start state.
            score_function: Score evaluated after every step, or None.
            dof: Global number of unknowns of the trajectory.
            noise: Explicit noise generator (rng, dt) -> increment, or None for
                a deterministic driver.
            comm: Communicator whose rank enters the per-path seed, or None.
        """
        self.time_step = time_step
        self.x0 = None if x0 is None else np.array(x0, dtype=np.float64, copy=True)
        self.score_function = score_function
        self.noise = noise
        self.comm = comm
        if dof is None and self.x0 is not None:
            dof = int(self.x0.size)
        self.dof = dof

        cfg = as_config(None)
        self.dt = cfg.transient_dt
        self.tmax = cfg.transient_tmax
        self.seed: int | None = None

    def set_parameters(self, params: ThetaConfig | Mapping[str, Any] | None) -> None:
        """Read "time step" and "maximum time" from params."""
        cfg = as_config(params)
        self.dt = cfg.transient_dt
        self.tmax = cfg.transient_tmax

    def set_random_engine(self, seed: int) -> None:
        """Set the global seed all per-path streams derive from."""
        self.seed = int(seed)

    def random_engine(self, path: int = 0) -> np.random.Generator:
        """Return a fresh generator for path on this rank.

        Raises:
            RuntimeError: If no seed has been set.
        """
        if self.seed is None:
            raise RuntimeError(_NO_SEED_MSG)
        seq = np.random.SeedSequence(self.seed, spawn_key=(comm_rank(self.comm), path))
        return np.random.default_rng(seq)

    def score(self, x: FloatArray) -> float:
        """Score of x.

        Raises:
            RuntimeError: If the driver has no score function.
        """
        if self.score_function is None:
            raise RuntimeError(_NO_SCORE_MSG)
        return float(self.score_function(x))

    def transient(self, x0: FloatArray | None = None, path: int = 0) -> TransientPath:
        """March one trajectory from x0 to the maximum time.

        Args:
            x0: Start state; the constructor's x0 if None.
            path: Path index selecting the random stream.

        Raises:
            ValueError: If no start state is available.

        Returns:
            TransientPath with the final state and the score history.
        """
        start = self.x0 if x0 is None else x0
        if start is None:
            raise ValueError(_NO_START_MSG)
        x = np.array(start, dtype=np.float64, copy=True)

        rng = self.random_engine(path) if self.noise is not None else None
        result = TransientPath(state=x, time=0.0, steps=0)

        t = 0.0
        while self.tmax - t > _TIME_EPS * self.tmax:
            h = min(self.dt, self.tmax - t)
            x = np.asarray(self.time_step(x, h), dtype=np.float64)
            if rng is not None and self.noise is not None:
                x = x + self.noise(rng, h)
            t += h
            result.steps += 1
            if self.score_function is not None:
                result.scores.append(self.score(x))

        result.state = x
        result.time = t
        return result
