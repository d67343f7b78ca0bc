# src/theta_engine/score_functions.py
"""Reaction-coordinate score functions for AMS transients.

A score maps a state x to [0, 1]: 0 at the start state A, 1/2 at the saddle S,
1 at the target state B. It is the mean of two clipped projections, one onto
the segment A -> S and one onto S -> B:

    phi(x) = 1/2 (clip(<x - A, S - A> / |S - A|^2, 0, 1)
                  + clip(<x - S, B - S> / |B - S|^2, 0, 1))

Families:
    - default: every unknown takes part.
    - ocean (dof 6, unknowns u, v, w, p, T, S interleaved per grid point):
      only the tracer entries T and S take part.

Projected variants replace x by its projection V (V^T x) and compare against
the prolongated reduced states, so only the subspace component of the
trajectory is scored.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Final

import numpy as np
from numpy.typing import NDArray

from .distributed import sum_over_ranks

if TYPE_CHECKING:
    from .distributed import Communicator
    from .theta_model import StochasticProjectedThetaModel

FloatArray = NDArray[np.floating]
ScoreFunction = Callable[[FloatArray], float]

OCEAN_DOF: Final[int] = 6
OCEAN_TRACERS: Final[tuple[int, ...]] = (4, 5)

_DEGENERATE_MSG = "score endpoints {a} and {b} coincide; cannot build a score"
_OCEAN_LAYOUT_MSG = "ocean state length {n} is not a multiple of {dof}"


def _dot(a: FloatArray, b: FloatArray, comm: Communicator | None) -> float:
    return float(sum_over_ranks(np.array(np.dot(a, b)), comm))


class _SegmentScore:
    """Clipped two-segment score over a selection of entries."""

    def __init__(
        self,
        sol1: FloatArray,
        sol2: FloatArray,
        sol3: FloatArray,
        *,
        mask: NDArray[np.bool_] | None = None,
        comm: Communicator | None = None,
    ) -> None:
        self.mask = mask
        self.comm = comm
        self.a = self._select(sol1)
        self.s = self._select(sol2)
        self.b = self._select(sol3)
        self.d1 = self.s - self.a
        self.d2 = self.b - self.s
        self.n1 = _dot(self.d1, self.d1, comm)
        self.n2 = _dot(self.d2, self.d2, comm)
        if self.n1 == 0.0:
            raise ValueError(_DEGENERATE_MSG.format(a="sol1", b="sol2"))
        if self.n2 == 0.0:
            raise ValueError(_DEGENERATE_MSG.format(a="sol2", b="sol3"))

    def _select(self, x: FloatArray) -> FloatArray:
        arr = np.asarray(x, dtype=np.float64)
        return arr if self.mask is None else arr[self.mask]

    def score(self, x: FloatArray) -> float:
        y = self._select(x)
        p1 = _dot(y - self.a, self.d1, self.comm) / self.n1
        p2 = _dot(y - self.s, self.d2, self.comm) / self.n2
        return 0.5 * (float(np.clip(p1, 0.0, 1.0)) + float(np.clip(p2, 0.0, 1.0)))


def ocean_tracer_mask(n: int, dof: int = OCEAN_DOF) -> NDArray[np.bool_]:
    """Boolean mask selecting the T and S entries of an interleaved ocean state.

    Raises:
        ValueError: If n is not a multiple of dof.
    """
    if n % dof:
        raise ValueError(_OCEAN_LAYOUT_MSG.format(n=n, dof=dof))
    mask = np.zeros(n, dtype=bool)
    for offset in OCEAN_TRACERS:
        mask[offset::dof] = True
    return mask


def default_score_function(
    sol1: FloatArray,
    sol2: FloatArray,
    sol3: FloatArray,
    *,
    comm: Communicator | None = None,
) -> ScoreFunction:
    """Score over all unknowns.

    Args:
        sol1: Start state A.
        sol2: Saddle state S.
        sol3: Target state B.
        comm: Communicator for the inner products, or None.

    Returns:
        Callable mapping a state to its score.
    """
    return _SegmentScore(sol1, sol2, sol3, comm=comm).score


def ocean_score_function(
    sol1: FloatArray,
    sol2: FloatArray,
    sol3: FloatArray,
    *,
    comm: Communicator | None = None,
) -> ScoreFunction:
    """Score over the temperature and salinity entries of an ocean state."""
    mask = ocean_tracer_mask(np.asarray(sol1).size)
    return _SegmentScore(sol1, sol2, sol3, mask=mask, comm=comm).score


def _projected(
    model: StochasticProjectedThetaModel,
    factory: Callable[..., ScoreFunction],
    red1: FloatArray,
    red2: FloatArray,
    red3: FloatArray,
) -> ScoreFunction:
    inner = factory(
        model.prolongate(red1),
        model.prolongate(red2),
        model.prolongate(red3),
        comm=model.comm,
    )

    def score(x: FloatArray) -> float:
        return inner(model.prolongate(model.restrict(x)))

    return score


def default_projected_score_function(
    model: StochasticProjectedThetaModel,
    red1: FloatArray,
    red2: FloatArray,
    red3: FloatArray,
) -> ScoreFunction:
    """Default score evaluated on the subspace component of the state.

    Args:
        model: Projected model providing restrict/prolongate.
        red1: Reduced start state V^T A.
        red2: Reduced saddle state V^T S.
        red3: Reduced target state V^T B.

    Returns:
        Callable mapping a full state to its score.
    """
    return _projected(model, default_score_function, red1, red2, red3)


def ocean_projected_score_function(
    model: StochasticProjectedThetaModel,
    red1: FloatArray,
    red2: FloatArray,
    red3: FloatArray,
) -> ScoreFunction:
    """Ocean tracer score evaluated on the subspace component of the state."""
    return _projected(model, ocean_score_function, red1, red2, red3)
