# src/theta_engine/factory.py
"""Composition root for deterministic and AMS transients.

The factory wraps a Model in the matching theta model, builds the implicit
step closure around it and hands the closure to a Transient driver:

    make_transient                   ThetaModel, no noise, no score
    make_ams_transient(basis=None)   StochasticThetaModel, full-state score
    make_ams_transient(basis=V)      StochasticProjectedThetaModel, score on V V^T x
    make_ams_transient_from_config   loads V from the "space" file first

Score family: "dof" == 6 selects the ocean tracer score, anything else the
default score.

Seeding: a configured "ams seed" of 0 means "draw one". Rank 0 draws 32 bits
from the injected entropy source and broadcasts them so every rank runs with
the same global seed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
from scipy.io import mmread
from scipy.sparse import issparse

from .config import as_config
from .distributed import (
    broadcast,
    comm_rank,
    linear_block,
    redistribute_rows,
    sum_over_ranks,
)
from .score_functions import (
    OCEAN_DOF,
    default_projected_score_function,
    default_score_function,
    ocean_projected_score_function,
    ocean_score_function,
)
from .step_closure import StepClosure
from .theta_model import StochasticProjectedThetaModel, StochasticThetaModel, ThetaModel
from .transient import Transient

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from numpy.typing import NDArray

    from .config import ThetaConfig
    from .distributed import Communicator
    from .model import FloatArray, Model
    from .score_functions import ScoreFunction

logger = logging.getLogger(__name__)

_SEED_MASK = 2**32 - 1


def system_entropy() -> int:
    """Draw 32 bits from the operating system's entropy pool."""
    return int(np.random.SeedSequence().entropy) & _SEED_MASK


def shared_seed(
    config_seed: int,
    comm: Communicator | None = None,
    entropy: Callable[[], int] | None = None,
) -> int:
    """Return the global seed, identical on every rank.

    Args:
        config_seed: Configured seed; 0 draws a random one on rank 0.
        comm: Communicator, or None for a single process.
        entropy: Source of random 32-bit integers; system_entropy if None.

    Returns:
        The broadcast seed.
    """
    seed = int(config_seed)
    if seed == 0 and comm_rank(comm) == 0:
        seed = int((entropy or system_entropy)()) & _SEED_MASK
    seed = int(broadcast(seed, comm, root=0))
    logger.info("Global seed: %d", seed)
    return seed


def _global_length(x: FloatArray, comm: Communicator | None) -> int:
    return int(sum_over_ranks(np.array(float(np.asarray(x).size)), comm))


def make_transient(
    model: Model,
    params: ThetaConfig | Mapping[str, Any] | None = None,
    x0: FloatArray | None = None,
    *,
    transient_cls: type[Transient] = Transient,
) -> Transient:
    """Build a deterministic transient around model.

    Args:
        model: Physics model.
        params: Configuration.
        x0: Optional start state of the driver.
        transient_cls: Driver class to instantiate.

    Returns:
        Configured driver.
    """
    cfg = as_config(params)
    theta_model = ThetaModel(model, cfg)
    time_step = StepClosure(theta_model)
    timestepper = transient_cls(time_step, x0=x0)
    timestepper.set_parameters(cfg)
    return timestepper


def make_ams_transient(
    model: Model,
    params: ThetaConfig | Mapping[str, Any] | None,
    sol1: FloatArray,
    sol2: FloatArray,
    sol3: FloatArray,
    basis: NDArray[np.floating] | None = None,
    *,
    comm: Communicator | None = None,
    entropy: Callable[[], int] | None = None,
    transient_cls: type[Transient] = Transient,
) -> Transient:
    """Build a stochastic AMS transient between sol1 and sol3.

    Args:
        model: Physics model.
        params: Configuration ("dof", "ams seed", "noise amplitude", ...).
        sol1: Start state A (local rows).
        sol2: Saddle state S.
        sol3: Target state B.
        basis: Local rows of a projection basis V, or None.
        comm: Communicator, or None for a single process.
        entropy: Random source used when the configured seed is 0.
        transient_cls: Driver class to instantiate.

    Returns:
        Seeded driver starting at sol1.
    """
    cfg = as_config(params)
    ocean = cfg.dof == OCEAN_DOF

    theta_model: StochasticThetaModel
    score_fun: ScoreFunction
    if basis is not None:
        projected = StochasticProjectedThetaModel(model, cfg, basis, comm=comm)
        red1 = projected.restrict(sol1)
        red2 = projected.restrict(sol2)
        red3 = projected.restrict(sol3)
        make_score = (
            ocean_projected_score_function if ocean else default_projected_score_function
        )
        score_fun = make_score(projected, red1, red2, red3)
        theta_model = projected
    else:
        make_plain = ocean_score_function if ocean else default_score_function
        score_fun = make_plain(sol1, sol2, sol3, comm=comm)
        theta_model = StochasticThetaModel(model, cfg)

    time_step = StepClosure(theta_model, comm=comm)
    timestepper = transient_cls(
        time_step,
        x0=sol1,
        score_function=score_fun,
        dof=_global_length(sol1, comm),
        noise=theta_model.noise,
        comm=comm,
    )
    timestepper.set_parameters(cfg)
    timestepper.set_random_engine(shared_seed(cfg.seed, comm, entropy))
    return timestepper


def load_space(
    path: str,
    owned_indices: NDArray[np.integer],
    comm: Communicator | None = None,
) -> NDArray[np.floating]:
    """Load a Matrix Market multivector and distribute it like the model.

    Every rank reads the file but keeps only its naive linear block of rows;
    the rows are then moved to the model's layout with one collective.

    Args:
        path: Matrix Market file holding V, shape (n_global, k).
        owned_indices: Global indices of the model's local rows.
        comm: Communicator, or None for a single process.

    Returns:
        Local rows of V in the order of owned_indices.
    """
    data = mmread(path)
    dense = np.asarray(data.toarray() if issparse(data) else data, dtype=np.float64)
    if dense.ndim == 1:
        dense = dense[:, None]
    block = linear_block(dense.shape[0], comm)
    return redistribute_rows(dense[block], block, owned_indices, comm)


def make_ams_transient_from_config(
    model: Model,
    params: ThetaConfig | Mapping[str, Any] | None,
    sol1: FloatArray,
    sol2: FloatArray,
    sol3: FloatArray,
    *,
    comm: Communicator | None = None,
    entropy: Callable[[], int] | None = None,
    transient_cls: type[Transient] = Transient,
) -> Transient:
    """Build an AMS transient, projected if params name a "space" file.

    Args:
        model: Physics model; its owned_indices() (if any) give the row layout.
        params: Configuration.
        sol1: Start state A.
        sol2: Saddle state S.
        sol3: Target state B.
        comm: Communicator, or None for a single process.
        entropy: Random source used when the configured seed is 0.
        transient_cls: Driver class to instantiate.

    Returns:
        Seeded driver starting at sol1.
    """
    cfg = as_config(params)
    basis = None
    if cfg.space:
        owned = getattr(model, "owned_indices", None)
        if callable(owned):
            indices = np.asarray(owned(), dtype=np.intp)
        else:
            indices = np.arange(np.asarray(model.get_state("V")).size, dtype=np.intp)
        basis = load_space(cfg.space, indices, comm)
        logger.info("Loaded subspace %s with %d directions", cfg.space, basis.shape[1])
    return make_ams_transient(
        model,
        cfg,
        sol1,
        sol2,
        sol3,
        basis,
        comm=comm,
        entropy=entropy,
        transient_cls=transient_cls,
    )
