# src/theta_engine/distributed.py
"""Collective helpers shared by the stepper and the transient factory.

Communicators follow the lower-case object API of ``mpi4py.MPI.Comm``
(``rank``, ``size``, ``bcast``, ``allgather``, ``Abort``).
Passing ``comm=None`` means a single-process run: no collective is issued and
local values are already global.

Any failure inside a collective is fatal. Partially completed collectives
leave distributed state inconsistent, so the whole group is aborted and a
:class:`theta_engine.errors.CollectiveError` is raised locally.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

import numpy as np

from .errors import CollectiveError, raise_subspace_error, require_mpi4py

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

_COLLECTIVE_FAILED_MSG = "Collective '{op}' failed on rank {rank}; aborting group"
_MISSING_ROWS_MSG = "rows {missing} are not provided by any rank"


@runtime_checkable
class Communicator(Protocol):
    """Minimal communicator interface (mpi4py object API subset)."""

    @property
    def rank(self) -> int:
        """Rank of this process."""
        ...

    @property
    def size(self) -> int:
        """Number of processes in the group."""
        ...

    def bcast(self, obj: Any, root: int = 0) -> Any:
        """Broadcast obj from root to all ranks."""
        ...

    def allgather(self, sendobj: Any) -> list[Any]:
        """Gather sendobj from every rank on every rank."""
        ...

    def Abort(self, errorcode: int = 0) -> None:  # noqa: N802
        """Terminate every process in the group."""
        ...


def default_comm() -> Communicator:
    """Return ``MPI.COMM_WORLD``.

    Raises:
        OptionalDependencyMissingError: If mpi4py is not installed.

    Returns:
        The world communicator.
    """
    require_mpi4py()
    from mpi4py import MPI  # noqa: PLC0415

    return MPI.COMM_WORLD  # type: ignore[no-any-return]


def comm_rank(comm: Communicator | None) -> int:
    """Rank of this process (0 for single-process runs)."""
    return 0 if comm is None else int(comm.rank)


def comm_size(comm: Communicator | None) -> int:
    """Group size (1 for single-process runs)."""
    return 1 if comm is None else int(comm.size)


def run_collective(
    comm: Communicator,
    op: str,
    call: Callable[[], _T],
) -> _T:
    """Run a collective call, aborting the group if it raises.

    Args:
        comm: Communicator the collective runs on.
        op: Operation name used in diagnostics.
        call: Zero-argument callable issuing the collective.

    Raises:
        CollectiveError: If the collective raised; the group is aborted first.

    Returns:
        The collective's result.
    """
    try:
        return call()
    except Exception as exc:
        msg = _COLLECTIVE_FAILED_MSG.format(op=op, rank=comm_rank(comm))
        logger.critical(msg, exc_info=True)
        comm.Abort(1)
        raise CollectiveError(msg) from exc


def broadcast(value: _T, comm: Communicator | None, *, root: int = 0) -> _T:
    """Broadcast a picklable value from root."""
    if comm is None:
        return value
    return run_collective(comm, "bcast", lambda: comm.bcast(value, root=root))


def _sum(a: float, b: float) -> float:
    return a + b


def _max(a: float, b: float) -> float:
    return max(a, b)


def _allreduce(value: float, comm: Communicator, op: str) -> float:
    # Reduce through allgather so any mpi4py-like object works without MPI.Op.
    gathered = run_collective(comm, op, lambda: comm.allgather(float(value)))
    reduce = _max if op == "max" else _sum
    out = float(gathered[0])
    for item in gathered[1:]:
        out = reduce(out, float(item))
    return out


def norm(x: NDArray[np.floating], comm: Communicator | None = None) -> float:
    """Global 2-norm of a distributed vector."""
    local = float(np.dot(np.ravel(x), np.ravel(x)))
    if comm is not None:
        local = _allreduce(local, comm, "sum")
    return float(np.sqrt(local))


def norm_inf(x: NDArray[np.floating], comm: Communicator | None = None) -> float:
    """Global infinity-norm of a distributed vector."""
    arr = np.ravel(x)
    local = float(np.max(np.abs(arr))) if arr.size else 0.0
    if comm is not None:
        local = _allreduce(local, comm, "max")
    return local


def sum_over_ranks(
    x: NDArray[np.floating],
    comm: Communicator | None = None,
) -> NDArray[np.floating]:
    """Elementwise sum of an array across ranks."""
    local = np.asarray(x, dtype=np.float64)
    if comm is None:
        return local
    gathered = run_collective(comm, "allgather", lambda: comm.allgather(local))
    return np.sum(np.stack([np.asarray(g) for g in gathered]), axis=0)


def linear_block(n_global: int, comm: Communicator | None) -> NDArray[np.intp]:
    """Global row indices of this rank under a naive contiguous decomposition.

    Rows are split as evenly as possible, with the first ``n_global % size``
    ranks holding one extra row.

    Args:
        n_global: Total number of rows.
        comm: Communicator, or None for a single process.

    Returns:
        Sorted global indices owned by this rank.
    """
    size = comm_size(comm)
    rank = comm_rank(comm)
    base, extra = divmod(int(n_global), size)
    start = rank * base + min(rank, extra)
    stop = start + base + (1 if rank < extra else 0)
    return np.arange(start, stop, dtype=np.intp)


def redistribute_rows(
    rows: NDArray[np.floating],
    row_indices: NDArray[np.integer],
    target_indices: NDArray[np.integer],
    comm: Communicator | None = None,
) -> NDArray[np.floating]:
    """Move rows of a distributed multivector to a new row layout.

    Every rank contributes the rows it currently holds and receives the rows
    listed in target_indices, in that order.

    Args:
        rows: Locally held rows, shape (n_local, k).
        row_indices: Global indices of the locally held rows.
        target_indices: Global indices this rank must own afterwards.
        comm: Communicator, or None for a single process.

    Raises:
        SubspaceError: If a requested row is held by no rank.

    Returns:
        Array of shape (len(target_indices), k).
    """
    local = np.asarray(rows, dtype=np.float64)
    if local.ndim == 1:
        local = local[:, None]
    local_idx = np.asarray(row_indices, dtype=np.intp)

    if comm is None:
        pieces = [(local_idx, local)]
    else:
        pieces = run_collective(
            comm, "allgather", lambda: comm.allgather((local_idx, local))
        )

    lookup: dict[int, NDArray[np.floating]] = {}
    for idx, block in pieces:
        for pos, gid in enumerate(np.asarray(idx, dtype=np.intp)):
            lookup[int(gid)] = np.asarray(block)[pos]

    target = np.asarray(target_indices, dtype=np.intp)
    missing = [int(g) for g in target if int(g) not in lookup]
    if missing:
        raise_subspace_error(
            name="target rows",
            expected="rows held by some rank",
            got=_MISSING_ROWS_MSG.format(missing=missing[:10]),
        )

    n_cols = local.shape[1]
    out = np.empty((target.size, n_cols), dtype=np.float64)
    for pos, gid in enumerate(target):
        out[pos] = lookup[int(gid)]
    return out
