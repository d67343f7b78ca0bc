"""Global pytest configuration and shared fixtures for theta_engine."""

from __future__ import annotations

import importlib.util
import threading
from collections.abc import Callable
from typing import Any, Final

import numpy as np
import pytest

from theta_engine.array_model import ArrayModel, ArrayModelOptions

# -----------------------------------------------------------------------------
# Optional dependency detection
# -----------------------------------------------------------------------------

HAS_MPI4PY: Final[bool] = importlib.util.find_spec("mpi4py") is not None


# -----------------------------------------------------------------------------
# Global markers registration safety (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "mpi: mark test as requiring the mpi4py optional dependency",
    )


# -----------------------------------------------------------------------------
# Conditional skipping fixture
# -----------------------------------------------------------------------------


@pytest.fixture(scope="session")
def require_mpi4py() -> None:
    """
    Skip tests if the mpi extra is not installed.

    Usage:
        def test_x(require_mpi4py):
            ...
    """
    if not HAS_MPI4PY:
        pytest.skip("mpi extra not installed")


# -----------------------------------------------------------------------------
# In-process communicators
# -----------------------------------------------------------------------------


class ThreadGroup:
    """A group of communicators whose ranks run as threads in this process."""

    def __init__(self, size: int) -> None:
        self.size = size
        self.barrier = threading.Barrier(size, timeout=10.0)
        self.slots: list[Any] = [None] * size
        self.aborts: list[tuple[int, int]] = []

    def comm(self, rank: int) -> ThreadComm:
        return ThreadComm(self, rank)

    def run(self, fn: Callable[[ThreadComm], Any]) -> list[Any]:
        """Run fn(comm) on every rank; return results (or raised exceptions)."""
        results: list[Any] = [None] * self.size

        def target(rank: int) -> None:
            try:
                results[rank] = fn(self.comm(rank))
            except Exception as exc:  # noqa: BLE001
                results[rank] = exc

        threads = [
            threading.Thread(target=target, args=(r,)) for r in range(self.size)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results


class ThreadComm:
    """mpi4py-like communicator backed by a ThreadGroup."""

    def __init__(self, group: ThreadGroup, rank: int) -> None:
        self.group = group
        self.rank = rank
        self.size = group.size

    def _exchange(self, obj: Any) -> list[Any]:
        self.group.slots[self.rank] = obj
        self.group.barrier.wait()
        out = list(self.group.slots)
        self.group.barrier.wait()
        return out

    def bcast(self, obj: Any, root: int = 0) -> Any:
        return self._exchange(obj)[root]

    def allgather(self, sendobj: Any) -> list[Any]:
        return self._exchange(sendobj)

    def Abort(self, errorcode: int = 0) -> None:  # noqa: N802
        self.group.aborts.append((self.rank, errorcode))
        self.group.barrier.abort()


class BrokenComm:
    """Single-rank communicator whose collectives always fail."""

    rank = 0
    size = 1

    def __init__(self) -> None:
        self.aborted: list[int] = []

    def bcast(self, obj: Any, root: int = 0) -> Any:
        raise OSError("link down")

    def allgather(self, sendobj: Any) -> list[Any]:
        raise OSError("link down")

    def Abort(self, errorcode: int = 0) -> None:  # noqa: N802
        self.aborted.append(errorcode)


@pytest.fixture
def thread_group() -> Callable[[int], ThreadGroup]:
    """Factory fixture for in-process multi-rank groups."""
    return ThreadGroup


@pytest.fixture
def broken_comm() -> BrokenComm:
    """Communicator whose collectives raise."""
    return BrokenComm()


# -----------------------------------------------------------------------------
# Reference models
# -----------------------------------------------------------------------------


def make_linear_model(
    a: np.ndarray,
    x0: np.ndarray,
    *,
    options: ArrayModelOptions | None = None,
) -> ArrayModel:
    """ArrayModel for F(x) = A x."""
    a_arr = np.asarray(a, dtype=float)
    return ArrayModel(
        lambda x: a_arr @ x,
        lambda x: a_arr,
        np.asarray(x0, dtype=float),
        options=options,
    )


@pytest.fixture
def decay_model() -> ArrayModel:
    """Two uncoupled linear decays, F(x) = -diag(1, 2) x, from x = (1, 1)."""
    return make_linear_model(np.diag([-1.0, -2.0]), np.ones(2))


@pytest.fixture
def linear_model() -> Callable[..., ArrayModel]:
    """Factory fixture building ArrayModels for F(x) = A x."""
    return make_linear_model
