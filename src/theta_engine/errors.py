# src/theta_engine/errors.py
"""Error types and dependency-guard utilities for theta_engine.

This module centralizes:
- explicit error classes with actionable messages, and
- small helpers to guard the optional mpi4py import.

Design intent:
- theta_engine runs single-process without mpi4py
- distributed helpers fail fast with a clear message if used without the extra
"""

from __future__ import annotations

from dataclasses import dataclass
from importlib.util import find_spec
from typing import Final

_MPI_EXTRA_INSTALL_MSG: Final[str] = (
    "Install the optional dependency group with:\n"
    "  pip install 'theta_engine[mpi]'\n"
    "or, if you are using uv:\n"
    "  uv pip install '.[mpi]'"
)


class ThetaEngineError(Exception):
    """Base exception for theta_engine errors."""


class OptionalDependencyMissingError(ThetaEngineError, ImportError):
    """Raised when an optional dependency is required but missing."""


class ConfigError(ThetaEngineError, ValueError):
    """Raised when a stepper or transient configuration is invalid."""


class ThetaModelError(ThetaEngineError, ValueError):
    """Raised when a theta weight or time step violates its admissible range."""


class SubspaceError(ThetaEngineError, ValueError):
    """Raised when a projection subspace does not match the model layout."""


class CollectiveError(ThetaEngineError, RuntimeError):
    """Raised after a collective communication step failed and the group aborted."""


@dataclass(frozen=True, slots=True)
class DependencyStatus:
    """Structured description of optional dependency availability."""

    package: str
    is_available: bool
    detail: str | None = None


def check_mpi4py_available() -> DependencyStatus:
    """Check whether mpi4py is importable.

    Returns:
        DependencyStatus describing mpi4py availability.
    """
    spec = find_spec("mpi4py")
    if spec is None:
        return DependencyStatus(
            package="mpi4py",
            is_available=False,
            detail="Module spec not found",
        )
    return DependencyStatus(package="mpi4py", is_available=True, detail=None)


def require_mpi4py() -> None:
    """Require that mpi4py is importable.

    Raises:
        OptionalDependencyMissingError: If mpi4py cannot be imported.
    """
    status = check_mpi4py_available()
    if status.is_available:
        return

    msg = (
        "Distributed runs of theta_engine require mpi4py, but it is not "
        "available in this environment.\n\n"
        f"Import detail: {status.detail}\n\n"
        f"{_MPI_EXTRA_INSTALL_MSG}"
    )
    raise OptionalDependencyMissingError(msg)


def raise_invalid_config(
    *,
    fields: list[str] | None = None,
    detail: str | None = None,
    cause: BaseException | None = None,
) -> None:
    """Raise a standardized ConfigError.

    Args:
        fields: Offending configuration keys.
        detail: Optional additional context.
        cause: Underlying validation error, chained onto the ConfigError.

    Raises:
        ConfigError: Always.
    """
    parts: list[str] = ["Invalid theta_engine configuration."]
    if fields:
        parts.append(f"Offending field(s): {sorted(set(fields))}.")
    if detail:
        parts.append(f"Detail: {detail}")
    raise ConfigError(" ".join(parts)) from cause


def raise_subspace_error(*, name: str, expected: str, got: object) -> None:
    """Raise a standardized SubspaceError.

    Args:
        name: Name of the object with the shape issue.
        expected: Human-readable expected shape description.
        got: Actual observed shape/value.

    Raises:
        SubspaceError: Always.
    """
    msg = f"{name} has an invalid shape/value. Expected {expected}. Got: {got!r}."
    raise SubspaceError(msg)
