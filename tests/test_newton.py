# tests/test_newton.py
"""Unit tests for theta_engine.newton."""

from __future__ import annotations

import logging

import numpy as np
import pytest

from theta_engine.newton import NEWTON_MAX_ITERS, newton, newton_converged


def _linear(a: np.ndarray, b: np.ndarray):
    def residual(x: np.ndarray) -> np.ndarray:
        return a @ x - b

    def jacobian_solve(x: np.ndarray, r: np.ndarray) -> np.ndarray:
        return np.linalg.solve(a, r)

    return residual, jacobian_solve


def test_linear_problem_converges_in_one_iteration() -> None:
    a = np.array([[4.0, 1.0], [1.0, 3.0]])
    b = np.array([1.0, 2.0])
    residual, jsolve = _linear(a, b)

    calls = {"n": 0}

    def counting_solve(x: np.ndarray, r: np.ndarray) -> np.ndarray:
        calls["n"] += 1
        return jsolve(x, r)

    x = newton(residual, counting_solve, np.zeros(2), 1e-10)

    assert calls["n"] == 1
    np.testing.assert_allclose(x, np.linalg.solve(a, b), rtol=0, atol=1e-12)


def test_initial_iterate_not_mutated() -> None:
    residual, jsolve = _linear(np.eye(3), np.ones(3))
    x0 = np.zeros(3)
    newton(residual, jsolve, x0, 1e-10)
    np.testing.assert_array_equal(x0, np.zeros(3))


def test_scalar_nonlinear_root() -> None:
    def residual(x: np.ndarray) -> np.ndarray:
        return x**2 - 2.0

    def jsolve(x: np.ndarray, r: np.ndarray) -> np.ndarray:
        return r / (2.0 * x)

    x = newton(residual, jsolve, np.array([1.0]), 1e-12)
    assert x[0] == pytest.approx(np.sqrt(2.0), abs=1e-12)
    assert newton_converged(residual, x, 1e-12)


def test_unconverged_returns_last_iterate_and_warns(
    caplog: pytest.LogCaptureFixture,
) -> None:
    # x^2 + 1 has no real root; Newton wanders but must not raise.
    def residual(x: np.ndarray) -> np.ndarray:
        return x**2 + 1.0

    calls = {"n": 0}

    def jsolve(x: np.ndarray, r: np.ndarray) -> np.ndarray:
        calls["n"] += 1
        return r / (2.0 * x)

    with caplog.at_level(logging.WARNING, logger="theta_engine.newton"):
        x = newton(residual, jsolve, np.array([0.5]), 1e-8)

    assert calls["n"] == NEWTON_MAX_ITERS
    assert "Newton unconverged" in caplog.text
    assert not newton_converged(residual, x, 1e-8)


def test_max_iter_is_respected() -> None:
    def residual(x: np.ndarray) -> np.ndarray:
        return x**2 + 1.0

    calls = {"n": 0}

    def jsolve(x: np.ndarray, r: np.ndarray) -> np.ndarray:
        calls["n"] += 1
        return r / (2.0 * x)

    newton(residual, jsolve, np.array([0.5]), 1e-8, max_iter=3)
    assert calls["n"] == 3
