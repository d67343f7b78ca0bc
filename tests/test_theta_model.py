# tests/test_theta_model.py
"""Tests for the theta-model wrappers in theta_engine.theta_model."""

from __future__ import annotations

import numpy as np
import pytest
from scipy.sparse import csr_matrix

from theta_engine.array_model import ArrayModel, ArrayModelOptions
from theta_engine.errors import SubspaceError, ThetaModelError
from theta_engine.theta_model import (
    StochasticProjectedThetaModel,
    StochasticThetaModel,
    ThetaModel,
)

A = np.array([[-1.0, 0.5], [0.0, -2.0]])


def _model(x0=(1.0, 2.0), *, mass=None, sparse=False) -> ArrayModel:
    jac = csr_matrix(A) if sparse else A
    return ArrayModel(
        lambda x: A @ x,
        lambda x: jac,
        np.asarray(x0, dtype=float),
        options=ArrayModelOptions(mass=None if mass is None else np.asarray(mass)),
    )


# -----------------------------------------------------------------------------
# Residual / Jacobian composition
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("theta", [1.0, 0.5])
def test_residual_matches_formula(theta: float) -> None:
    model = _model(mass=[2.0, 1.0])
    tm = ThetaModel(model, {"theta": theta, "initial time step size": 0.1})
    x_old = model.get_state("C")
    tm.store()

    x = np.array([0.7, 1.5])
    tm.set_state(x)
    tm.compute_rhs()

    m = np.array([2.0, 1.0])
    expected = A @ x + (1 - theta) / theta * (A @ x_old) - m * (x - x_old) / (theta * 0.1)
    np.testing.assert_allclose(tm.get_rhs("C"), expected, rtol=1e-14, atol=1e-14)


def test_residual_vanishes_at_old_state_for_zero_rhs() -> None:
    model = ArrayModel(lambda x: np.zeros_like(x), lambda x: np.zeros((2, 2)), np.ones(2))
    tm = ThetaModel(model, {"initial time step size": 0.1})
    tm.store()
    tm.compute_rhs()
    np.testing.assert_array_equal(tm.get_rhs("C"), np.zeros(2))


@pytest.mark.parametrize("sparse", [False, True])
def test_jacobian_is_shifted_by_mass_over_theta_dt(sparse: bool) -> None:
    model = _model(mass=[2.0, 0.0], sparse=sparse)
    tm = ThetaModel(model, {"theta": 0.5, "initial time step size": 0.25})
    tm.store()
    tm.compute_jacobian()

    jac = tm.get_jacobian()
    dense = jac.toarray() if sparse else np.asarray(jac)
    expected = A - np.diag([2.0, 0.0]) / (0.5 * 0.25)
    np.testing.assert_allclose(dense, expected)


def test_residual_requires_previous_state() -> None:
    tm = ThetaModel(_model())
    with pytest.raises(RuntimeError, match="no previous state"):
        tm.compute_rhs()


def test_init_step_captures_old_state_and_dt() -> None:
    model = _model()
    tm = ThetaModel(model)
    tm.init_step(0.3)
    assert tm.dt == pytest.approx(0.3)
    assert model.dt == pytest.approx(0.3)
    tm.compute_rhs()
    np.testing.assert_allclose(tm.get_rhs("C"), A @ np.array([1.0, 2.0]))


def test_wrapped_model_sees_theta_and_dt() -> None:
    model = _model()
    tm = ThetaModel(model, {"theta": 0.5, "initial time step size": 0.01})
    assert model.theta == pytest.approx(0.5)
    tm.set_timestep(0.02)
    assert model.dt == pytest.approx(0.02)


@pytest.mark.parametrize("theta", [0.0, -0.1, 1.5])
def test_invalid_theta_rejected(theta: float) -> None:
    tm = ThetaModel(_model())
    with pytest.raises(ThetaModelError):
        tm.set_theta(theta)


@pytest.mark.parametrize("dt", [0.0, -1.0, float("inf"), float("nan")])
def test_invalid_dt_rejected(dt: float) -> None:
    tm = ThetaModel(_model())
    with pytest.raises(ThetaModelError):
        tm.set_timestep(dt)


def test_store_restore_round_trip() -> None:
    model = _model()
    tm = ThetaModel(model)
    before = tm.get_state("C")
    tm.store()
    tm.set_state(np.array([9.0, 9.0]))
    tm.restore()
    np.testing.assert_array_equal(tm.get_state("C"), before)


# -----------------------------------------------------------------------------
# Stochastic variants
# -----------------------------------------------------------------------------


def test_noise_is_scaled_and_zero_on_algebraic_rows() -> None:
    model = _model(mass=[2.0, 0.0])
    tm = StochasticThetaModel(model, {"noise amplitude": 0.5})

    rng = np.random.default_rng(1)
    xi = np.random.default_rng(1).standard_normal(2)
    eta = tm.noise(rng, 0.04)

    assert eta[1] == 0.0
    assert eta[0] == pytest.approx(0.5 * 0.2 * xi[0] / 2.0)


def test_noise_uses_model_pattern() -> None:
    model = ArrayModel(
        lambda x: -x,
        lambda x: -np.eye(3),
        np.zeros(3),
        options=ArrayModelOptions(noise_pattern=np.array([1.0, 0.0, 2.0])),
    )
    tm = StochasticThetaModel(model)
    eta = tm.noise(np.random.default_rng(0), 1.0)
    xi = np.random.default_rng(0).standard_normal(3)
    np.testing.assert_allclose(eta, [xi[0], 0.0, 2.0 * xi[2]])


def test_projected_restrict_prolongate_and_noise() -> None:
    model = ArrayModel(lambda x: -x, lambda x: -np.eye(3), np.zeros(3))
    basis = np.array([[1.0], [0.0], [0.0]])
    tm = StochasticProjectedThetaModel(model, None, basis)

    assert tm.rank == 1
    np.testing.assert_allclose(tm.restrict(np.array([3.0, 4.0, 5.0])), [3.0])
    np.testing.assert_allclose(tm.prolongate(np.array([2.0])), [2.0, 0.0, 0.0])

    eta = tm.noise(np.random.default_rng(3), 0.01)
    assert eta[1] == 0.0
    assert eta[2] == 0.0


@pytest.mark.parametrize(
    "basis",
    [np.ones(3), np.ones((2, 1)), np.ones((3, 0))],
)
def test_projected_rejects_bad_basis(basis: np.ndarray) -> None:
    model = ArrayModel(lambda x: -x, lambda x: -np.eye(3), np.zeros(3))
    with pytest.raises(SubspaceError):
        StochasticProjectedThetaModel(model, None, basis)
