# tests/test_step_closure.py
"""Tests for theta_engine.step_closure.StepClosure."""

from __future__ import annotations

import numpy as np
import pytest

from theta_engine.array_model import ArrayModel
from theta_engine.step_closure import STEP_TOLERANCE, StepClosure
from theta_engine.theta_model import ThetaModel


def _decay(rate: float = 2.0, x0: float = 1.0) -> ArrayModel:
    return ArrayModel(
        lambda x: -rate * x,
        lambda x: -rate * np.eye(x.size),
        np.array([x0]),
    )


@pytest.mark.parametrize("theta", [1.0, 0.5])
def test_linear_step_matches_closed_form(theta: float) -> None:
    rate, dt = 2.0, 0.1
    tm = ThetaModel(_decay(rate), {"theta": theta})
    step = StepClosure(tm)

    x_new = step(np.array([1.0]), dt)

    # (1 + theta rate dt) x_new = (1 - (1 - theta) rate dt) x_old
    expected = (1.0 - (1.0 - theta) * rate * dt) / (1.0 + theta * rate * dt)
    assert x_new[0] == pytest.approx(expected, rel=1e-12)


def test_step_is_a_pure_map_of_its_arguments() -> None:
    tm = ThetaModel(_decay())
    step = StepClosure(tm)

    a = step(np.array([1.0]), 0.1)
    step(np.array([5.0]), 0.3)
    b = step(np.array([1.0]), 0.1)

    np.testing.assert_array_equal(a, b)


def test_input_state_is_not_modified() -> None:
    step = StepClosure(ThetaModel(_decay()))
    x = np.array([1.0])
    step(x, 0.1)
    np.testing.assert_array_equal(x, [1.0])


def test_nonlinear_step_satisfies_theta_residual() -> None:
    # dx/dt = -x^3, one implicit Euler step
    model = ArrayModel(lambda x: -(x**3), lambda x: np.diag(-3.0 * x**2), np.array([1.0]))
    tm = ThetaModel(model)
    step = StepClosure(tm)

    x_new = step(np.array([1.0]), 0.5)

    assert x_new[0] + 0.5 * x_new[0] ** 3 == pytest.approx(1.0, abs=1e-10)
    assert np.linalg.norm(step.residual(x_new)) < STEP_TOLERANCE


def test_residual_and_jacobian_solve_return_copies() -> None:
    tm = ThetaModel(_decay())
    step = StepClosure(tm)
    tm.set_state(np.array([1.0]))
    tm.init_step(0.1)

    r = step.residual(np.array([0.5]))
    r[:] = 123.0
    assert tm.get_rhs("V")[0] != 123.0

    dx = step.jacobian_solve(np.array([0.5]), np.array([1.0]))
    dx[:] = 123.0
    assert tm.get_solution("V")[0] != 123.0


def test_step_updates_model_timestep() -> None:
    model = _decay()
    step = StepClosure(ThetaModel(model))
    step(np.array([1.0]), 0.25)
    assert model.dt == pytest.approx(0.25)
