# tests/test_config.py
"""Tests for theta_engine.config.ThetaConfig."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from theta_engine.config import ThetaConfig, as_config
from theta_engine.errors import ConfigError


def test_defaults() -> None:
    cfg = ThetaConfig.from_mapping(None)
    assert cfg.theta == 1.0
    assert cfg.initial_dt == pytest.approx(1e-3)
    assert cfg.min_newton_iters == 3
    assert cfg.max_newton_iters == 3
    assert cfg.newton_max_iters == 8
    assert cfg.seed == 0
    assert cfg.dof == 1
    assert cfg.space == ""
    assert cfg.years_per_unit == pytest.approx(737.2685 / 365.0)


def test_parameter_names_and_field_names_both_work() -> None:
    a = ThetaConfig.from_mapping({"initial time step size": 0.01, "Newton tolerance": 1e-9})
    b = ThetaConfig.from_mapping({"initial_dt": 0.01, "newton_tol": 1e-9})
    assert a.initial_dt == b.initial_dt == pytest.approx(0.01)
    assert a.newton_tol == b.newton_tol == pytest.approx(1e-9)


def test_unknown_keys_are_kept() -> None:
    cfg = ThetaConfig.from_mapping({"Ocean grid size": 16})
    assert cfg.model_extra == {"Ocean grid size": 16}


def test_negative_step_count_is_unbounded() -> None:
    assert ThetaConfig.from_mapping({"number of time steps": -1}).unbounded_steps
    assert not ThetaConfig.from_mapping({"number of time steps": 5}).unbounded_steps


@pytest.mark.parametrize(
    "params",
    [
        {"theta": 0.0},
        {"theta": 1.2},
        {"initial time step size": -1.0},
        {"minimum step size": 0.0},
        {"minimum step size": 0.1, "initial time step size": 0.01},
        {"maximum step size": 1e-4},
        {"increase step size": 0.5},
        {"decrease step size": 0.9},
        {"minimum desired Newton iterations": 4, "maximum desired Newton iterations": 2},
        {"ams seed": -1},
        {"ams seed": 2**32},
        {"dof": 0},
    ],
)
def test_invalid_values_raise_config_error(params: dict[str, object]) -> None:
    with pytest.raises(ConfigError, match="Invalid theta_engine configuration"):
        ThetaConfig.from_mapping(params)


def test_config_error_is_value_error() -> None:
    with pytest.raises(ValueError):
        ThetaConfig.from_mapping({"theta": 2.0})


def test_as_config_passes_instances_through() -> None:
    cfg = ThetaConfig.from_mapping({"theta": 0.5})
    assert as_config(cfg) is cfg
    assert as_config({"theta": 0.5}).theta == 0.5


def test_config_is_frozen() -> None:
    cfg = ThetaConfig.from_mapping(None)
    with pytest.raises(ValidationError):
        cfg.theta = 0.5  # type: ignore[misc]
