# src/theta_engine/config.py
"""Configuration model for the theta stepper and the transient factory.

Keys follow the human-readable parameter names used by climate-model
parameter files ("initial time step size", "Newton tolerance", ...). Each key
may also be given by its Python field name.

Notes:
    - Unknown keys are allowed and kept (`extra="allow"`); the Model and the
      outer driver may read their own settings from the same mapping.
    - Construction through :meth:`ThetaConfig.from_mapping` converts pydantic
      validation failures into :class:`theta_engine.errors.ConfigError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import raise_invalid_config

if TYPE_CHECKING:
    from collections.abc import Mapping

_DAYS_PER_YEAR = 365.0
_SEED_LIMIT = 2**32

_NEWTON_WINDOW_MSG = (
    "minimum desired Newton iterations ({min_k}) exceeds maximum desired "
    "Newton iterations ({max_k}); step-size adaptation would oscillate"
)
_DT_BOUNDS_MSG = (
    "step sizes must satisfy minimum ({min_dt}) <= initial ({dt}) <= maximum "
    "({max_dt})"
)


class ThetaConfig(BaseModel):
    """Parameters of an implicit theta run and of the AMS transient factory."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    theta: float = Field(default=1.0, gt=0.0, le=1.0, alias="theta")

    # Step size control
    initial_dt: float = Field(default=1.0e-3, gt=0.0, alias="initial time step size")
    min_dt: float = Field(default=1.0e-8, gt=0.0, alias="minimum step size")
    max_dt: float = Field(default=1.0, gt=0.0, alias="maximum step size")
    increase_factor: float = Field(default=2.0, ge=1.0, alias="increase step size")
    decrease_factor: float = Field(default=2.0, ge=1.0, alias="decrease step size")

    # Run length / time conversion
    timescale_days: float = Field(default=737.2685, gt=0.0, alias="timescale in days")
    end_time: float = Field(default=10.0, alias="end time (in y)")
    num_steps: int = Field(default=10, alias="number of time steps")
    output_frequency: int = Field(default=1, ge=0, alias="HDF5 output frequency")

    # Newton controls
    min_newton_iters: int = Field(
        default=3, ge=0, alias="minimum desired Newton iterations"
    )
    max_newton_iters: int = Field(
        default=3, ge=0, alias="maximum desired Newton iterations"
    )
    newton_tol: float = Field(default=1e-6, gt=0.0, alias="Newton tolerance")
    newton_max_iters: int = Field(default=8, gt=0, alias="maximum Newton iterations")

    # Transient / AMS wiring
    seed: int = Field(default=0, ge=0, lt=_SEED_LIMIT, alias="ams seed")
    dof: int = Field(default=1, gt=0, alias="dof")
    space: str = Field(default="", alias="space")
    noise_amplitude: float = Field(default=1.0, ge=0.0, alias="noise amplitude")
    transient_dt: float = Field(default=0.01, gt=0.0, alias="time step")
    transient_tmax: float = Field(default=1.0, gt=0.0, alias="maximum time")

    failed_rhs_file: str = Field(default="failed_rhs.npy", alias="failed residual file")

    @model_validator(mode="after")
    def _check_consistency(self) -> ThetaConfig:
        if self.min_newton_iters > self.max_newton_iters:
            raise ValueError(
                _NEWTON_WINDOW_MSG.format(
                    min_k=self.min_newton_iters, max_k=self.max_newton_iters
                )
            )
        if not (self.min_dt <= self.initial_dt <= self.max_dt):
            raise ValueError(
                _DT_BOUNDS_MSG.format(
                    min_dt=self.min_dt, dt=self.initial_dt, max_dt=self.max_dt
                )
            )
        return self

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any] | None = None) -> ThetaConfig:
        """Build a config from a parameter mapping.

        Args:
            params: Mapping keyed by parameter names or field names.

        Returns:
            Validated configuration.

        Raises:
            ConfigError: If any value is out of range or inconsistent.
        """
        try:
            return cls.model_validate(dict(params or {}))
        except ValidationError as exc:
            fields = [
                ".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors()
            ]
            raise_invalid_config(fields=fields, detail=str(exc), cause=exc)
            raise  # pragma: no cover

    @property
    def years_per_unit(self) -> float:
        """Conversion factor from model time units to years."""
        return self.timescale_days / _DAYS_PER_YEAR

    @property
    def unbounded_steps(self) -> bool:
        """Whether the step count is unlimited."""
        return self.num_steps < 0


def as_config(params: ThetaConfig | Mapping[str, Any] | None) -> ThetaConfig:
    """Return params as a ThetaConfig, validating mappings.

    Args:
        params: Existing config, parameter mapping, or None for defaults.

    Returns:
        Validated configuration.
    """
    if isinstance(params, ThetaConfig):
        return params
    return ThetaConfig.from_mapping(params)
