"""theta_engine implicit theta-method stepping and AMS transient package."""

from __future__ import annotations

from .array_model import ArrayModel, ArrayModelOptions
from .config import ThetaConfig, as_config
from .distributed import Communicator, default_comm, norm, norm_inf
from .errors import (
    CollectiveError,
    ConfigError,
    OptionalDependencyMissingError,
    SubspaceError,
    ThetaEngineError,
    ThetaModelError,
)
from .factory import (
    load_space,
    make_ams_transient,
    make_ams_transient_from_config,
    make_transient,
    shared_seed,
)
from .model import Model
from .newton import newton, newton_converged
from .score_functions import (
    default_projected_score_function,
    default_score_function,
    ocean_projected_score_function,
    ocean_score_function,
)
from .step_closure import StepClosure
from .theta_model import StochasticProjectedThetaModel, StochasticThetaModel, ThetaModel
from .theta_stepper import ThetaStepper
from .transient import Transient, TransientPath

__all__ = [
    "ArrayModel",
    "ArrayModelOptions",
    "CollectiveError",
    "Communicator",
    "ConfigError",
    "Model",
    "OptionalDependencyMissingError",
    "StepClosure",
    "StochasticProjectedThetaModel",
    "StochasticThetaModel",
    "SubspaceError",
    "ThetaConfig",
    "ThetaEngineError",
    "ThetaModel",
    "ThetaModelError",
    "ThetaStepper",
    "Transient",
    "TransientPath",
    "as_config",
    "default_comm",
    "default_projected_score_function",
    "default_score_function",
    "load_space",
    "make_ams_transient",
    "make_ams_transient_from_config",
    "make_transient",
    "newton",
    "newton_converged",
    "norm",
    "norm_inf",
    "ocean_projected_score_function",
    "ocean_score_function",
    "shared_seed",
]

__version__ = "0.1.0"
