"""epi_engine compartmental epidemic simulation and integrator comparison package."""

from __future__ import annotations

from .adaptive import AdaptiveIntegrator, AdaptiveSettings, ScipyBackend, SolverBackend
from .comparison import (
    ComparisonHarness,
    ComparisonResult,
    DivergenceReport,
    RunKey,
    divergence,
)
from .config import ComparisonConfig, SimulationConfig, SolverConfig
from .errors import (
    EpiEngineError,
    IntegrationFailure,
    InvalidGrid,
    InvalidParameters,
    InvalidStepSize,
)
from .models import (
    LogisticModel,
    LogisticParams,
    Model,
    Parameters,
    SEIRModel,
    SEIRParams,
    SIRModel,
    SIRParams,
    available_models,
    get_model,
)
from .simulator import Simulator, simulate
from .stepper import FiniteDifferenceStepper, Scheme, StateHistory
from .trajectory import (
    FixedStepGrid,
    OutputGrid,
    StateVector,
    Trajectory,
    conservation_drift,
    resample,
)

__all__ = [
    "AdaptiveIntegrator",
    "AdaptiveSettings",
    "ComparisonConfig",
    "ComparisonHarness",
    "ComparisonResult",
    "DivergenceReport",
    "EpiEngineError",
    "FiniteDifferenceStepper",
    "FixedStepGrid",
    "IntegrationFailure",
    "InvalidGrid",
    "InvalidParameters",
    "InvalidStepSize",
    "LogisticModel",
    "LogisticParams",
    "Model",
    "OutputGrid",
    "Parameters",
    "RunKey",
    "SEIRModel",
    "SEIRParams",
    "SIRModel",
    "SIRParams",
    "Scheme",
    "ScipyBackend",
    "SimulationConfig",
    "Simulator",
    "SolverBackend",
    "SolverConfig",
    "StateHistory",
    "StateVector",
    "Trajectory",
    "available_models",
    "conservation_drift",
    "divergence",
    "get_model",
    "resample",
    "simulate",
]

__version__ = "0.1.0"
