# epi_engine/src/epi_engine/config.py
"""Configuration models for epi_engine runs.

This module defines pydantic configuration objects for flat, YAML/JSON-style
run descriptions and translates them into native epi_engine objects
(:class:`~epi_engine.adaptive.AdaptiveSettings`, grids, steppers).

Notes:
    - Unknown fields are rejected (``extra="forbid"``) so typos fail loudly.
    - Model parameters and initial states stay plain mappings here; they are
      validated by the model itself, so problems surface as
      :class:`~epi_engine.errors.InvalidParameters` rather than a pydantic
      ``ValidationError``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .adaptive import AdaptiveIntegrator, AdaptiveSettings
from .comparison import ComparisonHarness
from .models import get_model
from .simulator import Simulator
from .stepper import FiniteDifferenceStepper, Scheme
from .trajectory import FixedStepGrid

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from .comparison import ComparisonResult
    from .models import Model
    from .trajectory import Trajectory

ModelName = Literal["logistic", "sir", "seir"]
SchemeName = Literal["forward", "backward", "central"]
SolverMethod = Literal["RK45", "RK23", "DOP853", "Radau", "BDF", "LSODA"]

_TIMES_SPEC_MSG = "provide either 'times' or all of 't0', 't_end' and 'n_points'"


class SolverConfig(BaseModel):
    """Adaptive reference solver settings."""

    model_config = ConfigDict(extra="forbid")

    method: SolverMethod = Field(default="RK45", description="solve_ivp method")
    rtol: float = Field(default=1e-8, gt=0.0)
    atol: float = Field(default=1e-10, gt=0.0)
    max_step: float = Field(default=float("inf"), gt=0.0)

    def to_settings(self) -> AdaptiveSettings:
        """Convert this config to native AdaptiveSettings.

        Returns:
            Fully constructed AdaptiveSettings instance.
        """
        return AdaptiveSettings(
            method=self.method,
            rtol=self.rtol,
            atol=self.atol,
            max_step=self.max_step,
        )


class _ModelSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: ModelName = Field(description="Registered model name")
    parameters: dict[str, float] = Field(
        description="Flat parameter mapping, e.g. {'beta': 0.5, 'mu': 0.1, 'A': 1}"
    )
    initial_state: dict[str, float] | list[float] = Field(
        description="Initial compartments as a name mapping or ordered list"
    )
    solver: SolverConfig = Field(default_factory=SolverConfig)

    def resolve_model(self) -> Model:
        """Return the registered model this config names."""
        return get_model(self.model)

    def build_integrator(self) -> AdaptiveIntegrator:
        """Return an AdaptiveIntegrator using this config's solver settings."""
        return AdaptiveIntegrator(settings=self.solver.to_settings())


class SimulationConfig(_ModelSection):
    """Single simulation run.

    When ``adaptive`` is true the grid times are solved with the adaptive
    reference solver; otherwise ``scheme`` is stepped at ``dt``.
    """

    t0: float = 0.0
    dt: float = Field(gt=0.0)
    steps: int = Field(ge=0)
    scheme: SchemeName = "forward"
    adaptive: bool = False

    def build_grid(self) -> FixedStepGrid:
        """Return the implicit grid ``(t0, dt, steps)``."""
        return FixedStepGrid(t0=self.t0, dt=self.dt, steps=self.steps)

    def build_stepper(self) -> FiniteDifferenceStepper:
        """Return a stepper for the configured scheme."""
        return FiniteDifferenceStepper(Scheme.parse(self.scheme))

    def run(self) -> Trajectory:
        """Run the configured simulation.

        Returns:
            Trajectory on the configured grid.
        """
        integrator = self.build_integrator() if self.adaptive else self.build_stepper()
        return Simulator().run(
            self.resolve_model(),
            self.parameters,
            self.initial_state,
            self.build_grid(),
            integrator,
        )


class RunSpec(BaseModel):
    """One finite-difference run of a comparison."""

    model_config = ConfigDict(extra="forbid")

    scheme: SchemeName = "forward"
    dt: float = Field(gt=0.0)


class ComparisonConfig(_ModelSection):
    """Finite-difference vs adaptive comparison.

    Shared times are either listed explicitly (``times``) or generated as
    ``linspace(t0, t_end, n_points)``.
    """

    times: list[float] | None = None
    t0: float | None = None
    t_end: float | None = None
    n_points: int | None = Field(default=None, ge=1)
    runs: list[RunSpec] = Field(min_length=1)
    kind: Literal["absolute", "relative"] = "absolute"
    max_workers: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _check_times(self) -> ComparisonConfig:
        generated = (self.t0, self.t_end, self.n_points)
        if self.times is None and any(v is None for v in generated):
            raise ValueError(_TIMES_SPEC_MSG)
        if self.times is not None and any(v is not None for v in generated):
            raise ValueError(_TIMES_SPEC_MSG)
        return self

    def shared_times(self) -> NDArray[np.float64]:
        """Return the shared comparison times."""
        if self.times is not None:
            return np.asarray(self.times, dtype=np.float64)
        return np.linspace(
            float(self.t0),  # type: ignore[arg-type]
            float(self.t_end),  # type: ignore[arg-type]
            int(self.n_points),  # type: ignore[arg-type]
        )

    def run(self) -> ComparisonResult:
        """Run the configured comparison.

        Returns:
            ComparisonResult for every configured run.
        """
        harness = ComparisonHarness(integrator=self.build_integrator())
        return harness.compare(
            self.resolve_model(),
            self.parameters,
            self.initial_state,
            self.shared_times(),
            [(r.scheme, r.dt) for r in self.runs],
            kind=self.kind,
            max_workers=self.max_workers,
        )
