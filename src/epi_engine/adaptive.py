# epi_engine/src/epi_engine/adaptive.py
"""Adaptive-step reference integrator.

:class:`AdaptiveIntegrator` solves a model over a requested set of output times
by delegating to a variable-step, error-controlled ODE solver. The engine
treats that solver as an opaque :class:`SolverBackend` exposing::

    solve(derivative_fn, t0, y0, times, params) -> array of shape (len(times), n)

The default backend wraps :func:`scipy.integrate.solve_ivp` with ``t_eval`` set
to the output times. The returned trajectory is sampled exactly at the
requested times no matter which internal steps the solver took.

Backend failure (non-convergence, wrong output shape, non-finite values) is
reported as :class:`~epi_engine.errors.IntegrationFailure`. No partial
trajectory is ever returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import numpy as np
from scipy.integrate import solve_ivp

from .errors import IntegrationFailure, raise_invalid_grid
from .trajectory import Trajectory, validate_times

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from numpy.typing import ArrayLike, NDArray

    from .models import Model, Parameters, ParamsLike

    FloatArray = NDArray[np.float64]
    DerivativeFunction = Callable[[float, FloatArray, Parameters], FloatArray]

logger = logging.getLogger(__name__)

_SOLVER_FAILED_MSG: Final[str] = "Adaptive solver '{method}' failed: {message}"
_SOLVER_SHAPE_MSG: Final[str] = (
    "Adaptive solver returned shape {actual}; expected {expected}"
)
_SOLVER_NONFINITE_MSG: Final[str] = (
    "Adaptive solver produced non-finite values (first at t={t})"
)
_T0_AFTER_TIMES_MSG: Final[str] = "first output time {first} precedes t0={t0}"
_UNKNOWN_SOLVER_METHOD_MSG: Final[str] = (
    "Unknown adaptive method: {method!r}. Choose from {choices}"
)

SCIPY_METHODS: Final[tuple[str, ...]] = (
    "RK45",
    "RK23",
    "DOP853",
    "Radau",
    "BDF",
    "LSODA",
)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(slots=True, frozen=True)
class AdaptiveSettings:
    """Configuration for the default SciPy backend.

    Attributes:
        method: ``solve_ivp`` method name.
        rtol: Relative tolerance.
        atol: Absolute tolerance.
        max_step: Upper bound on internal step size.
    """

    method: str = "RK45"
    rtol: float = 1e-8
    atol: float = 1e-10
    max_step: float = float("inf")

    def __post_init__(self) -> None:
        if self.method not in SCIPY_METHODS:
            raise ValueError(
                _UNKNOWN_SOLVER_METHOD_MSG.format(
                    method=self.method, choices=list(SCIPY_METHODS)
                )
            )


# =============================================================================
# Backends
# =============================================================================


@runtime_checkable
class SolverBackend(Protocol):
    """Variable-step ODE solving capability used by AdaptiveIntegrator."""

    def solve(
        self,
        derivative_fn: DerivativeFunction,
        t0: float,
        y0: FloatArray,
        times: FloatArray,
        params: Parameters,
    ) -> FloatArray:
        """Return states at ``times`` with shape ``(len(times), len(y0))``."""
        ...


@dataclass(slots=True)
class ScipyBackend:
    """SolverBackend backed by :func:`scipy.integrate.solve_ivp`."""

    settings: AdaptiveSettings = field(default_factory=AdaptiveSettings)

    def solve(
        self,
        derivative_fn: DerivativeFunction,
        t0: float,
        y0: FloatArray,
        times: FloatArray,
        params: Parameters,
    ) -> FloatArray:
        """Integrate from t0 and sample at ``times``.

        Raises:
            IntegrationFailure: if solve_ivp reports failure.
        """
        y0_arr = np.asarray(y0, dtype=np.float64)
        t_eval = np.asarray(times, dtype=np.float64)
        t_end = float(t_eval[-1])

        if t_end == float(t0):
            # Nothing to integrate; every requested time equals t0.
            return np.tile(y0_arr, (t_eval.size, 1))

        def fun(t: float, y: FloatArray) -> FloatArray:
            return derivative_fn(t, y, params)

        sol = solve_ivp(
            fun=fun,
            t_span=(float(t0), t_end),
            y0=y0_arr,
            method=self.settings.method,
            t_eval=t_eval,
            rtol=self.settings.rtol,
            atol=self.settings.atol,
            max_step=self.settings.max_step,
        )
        if not sol.success:
            raise IntegrationFailure(
                _SOLVER_FAILED_MSG.format(
                    method=self.settings.method, message=sol.message
                )
            )
        logger.debug(
            "solve_ivp(%s) finished: nfev=%d, njev=%d, nlu=%d",
            self.settings.method,
            sol.nfev,
            sol.njev,
            sol.nlu,
        )
        return np.asarray(sol.y, dtype=np.float64).T


# =============================================================================
# AdaptiveIntegrator
# =============================================================================


class AdaptiveIntegrator:
    """Reference integrator delegating to a variable-step SolverBackend."""

    def __init__(
        self,
        backend: SolverBackend | None = None,
        *,
        settings: AdaptiveSettings | None = None,
    ) -> None:
        """
        Initialize AdaptiveIntegrator.

        Args:
            backend: Solver capability; defaults to :class:`ScipyBackend`.
            settings: Settings for the default backend. Ignored when a
                backend is given.
        """
        if backend is None:
            backend = ScipyBackend(settings or AdaptiveSettings())
        self.backend = backend

    def solve(
        self,
        model: Model,
        params: ParamsLike,
        initial_state: Mapping[str, float] | ArrayLike,
        t0: float,
        output_times: ArrayLike,
    ) -> Trajectory:
        """Solve ``model`` from ``(t0, initial_state)`` and sample at output times.

        Args:
            model: Model providing the derivative.
            params: Typed parameters or a flat mapping.
            initial_state: State at ``t0`` (mapping or sequence).
            t0: Initial time.
            output_times: Strictly increasing times with ``output_times[0] >= t0``.

        Returns:
            Trajectory sampled exactly at ``output_times``.

        Raises:
            InvalidParameters: if params or initial state are invalid.
            InvalidGrid: if output times are invalid or precede t0.
            IntegrationFailure: if the backend fails or returns bad values.
        """
        typed = model.parameters(params)
        y0 = model.initial_state(initial_state)
        times = validate_times(output_times, name="output_times")
        t0_f = float(t0)
        if not np.isfinite(t0_f) or times[0] < t0_f:
            raise_invalid_grid(
                name="output_times",
                reason=_T0_AFTER_TIMES_MSG.format(first=times[0], t0=t0_f),
            )

        logger.debug(
            "Adaptive solve: model=%s, t0=%g, n_times=%d, backend=%s",
            model.name,
            t0_f,
            times.size,
            type(self.backend).__name__,
        )
        states = np.asarray(
            self.backend.solve(model.derivative, t0_f, y0, times, typed),
            dtype=np.float64,
        )
        self._check_output(states, times, y0.size)

        return Trajectory(
            times=times,
            states=states,
            compartments=model.compartments,
            metadata=self._metadata(model, typed),
        )

    @staticmethod
    def _check_output(states: FloatArray, times: FloatArray, n: int) -> None:
        expected = (times.size, n)
        if states.shape != expected:
            raise IntegrationFailure(
                _SOLVER_SHAPE_MSG.format(actual=states.shape, expected=expected)
            )
        finite_rows = np.all(np.isfinite(states), axis=1)
        if not np.all(finite_rows):
            first_bad = int(np.argmin(finite_rows))
            raise IntegrationFailure(
                _SOLVER_NONFINITE_MSG.format(t=float(times[first_bad]))
            )

    def _metadata(self, model: Model, params: Parameters) -> dict[str, Any]:
        meta: dict[str, Any] = {
            "model": model.name,
            "integrator": "adaptive",
            "backend": type(self.backend).__name__,
            "params": params.as_dict(),
        }
        settings = getattr(self.backend, "settings", None)
        if isinstance(settings, AdaptiveSettings):
            meta["method"] = settings.method
            meta["rtol"] = settings.rtol
            meta["atol"] = settings.atol
        return meta
