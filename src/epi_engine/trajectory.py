# epi_engine/src/epi_engine/trajectory.py
"""State, grid and trajectory value objects.

This module provides the immutable containers that flow through the engine:

- :class:`StateVector`: one time point and its compartment values.
- :class:`FixedStepGrid`: implicit ``(t0, dt, steps)`` grid for the
  finite-difference path. Times are computed as ``t0 + dt * k`` so the grid
  never accumulates drift.
- :class:`OutputGrid`: explicit strictly increasing times for the adaptive path.
- :class:`Trajectory`: full ``(T, n_compartments)`` record of one run.

Trajectories are read-only once built; their arrays have ``writeable=False``.
The tabular form (:meth:`Trajectory.to_array`) has the time column first,
followed by compartments in the model's declared order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final, TypeAlias

import numpy as np

from .errors import raise_invalid_grid, raise_invalid_step_size

if TYPE_CHECKING:
    from collections.abc import Iterator

    from numpy.typing import ArrayLike, NDArray

    FloatArray = NDArray[np.float64]


# Error / message constants -------------------------------------------------

_TIMES_1D_ERROR: Final[str] = "times must be a 1D array"
_TIMES_EMPTY_ERROR: Final[str] = "must contain at least one time point"
_TIMES_MONOTONE_ERROR: Final[str] = "times must be strictly increasing"
_TIMES_FINITE_ERROR: Final[str] = "times must be finite"
_STEPS_ERROR: Final[str] = "steps must be a non-negative integer, got {steps!r}"
_T0_ERROR: Final[str] = "t0 must be finite, got {t0!r}"
_STATES_SHAPE_ERROR: Final[str] = (
    "states shape {actual} does not match (n_times, n_compartments) = {expected}"
)
_OUT_OF_RANGE_ERROR: Final[str] = (
    "requested times [{lo}, {hi}] fall outside trajectory range [{t0}, {t1}]"
)
_UNKNOWN_COMPARTMENT_ERROR: Final[str] = "Unknown compartment: {name!r}"

# Resampling tolerance on the range check, relative to the trajectory span.
_RANGE_RTOL: Final[float] = 1e-12


def validate_times(times: ArrayLike, *, name: str = "times") -> FloatArray:
    """Validate and normalize a time sequence.

    Args:
        times: Candidate time points.
        name: Name used in error messages.

    Returns:
        1D float64 array.

    Raises:
        InvalidGrid: if times are not 1D, empty, non-finite, or not strictly
            increasing.
    """
    arr = np.asarray(times, dtype=np.float64)
    if arr.ndim != 1:
        raise_invalid_grid(name=name, reason=_TIMES_1D_ERROR)
    if arr.size < 1:
        raise_invalid_grid(name=name, reason=_TIMES_EMPTY_ERROR)
    if not np.all(np.isfinite(arr)):
        raise_invalid_grid(name=name, reason=_TIMES_FINITE_ERROR)
    if arr.size > 1 and np.any(np.diff(arr) <= 0.0):
        raise_invalid_grid(name=name, reason=_TIMES_MONOTONE_ERROR)
    return arr


def validate_step_size(dt: object) -> float:
    """Return ``dt`` as a float, raising InvalidStepSize unless finite and > 0."""
    if isinstance(dt, bool):
        raise_invalid_step_size(dt)
    try:
        dt_f = float(dt)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise_invalid_step_size(dt)
    if not math.isfinite(dt_f) or dt_f <= 0.0:
        raise_invalid_step_size(dt)
    return dt_f


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr.flags.writeable = False
    return arr


# =============================================================================
# Grids
# =============================================================================


@dataclass(frozen=True, slots=True)
class FixedStepGrid:
    """Implicit uniform grid ``t_k = t0 + k * dt`` for ``k = 0..steps``.

    Attributes:
        t0: Initial time.
        dt: Step size (> 0).
        steps: Number of transitions; the grid holds ``steps + 1`` points.
    """

    t0: float
    dt: float
    steps: int

    def __post_init__(self) -> None:
        t0 = float(self.t0)
        if not math.isfinite(t0):
            raise_invalid_grid(name="FixedStepGrid", reason=_T0_ERROR.format(t0=t0))
        dt = validate_step_size(self.dt)
        if (
            isinstance(self.steps, bool)
            or int(self.steps) != self.steps
            or self.steps < 0
        ):
            raise_invalid_grid(
                name="FixedStepGrid", reason=_STEPS_ERROR.format(steps=self.steps)
            )
        object.__setattr__(self, "t0", t0)
        object.__setattr__(self, "dt", dt)
        object.__setattr__(self, "steps", int(self.steps))

    @classmethod
    def spanning(cls, t0: float, t_end: float, dt: float) -> FixedStepGrid:
        """Build the shortest grid from ``t0`` with step ``dt`` reaching ``t_end``.

        The last grid point lands on or just past ``t_end``.
        """
        dt_f = validate_step_size(dt)
        span = float(t_end) - float(t0)
        if span < 0.0:
            raise_invalid_grid(name="FixedStepGrid", reason="t_end precedes t0")
        steps = max(math.ceil(span / dt_f - 1e-9), 0) if span > 0.0 else 0
        if float(t0) + dt_f * steps < float(t_end):
            steps += 1
        return cls(t0=t0, dt=dt_f, steps=steps)

    def __len__(self) -> int:
        return self.steps + 1

    @property
    def t_end(self) -> float:
        """Final grid time."""
        return self.t0 + self.dt * self.steps

    def times(self) -> FloatArray:
        """Return the grid times as a 1D float64 array."""
        return self.t0 + self.dt * np.arange(self.steps + 1, dtype=np.float64)


@dataclass(frozen=True, slots=True, init=False)
class OutputGrid:
    """Explicit, strictly increasing grid of output times."""

    values: tuple[float, ...]

    def __init__(self, times: ArrayLike) -> None:
        arr = validate_times(times, name="OutputGrid")
        object.__setattr__(self, "values", tuple(float(t) for t in arr))

    def __len__(self) -> int:
        return len(self.values)

    @property
    def t0(self) -> float:
        """First grid time."""
        return self.values[0]

    def times(self) -> FloatArray:
        """Return the grid times as a 1D float64 array."""
        return np.asarray(self.values, dtype=np.float64)


Grid: TypeAlias = FixedStepGrid | OutputGrid


# =============================================================================
# StateVector / Trajectory
# =============================================================================


@dataclass(frozen=True, slots=True)
class StateVector:
    """Compartment values at a single time.

    Attributes:
        time: Time of the sample.
        values: Compartment values in model order.
        compartments: Compartment names in model order.
    """

    time: float
    values: tuple[float, ...]
    compartments: tuple[str, ...]

    def __getitem__(self, key: str | int) -> float:
        if isinstance(key, str):
            try:
                return self.values[self.compartments.index(key)]
            except ValueError as exc:
                raise KeyError(_UNKNOWN_COMPARTMENT_ERROR.format(name=key)) from exc
        return self.values[key]

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[float]:
        return iter(self.values)

    def total(self) -> float:
        """Sum over compartments."""
        return math.fsum(self.values)

    def as_array(self) -> FloatArray:
        """Return the values as a fresh float64 array."""
        return np.asarray(self.values, dtype=np.float64)


@dataclass(frozen=True, eq=False)
class Trajectory:
    """Time-ordered record of state vectors produced by one run.

    Attributes:
        times: 1D read-only array of strictly increasing times.
        states: 2D read-only array of shape ``(len(times), n_compartments)``.
        compartments: Compartment names in model order.
        metadata: Free-form run description (model, scheme, dt, solver...).
    """

    times: FloatArray
    states: FloatArray
    compartments: tuple[str, ...]
    metadata: dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        times = validate_times(self.times, name="Trajectory.times").copy()
        states = np.array(self.states, dtype=np.float64, copy=True)
        compartments = tuple(str(c) for c in self.compartments)
        expected = (times.size, len(compartments))
        if states.shape != expected:
            raise ValueError(
                _STATES_SHAPE_ERROR.format(actual=states.shape, expected=expected)
            )
        object.__setattr__(self, "times", _readonly(times))
        object.__setattr__(self, "states", _readonly(states))
        object.__setattr__(self, "compartments", compartments)
        object.__setattr__(self, "metadata", dict(self.metadata))

    def __len__(self) -> int:
        return int(self.times.size)

    def __iter__(self) -> Iterator[tuple[float, StateVector]]:
        for i in range(len(self)):
            sv = self.state_at(i)
            yield sv.time, sv

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Trajectory):
            return NotImplemented
        return (
            self.compartments == other.compartments
            and np.array_equal(self.times, other.times)
            and np.array_equal(self.states, other.states, equal_nan=True)
        )

    @property
    def n_compartments(self) -> int:
        """Number of compartments."""
        return len(self.compartments)

    def state_at(self, idx: int) -> StateVector:
        """Return the StateVector at row ``idx``."""
        return StateVector(
            time=float(self.times[idx]),
            values=tuple(float(v) for v in self.states[idx]),
            compartments=self.compartments,
        )

    def column(self, name: str) -> FloatArray:
        """Return the series for one compartment.

        Raises:
            KeyError: if the compartment is unknown.
        """
        try:
            idx = self.compartments.index(name)
        except ValueError as exc:
            raise KeyError(_UNKNOWN_COMPARTMENT_ERROR.format(name=name)) from exc
        return self.states[:, idx]

    def totals(self) -> FloatArray:
        """Return the per-row sum over compartments."""
        return self.states.sum(axis=1)

    def to_array(self) -> FloatArray:
        """Return a ``(T, 1 + n)`` table: time first, then compartments."""
        return np.column_stack([self.times, self.states])

    def columns(self) -> tuple[str, ...]:
        """Column labels matching :meth:`to_array`."""
        return ("time", *self.compartments)

    def to_records(self) -> list[dict[str, float]]:
        """Return one ``{"time": t, <compartment>: value, ...}`` dict per row."""
        labels = self.columns()
        return [
            dict(zip(labels, (float(v) for v in row), strict=True))
            for row in self.to_array()
        ]


def resample(trajectory: Trajectory, times: ArrayLike) -> Trajectory:
    """Linearly interpolate a trajectory onto new times.

    This never re-integrates; values between native grid points are joined by
    straight lines.

    Args:
        trajectory: Source trajectory.
        times: Target times, strictly increasing and inside the source range.

    Returns:
        New Trajectory sampled exactly at ``times``.

    Raises:
        InvalidGrid: if ``times`` is invalid or falls outside the source range.
    """
    target = validate_times(times, name="resample times")
    src_t = trajectory.times
    slack = _RANGE_RTOL * max(1.0, abs(float(src_t[-1] - src_t[0])))
    if target[0] < src_t[0] - slack or target[-1] > src_t[-1] + slack:
        raise_invalid_grid(
            name="resample times",
            reason=_OUT_OF_RANGE_ERROR.format(
                lo=target[0], hi=target[-1], t0=src_t[0], t1=src_t[-1]
            ),
        )

    if src_t.size == 1:
        out = np.repeat(trajectory.states, target.size, axis=0)
    else:
        out = np.empty((target.size, trajectory.n_compartments), dtype=np.float64)
        for j in range(trajectory.n_compartments):
            out[:, j] = np.interp(target, src_t, trajectory.states[:, j])

    metadata = dict(trajectory.metadata)
    metadata["resampled"] = True
    return Trajectory(
        times=target,
        states=out,
        compartments=trajectory.compartments,
        metadata=metadata,
    )


def conservation_drift(trajectory: Trajectory, total: float) -> float:
    """Return ``max |sum(state) - total|`` over the trajectory."""
    return float(np.max(np.abs(trajectory.totals() - float(total))))
