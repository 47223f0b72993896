# epi_engine/src/epi_engine/stepper.py
"""Fixed-step finite-difference stepper.

Supported schemes (``Scheme``):
    - FORWARD:  y_{i+1} = y_i + dt * f(t_i, y_i)
    - BACKWARD: y_{i+1} = y_i + dt * f(t_i + dt, y_i)
    - CENTRAL:  y_{i+1} = y_{i-1} + 2 dt * f(t_i, y_i)

Backward convention:
    The derivative is evaluated at the *known* current state, anchored to the
    later time index. No implicit equation is solved, so this is an explicit
    method despite its label. For the autonomous models shipped here it gives
    the same numbers as FORWARD.

Central bootstrap:
    CENTRAL needs the two most recent states. On the first transition only one
    state exists, so the step is bootstrapped with a forward half-step
    (explicit midpoint):
        y_half = y_0 + dt/2 * f(t_0, y_0)
        y_1    = y_0 + dt   * f(t_0 + dt/2, y_half)
    The two-state history is held in :class:`StateHistory`.

No bounds checking is done on the result. Under a large dt, compartments may go
negative, exceed physical bounds, overflow or become NaN, and that output is
returned as-is. NumPy floating-point warnings are silenced inside a step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Final

import numpy as np

from .trajectory import validate_step_size

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    from .models import Model, ParamsLike

    FloatArray = NDArray[np.float64]


_UNKNOWN_SCHEME_ERROR_MSG: Final[str] = "Unknown scheme: {scheme!r}. Choose from {choices}"
_STATE_SHAPE_ERROR_MSG: Final[str] = "state shape {actual} does not match {expected}"
_HISTORY_EMPTY_ERROR_MSG: Final[str] = "StateHistory is empty; push an initial state"


class Scheme(Enum):
    """Finite-difference scheme tag."""

    FORWARD = "forward"
    BACKWARD = "backward"
    CENTRAL = "central"

    @classmethod
    def parse(cls, value: Scheme | str) -> Scheme:
        """Normalize a scheme given as enum member or case-insensitive string.

        Raises:
            ValueError: if the value names no scheme.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        for member in cls:
            if member.value == key:
                return member
        raise ValueError(
            _UNKNOWN_SCHEME_ERROR_MSG.format(
                scheme=value, choices=[m.value for m in cls]
            )
        )


class StateHistory:
    """Two-slot ring buffer holding the previous and current states."""

    __slots__ = ("_count", "_head", "_slots")

    def __init__(self) -> None:
        self._slots: list[FloatArray | None] = [None, None]
        self._head = 0
        self._count = 0

    def __len__(self) -> int:
        return self._count

    def push(self, state: ArrayLike) -> None:
        """Store ``state`` as current, demoting the old current to previous."""
        self._head = (self._head + 1) % 2
        self._slots[self._head] = np.array(state, dtype=np.float64, copy=True)
        self._count = min(self._count + 1, 2)

    @property
    def current(self) -> FloatArray:
        """Most recent state."""
        cur = self._slots[self._head]
        if self._count == 0 or cur is None:
            raise RuntimeError(_HISTORY_EMPTY_ERROR_MSG)
        return cur

    @property
    def previous(self) -> FloatArray | None:
        """State before :attr:`current`, or None until two states were pushed."""
        if self._count < 2:
            return None
        return self._slots[(self._head + 1) % 2]

    def clear(self) -> None:
        """Drop all stored states."""
        self._slots = [None, None]
        self._head = 0
        self._count = 0


@dataclass(frozen=True, slots=True)
class FiniteDifferenceStepper:
    """Advance a state vector by one fixed step with a chosen scheme.

    Attributes:
        scheme: Default scheme used when :meth:`step` is called without one.
    """

    scheme: Scheme = Scheme.FORWARD

    def __post_init__(self) -> None:
        object.__setattr__(self, "scheme", Scheme.parse(self.scheme))

    def step(  # noqa: PLR0913
        self,
        model: Model,
        t: float,
        state: ArrayLike,
        dt: float,
        params: ParamsLike,
        scheme: Scheme | str | None = None,
        *,
        previous: ArrayLike | None = None,
    ) -> FloatArray:
        """Compute the state one step after ``(t, state)``.

        Args:
            model: Model providing the derivative.
            t: Time of ``state``.
            state: Current state vector.
            dt: Step size.
            params: Typed parameters or a flat mapping.
            scheme: Scheme override; defaults to this stepper's scheme.
            previous: State at ``t - dt``. Used only by CENTRAL; when None the
                CENTRAL step is bootstrapped with a forward half-step.

        Returns:
            New 1D float64 state vector.

        Raises:
            InvalidStepSize: if dt is not finite and > 0.
            InvalidParameters: if params are invalid for the model.
            ValueError: if ``previous`` does not match the state shape.
        """
        dt_f = validate_step_size(dt)
        sch = self.scheme if scheme is None else Scheme.parse(scheme)
        typed = model.parameters(params)
        y = np.asarray(state, dtype=np.float64)
        t_f = float(t)

        with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
            if sch is Scheme.FORWARD:
                return y + dt_f * model.derivative(t_f, y, typed)
            if sch is Scheme.BACKWARD:
                return y + dt_f * model.derivative(t_f + dt_f, y, typed)

            if previous is None:
                return self._bootstrap(model, t_f, y, dt_f, typed)
            y_prev = np.asarray(previous, dtype=np.float64)
            if y_prev.shape != y.shape:
                raise ValueError(
                    _STATE_SHAPE_ERROR_MSG.format(actual=y_prev.shape, expected=y.shape)
                )
            return y_prev + 2.0 * dt_f * model.derivative(t_f, y, typed)

    def advance(
        self,
        model: Model,
        t: float,
        history: StateHistory,
        dt: float,
        params: ParamsLike,
    ) -> FloatArray:
        """Take one step from ``history.current`` and push the result.

        Args:
            model: Model providing the derivative.
            t: Time of ``history.current``.
            history: Two-state buffer; updated in place.
            dt: Step size.
            params: Typed parameters or a flat mapping.

        Returns:
            The new state (also now ``history.current``).
        """
        y_next = self.step(
            model, t, history.current, dt, params, previous=history.previous
        )
        history.push(y_next)
        return y_next

    @staticmethod
    def _bootstrap(
        model: Model,
        t: float,
        y: FloatArray,
        dt: float,
        params: ParamsLike,
    ) -> FloatArray:
        y_half = y + 0.5 * dt * model.derivative(t, y, params)
        return y + dt * model.derivative(t + 0.5 * dt, y_half, params)
