# tests/test_stepper.py
"""Unit tests for FiniteDifferenceStepper, Scheme and StateHistory.

These tests pin the exact stepping formulas:

- FORWARD evaluates the derivative at (t, y).
- BACKWARD evaluates it at (t + dt, y): current state, later time index.
- CENTRAL uses y_prev + 2 dt f(t, y), bootstrapped by an explicit midpoint
  half-step when no previous state exists.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest

from epi_engine.errors import InvalidParameters, InvalidStepSize
from epi_engine.models import get_model
from epi_engine.stepper import FiniteDifferenceStepper, Scheme, StateHistory

if TYPE_CHECKING:
    from epi_engine.models import SEIRParams, SIRParams


class _TimeRateModel:
    """Non-autonomous one-compartment model dy/dt = t, for time-anchor checks."""

    name = "time-rate"
    compartments = ("y",)
    conservative = False

    def parameters(self, params: object) -> object:
        return params

    def initial_state(self, values: object) -> np.ndarray:
        return np.asarray(values, dtype=np.float64)

    def derivative(self, t: float, state: np.ndarray, params: object) -> np.ndarray:  # noqa: ARG002
        return np.array([t], dtype=np.float64)


# -------------------------------------------------------------------
# Scheme
# -------------------------------------------------------------------


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("forward", Scheme.FORWARD),
        (" Backward ", Scheme.BACKWARD),
        ("CENTRAL", Scheme.CENTRAL),
        (Scheme.CENTRAL, Scheme.CENTRAL),
    ],
)
def test_scheme_parse(raw: object, expected: Scheme) -> None:
    """Scheme.parse accepts members and case-insensitive names."""
    assert Scheme.parse(raw) is expected  # type: ignore[arg-type]


def test_scheme_parse_unknown_raises() -> None:
    """Unknown scheme names raise ValueError."""
    with pytest.raises(ValueError, match="Unknown scheme"):
        Scheme.parse("leapfrog")


def test_stepper_normalizes_string_scheme() -> None:
    """The stepper stores a Scheme member even when given a string."""
    assert FiniteDifferenceStepper("central").scheme is Scheme.CENTRAL  # type: ignore[arg-type]


# -------------------------------------------------------------------
# Step formulas
# -------------------------------------------------------------------


def test_forward_step_formula(sir_params: SIRParams, sir_y0: np.ndarray) -> None:
    """FORWARD: y + dt * f(t, y)."""
    model = get_model("sir")
    dt = 0.25
    out = FiniteDifferenceStepper(Scheme.FORWARD).step(model, 0.0, sir_y0, dt, sir_params)
    expected = sir_y0 + dt * model.derivative(0.0, sir_y0, sir_params)
    assert np.array_equal(out, expected)


def test_backward_step_uses_current_state_at_later_time() -> None:
    """BACKWARD evaluates f at (t + dt, y_current); no implicit solve."""
    model = _TimeRateModel()
    stepper = FiniteDifferenceStepper(Scheme.BACKWARD)
    out = stepper.step(model, 1.0, np.array([0.0]), 0.5, None)  # type: ignore[arg-type]
    assert np.allclose(out, [0.5 * 1.5])

    fwd = FiniteDifferenceStepper(Scheme.FORWARD).step(
        model,  # type: ignore[arg-type]
        1.0,
        np.array([0.0]),
        0.5,
        None,  # type: ignore[arg-type]
    )
    assert np.allclose(fwd, [0.5 * 1.0])


def test_backward_matches_forward_for_autonomous_models(
    sir_params: SIRParams, sir_y0: np.ndarray
) -> None:
    """For time-independent models the explicit backward step equals forward."""
    model = get_model("sir")
    fwd = FiniteDifferenceStepper(Scheme.FORWARD).step(model, 3.0, sir_y0, 0.1, sir_params)
    bwd = FiniteDifferenceStepper(Scheme.BACKWARD).step(model, 3.0, sir_y0, 0.1, sir_params)
    assert np.array_equal(fwd, bwd)


def test_central_step_with_previous_state() -> None:
    """CENTRAL: y_prev + 2 dt f(t, y)."""
    model = get_model("logistic")
    y_prev = np.array([0.1])
    y = np.array([0.2])
    out = FiniteDifferenceStepper(Scheme.CENTRAL).step(
        model, 0.0, y, 0.5, {"r": 1.0}, previous=y_prev
    )
    assert np.allclose(out, 0.1 + 2 * 0.5 * (1.0 * 0.2 * 0.8))


def test_central_bootstrap_is_midpoint_half_step() -> None:
    """Without a previous state CENTRAL takes an explicit midpoint step."""
    model = get_model("logistic")
    y0 = np.array([0.2])
    dt, r = 0.5, 1.0
    out = FiniteDifferenceStepper(Scheme.CENTRAL).step(model, 0.0, y0, dt, {"r": r})

    f0 = r * 0.2 * 0.8
    y_half = 0.2 + 0.5 * dt * f0
    expected = 0.2 + dt * r * y_half * (1.0 - y_half)
    assert np.allclose(out, [expected])


def test_central_previous_shape_mismatch_raises() -> None:
    """A previous state of the wrong shape is rejected."""
    with pytest.raises(ValueError, match="does not match"):
        FiniteDifferenceStepper(Scheme.CENTRAL).step(
            get_model("sir"),
            0.0,
            np.array([0.9, 0.1, 0.0]),
            0.1,
            {"beta": 0.5, "mu": 0.1, "A": 1.0},
            previous=np.array([1.0]),
        )


@pytest.mark.parametrize("scheme", list(Scheme))
def test_seir_step_preserves_total(
    scheme: Scheme, seir_params: SEIRParams, seir_y0: np.ndarray
) -> None:
    """Every scheme moves mass between compartments without creating any."""
    out = FiniteDifferenceStepper(scheme).step(
        get_model("seir"), 0.0, seir_y0, 0.5, seir_params
    )
    assert out.shape == (4,)
    assert np.isclose(out.sum(), seir_y0.sum(), rtol=0.0, atol=1e-12)
    assert out[0] < seir_y0[0]


def test_scheme_override_per_call(sir_params: SIRParams, sir_y0: np.ndarray) -> None:
    """The scheme argument overrides the stepper default for one call."""
    model = get_model("sir")
    stepper = FiniteDifferenceStepper(Scheme.FORWARD)
    bootstrap = stepper.step(model, 0.0, sir_y0, 1.0, sir_params, "central")
    forward = stepper.step(model, 0.0, sir_y0, 1.0, sir_params)
    assert not np.array_equal(bootstrap, forward)


# -------------------------------------------------------------------
# Errors / instability
# -------------------------------------------------------------------


@pytest.mark.parametrize("dt", [0.0, -1.0, float("nan"), float("inf")])
def test_invalid_step_size_raises(dt: float) -> None:
    """dt <= 0 or non-finite raises InvalidStepSize."""
    with pytest.raises(InvalidStepSize):
        FiniteDifferenceStepper().step(get_model("logistic"), 0.0, [0.5], dt, {"r": 1})


def test_missing_parameter_raises() -> None:
    """Raw parameters are validated before stepping."""
    with pytest.raises(InvalidParameters):
        FiniteDifferenceStepper().step(get_model("logistic"), 0.0, [0.5], 0.1, {})


def test_large_step_is_not_clamped() -> None:
    """A huge dt yields out-of-bounds values without raising."""
    out = FiniteDifferenceStepper().step(
        get_model("logistic"), 0.0, np.array([0.5]), 100.0, {"r": 1.0}
    )
    assert out[0] > 1.0


def test_overflow_is_returned_not_raised() -> None:
    """Overflow produces non-finite output rather than an exception."""
    out = FiniteDifferenceStepper().step(
        get_model("logistic"), 0.0, np.array([1e200]), 1.0, {"r": 1.0}
    )
    assert not np.all(np.isfinite(out))


def test_step_is_deterministic(sir_params: SIRParams, sir_y0: np.ndarray) -> None:
    """Identical inputs give bit-identical outputs."""
    model = get_model("sir")
    stepper = FiniteDifferenceStepper(Scheme.CENTRAL)
    a = stepper.step(model, 0.0, sir_y0, 0.3, sir_params)
    b = stepper.step(model, 0.0, sir_y0, 0.3, sir_params)
    assert np.array_equal(a, b)


# -------------------------------------------------------------------
# StateHistory
# -------------------------------------------------------------------


def test_state_history_ring_buffer() -> None:
    """The buffer keeps exactly the two most recent states."""
    h = StateHistory()
    assert len(h) == 0
    with pytest.raises(RuntimeError, match="empty"):
        _ = h.current

    h.push([1.0])
    assert len(h) == 1
    assert h.previous is None
    assert np.array_equal(h.current, [1.0])

    h.push([2.0])
    h.push([3.0])
    assert len(h) == 2
    assert np.array_equal(h.previous, [2.0])
    assert np.array_equal(h.current, [3.0])

    h.clear()
    assert len(h) == 0


def test_state_history_copies_pushed_states() -> None:
    """Pushed arrays are copied, so later mutation does not leak in."""
    h = StateHistory()
    y = np.array([1.0])
    h.push(y)
    y[0] = 9.0
    assert np.array_equal(h.current, [1.0])


def test_advance_bootstraps_then_uses_history() -> None:
    """advance() bootstraps CENTRAL once, then applies the two-state formula."""
    model = get_model("logistic")
    params = {"r": 0.5}
    stepper = FiniteDifferenceStepper(Scheme.CENTRAL)
    y0 = np.array([0.1])

    h = StateHistory()
    h.push(y0)
    y1 = stepper.advance(model, 0.0, h, 1.0, params)
    assert np.array_equal(y1, stepper.step(model, 0.0, y0, 1.0, params))

    y2 = stepper.advance(model, 1.0, h, 1.0, params)
    expected = y0 + 2.0 * model.derivative(1.0, y1, params)
    assert np.allclose(y2, expected)
    assert np.array_equal(h.previous, y1)
    assert np.array_equal(h.current, y2)
