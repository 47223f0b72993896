# tests/test_trajectory.py
"""Unit tests for grids, StateVector, Trajectory and resampling."""

from __future__ import annotations

import math

import numpy as np
import pytest

from epi_engine.errors import InvalidGrid, InvalidStepSize
from epi_engine.trajectory import (
    FixedStepGrid,
    OutputGrid,
    StateVector,
    Trajectory,
    conservation_drift,
    resample,
    validate_times,
)

# -------------------------------------------------------------------
# Grids
# -------------------------------------------------------------------


def test_fixed_step_grid_times_have_no_drift() -> None:
    """Grid times are t0 + k*dt, not a running sum."""
    grid = FixedStepGrid(t0=0.0, dt=0.1, steps=1000)
    times = grid.times()
    assert len(grid) == 1001
    assert times.shape == (1001,)
    assert times[0] == 0.0
    assert times[-1] == 0.1 * 1000
    assert np.array_equal(times, 0.1 * np.arange(1001))


def test_fixed_step_grid_zero_steps_is_single_point() -> None:
    """A zero-step grid holds only t0."""
    grid = FixedStepGrid(t0=2.0, dt=1.0, steps=0)
    assert np.array_equal(grid.times(), [2.0])
    assert grid.t_end == 2.0


@pytest.mark.parametrize("dt", [0.0, -0.1, math.inf, math.nan, "abc", True])
def test_fixed_step_grid_invalid_dt_raises(dt: object) -> None:
    """dt must be finite and strictly positive."""
    with pytest.raises(InvalidStepSize):
        FixedStepGrid(t0=0.0, dt=dt, steps=10)  # type: ignore[arg-type]


@pytest.mark.parametrize("steps", [-1, 2.5])
def test_fixed_step_grid_invalid_steps_raises(steps: object) -> None:
    """Step counts must be non-negative integers."""
    with pytest.raises(InvalidGrid):
        FixedStepGrid(t0=0.0, dt=1.0, steps=steps)  # type: ignore[arg-type]


def test_fixed_step_grid_spanning_covers_end() -> None:
    """spanning() reaches or passes t_end with the fewest steps."""
    exact = FixedStepGrid.spanning(0.0, 100.0, 5.0)
    assert exact.steps == 20
    assert exact.t_end == 100.0

    ragged = FixedStepGrid.spanning(0.0, 10.0, 3.0)
    assert ragged.steps == 4
    assert ragged.t_end >= 10.0


def test_output_grid_validation() -> None:
    """OutputGrid accepts increasing times and rejects anything else."""
    grid = OutputGrid([0.0, 0.5, 2.0])
    assert len(grid) == 3
    assert grid.t0 == 0.0
    assert np.array_equal(grid.times(), [0.0, 0.5, 2.0])

    with pytest.raises(InvalidGrid, match="strictly increasing"):
        OutputGrid([0.0, 1.0, 1.0])
    with pytest.raises(InvalidGrid, match="at least one"):
        OutputGrid([])


def test_validate_times_rejects_2d_and_nonfinite() -> None:
    """Only finite 1D sequences are valid grids."""
    with pytest.raises(InvalidGrid, match="1D"):
        validate_times(np.zeros((2, 2)))
    with pytest.raises(InvalidGrid, match="finite"):
        validate_times([0.0, math.inf])


# -------------------------------------------------------------------
# StateVector / Trajectory
# -------------------------------------------------------------------


def _traj() -> Trajectory:
    return Trajectory(
        times=np.array([0.0, 1.0, 2.0]),
        states=np.array([[0.9, 0.1, 0.0], [0.8, 0.15, 0.05], [0.7, 0.2, 0.1]]),
        compartments=("S", "I", "R"),
    )


def test_state_vector_lookup() -> None:
    """StateVector supports name and index lookup."""
    sv = StateVector(time=1.0, values=(0.8, 0.15, 0.05), compartments=("S", "I", "R"))
    assert sv["I"] == 0.15
    assert sv[0] == 0.8
    assert len(sv) == 3
    assert list(sv) == [0.8, 0.15, 0.05]
    assert math.isclose(sv.total(), 1.0)
    with pytest.raises(KeyError):
        sv["E"]


def test_trajectory_is_read_only() -> None:
    """Arrays held by a trajectory cannot be written."""
    traj = _traj()
    with pytest.raises(ValueError, match="read-only"):
        traj.states[0, 0] = 1.0
    with pytest.raises(ValueError, match="read-only"):
        traj.times[0] = 1.0


def test_trajectory_copies_inputs() -> None:
    """Mutating the source arrays does not affect the trajectory."""
    states = np.ones((2, 1))
    traj = Trajectory(times=[0.0, 1.0], states=states, compartments=("y",))
    states[0, 0] = 5.0
    assert traj.states[0, 0] == 1.0


def test_trajectory_shape_mismatch_raises() -> None:
    """States must be (n_times, n_compartments)."""
    with pytest.raises(ValueError, match="does not match"):
        Trajectory(times=[0.0, 1.0], states=np.ones((2, 2)), compartments=("y",))


def test_trajectory_non_increasing_times_raises() -> None:
    """Trajectory times must be strictly increasing."""
    with pytest.raises(InvalidGrid):
        Trajectory(times=[1.0, 0.0], states=np.ones((2, 1)), compartments=("y",))


def test_trajectory_accessors() -> None:
    """column, totals, state_at and iteration agree with the stored table."""
    traj = _traj()
    assert np.array_equal(traj.column("I"), [0.1, 0.15, 0.2])
    assert np.allclose(traj.totals(), 1.0)
    sv = traj.state_at(1)
    assert sv.time == 1.0
    assert sv["R"] == 0.05
    pairs = list(traj)
    assert [t for t, _ in pairs] == [0.0, 1.0, 2.0]
    with pytest.raises(KeyError):
        traj.column("E")


def test_trajectory_tabular_output_time_first() -> None:
    """to_array and to_records put time first, then compartments in order."""
    traj = _traj()
    table = traj.to_array()
    assert table.shape == (3, 4)
    assert np.array_equal(table[:, 0], [0.0, 1.0, 2.0])
    assert np.array_equal(table[:, 1:], traj.states)
    assert traj.columns() == ("time", "S", "I", "R")
    records = traj.to_records()
    assert list(records[0]) == ["time", "S", "I", "R"]
    assert records[2]["R"] == 0.1


def test_trajectory_equality_ignores_metadata() -> None:
    """Trajectories compare by times, states and compartments."""
    a = _traj()
    b = Trajectory(
        times=a.times, states=a.states, compartments=a.compartments, metadata={"x": 1}
    )
    assert a == b


# -------------------------------------------------------------------
# Resampling
# -------------------------------------------------------------------


def test_resample_linear_interpolation() -> None:
    """Values between grid points lie on straight lines."""
    traj = _traj()
    out = resample(traj, [0.5, 1.5])
    assert np.allclose(out.column("S"), [0.85, 0.75])
    assert np.allclose(out.column("R"), [0.025, 0.075])
    assert out.metadata["resampled"] is True


def test_resample_identity_on_native_grid() -> None:
    """Resampling onto the native grid reproduces the data."""
    traj = _traj()
    assert resample(traj, traj.times) == traj


def test_resample_outside_range_raises() -> None:
    """Extrapolation is refused."""
    with pytest.raises(InvalidGrid, match="outside"):
        resample(_traj(), [0.0, 2.5])


def test_conservation_drift() -> None:
    """conservation_drift reports the worst deviation from the total."""
    traj = Trajectory(
        times=[0.0, 1.0],
        states=np.array([[0.5, 0.5], [0.5, 0.6]]),
        compartments=("a", "b"),
    )
    assert math.isclose(conservation_drift(traj, 1.0), 0.1)
