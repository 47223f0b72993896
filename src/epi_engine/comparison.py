# epi_engine/src/epi_engine/comparison.py
"""Comparison harness: finite-difference runs against an adaptive reference.

For one model, parameter set and initial state, :class:`ComparisonHarness`:

1. solves the adaptive reference directly at ``shared_times``;
2. runs the finite-difference simulator once per requested ``(scheme, dt)``
   on its own uniform grid starting at ``shared_times[0]``;
3. resamples each finite-difference trajectory onto ``shared_times`` by
   linear interpolation (never re-integration);
4. reports per-compartment, per-time differences against the reference.

Reports are ordered by ``shared_times`` and by the model's compartment order.
A finite-difference run that blows up is still reported (with inf/nan
entries); it triggers a RuntimeWarning rather than an error.
"""

from __future__ import annotations

import logging
import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, Literal, NamedTuple

import numpy as np

from .adaptive import AdaptiveIntegrator
from .errors import raise_invalid_grid
from .simulator import Simulator
from .stepper import FiniteDifferenceStepper, Scheme
from .trajectory import (
    FixedStepGrid,
    Trajectory,
    resample,
    validate_step_size,
    validate_times,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

    from numpy.typing import ArrayLike, NDArray

    from .models import Model, Parameters, ParamsLike

    FloatArray = NDArray[np.float64]

logger = logging.getLogger(__name__)

DivergenceKind = Literal["absolute", "relative"]

_COMPARTMENTS_MISMATCH_MSG: Final[str] = (
    "compartment order differs: {actual} vs reference {expected}"
)
_TIMES_MISMATCH_MSG: Final[str] = (
    "time grids differ; resample the candidate onto the reference times first"
)
_NO_RUNS_MSG: Final[str] = "schemes_and_dts must name at least one (scheme, dt)"
_UNKNOWN_KIND_MSG: Final[str] = "Unknown divergence kind: {kind!r}"
_NONFINITE_RUN_MSG: Final[str] = (
    "Finite-difference run (scheme={scheme}, dt={dt:g}) produced non-finite "
    "values; its divergence report contains inf/nan entries."
)

# Floor on |reference| for relative divergence.
RELATIVE_FLOOR: Final[float] = 1e-12


class RunKey(NamedTuple):
    """Identifies one finite-difference run in a comparison."""

    scheme: Scheme
    dt: float

    @property
    def label(self) -> str:
        """Readable run label, e.g. ``forward@dt=0.1``."""
        return f"{self.scheme.value}@dt={self.dt:g}"


# =============================================================================
# DivergenceReport
# =============================================================================


@dataclass(frozen=True, eq=False)
class DivergenceReport:
    """Per-compartment, per-time differences between two trajectories.

    Attributes:
        times: Shared time grid.
        compartments: Compartment names in model order.
        values: Array of shape ``(len(times), len(compartments))``.
        kind: ``"absolute"`` or ``"relative"``.
        label: Description of the candidate run.
    """

    times: FloatArray
    compartments: tuple[str, ...]
    values: FloatArray
    kind: DivergenceKind = "absolute"
    label: str = ""

    def __post_init__(self) -> None:
        for name in ("times", "values"):
            arr = np.array(getattr(self, name), dtype=np.float64, copy=True)
            arr.flags.writeable = False
            object.__setattr__(self, name, arr)

    def __getitem__(self, compartment: str) -> list[tuple[float, float]]:
        idx = self.compartments.index(compartment)
        return [
            (float(t), float(v))
            for t, v in zip(self.times, self.values[:, idx], strict=True)
        ]

    def __iter__(self) -> Iterator[str]:
        return iter(self.compartments)

    def series(self, compartment: str) -> FloatArray:
        """Return the difference series for one compartment."""
        return self.values[:, self.compartments.index(compartment)]

    def max(self) -> float:
        """Largest difference over all times and compartments (nan-propagating)."""
        return float(np.max(self.values))

    def max_by_compartment(self) -> dict[str, float]:
        """Largest difference per compartment."""
        return {
            c: float(np.max(self.values[:, j]))
            for j, c in enumerate(self.compartments)
        }

    def as_mapping(self) -> dict[str, list[tuple[float, float]]]:
        """Return ``{compartment: [(time, difference), ...]}``."""
        return {c: self[c] for c in self.compartments}


def divergence(
    candidate: Trajectory,
    reference: Trajectory,
    *,
    kind: DivergenceKind = "absolute",
    label: str = "",
) -> DivergenceReport:
    """Compute pointwise differences between two trajectories.

    Args:
        candidate: Trajectory under test.
        reference: Reference ("ground truth") trajectory.
        kind: ``"absolute"`` for ``|c - r|``; ``"relative"`` for
            ``|c - r| / max(|r|, RELATIVE_FLOOR)``.
        label: Report label.

    Returns:
        DivergenceReport on the shared time grid.

    Raises:
        InvalidGrid: if compartments or time grids differ.
        ValueError: if ``kind`` is unknown.
    """
    if candidate.compartments != reference.compartments:
        raise_invalid_grid(
            name="candidate",
            reason=_COMPARTMENTS_MISMATCH_MSG.format(
                actual=candidate.compartments, expected=reference.compartments
            ),
        )
    if candidate.times.shape != reference.times.shape or not np.array_equal(
        candidate.times, reference.times
    ):
        raise_invalid_grid(name="candidate", reason=_TIMES_MISMATCH_MSG)

    with np.errstate(over="ignore", invalid="ignore"):
        diff = np.abs(candidate.states - reference.states)
        if kind == "relative":
            diff = diff / np.maximum(np.abs(reference.states), RELATIVE_FLOOR)
        elif kind != "absolute":
            raise ValueError(_UNKNOWN_KIND_MSG.format(kind=kind))

    return DivergenceReport(
        times=reference.times,
        compartments=reference.compartments,
        values=diff,
        kind=kind,
        label=label,
    )


# =============================================================================
# ComparisonHarness
# =============================================================================


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of :meth:`ComparisonHarness.compare`.

    Attributes:
        reference: Adaptive reference trajectory at the shared times.
        runs: Resampled finite-difference trajectories, in request order.
        reports: Divergence of each run against the reference, in request order.
    """

    reference: Trajectory
    runs: dict[RunKey, Trajectory] = field(default_factory=dict)
    reports: dict[RunKey, DivergenceReport] = field(default_factory=dict)

    def max_divergence(self) -> dict[RunKey, float]:
        """Largest divergence per run."""
        return {key: report.max() for key, report in self.reports.items()}


def _normalize_runs(
    schemes_and_dts: Iterable[tuple[Scheme | str, float]],
) -> list[RunKey]:
    keys: list[RunKey] = []
    for scheme, dt in schemes_and_dts:
        key = RunKey(Scheme.parse(scheme), validate_step_size(dt))
        if key not in keys:
            keys.append(key)
    if not keys:
        raise ValueError(_NO_RUNS_MSG)
    return keys


class ComparisonHarness:
    """Run both integration strategies and measure their divergence."""

    def __init__(
        self,
        simulator: Simulator | None = None,
        integrator: AdaptiveIntegrator | None = None,
    ) -> None:
        """
        Initialize ComparisonHarness.

        Args:
            simulator: Simulator used for finite-difference runs.
            integrator: Adaptive reference integrator.
        """
        self.simulator = simulator or Simulator()
        self.integrator = integrator or AdaptiveIntegrator()

    def compare(  # noqa: PLR0913
        self,
        model: Model,
        params: ParamsLike,
        initial_state: Mapping[str, float] | ArrayLike,
        shared_times: ArrayLike,
        schemes_and_dts: Iterable[tuple[Scheme | str, float]],
        *,
        kind: DivergenceKind = "absolute",
        max_workers: int | None = None,
    ) -> ComparisonResult:
        """Compare finite-difference runs against the adaptive reference.

        Args:
            model: Model providing the derivative.
            params: Typed parameters or a flat mapping.
            initial_state: State at ``shared_times[0]``.
            shared_times: Strictly increasing times all results are sampled at.
            schemes_and_dts: ``(scheme, dt)`` pairs; duplicates are run once.
            kind: Divergence kind (``"absolute"`` or ``"relative"``).
            max_workers: If > 1, run the finite-difference runs in a thread
                pool. Results are merged in request order either way.

        Returns:
            ComparisonResult with the reference, the resampled runs and their
            reports.

        Raises:
            InvalidParameters: if params or initial state are invalid.
            InvalidGrid: if shared_times is invalid.
            InvalidStepSize: if any dt is not finite and > 0.
            IntegrationFailure: if the adaptive reference fails.
        """
        if kind not in ("absolute", "relative"):
            raise ValueError(_UNKNOWN_KIND_MSG.format(kind=kind))
        typed = model.parameters(params)
        y0 = model.initial_state(initial_state)
        times = validate_times(shared_times, name="shared_times")
        keys = _normalize_runs(schemes_and_dts)

        logger.info(
            "Comparing %d finite-difference run(s) against adaptive reference "
            "for model=%s over [%g, %g]",
            len(keys),
            model.name,
            times[0],
            times[-1],
        )
        reference = self.integrator.solve(model, typed, y0, float(times[0]), times)

        def run_one(key: RunKey) -> Trajectory:
            return self._run_resampled(model, typed, y0, times, key)

        if max_workers is not None and max_workers > 1 and len(keys) > 1:
            with ThreadPoolExecutor(max_workers=max_workers) as pool:
                trajectories = list(pool.map(run_one, keys))
        else:
            trajectories = [run_one(key) for key in keys]

        result = ComparisonResult(reference=reference)
        for key, traj in zip(keys, trajectories, strict=True):
            if not np.all(np.isfinite(traj.states)):
                warnings.warn(
                    _NONFINITE_RUN_MSG.format(scheme=key.scheme.value, dt=key.dt),
                    RuntimeWarning,
                    stacklevel=2,
                )
            result.runs[key] = traj
            result.reports[key] = divergence(
                traj, reference, kind=kind, label=key.label
            )
        return result

    def _run_resampled(
        self,
        model: Model,
        params: Parameters,
        y0: FloatArray,
        times: FloatArray,
        key: RunKey,
    ) -> Trajectory:
        grid = FixedStepGrid.spanning(float(times[0]), float(times[-1]), key.dt)
        native = self.simulator.run(
            model, params, y0, grid, FiniteDifferenceStepper(key.scheme)
        )
        if native.times.shape == times.shape and np.array_equal(native.times, times):
            return native
        return resample(native, times)
