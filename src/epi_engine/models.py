# epi_engine/src/epi_engine/models.py
"""Compartmental models and their typed parameter sets.

A model is a pure derivative function ``derivative(t, state, params)`` that
returns one rate per compartment, in the model's fixed compartment order.
Three models are provided:

- ``logistic``: one compartment ``y`` with ``dy/dt = r y (1 - y)``.
- ``sir``: ``[S, I, R]`` with transmission rate ``beta`` and removal rate ``mu``.
- ``seir``: ``[S, E, I, R]`` adding an exposed class left at rate ``gamma``.

Parameters are a tagged variant over :class:`LogisticParams`,
:class:`SIRParams` and :class:`SEIRParams`. They are validated when they are
constructed, so a derivative evaluation never looks a key up by name.

For SIR and SEIR the mixing denominator N is recomputed from the current state
(``N = sum(state)``) rather than read from the ``A`` parameter. ``A`` is the
reference total used for conservation checks. When ``N == 0`` the force of
infection is taken as zero.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, fields
from numbers import Real
from typing import TYPE_CHECKING, Any, ClassVar, Final, Protocol, TypeAlias

import numpy as np

from .errors import raise_invalid_parameters

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray

    FloatArray = NDArray[np.float64]


_NOT_REAL_MSG: Final[str] = "'{key}' must be a real number, got {value!r}"
_NOT_FINITE_MSG: Final[str] = "'{key}' must be finite, got {value!r}"
_NOT_POSITIVE_MSG: Final[str] = "'{key}' must be > 0, got {value!r}"
_WRONG_PARAMS_TYPE_MSG: Final[str] = "expected {expected}, got {actual}"
_STATE_LEN_MSG: Final[str] = "state has {actual} value(s); expected {expected}"
_STATE_NOT_FINITE_MSG: Final[str] = "initial state must contain only finite values"
_UNKNOWN_MODEL_MSG: Final[str] = "Unknown model: {name!r}. Choose from {choices}"


# =============================================================================
# Parameters
# =============================================================================


def _as_real(model: str, key: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise_invalid_parameters(
            model, detail=_NOT_REAL_MSG.format(key=key, value=value)
        )
    out = float(value)
    if not math.isfinite(out):
        raise_invalid_parameters(
            model, detail=_NOT_FINITE_MSG.format(key=key, value=value)
        )
    return out


class _ParamsMixin:
    """Shared construction helpers for the typed parameter dataclasses."""

    model_name: ClassVar[str]

    def _validate(self) -> None:
        for f in fields(self):  # type: ignore[arg-type]
            value = _as_real(self.model_name, f.name, getattr(self, f.name))
            object.__setattr__(self, f.name, value)

    @classmethod
    def keys(cls) -> tuple[str, ...]:
        """Return the parameter names, in declaration order."""
        return tuple(f.name for f in fields(cls))  # type: ignore[arg-type]

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, object]) -> Any:  # noqa: ANN401
        """Build a typed parameter set from a flat key-value mapping.

        Args:
            mapping: Flat mapping such as ``{"beta": 0.5, "mu": 0.1, "A": 1.0}``.

        Returns:
            Instance of the concrete parameter class.

        Raises:
            InvalidParameters: if keys are missing or unknown, or a value is
                not a finite real number.
        """
        if not isinstance(mapping, Mapping):
            raise_invalid_parameters(
                cls.model_name,
                detail=f"expected a mapping, got {type(mapping).__name__}",
            )
        expected = cls.keys()
        missing = [k for k in expected if k not in mapping]
        unexpected = [str(k) for k in mapping if k not in expected]
        if missing or unexpected:
            raise_invalid_parameters(
                cls.model_name, missing=missing, unexpected=unexpected
            )
        return cls(**{k: mapping[k] for k in expected})

    def as_dict(self) -> dict[str, float]:
        """Return the parameters as a plain ``{name: value}`` dict."""
        return {k: getattr(self, k) for k in self.keys()}


@dataclass(frozen=True, slots=True)
class LogisticParams(_ParamsMixin):
    """Parameters of the logistic growth model.

    Attributes:
        r: Intrinsic growth rate.
    """

    model_name: ClassVar[str] = "logistic"

    r: float

    def __post_init__(self) -> None:
        self._validate()


@dataclass(frozen=True, slots=True)
class SIRParams(_ParamsMixin):
    """Parameters of the SIR model.

    Attributes:
        beta: Transmission rate.
        mu: Removal (recovery) rate.
        A: Reference total population, conserved by the dynamics.
    """

    model_name: ClassVar[str] = "sir"

    beta: float
    mu: float
    A: float  # noqa: N815

    def __post_init__(self) -> None:
        self._validate()
        if self.A <= 0.0:
            raise_invalid_parameters(
                self.model_name, detail=_NOT_POSITIVE_MSG.format(key="A", value=self.A)
            )


@dataclass(frozen=True, slots=True)
class SEIRParams(_ParamsMixin):
    """Parameters of the SEIR model.

    Attributes:
        beta: Transmission rate.
        gamma: Rate of progression from exposed to infectious.
        mu: Removal (recovery) rate.
        A: Reference total population, conserved by the dynamics.
    """

    model_name: ClassVar[str] = "seir"

    beta: float
    gamma: float
    mu: float
    A: float  # noqa: N815

    def __post_init__(self) -> None:
        self._validate()
        if self.A <= 0.0:
            raise_invalid_parameters(
                self.model_name, detail=_NOT_POSITIVE_MSG.format(key="A", value=self.A)
            )


Parameters: TypeAlias = LogisticParams | SIRParams | SEIRParams
ParamsLike: TypeAlias = Parameters | Mapping[str, object]


# =============================================================================
# Model protocol and shared base
# =============================================================================


class Model(Protocol):
    """Interface every compartmental model satisfies."""

    name: str
    compartments: tuple[str, ...]
    params_type: type[Parameters]
    conservative: bool

    def parameters(self, params: ParamsLike) -> Parameters:
        """Coerce raw input into this model's typed parameters."""
        ...

    def initial_state(self, values: Mapping[str, float] | ArrayLike) -> FloatArray:
        """Validate an initial state and return it in compartment order."""
        ...

    def derivative(
        self, t: float, state: ArrayLike, params: ParamsLike
    ) -> FloatArray:
        """Return d(state)/dt at (t, state)."""
        ...


class _BaseModel:
    name: str = ""
    compartments: tuple[str, ...] = ()
    params_type: type[Parameters]
    conservative: bool = False

    @property
    def n_compartments(self) -> int:
        """Number of compartments."""
        return len(self.compartments)

    def parameters(self, params: ParamsLike) -> Parameters:
        """Coerce raw input into this model's typed parameters.

        Args:
            params: Typed parameters or a flat mapping.

        Returns:
            Validated typed parameters.

        Raises:
            InvalidParameters: if the input does not describe valid parameters
                for this model.
        """
        if isinstance(params, self.params_type):
            return params
        if isinstance(params, (LogisticParams, SIRParams, SEIRParams)):
            raise_invalid_parameters(
                self.name,
                detail=_WRONG_PARAMS_TYPE_MSG.format(
                    expected=self.params_type.__name__,
                    actual=type(params).__name__,
                ),
            )
        return self.params_type.from_mapping(params)

    def initial_state(self, values: Mapping[str, float] | ArrayLike) -> FloatArray:
        """Validate an initial state and return it in compartment order.

        Args:
            values: Either a ``{compartment: value}`` mapping or a sequence in
                compartment order.

        Returns:
            1D float64 array of length ``n_compartments``.

        Raises:
            InvalidParameters: if compartments are missing, unknown, of the
                wrong count, or non-finite.
        """
        if isinstance(values, Mapping):
            missing = [c for c in self.compartments if c not in values]
            unexpected = [str(k) for k in values if k not in self.compartments]
            if missing or unexpected:
                raise_invalid_parameters(
                    self.name, missing=missing, unexpected=unexpected
                )
            arr = np.array([values[c] for c in self.compartments], dtype=np.float64)
        else:
            arr = np.array(values, dtype=np.float64).reshape(-1)
            if arr.size != self.n_compartments:
                raise_invalid_parameters(
                    self.name,
                    detail=_STATE_LEN_MSG.format(
                        actual=arr.size, expected=self.n_compartments
                    ),
                )
        if not np.all(np.isfinite(arr)):
            raise_invalid_parameters(self.name, detail=_STATE_NOT_FINITE_MSG)
        return arr

    def derivative(self, t: float, state: ArrayLike, params: ParamsLike) -> FloatArray:
        """Return d(state)/dt at (t, state).

        Args:
            t: Current time.
            state: 1D state vector in compartment order.
            params: Typed parameters or a flat mapping.

        Returns:
            1D float64 array of rates, one per compartment.
        """
        typed = self.parameters(params)
        y = np.asarray(state, dtype=np.float64)
        return self._rates(t, y, typed)

    def _rates(self, t: float, y: FloatArray, p: Any) -> FloatArray:  # noqa: ANN401
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(compartments={self.compartments!r})"


def _force_of_infection(beta: float, infectious: float, total: float) -> float:
    if total == 0.0:
        return 0.0
    return beta * infectious / total


# =============================================================================
# Concrete models
# =============================================================================


class LogisticModel(_BaseModel):
    """Logistic growth: ``dy/dt = r y (1 - y)``."""

    name = "logistic"
    compartments = ("y",)
    params_type = LogisticParams
    conservative = False

    def _rates(self, t: float, y: FloatArray, p: LogisticParams) -> FloatArray:  # noqa: ARG002
        return np.array([p.r * y[0] * (1.0 - y[0])], dtype=np.float64)


class SIRModel(_BaseModel):
    """Susceptible-Infectious-Removed model with state-recomputed total."""

    name = "sir"
    compartments = ("S", "I", "R")
    params_type = SIRParams
    conservative = True

    def _rates(self, t: float, y: FloatArray, p: SIRParams) -> FloatArray:  # noqa: ARG002
        s, i, _r = y
        new_inf = _force_of_infection(p.beta, i, float(y.sum())) * s
        removal = p.mu * i
        return np.array([-new_inf, new_inf - removal, removal], dtype=np.float64)


class SEIRModel(_BaseModel):
    """Susceptible-Exposed-Infectious-Removed model with state-recomputed total."""

    name = "seir"
    compartments = ("S", "E", "I", "R")
    params_type = SEIRParams
    conservative = True

    def _rates(self, t: float, y: FloatArray, p: SEIRParams) -> FloatArray:  # noqa: ARG002
        s, e, i, _r = y
        new_inf = _force_of_infection(p.beta, i, float(y.sum())) * s
        onset = p.gamma * e
        removal = p.mu * i
        return np.array(
            [-new_inf, new_inf - onset, onset - removal, removal], dtype=np.float64
        )


# =============================================================================
# Registry
# =============================================================================

_MODELS: Final[dict[str, _BaseModel]] = {
    "logistic": LogisticModel(),
    "sir": SIRModel(),
    "seir": SEIRModel(),
}


def available_models() -> tuple[str, ...]:
    """Return the registered model names."""
    return tuple(_MODELS)


def get_model(name: str) -> Model:
    """Look up a registered model by name (case-insensitive).

    Args:
        name: Model name, one of :func:`available_models`.

    Returns:
        The shared, stateless model instance.

    Raises:
        ValueError: if the name is not registered.
    """
    key = str(name).strip().lower()
    if key not in _MODELS:
        raise ValueError(
            _UNKNOWN_MODEL_MSG.format(name=name, choices=list(_MODELS))
        )
    return _MODELS[key]


def reference_total(params: Parameters) -> float | None:
    """Return the conserved total ``A`` for conservative models, else None."""
    return getattr(params, "A", None)
