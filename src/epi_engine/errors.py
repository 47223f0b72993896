# epi_engine/src/epi_engine/errors.py
"""Error types and message helpers for epi_engine.

This module centralizes:
- explicit error classes, one per failure kind the engine can detect, and
- small helpers that raise them with standardized, actionable messages.

All errors are raised synchronously at the call that detects them. Nothing in
the engine retries; retrying (for example with a smaller dt) is caller policy.
Numerical instability is not an error and never raises.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NoReturn

if TYPE_CHECKING:
    from collections.abc import Iterable


class EpiEngineError(Exception):
    """Base exception for all epi_engine errors."""


class InvalidParameters(EpiEngineError, ValueError):  # noqa: N818
    """Raised when a parameter set is missing keys or holds malformed values."""


class InvalidStepSize(EpiEngineError, ValueError):  # noqa: N818
    """Raised when a step size is non-positive or non-finite."""


class InvalidGrid(EpiEngineError, ValueError):  # noqa: N818
    """Raised when a time grid is empty, non-increasing or non-finite."""


class IntegrationFailure(EpiEngineError, RuntimeError):  # noqa: N818
    """Raised when the adaptive solver fails or yields non-finite output."""


def raise_invalid_parameters(
    model: str,
    *,
    missing: Iterable[str] | None = None,
    unexpected: Iterable[str] | None = None,
    detail: str | None = None,
) -> NoReturn:
    """Raise a standardized InvalidParameters error.

    Args:
        model: Name of the model the parameters were meant for.
        missing: Required keys that are absent.
        unexpected: Keys that the model does not recognise.
        detail: Optional additional context.

    Raises:
        InvalidParameters: Always.
    """
    parts: list[str] = [f"Invalid parameters for model '{model}'."]
    missing_list = sorted(set(missing or ()))
    unexpected_list = sorted(set(unexpected or ()))
    if missing_list:
        parts.append(f"Missing required key(s): {missing_list}.")
    if unexpected_list:
        parts.append(f"Unexpected key(s): {unexpected_list}.")
    if detail:
        parts.append(f"Detail: {detail}")
    raise InvalidParameters(" ".join(parts))


def raise_invalid_step_size(dt: object) -> NoReturn:
    """Raise a standardized InvalidStepSize error.

    Args:
        dt: The offending step size.

    Raises:
        InvalidStepSize: Always.
    """
    msg = f"Step size must be a finite number > 0. Got: {dt!r}."
    raise InvalidStepSize(msg)


def raise_invalid_grid(*, name: str, reason: str) -> NoReturn:
    """Raise a standardized InvalidGrid error.

    Args:
        name: Name of the grid-like object with the problem.
        reason: Human-readable description of what is wrong.

    Raises:
        InvalidGrid: Always.
    """
    msg = f"{name} is not a valid time grid: {reason}."
    raise InvalidGrid(msg)
