"""Global pytest configuration and shared fixtures for epi_engine."""

from __future__ import annotations

from typing import Final

import numpy as np
import pytest

from epi_engine.models import SEIRParams, SIRParams, get_model

# -----------------------------------------------------------------------------
# Canonical scenarios
# -----------------------------------------------------------------------------

SIR_PARAMS: Final[dict[str, float]] = {"beta": 0.5, "mu": 0.1, "A": 1.0}
SIR_Y0: Final[dict[str, float]] = {"S": 0.99, "I": 0.01, "R": 0.0}

SEIR_PARAMS: Final[dict[str, float]] = {
    "beta": 0.6,
    "gamma": 0.2,
    "mu": 0.1,
    "A": 1.0,
}
SEIR_Y0: Final[dict[str, float]] = {"S": 0.98, "E": 0.01, "I": 0.01, "R": 0.0}


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as running many small steps",
    )


@pytest.fixture(scope="session")
def sir_params() -> SIRParams:
    """Typed parameters for the canonical SIR scenario."""
    return SIRParams(**SIR_PARAMS)


@pytest.fixture(scope="session")
def seir_params() -> SEIRParams:
    """Typed parameters for the canonical SEIR scenario."""
    return SEIRParams(**SEIR_PARAMS)


@pytest.fixture(scope="session")
def sir_y0() -> np.ndarray:
    """Initial SIR state in compartment order."""
    return get_model("sir").initial_state(SIR_Y0)


@pytest.fixture(scope="session")
def seir_y0() -> np.ndarray:
    """Initial SEIR state in compartment order."""
    return get_model("seir").initial_state(SEIR_Y0)
