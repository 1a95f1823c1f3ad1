"""Global pytest configuration and shared fixtures for ode_engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np
import pytest

from ode_engine.problem import ODEProblem

if TYPE_CHECKING:
    from numpy.typing import NDArray


# -----------------------------------------------------------------------------
# Marker registration (for local pytest runs)
# -----------------------------------------------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "accuracy: convergence-order and stability checks of the steppers",
    )


# -----------------------------------------------------------------------------
# Shared problems
# -----------------------------------------------------------------------------


def decay_rhs(k: float) -> Callable[[float, NDArray[Any]], NDArray[Any]]:
    """
    Right-hand side of y' = -k y, usable with plain and AD-valued states.

    Args:
        k: Decay rate.

    Returns:
        rhs(t, y).
    """

    def rhs(_t: float, y: NDArray[Any]) -> NDArray[Any]:
        return -k * y

    return rhs


@pytest.fixture(scope="module")
def decay_problem() -> Callable[..., ODEProblem]:
    """
    Factory for y' = -k y, y(0) = y0 on [0, t_final].

    Returns:
        Callable building an ODEProblem from keyword overrides.
    """

    def make(
        *,
        k: float = 1.0,
        y0: float = 1.0,
        t_final: float = 1.0,
        **kwargs: Any,
    ) -> ODEProblem:
        return ODEProblem(
            rhs=decay_rhs(k),
            t0=0.0,
            y0=np.array([y0], dtype=np.float64),
            t_final=t_final,
            **kwargs,
        )

    return make
