# tests/ode_engine/test_integrator_plumbing.py
"""Plumbing/contract tests for ode_engine.integrator.

These tests focus on run semantics, *not* accuracy (handled in a separate
accuracy/stability file):

- The time grid is computed by index and lands exactly on t_final; a step size
  that does not divide the interval shortens the final step with a warning.
- t0 == t_final yields a one-entry trace without evaluating the RHS.
- Runs are deterministic.
- Explicit steppers ignore an analytic Jacobian (warning, or ValueError when
  strict); implicit steppers reject AD-valued states.
- Step failures abort with IntegrationAbortedError carrying the last committed
  state, the failing stage, the Newton iteration count and the partial trace.
- Run-plan warnings are attributed to the caller of the engine.
"""

from __future__ import annotations

import warnings
from collections.abc import Callable

import numpy as np
import pytest

from ode_engine.ad import variable
from ode_engine.errors import (
    IntegrationAbortedError,
    NonConvergenceError,
    SingularJacobianError,
    UndefinedArithmeticError,
)
from ode_engine.integrator import Integrator, RunConfig, integrate
from ode_engine.nonlinear import NewtonConfig
from ode_engine.problem import IntegrationTrace, ODEProblem
from ode_engine.steppers import Stepper

ALL_STEPPERS = ["euler", "rk4", "backward-euler", "gl4"]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------


def _counting_rhs() -> tuple[Callable, list[float]]:
    calls: list[float] = []

    def rhs(t: float, y: np.ndarray) -> np.ndarray:
        calls.append(t)
        return -y

    return rhs, calls


# -----------------------------------------------------------------------------
# Time grid
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("stepper", ALL_STEPPERS)
def test_empty_interval_returns_initial_state(stepper: str) -> None:
    """t0 == t_final: a one-entry trace and no RHS evaluations."""
    rhs, calls = _counting_rhs()
    prob = ODEProblem(rhs=rhs, t0=2.0, y0=[1.0, -1.0], t_final=2.0)
    trace = integrate(prob, stepper, 0.1)
    assert len(trace) == 1
    t, y = trace.final
    assert t == 2.0
    assert y.tolist() == [1.0, -1.0]
    assert calls == []


def test_empty_interval_needs_no_step_size(decay_problem) -> None:
    """No step size is required when there is nothing to integrate."""
    trace = integrate(decay_problem(t_final=0.0), "rk4")
    assert len(trace) == 1


def test_times_are_computed_by_index(decay_problem) -> None:
    """t_i = t0 + i h, with the last time exactly t_final."""
    trace = integrate(decay_problem(), "euler", 0.1)
    assert len(trace) == 11
    assert np.array_equal(trace.times[:-1], np.arange(10) * 0.1)
    assert trace.times[-1] == 1.0


def test_non_dividing_step_shortens_last_step(decay_problem) -> None:
    """h = 0.3 on [0, 1]: steps at 0, 0.3, 0.6, 0.9 and a final 0.1 step."""
    with pytest.warns(RuntimeWarning, match="final step is shortened"):
        trace = integrate(decay_problem(), "rk4", 0.3)
    assert len(trace) == 5
    assert trace.times[-1] == 1.0
    assert trace.times[-2] == pytest.approx(0.9)


def test_step_larger_than_interval(decay_problem) -> None:
    """A step longer than the interval becomes a single shortened step."""
    with pytest.warns(RuntimeWarning, match="shortened"):
        trace = integrate(decay_problem(t_final=0.5), "euler", 2.0)
    assert trace.times.tolist() == [0.0, 0.5]
    assert trace.final[1][0] == pytest.approx(0.5)


def test_dividing_step_does_not_warn(decay_problem) -> None:
    """An exact grid emits no warning."""
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        integrate(decay_problem(), "rk4", 0.25)


def test_step_size_resolution_order(decay_problem) -> None:
    """integrate() argument > RunConfig.step_size > problem n_steps."""
    prob = decay_problem(n_steps=4)
    assert len(integrate(prob, "euler")) == 5
    assert len(integrate(prob, "euler", config=RunConfig(step_size=0.5))) == 3
    assert len(integrate(prob, "euler", 0.1, config=RunConfig(step_size=0.5))) == 11


def test_missing_step_size_raises(decay_problem) -> None:
    """A non-empty interval needs a step size from somewhere."""
    with pytest.raises(ValueError, match="step_size"):
        integrate(decay_problem(), "euler")


@pytest.mark.parametrize("h", [0.0, -0.1, float("nan")])
def test_invalid_step_size_raises(decay_problem, h: float) -> None:
    """Step sizes must be positive and finite."""
    with pytest.raises(ValueError, match="positive finite"):
        integrate(decay_problem(), "euler", h)


# -----------------------------------------------------------------------------
# Determinism and configuration
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("stepper", ALL_STEPPERS)
def test_runs_are_deterministic(decay_problem, stepper: str) -> None:
    """Two identical runs give identical traces."""
    prob = decay_problem(k=3.0)
    first = integrate(prob, stepper, 0.05).to_array()
    second = integrate(prob, stepper, 0.05).to_array()
    assert np.array_equal(first, second)


def test_integrator_class_matches_function(decay_problem) -> None:
    """Integrator(problem).run(config) is what integrate() calls."""
    prob = decay_problem()
    cfg = RunConfig(stepper=Stepper.GAUSS_LEGENDRE_4, step_size=0.1)
    via_class = Integrator(prob).run(cfg).to_array()
    via_func = integrate(prob, "gl4", 0.1).to_array()
    assert np.array_equal(via_class, via_func)


def test_integrator_requires_problem() -> None:
    """Integrator only accepts ODEProblem instances."""
    with pytest.raises(TypeError, match="ODEProblem"):
        Integrator("not a problem")  # type: ignore[arg-type]


def test_unknown_stepper_and_predictor(decay_problem) -> None:
    """Configuration errors surface before any step."""
    with pytest.raises(ValueError, match="Unknown stepper"):
        integrate(decay_problem(), "heun", 0.1)
    with pytest.raises(ValueError, match="predictor"):
        integrate(
            decay_problem(),
            "gl4",
            0.1,
            config=RunConfig(predictor="magic"),  # type: ignore[arg-type]
        )


def test_explicit_stepper_ignores_jacobian_with_warning(decay_problem) -> None:
    """An analytic Jacobian is unused by explicit steppers."""
    prob = decay_problem(jacobian=lambda _t, _y: np.array([[-1.0]]))
    with pytest.warns(RuntimeWarning, match="jacobian is ignored"):
        integrate(prob, "rk4", 0.1)


def test_plan_warnings_point_at_the_caller(decay_problem) -> None:
    """Run-plan warnings are attributed to the line calling the engine."""
    prob = decay_problem(jacobian=lambda _t, _y: np.array([[-1.0]]))
    with pytest.warns(RuntimeWarning, match="jacobian is ignored") as record:
        integrate(prob, "rk4", 0.1)
    assert record[0].filename == __file__

    with pytest.warns(RuntimeWarning, match="shortened") as record:
        Integrator(decay_problem()).run(RunConfig(step_size=0.3))
    assert record[0].filename == __file__


def test_explicit_stepper_with_jacobian_strict_raises(decay_problem) -> None:
    """strict=True turns the ignored-Jacobian warning into an error."""
    prob = decay_problem(jacobian=lambda _t, _y: np.array([[-1.0]]))
    with pytest.raises(ValueError, match="jacobian is ignored"):
        integrate(prob, "euler", 0.1, config=RunConfig(strict=True))


def test_implicit_stepper_uses_analytic_jacobian(decay_problem) -> None:
    """Analytic and AD Jacobians lead to the same implicit trajectory."""
    calls: list[float] = []

    def jac(t: float, _y: np.ndarray) -> np.ndarray:
        calls.append(t)
        return np.array([[-1.0]])

    with_jac = integrate(decay_problem(jacobian=jac), "backward-euler", 0.1)
    with_ad = integrate(decay_problem(), "backward-euler", 0.1)
    assert calls
    assert np.allclose(with_jac.to_array(), with_ad.to_array(), rtol=0.0, atol=1e-14)


def test_implicit_stepper_rejects_ad_state() -> None:
    """Implicit steppers require plain float states."""
    prob = ODEProblem(
        rhs=lambda _t, y: -y, t0=0.0, y0=[variable(1.0, 1)], t_final=1.0
    )
    with pytest.raises(TypeError, match="implicit"):
        integrate(prob, "backward-euler", 0.1)


@pytest.mark.parametrize("stepper", ["euler", "rk4"])
def test_explicit_ad_trajectory_tracks_sensitivity(stepper: str) -> None:
    """For y' = -y with y0 = 1, dy(t)/dy0 equals y(t) at every step."""
    prob = ODEProblem(
        rhs=lambda _t, y: -y, t0=0.0, y0=[variable(1.0, 1)], t_final=1.0
    )
    trace = integrate(prob, stepper, 0.1)
    assert trace.dtype == object
    values = trace.values()[:, 0]
    sens = trace.taylor_coefficients(1)[:, 0]
    assert np.allclose(sens, values, rtol=1e-14)
    assert trace.to_array().shape == (11, 2)


@pytest.mark.parametrize("stepper", ["euler", "rk4"])
def test_mixed_ad_state_through_numpy_functions(stepper: str) -> None:
    """One seeded entry next to a plain one runs through np.sin and np.exp."""

    def rhs(_t: float, y: np.ndarray) -> np.ndarray:
        return -np.sin(y) * np.exp(-y)

    def run(y0: list) -> IntegrationTrace:
        prob = ODEProblem(rhs=rhs, t0=0.0, y0=y0, t_final=1.0)
        return integrate(prob, stepper, 0.1)

    trace = run([variable(1.0, 1), 2.0])
    assert np.allclose(trace.values(), run([1.0, 2.0]).states, rtol=1e-14)
    sens = trace.taylor_coefficients(1)
    assert np.all(sens[:, 1] == 0.0)

    eps = 1e-6
    upper = run([1.0 + eps, 2.0]).final[1][0]
    lower = run([1.0 - eps, 2.0]).final[1][0]
    assert sens[-1, 0] == pytest.approx((upper - lower) / (2.0 * eps), rel=1e-6)


def test_rhs_shape_error_is_not_wrapped(decay_problem) -> None:
    """Shape mistakes in the RHS are caller errors, raised as ValueError."""
    prob = ODEProblem(
        rhs=lambda _t, _y: np.zeros(2), t0=0.0, y0=[1.0], t_final=1.0
    )
    with pytest.raises(ValueError, match="rhs shape"):
        integrate(prob, "euler", 0.1)


# -----------------------------------------------------------------------------
# Failure semantics
# -----------------------------------------------------------------------------


def test_rhs_failure_aborts_with_context() -> None:
    """A non-finite RHS at t = 0.5 aborts step 5 after committing t = 0.5."""

    def rhs(t: float, y: np.ndarray) -> np.ndarray:
        if t >= 0.5 - 1e-12:
            return np.array([np.inf])
        return -y

    prob = ODEProblem(rhs=rhs, t0=0.0, y0=[1.0], t_final=1.0)
    match = "during stage 'rhs'"
    with pytest.raises(IntegrationAbortedError, match=match) as excinfo:
        integrate(prob, "euler", 0.1)

    err = excinfo.value
    assert err.step_index == 5
    assert err.stage == "rhs"
    assert err.stepper == "euler"
    assert err.t == pytest.approx(0.5)
    assert err.y[0] == pytest.approx(0.9**5)
    assert len(err.trace) == 6
    assert err.trace.final[0] == err.t
    assert err.iterations is None
    assert isinstance(err.__cause__, UndefinedArithmeticError)


def test_newton_nonconvergence_aborts_first_step() -> None:
    """One Newton update cannot solve a nonlinear residual: the run aborts."""
    prob = ODEProblem(rhs=lambda _t, y: -(y**3), t0=0.0, y0=[1.0], t_final=1.0)
    cfg = RunConfig(newton=NewtonConfig(max_iter=1))
    with pytest.raises(IntegrationAbortedError) as excinfo:
        integrate(prob, "backward-euler", 0.5, config=cfg)

    err = excinfo.value
    assert err.step_index == 0
    assert err.stage == "newton"
    assert err.t == 0.0
    assert len(err.trace) == 1
    assert err.iterations == 1
    assert "after 1 Newton iterations" in str(err)
    assert isinstance(err.__cause__, NonConvergenceError)


def test_singular_newton_matrix_aborts() -> None:
    """y' = y with h = 1 makes I - h J singular for backward Euler."""
    prob = ODEProblem(rhs=lambda _t, y: y, t0=0.0, y0=[1.0], t_final=2.0)
    match = "SingularJacobianError"
    with pytest.raises(IntegrationAbortedError, match=match) as excinfo:
        integrate(prob, "backward-euler", 1.0)
    assert excinfo.value.stage == "newton"
    assert excinfo.value.iterations == 0
    assert isinstance(excinfo.value.__cause__, SingularJacobianError)


def test_partial_trace_is_usable_for_restart() -> None:
    """The aborted trace can seed a new run from the last committed state."""

    def rhs(t: float, y: np.ndarray) -> np.ndarray:
        if t > 0.25:
            return np.array([np.nan])
        return -y

    prob = ODEProblem(rhs=rhs, t0=0.0, y0=[1.0], t_final=1.0)
    with pytest.raises(IntegrationAbortedError) as excinfo:
        integrate(prob, "rk4", 0.1)

    t_last, y_last = excinfo.value.trace.final
    restart = ODEProblem(rhs=lambda _t, y: -y, t0=t_last, y0=y_last, t_final=1.0)
    trace = integrate(restart, "rk4", 0.1)
    assert trace.times[0] == t_last
    assert trace.times[-1] == 1.0
