# src/ode_engine/integrator.py
"""Fixed-step integration engine.

The engine is a state machine over (t, y): it starts at (t0, y0) from an
:class:`ODEProblem`, repeatedly applies one stepper transition, and commits
each new pair to an :class:`IntegrationTrace` until t_final is reached.

Time grid:
    Step times are computed by index, t_i = t0 + i h, so no rounding error
    accumulates over long runs. When h does not divide t_final - t0, the last
    step is shortened to land exactly on t_final (a RuntimeWarning is emitted).
    t0 == t_final yields a trace holding only the initial state.

Failure semantics:
    A step either commits a full (t, y) pair or the run aborts before committing
    it. Engine errors raised while computing step n+1 (undefined arithmetic in
    f, singular Newton Jacobians, Newton non-convergence) are surfaced as
    IntegrationAbortedError with the last committed state, the partial trace
    and the original error as __cause__. There is no retry and no step-size
    adaptation.

Configuration:
    RunConfig is resolved once per run into a RunPlan (stepper, grid, Newton
    settings); the stepping loop only reads the plan.
"""

from __future__ import annotations

import math
import warnings
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from .errors import IntegrationAbortedError, OdeEngineError
from .nonlinear import NewtonConfig
from .problem import IntegrationTrace, ODEProblem, check_step_size
from .steppers import STEP_FUNCTIONS, Predictor, Stepper, StepFunction, StepIO

if TYPE_CHECKING:
    from .problem import JacobianFunction, StateArray


# =============================================================================
# Errors / messages
# =============================================================================

_AD_IMPLICIT_ERROR = (
    "Stepper '{stepper}' is implicit and requires a float state; "
    "AD-valued initial states are supported by explicit steppers only"
)
_JAC_IGNORED_MSG = (
    "Stepper '{stepper}' is explicit; the analytic jacobian is ignored. "
    "Use 'backward-euler' or 'gl4' to make use of it."
)
_SHORT_FINAL_STEP_MSG = (
    "step_size={h} does not divide the interval [{t0}, {t_final}]; "
    "the final step is shortened to {last:.6g}"
)
_MISSING_STEP_ERROR = (
    "No step size: pass step_size, set RunConfig.step_size, "
    "or give the problem a step_size or n_steps"
)
_PREDICTOR_ERROR = "predictor must be 'previous' or 'explicit'; got {predictor!r}"
_PROBLEM_TYPE_ERROR = "problem must be an ODEProblem; got {typ}"

# Relative slack when deciding whether h divides the interval.
_GRID_RTOL = 1e-9

# Frames between a plan-resolution warning and the caller of integrate()
# or Integrator.run().
_WARN_STACKLEVEL = 5


# =============================================================================
# Configuration
# =============================================================================


@dataclass(slots=True, frozen=True)
class RunConfig:
    """Configuration for Integrator.run.

    Attributes:
        stepper: Stepper or stepper name.
        step_size: Fixed step size; None falls back to the problem's step_size
            or n_steps.
        newton: Newton stopping rule for implicit steppers.
        predictor: Newton seeding rule ("previous" or "explicit").
        strict: If True, an analytic jacobian passed to an explicit stepper
            raises instead of warning.
    """

    stepper: Stepper | str = Stepper.RK4
    step_size: float | None = None
    newton: NewtonConfig = NewtonConfig()
    predictor: Predictor = "previous"
    strict: bool = False


@dataclass(slots=True, frozen=True)
class RunPlan:
    """Resolved execution plan derived from RunConfig.

    Attributes:
        stepper: Resolved stepper.
        step: Transition function for the stepper.
        h: Nominal step size (0.0 for an empty interval).
        n_steps: Number of steps to take.
        jacobian: Analytic df/dy handed to implicit steppers (None otherwise).
        newton: Newton stopping rule.
        predictor: Newton seeding rule.
    """

    stepper: Stepper
    step: StepFunction
    h: float
    n_steps: int
    jacobian: JacobianFunction | None
    newton: NewtonConfig
    predictor: Predictor


# =============================================================================
# Integrator
# =============================================================================


class Integrator:
    """Fixed-step integrator for one ODEProblem."""

    def __init__(self, problem: ODEProblem) -> None:
        """
        Initialize the integrator.

        Args:
            problem: Initial value problem to integrate.

        Raises:
            TypeError: If problem is not an ODEProblem.
        """
        if not isinstance(problem, ODEProblem):
            raise TypeError(_PROBLEM_TYPE_ERROR.format(typ=type(problem).__name__))
        self.problem = problem

    # ------------------------------------------------------------------
    # Plan resolution
    # ------------------------------------------------------------------

    def _resolve_grid(self, step_size: float | None) -> tuple[float, int]:
        """
        Resolve the nominal step size and the number of steps.

        Args:
            step_size: Step size from the run configuration, if any.

        Raises:
            ValueError: If no step size is available for a non-empty interval.

        Returns:
            Tuple (h, n_steps).
        """
        prob = self.problem
        if prob.span == 0.0:
            return 0.0, 0
        if step_size is None and prob.step_size is None and prob.n_steps is None:
            raise ValueError(_MISSING_STEP_ERROR)
        h = check_step_size(prob.resolve_step_size(step_size))

        ratio = prob.span / h
        nearest = round(ratio)
        if nearest >= 1 and abs(ratio - nearest) <= _GRID_RTOL * max(1.0, ratio):
            return h, int(nearest)

        n_steps = math.floor(ratio) + 1
        last = prob.t_final - (prob.t0 + (n_steps - 1) * h)
        warnings.warn(
            _SHORT_FINAL_STEP_MSG.format(
                h=h, t0=prob.t0, t_final=prob.t_final, last=last
            ),
            RuntimeWarning,
            stacklevel=_WARN_STACKLEVEL,
        )
        return h, n_steps

    def _resolve_jacobian(
        self, stepper: Stepper, *, strict: bool
    ) -> JacobianFunction | None:
        """
        Decide which analytic Jacobian (if any) the stepper receives.

        Args:
            stepper: Resolved stepper.
            strict: If True, an ignored analytic Jacobian raises.

        Raises:
            ValueError: If strict and a Jacobian is given to an explicit stepper.

        Returns:
            The problem's Jacobian for implicit steppers, else None.
        """
        jac = self.problem.jacobian
        if stepper.is_implicit or jac is None:
            return jac
        msg = _JAC_IGNORED_MSG.format(stepper=stepper.value)
        if strict:
            raise ValueError(msg)
        warnings.warn(msg, RuntimeWarning, stacklevel=_WARN_STACKLEVEL)
        return None

    def _resolve_run_plan(self, cfg: RunConfig) -> RunPlan:
        """
        Resolve a run configuration into an executable plan.

        Args:
            cfg: Run configuration.

        Raises:
            TypeError: If an implicit stepper is used on an AD-valued state.
            ValueError: If the configuration is invalid.

        Returns:
            Resolved plan.
        """
        stepper = Stepper.parse(cfg.stepper)
        if cfg.predictor not in {"previous", "explicit"}:
            raise ValueError(_PREDICTOR_ERROR.format(predictor=cfg.predictor))
        if stepper.is_implicit and self.problem.is_ad:
            raise TypeError(_AD_IMPLICIT_ERROR.format(stepper=stepper.value))

        h, n_steps = self._resolve_grid(cfg.step_size)
        jacobian = self._resolve_jacobian(stepper, strict=bool(cfg.strict))
        return RunPlan(
            stepper=stepper,
            step=STEP_FUNCTIONS[stepper],
            h=h,
            n_steps=n_steps,
            jacobian=jacobian,
            newton=cfg.newton,
            predictor=cfg.predictor,
        )

    # ------------------------------------------------------------------
    # Stepping loop
    # ------------------------------------------------------------------

    def _time_at(self, plan: RunPlan, i: int) -> float:
        """Grid time of index i (exactly t_final for the last index)."""
        if i >= plan.n_steps:
            return self.problem.t_final
        return self.problem.t0 + i * plan.h

    def _abort(
        self,
        plan: RunPlan,
        io: StepIO,
        step_index: int,
        trace: IntegrationTrace,
        exc: OdeEngineError,
    ) -> IntegrationAbortedError:
        t_last, y_last = trace.final
        return IntegrationAbortedError(
            t=t_last,
            y=y_last,
            step_index=step_index,
            stepper=plan.stepper.value,
            stage=io.stage,
            trace=trace,
            reason=f"{type(exc).__name__}: {exc}",
            iterations=getattr(exc, "iterations", None),
        )

    def run(self, config: RunConfig | None = None) -> IntegrationTrace:
        """
        Integrate the problem from t0 to t_final.

        Args:
            config: Run configuration; defaults to RunConfig().

        Raises:
            IntegrationAbortedError: If a step fails; carries the partial trace.

        Returns:
            Trace of every committed (t, y) pair, starting with (t0, y0).
        """
        return self._run(config or RunConfig())

    def _run(self, cfg: RunConfig) -> IntegrationTrace:
        plan = self._resolve_run_plan(cfg)
        prob = self.problem

        trace = IntegrationTrace(prob.t0, prob.y0)
        y: StateArray = trace.final[1]
        t = prob.t0
        for i in range(plan.n_steps):
            t_next = self._time_at(plan, i + 1)
            io = StepIO(
                t=t,
                h=t_next - t,
                y=y,
                rhs=prob.rhs,
                jacobian=plan.jacobian,
                newton=plan.newton,
                predictor=plan.predictor,
            )
            try:
                y_next = plan.step(io)
            except OdeEngineError as exc:
                raise self._abort(plan, io, i, trace, exc) from exc

            trace.append(t_next, y_next)
            t, y = trace.final
        return trace


# =============================================================================
# Functional entry point
# =============================================================================


def integrate(
    problem: ODEProblem,
    stepper: Stepper | str,
    step_size: float | None = None,
    *,
    config: RunConfig | None = None,
) -> IntegrationTrace:
    """
    Integrate an ODE problem with a fixed-step method.

    Args:
        problem: Initial value problem.
        stepper: Stepper or stepper name ("euler", "rk4", "backward-euler", "gl4").
        step_size: Fixed step size; overrides the config and the problem.
        config: Optional run configuration (Newton settings, predictor, strict).

    Returns:
        Integration trace from t0 to t_final.
    """
    cfg = config or RunConfig()
    cfg = replace(
        cfg,
        stepper=stepper,
        step_size=cfg.step_size if step_size is None else step_size,
    )
    return Integrator(problem)._run(cfg)
