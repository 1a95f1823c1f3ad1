# src/ode_engine/steppers.py
"""Fixed-step transition rules for the ODE integration engine.

Supported steppers (closed set, see :class:`Stepper`):
    - EULER:            y_{n+1} = y_n + h f(t_n, y_n)                   (order 1)
    - RK4:              classical four-stage Runge-Kutta                 (order 4)
    - BACKWARD_EULER:   z - y_n - h f(t_{n+1}, z) = 0, solved by Newton  (order 1)
    - GAUSS_LEGENDRE_4: two-stage Gauss collocation, solved jointly in
                        the stage slopes (k1, k2) by Newton              (order 4)

Every transition is a pure function of a :class:`StepIO` bundle. Explicit
steppers run on plain float64 states and on object arrays of ADNumber values;
implicit steppers work on float64 states and obtain df/dy either from the
problem's analytic Jacobian or exactly from the forward AD engine.

Newton seeding:
    predictor="previous": BE starts from y_n; GL4 starts both stage slopes
                          at f(t_n, y_n).
    predictor="explicit": BE starts from an explicit Euler step; GL4 starts
                          each stage slope at f(t_n + c_i h, y_n + c_i h f_n).
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal, TypeAlias

import numpy as np
from numpy.typing import NDArray

from .ad import jacobian as ad_jacobian
from .errors import (
    NonConvergenceError,
    SingularJacobianError,
    UndefinedArithmeticError,
)
from .linalg import as_dense, collocation_jacobian, implicit_euler_jacobian
from .nonlinear import NewtonConfig, NewtonResult, newton_solve
from .problem import JacobianFunction, RHSFunction, StateArray

FloatArray: TypeAlias = NDArray[np.float64]
Predictor: TypeAlias = Literal["previous", "explicit"]
StageName: TypeAlias = Literal["rhs", "newton"]


# =============================================================================
# Errors / messages
# =============================================================================

_UNKNOWN_STEPPER_ERROR = "Unknown stepper: {name!r}; expected one of {allowed}"
_RHS_SHAPE_ERROR = "rhs shape {actual} does not match expected {expected}"
_RHS_NONFINITE_ERROR = "rhs returned non-finite values at t={t}"
_JAC_SHAPE_ERROR = "jacobian shape {actual} does not match expected {expected}"
_UNKNOWN_PREDICTOR_ERROR = "Unknown predictor: {predictor!r}"


# =============================================================================
# Stepper variant
# =============================================================================


class Stepper(Enum):
    """Closed set of fixed-step integration methods."""

    EULER = "euler"
    RK4 = "rk4"
    BACKWARD_EULER = "backward-euler"
    GAUSS_LEGENDRE_4 = "gl4"

    @property
    def is_implicit(self) -> bool:
        """True for methods that solve a nonlinear system per step."""
        return self in {Stepper.BACKWARD_EULER, Stepper.GAUSS_LEGENDRE_4}

    @property
    def order(self) -> int:
        """Global order of accuracy."""
        return _ORDERS[self]

    @property
    def n_stages(self) -> int:
        """Number of right-hand-side stages per step."""
        return _STAGES[self]

    @classmethod
    def parse(cls, name: str | Stepper) -> Stepper:
        """
        Resolve a stepper from an enum member or a case-insensitive name.

        Args:
            name: Stepper or name such as "euler", "rk4", "backward-euler", "gl4".

        Raises:
            ValueError: If the name is unknown.

        Returns:
            Stepper member.
        """
        if isinstance(name, Stepper):
            return name
        key = str(name).strip().lower().replace("_", "-").replace(" ", "-")
        stepper = _ALIASES.get(key)
        if stepper is None:
            raise ValueError(
                _UNKNOWN_STEPPER_ERROR.format(name=name, allowed=sorted(_ALIASES))
            )
        return stepper


_ORDERS = {
    Stepper.EULER: 1,
    Stepper.RK4: 4,
    Stepper.BACKWARD_EULER: 1,
    Stepper.GAUSS_LEGENDRE_4: 4,
}
_STAGES = {
    Stepper.EULER: 1,
    Stepper.RK4: 4,
    Stepper.BACKWARD_EULER: 1,
    Stepper.GAUSS_LEGENDRE_4: 2,
}
_ALIASES = {
    "euler": Stepper.EULER,
    "explicit-euler": Stepper.EULER,
    "forward-euler": Stepper.EULER,
    "rk4": Stepper.RK4,
    "runge-kutta-4": Stepper.RK4,
    "backward-euler": Stepper.BACKWARD_EULER,
    "implicit-euler": Stepper.BACKWARD_EULER,
    "be": Stepper.BACKWARD_EULER,
    "gl4": Stepper.GAUSS_LEGENDRE_4,
    "gauss-legendre-4": Stepper.GAUSS_LEGENDRE_4,
}


# =============================================================================
# Gauss-Legendre tableau (2 stages)
# =============================================================================

_SQRT3_6 = math.sqrt(3.0) / 6.0
GL4_C: FloatArray = np.array([0.5 - _SQRT3_6, 0.5 + _SQRT3_6], dtype=np.float64)
GL4_A: FloatArray = np.array(
    [[0.25, 0.25 - _SQRT3_6], [0.25 + _SQRT3_6, 0.25]],
    dtype=np.float64,
)
GL4_B: FloatArray = np.array([0.5, 0.5], dtype=np.float64)


# =============================================================================
# Step bundle
# =============================================================================


@dataclass(slots=True)
class StepIO:
    """Bundle of per-step inputs for the transition functions.

    Attributes:
        t: Current time t_n.
        h: Step size.
        y: Current state y_n (read-only).
        rhs: Right-hand side f(t, y).
        jacobian: Optional analytic df/dy; None uses forward AD.
        newton: Newton stopping rule for implicit steppers.
        predictor: Newton seeding rule for implicit steppers.
        stage: Phase currently executing ("rhs" or "newton"), read on failure.
        newton_iterations: Newton updates performed by the last implicit step.
    """

    t: float
    h: float
    y: StateArray
    rhs: RHSFunction
    jacobian: JacobianFunction | None = None
    newton: NewtonConfig = NewtonConfig()
    predictor: Predictor = "previous"
    stage: StageName = "rhs"
    newton_iterations: int = 0


# =============================================================================
# RHS / Jacobian evaluation
# =============================================================================


def eval_rhs(rhs: RHSFunction, t: float, y: StateArray) -> StateArray:
    """
    Evaluate f(t, y) and validate its output.

    The output takes the dtype family of y: float64 for plain states and object
    for AD-valued states.

    Args:
        rhs: Right-hand side.
        t: Time.
        y: State (1D).

    Raises:
        ValueError: If the output shape does not match y.
        UndefinedArithmeticError: If a plain output is not finite.

    Returns:
        dy/dt as a fresh 1D array.
    """
    out = rhs(t, y.copy())
    if y.dtype == object:
        dy = np.empty(y.shape, dtype=object)
        arr = np.asarray(out, dtype=object)
        if arr.shape != y.shape:
            msg = _RHS_SHAPE_ERROR.format(actual=arr.shape, expected=y.shape)
            raise ValueError(msg)
        dy[:] = arr
        return dy

    arr_f = np.asarray(out, dtype=np.float64)
    if arr_f.shape != y.shape:
        raise ValueError(_RHS_SHAPE_ERROR.format(actual=arr_f.shape, expected=y.shape))
    if not np.all(np.isfinite(arr_f)):
        raise UndefinedArithmeticError(_RHS_NONFINITE_ERROR.format(t=t))
    return arr_f


def _state_jacobian(io: StepIO, t: float, y: FloatArray) -> FloatArray:
    """Return df/dy at (t, y) from the analytic Jacobian or forward AD."""
    n = y.size
    if io.jacobian is not None:
        j = as_dense(io.jacobian(t, y.copy()))
    else:
        j = ad_jacobian(lambda v: eval_rhs(io.rhs, t, v), y)
    if j.shape != (n, n):
        raise ValueError(_JAC_SHAPE_ERROR.format(actual=j.shape, expected=(n, n)))
    return j


# =============================================================================
# Explicit steppers
# =============================================================================


def step_euler(io: StepIO) -> StateArray:
    """Explicit Euler step."""
    io.stage = "rhs"
    return io.y + io.h * eval_rhs(io.rhs, io.t, io.y)


def step_rk4(io: StepIO) -> StateArray:
    """Classical fourth-order Runge-Kutta step."""
    io.stage = "rhs"
    t, h, y = io.t, io.h, io.y
    half = 0.5 * h
    k1 = eval_rhs(io.rhs, t, y)
    k2 = eval_rhs(io.rhs, t + half, y + half * k1)
    k3 = eval_rhs(io.rhs, t + half, y + half * k2)
    k4 = eval_rhs(io.rhs, t + h, y + h * k3)
    return y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


# =============================================================================
# Implicit steppers
# =============================================================================


def _solve_stage_system(
    io: StepIO,
    residual: Callable[[NDArray[Any]], NDArray[Any]],
    newton_matrix: Callable[[FloatArray], FloatArray],
    x0: FloatArray,
) -> NewtonResult:
    """Run Newton on a stage system, recording the iteration count on io."""
    try:
        result = newton_solve(residual, newton_matrix, x0, io.newton)
    except (NonConvergenceError, SingularJacobianError) as exc:
        io.newton_iterations = exc.iterations
        raise
    io.newton_iterations = result.iterations
    return result


def step_backward_euler(io: StepIO) -> FloatArray:
    """
    Backward (implicit) Euler step.

    Solves F(z) = z - y_n - h f(t_{n+1}, z) = 0 with Newton iteration and the
    Newton matrix I - h df/dy(t_{n+1}, z).

    Args:
        io: Step bundle with a float64 state.

    Returns:
        y_{n+1}.
    """
    t1 = io.t + io.h
    y = np.asarray(io.y, dtype=np.float64)

    io.stage = "rhs"
    if io.predictor == "explicit":
        z0 = y + io.h * eval_rhs(io.rhs, io.t, y)
    elif io.predictor == "previous":
        z0 = y.copy()
    else:
        raise ValueError(_UNKNOWN_PREDICTOR_ERROR.format(predictor=io.predictor))

    def residual(z: NDArray[Any]) -> NDArray[Any]:
        return z - y - io.h * eval_rhs(io.rhs, t1, z)

    def newton_matrix(z: FloatArray) -> FloatArray:
        return implicit_euler_jacobian(_state_jacobian(io, t1, z), io.h)

    io.stage = "newton"
    result = _solve_stage_system(io, residual, newton_matrix, z0)
    return result.x


def _gl4_stage_states(y: NDArray[Any], h: float, k: NDArray[Any]) -> list[NDArray[Any]]:
    n = y.size
    k1, k2 = k[:n], k[n:]
    return [y + h * (GL4_A[i, 0] * k1 + GL4_A[i, 1] * k2) for i in range(2)]


def step_gauss_legendre_4(io: StepIO) -> FloatArray:
    """
    Two-stage Gauss-Legendre (collocation) step.

    The unknowns are the stage slopes K = (k1, k2), solved jointly from
        k_i - f(t + c_i h, y + h sum_j a_ij k_j) = 0,  i = 1, 2,
    after which y_{n+1} = y + h (b_1 k1 + b_2 k2).

    Args:
        io: Step bundle with a float64 state.

    Returns:
        y_{n+1}.
    """
    t, h = io.t, io.h
    y = np.asarray(io.y, dtype=np.float64)
    stage_times = [t + float(c) * h for c in GL4_C]

    io.stage = "rhs"
    f0 = eval_rhs(io.rhs, t, y)
    if io.predictor == "explicit":
        k0 = np.concatenate(
            [eval_rhs(io.rhs, stage_times[i], y + GL4_C[i] * h * f0) for i in range(2)]
        )
    elif io.predictor == "previous":
        k0 = np.concatenate([f0, f0])
    else:
        raise ValueError(_UNKNOWN_PREDICTOR_ERROR.format(predictor=io.predictor))

    def residual(k: NDArray[Any]) -> NDArray[Any]:
        stages = _gl4_stage_states(y, h, k)
        f_stages = [eval_rhs(io.rhs, stage_times[i], stages[i]) for i in range(2)]
        return k - np.concatenate(f_stages)

    def newton_matrix(k: FloatArray) -> FloatArray:
        stages = _gl4_stage_states(y, h, k)
        jacs = [_state_jacobian(io, stage_times[i], stages[i]) for i in range(2)]
        return collocation_jacobian(jacs, GL4_A, h)

    io.stage = "newton"
    result = _solve_stage_system(io, residual, newton_matrix, k0)
    n = y.size
    return y + h * (GL4_B[0] * result.x[:n] + GL4_B[1] * result.x[n:])


# =============================================================================
# Dispatch table
# =============================================================================

StepFunction: TypeAlias = Callable[[StepIO], StateArray]

STEP_FUNCTIONS: dict[Stepper, StepFunction] = {
    Stepper.EULER: step_euler,
    Stepper.RK4: step_rk4,
    Stepper.BACKWARD_EULER: step_backward_euler,
    Stepper.GAUSS_LEGENDRE_4: step_gauss_legendre_4,
}
