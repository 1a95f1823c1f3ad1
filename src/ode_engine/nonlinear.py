# src/ode_engine/nonlinear.py
"""Newton-type nonlinear solver and scalar root finding.

Vector systems F(x) = 0 are solved with classical, undamped Newton iteration:

    J(x_k) dx = -F(x_k),    x_{k+1} = x_k + dx

stopping when ||F(x)|| < tol (convergence) or after max_iter iterations
(NonConvergenceError). A singular Jacobian is reported immediately as
SingularJacobianError; no perturbation or restart is attempted.

When no Jacobian callable is supplied, it is obtained exactly from the forward
AD engine (ode_engine.ad.jacobian), so residuals must be written against the
Real capability set.

Scalar root finding offers four strategies sharing the stopping contract
|f(x)| < tol within max_iter iterations:
    - newton (via find_root): derivative from the caller or from AD,
    - secant: derivative approximated from the last two iterates,
    - bisection / false_position: bracketing on a sign-changing interval.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, overload

import numpy as np
from numpy.typing import NDArray

from .ad import ADNumber, differentiate, jacobian
from .errors import (
    BracketError,
    NonConvergenceError,
    SingularJacobianError,
    SingularMatrixError,
    UndefinedArithmeticError,
)
from .linalg import Norm, as_dense, solve, vector_norm

if TYPE_CHECKING:
    from numpy.typing import ArrayLike


# =============================================================================
# Errors / messages
# =============================================================================

_NONCONVERGENCE_MSG = (
    "Newton iteration did not converge in {iterations} iterations "
    "(residual norm {norm:.3e} >= tol {tol:.3e})"
)
_SINGULAR_JACOBIAN_MSG = "Singular Jacobian at Newton iteration {iterations}: {detail}"
_NONFINITE_RESIDUAL_MSG = "Residual is not finite at Newton iteration {iterations}"
_RESIDUAL_SHAPE_MSG = "Residual shape {actual} does not match unknown shape {expected}"
_JACOBIAN_SHAPE_MSG = "Jacobian shape {actual} does not match expected {expected}"
_X0_SHAPE_MSG = "x0 must be a scalar or a non-empty 1D array; got shape {shape}"
_TOL_MSG = "tol must be positive; got {tol}"
_MAX_ITER_MSG = "max_iter must be a positive integer; got {max_iter}"
_BRACKET_MSG = "f(a) and f(b) must have opposite signs; got f({a})={fa}, f({b})={fb}"
_ZERO_SLOPE_MSG = "Secant slope vanished at iteration {iterations} (x={x!r})"
_ROOT_NONCONVERGENCE_MSG = (
    "{method} did not converge in {iterations} iterations "
    "(|f(x)|={norm:.3e} >= tol {tol:.3e})"
)


ResidualFunction = Callable[[NDArray[Any]], "ArrayLike"]
JacobianFunction = Callable[[NDArray[np.float64]], "ArrayLike"]
ScalarFunction = Callable[[Any], Any]


# =============================================================================
# Configuration / records
# =============================================================================


@dataclass(slots=True, frozen=True)
class NewtonConfig:
    """Stopping rule for Newton iteration.

    Attributes:
        tol: Convergence threshold on the residual norm.
        max_iter: Maximum number of Newton updates.
        norm: Norm used for the residual.
        p: Exponent when norm is Norm.LP.
    """

    tol: float = 1e-10
    max_iter: int = 50
    norm: Norm = Norm.L2
    p: float = 2.0

    def __post_init__(self) -> None:
        """Validate tolerances."""
        if not (self.tol > 0.0 and math.isfinite(self.tol)):
            raise ValueError(_TOL_MSG.format(tol=self.tol))
        if isinstance(self.max_iter, bool) or int(self.max_iter) != self.max_iter:
            raise ValueError(_MAX_ITER_MSG.format(max_iter=self.max_iter))
        if self.max_iter < 1:
            raise ValueError(_MAX_ITER_MSG.format(max_iter=self.max_iter))


@dataclass(slots=True)
class NewtonContext:
    """Transient state of one Newton solve.

    Attributes:
        x: Current iterate.
        residual: F(x).
        jacobian: Last Jacobian evaluated (None before the first update).
        iterations: Number of completed updates.
        residual_norm: ||F(x)||.
    """

    x: NDArray[np.float64]
    residual: NDArray[np.float64]
    jacobian: NDArray[np.float64] | None = None
    iterations: int = 0
    residual_norm: float = math.inf


@dataclass(slots=True, frozen=True)
class NewtonResult:
    """Converged Newton solution.

    Attributes:
        x: Root estimate.
        iterations: Number of Newton updates performed.
        residual_norm: ||F(x)|| at the returned root.
    """

    x: NDArray[np.float64]
    iterations: int
    residual_norm: float


# =============================================================================
# Newton core
# =============================================================================


def _eval_residual(
    residual: ResidualFunction,
    x: NDArray[np.float64],
    iterations: int,
) -> NDArray[np.float64]:
    r = np.asarray(residual(x.copy()), dtype=np.float64)
    if r.shape != x.shape:
        raise ValueError(_RESIDUAL_SHAPE_MSG.format(actual=r.shape, expected=x.shape))
    if not np.all(np.isfinite(r)):
        raise UndefinedArithmeticError(
            _NONFINITE_RESIDUAL_MSG.format(iterations=iterations)
        )
    return r


def _eval_jacobian(
    residual: ResidualFunction,
    jac: JacobianFunction | None,
    x: NDArray[np.float64],
) -> NDArray[np.float64]:
    j = jacobian(residual, x) if jac is None else as_dense(jac(x.copy()))
    n = x.size
    if j.shape != (n, n):
        raise ValueError(_JACOBIAN_SHAPE_MSG.format(actual=j.shape, expected=(n, n)))
    return j


def newton_solve(
    residual: ResidualFunction,
    jac: JacobianFunction | None,
    x0: ArrayLike,
    config: NewtonConfig | None = None,
) -> NewtonResult:
    """
    Solve F(x) = 0 with undamped Newton iteration.

    Args:
        residual: F, mapping a 1D array to a 1D array of the same length.
        jac: Callable returning dF/dx at x, or None to use forward AD.
        x0: Starting point (1D).
        config: Stopping rule; defaults to NewtonConfig().

    Raises:
        ValueError: If shapes are inconsistent.
        UndefinedArithmeticError: If F evaluates to a non-finite value.
        SingularJacobianError: If the Newton linear system is singular.
        NonConvergenceError: If max_iter updates do not reach tol.

    Returns:
        NewtonResult holding the root, iteration count and residual norm.
    """
    cfg = config or NewtonConfig()
    x = np.array(x0, dtype=np.float64)
    if x.ndim != 1 or x.size == 0:
        raise ValueError(_X0_SHAPE_MSG.format(shape=x.shape))

    ctx = NewtonContext(x=x, residual=_eval_residual(residual, x, 0))
    ctx.residual_norm = vector_norm(ctx.residual, cfg.norm, p=cfg.p)

    while ctx.residual_norm >= cfg.tol:
        if ctx.iterations >= cfg.max_iter:
            raise NonConvergenceError(
                _NONCONVERGENCE_MSG.format(
                    iterations=ctx.iterations,
                    norm=ctx.residual_norm,
                    tol=cfg.tol,
                ),
                iterations=ctx.iterations,
                x=ctx.x.copy(),
                residual_norm=ctx.residual_norm,
            )

        ctx.jacobian = _eval_jacobian(residual, jac, ctx.x)
        try:
            delta = solve(ctx.jacobian, -ctx.residual)
        except SingularMatrixError as exc:
            raise SingularJacobianError(
                _SINGULAR_JACOBIAN_MSG.format(iterations=ctx.iterations, detail=exc),
                iterations=ctx.iterations,
                x=ctx.x.copy(),
            ) from exc

        ctx.x = ctx.x + delta
        ctx.iterations += 1
        ctx.residual = _eval_residual(residual, ctx.x, ctx.iterations)
        ctx.residual_norm = vector_norm(ctx.residual, cfg.norm, p=cfg.p)

    return NewtonResult(
        x=ctx.x,
        iterations=ctx.iterations,
        residual_norm=ctx.residual_norm,
    )


# =============================================================================
# Root finding front-end
# =============================================================================


def _scalar_derivative(f: ScalarFunction) -> Callable[[float], float]:
    """Exact first derivative of a scalar function via order-1 AD."""

    def derivative(x: float) -> float:
        return differentiate(f, float(x), 1).coefficient(1)

    return derivative


@overload
def find_root(
    f: ScalarFunction,
    derivative_or_jacobian: Callable[[float], float] | None,
    x0: float,
    tolerance: float = ...,
    max_iterations: int = ...,
) -> float: ...


@overload
def find_root(
    f: ResidualFunction,
    derivative_or_jacobian: JacobianFunction | None,
    x0: NDArray[np.floating] | list[float],
    tolerance: float = ...,
    max_iterations: int = ...,
) -> NDArray[np.float64]: ...


def find_root(
    f: Callable[[Any], Any],
    derivative_or_jacobian: Callable[[Any], Any] | None,
    x0: Any,
    tolerance: float = 1e-10,
    max_iterations: int = 50,
) -> float | NDArray[np.float64]:
    """
    Find a root of f with Newton's method.

    A real-number x0 selects scalar mode (f: R -> R, returns a float); an
    array-like x0 selects vector mode (f: R^n -> R^n, returns an ndarray).

    Args:
        f: Function whose root is sought.
        derivative_or_jacobian: f' (scalar mode) or the Jacobian (vector mode);
            None computes it exactly with forward AD.
        x0: Starting point.
        tolerance: Convergence threshold on |f(x)| (or ||f(x)||_2).
        max_iterations: Maximum Newton updates.

    Returns:
        Root estimate.
    """
    cfg = NewtonConfig(tol=tolerance, max_iter=max_iterations)

    if isinstance(x0, numbers.Real):
        derivative = derivative_or_jacobian or _scalar_derivative(f)

        def residual(x: NDArray[Any]) -> NDArray[Any]:
            return np.array([_eval_scalar(f, float(x[0]))], dtype=np.float64)

        def jac(x: NDArray[np.float64]) -> NDArray[np.float64]:
            return np.array([[float(derivative(float(x[0])))]], dtype=np.float64)

        result = newton_solve(residual, jac, [float(x0)], cfg)
        return float(result.x[0])

    return newton_solve(f, derivative_or_jacobian, x0, cfg).x


# =============================================================================
# Alternative scalar strategies
# =============================================================================


def _eval_scalar(f: ScalarFunction, x: float) -> float:
    out = f(x)
    value = out.value if isinstance(out, ADNumber) else float(out)
    if not math.isfinite(value):
        raise UndefinedArithmeticError(f"f({x!r}) is not finite")
    return value


def _check_bracket(f: ScalarFunction, a: float, b: float) -> tuple[float, float]:
    fa = _eval_scalar(f, a)
    fb = _eval_scalar(f, b)
    if fa * fb > 0.0:
        raise BracketError(_BRACKET_MSG.format(a=a, b=b, fa=fa, fb=fb))
    return fa, fb


def _not_converged(
    method: str, cfg: NewtonConfig, x: float, fx: float
) -> NonConvergenceError:
    return NonConvergenceError(
        _ROOT_NONCONVERGENCE_MSG.format(
            method=method,
            iterations=cfg.max_iter,
            norm=abs(fx),
            tol=cfg.tol,
        ),
        iterations=cfg.max_iter,
        x=x,
        residual_norm=abs(fx),
    )


def bisection(
    f: ScalarFunction,
    interval: tuple[float, float],
    tolerance: float = 1e-10,
    max_iterations: int = 200,
) -> float:
    """
    Find a root of f on a sign-changing interval by bisection.

    Args:
        f: Scalar function.
        interval: (a, b) with f(a) f(b) <= 0.
        tolerance: Stop when |f(x)| < tolerance.
        max_iterations: Maximum number of halvings.

    Raises:
        BracketError: If f(a) and f(b) share a sign.
        NonConvergenceError: If the iteration budget is exhausted.

    Returns:
        Root estimate.
    """
    cfg = NewtonConfig(tol=tolerance, max_iter=max_iterations)
    a, b = float(interval[0]), float(interval[1])
    fa, fb = _check_bracket(f, a, b)
    if abs(fa) < cfg.tol:
        return a
    if abs(fb) < cfg.tol:
        return b

    mid, fm = a, fa
    for _ in range(cfg.max_iter):
        mid = 0.5 * (a + b)
        fm = _eval_scalar(f, mid)
        if abs(fm) < cfg.tol:
            return mid
        if fa * fm < 0.0:
            b, fb = mid, fm
        else:
            a, fa = mid, fm
    raise _not_converged("bisection", cfg, mid, fm)


def false_position(
    f: ScalarFunction,
    interval: tuple[float, float],
    tolerance: float = 1e-10,
    max_iterations: int = 200,
) -> float:
    """
    Find a root of f on a sign-changing interval by regula falsi.

    Args:
        f: Scalar function.
        interval: (a, b) with f(a) f(b) <= 0.
        tolerance: Stop when |f(x)| < tolerance.
        max_iterations: Maximum number of interpolation steps.

    Raises:
        BracketError: If f(a) and f(b) share a sign.
        NonConvergenceError: If the iteration budget is exhausted.

    Returns:
        Root estimate.
    """
    cfg = NewtonConfig(tol=tolerance, max_iter=max_iterations)
    a, b = float(interval[0]), float(interval[1])
    fa, fb = _check_bracket(f, a, b)
    if abs(fa) < cfg.tol:
        return a
    if abs(fb) < cfg.tol:
        return b

    c, fc = a, fa
    for _ in range(cfg.max_iter):
        c = (a * fb - b * fa) / (fb - fa)
        fc = _eval_scalar(f, c)
        if abs(fc) < cfg.tol:
            return c
        if fa * fc < 0.0:
            b, fb = c, fc
        else:
            a, fa = c, fc
    raise _not_converged("false_position", cfg, c, fc)


def secant(
    f: ScalarFunction,
    initial: tuple[float, float],
    tolerance: float = 1e-10,
    max_iterations: int = 50,
) -> float:
    """
    Find a root of f with the secant method.

    Args:
        f: Scalar function.
        initial: Two distinct starting points (x0, x1).
        tolerance: Stop when |f(x)| < tolerance.
        max_iterations: Maximum number of secant updates.

    Raises:
        SingularJacobianError: If the secant slope vanishes.
        NonConvergenceError: If the iteration budget is exhausted.

    Returns:
        Root estimate.
    """
    cfg = NewtonConfig(tol=tolerance, max_iter=max_iterations)
    x_prev, x = float(initial[0]), float(initial[1])
    f_prev = _eval_scalar(f, x_prev)
    fx = _eval_scalar(f, x)
    if abs(fx) < cfg.tol:
        return x

    for it in range(cfg.max_iter):
        slope_den = fx - f_prev
        if slope_den == 0.0:
            raise SingularJacobianError(
                _ZERO_SLOPE_MSG.format(iterations=it, x=x),
                iterations=it,
                x=x,
            )
        x_next = x - fx * (x - x_prev) / slope_den
        x_prev, f_prev = x, fx
        x = x_next
        fx = _eval_scalar(f, x)
        if abs(fx) < cfg.tol:
            return x
    raise _not_converged("secant", cfg, x, fx)


def newton(
    f: ScalarFunction,
    x0: float,
    tolerance: float = 1e-10,
    max_iterations: int = 50,
) -> float:
    """Scalar Newton with the derivative taken from forward AD."""
    return float(find_root(f, None, float(x0), tolerance, max_iterations))
