# src/ode_engine/problem.py
"""ODE problem definition and integration trace.

This module provides the two data containers of an integration run:

- ODEProblem: an immutable description of an initial value problem
  y' = f(t, y), y(t0) = y0 on [t0, t_final], with an optional analytic
  Jacobian df/dy and a fixed step size (or step count).
- IntegrationTrace: the append-only record of (t_i, y_i) pairs produced by
  exactly one run.

States are 1D arrays. Plain trajectories use float64; trajectories annotated
with exact derivatives (initial states holding ADNumber values) use object
dtype. Both containers validate shapes eagerly and never mutate caller data.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, cast

import numpy as np
import numpy.typing as npt

from .ad import ADNumber, constant
from .errors import OrderMismatchError
from .real import to_scalar

if TYPE_CHECKING:
    from numpy.typing import ArrayLike


# Error / message constants -------------------------------------------------

_Y0_SHAPE_ERROR = "y0 must be a non-empty 1D array; got shape {shape}"
_TIME_FINITE_ERROR = "t0 and t_final must be finite; got t0={t0}, t_final={t_final}"
_TIME_ORDER_ERROR = "t_final must be >= t0; got t0={t0}, t_final={t_final}"
_STEP_EXCLUSIVE_ERROR = "Provide at most one of step_size and n_steps"
_STEP_SIZE_ERROR = "step_size must be a positive finite float; got {h}"
_N_STEPS_ERROR = "n_steps must be a positive integer; got {n}"
_RHS_CALLABLE_ERROR = "rhs must be callable"
_JAC_CALLABLE_ERROR = "jacobian must be callable or None"

_TRACE_SHAPE_ERROR = "State shape {actual} does not match trace shape {expected}"
_TRACE_TIME_ERROR = "Times must be non-decreasing; got {t} after {last}"
_TRACE_INDEX_ERROR = "trace index out of bounds: {idx}"


# Typing helpers ------------------------------------------------------------

FloatArray = npt.NDArray[np.float64]
StateArray = npt.NDArray[Any]
RHSFunction = Callable[[float, StateArray], "ArrayLike"]
JacobianFunction = Callable[[float, FloatArray], "ArrayLike"]


def as_state(y: ArrayLike) -> StateArray:
    """Convert a state-like input to a 1D float64 or object array.

    Any ADNumber element promotes the whole state to object dtype, and every
    plain real entry becomes a constant of the seeded order, so NumPy ufuncs
    see ADNumber values only. Otherwise the state is stored as float64.

    Args:
        y: State-like input.

    Raises:
        OrderMismatchError: If the ADNumber entries differ in order.

    Returns:
        A fresh 1D array (never a view of the input).
    """
    arr = np.array(y, dtype=object)
    if arr.ndim != 1:
        return np.array(y, dtype=np.float64)
    orders = [v.order for v in arr if isinstance(v, ADNumber)]
    if not orders:
        return np.array(y, dtype=np.float64)
    order = orders[0]
    for other in orders[1:]:
        if other != order:
            raise OrderMismatchError(order, other)
    out = np.empty(arr.shape, dtype=object)
    out[:] = [v if isinstance(v, ADNumber) else constant(v, order) for v in arr]
    return out


# =============================================================================
# ODE problem
# =============================================================================


@dataclass(slots=True, frozen=True)
class ODEProblem:
    """Initial value problem y' = rhs(t, y), y(t0) = y0 on [t0, t_final].

    Attributes:
        rhs: Right-hand side f(t, y) -> dy/dt. Must accept plain float arrays
            and object arrays of ADNumber values.
        t0: Initial time.
        y0: Initial state (1D).
        t_final: Final time (>= t0).
        step_size: Fixed step size h (optional).
        n_steps: Number of steps (optional; h = (t_final - t0) / n_steps).
        jacobian: Optional analytic df/dy, jacobian(t, y) -> (n, n).
    """

    rhs: RHSFunction
    t0: float
    y0: StateArray
    t_final: float
    step_size: float | None = None
    n_steps: int | None = None
    jacobian: JacobianFunction | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        """Validate and normalize fields."""
        if not callable(self.rhs):
            raise TypeError(_RHS_CALLABLE_ERROR)
        if self.jacobian is not None and not callable(self.jacobian):
            raise TypeError(_JAC_CALLABLE_ERROR)

        t0 = float(self.t0)
        t_final = float(self.t_final)
        if not (math.isfinite(t0) and math.isfinite(t_final)):
            raise ValueError(_TIME_FINITE_ERROR.format(t0=t0, t_final=t_final))
        if t_final < t0:
            raise ValueError(_TIME_ORDER_ERROR.format(t0=t0, t_final=t_final))

        y0 = as_state(self.y0)
        if y0.ndim != 1 or y0.size == 0:
            raise ValueError(_Y0_SHAPE_ERROR.format(shape=y0.shape))
        y0.flags.writeable = False

        if self.step_size is not None and self.n_steps is not None:
            raise ValueError(_STEP_EXCLUSIVE_ERROR)
        if self.step_size is not None:
            check_step_size(self.step_size)
        if self.n_steps is not None:
            n = self.n_steps
            if isinstance(n, bool) or not isinstance(n, int | np.integer) or n < 1:
                raise ValueError(_N_STEPS_ERROR.format(n=n))

        # Frozen dataclass: normalized values are written through object.__setattr__.
        object.__setattr__(self, "t0", t0)
        object.__setattr__(self, "t_final", t_final)
        object.__setattr__(self, "y0", y0)

    @property
    def dim(self) -> int:
        """Number of state components."""
        return int(self.y0.size)

    @property
    def span(self) -> float:
        """Length of the integration interval."""
        return self.t_final - self.t0

    @property
    def is_ad(self) -> bool:
        """True if the initial state carries ADNumber values."""
        return self.y0.dtype == object

    def resolve_step_size(self, step_size: float | None = None) -> float | None:
        """
        Resolve the effective step size.

        Args:
            step_size: Caller override (takes precedence over the problem).

        Raises:
            ValueError: If no step size can be resolved for a non-empty interval.

        Returns:
            Step size, or None when t0 == t_final and nothing was given.
        """
        if step_size is not None:
            return check_step_size(step_size)
        if self.step_size is not None:
            return float(self.step_size)
        if self.n_steps is not None:
            return self.span / int(self.n_steps)
        if self.span == 0.0:
            return None
        raise ValueError(_STEP_SIZE_ERROR.format(h=None))


def check_step_size(h: object) -> float:
    """Validate a step size and return it as a float."""
    try:
        h_f = float(cast("float", h))
    except (TypeError, ValueError) as exc:
        raise ValueError(_STEP_SIZE_ERROR.format(h=h)) from exc
    if not (math.isfinite(h_f) and h_f > 0.0):
        raise ValueError(_STEP_SIZE_ERROR.format(h=h))
    return h_f


# =============================================================================
# Integration trace
# =============================================================================


class IntegrationTrace:
    """Append-only sequence of (t, y) pairs produced by one integration run."""

    def __init__(self, t0: float, y0: ArrayLike) -> None:
        """
        Initialize a trace holding only the initial state.

        Args:
            t0: Initial time.
            y0: Initial state (1D).

        Raises:
            ValueError: If y0 is not a non-empty 1D array.
        """
        y = as_state(y0)
        if y.ndim != 1 or y.size == 0:
            raise ValueError(_Y0_SHAPE_ERROR.format(shape=y.shape))
        self.dtype = y.dtype
        self.state_shape: tuple[int, ...] = y.shape
        self._times: list[float] = [float(t0)]
        y.flags.writeable = False
        self._states: list[StateArray] = [y]

    # ------------------------------------------------------------------
    # Mutation (append only)
    # ------------------------------------------------------------------

    def append(self, t: float, y: ArrayLike) -> None:
        """
        Commit a new (t, y) pair.

        Args:
            t: Time (must not precede the last committed time).
            y: State with the trace's shape.

        Raises:
            ValueError: If the time goes backwards or the shape mismatches.
        """
        t_f = float(t)
        if t_f < self._times[-1]:
            raise ValueError(_TRACE_TIME_ERROR.format(t=t_f, last=self._times[-1]))
        y_arr = np.array(y, dtype=self.dtype)
        if y_arr.shape != self.state_shape:
            raise ValueError(
                _TRACE_SHAPE_ERROR.format(actual=y_arr.shape, expected=self.state_shape)
            )
        y_arr.flags.writeable = False
        self._times.append(t_f)
        self._states.append(y_arr)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._times)

    def __iter__(self) -> Iterator[tuple[float, StateArray]]:
        return iter(zip(self._times, self._states, strict=True))

    def __getitem__(self, idx: int) -> tuple[float, StateArray]:
        try:
            return self._times[idx], self._states[idx]
        except IndexError as exc:
            raise IndexError(_TRACE_INDEX_ERROR.format(idx=idx)) from exc

    def __repr__(self) -> str:
        return (
            f"IntegrationTrace(n_points={len(self)}, dim={self.state_shape[0]}, "
            f"t=[{self._times[0]!r}, {self._times[-1]!r}])"
        )

    @property
    def n_steps(self) -> int:
        """Number of committed steps (excluding the initial state)."""
        return len(self._times) - 1

    @property
    def times(self) -> FloatArray:
        """Committed times, shape (T,)."""
        return np.asarray(self._times, dtype=np.float64)

    @property
    def states(self) -> StateArray:
        """Committed states, shape (T, n); object dtype for AD trajectories."""
        return np.stack(self._states).astype(self.dtype, copy=False)

    @property
    def final(self) -> tuple[float, StateArray]:
        """Last committed (t, y)."""
        return self._times[-1], self._states[-1]

    def values(self) -> FloatArray:
        """States reduced to plain floats (AD values for AD trajectories)."""
        if self.dtype != object:
            return np.asarray(self.states, dtype=np.float64)
        reduce = np.vectorize(to_scalar, otypes=[np.float64])
        return cast("FloatArray", reduce(self.states))

    def taylor_coefficients(self, k: int) -> FloatArray:
        """
        Return the k-th Taylor coefficient of every state component.

        Plain entries contribute their value for k == 0 and 0 otherwise.

        Args:
            k: Coefficient index.

        Returns:
            Array of shape (T, n).
        """

        def coeff(v: object) -> float:
            if isinstance(v, ADNumber):
                return v.coefficient(k)
            return to_scalar(v) if k == 0 else 0.0

        reduce = np.vectorize(coeff, otypes=[np.float64])
        return cast("FloatArray", reduce(np.stack(self._states)))

    def to_array(self) -> FloatArray:
        """Return a (T, 1 + n) float64 array with time in the first column."""
        return np.column_stack([self.times, self.values()])

    def copy(self) -> IntegrationTrace:
        """Return an independent trace with the same committed pairs."""
        out = IntegrationTrace(self._times[0], self._states[0])
        for t, y in zip(self._times[1:], self._states[1:], strict=True):
            out.append(t, y)
        return out
