# src/ode_engine/ad.py
"""Forward-mode (Taylor-mode) automatic differentiation.

An :class:`ADNumber` carries the truncated Taylor expansion of a quantity
around the evaluation point of a single seeded variable:

    coeffs[k] = f^(k)(x0) / k!        for k = 0, ..., order

Arithmetic and elementary functions propagate the whole coefficient vector
with the classical power-series recurrences (Cauchy products for
multiplication, the "k * a_k" convolution recurrences for exp/log/sin/cos,
and so on), so derivatives are exact up to floating-point rounding.

Design notes:
    * Values are immutable; every operation returns a new ADNumber.
    * All operands of one computation must share the same order. Plain real
      numbers are promoted to constants of the other operand's order, while
      two ADNumbers of different order raise OrderMismatchError.
    * Operations undefined at the evaluation point (1/0, log(0), sqrt at 0 for
      order >= 1, ...) raise UndefinedArithmeticError instead of producing
      inf/NaN coefficients.
    * NumPy ufuncs (np.exp, np.sin, np.sqrt, ...) dispatch to the same
      recurrences, both for scalar ADNumbers and for object arrays of them.
    * Coefficients are plain float64, so AD-of-AD (nested differentiation) is
      rejected rather than approximated.

Public API:
    constant(v, order)         -> ADNumber with zero derivative coefficients
    variable(v, order)         -> ADNumber seeded with d/dx = 1
    differentiate(f, x, order) -> f evaluated on variable(x, order)
    derivatives(ad)            -> array of f^(k)(x0), k = 0..order
    jacobian(f, x)             -> dense (m, n) Jacobian of a vector function
"""

from __future__ import annotations

import math
import numbers
import operator
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from .errors import OrderMismatchError, raise_undefined

if TYPE_CHECKING:
    from numpy.typing import ArrayLike


# =============================================================================
# Errors / messages
# =============================================================================

_ORDER_NEGATIVE_ERROR = "order must be a non-negative integer; got {order!r}"
_COEFFS_EMPTY_ERROR = "coefficients must be a non-empty 1D sequence"
_NESTED_AD_ERROR = (
    "Nested differentiation is not supported: expected a plain real value, "
    "got {typ}"
)
_NOT_REAL_ERROR = "Expected a real number; got {typ}"
_JACOBIAN_POINT_ERROR = "jacobian point must be a non-empty 1D array; got shape {shape}"
_JACOBIAN_OUTPUT_ERROR = (
    "jacobian function output must be 1D; got shape {shape}"
)
_JACOBIAN_ELEMENT_ERROR = (
    "jacobian function returned a non-real element of type {typ}"
)


FloatArray = NDArray[np.float64]


# =============================================================================
# Coefficient recurrences (operate on plain float64 arrays)
# =============================================================================


def _mul_coeffs(a: FloatArray, b: FloatArray) -> FloatArray:
    """Cauchy product truncated to len(a)."""
    return np.convolve(a, b)[: a.size]


def _div_coeffs(a: FloatArray, b: FloatArray) -> FloatArray:
    if b[0] == 0.0:
        raise_undefined("division", "a divisor with zero value")
    n = a.size
    c = np.zeros(n, dtype=np.float64)
    for k in range(n):
        c[k] = (a[k] - np.dot(b[1 : k + 1], c[:k][::-1])) / b[0]
    return c


def _exp_coeffs(a: FloatArray) -> FloatArray:
    n = a.size
    e = np.zeros(n, dtype=np.float64)
    try:
        e[0] = math.exp(a[0])
    except OverflowError:
        raise_undefined("exp", float(a[0]))
    ja = np.arange(n, dtype=np.float64) * a
    for k in range(1, n):
        e[k] = np.dot(ja[1 : k + 1], e[:k][::-1]) / k
    return e


def _log_coeffs(a: FloatArray) -> FloatArray:
    if a[0] <= 0.0:
        raise_undefined("log", float(a[0]))
    n = a.size
    out = np.zeros(n, dtype=np.float64)
    out[0] = math.log(a[0])
    for k in range(1, n):
        jl = np.arange(1, k, dtype=np.float64) * out[1:k]
        out[k] = (a[k] - np.dot(jl, a[1:k][::-1]) / k) / a[0]
    return out


def _sin_cos_coeffs(a: FloatArray) -> tuple[FloatArray, FloatArray]:
    n = a.size
    s = np.zeros(n, dtype=np.float64)
    c = np.zeros(n, dtype=np.float64)
    s[0] = math.sin(a[0])
    c[0] = math.cos(a[0])
    ja = np.arange(n, dtype=np.float64) * a
    for k in range(1, n):
        s[k] = np.dot(ja[1 : k + 1], c[:k][::-1]) / k
        c[k] = -np.dot(ja[1 : k + 1], s[:k][::-1]) / k
    return s, c


def _sinh_cosh_coeffs(a: FloatArray) -> tuple[FloatArray, FloatArray]:
    n = a.size
    s = np.zeros(n, dtype=np.float64)
    c = np.zeros(n, dtype=np.float64)
    try:
        s[0] = math.sinh(a[0])
        c[0] = math.cosh(a[0])
    except OverflowError:
        raise_undefined("sinh/cosh", float(a[0]))
    ja = np.arange(n, dtype=np.float64) * a
    for k in range(1, n):
        s[k] = np.dot(ja[1 : k + 1], c[:k][::-1]) / k
        c[k] = np.dot(ja[1 : k + 1], s[:k][::-1]) / k
    return s, c


def _tanh_coeffs(a: FloatArray) -> FloatArray:
    # t_k depends on u = 1 - t^2 only up to u_{k-1}, so both fill in one pass.
    t = np.zeros_like(a)
    u = np.zeros_like(a)
    t[0] = math.tanh(a[0])
    for k in range(1, a.size):
        m = k - 1
        u[m] = float(m == 0) - float(t[: m + 1] @ t[m::-1])
        weights = np.arange(1, k + 1, dtype=np.float64) * a[1 : k + 1]
        t[k] = float(weights @ u[k - 1 :: -1]) / k
    return t


def _sqrt_coeffs(a: FloatArray) -> FloatArray:
    n = a.size
    if a[0] < 0.0 or (a[0] == 0.0 and n > 1):
        raise_undefined("sqrt", float(a[0]))
    r = np.zeros(n, dtype=np.float64)
    r[0] = math.sqrt(a[0])
    for k in range(1, n):
        r[k] = (a[k] - np.dot(r[1:k], r[1:k][::-1])) / (2.0 * r[0])
    return r


def _powf_coeffs(a: FloatArray, p: float) -> FloatArray:
    """Coefficients of a**p for a positive leading coefficient."""
    n = a.size
    out = np.zeros(n, dtype=np.float64)
    try:
        out[0] = math.pow(a[0], p)
    except OverflowError:
        raise_undefined("pow", (float(a[0]), p))
    j = np.arange(n, dtype=np.float64)
    for k in range(1, n):
        weights = (p + 1.0) * j[1 : k + 1] - k
        out[k] = np.dot(weights * a[1 : k + 1], out[:k][::-1]) / (k * a[0])
    return out


def _derivative_series(a: FloatArray) -> FloatArray:
    """Coefficients of da/dx, truncated to len(a) - 1."""
    return np.arange(1, a.size, dtype=np.float64) * a[1:]


def _integrate_series(value: float, d: FloatArray) -> FloatArray:
    """Coefficients whose derivative series is d and whose value is value."""
    out = np.zeros(d.size + 1, dtype=np.float64)
    out[0] = value
    out[1:] = d / np.arange(1, d.size + 1, dtype=np.float64)
    return out


# =============================================================================
# ADNumber
# =============================================================================


def _check_order(order: object) -> int:
    if isinstance(order, bool) or not isinstance(order, numbers.Integral):
        raise ValueError(_ORDER_NEGATIVE_ERROR.format(order=order))
    if int(order) < 0:
        raise ValueError(_ORDER_NEGATIVE_ERROR.format(order=order))
    return int(order)


def _check_real(value: object) -> float:
    if isinstance(value, ADNumber):
        raise TypeError(_NESTED_AD_ERROR.format(typ=type(value).__name__))
    if not isinstance(value, numbers.Real):
        raise TypeError(_NOT_REAL_ERROR.format(typ=type(value).__name__))
    return float(value)


class ADNumber:
    """Truncated Taylor series of a scalar quantity (forward-mode AD value)."""

    __slots__ = ("_coeffs",)

    def __init__(self, coeffs: ArrayLike) -> None:
        """Initialize from a coefficient vector.

        Args:
            coeffs: Taylor coefficients; coeffs[0] is the value.

        Raises:
            ValueError: If coeffs is empty or not 1D.
        """
        arr = np.array(coeffs, dtype=np.float64)
        if arr.ndim != 1 or arr.size == 0:
            raise ValueError(_COEFFS_EMPTY_ERROR)
        arr.flags.writeable = False
        self._coeffs = arr

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def coeffs(self) -> FloatArray:
        """Read-only Taylor coefficient vector of length order + 1."""
        return self._coeffs

    @property
    def order(self) -> int:
        """Truncation order."""
        return self._coeffs.size - 1

    @property
    def value(self) -> float:
        """Function value (coefficient 0)."""
        return float(self._coeffs[0])

    def coefficient(self, k: int) -> float:
        """Return the k-th Taylor coefficient (0 beyond the truncation order)."""
        if k < 0:
            raise IndexError(k)
        if k > self.order:
            return 0.0
        return float(self._coeffs[k])

    def derivative(self, k: int = 1) -> float:
        """Return the k-th derivative, i.e. coefficient k times k!."""
        return self.coefficient(k) * math.factorial(k)

    def __float__(self) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"ADNumber({self._coeffs.tolist()!r}, order={self.order})"

    # ------------------------------------------------------------------
    # Coercion
    # ------------------------------------------------------------------

    def _coerce(self, other: object) -> FloatArray | None:
        """Return other's coefficient vector at this order, or None if foreign."""
        if isinstance(other, ADNumber):
            if other.order != self.order:
                raise OrderMismatchError(self.order, other.order)
            return other._coeffs
        if isinstance(other, numbers.Real):
            out = np.zeros(self._coeffs.size, dtype=np.float64)
            out[0] = float(other)
            return out
        return None

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __add__(self, other: object) -> ADNumber:
        b = self._coerce(other)
        if b is None:
            return NotImplemented
        return ADNumber(self._coeffs + b)

    def __radd__(self, other: object) -> ADNumber:
        return self.__add__(other)

    def __sub__(self, other: object) -> ADNumber:
        b = self._coerce(other)
        if b is None:
            return NotImplemented
        return ADNumber(self._coeffs - b)

    def __rsub__(self, other: object) -> ADNumber:
        b = self._coerce(other)
        if b is None:
            return NotImplemented
        return ADNumber(b - self._coeffs)

    def __mul__(self, other: object) -> ADNumber:
        if isinstance(other, numbers.Real):
            return ADNumber(self._coeffs * float(other))
        b = self._coerce(other)
        if b is None:
            return NotImplemented
        return ADNumber(_mul_coeffs(self._coeffs, b))

    def __rmul__(self, other: object) -> ADNumber:
        return self.__mul__(other)

    def __truediv__(self, other: object) -> ADNumber:
        b = self._coerce(other)
        if b is None:
            return NotImplemented
        return ADNumber(_div_coeffs(self._coeffs, b))

    def __rtruediv__(self, other: object) -> ADNumber:
        b = self._coerce(other)
        if b is None:
            return NotImplemented
        return ADNumber(_div_coeffs(b, self._coeffs))

    def __neg__(self) -> ADNumber:
        return ADNumber(-self._coeffs)

    def __pos__(self) -> ADNumber:
        return self

    def __abs__(self) -> ADNumber:
        a0 = self._coeffs[0]
        if a0 == 0.0 and self.order > 0:
            raise_undefined("abs", 0.0)
        return self if a0 >= 0.0 else -self

    def __pow__(self, other: object) -> ADNumber:
        if isinstance(other, ADNumber):
            b = self._coerce(other)
            if b is not None and not np.any(b[1:]):
                return self._powf(float(b[0]))
            return (other * self.log()).exp()
        if isinstance(other, numbers.Integral) and not isinstance(other, bool):
            return self._powi(int(other))
        if isinstance(other, numbers.Real):
            return self._powf(float(other))
        return NotImplemented

    def __rpow__(self, other: object) -> ADNumber:
        if not isinstance(other, numbers.Real):
            return NotImplemented
        base = float(other)
        if base <= 0.0:
            raise_undefined("pow", (base, "AD exponent"))
        return (self * math.log(base)).exp()

    def _powi(self, n: int) -> ADNumber:
        if n < 0:
            return 1.0 / self._powi(-n)
        result = ADNumber(np.eye(1, self._coeffs.size, dtype=np.float64)[0])
        base = self
        while n:
            if n & 1:
                result = result * base
            n >>= 1
            if n:
                base = base * base
        return result

    def _powf(self, p: float) -> ADNumber:
        if p.is_integer():
            return self._powi(int(p))
        a0 = self._coeffs[0]
        if a0 < 0.0 or (a0 == 0.0 and (self.order > 0 or p < 0.0)):
            raise_undefined("pow", (float(a0), p))
        if a0 == 0.0:
            return ADNumber(np.zeros_like(self._coeffs))
        return ADNumber(_powf_coeffs(self._coeffs, p))

    # ------------------------------------------------------------------
    # Ordering / comparison (by value)
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ADNumber):
            return other.order == self.order and bool(
                np.array_equal(self._coeffs, other._coeffs)
            )
        if isinstance(other, numbers.Real):
            return self.value == float(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __lt__(self, other: object) -> bool:
        return self.value < to_value(other)

    def __le__(self, other: object) -> bool:
        return self.value <= to_value(other)

    def __gt__(self, other: object) -> bool:
        return self.value > to_value(other)

    def __ge__(self, other: object) -> bool:
        return self.value >= to_value(other)

    # ------------------------------------------------------------------
    # Elementary functions (names follow NumPy so object-array ufuncs work)
    # ------------------------------------------------------------------

    def exp(self) -> ADNumber:
        """Exponential."""
        return ADNumber(_exp_coeffs(self._coeffs))

    def log(self) -> ADNumber:
        """Natural logarithm."""
        return ADNumber(_log_coeffs(self._coeffs))

    ln = log

    def sqrt(self) -> ADNumber:
        """Square root."""
        return ADNumber(_sqrt_coeffs(self._coeffs))

    def sin(self) -> ADNumber:
        """Sine."""
        return ADNumber(_sin_cos_coeffs(self._coeffs)[0])

    def cos(self) -> ADNumber:
        """Cosine."""
        return ADNumber(_sin_cos_coeffs(self._coeffs)[1])

    def tan(self) -> ADNumber:
        """Tangent, as sin / cos."""
        s, c = _sin_cos_coeffs(self._coeffs)
        if c[0] == 0.0:
            raise_undefined("tan", self.value)
        return ADNumber(_div_coeffs(s, c))

    def sinh(self) -> ADNumber:
        """Hyperbolic sine."""
        return ADNumber(_sinh_cosh_coeffs(self._coeffs)[0])

    def cosh(self) -> ADNumber:
        """Hyperbolic cosine."""
        return ADNumber(_sinh_cosh_coeffs(self._coeffs)[1])

    def tanh(self) -> ADNumber:
        """Hyperbolic tangent via d/dx tanh(a) = (1 - tanh(a)^2) a'."""
        return ADNumber(_tanh_coeffs(self._coeffs))

    def arctan(self) -> ADNumber:
        """Inverse tangent via d/dx atan(a) = a' / (1 + a^2)."""
        a = self._coeffs
        if a.size == 1:
            return ADNumber([math.atan(a[0])])
        denom = (np.eye(1, a.size, dtype=np.float64)[0] + _mul_coeffs(a, a))[:-1]
        d = _div_coeffs(_derivative_series(a), denom)
        return ADNumber(_integrate_series(math.atan(a[0]), d))

    def arcsin(self) -> ADNumber:
        """Inverse sine via d/dx asin(a) = a' / sqrt(1 - a^2)."""
        return ADNumber(self._asin_acos(sign=1.0))

    def arccos(self) -> ADNumber:
        """Inverse cosine via d/dx acos(a) = -a' / sqrt(1 - a^2)."""
        return ADNumber(self._asin_acos(sign=-1.0))

    def _asin_acos(self, *, sign: float) -> FloatArray:
        a = self._coeffs
        name = "arcsin" if sign > 0 else "arccos"
        a0 = float(a[0])
        if abs(a0) > 1.0 or (abs(a0) == 1.0 and a.size > 1):
            raise_undefined(name, a0)
        value = math.asin(a0) if sign > 0 else math.acos(a0)
        if a.size == 1:
            return np.array([value], dtype=np.float64)
        one_minus_sq = -_mul_coeffs(a, a)
        one_minus_sq[0] += 1.0
        root = _sqrt_coeffs(one_minus_sq[:-1])
        d = sign * _div_coeffs(_derivative_series(a), root)
        return _integrate_series(value, d)

    # ------------------------------------------------------------------
    # NumPy interoperability
    # ------------------------------------------------------------------

    def __array_ufunc__(
        self,
        ufunc: np.ufunc,
        method: str,
        *inputs: Any,
        **kwargs: Any,
    ) -> Any:
        if method != "__call__" or kwargs:
            return NotImplemented
        if any(isinstance(x, np.ndarray) for x in inputs):
            arrays = [np.asarray(x, dtype=object) for x in inputs]
            return ufunc(*arrays)
        handler = _UFUNC_HANDLERS.get(ufunc.__name__)
        if handler is None:
            return NotImplemented
        args = [float(x) if isinstance(x, np.generic) else x for x in inputs]
        return handler(*args)


def _unary(name: str) -> Callable[[Any], Any]:
    def call(x: Any) -> Any:
        if isinstance(x, ADNumber):
            return getattr(x, name)()
        return getattr(np, name)(x)

    return call


_UFUNC_HANDLERS: dict[str, Callable[..., Any]] = {
    "add": operator.add,
    "subtract": operator.sub,
    "multiply": operator.mul,
    "divide": operator.truediv,
    "true_divide": operator.truediv,
    "power": operator.pow,
    "float_power": operator.pow,
    "negative": operator.neg,
    "positive": operator.pos,
    "absolute": operator.abs,
    "square": lambda x: x * x,
    "reciprocal": lambda x: 1.0 / x,
    "less": operator.lt,
    "less_equal": operator.le,
    "greater": operator.gt,
    "greater_equal": operator.ge,
    "equal": operator.eq,
    "not_equal": operator.ne,
    **{
        name: _unary(name)
        for name in (
            "exp",
            "log",
            "sqrt",
            "sin",
            "cos",
            "tan",
            "sinh",
            "cosh",
            "tanh",
            "arcsin",
            "arccos",
            "arctan",
        )
    },
}


def to_value(x: object) -> float:
    """Return the plain value of an ADNumber or real number."""
    if isinstance(x, ADNumber):
        return x.value
    return _check_real(x)


# =============================================================================
# Constructors
# =============================================================================


def constant(value: float, order: int) -> ADNumber:
    """Build an AD number with all derivative coefficients zero.

    Args:
        value: Plain real value.
        order: Truncation order (>= 0).

    Returns:
        ADNumber representing a constant.
    """
    n = _check_order(order) + 1
    coeffs = np.zeros(n, dtype=np.float64)
    coeffs[0] = _check_real(value)
    return ADNumber(coeffs)


def variable(value: float, order: int) -> ADNumber:
    """Build an AD number seeded as the differentiation variable.

    Args:
        value: Evaluation point.
        order: Truncation order (>= 0).

    Returns:
        ADNumber with coefficient 1 equal to 1 (when order >= 1).
    """
    n = _check_order(order) + 1
    coeffs = np.zeros(n, dtype=np.float64)
    coeffs[0] = _check_real(value)
    if n > 1:
        coeffs[1] = 1.0
    return ADNumber(coeffs)


# =============================================================================
# Differentiation drivers
# =============================================================================


def differentiate(
    f: Callable[[ADNumber], Any],
    point: float,
    order: int,
) -> ADNumber:
    """Evaluate f on a seeded variable and return its Taylor expansion.

    Args:
        f: Scalar function written against the Real capability set.
        point: Evaluation point.
        order: Number of derivatives to compute.

    Returns:
        ADNumber whose derivative(k) is f^(k)(point).
    """
    x = variable(point, order)
    out = f(x)
    if isinstance(out, np.ndarray) and out.ndim == 0:
        out = out.item()
    if isinstance(out, ADNumber):
        if out.order != x.order:
            raise OrderMismatchError(x.order, out.order)
        return out
    return constant(to_value(out), order)


def derivatives(x: ADNumber) -> FloatArray:
    """Return [f(x0), f'(x0), ..., f^(order)(x0)] for an ADNumber.

    Args:
        x: AD number.

    Returns:
        1D float array of length order + 1.
    """
    factorials = np.array(
        [math.factorial(k) for k in range(x.order + 1)], dtype=np.float64
    )
    return np.asarray(x.coeffs * factorials, dtype=np.float64)


def _first_coefficient(element: object) -> float:
    if isinstance(element, ADNumber):
        return element.coefficient(1)
    if isinstance(element, numbers.Real):
        return 0.0
    raise TypeError(_JACOBIAN_ELEMENT_ERROR.format(typ=type(element).__name__))


def jacobian(
    f: Callable[[NDArray[np.object_]], ArrayLike],
    x: ArrayLike,
) -> FloatArray:
    """Compute the exact Jacobian of a vector function by forward-mode AD.

    f is evaluated once per input dimension j with x[j] seeded as an order-1
    variable and every other component held constant; column j is read off the
    first-order coefficients of the outputs.

    Args:
        f: Function mapping a 1D object array of ADNumbers to a 1D array-like.
        x: Evaluation point (1D array of plain reals).

    Raises:
        ValueError: If x or the output of f is not 1D.

    Returns:
        Dense Jacobian of shape (m, n) with entries df_i/dx_j.
    """
    x_arr = np.asarray(x, dtype=np.float64)
    if x_arr.ndim != 1 or x_arr.size == 0:
        raise ValueError(_JACOBIAN_POINT_ERROR.format(shape=x_arr.shape))

    n = x_arr.size
    base = [constant(float(v), 1) for v in x_arr]
    columns: list[FloatArray] = []
    for j in range(n):
        seeded = np.empty(n, dtype=object)
        seeded[:] = base
        seeded[j] = variable(float(x_arr[j]), 1)
        out = np.asarray(f(seeded), dtype=object)
        if out.ndim != 1:
            raise ValueError(_JACOBIAN_OUTPUT_ERROR.format(shape=out.shape))
        columns.append(
            np.array([_first_coefficient(e) for e in out], dtype=np.float64)
        )
    return np.column_stack(columns)
