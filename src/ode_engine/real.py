# src/ode_engine/real.py
"""Numeric-value abstraction shared by plain scalars and AD numbers.

Every algorithm in ode_engine (Newton iteration, the steppers, the residuals
of implicit methods) is written once against the small capability set below,
and therefore runs unchanged on plain floats or on :class:`ADNumber` values:

    + - * / ** (and reflected forms), unary minus, ordering, float(x)

Right-hand-side functions may use either the generic functions of this module
(``real.exp(x)``) or NumPy ufuncs (``np.exp(x)``); both dispatch to the Taylor
recurrences when given AD numbers. The functions here additionally turn domain
errors on plain scalars into :class:`UndefinedArithmeticError`, matching the
AD behavior, instead of returning NaN.
"""

from __future__ import annotations

import math
import numbers
from collections.abc import Callable
from typing import Protocol, TypeVar, runtime_checkable

from .ad import ADNumber
from .errors import UndefinedArithmeticError, raise_undefined

_POWI_TYPE_ERROR = "powi exponent must be an integer; got {typ}"


@runtime_checkable
class Real(Protocol):
    """Capability set implemented by float and ADNumber."""

    def __add__(self, other: object, /) -> object: ...

    def __sub__(self, other: object, /) -> object: ...

    def __mul__(self, other: object, /) -> object: ...

    def __truediv__(self, other: object, /) -> object: ...

    def __neg__(self) -> object: ...

    def __lt__(self, other: object, /) -> bool: ...

    def __float__(self) -> float: ...


R = TypeVar("R", float, ADNumber)


def is_ad(x: object) -> bool:
    """Return True if x is an AD number."""
    return isinstance(x, ADNumber)


def to_scalar(x: object) -> float:
    """Convert a Real to a plain float (the AD value for AD numbers).

    Raises:
        TypeError: If x is neither an ADNumber nor a real number.
    """
    if isinstance(x, ADNumber):
        return x.value
    if isinstance(x, numbers.Real):
        return float(x)
    msg = f"Expected a Real value; got {type(x).__name__}"
    raise TypeError(msg)


def _scalar_call(name: str, func: Callable[[float], float], x: float) -> float:
    try:
        return func(float(x))
    except (ValueError, OverflowError, ZeroDivisionError) as exc:
        msg = f"{name} is undefined at {x!r}."
        raise UndefinedArithmeticError(msg) from exc


def _generic(
    name: str,
    method: str,
    func: Callable[[float], float],
) -> Callable[[R], R]:
    def apply(x: R) -> R:
        if isinstance(x, ADNumber):
            return getattr(x, method)()
        return _scalar_call(name, func, x)

    apply.__name__ = name
    apply.__doc__ = f"Generic {name} over plain scalars and AD numbers."
    return apply


def _tan(x: float) -> float:
    if math.cos(x) == 0.0:
        raise ValueError(x)
    return math.tan(x)


exp = _generic("exp", "exp", math.exp)
ln = _generic("ln", "log", math.log)
log = ln
sqrt = _generic("sqrt", "sqrt", math.sqrt)
sin = _generic("sin", "sin", math.sin)
cos = _generic("cos", "cos", math.cos)
tan = _generic("tan", "tan", _tan)
sinh = _generic("sinh", "sinh", math.sinh)
cosh = _generic("cosh", "cosh", math.cosh)
tanh = _generic("tanh", "tanh", math.tanh)
asin = _generic("asin", "arcsin", math.asin)
acos = _generic("acos", "arccos", math.acos)
atan = _generic("atan", "arctan", math.atan)


def powf(x: R, p: float) -> R:
    """Raise x to a real power.

    Args:
        x: Base (scalar or AD number).
        p: Real exponent.

    Raises:
        UndefinedArithmeticError: For non-integer powers of negative values or
            negative powers of zero.

    Returns:
        x ** p.
    """
    if isinstance(x, ADNumber):
        return x ** float(p)
    base = float(x)
    exponent = float(p)
    if base < 0.0 and not exponent.is_integer():
        raise_undefined("pow", (base, exponent))
    if base == 0.0 and exponent < 0.0:
        raise_undefined("pow", (base, exponent))
    return _scalar_call("pow", lambda b: math.pow(b, exponent), base)


def powi(x: R, n: int) -> R:
    """Raise x to an integer power.

    Raises:
        TypeError: If n is not an integer.
        UndefinedArithmeticError: For negative powers of zero.
    """
    if isinstance(n, bool) or not isinstance(n, numbers.Integral):
        raise TypeError(_POWI_TYPE_ERROR.format(typ=type(n).__name__))
    if isinstance(x, ADNumber):
        return x ** int(n)
    if float(x) == 0.0 and n < 0:
        raise_undefined("pow", (float(x), int(n)))
    return float(x) ** int(n)
