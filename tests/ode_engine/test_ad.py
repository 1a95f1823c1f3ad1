# tests/ode_engine/test_ad.py
"""Unit tests for ode_engine.ad.

Coverage:
- Polynomial derivatives up to the truncation order are exact.
- Elementary functions (exp/log/sqrt/pow/trig/hyperbolic/inverse trig) match
  their analytic derivatives at a point.
- Constants have zero derivative coefficients at every order.
- Order mismatch, undefined arithmetic and nested AD are rejected.
- NumPy ufuncs dispatch to AD recurrences for scalars and object arrays.
- jacobian() of a linear map A x is exactly A (invertible or not).
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from ode_engine.ad import (
    ADNumber,
    constant,
    derivatives,
    differentiate,
    jacobian,
    variable,
)
from ode_engine.errors import OrderMismatchError, UndefinedArithmeticError

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

_LN2 = math.log(2.0)


def _derivs(f, x0: float, order: int) -> np.ndarray:
    return derivatives(differentiate(f, x0, order))


def _poly(x):
    return 3.0 * x**3 - 2.0 * x**2 + 5.0 * x - 7.0


def _poly_derivs(x: float) -> list[float]:
    return [
        3.0 * x**3 - 2.0 * x**2 + 5.0 * x - 7.0,
        9.0 * x**2 - 4.0 * x + 5.0,
        18.0 * x - 4.0,
        18.0,
        0.0,
        0.0,
    ]


# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------


def test_variable_and_constant_coefficients() -> None:
    """variable seeds d/dx = 1; constant has zero derivative coefficients."""
    x = variable(2.5, 3)
    c = constant(2.5, 3)
    assert x.order == 3
    assert x.coeffs.tolist() == [2.5, 1.0, 0.0, 0.0]
    assert c.coeffs.tolist() == [2.5, 0.0, 0.0, 0.0]
    assert variable(1.0, 0).coeffs.tolist() == [1.0]


def test_coefficients_are_read_only() -> None:
    """ADNumber coefficient storage is immutable."""
    x = variable(1.0, 2)
    with pytest.raises(ValueError, match="read-only"):
        x.coeffs[0] = 3.0


@pytest.mark.parametrize("order", [-1, 1.5, True])
def test_invalid_order_raises(order: object) -> None:
    """Orders must be non-negative integers."""
    with pytest.raises(ValueError, match="order must be a non-negative integer"):
        constant(1.0, order)  # type: ignore[arg-type]


def test_empty_coefficients_raise() -> None:
    """An ADNumber needs at least the value coefficient."""
    with pytest.raises(ValueError, match="non-empty"):
        ADNumber([])


def test_nested_ad_is_rejected() -> None:
    """AD numbers cannot be used as coefficients of other AD numbers."""
    with pytest.raises(TypeError, match="Nested differentiation"):
        constant(variable(1.0, 1), 2)  # type: ignore[arg-type]


def test_coefficient_and_derivative_accessors() -> None:
    """coefficient(k) is f^(k)/k!; derivative(k) rescales by k!."""
    y = differentiate(np.exp, 0.0, 4)
    assert y.coefficient(3) == pytest.approx(1.0 / 6.0)
    assert y.derivative(3) == pytest.approx(1.0)
    assert y.coefficient(10) == 0.0
    with pytest.raises(IndexError):
        y.coefficient(-1)


# -----------------------------------------------------------------------------
# Exactness
# -----------------------------------------------------------------------------


@pytest.mark.parametrize("order", [3, 4, 5])
@pytest.mark.parametrize("x0", [-1.25, 0.0, 1.5, 3.0])
def test_polynomial_derivatives_are_exact(order: int, x0: float) -> None:
    """Cubic derivatives match the analytic ones to rounding precision."""
    got = _derivs(_poly, x0, order)
    expected = np.array(_poly_derivs(x0)[: order + 1])
    assert np.allclose(got, expected, rtol=1e-14, atol=1e-13)


@pytest.mark.parametrize("order", range(7))
def test_constant_has_zero_derivatives(order: int) -> None:
    """Every derivative coefficient of a constant is zero."""
    c = constant(5.0, order)
    assert np.all(derivatives(c)[1:] == 0.0)
    assert derivatives(c)[0] == 5.0

    promoted = differentiate(lambda _x: 5.0, 2.0, order)
    assert promoted.order == order
    assert np.all(promoted.coeffs[1:] == 0.0)


@pytest.mark.parametrize(
    ("func", "x0", "expected"),
    [
        (np.exp, 0.0, [1.0, 1.0, 1.0, 1.0]),
        (np.log, 1.0, [0.0, 1.0, -1.0, 2.0]),
        (np.sin, 0.0, [0.0, 1.0, 0.0, -1.0]),
        (np.cos, 0.0, [1.0, 0.0, -1.0, 0.0]),
        (np.tan, 0.0, [0.0, 1.0, 0.0, 2.0]),
        (np.sinh, 0.0, [0.0, 1.0, 0.0, 1.0]),
        (np.cosh, 0.0, [1.0, 0.0, 1.0, 0.0]),
        (np.tanh, 0.0, [0.0, 1.0, 0.0, -2.0]),
        (np.arctan, 0.0, [0.0, 1.0, 0.0, -2.0]),
        (np.arcsin, 0.0, [0.0, 1.0, 0.0, 1.0]),
        (np.arccos, 0.0, [math.pi / 2.0, -1.0, 0.0, -1.0]),
        (np.sqrt, 4.0, [2.0, 0.25, -1.0 / 32.0, 3.0 / 256.0]),
        (lambda x: 1.0 / x, 2.0, [0.5, -0.25, 0.25, -0.375]),
        (lambda x: x**2.5, 4.0, [32.0, 20.0, 7.5, 0.9375]),
        (lambda x: 2.0**x, 0.0, [1.0, _LN2, _LN2**2, _LN2**3]),
    ],
)
def test_elementary_function_derivatives(
    func, x0: float, expected: list[float]
) -> None:
    """Taylor recurrences reproduce analytic derivatives up to order 3."""
    got = _derivs(func, x0, 3)
    assert np.allclose(got, expected, rtol=1e-12, atol=1e-14)


def test_ad_exponent_power_matches_exp_log() -> None:
    """x ** x uses exp(x log x); d/dx = x^x (1 + log x)."""
    got = _derivs(lambda x: x**x, 2.0, 1)
    assert got[0] == pytest.approx(4.0)
    assert got[1] == pytest.approx(4.0 * (1.0 + math.log(2.0)))


def test_negative_integer_power() -> None:
    """x ** -2 = 1 / x^2 with derivative -2 / x^3."""
    got = _derivs(lambda x: x**-2, 2.0, 2)
    assert np.allclose(got, [0.25, -0.25, 0.375])


def test_tanh_saturates_without_overflow() -> None:
    """tanh at large arguments gives 1 with a vanishing derivative."""
    got = _derivs(np.tanh, 800.0, 1)
    assert got.tolist() == [1.0, 0.0]
    got = _derivs(np.tanh, -800.0, 2)
    assert got.tolist() == [-1.0, 0.0, 0.0]


def test_tanh_higher_derivatives() -> None:
    """tanh' = 1 - t^2, tanh'' = -2 t (1 - t^2), tanh''' = -2 (1 - t^2)(1 - 3 t^2)."""
    x0 = 0.5
    t = math.tanh(x0)
    u = 1.0 - t * t
    expected = [t, u, -2.0 * t * u, -2.0 * u * (1.0 - 3.0 * t * t)]
    assert np.allclose(_derivs(np.tanh, x0, 3), expected, rtol=1e-13, atol=0.0)


def test_chain_rule_through_composition() -> None:
    """d/dx sin(x^2) = 2 x cos(x^2)."""
    x0 = 0.7
    got = _derivs(lambda x: np.sin(x * x), x0, 1)
    assert got[1] == pytest.approx(2.0 * x0 * math.cos(x0 * x0), rel=1e-14)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


def test_order_mismatch_raises() -> None:
    """Combining AD numbers of different order is an error."""
    with pytest.raises(OrderMismatchError, match="order 2 and order 3"):
        _ = variable(1.0, 2) + variable(1.0, 3)
    with pytest.raises(ValueError):
        _ = variable(1.0, 2) * variable(1.0, 1)


@pytest.mark.parametrize(
    "func",
    [
        lambda x: 1.0 / x,
        np.log,
        np.sqrt,
        lambda x: x**0.5,
        abs,
    ],
)
def test_undefined_at_zero_raises(func) -> None:
    """Operations undefined at the evaluation point raise UndefinedArithmeticError."""
    with pytest.raises(UndefinedArithmeticError):
        differentiate(func, 0.0, 2)


def test_domain_errors_raise() -> None:
    """Out-of-domain arguments raise rather than producing NaN coefficients."""
    with pytest.raises(UndefinedArithmeticError):
        differentiate(np.log, -1.0, 1)
    with pytest.raises(UndefinedArithmeticError):
        differentiate(np.arcsin, 1.0, 1)
    with pytest.raises(UndefinedArithmeticError):
        differentiate(lambda x: x**0.5, -4.0, 1)
    with pytest.raises(ArithmeticError):
        differentiate(lambda x: (-2.0) ** x, 1.0, 1)


# -----------------------------------------------------------------------------
# Comparisons and NumPy interoperability
# -----------------------------------------------------------------------------


def test_comparisons_use_value() -> None:
    """Ordering compares values; equality with reals compares values."""
    x = variable(1.0, 2)
    assert x < 2.0
    assert x >= 1.0
    assert constant(3.0, 2) == 3.0
    assert constant(3.0, 2) == constant(3.0, 2)
    assert variable(3.0, 2) != constant(3.0, 2)
    assert "order=2" in repr(x)


def test_ufuncs_on_object_arrays() -> None:
    """np.exp over an object array of AD numbers applies the recurrence per element."""
    arr = np.array([variable(0.0, 2), variable(1.0, 2)], dtype=object)
    out = np.exp(arr)
    assert out.dtype == object
    assert np.allclose(derivatives(out[0]), [1.0, 1.0, 1.0])
    assert np.allclose(derivatives(out[1]), [math.e] * 3)


def test_numpy_scalar_operands() -> None:
    """NumPy float scalars combine with AD numbers like Python floats."""
    x = variable(2.0, 1)
    y = np.float64(3.0) * x + np.float64(1.0)
    assert isinstance(y, ADNumber)
    assert y.coeffs.tolist() == [7.0, 3.0]


# -----------------------------------------------------------------------------
# Jacobian
# -----------------------------------------------------------------------------


@pytest.mark.parametrize(
    "matrix",
    [
        np.array([[2.0, -1.0, 0.5], [0.0, 3.0, 1.0], [4.0, 0.25, -2.0]]),
        np.array([[1.0, 2.0], [2.0, 4.0]]),
        np.array([[1.5, -2.0, 0.0, 3.0], [0.0, 0.0, 0.0, 0.0]]),
    ],
    ids=["invertible", "singular", "rectangular"],
)
def test_jacobian_of_linear_map_is_exact(matrix: np.ndarray) -> None:
    """jacobian(A x) equals A exactly."""
    x = np.linspace(-1.0, 2.0, matrix.shape[1])
    jac = jacobian(lambda v: matrix @ v, x)
    assert jac.shape == matrix.shape
    assert np.array_equal(jac, matrix)


def test_jacobian_of_nonlinear_map() -> None:
    """Jacobian of (x0 x1, sin x0 + x1^2) at (1, 2)."""

    def f(v: np.ndarray) -> list:
        return [v[0] * v[1], np.sin(v[0]) + v[1] ** 2]

    jac = jacobian(f, [1.0, 2.0])
    expected = np.array([[2.0, 1.0], [math.cos(1.0), 4.0]])
    assert np.allclose(jac, expected, rtol=1e-14)


def test_jacobian_constant_component_has_zero_row() -> None:
    """Outputs that do not depend on x contribute zero rows."""
    jac = jacobian(lambda v: [v[0] + v[1], 3.0], [1.0, 1.0])
    assert np.array_equal(jac, [[1.0, 1.0], [0.0, 0.0]])


def test_jacobian_rejects_bad_shapes() -> None:
    """The point must be a non-empty 1D array and the output 1D."""
    with pytest.raises(ValueError, match="jacobian point"):
        jacobian(lambda v: v, np.zeros((2, 2)))
    with pytest.raises(ValueError, match="output must be 1D"):
        jacobian(lambda v: np.outer(v, v), [1.0, 2.0])
