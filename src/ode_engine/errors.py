# src/ode_engine/errors.py
"""Error types for ode_engine.

This module centralizes the exception taxonomy shared by the AD engine, the
Newton core and the integration engine. Every class derives from
:class:`OdeEngineError` and from the closest builtin exception, so callers can
catch either the package-specific type or the generic one.

All errors are terminal for the operation in progress; nothing in the package
retries with altered parameters.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    import numpy as np

    from .problem import IntegrationTrace


class OdeEngineError(Exception):
    """Base exception for ode_engine errors."""


class UndefinedArithmeticError(OdeEngineError, ArithmeticError):
    """Raised on division by zero or a domain error in a numeric evaluation."""


class OrderMismatchError(OdeEngineError, ValueError):
    """Raised when AD numbers of different truncation order are combined."""

    def __init__(self, left: int, right: int) -> None:
        """Initialize with the two offending orders.

        Args:
            left: Order of the left operand.
            right: Order of the right operand.
        """
        super().__init__(
            f"Cannot combine AD numbers of order {left} and order {right}."
        )
        self.left = left
        self.right = right


class SingularMatrixError(OdeEngineError, ArithmeticError):
    """Raised when a linear system is singular to working precision."""


class SingularJacobianError(SingularMatrixError):
    """Raised when the Jacobian inside a Newton iteration cannot be solved."""

    def __init__(self, msg: str, *, iterations: int, x: Any) -> None:
        """Initialize with the Newton iteration context.

        Args:
            msg: Human-readable message.
            iterations: Number of completed Newton iterations.
            x: Iterate at which the Jacobian was singular.
        """
        super().__init__(msg)
        self.iterations = iterations
        self.x = x


class NonConvergenceError(OdeEngineError, RuntimeError):
    """Raised when Newton iteration exhausts max_iter without meeting tol."""

    def __init__(
        self,
        msg: str,
        *,
        iterations: int,
        x: Any,
        residual_norm: float,
    ) -> None:
        """Initialize with the last Newton iterate.

        Args:
            msg: Human-readable message.
            iterations: Number of completed iterations.
            x: Last iterate.
            residual_norm: Residual norm at the last iterate.
        """
        super().__init__(msg)
        self.iterations = iterations
        self.x = x
        self.residual_norm = residual_norm


class BracketError(OdeEngineError, ValueError):
    """Raised when a bracketing interval does not change sign."""


class IntegrationAbortedError(OdeEngineError, RuntimeError):
    """Raised when a step fails and the integration run is aborted.

    Attributes:
        t: Time of the last committed state.
        y: Last committed state.
        step_index: Index of the step that failed (0 for the first step).
        stepper: Name of the stepper in use.
        stage: Failing stage label ("rhs" or "newton").
        trace: Trace holding every state committed before the failure.
        iterations: Newton iterations reached by the failing solve, or None when
            the failure did not come from a Newton solve.
    """

    def __init__(
        self,
        *,
        t: float,
        y: np.ndarray,
        step_index: int,
        stepper: str,
        stage: str,
        trace: IntegrationTrace,
        reason: str,
        iterations: int | None = None,
    ) -> None:
        """Initialize with the context needed to resume the run.

        Args:
            t: Time of the last committed state.
            y: Last committed state.
            step_index: Index of the failed step.
            stepper: Stepper name.
            stage: Failing stage label.
            trace: Partial trace up to the failure.
            reason: Description of the underlying failure.
            iterations: Newton iterations reached, if applicable.
        """
        msg = (
            f"Integration aborted at step {step_index} (t={t!r}) using "
            f"stepper '{stepper}' during stage '{stage}'"
            + ("" if iterations is None else f" after {iterations} Newton iterations")
            + ".\n"
            f"Reason: {reason}"
        )
        super().__init__(msg)
        self.t = t
        self.y = y
        self.step_index = step_index
        self.stepper = stepper
        self.stage = stage
        self.trace = trace
        self.iterations = iterations


def raise_undefined(operation: str, value: object) -> None:
    """Raise a standardized UndefinedArithmeticError.

    Args:
        operation: Name of the operation (for example, "log").
        value: Offending argument value.

    Raises:
        UndefinedArithmeticError: Always.
    """
    msg = f"{operation} is undefined at {value!r}."
    raise UndefinedArithmeticError(msg)
