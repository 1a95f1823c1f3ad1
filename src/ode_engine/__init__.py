"""ode_engine: forward-mode AD, Newton solving and fixed-step ODE integration."""

from __future__ import annotations

from . import real
from .ad import ADNumber, constant, derivatives, differentiate, jacobian, variable
from .errors import (
    BracketError,
    IntegrationAbortedError,
    NonConvergenceError,
    OdeEngineError,
    OrderMismatchError,
    SingularJacobianError,
    SingularMatrixError,
    UndefinedArithmeticError,
)
from .integrator import Integrator, RunConfig, integrate
from .linalg import Norm, identity, solve, vector_norm
from .nonlinear import (
    NewtonConfig,
    NewtonResult,
    bisection,
    false_position,
    find_root,
    newton,
    newton_solve,
    secant,
)
from .problem import IntegrationTrace, ODEProblem
from .real import Real
from .steppers import Stepper

__all__ = [
    "ADNumber",
    "BracketError",
    "IntegrationAbortedError",
    "IntegrationTrace",
    "Integrator",
    "NewtonConfig",
    "NewtonResult",
    "NonConvergenceError",
    "Norm",
    "ODEProblem",
    "OdeEngineError",
    "OrderMismatchError",
    "Real",
    "RunConfig",
    "SingularJacobianError",
    "SingularMatrixError",
    "Stepper",
    "UndefinedArithmeticError",
    "bisection",
    "constant",
    "derivatives",
    "differentiate",
    "false_position",
    "find_root",
    "identity",
    "integrate",
    "jacobian",
    "newton",
    "newton_solve",
    "real",
    "secant",
    "solve",
    "variable",
    "vector_norm",
]

__version__ = "0.1.0"
