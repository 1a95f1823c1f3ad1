# src/ode_engine/linalg.py
"""Linear-solve capability and vector norms for the Newton core.

Matrix storage and decompositions are delegated to SciPy/NumPy; this module is
the single boundary where they are consumed:

- Dense LU solves with an explicit singularity check (SciPy's lu_factor only
  warns on exactly-zero pivots, so the pivot magnitudes are inspected here).
- Vector norms used for Newton convergence tests.
- Assembly of the Newton matrices of the implicit steppers:
    * implicit Euler:       I - h J
    * s-stage collocation:  I - h (A (x) J_i), with stage-row Jacobians J_i

Design notes:
    * Operators may be dense ndarrays or SciPy sparse matrices; sparse inputs
      are densified.
    * Nothing is cached across calls; each Newton iteration factorizes its own
      Jacobian.
"""

from __future__ import annotations

import warnings
from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING, TypeAlias, cast

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import LinAlgError, LinAlgWarning, lu_factor, lu_solve
from scipy.sparse import issparse, spmatrix

from .errors import SingularMatrixError

if TYPE_CHECKING:
    from numpy.typing import ArrayLike


# =============================================================================
# Public operator types
# =============================================================================

DenseOperator: TypeAlias = NDArray[np.float64]
Operator: TypeAlias = DenseOperator | spmatrix


# =============================================================================
# Error message constants
# =============================================================================

_OPERATOR_SQUARE_ERROR = "Operator must be square; got shape {shape}"
_OPERATOR_DIM_ERROR = "Operator shape {shape} is incompatible with b shape {b_shape}"
_B_NDIM_ERROR = "b must be 1D or 2D; got ndim={ndim}"
_NONFINITE_ERROR = "Linear system contains non-finite entries"
_SINGULAR_ERROR = (
    "Matrix is singular to working precision "
    "(smallest pivot {pivot:.3e}, largest pivot {scale:.3e})"
)
_STEP_SCALE_ERROR = "h must be a finite float; got {h}"
_TABLEAU_SHAPE_ERROR = "Tableau shape {shape} does not match {n_stages} stage Jacobians"
_STAGE_JAC_SHAPE_ERROR = "Stage Jacobians must share one square shape; got {shapes}"
_LP_ORDER_ERROR = "Lp norm requires p >= 1; got {p}"


# =============================================================================
# Norms
# =============================================================================


class Norm(Enum):
    """Kinds of vector norm used for convergence tests."""

    L1 = "l1"
    L2 = "l2"
    LP = "lp"
    LINF = "linf"


def vector_norm(x: ArrayLike, kind: Norm = Norm.L2, *, p: float = 2.0) -> float:
    """
    Compute a vector norm.

    Args:
        x: 1D array (flattened if higher-dimensional).
        kind: Norm kind.
        p: Exponent for Norm.LP.

    Raises:
        ValueError: If p < 1 for Norm.LP.

    Returns:
        Norm value as a float.
    """
    arr = np.ravel(np.asarray(x, dtype=np.float64))
    if arr.size == 0:
        return 0.0
    if kind is Norm.L1:
        return float(np.sum(np.abs(arr)))
    if kind is Norm.LINF:
        return float(np.max(np.abs(arr)))
    if kind is Norm.LP:
        if not p >= 1.0:
            raise ValueError(_LP_ORDER_ERROR.format(p=p))
        return float(np.linalg.norm(arr, ord=p))
    return float(np.linalg.norm(arr))


# =============================================================================
# Dense helpers
# =============================================================================


def as_dense(op: Operator | ArrayLike) -> DenseOperator:
    """Return a float64 ndarray view/copy of a dense or sparse operator."""
    if issparse(op):
        return np.asarray(cast("spmatrix", op).toarray(), dtype=np.float64)
    return np.asarray(op, dtype=np.float64)


def identity(n: int) -> DenseOperator:
    """Dense n x n identity."""
    return np.eye(n, dtype=np.float64)


def _validate_square(a: DenseOperator) -> int:
    if a.ndim != 2 or a.shape[0] != a.shape[1]:
        raise ValueError(_OPERATOR_SQUARE_ERROR.format(shape=a.shape))
    return int(a.shape[0])


# =============================================================================
# Linear solve
# =============================================================================


def solve(a: Operator | ArrayLike, b: ArrayLike) -> NDArray[np.float64]:
    """
    Solve a @ x = b with LU factorization.

    Args:
        a: Square coefficient matrix (dense or sparse).
        b: Right-hand side, 1D of length n or 2D of shape (n, k).

    Raises:
        ValueError: If shapes are incompatible.
        SingularMatrixError: If a is singular to working precision or the
            system contains non-finite values.

    Returns:
        Solution x with the shape of b.
    """
    a_arr = as_dense(a)
    n = _validate_square(a_arr)
    b_arr = np.asarray(b, dtype=np.float64)
    if b_arr.ndim not in {1, 2}:
        raise ValueError(_B_NDIM_ERROR.format(ndim=b_arr.ndim))
    if b_arr.shape[0] != n:
        raise ValueError(
            _OPERATOR_DIM_ERROR.format(shape=a_arr.shape, b_shape=b_arr.shape)
        )

    if not (np.all(np.isfinite(a_arr)) and np.all(np.isfinite(b_arr))):
        raise SingularMatrixError(_NONFINITE_ERROR)

    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", LinAlgWarning)
            lu, piv = lu_factor(a_arr, check_finite=False)
    except (LinAlgError, ValueError) as exc:
        raise SingularMatrixError(str(exc)) from exc

    pivots = np.abs(np.diag(lu))
    scale = float(pivots.max()) if pivots.size else 0.0
    smallest = float(pivots.min()) if pivots.size else 0.0
    if scale == 0.0 or smallest <= n * np.finfo(np.float64).eps * scale:
        raise SingularMatrixError(_SINGULAR_ERROR.format(pivot=smallest, scale=scale))

    x = lu_solve((lu, piv), b_arr, check_finite=False)
    if not np.all(np.isfinite(x)):
        raise SingularMatrixError(_NONFINITE_ERROR)
    return np.asarray(x, dtype=np.float64)


# =============================================================================
# Newton matrices of implicit steppers
# =============================================================================


def implicit_euler_jacobian(jac_f: Operator | ArrayLike, h: float) -> DenseOperator:
    """
    Build the Newton matrix I - h J of the implicit Euler residual.

    Args:
        jac_f: Jacobian df/dy at the new state.
        h: Step size.

    Raises:
        ValueError: If h is not finite or jac_f is not square.

    Returns:
        Dense (n, n) matrix.
    """
    if not np.isfinite(h):
        raise ValueError(_STEP_SCALE_ERROR.format(h=h))
    j_arr = as_dense(jac_f)
    n = _validate_square(j_arr)
    return identity(n) - h * j_arr


def collocation_jacobian(
    stage_jacobians: Sequence[Operator | ArrayLike],
    tableau: ArrayLike,
    h: float,
) -> DenseOperator:
    """
    Build the Newton matrix of an s-stage collocation system in the stage slopes.

    For unknowns K = (k_1, ..., k_s) and residual
        R_i(K) = k_i - f(t + c_i h, y + h sum_j a_ij k_j),
    the Jacobian has blocks dR_i/dk_j = delta_ij I - h a_ij J_i, where J_i is
    df/dy evaluated at stage i. Row block i is kron(a[i, :], J_i).

    Args:
        stage_jacobians: Sequence of s Jacobians J_i, each (n, n).
        tableau: Butcher matrix A of shape (s, s).
        h: Step size.

    Raises:
        ValueError: If shapes are inconsistent or h is not finite.

    Returns:
        Dense (s*n, s*n) matrix.
    """
    if not np.isfinite(h):
        raise ValueError(_STEP_SCALE_ERROR.format(h=h))
    jacs = [as_dense(j) for j in stage_jacobians]
    a_arr = np.asarray(tableau, dtype=np.float64)
    s = len(jacs)
    if a_arr.shape != (s, s):
        raise ValueError(_TABLEAU_SHAPE_ERROR.format(shape=a_arr.shape, n_stages=s))

    shapes = {j.shape for j in jacs}
    if len(shapes) != 1:
        raise ValueError(_STAGE_JAC_SHAPE_ERROR.format(shapes=sorted(shapes)))
    n = _validate_square(jacs[0])

    coupling = np.vstack([np.kron(a_arr[i : i + 1, :], jacs[i]) for i in range(s)])
    return identity(s * n) - h * coupling
