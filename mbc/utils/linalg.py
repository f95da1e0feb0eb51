"""Linear algebra utilities for mbc.

Provides Cholesky-based wrappers for the covariance and precision
computations shared by the density evaluator and the Schur-complement
M-step. Unlike a regularizing decomposition, these routines treat a
matrix that is not positive definite as a fatal condition and raise
:class:`~mbc.exceptions.DegenerateClusterError`.
"""

from typing import Optional

import numpy as np
from numpy.typing import NDArray
from scipy.linalg import cholesky, cho_solve, LinAlgError

from mbc.exceptions import DegenerateClusterError


def checked_cholesky(A: NDArray, *, cluster: Optional[int] = None) -> NDArray:
    r"""
    Compute the lower Cholesky factor of a covariance or precision matrix.

    Attempts :math:`L L^T = A`. A non-finite or non positive-definite input
    is reported as a degenerate cluster instead of being regularized.

    Since LAPACK's ``dpotrf`` only reads one triangle of the input matrix,
    explicit symmetrization is unnecessary before calling this function.

    Parameters
    ----------
    A : ndarray, shape (d, d)
        Symmetric positive definite matrix.
    cluster : int, optional
        Cluster index to attach to the raised error.

    Returns
    -------
    L : ndarray, shape (d, d)
        Lower Cholesky factor satisfying :math:`L L^T = A`.

    Raises
    ------
    DegenerateClusterError
        If ``A`` contains non-finite values or is not positive definite.

    Examples
    --------
    >>> import numpy as np
    >>> from mbc.utils import checked_cholesky
    >>> A = np.array([[1.0, 0.5], [0.5, 1.0]])
    >>> L = checked_cholesky(A)
    >>> np.allclose(L @ L.T, A)
    True
    """
    A = np.asarray(A, dtype=float)
    if not np.all(np.isfinite(A)):
        raise DegenerateClusterError(
            "covariance matrix contains non-finite values", cluster=cluster
        )
    try:
        return cholesky(A, lower=True)
    except LinAlgError:
        raise DegenerateClusterError(
            "covariance matrix is singular or not positive definite",
            cluster=cluster,
        ) from None


def log_det_from_cholesky(L: NDArray) -> float:
    r"""
    Log-determinant from a Cholesky factor.

    .. math::
        \log|A| = 2 \sum_{i=1}^d \log L_{ii}
    """
    return 2.0 * float(np.sum(np.log(np.diag(L))))


def precision_matrix(sigma: NDArray, *, cluster: Optional[int] = None) -> NDArray:
    """
    Invert a covariance matrix through its Cholesky factor.

    This is the single inversion routine used by the Schur-complement
    estimators. The result is symmetrized exactly.

    Parameters
    ----------
    sigma : ndarray, shape (d, d)
        Covariance matrix.
    cluster : int, optional
        Cluster index to attach to the raised error.

    Returns
    -------
    precision : ndarray, shape (d, d)

    Raises
    ------
    DegenerateClusterError
        If ``sigma`` is singular or not positive definite.
    """
    L = checked_cholesky(sigma, cluster=cluster)
    precision = cho_solve((L, True), np.eye(L.shape[0]))
    return 0.5 * (precision + precision.T)


def precision_stack(sigma: NDArray) -> NDArray:
    """
    Invert every slice of a ``(d, d, K)`` covariance array.

    Returns
    -------
    precision : ndarray, shape (d, d, K)
    """
    out = np.empty_like(sigma, dtype=float)
    for k in range(sigma.shape[2]):
        out[:, :, k] = precision_matrix(sigma[:, :, k], cluster=k)
    return out
