"""
Weighted moment estimators.

Responsibilities act as soft counts, so every covariance here uses
maximum-likelihood normalization: the weights are rescaled to sum to one
and no ``N - 1`` style correction is applied. With uniform weights the
estimators reproduce ``np.mean(X, axis=0)`` and
``np.cov(X, rowvar=False, bias=True)``.
"""

from typing import Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from mbc.exceptions import ConfigurationError, DegenerateClusterError
from mbc.utils.validation import as_data_matrix as _as_2d

# Cluster weight sums at or below this are treated as empty.
EMPTY_CLUSTER_TOL = 10 * np.finfo(float).eps


def normalize_weights(w: ArrayLike, n: int) -> NDArray:
    """
    Validate a weight vector and rescale it to sum to one.

    Parameters
    ----------
    w : array_like, shape (n,)
        Non-negative weights.
    n : int
        Expected number of observations.

    Returns
    -------
    w : ndarray, shape (n,)
        Weights summing to one.

    Raises
    ------
    ConfigurationError
        On a length mismatch or negative / non-finite weights.
    DegenerateClusterError
        If the weights sum to (numerically) zero.
    """
    w = np.asarray(w, dtype=float).ravel()
    if w.shape[0] != n:
        raise ConfigurationError(
            f"Weight vector has length {w.shape[0]}, expected {n}"
        )
    if not np.all(np.isfinite(w)) or np.any(w < 0):
        raise ConfigurationError("Weights must be finite and non-negative")
    total = w.sum()
    if total <= EMPTY_CLUSTER_TOL:
        raise DegenerateClusterError("weights sum to zero")
    return w / total


def weighted_mean(X: ArrayLike, w: ArrayLike) -> NDArray:
    r"""
    Weighted column means :math:`\sum_i w_i x_i / \sum_i w_i`.

    Parameters
    ----------
    X : array_like, shape (n, d)
        Data matrix.
    w : array_like, shape (n,)
        Non-negative weights.

    Returns
    -------
    mean : ndarray, shape (d,)
    """
    X = _as_2d(X)
    w = normalize_weights(w, X.shape[0])
    return w @ X


def weighted_cross_cov(
    X: ArrayLike,
    Y: ArrayLike,
    w: ArrayLike,
    *,
    center_x: Optional[NDArray] = None,
    center_y: Optional[NDArray] = None,
) -> NDArray:
    r"""
    Weighted cross-covariance between two feature blocks.

    .. math::
        C = (\sqrt{w} \odot X_c)^T (\sqrt{w} \odot Y_c)

    where :math:`w` is normalized to sum to one and :math:`X_c, Y_c` are
    the blocks centred at their own weighted means (or at the supplied
    centres).

    Parameters
    ----------
    X : array_like, shape (n, d_x)
    Y : array_like, shape (n, d_y)
    w : array_like, shape (n,)
        Non-negative shared weights.
    center_x, center_y : ndarray, optional
        Centres to subtract instead of the weighted means.

    Returns
    -------
    cov : ndarray, shape (d_x, d_y)
    """
    X = _as_2d(X)
    Y = _as_2d(Y)
    if X.shape[0] != Y.shape[0]:
        raise ConfigurationError(
            f"Blocks have different numbers of rows: {X.shape[0]} and {Y.shape[0]}"
        )
    w = normalize_weights(w, X.shape[0])
    if center_x is None:
        center_x = w @ X
    if center_y is None:
        center_y = w @ Y
    sw = np.sqrt(w)[:, np.newaxis]
    return (sw * (X - center_x)).T @ (sw * (Y - center_y))


def weighted_cov(
    X: ArrayLike,
    w: ArrayLike,
    *,
    center: Optional[NDArray] = None,
) -> NDArray:
    """
    Weighted maximum-likelihood covariance matrix.

    Same as :func:`weighted_cross_cov` with ``Y = X``, symmetrized exactly.

    Parameters
    ----------
    X : array_like, shape (n, d)
    w : array_like, shape (n,)
    center : ndarray, optional
        Centre to subtract instead of the weighted mean.

    Returns
    -------
    cov : ndarray, shape (d, d)
    """
    C = weighted_cross_cov(X, X, w, center_x=center, center_y=center)
    return 0.5 * (C + C.T)


def cluster_weight_totals(z: NDArray) -> NDArray:
    """
    Column sums of a responsibility matrix, raising on any empty cluster.

    Raises
    ------
    DegenerateClusterError
        If a cluster's effective weight is numerically zero.
    """
    nk = z.sum(axis=0)
    for k in np.flatnonzero(nk <= EMPTY_CLUSTER_TOL):
        raise DegenerateClusterError(
            "cluster has zero responsibility weight", cluster=int(k)
        )
    return nk
