"""
Conditional (batch-correction) E-step and M-step.

A new batch B is modelled jointly with a reference batch A. Within cluster
:math:`k` the concatenated vector :math:`(a, b)` is Gaussian with

.. math::
    \\begin{pmatrix} \\mu_{A,k} \\\\ \\mu_{B,k} \\end{pmatrix}, \\qquad
    \\begin{pmatrix}
    \\Sigma_{AA,k} & \\Sigma_{AB,k} \\\\
    \\Sigma_{AB,k}^T & \\Sigma_{BB,k}
    \\end{pmatrix}.

Writing :math:`P_k = \\Sigma_{AA,k}^{-1}` and :math:`G_k = \\Sigma_{AB,k}^T P_k`,
the Schur-complement identity gives

.. math::
    E[b \\mid a] = \\mu_{B,k} + G_k (a - \\mu_{A,k}), \\qquad
    \\Sigma_{BB,k} = \\Sigma_{B|A,k} + G_k \\Sigma_{AB,k}.

The M-step estimators follow directly: the block-B mean is the weighted
mean of B corrected for how far the observed A values sit from their
cluster mean, and the block-B covariance is the weighted covariance of the
regression residuals plus the part explained by A.
"""

import enum
from typing import Optional, Tuple, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.special import logsumexp

from mbc.distributions.normal import gaussian_logpdf
from mbc.exceptions import ConfigurationError
from mbc.mixture.standard import normalize_log_responsibilities, weighted_moments_by_cluster
from mbc.params import ConditionalMixtureParams
from mbc.utils.linalg import precision_matrix, precision_stack
from mbc.utils.validation import as_data_matrix
from mbc.utils.weighted import (
    cluster_weight_totals,
    normalize_weights,
    weighted_cross_cov,
    weighted_mean,
)


class CrossCovarianceMethod(enum.Enum):
    """
    How the block-A / block-B cross-covariance is estimated.

    ANALYTIC
        Weighted cross-covariance with each block centred at its own
        weighted mean.
    NUMERIC
        Direct weighted cross-product of the deviations from the model
        means, using the previous iteration's cross-covariance to place
        the block-B mean.
    """
    ANALYTIC = "analytic"
    NUMERIC = "numeric"

    @classmethod
    def coerce(cls, method: Union[str, 'CrossCovarianceMethod']) -> 'CrossCovarianceMethod':
        """Resolve a method name or member, raising ConfigurationError."""
        if isinstance(method, cls):
            return method
        try:
            return cls(method)
        except ValueError:
            valid = ", ".join(repr(m.value) for m in cls)
            raise ConfigurationError(
                f"Unknown method_sigma_AB={method!r}; expected one of {valid}"
            ) from None


# ============================================================================
# Shape helpers
# ============================================================================

def _per_cluster_mean(mean: ArrayLike, p: int, groups: int, name: str) -> NDArray:
    """
    Broadcast a shared or per-cluster mean to shape (p, groups).

    With ``p == 1`` a length-``groups`` vector holds one scalar mean per
    cluster.
    """
    given = np.asarray(mean, dtype=float)
    mean = given
    if given.ndim == 1:
        if p == 1 and given.size == groups:
            mean = given[np.newaxis, :]
        elif given.size == p:
            mean = np.repeat(given[:, np.newaxis], groups, axis=1)
    if mean.shape != (p, groups):
        raise ConfigurationError(
            f"{name} has shape {given.shape}, expected {(p,)} or {(p, groups)}"
        )
    return mean


def _per_cluster_matrix(
    mat: ArrayLike, rows: int, cols: int, groups: int, name: str
) -> NDArray:
    mat = np.asarray(mat, dtype=float)
    if mat.ndim == 2:
        mat = np.repeat(mat[:, :, np.newaxis], groups, axis=2)
    if mat.shape != (rows, cols, groups):
        raise ConfigurationError(
            f"{name} has shape {mat.shape}, expected {(rows, cols)} or "
            f"{(rows, cols, groups)}"
        )
    return mat


def resolve_block_A(
    mean_A: Optional[ArrayLike],
    sigma_AA: Optional[ArrayLike],
    precision_AA: Optional[ArrayLike],
    p_A: int,
    groups: int,
) -> Tuple[NDArray, NDArray, NDArray]:
    """
    Broadcast block-A parameters to per-cluster arrays.

    Either ``sigma_AA`` or ``precision_AA`` (or both) must be given; the
    missing one is obtained by inverting the other once per cluster.

    Returns
    -------
    mean_A : ndarray, shape (p_A, K)
    sigma_AA : ndarray, shape (p_A, p_A, K)
    precision_AA : ndarray, shape (p_A, p_A, K)
    """
    if mean_A is None:
        raise ConfigurationError("mean_A is required")
    if sigma_AA is None and precision_AA is None:
        raise ConfigurationError("One of sigma_AA or precision_AA is required")
    mean_A = _per_cluster_mean(mean_A, p_A, groups, "mean_A")
    if precision_AA is not None:
        precision_AA = _per_cluster_matrix(precision_AA, p_A, p_A, groups, "precision_AA")
    if sigma_AA is not None:
        sigma_AA = _per_cluster_matrix(sigma_AA, p_A, p_A, groups, "sigma_AA")
    if precision_AA is None:
        precision_AA = precision_stack(sigma_AA)
    elif sigma_AA is None:
        sigma_AA = precision_stack(precision_AA)
    return mean_A, sigma_AA, precision_AA


def _check_blocks(x_A: NDArray, x_B: NDArray, z: NDArray) -> None:
    if x_A.shape[0] != x_B.shape[0]:
        raise ConfigurationError(
            f"x_A has {x_A.shape[0]} rows but x_B has {x_B.shape[0]}; "
            "blocks must describe the same observations"
        )
    if z.shape[0] != x_B.shape[0]:
        raise ConfigurationError(
            f"z has {z.shape[0]} rows but the data have {x_B.shape[0]}"
        )


# ============================================================================
# Estimators
# ============================================================================

def estimate_sigma_AB(
    x_A: NDArray,
    x_B: NDArray,
    w: NDArray,
    *,
    mean_A: Optional[NDArray] = None,
    mean_B: Optional[NDArray] = None,
) -> NDArray:
    """
    Cross-covariance of blocks A and B under weights ``w``.

    With no centres this is the analytic estimate (each block centred at
    its weighted mean); with both centres it is the direct cross-product
    of deviations from the model means.

    Returns
    -------
    cov : ndarray, shape (p_A, p_B)
    """
    return weighted_cross_cov(x_A, x_B, w, center_x=mean_A, center_y=mean_B)


def estimate_mu_B(
    x_A: NDArray,
    x_B: NDArray,
    w: NDArray,
    *,
    mean_A: NDArray,
    sigma_AB: NDArray,
    precision_A: NDArray,
) -> NDArray:
    """
    Block-B cluster mean corrected for block A's deviation.

    .. math::
        \\mu_B = \\bar{x}_B - \\Sigma_{AB}^T P_A\\, \\overline{(x_A - \\mu_A)}

    where bars denote weighted means.

    Returns
    -------
    mean_B : ndarray, shape (p_B,)
    """
    deviation_A = weighted_mean(x_A - mean_A, w)
    return weighted_mean(x_B, w) - sigma_AB.T @ precision_A @ deviation_A


def estimate_sigma_BB(
    x_A: NDArray,
    x_B: NDArray,
    w: NDArray,
    *,
    mean_A: NDArray,
    mean_B: NDArray,
    sigma_AB: NDArray,
    precision_A: NDArray,
) -> NDArray:
    """
    Unconditional block-B covariance through the Schur decomposition.

    .. math::
        \\Sigma_{BB} = \\sum_i w_i r_i r_i^T + \\Sigma_{AB}^T P_A \\Sigma_{AB},
        \\qquad
        r_i = x_{B,i} - \\mu_B - \\Sigma_{AB}^T P_A (x_{A,i} - \\mu_A)

    with ``w`` normalized to sum to one. With the analytic cross-covariance
    and block A at its own weighted moments this equals the weighted
    covariance of ``x_B``.

    Returns
    -------
    sigma_BB : ndarray, shape (p_B, p_B)
    """
    w = normalize_weights(w, x_B.shape[0])
    gain = sigma_AB.T @ precision_A
    residual = x_B - mean_B - (x_A - mean_A) @ gain.T
    sw = np.sqrt(w)[:, np.newaxis]
    conditional = (sw * residual).T @ (sw * residual)
    out = conditional + gain @ sigma_AB
    return 0.5 * (out + out.T)


# ============================================================================
# M-step / E-step / log-likelihood
# ============================================================================

def m_step_cond(
    x_A: ArrayLike,
    x_B: ArrayLike,
    z: ArrayLike,
    *,
    mean_A: Optional[ArrayLike] = None,
    sigma_AA: Optional[ArrayLike] = None,
    precision_AA: Optional[ArrayLike] = None,
    sigma_AB: Optional[ArrayLike] = None,
    method: Union[str, CrossCovarianceMethod] = CrossCovarianceMethod.ANALYTIC,
    update_A: bool = False,
) -> ConditionalMixtureParams:
    """
    Conditional maximisation step.

    Parameters
    ----------
    x_A : array_like, shape (N, p_A)
        Reference-batch observations paired with the rows of ``x_B``.
    x_B : array_like, shape (N, p_B)
        Current-batch observations.
    z : array_like, shape (N, K)
        Responsibility matrix.
    mean_A : array_like, shape (p_A, K) or (p_A,)
        Block-A cluster means the block-B estimates are computed against.
    sigma_AA : array_like, shape (p_A, p_A, K) or (p_A, p_A), optional
        Block-A cluster covariances. One of ``sigma_AA`` or
        ``precision_AA`` is required.
    precision_AA : array_like, optional
        Block-A precision matrices; used directly instead of inverting
        ``sigma_AA``.
    sigma_AB : array_like, shape (p_A, p_B, K), optional
        Cross-covariance from the previous iteration. Only the numeric
        method uses it; on the first iteration it is absent and the
        analytic estimate stands in.
    method : {'analytic', 'numeric'} or CrossCovarianceMethod
        Cross-covariance estimator.
    update_A : bool
        Return block-A means and covariances re-estimated from ``z``
        instead of the supplied snapshot. The block-B estimates still use
        the supplied snapshot.

    Returns
    -------
    params : ConditionalMixtureParams
        Block-B estimates plus the block-A snapshot for the next E-step.

    Raises
    ------
    DegenerateClusterError
        If a cluster is empty or a block-A covariance is singular.
    """
    method = CrossCovarianceMethod.coerce(method)
    x_A = as_data_matrix(x_A, "x_A")
    x_B = as_data_matrix(x_B, "x_B")
    z = np.asarray(z, dtype=float)
    if z.ndim == 1:
        z = z.reshape(-1, 1)
    _check_blocks(x_A, x_B, z)

    p_A = x_A.shape[1]
    p_B = x_B.shape[1]
    groups = z.shape[1]
    cluster_weight_totals(z)

    mean_A, sigma_AA, precision_AA = resolve_block_A(
        mean_A, sigma_AA, precision_AA, p_A, groups
    )
    if sigma_AB is not None:
        sigma_AB = _per_cluster_matrix(sigma_AB, p_A, p_B, groups, "sigma_AB")

    mean_B = np.empty((p_B, groups))
    sigma_BB = np.empty((p_B, p_B, groups))
    cov_AB = np.empty((p_A, p_B, groups))

    for k in range(groups):
        w = z[:, k]
        mu_A = mean_A[:, k]
        P = precision_AA[:, :, k]

        analytic = estimate_sigma_AB(x_A, x_B, w)
        if method is CrossCovarianceMethod.ANALYTIC:
            mu_B = estimate_mu_B(
                x_A, x_B, w, mean_A=mu_A, sigma_AB=analytic, precision_A=P
            )
            C = analytic
        else:
            previous = analytic if sigma_AB is None else sigma_AB[:, :, k]
            mu_B = estimate_mu_B(
                x_A, x_B, w, mean_A=mu_A, sigma_AB=previous, precision_A=P
            )
            C = estimate_sigma_AB(x_A, x_B, w, mean_A=mu_A, mean_B=mu_B)

        mean_B[:, k] = mu_B
        cov_AB[:, :, k] = C
        sigma_BB[:, :, k] = estimate_sigma_BB(
            x_A, x_B, w, mean_A=mu_A, mean_B=mu_B, sigma_AB=C, precision_A=P
        )

    if update_A:
        mean_A, sigma_AA = weighted_moments_by_cluster(x_A, z)

    return ConditionalMixtureParams(
        pro=z.mean(axis=0),
        mean=mean_B,
        sigma=sigma_BB,
        cov=cov_AB,
        mean_A=mean_A,
        sigma_AA=sigma_AA,
    )


def joint_log_densities(
    x_A: ArrayLike, x_B: ArrayLike, params: ConditionalMixtureParams
) -> NDArray:
    """
    Matrix of :math:`\\log \\pi_k + \\log \\phi((a_i, b_i); \\mu_k, \\Sigma_k)`
    for the joint block-A / block-B Gaussian of each cluster.

    Returns
    -------
    log_prob : ndarray, shape (N, K)
    """
    x_A = as_data_matrix(x_A, "x_A")
    x_B = as_data_matrix(x_B, "x_B")
    if x_A.shape[0] != x_B.shape[0]:
        raise ConfigurationError(
            f"x_A has {x_A.shape[0]} rows but x_B has {x_B.shape[0]}"
        )
    groups = params.groups
    if x_A.shape[1] != params.d_A or x_B.shape[1] != params.d:
        raise ConfigurationError(
            f"Blocks have widths ({x_A.shape[1]}, {x_B.shape[1]}) but parameters "
            f"describe ({params.d_A}, {params.d})"
        )
    x = np.hstack([x_A, x_B])
    log_prob = np.empty((x.shape[0], groups))
    with np.errstate(divide='ignore'):
        log_pro = np.log(params.pro)
    for k in range(groups):
        log_prob[:, k] = log_pro[k] + gaussian_logpdf(
            x, params.joint_mean(k), params.joint_sigma(k), cluster=k
        )
    return log_prob


def e_step_cond(
    x_A: ArrayLike, x_B: ArrayLike, params: ConditionalMixtureParams
) -> NDArray:
    """
    Conditional expectation step over the joint (A, B) density.

    Parameters
    ----------
    x_A : array_like, shape (N, p_A)
    x_B : array_like, shape (N, p_B)
    params : ConditionalMixtureParams

    Returns
    -------
    z : ndarray, shape (N, K)
        Row-stochastic responsibility matrix.
    """
    return normalize_log_responsibilities(joint_log_densities(x_A, x_B, params))


def log_likelihood_cond(
    x_A: ArrayLike, x_B: ArrayLike, params: ConditionalMixtureParams
) -> float:
    """Joint mixture log-likelihood over both blocks."""
    return float(np.sum(logsumexp(joint_log_densities(x_A, x_B, params), axis=1)))


def conditional_sigma_B_given_A(params: ConditionalMixtureParams) -> NDArray:
    """
    Schur complement :math:`\\Sigma_{BB} - \\Sigma_{AB}^T \\Sigma_{AA}^{-1} \\Sigma_{AB}`
    for every cluster.

    Returns
    -------
    sigma : ndarray, shape (p_B, p_B, K)
    """
    out = np.empty_like(params.sigma)
    for k in range(params.groups):
        C = params.cov[:, :, k]
        P = precision_matrix(params.sigma_AA[:, :, k], cluster=k)
        S = params.sigma[:, :, k] - C.T @ P @ C
        out[:, :, k] = 0.5 * (S + S.T)
    return out
