"""
E-step, M-step and log-likelihood of a Gaussian mixture.

The M-step turns a responsibility matrix :math:`Z` into maximum-likelihood
parameters:

.. math::
    \\pi_k = \\frac{1}{N} \\sum_i z_{ik}, \\qquad
    \\mu_k = \\frac{\\sum_i z_{ik} x_i}{\\sum_i z_{ik}}, \\qquad
    \\Sigma_k = \\frac{\\sum_i z_{ik} (x_i - \\mu_k)(x_i - \\mu_k)^T}{\\sum_i z_{ik}}

The E-step turns parameters back into responsibilities,

.. math::
    z_{ik} = \\frac{\\pi_k\\, \\phi(x_i; \\mu_k, \\Sigma_k)}
                  {\\sum_j \\pi_j\\, \\phi(x_i; \\mu_j, \\Sigma_j)}

computed in log space with :func:`scipy.special.logsumexp`.
"""

from typing import Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.special import logsumexp

from mbc.distributions.normal import gaussian_logpdf
from mbc.exceptions import ConfigurationError, DegenerateClusterError
from mbc.params import MixtureParams
from mbc.utils.validation import as_data_matrix
from mbc.utils.weighted import cluster_weight_totals, weighted_cov, weighted_mean


def check_params(params: MixtureParams, p: int) -> None:
    """Raise :class:`ConfigurationError` if parameter shapes are inconsistent."""
    K = params.pro.shape[0]
    if params.mean.shape != (p, K):
        raise ConfigurationError(
            f"mean has shape {params.mean.shape}, expected {(p, K)}"
        )
    if params.sigma.shape != (p, p, K):
        raise ConfigurationError(
            f"sigma has shape {params.sigma.shape}, expected {(p, p, K)}"
        )


def weighted_moments_by_cluster(x: NDArray, z: NDArray) -> Tuple[NDArray, NDArray]:
    """
    Weighted mean and ML covariance of ``x`` for every column of ``z``.

    Returns
    -------
    mean : ndarray, shape (p, K)
    sigma : ndarray, shape (p, p, K)
    """
    p = x.shape[1]
    groups = z.shape[1]
    cluster_weight_totals(z)
    mean = np.empty((p, groups))
    sigma = np.empty((p, p, groups))
    for k in range(groups):
        mean[:, k] = weighted_mean(x, z[:, k])
        sigma[:, :, k] = weighted_cov(x, z[:, k], center=mean[:, k])
    return mean, sigma


def m_step(x: ArrayLike, z: ArrayLike) -> MixtureParams:
    """
    Maximisation step: mixing proportions, means and covariances.

    Parameters
    ----------
    x : array_like, shape (N, p)
        Data matrix.
    z : array_like, shape (N, K)
        Responsibility matrix.

    Returns
    -------
    params : MixtureParams

    Raises
    ------
    DegenerateClusterError
        If any cluster has (numerically) zero total responsibility.
    """
    x = as_data_matrix(x)
    z = np.asarray(z, dtype=float)
    if z.ndim == 1:
        z = z.reshape(-1, 1)
    if z.shape[0] != x.shape[0]:
        raise ConfigurationError(
            f"z has {z.shape[0]} rows but x has {x.shape[0]}"
        )
    mean, sigma = weighted_moments_by_cluster(x, z)
    return MixtureParams(pro=z.mean(axis=0), mean=mean, sigma=sigma)


def weighted_log_densities(x: ArrayLike, params: MixtureParams) -> NDArray:
    """
    Matrix of :math:`\\log \\pi_k + \\log \\phi(x_i; \\mu_k, \\Sigma_k)`.

    Returns
    -------
    log_prob : ndarray, shape (N, K)
    """
    x = as_data_matrix(x)
    check_params(params, x.shape[1])
    groups = params.groups
    log_prob = np.empty((x.shape[0], groups))
    with np.errstate(divide='ignore'):
        log_pro = np.log(params.pro)
    for k in range(groups):
        log_prob[:, k] = log_pro[k] + gaussian_logpdf(
            x, params.mean[:, k], params.sigma[:, :, k], cluster=k
        )
    return log_prob


def normalize_log_responsibilities(log_prob: NDArray) -> NDArray:
    """
    Row-normalize log-space joint probabilities into responsibilities.

    Raises
    ------
    DegenerateClusterError
        If some row has no finite mass under any cluster.
    """
    log_norm = logsumexp(log_prob, axis=1, keepdims=True)
    bad = np.flatnonzero(~np.isfinite(log_norm.ravel()))
    if bad.size:
        raise DegenerateClusterError(
            f"responsibilities underflowed for {bad.size} observation(s), "
            f"first at row {bad[0]}"
        )
    return np.exp(log_prob - log_norm)


def e_step(x: ArrayLike, params: MixtureParams) -> NDArray:
    """
    Expectation step: posterior cluster membership probabilities.

    Parameters
    ----------
    x : array_like, shape (N, p)
        Data matrix.
    params : MixtureParams
        Current mixture parameters.

    Returns
    -------
    z : ndarray, shape (N, K)
        Row-stochastic responsibility matrix.
    """
    return normalize_log_responsibilities(weighted_log_densities(x, params))


def log_likelihood(x: ArrayLike, params: MixtureParams) -> float:
    """
    Mixture log-likelihood :math:`\\sum_i \\log \\sum_k \\pi_k \\phi(x_i; \\mu_k, \\Sigma_k)`.

    Parameters
    ----------
    x : array_like, shape (N, p)
    params : MixtureParams

    Returns
    -------
    loglik : float
    """
    return float(np.sum(logsumexp(weighted_log_densities(x, params), axis=1)))
