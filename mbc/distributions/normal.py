"""
Multivariate Normal density.

The multivariate Normal distribution has PDF:

.. math::
    p(x|\\mu,\\Sigma) = (2\\pi)^{-d/2} |\\Sigma|^{-1/2}
    \\exp\\left(-\\frac{1}{2} (x-\\mu)^T \\Sigma^{-1} (x-\\mu)\\right)

for :math:`x \\in \\mathbb{R}^d`.

All evaluations go through the Cholesky factor :math:`\\Sigma = L L^T`:

- log-determinant: :math:`\\log|\\Sigma| = 2\\sum_i \\log L_{ii}`
- Mahalanobis distance via ``solve_triangular`` rather than an explicit inverse

A covariance that cannot be factorized raises
:class:`~mbc.exceptions.DegenerateClusterError`.
"""

from typing import Optional, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.linalg import solve_triangular

from mbc.exceptions import ConfigurationError
from mbc.utils.linalg import checked_cholesky, log_det_from_cholesky
from mbc.utils.weighted import weighted_cov, weighted_mean

_LOG_2PI = np.log(2 * np.pi)


def gaussian_logpdf_chol(x: NDArray, mean: NDArray, L: NDArray) -> NDArray:
    """
    Log-density of each row of ``x`` given a precomputed Cholesky factor.

    Parameters
    ----------
    x : ndarray, shape (n, d)
    mean : ndarray, shape (d,)
    L : ndarray, shape (d, d)
        Lower Cholesky factor of the covariance.

    Returns
    -------
    logpdf : ndarray, shape (n,)
    """
    d = L.shape[0]
    const = -0.5 * d * _LOG_2PI - 0.5 * log_det_from_cholesky(L)
    # Solve L @ Z = diff.T => Z = L^{-1}(X - μ)^T, shape (d, n)
    Z = solve_triangular(L, (x - mean).T, lower=True)
    mahal = np.sum(Z ** 2, axis=0)
    return const - 0.5 * mahal


def gaussian_logpdf(
    x: ArrayLike,
    mean: ArrayLike,
    sigma: ArrayLike,
    *,
    cluster: Optional[int] = None,
) -> NDArray:
    """
    Log-density of a multivariate normal at each row of ``x``.

    Parameters
    ----------
    x : array_like, shape (n, d)
        Observations.
    mean : array_like, shape (d,)
        Mean vector.
    sigma : array_like, shape (d, d)
        Covariance matrix.
    cluster : int, optional
        Cluster index reported if ``sigma`` is degenerate.

    Returns
    -------
    logpdf : ndarray, shape (n,)

    Raises
    ------
    DegenerateClusterError
        If ``sigma`` is not positive definite.
    """
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    mean = np.asarray(mean, dtype=float).ravel()
    sigma = np.atleast_2d(np.asarray(sigma, dtype=float))
    d = mean.shape[0]
    if x.shape[1] != d or sigma.shape != (d, d):
        raise ConfigurationError(
            f"Dimension mismatch: x has {x.shape[1]} columns, mean has {d} "
            f"entries, sigma has shape {sigma.shape}"
        )
    L = checked_cholesky(sigma, cluster=cluster)
    return gaussian_logpdf_chol(x, mean, L)


class MultivariateNormal:
    """
    Multivariate Normal distribution with Cholesky-based internals.

    Parameters
    ----------
    d : int, optional
        Dimension of the distribution. Inferred from parameters if not provided.

    Attributes
    ----------
    _mu : ndarray or None
        Mean vector, shape ``(d,)``.
    _L : ndarray or None
        Lower Cholesky factor of :math:`\\Sigma`, shape ``(d, d)``.

    Examples
    --------
    >>> mu = np.array([1.0, 2.0])
    >>> sigma = np.array([[1.0, 0.5], [0.5, 1.0]])
    >>> dist = MultivariateNormal.from_classical_params(mu=mu, sigma=sigma)
    >>> dist.mean()
    array([1., 2.])

    >>> # Weighted fit from data
    >>> data = np.random.default_rng(0).normal(size=(500, 2))
    >>> dist = MultivariateNormal(d=2).fit(data, weights=np.ones(500))
    """

    def __init__(self, d: Optional[int] = None):
        self._d = d
        self._mu: Optional[NDArray] = None
        self._L: Optional[NDArray] = None
        self._fitted = False

    @property
    def d(self) -> int:
        """Dimension of the distribution."""
        if self._d is None:
            raise ValueError("Dimension not set. Use from_classical_params() or fit().")
        return self._d

    def _check_fitted(self) -> None:
        if not self._fitted:
            raise ValueError("Distribution parameters not set. Call fit() first.")

    # ============================================================
    # Parameter setting
    # ============================================================

    @classmethod
    def from_classical_params(cls, *, mu, sigma) -> 'MultivariateNormal':
        """Create a distribution from a mean vector and covariance matrix."""
        return cls().set_classical_params(mu=mu, sigma=sigma)

    def set_classical_params(self, *, mu, sigma) -> 'MultivariateNormal':
        """
        Set mean and covariance, storing the Cholesky factor of ``sigma``.

        Parameters
        ----------
        mu : array_like
            Mean vector (d,).
        sigma : array_like
            Covariance matrix (d, d), must be symmetric positive definite.
        """
        mu = np.asarray(mu, dtype=float).ravel()
        sigma = np.asarray(sigma, dtype=float)

        # Handle scalar input for 1D case
        if sigma.ndim == 0:
            sigma = np.array([[float(sigma)]])
        elif sigma.ndim == 1:
            sigma = np.diag(sigma)

        d = len(mu)
        if sigma.shape != (d, d):
            raise ConfigurationError(
                f"sigma shape {sigma.shape} doesn't match mu dimension {d}"
            )
        if not np.allclose(sigma, sigma.T, rtol=1e-10, atol=1e-10):
            raise ConfigurationError("Covariance matrix must be symmetric")

        self._d = d
        self._mu = mu.copy()
        self._L = checked_cholesky(sigma)
        self._fitted = True
        return self

    # ============================================================
    # Density and sampling
    # ============================================================

    def logpdf(self, x: ArrayLike) -> Union[float, NDArray[np.floating]]:
        """
        Log probability density.

        Parameters
        ----------
        x : array_like
            Shape ``(d,)`` for a single sample, ``(n, d)`` for n samples.

        Returns
        -------
        logpdf : float or ndarray
        """
        self._check_fitted()
        x = np.asarray(x, dtype=float)
        single = x.ndim == 1 and self._d != 1
        x2 = x.reshape(1, -1) if single else (x.reshape(-1, 1) if x.ndim == 1 else x)
        if x2.shape[1] != self._d:
            raise ConfigurationError(
                f"Expected {self._d}-dimensional input, got {x2.shape[1]}"
            )
        out = gaussian_logpdf_chol(x2, self._mu, self._L)
        return float(out[0]) if single else out

    def pdf(self, x: ArrayLike) -> Union[float, NDArray[np.floating]]:
        """Probability density: exp(logpdf(x))."""
        return np.exp(self.logpdf(x))

    def rvs(self, size=None, random_state=None) -> NDArray:
        """
        Draw samples as :math:`\\mu + L z` with standard normal :math:`z`.

        Parameters
        ----------
        size : int, optional
            Number of samples; a single ``(d,)`` sample when ``None``.
        random_state : int or Generator, optional

        Returns
        -------
        samples : ndarray, shape (size, d) or (d,)
        """
        self._check_fitted()
        rng = np.random.default_rng(random_state)
        n = 1 if size is None else int(size)
        Z = rng.standard_normal((n, self._d))
        X = self._mu + Z @ self._L.T
        return X[0] if size is None else X

    def mean(self) -> NDArray:
        """Mean vector."""
        self._check_fitted()
        return self._mu.copy()

    def cov(self) -> NDArray:
        """Covariance matrix :math:`L L^T`."""
        self._check_fitted()
        return self._L @ self._L.T

    def fit(
        self,
        X: ArrayLike,
        y: Optional[ArrayLike] = None,
        *,
        weights: Optional[ArrayLike] = None,
    ) -> 'MultivariateNormal':
        """
        Maximum-likelihood fit, optionally with observation weights.

        Parameters
        ----------
        X : array_like
            Training data. Shape (n_samples, d) or (n_samples,) for 1D.
        y : array_like, optional
            Ignored.
        weights : array_like, optional
            Non-negative observation weights; uniform when omitted.

        Returns
        -------
        self : MultivariateNormal
        """
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(-1, 1)
        n, d = X.shape
        if self._d is not None and self._d != d:
            raise ConfigurationError(f"Expected {self._d}-dimensional data, got {d}")
        w = np.ones(n) if weights is None else weights
        mu_hat = weighted_mean(X, w)
        Sigma_hat = weighted_cov(X, w, center=mu_hat)
        return self.set_classical_params(mu=mu_hat, sigma=Sigma_hat)

    def __repr__(self) -> str:
        """String representation."""
        if not self._fitted:
            if self._d is not None:
                return f"MultivariateNormal(d={self._d}, not fitted)"
            return "MultivariateNormal(not fitted)"
        if self._d == 1:
            return f"MultivariateNormal(μ={self._mu[0]:.4f}, σ²={self._L[0, 0] ** 2:.4f})"
        if self._d <= 3:
            mu_str = ", ".join(f"{v:.4f}" for v in self._mu)
            return f"MultivariateNormal(μ=[{mu_str}], d={self._d})"
        return f"MultivariateNormal(d={self._d})"


# Alias for convenience
MVN = MultivariateNormal
