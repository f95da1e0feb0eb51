"""
Gaussian mixture fitted by Expectation-Maximization.

Each iteration runs an M-step on the current responsibilities, evaluates
the log-likelihood at every ``check_every``-th iteration, and otherwise
runs an E-step to refresh the responsibilities. At each checkpoint the
new value is compared with the previous checkpoint:

- a decrease beyond numerical slack raises
  :class:`~mbc.exceptions.MonotonicityViolation`, since EM can never
  decrease the likelihood;
- an improvement of at most ``|previous| * rel_tol`` stops the fit.

Hitting ``max_iter`` first is not an error: the fit is returned with
``converged_ = False``.
"""

from typing import Iterable, Optional, Tuple, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.special import logsumexp

from mbc.distributions.normal import MultivariateNormal
from mbc.exceptions import DegenerateClusterError, MonotonicityViolation
from mbc.initialize import Initializer, initialise_memberships
from mbc.mixture.base import EMBase, EMState
from mbc.mixture.standard import (
    check_params,
    e_step,
    log_likelihood,
    m_step,
    weighted_log_densities,
)
from mbc.observers import ProgressObserver, notify
from mbc.params import FitState, IterationRecord, MixtureFit, MixtureParams
from mbc.utils.validation import (
    as_data_matrix,
    check_groups,
    check_non_negative,
    check_positive_int,
    check_responsibilities,
)


class GaussianMixture(EMBase):
    """
    Finite mixture of multivariate Gaussians with full covariances.

    Parameters
    ----------
    groups : int
        Number of mixture components.

    Attributes
    ----------
    params_ : MixtureParams
        Fitted proportions, means ``(p, K)`` and covariances ``(p, p, K)``.
    z_ : ndarray, shape (N, K)
        Final responsibilities.
    loglik_ : float or None
        Last checkpoint log-likelihood.
    loglik_trace_ : tuple of float
        Checkpoint log-likelihoods in evaluation order.
    n_iter_ : int
        Number of iterations run.
    state_ : FitState
        ``CONVERGED`` or ``MAX_ITER_REACHED`` after a fit.
    result_ : MixtureFit
        All of the above as one frozen record.
    plot_ : MixturePlot or None
        Live figure of the last ``plot=True`` fit; closed when the model
        is refitted.

    Examples
    --------
    >>> rng = np.random.default_rng(0)
    >>> X = np.vstack([rng.normal(0, 1, (100, 2)), rng.normal(10, 1, (100, 2))])
    >>> model = GaussianMixture(groups=2).fit(X, random_state=1)
    >>> model.params.pro.round(2)  # doctest: +SKIP
    array([0.5, 0.5])
    """

    def _reset(self) -> None:
        super()._reset()
        self.loglik_: Optional[float] = None

    # ========================================================================
    # EM steps (override points)
    # ========================================================================

    def _m_step(self, x: NDArray, z: NDArray) -> MixtureParams:
        return m_step(x, z)

    def _e_step(self, x: NDArray, params: MixtureParams) -> NDArray:
        return e_step(x, params)

    def _log_likelihood(self, x: NDArray, params: MixtureParams) -> float:
        return log_likelihood(x, params)

    # ========================================================================
    # Convergence
    # ========================================================================

    @staticmethod
    def _check_convergence(
        state: EMState,
        loglik: float,
        *,
        rel_tol: float,
        monotone_tol: float,
    ) -> bool:
        """
        Record a checkpoint log-likelihood and decide whether to stop.

        Parameters
        ----------
        state : EMState
            Driver state; its trace and last log-likelihood are updated.
        loglik : float
            Newly evaluated log-likelihood.
        rel_tol : float
            Stop when the improvement is at most ``|previous| * rel_tol``.
        monotone_tol : float
            Relative slack tolerated on a decrease before raising.

        Returns
        -------
        stop : bool

        Raises
        ------
        MonotonicityViolation
            If the log-likelihood dropped by more than the slack.
        """
        previous = state.loglik
        state.trace.append(loglik)
        state.loglik = loglik
        if previous is None:
            return False
        slack = monotone_tol * max(1.0, abs(previous))
        if loglik < previous - slack:
            raise MonotonicityViolation(state.iteration, previous, loglik)
        return loglik - previous <= abs(previous) * rel_tol

    # ========================================================================
    # Fitting
    # ========================================================================

    def fit(
        self,
        X: ArrayLike,
        y: Optional[ArrayLike] = None,
        *,
        z: Optional[ArrayLike] = None,
        max_iter: int = 500,
        likelihood: bool = True,
        check_every: int = 5,
        rel_tol: float = 1e-7,
        monotone_tol: float = 1e-9,
        init: Union[str, Initializer] = 'kmeans',
        random_state: Optional[Union[int, np.random.Generator]] = None,
        verbose: int = 0,
        observers: Iterable[ProgressObserver] = (),
        plot: bool = False,
    ) -> 'GaussianMixture':
        """
        Fit the mixture with the EM algorithm.

        Parameters
        ----------
        X : array_like
            Data, shape (n_samples, p) or (n_samples,) for p=1.
        y : array_like, optional
            Ignored (for sklearn API compatibility).
        z : array_like, shape (n_samples, groups), optional
            Initial responsibilities. When omitted, ``init`` produces them.
        max_iter : int, optional
            Maximum number of EM iterations. Default is 500.
        likelihood : bool, optional
            Track the log-likelihood. Without it the fit always runs
            ``max_iter`` iterations. Default is True.
        check_every : int, optional
            Evaluate the log-likelihood every this many iterations.
            Default is 5.
        rel_tol : float, optional
            Relative improvement threshold between checkpoints.
            Default is 1e-7.
        monotone_tol : float, optional
            Relative slack on a checkpoint decrease before raising
            :class:`MonotonicityViolation`. Default is 1e-9.
        init : {'kmeans', 'random'} or callable, optional
            Initializer used when ``z`` is not supplied.
        random_state : int or Generator, optional
            Random state for initialization.
        verbose : int, optional
            Verbosity level. 0 = silent, 1 = progress with log-likelihood,
            2 = also mixing proportions. Default is 0.
        observers : iterable of callable, optional
            Called with an :class:`~mbc.params.IterationRecord` every
            iteration.
        plot : bool, optional
            Attach a live :class:`~mbc.utils.mixture_viz.MixturePlot`,
            kept as ``plot_``.

        Returns
        -------
        self : GaussianMixture
            Fitted model (returns self for method chaining).
        """
        X = as_data_matrix(X)
        n = X.shape[0]
        max_iter = check_positive_int(max_iter, "max_iter")
        check_every = check_positive_int(check_every, "check_every")
        rel_tol = check_non_negative(rel_tol, "rel_tol")
        monotone_tol = check_non_negative(monotone_tol, "monotone_tol")
        check_groups(self.groups, n)

        self._reset()
        if z is None:
            if verbose >= 1:
                print("Initialising clusters...")
            z = initialise_memberships(X, self.groups, init, random_state)
        z = check_responsibilities(z, n, self.groups)
        watchers = self._observers(observers, verbose=verbose, plot=plot, plot_data=X)

        state = EMState(z=z)
        state.status = FitState.ITERATING
        if verbose >= 1:
            print("Starting E-M iterations...")

        for iteration in range(1, max_iter + 1):
            state.iteration = iteration
            stop = False
            loglik = None
            try:
                state.params = self._m_step(X, state.z)
                if likelihood and iteration % check_every == 0:
                    loglik = self._log_likelihood(X, state.params)
                    stop = self._check_convergence(
                        state, loglik, rel_tol=rel_tol, monotone_tol=monotone_tol
                    )
                notify(watchers, IterationRecord(iteration, state.params, state.z, loglik))
                if stop:
                    state.status = FitState.CONVERGED
                    break
                state.z = self._e_step(X, state.params)
            except DegenerateClusterError as exc:
                raise exc.at_iteration(iteration) from exc
        else:
            state.status = FitState.MAX_ITER_REACHED

        if verbose >= 1:
            if state.status is FitState.CONVERGED:
                print(f"Converged at iteration {state.iteration}")
            else:
                print(f"Stopped after {state.iteration} iterations without converging")

        self._store(state)
        return self

    def _store(self, state: EMState) -> None:
        self.params_ = state.params
        self.z_ = state.z
        self.loglik_ = state.loglik
        self.loglik_trace_ = tuple(state.trace)
        self.n_iter_ = state.iteration
        self.state_ = state.status
        self.result_ = MixtureFit(
            params=state.params,
            z=state.z,
            loglik=state.loglik,
            loglik_trace=tuple(state.trace),
            n_iter=state.iteration,
            state=state.status,
        )

    # ========================================================================
    # Using a fitted model
    # ========================================================================

    def logpdf(self, x: ArrayLike) -> NDArray:
        """Log mixture density at each row of ``x``."""
        self._check_fitted()
        return logsumexp(weighted_log_densities(x, self.params_), axis=1)

    def pdf(self, x: ArrayLike) -> NDArray:
        """Mixture density at each row of ``x``."""
        return np.exp(self.logpdf(x))

    def score(self, x: ArrayLike, y: Optional[ArrayLike] = None) -> float:
        """Mean log-likelihood per observation."""
        return float(np.mean(self.logpdf(x)))

    def predict_proba(self, x: ArrayLike) -> NDArray:
        """Posterior cluster probabilities (one E-step)."""
        self._check_fitted()
        return self._e_step(as_data_matrix(x), self.params_)

    def predict(self, x: ArrayLike) -> NDArray:
        """Most probable cluster for each row of ``x``."""
        return np.argmax(self.predict_proba(x), axis=1)

    def rvs(
        self,
        size: int = 1,
        random_state: Optional[Union[int, np.random.Generator]] = None,
    ) -> NDArray:
        """
        Draw samples from the fitted mixture.

        Returns
        -------
        samples : ndarray, shape (size, p)
        """
        self._check_fitted()
        X, _ = sample_mixture(self.params_, size, random_state=random_state)
        return X


def sample_mixture(
    params: MixtureParams,
    size: int,
    random_state: Optional[Union[int, np.random.Generator]] = None,
) -> Tuple[NDArray, NDArray]:
    """
    Sample observations and their cluster labels from a Gaussian mixture.

    Parameters
    ----------
    params : MixtureParams
    size : int
        Number of observations.
    random_state : int or Generator, optional

    Returns
    -------
    X : ndarray, shape (size, p)
    labels : ndarray of int, shape (size,)
    """
    check_params(params, params.d)
    size = check_positive_int(size, "size")
    rng = np.random.default_rng(random_state)
    labels = rng.choice(params.groups, size=size, p=params.pro / params.pro.sum())
    X = np.empty((size, params.d))
    for k in range(params.groups):
        idx = np.flatnonzero(labels == k)
        if idx.size == 0:
            continue
        component = MultivariateNormal.from_classical_params(
            mu=params.mean[:, k], sigma=params.sigma[:, :, k]
        )
        X[idx] = component.rvs(size=idx.size, random_state=rng)
    return X, labels
