"""
Conditional Gaussian mixture for batch correction.

A reference batch A has already been clustered; its block-A parameters
(means and covariances, or precisions) are held fixed, or refreshed after
each M-step, while a new batch B is clustered jointly with it. Each row of ``x_B`` is paired with the row
of ``x_A`` describing the same observation, and every EM iteration
estimates the block-B means and covariances together with the A/B
cross-covariance.

Unlike :class:`~mbc.mixture.gaussian_mixture.GaussianMixture`, this driver
evaluates the likelihood every iteration and stops on an absolute change
below ``abstol``. A likelihood decrease is reported, never raised.
"""

import enum
import warnings
from typing import Iterable, Optional, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.special import logsumexp

from mbc.exceptions import (
    ConfigurationError,
    DegenerateClusterError,
    LikelihoodDecreaseWarning,
)
from mbc.initialize import Initializer, initialise_memberships
from mbc.mixture.base import EMBase, EMState
from mbc.mixture.conditional import (
    CrossCovarianceMethod,
    conditional_sigma_B_given_A,
    e_step_cond,
    joint_log_densities,
    log_likelihood_cond,
    m_step_cond,
    resolve_block_A,
)
from mbc.mixture.standard import weighted_moments_by_cluster
from mbc.observers import ProgressObserver, notify
from mbc.params import ConditionalMixtureFit, FitState, IterationRecord
from mbc.utils.validation import (
    as_data_matrix,
    check_groups,
    check_non_negative,
    check_positive_int,
    check_proportions,
    check_responsibilities,
)


class DecreasePolicy(enum.Enum):
    """What the conditional driver does when the log-likelihood drops."""
    IGNORE = "ignore"
    WARN = "warn"

    @classmethod
    def coerce(cls, policy: Union[str, 'DecreasePolicy']) -> 'DecreasePolicy':
        if isinstance(policy, cls):
            return policy
        try:
            return cls(policy)
        except ValueError:
            valid = ", ".join(repr(p.value) for p in cls)
            raise ConfigurationError(
                f"Unknown on_decrease={policy!r}; expected one of {valid}"
            ) from None


class ConditionalGaussianMixture(EMBase):
    """
    Gaussian mixture on batch B conditioned on a clustered reference batch A.

    Parameters
    ----------
    groups : int
        Number of mixture components, matching the reference clustering.

    Attributes
    ----------
    params_ : ConditionalMixtureParams
        Block-B proportions, means and covariances, the A/B
        cross-covariances, and the block-A snapshot in force at the end.
    z_ : ndarray, shape (N, K)
        Final responsibilities.
    loglik_trace_ : tuple of float
        Joint log-likelihood after every iteration.
    n_iter_ : int
    state_ : FitState
    initial_pro_ : ndarray or None
        Mixing proportions supplied at fit time.
    result_ : ConditionalMixtureFit
    plot_ : MixturePlot or None
        Live figure of the last ``plot=True`` fit.

    Examples
    --------
    >>> model = ConditionalGaussianMixture(groups=2)  # doctest: +SKIP
    >>> model.fit(x_A, x_B, z=z0, mean_A=ref.params.mean,
    ...           sigma_AA=ref.params.sigma)  # doctest: +SKIP
    >>> model.params.mean  # block-B means, shape (p_B, 2)  # doctest: +SKIP
    """

    def _reset(self) -> None:
        super()._reset()
        self.initial_pro_: Optional[NDArray] = None

    @property
    def loglik_(self) -> Optional[float]:
        """Last evaluated joint log-likelihood."""
        return self.loglik_trace_[-1] if self.loglik_trace_ else None

    def fit(
        self,
        x_A: ArrayLike,
        x_B: ArrayLike,
        *,
        z: Optional[ArrayLike] = None,
        pro: Optional[ArrayLike] = None,
        mean_A: Optional[ArrayLike] = None,
        sigma_AA: Optional[ArrayLike] = None,
        precision_AA: Optional[ArrayLike] = None,
        max_iter: int = 500,
        likelihood: bool = True,
        abstol: float = 1e-3,
        method_sigma_AB: Union[str, CrossCovarianceMethod] = 'analytic',
        update_A: bool = False,
        on_decrease: Union[str, DecreasePolicy] = 'warn',
        init: Union[str, Initializer] = 'kmeans',
        random_state: Optional[Union[int, np.random.Generator]] = None,
        verbose: int = 0,
        observers: Iterable[ProgressObserver] = (),
        plot: bool = False,
    ) -> 'ConditionalGaussianMixture':
        """
        Fit block-B parameters with conditional EM.

        Parameters
        ----------
        x_A : array_like, shape (N, p_A)
            Reference-batch observations, row-aligned with ``x_B``.
        x_B : array_like, shape (N, p_B)
            Current-batch observations.
        z : array_like, shape (N, groups), optional
            Initial responsibilities, typically from the reference fit.
            When omitted, ``init`` is run on ``x_B``.
        pro : array_like, shape (groups,), optional
            Initial mixing proportions. Validated and kept as
            ``initial_pro_``; every M-step recomputes them from ``z``.
        mean_A : array_like, shape (p_A, groups) or (p_A,)
            Block-A cluster means used by the first M-step, and by every
            M-step unless ``update_A``. With ``update_A`` and no block-A
            arguments at all, the first snapshot is the weighted moments of
            ``x_A`` under the initial responsibilities.
        sigma_AA : array_like, shape (p_A, p_A, groups) or (p_A, p_A), optional
            Block-A cluster covariances.
        precision_AA : array_like, optional
            Block-A precisions, used directly instead of inverting
            ``sigma_AA``.
        max_iter : int, optional
            Maximum number of iterations. Default is 500.
        likelihood : bool, optional
            Evaluate the joint log-likelihood every iteration. Without it
            the fit always runs ``max_iter`` iterations. Default is True.
        abstol : float, optional
            Stop when consecutive log-likelihoods differ by less than
            this. Default is 1e-3.
        method_sigma_AB : {'analytic', 'numeric'}, optional
            Cross-covariance estimator. Default is 'analytic'.
        update_A : bool, optional
            After each M-step, replace the block-A snapshot with the
            weighted moments of ``x_A`` under that step's responsibilities.
            The E-step of the same iteration and the next M-step use the
            new snapshot. Default is False.
        on_decrease : {'warn', 'ignore'}, optional
            Emit :class:`LikelihoodDecreaseWarning` on a likelihood drop,
            or stay silent. Default is 'warn'.
        init : {'kmeans', 'random'} or callable, optional
            Initializer used when ``z`` is not supplied.
        random_state : int or Generator, optional
        verbose : int, optional
            Verbosity level. 0 = silent, 1 = progress with log-likelihood,
            2 = also mixing proportions. Default is 0.
        observers : iterable of callable, optional
        plot : bool, optional
            Attach a live :class:`~mbc.utils.mixture_viz.MixturePlot` of
            the block-B data, kept as ``plot_``.

        Returns
        -------
        self : ConditionalGaussianMixture
        """
        x_A = as_data_matrix(x_A, "x_A")
        x_B = as_data_matrix(x_B, "x_B")
        n = x_B.shape[0]
        if x_A.shape[0] != n:
            raise ConfigurationError(
                f"x_A has {x_A.shape[0]} rows but x_B has {n}; "
                "blocks must describe the same observations"
            )
        check_groups(self.groups, n)
        max_iter = check_positive_int(max_iter, "max_iter")
        abstol = check_non_negative(abstol, "abstol")
        method = CrossCovarianceMethod.coerce(method_sigma_AB)
        policy = DecreasePolicy.coerce(on_decrease)
        if pro is not None:
            pro = check_proportions(pro, self.groups)

        block_A = None
        supplied_A = any(v is not None for v in (mean_A, sigma_AA, precision_AA))
        if supplied_A or not update_A:
            block_A = resolve_block_A(
                mean_A, sigma_AA, precision_AA, x_A.shape[1], self.groups
            )

        self._reset()
        self.initial_pro_ = pro
        if z is None:
            if verbose >= 1:
                print("Initialising clusters...")
            z = initialise_memberships(x_B, self.groups, init, random_state)
        z = check_responsibilities(z, n, self.groups)
        watchers = self._observers(observers, verbose=verbose, plot=plot, plot_data=x_B)

        state = EMState(z=z)
        state.status = FitState.ITERATING
        if verbose >= 1:
            print("Starting conditional E-M iterations...")

        for iteration in range(1, max_iter + 1):
            state.iteration = iteration
            try:
                if block_A is None:
                    block_A = weighted_moments_by_cluster(x_A, state.z) + (None,)
                params = m_step_cond(
                    x_A,
                    x_B,
                    state.z,
                    mean_A=block_A[0],
                    sigma_AA=block_A[1],
                    precision_AA=block_A[2],
                    sigma_AB=None if state.params is None else state.params.cov,
                    method=method,
                    update_A=update_A,
                )
                if update_A:
                    block_A = (params.mean_A, params.sigma_AA, None)
                state.params = params
                loglik = None
                if likelihood:
                    loglik = log_likelihood_cond(x_A, x_B, params)
                    self._record_loglik(state, loglik, policy)
                state.z = e_step_cond(x_A, x_B, params)
            except DegenerateClusterError as exc:
                raise exc.at_iteration(iteration) from exc
            notify(watchers, IterationRecord(iteration, params, state.z, loglik))

            if likelihood and len(state.trace) > 1:
                if abs(state.trace[-1] - state.trace[-2]) < abstol:
                    state.status = FitState.CONVERGED
                    if verbose >= 1:
                        print(f"Stopping: log-likelihood change less than {abstol}")
                    break
        else:
            state.status = FitState.MAX_ITER_REACHED
            if verbose >= 1:
                print(f"Stopped after {max_iter} iterations without converging")

        self._store(state)
        return self

    @staticmethod
    def _record_loglik(state: EMState, loglik: float, policy: DecreasePolicy) -> None:
        previous = state.loglik
        state.trace.append(loglik)
        state.loglik = loglik
        if previous is not None and loglik < previous and policy is DecreasePolicy.WARN:
            warnings.warn(
                f"Log-likelihood decreased at iteration {state.iteration}: "
                f"{previous:.6f} -> {loglik:.6f}",
                LikelihoodDecreaseWarning,
                stacklevel=3,
            )

    def _store(self, state: EMState) -> None:
        self.params_ = state.params
        self.z_ = state.z
        self.loglik_trace_ = tuple(state.trace)
        self.n_iter_ = state.iteration
        self.state_ = state.status
        self.result_ = ConditionalMixtureFit(
            params=state.params,
            z=state.z,
            loglik_trace=tuple(state.trace),
            n_iter=state.iteration,
            state=state.status,
        )

    # ========================================================================
    # Using a fitted model
    # ========================================================================

    def logpdf(self, x_A: ArrayLike, x_B: ArrayLike) -> NDArray:
        """Log joint mixture density of each (A, B) row pair."""
        self._check_fitted()
        return logsumexp(joint_log_densities(x_A, x_B, self.params_), axis=1)

    def score(self, x_A: ArrayLike, x_B: ArrayLike) -> float:
        """Mean joint log-likelihood per observation."""
        return float(np.mean(self.logpdf(x_A, x_B)))

    def predict_proba(self, x_A: ArrayLike, x_B: ArrayLike) -> NDArray:
        """Posterior cluster probabilities under the joint model."""
        self._check_fitted()
        return e_step_cond(x_A, x_B, self.params_)

    def predict(self, x_A: ArrayLike, x_B: ArrayLike) -> NDArray:
        """Most probable cluster for each (A, B) row pair."""
        return np.argmax(self.predict_proba(x_A, x_B), axis=1)

    def conditional_covariance(self) -> NDArray:
        """
        Block-B covariance given block A for every cluster.

        Returns
        -------
        sigma : ndarray, shape (p_B, p_B, K)
            :math:`\\Sigma_{BB} - \\Sigma_{AB}^T \\Sigma_{AA}^{-1} \\Sigma_{AB}`.
        """
        self._check_fitted()
        return conditional_sigma_B_given_A(self.params_)
