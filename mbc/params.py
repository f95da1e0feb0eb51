"""
Frozen dataclass containers for mixture parameters and fit records.

Parameters are recomputed wholesale by every M-step and never partially
mutated, so each container is a frozen dataclass with ``slots=True``.
This provides:

- **IDE autocompletion**: ``params.mean`` instead of ``params['mean']``
- **Immutability**: Prevents accidental reassignment of fitted parameters
- **Dict conversion**: ``dataclasses.asdict(params)`` when needed

Array layout follows the column-per-cluster convention: means are stored
as ``(p, K)`` and covariances as ``(p, p, K)``.

Examples
--------
>>> import numpy as np
>>> from mbc.params import MixtureParams
>>> p = MixtureParams(pro=np.array([1.0]), mean=np.zeros((2, 1)),
...                   sigma=np.eye(2)[:, :, np.newaxis])
>>> p.groups, p.d
(1, 2)

Notes
-----
The ``frozen=True`` flag prevents attribute reassignment, but numpy arrays
are internally mutable (``params.mean[0, 0] = 999`` still works at the
Python level). Callers should not modify returned arrays in-place.
"""

import enum
from dataclasses import dataclass, fields
from typing import Any, Optional, Tuple

import numpy as np
from numpy.typing import NDArray


class _ParamsBase:
    """Mixin providing dict-style access on frozen dataclass params.

    Allows both ``params.mean`` and ``params['mean']`` access styles,
    plus ``items()``, ``keys()``, ``values()`` for iteration.
    """

    __slots__ = ()

    def __getitem__(self, key: str):
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key)

    def __contains__(self, key: str) -> bool:
        return hasattr(self, key)

    def keys(self):
        """Yield field names."""
        return (f.name for f in fields(self))

    def values(self):
        """Yield field values."""
        return (getattr(self, f.name) for f in fields(self))

    def items(self):
        """Yield ``(name, value)`` pairs."""
        return ((f.name, getattr(self, f.name)) for f in fields(self))


# ============================================================================
# Mixture parameters
# ============================================================================

@dataclass(frozen=True, slots=True)
class MixtureParams(_ParamsBase):
    """
    Parameters of a finite mixture of multivariate Gaussians.

    Attributes
    ----------
    pro : ndarray, shape (K,)
        Mixing proportions, summing to one.
    mean : ndarray, shape (p, K)
        Cluster mean vectors, one column per cluster.
    sigma : ndarray, shape (p, p, K)
        Cluster covariance matrices, one slice per cluster.
    """
    pro: NDArray
    mean: NDArray
    sigma: NDArray

    @property
    def groups(self) -> int:
        """Number of mixture components K."""
        return self.pro.shape[0]

    @property
    def d(self) -> int:
        """Feature dimension p."""
        return self.mean.shape[0]


@dataclass(frozen=True, slots=True)
class ConditionalMixtureParams(_ParamsBase):
    """
    Parameters of the joint (block A, block B) conditional mixture.

    Block B is the batch being modelled; block A is the reference batch
    whose parameters are either held fixed or re-estimated each round.

    Attributes
    ----------
    pro : ndarray, shape (K,)
        Mixing proportions shared by both blocks.
    mean : ndarray, shape (p_B, K)
        Block-B cluster means.
    sigma : ndarray, shape (p_B, p_B, K)
        Block-B cluster covariances.
    cov : ndarray, shape (p_A, p_B, K)
        Cross-covariance between block A and block B per cluster.
    mean_A : ndarray, shape (p_A, K)
        Block-A cluster means in force for this parameter set.
    sigma_AA : ndarray, shape (p_A, p_A, K)
        Block-A cluster covariances in force for this parameter set.
    """
    pro: NDArray
    mean: NDArray
    sigma: NDArray
    cov: NDArray
    mean_A: NDArray
    sigma_AA: NDArray

    @property
    def groups(self) -> int:
        """Number of mixture components K."""
        return self.pro.shape[0]

    @property
    def d(self) -> int:
        """Block-B feature dimension p_B."""
        return self.mean.shape[0]

    @property
    def d_A(self) -> int:
        """Block-A feature dimension p_A."""
        return self.mean_A.shape[0]

    def joint_mean(self, k: int) -> NDArray:
        """Mean of the concatenated ``(A, B)`` vector in cluster ``k``."""
        return np.concatenate([self.mean_A[:, k], self.mean[:, k]])

    def joint_sigma(self, k: int) -> NDArray:
        r"""
        Covariance of the concatenated ``(A, B)`` vector in cluster ``k``.

        .. math::
            \begin{pmatrix}
            \Sigma_{AA} & \Sigma_{AB} \\
            \Sigma_{AB}^T & \Sigma_{BB}
            \end{pmatrix}
        """
        cov = self.cov[:, :, k]
        return np.block([
            [self.sigma_AA[:, :, k], cov],
            [cov.T, self.sigma[:, :, k]],
        ])

    def block_B(self) -> MixtureParams:
        """Block-B marginal parameters as a :class:`MixtureParams`."""
        return MixtureParams(pro=self.pro, mean=self.mean, sigma=self.sigma)

    def block_A(self) -> MixtureParams:
        """Block-A marginal parameters as a :class:`MixtureParams`."""
        return MixtureParams(pro=self.pro, mean=self.mean_A, sigma=self.sigma_AA)


# ============================================================================
# Fit bookkeeping
# ============================================================================

class FitState(enum.Enum):
    """Lifecycle of an EM driver."""
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITER_REACHED = "max_iter_reached"


@dataclass(frozen=True, slots=True)
class IterationRecord(_ParamsBase):
    """
    Payload handed to progress observers and visualization sinks.

    Attributes
    ----------
    iteration : int
        One-based EM iteration index.
    params : MixtureParams or ConditionalMixtureParams
        Parameters produced by this iteration's M-step.
    z : ndarray, shape (N, K)
        Responsibilities current at notification time.
    loglik : float or None
        Log-likelihood evaluated at this iteration, if any.
    """
    iteration: int
    params: Any
    z: NDArray
    loglik: Optional[float] = None


@dataclass(frozen=True, slots=True)
class MixtureFit(_ParamsBase):
    """
    Result of a standard EM fit.

    Attributes
    ----------
    params : MixtureParams
        Last computed parameters.
    z : ndarray, shape (N, K)
        Final responsibilities.
    loglik : float or None
        Last checkpoint log-likelihood (``None`` when not tracked).
    loglik_trace : tuple of float
        All checkpoint log-likelihoods in evaluation order.
    n_iter : int
        Number of iterations run.
    state : FitState
        Terminal state, ``CONVERGED`` or ``MAX_ITER_REACHED``.
    """
    params: MixtureParams
    z: NDArray
    loglik: Optional[float]
    loglik_trace: Tuple[float, ...]
    n_iter: int
    state: FitState

    @property
    def converged(self) -> bool:
        """Whether the stopping threshold was met before the iteration cap."""
        return self.state is FitState.CONVERGED


@dataclass(frozen=True, slots=True)
class ConditionalMixtureFit(_ParamsBase):
    """
    Result of a conditional EM fit.

    Attributes
    ----------
    params : ConditionalMixtureParams
        Last computed parameters, including the block-A snapshot in force.
    z : ndarray, shape (N, K)
        Final responsibilities.
    loglik_trace : tuple of float
        Joint log-likelihood per iteration (empty when not tracked).
    n_iter : int
        Number of iterations run.
    state : FitState
        Terminal state, ``CONVERGED`` or ``MAX_ITER_REACHED``.
    """
    params: ConditionalMixtureParams
    z: NDArray
    loglik_trace: Tuple[float, ...]
    n_iter: int
    state: FitState

    @property
    def converged(self) -> bool:
        """Whether the stopping threshold was met before the iteration cap."""
        return self.state is FitState.CONVERGED

    @property
    def loglik(self) -> Optional[float]:
        """Last log-likelihood in the trace, or ``None``."""
        return self.loglik_trace[-1] if self.loglik_trace else None
