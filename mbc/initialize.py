"""
Initial cluster memberships for EM.

An initializer is any callable ``initialize(x, groups) -> z`` returning a
row-stochastic ``(N, groups)`` matrix with no empty column. Two are
provided: a random soft assignment drawn from a flat Dirichlet, and a
k-means hard assignment expanded to indicator rows.
"""

from typing import Callable, Optional, Union

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.cluster.vq import ClusterError, kmeans2

from mbc.exceptions import ConfigurationError, DegenerateClusterError
from mbc.utils.validation import as_data_matrix, check_groups
from mbc.utils.weighted import cluster_weight_totals

Initializer = Callable[[NDArray, int], NDArray]


def random_memberships(
    x: ArrayLike,
    groups: int,
    random_state: Optional[Union[int, np.random.Generator]] = None,
) -> NDArray:
    """
    Random soft memberships, one flat Dirichlet draw per observation.

    Parameters
    ----------
    x : array_like, shape (N, p)
    groups : int
    random_state : int or Generator, optional

    Returns
    -------
    z : ndarray, shape (N, groups)
    """
    x = as_data_matrix(x)
    groups = check_groups(groups, x.shape[0])
    rng = np.random.default_rng(random_state)
    return rng.dirichlet(np.ones(groups), size=x.shape[0])


def _kmeans_plus_plus_seeds(x: NDArray, groups: int, rng: np.random.Generator) -> NDArray:
    """k-means++ seeding: each new seed drawn with probability proportional to D^2."""
    n = x.shape[0]
    seeds = np.empty((groups, x.shape[1]))
    seeds[0] = x[rng.integers(n)]
    closest_d2 = np.sum((x - seeds[0]) ** 2, axis=1)
    for k in range(1, groups):
        total = closest_d2.sum()
        if total <= 0:
            raise DegenerateClusterError(
                f"only {k} distinct observations for {groups} groups"
            )
        seeds[k] = x[rng.choice(n, p=closest_d2 / total)]
        closest_d2 = np.minimum(closest_d2, np.sum((x - seeds[k]) ** 2, axis=1))
    return seeds


def kmeans_memberships(
    x: ArrayLike,
    groups: int,
    random_state: Optional[Union[int, np.random.Generator]] = None,
    *,
    n_iter: int = 20,
) -> NDArray:
    """
    Hard k-means memberships expanded to indicator rows.

    Initial centroids come from k-means++ seeding driven by
    ``random_state``; Lloyd iterations run through
    :func:`scipy.cluster.vq.kmeans2`.

    Parameters
    ----------
    x : array_like, shape (N, p)
    groups : int
    random_state : int or Generator, optional
    n_iter : int
        Number of Lloyd iterations.

    Returns
    -------
    z : ndarray, shape (N, groups)

    Raises
    ------
    DegenerateClusterError
        If there are fewer distinct observations than groups, or k-means
        leaves a cluster empty.
    """
    x = as_data_matrix(x)
    n = x.shape[0]
    groups = check_groups(groups, n)
    if groups == 1:
        return np.ones((n, 1))

    seeds = _kmeans_plus_plus_seeds(x, groups, np.random.default_rng(random_state))

    try:
        _, labels = kmeans2(x, seeds, iter=n_iter, minit='matrix', missing='raise')
    except ClusterError as exc:
        raise DegenerateClusterError(f"k-means initialization failed: {exc}") from exc

    z = np.zeros((n, groups))
    z[np.arange(n), labels] = 1.0
    cluster_weight_totals(z)
    return z


_INITIALIZERS = {
    'kmeans': kmeans_memberships,
    'random': random_memberships,
}


def initialise_memberships(
    x: ArrayLike,
    groups: int,
    method: Union[str, Initializer] = 'kmeans',
    random_state: Optional[Union[int, np.random.Generator]] = None,
) -> NDArray:
    """
    Produce initial responsibilities with a named or custom initializer.

    Parameters
    ----------
    x : array_like, shape (N, p)
    groups : int
    method : {'kmeans', 'random'} or callable
        A callable is invoked as ``method(x, groups)``.
    random_state : int or Generator, optional
        Passed to the named initializers.

    Returns
    -------
    z : ndarray, shape (N, groups)
    """
    if callable(method):
        x = as_data_matrix(x)
        z = np.asarray(method(x, groups), dtype=float)
        if z.shape != (x.shape[0], groups):
            raise ConfigurationError(
                f"Initializer returned shape {z.shape}, expected {(x.shape[0], groups)}"
            )
        return z
    try:
        init = _INITIALIZERS[method]
    except KeyError:
        raise ConfigurationError(
            f"Unknown init={method!r}; expected one of {sorted(_INITIALIZERS)} "
            "or a callable"
        ) from None
    return init(x, groups, random_state)
