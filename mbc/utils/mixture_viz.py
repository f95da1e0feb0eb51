"""
Visualization utilities for Gaussian mixture fits.

This module provides a live plotting sink that can be attached to either EM
driver, plus a convergence plot for a log-likelihood trace. Rendering is a
side channel: sinks only read the records they are handed.
"""

from typing import Optional, Sequence, Tuple

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Ellipse
from numpy.typing import ArrayLike, NDArray

from mbc.exceptions import ConfigurationError
from mbc.params import IterationRecord


def covariance_ellipse(
    mean: NDArray,
    sigma: NDArray,
    n_std: float = 2.0,
    **kwargs,
) -> Ellipse:
    """
    Ellipse covering ``n_std`` standard deviations of a 2D Gaussian.

    Parameters
    ----------
    mean : ndarray, shape (2,)
    sigma : ndarray, shape (2, 2)
    n_std : float
        Number of standard deviations along each principal axis.
    **kwargs
        Passed to :class:`matplotlib.patches.Ellipse`.

    Returns
    -------
    ellipse : Ellipse
    """
    eigvals, eigvecs = np.linalg.eigh(sigma)
    eigvals = np.clip(eigvals, 0.0, None)
    # eigh sorts ascending; orient along the major axis
    angle = np.degrees(np.arctan2(eigvecs[1, 1], eigvecs[0, 1]))
    width, height = 2 * n_std * np.sqrt(eigvals[::-1])
    return Ellipse(xy=mean, width=width, height=height, angle=angle, **kwargs)


class MixturePlot:
    """
    Live scatter plot of the data with cluster means and covariance ellipses.

    Call the instance with an :class:`~mbc.params.IterationRecord` to redraw.
    Points are coloured by their most probable cluster. For conditional fits
    the block-B parameters are drawn against the block-B data.

    Parameters
    ----------
    x : array_like, shape (N, p)
        Data to draw; must have at least two columns unless ``p == 1``.
    dims : tuple of int
        Which two columns to project onto.
    n_std : float
        Ellipse radius in standard deviations.
    figsize : tuple
        Figure size.
    pause : float
        Seconds passed to :func:`matplotlib.pyplot.pause` after each
        redraw; ``0`` disables interactive refreshing.

    Examples
    --------
    >>> sink = MixturePlot(X)  # doctest: +SKIP
    >>> GaussianMixture(groups=3).fit(X, observers=[sink])  # doctest: +SKIP
    """

    def __init__(
        self,
        x: ArrayLike,
        dims: Tuple[int, int] = (0, 1),
        *,
        n_std: float = 2.0,
        figsize: Tuple[int, int] = (7, 6),
        pause: float = 0.0,
    ):
        x = np.asarray(x, dtype=float)
        if x.ndim == 1:
            x = x.reshape(-1, 1)
        if x.shape[1] == 1:
            # Plot 1D data against the observation index
            x = np.column_stack([x[:, 0], np.arange(x.shape[0], dtype=float)])
            dims = (0, 1)
            self._one_dimensional = True
        else:
            self._one_dimensional = False
        if max(dims) >= x.shape[1] or dims[0] == dims[1]:
            raise ConfigurationError(f"Invalid plotting dimensions {dims} for data of width {x.shape[1]}")
        self.x = x
        self.dims = tuple(dims)
        self.n_std = n_std
        self.pause = pause
        self.fig, self.ax = plt.subplots(figsize=figsize)
        self.n_updates = 0

    def __call__(self, record: IterationRecord) -> None:
        i, j = self.dims
        ax = self.ax
        ax.clear()
        labels = np.argmax(record.z, axis=1)
        ax.scatter(self.x[:, i], self.x[:, j], c=labels, cmap='tab10', s=8,
                   alpha=0.5, vmin=0, vmax=9)

        params = record.params
        cmap = plt.colormaps['tab10']
        if not self._one_dimensional:
            for k in range(params.groups):
                mean = params.mean[[i, j], k]
                sigma = params.sigma[:, :, k][np.ix_([i, j], [i, j])]
                ax.add_patch(covariance_ellipse(
                    mean, sigma, self.n_std,
                    fill=False, edgecolor=cmap(k % 10), linewidth=2,
                ))
                ax.plot(*mean, marker='x', color='black', markersize=10)

        title = f"Iteration {record.iteration}"
        if record.loglik is not None:
            title += f", log-likelihood = {record.loglik:.3f}"
        ax.set_title(title, fontsize=12)
        ax.set_xlabel(f'$X_{{{i + 1}}}$', fontsize=12)
        ax.set_ylabel('Observation' if self._one_dimensional else f'$X_{{{j + 1}}}$',
                      fontsize=12)
        self.n_updates += 1
        if self.pause > 0:
            plt.pause(self.pause)

    def close(self) -> None:
        """Close the underlying figure."""
        plt.close(self.fig)


def plot_em_convergence(
    loglik_trace: Sequence[float],
    iterations: Optional[Sequence[int]] = None,
    *,
    converged: Optional[bool] = None,
    title: str = "EM Algorithm Convergence",
    figsize: Tuple[int, int] = (10, 5)
) -> plt.Figure:
    """
    Plot a log-likelihood trace.

    Parameters
    ----------
    loglik_trace : sequence of float
        Log-likelihood values in evaluation order.
    iterations : sequence of int, optional
        Iteration index of each value; ``1..len(trace)`` when omitted.
    converged : bool, optional
        Adds a status annotation when given.
    title : str
    figsize : tuple

    Returns
    -------
    fig : matplotlib.Figure
    """
    trace = np.asarray(loglik_trace, dtype=float)
    if iterations is None:
        iterations = np.arange(1, trace.shape[0] + 1)
    if len(iterations) != trace.shape[0]:
        raise ConfigurationError("iterations and loglik_trace differ in length")

    fig, ax = plt.subplots(figsize=figsize)
    ax.plot(iterations, trace, 'b-o', linewidth=2, markersize=4)
    ax.set_xlabel('Iteration', fontsize=12)
    ax.set_ylabel('Log-likelihood', fontsize=12)
    ax.set_title(title, fontsize=14)
    ax.grid(True, alpha=0.3)

    if converged is not None:
        status = "Converged" if converged else "Not converged"
        ax.annotate(status, xy=(0.98, 0.02), xycoords='axes fraction',
                    ha='right', va='bottom', fontsize=11,
                    color='green' if converged else 'red')

    fig.tight_layout()
    return fig
