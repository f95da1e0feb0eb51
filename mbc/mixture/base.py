"""
Shared machinery for the EM drivers.

Both drivers keep their convergence bookkeeping in an explicit
:class:`EMState` record that is threaded through the iteration loop, and
expose their results through sklearn-style trailing-underscore attributes
once fitted.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Tuple

from numpy.typing import NDArray

from mbc.observers import ProgressObserver, build_observers
from mbc.params import FitState
from mbc.utils.validation import check_groups


@dataclass
class EMState:
    """
    Mutable per-fit bookkeeping of an EM driver.

    Attributes
    ----------
    z : ndarray, shape (N, K)
        Responsibilities feeding the next M-step.
    params : MixtureParams or ConditionalMixtureParams or None
        Parameters from the latest M-step.
    iteration : int
        Current one-based iteration.
    loglik : float or None
        Most recent log-likelihood.
    trace : list of float
        All evaluated log-likelihoods, in order.
    status : FitState
    """
    z: NDArray
    params: Any = None
    iteration: int = 0
    loglik: Optional[float] = None
    trace: List[float] = field(default_factory=list)
    status: FitState = FitState.INITIALIZING


class EMBase:
    """
    Base class for the Gaussian mixture EM drivers.

    Parameters
    ----------
    groups : int
        Number of mixture components K, fixed for the lifetime of a fit.
    """

    def __init__(self, groups: int = 2):
        self.groups = check_groups(groups)
        self._reset()

    def _reset(self) -> None:
        previous = getattr(self, "plot_", None)
        if previous is not None:
            previous.close()
        self.plot_ = None
        self.params_ = None
        self.z_: Optional[NDArray] = None
        self.loglik_trace_: Tuple[float, ...] = ()
        self.n_iter_ = 0
        self.state_ = FitState.INITIALIZING
        self.result_ = None

    @property
    def converged_(self) -> bool:
        """Whether the last fit met its stopping threshold."""
        return self.state_ is FitState.CONVERGED

    @property
    def _fitted(self) -> bool:
        return self.params_ is not None

    def _check_fitted(self) -> None:
        if not self._fitted:
            raise ValueError(f"{type(self).__name__} is not fitted. Call fit() first.")

    @property
    def params(self):
        """Fitted parameters (frozen dataclass)."""
        self._check_fitted()
        return self.params_

    def _observers(
        self,
        observers: Iterable[ProgressObserver],
        *,
        verbose: int,
        plot: bool,
        plot_data: NDArray,
    ) -> Tuple[ProgressObserver, ...]:
        # The live figure stays open as plot_ until the next fit or close()
        if plot:
            from mbc.utils.mixture_viz import MixturePlot
            self.plot_ = MixturePlot(plot_data)
        return build_observers(observers, verbose=verbose, sink=self.plot_)

    def __repr__(self) -> str:
        name = self.__class__.__name__
        if not self._fitted:
            return f"{name}(groups={self.groups}, not fitted)"
        return f"{name}(groups={self.groups}, d={self.params_.d}, {self.state_.value})"
