"""
Progress observers for the EM drivers.

An observer is any callable taking an :class:`~mbc.params.IterationRecord`.
Observers are purely informational: drivers never mutate the arrays they
publish in a record, so observers cannot influence the numerical
trajectory.
"""

from typing import Callable, Iterable, List, Optional, Tuple

import numpy as np

from mbc.params import IterationRecord

ProgressObserver = Callable[[IterationRecord], None]


class PrintProgress:
    """
    Print EM progress to stdout.

    Parameters
    ----------
    verbose : int
        Verbosity level. 0 = silent, 1 = one line per likelihood
        evaluation, 2 = also the mixing proportions every iteration.
    """

    def __init__(self, verbose: int = 1):
        self.verbose = verbose

    def __call__(self, record: IterationRecord) -> None:
        if self.verbose >= 1 and record.loglik is not None:
            print(f"Iteration {record.iteration}: log-likelihood = {record.loglik:.6f}")
        if self.verbose >= 2:
            pro = np.array2string(record.params.pro, precision=4)
            print(f"  iteration {record.iteration}: proportions = {pro}")


class TraceRecorder:
    """
    Keep every record seen, for diagnostics and convergence plots.

    Examples
    --------
    >>> recorder = TraceRecorder()
    >>> model = GaussianMixture(groups=2).fit(X, observers=[recorder])  # doctest: +SKIP
    >>> recorder.logliks  # doctest: +SKIP
    """

    def __init__(self):
        self.records: List[IterationRecord] = []

    def __call__(self, record: IterationRecord) -> None:
        self.records.append(record)

    @property
    def logliks(self) -> Tuple[Tuple[int, float], ...]:
        """``(iteration, loglik)`` pairs for records carrying a likelihood."""
        return tuple(
            (r.iteration, r.loglik) for r in self.records if r.loglik is not None
        )


def notify(observers: Iterable[ProgressObserver], record: IterationRecord) -> None:
    """Send ``record`` to each observer in turn."""
    for observer in observers:
        observer(record)


def build_observers(
    observers: Iterable[ProgressObserver],
    *,
    verbose: int = 0,
    sink: Optional[ProgressObserver] = None,
) -> Tuple[ProgressObserver, ...]:
    """Assemble the observer list used by a driver."""
    out = list(observers)
    if verbose >= 1:
        out.insert(0, PrintProgress(verbose))
    if sink is not None:
        out.append(sink)
    return tuple(out)
