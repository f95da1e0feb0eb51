"""
Exception and warning types raised while fitting Gaussian mixtures.

Every error carries enough context to locate the failure: the offending
cluster index and the EM iteration number where applicable. Fatal
conditions abort the whole fit; callers may retry with a different
initialization.
"""

from typing import Optional


class MBCError(Exception):
    """Base class for all errors raised by :mod:`mbc`."""


class ConfigurationError(MBCError, ValueError):
    """
    Invalid request: mismatched dimensions, bad group count, bad knob value.

    Raised before any EM iteration runs.
    """


class DegenerateClusterError(MBCError):
    """
    A cluster collapsed or a covariance matrix is unusable.

    Raised when a cluster's effective responsibility weight is numerically
    zero, or when a covariance / precision matrix needed for density
    evaluation or Schur-complement algebra is singular or not positive
    definite.

    Attributes
    ----------
    cluster : int or None
        Zero-based index of the offending cluster, if known.
    iteration : int or None
        One-based EM iteration at which the failure occurred, if known.
    """

    def __init__(
        self,
        message: str,
        *,
        cluster: Optional[int] = None,
        iteration: Optional[int] = None,
    ):
        self.message = message
        self.cluster = cluster
        self.iteration = iteration
        super().__init__(self._format())

    def _format(self) -> str:
        where = []
        if self.cluster is not None:
            where.append(f"cluster {self.cluster}")
        if self.iteration is not None:
            where.append(f"iteration {self.iteration}")
        if where:
            return f"{self.message} ({', '.join(where)})"
        return self.message

    def at_iteration(self, iteration: int) -> 'DegenerateClusterError':
        """Return a copy of this error tagged with an EM iteration number."""
        return DegenerateClusterError(
            self.message, cluster=self.cluster, iteration=iteration
        )


class MonotonicityViolation(MBCError, RuntimeError):
    """
    The standard EM log-likelihood decreased beyond numerical slack.

    EM guarantees a non-decreasing likelihood, so this signals a bug or a
    severe numerical breakdown rather than a recoverable condition.

    Attributes
    ----------
    iteration : int
        Iteration at which the decrease was detected.
    previous, current : float
        The two checkpoint log-likelihood values that were compared.
    """

    def __init__(self, iteration: int, previous: float, current: float):
        self.iteration = iteration
        self.previous = previous
        self.current = current
        super().__init__(
            f"log-likelihood decreased at iteration {iteration}: "
            f"{previous:.10g} -> {current:.10g}"
        )


class LikelihoodDecreaseWarning(RuntimeWarning):
    """Conditional-model log-likelihood decreased between iterations."""
