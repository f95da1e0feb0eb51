"""Input validation helpers raising :class:`~mbc.exceptions.ConfigurationError`."""

from typing import Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from mbc.exceptions import ConfigurationError


def as_data_matrix(x: ArrayLike, name: str = "x") -> NDArray:
    """Convert input to a float ``(N, p)`` matrix, reshaping 1-D input."""
    x = np.asarray(x, dtype=float)
    if x.ndim == 1:
        x = x.reshape(-1, 1)
    if x.ndim != 2:
        raise ConfigurationError(f"{name} must be 2D, got shape {x.shape}")
    if not np.all(np.isfinite(x)):
        raise ConfigurationError(f"{name} contains missing or non-finite values")
    return x


def check_groups(groups: int, n: Optional[int] = None) -> int:
    """Validate a group count, returning it as a plain ``int``."""
    if isinstance(groups, bool) or not isinstance(groups, (int, np.integer)):
        raise ConfigurationError(f"groups must be an integer, got {groups!r}")
    if groups < 1:
        raise ConfigurationError(f"groups must be positive, got {groups}")
    if n is not None and groups > n:
        raise ConfigurationError(
            f"Cannot fit {groups} groups to {n} observations"
        )
    return int(groups)


def check_positive_int(value: int, name: str) -> int:
    """Validate a strictly positive integer knob."""
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def check_non_negative(value: float, name: str) -> float:
    """Validate a finite non-negative float knob."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if not np.isfinite(value) or value < 0:
        raise ConfigurationError(f"{name} must be finite and non-negative, got {value}")
    return value


def check_responsibilities(
    z: ArrayLike,
    n: int,
    groups: Optional[int] = None,
    *,
    atol: float = 1e-6,
) -> NDArray:
    """
    Validate a responsibility matrix.

    Parameters
    ----------
    z : array_like, shape (n, K)
    n : int
        Expected number of rows.
    groups : int, optional
        Expected number of columns.
    atol : float
        Tolerance on row sums.

    Returns
    -------
    z : ndarray, shape (n, K)

    Raises
    ------
    ConfigurationError
        If the shape is wrong or rows are not stochastic.
    """
    z = np.asarray(z, dtype=float)
    if z.ndim == 1:
        z = z.reshape(-1, 1)
    if z.ndim != 2 or z.shape[0] != n:
        raise ConfigurationError(
            f"Responsibility matrix has shape {z.shape}, expected {n} rows"
        )
    if groups is not None and z.shape[1] != groups:
        raise ConfigurationError(
            f"Responsibility matrix has {z.shape[1]} columns, expected {groups} groups"
        )
    if not np.all(np.isfinite(z)) or np.any(z < 0) or np.any(z > 1 + atol):
        raise ConfigurationError("Responsibilities must lie in [0, 1]")
    if not np.allclose(z.sum(axis=1), 1.0, atol=atol, rtol=0):
        raise ConfigurationError("Responsibility rows must sum to 1")
    return z


def check_proportions(pro: ArrayLike, groups: int, *, atol: float = 1e-6) -> NDArray:
    """Validate a mixing-proportion vector of length ``groups``."""
    pro = np.asarray(pro, dtype=float).ravel()
    if pro.shape[0] != groups:
        raise ConfigurationError(
            f"pro has length {pro.shape[0]}, expected {groups} groups"
        )
    if not np.all(np.isfinite(pro)) or np.any(pro < 0):
        raise ConfigurationError("Mixing proportions must be finite and non-negative")
    if abs(pro.sum() - 1.0) > atol:
        raise ConfigurationError(f"Mixing proportions sum to {pro.sum()}, expected 1")
    return pro
