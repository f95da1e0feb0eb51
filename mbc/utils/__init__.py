"""Utility functions for mbc package."""

from .linalg import checked_cholesky, log_det_from_cholesky, precision_matrix, precision_stack
from .weighted import (
    cluster_weight_totals, normalize_weights, weighted_mean, weighted_cov, weighted_cross_cov,
)
from .validation import (
    as_data_matrix, check_groups, check_positive_int, check_non_negative,
    check_proportions, check_responsibilities,
)

__all__ = [
    'checked_cholesky', 'log_det_from_cholesky', 'precision_matrix', 'precision_stack',
    'cluster_weight_totals', 'normalize_weights', 'weighted_mean', 'weighted_cov', 'weighted_cross_cov',
    'as_data_matrix', 'check_groups', 'check_positive_int', 'check_non_negative',
    'check_proportions', 'check_responsibilities',
]
