"""
Tests for weighted moment estimators and the Cholesky helpers.

Uniform weights must reproduce the ordinary maximum-likelihood moments,
and zero or invalid weights must be rejected with typed errors.
"""

import numpy as np
import pytest

from mbc.exceptions import ConfigurationError, DegenerateClusterError
from mbc.utils import (
    checked_cholesky,
    cluster_weight_totals,
    log_det_from_cholesky,
    normalize_weights,
    precision_matrix,
    precision_stack,
    weighted_cov,
    weighted_cross_cov,
    weighted_mean,
)


@pytest.fixture
def data():
    rng = np.random.default_rng(0)
    return rng.normal(size=(200, 3)) @ np.array([[1.0, 0.4, 0.0],
                                                  [0.0, 1.0, 0.3],
                                                  [0.0, 0.0, 2.0]])


# ============================================================================
# Weighted moments
# ============================================================================

class TestWeightedMoments:
    """Weighted mean / covariance / cross-covariance."""

    def test_uniform_weights_reproduce_ml_moments(self, data):
        w = np.ones(data.shape[0])
        np.testing.assert_allclose(weighted_mean(data, w), data.mean(axis=0))
        np.testing.assert_allclose(
            weighted_cov(data, w), np.cov(data, rowvar=False, bias=True), atol=1e-12
        )

    def test_weights_are_scale_invariant(self, data):
        rng = np.random.default_rng(1)
        w = rng.uniform(size=data.shape[0])
        np.testing.assert_allclose(weighted_mean(data, w), weighted_mean(data, 7.5 * w))
        np.testing.assert_allclose(weighted_cov(data, w), weighted_cov(data, 7.5 * w))

    def test_indicator_weights_select_rows(self, data):
        w = np.zeros(data.shape[0])
        w[:50] = 1.0
        np.testing.assert_allclose(weighted_mean(data, w), data[:50].mean(axis=0))
        np.testing.assert_allclose(
            weighted_cov(data, w), np.cov(data[:50], rowvar=False, bias=True), atol=1e-12
        )

    def test_cov_is_symmetric_psd(self, data):
        rng = np.random.default_rng(2)
        S = weighted_cov(data, rng.uniform(size=data.shape[0]))
        np.testing.assert_array_equal(S, S.T)
        assert np.all(np.linalg.eigvalsh(S) >= -1e-12)

    def test_cross_cov_matches_joint_cov_block(self, data):
        w = np.ones(data.shape[0])
        full = weighted_cov(data, w)
        C = weighted_cross_cov(data[:, :1], data[:, 1:], w)
        assert C.shape == (1, 2)
        np.testing.assert_allclose(C, full[:1, 1:], atol=1e-12)

    def test_cross_cov_with_explicit_centres(self, data):
        w = np.ones(data.shape[0])
        cx = np.zeros(1)
        cy = np.zeros(2)
        C = weighted_cross_cov(data[:, :1], data[:, 1:], w, center_x=cx, center_y=cy)
        expected = data[:, :1].T @ data[:, 1:] / data.shape[0]
        np.testing.assert_allclose(C, expected, atol=1e-12)

    def test_cross_cov_row_mismatch(self, data):
        with pytest.raises(ConfigurationError):
            weighted_cross_cov(data[:10], data[:11], np.ones(10))


class TestWeightValidation:
    """Invalid weight vectors."""

    def test_normalize_sums_to_one(self):
        w = normalize_weights([1.0, 3.0], 2)
        np.testing.assert_allclose(w, [0.25, 0.75])

    def test_zero_weights_are_degenerate(self, data):
        with pytest.raises(DegenerateClusterError):
            weighted_mean(data, np.zeros(data.shape[0]))

    def test_negative_weights_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_weights([1.0, -1.0, 1.0], 3)

    def test_length_mismatch_rejected(self):
        with pytest.raises(ConfigurationError):
            normalize_weights([1.0, 1.0], 3)

    def test_non_finite_data_rejected(self):
        with pytest.raises(ConfigurationError):
            weighted_mean(np.array([[1.0], [np.nan]]), [1.0, 1.0])

    def test_empty_cluster_reports_index(self):
        z = np.array([[1.0, 0.0, 0.0], [0.5, 0.0, 0.5]])
        with pytest.raises(DegenerateClusterError) as info:
            cluster_weight_totals(z)
        assert info.value.cluster == 1


# ============================================================================
# Cholesky helpers
# ============================================================================

class TestLinalg:
    """Cholesky factorization, precision and log-determinant."""

    def test_cholesky_reconstructs(self):
        A = np.array([[2.0, 0.5], [0.5, 1.0]])
        L = checked_cholesky(A)
        np.testing.assert_allclose(L @ L.T, A)
        np.testing.assert_allclose(log_det_from_cholesky(L), np.log(np.linalg.det(A)))

    def test_singular_matrix_is_degenerate(self):
        with pytest.raises(DegenerateClusterError) as info:
            checked_cholesky(np.ones((2, 2)), cluster=3)
        assert info.value.cluster == 3

    def test_non_finite_matrix_is_degenerate(self):
        with pytest.raises(DegenerateClusterError):
            checked_cholesky(np.array([[np.inf, 0.0], [0.0, 1.0]]))

    def test_precision_matrix_inverts(self):
        A = np.array([[2.0, 0.5], [0.5, 1.0]])
        P = precision_matrix(A)
        np.testing.assert_allclose(P @ A, np.eye(2), atol=1e-12)
        np.testing.assert_array_equal(P, P.T)

    def test_precision_stack_reports_cluster(self):
        sigma = np.stack([np.eye(2), np.zeros((2, 2))], axis=2)
        with pytest.raises(DegenerateClusterError) as info:
            precision_stack(sigma)
        assert info.value.cluster == 1

    def test_precision_stack_shapes(self):
        sigma = np.stack([np.eye(2), 4.0 * np.eye(2)], axis=2)
        P = precision_stack(sigma)
        assert P.shape == (2, 2, 2)
        np.testing.assert_allclose(P[:, :, 1], 0.25 * np.eye(2))
