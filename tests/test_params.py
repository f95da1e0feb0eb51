"""
Tests for frozen dataclass parameter containers and the error types.

Tests that each parameter dataclass:
- Can be constructed with valid values
- Is frozen (raises FrozenInstanceError on attribute assignment)
- Supports dataclasses.asdict() and dict-style access
"""

import dataclasses

import numpy as np
import pytest

from mbc.exceptions import (
    ConfigurationError,
    DegenerateClusterError,
    LikelihoodDecreaseWarning,
    MBCError,
    MonotonicityViolation,
)
from mbc.params import (
    ConditionalMixtureFit,
    ConditionalMixtureParams,
    FitState,
    IterationRecord,
    MixtureFit,
    MixtureParams,
)


@pytest.fixture
def mixture():
    return MixtureParams(
        pro=np.array([0.3, 0.7]),
        mean=np.array([[0.0, 1.0], [2.0, 3.0], [4.0, 5.0]]),
        sigma=np.repeat(np.eye(3)[:, :, np.newaxis], 2, axis=2),
    )


@pytest.fixture
def conditional():
    return ConditionalMixtureParams(
        pro=np.array([0.5, 0.5]),
        mean=np.array([[1.0, -1.0]]),
        sigma=np.full((1, 1, 2), 2.0),
        cov=np.full((2, 1, 2), 0.1),
        mean_A=np.array([[0.0, 5.0], [0.0, 5.0]]),
        sigma_AA=np.repeat(np.eye(2)[:, :, np.newaxis], 2, axis=2),
    )


# ============================================================================
# Mixture parameters
# ============================================================================

class TestMixtureParams:
    def test_construction(self, mixture):
        assert mixture.groups == 2
        assert mixture.d == 3

    def test_frozen(self, mixture):
        with pytest.raises(dataclasses.FrozenInstanceError):
            mixture.pro = np.array([0.5, 0.5])

    def test_slots(self, mixture):
        assert not hasattr(mixture, "__dict__")

    def test_dict_access(self, mixture):
        assert mixture["pro"] is mixture.pro
        assert "sigma" in mixture
        assert list(mixture.keys()) == ["pro", "mean", "sigma"]
        with pytest.raises(KeyError):
            mixture["weights"]

    def test_asdict(self, mixture):
        d = dataclasses.asdict(mixture)
        assert set(d) == {"pro", "mean", "sigma"}


class TestConditionalMixtureParams:
    def test_dimensions(self, conditional):
        assert conditional.groups == 2
        assert conditional.d == 1
        assert conditional.d_A == 2

    def test_joint_mean(self, conditional):
        np.testing.assert_array_equal(conditional.joint_mean(1), [5.0, 5.0, -1.0])

    def test_joint_sigma_blocks(self, conditional):
        S = conditional.joint_sigma(0)
        assert S.shape == (3, 3)
        np.testing.assert_array_equal(S[:2, :2], np.eye(2))
        np.testing.assert_array_equal(S[:2, 2], [0.1, 0.1])
        np.testing.assert_array_equal(S[2, :2], [0.1, 0.1])
        assert S[2, 2] == 2.0

    def test_block_views(self, conditional):
        B = conditional.block_B()
        A = conditional.block_A()
        assert isinstance(B, MixtureParams)
        assert B.mean is conditional.mean
        assert A.sigma is conditional.sigma_AA
        np.testing.assert_array_equal(A.pro, B.pro)

    def test_frozen(self, conditional):
        with pytest.raises(dataclasses.FrozenInstanceError):
            conditional.cov = None


# ============================================================================
# Fit records
# ============================================================================

class TestFitRecords:
    def test_mixture_fit_converged(self, mixture):
        fit = MixtureFit(params=mixture, z=np.ones((3, 2)) / 2, loglik=-1.0,
                         loglik_trace=(-2.0, -1.0), n_iter=10, state=FitState.CONVERGED)
        assert fit.converged
        assert fit["n_iter"] == 10

    def test_conditional_fit_loglik(self, conditional):
        fit = ConditionalMixtureFit(params=conditional, z=np.ones((3, 2)) / 2,
                                    loglik_trace=(), n_iter=4,
                                    state=FitState.MAX_ITER_REACHED)
        assert not fit.converged
        assert fit.loglik is None

    def test_iteration_record_defaults(self, mixture):
        record = IterationRecord(iteration=1, params=mixture, z=np.ones((3, 2)) / 2)
        assert record.loglik is None


# ============================================================================
# Error types
# ============================================================================

class TestExceptions:
    def test_hierarchy(self):
        assert issubclass(ConfigurationError, MBCError)
        assert issubclass(ConfigurationError, ValueError)
        assert issubclass(DegenerateClusterError, MBCError)
        assert issubclass(MonotonicityViolation, RuntimeError)
        assert issubclass(LikelihoodDecreaseWarning, RuntimeWarning)

    def test_degenerate_message_context(self):
        err = DegenerateClusterError("cluster is empty", cluster=2)
        assert str(err) == "cluster is empty (cluster 2)"
        tagged = err.at_iteration(7)
        assert tagged.cluster == 2
        assert tagged.iteration == 7
        assert str(tagged) == "cluster is empty (cluster 2, iteration 7)"
        assert str(DegenerateClusterError("bad")) == "bad"

    def test_monotonicity_fields(self):
        err = MonotonicityViolation(15, -10.0, -11.0)
        assert err.iteration == 15
        assert err.previous == -10.0
        assert err.current == -11.0
        assert "iteration 15" in str(err)
