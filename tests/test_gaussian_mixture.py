"""
Tests for the standard EM driver.

Covers recovery of well separated clusters, the single-group fit, the
checkpoint convergence rule, monotonicity enforcement, determinism and
configuration errors.
"""

import numpy as np
import pytest

from mbc import (
    ConfigurationError,
    DegenerateClusterError,
    FitState,
    GaussianMixture,
    MixtureFit,
    MixtureParams,
    MonotonicityViolation,
    TraceRecorder,
    sample_mixture,
)


@pytest.fixture
def separated():
    """Two unit-variance 2D clusters centred at (0, 0) and (10, 10)."""
    rng = np.random.default_rng(42)
    X = np.vstack([
        rng.normal([0.0, 0.0], 1.0, size=(100, 2)),
        rng.normal([10.0, 10.0], 1.0, size=(100, 2)),
    ])
    return X, np.repeat([0, 1], 100)


def _order(params):
    """Cluster indices sorted by the first mean coordinate."""
    return np.argsort(params.mean[0])


class _ScriptedLikelihood(GaussianMixture):
    """Mixture whose checkpoint log-likelihoods come from a fixed script."""

    def __init__(self, values, groups=2):
        super().__init__(groups)
        self._values = list(values)

    def _log_likelihood(self, x, params):
        return self._values.pop(0)


# ============================================================================
# Fitting behaviour
# ============================================================================

class TestSeparatedClusters:
    """Two well separated clusters are recovered."""

    def test_recovers_means_and_proportions(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        order = _order(model.params)
        np.testing.assert_allclose(model.params.mean[:, order].T,
                                   [[0.0, 0.0], [10.0, 10.0]], atol=0.4)
        np.testing.assert_allclose(model.params.pro[order], [0.5, 0.5], atol=0.02)
        for k in range(2):
            np.testing.assert_allclose(model.params.sigma[:, :, k], np.eye(2), atol=0.5)

    def test_converges_with_monotone_trace(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        assert model.converged_
        assert model.state_ is FitState.CONVERGED
        trace = np.array(model.loglik_trace_)
        assert trace.size >= 2
        assert np.all(np.diff(trace) >= -1e-9 * np.abs(trace[:-1]))
        assert model.loglik_ == trace[-1]
        assert model.n_iter_ % 5 == 0

    def test_labels_match_truth(self, separated):
        X, labels = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        pred = model.predict(X)
        agreement = max(np.mean(pred == labels), np.mean(pred != labels))
        assert agreement == 1.0
        np.testing.assert_allclose(model.z_.sum(axis=1), 1.0)

    def test_random_initializer(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, init='random', random_state=3)
        assert model.converged_
        np.testing.assert_allclose(np.sort(model.params.pro), [0.5, 0.5], atol=0.02)

    def test_result_record(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        result = model.result_
        assert isinstance(result, MixtureFit)
        assert result.params is model.params_
        assert result.loglik_trace == model.loglik_trace_
        assert result.n_iter == model.n_iter_
        assert result.converged


class TestSingleGroup:
    """groups = 1 reduces to the ML Gaussian fit."""

    def test_ml_moments(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=1).fit(X)
        np.testing.assert_allclose(model.params.pro, [1.0])
        np.testing.assert_allclose(model.params.mean[:, 0], X.mean(axis=0))
        np.testing.assert_allclose(model.params.sigma[:, :, 0],
                                   np.cov(X, rowvar=False, bias=True), atol=1e-10)

    def test_converges_at_second_checkpoint(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=1).fit(X)
        assert model.converged_
        assert model.n_iter_ == 10
        assert len(model.loglik_trace_) == 2
        assert model.loglik_trace_[0] == pytest.approx(model.loglik_trace_[1])


class TestStoppingRule:
    """Checkpoint cadence, iteration cap and monotonicity."""

    def test_without_likelihood_runs_to_cap(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, likelihood=False, max_iter=12,
                                               random_state=0)
        assert model.n_iter_ == 12
        assert model.state_ is FitState.MAX_ITER_REACHED
        assert not model.converged_
        assert model.loglik_trace_ == ()
        assert model.loglik_ is None

    def test_cap_below_checkpoint(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, max_iter=4, random_state=0)
        assert model.state_ is FitState.MAX_ITER_REACHED
        assert model.loglik_trace_ == ()

    def test_custom_checkpoint_cadence(self, separated):
        X, _ = separated
        recorder = TraceRecorder()
        GaussianMixture(groups=2).fit(X, check_every=3, max_iter=9, rel_tol=0.0,
                                      random_state=0, observers=[recorder])
        assert [i for i, _ in recorder.logliks][:2] == [3, 6]

    def test_decrease_raises(self, separated):
        X, _ = separated
        model = _ScriptedLikelihood([-100.0, -200.0])
        with pytest.raises(MonotonicityViolation) as info:
            model.fit(X, random_state=0)
        assert info.value.iteration == 10
        assert info.value.previous == -100.0
        assert info.value.current == -200.0

    def test_tiny_decrease_within_slack_stops(self, separated):
        X, _ = separated
        model = _ScriptedLikelihood([-100.0, -100.0 - 1e-10])
        model.fit(X, random_state=0)
        assert model.converged_
        assert model.n_iter_ == 10

    def test_large_improvement_continues(self, separated):
        X, _ = separated
        model = _ScriptedLikelihood([-300.0, -200.0, -100.0, -100.0])
        model.fit(X, random_state=0)
        assert model.n_iter_ == 20
        assert model.loglik_trace_ == (-300.0, -200.0, -100.0, -100.0)


class TestDeterminism:
    """Same inputs give identical results."""

    def test_same_z_same_result(self, separated):
        X, labels = separated
        z = np.random.default_rng(5).dirichlet(np.ones(2), size=X.shape[0])
        a = GaussianMixture(groups=2).fit(X, z=z)
        b = GaussianMixture(groups=2).fit(X, z=z)
        np.testing.assert_array_equal(a.params.mean, b.params.mean)
        np.testing.assert_array_equal(a.params.sigma, b.params.sigma)
        np.testing.assert_array_equal(a.z_, b.z_)
        assert a.loglik_trace_ == b.loglik_trace_

    def test_same_seed_same_result(self, separated):
        X, _ = separated
        a = GaussianMixture(groups=2).fit(X, random_state=11)
        b = GaussianMixture(groups=2).fit(X, random_state=11)
        np.testing.assert_array_equal(a.params.mean, b.params.mean)


# ============================================================================
# Errors
# ============================================================================

class TestConfigurationErrors:
    """Invalid requests fail before iterating."""

    @pytest.mark.parametrize("groups", [0, -1, 1.5, True])
    def test_bad_groups(self, groups):
        with pytest.raises(ConfigurationError):
            GaussianMixture(groups=groups)

    def test_more_groups_than_rows(self):
        with pytest.raises(ConfigurationError):
            GaussianMixture(groups=5).fit(np.zeros((3, 2)))

    def test_z_wrong_shape(self, separated):
        X, _ = separated
        with pytest.raises(ConfigurationError):
            GaussianMixture(groups=2).fit(X, z=np.full((X.shape[0], 3), 1 / 3))

    def test_z_not_stochastic(self, separated):
        X, _ = separated
        with pytest.raises(ConfigurationError):
            GaussianMixture(groups=2).fit(X, z=np.full((X.shape[0], 2), 0.3))

    @pytest.mark.parametrize("kwargs", [
        {"max_iter": 0},
        {"check_every": 0},
        {"rel_tol": -1.0},
        {"monotone_tol": np.nan},
        {"init": "spectral"},
    ])
    def test_bad_knobs(self, separated, kwargs):
        X, _ = separated
        with pytest.raises(ConfigurationError):
            GaussianMixture(groups=2).fit(X, **kwargs)

    def test_missing_values(self, separated):
        X, _ = separated
        X = X.copy()
        X[3, 1] = np.nan
        with pytest.raises(ConfigurationError):
            GaussianMixture(groups=2).fit(X)


class TestDegenerateClusters:
    """Collapsed clusters abort the fit with context."""

    def test_empty_initial_cluster(self, separated):
        X, labels = separated
        z = np.zeros((X.shape[0], 3))
        z[np.arange(X.shape[0]), labels] = 1.0
        with pytest.raises(DegenerateClusterError) as info:
            GaussianMixture(groups=3).fit(X, z=z)
        assert info.value.cluster == 2
        assert info.value.iteration == 1

    def test_singular_cluster(self):
        X = np.array([[1.0, 1.0], [1.0, 1.0], [1.0, 1.0], [5.0, 0.0], [6.0, 1.0], [7.0, 3.0]])
        z = np.eye(2)[[0, 0, 0, 1, 1, 1]]
        with pytest.raises(DegenerateClusterError) as info:
            GaussianMixture(groups=2).fit(X, z=z)
        assert info.value.cluster == 0
        assert info.value.iteration == 1


# ============================================================================
# Fitted-model API
# ============================================================================

class TestFittedModel:
    """Scoring, prediction and sampling."""

    def test_unfitted_raises(self):
        with pytest.raises(ValueError):
            GaussianMixture(groups=2).predict(np.zeros((2, 2)))

    def test_score_is_mean_loglik(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        assert model.score(X) == pytest.approx(np.mean(model.logpdf(X)))
        np.testing.assert_allclose(model.pdf(X[:3]), np.exp(model.logpdf(X[:3])))

    def test_predict_proba_rows(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        proba = model.predict_proba(X[:10])
        assert proba.shape == (10, 2)
        np.testing.assert_allclose(proba.sum(axis=1), 1.0)

    def test_rvs(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        samples = model.rvs(size=50, random_state=1)
        assert samples.shape == (50, 2)

    def test_repr(self, separated):
        X, _ = separated
        model = GaussianMixture(groups=2)
        assert "not fitted" in repr(model)
        model.fit(X, random_state=0)
        assert "converged" in repr(model)

    def test_verbose_output(self, separated, capsys):
        X, _ = separated
        GaussianMixture(groups=2).fit(X, random_state=0, verbose=1)
        out = capsys.readouterr().out
        assert "Iteration 5: log-likelihood =" in out
        assert "Converged at iteration" in out


class TestSampleMixture:
    """Sampling from known parameters."""

    def test_labels_and_moments(self):
        params = MixtureParams(
            pro=np.array([0.25, 0.75]),
            mean=np.array([[0.0, 5.0], [0.0, -5.0]]),
            sigma=np.stack([np.eye(2), 0.5 * np.eye(2)], axis=2),
        )
        X, labels = sample_mixture(params, 8000, random_state=0)
        assert X.shape == (8000, 2)
        assert np.mean(labels == 1) == pytest.approx(0.75, abs=0.02)
        np.testing.assert_allclose(X[labels == 1].mean(axis=0), [5.0, -5.0], atol=0.05)
        np.testing.assert_allclose(np.cov(X[labels == 1], rowvar=False),
                                   0.5 * np.eye(2), atol=0.05)

    def test_roundtrip_fit(self):
        params = MixtureParams(
            pro=np.array([0.4, 0.6]),
            mean=np.array([[-4.0, 4.0]]),
            sigma=np.ones((1, 1, 2)),
        )
        X, _ = sample_mixture(params, 2000, random_state=3)
        model = GaussianMixture(groups=2).fit(X, random_state=0)
        order = _order(model.params)
        np.testing.assert_allclose(model.params.mean[0, order], [-4.0, 4.0], atol=0.15)
        np.testing.assert_allclose(model.params.pro[order], [0.4, 0.6], atol=0.04)
