"""
mbc: model-based clustering with Gaussian mixtures.

Fits finite mixtures of multivariate Gaussians by Expectation-Maximization,
and clusters a new batch of data conditionally on a previously clustered
reference batch (batch correction through a joint Gaussian model).

Key features:
- sklearn-style estimators with trailing-underscore fit results
- Frozen dataclass parameter containers (mbc.params)
- Cholesky-based log-densities and log-sum-exp responsibilities
- Analytic or numeric cross-covariance for the conditional model
- Pluggable initializers, progress observers and a live plot sink
"""

from mbc.exceptions import (
    ConfigurationError,
    DegenerateClusterError,
    LikelihoodDecreaseWarning,
    MBCError,
    MonotonicityViolation,
)
from mbc.initialize import initialise_memberships, kmeans_memberships, random_memberships
from mbc.mixture import (
    ConditionalGaussianMixture,
    CrossCovarianceMethod,
    DecreasePolicy,
    GaussianMixture,
    e_step,
    e_step_cond,
    log_likelihood,
    log_likelihood_cond,
    m_step,
    m_step_cond,
    sample_mixture,
)
from mbc.observers import PrintProgress, TraceRecorder
from mbc.params import (
    ConditionalMixtureFit,
    ConditionalMixtureParams,
    FitState,
    IterationRecord,
    MixtureFit,
    MixtureParams,
)

__version__ = "0.1.0"

__all__ = [
    # Estimators
    "GaussianMixture",
    "ConditionalGaussianMixture",
    # Step functions
    "m_step",
    "e_step",
    "log_likelihood",
    "m_step_cond",
    "e_step_cond",
    "log_likelihood_cond",
    "sample_mixture",
    "CrossCovarianceMethod",
    "DecreasePolicy",
    # Initializers and observers
    "initialise_memberships",
    "kmeans_memberships",
    "random_memberships",
    "PrintProgress",
    "TraceRecorder",
    # Parameter dataclasses
    "MixtureParams",
    "ConditionalMixtureParams",
    "IterationRecord",
    "MixtureFit",
    "ConditionalMixtureFit",
    "FitState",
    # Exceptions
    "MBCError",
    "ConfigurationError",
    "DegenerateClusterError",
    "MonotonicityViolation",
    "LikelihoodDecreaseWarning",
]
