"""Gaussian mixture EM: step functions and the two fitting drivers."""

from .standard import e_step, log_likelihood, m_step
from .conditional import (
    CrossCovarianceMethod,
    conditional_sigma_B_given_A,
    e_step_cond,
    log_likelihood_cond,
    m_step_cond,
)
from .gaussian_mixture import GaussianMixture, sample_mixture
from .conditional_mixture import ConditionalGaussianMixture, DecreasePolicy

__all__ = [
    'e_step', 'm_step', 'log_likelihood',
    'CrossCovarianceMethod', 'conditional_sigma_B_given_A',
    'e_step_cond', 'm_step_cond', 'log_likelihood_cond',
    'GaussianMixture', 'sample_mixture',
    'ConditionalGaussianMixture', 'DecreasePolicy',
]
