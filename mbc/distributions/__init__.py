"""Probability densities used by the mixture models."""

from .normal import MultivariateNormal, MVN, gaussian_logpdf, gaussian_logpdf_chol

__all__ = ['MultivariateNormal', 'MVN', 'gaussian_logpdf', 'gaussian_logpdf_chol']
