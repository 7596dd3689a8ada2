"""
Affinity estimation package.
"""

from .service import AffinityEstimator, affinity_estimator

__all__ = ["AffinityEstimator", "affinity_estimator"]
