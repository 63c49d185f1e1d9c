"""Covariate refinement and weighting of matched sets."""

from .engine import STRATEGIES, RefinementEngine
from .weights import WeightNormalizer

__all__ = ["RefinementEngine", "STRATEGIES", "WeightNormalizer"]
