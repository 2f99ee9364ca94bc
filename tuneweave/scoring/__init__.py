"""
Scoring Module

Score components, the preference classifier and the hybrid scorer that
blends them.
"""

from .component_calculator import ScoreComponentCalculator
from .feature_vector import (
    FEATURE_NAMES,
    FEATURE_VECTOR_DIMENSION,
    build_feature_vector,
    flatten_feature_vector,
)
from .hybrid_scorer import HybridScorer, ScoreCache
from .preference_classifier import PreferenceClassifier

__all__ = [
    "FEATURE_NAMES",
    "FEATURE_VECTOR_DIMENSION",
    "HybridScorer",
    "PreferenceClassifier",
    "ScoreCache",
    "ScoreComponentCalculator",
    "build_feature_vector",
    "flatten_feature_vector",
]
