"""
Certainty package.

Maps data sources to certainty coefficients and folds certified features
into weighted scores.
"""

from .calculator import (
    DEFAULT_CERTAINTY_TABLE,
    FEATURE_SOURCE_MAP,
    CertaintyCalculator,
    activity_level,
    trust_level,
    weighted_score,
)
from .models import (
    CertificationCheck,
    CertifiedDataPoint,
    CertifiedFeatures,
    DataSourceCertainty,
    WeightedScore,
)
from .repository import DataSourceCertaintyRepository

__all__ = [
    "DEFAULT_CERTAINTY_TABLE",
    "FEATURE_SOURCE_MAP",
    "CertaintyCalculator",
    "CertificationCheck",
    "CertifiedDataPoint",
    "CertifiedFeatures",
    "DataSourceCertainty",
    "DataSourceCertaintyRepository",
    "WeightedScore",
    "activity_level",
    "trust_level",
    "weighted_score",
]
