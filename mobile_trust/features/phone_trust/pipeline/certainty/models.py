"""
Certainty coefficients and the data points they weight.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class DataSourceCertainty:
    source_type: str
    label: str
    base_certainty: float
    certified_certainty: float
    requirements: tuple[str, ...] = ()

    def __post_init__(self):
        if not self.source_type:
            raise ValueError("source_type is required")
        for name in ("base_certainty", "certified_certainty"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.certified_certainty < self.base_certainty:
            raise ValueError(
                f"certified_certainty ({self.certified_certainty}) is below "
                f"base_certainty ({self.base_certainty}) for {self.source_type}"
            )

    def coefficient(self, is_certified: bool) -> float:
        return self.certified_certainty if is_certified else self.base_certainty


@dataclass(slots=True)
class CertifiedDataPoint:
    feature_id: str
    feature_name: str
    raw_value: float
    source_type: str
    is_certified: bool
    certainty_coefficient: float
    weighted_value: float
    certification_details: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CertificationCheck:
    is_certified: bool
    missing_requirements: list[str] = field(default_factory=list)


@dataclass(slots=True)
class FeatureContribution:
    feature: str
    raw_contribution: float
    certified_contribution: float
    certainty: float


@dataclass(slots=True)
class WeightedScore:
    raw_score: float
    certified_score: float
    overall_certainty: float
    breakdown: list[FeatureContribution] = field(default_factory=list)


@dataclass(slots=True)
class SourceBreakdown:
    source: str
    count: int
    avg_certainty: float


@dataclass(slots=True)
class CertifiedFeatures:
    data_points: list[CertifiedDataPoint]
    score: WeightedScore
    source_breakdown: list[SourceBreakdown]
