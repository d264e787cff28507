"""
Certainty calculator - weights features by how trustworthy their source is.

Each data source carries a base coefficient (raw extraction) and a certified
coefficient (extraction plus the proofs listed as its requirements). The
built-in table below is used whenever the store has nothing usable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from mobile_trust.db.helpers import DatabaseError
from mobile_trust.infrastructure.observability.logging import get_logger

from ...domain.models import ActivityLevel, TrustLevel
from .models import (
    CertificationCheck,
    CertifiedDataPoint,
    CertifiedFeatures,
    DataSourceCertainty,
    FeatureContribution,
    SourceBreakdown,
    WeightedScore,
)

logger = get_logger(__name__)

CertaintyLoader = Callable[[], Awaitable[Sequence[Mapping[str, Any]]]]

FALLBACK_SOURCE = "declared"

DEFAULT_CERTAINTY_TABLE: dict[str, DataSourceCertainty] = {
    entry.source_type: entry
    for entry in (
        DataSourceCertainty("declared", "Self-declared data", 0.3, 0.5, ("identity_verified",)),
        DataSourceCertainty(
            "sms_parsed",
            "Parsed transactional SMS",
            0.7,
            0.9,
            ("phone_otp_verified", "provider_detected"),
        ),
        DataSourceCertainty(
            "screenshot_ocr",
            "Mobile Money screenshot OCR",
            0.6,
            0.9,
            ("phone_otp_verified", "tampering_check_passed", "name_cross_validated"),
        ),
        DataSourceCertainty(
            "document_ocr",
            "Scanned document OCR",
            0.7,
            0.95,
            ("mrz_validated", "forgery_check_passed"),
        ),
        DataSourceCertainty("api_verified", "Verified third-party API", 0.95, 1.0),
        DataSourceCertainty(
            "partner_feedback", "Partner feedback", 0.8, 0.95, ("loan_outcome_received",)
        ),
        DataSourceCertainty(
            "utility_sms", "Utility bill SMS", 0.65, 0.85, ("provider_shortcode_verified",)
        ),
        DataSourceCertainty(
            "tontine_attestation", "Tontine attestation", 0.5, 0.8, ("guarantor_verified",)
        ),
    )
}

# Scoring features and the source each one is extracted from.
FEATURE_SOURCE_MAP: dict[str, str] = {
    # identity
    "sim_age_months": "declared",
    "phone_age_months": "sms_parsed",
    "address_stability_years": "declared",
    "business_age_years": "document_ocr",
    "is_formalized": "document_ocr",
    "document_verification_score": "document_ocr",
    # cashflow
    "monthly_income": "sms_parsed",
    "income_stability_index": "sms_parsed",
    "expense_to_income_ratio": "sms_parsed",
    "momo_velocity_30d": "sms_parsed",
    "momo_in_out_ratio": "sms_parsed",
    "momo_total_credits": "sms_parsed",
    "momo_total_debits": "sms_parsed",
    "average_balance": "screenshot_ocr",
    "momo_balance": "screenshot_ocr",
    "cashflow_regularity": "sms_parsed",
    "savings_rate": "sms_parsed",
    # behavioral
    "financial_literacy_score": "declared",
    "planning_horizon_score": "declared",
    "self_control_score": "declared",
    "response_consistency": "declared",
    "digital_engagement_score": "declared",
    # discipline
    "utility_payment_rate": "utility_sms",
    "utility_late_ratio": "utility_sms",
    "rent_payment_consistency": "declared",
    "existing_debt_ratio": "declared",
    # social
    "tontine_participation_score": "tontine_attestation",
    "tontine_discipline_rate": "tontine_attestation",
    "cooperative_standing_score": "declared",
    "cooperative_loan_history": "declared",
    "guarantor_quality_score": "declared",
    "community_attestation_count": "tontine_attestation",
    # environmental
    "regional_risk_index": "api_verified",
    "infrastructure_score": "api_verified",
    "seasonal_adjustment": "api_verified",
}

AUTO_CERTIFY_TRUST_SCORE = 70
AUTO_CERTIFIED_SOURCES = frozenset({"sms_parsed", "screenshot_ocr", "utility_sms"})

OTP_CERTAINTY_BOOST = 0.05
PROVIDER_CERTAINTY_BOOST = 0.03
NAME_CERTAINTY_BOOST = 0.07

DORMANT_AFTER_DAYS = 90


def _row_to_certainty(row: Mapping[str, Any]) -> DataSourceCertainty:
    requirements = row.get("certification_requirements") or ()
    return DataSourceCertainty(
        source_type=row["source_type"],
        label=row.get("source_name") or row["source_type"],
        base_certainty=float(row["base_certainty"]),
        certified_certainty=float(row["certified_certainty"]),
        requirements=tuple(str(item) for item in requirements),
    )


def _default_loader() -> CertaintyLoader:
    from .repository import DataSourceCertaintyRepository

    return DataSourceCertaintyRepository.load_certainty_table


class CertaintyCalculator:
    """
    Holds one certainty table, loaded lazily from the store.

    Lookups are synchronous and read whatever table is current: the loaded
    one after load(), the built-in one before it or when the store had
    nothing usable.
    """

    def __init__(self, loader: CertaintyLoader | None = None):
        self._loader = loader or _default_loader()
        self._table: dict[str, DataSourceCertainty] | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._table is not None

    @property
    def table(self) -> Mapping[str, DataSourceCertainty]:
        return self._table if self._table is not None else DEFAULT_CERTAINTY_TABLE

    async def load(self) -> Mapping[str, DataSourceCertainty]:
        if self._table is not None:
            return self._table
        async with self._lock:
            if self._table is None:
                self._table = await self._fetch_table()
        return self._table

    async def reload(self) -> Mapping[str, DataSourceCertainty]:
        self.reset()
        return await self.load()

    def reset(self) -> None:
        self._table = None

    async def _fetch_table(self) -> dict[str, DataSourceCertainty]:
        try:
            rows = await self._loader()
        except DatabaseError as e:
            logger.warning(
                "Certainty table unavailable, using built-in coefficients",
                error=str(e),
                recoverable=e.recoverable,
            )
            return dict(DEFAULT_CERTAINTY_TABLE)

        if not rows:
            logger.info("No active certainty rows, using built-in coefficients")
            return dict(DEFAULT_CERTAINTY_TABLE)

        table = dict(DEFAULT_CERTAINTY_TABLE)
        skipped = 0
        for row in rows:
            try:
                entry = _row_to_certainty(row)
            except (KeyError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning(
                    "Skipping invalid certainty row",
                    source_type=row.get("source_type"),
                    error=str(e),
                )
                continue
            table[entry.source_type] = entry

        logger.info(
            "Certainty table loaded",
            sources=len(table),
            store_rows=len(rows),
            skipped=skipped,
        )
        return table

    def source(self, source_type: str) -> DataSourceCertainty:
        table = self.table
        return table.get(source_type) or table[FALLBACK_SOURCE]

    def certainty_of(self, source_type: str, is_certified: bool) -> float:
        return self.source(source_type).coefficient(is_certified)

    def check_certification(
        self, source_type: str, provided_proofs: Iterable[str]
    ) -> CertificationCheck:
        proofs = set(provided_proofs)
        missing = [req for req in self.source(source_type).requirements if req not in proofs]
        return CertificationCheck(is_certified=not missing, missing_requirements=missing)

    def adjusted_certainty(
        self,
        source_type: str,
        is_certified: bool,
        *,
        phone_otp_verified: bool = False,
        provider_detected: bool = False,
        name_cross_validated: bool = False,
    ) -> float:
        """Coefficient plus per-proof boosts, capped at 1."""
        certainty = self.certainty_of(source_type, is_certified)
        if phone_otp_verified:
            certainty = min(1.0, certainty + OTP_CERTAINTY_BOOST)
        if provider_detected:
            certainty = min(1.0, certainty + PROVIDER_CERTAINTY_BOOST)
        if name_cross_validated:
            certainty = min(1.0, certainty + NAME_CERTAINTY_BOOST)
        return round(certainty, 4)

    def apply_feature_certainty(
        self,
        feature_id: str,
        feature_name: str,
        raw_value: float,
        source_type: str,
        is_certified: bool,
    ) -> CertifiedDataPoint:
        certainty = self.certainty_of(source_type, is_certified)
        details = (
            ["Certified data"] if is_certified else [f"Coefficient: {round(certainty * 100)}%"]
        )
        return CertifiedDataPoint(
            feature_id=feature_id,
            feature_name=feature_name,
            raw_value=raw_value,
            source_type=source_type,
            is_certified=is_certified,
            certainty_coefficient=certainty,
            weighted_value=raw_value * certainty,
            certification_details=details,
        )

    def certify_features(
        self,
        features: Mapping[str, float],
        feature_weights: Mapping[str, float],
        certification_status: Mapping[str, bool] | None = None,
        phone_trust_score: float | None = None,
    ) -> CertifiedFeatures:
        """
        Weight a flat feature vector by source certainty.

        A phone trust score of 70 or more certifies every SMS, screenshot
        and utility feature regardless of certification_status.
        """
        certification_status = certification_status or {}
        trusted_phone = (
            phone_trust_score is not None and phone_trust_score >= AUTO_CERTIFY_TRUST_SCORE
        )

        data_points: list[CertifiedDataPoint] = []
        for feature_id, value in features.items():
            source_type = FEATURE_SOURCE_MAP.get(feature_id, FALLBACK_SOURCE)
            is_certified = certification_status.get(feature_id, False)
            if trusted_phone and source_type in AUTO_CERTIFIED_SOURCES:
                is_certified = True
            data_points.append(
                self.apply_feature_certainty(
                    feature_id,
                    feature_id.replace("_", " "),
                    value,
                    source_type,
                    is_certified,
                )
            )

        groups: dict[str, list[float]] = {}
        for point in data_points:
            groups.setdefault(point.source_type, []).append(point.certainty_coefficient)

        return CertifiedFeatures(
            data_points=data_points,
            score=weighted_score(data_points, feature_weights),
            source_breakdown=[
                SourceBreakdown(
                    source=source,
                    count=len(coefficients),
                    avg_certainty=sum(coefficients) / len(coefficients),
                )
                for source, coefficients in groups.items()
            ],
        )


def weighted_score(
    data_points: Iterable[CertifiedDataPoint], feature_weights: Mapping[str, float]
) -> WeightedScore:
    """Weight-normalized raw and certified means; zero-weight features are skipped."""
    raw_total = 0.0
    certified_total = 0.0
    weight_total = 0.0
    certainty_total = 0.0
    breakdown: list[FeatureContribution] = []

    for point in data_points:
        weight = feature_weights.get(point.feature_id, 0.0)
        if not weight:
            continue
        raw_contribution = point.raw_value * weight
        certified_contribution = point.weighted_value * weight
        raw_total += raw_contribution
        certified_total += certified_contribution
        weight_total += weight
        certainty_total += point.certainty_coefficient * weight
        breakdown.append(
            FeatureContribution(
                feature=point.feature_name,
                raw_contribution=raw_contribution,
                certified_contribution=certified_contribution,
                certainty=point.certainty_coefficient,
            )
        )

    if weight_total == 0:
        return WeightedScore(0.0, 0.0, 0.0, breakdown)

    return WeightedScore(
        raw_score=raw_total / weight_total,
        certified_score=certified_total / weight_total,
        overall_certainty=certainty_total / weight_total,
        breakdown=breakdown,
    )


def trust_level(score: float) -> TrustLevel:
    if score >= 90:
        return TrustLevel.GOLD
    if score >= 70:
        return TrustLevel.CERTIFIED
    if score >= 50:
        return TrustLevel.VERIFIED
    if score >= 20:
        return TrustLevel.BASIC
    return TrustLevel.UNVERIFIED


def activity_level(
    transaction_count: int,
    last_activity_date: datetime | None,
    now: datetime | None = None,
) -> ActivityLevel:
    """
    Classify activity from volume and recency.

    No known activity, or none in the last 90 days, is dormant whatever
    the volume.
    """
    if last_activity_date is None:
        return ActivityLevel.DORMANT

    now = now or datetime.now(UTC)
    if last_activity_date.tzinfo is None:
        last_activity_date = last_activity_date.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    if (now - last_activity_date).days > DORMANT_AFTER_DAYS:
        return ActivityLevel.DORMANT
    if transaction_count < 5:
        return ActivityLevel.LOW
    if transaction_count < 20:
        return ActivityLevel.MEDIUM
    if transaction_count < 50:
        return ActivityLevel.HIGH
    return ActivityLevel.VERY_HIGH
