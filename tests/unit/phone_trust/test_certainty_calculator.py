from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from mobile_trust.db.helpers import DatabaseError
from mobile_trust.features.phone_trust.domain.models import ActivityLevel, TrustLevel
from mobile_trust.features.phone_trust.pipeline.certainty.calculator import (
    DEFAULT_CERTAINTY_TABLE,
    CertaintyCalculator,
    activity_level,
    trust_level,
    weighted_score,
)
from mobile_trust.features.phone_trust.pipeline.certainty.models import DataSourceCertainty

NOW = datetime(2026, 6, 1, tzinfo=UTC)


class StubLoader:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.rows


def test_builtin_table_is_monotonic():
    for entry in DEFAULT_CERTAINTY_TABLE.values():
        assert 0 <= entry.base_certainty <= entry.certified_certainty <= 1


@pytest.mark.parametrize(
    "base,certified",
    [(0.8, 0.5), (1.2, 1.3), (-0.1, 0.5)],
)
def test_invalid_coefficients_are_rejected(base, certified):
    with pytest.raises(ValueError):
        DataSourceCertainty("custom", "Custom", base, certified)


def test_defaults_apply_before_load():
    calculator = CertaintyCalculator(loader=StubLoader())

    assert not calculator.loaded
    assert calculator.certainty_of("sms_parsed", False) == 0.7
    assert calculator.certainty_of("sms_parsed", True) == 0.9


@pytest.mark.asyncio
async def test_store_failure_falls_back_to_defaults():
    loader = StubLoader(error=DatabaseError("connection refused", operation="fetch_all"))
    calculator = CertaintyCalculator(loader=loader)

    table = await calculator.load()

    assert calculator.loaded
    assert dict(table) == DEFAULT_CERTAINTY_TABLE


@pytest.mark.asyncio
async def test_store_rows_merge_over_defaults():
    loader = StubLoader(
        rows=[
            {
                "source_type": "sms_parsed",
                "source_name": "SMS transactionnels",
                "base_certainty": Decimal("0.75"),
                "certified_certainty": Decimal("0.92"),
                "certification_requirements": ["phone_otp_verified"],
            },
            {"source_type": "broken", "base_certainty": 0.9, "certified_certainty": 0.4},
            {"source_type": "bank_statement", "base_certainty": 0.8, "certified_certainty": 0.95},
        ]
    )
    calculator = CertaintyCalculator(loader=loader)

    await calculator.load()

    sms = calculator.source("sms_parsed")
    assert sms.base_certainty == 0.75
    assert sms.requirements == ("phone_otp_verified",)
    assert "broken" not in calculator.table
    assert calculator.source("bank_statement").label == "bank_statement"
    assert calculator.source("declared") == DEFAULT_CERTAINTY_TABLE["declared"]


@pytest.mark.asyncio
async def test_table_is_loaded_once_until_reload():
    loader = StubLoader()
    calculator = CertaintyCalculator(loader=loader)

    await calculator.load()
    await calculator.load()
    assert loader.calls == 1

    await calculator.reload()
    assert loader.calls == 2

    calculator.reset()
    assert not calculator.loaded


def test_unknown_source_uses_declared_coefficients():
    calculator = CertaintyCalculator(loader=StubLoader())

    assert calculator.certainty_of("astrology", False) == 0.3
    assert calculator.certainty_of("astrology", True) == 0.5


def test_check_certification_lists_missing_proofs():
    calculator = CertaintyCalculator(loader=StubLoader())

    check = calculator.check_certification("screenshot_ocr", ["phone_otp_verified"])
    assert not check.is_certified
    assert check.missing_requirements == ["tampering_check_passed", "name_cross_validated"]

    assert calculator.check_certification("api_verified", []).is_certified


def test_adjusted_certainty_boosts_and_caps():
    calculator = CertaintyCalculator(loader=StubLoader())

    assert calculator.adjusted_certainty(
        "sms_parsed", False, phone_otp_verified=True, provider_detected=True
    ) == pytest.approx(0.78)
    assert (
        calculator.adjusted_certainty(
            "sms_parsed",
            True,
            phone_otp_verified=True,
            provider_detected=True,
            name_cross_validated=True,
        )
        == 1.0
    )


def test_apply_feature_certainty():
    calculator = CertaintyCalculator(loader=StubLoader())

    raw = calculator.apply_feature_certainty(
        "momo_balance", "Momo balance", 25000, "screenshot_ocr", False
    )
    assert raw.certainty_coefficient == 0.6
    assert raw.weighted_value == pytest.approx(15000)
    assert raw.certification_details == ["Coefficient: 60%"]

    certified = calculator.apply_feature_certainty(
        "momo_balance", "Momo balance", 25000, "screenshot_ocr", True
    )
    assert certified.weighted_value == pytest.approx(22500)
    assert certified.certification_details == ["Certified data"]


def test_trusted_phone_certifies_transactional_features():
    calculator = CertaintyCalculator(loader=StubLoader())
    features = {"momo_total_credits": 60, "sim_age_months": 40}
    weights = {"momo_total_credits": 0.5, "sim_age_months": 0.5}

    trusted = calculator.certify_features(features, weights, phone_trust_score=75)
    untrusted = calculator.certify_features(features, weights, phone_trust_score=40)

    assert [p.is_certified for p in trusted.data_points] == [True, False]
    assert trusted.score.raw_score == pytest.approx(50)
    assert trusted.score.certified_score == pytest.approx(33)
    assert trusted.score.overall_certainty == pytest.approx(0.6)
    assert untrusted.score.certified_score == pytest.approx(27)
    assert {b.source: b.count for b in trusted.source_breakdown} == {
        "sms_parsed": 1,
        "declared": 1,
    }


def test_weighted_score_without_weights_is_zero():
    calculator = CertaintyCalculator(loader=StubLoader())
    point = calculator.apply_feature_certainty("x", "x", 10, "declared", False)

    score = weighted_score([point], {})

    assert (score.raw_score, score.certified_score, score.overall_certainty) == (0, 0, 0)
    assert score.breakdown == []


@pytest.mark.parametrize(
    "score,level",
    [
        (100, TrustLevel.GOLD),
        (90, TrustLevel.GOLD),
        (89.9, TrustLevel.CERTIFIED),
        (70, TrustLevel.CERTIFIED),
        (50, TrustLevel.VERIFIED),
        (20, TrustLevel.BASIC),
        (19.99, TrustLevel.UNVERIFIED),
        (0, TrustLevel.UNVERIFIED),
    ],
)
def test_trust_level(score, level):
    assert trust_level(score) is level


def test_trust_levels_are_ordered():
    assert TrustLevel.GOLD > TrustLevel.CERTIFIED > TrustLevel.UNVERIFIED
    assert ActivityLevel.VERY_HIGH > ActivityLevel.DORMANT


@pytest.mark.parametrize(
    "count,days_ago,level",
    [
        (80, 120, ActivityLevel.DORMANT),
        (80, 90, ActivityLevel.VERY_HIGH),
        (3, 1, ActivityLevel.LOW),
        (10, 1, ActivityLevel.MEDIUM),
        (30, 1, ActivityLevel.HIGH),
        (50, 1, ActivityLevel.VERY_HIGH),
    ],
)
def test_activity_level(count, days_ago, level):
    assert activity_level(count, NOW - timedelta(days=days_ago), now=NOW) is level


def test_activity_without_history_is_dormant():
    assert activity_level(12, None, now=NOW) is ActivityLevel.DORMANT


def test_activity_accepts_naive_dates():
    naive = datetime(2026, 5, 30)

    assert activity_level(12, naive, now=NOW) is ActivityLevel.MEDIUM
