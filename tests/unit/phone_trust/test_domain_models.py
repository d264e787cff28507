from datetime import UTC, datetime

import pytest

from mobile_trust.features.phone_trust.domain.models import (
    ActivityLevel,
    FraudSeverity,
    PhoneTrustState,
    TrustLevel,
)
from mobile_trust.features.phone_trust.errors import MalformedRecordError

ROW = {
    "phone_number": "+2250708091011",
    "user_id": 42,
    "otp_verified": True,
    "otp_verified_at": datetime(2026, 5, 1, tzinfo=UTC),
    "ussd_screenshot_uploaded": True,
    "ussd_name_extracted": "Kouadio Jean",
    "ussd_verification_confidence": 120,
    "identity_cross_validated": False,
    "identity_match_score": 40,
    "sms_consent_given": False,
    "sms_transactions_count": None,
    "trust_score": "62.50",
    "trust_level": "verified",
    "trust_score_stale": True,
    "activity_level": None,
    "multiple_users_detected": None,
    "fraud_flags": [
        {
            "type": "identity_name_mismatch",
            "severity": "medium",
            "detected_at": "2026-05-02T10:00:00+00:00",
        }
    ],
}


def test_from_row_maps_columns():
    state = PhoneTrustState.from_row(ROW)

    assert state.user_id == "42"
    assert state.ussd_uploaded is True
    assert state.trust_score == 62.5
    assert state.trust_level is TrustLevel.VERIFIED
    assert state.score_stale is True
    assert state.sms_transactions_count == 0
    assert state.activity_level is ActivityLevel.UNKNOWN
    assert state.multiple_users_detected is False
    assert state.fraud_flags[0].severity is FraudSeverity.MEDIUM


def test_from_row_rejects_missing_columns():
    row = {**ROW, "trust_level": None}
    del row["otp_verified"]

    with pytest.raises(MalformedRecordError) as excinfo:
        PhoneTrustState.from_row(row)
    assert "otp_verified" in excinfo.value.message
    assert "trust_level" in excinfo.value.message
    assert excinfo.value.recoverable is False


def test_from_row_rejects_uncoercible_values():
    with pytest.raises(MalformedRecordError):
        PhoneTrustState.from_row({**ROW, "trust_level": "platinum"})

    with pytest.raises(MalformedRecordError):
        PhoneTrustState.from_row({**ROW, "trust_score": "not a number"})


def test_trust_score_is_bounded():
    with pytest.raises(MalformedRecordError):
        PhoneTrustState.from_row({**ROW, "trust_score": 140})
