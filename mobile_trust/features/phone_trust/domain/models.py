"""
Domain models for the phone trust feature.

PhoneTrustState mirrors one phone_trust_scores row and is the only shape
the rest of the feature reads. Rows enter through PhoneTrustState.from_row,
which refuses to guess at missing columns.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import MalformedRecordError


class OrderedStrEnum(str, Enum):
    """String enum whose members compare by declaration order."""

    @property
    def rank(self) -> int:
        return list(type(self)).index(self)

    def _check(self, other: Any) -> "OrderedStrEnum":
        if type(other) is not type(self):
            return NotImplemented
        return other

    def __lt__(self, other):
        other = self._check(other)
        return NotImplemented if other is NotImplemented else self.rank < other.rank

    def __le__(self, other):
        other = self._check(other)
        return NotImplemented if other is NotImplemented else self.rank <= other.rank

    def __gt__(self, other):
        other = self._check(other)
        return NotImplemented if other is NotImplemented else self.rank > other.rank

    def __ge__(self, other):
        other = self._check(other)
        return NotImplemented if other is NotImplemented else self.rank >= other.rank


class TrustLevel(OrderedStrEnum):
    UNVERIFIED = "unverified"
    BASIC = "basic"
    VERIFIED = "verified"
    CERTIFIED = "certified"
    GOLD = "gold"


class ActivityLevel(OrderedStrEnum):
    UNKNOWN = "unknown"
    DORMANT = "dormant"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class MoMoProvider(str, Enum):
    ORANGE_MONEY = "orange_money"
    MTN_MOMO = "mtn_momo"
    WAVE = "wave"
    MOOV = "moov"
    UNKNOWN = "unknown"


class ScreenType(str, Enum):
    PROFILE = "profile"
    BALANCE = "balance"
    HISTORY = "history"
    MENU = "menu"
    UNKNOWN = "unknown"


class ValidationStage(str, Enum):
    OTP = "otp"
    USSD = "ussd"
    IDENTITY = "identity"
    SMS = "sms"
    COMPLETE = "complete"


class FraudSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FraudFlag(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    severity: FraudSeverity
    detected_at: datetime


REQUIRED_COLUMNS = (
    "phone_number",
    "user_id",
    "otp_verified",
    "ussd_screenshot_uploaded",
    "identity_cross_validated",
    "sms_consent_given",
    "trust_score",
    "trust_level",
)


class PhoneTrustState(BaseModel):
    """Trust progress for one (phone number, user) pair."""

    phone_number: str
    user_id: str

    otp_verified: bool = False
    otp_verified_at: datetime | None = None

    ussd_uploaded: bool = False
    ussd_name_extracted: str | None = None
    ussd_verification_confidence: float | None = None
    ussd_verified_at: datetime | None = None

    identity_cross_validated: bool = False
    identity_match_score: int | None = None
    identity_validated_at: datetime | None = None

    sms_consent_given: bool = False
    sms_transactions_count: int = 0
    sms_analyzed_at: datetime | None = None

    trust_score: float = Field(default=0.0, ge=0, le=100)
    trust_level: TrustLevel = TrustLevel.UNVERIFIED
    score_stale: bool = False

    phone_age_months: int | None = None
    activity_level: ActivityLevel = ActivityLevel.UNKNOWN
    last_activity_date: datetime | None = None

    multiple_users_detected: bool = False
    fraud_flags: list[FraudFlag] = Field(default_factory=list)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "PhoneTrustState":
        """
        Build a state from a phone_trust_scores row.

        Raises:
            MalformedRecordError: if a required column is missing or null,
                or a value cannot be coerced.
        """
        missing = [column for column in REQUIRED_COLUMNS if row.get(column) is None]
        if missing:
            raise MalformedRecordError(
                f"phone_trust_scores row missing required columns: {', '.join(missing)}",
                phone_number=row.get("phone_number"),
            )

        try:
            return cls(
                phone_number=row["phone_number"],
                user_id=str(row["user_id"]),
                otp_verified=row["otp_verified"],
                otp_verified_at=row.get("otp_verified_at"),
                ussd_uploaded=row["ussd_screenshot_uploaded"],
                ussd_name_extracted=row.get("ussd_name_extracted"),
                ussd_verification_confidence=row.get("ussd_verification_confidence"),
                ussd_verified_at=row.get("ussd_verified_at"),
                identity_cross_validated=row["identity_cross_validated"],
                identity_match_score=row.get("identity_match_score"),
                identity_validated_at=row.get("identity_validated_at"),
                sms_consent_given=row["sms_consent_given"],
                sms_transactions_count=row.get("sms_transactions_count") or 0,
                sms_analyzed_at=row.get("sms_analyzed_at"),
                trust_score=float(row["trust_score"]),
                trust_level=row["trust_level"],
                score_stale=bool(row.get("trust_score_stale")),
                phone_age_months=row.get("phone_age_months"),
                activity_level=row.get("activity_level") or ActivityLevel.UNKNOWN,
                last_activity_date=row.get("last_activity_date"),
                multiple_users_detected=bool(row.get("multiple_users_detected")),
                fraud_flags=row.get("fraud_flags") or [],
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise MalformedRecordError(
                f"phone_trust_scores row could not be parsed: {e}",
                phone_number=row.get("phone_number"),
            ) from e


class ValidationProgress(BaseModel):
    current_stage: ValidationStage
    completed_stages: list[ValidationStage]
    progress_percent: int = Field(ge=0, le=100)
    next_action: str | None = None
