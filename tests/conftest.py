import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from mobile_trust.features.phone_trust.domain.models import FraudFlag, PhoneTrustState
from mobile_trust.features.phone_trust.errors import TrustScoreUnavailableError
from mobile_trust.features.phone_trust.pipeline.certainty.calculator import CertaintyCalculator
from mobile_trust.features.phone_trust.pipeline.sms.models import SmsMessage
from mobile_trust.features.phone_trust.pipeline.ussd.analyzer import UssdScreenshotAnalyzer
from mobile_trust.features.phone_trust.pipeline.ussd.ocr import OcrEngine, OcrResult
from mobile_trust.features.phone_trust.validator.service import PhoneTrustValidator

PHONE = "+2250708091011"
USER = "user-123"

GENUINE_PROFILE_TEXT = "\n".join(
    [
        "Orange Money",
        "Mon compte",
        "Nom: Kouadio Jean",
        "Tel: 07 08 09 10 11",
        "Solde: 25 000 FCFA",
        "14:32  4G 85%",
        "Retour",
    ]
)

EDITED_PROFILE_TEXT = "\n".join(
    [
        "Mon profil",
        "Informations personnelles",
        "Titulaire",
        "10000 FCFA",
        "20000 FCFA",
        "30000 FCFA",
    ]
)


class FakeOcrEngine(OcrEngine):
    def __init__(self, text: str = GENUINE_PROFILE_TEXT, confidence: float = 85.0, delay=0.0):
        self.text = text
        self.confidence = confidence
        self.delay = delay
        self.calls = 0

    async def recognize(self, image: bytes, language_hints: str) -> OcrResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return OcrResult(text=self.text, confidence=self.confidence)


class FakeTrustScorer:
    def __init__(self, score: float = 55.0):
        self.value = score
        self.fail = False
        self.calls: list[str] = []

    async def score(self, phone_number: str) -> float:
        self.calls.append(phone_number)
        if self.fail:
            raise TrustScoreUnavailableError("scorer down", phone_number=phone_number)
        return self.value


class FakeAuditLogger:
    def __init__(self):
        self.events: list[dict] = []

    async def log(self, user_id, action, **kwargs):
        self.events.append({"user_id": user_id, "action": action, **kwargs})
        return True

    async def log_consent_use(
        self, user_id, consent_id, action, resource_type, resource_count, **kwargs
    ):
        self.events.append(
            {
                "user_id": user_id,
                "action": action,
                "consent_id": consent_id,
                "resource_type": resource_type,
                "resource_count": resource_count,
                **kwargs,
            }
        )
        return True

    async def log_security_event(self, user_id, event_type, severity, description, **kwargs):
        self.events.append(
            {"user_id": user_id, "action": f"security_{event_type}", "severity": severity}
        )
        return True

    def actions(self) -> list[str]:
        return [event["action"] for event in self.events]


class InMemoryPhoneTrustRepository:
    """Same contract as PhoneTrustRepository, kept in a dict."""

    def __init__(self):
        self.records: dict[tuple[str, str], PhoneTrustState] = {}
        self.screenshot_validations: list[dict] = []
        self.transactions: list[tuple[str, object]] = []
        self.bills: list[tuple[str, object]] = []
        self.message_keys: set[tuple[str, str, str, str]] = set()
        self.writes = 0

    async def get(self, phone_number, user_id):
        return self.records.get((phone_number, user_id))

    async def create_if_missing(self, phone_number, user_id, shared_flag: FraudFlag):
        key = (phone_number, user_id)
        if key in self.records:
            return self.records[key], False
        shared = any(p == phone_number and u != user_id for p, u in self.records)
        state = PhoneTrustState(
            phone_number=phone_number,
            user_id=user_id,
            multiple_users_detected=shared,
            fraud_flags=[shared_flag] if shared else [],
        )
        self.records[key] = state
        self.writes += 1
        return state, True

    def _upsert(self, phone_number, user_id, **changes) -> PhoneTrustState:
        key = (phone_number, user_id)
        current = self.records.get(key) or PhoneTrustState(
            phone_number=phone_number, user_id=user_id
        )
        state = current.model_copy(update={**changes, "score_stale": True})
        self.records[key] = state
        self.writes += 1
        return state

    def _identity_changes(self, phone_number, user_id, score, matched, flags, at):
        current = self.records.get((phone_number, user_id))
        previous_score = current.identity_match_score if current else None
        scores = [s for s in (previous_score, score) if s is not None]
        return {
            "identity_cross_validated": bool(current and current.identity_cross_validated)
            or matched,
            "identity_match_score": max(scores) if scores else None,
            "identity_validated_at": at
            if matched
            else (current.identity_validated_at if current else None),
            "fraud_flags": [*(current.fraud_flags if current else []), *flags],
        }

    async def mark_otp_verified(self, phone_number, user_id, verified_at):
        return self._upsert(phone_number, user_id, otp_verified=True, otp_verified_at=verified_at)

    async def record_ussd_screenshot(
        self, phone_number, user_id, analysis, decision, image_hash, fraud_flags, verified_at
    ):
        current = self.records.get((phone_number, user_id))
        match = analysis.name_match
        self.screenshot_validations.append(
            {
                "image_hash": image_hash,
                "validation_status": "validated" if decision.can_certify else "pending",
                "rejection_reason": "; ".join(decision.reasons) or None,
            }
        )
        return self._upsert(
            phone_number,
            user_id,
            ussd_uploaded=True,
            ussd_name_extracted=analysis.extracted_name
            or (current.ussd_name_extracted if current else None),
            ussd_verification_confidence=decision.score,
            ussd_verified_at=verified_at,
            **self._identity_changes(
                phone_number,
                user_id,
                match.score if match else None,
                bool(match and match.is_match),
                fraud_flags,
                verified_at,
            ),
        )

    async def record_identity_match(
        self, phone_number, user_id, match_score, matched, fraud_flags, validated_at
    ):
        return self._upsert(
            phone_number,
            user_id,
            **self._identity_changes(
                phone_number, user_id, match_score, matched, fraud_flags, validated_at
            ),
        )

    async def record_sms_history(
        self, phone_number, user_id, consent_id, extraction, activity, last_activity, analyzed_at
    ):
        for table, rows, items in (
            ("transactions", self.transactions, extraction.transactions),
            ("bills", self.bills, extraction.utility_bills),
        ):
            for item in items:
                key = (table, phone_number, user_id, item.id)
                if key not in self.message_keys:
                    self.message_keys.add(key)
                    rows.append((consent_id, item))
        return self._upsert(
            phone_number,
            user_id,
            sms_consent_given=True,
            sms_transactions_count=len(extraction.transactions),
            sms_analyzed_at=analyzed_at,
            phone_age_months=extraction.aggregated.phone_age_months,
            activity_level=activity,
            last_activity_date=last_activity,
        )

    async def update_trust_score(self, phone_number, user_id, score, level):
        current = self.records.get((phone_number, user_id))
        if current is None:
            return None
        state = current.model_copy(
            update={"trust_score": score, "trust_level": level, "score_stale": False}
        )
        self.records[(phone_number, user_id)] = state
        return state


async def _no_certainty_rows():
    return []


@pytest.fixture
def repository():
    return InMemoryPhoneTrustRepository()


@pytest.fixture
def scorer():
    return FakeTrustScorer()


@pytest.fixture
def audit():
    return FakeAuditLogger()


@pytest.fixture
def ocr_engine():
    return FakeOcrEngine()


@pytest.fixture
def certainty():
    return CertaintyCalculator(loader=_no_certainty_rows)


@pytest.fixture
def validator(repository, scorer, audit, ocr_engine, certainty):
    return PhoneTrustValidator(
        repository=repository,
        scorer=scorer,
        analyzer=UssdScreenshotAnalyzer(ocr_engine),
        certainty=certainty,
        audit=audit,
    )


@pytest.fixture
def momo_history():
    """Three Orange Money credits (6000) and two transfers out (2000), oldest 100 days ago."""
    now = datetime.now(UTC)
    bodies = [
        "Vous avez recu 1000 FCFA de KONAN Paul. Nouveau solde: 15000 FCFA",
        "Vous avez recu 2000 FCFA de KONAN Paul. Nouveau solde: 17000 FCFA",
        "Vous avez recu 3000 FCFA de KONAN Paul. Nouveau solde: 20000 FCFA",
        "Transfert de 500 FCFA vers KOFFI Ama effectue. Nouveau solde: 19500 FCFA",
        "Transfert de 1500 FCFA vers KOFFI Ama effectue. Nouveau solde: 18000 FCFA",
    ]
    ages = [100, 60, 30, 10, 2]
    return [
        SmsMessage(
            id=f"sms-{index}",
            sender="OrangeMoney",
            body=body,
            date=now - timedelta(days=age),
        )
        for index, (body, age) in enumerate(zip(bodies, ages))
    ]
