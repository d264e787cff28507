"""
Phone trust validator - the four-stage state machine.

Stages (OTP, USSD screenshot, identity cross-validation, SMS history) may
be submitted in any order and re-run at will. Each one validates its input,
writes its own columns under a per-key lock, then recalculates the trust
score. A failed recalculation leaves the stage written and the record
flagged score_stale.
"""

from __future__ import annotations

import re
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol

from mobile_trust.config import settings
from mobile_trust.db.helpers import DatabaseError
from mobile_trust.infrastructure.audit import audit_logger as default_audit_logger
from mobile_trust.infrastructure.observability.logging import get_logger
from mobile_trust.security.hashing import fingerprint_image, mask_phone_number

from ..domain.models import (
    FraudFlag,
    FraudSeverity,
    MoMoProvider,
    PhoneTrustState,
    ValidationProgress,
)
from ..errors import InvalidEvidenceError, StoreUnavailableError, TrustScoreUnavailableError
from ..matching.name_matcher import NameMatchResult, match_names
from ..pipeline.certainty.calculator import CertaintyCalculator, activity_level, trust_level
from ..pipeline.certainty.models import CertifiedDataPoint
from ..pipeline.sms.extractor import UNKNOWN_UTILITY_PROVIDER, SmsTransactionExtractor
from ..pipeline.sms.models import ExtractionResult, PaymentStatus, SmsMessage
from ..pipeline.ussd.analyzer import UssdScreenshotAnalyzer
from ..pipeline.ussd.models import CertificationDecision, UssdScreenshotResult
from ..pipeline.ussd.ocr import OcrEngine
from .progress import get_validation_progress
from .repository import phone_trust_repository
from .scorer import PostgresTrustScorer, TrustScorer

logger = get_logger(__name__)

_PHONE_FORMAT = re.compile(r"\+?\d{8,15}")

TAMPERING_FLAG_THRESHOLD = 50
TAMPERING_CHECK_PASSED_BELOW = 30


class AuditSink(Protocol):
    async def log(self, user_id: str, action: str, **kwargs: Any) -> bool: ...

    async def log_consent_use(
        self,
        user_id: str,
        consent_id: str,
        action: str,
        resource_type: str,
        resource_count: int,
        **kwargs: Any,
    ) -> bool: ...

    async def log_security_event(
        self, user_id: str, event_type: str, severity: str, description: str, **kwargs: Any
    ) -> bool: ...


@dataclass(slots=True)
class UssdOutcome:
    state: PhoneTrustState
    analysis: UssdScreenshotResult
    decision: CertificationDecision
    data_points: list[CertifiedDataPoint] = field(default_factory=list)


@dataclass(slots=True)
class IdentityOutcome:
    state: PhoneTrustState
    match: NameMatchResult
    is_match: bool


@dataclass(slots=True)
class SmsOutcome:
    state: PhoneTrustState
    extraction: ExtractionResult
    data_points: list[CertifiedDataPoint] = field(default_factory=list)


def _now() -> datetime:
    return datetime.now(UTC)


def _flag(flag_type: str, severity: FraudSeverity) -> FraudFlag:
    return FraudFlag(type=flag_type, severity=severity, detected_at=_now())


def validate_key(phone_number: str, user_id: str) -> None:
    if not phone_number or not _PHONE_FORMAT.fullmatch(phone_number):
        raise InvalidEvidenceError("Phone number must be 8 to 15 digits, optionally with '+'")
    if not user_id or not user_id.strip():
        raise InvalidEvidenceError("User id is required", phone_number=phone_number)


class PhoneTrustValidator:
    """Orchestrates evidence processing and trust score upkeep for one phone/user pair."""

    def __init__(
        self,
        repository=None,
        ocr_engine: OcrEngine | None = None,
        scorer: TrustScorer | None = None,
        analyzer: UssdScreenshotAnalyzer | None = None,
        extractor: SmsTransactionExtractor | None = None,
        certainty: CertaintyCalculator | None = None,
        audit: AuditSink | None = None,
    ):
        self.repository = repository or phone_trust_repository
        self.scorer = scorer or PostgresTrustScorer()
        self.analyzer = analyzer or UssdScreenshotAnalyzer(ocr_engine)
        self.extractor = extractor or SmsTransactionExtractor()
        self.certainty = certainty or CertaintyCalculator()
        self.audit = audit or default_audit_logger

    @asynccontextmanager
    async def _store(self, phone_number: str) -> AsyncGenerator[None, None]:
        try:
            yield
        except DatabaseError as e:
            logger.error(
                "Phone trust store unavailable",
                phone=mask_phone_number(phone_number),
                operation=e.operation,
                recoverable=e.recoverable,
                error=str(e),
            )
            raise StoreUnavailableError(
                "Phone trust store is unavailable",
                phone_number=phone_number,
                recoverable=e.recoverable,
            ) from e

    async def get(self, phone_number: str, user_id: str) -> PhoneTrustState | None:
        validate_key(phone_number, user_id)
        async with self._store(phone_number):
            return await self.repository.get(phone_number, user_id)

    async def get_or_create(self, phone_number: str, user_id: str) -> PhoneTrustState:
        validate_key(phone_number, user_id)
        async with self._store(phone_number):
            state = await self.repository.get(phone_number, user_id)
            if state is not None:
                return state
            state, created = await self.repository.create_if_missing(
                phone_number,
                user_id,
                _flag("phone_shared_across_users", FraudSeverity.MEDIUM),
            )

        if created and state.multiple_users_detected:
            await self.audit.log_security_event(
                user_id=user_id,
                event_type="phone_shared_across_users",
                severity=FraudSeverity.MEDIUM.value,
                description="Phone number already registered by another user",
                phone_number=phone_number,
            )
        return state

    async def mark_otp_verified(
        self, phone_number: str, user_id: str, verification_token: str
    ) -> PhoneTrustState:
        """Stage 1: the caller has already checked the OTP; record the proof."""
        validate_key(phone_number, user_id)
        if not verification_token or not verification_token.strip():
            raise InvalidEvidenceError("Verification token is required", phone_number=phone_number)

        await self.get_or_create(phone_number, user_id)
        async with self._store(phone_number):
            await self.repository.mark_otp_verified(phone_number, user_id, _now())

        logger.info("OTP stage recorded", phone=mask_phone_number(phone_number), user_id=user_id)
        return await self.recalculate_trust_score(phone_number, user_id)

    async def process_ussd_screenshot(
        self,
        phone_number: str,
        user_id: str,
        image: bytes,
        declared_name: str | None = None,
    ) -> UssdOutcome:
        """
        Stage 2: analyze a Mobile Money profile screenshot.

        The image is only fingerprinted; neither it nor the OCR text is stored.
        Certification failures come back as decision.reasons and fraud flags.
        """
        validate_key(phone_number, user_id)
        declared_name = (declared_name or "").strip() or None

        analysis = await self.analyzer.analyze(image, declared_name)
        decision = self.analyzer.validate_for_certification(analysis)
        image_hash = fingerprint_image(image)

        fraud_flags = []
        if analysis.tampering_probability > TAMPERING_FLAG_THRESHOLD:
            fraud_flags.append(_flag("screenshot_tampering_suspected", FraudSeverity.HIGH))
        if analysis.name_match is not None and not analysis.name_match.is_match:
            fraud_flags.append(_flag("identity_name_mismatch", FraudSeverity.MEDIUM))

        state = await self.get_or_create(phone_number, user_id)
        async with self._store(phone_number):
            await self.repository.record_ussd_screenshot(
                phone_number,
                user_id,
                analysis,
                decision,
                image_hash,
                fraud_flags,
                _now(),
            )

        await self.audit.log(
            user_id=user_id,
            action="ussd_screenshot_analyzed",
            resource_type="ussd_screenshot",
            phone_number=phone_number,
            metadata={
                "image_hash": image_hash,
                "provider": analysis.provider.value,
                "screen_type": analysis.screen_type.value,
                "can_certify": decision.can_certify,
                "certification_score": decision.score,
                "tampering_probability": analysis.tampering_probability,
            },
        )
        for flag in fraud_flags:
            await self.audit.log_security_event(
                user_id=user_id,
                event_type=flag.type,
                severity=flag.severity.value,
                description="Raised while analyzing a Mobile Money screenshot",
                phone_number=phone_number,
            )

        data_points = await self._screenshot_data_points(state, analysis)
        state = await self.recalculate_trust_score(phone_number, user_id)
        return UssdOutcome(
            state=state, analysis=analysis, decision=decision, data_points=data_points
        )

    async def cross_validate_identity(
        self, phone_number: str, user_id: str, declared_name: str
    ) -> IdentityOutcome:
        """Stage 3: match the name read from the screenshot against a declared identity."""
        validate_key(phone_number, user_id)
        if not declared_name or not declared_name.strip():
            raise InvalidEvidenceError("Declared name is required", phone_number=phone_number)

        state = await self.get_or_create(phone_number, user_id)
        if not state.ussd_name_extracted:
            raise InvalidEvidenceError(
                "No name has been read from a Mobile Money screenshot yet",
                phone_number=phone_number,
            )

        match = match_names(declared_name, state.ussd_name_extracted)
        is_match = match.score >= self.analyzer.name_match_threshold
        fraud_flags = [] if is_match else [_flag("identity_name_mismatch", FraudSeverity.MEDIUM)]

        async with self._store(phone_number):
            await self.repository.record_identity_match(
                phone_number, user_id, match.score, is_match, fraud_flags, _now()
            )

        logger.info(
            "Identity stage recorded",
            phone=mask_phone_number(phone_number),
            user_id=user_id,
            match_score=match.score,
            is_match=is_match,
        )
        state = await self.recalculate_trust_score(phone_number, user_id)
        return IdentityOutcome(state=state, match=match, is_match=is_match)

    async def process_sms_history(
        self,
        phone_number: str,
        user_id: str,
        messages: Sequence[SmsMessage],
        consent_id: str,
    ) -> SmsOutcome:
        """
        Stage 4: extract transactions and bills from consented SMS history.

        Everything extracted is stored tagged with consent_id in the same
        transaction as the stage update.
        """
        validate_key(phone_number, user_id)
        if not consent_id or not consent_id.strip():
            raise InvalidEvidenceError("Consent id is required", phone_number=phone_number)
        if not messages:
            raise InvalidEvidenceError("SMS history is empty", phone_number=phone_number)
        if len(messages) > settings.MAX_SMS_MESSAGES:
            raise InvalidEvidenceError(
                f"SMS history exceeds {settings.MAX_SMS_MESSAGES} messages",
                phone_number=phone_number,
            )

        now = _now()
        extraction = self.extractor.extract(messages, now=now)
        newest = extraction.aggregated.newest_transaction
        activity = activity_level(len(extraction.transactions), newest, now=now)

        state = await self.get_or_create(phone_number, user_id)
        async with self._store(phone_number):
            await self.repository.record_sms_history(
                phone_number, user_id, consent_id, extraction, activity, newest, now
            )

        await self.audit.log_consent_use(
            user_id=user_id,
            consent_id=consent_id,
            action="sms_history_processed",
            resource_type="momo_transactions",
            resource_count=len(extraction.transactions),
            phone_number=phone_number,
            metadata={
                "total_sms": extraction.processing_stats.total_sms,
                "utility_bills": len(extraction.utility_bills),
            },
        )

        data_points = await self._sms_data_points(state, extraction)
        state = await self.recalculate_trust_score(phone_number, user_id)
        return SmsOutcome(state=state, extraction=extraction, data_points=data_points)

    async def recalculate_trust_score(self, phone_number: str, user_id: str) -> PhoneTrustState:
        """
        Ask the scorer for a fresh score and store it with its level.

        Raises:
            TrustScoreUnavailableError: scorer failed; the record stays score_stale
        """
        validate_key(phone_number, user_id)
        try:
            score = await self.scorer.score(phone_number)
        except TrustScoreUnavailableError:
            logger.warning(
                "Trust score left stale",
                phone=mask_phone_number(phone_number),
                user_id=user_id,
            )
            raise

        level = trust_level(score)
        async with self._store(phone_number):
            state = await self.repository.update_trust_score(phone_number, user_id, score, level)
        if state is None:
            raise InvalidEvidenceError(
                "No trust record exists for this phone and user", phone_number=phone_number
            )

        logger.info(
            "Trust score recalculated",
            phone=mask_phone_number(phone_number),
            user_id=user_id,
            trust_score=score,
            trust_level=level.value,
        )
        return state

    def get_validation_progress(self, state: PhoneTrustState) -> ValidationProgress:
        return get_validation_progress(state)

    async def _screenshot_data_points(
        self, state: PhoneTrustState, analysis: UssdScreenshotResult
    ) -> list[CertifiedDataPoint]:
        if analysis.extracted_balance is None:
            return []
        await self.certainty.load()

        proofs = []
        if state.otp_verified:
            proofs.append("phone_otp_verified")
        if analysis.tampering_probability < TAMPERING_CHECK_PASSED_BELOW:
            proofs.append("tampering_check_passed")
        if analysis.name_match is not None and analysis.name_match.is_match:
            proofs.append("name_cross_validated")

        check = self.certainty.check_certification("screenshot_ocr", proofs)
        return [
            self.certainty.apply_feature_certainty(
                "momo_balance",
                "Mobile Money balance",
                analysis.extracted_balance,
                "screenshot_ocr",
                check.is_certified,
            )
        ]

    async def _sms_data_points(
        self, state: PhoneTrustState, extraction: ExtractionResult
    ) -> list[CertifiedDataPoint]:
        await self.certainty.load()
        aggregated = extraction.aggregated
        data_points = []

        if extraction.transactions:
            proofs = []
            if state.otp_verified:
                proofs.append("phone_otp_verified")
            if any(p != MoMoProvider.UNKNOWN.value for p in aggregated.providers):
                proofs.append("provider_detected")
            certified = self.certainty.check_certification("sms_parsed", proofs).is_certified

            features = [
                ("momo_total_credits", "Total Mobile Money credits", aggregated.total_credits),
                ("momo_total_debits", "Total Mobile Money debits", aggregated.total_debits),
            ]
            if aggregated.phone_age_months is not None:
                features.append(
                    ("phone_age_months", "Phone age (months)", aggregated.phone_age_months)
                )
            for feature_id, name, value in features:
                data_points.append(
                    self.certainty.apply_feature_certainty(
                        feature_id, name, float(value), "sms_parsed", certified
                    )
                )

        bills = extraction.utility_bills
        if bills:
            paid = sum(1 for bill in bills if bill.status is not PaymentStatus.UNPAID)
            proofs = (
                ["provider_shortcode_verified"]
                if any(bill.provider != UNKNOWN_UTILITY_PROVIDER for bill in bills)
                else []
            )
            certified = self.certainty.check_certification("utility_sms", proofs).is_certified
            data_points.append(
                self.certainty.apply_feature_certainty(
                    "utility_payment_rate",
                    "Utility payment rate",
                    paid / len(bills),
                    "utility_sms",
                    certified,
                )
            )

        return data_points


__all__ = [
    "IdentityOutcome",
    "PhoneTrustValidator",
    "SmsOutcome",
    "UssdOutcome",
    "validate_key",
]
