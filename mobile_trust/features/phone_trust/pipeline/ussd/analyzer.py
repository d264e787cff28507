"""
USSD / Mobile Money screenshot analyzer.

Classifies OCR text from a profile screenshot (which provider, which
screen), pulls out holder name, phone and balance, and scores how likely
the capture is to have been edited. A declared identity can be checked
against the extracted name.

analyze_text() is pure and does the heuristic work; analyze() adds the
OCR call in front of it.
"""

from __future__ import annotations

import asyncio
import re
import time

from mobile_trust.config import settings
from mobile_trust.infrastructure.observability.logging import get_logger

from ...domain.models import MoMoProvider, ScreenType
from ...errors import InvalidEvidenceError, OcrUnavailableError
from ...matching.name_matcher import match_names
from ..sms.parser import parse_amount
from .models import CertificationDecision, NameMatchCheck, UssdScreenshotResult
from .ocr import OcrEngine

logger = get_logger(__name__)

_I = re.IGNORECASE

# Ordered: the first provider with any hit wins
PROVIDER_PATTERNS: dict[MoMoProvider, tuple[re.Pattern, ...]] = {
    MoMoProvider.ORANGE_MONEY: (
        re.compile(r"orange\s*money", _I),
        re.compile(r"mon\s*compte\s*om", _I),
        re.compile(r"\*144#"),
        re.compile(r"\*122#"),
        re.compile(r"solde\s*disponible", _I),
        re.compile(r"orange\s*ci|orange\s*sn|orange\s*ml", _I),
    ),
    MoMoProvider.MTN_MOMO: (
        re.compile(r"mtn\s*mo(?:bile\s*)?mo(?:ney)?", _I),
        re.compile(r"momo", _I),
        re.compile(r"\*170#"),
        re.compile(r"\*126#"),
        re.compile(r"y'ello", _I),
        re.compile(r"mtn\s*ci|mtn\s*gh", _I),
    ),
    MoMoProvider.WAVE: (
        re.compile(r"wave", _I),
        re.compile(r"solde\s*wave", _I),
        re.compile(r"wave\s*mobile", _I),
        re.compile(r"transfert\s*wave", _I),
    ),
    MoMoProvider.MOOV: (
        re.compile(r"moov\s*money", _I),
        re.compile(r"flooz", _I),
        re.compile(r"moov\s*africa", _I),
        re.compile(r"\*155#"),
    ),
}

# Declaration order breaks ties
SCREEN_TYPE_PATTERNS: dict[ScreenType, tuple[re.Pattern, ...]] = {
    ScreenType.PROFILE: (
        re.compile(r"profil|profile", _I),
        re.compile(r"mon\s*compte", _I),
        re.compile(r"informations?\s*personnelles?", _I),
        re.compile(r"nom\s*complet|nom\s*et\s*pr[eé]nom", _I),
        re.compile(r"titulaire", _I),
        re.compile(r"account\s*holder", _I),
    ),
    ScreenType.BALANCE: (
        re.compile(r"solde|balance", _I),
        re.compile(r"disponible|available", _I),
        re.compile(r"fcfa|xof|gnf", _I),
        re.compile(r"votre\s*solde", _I),
        re.compile(r"your\s*balance", _I),
    ),
    ScreenType.HISTORY: (
        re.compile(r"historique|history", _I),
        re.compile(r"transactions?", _I),
        re.compile(r"derniers?\s*(?:op[eé]rations?|mouvements?)", _I),
        re.compile(r"recent\s*(?:transactions?|activity)", _I),
    ),
    ScreenType.MENU: (
        re.compile(r"menu\s*principal", _I),
        re.compile(r"accueil|home", _I),
        re.compile(r"services?", _I),
        re.compile(r"transfert|paiement|retrait", _I),
    ),
}

NAME_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(
        r"\b(?:nom[ \t]*(?:complet)?|name|titulaire)[ \t]*:?[ \t]*"
        r"([A-ZÀÂÄÉÈÊËÏÎÔÖÙÛÜÇ][A-Za-zÀ-ÖØ-öø-ÿ' \t-]+)",
        _I,
    ),
    re.compile(
        r"(?:pr[eé]nom[ \t]*et[ \t]*nom|nom[ \t]*et[ \t]*pr[eé]nom)[ \t]*:?[ \t]*(.+)", _I
    ),
    re.compile(r"^([A-Z][A-Za-z]+(?:[ \t]+[A-Z][A-Za-z]+){1,3})$", re.MULTILINE),
)

PHONE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(
        r"(?:t[eé]l[eé]?(?:phone)?|num[eé]ro|n°|mobile)[ \t]*:?[ \t]*(\+?[\d \t-]{8,15})", _I
    ),
    re.compile(r"(\+?(?:221|225|223|226|228|229|245|224)[\d \t-]{8,12})"),
    re.compile(r"(\d{2}[ .-]?\d{2}[ .-]?\d{2}[ .-]?\d{2}[ .-]?\d{2})"),
)

BALANCE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(
        r"(?:solde|balance|disponible)[ \t]*:?[ \t]*(\d[\d ,.]*)[ \t]*(?:fcfa|xof|f|cfa)", _I
    ),
    re.compile(r"(\d[\d ,.]*)[ \t]*(?:fcfa|xof|f[ \t]*cfa)", _I),
)

_AMOUNT_MENTION = re.compile(r"(\d[\d,]*)\s*(?:fcfa|xof)", _I)
_SHOUTING = re.compile(r"[A-Z]{3,}.*[a-z]{3,}.*[A-Z]{3,}")
_MENU_WORDS = re.compile(r"menu|retour|suivant|ok|annuler|valider", _I)
_TIME_OR_DATE = re.compile(r"\d{1,2}[:/h]\d{2}|\d{2}[/-]\d{2}[/-]\d{4}", _I)
_STATUS_BAR = re.compile(r"4g|3g|wifi|%|batterie|r[ée]seau", _I)
_PHONE_SEPARATORS = re.compile(r"[\s.-]")
_VALID_PHONE = re.compile(r"\+?\d{8,15}")


def detect_provider(text: str) -> MoMoProvider:
    for provider, patterns in PROVIDER_PATTERNS.items():
        if any(pattern.search(text) for pattern in patterns):
            return provider
    return MoMoProvider.UNKNOWN


def detect_screen_type(text: str) -> ScreenType:
    best_type = ScreenType.UNKNOWN
    best_score = 0
    for screen_type, patterns in SCREEN_TYPE_PATTERNS.items():
        score = sum(1 for pattern in patterns if pattern.search(text))
        if score > best_score:
            best_type, best_score = screen_type, score
    return best_type


def extract_name(text: str) -> str | None:
    for pattern in NAME_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        name = match.group(1).strip()
        if 3 <= len(name) <= 50 and " " in name:
            return name
    return None


def extract_phone(text: str) -> str | None:
    for pattern in PHONE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        phone = _PHONE_SEPARATORS.sub("", match.group(1))
        if _VALID_PHONE.fullmatch(phone):
            return phone
    return None


def extract_balance(text: str) -> float | None:
    for pattern in BALANCE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        amount = parse_amount(match.group(1))
        if amount >= 0:
            return amount
    return None


def tampering_probability(text: str, ocr_confidence: float) -> int:
    """0-100; each independent signal adds a fixed weight."""
    probability = 0

    if ocr_confidence < 60:
        probability += 20

    round_amounts = 0
    for mention in _AMOUNT_MENTION.findall(text):
        value = int(re.sub(r"\D", "", mention) or 0)
        if value > 0 and value % 1000 == 0 and value % 10000 == 0:
            round_amounts += 1
    if round_amounts > 2:
        probability += 10

    if _SHOUTING.search(text):
        probability += 15

    has_name = any(pattern.search(text) for pattern in NAME_PATTERNS)
    has_phone = any(pattern.search(text) for pattern in PHONE_PATTERNS)
    if not has_name and not has_phone and detect_screen_type(text) is ScreenType.PROFILE:
        probability += 25

    return min(100, probability)


def ui_authenticity_score(text: str, provider: MoMoProvider) -> int:
    score = 50
    score += 10 * sum(
        1 for pattern in PROVIDER_PATTERNS.get(provider, ()) if pattern.search(text)
    )
    if _MENU_WORDS.search(text):
        score += 10
    if _TIME_OR_DATE.search(text):
        score += 5
    if _STATUS_BAR.search(text):
        score += 5
    return min(100, score)


class UssdScreenshotAnalyzer:
    """Turns a Mobile Money screenshot into an UssdScreenshotResult."""

    def __init__(
        self,
        ocr_engine: OcrEngine | None = None,
        *,
        language_hints: str | None = None,
        ocr_timeout: float | None = None,
        name_match_threshold: int | None = None,
        certification_min_score: int | None = None,
    ):
        self.ocr_engine = ocr_engine
        self.language_hints = language_hints or settings.OCR_LANGUAGES
        self.ocr_timeout = ocr_timeout if ocr_timeout is not None else settings.OCR_TIMEOUT_SECONDS
        self.name_match_threshold = (
            name_match_threshold
            if name_match_threshold is not None
            else settings.NAME_MATCH_THRESHOLD
        )
        self.certification_min_score = (
            certification_min_score
            if certification_min_score is not None
            else settings.CERTIFICATION_MIN_SCORE
        )

    async def analyze(
        self, image: bytes, declared_name: str | None = None
    ) -> UssdScreenshotResult:
        """
        OCR a screenshot and analyze its text.

        Raises:
            InvalidEvidenceError: empty or oversized image
            OcrUnavailableError: no OCR engine configured, engine failure or timeout
        """
        if not image:
            raise InvalidEvidenceError("Screenshot is empty")
        if len(image) > settings.MAX_SCREENSHOT_BYTES:
            raise InvalidEvidenceError(
                f"Screenshot exceeds {settings.MAX_SCREENSHOT_BYTES} bytes"
            )
        if self.ocr_engine is None:
            raise OcrUnavailableError("No OCR engine configured", recoverable=False)

        started = time.perf_counter()
        try:
            ocr = await asyncio.wait_for(
                self.ocr_engine.recognize(image, self.language_hints),
                timeout=self.ocr_timeout,
            )
        except TimeoutError as e:
            logger.warning("OCR timed out", timeout_s=self.ocr_timeout)
            raise OcrUnavailableError(
                f"OCR did not answer within {self.ocr_timeout}s", recoverable=True
            ) from e

        result = self.analyze_text(ocr.text, ocr.confidence, declared_name)
        result.processing_time_ms = round((time.perf_counter() - started) * 1000, 2)

        logger.info(
            "Screenshot analyzed",
            provider=result.provider.value,
            screen_type=result.screen_type.value,
            ocr_confidence=result.ocr_confidence,
            tampering_probability=result.tampering_probability,
            ui_authenticity_score=result.ui_authenticity_score,
            name_extracted=result.extracted_name is not None,
            processing_time_ms=result.processing_time_ms,
        )
        return result

    def analyze_text(
        self, text: str, ocr_confidence: float, declared_name: str | None = None
    ) -> UssdScreenshotResult:
        provider = detect_provider(text)
        extracted_name = extract_name(text)

        name_match = None
        if declared_name and extracted_name:
            match = match_names(declared_name, extracted_name)
            name_match = NameMatchCheck(
                cni_name=declared_name,
                score=match.score,
                is_match=match.score >= self.name_match_threshold,
                details=match.details,
            )

        return UssdScreenshotResult(
            provider=provider,
            screen_type=detect_screen_type(text),
            extracted_name=extracted_name,
            extracted_phone=extract_phone(text),
            extracted_balance=extract_balance(text),
            extracted_account_status=None,
            ocr_confidence=ocr_confidence,
            tampering_probability=tampering_probability(text, ocr_confidence),
            ui_authenticity_score=ui_authenticity_score(text, provider),
            raw_text=text,
            name_match=name_match,
        )

    def validate_for_certification(self, result: UssdScreenshotResult) -> CertificationDecision:
        """
        Decide whether a screenshot can certify the account holder.

        Points add up to a score, but any collected reason blocks
        certification on its own.
        """
        score = 0
        reasons: list[str] = []

        if result.ocr_confidence >= 70:
            score += 20
        else:
            reasons.append("OCR quality too low to read the screenshot reliably")

        if result.provider is not MoMoProvider.UNKNOWN:
            score += 15
        else:
            reasons.append("Mobile Money provider not detected")

        if result.extracted_name:
            score += 20
        else:
            reasons.append("Account holder name not found on the screenshot")

        if result.extracted_phone:
            score += 10

        if result.tampering_probability < 30:
            score += 15
        elif result.tampering_probability > 50:
            reasons.append(
                f"Suspected screenshot tampering ({result.tampering_probability}% probability)"
            )

        if result.ui_authenticity_score >= 70:
            score += 10

        if result.name_match is not None:
            if result.name_match.is_match:
                score += 30
            else:
                reasons.append(
                    f"Name on screenshot does not match identity ({result.name_match.score}%)"
                )

        return CertificationDecision(
            can_certify=score >= self.certification_min_score and not reasons,
            score=score,
            reasons=reasons,
        )
