"""
Results of screenshot analysis.

Nothing here holds image bytes; only fields derived from OCR text.
"""

from dataclasses import dataclass, field

from ...domain.models import MoMoProvider, ScreenType


@dataclass(slots=True)
class NameMatchCheck:
    cni_name: str
    score: int
    is_match: bool
    details: list[str] = field(default_factory=list)


@dataclass(slots=True)
class UssdScreenshotResult:
    provider: MoMoProvider
    screen_type: ScreenType
    extracted_name: str | None
    extracted_phone: str | None
    extracted_balance: float | None
    extracted_account_status: str | None
    ocr_confidence: float
    tampering_probability: int
    ui_authenticity_score: int
    raw_text: str
    processing_time_ms: float = 0.0
    name_match: NameMatchCheck | None = None


@dataclass(slots=True)
class CertificationDecision:
    can_certify: bool
    score: int
    reasons: list[str] = field(default_factory=list)
