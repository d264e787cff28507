import pytest

from conftest import EDITED_PROFILE_TEXT, GENUINE_PROFILE_TEXT, FakeOcrEngine
from mobile_trust.config import settings
from mobile_trust.features.phone_trust.domain.models import MoMoProvider, ScreenType
from mobile_trust.features.phone_trust.errors import InvalidEvidenceError, OcrUnavailableError
from mobile_trust.features.phone_trust.pipeline.ussd.analyzer import (
    UssdScreenshotAnalyzer,
    detect_provider,
    detect_screen_type,
    extract_phone,
)

analyzer = UssdScreenshotAnalyzer()


def test_genuine_orange_money_screenshot():
    result = analyzer.analyze_text(GENUINE_PROFILE_TEXT, 85.0, declared_name="Jean Kouadio")

    assert result.provider is MoMoProvider.ORANGE_MONEY
    assert result.screen_type is ScreenType.BALANCE
    assert result.extracted_name == "Kouadio Jean"
    assert result.extracted_phone == "0708091011"
    assert result.extracted_balance == 25000
    assert result.tampering_probability == 0
    assert result.ui_authenticity_score == 80
    assert result.name_match.is_match
    assert result.name_match.score == 87

    decision = analyzer.validate_for_certification(result)
    assert decision.can_certify
    assert decision.score == 120
    assert decision.reasons == []


def test_edited_profile_screenshot_is_flagged():
    result = analyzer.analyze_text(EDITED_PROFILE_TEXT, 40.0)

    assert result.screen_type is ScreenType.PROFILE
    assert result.extracted_name is None
    assert result.extracted_phone is None
    assert result.tampering_probability == 55
    assert result.name_match is None

    decision = analyzer.validate_for_certification(result)
    assert not decision.can_certify
    assert "Suspected screenshot tampering (55% probability)" in decision.reasons
    assert "Mobile Money provider not detected" in decision.reasons


def test_name_mismatch_blocks_certification():
    result = analyzer.analyze_text(GENUINE_PROFILE_TEXT, 85.0, declared_name="Awa Diop")

    assert not result.name_match.is_match
    decision = analyzer.validate_for_certification(result)
    assert not decision.can_certify
    assert decision.reasons[-1].startswith("Name on screenshot does not match identity")


def test_zero_threshold_is_honoured():
    permissive = UssdScreenshotAnalyzer(name_match_threshold=0, ocr_timeout=0)

    result = permissive.analyze_text(GENUINE_PROFILE_TEXT, 85.0, declared_name="Awa Diop")

    assert permissive.name_match_threshold == 0
    assert permissive.ocr_timeout == 0
    assert result.name_match.is_match


def test_no_name_match_without_declared_name():
    result = analyzer.analyze_text(GENUINE_PROFILE_TEXT, 85.0)

    assert result.name_match is None
    assert analyzer.validate_for_certification(result).score == 90


@pytest.mark.parametrize(
    "text,provider",
    [
        ("Bienvenue sur MTN MoMo", MoMoProvider.MTN_MOMO),
        ("Composez *144# pour votre solde", MoMoProvider.ORANGE_MONEY),
        ("Solde Wave: 3 000 F", MoMoProvider.WAVE),
        ("Flooz disponible", MoMoProvider.MOOV),
        ("Bonjour", MoMoProvider.UNKNOWN),
    ],
)
def test_detect_provider(text, provider):
    assert detect_provider(text) is provider


def test_unknown_screen_type():
    assert detect_screen_type("Bonjour") is ScreenType.UNKNOWN


def test_extract_phone_with_country_code():
    assert extract_phone("Numéro: +225 0708091011") == "+2250708091011"


@pytest.mark.asyncio
async def test_analyze_runs_ocr_once():
    engine = FakeOcrEngine()
    result = await UssdScreenshotAnalyzer(engine).analyze(b"png-bytes", "Jean Kouadio")

    assert engine.calls == 1
    assert result.provider is MoMoProvider.ORANGE_MONEY
    assert result.ocr_confidence == 85.0
    assert result.processing_time_ms >= 0


@pytest.mark.asyncio
async def test_empty_image_is_invalid_evidence():
    engine = FakeOcrEngine()
    with pytest.raises(InvalidEvidenceError):
        await UssdScreenshotAnalyzer(engine).analyze(b"")
    assert engine.calls == 0


@pytest.mark.asyncio
async def test_oversized_image_is_invalid_evidence(monkeypatch):
    monkeypatch.setattr(settings, "MAX_SCREENSHOT_BYTES", 4)
    with pytest.raises(InvalidEvidenceError):
        await UssdScreenshotAnalyzer(FakeOcrEngine()).analyze(b"12345")


@pytest.mark.asyncio
async def test_missing_engine_is_not_recoverable():
    with pytest.raises(OcrUnavailableError) as excinfo:
        await UssdScreenshotAnalyzer().analyze(b"png-bytes")
    assert excinfo.value.recoverable is False


@pytest.mark.asyncio
async def test_ocr_timeout_is_recoverable():
    slow = UssdScreenshotAnalyzer(FakeOcrEngine(delay=1.0), ocr_timeout=0.01)

    with pytest.raises(OcrUnavailableError) as excinfo:
        await slow.analyze(b"png-bytes")
    assert excinfo.value.recoverable is True
