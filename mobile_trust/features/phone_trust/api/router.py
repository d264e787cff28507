"""
Phone trust routes.

One resource per (user, phone number) pair; each POST submits one stage's
evidence and answers with the updated record and progress. SMS history is
submitted by trusted backends through the library API, not over HTTP.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mobile_trust.config import settings
from mobile_trust.infrastructure.observability.logging import get_logger
from mobile_trust.security.hashing import mask_phone_number

from ..domain.models import MoMoProvider, PhoneTrustState, ScreenType, ValidationProgress
from ..errors import CollaboratorError, InvalidEvidenceError, PhoneTrustError
from ..pipeline.ussd.ocr import TesseractOcrEngine
from ..validator.service import PhoneTrustValidator

logger = get_logger(__name__)

router = APIRouter(prefix="/phone-trust", tags=["phone-trust"])


class OtpVerifiedRequest(BaseModel):
    verification_token: str = Field(min_length=1)


class IdentityRequest(BaseModel):
    declared_name: str = Field(min_length=1, max_length=200)


class PhoneTrustResponse(BaseModel):
    state: PhoneTrustState
    progress: ValidationProgress


class UssdScreenshotResponse(PhoneTrustResponse):
    provider: MoMoProvider
    screen_type: ScreenType
    can_certify: bool
    certification_score: int
    reasons: list[str]
    tampering_probability: int
    name_match_score: int | None = None


class IdentityResponse(PhoneTrustResponse):
    match_score: int
    confidence: str
    is_match: bool
    details: list[str]


_validator: PhoneTrustValidator | None = None


def get_phone_trust_validator() -> PhoneTrustValidator:
    global _validator
    if _validator is None:
        _validator = PhoneTrustValidator(ocr_engine=TesseractOcrEngine())
    return _validator


def error_status(exc: PhoneTrustError) -> int:
    if isinstance(exc, InvalidEvidenceError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, CollaboratorError) and exc.recoverable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def phone_trust_exception_handler(request: Request, exc: PhoneTrustError) -> JSONResponse:
    status_code = error_status(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Phone trust request failed",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        recoverable=exc.recoverable,
        error=exc.message,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "recoverable": exc.recoverable},
    )


def _response(validator: PhoneTrustValidator, state: PhoneTrustState) -> dict:
    return {"state": state, "progress": validator.get_validation_progress(state)}


@router.get("/{user_id}/{phone_number}", response_model=PhoneTrustResponse)
async def get_phone_trust(
    user_id: str,
    phone_number: str,
    validator: PhoneTrustValidator = Depends(get_phone_trust_validator),
):
    """Current record and validation progress."""
    state = await validator.get(phone_number, user_id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No trust record for this phone"
        )
    return _response(validator, state)


@router.post("/{user_id}/{phone_number}/otp", response_model=PhoneTrustResponse)
async def submit_otp_verification(
    user_id: str,
    phone_number: str,
    body: OtpVerifiedRequest,
    validator: PhoneTrustValidator = Depends(get_phone_trust_validator),
):
    state = await validator.mark_otp_verified(phone_number, user_id, body.verification_token)
    return _response(validator, state)


@router.post("/{user_id}/{phone_number}/ussd", response_model=UssdScreenshotResponse)
async def submit_ussd_screenshot(
    user_id: str,
    phone_number: str,
    image: UploadFile = File(...),
    declared_name: str | None = Form(None),
    validator: PhoneTrustValidator = Depends(get_phone_trust_validator),
):
    """Analyze a Mobile Money profile screenshot. The upload is not stored."""
    data = await image.read(settings.MAX_SCREENSHOT_BYTES + 1)
    logger.info(
        "USSD screenshot received",
        phone=mask_phone_number(phone_number),
        content_type=image.content_type,
        size_bytes=len(data),
    )
    outcome = await validator.process_ussd_screenshot(phone_number, user_id, data, declared_name)
    match = outcome.analysis.name_match
    return {
        **_response(validator, outcome.state),
        "provider": outcome.analysis.provider,
        "screen_type": outcome.analysis.screen_type,
        "can_certify": outcome.decision.can_certify,
        "certification_score": outcome.decision.score,
        "reasons": outcome.decision.reasons,
        "tampering_probability": outcome.analysis.tampering_probability,
        "name_match_score": match.score if match else None,
    }


@router.post("/{user_id}/{phone_number}/identity", response_model=IdentityResponse)
async def submit_identity(
    user_id: str,
    phone_number: str,
    body: IdentityRequest,
    validator: PhoneTrustValidator = Depends(get_phone_trust_validator),
):
    outcome = await validator.cross_validate_identity(phone_number, user_id, body.declared_name)
    return {
        **_response(validator, outcome.state),
        "match_score": outcome.match.score,
        "confidence": outcome.match.confidence.value,
        "is_match": outcome.is_match,
        "details": outcome.match.details,
    }
