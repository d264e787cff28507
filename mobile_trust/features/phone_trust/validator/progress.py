"""
Validation progress projection.
"""

from ..domain.models import PhoneTrustState, ValidationProgress, ValidationStage

STAGE_WEIGHT = 25

NEXT_ACTIONS = {
    ValidationStage.OTP: "Verify your phone number with the code sent by SMS",
    ValidationStage.USSD: "Upload a screenshot of your Mobile Money profile",
    ValidationStage.IDENTITY: "Confirm the name on your identity document",
    ValidationStage.SMS: "Allow access to your Mobile Money SMS history",
}


def completed_stages(state: PhoneTrustState) -> list[ValidationStage]:
    flags = (
        (ValidationStage.OTP, state.otp_verified),
        (ValidationStage.USSD, state.ussd_uploaded),
        (ValidationStage.IDENTITY, state.identity_cross_validated),
        (ValidationStage.SMS, state.sms_consent_given),
    )
    return [stage for stage, done in flags if done]


def get_validation_progress(state: PhoneTrustState) -> ValidationProgress:
    """
    Project a record onto its validation progress.

    Stages count equally whatever order they were completed in; the current
    stage is the first incomplete one in otp, ussd, identity, sms order.
    """
    completed = completed_stages(state)
    current = next(
        (stage for stage in NEXT_ACTIONS if stage not in completed),
        ValidationStage.COMPLETE,
    )
    return ValidationProgress(
        current_stage=current,
        completed_stages=completed,
        progress_percent=STAGE_WEIGHT * len(completed),
        next_action=NEXT_ACTIONS.get(current),
    )
