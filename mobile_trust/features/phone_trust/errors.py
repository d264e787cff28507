"""
Error taxonomy for the phone trust pipeline.

Heuristic outcomes (low OCR quality, suspected tampering, failed name
match) are results, not errors, and never appear here.
"""


class PhoneTrustError(Exception):
    """Base error for phone trust operations."""

    def __init__(
        self,
        message: str,
        phone_number: str | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.phone_number = phone_number
        self.recoverable = recoverable


class InvalidEvidenceError(PhoneTrustError):
    """Malformed input (phone, image, messages). Raised before any write."""

    def __init__(self, message: str, phone_number: str | None = None):
        super().__init__(message, phone_number=phone_number, recoverable=False)


class CollaboratorError(PhoneTrustError):
    """An external collaborator (store, OCR engine, scorer) failed."""

    collaborator = "unknown"

    def __init__(
        self,
        message: str,
        phone_number: str | None = None,
        recoverable: bool = True,
    ):
        super().__init__(message, phone_number=phone_number, recoverable=recoverable)


class OcrUnavailableError(CollaboratorError):
    collaborator = "ocr"


class TrustScoreUnavailableError(CollaboratorError):
    """The external scorer failed; the record is left flagged score_stale."""

    collaborator = "trust_scorer"


class StoreUnavailableError(CollaboratorError):
    collaborator = "store"


class MalformedRecordError(PhoneTrustError):
    """A stored record cannot be deserialized. Terminal."""

    def __init__(self, message: str, phone_number: str | None = None):
        super().__init__(message, phone_number=phone_number, recoverable=False)
