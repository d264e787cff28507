"""
Phone trust validator package.

The stage orchestrator, its repository and the trust score collaborator.
"""

from .progress import get_validation_progress
from .repository import PhoneTrustRepository, phone_trust_repository
from .scorer import PostgresTrustScorer, TrustScorer
from .service import IdentityOutcome, PhoneTrustValidator, SmsOutcome, UssdOutcome

__all__ = [
    "IdentityOutcome",
    "PhoneTrustRepository",
    "PhoneTrustValidator",
    "PostgresTrustScorer",
    "SmsOutcome",
    "TrustScorer",
    "UssdOutcome",
    "get_validation_progress",
    "phone_trust_repository",
]
