"""
Phone trust feature package.

Everything that turns phone evidence into a trust score lives in this
slice: domain models, name matching, the SMS/USSD/certainty pipeline, the
stage validator and its HTTP router.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as phone_trust_router  # noqa: F401
from .domain.models import PhoneTrustState, TrustLevel, ValidationProgress  # noqa: F401
from .errors import (  # noqa: F401
    InvalidEvidenceError,
    PhoneTrustError,
    StoreUnavailableError,
    TrustScoreUnavailableError,
)
from .validator.service import PhoneTrustValidator  # noqa: F401
