"""
Domain subpackage for the phone trust feature.
"""

from .models import (
    ActivityLevel,
    FraudFlag,
    FraudSeverity,
    MoMoProvider,
    PhoneTrustState,
    ScreenType,
    TrustLevel,
    ValidationProgress,
    ValidationStage,
)

__all__ = [
    "ActivityLevel",
    "FraudFlag",
    "FraudSeverity",
    "MoMoProvider",
    "PhoneTrustState",
    "ScreenType",
    "TrustLevel",
    "ValidationProgress",
    "ValidationStage",
]
