"""
Trust score collaborator.

The score itself is computed by a database function over the full
phone_trust_scores record; this module only calls it and bounds the answer.
"""

from typing import Protocol

from mobile_trust.db.helpers import DatabaseError, fetch_val, with_db_retry
from mobile_trust.infrastructure.observability.logging import get_logger
from mobile_trust.security.hashing import mask_phone_number

from ..errors import TrustScoreUnavailableError

logger = get_logger(__name__)


class TrustScorer(Protocol):
    async def score(self, phone_number: str) -> float: ...


def clamp_score(value: float | None) -> float:
    if value is None:
        return 0.0
    return float(min(100.0, max(0.0, float(value))))


class PostgresTrustScorer:
    """Calls calculate_phone_trust_score(phone_number)."""

    @staticmethod
    @with_db_retry(max_retries=2)
    async def _fetch_score(phone_number: str):
        return await fetch_val("SELECT calculate_phone_trust_score(%s)", (phone_number,))

    async def score(self, phone_number: str) -> float:
        try:
            raw = await self._fetch_score(phone_number)
        except DatabaseError as e:
            logger.error(
                "Trust score function failed",
                phone=mask_phone_number(phone_number),
                operation=e.operation,
                error=str(e),
            )
            raise TrustScoreUnavailableError(
                "Trust score could not be computed", phone_number=phone_number
            ) from e
        return clamp_score(raw)
