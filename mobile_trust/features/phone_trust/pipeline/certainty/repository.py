"""
Repository for the data_source_certainty configuration table.
"""

from typing import Any

from mobile_trust.db.helpers import fetch_all, with_db_retry
from mobile_trust.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DataSourceCertaintyRepository:
    @staticmethod
    @with_db_retry(max_retries=2)
    async def load_certainty_table() -> list[dict[str, Any]]:
        rows = await fetch_all(
            """
            SELECT source_type,
                   source_name,
                   base_certainty,
                   certified_certainty,
                   certification_requirements
            FROM data_source_certainty
            WHERE is_active = true
            ORDER BY source_type
            """
        )
        logger.debug("Fetched certainty rows", count=len(rows))
        return rows
