"""
AuditLogger - audit trail for evidence processing.

Every time personal evidence is read (SMS history under a consent, a
Mobile Money screenshot) an audit event is written to:
1. The audit_logs table (append-only, queryable)
2. Structured logs (real-time monitoring)

Usage:
    from mobile_trust.infrastructure.audit import audit_logger

    await audit_logger.log_consent_use(
        user_id="user-123",
        consent_id="consent-42",
        action="sms_history_processed",
        resource_type="momo_transactions",
        resource_count=37,
    )

Audit writes never fail the calling operation. Raw images, OCR text and
SMS bodies are never passed in.
"""

from datetime import UTC, datetime
from typing import Any

from psycopg.types.json import Jsonb

from mobile_trust.db.pool import db_pool
from mobile_trust.infrastructure.observability.logging import get_logger
from mobile_trust.security.hashing import mask_phone_number

logger = get_logger(__name__)


class AuditLogger:
    """Writes audit events to the database and to structured logs."""

    @staticmethod
    async def log(
        user_id: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        resource_count: int | None = None,
        phone_number: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Log an audit event to database and structured logs.

        Args:
            user_id: User the evidence belongs to
            action: Action name (e.g. "ussd_screenshot_analyzed")
            resource_type: Type of resource touched (e.g. "momo_transactions")
            resource_id: Specific resource ID, if any
            resource_count: Number of resources touched
            phone_number: Phone number concerned; only its masked form is stored
            metadata: Additional JSON-serializable context

        Returns:
            True if logged successfully, False if failed (never raises)
        """
        masked_phone = mask_phone_number(phone_number) if phone_number else None

        logger.info(
            "Audit event",
            audit_action=action,
            user_id=user_id,
            phone=masked_phone,
            resource_type=resource_type,
            resource_id=resource_id,
            resource_count=resource_count,
        )

        try:
            async with db_pool.connection() as conn:
                await conn.execute(
                    """
                    INSERT INTO audit_logs (
                        user_id, action, resource_type, resource_id,
                        resource_count, masked_phone, metadata, created_at
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user_id,
                        action,
                        resource_type,
                        resource_id,
                        resource_count,
                        masked_phone,
                        Jsonb(metadata or {}),
                        datetime.now(UTC),
                    ),
                )
            return True

        except Exception as e:
            logger.error(
                "Failed to write audit log to database",
                error=str(e),
                error_type=type(e).__name__,
                audit_action=action,
                user_id=user_id,
                resource_type=resource_type,
                resource_count=resource_count,
            )
            return False

    @staticmethod
    async def log_consent_use(
        user_id: str,
        consent_id: str,
        action: str,
        resource_type: str,
        resource_count: int,
        phone_number: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Record that data was read under a user's consent."""
        return await AuditLogger.log(
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=consent_id,
            resource_count=resource_count,
            phone_number=phone_number,
            metadata={"consent_id": consent_id, **(metadata or {})},
        )

    @staticmethod
    async def log_security_event(
        user_id: str,
        event_type: str,
        severity: str,
        description: str,
        phone_number: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Log suspicious evidence (tampered screenshots, shared numbers)."""
        logger.warning(
            "Security event",
            event_type=event_type,
            severity=severity,
            description=description,
            user_id=user_id,
        )
        return await AuditLogger.log(
            user_id=user_id,
            action=f"security_{event_type}",
            resource_type="security_event",
            phone_number=phone_number,
            metadata={"severity": severity, "description": description, **(metadata or {})},
        )


audit_logger = AuditLogger()
