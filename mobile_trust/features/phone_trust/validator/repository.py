"""
Persistence for phone trust records and the evidence attached to them.

Every stage write runs in one transaction that first takes a per
(phone, user) advisory lock, then upserts only the columns that stage owns.
Completion flags only ever move to true, and the identity match score only
ever goes up.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime

import psycopg
from psycopg.types.json import Jsonb

from mobile_trust.db.helpers import (
    DatabaseError,
    execute_many,
    execute_query,
    fetch_one,
    fetch_val,
    with_db_retry,
)
from mobile_trust.db.pool import db_pool
from mobile_trust.infrastructure.observability.logging import get_logger
from mobile_trust.security.hashing import mask_phone_number

from ..domain.models import ActivityLevel, FraudFlag, PhoneTrustState, TrustLevel
from ..pipeline.sms.models import ExtractionResult
from ..pipeline.ussd.models import CertificationDecision, UssdScreenshotResult

logger = get_logger(__name__)


def _flags_json(flags: list[FraudFlag]) -> Jsonb:
    return Jsonb([flag.model_dump(mode="json") for flag in flags])


@asynccontextmanager
async def locked_transaction(
    phone_number: str, user_id: str
) -> AsyncGenerator[psycopg.AsyncConnection, None]:
    """Transaction serialized on the (phone, user) key."""
    try:
        async with db_pool.transaction(lock_key=f"{phone_number}:{user_id}") as conn:
            yield conn
    except psycopg.Error as e:
        logger.error(
            "Phone trust transaction failed",
            phone=mask_phone_number(phone_number),
            user_id=user_id,
            error=str(e),
        )
        raise DatabaseError(
            f"Transaction failed: {e}",
            operation="transaction",
            recoverable=isinstance(e, psycopg.OperationalError),
        ) from e


class PhoneTrustRepository:
    """Raw SQL access to phone_trust_scores and its append-only evidence tables."""

    @staticmethod
    @with_db_retry()
    async def get(phone_number: str, user_id: str) -> PhoneTrustState | None:
        row = await fetch_one(
            """
            SELECT *
            FROM phone_trust_scores
            WHERE phone_number = %s
              AND user_id = %s
            """,
            (phone_number, user_id),
        )
        return PhoneTrustState.from_row(row) if row else None

    @staticmethod
    @with_db_retry()
    async def create_if_missing(
        phone_number: str, user_id: str, shared_flag: FraudFlag
    ) -> tuple[PhoneTrustState, bool]:
        """
        Insert a fresh record unless one exists.

        Returns the record and whether it was created. shared_flag is
        attached when another user already holds this number.
        """
        async with locked_transaction(phone_number, user_id) as conn:
            row = await fetch_one(
                "SELECT * FROM phone_trust_scores WHERE phone_number = %s AND user_id = %s",
                (phone_number, user_id),
                connection=conn,
            )
            if row:
                return PhoneTrustState.from_row(row), False

            shared = await fetch_val(
                """
                SELECT EXISTS (
                    SELECT 1
                    FROM phone_trust_scores
                    WHERE phone_number = %s
                      AND user_id <> %s
                )
                """,
                (phone_number, user_id),
                connection=conn,
            )
            row = await fetch_one(
                """
                INSERT INTO phone_trust_scores (
                    phone_number, user_id, trust_score, trust_level,
                    multiple_users_detected, fraud_flags
                ) VALUES (%s, %s, 0, %s, %s, %s)
                RETURNING *
                """,
                (
                    phone_number,
                    user_id,
                    TrustLevel.UNVERIFIED.value,
                    bool(shared),
                    _flags_json([shared_flag] if shared else []),
                ),
                connection=conn,
            )

        logger.info(
            "Phone trust record created",
            phone=mask_phone_number(phone_number),
            user_id=user_id,
            multiple_users_detected=bool(shared),
        )
        return PhoneTrustState.from_row(row), True

    @staticmethod
    @with_db_retry()
    async def mark_otp_verified(
        phone_number: str, user_id: str, verified_at: datetime
    ) -> PhoneTrustState:
        async with locked_transaction(phone_number, user_id) as conn:
            row = await fetch_one(
                """
                INSERT INTO phone_trust_scores (
                    phone_number, user_id, otp_verified, otp_verified_at,
                    trust_score, trust_level, trust_score_stale
                ) VALUES (%s, %s, true, %s, 0, %s, true)
                ON CONFLICT (phone_number, user_id) DO UPDATE SET
                    otp_verified = true,
                    otp_verified_at = EXCLUDED.otp_verified_at,
                    trust_score_stale = true,
                    updated_at = NOW()
                RETURNING *
                """,
                (phone_number, user_id, verified_at, TrustLevel.UNVERIFIED.value),
                connection=conn,
            )
        return PhoneTrustState.from_row(row)

    @staticmethod
    @with_db_retry()
    async def record_ussd_screenshot(
        phone_number: str,
        user_id: str,
        analysis: UssdScreenshotResult,
        decision: CertificationDecision,
        image_hash: str,
        fraud_flags: list[FraudFlag],
        verified_at: datetime,
    ) -> PhoneTrustState:
        """Store the screenshot validation row and the USSD stage fields together."""
        match = analysis.name_match
        matched = bool(match and match.is_match)

        async with locked_transaction(phone_number, user_id) as conn:
            await execute_query(
                """
                INSERT INTO ussd_screenshot_validations (
                    user_id, phone_number, provider_detected, screen_type,
                    extracted_name, extracted_phone, extracted_balance,
                    ocr_confidence, tampering_probability, ui_authenticity_score,
                    cni_name, name_match_score, is_name_match,
                    validation_status, rejection_reason, image_hash
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    user_id,
                    phone_number,
                    analysis.provider.value,
                    analysis.screen_type.value,
                    analysis.extracted_name,
                    analysis.extracted_phone,
                    analysis.extracted_balance,
                    analysis.ocr_confidence,
                    analysis.tampering_probability,
                    analysis.ui_authenticity_score,
                    match.cni_name if match else None,
                    match.score if match else 0,
                    matched,
                    "validated" if decision.can_certify else "pending",
                    "; ".join(decision.reasons) or None,
                    image_hash,
                ),
                connection=conn,
            )

            row = await fetch_one(
                """
                INSERT INTO phone_trust_scores (
                    phone_number, user_id, ussd_screenshot_uploaded, ussd_name_extracted,
                    ussd_verification_confidence, ussd_verified_at,
                    identity_cross_validated, identity_match_score, identity_validated_at,
                    fraud_flags, trust_score, trust_level, trust_score_stale
                ) VALUES (%s, %s, true, %s, %s, %s, %s, %s, %s, %s, 0, %s, true)
                ON CONFLICT (phone_number, user_id) DO UPDATE SET
                    ussd_screenshot_uploaded = true,
                    ussd_name_extracted = COALESCE(
                        EXCLUDED.ussd_name_extracted, phone_trust_scores.ussd_name_extracted
                    ),
                    ussd_verification_confidence = EXCLUDED.ussd_verification_confidence,
                    ussd_verified_at = EXCLUDED.ussd_verified_at,
                    identity_cross_validated = phone_trust_scores.identity_cross_validated
                        OR EXCLUDED.identity_cross_validated,
                    identity_match_score = GREATEST(
                        phone_trust_scores.identity_match_score, EXCLUDED.identity_match_score
                    ),
                    identity_validated_at = COALESCE(
                        EXCLUDED.identity_validated_at, phone_trust_scores.identity_validated_at
                    ),
                    fraud_flags = COALESCE(phone_trust_scores.fraud_flags, '[]'::jsonb)
                        || EXCLUDED.fraud_flags,
                    trust_score_stale = true,
                    updated_at = NOW()
                RETURNING *
                """,
                (
                    phone_number,
                    user_id,
                    analysis.extracted_name,
                    decision.score,
                    verified_at,
                    matched,
                    match.score if match else None,
                    verified_at if matched else None,
                    _flags_json(fraud_flags),
                    TrustLevel.UNVERIFIED.value,
                ),
                connection=conn,
            )
        return PhoneTrustState.from_row(row)

    @staticmethod
    @with_db_retry()
    async def record_identity_match(
        phone_number: str,
        user_id: str,
        match_score: int,
        matched: bool,
        fraud_flags: list[FraudFlag],
        validated_at: datetime,
    ) -> PhoneTrustState:
        async with locked_transaction(phone_number, user_id) as conn:
            row = await fetch_one(
                """
                INSERT INTO phone_trust_scores (
                    phone_number, user_id, identity_cross_validated, identity_match_score,
                    identity_validated_at, fraud_flags, trust_score, trust_level,
                    trust_score_stale
                ) VALUES (%s, %s, %s, %s, %s, %s, 0, %s, true)
                ON CONFLICT (phone_number, user_id) DO UPDATE SET
                    identity_cross_validated = phone_trust_scores.identity_cross_validated
                        OR EXCLUDED.identity_cross_validated,
                    identity_match_score = GREATEST(
                        phone_trust_scores.identity_match_score, EXCLUDED.identity_match_score
                    ),
                    identity_validated_at = COALESCE(
                        EXCLUDED.identity_validated_at, phone_trust_scores.identity_validated_at
                    ),
                    fraud_flags = COALESCE(phone_trust_scores.fraud_flags, '[]'::jsonb)
                        || EXCLUDED.fraud_flags,
                    trust_score_stale = true,
                    updated_at = NOW()
                RETURNING *
                """,
                (
                    phone_number,
                    user_id,
                    matched,
                    match_score,
                    validated_at if matched else None,
                    _flags_json(fraud_flags),
                    TrustLevel.UNVERIFIED.value,
                ),
                connection=conn,
            )
        return PhoneTrustState.from_row(row)

    @staticmethod
    @with_db_retry()
    async def record_sms_history(
        phone_number: str,
        user_id: str,
        consent_id: str,
        extraction: ExtractionResult,
        activity: ActivityLevel,
        last_activity_date: datetime | None,
        analyzed_at: datetime,
    ) -> PhoneTrustState:
        """Insert extracted transactions and bills, then update the SMS stage.

        Rows are keyed by source message id so replaying an SMS batch adds nothing.
        """
        async with locked_transaction(phone_number, user_id) as conn:
            await execute_many(
                """
                INSERT INTO user_momo_transactions (
                    user_id, phone_number, provider, transaction_type, amount, currency,
                    balance_after, counterparty_name, reference, transaction_date,
                    source_type, source_confidence, consent_id, source_message_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, phone_number, source_message_id) DO NOTHING
                """,
                [
                    (
                        user_id,
                        phone_number,
                        tx.provider,
                        tx.type.value,
                        tx.amount,
                        tx.currency,
                        tx.balance_after,
                        tx.counterparty,
                        tx.reference,
                        tx.date,
                        tx.source_type,
                        tx.confidence,
                        consent_id,
                        tx.id,
                    )
                    for tx in extraction.transactions
                ],
                connection=conn,
            )

            await execute_many(
                """
                INSERT INTO user_utility_bills (
                    user_id, phone_number, utility_type, provider_name, bill_amount,
                    bill_date, paid_date, payment_status, source_type,
                    source_confidence, bill_reference, consent_id, source_message_id
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (user_id, phone_number, source_message_id) DO NOTHING
                """,
                [
                    (
                        user_id,
                        phone_number,
                        bill.type.value,
                        bill.provider,
                        bill.amount,
                        bill.bill_date,
                        bill.paid_date,
                        bill.status.value,
                        bill.source_type,
                        bill.confidence,
                        bill.reference,
                        consent_id,
                        bill.id,
                    )
                    for bill in extraction.utility_bills
                ],
                connection=conn,
            )

            row = await fetch_one(
                """
                INSERT INTO phone_trust_scores (
                    phone_number, user_id, sms_consent_given, sms_transactions_count,
                    sms_oldest_transaction, sms_analyzed_at, phone_age_months,
                    activity_level, last_activity_date, trust_score, trust_level,
                    trust_score_stale
                ) VALUES (%s, %s, true, %s, %s, %s, %s, %s, %s, 0, %s, true)
                ON CONFLICT (phone_number, user_id) DO UPDATE SET
                    sms_consent_given = true,
                    sms_transactions_count = EXCLUDED.sms_transactions_count,
                    sms_oldest_transaction = EXCLUDED.sms_oldest_transaction,
                    sms_analyzed_at = EXCLUDED.sms_analyzed_at,
                    phone_age_months = EXCLUDED.phone_age_months,
                    activity_level = EXCLUDED.activity_level,
                    last_activity_date = EXCLUDED.last_activity_date,
                    trust_score_stale = true,
                    updated_at = NOW()
                RETURNING *
                """,
                (
                    phone_number,
                    user_id,
                    len(extraction.transactions),
                    extraction.aggregated.oldest_transaction,
                    analyzed_at,
                    extraction.aggregated.phone_age_months,
                    activity.value,
                    last_activity_date,
                    TrustLevel.UNVERIFIED.value,
                ),
                connection=conn,
            )

        logger.info(
            "SMS history stored",
            phone=mask_phone_number(phone_number),
            user_id=user_id,
            transactions=len(extraction.transactions),
            utility_bills=len(extraction.utility_bills),
        )
        return PhoneTrustState.from_row(row)

    @staticmethod
    @with_db_retry()
    async def update_trust_score(
        phone_number: str, user_id: str, score: float, level: TrustLevel
    ) -> PhoneTrustState | None:
        async with locked_transaction(phone_number, user_id) as conn:
            row = await fetch_one(
                """
                UPDATE phone_trust_scores
                SET trust_score = %s,
                    trust_level = %s,
                    trust_score_stale = false,
                    updated_at = NOW()
                WHERE phone_number = %s
                  AND user_id = %s
                RETURNING *
                """,
                (score, level.value, phone_number, user_id),
                connection=conn,
            )
        return PhoneTrustState.from_row(row) if row else None


phone_trust_repository = PhoneTrustRepository()
