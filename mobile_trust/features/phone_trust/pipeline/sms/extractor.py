"""
SMS transaction extractor.

Runs in-process over a user's SMS inbox (under consent) and keeps only
structured facts: Mobile Money transactions, utility bills and their
aggregates. Message bodies never leave this module.
"""

from __future__ import annotations

import re
import time
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta

from mobile_trust.infrastructure.observability.logging import get_logger

from .models import (
    ExtractedTransaction,
    ExtractionResult,
    ParsedSms,
    ParsedTransactionType,
    PaymentStatus,
    ProcessingStats,
    SmsAggregates,
    SmsMessage,
    TransactionType,
    UtilityBill,
    UtilityType,
)
from .parser import MobileMoneySmsParser, SmsParser, parse_amount, summarize_parsed_sms

logger = get_logger(__name__)

MOMO_SENDERS = (
    "orangemoney",
    "orange money",
    "30303",
    "144",
    "om",
    "mtn",
    "momo",
    "mtn momo",
    "5050",
    "170",
    "wave",
    "wavemobile",
    "moov",
    "flooz",
    "moov money",
)

# Too ambiguous for substring matching ("om" is in "Tom")
EXACT_ONLY_SENDERS = frozenset({"om", "144", "170"})

UTILITY_SENDERS: dict[str, tuple[UtilityType, str]] = {
    "cie": (UtilityType.ELECTRICITY, "CIE"),
    "sodeci": (UtilityType.WATER, "SODECI"),
    "senelec": (UtilityType.ELECTRICITY, "SENELEC"),
    "sde": (UtilityType.WATER, "SDE"),
    "orange": (UtilityType.INTERNET, "Orange Internet"),
    "mtn": (UtilityType.INTERNET, "MTN Internet"),
    "canal+": (UtilityType.OTHER, "Canal+"),
    "startime": (UtilityType.OTHER, "StarTimes"),
}

UNKNOWN_UTILITY_PROVIDER = "Unknown"
UTILITY_BILL_CONFIDENCE = 70
PHONE_AGE_MONTH = timedelta(days=30)

_UTILITY_KEYWORDS = re.compile(
    r"facture|bill|électricité|electricite|\beau\b|water|abonnement|recharge", re.IGNORECASE
)
_PAID_KEYWORDS = re.compile(r"pay[ée]|r[ée]ussi|succ[eè]s|confirm[ée]", re.IGNORECASE)

# Ordered; first rule yielding a positive amount wins
UTILITY_RULES: tuple[re.Pattern, ...] = (
    re.compile(
        r"(?:facture|bill)\s*(?:n[°o]?)?\s*:?\s*(?P<reference>\w+)?.*?(?:montant|amount)"
        r"\s*:?\s*(?P<amount>\d[\d\s,.]*)\s*(?:fcfa|xof)?",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:paiement|payment)\s*(?:facture|bill)\s*(?P<provider>cie|sodeci|senelec|sde)"
        r".*?(?P<amount>\d[\d\s,.]*)\s*(?:fcfa|xof)?",
        re.IGNORECASE,
    ),
    re.compile(
        r"(?:électricité|electricite|\beau\b|water)\s*:?\s*"
        r"(?P<amount>\d[\d\s,.]*)\s*(?:fcfa|xof)?",
        re.IGNORECASE,
    ),
)


def is_momo_sender(sender: str) -> bool:
    lowered = sender.strip().lower()
    for known in MOMO_SENDERS:
        if known in EXACT_ONLY_SENDERS:
            if lowered == known:
                return True
        elif known in lowered:
            return True
    return False


def _utility_sender(sender: str) -> tuple[UtilityType, str] | None:
    lowered = sender.lower()
    for key, info in UTILITY_SENDERS.items():
        if key in lowered:
            return info
    return None


def is_utility_sms(message: SmsMessage) -> bool:
    return _utility_sender(message.sender) is not None or bool(
        _UTILITY_KEYWORDS.search(message.body)
    )


def extract_utility_bill(message: SmsMessage) -> UtilityBill | None:
    utility = _utility_sender(message.sender)

    for rule in UTILITY_RULES:
        match = rule.search(message.body)
        if not match:
            continue
        groups = match.groupdict()
        amount = parse_amount(groups.get("amount"))
        if amount <= 0:
            continue

        if groups.get("provider"):
            utility = UTILITY_SENDERS.get(groups["provider"].lower(), utility)

        paid = bool(_PAID_KEYWORDS.search(message.body))
        utility_type, provider = utility or (UtilityType.OTHER, UNKNOWN_UTILITY_PROVIDER)
        return UtilityBill(
            id=message.id,
            type=utility_type,
            provider=provider,
            amount=amount,
            status=PaymentStatus.PAID_ON_TIME if paid else PaymentStatus.UNPAID,
            confidence=UTILITY_BILL_CONFIDENCE,
            bill_date=message.date,
            paid_date=message.date if paid else None,
            reference=groups.get("reference"),
        )

    return None


def _to_transaction(message: SmsMessage, parsed: ParsedSms) -> ExtractedTransaction:
    if parsed.transaction_type is ParsedTransactionType.FEE:
        kind = TransactionType.DEBIT
    else:
        kind = TransactionType(parsed.transaction_type.value)

    return ExtractedTransaction(
        id=message.id,
        provider=parsed.provider.value,
        type=kind,
        amount=parsed.amount,
        currency=parsed.currency,
        date=parsed.sms_date or message.date,
        confidence=parsed.confidence,
        balance_after=parsed.balance_after,
        counterparty=parsed.counterparty_name or parsed.counterparty_phone,
        reference=parsed.reference,
    )


def phone_age_months(oldest: datetime | None, now: datetime | None = None) -> int | None:
    if oldest is None:
        return None
    now = now or datetime.now(UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    if oldest.tzinfo is None:
        oldest = oldest.replace(tzinfo=UTC)
    return max(0, (now - oldest) // PHONE_AGE_MONTH)


class SmsTransactionExtractor:
    """Multi-message orchestration over a single-SMS parser."""

    def __init__(self, parser: SmsParser | None = None):
        self.parser = parser or MobileMoneySmsParser()

    def extract(
        self, messages: Iterable[SmsMessage], now: datetime | None = None
    ) -> ExtractionResult:
        started = time.perf_counter()
        messages = list(messages)

        parsed_pairs: list[tuple[SmsMessage, ParsedSms]] = []
        for message in messages:
            if not is_momo_sender(message.sender):
                continue
            parsed = self.parser.parse(message.body, message.sender, message.date)
            if parsed is not None:
                parsed_pairs.append((message, parsed))

        transactions = [_to_transaction(message, parsed) for message, parsed in parsed_pairs]

        utility_bills = []
        for message in messages:
            if not is_utility_sms(message):
                continue
            bill = extract_utility_bill(message)
            if bill is not None:
                utility_bills.append(bill)

        summary = summarize_parsed_sms([parsed for _, parsed in parsed_pairs])
        dates = [transaction.date for transaction in transactions]
        oldest = min(dates, default=None)

        aggregated = SmsAggregates(
            total_credits=summary.total_credits,
            total_debits=summary.total_debits,
            credit_count=summary.credit_count,
            debit_count=summary.debit_count,
            average_transaction=summary.average_transaction,
            providers=summary.providers,
            latest_balance=summary.latest_balance,
            activity_frequency=summary.transaction_frequency,
            confidence=summary.confidence,
            oldest_transaction=oldest,
            newest_transaction=max(dates, default=None),
            phone_age_months=phone_age_months(oldest, now),
        )

        stats = ProcessingStats(
            total_sms=len(messages),
            parsed_sms=len(parsed_pairs),
            utility_bills_found=len(utility_bills),
            processing_time_ms=round((time.perf_counter() - started) * 1000, 2),
        )

        logger.info(
            "SMS extraction completed",
            total_sms=stats.total_sms,
            parsed_sms=stats.parsed_sms,
            utility_bills_found=stats.utility_bills_found,
            processing_time_ms=stats.processing_time_ms,
        )

        return ExtractionResult(
            transactions=transactions,
            utility_bills=utility_bills,
            aggregated=aggregated,
            processing_stats=stats,
        )
