"""
Single-SMS parser for Mobile Money confirmations.

Knows the confirmation wording of Orange Money, MTN MoMo, Wave and Moov
(Flooz) across the UEMOA zone, plus generic credit/debit phrasing. Each
message is tried against an ordered pattern table; the first match wins.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from ...domain.models import MoMoProvider
from .models import ParsedSms, ParsedTransactionType

CURRENCY = "XOF"
MIN_SMS_LENGTH = 10
MAX_SMS_LENGTH = 1000

_AMOUNT = r"(?P<amount>\d[\d\s,.]*)"
_BALANCE = r"(?P<balance>\d[\d\s,.]*)"


@dataclass(frozen=True, slots=True)
class SmsPattern:
    name: str
    provider: MoMoProvider
    transaction_type: ParsedTransactionType
    regex: re.Pattern


def _pattern(name: str, provider: MoMoProvider, kind: ParsedTransactionType, regex: str):
    return SmsPattern(name, provider, kind, re.compile(regex, re.IGNORECASE))


_ORANGE = MoMoProvider.ORANGE_MONEY
_MTN = MoMoProvider.MTN_MOMO
_WAVE = MoMoProvider.WAVE
_MOOV = MoMoProvider.MOOV
_UNKNOWN = MoMoProvider.UNKNOWN
_CREDIT = ParsedTransactionType.CREDIT
_DEBIT = ParsedTransactionType.DEBIT
_BAL = ParsedTransactionType.BALANCE

SMS_PATTERNS: tuple[SmsPattern, ...] = (
    # Orange Money
    _pattern(
        "orange_credit_fr",
        _ORANGE,
        _CREDIT,
        rf"vous avez re[çc]u {_AMOUNT}\s*(?:fcfa|xof|f\s*cfa)?\s*(?:de|from)\s+"
        rf"(?P<counterparty>[^.]+?)\.?\s*(?:nouveau\s+)?solde[:\s]*{_BALANCE}",
    ),
    _pattern(
        "orange_debit_fr",
        _ORANGE,
        _DEBIT,
        rf"(?:transfert|envoi)\s*(?:de)?\s*{_AMOUNT}\s*(?:fcfa|xof)?\s*(?:vers|[àa])\s+"
        rf"(?P<counterparty>[^.]+?)\.?\s*(?:effectu[ée]|r[ée]ussi).*?solde[:\s]*{_BALANCE}",
    ),
    _pattern(
        "orange_retrait",
        _ORANGE,
        _DEBIT,
        rf"retrait\s*(?:de)?\s*{_AMOUNT}\s*(?:fcfa|xof)?.*?(?:effectu[ée]|r[ée]ussi)"
        rf".*?solde[:\s]*{_BALANCE}",
    ),
    _pattern(
        "orange_depot",
        _ORANGE,
        _CREDIT,
        rf"d[ée]p[oô]t\s*(?:de)?\s*{_AMOUNT}\s*(?:fcfa|xof)?.*?(?:effectu[ée]|r[ée]ussi)"
        rf".*?solde[:\s]*{_BALANCE}",
    ),
    _pattern(
        "orange_balance",
        _ORANGE,
        _BAL,
        rf"(?:votre\s+)?solde\s*(?:est\s+de|:)\s*{_BALANCE}\s*(?:fcfa|xof)",
    ),
    # MTN MoMo
    _pattern(
        "mtn_credit_en",
        _MTN,
        _CREDIT,
        rf"you\s+(?:have\s+)?received\s+{_AMOUNT}\s*(?:xof|fcfa|gnf)?\s*from\s+"
        rf"(?P<counterparty>[^.]+?)\.?\s*(?:your\s+)?(?:new\s+)?balance[:\s]*{_BALANCE}",
    ),
    _pattern(
        "mtn_debit_en",
        _MTN,
        _DEBIT,
        rf"(?:transfer|payment)\s+(?:of)?\s*{_AMOUNT}\s*(?:xof|fcfa)?\s*(?:to|vers)\s+"
        rf"(?P<counterparty>[^.]+?)\.?\s*(?:successful|completed).*?balance[:\s]*{_BALANCE}",
    ),
    _pattern(
        "mtn_cashin",
        _MTN,
        _CREDIT,
        rf"cash\s*in\s*(?:of)?\s*{_AMOUNT}\s*(?:xof|fcfa)?.*?(?:successful|completed)"
        rf".*?balance[:\s]*{_BALANCE}",
    ),
    _pattern(
        "mtn_cashout",
        _MTN,
        _DEBIT,
        rf"cash\s*out\s*(?:of)?\s*{_AMOUNT}\s*(?:xof|fcfa)?.*?(?:successful|completed)"
        rf".*?balance[:\s]*{_BALANCE}",
    ),
    _pattern(
        "mtn_credit_fr",
        _MTN,
        _CREDIT,
        rf"vous avez re[çc]u {_AMOUNT}\s*(?:fcfa|xof)?\s*de\s+"
        rf"(?P<counterparty>[^.]+?)\.?\s*solde[:\s]*{_BALANCE}",
    ),
    # Wave
    _pattern(
        "wave_credit",
        _WAVE,
        _CREDIT,
        rf"{_AMOUNT}\s*f?\s*cfa\s*re[çc]us?\s*de\s+(?P<counterparty>[^.]+)",
    ),
    _pattern(
        "wave_debit",
        _WAVE,
        _DEBIT,
        rf"{_AMOUNT}\s*f?\s*cfa\s*(?:envoy[ée]s?|transf[ée]r[ée]s?)\s*(?:[àa]|vers)\s+"
        rf"(?P<counterparty>[^.]+)",
    ),
    _pattern(
        "wave_payment",
        _WAVE,
        _DEBIT,
        rf"paiement\s*(?:de)?\s*{_AMOUNT}\s*f?\s*cfa\s*(?:[àa]|chez)\s+(?P<counterparty>[^.]+)",
    ),
    _pattern(
        "wave_balance",
        _WAVE,
        _BAL,
        rf"solde\s*wave[:\s]*{_BALANCE}\s*f?\s*cfa",
    ),
    # Moov / Flooz
    _pattern(
        "moov_credit",
        _MOOV,
        _CREDIT,
        rf"(?:flooz|moov)\s*:?\s*(?:cr[ée]dit|re[çc]u)\s*{_AMOUNT}\s*(?:fcfa|xof)?.*?de\s+"
        rf"(?P<counterparty>[^.]+)",
    ),
    _pattern(
        "moov_debit",
        _MOOV,
        _DEBIT,
        rf"(?:flooz|moov)\s*:?\s*(?:d[ée]bit|envoy[ée])\s*{_AMOUNT}\s*(?:fcfa|xof)?"
        rf".*?(?:vers|[àa])\s+(?P<counterparty>[^.]+)",
    ),
    # Generic
    _pattern(
        "generic_credit",
        _UNKNOWN,
        _CREDIT,
        rf"(?:re[çc]u|received|cr[ée]dit)\s*:?\s*{_AMOUNT}\s*(?:fcfa|xof|gnf|f\s*cfa)",
    ),
    _pattern(
        "generic_debit",
        _UNKNOWN,
        _DEBIT,
        rf"(?:envoy[ée]|sent|d[ée]bit|transfert)\s*:?\s*{_AMOUNT}\s*(?:fcfa|xof|gnf|f\s*cfa)",
    ),
)

# Exact (lowercased) sender -> provider
SENDER_SHORTCODES: dict[str, MoMoProvider] = {
    "30303": _ORANGE,
    "144": _ORANGE,
    "orangemoney": _ORANGE,
    "orange money": _ORANGE,
    "om": _ORANGE,
    "5050": _MTN,
    "mtn": _MTN,
    "momo": _MTN,
    "mtn momo": _MTN,
    "wave": _WAVE,
    "wavemobile": _WAVE,
    "moov": _MOOV,
    "flooz": _MOOV,
}

_COUNTERPARTY_PHONE = re.compile(r"(\+?[0-9]{8,12})")
_REFERENCE = re.compile(r"\b(?:r[ée]f|id|txn)[:\s#]*([A-Z0-9]{6,20})", re.IGNORECASE)
_GENERIC_AMOUNT = re.compile(r"(\d[\d\s,.]{2,15})\s*(?:fcfa|xof|gnf|f\s*cfa)", re.IGNORECASE)
_CREDIT_HINT = re.compile(r"re[çc]u|received|cr[ée]dit|d[ée]p[oô]t|\bfrom\b", re.IGNORECASE)
_DEBIT_HINT = re.compile(
    r"envoy[ée]|sent|d[ée]bit|retrait|\bvers\b|\bto\b|paiement", re.IGNORECASE
)
_SEPARATORS = re.compile(r"[,.]")

MOMO_KEYWORDS = (
    "solde",
    "balance",
    "fcfa",
    "xof",
    "reçu",
    "recu",
    "received",
    "envoyé",
    "envoye",
    "sent",
    "transfert",
    "orange",
    "mtn",
    "wave",
    "moov",
    "retrait",
    "dépôt",
    "depot",
    "paiement",
    "flooz",
    "momo",
)


class SmsParser(Protocol):
    """Turns one message into a ParsedSms, or None when it is not understood."""

    def parse(
        self, text: str, sender: str | None = None, sms_date: datetime | None = None
    ) -> ParsedSms | None: ...


def parse_amount(raw: str | None) -> float:
    """
    Parse a Mobile Money amount such as "25 000", "1.500.000" or "12,50".

    XOF has no minor unit in practice, so a final separator followed by
    exactly three digits is a thousands separator; any other final
    separator is a decimal point.
    """
    if not raw:
        return 0.0
    cleaned = re.sub(r"\s", "", raw).strip(",.")
    cleaned = re.sub(r"[^\d,.]", "", cleaned)
    if not cleaned:
        return 0.0

    separators = list(_SEPARATORS.finditer(cleaned))
    if separators:
        last = separators[-1]
        tail = cleaned[last.end() :]
        if len(tail) == 3:
            cleaned = _SEPARATORS.sub("", cleaned)
        else:
            cleaned = _SEPARATORS.sub("", cleaned[: last.start()]) + "." + tail

    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def detect_sender_provider(sender: str | None) -> MoMoProvider:
    if not sender:
        return MoMoProvider.UNKNOWN
    return SENDER_SHORTCODES.get(sender.strip().lower(), MoMoProvider.UNKNOWN)


def _parse_confidence(
    pattern: SmsPattern,
    amount: float,
    balance: float | None,
    counterparty: str | None,
    text: str,
) -> int:
    confidence = 50
    if pattern.provider is not MoMoProvider.UNKNOWN:
        confidence += 15
    if amount > 0:
        confidence += 15
    if balance and balance > 0:
        confidence += 10
    if counterparty:
        confidence += 5
    if 50 < len(text) < 500:
        confidence += 5
    return min(100, confidence)


def _split_counterparty(name: str | None) -> tuple[str | None, str | None]:
    if not name:
        return None, None
    name = name.strip()
    phone_match = _COUNTERPARTY_PHONE.search(name)
    if not phone_match:
        return name or None, None
    phone = phone_match.group(1)
    cleaned = name.replace(phone, "").strip().strip("-: ")
    return cleaned or None, phone


class MobileMoneySmsParser:
    """Pattern-table parser for UEMOA Mobile Money confirmation SMS."""

    def __init__(self, patterns: tuple[SmsPattern, ...] = SMS_PATTERNS):
        self.patterns = patterns

    def parse(
        self, text: str, sender: str | None = None, sms_date: datetime | None = None
    ) -> ParsedSms | None:
        text = (text or "").strip()
        if len(text) < MIN_SMS_LENGTH:
            return None

        sender_provider = detect_sender_provider(sender)

        for pattern in self.patterns:
            # A known sender only ever speaks its own dialect (or generic phrasing)
            if (
                sender_provider is not MoMoProvider.UNKNOWN
                and pattern.provider is not sender_provider
                and pattern.provider is not MoMoProvider.UNKNOWN
            ):
                continue

            match = pattern.regex.search(text)
            if not match:
                continue

            groups = match.groupdict()
            amount = parse_amount(groups.get("amount"))
            balance = parse_amount(groups["balance"]) if groups.get("balance") else None
            counterparty_name, counterparty_phone = _split_counterparty(groups.get("counterparty"))
            reference = _REFERENCE.search(text)

            return ParsedSms(
                provider=(
                    pattern.provider
                    if pattern.provider is not MoMoProvider.UNKNOWN
                    else sender_provider
                ),
                transaction_type=pattern.transaction_type,
                amount=amount,
                currency=CURRENCY,
                pattern_matched=pattern.name,
                confidence=_parse_confidence(pattern, amount, balance, counterparty_name, text),
                balance_after=balance,
                counterparty_name=counterparty_name,
                counterparty_phone=counterparty_phone,
                reference=reference.group(1) if reference else None,
                sms_date=sms_date,
            )

        return self._parse_generic(text, sender_provider, sms_date)

    @staticmethod
    def _parse_generic(
        text: str, provider: MoMoProvider, sms_date: datetime | None
    ) -> ParsedSms | None:
        generic = _GENERIC_AMOUNT.search(text)
        if not generic:
            return None
        amount = parse_amount(generic.group(1))
        if amount <= 0:
            return None

        if _CREDIT_HINT.search(text):
            kind = ParsedTransactionType.CREDIT
        elif _DEBIT_HINT.search(text):
            kind = ParsedTransactionType.DEBIT
        else:
            kind = ParsedTransactionType.OTHER

        return ParsedSms(
            provider=provider,
            transaction_type=kind,
            amount=amount,
            currency=CURRENCY,
            pattern_matched="generic_fallback",
            confidence=40,
            sms_date=sms_date,
        )


@dataclass(slots=True)
class ParsedSmsSummary:
    total_credits: float = 0.0
    total_debits: float = 0.0
    credit_count: int = 0
    debit_count: int = 0
    average_transaction: float = 0.0
    largest_credit: float = 0.0
    largest_debit: float = 0.0
    providers: list[str] = field(default_factory=list)
    latest_balance: float | None = None
    transaction_frequency: str = "low"
    confidence: float = 0.0
    risk_flags: list[str] = field(default_factory=list)


def transaction_frequency(transaction_count: int) -> str:
    if transaction_count >= 20:
        return "very_active"
    if transaction_count >= 10:
        return "active"
    if transaction_count >= 5:
        return "moderate"
    return "low"


def summarize_parsed_sms(messages: list[ParsedSms]) -> ParsedSmsSummary:
    """Fold parsed messages into totals, a frequency label and risk flags."""
    credits = [m.amount for m in messages if m.transaction_type is ParsedTransactionType.CREDIT]
    debits = [
        m.amount
        for m in messages
        if m.transaction_type in (ParsedTransactionType.DEBIT, ParsedTransactionType.FEE)
    ]
    flows = credits + debits

    providers: list[str] = []
    for message in messages:
        if message.provider is not MoMoProvider.UNKNOWN and message.provider.value not in providers:
            providers.append(message.provider.value)

    with_balance = [m for m in messages if m.balance_after is not None]
    with_balance.sort(
        key=lambda m: (m.sms_date is not None, m.sms_date or datetime.min), reverse=True
    )

    summary = ParsedSmsSummary(
        total_credits=sum(credits),
        total_debits=sum(debits),
        credit_count=len(credits),
        debit_count=len(debits),
        average_transaction=sum(flows) / len(flows) if flows else 0.0,
        largest_credit=max(credits, default=0.0),
        largest_debit=max(debits, default=0.0),
        providers=providers,
        latest_balance=with_balance[0].balance_after if with_balance else None,
        transaction_frequency=transaction_frequency(len(flows)),
        confidence=(
            sum(m.confidence for m in messages) / len(messages) if messages else 0.0
        ),
    )

    total = len(messages)
    if total < 5:
        summary.risk_flags.append("Insufficient SMS volume")
    if summary.total_debits > summary.total_credits * 2:
        summary.risk_flags.append("High debit to credit ratio")
    if sum(1 for m in messages if m.provider is MoMoProvider.UNKNOWN) > total * 0.5:
        summary.risk_flags.append("Unidentified providers")
    if sum(1 for m in messages if m.confidence < 50) > total * 0.3:
        summary.risk_flags.append("Low parsing confidence")

    return summary


def validate_sms_content(text: str | None) -> tuple[bool, str | None]:
    """Cheap pre-check that a message is worth parsing."""
    if not text or len(text.strip()) < MIN_SMS_LENGTH:
        return False, "Message too short"
    if len(text) > MAX_SMS_LENGTH:
        return False, "Message too long"
    lowered = text.lower()
    if not any(keyword in lowered for keyword in MOMO_KEYWORDS):
        return False, "No Mobile Money keywords"
    return True, None
