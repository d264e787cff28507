from datetime import UTC, datetime

import pytest

from mobile_trust.features.phone_trust.domain.models import MoMoProvider
from mobile_trust.features.phone_trust.pipeline.sms.models import ParsedSms, ParsedTransactionType
from mobile_trust.features.phone_trust.pipeline.sms.parser import (
    MobileMoneySmsParser,
    parse_amount,
    summarize_parsed_sms,
    transaction_frequency,
    validate_sms_content,
)

parser = MobileMoneySmsParser()


def test_orange_money_credit():
    parsed = parser.parse(
        "Vous avez recu 1000 FCFA de KONAN Paul. Nouveau solde: 15000 FCFA",
        sender="OrangeMoney",
    )

    assert parsed is not None
    assert parsed.provider is MoMoProvider.ORANGE_MONEY
    assert parsed.transaction_type is ParsedTransactionType.CREDIT
    assert parsed.pattern_matched == "orange_credit_fr"
    assert parsed.amount == 1000
    assert parsed.balance_after == 15000
    assert parsed.counterparty_name == "KONAN Paul"
    assert parsed.currency == "XOF"
    assert parsed.confidence == 100


def test_orange_money_transfer_with_reference():
    parsed = parser.parse(
        "Transfert de 5000 FCFA vers KOFFI Ama effectue. Ref: TX12345678. "
        "Nouveau solde: 10000 FCFA",
        sender="OrangeMoney",
    )

    assert parsed.transaction_type is ParsedTransactionType.DEBIT
    assert parsed.amount == 5000
    assert parsed.balance_after == 10000
    assert parsed.counterparty_name == "KOFFI Ama"
    assert parsed.reference == "TX12345678"


def test_mtn_english_credit_splits_counterparty_phone():
    parsed = parser.parse(
        "You have received 5000 XOF from 0701020304 John. Your new balance: 12000 XOF",
        sender="MTN",
    )

    assert parsed.provider is MoMoProvider.MTN_MOMO
    assert parsed.pattern_matched == "mtn_credit_en"
    assert parsed.amount == 5000
    assert parsed.counterparty_phone == "0701020304"
    assert parsed.counterparty_name == "John"


def test_wave_credit_with_spaced_amount():
    parsed = parser.parse("Vous avez 2 500 F CFA reçus de Awa Diop", sender="Wave")

    assert parsed.provider is MoMoProvider.WAVE
    assert parsed.transaction_type is ParsedTransactionType.CREDIT
    assert parsed.amount == 2500
    assert parsed.counterparty_name == "Awa Diop"


def test_known_sender_skips_other_providers_patterns():
    parsed = parser.parse(
        "Vous avez recu 1000 FCFA de KONAN Paul. Nouveau solde: 15000 FCFA", sender="MTN"
    )

    assert parsed.provider is MoMoProvider.MTN_MOMO
    assert parsed.pattern_matched == "generic_credit"


def test_generic_fallback_guesses_direction():
    parsed = parser.parse("Credit de votre compte: montant 7 500 FCFA", sender="BANK")

    assert parsed.pattern_matched == "generic_fallback"
    assert parsed.provider is MoMoProvider.UNKNOWN
    assert parsed.transaction_type is ParsedTransactionType.CREDIT
    assert parsed.amount == 7500
    assert parsed.confidence == 40


@pytest.mark.parametrize("text", ["", "ok", "Bonjour, à demain"])
def test_unparseable_messages_return_none(text):
    assert parser.parse(text, sender="OrangeMoney") is None


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("25 000", 25000.0),
        ("1.500.000", 1500000.0),
        ("1,000", 1000.0),
        ("12,50", 12.5),
        ("15000 ", 15000.0),
        ("", 0.0),
        (None, 0.0),
        ("abc", 0.0),
    ],
)
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def _parsed(kind, amount, provider=MoMoProvider.ORANGE_MONEY, confidence=90, balance=None, day=1):
    return ParsedSms(
        provider=provider,
        transaction_type=kind,
        amount=amount,
        currency="XOF",
        pattern_matched="test",
        confidence=confidence,
        balance_after=balance,
        sms_date=datetime(2026, 1, day, tzinfo=UTC),
    )


def test_summary_totals_and_latest_balance():
    summary = summarize_parsed_sms(
        [
            _parsed(ParsedTransactionType.CREDIT, 1000, balance=5000, day=1),
            _parsed(ParsedTransactionType.CREDIT, 4000, balance=9000, day=3),
            _parsed(ParsedTransactionType.FEE, 100, day=4),
            _parsed(ParsedTransactionType.DEBIT, 900, balance=8000, day=2),
        ]
    )

    assert summary.total_credits == 5000
    assert summary.total_debits == 1000
    assert summary.credit_count == 2
    assert summary.debit_count == 2
    assert summary.largest_credit == 4000
    assert summary.largest_debit == 900
    assert summary.latest_balance == 9000
    assert summary.providers == ["orange_money"]
    assert summary.risk_flags == ["Insufficient SMS volume"]


def test_summary_risk_flags():
    messages = [
        _parsed(ParsedTransactionType.DEBIT, 5000, provider=MoMoProvider.UNKNOWN, confidence=40)
        for _ in range(6)
    ]
    messages.append(_parsed(ParsedTransactionType.CREDIT, 1000))

    flags = summarize_parsed_sms(messages).risk_flags

    assert "Insufficient SMS volume" not in flags
    assert "High debit to credit ratio" in flags
    assert "Unidentified providers" in flags
    assert "Low parsing confidence" in flags


@pytest.mark.parametrize(
    "count,label", [(0, "low"), (4, "low"), (5, "moderate"), (10, "active"), (20, "very_active")]
)
def test_transaction_frequency(count, label):
    assert transaction_frequency(count) == label


def test_validate_sms_content():
    assert validate_sms_content("Hi") == (False, "Message too short")
    assert validate_sms_content("x" * 1001) == (False, "Message too long")
    assert validate_sms_content("Bonjour, rendez-vous demain a midi") == (
        False,
        "No Mobile Money keywords",
    )
    assert validate_sms_content("Votre solde est de 5000 FCFA") == (True, None)
