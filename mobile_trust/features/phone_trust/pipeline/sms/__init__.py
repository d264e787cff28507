"""
SMS pipeline package.

Parses Mobile Money confirmation SMS and utility bill notices into
structured transactions, bills and aggregates.
"""

from .extractor import SmsTransactionExtractor
from .models import (
    ExtractedTransaction,
    ExtractionResult,
    ParsedSms,
    SmsMessage,
    TransactionType,
    UtilityBill,
)
from .parser import (
    MobileMoneySmsParser,
    SmsParser,
    parse_amount,
    summarize_parsed_sms,
    validate_sms_content,
)

__all__ = [
    "ExtractedTransaction",
    "ExtractionResult",
    "MobileMoneySmsParser",
    "ParsedSms",
    "SmsMessage",
    "SmsParser",
    "SmsTransactionExtractor",
    "TransactionType",
    "UtilityBill",
    "parse_amount",
    "summarize_parsed_sms",
    "validate_sms_content",
]
