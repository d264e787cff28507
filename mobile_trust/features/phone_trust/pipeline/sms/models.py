"""
Shapes produced by the SMS pipeline.

SmsMessage is the caller-supplied input and is validated by pydantic.
Everything extracted from it is an immutable dataclass.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...domain.models import MoMoProvider

SMS_SOURCE_TYPE = "sms_parsed"


class SmsMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    sender: str
    body: str
    date: datetime
    read: bool = True

    @field_validator("date")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class ParsedTransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    BALANCE = "balance"
    FEE = "fee"
    OTHER = "other"


class TransactionType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    BALANCE = "balance"
    OTHER = "other"


class UtilityType(str, Enum):
    ELECTRICITY = "electricity"
    WATER = "water"
    INTERNET = "internet"
    RENT = "rent"
    OTHER = "other"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID_ON_TIME = "paid_on_time"
    PAID_LATE = "paid_late"


@dataclass(slots=True)
class ParsedSms:
    """One message as understood by the single-SMS parser."""

    provider: MoMoProvider
    transaction_type: ParsedTransactionType
    amount: float
    currency: str
    pattern_matched: str
    confidence: int
    balance_after: float | None = None
    counterparty_name: str | None = None
    counterparty_phone: str | None = None
    reference: str | None = None
    sms_date: datetime | None = None


@dataclass(frozen=True, slots=True)
class ExtractedTransaction:
    id: str
    provider: str
    type: TransactionType
    amount: float
    currency: str
    date: datetime
    confidence: int
    balance_after: float | None = None
    counterparty: str | None = None
    reference: str | None = None
    source_type: str = SMS_SOURCE_TYPE


@dataclass(frozen=True, slots=True)
class UtilityBill:
    id: str
    type: UtilityType
    provider: str
    amount: float
    status: PaymentStatus
    confidence: int
    bill_date: datetime | None = None
    paid_date: datetime | None = None
    reference: str | None = None
    source_type: str = SMS_SOURCE_TYPE


@dataclass(slots=True)
class SmsAggregates:
    total_credits: float = 0.0
    total_debits: float = 0.0
    credit_count: int = 0
    debit_count: int = 0
    average_transaction: float = 0.0
    providers: list[str] = field(default_factory=list)
    latest_balance: float | None = None
    activity_frequency: str = "low"
    confidence: float = 0.0
    oldest_transaction: datetime | None = None
    newest_transaction: datetime | None = None
    phone_age_months: int | None = None


@dataclass(slots=True)
class ProcessingStats:
    total_sms: int
    parsed_sms: int
    utility_bills_found: int
    processing_time_ms: float


@dataclass(slots=True)
class ExtractionResult:
    transactions: list[ExtractedTransaction]
    utility_bills: list[UtilityBill]
    aggregated: SmsAggregates
    processing_stats: ProcessingStats
