"""
Domain models for Last Wish delivery.

Subscriptions (the per-user delivery settings), the typed financial records
exported to recipients, and the value objects that flow through one pipeline
run: snapshots, digests, per-recipient outcomes, and ledger entries.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from lastwish.config import DEFAULT_CHECK_IN_DAYS, DEFAULT_CURRENCY

TWO_PLACES = Decimal("0.01")
# Larger amounts cannot be quantized to cents in the default decimal context
MAX_AMOUNT = Decimal("1e15")


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse a stored ISO-8601 timestamp (with or without 'Z') into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


class DataCategory(str, Enum):
    """Record sets a subscriber can opt into sharing."""

    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    PURCHASES = "purchases"
    LOANS = "loans"
    SAVINGS = "savings"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS = {
    DataCategory.ACCOUNTS: "Accounts",
    DataCategory.TRANSACTIONS: "Transactions",
    DataCategory.PURCHASES: "Purchases",
    DataCategory.LOANS: "Lend/Borrow Records",
    DataCategory.SAVINGS: "Savings Records",
}

# Keys written by the settings screen's include_data toggles
_INCLUDE_DATA_ALIASES = {
    "accounts": DataCategory.ACCOUNTS,
    "transactions": DataCategory.TRANSACTIONS,
    "purchases": DataCategory.PURCHASES,
    "loans": DataCategory.LOANS,
    "lendBorrow": DataCategory.LOANS,
    "lend_borrow": DataCategory.LOANS,
    "savings": DataCategory.SAVINGS,
    "donationSavings": DataCategory.SAVINGS,
}


def parse_include_data(raw: Any) -> set[DataCategory]:
    """
    Normalize the stored category toggles.

    Accepts a list of category names or the settings screen's
    {"accounts": true, "lendBorrow": false, ...} mapping. Unknown keys
    (e.g. "analytics") are ignored.
    """
    if raw is None:
        return set()
    if isinstance(raw, str):
        raw = json.loads(raw)
    if isinstance(raw, Mapping):
        names: Iterable[str] = [key for key, enabled in raw.items() if enabled]
    elif isinstance(raw, (list, tuple, set, frozenset)):
        names = [str(item) for item in raw]
    else:
        raise ValueError(f"Unsupported include_data value: {raw!r}")

    return {_INCLUDE_DATA_ALIASES[name] for name in names if name in _INCLUDE_DATA_ALIASES}


class IntervalUnit(str, Enum):
    """Unit of the check-in cadence. Production uses days."""

    DAYS = "days"
    HOURS = "hours"
    MINUTES = "minutes"


class CheckInInterval(BaseModel):
    """How long a subscriber may go without checking in."""

    model_config = ConfigDict(frozen=True)

    amount: int = Field(..., gt=0, description="Number of units between check-ins")
    unit: IntervalUnit = Field(default=IntervalUnit.DAYS)

    @classmethod
    def days(cls, amount: int) -> CheckInInterval:
        return cls(amount=amount, unit=IntervalUnit.DAYS)

    @classmethod
    def minutes(cls, amount: int) -> CheckInInterval:
        return cls(amount=amount, unit=IntervalUnit.MINUTES)

    def as_timedelta(self) -> timedelta:
        if self.unit == IntervalUnit.DAYS:
            return timedelta(days=self.amount)
        if self.unit == IntervalUnit.HOURS:
            return timedelta(hours=self.amount)
        return timedelta(minutes=self.amount)

    def describe(self) -> str:
        unit = self.unit.value if self.amount != 1 else self.unit.value.rstrip("s")
        return f"{self.amount} {unit}"


class Recipient(BaseModel):
    """A person who receives the digest."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    email: str = Field(..., description="Delivery address (validated on save and before send)")
    name: str = Field(default="", description="Display name used in the greeting")
    relationship: str = Field(default="", description="Free-form tag, e.g. 'spouse'")

    @property
    def display_name(self) -> str:
        return self.name or self.email


class Subscription(BaseModel):
    """
    A user's Last Wish settings.

    Eligible for delivery only while enabled, active and unclaimed.
    delivery_claimed only moves false -> true inside the pipeline; a check-in
    is the only thing that resets it.
    """

    model_config = ConfigDict(frozen=False)

    user_id: str = Field(..., min_length=1)
    is_enabled: bool = False
    is_active: bool = False
    check_in_interval: CheckInInterval = Field(
        default_factory=lambda: CheckInInterval.days(DEFAULT_CHECK_IN_DAYS)
    )
    last_check_in: datetime | None = None
    recipients: list[Recipient] = Field(default_factory=list)
    include_data: set[DataCategory] = Field(default_factory=lambda: set(DataCategory))
    message: str | None = None
    delivery_claimed: bool = False
    delivery_claimed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("last_check_in", "delivery_claimed_at", "created_at", "updated_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    @property
    def deadline(self) -> datetime | None:
        """When the subscription becomes overdue (None until the first check-in)."""
        if self.last_check_in is None:
            return None
        return self.last_check_in + self.check_in_interval.as_timedelta()

    def is_eligible(self) -> bool:
        return self.is_enabled and self.is_active and not self.delivery_claimed

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "user_id": self.user_id,
            "is_enabled": int(self.is_enabled),
            "is_active": int(self.is_active),
            "check_in_frequency": self.check_in_interval.amount,
            "check_in_unit": self.check_in_interval.unit.value,
            "last_check_in": self.last_check_in.isoformat() if self.last_check_in else None,
            "recipients": json.dumps([r.model_dump() for r in self.recipients]),
            "include_data": json.dumps(sorted(c.value for c in self.include_data)),
            "message": self.message,
            "delivery_claimed": int(self.delivery_claimed),
            "delivery_claimed_at": (
                self.delivery_claimed_at.isoformat() if self.delivery_claimed_at else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: Mapping[str, Any]) -> Subscription:
        """
        Create Subscription from a database row.

        Raises:
            ValueError / KeyError / pydantic.ValidationError on malformed rows
        """
        if not row.get("user_id"):
            raise ValueError("missing user_id")

        recipients_raw = row.get("recipients") or "[]"
        recipients = json.loads(recipients_raw) if isinstance(recipients_raw, str) else recipients_raw
        if not isinstance(recipients, list):
            raise ValueError("recipients must be a list")

        return cls(
            user_id=row["user_id"],
            is_enabled=bool(row.get("is_enabled")),
            is_active=bool(row.get("is_active")),
            check_in_interval=CheckInInterval(
                amount=row["check_in_frequency"],
                unit=IntervalUnit(row.get("check_in_unit") or IntervalUnit.DAYS.value),
            ),
            last_check_in=parse_timestamp(row.get("last_check_in")),
            recipients=[Recipient(**r) for r in recipients],
            include_data=parse_include_data(row.get("include_data")),
            message=row.get("message"),
            delivery_claimed=bool(row.get("delivery_claimed")),
            delivery_claimed_at=parse_timestamp(row.get("delivery_claimed_at")),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")) or utc_now(),
        )


@dataclass(frozen=True)
class Owner:
    """The account owner whose records are being delivered."""

    user_id: str
    email: str | None = None
    full_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.email or self.user_id


# ============================================================================
# Financial records
# ============================================================================


def format_amount(amount: Decimal, currency: str) -> str:
    """Fixed two-decimal amount with its currency code, e.g. '1,234.50 USD'."""
    return f"{amount.quantize(TWO_PLACES):,.2f} {currency}"


class FinancialRecord(BaseModel):
    """Base for the typed rows exported per category."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    data_category: ClassVar[DataCategory]
    amount_field: ClassVar[str]
    # (column header, attribute) pairs for the PDF summary table
    columns: ClassVar[tuple[tuple[str, str], ...]]

    id: str
    currency: str = DEFAULT_CURRENCY

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("currency", mode="before")
    @classmethod
    def _default_currency(cls, value: Any) -> Any:
        if value is None or value == "":
            return DEFAULT_CURRENCY
        return str(value).upper()

    @model_validator(mode="after")
    def _amount_in_range(self) -> FinancialRecord:
        value = self.amount_value
        if not value.is_finite() or abs(value) >= MAX_AMOUNT:
            raise ValueError(f"{self.amount_field} out of range: {value}")
        return self

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> FinancialRecord:
        return cls.model_validate(dict(row))

    @property
    def amount_value(self) -> Decimal:
        return getattr(self, self.amount_field)

    @property
    def formatted_amount(self) -> str:
        return format_amount(self.amount_value, self.currency)

    def export(self) -> dict[str, Any]:
        """JSON-safe dict with the amount fixed at two decimals."""
        data = self.model_dump(mode="json")
        data[self.amount_field] = str(self.amount_value.quantize(TWO_PLACES))
        return data

    def cell(self, attr: str) -> str:
        if attr == self.amount_field:
            return self.formatted_amount
        value = getattr(self, attr)
        return "" if value is None else str(value)


class AccountRecord(FinancialRecord):
    data_category: ClassVar[DataCategory] = DataCategory.ACCOUNTS
    amount_field: ClassVar[str] = "balance"
    columns: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Account", "name"),
        ("Type", "type"),
        ("Institution", "institution"),
        ("Balance", "balance"),
    )

    name: str
    type: str | None = None
    balance: Decimal = Decimal("0")
    institution: str | None = None
    is_active: bool = True


class TransactionRecord(FinancialRecord):
    data_category: ClassVar[DataCategory] = DataCategory.TRANSACTIONS
    amount_field: ClassVar[str] = "amount"
    columns: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Date", "date"),
        ("Description", "description"),
        ("Category", "category"),
        ("Type", "type"),
        ("Amount", "amount"),
    )

    account_id: str | None = None
    type: str | None = None
    amount: Decimal
    category: str | None = None
    description: str | None = None
    date: str | None = None


class PurchaseRecord(FinancialRecord):
    data_category: ClassVar[DataCategory] = DataCategory.PURCHASES
    amount_field: ClassVar[str] = "price"
    columns: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Item", "item_name"),
        ("Category", "category"),
        ("Status", "status"),
        ("Date", "purchase_date"),
        ("Price", "price"),
    )

    item_name: str
    category: str | None = None
    price: Decimal
    status: str | None = None
    purchase_date: str | None = None


class LoanRecord(FinancialRecord):
    data_category: ClassVar[DataCategory] = DataCategory.LOANS
    amount_field: ClassVar[str] = "amount"
    columns: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Type", "type"),
        ("Person", "person_name"),
        ("Status", "status"),
        ("Due", "due_date"),
        ("Amount", "amount"),
    )

    type: str
    person_name: str
    amount: Decimal
    status: str | None = None
    due_date: str | None = None
    notes: str | None = None


class SavingsRecord(FinancialRecord):
    data_category: ClassVar[DataCategory] = DataCategory.SAVINGS
    amount_field: ClassVar[str] = "amount"
    columns: ClassVar[tuple[tuple[str, str], ...]] = (
        ("Type", "type"),
        ("Note", "note"),
        ("Date", "created_at"),
        ("Amount", "amount"),
    )

    type: str
    amount: Decimal
    note: str | None = None
    created_at: str | None = None


RECORD_TYPES: dict[DataCategory, type[FinancialRecord]] = {
    DataCategory.ACCOUNTS: AccountRecord,
    DataCategory.TRANSACTIONS: TransactionRecord,
    DataCategory.PURCHASES: PurchaseRecord,
    DataCategory.LOANS: LoanRecord,
    DataCategory.SAVINGS: SavingsRecord,
}


@dataclass
class FinancialSnapshot:
    """
    One user's records keyed by category, in DataCategory order.

    Lives for a single pipeline run and is never persisted as-is.
    """

    sections: dict[DataCategory, list[FinancialRecord]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.sections = {c: list(self.sections[c]) for c in DataCategory if c in self.sections}

    def __contains__(self, category: object) -> bool:
        return category in self.sections

    def __iter__(self) -> Iterator[DataCategory]:
        return iter(self.sections)

    def records(self, category: DataCategory) -> list[FinancialRecord]:
        return self.sections.get(category, [])

    def counts(self) -> dict[DataCategory, int]:
        return {category: len(records) for category, records in self.sections.items()}

    def total_records(self) -> int:
        return sum(len(records) for records in self.sections.values())

    def export(self) -> dict[str, list[dict[str, Any]]]:
        """Machine-readable form used for the JSON attachment and the ledger payload."""
        return {
            category.value: [record.export() for record in records]
            for category, records in self.sections.items()
        }


# ============================================================================
# Rendering / dispatch value objects
# ============================================================================


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    mime_type: str


@dataclass(frozen=True)
class Digest:
    """Recipient-specific message rendered from a filtered snapshot."""

    subject: str
    html: str
    text: str
    attachments: tuple[Attachment, ...]
    summary: dict[str, int]
    payload: dict[str, list[dict[str, Any]]]


class Outcome(BaseModel):
    """Result of one send attempt to one recipient."""

    recipient_email: str
    recipient_name: str = ""
    success: bool
    message_id: str | None = None
    error: str | None = None


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class DeliveryLedgerEntry(BaseModel):
    """One append-only row of the delivery ledger."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    recipient_email: str
    status: DeliveryStatus
    error_message: str | None = None
    message_id: str | None = None
    delivery_data: dict[str, Any] | None = None
    test_mode: bool = False
    sent_at: datetime = Field(default_factory=utc_now)

    def to_db_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "recipient_email": self.recipient_email,
            "delivery_status": self.status.value,
            "error_message": self.error_message,
            "message_id": self.message_id,
            "delivery_data": (
                json.dumps(self.delivery_data) if self.delivery_data is not None else None
            ),
            "test_mode": int(self.test_mode),
            "sent_at": self.sent_at.isoformat(),
        }

    @classmethod
    def from_db_row(cls, row: Mapping[str, Any]) -> DeliveryLedgerEntry:
        data = row.get("delivery_data")
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            recipient_email=row["recipient_email"],
            status=DeliveryStatus(row["delivery_status"]),
            error_message=row.get("error_message"),
            message_id=row.get("message_id"),
            delivery_data=json.loads(data) if data else None,
            test_mode=bool(row.get("test_mode")),
            sent_at=parse_timestamp(row["sent_at"]) or utc_now(),
        )


@dataclass(frozen=True)
class DataQualityWarning:
    """A subscription row the scan had to skip."""

    user_id: str | None
    reason: str


@dataclass
class DetectionResult:
    overdue: list[Subscription] = field(default_factory=list)
    warnings: list[DataQualityWarning] = field(default_factory=list)
    scanned: int = 0


class RunSummary(BaseModel):
    """Counts reported by one scheduler invocation."""

    processed_count: int = 0
    emails_sent: int = 0
    emails_failed: int = 0
    claim_conflicts: int = 0
    claim_errors: int = 0
    pipeline_errors: int = 0
    data_quality_warnings: int = 0
    skipped_no_recipients: int = 0
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def message(self) -> str:
        """
        Operator-facing summary. "No overdue subscriptions" only when the run
        found nothing to do; undelivered candidates are always called out.
        """
        problems = [
            f"{count} {label}"
            for count, label in (
                (self.claim_errors, "claim error(s)"),
                (self.pipeline_errors, "pipeline error(s)"),
                (self.skipped_no_recipients, "skipped without recipients"),
            )
            if count
        ]

        if self.processed_count:
            head = (
                f"Processed {self.processed_count} overdue subscription(s): "
                f"{self.emails_sent} email(s) sent, {self.emails_failed} failed"
            )
        elif problems:
            head = "Overdue subscriptions found but none delivered"
        elif self.claim_conflicts:
            head = "Nothing delivered: overdue subscriptions were claimed by another run"
        else:
            return "No overdue subscriptions"

        return "; ".join([head, *problems])

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "processedCount": self.processed_count,
            "emailsSent": self.emails_sent,
            "emailsFailed": self.emails_failed,
            "claimConflicts": self.claim_conflicts,
            "claimErrors": self.claim_errors,
            "pipelineErrors": self.pipeline_errors,
            "dataQualityWarnings": self.data_quality_warnings,
            "skippedNoRecipients": self.skipped_no_recipients,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
