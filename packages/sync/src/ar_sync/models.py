"""Data types for payment application fetch and resync runs."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from ar_sync.errors import ConfigurationError


class LogSeverity(str, Enum):
    """Severity of an operator log entry."""

    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class LogEntry:
    """A single line in the operator log."""

    message: str
    severity: LogSeverity = LogSeverity.INFO
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_text(self) -> str:
        """Render as an exported log line."""
        return f"[{self.timestamp:%H:%M:%S}] {self.severity.value.upper()}: {self.message}"


def _optional_float(value: Any) -> float | None:
    return float(value) if value is not None else None


@dataclass(frozen=True)
class WorkItem:
    """A payment whose applications are being fetched."""

    id: str
    reference_number: str
    customer_id: str | None = None
    amount: float | None = None
    doc_type: str | None = None
    application_date: str | None = None
    status: str | None = None
    balance: float | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "WorkItem":
        """Build from an ``acumatica_payments`` row."""
        return cls(
            id=str(row["id"]),
            reference_number=str(row["reference_number"]),
            customer_id=row.get("customer_id"),
            amount=_optional_float(row.get("payment_amount")),
            doc_type=row.get("type"),
            application_date=row.get("application_date"),
            status=row.get("status"),
            balance=_optional_float(row.get("balance")),
        )


def _first(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


@dataclass(frozen=True)
class Application:
    """How part of a payment was applied to an invoice or credit memo."""

    invoice_ref: str | None = None
    amount_paid: float = 0.0
    balance: float = 0.0
    doc_type: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Application":
        """Parse either the ERP field names or the database column names."""
        return cls(
            invoice_ref=_first(data, "RefNbr", "refNbr", "invoice_ref"),
            amount_paid=float(_first(data, "AmountPaid", "amountPaid", "amount_paid", default=0)),
            balance=float(_first(data, "Balance", "balance", default=0)),
            doc_type=_first(data, "DocType", "docType", "doc_type"),
        )

    def describe(self, index: int) -> str:
        return (
            f"  └─ App {index}: Invoice {self.invoice_ref or 'N/A'} | "
            f"Amount: ${self.amount_paid:.2f} | "
            f"Balance: ${self.balance:.2f} | "
            f"Doc Type: {self.doc_type or 'N/A'}"
        )


@dataclass(frozen=True)
class RunConfiguration:
    """Batching parameters for a batch fetch run.

    Delays are in seconds. ``group_delay`` follows every concurrent group and
    ``batch_delay`` separates outer batches.
    """

    batch_size: int = 200
    concurrency: int = 5
    group_delay: float = 0.01
    batch_delay: float = 0.2

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigurationError("Batch size must be at least 1")
        if self.concurrency < 1:
            raise ConfigurationError("Concurrency must be at least 1")
        if self.group_delay < 0 or self.batch_delay < 0:
            raise ConfigurationError("Delays cannot be negative")


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one scheduler pass."""

    processed: int
    successful: int
    failed: int
    elapsed_seconds: float
    cancelled: bool = False

    @property
    def items_per_second(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.processed / self.elapsed_seconds


@dataclass(frozen=True)
class ResyncBreakdown:
    """Applications found in one resync batch, by document type."""

    invoices: int = 0
    credit_memos: int = 0
    other: int = 0


@dataclass(frozen=True)
class ResyncResult:
    """Response of the server-side resync batch endpoint.

    ``next_skip`` and ``complete`` form the continuation token for the next
    round trip.
    """

    success: bool
    message: str | None = None
    error: str | None = None
    processed: int = 0
    total_applications: int = 0
    breakdown: ResyncBreakdown = field(default_factory=ResyncBreakdown)
    total_payments: int = 0
    remaining: int = 0
    next_skip: int | None = None
    complete: bool = False
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResyncResult":
        breakdown = data.get("breakdown") or {}
        return cls(
            success=bool(data.get("success", False)),
            message=data.get("message"),
            error=data.get("error"),
            processed=int(data.get("processed") or 0),
            total_applications=int(data.get("totalApplications") or 0),
            breakdown=ResyncBreakdown(
                invoices=int(breakdown.get("invoices") or 0),
                credit_memos=int(breakdown.get("creditMemos") or 0),
                other=int(breakdown.get("other") or 0),
            ),
            total_payments=int(data.get("totalPayments") or 0),
            remaining=int(data.get("remaining") or 0),
            next_skip=data.get("nextSkip") or None,
            complete=bool(data.get("complete", False)),
            duration_ms=int(data.get("durationMs") or 0),
            errors=list(data.get("errors") or []),
        )


@dataclass(frozen=True)
class ResyncTotals:
    """Running totals across every batch of a resync run."""

    processed: int = 0
    applications: int = 0
    invoices: int = 0
    credit_memos: int = 0
    other: int = 0
    errors: int = 0

    def add(self, result: ResyncResult) -> "ResyncTotals":
        return ResyncTotals(
            processed=self.processed + result.processed,
            applications=self.applications + result.total_applications,
            invoices=self.invoices + result.breakdown.invoices,
            credit_memos=self.credit_memos + result.breakdown.credit_memos,
            other=self.other + result.breakdown.other,
            errors=self.errors + len(result.errors),
        )


@dataclass(frozen=True)
class BatchLogEntry:
    """One resync round trip, as shown in the batch history."""

    batch: int
    skip: int
    processed: int
    applications: int
    duration_ms: int
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
