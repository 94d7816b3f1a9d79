"""
Pydantic models for extracted invoice data, stored records and batch results.

This module defines the core data structures used throughout the Invoice Ingestion Service:
- ExtractedFields for the oracle's structured output
- InvoiceRecord for validated, persisted invoices
- RawDocument, DocumentOutcome and BatchResult for the ingestion pipeline
- CredentialCheck and DashboardStats for the service boundaries
"""

import mimetypes
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from .config import is_supported_media_type


# ============================================================================
# Enumerations
# ============================================================================

class Currency(str, Enum):
    """Currencies the extraction oracle is allowed to report."""
    TRY = "TRY"
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"
    UNKNOWN = "UNKNOWN"


class InvoiceStatus(str, Enum):
    """Status of a stored invoice record."""
    VALID = "VALID"
    REVIEW_REQUIRED = "REVIEW_REQUIRED"
    PROCESSING = "PROCESSING"
    ERROR = "ERROR"


class DocumentState(str, Enum):
    """Per-document state inside one ingestion batch."""
    PENDING = "PENDING"
    READING = "READING"
    EXTRACTING = "EXTRACTING"
    RETRYING = "RETRYING"
    VALIDATING = "VALIDATING"
    STORED = "STORED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class CredentialCheckReason(str, Enum):
    OK = "OK"
    TOO_SHORT = "TOO_SHORT"
    REJECTED = "REJECTED"
    QUOTA_EXHAUSTED = "QUOTA_EXHAUSTED"
    OTHER = "OTHER"


AMOUNT_FIELDS: tuple[str, ...] = ("subtotal", "tax_rate", "tax_amount", "grand_total")


# ============================================================================
# Extraction Output
# ============================================================================

class ExtractedFields(BaseModel):
    """
    Structured financial fields returned by the extraction oracle.

    Immutable once produced. Amounts the oracle could not find are reported
    as 0 (a JSON null is accepted and coerced to 0.0).
    """

    vendor_name: Optional[str] = Field(
        ...,
        description="Name of the vendor or supplier"
    )
    tax_id: Optional[str] = Field(
        None,
        description="Tax identification number (VKN/TCKN/VAT ID)"
    )
    invoice_date: Optional[str] = Field(
        ...,
        description="Invoice date, expected as YYYY-MM-DD (not enforced)"
    )
    invoice_number: Optional[str] = Field(
        None,
        description="Invoice number assigned by the vendor"
    )
    currency: Currency = Field(
        ...,
        description="Currency code detected on the invoice"
    )
    subtotal: float = Field(
        ...,
        description="Pre-tax amount"
    )
    tax_rate: float = Field(
        0.0,
        description="Tax rate percentage (20 means 20%)"
    )
    tax_amount: float = Field(
        0.0,
        description="Tax amount"
    )
    grand_total: float = Field(
        ...,
        description="Final amount including tax"
    )

    @field_validator(*AMOUNT_FIELDS, mode="before")
    @classmethod
    def missing_amount_is_zero(cls, v):
        """Treat a null amount as 0."""
        return 0.0 if v is None else v

    model_config = {
        "frozen": True,
        "extra": "forbid",
        "json_schema_extra": {
            "examples": [
                {
                    "vendor_name": "Acme Yazilim A.S.",
                    "tax_id": "1234567890",
                    "invoice_date": "2024-01-15",
                    "invoice_number": "ABC2024000000123",
                    "currency": "TRY",
                    "subtotal": 1000.00,
                    "tax_rate": 20.0,
                    "tax_amount": 200.00,
                    "grand_total": 1200.00,
                }
            ]
        },
    }


class ValidationOutcome(BaseModel):
    """Result of the arithmetic check."""
    status: InvoiceStatus
    message: Optional[str] = None


# ============================================================================
# Stored Records
# ============================================================================

class InvoiceRecord(ExtractedFields):
    """
    A validated invoice as kept in the record store.

    Only ever stored fully formed. Its status is always derived from its own
    amounts by the validator; edits go through RecordStore.update.
    """

    id: str = Field(
        ...,
        min_length=1,
        description="Short unique identifier generated at ingestion time"
    )
    filename: str = Field(
        ...,
        description="Original filename of the uploaded document"
    )
    upload_timestamp: int = Field(
        ...,
        ge=0,
        description="Upload time in epoch milliseconds"
    )
    status: InvoiceStatus = Field(
        ...,
        description="Validation status derived from the amounts"
    )
    validation_message: Optional[str] = Field(
        None,
        description="Human-readable reason when review is required"
    )

    def extracted_fields(self) -> ExtractedFields:
        """Return the extracted part of this record."""
        return ExtractedFields(**self.model_dump(include=set(ExtractedFields.model_fields)))


class InvoiceUpdate(BaseModel):
    """User corrections to a stored record. Unset fields are left unchanged."""
    vendor_name: Optional[str] = None
    tax_id: Optional[str] = None
    invoice_date: Optional[str] = None
    invoice_number: Optional[str] = None
    currency: Optional[Currency] = None
    subtotal: Optional[float] = None
    tax_rate: Optional[float] = None
    tax_amount: Optional[float] = None
    grand_total: Optional[float] = None

    model_config = {"extra": "forbid"}


# ============================================================================
# Ingestion Pipeline
# ============================================================================

@dataclass
class RawDocument:
    """
    An uploaded document waiting to be ingested.

    Either ``content`` is already in memory (API uploads) or ``path`` points
    at a file that is read when the pipeline reaches it.
    """
    filename: str
    media_type: str
    content: Optional[bytes] = None
    path: Optional[Path] = None

    @classmethod
    def from_path(cls, path: Path, media_type: Optional[str] = None) -> "RawDocument":
        if media_type is None:
            media_type, _ = mimetypes.guess_type(path.name)
        return cls(
            filename=path.name,
            media_type=media_type or "application/octet-stream",
            path=path,
        )

    @property
    def is_supported(self) -> bool:
        return is_supported_media_type(self.media_type)


class DocumentOutcome(BaseModel):
    """Final disposition of one document in a batch."""
    filename: str
    state: DocumentState
    record: Optional[InvoiceRecord] = None
    error: Optional[str] = None


class BatchProgress(BaseModel):
    """Incremental progress notice emitted while a batch runs."""
    index: int = Field(..., ge=1, description="1-based position of the current document")
    total: int = Field(..., ge=0)
    filename: str
    state: DocumentState
    message: Optional[str] = None


class BatchResult(BaseModel):
    """Per-document outcomes of one batch plus aggregate counts."""
    outcomes: list[DocumentOutcome] = Field(default_factory=list)

    @computed_field
    @property
    def total(self) -> int:
        return len(self.outcomes)

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.state == DocumentState.STORED)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.state == DocumentState.FAILED)

    @computed_field
    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.state == DocumentState.SKIPPED)

    @property
    def records(self) -> list[InvoiceRecord]:
        return [o.record for o in self.outcomes if o.record is not None]

    def summary_text(self) -> str:
        return f"{self.succeeded}/{self.total} invoices ingested"


# ============================================================================
# Boundaries
# ============================================================================

class CredentialCheck(BaseModel):
    """Outcome of validating a credential against the oracle."""
    valid: bool
    reason: CredentialCheckReason
    message: Optional[str] = None


class CurrencyTotals(BaseModel):
    spend: float = 0.0
    tax: float = 0.0
    count: int = 0


class VendorSpend(BaseModel):
    name: str
    total: float


class MonthOverMonth(BaseModel):
    """Spend in the current vs. previous calendar month for one currency."""
    currency: str
    current_spend: float = 0.0
    previous_spend: float = 0.0
    change_percent: float = 0.0
    direction: str = Field("stable", description="One of: up, down, stable")


class DashboardStats(BaseModel):
    """Aggregate figures over all stored invoices."""
    invoice_count: int = Field(0, ge=0)
    review_count: int = Field(0, ge=0)
    currency_totals: dict[str, CurrencyTotals] = Field(default_factory=dict)
    top_vendors: list[VendorSpend] = Field(default_factory=list)
    vendor_count: int = Field(0, ge=0)
    average_tax_rate: float = 0.0
    min_tax_rate: float = 0.0
    max_tax_rate: float = 0.0
    month_over_month: Optional[MonthOverMonth] = None
