"""
Shared fixtures for the Invoice Ingestion Service tests.
"""

from typing import Callable, Optional, Union

import pytest

from invoice_ingest.errors import IngestionError
from invoice_ingest.schemas import (
    Currency,
    ExtractedFields,
    InvoiceRecord,
    InvoiceStatus,
    RawDocument,
)
from invoice_ingest.store import InMemoryRecordStore

TEST_CREDENTIAL = "sk-test-0123456789abcdef"


def make_fields(**overrides) -> ExtractedFields:
    data = dict(
        vendor_name="Acme Yazilim A.S.",
        tax_id="1234567890",
        invoice_date="2024-01-15",
        invoice_number="ABC2024000000123",
        currency=Currency.TRY,
        subtotal=1000.0,
        tax_rate=20.0,
        tax_amount=200.0,
        grand_total=1200.0,
    )
    data.update(overrides)
    return ExtractedFields(**data)


def make_record(**overrides) -> InvoiceRecord:
    data = make_fields().model_dump()
    data.update(
        id="AB12CD34",
        filename="invoice.png",
        upload_timestamp=1_705_312_800_000,
        status=InvoiceStatus.VALID,
        validation_message=None,
    )
    data.update(overrides)
    return InvoiceRecord(**data)


def make_document(filename: str = "invoice.png", media_type: str = "image/png") -> RawDocument:
    return RawDocument(filename=filename, media_type=media_type, content=b"fake-image-bytes")


Scripted = Union[ExtractedFields, IngestionError, list]


class FakeExtractionClient:
    """
    Stands in for ExtractionClient.

    ``script`` maps a filename to what extract() returns for it: an
    ExtractedFields, an error to raise, or a list of those consumed one per
    call. Unscripted filenames get make_fields().
    """

    def __init__(self, script: Optional[dict[str, Scripted]] = None):
        self.script = dict(script or {})
        self.calls: list[tuple[str, Optional[str]]] = []
        self.contents: list[Optional[bytes]] = []

    async def extract(self, document: RawDocument, credential: Optional[str]) -> ExtractedFields:
        self.calls.append((document.filename, credential))
        self.contents.append(document.content)

        outcome = self.script.get(document.filename, make_fields())
        if isinstance(outcome, list):
            outcome = outcome.pop(0)
        if isinstance(outcome, IngestionError):
            raise outcome
        return outcome


class SleepRecorder:
    """Async sleep replacement that records requested delays instead of waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fields_factory() -> Callable[..., ExtractedFields]:
    return make_fields


@pytest.fixture
def record_factory() -> Callable[..., InvoiceRecord]:
    return make_record


@pytest.fixture
def memory_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
