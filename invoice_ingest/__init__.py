"""
Invoice Ingestion Service

A Python service that extracts financial fields from invoice images and PDFs
through a document-understanding model, checks their arithmetic, and keeps
the results for review and CSV export.
"""

__version__ = "0.1.0"
__author__ = "Invoice Ingest Team"

from .schemas import BatchResult, ExtractedFields, InvoiceRecord, InvoiceStatus, RawDocument
from .extractor import ExtractionClient
from .pipeline import IngestionPipeline
from .store import InMemoryRecordStore, JsonRecordStore, RecordStore
from .validator import validate

__all__ = [
    "BatchResult",
    "ExtractedFields",
    "InvoiceRecord",
    "InvoiceStatus",
    "RawDocument",
    "ExtractionClient",
    "IngestionPipeline",
    "InMemoryRecordStore",
    "JsonRecordStore",
    "RecordStore",
    "validate",
]
