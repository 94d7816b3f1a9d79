"""
Persistence for invoice records.

Records live in one serialized collection that is scanned linearly by id.
Display order is not a property of the collection: list() sorts by upload
timestamp, newest first, every time it is read.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

from .config import logger
from .schemas import InvoiceRecord, InvoiceUpdate
from .validator import apply_validation


def newest_first(records: list[InvoiceRecord]) -> list[InvoiceRecord]:
    return sorted(records, key=lambda r: r.upload_timestamp, reverse=True)


def recalculate_totals(record: InvoiceRecord) -> InvoiceRecord:
    """
    Derive tax_amount and grand_total from subtotal and tax_rate.

    Both are rounded to 2 decimals.
    """
    tax_amount = round(record.subtotal * (record.tax_rate / 100), 2)
    grand_total = round(record.subtotal + tax_amount, 2)
    return record.model_copy(update={"tax_amount": tax_amount, "grand_total": grand_total})


class RecordStore(ABC):
    """
    Abstract base class for invoice record storage.

    Implementations must accept only fully formed records and must
    re-derive status and message on every write.
    """

    @abstractmethod
    def save(self, record: InvoiceRecord) -> None:
        """Append a new record; status and validation message are re-derived first."""

    @abstractmethod
    def list(self) -> list[InvoiceRecord]:
        """Return all records, newest upload first."""

    @abstractmethod
    def get(self, record_id: str) -> Optional[InvoiceRecord]:
        """Return the record with this id, or None."""

    @abstractmethod
    def update(self, record: InvoiceRecord) -> Optional[InvoiceRecord]:
        """
        Overwrite the stored record with the same id.

        Status and validation message are re-derived from the amounts
        before writing.

        Returns:
            The record as stored, or None if no record has this id
        """

    @abstractmethod
    def delete(self, record_id: str) -> bool:
        """
        Remove a record.

        Returns:
            True if a record was removed, False if the id was unknown
        """

    def edit(
        self,
        record_id: str,
        changes: InvoiceUpdate,
        recalculate: bool = False,
    ) -> Optional[InvoiceRecord]:
        """
        Apply user corrections to a stored record and re-validate it.

        Args:
            record_id: Id of the record to edit
            changes: Fields to overwrite; unset fields are kept
            recalculate: Recompute tax_amount and grand_total from
                subtotal and tax_rate after applying the changes

        Returns:
            The updated record, or None if the id is unknown
        """
        current = self.get(record_id)
        if current is None:
            return None

        merged = current.model_dump()
        merged.update(changes.model_dump(exclude_unset=True))
        edited = InvoiceRecord.model_validate(merged)

        if recalculate:
            edited = recalculate_totals(edited)

        return self.update(edited)


class InMemoryRecordStore(RecordStore):
    """Record store kept in process memory (tests and one-off runs)."""

    def __init__(self, records: Optional[list[InvoiceRecord]] = None):
        self._records: list[InvoiceRecord] = [apply_validation(r) for r in records or []]
        self._lock = threading.Lock()

    def save(self, record: InvoiceRecord) -> None:
        validated = apply_validation(record)
        with self._lock:
            self._records.append(validated)

    def list(self) -> list[InvoiceRecord]:
        with self._lock:
            return newest_first(self._records)

    def get(self, record_id: str) -> Optional[InvoiceRecord]:
        with self._lock:
            return next((r for r in self._records if r.id == record_id), None)

    def update(self, record: InvoiceRecord) -> Optional[InvoiceRecord]:
        validated = apply_validation(record)
        with self._lock:
            for i, existing in enumerate(self._records):
                if existing.id == record.id:
                    self._records[i] = validated
                    return validated
        return None

    def delete(self, record_id: str) -> bool:
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.id != record_id]
            return len(self._records) < before


class JsonRecordStore(RecordStore):
    """
    Record store backed by a single JSON array on disk.

    Features:
    - Persistent storage across restarts
    - Atomic rewrites (temp file + rename)
    - One writer at a time via a process-local lock
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> list[InvoiceRecord]:
        if not self.path.exists():
            return []

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        return [InvoiceRecord.model_validate(item) for item in data]

    def _write(self, records: list[InvoiceRecord]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode="json") for r in records]

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
            raise

    def save(self, record: InvoiceRecord) -> None:
        validated = apply_validation(record)
        with self._lock:
            records = self._load()
            records.append(validated)
            self._write(records)
        logger.info(f"Saved invoice {record.id} ({record.filename}) to {self.path}")

    def list(self) -> list[InvoiceRecord]:
        with self._lock:
            return newest_first(self._load())

    def get(self, record_id: str) -> Optional[InvoiceRecord]:
        with self._lock:
            return next((r for r in self._load() if r.id == record_id), None)

    def update(self, record: InvoiceRecord) -> Optional[InvoiceRecord]:
        validated = apply_validation(record)
        with self._lock:
            records = self._load()
            for i, existing in enumerate(records):
                if existing.id == record.id:
                    records[i] = validated
                    self._write(records)
                    logger.info(f"Updated invoice {record.id}: {validated.status.value}")
                    return validated

        logger.warning(f"Update for unknown invoice id: {record.id}")
        return None

    def delete(self, record_id: str) -> bool:
        with self._lock:
            records = self._load()
            remaining = [r for r in records if r.id != record_id]
            if len(remaining) == len(records):
                return False
            self._write(remaining)

        logger.info(f"Deleted invoice {record_id}")
        return True
