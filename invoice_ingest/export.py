"""
CSV export of stored invoice records.
"""

import csv
import io
from datetime import date
from pathlib import Path
from typing import Optional

from .config import logger
from .schemas import InvoiceRecord

CSV_HEADERS: list[str] = [
    "ID",
    "Vendor",
    "Date",
    "Invoice No",
    "Tax ID",
    "Currency",
    "Subtotal",
    "Tax Rate",
    "Tax Amount",
    "Total",
    "Status",
]


def record_to_row(record: InvoiceRecord) -> list:
    return [
        record.id,
        record.vendor_name or "",
        record.invoice_date or "",
        record.invoice_number or "",
        record.tax_id or "",
        record.currency.value,
        record.subtotal,
        record.tax_rate,
        record.tax_amount,
        record.grand_total,
        record.status.value,
    ]


def records_to_csv(records: list[InvoiceRecord]) -> str:
    """
    Render records as CSV text with a header row.

    Values containing commas, quotes or newlines are quoted.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        writer.writerow(record_to_row(record))
    return buffer.getvalue()


def export_filename(today: Optional[date] = None) -> str:
    """Download name for an export made on the given day."""
    today = today or date.today()
    return f"invoices_export_{today.isoformat()}.csv"


def write_csv(records: list[InvoiceRecord], output_dir: Path, today: Optional[date] = None) -> Path:
    """
    Write an export file into output_dir.

    Returns:
        Path of the written file
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / export_filename(today)

    with open(output_path, "w", encoding="utf-8", newline="") as f:
        f.write(records_to_csv(records))

    logger.info(f"Exported {len(records)} invoices to: {output_path}")
    return output_path
