"""
Command-line interface for the Invoice Ingestion Service.

Provides commands to:
- ingest: Extract, validate and store invoices from images and PDFs
- list / show / edit / delete: Review stored invoices
- export: Write all invoices to a CSV file
- stats: Show dashboard figures
- check-key: Verify an extraction service credential
"""

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from .config import STORE_PATH, get_credential, logger
from .errors import IngestionError
from .export import write_csv
from .extractor import ExtractionClient
from .pipeline import IngestionPipeline, filter_supported
from .schemas import BatchProgress, Currency, DocumentState, InvoiceStatus, InvoiceUpdate, RawDocument
from .stats import compute_dashboard_stats, format_stats_text
from .store import JsonRecordStore, RecordStore


# Create Typer app
app = typer.Typer(
    name="invoice-ingest",
    help="Invoice Ingestion Service CLI",
    add_completion=False,
)


STORE_OPTION = typer.Option(
    Path(STORE_PATH),
    "--store",
    help="JSON file holding the invoice records",
    envvar="INVOICE_STORE_PATH",
)

API_KEY_OPTION = typer.Option(
    None,
    "--api-key",
    help="Extraction service credential (defaults to INVOICE_INGEST_API_KEY or OPENAI_API_KEY)",
)


def create_store(store_path: Path) -> RecordStore:
    return JsonRecordStore(store_path)


def create_pipeline(store: RecordStore, credential: Optional[str]) -> IngestionPipeline:
    return IngestionPipeline(ExtractionClient(), store, credential)


def collect_documents(paths: List[Path]) -> List[RawDocument]:
    """Expand directories (non-recursively) and wrap every file as a RawDocument."""
    documents: List[RawDocument] = []
    for path in paths:
        if path.is_dir():
            files = sorted(p for p in path.iterdir() if p.is_file())
        else:
            files = [path]
        documents.extend(RawDocument.from_path(f) for f in files)
    return documents


def _print_progress(progress: BatchProgress) -> None:
    if progress.message:
        typer.echo(f"  [{progress.index}/{progress.total}] {progress.message}")


def _print_error(filename: str, error: IngestionError) -> None:
    typer.echo(f"  Error processing {filename}: {error}", err=True)


@app.command()
def ingest(
    paths: List[Path] = typer.Argument(
        ...,
        help="Invoice files or directories containing them",
        exists=True,
        resolve_path=True,
    ),
    store_path: Path = STORE_OPTION,
    api_key: Optional[str] = API_KEY_OPTION,
) -> None:
    """
    Ingest invoice images and PDFs.

    Documents are processed one at a time with a cooldown between them to
    respect the extraction service's rate limit. Failed documents are
    reported and the batch continues.
    """
    credential = api_key or get_credential()
    if not credential:
        typer.echo("Error: no API key. Pass --api-key or set INVOICE_INGEST_API_KEY.", err=True)
        raise typer.Exit(code=1)

    accepted, rejected = filter_supported(collect_documents(paths))
    for document in rejected:
        typer.echo(f"Skipping unsupported file: {document.filename} ({document.media_type})", err=True)

    if not accepted:
        typer.echo("No images or PDFs to ingest.", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"Ingesting {len(accepted)} document(s) into: {store_path}")

    pipeline = create_pipeline(create_store(store_path), credential)
    try:
        result = asyncio.run(
            pipeline.ingest(accepted, on_progress=_print_progress, on_error=_print_error)
        )
    except Exception as e:
        typer.echo(f"Error during ingestion: {e}", err=True)
        logger.exception("Ingestion failed")
        raise typer.Exit(code=1)

    typer.echo("")
    for outcome in result.outcomes:
        if outcome.state == DocumentState.STORED:
            record = outcome.record
            typer.echo(f"  [OK] {outcome.filename} -> {record.id} ({record.status.value})")
        else:
            typer.echo(f"  [{outcome.state.value}] {outcome.filename}: {outcome.error}")

    typer.echo(f"\n{result.summary_text()}")

    if result.succeeded == 0:
        raise typer.Exit(code=1)


@app.command("list")
def list_invoices(
    store_path: Path = STORE_OPTION,
    review_only: bool = typer.Option(
        False,
        "--review-only",
        help="Only show invoices that need review",
    ),
) -> None:
    """List stored invoices, newest first."""
    records = create_store(store_path).list()
    if review_only:
        records = [r for r in records if r.status == InvoiceStatus.REVIEW_REQUIRED]

    if not records:
        typer.echo("No invoices stored.")
        return

    for r in records:
        typer.echo(
            f"{r.id} | {r.invoice_date or '-':<10} | {r.vendor_name or 'Unknown'} | "
            f"{r.grand_total:,.2f} {r.currency.value} | {r.status.value}"
        )
    typer.echo(f"\n{len(records)} invoice(s)")


@app.command()
def show(
    record_id: str = typer.Argument(..., help="Invoice id"),
    store_path: Path = STORE_OPTION,
) -> None:
    """Show one invoice as JSON."""
    record = create_store(store_path).get(record_id)
    if record is None:
        typer.echo(f"Invoice not found: {record_id}", err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(record.model_dump(mode="json"), indent=2, ensure_ascii=False))


@app.command()
def edit(
    record_id: str = typer.Argument(..., help="Invoice id"),
    store_path: Path = STORE_OPTION,
    vendor_name: Optional[str] = typer.Option(None, "--vendor"),
    tax_id: Optional[str] = typer.Option(None, "--tax-id"),
    invoice_date: Optional[str] = typer.Option(None, "--date", help="Invoice date (YYYY-MM-DD)"),
    invoice_number: Optional[str] = typer.Option(None, "--number"),
    currency: Optional[Currency] = typer.Option(None, "--currency"),
    subtotal: Optional[float] = typer.Option(None, "--subtotal"),
    tax_rate: Optional[float] = typer.Option(None, "--tax-rate"),
    tax_amount: Optional[float] = typer.Option(None, "--tax-amount"),
    grand_total: Optional[float] = typer.Option(None, "--total"),
    recalculate: bool = typer.Option(
        False,
        "--recalculate",
        help="Recompute tax amount and total from subtotal and tax rate",
    ),
) -> None:
    """
    Correct the fields of a stored invoice.

    The arithmetic check is re-run and the status updated accordingly.
    """
    given = {
        "vendor_name": vendor_name,
        "tax_id": tax_id,
        "invoice_date": invoice_date,
        "invoice_number": invoice_number,
        "currency": currency,
        "subtotal": subtotal,
        "tax_rate": tax_rate,
        "tax_amount": tax_amount,
        "grand_total": grand_total,
    }
    changes = InvoiceUpdate(**{k: v for k, v in given.items() if v is not None})

    if not changes.model_fields_set and not recalculate:
        typer.echo("Nothing to change. Pass at least one field option.", err=True)
        raise typer.Exit(code=1)

    record = create_store(store_path).edit(record_id, changes, recalculate=recalculate)
    if record is None:
        typer.echo(f"Invoice not found: {record_id}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Updated {record.id}: {record.status.value}")
    if record.validation_message:
        typer.echo(f"  {record.validation_message}")


@app.command()
def delete(
    record_id: str = typer.Argument(..., help="Invoice id"),
    store_path: Path = STORE_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a stored invoice."""
    if not yes:
        typer.confirm(f"Delete invoice {record_id}?", abort=True)

    if not create_store(store_path).delete(record_id):
        typer.echo(f"Invoice not found: {record_id}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Deleted {record_id}")


@app.command()
def export(
    store_path: Path = STORE_OPTION,
    output_dir: Path = typer.Option(
        Path("."),
        "--output-dir",
        "-o",
        help="Directory for the CSV file",
        file_okay=False,
        dir_okay=True,
    ),
) -> None:
    """Export all stored invoices to CSV."""
    records = create_store(store_path).list()
    output_path = write_csv(records, output_dir)
    typer.echo(f"[OK] Exported {len(records)} invoice(s) to: {output_path}")


@app.command()
def stats(store_path: Path = STORE_OPTION) -> None:
    """Show spend, tax and review figures."""
    records = create_store(store_path).list()
    typer.echo(format_stats_text(compute_dashboard_stats(records)))


@app.command("check-key")
def check_key(api_key: Optional[str] = API_KEY_OPTION) -> None:
    """Check that an API key is accepted by the extraction service."""
    credential = api_key or get_credential()
    result = asyncio.run(ExtractionClient().validate_credential(credential))

    if not result.valid:
        typer.echo(f"API key invalid ({result.reason.value}): {result.message}", err=True)
        raise typer.Exit(code=1)

    typer.echo("[OK] API key accepted")


@app.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    typer.echo(f"Invoice Ingestion Service v{__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
