"""
FastAPI application for the Invoice Ingestion Service.

Provides REST API endpoints for:
- Health check
- Batch ingestion of uploaded invoice images and PDFs
- Reviewing, correcting and deleting stored invoices
- CSV export and dashboard statistics
- Credential validation
"""

from typing import List, Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .config import API_HOST, API_PORT, MAX_UPLOAD_SIZE_MB, STORE_PATH, get_credential, logger
from .export import export_filename, records_to_csv
from .extractor import ExtractionClient
from .pipeline import IngestionPipeline, filter_supported
from .schemas import (
    BatchResult,
    CredentialCheck,
    DashboardStats,
    InvoiceRecord,
    InvoiceUpdate,
    RawDocument,
)
from .stats import compute_dashboard_stats
from .store import JsonRecordStore, RecordStore


# ============================================================================
# FastAPI App Configuration
# ============================================================================

app = FastAPI(
    title="Invoice Ingestion Service API",
    description="""
    Invoice Ingestion Service API.

    Upload scanned or photographed invoices; each one is sent to the
    extraction service, checked for arithmetic consistency, and stored
    for review and export.

    ## Features

    - **Ingest**: Upload images or PDFs for sequential, rate-limited extraction
    - **Review**: List, correct and delete stored invoices
    - **Export**: Download all invoices as CSV
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Dependencies
# ============================================================================

_store: Optional[RecordStore] = None
_pipeline: Optional[IngestionPipeline] = None


def get_store() -> RecordStore:
    """Process-wide record store."""
    global _store
    if _store is None:
        _store = JsonRecordStore(STORE_PATH)
    return _store


def get_pipeline(store: RecordStore = Depends(get_store)) -> IngestionPipeline:
    """Process-wide pipeline, so concurrent uploads are serialized by its batch lock."""
    global _pipeline
    if _pipeline is None:
        _pipeline = IngestionPipeline(ExtractionClient(), store)
    return _pipeline


def get_extraction_client() -> ExtractionClient:
    return ExtractionClient()


# ============================================================================
# Request/Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class IngestResponse(BaseModel):
    """Response for the ingest endpoint."""
    result: BatchResult
    rejected: List[str]


class CredentialRequest(BaseModel):
    api_key: str


# ============================================================================
# API Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check() -> HealthResponse:
    """
    Health check endpoint.

    Returns the service status and version information.
    """
    from . import __version__
    return HealthResponse(status="ok", version=__version__)


@app.post(
    "/invoices/ingest",
    response_model=IngestResponse,
    tags=["Ingestion"],
    summary="Ingest invoice images and PDFs",
)
async def ingest_invoices(
    files: List[UploadFile] = File(..., description="Invoice images or PDF files"),
    x_api_key: Optional[str] = Header(None, description="Extraction service credential"),
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> IngestResponse:
    """
    Extract, validate and store a batch of uploaded invoices.

    **Processing Steps:**
    1. Reject files that are not images or PDFs, or exceed the size limit
    2. Send each remaining file to the extraction service, one at a time,
       with a cooldown between files and backoff on rate limits
    3. Check subtotal + tax against the grand total
    4. Store each record; failures are reported per file

    The request stays open until the whole batch has been processed.
    """
    credential = x_api_key or get_credential()
    if not credential:
        raise HTTPException(status_code=401, detail="API key is missing. Send it in the X-API-Key header.")

    max_size = MAX_UPLOAD_SIZE_MB * 1024 * 1024
    documents: List[RawDocument] = []
    rejected: List[str] = []

    for file in files:
        content = await file.read()
        if len(content) > max_size:
            rejected.append(f"{file.filename}: File too large (max {MAX_UPLOAD_SIZE_MB}MB)")
            continue
        documents.append(RawDocument(
            filename=file.filename or "upload",
            media_type=file.content_type or "application/octet-stream",
            content=content,
        ))

    accepted, unsupported = filter_supported(documents)
    rejected.extend(f"{d.filename}: Unsupported file type ({d.media_type})" for d in unsupported)

    if not accepted:
        raise HTTPException(
            status_code=400,
            detail=f"No images or PDFs to ingest. Rejected: {'; '.join(rejected)}",
        )

    logger.info(f"Received ingestion request for {len(accepted)} file(s), {len(rejected)} rejected")
    result = await pipeline.ingest(accepted, credential)

    return IngestResponse(result=result, rejected=rejected)


@app.get("/invoices", response_model=List[InvoiceRecord], tags=["Invoices"])
def list_invoices(store: RecordStore = Depends(get_store)) -> List[InvoiceRecord]:
    """List all stored invoices, newest upload first."""
    return store.list()


@app.get("/invoices/export", tags=["Invoices"], summary="Download invoices as CSV")
def export_invoices(store: RecordStore = Depends(get_store)) -> Response:
    """Export all stored invoices as a CSV attachment."""
    csv_text = records_to_csv(store.list())
    return Response(
        content=csv_text,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@app.get("/invoices/{record_id}", response_model=InvoiceRecord, tags=["Invoices"])
def get_invoice(record_id: str, store: RecordStore = Depends(get_store)) -> InvoiceRecord:
    record = store.get(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return record


@app.put("/invoices/{record_id}", response_model=InvoiceRecord, tags=["Invoices"])
def update_invoice(
    record_id: str,
    changes: InvoiceUpdate,
    recalculate: bool = False,
    store: RecordStore = Depends(get_store),
) -> InvoiceRecord:
    """
    Correct a stored invoice.

    The arithmetic check is re-run on the corrected amounts; status and
    validation message are always derived, never set directly.
    """
    record = store.edit(record_id, changes, recalculate=recalculate)
    if record is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return record


@app.delete("/invoices/{record_id}", status_code=204, tags=["Invoices"])
def delete_invoice(record_id: str, store: RecordStore = Depends(get_store)) -> Response:
    if not store.delete(record_id):
        raise HTTPException(status_code=404, detail="Invoice not found")
    return Response(status_code=204)


@app.get("/stats", response_model=DashboardStats, tags=["Invoices"])
def dashboard_stats(store: RecordStore = Depends(get_store)) -> DashboardStats:
    """Spend, tax, vendor and review figures over all stored invoices."""
    return compute_dashboard_stats(store.list())


@app.post("/credentials/validate", response_model=CredentialCheck, tags=["System"])
async def validate_credential(
    request: CredentialRequest,
    client: ExtractionClient = Depends(get_extraction_client),
) -> CredentialCheck:
    """Check that an API key is accepted by the extraction service."""
    return await client.validate_credential(request.api_key)


# ============================================================================
# Error Handlers
# ============================================================================

@app.exception_handler(Exception)
async def generic_exception_handler(request, exc):
    """Handle unexpected exceptions."""
    logger.exception(f"Unexpected error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# ============================================================================
# Startup/Shutdown Events
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup information."""
    logger.info(f"Invoice Ingestion Service API starting on {API_HOST}:{API_PORT}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    logger.info("Invoice Ingestion Service API shutting down")


# ============================================================================
# Main Entry Point
# ============================================================================

def run_server():
    """Run the API server using uvicorn."""
    import uvicorn
    uvicorn.run(app, host=API_HOST, port=API_PORT)


if __name__ == "__main__":
    run_server()
