"""
Batch ingestion pipeline.

Turns a list of uploaded documents into validated, stored invoice records:

    PENDING -> READING -> EXTRACTING (-> RETRYING) -> VALIDATING -> STORED
                    \\-------------------------------------------> FAILED

Documents are processed strictly one at a time with a fixed cooldown
between consecutive documents; this serialization is how the pipeline stays
under the oracle's request-rate ceiling. A failed document never aborts the
rest of the batch.
"""

import asyncio
import time
import uuid
from dataclasses import replace
from typing import Callable, Iterable, Optional

from .config import (
    INTER_ITEM_COOLDOWN_MS,
    MAX_RETRIES,
    RECORD_ID_LENGTH,
    RETRY_BASE_DELAY_MS,
    logger,
)
from .errors import BatchCancelled, IngestionError, MissingCredential, ReadFailed, StoreFailed
from .extractor import ExtractionClient
from .retry import RetryNotice, SleepFn, with_retry
from .schemas import (
    BatchProgress,
    BatchResult,
    DocumentOutcome,
    DocumentState,
    InvoiceRecord,
    RawDocument,
)
from .store import RecordStore
from .validator import validate

ProgressCallback = Callable[[BatchProgress], None]
ErrorCallback = Callable[[str, IngestionError], None]


def generate_record_id() -> str:
    """Short record id: 8 uppercase hex characters."""
    return uuid.uuid4().hex[:RECORD_ID_LENGTH].upper()


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def filter_supported(documents: Iterable[RawDocument]) -> tuple[list[RawDocument], list[RawDocument]]:
    """
    Split documents into accepted (images and PDF) and rejected ones.

    Returns:
        Tuple of (accepted, rejected), each in input order
    """
    accepted: list[RawDocument] = []
    rejected: list[RawDocument] = []
    for document in documents:
        (accepted if document.is_supported else rejected).append(document)
    return accepted, rejected


async def read_document(document: RawDocument) -> RawDocument:
    """
    Load the full binary content of a document.

    Raises:
        ReadFailed: Unsupported media type, nothing to read, or an OS error
    """
    if not document.is_supported:
        raise ReadFailed(f"Unsupported media type '{document.media_type}' for {document.filename}")

    if document.content is not None:
        return document

    if document.path is None:
        raise ReadFailed(f"No content available for {document.filename}")

    try:
        content = await asyncio.to_thread(document.path.read_bytes)
    except OSError as e:
        raise ReadFailed(f"Could not read {document.filename}: {e}") from e

    return replace(document, content=content)


class IngestionPipeline:
    """
    Sequential, rate-limit-aware batch processor.

    Args:
        client: Extraction client used for every document
        store: Record store that receives completed records
        credential: Default oracle credential; ingest() may override it
        sleep: Async sleep used for cooldowns and backoff waits
        clock: Returns the upload timestamp in epoch milliseconds
        id_factory: Generates record ids
        cooldown_ms: Pause between consecutive documents
        max_retries: Retries after a rate-limited extraction attempt
        base_delay_ms: Backoff base delay
    """

    def __init__(
        self,
        client: ExtractionClient,
        store: RecordStore,
        credential: Optional[str] = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], int] = now_ms,
        id_factory: Callable[[], str] = generate_record_id,
        cooldown_ms: int = INTER_ITEM_COOLDOWN_MS,
        max_retries: int = MAX_RETRIES,
        base_delay_ms: int = RETRY_BASE_DELAY_MS,
    ):
        self.client = client
        self.store = store
        self.credential = credential
        self.cooldown_ms = cooldown_ms
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep
        self._clock = clock
        self._id_factory = id_factory
        # Batches share one rate-limit budget, so they never overlap
        self._batch_lock = asyncio.Lock()

    async def ingest(
        self,
        documents: Iterable[RawDocument],
        credential: Optional[str] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """
        Ingest a batch of documents, one at a time.

        Args:
            documents: Documents to ingest, processed in the given order
            credential: Oracle credential for this batch (defaults to the
                pipeline's); read once here and never refreshed mid-batch
            on_progress: Receives a BatchProgress at every state change
            on_error: Receives (filename, error) for every failed document
            cancel_event: When set, remaining documents are skipped; records
                already stored are kept

        Returns:
            BatchResult with one outcome per document
        """
        documents = list(documents)
        credential = credential or self.credential

        async with self._batch_lock:
            return await self._run_batch(documents, credential, on_progress, on_error, cancel_event)

    async def _run_batch(
        self,
        documents: list[RawDocument],
        credential: Optional[str],
        on_progress: Optional[ProgressCallback],
        on_error: Optional[ErrorCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> BatchResult:
        total = len(documents)
        outcomes: list[DocumentOutcome] = []

        if total == 0:
            logger.info("Empty batch, nothing to ingest")
            return BatchResult()

        logger.info(f"Starting ingestion batch of {total} document(s)")

        if not credential:
            error = MissingCredential()
            logger.error(f"Batch aborted before extraction: {error}")
            for document in documents:
                outcomes.append(self._failed(document, error, on_error))
            return BatchResult(outcomes=outcomes)

        for index, document in enumerate(documents, start=1):
            if index > 1:
                if _is_cancelled(cancel_event):
                    break
                _report(
                    on_progress, index, total, document.filename, DocumentState.PENDING,
                    f"Waiting {self.cooldown_ms / 1000:g}s before next document ({index - 1}/{total} done)",
                )
                await self._sleep(self.cooldown_ms / 1000)

            if _is_cancelled(cancel_event):
                break

            outcomes.append(
                await self._process(index, total, document, credential, on_progress, on_error, cancel_event)
            )

        for document in documents[len(outcomes):]:
            outcomes.append(_skipped(document.filename))

        result = BatchResult(outcomes=outcomes)
        logger.info(f"Batch complete: {result.summary_text()}")
        return result

    async def _process(
        self,
        index: int,
        total: int,
        document: RawDocument,
        credential: str,
        on_progress: Optional[ProgressCallback],
        on_error: Optional[ErrorCallback],
        cancel_event: Optional[asyncio.Event],
    ) -> DocumentOutcome:
        """Run one document through read, extract, validate and store."""
        filename = document.filename

        try:
            _report(on_progress, index, total, filename, DocumentState.READING,
                    f"Reading invoice ({index}/{total}): {filename}")
            loaded = await read_document(document)

            if _is_cancelled(cancel_event):
                return _skipped(filename)

            _report(on_progress, index, total, filename, DocumentState.EXTRACTING,
                    f"Extracting invoice ({index}/{total}): {filename}")

            def on_wait(notice: RetryNotice) -> None:
                _report(on_progress, index, total, filename, DocumentState.RETRYING, notice.message)

            fields = await with_retry(
                lambda: self.client.extract(loaded, credential),
                max_retries=self.max_retries,
                base_delay_ms=self.base_delay_ms,
                sleep=self._sleep,
                on_wait=on_wait,
                should_stop=lambda: _is_cancelled(cancel_event),
            )
        except BatchCancelled:
            logger.info(f"Skipping {filename}: batch cancelled during backoff")
            return _skipped(filename)
        except IngestionError as e:
            return self._failed(document, e, on_error)

        _report(on_progress, index, total, filename, DocumentState.VALIDATING)
        outcome = validate(fields)

        record = InvoiceRecord(
            **fields.model_dump(),
            id=self._id_factory(),
            filename=filename,
            upload_timestamp=self._clock(),
            status=outcome.status,
            validation_message=outcome.message,
        )
        try:
            await asyncio.to_thread(self.store.save, record)
        except OSError as e:
            return self._failed(document, StoreFailed(f"Could not store invoice from {filename}: {e}"), on_error)

        _report(on_progress, index, total, filename, DocumentState.STORED,
                f"Stored invoice {record.id} ({record.status.value})")
        return DocumentOutcome(filename=filename, state=DocumentState.STORED, record=record)

    def _failed(
        self,
        document: RawDocument,
        error: IngestionError,
        on_error: Optional[ErrorCallback],
    ) -> DocumentOutcome:
        logger.error(f"Failed to ingest {document.filename}: {error}")
        if on_error is not None:
            on_error(document.filename, error)
        return DocumentOutcome(
            filename=document.filename,
            state=DocumentState.FAILED,
            error=f"{type(error).__name__}: {error}",
        )


def _is_cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _skipped(filename: str) -> DocumentOutcome:
    return DocumentOutcome(filename=filename, state=DocumentState.SKIPPED, error="Batch cancelled")


def _report(
    on_progress: Optional[ProgressCallback],
    index: int,
    total: int,
    filename: str,
    state: DocumentState,
    message: Optional[str] = None,
) -> None:
    if on_progress is None:
        return
    on_progress(BatchProgress(index=index, total=total, filename=filename, state=state, message=message))
