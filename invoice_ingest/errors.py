"""
Failure types raised while ingesting a document.

The extraction client translates every oracle-side problem into one of these
at the boundary, so the retry scheduler and the pipeline only ever branch on
exception types. An arithmetic mismatch is not an error: it is the normal
REVIEW_REQUIRED status.
"""


class IngestionError(Exception):
    """Base class for per-document ingestion failures."""


class MissingCredential(IngestionError):
    """No credential was supplied; the oracle must not be called."""

    def __init__(self, message: str = "API key is missing. Provide a credential for the extraction service."):
        super().__init__(message)


class RateLimited(IngestionError):
    """The oracle throttled the request (rate limit or exhausted quota)."""


class ExtractionFailed(IngestionError):
    """Any other oracle failure: network, timeout, empty or malformed response."""


class ReadFailed(IngestionError):
    """The document content could not be read locally."""


class StoreFailed(IngestionError):
    """The extracted record could not be written to the record store."""


class BatchCancelled(Exception):
    """Raised at a suspension point once the batch has been cancelled."""
