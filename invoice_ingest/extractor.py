"""
Extraction client for the document-understanding oracle.

This module provides functionality to:
- Send an invoice image or PDF to the oracle with a constrained JSON schema
- Parse the response into ExtractedFields, rejecting anything off-schema
- Translate oracle errors into RateLimited / ExtractionFailed at the boundary
- Run a lightweight credential check against the same oracle
"""

import base64
from typing import Callable, Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from .config import (
    CREDENTIAL_CHECK_MAX_TOKENS,
    EXTRACTION_MODEL,
    EXTRACTION_TEMPERATURE,
    EXTRACTION_TIMEOUT_SECONDS,
    MIN_CREDENTIAL_LENGTH,
    PDF_MEDIA_TYPE,
    logger,
)
from .errors import ExtractionFailed, MissingCredential, RateLimited
from .schemas import (
    CredentialCheck,
    CredentialCheckReason,
    Currency,
    ExtractedFields,
    RawDocument,
)


# ============================================================================
# Request Construction
# ============================================================================

SYSTEM_PROMPT = (
    "You are a professional Financial Audit Specialist. "
    "Extract data from this invoice document with 100% mathematical accuracy."
)

EXTRACTION_INSTRUCTIONS = """Strictly follow these rules:
1. Extract the Vendor Name, Tax ID, Invoice Date, and Invoice Number.
2. Detect the currency (TRY, USD, EUR, GBP). Use UNKNOWN if it cannot be determined.
3. Extract the Subtotal (pre-tax amount), Tax Rate (percentage), Tax Amount, and Grand Total.
4. If a field is not present or cannot be inferred, return null for strings or 0 for numbers.
5. Ensure all number fields are pure floats (no currency symbols).
6. Return the invoice date as YYYY-MM-DD.
7. Return ONLY the JSON object defined in the schema."""

NULLABLE_STRING = ["string", "null"]
NULLABLE_NUMBER = ["number", "null"]

INVOICE_RESPONSE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "vendor_name": {"type": NULLABLE_STRING, "description": "Name of the vendor or supplier."},
        "tax_id": {"type": NULLABLE_STRING, "description": "Tax identification number (VKN/TCKN/VAT ID)."},
        "invoice_date": {"type": NULLABLE_STRING, "description": "Date of the invoice in YYYY-MM-DD format."},
        "invoice_number": {"type": NULLABLE_STRING, "description": "The unique invoice number."},
        "currency": {
            "type": "string",
            "enum": [c.value for c in Currency],
            "description": "Currency code detected from the invoice.",
        },
        "subtotal": {"type": "number", "description": "The subtotal amount before tax."},
        "tax_rate": {"type": NULLABLE_NUMBER, "description": "The tax rate percentage (e.g., 20 for 20%)."},
        "tax_amount": {"type": NULLABLE_NUMBER, "description": "The calculated tax amount."},
        "grand_total": {"type": "number", "description": "The final total amount including tax."},
    },
    # Strict structured output needs every key listed; optional ones are nullable
    "required": [
        "vendor_name", "tax_id", "invoice_date", "invoice_number", "currency",
        "subtotal", "tax_rate", "tax_amount", "grand_total",
    ],
    "additionalProperties": False,
}


def build_document_part(content: bytes, media_type: str, filename: str) -> dict:
    """Encode a document as a chat message content part."""
    data = base64.b64encode(content).decode("ascii")
    data_url = f"data:{media_type};base64,{data}"

    if media_type == PDF_MEDIA_TYPE:
        return {"type": "file", "file": {"filename": filename, "file_data": data_url}}
    return {"type": "image_url", "image_url": {"url": data_url}}


def build_messages(document: RawDocument) -> list[dict]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": [
                build_document_part(document.content, document.media_type, document.filename),
                {"type": "text", "text": EXTRACTION_INSTRUCTIONS},
            ],
        },
    ]


def parse_extraction_response(text: Optional[str]) -> ExtractedFields:
    """
    Parse the oracle's JSON body into ExtractedFields.

    Strict parsing: malformed JSON, unknown keys, missing required keys or
    wrongly typed values all raise ExtractionFailed.
    """
    if not text or not text.strip():
        raise ExtractionFailed("No data returned from the extraction service.")

    try:
        return ExtractedFields.model_validate_json(text, strict=True)
    except ValidationError as e:
        raise ExtractionFailed(f"Extraction response did not match the invoice schema: {e}") from e


def is_rate_limit_error(error: Exception) -> bool:
    """True for throttling or resource exhaustion reported by the oracle."""
    if isinstance(error, openai.RateLimitError):
        return True
    return isinstance(error, openai.APIStatusError) and error.status_code == 429


# ============================================================================
# Client
# ============================================================================

ClientFactory = Callable[[str], AsyncOpenAI]


def default_client_factory(credential: str) -> AsyncOpenAI:
    """
    Build an SDK client for one credential.

    The SDK's own retries are disabled: rate limits are retried by the
    retry scheduler, everything else is a per-document failure.
    """
    return AsyncOpenAI(
        api_key=credential,
        max_retries=0,
        timeout=EXTRACTION_TIMEOUT_SECONDS,
    )


class ExtractionClient:
    """
    Adapter around the oracle that returns ExtractedFields or a typed failure.

    Args:
        model: Oracle model name
        temperature: Sampling temperature; kept low so repeated runs agree
        client_factory: Builds an AsyncOpenAI client for a credential
    """

    def __init__(
        self,
        model: str = EXTRACTION_MODEL,
        temperature: float = EXTRACTION_TEMPERATURE,
        client_factory: ClientFactory = default_client_factory,
    ):
        self.model = model
        self.temperature = temperature
        self._client_factory = client_factory
        self._clients: dict[str, AsyncOpenAI] = {}

    def _client_for(self, credential: str) -> AsyncOpenAI:
        if credential not in self._clients:
            self._clients[credential] = self._client_factory(credential)
        return self._clients[credential]

    async def extract(self, document: RawDocument, credential: Optional[str]) -> ExtractedFields:
        """
        Extract structured fields from a document whose content has been read.

        Raises:
            MissingCredential: No credential supplied; the oracle is not called
            RateLimited: The oracle throttled the request
            ExtractionFailed: Any other failure
        """
        if not credential:
            raise MissingCredential()
        if document.content is None:
            raise ExtractionFailed(f"No content loaded for {document.filename}")

        client = self._client_for(credential)
        logger.info(f"Requesting extraction for {document.filename} ({len(document.content)} bytes, {document.media_type})")

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=build_messages(document),
                response_format={
                    "type": "json_schema",
                    "json_schema": {
                        "name": "invoice_fields",
                        "schema": INVOICE_RESPONSE_SCHEMA,
                        "strict": True,
                    },
                },
                temperature=self.temperature,
            )
        except openai.APIError as e:
            if is_rate_limit_error(e):
                raise RateLimited(f"Extraction service rate limit reached: {e}") from e
            raise ExtractionFailed(f"Extraction service error: {e}") from e

        text = response.choices[0].message.content if response.choices else None
        fields = parse_extraction_response(text)

        logger.info(f"Extracted invoice {fields.invoice_number} from {document.filename}")
        return fields

    async def validate_credential(self, credential: Optional[str]) -> CredentialCheck:
        """
        Confirm a credential is well-formed and accepted by the oracle.

        Makes one tiny completion request with a capped output size.
        """
        if not credential or len(credential.strip()) < MIN_CREDENTIAL_LENGTH:
            return CredentialCheck(
                valid=False,
                reason=CredentialCheckReason.TOO_SHORT,
                message="API key is too short",
            )

        client = self._client_for(credential.strip())
        try:
            await client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": 'Say "OK" in one word.'}],
                max_tokens=CREDENTIAL_CHECK_MAX_TOKENS,
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
            logger.warning(f"Credential rejected by the extraction service: {e}")
            return CredentialCheck(
                valid=False,
                reason=CredentialCheckReason.REJECTED,
                message="API key is not valid. Make sure you entered the correct key.",
            )
        except openai.APIError as e:
            if is_rate_limit_error(e):
                logger.warning(f"Credential check hit quota: {e}")
                return CredentialCheck(
                    valid=False,
                    reason=CredentialCheckReason.QUOTA_EXHAUSTED,
                    message="API quota is exhausted. Try another key.",
                )
            logger.error(f"Credential check failed: {e}")
            return CredentialCheck(
                valid=False,
                reason=CredentialCheckReason.OTHER,
                message=str(e) or "API key could not be verified",
            )

        return CredentialCheck(valid=True, reason=CredentialCheckReason.OK)
