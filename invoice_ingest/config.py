"""
Configuration constants and logging for the Invoice Ingestion Service.
"""

import logging
import os
from typing import Final, Optional

# ============================================================================
# Validation Policy
# ============================================================================

# Tolerance for subtotal + tax ≈ grand total. Fixed policy, not configurable.
AMOUNT_TOLERANCE: Final[float] = 0.05

# ============================================================================
# Rate Limiting
# ============================================================================

# Retries after the first rate-limited attempt (4 attempts in total)
MAX_RETRIES: Final[int] = 3

# Backoff before retry k is RETRY_BASE_DELAY_MS * 2**k
RETRY_BASE_DELAY_MS: Final[int] = 5000

# Pause between consecutive documents of one batch
INTER_ITEM_COOLDOWN_MS: Final[int] = 6000

# ============================================================================
# Extraction Oracle
# ============================================================================

EXTRACTION_MODEL: Final[str] = os.getenv("EXTRACTION_MODEL", "gpt-4o-mini")
EXTRACTION_TEMPERATURE: Final[float] = float(os.getenv("EXTRACTION_TEMPERATURE", "0.1"))
EXTRACTION_TIMEOUT_SECONDS: Final[float] = float(os.getenv("EXTRACTION_TIMEOUT_SECONDS", "120"))

# Output cap for the lightweight credential check call
CREDENTIAL_CHECK_MAX_TOKENS: Final[int] = int(os.getenv("CREDENTIAL_CHECK_MAX_TOKENS", "5"))
MIN_CREDENTIAL_LENGTH: Final[int] = 10

# Environment variables searched for the oracle credential, in order
CREDENTIAL_ENV_VARS: Final[tuple[str, ...]] = (
    "INVOICE_INGEST_API_KEY",
    "OPENAI_API_KEY",
)


def get_credential() -> Optional[str]:
    """Return the first non-empty credential found in the environment."""
    for name in CREDENTIAL_ENV_VARS:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


# ============================================================================
# Records
# ============================================================================

RECORD_ID_LENGTH: Final[int] = 8

# JSON file backing the record store
STORE_PATH: Final[str] = os.getenv("INVOICE_STORE_PATH", "invoices.json")

# ============================================================================
# Accepted Uploads
# ============================================================================

PDF_MEDIA_TYPE: Final[str] = "application/pdf"
IMAGE_MEDIA_PREFIX: Final[str] = "image/"


def is_supported_media_type(media_type: Optional[str]) -> bool:
    """Images of any kind and PDF are the only accepted upload types."""
    if not media_type:
        return False
    media_type = media_type.lower().strip()
    return media_type.startswith(IMAGE_MEDIA_PREFIX) or media_type == PDF_MEDIA_TYPE


# ============================================================================
# API Configuration
# ============================================================================

API_HOST: Final[str] = os.getenv("API_HOST", "0.0.0.0")
API_PORT: Final[int] = int(os.getenv("API_PORT", "8000"))
MAX_UPLOAD_SIZE_MB: Final[int] = int(os.getenv("MAX_UPLOAD_SIZE_MB", "10"))

# ============================================================================
# Logging Configuration
# ============================================================================

LOG_LEVEL: Final[str] = os.getenv("LOG_LEVEL", "INFO")

def setup_logging() -> logging.Logger:
    """Configure and return the application logger."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return logging.getLogger("invoice_ingest")


logger = setup_logging()
