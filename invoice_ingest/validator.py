"""
Arithmetic validation for extracted invoices.

A single linear rule decides the status of every record:
subtotal + tax_amount must match grand_total within AMOUNT_TOLERANCE.
The check is pure and never raises; a mismatch is reported as
REVIEW_REQUIRED with a message a human reviewer can act on.
"""

from collections.abc import Mapping
from typing import Optional, Union

from .config import AMOUNT_TOLERANCE
from .schemas import ExtractedFields, InvoiceRecord, InvoiceStatus, ValidationOutcome


def format_amount(value: Optional[float]) -> str:
    """Render an amount the way it was entered: 100.0 -> '100', 100.5 -> '100.5'."""
    if value is None:
        return "0"
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def validate_amounts(
    subtotal: Optional[float],
    tax_amount: Optional[float],
    grand_total: Optional[float],
) -> ValidationOutcome:
    """
    Check that subtotal + tax_amount equals grand_total within tolerance.

    Missing amounts count as 0. The tax rate plays no part in the check.
    """
    sub = subtotal or 0.0
    tax = tax_amount or 0.0
    total = grand_total or 0.0

    calculated = sub + tax
    diff = abs(calculated - total)

    if diff < AMOUNT_TOLERANCE:
        return ValidationOutcome(status=InvoiceStatus.VALID)

    return ValidationOutcome(
        status=InvoiceStatus.REVIEW_REQUIRED,
        message=(
            f"Math mismatch: Subtotal ({format_amount(sub)}) + Tax ({format_amount(tax)}) "
            f"!= Total ({format_amount(total)}). Diff: {diff:.2f}"
        ),
    )


def validate(fields: Union[ExtractedFields, Mapping]) -> ValidationOutcome:
    """
    Validate extracted fields or a plain mapping of them.

    Args:
        fields: ExtractedFields, InvoiceRecord, or a dict with any of
            subtotal, tax_amount, grand_total

    Returns:
        ValidationOutcome with status VALID or REVIEW_REQUIRED
    """
    if isinstance(fields, Mapping):
        return validate_amounts(
            fields.get("subtotal"),
            fields.get("tax_amount"),
            fields.get("grand_total"),
        )
    return validate_amounts(fields.subtotal, fields.tax_amount, fields.grand_total)


def apply_validation(record: InvoiceRecord) -> InvoiceRecord:
    """Return a copy of the record with status and message re-derived from its amounts."""
    outcome = validate(record)
    return record.model_copy(
        update={
            "status": outcome.status,
            "validation_message": outcome.message,
        }
    )
