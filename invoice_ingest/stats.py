"""
Dashboard statistics over stored invoices.

Provides:
- Spend and tax totals per currency
- Review queue size
- Top vendors by total spend
- Tax rate range and average
- Month-over-month spend change for the primary currency
"""

from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from .schemas import (
    CurrencyTotals,
    DashboardStats,
    InvoiceRecord,
    InvoiceStatus,
    MonthOverMonth,
    VendorSpend,
)

UNKNOWN_VENDOR = "Unknown"
TOP_VENDOR_LIMIT = 5

# Turkish letters folded to ASCII so spelling variants of a vendor group together
_TURKISH_TO_ASCII = str.maketrans("İıŞşĞğÜüÖöÇç", "IiSsGgUuOoCc")


def vendor_key(name: Optional[str]) -> str:
    """
    Grouping key for a vendor name.

    Uses the first word of the normalized, upper-cased name when it has at
    least 3 characters, otherwise the whole normalized name.
    """
    if not name or not name.strip():
        return UNKNOWN_VENDOR.upper()

    normalized = name.strip().translate(_TURKISH_TO_ASCII).upper()
    words = normalized.split()
    if words and len(words[0]) >= 3:
        return words[0]
    return normalized


def upload_datetime(record: InvoiceRecord) -> datetime:
    return datetime.fromtimestamp(record.upload_timestamp / 1000, tz=timezone.utc)


def top_vendors(records: list[InvoiceRecord], limit: int = TOP_VENDOR_LIMIT) -> list[VendorSpend]:
    """Vendors with the highest total spend; the first name seen labels each group."""
    groups: dict[str, VendorSpend] = {}

    for record in records:
        key = vendor_key(record.vendor_name)
        if key not in groups:
            groups[key] = VendorSpend(name=record.vendor_name or UNKNOWN_VENDOR, total=0.0)
        groups[key].total += record.grand_total

    ranked = sorted(groups.values(), key=lambda v: v.total, reverse=True)
    return ranked[:limit]


def month_over_month(
    records: list[InvoiceRecord],
    currency: str,
    now: datetime,
) -> MonthOverMonth:
    """Compare this calendar month's spend with the previous one, by upload time."""
    previous = now - relativedelta(months=1)
    current_spend = 0.0
    previous_spend = 0.0

    for record in records:
        if record.currency.value != currency:
            continue
        uploaded = upload_datetime(record)
        if (uploaded.year, uploaded.month) == (now.year, now.month):
            current_spend += record.grand_total
        elif (uploaded.year, uploaded.month) == (previous.year, previous.month):
            previous_spend += record.grand_total

    if previous_spend > 0:
        change = (current_spend - previous_spend) / previous_spend * 100
        direction = "up" if change > 1 else "down" if change < -1 else "stable"
    elif current_spend > 0:
        change = 100.0
        direction = "up"
    else:
        change = 0.0
        direction = "stable"

    return MonthOverMonth(
        currency=currency,
        current_spend=current_spend,
        previous_spend=previous_spend,
        change_percent=round(change, 2),
        direction=direction,
    )


def compute_dashboard_stats(
    records: list[InvoiceRecord],
    now: Optional[datetime] = None,
) -> DashboardStats:
    """
    Aggregate figures for the dashboard.

    Args:
        records: Stored invoices, newest first; the first currency seen is
            treated as the primary currency
        now: Reference time for month-over-month (defaults to current UTC time)
    """
    now = now or datetime.now(timezone.utc)

    currency_totals: dict[str, CurrencyTotals] = {}
    review_count = 0
    tax_rates: list[float] = []

    for record in records:
        totals = currency_totals.setdefault(record.currency.value, CurrencyTotals())
        totals.spend += record.grand_total
        totals.tax += record.tax_amount
        totals.count += 1

        if record.status == InvoiceStatus.REVIEW_REQUIRED:
            review_count += 1
        if record.tax_rate > 0:
            tax_rates.append(record.tax_rate)

    primary_currency = next(iter(currency_totals), None)
    vendors = {record.vendor_name or UNKNOWN_VENDOR for record in records}

    return DashboardStats(
        invoice_count=len(records),
        review_count=review_count,
        currency_totals=currency_totals,
        top_vendors=top_vendors(records),
        vendor_count=len(vendors),
        average_tax_rate=round(sum(tax_rates) / len(tax_rates), 2) if tax_rates else 0.0,
        min_tax_rate=min(tax_rates, default=0.0),
        max_tax_rate=max(tax_rates, default=0.0),
        month_over_month=(
            month_over_month(records, primary_currency, now) if primary_currency else None
        ),
    )


def format_stats_text(stats: DashboardStats) -> str:
    """
    Format DashboardStats as human-readable text for CLI output.
    """
    lines = [
        "=" * 50,
        "INVOICE DASHBOARD",
        "=" * 50,
        f"Invoices stored:          {stats.invoice_count}",
        f"Awaiting review:          {stats.review_count}",
        f"Distinct vendors:         {stats.vendor_count}",
        "",
    ]

    if stats.currency_totals:
        lines.append("Spend by Currency:")
        lines.append("-" * 40)
        for currency, totals in stats.currency_totals.items():
            lines.append(
                f"  {currency}: total {totals.spend:,.2f} | tax {totals.tax:,.2f} | {totals.count} invoice(s)"
            )
        lines.append("")

    if stats.top_vendors:
        lines.append("Top Vendors:")
        lines.append("-" * 40)
        for vendor in stats.top_vendors:
            lines.append(f"  {vendor.name}: {vendor.total:,.2f}")
        lines.append("")

    if stats.max_tax_rate > 0:
        lines.append(
            f"Tax rate: avg {stats.average_tax_rate:g}% "
            f"(min {stats.min_tax_rate:g}%, max {stats.max_tax_rate:g}%)"
        )
        lines.append("")

    mom = stats.month_over_month
    if mom is not None:
        lines.append(
            f"Month over month ({mom.currency}): {mom.current_spend:,.2f} vs "
            f"{mom.previous_spend:,.2f} ({mom.change_percent:+.1f}%, {mom.direction})"
        )
        lines.append("")

    lines.append("=" * 50)

    return "\n".join(lines)
