"""
Derived-field recomputation for quotes.

Line totals, subtotal, VAT and grand total are never trusted from input;
they are always rebuilt from quantities, unit prices and option prices.
"""

from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .models import Quote, LineItem, utcnow


def round_half_up(value: Decimal) -> int:
    """Round to the nearest whole currency unit, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def line_total(item: LineItem) -> int:
    """``qty * unitPrice`` clamped at zero."""
    return max(0, round_half_up(Decimal(item.qty) * Decimal(item.unit_price)))


def vat_amount(subtotal: int, vat_rate: float) -> int:
    # str() keeps 0.1 as 0.1 rather than its binary expansion
    return round_half_up(Decimal(subtotal) * Decimal(str(vat_rate)))


def recompute(quote: Quote, now: Optional[datetime] = None) -> Quote:
    """
    Rebuild every derived total of a quote.

    Pure: returns a new Quote and leaves the input untouched. Status, quote
    number and id are carried over as-is. Idempotent for a fixed ``now``.

    Args:
        quote: Quote to recompute
        now: Timestamp stamped into ``lastUpdated`` (defaults to current UTC)

    Returns:
        New Quote with consistent totals
    """
    items = [item.model_copy(update={"total": line_total(item)}) for item in quote.items]
    subtotal = sum(item.total for item in items) + sum(option.price for option in quote.option_lines())
    vat = vat_amount(subtotal, quote.vat_rate)

    return quote.model_copy(
        update={
            "items": items,
            "subtotal": subtotal,
            "vat": vat,
            "grand_total": subtotal + vat,
            "last_updated": now or utcnow(),
        },
        deep=True,
    )
