"""
Order amount calculation: items total, tax, shipping fee, discount.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping

from ordering.domain.order import Amounts, LineItem

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def items_total(line_items: Iterable[LineItem]) -> Decimal:
    """Exact sum of the line subtotals. Only tax is rounded."""
    return sum((item.subtotal for item in line_items), Decimal("0"))


def tax_for(amount: Decimal, rate: Decimal) -> Decimal:
    """Tax rounded half-up to the cent (0.005 rounds away from zero)."""
    return quantize(amount * rate)


def shipping_fee_for(
    shipping_method: str,
    fees: Mapping[str, Decimal],
    subtotal: Decimal,
    free_shipping_threshold: Decimal | None = None,
) -> Decimal | None:
    """Return the fee for ``shipping_method``, or ``None`` if it is not offered."""
    if shipping_method not in fees:
        return None
    if free_shipping_threshold is not None and subtotal >= free_shipping_threshold:
        return Decimal("0.00")
    return quantize(fees[shipping_method])


def compute_amounts(
    line_items: Iterable[LineItem],
    tax_rate: Decimal,
    shipping_fee: Decimal,
    discount: Decimal = Decimal("0"),
) -> Amounts:
    total = items_total(line_items)
    return Amounts(
        items_total=total,
        tax=tax_for(total, tax_rate),
        shipping_fee=quantize(shipping_fee),
        discount=quantize(discount),
    )
