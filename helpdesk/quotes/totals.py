"""Money arithmetic shared by quotes and invoices.

Every stage is rounded half-up to cents before the next stage consumes it, so
the stored amounts always add up exactly:

    discount = round(subtotal * discount_rate / 100)
    after    = subtotal - discount
    tax      = round(after * tax_rate / 100)
    total    = after + tax

Rates are percentages and are expected to lie in ``[0, 100]``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Protocol, Union

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class HasLineTotal(Protocol):
    line_total: Decimal


Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats such as 0.1 from dragging binary noise into the result
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(quantity: Number, rate: Number) -> Decimal:
    return round2(to_decimal(quantity) * to_decimal(rate))


@dataclass(slots=True, frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    subtotal_after_discount: Decimal
    tax_amount: Decimal
    total_amount: Decimal


def compute_totals(
    items: Iterable[HasLineTotal | Decimal],
    tax_rate: Number,
    discount_rate: Number,
) -> Totals:
    subtotal = round2(
        sum(
            (item if isinstance(item, Decimal) else to_decimal(item.line_total) for item in items),
            Decimal("0"),
        )
    )
    discount_amount = round2(subtotal * to_decimal(discount_rate) / HUNDRED)
    after_discount = round2(subtotal - discount_amount)
    tax_amount = round2(after_discount * to_decimal(tax_rate) / HUNDRED)
    total_amount = round2(after_discount + tax_amount)
    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        subtotal_after_discount=after_discount,
        tax_amount=tax_amount,
        total_amount=total_amount,
    )
