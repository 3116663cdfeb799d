"""
Order/invoice pricing rules.

Formula (round-half-up once per stage, never re-rounded):
    line_total = round(qty * unit_price * (100 - line_discount%) / 100)
    subtotal   = sum(line_total)
    discount   = round(subtotal * discount% / 100)
    tax        = round((subtotal - discount) * tax% / 100)
    total      = subtotal - discount + tax

Example: 2 x 1000 + 1 x 500, discount 10%, tax 5%
    subtotal 2500, discount 250, tax round(112.5) = 113, total 2363
"""

from dataclasses import dataclass
from typing import Iterable

from billing.core.exceptions import ValidationError
from billing.utils.money import ensure_cents, ensure_percent, percent_of, round_half_up


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int

    def as_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


def line_total(qty: int, unit_price_cents: int, discount_percent: int = 0) -> int:
    """Total of one line after its own discount."""
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError("Quantity must be greater than 0")
    ensure_cents(unit_price_cents, "unit_price_cents")
    ensure_percent(discount_percent, "discount_percent")
    return round_half_up(qty * unit_price_cents * (100 - discount_percent), 100)


def totals_from_line_totals(line_totals: Iterable[int], discount_percent: int = 0, tax_percent: int = 0) -> Totals:
    ensure_percent(discount_percent, "discount_percent")
    ensure_percent(tax_percent, "tax_percent")

    subtotal = sum(line_totals)
    discount = percent_of(subtotal, discount_percent)
    tax = percent_of(subtotal - discount, tax_percent)
    return Totals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        tax_cents=tax,
        total_cents=subtotal - discount + tax,
    )


def recompute_totals(items: Iterable, discount_percent: int = 0, tax_percent: int = 0) -> Totals:
    """
    Pure function from line items + document percentages to the four totals.

    ``items`` are order/invoice rows (or anything with ``total_cents``); the
    stored line totals are summed as-is. Calling it twice without a mutation in
    between always yields the same result.
    """
    return totals_from_line_totals(
        (item.total_cents for item in items),
        discount_percent=discount_percent,
        tax_percent=tax_percent,
    )


def apply_totals(document, totals: Totals) -> None:
    """Write totals onto an Order/Invoice row (fields it lacks are skipped)."""
    for field, value in totals.as_dict().items():
        if hasattr(document, field):
            setattr(document, field, value)
