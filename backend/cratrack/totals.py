from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable


TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class Totals:
    total_days: Decimal
    total_amount: int


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored or submitted quantity to ``Decimal`` without passing through float."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(str(value))


def line_total(quantity: Any, unit_price: int) -> int:
    """Amount of one entry in minor units, rounded half-up for display."""
    return _to_minor_units(to_decimal(quantity) * int(unit_price))


def _to_minor_units(amount: Decimal) -> int:
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_totals(entries: Iterable[Any]) -> Totals:
    """Sum quantities and exact amounts of live entries; the amount is rounded once."""
    total_days = Decimal("0")
    total_amount = Decimal("0")
    for entry in entries:
        if getattr(entry, "deleted_at", None) is not None:
            continue
        quantity = to_decimal(entry.quantity)
        total_days += quantity
        total_amount += quantity * int(entry.unit_price)
    return Totals(total_days=total_days.quantize(TWO_PLACES), total_amount=_to_minor_units(total_amount))
