from __future__ import annotations

import datetime as dt
from decimal import Decimal, InvalidOperation
from typing import Any, Optional


def normalize_text(value: Any) -> Optional[str]:
    """Return stripped text, or ``None`` for missing or blank input."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_currency(value: Any) -> Optional[str]:
    text = normalize_text(value)
    if text is None:
        return None
    return text.upper()


def parse_quantity(value: Any) -> Optional[Decimal]:
    """Parse a quantity into a ``Decimal``; ``None`` when it is not a finite number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        value = repr(value)
    try:
        quantity = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not quantity.is_finite():
        return None
    return quantity


def decimal_places(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    if not isinstance(exponent, int) or exponent >= 0:
        return 0
    return -exponent


def parse_date(value: Any) -> Optional[dt.date]:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    text = normalize_text(value)
    if text is None:
        return None
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        return None


def format_decimal(value: Any) -> str:
    """Plain ``1234.50`` style rendering, independent of locale."""
    return f"{Decimal(str(value)):.2f}"
