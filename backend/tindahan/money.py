from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


class MoneyFormatError(ValueError):
    pass


def to_cents(value: Any) -> int:
    """
    Convert a peso amount (number or string like "1,299.50" / "₱20") to integer cents.

    Rounds half-up to the nearest cent. Booleans and scientific notation are rejected.
    """
    if isinstance(value, bool):
        raise MoneyFormatError("must be a number")
    if isinstance(value, int):
        return value * 100
    if isinstance(value, float):
        value = repr(value)
    text = str(value).strip().replace("₱", "").replace(",", "")
    if not text or "e" in text.lower():
        raise MoneyFormatError("must be a number")
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise MoneyFormatError("must be a number")
    if not amount.is_finite():
        raise MoneyFormatError("must be a number")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int | None) -> float | None:
    """Cents to a peso amount for JSON output."""
    if cents is None:
        return None
    return float(Decimal(cents) / 100)
