from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .money import MoneyFormatError, to_cents
from .time_utils import parse_iso_date


# Maximum price: ₱9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Cash channel entries: ₱999,999,999.99
MAX_AMOUNT_CENTS = 99_999_999_999

# Largest quantity for one product or one stock change
MAX_QUANTITY = 1_000_000

# Report and alert horizons
MAX_DAYS = 3650

# Row ids are SQLite INTEGERs
MAX_ID = 2**63 - 1

# String(255) free-text columns: customer names, reasons, notes
TEXT_MAX_LENGTH = 255

BARCODE_PATTERN = re.compile(r"^[0-9A-Za-z\-_]+$")
BARCODE_MIN_LENGTH = 3


@dataclass(frozen=True)
class FieldPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - max_lengths: String(n) limits mirrored from the model
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    max_lengths: dict[str, int] = field(default_factory=dict)


PRODUCT_POLICY = FieldPolicy(
    writable_fields=frozenset({
        "name", "price", "quantity", "barcode", "category", "brand",
        "description", "min_stock", "image_url", "expiration_date",
    }),
    required_on_create=frozenset({"name", "price"}),
    max_lengths={"name": 255, "barcode": 64, "category": 120, "brand": 120, "image_url": 512},
)


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValueError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValueError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValueError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValueError(f"{key} must be an integer")
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError(f"{key} must be an integer, not a decimal")
    raise ValueError(f"{key} must be an integer")


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_barcode(value: Any) -> str | None:
    """Normalize a barcode; blank means "none". Raises ValueError on a bad format."""
    code = _coerce_text(value)
    if code is None:
        return None
    if len(code) < BARCODE_MIN_LENGTH:
        raise ValueError(f"Barcode must be at least {BARCODE_MIN_LENGTH} characters long")
    if not BARCODE_PATTERN.match(code):
        raise ValueError("Barcode can only contain letters, numbers, hyphens, and underscores")
    return code


def _clean_field(key: str, raw: Any, policy: FieldPolicy):
    if key == "name":
        name = _coerce_text(raw)
        if name is None:
            raise ValueError("Product name is required")
        return name

    if key == "price":
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            raise ValueError("Price is required")
        try:
            cents = to_cents(raw)
        except MoneyFormatError:
            raise ValueError("Price must be a number")
        if cents < 0:
            raise ValueError("Price must be >= 0")
        if cents > MAX_PRICE_CENTS:
            raise ValueError(f"Price cannot exceed ₱{MAX_PRICE_CENTS / 100:,.2f}")
        return cents

    if key in ("quantity", "min_stock"):
        number = _coerce_int(key, raw)
        label = "Quantity" if key == "quantity" else "Minimum stock"
        if number < 0:
            raise ValueError(f"{label} must be a non-negative number")
        if number > MAX_QUANTITY:
            raise ValueError(f"{label} cannot exceed {MAX_QUANTITY:,}")
        return number

    if key == "barcode":
        return validate_barcode(raw)

    if key == "expiration_date":
        if _coerce_text(raw) is None:
            return None
        try:
            return parse_iso_date(raw)
        except ValueError:
            raise ValueError("expiration_date must be an ISO date (YYYY-MM-DD)")

    # category, brand, description, image_url
    return _coerce_text(raw)


def collect_product_errors(
    payload: Any,
    *,
    partial: bool,
    policy: FieldPolicy = PRODUCT_POLICY,
) -> tuple[dict, dict[str, str]]:
    """
    Validates + normalizes a product payload without raising.

    Returns (patch, errors): patch keys are model-facing (price -> price_cents),
    errors map field name -> human-readable message.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return {}, {"_payload": "Invalid JSON payload"}

    errors: dict[str, str] = {}
    patch: dict = {}

    if not partial:
        for key in sorted(policy.required_on_create):
            if key not in payload:
                errors[key] = f"{key} is required"

    for key, raw in payload.items():
        if key not in policy.writable_fields:
            errors[key] = f"Field not allowed: {key}"
            continue
        if key in errors:
            continue
        try:
            value = _clean_field(key, raw, policy)
        except ValueError as exc:
            errors[key] = str(exc)
            continue

        limit = policy.max_lengths.get(key)
        if limit and isinstance(value, str) and len(value) > limit:
            errors[key] = f"{key} exceeds max length {limit}"
            continue

        patch["price_cents" if key == "price" else key] = value

    return patch, errors


def require_positive_int(value: Any, label: str = "quantity", maximum: int = MAX_QUANTITY) -> int:
    """Parse a strictly positive integer quantity or raise ValueError."""
    if value is None:
        raise ValueError(f"{label} is required")
    number = _coerce_int(label, value)
    if number <= 0:
        raise ValueError(f"{label} must be greater than 0")
    if number > maximum:
        raise ValueError(f"{label} cannot exceed {maximum:,}")
    return number


def parse_id(value: Any, label: str = "id") -> int:
    """Row id from client input; fractional, boolean and out-of-range values are rejected."""
    if value is None:
        raise ValueError(f"{label} is required")
    number = _coerce_int(label, value)
    if not 0 < number <= MAX_ID:
        raise ValueError(f"{label} must be a positive integer")
    return number


def clean_text(value: Any, label: str, *, required: bool = False, max_length: int = TEXT_MAX_LENGTH) -> str | None:
    """
    Strip a free-text field; blank means None.

    Raises ValueError when the value is not a string, is missing while
    required, or is longer than max_length.
    """
    if value is None:
        text = ""
    elif isinstance(value, str):
        text = value.strip()
    else:
        raise ValueError(f"{label} must be a string")
    if not text:
        if required:
            raise ValueError(f"{label} is required")
        return None
    if len(text) > max_length:
        raise ValueError(f"{label} exceeds max length {max_length}")
    return text
