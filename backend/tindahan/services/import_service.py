# Overview: Bulk product import; validates a whole batch and commits all of it or nothing.

from __future__ import annotations

import csv
from dataclasses import dataclass, field
from typing import Any, IO

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, ValidationError
from ..models import Product
from ..validation import collect_product_errors
from .concurrency import begin_write, run_with_retry
from .products_service import barcode_exists, build_product, generate_barcode
from .stock_service import record_movement

# Fixed column order of the downloadable template
CSV_TEMPLATE_HEADERS = (
    "name",
    "price",
    "quantity",
    "barcode",
    "category",
    "brand",
    "description",
    "min_stock",
    "image_url",
    "expiration_date",
)

# Blank cells in these columns take a default instead of failing validation
BLANK_DEFAULTS = {"quantity": 0, "price": 0}


@dataclass
class RowResult:
    row: int
    patch: dict = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)


class ProductImportSchema:
    """Normalizes and validates one raw import record."""

    def __init__(self, default_min_stock: int):
        self.default_min_stock = default_min_stock

    def missing_columns(self, raw_row: dict[str, Any]) -> list[str]:
        return [c for c in CSV_TEMPLATE_HEADERS if c not in raw_row]

    def normalize_row(self, raw_row: dict[str, Any]) -> dict[str, Any]:
        normalized: dict[str, Any] = {}
        for column in CSV_TEMPLATE_HEADERS:
            value = raw_row.get(column)
            if isinstance(value, str):
                value = value.strip()
            blank = value is None or value == ""
            if blank and column in BLANK_DEFAULTS:
                value = BLANK_DEFAULTS[column]
            elif blank and column == "min_stock":
                value = self.default_min_stock
            elif blank:
                # optional text field or name (name is re-checked by validation)
                if column == "name":
                    value = ""
                else:
                    continue
            normalized[column] = value
        return normalized

    def validate_row(self, row_number: int, raw_row: Any) -> RowResult:
        result = RowResult(row=row_number)
        if not isinstance(raw_row, dict):
            result.errors["_row"] = "Row must be an object with the template columns"
            return result

        missing = self.missing_columns(raw_row)
        if missing:
            result.errors["_columns"] = f"Missing columns: {', '.join(missing)}"

        unknown = sorted(str(k) for k in raw_row if k not in CSV_TEMPLATE_HEADERS)
        if unknown:
            result.errors["_columns_unknown"] = f"Unknown columns: {', '.join(unknown)}"

        patch, errors = collect_product_errors(self.normalize_row(raw_row), partial=False)
        result.errors.update(errors)
        result.patch = patch
        return result


def validate_batch(records: Any) -> tuple[list[RowResult], list[dict]]:
    """
    Validate every record independently.

    Returns (results, row_errors) where row_errors is
    [{"row": n, "errors": {field: message}}] with 1-based row numbers.
    Barcodes must be unique within the batch and against existing products.
    """
    if not isinstance(records, list) or not records:
        raise ValidationError("No products to import", fields={"products": "must be a non-empty list"})

    schema = ProductImportSchema(current_app.config["DEFAULT_MIN_STOCK"])
    results = [schema.validate_row(i + 1, raw) for i, raw in enumerate(records)]

    seen: dict[str, int] = {}
    for result in results:
        code = result.patch.get("barcode")
        if not code or "barcode" in result.errors:
            continue
        if code in seen:
            result.errors["barcode"] = f"Duplicate barcode {code} (also on row {seen[code]})"
        elif barcode_exists(code):
            result.errors["barcode"] = f"Barcode {code} is already assigned to another product"
        else:
            seen[code] = result.row

    row_errors = [{"row": r.row, "errors": r.errors} for r in results if r.errors]
    return results, row_errors


def _rejected(row_errors: list[dict], total_rows: int) -> ValidationError:
    return ValidationError(
        f"Import rejected: {len(row_errors)} of {total_rows} row(s) have errors; nothing was imported",
        details={"row_errors": row_errors, "total_rows": total_rows},
    )


def import_products(records: Any) -> list[Product]:
    """
    All-or-nothing import.

    Raises ValidationError (details.row_errors) without writing anything if any
    row fails; otherwise creates every product in one transaction. Barcodes are
    checked again under the write lock, and a barcode inserted concurrently on
    another backend is reported as ConflictError.
    """
    results, row_errors = validate_batch(records)
    if row_errors:
        raise _rejected(row_errors, len(results))

    default_min_stock = current_app.config["DEFAULT_MIN_STOCK"]

    def _op():
        begin_write()
        taken = [
            {"row": r.row, "errors": {"barcode": f"Barcode {r.patch['barcode']} is already assigned to another product"}}
            for r in results
            if r.patch.get("barcode") and barcode_exists(r.patch["barcode"])
        ]
        if taken:
            raise _rejected(taken, len(results))

        reserved = {r.patch["barcode"] for r in results if r.patch.get("barcode")}
        created = []
        for result in results:
            patch = dict(result.patch)
            if not patch.get("barcode"):
                patch["barcode"] = generate_barcode(reserved)
                reserved.add(patch["barcode"])
            product = build_product(patch, default_min_stock=default_min_stock)
            db.session.add(product)
            db.session.flush()
            record_movement(
                product_id=product.id,
                kind="IMPORT",
                quantity_delta=product.quantity,
                note=f"Imported (row {result.row})",
                expiration_date=patch.get("expiration_date"),
            )
            created.append(product)
        db.session.commit()
        return created

    try:
        created = run_with_retry(_op)
    except IntegrityError:
        current_app.logger.warning("Import of %s row(s) rejected by a unique constraint", len(results))
        raise ConflictError(
            "A barcode in this import was assigned to another product during the import; nothing was imported",
            details={"total_rows": len(results)},
        )
    current_app.logger.info("Imported %s product(s)", len(created))
    return created


def read_csv(stream: IO[str]) -> list[dict[str, str]]:
    """Rows of a template CSV as dicts keyed by header (extra whitespace in headers ignored)."""
    reader = csv.DictReader(stream)
    if reader.fieldnames:
        reader.fieldnames = [h.strip() for h in reader.fieldnames]
    # Cells beyond the header land under a None key; they are dropped
    return [{k: v for k, v in row.items() if k is not None} for row in reader]


def template_csv() -> str:
    return ",".join(CSV_TEMPLATE_HEADERS) + "\n"
