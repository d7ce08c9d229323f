# backend/tindahan/services/products_service.py
"""
Products Service

Product master data: create, edit, delete and lookups. Stock levels are only
touched here for the initial quantity and explicit quantity edits; all other
stock changes belong to stock_service.
"""
from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, NotFound, ValidationError
from ..models import Product, SaleLine, StockMovement
from ..validation import PRODUCT_POLICY, FieldPolicy, collect_product_errors
from .concurrency import begin_write, run_with_retry
from .stock_service import add_batch, get_locked_product, record_movement, trim_batches_to_stock

PRODUCT_MUTABLE_FIELDS = {
    "name", "price_cents", "quantity", "barcode", "category", "brand",
    "description", "min_stock", "image_url",
}

# Batches are added through restock, never by editing a product
PRODUCT_UPDATE_POLICY = FieldPolicy(
    writable_fields=PRODUCT_POLICY.writable_fields - {"expiration_date"},
    max_lengths=PRODUCT_POLICY.max_lengths,
)

# GS1 prefix for the Philippines; generated codes are EAN-13
BARCODE_PREFIX = "480"

LIST_FILTERS = ("all", "low-stock", "out-of-stock")


def _raise_if_invalid(errors: dict[str, str]) -> None:
    if errors:
        raise ValidationError(f"Validation Error: {'; '.join(errors.values())}", fields=errors)


def ean13_check_digit(body: str) -> str:
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(body))
    return str((10 - total % 10) % 10)


def barcode_exists(code: str, exclude_product_id: int | None = None) -> bool:
    q = db.session.query(Product.id).filter(Product.barcode == code)
    if exclude_product_id is not None:
        q = q.filter(Product.id != exclude_product_id)
    return q.first() is not None


def barcode_conflict(code: str | None) -> ConflictError:
    if not code:
        return ConflictError("Product conflicts with an existing product")
    return ConflictError(
        f"Barcode {code} is already assigned to another product",
        details={"barcode": code},
    )


def run_unique_write(op, barcode: str | None):
    """
    run_with_retry for writes guarded by the barcode UNIQUE constraint.

    The pre-check inside op covers the usual case; a concurrent insert that
    lands after it surfaces as IntegrityError and is reported as a conflict.
    """
    try:
        return run_with_retry(op)
    except IntegrityError:
        current_app.logger.warning("Unique constraint rejected barcode %s", barcode)
        raise barcode_conflict(barcode)


def generate_barcode(reserved: set[str] | None = None) -> str:
    """Random EAN-13 not used by any product (or by `reserved`)."""
    reserved = reserved or set()
    while True:
        body = BARCODE_PREFIX + "".join(str(secrets.randbelow(10)) for _ in range(9))
        code = body + ean13_check_digit(body)
        if code not in reserved and not barcode_exists(code):
            return code


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def build_product(patch: dict, *, default_min_stock: int) -> Product:
    """Unsaved Product from a validated create patch (quantity/min_stock defaults applied)."""
    p = Product(quantity=0, min_stock=default_min_stock)
    apply_product_patch(p, patch)
    if p.quantity is None:
        p.quantity = 0
    if p.min_stock is None:
        p.min_stock = default_min_stock
    exp_date = patch.get("expiration_date")
    if exp_date is not None and p.quantity > 0:
        add_batch(p, exp_date, p.quantity)
    return p


def list_products(
    stock_filter: str = "all",
    category: str | None = None,
    search: str | None = None,
) -> list[Product]:
    """
    Product listing. stock_filter is one of all, low-stock, out-of-stock;
    search matches name, brand or category (case-insensitive).
    """
    if stock_filter not in LIST_FILTERS:
        raise ValidationError(
            f"filter must be one of: {', '.join(LIST_FILTERS)}",
            fields={"filter": "unknown filter"},
        )

    q = db.session.query(Product)
    if stock_filter == "low-stock":
        q = q.filter(Product.quantity > 0, Product.quantity <= Product.min_stock)
    elif stock_filter == "out-of-stock":
        q = q.filter(Product.quantity == 0)

    if category:
        q = q.filter(Product.category == category)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(or_(
            db.func.lower(Product.name).like(like),
            db.func.lower(Product.brand).like(like),
            db.func.lower(Product.category).like(like),
        ))

    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def get_product_by_barcode(code: str) -> Product:
    product = db.session.query(Product).filter_by(barcode=code.strip()).first()
    if product is None:
        raise NotFound(f"Product with barcode {code} not found")
    return product


def create_product(payload: dict) -> Product:
    """
    Create a product from a raw API payload.

    Validation happens before any write. A barcode is generated when none is
    supplied; an expiration_date tags the initial quantity as one batch.
    """
    patch, errors = collect_product_errors(payload, partial=False)
    _raise_if_invalid(errors)

    def _op():
        begin_write()
        if patch.get("barcode") and barcode_exists(patch["barcode"]):
            raise barcode_conflict(patch["barcode"])
        if not patch.get("barcode"):
            patch["barcode"] = generate_barcode()

        p = build_product(patch, default_min_stock=current_app.config["DEFAULT_MIN_STOCK"])
        db.session.add(p)
        db.session.flush()  # ensure p.id exists before the movement row

        record_movement(
            product_id=p.id,
            kind="CREATE",
            quantity_delta=p.quantity,
            note="Product created",
            expiration_date=patch.get("expiration_date"),
        )
        db.session.commit()
        return p

    product = run_unique_write(_op, patch.get("barcode"))
    current_app.logger.info("Created product %s (%s) barcode=%s", product.id, product.name, product.barcode)
    return product


def update_product(product_id: int, payload: dict) -> Product:
    """Partial update. A quantity edit is recorded as an EDIT movement with its delta."""
    patch, errors = collect_product_errors(payload, partial=True, policy=PRODUCT_UPDATE_POLICY)
    _raise_if_invalid(errors)

    def _op():
        begin_write()
        p = get_locked_product(product_id)

        if patch.get("barcode") and barcode_exists(patch["barcode"], exclude_product_id=p.id):
            raise barcode_conflict(patch["barcode"])

        old_quantity = p.quantity
        apply_product_patch(p, patch)
        if p.min_stock is None:
            p.min_stock = current_app.config["DEFAULT_MIN_STOCK"]

        if p.quantity != old_quantity:
            trim_batches_to_stock(p)
            record_movement(
                product_id=p.id,
                kind="EDIT",
                quantity_delta=p.quantity - old_quantity,
                note="Quantity edited",
            )

        db.session.commit()
        return p

    return run_unique_write(_op, patch.get("barcode"))


def delete_product(product_id: int) -> None:
    """
    Delete a product and its expiration batches.

    Sale lines and stock movements keep their snapshots with product_id nulled.
    """
    def _op():
        begin_write()
        p = get_locked_product(product_id)

        db.session.query(SaleLine).filter_by(product_id=p.id).update(
            {"product_id": None}, synchronize_session=False
        )
        db.session.query(StockMovement).filter_by(product_id=p.id).update(
            {"product_id": None}, synchronize_session=False
        )
        db.session.delete(p)
        db.session.commit()

    run_with_retry(_op)
    current_app.logger.info("Deleted product %s", product_id)
