# Overview: Stock reconciler; every change to Product.quantity goes through here.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import case, func, update

from ..extensions import db
from ..errors import InsufficientStock, InvalidQuantity, NotFound, ValidationError
from ..models import Product, ExpirationBatch, StockMovement
from ..money import from_cents
from ..time_utils import utcnow, parse_iso_date
from ..validation import clean_text, require_positive_int
from .concurrency import begin_write, lock_for_update, run_with_retry
"""
Stock Invariants (authoritative)

- Product.quantity is the authoritative on-hand total and never goes negative.
  Decrements are conditional UPDATEs (quantity >= n) on a locked row, so the
  check and the write cannot be separated by a concurrent writer.
- The sum of active ExpirationBatch quantities never exceeds Product.quantity.
  When stock drops below it, the earliest-expiring batches are trimmed first.
- Every quantity change appends a StockMovement in the same DB transaction.
- Restocks with a date merge into the active batch for that date.
"""

WITHDRAW_MODES = ("clear", "pull")


def record_movement(
    *,
    product_id: int,
    kind: str,
    quantity_delta: int,
    note: str | None = None,
    sale_id: int | None = None,
    expiration_date: date | None = None,
) -> StockMovement:
    """Append-only audit row. Caller owns the transaction; note must fit String(255)."""
    movement = StockMovement(
        product_id=product_id,
        kind=kind,
        quantity_delta=quantity_delta,
        note=note,
        sale_id=sale_id,
        expiration_date=expiration_date,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    return movement


def get_locked_product(product_id: int) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    return product


def add_batch(product: Product, expiration_date: date, quantity: int) -> ExpirationBatch:
    """Add quantity to the active batch for this date, creating it if needed."""
    for batch in product.active_batches:
        if batch.expiration_date == expiration_date:
            batch.quantity += quantity
            return batch
    batch = ExpirationBatch(expiration_date=expiration_date, quantity=quantity)
    product.batches.append(batch)
    return batch


def trim_batches_to_stock(product: Product) -> None:
    """Shrink active batches, earliest expiration first, until they fit in product.quantity."""
    excess = sum(b.quantity for b in product.active_batches) - product.quantity
    if excess <= 0:
        return
    for batch in sorted(product.active_batches, key=lambda b: (b.expiration_date, b.id or 0)):
        take = min(batch.quantity, excess)
        batch.quantity -= take
        excess -= take
        if excess == 0:
            break


def _shift_quantity(product: Product, delta: int, *, floor: int | None = None) -> bool:
    """
    Apply quantity += delta in one UPDATE statement.

    With floor set, the row only matches while quantity >= floor, which makes
    the stock check and the decrement a single atomic step.
    """
    stmt = update(Product).where(Product.id == product.id)
    if floor is not None:
        stmt = stmt.where(Product.quantity >= floor)
    stmt = stmt.values(
        quantity=Product.quantity + delta,
        version_id=Product.version_id + 1,
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    db.session.refresh(product)
    return result.rowcount == 1


def reserve_and_commit(product: Product, quantity: int, *, sale_id: int) -> None:
    """
    Decrement stock for one sale line.

    The product row must already be locked by the caller (sale commit). Raises
    InsufficientStock and writes nothing when quantity exceeds what is on hand.
    """
    if quantity <= 0:
        raise InvalidQuantity("Sale quantity must be greater than 0", details={"product_id": product.id})

    if not _shift_quantity(product, -quantity, floor=quantity):
        raise InsufficientStock(product.id, quantity, product.quantity, product.name)

    trim_batches_to_stock(product)
    record_movement(
        product_id=product.id,
        kind="SALE",
        quantity_delta=-quantity,
        sale_id=sale_id,
        note=f"Sale #{sale_id}",
    )


def restore(product: Product, quantity: int, *, sale_id: int) -> None:
    """
    Give back exactly what a sale line took.

    Only called by sale cancellation, which guarantees one restore per sale by
    checking the sale status under lock. Restored units are not re-attached to
    expiration batches.
    """
    _shift_quantity(product, quantity)
    record_movement(
        product_id=product.id,
        kind="SALE_CANCEL",
        quantity_delta=quantity,
        sale_id=sale_id,
        note=f"Cancelled sale #{sale_id}",
    )


def _parse_quantity(value) -> int:
    try:
        return require_positive_int(value)
    except ValueError as exc:
        raise InvalidQuantity(str(exc))


def _parse_expiration(value) -> date | None:
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(
            "expiration_date must be an ISO date (YYYY-MM-DD)",
            fields={"expiration_date": "must be an ISO date (YYYY-MM-DD)"},
        )


def restock(product_id: int, quantity, note: str | None = None, expiration_date=None) -> Product:
    """Increase stock, optionally tagging the new units with an expiration date."""
    qty = _parse_quantity(quantity)
    exp_date = _parse_expiration(expiration_date)
    try:
        note = clean_text(note, "notes")
    except ValueError as exc:
        raise ValidationError(str(exc), fields={"notes": str(exc)})

    def _op():
        begin_write()
        product = get_locked_product(product_id)

        product.quantity += qty
        if exp_date is not None:
            add_batch(product, exp_date, qty)

        record_movement(
            product_id=product.id,
            kind="RESTOCK",
            quantity_delta=qty,
            note=note or "Restock",
            expiration_date=exp_date,
        )
        db.session.commit()
        return product

    product = run_with_retry(_op)
    current_app.logger.info("Restocked product %s by %s (now %s)", product.id, qty, product.quantity)
    return product


def withdraw_expired(product_id: int, expiration_date, mode: str, quantity=None) -> dict:
    """
    Resolve a near-expiration alert.

    clear: dismiss the batch, stock untouched (item judged still sellable).
    pull:  remove quantity (default: the batch's remaining units) from both the
           batch and the product total.
    """
    if mode not in WITHDRAW_MODES:
        raise ValidationError(
            "action must be 'clear' or 'pull'",
            fields={"action": "must be 'clear' or 'pull'"},
        )
    exp_date = _parse_expiration(expiration_date)
    if exp_date is None:
        raise ValidationError("expiration_date is required", fields={"expiration_date": "is required"})
    requested = _parse_quantity(quantity) if mode == "pull" and quantity not in (None, "") else None

    def _op():
        begin_write()
        product = get_locked_product(product_id)

        batch = next((b for b in product.active_batches if b.expiration_date == exp_date), None)
        if batch is None:
            raise NotFound(
                f"No pending expiration alert for product {product_id} on {exp_date.isoformat()}"
            )

        if mode == "clear":
            batch.dismissed_at = utcnow()
            record_movement(
                product_id=product.id,
                kind="EXPIRY_CLEAR",
                quantity_delta=0,
                note="Expiration alert cleared; stock kept",
                expiration_date=exp_date,
            )
            db.session.commit()
            return {"product": product, "batch": batch, "pulled": 0}

        pulled = requested if requested is not None else batch.quantity
        if pulled > product.quantity:
            raise InvalidQuantity(
                f"Cannot pull {pulled}; only {product.quantity} in stock",
                details={"product_id": product.id, "requested_quantity": pulled, "available": product.quantity},
            )

        product.quantity -= pulled
        batch.quantity = max(0, batch.quantity - pulled)
        trim_batches_to_stock(product)

        record_movement(
            product_id=product.id,
            kind="EXPIRY_PULL",
            quantity_delta=-pulled,
            note="Pulled near-expiration stock",
            expiration_date=exp_date,
        )
        db.session.commit()
        return {"product": product, "batch": batch, "pulled": pulled}

    result = run_with_retry(_op)
    current_app.logger.info(
        "Expiration %s for product %s batch %s (pulled %s)",
        mode, product_id, exp_date.isoformat(), result["pulled"],
    )
    return result


def low_stock_products() -> list[Product]:
    """Products with 0 < quantity <= min_stock, computed on read."""
    return (
        db.session.query(Product)
        .filter(Product.quantity > 0, Product.quantity <= Product.min_stock)
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )


def out_of_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.quantity == 0)
        .order_by(Product.name.asc())
        .all()
    )


def inventory_stats() -> dict:
    row = db.session.query(
        func.count(Product.id).label("products"),
        func.coalesce(func.sum(Product.price_cents * Product.quantity), 0).label("value"),
        func.coalesce(
            func.sum(case(((Product.quantity > 0) & (Product.quantity <= Product.min_stock), 1), else_=0)), 0
        ).label("low"),
        func.coalesce(func.sum(case((Product.quantity == 0, 1), else_=0)), 0).label("out"),
    ).one()
    return {
        "total_products": int(row.products or 0),
        "total_value_cents": int(row.value or 0),
        "total_value": from_cents(int(row.value or 0)),
        "low_stock_count": int(row.low or 0),
        "out_of_stock_count": int(row.out or 0),
    }


def list_movements(product_id: int, limit: int = 100) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )
