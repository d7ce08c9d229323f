"""
Sales Service - atomic sale settlement

A sale commit is one DB transaction: lock every product in ascending id
order, check stock, decrement, write the sale and its lines, and credit the
payment channel. Either all of it commits or none of it does.

Lifecycle:
    unpaid    --mark_paid-->   completed
    unpaid    --cancel_sale--> cancelled
    completed --cancel_sale--> cancelled   (terminal)
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import (
    AlreadyCancelled,
    EmptyCart,
    InsufficientStock,
    InvalidQuantity,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from ..models import Sale, SaleLine
from ..models.cash import CHANNELS
from ..models.sales import PAYMENT_METHODS, SALE_STATUSES
from ..money import MoneyFormatError, from_cents, to_cents
from ..time_utils import local_date, local_day_start, today, utcnow
from ..validation import MAX_DAYS, clean_text, parse_id, require_positive_int
from . import cash_service, stock_service
from .concurrency import begin_write, lock_for_update, lock_products, run_with_retry

BESTSELLER_MAX_LIMIT = 500


def _merge_items(items: Any) -> "OrderedDict[int, int]":
    """
    Normalize cart items to {product_id: quantity}, first-seen order.

    Only id and quantity are read; client names and prices are ignored.
    """
    if not isinstance(items, list) or not items:
        raise EmptyCart()

    merged: "OrderedDict[int, int]" = OrderedDict()
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {index + 1} must be an object", fields={f"items[{index}]": "must be an object"})
        raw_id = item.get("id", item.get("product_id"))
        try:
            product_id = parse_id(raw_id, "id")
        except ValueError as exc:
            raise ValidationError(f"Item {index + 1}: {exc}", fields={f"items[{index}].id": str(exc)})
        try:
            qty = require_positive_int(item.get("quantity"))
        except ValueError as exc:
            raise InvalidQuantity(f"Item {index + 1}: {exc}", details={"product_id": product_id})
        merged[product_id] = merged.get(product_id, 0) + qty
    return merged


def _validate_method(payment_method: Any) -> str:
    method = (payment_method or "").strip().lower() if isinstance(payment_method, str) else payment_method
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"paymentMethod must be one of: {', '.join(PAYMENT_METHODS)}",
            fields={"paymentMethod": "unknown payment method"},
        )
    return method


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound(f"Sale {sale_id} not found")
    return sale


def _get_locked_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFound(f"Sale {sale_id} not found")
    return sale


def commit_sale(
    items: Any,
    payment_method: Any,
    customer_name: str | None = None,
    client_total: Any = None,
) -> Sale:
    """
    Commit a cart as a sale.

    - Validates the cart before any write (EmptyCart, InvalidQuantity, ValidationError).
    - Locks all involved products in ascending id order; NotFound for unknown ids.
    - Rejects the whole sale with InsufficientStock if any line exceeds stock.
    - Recomputes the total from current prices; client_total is only compared and logged.
    - cash/gcash/paymaya credit their channel in the same transaction; credit
      sales start unpaid and skip the channel ledger.
    """
    wanted = _merge_items(items)
    method = _validate_method(payment_method)
    try:
        name = clean_text(customer_name, "customer_name") or method
    except ValueError as exc:
        raise ValidationError(str(exc), fields={"customer_name": str(exc)})

    def _op():
        begin_write()
        products = lock_products(wanted.keys())

        missing = [pid for pid in wanted if pid not in products]
        if missing:
            raise NotFound(f"Product {missing[0]} not found", details={"product_ids": missing})

        # Check every line against the locked snapshot before decrementing any
        for pid, qty in wanted.items():
            product = products[pid]
            if qty > product.quantity:
                raise InsufficientStock(pid, qty, product.quantity, product.name)

        sale = Sale(
            payment_method=method,
            customer_name=name,
            status="unpaid" if method == "credit" else "completed",
            total_cents=0,
            created_at=utcnow(),
        )
        if sale.status == "completed":
            sale.paid_at = sale.created_at
        db.session.add(sale)
        db.session.flush()  # sale.id for movements and channel reference

        total = 0
        for pid, qty in wanted.items():
            product = products[pid]
            line_total = product.price_cents * qty
            db.session.add(SaleLine(
                sale_id=sale.id,
                product_id=pid,
                name=product.name,
                quantity=qty,
                unit_price_cents=product.price_cents,
                line_total_cents=line_total,
            ))
            stock_service.reserve_and_commit(product, qty, sale_id=sale.id)
            total += line_total
        sale.total_cents = total

        if method in CHANNELS and total > 0:
            cash_service.post_entries(
                {method: total},
                "add",
                f"{method.capitalize()} sale (Transaction ID: {sale.id})",
                reference_sale_id=sale.id,
            )

        db.session.commit()
        return sale

    sale = run_with_retry(_op)

    current_app.logger.info(
        "Committed sale %s: %s line(s), total=%s, method=%s, status=%s",
        sale.id, len(wanted), from_cents(sale.total_cents), method, sale.status,
    )
    if client_total not in (None, ""):
        try:
            if to_cents(client_total) != sale.total_cents:
                current_app.logger.warning(
                    "Sale %s: client total %s differs from computed total %s",
                    sale.id, client_total, from_cents(sale.total_cents),
                )
        except MoneyFormatError:
            current_app.logger.warning("Sale %s: unparseable client total %r", sale.id, client_total)
    return sale


def mark_paid(sale_id: int) -> Sale:
    """
    unpaid -> completed.

    NOTE: no cash channel is credited here; collecting a credit balance is
    recorded separately through the cash ledger.
    """
    def _op():
        begin_write()
        sale = _get_locked_sale(sale_id)
        if sale.status != "unpaid":
            raise InvalidTransition(
                f"Only unpaid sales can be marked paid (sale {sale_id} is {sale.status})",
                details={"sale_id": sale_id, "status": sale.status},
            )
        sale.status = "completed"
        sale.paid_at = utcnow()
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s marked paid", sale.id)
    return sale


def cancel_sale(sale_id: int, reason: Any) -> tuple[Sale, int]:
    """
    completed|unpaid -> cancelled, restoring every line's stock.

    Returns (sale, refund_cents). Cash channels are left untouched; the refund
    amount is reported so the drawer can be adjusted manually.
    """
    try:
        text = clean_text(reason, "reason", required=True)
    except ValueError as exc:
        raise ValidationError(f"Invalid cancellation reason: {exc}", fields={"reason": str(exc)})

    def _op():
        begin_write()
        sale = _get_locked_sale(sale_id)
        if sale.status == "cancelled":
            raise AlreadyCancelled(
                f"Sale {sale_id} is already cancelled",
                details={"sale_id": sale_id, "cancelled_at": sale.cancelled_at.isoformat() if sale.cancelled_at else None},
            )

        lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id).all()
        per_product: dict[int, int] = {}
        for line in lines:
            if line.product_id is None:
                current_app.logger.warning(
                    "Sale %s line %s: product deleted, %s unit(s) not restored",
                    sale.id, line.id, line.quantity,
                )
                continue
            per_product[line.product_id] = per_product.get(line.product_id, 0) + line.quantity

        products = lock_products(per_product.keys())
        for pid, qty in per_product.items():
            stock_service.restore(products[pid], qty, sale_id=sale.id)

        sale.status = "cancelled"
        sale.cancelled_at = utcnow()
        sale.cancellation_reason = text
        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Cancelled sale %s (refund %s via %s): %s",
        sale.id, from_cents(sale.total_cents), sale.payment_method, sale.cancellation_reason,
    )
    return sale, sale.total_cents


def _sales_query(start: datetime | None, end: datetime | None):
    q = db.session.query(Sale)
    if start:
        q = q.filter(Sale.created_at >= start)
    if end:
        q = q.filter(Sale.created_at < end)
    return q


def list_sales(start: datetime | None = None, end: datetime | None = None) -> list[Sale]:
    return _sales_query(start, end).order_by(Sale.created_at.desc(), Sale.id.desc()).all()


def sale_details(
    start: datetime | None = None,
    end: datetime | None = None,
    status: str | None = None,
    customer: str | None = None,
) -> list[Sale]:
    """Sales with lines, filtered for the reports screen."""
    q = _sales_query(start, end)
    if status:
        if status not in SALE_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(SALE_STATUSES)}",
                fields={"status": "unknown status"},
            )
        q = q.filter(Sale.status == status)
    if customer and customer.strip():
        q = q.filter(func.lower(Sale.customer_name).like(f"%{customer.strip().lower()}%"))
    return q.order_by(Sale.created_at.desc(), Sale.id.desc()).all()


def bestsellers(limit: int | None = None, days: int | None = None) -> list[dict]:
    """Top products by units sold across non-cancelled sales."""
    limit = limit or current_app.config["BESTSELLER_LIMIT"]
    if not 0 < limit <= BESTSELLER_MAX_LIMIT:
        raise ValidationError(
            f"limit must be between 1 and {BESTSELLER_MAX_LIMIT}",
            fields={"limit": f"must be between 1 and {BESTSELLER_MAX_LIMIT}"},
        )
    if days is not None and not 0 < days <= MAX_DAYS:
        raise ValidationError(
            f"days must be between 1 and {MAX_DAYS}",
            fields={"days": f"must be between 1 and {MAX_DAYS}"},
        )
    q = db.session.query(
        SaleLine.product_id,
        func.max(SaleLine.name).label("name"),
        func.sum(SaleLine.quantity).label("total_quantity"),
        func.sum(SaleLine.line_total_cents).label("total_revenue_cents"),
    ).join(Sale, Sale.id == SaleLine.sale_id).filter(
        Sale.status != "cancelled",
        SaleLine.product_id.isnot(None),
    )
    if days:
        q = q.filter(Sale.created_at >= utcnow() - timedelta(days=days))

    rows = (
        q.group_by(SaleLine.product_id)
        .order_by(func.sum(SaleLine.quantity).desc(), SaleLine.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "name": row.name,
            "total_quantity": int(row.total_quantity or 0),
            "total_revenue": from_cents(int(row.total_revenue_cents or 0)),
        }
        for row in rows
    ]


def _period_days(period: Any) -> int:
    if period in (None, ""):
        return 7
    if period == "today":
        return 1
    try:
        days = int(period)
    except (TypeError, ValueError):
        days = 0
    if not 0 < days <= MAX_DAYS:
        raise ValidationError(
            f"period must be 'today' or a number of days between 1 and {MAX_DAYS}",
            fields={"period": f"must be 'today' or an integer between 1 and {MAX_DAYS}"},
        )
    return days


def analytics_summary(period: Any = None) -> list[dict]:
    """
    Daily totals for the last N days (today included), oldest first.

    Days are calendar days in STORE_TIMEZONE. Cancelled sales are excluded;
    days without sales are reported with zeros.
    """
    days = _period_days(period)
    first_day = today() - timedelta(days=days - 1)

    rows = db.session.query(Sale.created_at, Sale.total_cents).filter(
        Sale.status != "cancelled",
        Sale.created_at >= local_day_start(first_day),
    ).all()

    totals: dict[date, list[int]] = {}
    for created_at, total_cents in rows:
        bucket = totals.setdefault(local_date(created_at), [0, 0])
        bucket[0] += total_cents
        bucket[1] += 1

    summary = []
    for offset in range(days):
        day = first_day + timedelta(days=offset)
        total_cents, count = totals.get(day, (0, 0))
        summary.append({
            "date": day.isoformat(),
            "daily_total": from_cents(total_cents),
            "transaction_count": count,
        })
    return summary
