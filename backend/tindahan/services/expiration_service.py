# Overview: Near-expiration watch list and its two resolutions (clear / pull).

from __future__ import annotations

from datetime import date, timedelta

from flask import current_app

from ..extensions import db
from ..errors import ValidationError
from ..models import ExpirationBatch, Product
from ..time_utils import today as store_today
from ..validation import MAX_DAYS
from . import stock_service


def near_expiration(horizon_days: int | None = None, today: date | None = None) -> list[dict]:
    """
    Active batches expiring on or before today + horizon, soonest first.

    Already-expired batches stay on the list until they are cleared or pulled.
    """
    if horizon_days is None:
        horizon_days = current_app.config["EXPIRATION_ALERT_DAYS"]
    if not 0 <= horizon_days <= MAX_DAYS:
        raise ValidationError(
            f"days must be between 0 and {MAX_DAYS}",
            fields={"days": f"must be between 0 and {MAX_DAYS}"},
        )
    today = today or store_today()
    cutoff = today + timedelta(days=horizon_days)

    rows = (
        db.session.query(ExpirationBatch, Product)
        .join(Product, Product.id == ExpirationBatch.product_id)
        .filter(
            ExpirationBatch.quantity > 0,
            ExpirationBatch.dismissed_at.is_(None),
            ExpirationBatch.expiration_date <= cutoff,
        )
        .order_by(ExpirationBatch.expiration_date.asc(), Product.name.asc())
        .all()
    )

    return [
        {
            "productId": product.id,
            "name": product.name,
            "barcode": product.barcode,
            "category": product.category,
            "expirationDate": batch.expiration_date.isoformat(),
            "quantity": batch.quantity,
            "productQuantity": product.quantity,
            "daysUntilExpiration": (batch.expiration_date - today).days,
            "isExpired": batch.expiration_date < today,
        }
        for batch, product in rows
    ]


def resolve(product_id, expiration_date, action, quantity_to_pull=None) -> dict:
    """Apply a clear/pull to one alert and report what remains of the batch."""
    result = stock_service.withdraw_expired(product_id, expiration_date, action, quantity_to_pull)
    product = result["product"]
    batch = result["batch"]
    return {
        "product": product,
        "pulled": result["pulled"],
        "remaining_batch_quantity": batch.quantity,
        "alert_resolved": not batch.is_active,
    }
