# backend/tindahan/routes/system.py
"""
System health endpoint.

Reports database reachability and the row counts the settlement engine
depends on (products, sales, cash channels).
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import CashChannel, Product, Sale
from ..models.cash import CHANNELS
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        sale_count = db.session.query(Sale).count()
        channels = {name for (name,) in db.session.query(CashChannel.name).all()}

        elapsed_ms = (time.time() - start_time) * 1000

        missing = [c for c in CHANNELS if c not in channels]
        result = {
            "status": "degraded" if missing else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "sales": sale_count,
                "cash_channels": sorted(channels),
            },
        }
        if missing:
            result["warning"] = f"Missing cash channels: {', '.join(missing)}"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """Overall status is the database status; 503 when unhealthy."""
    database = check_database_health()
    body = {
        "status": database["status"],
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }
    return jsonify(body), 503 if database["status"] == "unhealthy" else 200
