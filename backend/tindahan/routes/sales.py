# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/tindahan/routes/sales.py
"""Sales API routes: atomic checkout, lifecycle transitions and reports."""

from flask import Blueprint, current_app, jsonify, request

from ..errors import SettlementError, ValidationError
from ..money import from_cents
from ..services import sales_service
from ..time_utils import parse_range_bound
from ..validation import MAX_ID, require_positive_int


sales_bp = Blueprint("sales", __name__)


def _date_range():
    """startDate/endDate query params; a bare end date covers the whole day."""
    try:
        start = parse_range_bound(request.args.get("startDate"))
        end = parse_range_bound(request.args.get("endDate"), end=True)
    except ValueError:
        raise ValidationError(
            "startDate and endDate must be ISO dates or datetimes",
            fields={"startDate": "invalid date", "endDate": "invalid date"},
        )
    return start, end


def _optional_int(name: str):
    """Positive integer query param, or None when absent."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return None
    try:
        return require_positive_int(raw, name, maximum=MAX_ID)
    except ValueError as exc:
        raise ValidationError(str(exc), fields={name: str(exc)})


@sales_bp.post("/sales")
def create_sale_route():
    """
    Commit a cart as one sale.

    Body: {items: [{id, quantity, name?, price?}], paymentMethod, customer_name?, total?}
    Client names, prices and total are informational only; the server
    recomputes the total from current product prices. Stock, sale and cash
    channel credit commit together or not at all.
    """
    data = request.get_json(silent=True) or {}
    try:
        sale = sales_service.commit_sale(
            data.get("items"),
            data.get("paymentMethod", data.get("payment_method")),
            customer_name=data.get("customer_name", data.get("customerName")),
            client_total=data.get("total"),
        )
        return jsonify({"success": True, "saleId": sale.id, "sale": sale.to_dict()}), 201
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to commit sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales")
def list_sales_route():
    """
    Sales in a date range, newest first (lines not included).

    Query params: startDate, endDate (ISO date or datetime, optional)
    """
    try:
        start, end = _date_range()
        sales = sales_service.list_sales(start, end)
        return jsonify([s.to_dict(include_lines=False) for s in sales]), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales/details")
def sale_details_route():
    """
    Sales with their lines.

    Query params: startDate, endDate, status (completed|unpaid|cancelled), customer
    """
    try:
        start, end = _date_range()
        sales = sales_service.sale_details(
            start,
            end,
            status=request.args.get("status") or None,
            customer=request.args.get("customer") or None,
        )
        return jsonify([s.to_dict() for s in sales]), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load sale details")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale(sale_id).to_dict()), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/sales/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """
    Cancel a completed or unpaid sale and restore its stock.

    Body: {reason}
    Cash channels are not reversed; refundAmount is what to take out of the
    channel by hand.
    """
    data = request.get_json(silent=True) or {}
    try:
        sale, refund_cents = sales_service.cancel_sale(sale_id, data.get("reason"))
        return jsonify({
            "success": True,
            "refundAmount": from_cents(refund_cents),
            "sale": sale.to_dict(),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale %s", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.put("/sales/<int:sale_id>/mark-paid")
def mark_paid_route(sale_id: int):
    """unpaid -> completed. No cash channel is credited."""
    try:
        sale = sales_service.mark_paid(sale_id)
        return jsonify({"success": True, "sale": sale.to_dict()}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark sale %s paid", sale_id)
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales/bestsellers")
@sales_bp.get("/sales/bestsellers/")
def bestsellers_route():
    """
    Top products by units sold (cancelled sales excluded).

    Query params: limit (default BESTSELLER_LIMIT), days (optional lookback)
    """
    try:
        limit = _optional_int("limit")
        days = _optional_int("days")
        return jsonify(sales_service.bestsellers(limit=limit, days=days)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load bestsellers")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/sales/analytics/summary")
def analytics_summary_route():
    """
    Daily totals, oldest first.

    Query params: period = today | <days> (default 7)
    """
    try:
        return jsonify(sales_service.analytics_summary(request.args.get("period"))), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return jsonify({"error": "Internal server error"}), 500
