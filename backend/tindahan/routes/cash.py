# Overview: Flask API routes for the cash channel ledger; parses input and returns JSON responses.

# backend/tindahan/routes/cash.py
"""
Cash channel routes.

Request fields map to channels:
    cashOnHand     -> cash
    gcashBalance   -> gcash
    paymayaBalance -> paymaya
"""
from flask import Blueprint, current_app, jsonify, request

from ..errors import SettlementError, ValidationError
from ..money import MoneyFormatError, from_cents, to_cents
from ..services import cash_service
from ..time_utils import parse_range_bound
from ..validation import MAX_AMOUNT_CENTS, parse_id

cash_bp = Blueprint("cash", __name__)

CHANNEL_FIELDS = {
    "cashOnHand": "cash",
    "gcashBalance": "gcash",
    "paymayaBalance": "paymaya",
}


def _balances_payload(balances: dict[str, int]) -> dict:
    return {field: from_cents(balances[channel]) for field, channel in CHANNEL_FIELDS.items()}


def _parse_amounts(data: dict) -> dict[str, int]:
    """Channel -> cents for every amount present in the body. Raises ValidationError per field."""
    amounts: dict[str, int] = {}
    errors: dict[str, str] = {}

    fields = dict(CHANNEL_FIELDS)
    # Single-drawer callers send a bare amount
    if "amount" in data and "cashOnHand" not in data:
        fields = {"amount": "cash", **fields}

    for field, channel in fields.items():
        raw = data.get(field)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            continue
        try:
            cents = to_cents(raw)
        except MoneyFormatError as exc:
            errors[field] = str(exc)
            continue
        if cents > MAX_AMOUNT_CENTS:
            errors[field] = f"cannot exceed ₱{MAX_AMOUNT_CENTS / 100:,.2f}"
            continue
        amounts[channel] = cents
    if errors:
        raise ValidationError("Invalid amount", fields=errors)
    return amounts


@cash_bp.get("/cash/balance")
def balance_route():
    """Current balance of every channel, in pesos."""
    try:
        return jsonify(_balances_payload(cash_service.get_balances())), 200
    except Exception:
        current_app.logger.exception("Failed to load cash balances")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/cash/update")
def update_route():
    """
    Manual add/remove on one or more channels.

    Body: {cashOnHand?, gcashBalance?, paymayaBalance?,
           transaction_type: "add"|"remove", description, reference_id?}
    Each non-zero amount becomes its own log entry; all of them commit together.
    """
    data = request.get_json(silent=True) or {}
    try:
        description = data.get("description")
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("description is required", fields={"description": "is required"})

        reference_id = data.get("reference_id")
        if reference_id in ("", None):
            reference_id = None
        else:
            try:
                reference_id = parse_id(reference_id, "reference_id")
            except ValueError as exc:
                raise ValidationError("reference_id must be a sale id", fields={"reference_id": str(exc)})

        balances = cash_service.apply_update(
            _parse_amounts(data),
            data.get("transaction_type"),
            description.strip(),
            reference_sale_id=reference_id,
        )
        return jsonify({
            "message": "Cash balances updated successfully",
            "balances": _balances_payload(balances),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update cash balances")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.get("/cash/history")
def history_route():
    """
    Channel log, newest first.

    Query params: startDate, endDate, channel (cash|gcash|paymaya)
    """
    try:
        try:
            start = parse_range_bound(request.args.get("startDate"))
            end = parse_range_bound(request.args.get("endDate"), end=True)
        except ValueError:
            raise ValidationError("startDate and endDate must be ISO dates or datetimes")
        entries = cash_service.list_transactions(start, end, channel=request.args.get("channel") or None)
        return jsonify([t.to_dict() for t in entries]), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cash history")
        return jsonify({"error": "Internal server error"}), 500
