# Overview: Flask API routes for products, stock and expirations; parses input and returns JSON responses.

# backend/tindahan/routes/products.py
"""
Product and stock routes.

All stock changes (restock, expiration pulls, imports) are delegated to the
services, which run each one as a single DB transaction. Routes only parse
input and serialize the confirmed result.
"""
from flask import Blueprint, Response, current_app, jsonify, request

from ..errors import SettlementError, ValidationError
from ..services import expiration_service, import_service, products_service, stock_service
from ..validation import parse_id, require_positive_int

products_bp = Blueprint("products", __name__)

MOVEMENTS_MAX_LIMIT = 500


@products_bp.get("/products")
def list_products_route():
    """
    List products.

    Query params:
    - filter: all | low-stock | out-of-stock (default all)
    - category: exact category match (optional)
    - search: substring of name, brand or category (optional)
    """
    try:
        products = products_service.list_products(
            stock_filter=request.args.get("filter", "all"),
            category=request.args.get("category") or None,
            search=request.args.get("search") or None,
        )
        return jsonify([p.to_dict() for p in products]), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products/<int:product_id>")
def get_product_route(product_id: int):
    try:
        return jsonify(products_service.get_product(product_id).to_dict()), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.get("/products/barcode/<code>")
def get_product_by_barcode_route(code: str):
    """Scanner lookup."""
    try:
        return jsonify(products_service.get_product_by_barcode(code).to_dict()), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.get("/products/low-stock")
def low_stock_route():
    """Products with 0 < quantity <= min_stock (out-of-stock products excluded)."""
    try:
        return jsonify([p.to_dict() for p in stock_service.low_stock_products()]), 200
    except Exception:
        current_app.logger.exception("Failed to load low-stock products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products/near-expiration")
def near_expiration_route():
    """
    Unresolved expiration batches inside the alert horizon.

    Query params:
    - days: horizon in days (default EXPIRATION_ALERT_DAYS)
    """
    days = request.args.get("days")
    try:
        if days not in (None, ""):
            try:
                days = int(days)
            except ValueError:
                raise ValidationError("days must be an integer", fields={"days": "must be an integer"})
        else:
            days = None
        return jsonify(expiration_service.near_expiration(horizon_days=days)), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load near-expiration batches")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products/stats")
def product_stats_route():
    try:
        return jsonify(stock_service.inventory_stats()), 200
    except Exception:
        current_app.logger.exception("Failed to compute inventory stats")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/products/csv-template")
def csv_template_route():
    """Header-only CSV in the fixed import column order."""
    return Response(
        import_service.template_csv(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=products_template.csv"},
    )


@products_bp.get("/products/<int:product_id>/movements")
def product_movements_route(product_id: int):
    """Stock audit trail for one product, newest first."""
    try:
        try:
            limit = require_positive_int(request.args.get("limit", "100"), "limit", maximum=MOVEMENTS_MAX_LIMIT)
        except ValueError as exc:
            raise ValidationError(str(exc), fields={"limit": str(exc)})
        products_service.get_product(product_id)
        movements = stock_service.list_movements(product_id, limit=limit)
        return jsonify([m.to_dict() for m in movements]), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code


@products_bp.post("/products")
def create_product_route():
    """
    Create a product.

    Body: {name, price, quantity?, barcode?, category?, brand?, description?,
           min_stock?, image_url?, expiration_date?}
    A barcode is generated when none is supplied.
    """
    try:
        product = products_service.create_product(request.get_json(silent=True))
        return jsonify({
            "message": "Product added successfully",
            "id": product.id,
            "barcode": product.barcode,
            "product": product.to_dict(),
        }), 201
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.put("/products/<int:product_id>")
def update_product_route(product_id: int):
    try:
        product = products_service.update_product(product_id, request.get_json(silent=True))
        return jsonify({"message": "Product updated successfully", "product": product.to_dict()}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@products_bp.delete("/products/<int:product_id>")
def delete_product_route(product_id: int):
    try:
        products_service.delete_product(product_id)
        return jsonify({"message": "Product deleted successfully"}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/products/<int:product_id>/restock")
def restock_route(product_id: int):
    """
    Add stock.

    Body: {quantity, notes?, expiration_date?}
    """
    data = request.get_json(silent=True) or {}
    try:
        product = stock_service.restock(
            product_id,
            data.get("quantity"),
            note=data.get("notes"),
            expiration_date=data.get("expiration_date"),
        )
        return jsonify({"message": "Product restocked successfully", "product": product.to_dict()}), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock product %s", product_id)
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/products/expiration-notification")
def expiration_notification_route():
    """
    Resolve a near-expiration alert.

    Body: {productId, expirationDate, action: "clear"|"pull", quantityToPull?}
    The response carries the confirmed batch state; the alert is only gone
    when alertResolved is true.
    """
    data = request.get_json(silent=True) or {}
    try:
        try:
            product_id = parse_id(data.get("productId"), "productId")
        except ValueError as exc:
            raise ValidationError("productId is required", fields={"productId": str(exc)})

        result = expiration_service.resolve(
            product_id,
            data.get("expirationDate"),
            data.get("action"),
            data.get("quantityToPull"),
        )
        return jsonify({
            "success": True,
            "pulled": result["pulled"],
            "remainingBatchQuantity": result["remaining_batch_quantity"],
            "alertResolved": result["alert_resolved"],
            "product": result["product"].to_dict(),
        }), 200
    except SettlementError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve expiration alert")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/products/import-csv")
def import_csv_route():
    """
    All-or-nothing bulk import.

    Body: {products: [{name, price, quantity, barcode, category, brand,
                       description, min_stock, image_url, expiration_date}, ...]}
    Any invalid row rejects the batch; details.row_errors lists every problem.
    """
    data = request.get_json(silent=True) or {}
    try:
        created = import_service.import_products(data.get("products"))
        return jsonify({
            "success": True,
            "imported": len(created),
            "products": [p.to_dict() for p in created],
        }), 201
    except SettlementError as e:
        body = e.to_dict()
        body["success"] = False
        body["imported"] = 0
        return jsonify(body), e.status_code
    except Exception:
        current_app.logger.exception("Failed to import products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/barcode/generate")
def generate_barcode_route():
    """Unused EAN-13 barcode for a new product."""
    try:
        return jsonify({"barcode": products_service.generate_barcode()}), 200
    except Exception:
        current_app.logger.exception("Failed to generate barcode")
        return jsonify({"error": "Internal server error"}), 500
