# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/stockpos/routes/sales.py
"""Sales API routes: cart editing, stock reservation, and payment"""

from flask import Blueprint, request, jsonify
from flask import current_app

from ..services import sales_service
from ..services.sales_service import SaleError, SaleNotFoundError
from ..validation import ValidationError, coerce_int, optional_non_negative_int, require_positive_int


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


def _sale_error_response(e: SaleError):
    status = 404 if isinstance(e, SaleNotFoundError) else 400
    if e.details.get("reason") == "conflict":
        status = 409
    return jsonify({"error": str(e), "details": e.details}), status


@sales_bp.post("/")
def create_sale_route():
    """Create new draft sale."""
    try:
        data = request.get_json(silent=True) or {}
        if data.get("store_id") is None:
            return jsonify({"error": "store_id required"}), 400

        store_id = coerce_int("store_id", data["store_id"])
        sale = sales_service.create_sale(store_id, is_deferred=bool(data.get("is_deferred", False)))

        return jsonify({"sale": sale.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Get sale with lines and payments."""
    try:
        sale = sales_service.get_sale(sale_id)
    except SaleError as e:
        return _sale_error_response(e)

    return jsonify({"sale": sale.to_dict(include_lines=True)}), 200


@sales_bp.post("/<int:sale_id>/items")
def add_item_route(sale_id: int):
    """Add a product to a draft sale (grows the existing line for the same product)."""
    try:
        data = request.get_json(silent=True) or {}
        product_id = require_positive_int(data, "product_id")
        quantity = require_positive_int(data, "quantity")

        line = sales_service.add_item(sale_id, product_id, quantity)

        return jsonify({"line": line.to_dict(), "sale": line.sale.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.patch("/items/<int:line_id>")
def update_item_route(line_id: int):
    try:
        data = request.get_json(silent=True) or {}
        quantity = require_positive_int(data, "quantity")

        line = sales_service.update_item_quantity(line_id, quantity)

        return jsonify({"line": line.to_dict(), "sale": line.sale.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/items/<int:line_id>")
def remove_item_route(line_id: int):
    try:
        sale = sales_service.remove_item(line_id)
        return jsonify({"sale": sale.to_dict(include_lines=True)}), 200

    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove sale item")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/pay")
def pay_sale_route(sale_id: int):
    """
    Finalize a sale: tender, payment record, and stock decrement in one transaction.

    Body: {"tender_type": "CASH"|"CARD", "amount_received_cents": int, "currency": "EUR"}
    """
    try:
        data = request.get_json(silent=True) or {}
        tender_type = data.get("tender_type")
        if not tender_type:
            return jsonify({"error": "tender_type required"}), 400

        amount_received = optional_non_negative_int(data, "amount_received_cents")
        sale, payment = sales_service.finalize_sale(
            sale_id,
            tender_type,
            amount_received,
            data.get("currency"),
        )

        return jsonify({"sale": sale.to_dict(include_lines=True), "payment": payment.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to finalize sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/reserve")
def reserve_sale_route(sale_id: int):
    """Take the stock for every line now; all lines or none."""
    try:
        reserved = sales_service.reserve_stock_for_sale(sale_id)
        if not reserved:
            return jsonify({"reserved": False, "error": "Insufficient stock to reserve"}), 409
        return jsonify({"reserved": True, "sale": sales_service.get_sale(sale_id).to_dict()}), 200

    except SaleError as e:
        return _sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reserve stock for sale")
        return jsonify({"error": "Internal server error"}), 500
