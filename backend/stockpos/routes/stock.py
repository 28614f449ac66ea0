# Overview: Flask API routes for stock lots and the stock audit trail; parses input and returns JSON responses.

# backend/stockpos/routes/stock.py
"""
Stock lot routes.

Every write runs inside one UnitOfWork: the lot change and its audit record
commit together. Error mapping:
- 400: invalid input, insufficient stock
- 404: unknown lot, store or product
- 409: concurrent writers won every retry
- 500: anything else (logged)
"""

from flask import Blueprint, current_app, jsonify, request

from ..models import StockAuditLog, StockLot
from ..services import inventory_service, stock_audit_service, stock_ledger_service
from ..services.inventory_service import InventoryError, InventoryNotFoundError
from ..services.stock_errors import (
    InsufficientStockError,
    LotMissingError,
    StockConflictError,
)
from ..services.unit_of_work import UnitOfWork
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_lot_receive,
    query_int,
    require_positive_int,
    validate_payload,
)


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

LOT_RECEIVE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "product_id",
        "store_id",
        "quantity",
        "expiration_date",
        "purchase_date",
        "purchase_price_cents",
        "supplier_id",
        "reorder_threshold",
    }),
    required_on_create=frozenset({"product_id", "store_id", "quantity"}),
)


def _stock_error_response(e):
    """Shared mapping for the stock error taxonomy; None when `e` is not a stock error."""
    if isinstance(e, (LotMissingError, InventoryNotFoundError)):
        details = e.to_details() if isinstance(e, LotMissingError) else e.details
        return jsonify({"error": str(e), "details": details}), 404
    if isinstance(e, InsufficientStockError):
        return jsonify({"error": str(e), "details": e.to_details()}), 400
    if isinstance(e, StockConflictError):
        return jsonify({"error": str(e), "details": e.to_details()}), 409
    if isinstance(e, InventoryError):
        return jsonify({"error": str(e), "details": e.details}), 400
    if isinstance(e, ValidationError):
        return jsonify({"error": str(e)}), 400
    return None


# =============================================================================
# LOTS
# =============================================================================

@stock_bp.post("/lots")
def receive_lot_route():
    """Receive a delivered batch as a new lot (audit INSERT)."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=StockLot, payload=payload, policy=LOT_RECEIVE_POLICY)
        enforce_rules_lot_receive(patch)

        with UnitOfWork() as uow:
            lot = inventory_service.receive_lot(uow, **patch)

        return jsonify({"lot": lot.to_dict()}), 201

    except Exception as e:
        mapped = _stock_error_response(e)
        if mapped is not None:
            return mapped
        current_app.logger.exception("Failed to receive stock lot")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/lots/<int:lot_id>")
def get_lot_route(lot_id: int):
    lot = inventory_service.get_lot(UnitOfWork(), lot_id)
    if lot is None:
        return jsonify({"error": "Stock lot not found"}), 404
    return jsonify({"lot": lot.to_dict()}), 200


@stock_bp.post("/lots/<int:lot_id>/increase")
def increase_lot_route(lot_id: int):
    """Add units to an existing lot (version-checked, audit UPDATE)."""
    payload = request.get_json(silent=True) or {}

    try:
        quantity = require_positive_int(payload, "quantity")

        with UnitOfWork() as uow:
            lot = stock_ledger_service.increase(uow, lot_id, quantity)

        return jsonify({"lot": lot.to_dict()}), 200

    except Exception as e:
        mapped = _stock_error_response(e)
        if mapped is not None:
            return mapped
        current_app.logger.exception("Failed to increase stock lot")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.delete("/lots/<int:lot_id>")
def delete_lot_route(lot_id: int):
    try:
        with UnitOfWork() as uow:
            lot = inventory_service.delete_lot(uow, lot_id)

        return jsonify({"deleted": lot.to_dict()}), 200

    except Exception as e:
        mapped = _stock_error_response(e)
        if mapped is not None:
            return mapped
        current_app.logger.exception("Failed to delete stock lot")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# STORE / PRODUCT VIEWS
# =============================================================================

@stock_bp.get("/stores/<int:store_id>/products/<int:product_id>")
def product_stock_route(store_id: int, product_id: int):
    """Total quantity plus the lots in consumption order."""
    uow = UnitOfWork()
    lots = inventory_service.list_lots(uow, product_id, store_id)
    return jsonify({
        "store_id": store_id,
        "product_id": product_id,
        "total_quantity": sum(lot.quantity for lot in lots),
        "lots": [lot.to_dict() for lot in lots],
    }), 200


@stock_bp.get("/stores/<int:store_id>/products/<int:product_id>/availability")
def availability_route(store_id: int, product_id: int):
    """
    Advisory availability check. A positive answer reserves nothing.
    """
    try:
        quantity = query_int(request.args, "quantity", 1, minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    uow = UnitOfWork()
    available = stock_ledger_service.validate_availability(uow, product_id, store_id, quantity)
    return jsonify({
        "store_id": store_id,
        "product_id": product_id,
        "requested": quantity,
        "total_quantity": stock_ledger_service.get_total_quantity(uow, product_id, store_id),
        "available": available,
    }), 200


@stock_bp.get("/stores/<int:store_id>/summary")
def store_summary_route(store_id: int):
    summary = inventory_service.get_store_stock_summary(UnitOfWork(), store_id)
    return jsonify({"store_id": store_id, "products": summary}), 200


@stock_bp.get("/stores/<int:store_id>/low-stock")
def low_stock_route(store_id: int):
    lots = inventory_service.get_low_stock_lots(UnitOfWork(), store_id)
    return jsonify({"store_id": store_id, "lots": [lot.to_dict() for lot in lots]}), 200


@stock_bp.get("/stores/<int:store_id>/expiring")
def expiring_route(store_id: int):
    try:
        days = query_int(request.args, "days", 7)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    lots = inventory_service.get_expiring_lots(UnitOfWork(), store_id, days)
    return jsonify({"store_id": store_id, "days": days, "lots": [lot.to_dict() for lot in lots]}), 200


# =============================================================================
# AUDIT
# =============================================================================

@stock_bp.get("/lots/<int:lot_id>/history")
def lot_history_route(lot_id: int):
    logs = stock_audit_service.get_lot_history(lot_id)
    return jsonify({"lot_id": lot_id, "history": [log.to_dict() for log in logs]}), 200


@stock_bp.get("/products/<int:product_id>/history")
def product_history_route(product_id: int):
    logs = stock_audit_service.get_product_history(product_id)
    return jsonify({"product_id": product_id, "history": [log.to_dict() for log in logs]}), 200


@stock_bp.get("/stores/<int:store_id>/audit/recent")
def recent_audit_route(store_id: int):
    try:
        hours = query_int(request.args, "hours", 24, minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    logs = stock_audit_service.get_recent_modifications(store_id, hours)
    return jsonify({"store_id": store_id, "hours": hours, "logs": [log.to_dict() for log in logs]}), 200


@stock_bp.get("/stores/<int:store_id>/audit/operations/<operation_type>")
def audit_by_operation_route(store_id: int, operation_type: str):
    operation_type = operation_type.upper()
    if operation_type not in StockAuditLog.OPERATIONS:
        return jsonify({"error": f"operation_type must be one of {list(StockAuditLog.OPERATIONS)}"}), 400

    logs = stock_audit_service.get_logs_by_operation(store_id, operation_type)
    return jsonify({"store_id": store_id, "operation_type": operation_type, "logs": [log.to_dict() for log in logs]}), 200


@stock_bp.get("/stores/<int:store_id>/audit/concurrency")
def concurrency_stats_route(store_id: int):
    """Hourly buckets in which several lots were modified (contention indicator)."""
    try:
        hours = query_int(request.args, "hours", 24, minimum=1)
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400

    stats = stock_audit_service.get_concurrency_statistics(store_id, hours)
    return jsonify({"store_id": store_id, "hours": hours, "buckets": stats}), 200
