# Overview: Flask API routes for stock levels and movements; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..amounts import decimal_str
from ..decorators import acting_user_id, engine_endpoint, json_body
from ..errors import ValidationError
from ..services import stock_ledger_service


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("")
@engine_endpoint
def stock_route():
    """
    Stock levels.

    With product_id and warehouse_id (and optional variant_id / batch_id)
    returns the single quantity for that key; otherwise lists levels.
    """
    product_id = request.args.get("product_id", type=int)
    warehouse_id = request.args.get("warehouse_id", type=int)
    variant_id = request.args.get("variant_id", type=int)
    batch_id = request.args.get("batch_id", type=int)

    if product_id is not None and warehouse_id is not None and request.args.get("levels") is None:
        qty = stock_ledger_service.quantity_of(product_id, warehouse_id, variant_id, batch_id)
        return jsonify({
            "product_id": product_id,
            "warehouse_id": warehouse_id,
            "variant_id": variant_id,
            "batch_id": batch_id,
            "qty": decimal_str(qty),
        }), 200

    levels = stock_ledger_service.list_levels(product_id=product_id, warehouse_id=warehouse_id)
    return jsonify({"levels": [level.to_dict() for level in levels]}), 200


@stock_bp.get("/movements")
@engine_endpoint
def movements_route():
    movements = stock_ledger_service.list_movements(
        product_id=request.args.get("product_id", type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
        document_id=request.args.get("document_id", type=int),
        limit=min(request.args.get("limit", 200, type=int), 1000),
    )
    return jsonify({"movements": [m.to_dict() for m in movements]}), 200


@stock_bp.post("/adjust")
@engine_endpoint
def adjust_route():
    """
    Post a single manual delta outside any document.

    Request body: {"product_id": 1, "warehouse_id": 1, "quantity_delta": "-2", "note": "breakage"}
    """
    data = json_body()
    for field in ("product_id", "warehouse_id", "quantity_delta"):
        if data.get(field) is None:
            raise ValidationError(f"{field} is required")
    new_qty = stock_ledger_service.apply_delta(
        product_id=data["product_id"],
        warehouse_id=data["warehouse_id"],
        quantity_delta=data["quantity_delta"],
        variant_id=data.get("variant_id"),
        batch_id=data.get("batch_id"),
        user_id=acting_user_id(data),
        note=data.get("note"),
    )
    return jsonify({"qty": decimal_str(new_qty)}), 200


@stock_bp.get("/verify")
@engine_endpoint
def verify_route():
    problems = stock_ledger_service.verify_stock_levels()
    return jsonify({"ok": not problems, "problems": problems}), 200
