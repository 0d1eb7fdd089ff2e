# Overview: Flask API routes for cash register sessions; parses input and returns JSON responses.

# backend/wareledger/routes/registers.py
"""
Register Session API Routes

Session lifecycle: open -> close (immutable once closed). Expenses and
payroll paid out of the till are recorded as outflows while open.
"""

from flask import Blueprint, jsonify, request

from ..decorators import acting_user_id, engine_endpoint, json_body
from ..errors import ValidationError
from ..services import register_service


registers_bp = Blueprint("registers", __name__, url_prefix="/api/registers")


@registers_bp.post("/open")
@engine_endpoint
def open_register_route():
    """
    Request body:
    {
        "user_id": 4,
        "warehouse_id": 1,
        "cash_in_hand": "100.00"
    }
    """
    data = json_body()
    user_id = acting_user_id(data)
    if user_id is None or data.get("warehouse_id") is None:
        raise ValidationError("user_id and warehouse_id are required")
    register = register_service.open_register(
        user_id=user_id,
        warehouse_id=data["warehouse_id"],
        cash_in_hand=data.get("cash_in_hand", 0),
        note=data.get("note"),
    )
    return jsonify({"register": register.to_dict()}), 201


@registers_bp.get("")
@engine_endpoint
def list_registers_route():
    registers = register_service.list_registers(
        status=request.args.get("status"),
        warehouse_id=request.args.get("warehouse_id", type=int),
        limit=min(request.args.get("limit", 50, type=int), 200),
    )
    return jsonify({"registers": [r.to_dict() for r in registers]}), 200


@registers_bp.get("/<int:register_id>")
@engine_endpoint
def register_summary_route(register_id: int):
    return jsonify({"register": register_service.register_summary(register_id)}), 200


@registers_bp.post("/<int:register_id>/outflows")
@engine_endpoint
def record_outflow_route(register_id: int):
    """Request body: {"kind": "EXPENSE" | "PAYROLL", "amount": "12.50", "note": "..."}"""
    data = json_body()
    if not data.get("kind") or data.get("amount") is None:
        raise ValidationError("kind and amount are required")
    outflow = register_service.record_outflow(
        cash_register_id=register_id,
        kind=str(data["kind"]).upper(),
        amount=data["amount"],
        note=data.get("note"),
        user_id=acting_user_id(data),
    )
    return jsonify({"outflow": outflow.to_dict()}), 201


@registers_bp.post("/<int:register_id>/close")
@engine_endpoint
def close_register_route(register_id: int):
    """Request body: {"actual_cash": "245.10", "note": "..."}"""
    data = json_body()
    if data.get("actual_cash") is None:
        raise ValidationError("actual_cash is required")
    register = register_service.close_register(
        cash_register_id=register_id,
        actual_cash=data["actual_cash"],
        note=data.get("note"),
        user_id=acting_user_id(data),
    )
    return jsonify({"register": register.to_dict()}), 200
