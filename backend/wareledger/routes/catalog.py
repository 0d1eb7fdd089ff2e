# Overview: Flask API routes for units of measure; parses input and returns JSON responses.

from flask import Blueprint, jsonify

from ..amounts import decimal_str
from ..decorators import engine_endpoint, json_body
from ..errors import ValidationError
from ..extensions import db
from ..models import Unit
from ..services import unit_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/units")


@catalog_bp.get("")
@engine_endpoint
def list_units_route():
    units = db.session.query(Unit).order_by(Unit.id).all()
    return jsonify({"units": [u.to_dict() for u in units]}), 200


@catalog_bp.post("")
@engine_endpoint
def create_unit_route():
    """
    Request body:
    {
        "code": "box12",
        "name": "Box of 12",
        "base_unit_id": 1,      (omit for a base unit)
        "operator": "*",
        "operation_value": "12"
    }
    """
    data = json_body()
    if not data.get("code") or not data.get("name"):
        raise ValidationError("code and name are required")
    unit = unit_service.create_unit(
        code=data["code"],
        name=data["name"],
        base_unit_id=data.get("base_unit_id"),
        operator=data.get("operator"),
        operation_value=data.get("operation_value"),
    )
    return jsonify({"unit": unit.to_dict()}), 201


@catalog_bp.post("/convert")
@engine_endpoint
def convert_route():
    """Request body: {"quantity": "2", "from_unit_id": 2, "to_unit_id": 1}"""
    data = json_body()
    for field in ("quantity", "from_unit_id", "to_unit_id"):
        if data.get(field) is None:
            raise ValidationError(f"{field} is required")
    result = unit_service.convert(data["quantity"], int(data["from_unit_id"]), int(data["to_unit_id"]))
    return jsonify({
        "quantity": decimal_str(result),
        "from_unit_id": data["from_unit_id"],
        "to_unit_id": data["to_unit_id"],
    }), 200
