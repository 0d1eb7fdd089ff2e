# Overview: Flask API routes for transaction documents; parses input and returns JSON responses.

# backend/wareledger/routes/documents.py
"""
Document API Routes

Lifecycle:
- POST /api/documents creates a DRAFT (optionally completing it at once,
  with payments, the way a POS checkout does).
- Lines are added while DRAFT; transitions move it to PENDING, COMPLETED
  or CANCELLED.
- DELETE soft-deletes; a COMPLETED document needs ?reverse=true.
"""

from flask import Blueprint, jsonify, request

from ..decorators import acting_user_id, engine_endpoint, json_body
from ..errors import ValidationError
from ..services import document_service, payment_service, settlement_service


documents_bp = Blueprint("documents", __name__, url_prefix="/api/documents")

_DOCUMENT_FIELDS = {
    "warehouse_id",
    "from_warehouse_id",
    "to_warehouse_id",
    "customer_id",
    "supplier_id",
    "cash_register_id",
    "return_of_document_id",
    "order_tax_rate",
    "order_discount_type",
    "order_discount_value",
    "shipping_cost",
    "coupon_code",
    "note",
}


def _document_response(document, status=200):
    data = document.to_dict(include_lines=True)
    data["payments"] = [p.to_dict() for p in payment_service.list_payments(document.id)]
    return jsonify({"document": data}), status


@documents_bp.post("")
@engine_endpoint
def create_document_route():
    """
    Create a document.

    Request body:
    {
        "document_type": "SALE",
        "warehouse_id": 1,
        "customer_id": 3,                 (optional)
        "lines": [{"product_id": 1, "qty": "2", "unit_price": "9.99"}],
        "complete": false,                (optional)
        "payments": [{"amount": "19.98", "method": "CASH"}]   (needs complete)
    }
    """
    data = json_body()
    document_type = data.get("document_type")
    if not document_type:
        raise ValidationError("document_type is required")
    lines = data.get("lines") or []
    if not isinstance(lines, list):
        raise ValidationError("lines must be a list")

    fields = {key: data[key] for key in _DOCUMENT_FIELDS if key in data}
    document = settlement_service.create_document(
        document_type,
        lines=lines,
        complete=bool(data.get("complete", False)),
        payments=data.get("payments") or None,
        user_id=acting_user_id(data),
        **fields,
    )
    return _document_response(document, 201)


@documents_bp.get("")
@engine_endpoint
def list_documents_route():
    documents, total = document_service.list_documents(
        document_type=request.args.get("document_type"),
        status=request.args.get("status"),
        warehouse_id=request.args.get("warehouse_id", type=int),
        customer_id=request.args.get("customer_id", type=int),
        limit=min(request.args.get("limit", 100, type=int), 500),
        offset=request.args.get("offset", 0, type=int),
    )
    return jsonify({"documents": [d.to_dict() for d in documents], "total": total}), 200


@documents_bp.get("/<int:document_id>")
@engine_endpoint
def get_document_route(document_id: int):
    return _document_response(document_service.get_document(document_id))


@documents_bp.post("/<int:document_id>/lines")
@engine_endpoint
def add_line_route(document_id: int):
    data = json_body()
    user_id = acting_user_id(data)
    spec = {key: value for key, value in data.items() if key != "user_id"}
    settlement_service.add_line(document_id, user_id=user_id, **spec)
    return _document_response(document_service.get_document(document_id), 201)


@documents_bp.post("/<int:document_id>/transition")
@engine_endpoint
def transition_route(document_id: int):
    """
    Request body: {"status": "PENDING" | "COMPLETED" | "CANCELLED", "payments": [...]}
    """
    data = json_body()
    to_status = data.get("status")
    if not to_status:
        raise ValidationError("status is required")
    document = settlement_service.transition(
        document_id,
        str(to_status).upper(),
        payments=data.get("payments") or None,
        user_id=acting_user_id(data),
    )
    return _document_response(document)


@documents_bp.post("/<int:document_id>/fulfill")
@engine_endpoint
def fulfill_route(document_id: int):
    """Request body: {"lines": {"<line id>": "<qty received or delivered>"}}"""
    data = json_body()
    quantities = data.get("lines")
    if not isinstance(quantities, dict) or not quantities:
        raise ValidationError("lines must map line ids to quantities")
    document = settlement_service.fulfill_lines(document_id, quantities, user_id=acting_user_id(data))
    return _document_response(document)


@documents_bp.post("/<int:document_id>/pack")
@engine_endpoint
def pack_route(document_id: int):
    data = json_body()
    line_ids = data.get("line_ids") or []
    document = settlement_service.mark_packed(document_id, line_ids)
    return _document_response(document)


@documents_bp.post("/<int:document_id>/returns")
@engine_endpoint
def create_return_route(document_id: int):
    """Request body: {"lines": [{"line_id": 7, "qty": "1"}], "complete": false}"""
    data = json_body()
    user_id = acting_user_id(data)
    document = settlement_service.create_return(
        document_id, data.get("lines") or [], user_id=user_id, note=data.get("note")
    )
    if data.get("complete"):
        settlement_service.transition(document.id, "PENDING", user_id=user_id)
        document = settlement_service.transition(document.id, "COMPLETED", user_id=user_id)
    return _document_response(document, 201)


@documents_bp.post("/<int:document_id>/convert")
@engine_endpoint
def convert_quotation_route(document_id: int):
    data = json_body()
    sale = settlement_service.convert_quotation(document_id, user_id=acting_user_id(data))
    return _document_response(sale, 201)


@documents_bp.delete("/<int:document_id>")
@engine_endpoint
def delete_document_route(document_id: int):
    data = json_body()
    reverse = request.args.get("reverse", "").lower() in {"1", "true", "yes"} or bool(data.get("reverse"))
    document = settlement_service.delete_document(
        document_id,
        user_id=acting_user_id(data),
        reason=data.get("reason"),
        reverse=reverse,
    )
    return _document_response(document)
