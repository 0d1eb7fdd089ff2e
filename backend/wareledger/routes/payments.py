# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import acting_user_id, engine_endpoint, json_body
from ..errors import ValidationError
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@engine_endpoint
def allocate_payment_route():
    """
    Record a payment.

    Request body:
    {
        "document_id": 12,          (omit with customer_id for a deposit)
        "amount": "25.00",
        "method": "CARD",
        "detail": {"card_last4": "4242"},
        "tendered": "30.00",        (CASH only)
        "cash_register_id": 2
    }
    """
    data = json_body()
    if data.get("amount") is None or not data.get("method"):
        raise ValidationError("amount and method are required")
    payment = payment_service.allocate(
        document_id=data.get("document_id"),
        amount=data.get("amount"),
        method=str(data.get("method")).upper(),
        detail=data.get("detail"),
        customer_id=data.get("customer_id"),
        tendered=data.get("tendered"),
        cash_register_id=data.get("cash_register_id"),
        user_id=acting_user_id(data),
        note=data.get("note"),
    )
    return jsonify({"payment": payment.to_dict()}), 201


@payments_bp.get("")
@engine_endpoint
def list_payments_route():
    document_id = request.args.get("document_id", type=int)
    if document_id is None:
        raise ValidationError("document_id is required")
    payments = payment_service.list_payments(document_id)
    return jsonify({"payments": [p.to_dict() for p in payments]}), 200


@payments_bp.get("/<int:payment_id>")
@engine_endpoint
def get_payment_route(payment_id: int):
    return jsonify({"payment": payment_service.get_payment(payment_id).to_dict()}), 200


@payments_bp.post("/<int:payment_id>/reverse")
@engine_endpoint
def reverse_payment_route(payment_id: int):
    data = json_body()
    reversal = payment_service.reverse(payment_id, user_id=acting_user_id(data), reason=data.get("reason"))
    return jsonify({"reversal": reversal.to_dict()}), 200


@payments_bp.post("/installment-plans")
@engine_endpoint
def create_installment_plan_route():
    data = json_body()
    if data.get("document_id") is None or data.get("months") is None:
        raise ValidationError("document_id and months are required")
    try:
        months = int(data["months"])
    except (TypeError, ValueError):
        raise ValidationError("months must be an integer")
    plan = payment_service.create_installment_plan(
        document_id=data["document_id"],
        months=months,
        down_payment=data.get("down_payment") or 0,
        name=data.get("name"),
    )
    return jsonify({"plan": plan.to_dict()}), 201
