# Overview: Service-layer operations for payments; encapsulates business logic and database work.

"""
Payment allocation

DESIGN PRINCIPLES:
- Payments are separate from documents (many-to-one); a sale or purchase
  can be split across methods and paid in several goes.
- A document is never paid beyond grand_total + payment_epsilon.
- Payments are immutable: reversal marks the original REVERSED and adds a
  negated REVERSAL row. paid_amount only counts COMPLETED rows.
- Funding sources (gift card balance, reward points, installments) are
  debited in the same transaction as the payment row; if the debit fails
  no payment exists.
- Cash over-tender is recorded as change on the payment.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from flask import current_app
from sqlalchemy import func, or_, update

from ..extensions import db
from ..amounts import ZERO, db_decimal, decimal_str, round_money, to_decimal
from ..errors import (
    FundingSourceError,
    InvalidStateTransition,
    NotFoundError,
    PaymentOverAllocation,
    RegisterError,
    ValidationError,
)
from ..models import CashRegister, Customer, Document, GiftCard, Installment, InstallmentPlan, Payment
from ..models.documents import (
    PAYMENT_PAID,
    PAYMENT_PARTIAL,
    PAYMENT_REFUNDED,
    PAYMENT_UNPAID,
    SALE,
    STATUS_COMPLETED,
    STATUS_PENDING,
)
from ..models.payments import (
    DETAIL_CLASSES,
    METHOD_CASH,
    METHOD_GIFT_CARD,
    METHOD_INSTALLMENT,
    METHOD_REWARD_POINTS,
    PAYMENT_COMPLETED,
    PAYMENT_METHODS,
    PAYMENT_REVERSAL,
    PAYMENT_REVERSED,
)
from ..models.registers import REGISTER_OPEN
from ..settings import EngineSettings, resolve_settings
from ..time_utils import add_months, today, utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import new_payment_reference
from .event_service import append_event
from . import reward_service


# Methods that draw on a balance the engine keeps and cannot fund a deposit
_FUNDED_METHODS = {METHOD_GIFT_CARD, METHOD_REWARD_POINTS, METHOD_INSTALLMENT}
_PAYABLE_STATUSES = {STATUS_PENDING, STATUS_COMPLETED}


def next_payment_status(
    paid: Decimal,
    grand_total: Decimal,
    epsilon: Decimal,
    *,
    previous: Optional[str] = None,
    reversal: bool = False,
) -> str:
    if reversal and previous in (PAYMENT_PAID, PAYMENT_REFUNDED) and paid + epsilon < grand_total:
        return PAYMENT_REFUNDED
    if paid + epsilon >= grand_total:
        return PAYMENT_PAID
    if paid <= 0:
        return PAYMENT_UNPAID
    return PAYMENT_PARTIAL


def completed_total(document_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.document_id == document_id, Payment.status == PAYMENT_COMPLETED)
        .scalar()
    )
    return db_decimal(total)


def refresh_payment_status(document: Document, settings: EngineSettings, *, reversal: bool = False) -> str:
    """Recompute paid_amount and payment_status from COMPLETED payments (no commit)."""
    places = settings.decimal_places
    paid = round_money(completed_total(document.id), places)
    grand_total = round_money(db_decimal(document.grand_total), places)
    document.paid_amount = paid
    document.payment_status = next_payment_status(
        paid,
        grand_total,
        settings.payment_epsilon,
        previous=document.payment_status,
        reversal=reversal,
    )
    return document.payment_status


def _build_detail(method: str, detail: Optional[dict[str, Any]]):
    cls = DETAIL_CLASSES.get(method)
    detail = dict(detail or {})
    if cls is None:
        if detail:
            raise ValidationError(f"{method} payments take no detail", details={"method": method})
        return None

    settable = set(cls.fields) - {"points"}
    unknown = sorted(set(detail) - settable)
    if unknown:
        raise ValidationError(
            f"Unknown detail fields for {method}", details={"method": method, "fields": unknown}
        )
    missing = [name for name in cls.required_fields if detail.get(name) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing detail fields for {method}", details={"method": method, "fields": missing}
        )
    last4 = detail.get("card_last4")
    if last4 is not None and (len(str(last4)) != 4 or not str(last4).isdigit()):
        raise ValidationError("card_last4 must be four digits")
    return cls(**{name: detail[name] for name in settable if name in detail})


def _debit_gift_card(gift_card_id: int, amount: Decimal, customer_id: Optional[int]) -> None:
    card = db.session.get(GiftCard, gift_card_id)
    if card is None:
        raise NotFoundError(f"Gift card {gift_card_id} not found", details={"gift_card_id": gift_card_id})
    if card.customer_id is not None and customer_id is not None and card.customer_id != customer_id:
        raise FundingSourceError("Gift card belongs to another customer", details={"gift_card_id": gift_card_id})

    result = db.session.execute(
        update(GiftCard)
        .where(
            GiftCard.id == gift_card_id,
            GiftCard.is_active.is_(True),
            GiftCard.amount - GiftCard.expense >= amount,
            or_(GiftCard.expired_date.is_(None), GiftCard.expired_date >= today()),
        )
        .values(expense=GiftCard.expense + amount),
        execution_options={"synchronize_session": "fetch"},
    )
    if not result.rowcount:
        raise FundingSourceError(
            "Gift card balance is insufficient or the card is not usable",
            details={"gift_card_id": gift_card_id, "balance": decimal_str(card.balance), "amount": decimal_str(amount)},
        )


def _claim_installment(installment_id: int, document: Optional[Document], amount: Decimal, settings: EngineSettings) -> Installment:
    installment = lock_for_update(db.session.query(Installment).filter_by(id=installment_id)).first()
    if installment is None:
        raise NotFoundError(f"Installment {installment_id} not found")
    if document is None or installment.plan.document_id != document.id:
        raise FundingSourceError("Installment belongs to another document", details={"installment_id": installment_id})
    if installment.status != "PENDING":
        raise FundingSourceError("Installment is already paid", details={"installment_id": installment_id})
    if abs(db_decimal(installment.amount) - amount) > settings.payment_epsilon:
        raise ValidationError(
            "Payment must match the installment amount",
            details={"installment_id": installment_id, "amount": decimal_str(installment.amount)},
        )
    installment.status = "PAID"
    return installment


def _open_register(cash_register_id: int) -> CashRegister:
    register = db.session.get(CashRegister, cash_register_id)
    if register is None:
        raise NotFoundError(f"Cash register {cash_register_id} not found")
    if register.status != REGISTER_OPEN:
        raise RegisterError("Cash register is closed", details={"cash_register_id": cash_register_id})
    return register


def _allocate_locked(
    document: Optional[Document],
    amount,
    method: str,
    detail: Optional[dict[str, Any]] = None,
    *,
    settings: EngineSettings,
    customer_id: int | None = None,
    tendered=None,
    cash_register_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> Payment:
    """Create one payment inside the caller's transaction (no commit)."""
    places = settings.decimal_places
    amount = round_money(to_decimal(amount, "amount"), places)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Unknown payment method {method!r}", details={"method": method})

    if document is not None:
        if not document.payable:
            raise ValidationError(
                f"{document.document_type} documents do not take payments", details={"document_id": document.id}
            )
        if document.status not in _PAYABLE_STATUSES:
            raise InvalidStateTransition(
                f"Cannot pay a {document.status} document", details={"document_id": document.id}
            )
        customer_id = customer_id or document.customer_id
        cash_register_id = cash_register_id or document.cash_register_id

        paid = completed_total(document.id)
        grand_total = db_decimal(document.grand_total)
        if paid + amount > grand_total + settings.payment_epsilon:
            raise PaymentOverAllocation(
                "Payment exceeds the amount due",
                details={
                    "document_id": document.id,
                    "grand_total": decimal_str(grand_total),
                    "paid_amount": decimal_str(paid),
                    "attempted": decimal_str(amount),
                },
            )
    else:
        if customer_id is None:
            raise ValidationError("A payment without a document needs a customer")
        if method in _FUNDED_METHODS:
            raise ValidationError(f"{method} cannot fund a deposit")
        if db.session.get(Customer, customer_id) is None:
            raise NotFoundError(f"Customer {customer_id} not found")

    change = ZERO
    if tendered is not None:
        if method != METHOD_CASH:
            raise ValidationError("Only cash payments take a tendered amount")
        tendered = round_money(to_decimal(tendered, "tendered"), places)
        if tendered < amount:
            raise ValidationError("Tendered amount is less than the payment")
        change = tendered - amount

    if cash_register_id is not None:
        _open_register(cash_register_id)

    payment_detail = _build_detail(method, detail)

    # Debit the funding source before the payment row exists
    points_spent = None
    installment = None
    if method == METHOD_GIFT_CARD:
        _debit_gift_card(int(payment_detail.gift_card_id), amount, customer_id)
    elif method == METHOD_REWARD_POINTS:
        points_spent = reward_service.redeem_for_payment(
            customer_id, amount, settings=settings, document_id=document.id if document else None
        )
        payment_detail.points = points_spent
    elif method == METHOD_INSTALLMENT:
        installment = _claim_installment(int(payment_detail.installment_id), document, amount, settings)

    payment = Payment(
        payment_reference=new_payment_reference(),
        document_id=document.id if document else None,
        customer_id=customer_id,
        cash_register_id=cash_register_id,
        method=method,
        amount=amount,
        change=change,
        status=PAYMENT_COMPLETED,
        user_id=user_id,
        note=note,
    )
    db.session.add(payment)
    if payment_detail is not None:
        payment_detail.payment = payment
        db.session.add(payment_detail)
    db.session.flush()

    if installment is not None:
        installment.payment_id = payment.id
    if document is not None:
        refresh_payment_status(document, settings)
    else:
        db.session.execute(
            update(Customer).where(Customer.id == customer_id).values(deposit=Customer.deposit + amount),
            execution_options={"synchronize_session": "fetch"},
        )

    append_event(
        event_type="payment.allocated",
        event_category="payment",
        entity_type="payment",
        entity_id=payment.id,
        actor_user_id=user_id,
        document_id=payment.document_id,
        payment_id=payment.id,
        cash_register_id=cash_register_id,
        payload={
            "method": method,
            "amount": decimal_str(amount),
            "change": decimal_str(change),
            "points": decimal_str(points_spent),
        },
    )
    return payment


def allocate(
    *,
    document_id: int | None,
    amount,
    method: str,
    detail: Optional[dict[str, Any]] = None,
    customer_id: int | None = None,
    tendered=None,
    cash_register_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
    settings: EngineSettings | None = None,
) -> Payment:
    """
    Record a payment against a sale or purchase, or a customer deposit when
    document_id is None.

    Raises PaymentOverAllocation, FundingSourceError, InvalidStateTransition
    or ValidationError; nothing is persisted on failure.
    """
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        document = None
        if document_id is not None:
            document = lock_for_update(db.session.query(Document).filter_by(id=document_id)).first()
            if document is None:
                raise NotFoundError(f"Document {document_id} not found", details={"document_id": document_id})
        payment = _allocate_locked(
            document,
            amount,
            method,
            detail,
            settings=settings,
            customer_id=customer_id,
            tendered=tendered,
            cash_register_id=cash_register_id,
            user_id=user_id,
            note=note,
        )
        db.session.commit()
        current_app.logger.info(
            "Payment %s allocated: %s %s on document %s", payment.id, method, payment.amount, document_id
        )
        return payment

    return run_with_retry(_op, settings=settings)


def _reverse_locked(
    payment: Payment,
    *,
    settings: EngineSettings,
    user_id: int | None = None,
    reason: str | None = None,
) -> Payment:
    """Reverse one COMPLETED payment inside the caller's transaction (no commit)."""
    if payment.status != PAYMENT_COMPLETED:
        raise InvalidStateTransition(
            f"Cannot reverse a {payment.status} payment", details={"payment_id": payment.id}
        )
    amount = db_decimal(payment.amount)

    detail = payment.detail
    if payment.method == METHOD_GIFT_CARD:
        db.session.execute(
            update(GiftCard)
            .where(GiftCard.id == detail.gift_card_id)
            .values(expense=GiftCard.expense - amount),
            execution_options={"synchronize_session": "fetch"},
        )
    elif payment.method == METHOD_REWARD_POINTS:
        reward_service.refund_points(
            payment.customer_id, db_decimal(detail.points), payment_id=payment.id, document_id=payment.document_id
        )
    elif payment.method == METHOD_INSTALLMENT:
        installment = db.session.get(Installment, detail.installment_id)
        installment.status = "PENDING"
        installment.payment_id = None
    if payment.document_id is None:
        db.session.execute(
            update(Customer).where(Customer.id == payment.customer_id).values(deposit=Customer.deposit - amount),
            execution_options={"synchronize_session": "fetch"},
        )

    payment.status = PAYMENT_REVERSED
    payment.reversed_at = utcnow()
    payment.reversal_reason = reason
    reversal = Payment(
        payment_reference=new_payment_reference(),
        document_id=payment.document_id,
        customer_id=payment.customer_id,
        cash_register_id=payment.cash_register_id,
        method=payment.method,
        amount=-amount,
        change=0,
        status=PAYMENT_REVERSAL,
        reversal_of_id=payment.id,
        user_id=user_id,
        note=reason,
    )
    db.session.add(reversal)
    db.session.flush()

    if payment.document_id is not None:
        refresh_payment_status(payment.document, settings, reversal=True)

    append_event(
        event_type="payment.reversed",
        event_category="payment",
        entity_type="payment",
        entity_id=payment.id,
        actor_user_id=user_id,
        document_id=payment.document_id,
        payment_id=payment.id,
        cash_register_id=payment.cash_register_id,
        note=reason,
        payload={"method": payment.method, "amount": decimal_str(amount), "reversal_id": reversal.id},
    )
    return reversal


def reverse(
    payment_id: int,
    *,
    user_id: int | None = None,
    reason: str | None = None,
    settings: EngineSettings | None = None,
) -> Payment:
    """Reverse a payment and return the REVERSAL row."""
    settings = resolve_settings(settings)

    def _op():
        begin_write()
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})
        if payment.document_id is not None:
            lock_for_update(db.session.query(Document).filter_by(id=payment.document_id)).first()
        reversal = _reverse_locked(payment, settings=settings, user_id=user_id, reason=reason)
        db.session.commit()
        current_app.logger.info("Payment %s reversed by %s", payment_id, user_id)
        return reversal

    return run_with_retry(_op, settings=settings)


def list_payments(document_id: int, *, include_reversed: bool = True) -> list[Payment]:
    query = db.session.query(Payment).filter(Payment.document_id == document_id)
    if not include_reversed:
        query = query.filter(Payment.status == PAYMENT_COMPLETED)
    return query.order_by(Payment.id).all()


def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found", details={"payment_id": payment_id})
    return payment


def create_installment_plan(
    *,
    document_id: int,
    months: int,
    down_payment=ZERO,
    first_payment_date=None,
    name: str | None = None,
    settings: EngineSettings | None = None,
) -> InstallmentPlan:
    """
    Split what is left of a sale after the down payment into monthly installments.

    The last installment absorbs the rounding remainder so the schedule adds
    up to total_amount - down_payment exactly.
    """
    settings = resolve_settings(settings)
    places = settings.decimal_places
    if months < 1:
        raise ValidationError("months must be at least 1")

    def _op():
        begin_write()
        document = lock_for_update(db.session.query(Document).filter_by(id=document_id)).first()
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if document.document_type != SALE or document.status not in _PAYABLE_STATUSES:
            raise ValidationError("Installment plans need a pending or completed sale")
        if db.session.query(InstallmentPlan.id).filter_by(document_id=document_id).first():
            raise ValidationError("Sale already has an installment plan")

        price = db_decimal(document.grand_total)
        down = round_money(to_decimal(down_payment), places)
        total = price
        financed = total - down
        if down < 0 or financed <= 0:
            raise ValidationError("Down payment must leave a positive amount to finance")

        plan = InstallmentPlan(
            document_id=document_id,
            name=name,
            price=price,
            total_amount=total,
            down_payment=down,
            months=months,
        )
        db.session.add(plan)
        db.session.flush()

        monthly = round_money(financed / months, places)
        start = first_payment_date or add_months(today(), 1)
        for index in range(months):
            amount = monthly if index < months - 1 else financed - monthly * (months - 1)
            db.session.add(
                Installment(plan_id=plan.id, payment_date=add_months(start, index), amount=amount)
            )
        append_event(
            event_type="payment.installment_plan_created",
            event_category="payment",
            entity_type="installment_plan",
            entity_id=plan.id,
            document_id=document_id,
            payload={"months": months, "total_amount": decimal_str(total)},
        )
        db.session.commit()
        return plan

    return run_with_retry(_op, settings=settings)
