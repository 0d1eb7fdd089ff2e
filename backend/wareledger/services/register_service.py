# Overview: Service-layer operations for cash register sessions; encapsulates business logic and database work.

"""
Cash register sessions

- One OPEN session per (user, warehouse), enforced by a unique key that is
  cleared on close.
- closing_balance = cash_in_hand + cash taken on sales during the session
  - expense/payroll outflows recorded against it.
- variance = counted cash - closing_balance.
- A closed session is immutable.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..amounts import ZERO, db_decimal, decimal_str, round_money, to_decimal
from ..errors import NotFoundError, RegisterError, ValidationError
from ..models import CashOutflow, CashRegister, Document, Payment, Warehouse
from ..models.documents import SALE
from ..models.payments import METHOD_CASH, PAYMENT_COMPLETED
from ..models.registers import OUTFLOW_KINDS, REGISTER_CLOSED, REGISTER_OPEN
from ..settings import EngineSettings, resolve_settings
from ..time_utils import utcnow
from .concurrency import begin_write, lock_for_update, run_with_retry
from .event_service import append_event


def get_open_register(user_id: int, warehouse_id: int) -> CashRegister | None:
    return (
        db.session.query(CashRegister)
        .filter_by(user_id=user_id, warehouse_id=warehouse_id, status=REGISTER_OPEN)
        .first()
    )


def open_register(
    *,
    user_id: int,
    warehouse_id: int,
    cash_in_hand=ZERO,
    note: str | None = None,
    settings: EngineSettings | None = None,
) -> CashRegister:
    settings = resolve_settings(settings)
    cash = round_money(to_decimal(cash_in_hand, "cash_in_hand"), settings.decimal_places)
    if cash < 0:
        raise ValidationError("cash_in_hand must not be negative")

    def _op():
        begin_write()
        warehouse = db.session.get(Warehouse, warehouse_id)
        if warehouse is None:
            raise NotFoundError(f"Warehouse {warehouse_id} not found")
        existing = get_open_register(user_id, warehouse_id)
        if existing is not None:
            raise RegisterError(
                f"User already has an open register (session {existing.id})",
                details={"cash_register_id": existing.id},
            )

        register = CashRegister(
            user_id=user_id,
            warehouse_id=warehouse_id,
            status=REGISTER_OPEN,
            open_key=1,
            cash_in_hand=cash,
            note=note,
        )
        db.session.add(register)
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            raise RegisterError("User already has an open register") from exc

        append_event(
            event_type="register.session_opened",
            event_category="register",
            entity_type="cash_register",
            entity_id=register.id,
            actor_user_id=user_id,
            warehouse_id=warehouse_id,
            cash_register_id=register.id,
            payload={"cash_in_hand": decimal_str(cash)},
        )
        db.session.commit()
        current_app.logger.info("Register %s opened by user %s", register.id, user_id)
        return register

    return run_with_retry(_op, settings=settings)


def cash_sales_total(cash_register_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .join(Document, Document.id == Payment.document_id)
        .filter(
            Payment.cash_register_id == cash_register_id,
            Payment.method == METHOD_CASH,
            Payment.status == PAYMENT_COMPLETED,
            Document.document_type == SALE,
        )
        .scalar()
    )
    return db_decimal(total)


def outflows_total(cash_register_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(CashOutflow.amount), 0))
        .filter(CashOutflow.cash_register_id == cash_register_id)
        .scalar()
    )
    return db_decimal(total)


def register_summary(cash_register_id: int, *, settings: EngineSettings | None = None) -> dict:
    """Running figures for a session; for a closed one, the stored close figures."""
    settings = resolve_settings(settings)
    places = settings.decimal_places
    register = db.session.get(CashRegister, cash_register_id)
    if register is None:
        raise NotFoundError(f"Cash register {cash_register_id} not found")

    if register.status == REGISTER_CLOSED:
        return register.to_dict()

    cash_sales = round_money(cash_sales_total(register.id), places)
    outflows = round_money(outflows_total(register.id), places)
    expected = db_decimal(register.cash_in_hand) + cash_sales - outflows
    data = register.to_dict()
    data.update(
        {
            "cash_sales": decimal_str(cash_sales),
            "cash_outflows": decimal_str(outflows),
            "expected_balance": decimal_str(round_money(expected, places)),
        }
    )
    return data


def record_outflow(
    *,
    cash_register_id: int,
    kind: str,
    amount,
    note: str | None = None,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
) -> CashOutflow:
    settings = resolve_settings(settings)
    if kind not in OUTFLOW_KINDS:
        raise ValidationError(f"Unknown outflow kind {kind!r}", details={"kind": kind})
    amount = round_money(to_decimal(amount, "amount"), settings.decimal_places)
    if amount <= 0:
        raise ValidationError("Outflow amount must be positive")

    def _op():
        begin_write()
        register = lock_for_update(db.session.query(CashRegister).filter_by(id=cash_register_id)).first()
        if register is None:
            raise NotFoundError(f"Cash register {cash_register_id} not found")
        if register.status != REGISTER_OPEN:
            raise RegisterError("Cash register is closed", details={"cash_register_id": cash_register_id})

        outflow = CashOutflow(
            cash_register_id=register.id, kind=kind, amount=amount, note=note, user_id=user_id
        )
        db.session.add(outflow)
        db.session.flush()
        append_event(
            event_type="register.cash_outflow",
            event_category="register",
            entity_type="cash_outflow",
            entity_id=outflow.id,
            actor_user_id=user_id,
            warehouse_id=register.warehouse_id,
            cash_register_id=register.id,
            note=note,
            payload={"kind": kind, "amount": decimal_str(amount)},
        )
        db.session.commit()
        return outflow

    return run_with_retry(_op, settings=settings)


def close_register(
    *,
    cash_register_id: int,
    actual_cash,
    note: str | None = None,
    user_id: int | None = None,
    settings: EngineSettings | None = None,
) -> CashRegister:
    """
    Close a session and compute its closing balance and variance.

    Returns the closed register; a second close raises RegisterError.
    """
    settings = resolve_settings(settings)
    places = settings.decimal_places
    counted = round_money(to_decimal(actual_cash, "actual_cash"), places)
    if counted < 0:
        raise ValidationError("actual_cash must not be negative")

    def _op():
        begin_write()
        register = lock_for_update(db.session.query(CashRegister).filter_by(id=cash_register_id)).first()
        if register is None:
            raise NotFoundError(f"Cash register {cash_register_id} not found")
        if register.status != REGISTER_OPEN:
            raise RegisterError("Cash register is already closed", details={"cash_register_id": cash_register_id})

        cash_sales = round_money(cash_sales_total(register.id), places)
        outflows = round_money(outflows_total(register.id), places)
        closing_balance = round_money(db_decimal(register.cash_in_hand) + cash_sales - outflows, places)

        register.cash_sales = cash_sales
        register.cash_outflows = outflows
        register.closing_balance = closing_balance
        register.actual_cash = counted
        register.variance = counted - closing_balance
        register.status = REGISTER_CLOSED
        register.open_key = None
        register.closed_at = utcnow()
        if note:
            register.note = note

        append_event(
            event_type="register.session_closed",
            event_category="register",
            entity_type="cash_register",
            entity_id=register.id,
            actor_user_id=user_id or register.user_id,
            warehouse_id=register.warehouse_id,
            cash_register_id=register.id,
            occurred_at=register.closed_at,
            note=note,
            payload={
                "closing_balance": decimal_str(closing_balance),
                "actual_cash": decimal_str(counted),
                "variance": decimal_str(register.variance),
            },
        )
        db.session.commit()
        current_app.logger.info(
            "Register %s closed: expected %s, counted %s", register.id, closing_balance, counted
        )
        return register

    return run_with_retry(_op, settings=settings)


def list_registers(*, status: str | None = None, warehouse_id: int | None = None, limit: int = 50) -> list[CashRegister]:
    query = db.session.query(CashRegister)
    if status:
        query = query.filter(CashRegister.status == status)
    if warehouse_id is not None:
        query = query.filter(CashRegister.warehouse_id == warehouse_id)
    return query.order_by(CashRegister.opened_at.desc(), CashRegister.id.desc()).limit(limit).all()
