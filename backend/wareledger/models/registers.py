from __future__ import annotations

from ..extensions import db
from ..amounts import decimal_str
from ..time_utils import to_utc_z


REGISTER_OPEN = "OPEN"
REGISTER_CLOSED = "CLOSED"

OUTFLOW_EXPENSE = "EXPENSE"
OUTFLOW_PAYROLL = "PAYROLL"
OUTFLOW_KINDS = {OUTFLOW_EXPENSE, OUTFLOW_PAYROLL}


class CashRegister(db.Model):
    """
    Cash drawer session for one user at one warehouse.

    open_key is 1 while the session is OPEN and NULL once it is CLOSED, so
    the unique constraint allows many closed sessions but a single open one
    per (user, warehouse).
    """
    __tablename__ = "cash_registers"
    __table_args__ = (
        db.UniqueConstraint("user_id", "warehouse_id", "open_key", name="uq_cash_registers_one_open"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=REGISTER_OPEN, index=True)
    open_key = db.Column(db.Integer, nullable=True, default=1)

    cash_in_hand = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    cash_sales = db.Column(db.Numeric(18, 4), nullable=True)
    cash_outflows = db.Column(db.Numeric(18, 4), nullable=True)
    closing_balance = db.Column(db.Numeric(18, 4), nullable=True)
    actual_cash = db.Column(db.Numeric(18, 4), nullable=True)
    variance = db.Column(db.Numeric(18, 4), nullable=True)

    note = db.Column(db.Text, nullable=True)
    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    warehouse = db.relationship("Warehouse")
    outflows = db.relationship("CashOutflow", back_populates="cash_register", lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "cash_in_hand": decimal_str(self.cash_in_hand),
            "cash_sales": decimal_str(self.cash_sales),
            "cash_outflows": decimal_str(self.cash_outflows),
            "closing_balance": decimal_str(self.closing_balance),
            "actual_cash": decimal_str(self.actual_cash),
            "variance": decimal_str(self.variance),
            "note": self.note,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at),
        }


class CashOutflow(db.Model):
    """Cash paid out of a register session (expense or payroll)."""
    __tablename__ = "cash_outflows"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)
    amount = db.Column(db.Numeric(18, 4), nullable=False)
    note = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    cash_register = db.relationship("CashRegister", back_populates="outflows")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cash_register_id": self.cash_register_id,
            "kind": self.kind,
            "amount": decimal_str(self.amount),
            "note": self.note,
            "user_id": self.user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
