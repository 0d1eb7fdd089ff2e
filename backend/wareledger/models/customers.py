from __future__ import annotations

from ..extensions import db
from ..amounts import db_decimal, decimal_str
from ..time_utils import to_utc_z


REWARD_EARN = "EARN"
REWARD_REDEEM = "REDEEM"
REWARD_REFUND = "REFUND"
REWARD_EXPIRE = "EXPIRE"
REWARD_REVERSAL = "REVERSAL"

# Entries that add spendable points and are consumed first-in first-out
REWARD_CREDIT_TYPES = (REWARD_EARN, REWARD_REFUND)


class Customer(db.Model):
    """
    Customer master data.

    points is the spendable reward balance. It is only changed through
    conditional UPDATEs together with a RewardPoint ledger entry.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    phone = db.Column(db.String(32), nullable=True)

    points = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    # Running total of customer deposits (payments without a document)
    deposit = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "points": decimal_str(self.points),
            "deposit": decimal_str(self.deposit),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class RewardPoint(db.Model):
    """
    Signed reward-point ledger entry.

    Credit entries (EARN, REFUND) are positive and track how much of them
    has been spent or expired in deducted_points. Debit entries (REDEEM,
    EXPIRE, REVERSAL) are negative.
    """
    __tablename__ = "reward_points"
    __table_args__ = (
        db.Index("ix_reward_points_customer_type", "customer_id", "entry_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False)
    entry_type = db.Column(db.String(16), nullable=False)
    points = db.Column(db.Numeric(18, 6), nullable=False)
    deducted_points = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    expired_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    note = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def remaining(self):
        return db_decimal(self.points) - db_decimal(self.deducted_points)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "entry_type": self.entry_type,
            "points": decimal_str(self.points),
            "deducted_points": decimal_str(self.deducted_points),
            "expired_at": to_utc_z(self.expired_at),
            "document_id": self.document_id,
            "payment_id": self.payment_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }


class GiftCard(db.Model):
    """Stored-value card. Remaining balance is amount - expense."""
    __tablename__ = "gift_cards"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    card_no = db.Column(db.String(64), nullable=False, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    amount = db.Column(db.Numeric(18, 4), nullable=False)
    expense = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    expired_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def balance(self):
        return db_decimal(self.amount) - db_decimal(self.expense)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "card_no": self.card_no,
            "customer_id": self.customer_id,
            "amount": decimal_str(self.amount),
            "expense": decimal_str(self.expense),
            "balance": decimal_str(self.balance),
            "expired_date": self.expired_date.isoformat() if self.expired_date else None,
            "is_active": self.is_active,
        }


class InstallmentPlan(db.Model):
    __tablename__ = "installment_plans"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=True)
    price = db.Column(db.Numeric(18, 4), nullable=False)
    total_amount = db.Column(db.Numeric(18, 4), nullable=False)
    down_payment = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    months = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    installments = db.relationship(
        "Installment", back_populates="plan", order_by="Installment.payment_date", lazy=True
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "name": self.name,
            "price": decimal_str(self.price),
            "total_amount": decimal_str(self.total_amount),
            "down_payment": decimal_str(self.down_payment),
            "months": self.months,
            "installments": [i.to_dict() for i in self.installments],
        }


class Installment(db.Model):
    __tablename__ = "installments"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    plan_id = db.Column(db.Integer, db.ForeignKey("installment_plans.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="PENDING")  # PENDING, PAID
    payment_date = db.Column(db.Date, nullable=False)
    amount = db.Column(db.Numeric(18, 4), nullable=False)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True)

    plan = db.relationship("InstallmentPlan", back_populates="installments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "plan_id": self.plan_id,
            "status": self.status,
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "amount": decimal_str(self.amount),
            "payment_id": self.payment_id,
        }
