from __future__ import annotations

from ..extensions import db
from ..amounts import decimal_str
from ..time_utils import to_utc_z


METHOD_CASH = "CASH"
METHOD_CARD = "CARD"
METHOD_CHEQUE = "CHEQUE"
METHOD_BANK_TRANSFER = "BANK_TRANSFER"
METHOD_GIFT_CARD = "GIFT_CARD"
METHOD_PAYPAL = "PAYPAL"
METHOD_REWARD_POINTS = "REWARD_POINTS"
METHOD_INSTALLMENT = "INSTALLMENT"
PAYMENT_METHODS = {
    METHOD_CASH,
    METHOD_CARD,
    METHOD_CHEQUE,
    METHOD_BANK_TRANSFER,
    METHOD_GIFT_CARD,
    METHOD_PAYPAL,
    METHOD_REWARD_POINTS,
    METHOD_INSTALLMENT,
}

PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_REVERSED = "REVERSED"
PAYMENT_REVERSAL = "REVERSAL"


class Payment(db.Model):
    """
    Money received against a sale or paid out against a purchase.

    Payments are never edited. A reversal marks the original REVERSED and
    adds a REVERSAL row with the negated amount; only COMPLETED rows count
    toward a document's paid amount. A payment without a document is a
    customer deposit.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.Index("ix_payments_document_status", "document_id", "status"),
        db.Index("ix_payments_register_method", "cash_register_id", "method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_reference = db.Column(db.String(64), nullable=False, unique=True)

    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True)

    method = db.Column(db.String(32), nullable=False, index=True)
    amount = db.Column(db.Numeric(18, 4), nullable=False)
    change = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_COMPLETED, index=True)

    reversal_of_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversal_reason = db.Column(db.String(255), nullable=True)

    user_id = db.Column(db.Integer, nullable=True)
    note = db.Column(db.String(255), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    document = db.relationship("Document", backref=db.backref("payments", lazy=True))
    reversal_of = db.relationship("Payment", remote_side=[id])
    detail = db.relationship("PaymentDetail", back_populates="payment", uselist=False)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_reference": self.payment_reference,
            "document_id": self.document_id,
            "customer_id": self.customer_id,
            "cash_register_id": self.cash_register_id,
            "method": self.method,
            "amount": decimal_str(self.amount),
            "change": decimal_str(self.change),
            "status": self.status,
            "reversal_of_id": self.reversal_of_id,
            "reversed_at": to_utc_z(self.reversed_at),
            "reversal_reason": self.reversal_reason,
            "user_id": self.user_id,
            "note": self.note,
            "paid_at": to_utc_z(self.paid_at),
            "detail": self.detail.to_dict() if self.detail else None,
        }


class PaymentDetail(db.Model):
    """
    Method-specific payment data, one row per payment, keyed by method.

    Each subclass names the fields its method needs in ``required_fields``.
    """
    __tablename__ = "payment_details"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, unique=True)
    method = db.Column(db.String(32), nullable=False)

    cheque_no = db.Column(db.String(64), nullable=True)
    card_type = db.Column(db.String(16), nullable=True)
    card_last4 = db.Column(db.String(4), nullable=True)
    card_holder = db.Column(db.String(128), nullable=True)
    gift_card_id = db.Column(db.Integer, db.ForeignKey("gift_cards.id"), nullable=True, index=True)
    paypal_transaction_id = db.Column(db.String(128), nullable=True)
    bank_reference = db.Column(db.String(128), nullable=True)
    points = db.Column(db.Numeric(18, 6), nullable=True)
    installment_id = db.Column(db.Integer, db.ForeignKey("installments.id"), nullable=True)

    payment = db.relationship("Payment", back_populates="detail")

    __mapper_args__ = {"polymorphic_on": method, "polymorphic_identity": "DETAIL"}

    required_fields: tuple[str, ...] = ()
    fields: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        data = {"method": self.method}
        for name in self.fields:
            value = getattr(self, name)
            data[name] = decimal_str(value) if name == "points" else value
        return data


class ChequeDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "CHEQUE"}
    required_fields = ("cheque_no",)
    fields = ("cheque_no",)


class CardDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "CARD"}
    required_fields = ("card_last4",)
    fields = ("card_type", "card_last4", "card_holder")


class GiftCardDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "GIFT_CARD"}
    required_fields = ("gift_card_id",)
    fields = ("gift_card_id",)


class PayPalDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "PAYPAL"}
    required_fields = ("paypal_transaction_id",)
    fields = ("paypal_transaction_id",)


class BankTransferDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "BANK_TRANSFER"}
    fields = ("bank_reference",)


class RewardPointDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "REWARD_POINTS"}
    fields = ("points",)


class InstallmentDetail(PaymentDetail):
    __mapper_args__ = {"polymorphic_identity": "INSTALLMENT"}
    required_fields = ("installment_id",)
    fields = ("installment_id",)


DETAIL_CLASSES = {
    METHOD_CHEQUE: ChequeDetail,
    METHOD_CARD: CardDetail,
    METHOD_GIFT_CARD: GiftCardDetail,
    METHOD_PAYPAL: PayPalDetail,
    METHOD_BANK_TRANSFER: BankTransferDetail,
    METHOD_REWARD_POINTS: RewardPointDetail,
    METHOD_INSTALLMENT: InstallmentDetail,
}
