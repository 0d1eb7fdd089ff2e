from __future__ import annotations

from ..extensions import db
from ..amounts import decimal_str
from ..time_utils import to_utc_z


SALE = "SALE"
PURCHASE = "PURCHASE"
TRANSFER = "TRANSFER"
ADJUSTMENT = "ADJUSTMENT"
SALE_RETURN = "SALE_RETURN"
PURCHASE_RETURN = "PURCHASE_RETURN"
PRODUCTION = "PRODUCTION"
QUOTATION = "QUOTATION"
DOCUMENT_TYPES = (SALE, PURCHASE, TRANSFER, ADJUSTMENT, SALE_RETURN, PURCHASE_RETURN, PRODUCTION, QUOTATION)

STATUS_DRAFT = "DRAFT"
STATUS_PENDING = "PENDING"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
STATUS_DELETED = "DELETED"

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PARTIAL = "PARTIAL"
PAYMENT_PAID = "PAID"
PAYMENT_REFUNDED = "REFUNDED"

ROLE_CONSUME = "CONSUME"
ROLE_PRODUCE = "PRODUCE"


class Document(db.Model):
    """
    Every stock-affecting or pre-sale document, one table keyed by document_type.

    LIFECYCLE:
    DRAFT -> PENDING -> COMPLETED | CANCELLED, and DRAFT/PENDING -> DELETED.
    A COMPLETED document never changes its lines; deleting it goes through
    a compensating reversal.
    """
    __tablename__ = "documents"
    __table_args__ = (
        db.Index("ix_documents_type_status_created", "document_type", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)

    # Human-readable number (e.g., "SR-000123")
    reference_no = db.Column(db.String(64), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)
    payment_status = db.Column(db.String(16), nullable=True)

    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)
    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, nullable=True)
    user_id = db.Column(db.Integer, nullable=True)
    cash_register_id = db.Column(db.Integer, db.ForeignKey("cash_registers.id"), nullable=True, index=True)

    # Returns point at the document they reverse, sales at the quotation they came from
    return_of_document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True, index=True)
    source_document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True)

    coupon_code = db.Column(db.String(64), nullable=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)

    # Order-level terms
    order_tax_rate = db.Column(db.Numeric(9, 4), nullable=False, default=0)
    order_discount_type = db.Column(db.String(16), nullable=True)  # flat, percentage
    order_discount_value = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    shipping_cost = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # Derived totals
    item_count = db.Column(db.Integer, nullable=False, default=0)
    total_qty = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_discount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    total_tax = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    total_price = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    order_discount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    coupon_discount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    order_tax = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    grand_total = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    pending_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    deleted_by_user_id = db.Column(db.Integer, nullable=True)
    delete_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    lines = db.relationship(
        "DocumentLine",
        back_populates="document",
        order_by="DocumentLine.line_no",
        lazy=True,
    )
    return_of = db.relationship("Document", remote_side=[id], foreign_keys=[return_of_document_id])
    customer = db.relationship("Customer")
    coupon = db.relationship("Coupon")

    __mapper_args__ = {
        "polymorphic_on": document_type,
        "polymorphic_identity": "DOCUMENT",
        "version_id_col": version_id,
    }

    # Documents that take payments
    payable = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id} ref={self.reference_no!r} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "document_type": self.document_type,
            "reference_no": self.reference_no,
            "status": self.status,
            "payment_status": self.payment_status,
            "warehouse_id": self.warehouse_id,
            "from_warehouse_id": self.from_warehouse_id,
            "to_warehouse_id": self.to_warehouse_id,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "user_id": self.user_id,
            "cash_register_id": self.cash_register_id,
            "return_of_document_id": self.return_of_document_id,
            "source_document_id": self.source_document_id,
            "coupon_code": self.coupon_code,
            "coupon_id": self.coupon_id,
            "order_tax_rate": decimal_str(self.order_tax_rate),
            "order_discount_type": self.order_discount_type,
            "order_discount_value": decimal_str(self.order_discount_value),
            "shipping_cost": decimal_str(self.shipping_cost),
            "item_count": self.item_count,
            "total_qty": decimal_str(self.total_qty),
            "total_discount": decimal_str(self.total_discount),
            "total_tax": decimal_str(self.total_tax),
            "total_price": decimal_str(self.total_price),
            "order_discount": decimal_str(self.order_discount),
            "coupon_discount": decimal_str(self.coupon_discount),
            "order_tax": decimal_str(self.order_tax),
            "grand_total": decimal_str(self.grand_total),
            "paid_amount": decimal_str(self.paid_amount),
            "note": self.note,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "pending_at": to_utc_z(self.pending_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "deleted_at": to_utc_z(self.deleted_at),
            "deleted_by_user_id": self.deleted_by_user_id,
            "delete_reason": self.delete_reason,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class Sale(Document):
    __mapper_args__ = {"polymorphic_identity": SALE}
    payable = True


class Purchase(Document):
    __mapper_args__ = {"polymorphic_identity": PURCHASE}
    payable = True


class Transfer(Document):
    __mapper_args__ = {"polymorphic_identity": TRANSFER}


class Adjustment(Document):
    __mapper_args__ = {"polymorphic_identity": ADJUSTMENT}


class SaleReturn(Document):
    __mapper_args__ = {"polymorphic_identity": SALE_RETURN}


class PurchaseReturn(Document):
    __mapper_args__ = {"polymorphic_identity": PURCHASE_RETURN}


class Production(Document):
    __mapper_args__ = {"polymorphic_identity": PRODUCTION}


class Quotation(Document):
    __mapper_args__ = {"polymorphic_identity": QUOTATION}


DOCUMENT_CLASSES = {
    SALE: Sale,
    PURCHASE: Purchase,
    TRANSFER: Transfer,
    ADJUSTMENT: Adjustment,
    SALE_RETURN: SaleReturn,
    PURCHASE_RETURN: PurchaseReturn,
    PRODUCTION: Production,
    QUOTATION: Quotation,
}


class DocumentLine(db.Model):
    """
    One product line of a document.

    qty is in the line's unit (unit_id); the ledger converts it to the
    product's stocking unit when posting. fulfilled_qty counts what has
    already hit the ledger (received for purchases, delivered for sales).
    """
    __tablename__ = "document_lines"
    __table_args__ = (
        db.UniqueConstraint("document_id", "line_no", name="uq_document_lines_doc_line_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    line_no = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    qty = db.Column(db.Numeric(18, 6), nullable=False)
    fulfilled_qty = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    return_qty = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    unit_price = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    discount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    promo_discount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    tax_rate = db.Column(db.Numeric(9, 4), nullable=False, default=0)
    tax_method = db.Column(db.String(16), nullable=False, default="exclusive")
    subtotal = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    tax = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    total = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    # Adjustments: "+" or "-"; production: CONSUME or PRODUCE
    action = db.Column(db.String(1), nullable=True)
    role = db.Column(db.String(16), nullable=True)

    is_packing = db.Column(db.Boolean, nullable=False, default=False)
    is_delivered = db.Column(db.Boolean, nullable=False, default=False)

    return_of_line_id = db.Column(db.Integer, db.ForeignKey("document_lines.id"), nullable=True, index=True)

    document = db.relationship("Document", back_populates="lines")
    product = db.relationship("Product")
    unit = db.relationship("Unit")
    return_of_line = db.relationship("DocumentLine", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "line_no": self.line_no,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "batch_id": self.batch_id,
            "unit_id": self.unit_id,
            "qty": decimal_str(self.qty),
            "fulfilled_qty": decimal_str(self.fulfilled_qty),
            "return_qty": decimal_str(self.return_qty),
            "unit_price": decimal_str(self.unit_price),
            "discount": decimal_str(self.discount),
            "promo_discount": decimal_str(self.promo_discount),
            "tax_rate": decimal_str(self.tax_rate),
            "tax_method": self.tax_method,
            "subtotal": decimal_str(self.subtotal),
            "tax": decimal_str(self.tax),
            "total": decimal_str(self.total),
            "action": self.action,
            "role": self.role,
            "is_packing": self.is_packing,
            "is_delivered": self.is_delivered,
            "return_of_line_id": self.return_of_line_id,
        }


class DocumentSequence(db.Model):
    """Per-document-type counter behind reference numbers."""
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("document_type", name="uq_document_sequences_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
