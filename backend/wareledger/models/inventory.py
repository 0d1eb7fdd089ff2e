from __future__ import annotations

from ..extensions import db
from ..amounts import decimal_str
from ..time_utils import to_utc_z


MOVEMENT_REASONS = {
    "OPENING",
    "SALE",
    "PURCHASE",
    "TRANSFER_OUT",
    "TRANSFER_IN",
    "ADJUSTMENT",
    "SALE_RETURN",
    "PURCHASE_RETURN",
    "PRODUCTION_CONSUME",
    "PRODUCTION_OUTPUT",
    "REVERSAL",
}


class StockLevel(db.Model):
    """
    On-hand quantity for one (product, warehouse, variant, batch) key.

    variant_key / batch_key hold the id or 0 for "none" so the unique
    constraint treats a missing variant as a value, not a wildcard.
    """
    __tablename__ = "stock_levels"
    __table_args__ = (
        db.UniqueConstraint(
            "product_id", "warehouse_id", "variant_key", "batch_key", name="uq_stock_levels_key"
        ),
        db.Index("ix_stock_levels_product_warehouse", "product_id", "warehouse_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)
    variant_key = db.Column(db.Integer, nullable=False, default=0)
    batch_key = db.Column(db.Integer, nullable=False, default=0)

    qty = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    warehouse = db.relationship("Warehouse")
    batch = db.relationship("ProductBatch")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "variant_id": self.variant_id,
            "batch_id": self.batch_id,
            "qty": decimal_str(self.qty),
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Append-only record of every applied delta.

    balance_after is the level's quantity right after this movement, so the
    movements of one key replay to its current quantity.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_key", "product_id", "warehouse_id", "variant_id", "batch_id"),
        db.Index("ix_stock_movements_document", "document_id", "document_line_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_level_id = db.Column(db.Integer, db.ForeignKey("stock_levels.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=True)
    batch_id = db.Column(db.Integer, db.ForeignKey("product_batches.id"), nullable=True)

    quantity_delta = db.Column(db.Numeric(18, 6), nullable=False)
    balance_after = db.Column(db.Numeric(18, 6), nullable=False)
    reason = db.Column(db.String(32), nullable=False, index=True)

    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=True)
    document_line_id = db.Column(db.Integer, db.ForeignKey("document_lines.id"), nullable=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_user_id = db.Column(db.Integer, nullable=True)
    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        index=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_level_id": self.stock_level_id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "variant_id": self.variant_id,
            "batch_id": self.batch_id,
            "quantity_delta": decimal_str(self.quantity_delta),
            "balance_after": decimal_str(self.balance_after),
            "reason": self.reason,
            "document_id": self.document_id,
            "document_line_id": self.document_line_id,
            "reversal_of_id": self.reversal_of_id,
            "note": self.note,
            "created_by_user_id": self.created_by_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
