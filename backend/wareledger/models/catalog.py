from __future__ import annotations

from ..extensions import db
from ..amounts import decimal_str
from ..time_utils import to_utc_z


PRODUCT_TYPE_STANDARD = "standard"
PRODUCT_TYPE_COMBO = "combo"
PRODUCT_TYPE_SERVICE = "service"
PRODUCT_TYPES = {PRODUCT_TYPE_STANDARD, PRODUCT_TYPE_COMBO, PRODUCT_TYPE_SERVICE}

TAX_EXCLUSIVE = "exclusive"
TAX_INCLUSIVE = "inclusive"
TAX_METHODS = {TAX_EXCLUSIVE, TAX_INCLUSIVE}


class Unit(db.Model):
    """
    Unit of measure.

    A unit without a base_unit is a root. Derived units carry an operator
    ("*" or "/") and an operation_value relating one of them to the base:
    box(base=piece, "*", 12) means 1 box = 12 pieces.
    """
    __tablename__ = "units"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)

    base_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True, index=True)
    operator = db.Column(db.String(1), nullable=True)
    operation_value = db.Column(db.Numeric(18, 6), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    base_unit = db.relationship("Unit", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "base_unit_id": self.base_unit_id,
            "operator": self.operator,
            "operation_value": decimal_str(self.operation_value),
            "is_active": self.is_active,
        }


class Tax(db.Model):
    __tablename__ = "taxes"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    rate = db.Column(db.Numeric(9, 4), nullable=False, default=0)  # percent
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "rate": decimal_str(self.rate), "is_active": self.is_active}


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    Quantities on the ledger are always kept in the product's stocking unit
    (unit_id). purchase_unit_id and sale_unit_id are only defaults for new
    document lines.

    allow_oversell is tri-state: None defers to the global without_stock
    setting, True/False override it for this product.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=PRODUCT_TYPE_STANDARD)

    is_batch = db.Column(db.Boolean, nullable=False, default=False)
    is_variant = db.Column(db.Boolean, nullable=False, default=False)
    track_inventory = db.Column(db.Boolean, nullable=False, default=True)
    allow_oversell = db.Column(db.Boolean, nullable=True)

    cost = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    price = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    profit_margin = db.Column(db.Numeric(9, 4), nullable=True)
    margin_type = db.Column(db.String(16), nullable=True)  # percentage, flat

    tax_id = db.Column(db.Integer, db.ForeignKey("taxes.id"), nullable=True)
    tax_method = db.Column(db.String(16), nullable=False, default=TAX_EXCLUSIVE)

    unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=False)
    purchase_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)
    sale_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tax = db.relationship("Tax")
    unit = db.relationship("Unit", foreign_keys=[unit_id])
    purchase_unit = db.relationship("Unit", foreign_keys=[purchase_unit_id])
    sale_unit = db.relationship("Unit", foreign_keys=[sale_unit_id])
    components = db.relationship(
        "ComboComponent",
        foreign_keys="ComboComponent.combo_product_id",
        order_by="ComboComponent.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} code={self.code!r} type={self.type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "is_batch": self.is_batch,
            "is_variant": self.is_variant,
            "track_inventory": self.track_inventory,
            "allow_oversell": self.allow_oversell,
            "cost": decimal_str(self.cost),
            "price": decimal_str(self.price),
            "profit_margin": decimal_str(self.profit_margin),
            "margin_type": self.margin_type,
            "tax_id": self.tax_id,
            "tax_method": self.tax_method,
            "unit_id": self.unit_id,
            "purchase_unit_id": self.purchase_unit_id,
            "sale_unit_id": self.sale_unit_id,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Variant(db.Model):
    __tablename__ = "variants"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


class ProductVariant(db.Model):
    """Variant attached to a product. qty mirrors the variant's total across warehouses."""
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "variant_id", name="uq_product_variants_product_variant"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)
    item_code = db.Column(db.String(64), nullable=True, unique=True)
    additional_cost = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    additional_price = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    qty = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    product = db.relationship("Product", backref=db.backref("product_variants", lazy=True))
    variant = db.relationship("Variant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "item_code": self.item_code,
            "additional_cost": decimal_str(self.additional_cost),
            "additional_price": decimal_str(self.additional_price),
            "qty": decimal_str(self.qty),
        }


class ProductBatch(db.Model):
    """Lot of a batch-tracked product. qty mirrors the batch total across warehouses."""
    __tablename__ = "product_batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_no", name="uq_product_batches_product_batch_no"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    batch_no = db.Column(db.String(64), nullable=False)
    expired_date = db.Column(db.Date, nullable=True, index=True)
    qty = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_no": self.batch_no,
            "expired_date": self.expired_date.isoformat() if self.expired_date else None,
            "qty": decimal_str(self.qty),
        }


class ComboComponent(db.Model):
    """One component of a combo product: qty of component per unit of the combo."""
    __tablename__ = "combo_components"
    __table_args__ = (
        db.UniqueConstraint(
            "combo_product_id", "component_product_id", "variant_id", name="uq_combo_components_member"
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    combo_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    component_product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=True)
    qty = db.Column(db.Numeric(18, 6), nullable=False, default=1)
    unit_price = db.Column(db.Numeric(18, 4), nullable=True)

    component = db.relationship("Product", foreign_keys=[component_product_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "combo_product_id": self.combo_product_id,
            "component_product_id": self.component_product_id,
            "variant_id": self.variant_id,
            "qty": decimal_str(self.qty),
            "unit_price": decimal_str(self.unit_price),
        }
