from __future__ import annotations

import json

from ..extensions import db
from ..amounts import decimal_str
from ..time_utils import to_utc_z


DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"

APPLIES_ALL = "ALL"
APPLIES_SELECTED = "SELECTED"

PLAN_LIMITED = "limited"
PLAN_GENERIC = "generic"

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


discount_plan_discounts = db.Table(
    "discount_plan_discounts",
    db.Column("discount_plan_id", db.Integer, db.ForeignKey("discount_plans.id"), primary_key=True),
    db.Column("discount_id", db.Integer, db.ForeignKey("discounts.id"), primary_key=True),
)

discount_plan_customers = db.Table(
    "discount_plan_customers",
    db.Column("discount_plan_id", db.Integer, db.ForeignKey("discount_plans.id"), primary_key=True),
    db.Column("customer_id", db.Integer, db.ForeignKey("customers.id"), primary_key=True),
)


class Discount(db.Model):
    """
    Line-level discount rule.

    applies_to=SELECTED limits it to product_ids (JSON array). days is a
    comma-separated list of weekday abbreviations; empty means every day.
    """
    __tablename__ = "discounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    applies_to = db.Column(db.String(16), nullable=False, default=APPLIES_ALL)
    product_ids = db.Column(db.Text, nullable=True)

    type = db.Column(db.String(16), nullable=False, default=DISCOUNT_PERCENTAGE)
    value = db.Column(db.Numeric(18, 4), nullable=False)

    valid_from = db.Column(db.Date, nullable=True)
    valid_till = db.Column(db.Date, nullable=True)
    minimum_qty = db.Column(db.Numeric(18, 6), nullable=True)
    maximum_qty = db.Column(db.Numeric(18, 6), nullable=True)
    days = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def product_id_set(self) -> set[int]:
        if not self.product_ids:
            return set()
        return {int(pid) for pid in json.loads(self.product_ids)}

    @property
    def day_set(self) -> set[str]:
        if not self.days:
            return set()
        return {d.strip()[:3].title() for d in self.days.split(",") if d.strip()}

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "applies_to": self.applies_to,
            "product_ids": sorted(self.product_id_set),
            "type": self.type,
            "value": decimal_str(self.value),
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_till": self.valid_till.isoformat() if self.valid_till else None,
            "minimum_qty": decimal_str(self.minimum_qty),
            "maximum_qty": decimal_str(self.maximum_qty),
            "days": self.days,
            "is_active": self.is_active,
        }


class DiscountPlan(db.Model):
    """
    Bundle of discounts.

    generic plans apply to every customer, limited plans only to the
    customers attached to them.
    """
    __tablename__ = "discount_plans"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    type = db.Column(db.String(16), nullable=False, default=PLAN_GENERIC)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    discounts = db.relationship("Discount", secondary=discount_plan_discounts, lazy=True)
    customers = db.relationship("Customer", secondary=discount_plan_customers, lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "is_active": self.is_active,
            "discount_ids": [d.id for d in self.discounts],
            "customer_ids": [c.id for c in self.customers],
        }


class Coupon(db.Model):
    """
    Order-level coupon with a bounded number of redemptions.

    used only moves through a conditional UPDATE (used < quantity).
    """
    __tablename__ = "coupons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False, default=DISCOUNT_PERCENTAGE)
    amount = db.Column(db.Numeric(18, 4), nullable=False)
    minimum_amount = db.Column(db.Numeric(18, 4), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    used = db.Column(db.Integer, nullable=False, default=0)
    expired_date = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "amount": decimal_str(self.amount),
            "minimum_amount": decimal_str(self.minimum_amount),
            "quantity": self.quantity,
            "used": self.used,
            "expired_date": self.expired_date.isoformat() if self.expired_date else None,
            "is_active": self.is_active,
        }


class CouponRedemption(db.Model):
    """At most one redemption of a coupon per document."""
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        db.UniqueConstraint("coupon_id", "document_id", name="uq_coupon_redemptions_coupon_document"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    document_id = db.Column(db.Integer, db.ForeignKey("documents.id"), nullable=False, index=True)
    amount = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self):
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "document_id": self.document_id,
            "amount": decimal_str(self.amount),
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
