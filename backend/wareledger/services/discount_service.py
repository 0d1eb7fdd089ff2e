# Overview: Discount plan resolution, coupon validation and coupon redemption.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional, Sequence

from flask import current_app
from sqlalchemy import or_, update

from ..extensions import db
from ..amounts import ZERO, db_decimal, decimal_str, round_money, to_decimal
from ..errors import CouponUnavailable, NotFoundError
from ..models import Coupon, CouponRedemption, Customer, Discount, DiscountPlan
from ..models.promotions import (
    APPLIES_SELECTED,
    DISCOUNT_FIXED,
    DISCOUNT_PERCENTAGE,
    PLAN_GENERIC,
    PLAN_LIMITED,
    WEEKDAYS,
)
from ..settings import STACKING_BEST_OF, STACKING_CAPPED, EngineSettings, resolve_settings
from ..time_utils import today
from .event_service import append_event

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CartLine:
    product_id: int
    qty: Decimal
    unit_price: Decimal
    discount: Decimal = ZERO  # manual discount already on the line

    @property
    def gross(self) -> Decimal:
        return to_decimal(self.unit_price) * to_decimal(self.qty) - to_decimal(self.discount)


@dataclass(frozen=True)
class AppliedDiscount:
    line_index: int
    discount_id: int
    name: str
    amount: Decimal


@dataclass(frozen=True)
class DiscountResolution:
    line_discounts: tuple[Decimal, ...]
    applied: tuple[AppliedDiscount, ...] = ()
    coupon_id: Optional[int] = None
    coupon_discount: Decimal = ZERO

    @property
    def total_discount(self) -> Decimal:
        return sum(self.line_discounts, ZERO) + self.coupon_discount


def is_discount_active(discount: Discount, on_date: date) -> bool:
    if not discount.is_active:
        return False
    if discount.valid_from and on_date < discount.valid_from:
        return False
    if discount.valid_till and on_date > discount.valid_till:
        return False
    days = discount.day_set
    if days and WEEKDAYS[on_date.weekday()] not in days:
        return False
    return True


def discount_applies_to(discount: Discount, line: CartLine) -> bool:
    if discount.applies_to == APPLIES_SELECTED and line.product_id not in discount.product_id_set:
        return False
    qty = to_decimal(line.qty)
    if discount.minimum_qty is not None and qty < db_decimal(discount.minimum_qty):
        return False
    if discount.maximum_qty is not None and qty > db_decimal(discount.maximum_qty):
        return False
    return True


def discount_amount(discount: Discount, line: CartLine, *, places: int = 2) -> Decimal:
    """Percentage of the line gross, or the fixed value capped at it."""
    gross = max(line.gross, ZERO)
    value = db_decimal(discount.value)
    if discount.type == DISCOUNT_PERCENTAGE:
        return round_money(gross * value / _HUNDRED, places)
    if discount.type == DISCOUNT_FIXED:
        return round_money(min(value, gross), places)
    return round_money(ZERO, places)


def applicable_discounts(customer_id: Optional[int], on_date: date) -> list[Discount]:
    """Active discounts from generic plans plus limited plans the customer belongs to."""
    plans = db.session.query(DiscountPlan).filter(
        DiscountPlan.is_active.is_(True), DiscountPlan.type == PLAN_GENERIC
    ).all()
    if customer_id is not None:
        plans += (
            db.session.query(DiscountPlan)
            .filter(DiscountPlan.is_active.is_(True), DiscountPlan.type == PLAN_LIMITED)
            .filter(DiscountPlan.customers.any(Customer.id == customer_id))
            .all()
        )
    seen: dict[int, Discount] = {}
    for plan in plans:
        for discount in plan.discounts:
            if discount.id not in seen and is_discount_active(discount, on_date):
                seen[discount.id] = discount
    return [seen[k] for k in sorted(seen)]


def _stack(amounts: list[Decimal], gross: Decimal, settings: EngineSettings) -> Decimal:
    if not amounts:
        return round_money(ZERO, settings.decimal_places)
    if settings.discount_stacking == STACKING_BEST_OF:
        total = max(amounts)
    else:
        total = sum(amounts, ZERO)
    if settings.discount_stacking == STACKING_CAPPED and settings.discount_cap_percent is not None:
        total = min(total, round_money(gross * settings.discount_cap_percent / _HUNDRED, settings.decimal_places))
    return round_money(min(total, max(gross, ZERO)), settings.decimal_places)


def coupon_discount_amount(coupon: Coupon, order_amount, *, places: int = 2) -> Decimal:
    base = to_decimal(order_amount)
    amount = db_decimal(coupon.amount)
    if coupon.type == DISCOUNT_PERCENTAGE:
        return round_money(base * amount / _HUNDRED, places)
    return round_money(min(amount, base), places)


def validate_coupon(code: str, order_amount, *, on_date: Optional[date] = None) -> Coupon:
    """Check a coupon can be used for an order of this size; does not consume it."""
    on_date = on_date or today()
    coupon = db.session.query(Coupon).filter_by(code=code).first()
    if coupon is None:
        raise NotFoundError(f"Coupon {code!r} not found", details={"code": code})
    if not coupon.is_active:
        raise CouponUnavailable("Coupon is inactive", details={"code": code})
    if coupon.expired_date and on_date > coupon.expired_date:
        raise CouponUnavailable("Coupon has expired", details={"code": code})
    if coupon.used >= coupon.quantity:
        raise CouponUnavailable("Coupon is used up", details={"code": code})
    if coupon.minimum_amount is not None and to_decimal(order_amount) < db_decimal(coupon.minimum_amount):
        raise CouponUnavailable(
            "Order does not reach the coupon minimum",
            details={"code": code, "minimum_amount": decimal_str(coupon.minimum_amount)},
        )
    return coupon


def resolve(
    lines: Sequence[CartLine],
    *,
    customer_id: Optional[int] = None,
    coupon_code: Optional[str] = None,
    on_date: Optional[date] = None,
    settings: EngineSettings | None = None,
) -> DiscountResolution:
    """
    Work out plan discounts per line and the coupon discount for an order.

    Plan discounts combine per line according to the stacking policy; the
    coupon then applies to what is left of the order. Under CAPPED the
    coupon is also trimmed so the order's total discount stays within the cap.
    """
    settings = resolve_settings(settings)
    places = settings.decimal_places
    on_date = on_date or today()
    discounts = applicable_discounts(customer_id, on_date)

    line_discounts: list[Decimal] = []
    applied: list[AppliedDiscount] = []
    for index, line in enumerate(lines):
        amounts = []
        for discount in discounts:
            if discount_applies_to(discount, line):
                amount = discount_amount(discount, line, places=places)
                if amount > 0:
                    amounts.append(amount)
                    applied.append(AppliedDiscount(index, discount.id, discount.name, amount))
        line_discounts.append(_stack(amounts, line.gross, settings))

    coupon_id = None
    coupon_discount = round_money(ZERO, places)
    if coupon_code:
        remaining = sum((line.gross for line in lines), ZERO) - sum(line_discounts, ZERO)
        coupon = validate_coupon(coupon_code, remaining, on_date=on_date)
        coupon_id = coupon.id
        coupon_discount = coupon_discount_amount(coupon, remaining, places=places)
        if settings.discount_stacking == STACKING_CAPPED and settings.discount_cap_percent is not None:
            gross_total = sum((line.gross for line in lines), ZERO)
            cap = round_money(gross_total * settings.discount_cap_percent / _HUNDRED, places)
            coupon_discount = max(min(coupon_discount, cap - sum(line_discounts, ZERO)), ZERO)
            coupon_discount = round_money(coupon_discount, places)

    return DiscountResolution(
        line_discounts=tuple(line_discounts),
        applied=tuple(applied),
        coupon_id=coupon_id,
        coupon_discount=coupon_discount,
    )


def redeem_coupon(coupon_id: int, document_id: int, amount, *, user_id: int | None = None) -> CouponRedemption:
    """
    Consume one use of a coupon for a document inside the caller's transaction.

    Idempotent per (coupon, document). The counter only moves through a
    conditional UPDATE, so concurrent redemptions can never exceed quantity.
    """
    existing = db.session.query(CouponRedemption).filter_by(coupon_id=coupon_id, document_id=document_id).first()
    if existing is not None:
        return existing

    on_date = today()
    result = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.is_active.is_(True),
            Coupon.used < Coupon.quantity,
            or_(Coupon.expired_date.is_(None), Coupon.expired_date >= on_date),
        )
        .values(used=Coupon.used + 1),
        execution_options={"synchronize_session": "fetch"},
    )
    if result.rowcount == 0:
        current_app.logger.info("Coupon %s unavailable for document %s", coupon_id, document_id)
        raise CouponUnavailable("Coupon is used up or no longer valid", details={"coupon_id": coupon_id})

    redemption = CouponRedemption(coupon_id=coupon_id, document_id=document_id, amount=to_decimal(amount))
    db.session.add(redemption)
    db.session.flush()
    append_event(
        event_type="promotion.coupon_redeemed",
        event_category="promotion",
        entity_type="coupon",
        entity_id=coupon_id,
        actor_user_id=user_id,
        document_id=document_id,
        payload={"amount": decimal_str(amount)},
    )
    return redemption


def release_coupon(coupon_id: int, document_id: int, *, user_id: int | None = None) -> bool:
    """Give back a redemption when its document is reversed. Returns False if none existed."""
    redemption = db.session.query(CouponRedemption).filter_by(coupon_id=coupon_id, document_id=document_id).first()
    if redemption is None:
        return False
    db.session.delete(redemption)
    db.session.execute(
        update(Coupon).where(Coupon.id == coupon_id, Coupon.used > 0).values(used=Coupon.used - 1),
        execution_options={"synchronize_session": "fetch"},
    )
    append_event(
        event_type="promotion.coupon_released",
        event_category="promotion",
        entity_type="coupon",
        entity_id=coupon_id,
        actor_user_id=user_id,
        document_id=document_id,
    )
    db.session.flush()
    return True

