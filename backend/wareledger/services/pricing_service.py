# Overview: Line and order pricing with tax and order-level adjustments.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from ..amounts import ZERO, round_money, to_decimal
from ..errors import ValidationError
from ..models.catalog import TAX_EXCLUSIVE, TAX_INCLUSIVE

"""
Pricing rules

- Each line is rounded half-up to the configured decimal places before it
  is summed; order totals are built from rounded line totals.
- exclusive tax: subtotal = price * qty - discount, tax = subtotal * rate.
- inclusive tax: the gross already contains the tax,
  tax = gross - gross / (1 + rate), subtotal = gross - tax.
- grand_total = sum(line totals) - order_discount - coupon_discount
  + order_tax + shipping_cost, with order_tax charged on the discounted sum.
"""

ORDER_DISCOUNT_FLAT = "flat"
ORDER_DISCOUNT_PERCENTAGE = "percentage"
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LineAmounts:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class OrderTotals:
    item_count: int
    total_qty: Decimal
    total_discount: Decimal
    total_tax: Decimal
    total_price: Decimal
    order_discount: Decimal
    coupon_discount: Decimal
    order_tax: Decimal
    shipping_cost: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class PricedLine:
    qty: Decimal
    discount: Decimal
    amounts: LineAmounts


def compute_line(
    unit_price,
    qty,
    discount=ZERO,
    tax_rate=ZERO,
    tax_method: str = TAX_EXCLUSIVE,
    *,
    places: int = 2,
) -> LineAmounts:
    price = to_decimal(unit_price, "unit_price")
    quantity = to_decimal(qty, "qty")
    line_discount = to_decimal(discount, "discount")
    rate = to_decimal(tax_rate, "tax_rate") / _HUNDRED

    if price < 0 or quantity < 0 or line_discount < 0 or rate < 0:
        raise ValidationError("Price, quantity, discount and tax rate must not be negative")

    gross = price * quantity - line_discount
    if gross < 0:
        raise ValidationError("Discount exceeds the line amount")

    if tax_method == TAX_EXCLUSIVE:
        subtotal = round_money(gross, places)
        tax = round_money(subtotal * rate, places)
        total = subtotal + tax
    elif tax_method == TAX_INCLUSIVE:
        total = round_money(gross, places)
        tax = round_money(total - total / (1 + rate), places)
        subtotal = total - tax
    else:
        raise ValidationError(f"Unknown tax method {tax_method!r}")
    return LineAmounts(subtotal=subtotal, tax=tax, total=total)


def order_discount_amount(base, discount_type: Optional[str], discount_value, *, places: int = 2) -> Decimal:
    """Flat discounts cap at the base; percentage discounts take a share of it."""
    value = to_decimal(discount_value or ZERO, "order_discount_value")
    if not discount_type or value == 0:
        return round_money(ZERO, places)
    if value < 0:
        raise ValidationError("Order discount must not be negative")
    base = to_decimal(base, "base")
    if discount_type == ORDER_DISCOUNT_FLAT:
        return round_money(min(value, base), places)
    if discount_type == ORDER_DISCOUNT_PERCENTAGE:
        if value > _HUNDRED:
            raise ValidationError("Percentage discount cannot exceed 100")
        return round_money(base * value / _HUNDRED, places)
    raise ValidationError(f"Unknown order discount type {discount_type!r}")


def compute_order(
    lines: Iterable[PricedLine],
    *,
    order_tax_rate=ZERO,
    order_discount_type: Optional[str] = None,
    order_discount_value=ZERO,
    coupon_discount=ZERO,
    shipping_cost=ZERO,
    places: int = 2,
) -> OrderTotals:
    lines = list(lines)
    total_price = sum((line.amounts.total for line in lines), ZERO)
    total_tax = sum((line.amounts.tax for line in lines), ZERO)
    total_discount = sum((to_decimal(line.discount) for line in lines), ZERO)
    total_qty = sum((to_decimal(line.qty) for line in lines), ZERO)

    order_discount = order_discount_amount(total_price, order_discount_type, order_discount_value, places=places)
    coupon = round_money(min(to_decimal(coupon_discount or ZERO), total_price - order_discount), places)
    if coupon < 0:
        coupon = round_money(ZERO, places)

    shipping = round_money(shipping_cost or ZERO, places)
    if shipping < 0:
        raise ValidationError("Shipping cost must not be negative")

    rate = to_decimal(order_tax_rate or ZERO, "order_tax_rate")
    if rate < 0:
        raise ValidationError("Order tax rate must not be negative")
    taxable = total_price - order_discount - coupon
    order_tax = round_money(taxable * rate / _HUNDRED, places)

    grand_total = total_price - order_discount - coupon + order_tax + shipping
    return OrderTotals(
        item_count=len(lines),
        total_qty=total_qty,
        total_discount=round_money(total_discount, places),
        total_tax=total_tax,
        total_price=total_price,
        order_discount=order_discount,
        coupon_discount=coupon,
        order_tax=order_tax,
        shipping_cost=shipping,
        grand_total=round_money(grand_total, places),
    )
