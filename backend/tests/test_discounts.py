# Overview: Pytest coverage for discount plans, stacking policies and coupons.

import json
from datetime import timedelta
from decimal import Decimal

import pytest

from wareledger.errors import CouponUnavailable, NotFoundError, ValidationError
from wareledger.extensions import db
from wareledger.models import Coupon, CouponRedemption, Discount, DiscountPlan
from wareledger.models.promotions import WEEKDAYS
from wareledger.services import discount_service, settlement_service
from wareledger.services.discount_service import CartLine
from wareledger.settings import EngineSettings
from wareledger.time_utils import today


def _plan(discounts, *, customers=(), type='generic'):
    plan = DiscountPlan(name='Plan', type=type, is_active=True)
    plan.discounts = list(discounts)
    plan.customers = list(customers)
    db.session.add(plan)
    db.session.commit()
    return plan


def _discount(value, type='percentage', **kwargs):
    discount = Discount(name=f'{value} {type}', value=Decimal(str(value)), type=type, **kwargs)
    db.session.add(discount)
    db.session.flush()
    return discount


def _coupon(code='SAVE5', amount='5', type='fixed', quantity=1, **kwargs):
    coupon = Coupon(code=code, type=type, amount=Decimal(amount), quantity=quantity, **kwargs)
    db.session.add(coupon)
    db.session.commit()
    return coupon


def _cart(product, qty=3, price='10'):
    return [CartLine(product_id=product.id, qty=Decimal(qty), unit_price=Decimal(price))]


class TestPlanResolution:

    def test_generic_plan_applies_to_everyone(self, widget):
        _plan([_discount(10)])
        resolution = discount_service.resolve(_cart(widget), settings=EngineSettings())
        assert resolution.line_discounts == (Decimal('3.00'),)
        assert resolution.applied[0].amount == Decimal('3.00')

    def test_limited_plan_needs_membership(self, widget, customer):
        _plan([_discount(10)], customers=[customer], type='limited')
        assert discount_service.resolve(_cart(widget), settings=EngineSettings()).line_discounts == (Decimal('0.00'),)
        member = discount_service.resolve(_cart(widget), customer_id=customer.id, settings=EngineSettings())
        assert member.line_discounts == (Decimal('3.00'),)

    def test_selected_products_only(self, widget, gadget):
        _plan([_discount(10, applies_to='SELECTED', product_ids=json.dumps([gadget.id]))])
        resolution = discount_service.resolve(_cart(widget) + _cart(gadget, 1, '25'), settings=EngineSettings())
        assert resolution.line_discounts == (Decimal('0.00'), Decimal('2.50'))

    def test_inactive_weekday_is_skipped(self, widget):
        tomorrow = WEEKDAYS[(today().weekday() + 1) % 7]
        _plan([_discount(10, days=tomorrow)])
        assert discount_service.resolve(_cart(widget), settings=EngineSettings()).line_discounts == (Decimal('0.00'),)

    def test_expired_discount_is_skipped(self, widget):
        _plan([_discount(10, valid_till=today() - timedelta(days=1))])
        assert discount_service.resolve(_cart(widget), settings=EngineSettings()).line_discounts == (Decimal('0.00'),)

    def test_fixed_discount_capped_at_line(self, widget):
        _plan([_discount(50, type='fixed')])
        assert discount_service.resolve(_cart(widget), settings=EngineSettings()).line_discounts == (Decimal('30.00'),)


class TestStacking:

    @pytest.fixture
    def two_discounts(self, widget):
        _plan([_discount(10), _discount(5, type='fixed')])

    def test_additive(self, widget, two_discounts):
        resolution = discount_service.resolve(_cart(widget), settings=EngineSettings(discount_stacking='ADDITIVE'))
        assert resolution.line_discounts == (Decimal('8.00'),)

    def test_best_of(self, widget, two_discounts):
        resolution = discount_service.resolve(_cart(widget), settings=EngineSettings(discount_stacking='BEST_OF'))
        assert resolution.line_discounts == (Decimal('5.00'),)

    def test_capped(self, widget, two_discounts):
        settings = EngineSettings(discount_stacking='CAPPED', discount_cap_percent=Decimal('20'))
        resolution = discount_service.resolve(_cart(widget), settings=settings)
        assert resolution.line_discounts == (Decimal('6.00'),)

    def test_capped_trims_coupon(self, widget):
        _plan([_discount(10)])
        _coupon(code='BIG', amount='5')
        settings = EngineSettings(discount_stacking='CAPPED', discount_cap_percent=Decimal('20'))
        resolution = discount_service.resolve(_cart(widget), coupon_code='BIG', settings=settings)
        assert resolution.line_discounts == (Decimal('3.00'),)
        assert resolution.coupon_discount == Decimal('3.00')
        assert resolution.total_discount == Decimal('6.00')


class TestCoupons:

    def test_percentage_coupon_applies_after_line_discounts(self, widget):
        _plan([_discount(10)])
        _coupon(code='TENOFF', amount='10', type='percentage')
        resolution = discount_service.resolve(_cart(widget), coupon_code='TENOFF', settings=EngineSettings())
        assert resolution.coupon_discount == Decimal('2.70')

    def test_unknown_coupon(self, widget):
        with pytest.raises(NotFoundError):
            discount_service.resolve(_cart(widget), coupon_code='NOPE', settings=EngineSettings())

    def test_expired_coupon(self, widget):
        _coupon(expired_date=today() - timedelta(days=1))
        with pytest.raises(CouponUnavailable):
            discount_service.validate_coupon('SAVE5', Decimal('30'))

    def test_minimum_amount(self, widget):
        _coupon(minimum_amount=Decimal('50'))
        with pytest.raises(CouponUnavailable):
            discount_service.validate_coupon('SAVE5', Decimal('30'))

    def test_sale_redeems_coupon_once(self, warehouse, widget, stock, settings):
        stock(widget, warehouse, 10)
        coupon = _coupon()
        sale = settlement_service.create_document(
            'SALE',
            warehouse_id=warehouse.id,
            coupon_code='SAVE5',
            lines=[{'product_id': widget.id, 'qty': 3}],
            complete=True,
            settings=settings,
        )
        assert sale.coupon_discount == Decimal('5.00')
        assert sale.grand_total == Decimal('25.00')

        db.session.refresh(coupon)
        assert coupon.used == 1
        assert db.session.query(CouponRedemption).filter_by(document_id=sale.id).count() == 1

        with pytest.raises(CouponUnavailable):
            settlement_service.create_document(
                'SALE',
                warehouse_id=warehouse.id,
                coupon_code='SAVE5',
                lines=[{'product_id': widget.id, 'qty': 1}],
                complete=True,
                settings=settings,
            )

    def test_reversed_sale_releases_coupon(self, warehouse, widget, stock, settings):
        stock(widget, warehouse, 10)
        coupon = _coupon()
        sale = settlement_service.create_document(
            'SALE',
            warehouse_id=warehouse.id,
            coupon_code='SAVE5',
            lines=[{'product_id': widget.id, 'qty': 3}],
            complete=True,
            settings=settings,
        )
        settlement_service.delete_document(sale.id, reverse=True, reason='void', settings=settings)

        db.session.refresh(coupon)
        assert coupon.used == 0
        assert db.session.query(CouponRedemption).count() == 0

    def test_coupons_only_on_sales(self, warehouse, widget, settings):
        _coupon()
        with pytest.raises(ValidationError):
            settlement_service.create_document(
                'QUOTATION',
                warehouse_id=warehouse.id,
                coupon_code='SAVE5',
                lines=[{'product_id': widget.id, 'qty': 1}],
                settings=settings,
            )
