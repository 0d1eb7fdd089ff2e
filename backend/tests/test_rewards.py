# Overview: Pytest coverage for reward point earning, reversal and expiry.

from datetime import timedelta
from decimal import Decimal

import pytest

from wareledger.extensions import db
from wareledger.models import Customer, RewardPoint
from wareledger.services import reward_service, settlement_service
from wareledger.settings import EngineSettings, RewardPointPolicy
from wareledger.time_utils import utcnow


def _policy(**overrides):
    values = {'enabled': True, 'per_point_amount': Decimal('10'), 'redeem_value': Decimal('1')}
    values.update(overrides)
    return EngineSettings(reward_points=RewardPointPolicy(**values))


def _sell(warehouse, product, customer, qty, settings, payments=None):
    return settlement_service.create_document(
        'SALE', warehouse_id=warehouse.id, customer_id=customer.id if customer else None,
        lines=[{'product_id': product.id, 'qty': qty}], complete=True, payments=payments, settings=settings,
    )


class TestEarning:

    def test_points_for_amount(self):
        policy = RewardPointPolicy(enabled=True, per_point_amount=Decimal('10'), minimum_amount=Decimal('20'))
        assert reward_service.points_for_amount('39.99', policy) == Decimal('3')
        assert reward_service.points_for_amount('19.99', policy) == Decimal('0')

    def test_completed_sale_earns(self, warehouse, widget, customer, stock, reward_settings):
        stock(widget, warehouse, 10)
        sale = _sell(warehouse, widget, customer, 3, reward_settings)
        assert reward_service.customer_points(customer.id) == Decimal('3')
        entry = db.session.query(RewardPoint).filter_by(document_id=sale.id, entry_type='EARN').one()
        assert entry.points == Decimal('3')
        assert entry.expired_at is None

    def test_below_minimum_earns_nothing(self, warehouse, widget, customer, stock):
        stock(widget, warehouse, 10)
        _sell(warehouse, widget, customer, 3, _policy(minimum_amount=Decimal('50')))
        assert reward_service.customer_points(customer.id) == Decimal('0')

    def test_walk_in_sale_earns_nothing(self, warehouse, widget, stock, reward_settings):
        stock(widget, warehouse, 10)
        _sell(warehouse, widget, None, 3, reward_settings)
        assert db.session.query(RewardPoint).count() == 0

    def test_disabled_policy(self, warehouse, widget, customer, stock, settings):
        stock(widget, warehouse, 10)
        _sell(warehouse, widget, customer, 3, settings)
        assert reward_service.customer_points(customer.id) == Decimal('0')


class TestReversal:

    def test_deleting_sale_takes_back_unspent_points(self, warehouse, widget, customer, stock, reward_settings):
        stock(widget, warehouse, 20)
        earning_sale = _sell(warehouse, widget, customer, 3, reward_settings)
        assert reward_service.customer_points(customer.id) == Decimal('3')

        # Spend one of the three points on a second sale, which earns one back
        _sell(warehouse, widget, customer, 1, reward_settings, payments=[{'amount': '1', 'method': 'REWARD_POINTS'}])
        assert reward_service.customer_points(customer.id) == Decimal('3')

        settlement_service.delete_document(earning_sale.id, reverse=True, settings=reward_settings)
        assert reward_service.customer_points(customer.id) == Decimal('1')
        reversal = db.session.query(RewardPoint).filter_by(entry_type='REVERSAL').one()
        assert reversal.points == Decimal('-2')


class TestExpiry:

    @pytest.fixture
    def expiring(self):
        return _policy(expiry_duration=10, expiry_type='days')

    def test_expire_after_duration(self, warehouse, widget, customer, stock, expiring):
        stock(widget, warehouse, 10)
        _sell(warehouse, widget, customer, 3, expiring)

        assert reward_service.expire_reward_points(utcnow(), settings=expiring) == {}
        expired = reward_service.expire_reward_points(utcnow() + timedelta(days=11), settings=expiring)
        assert expired == {customer.id: '3.000000'}
        assert db.session.get(Customer, customer.id).points == Decimal('0')
        assert db.session.query(RewardPoint).filter_by(entry_type='EXPIRE').count() == 1

    def test_spent_points_do_not_expire(self, warehouse, widget, customer, stock, expiring):
        stock(widget, warehouse, 10)
        _sell(warehouse, widget, customer, 3, expiring)
        _sell(warehouse, widget, customer, 1, expiring, payments=[{'amount': '2', 'method': 'REWARD_POINTS'}])

        # second sale of 10.00 earned one more point
        assert reward_service.customer_points(customer.id) == Decimal('2')
        expired = reward_service.expire_reward_points(utcnow() + timedelta(days=11), settings=expiring)
        assert expired == {customer.id: '2.000000'}
        assert reward_service.customer_points(customer.id) == Decimal('0')
