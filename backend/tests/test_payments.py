# Overview: Pytest coverage for payment allocation, funding sources and reversals.

from datetime import date
from decimal import Decimal

import pytest

from wareledger.errors import (
    FundingSourceError, InvalidStateTransition, PaymentOverAllocation, ValidationError,
)
from wareledger.extensions import db
from wareledger.models import Customer, Document, GiftCard, Installment, Payment, RewardPoint
from wareledger.services import payment_service, settlement_service
from wareledger.services.payment_service import next_payment_status


@pytest.fixture
def pending_sale(warehouse, widget, customer, stock, settings):
    """Pending sale of 3 widgets for 30.00."""
    stock(widget, warehouse, 20)
    sale = settlement_service.create_document(
        'SALE', warehouse_id=warehouse.id, customer_id=customer.id,
        lines=[{'product_id': widget.id, 'qty': 3}], settings=settings,
    )
    return settlement_service.transition(sale.id, 'PENDING', settings=settings)


@pytest.fixture
def gift_card(db_session):
    card = GiftCard(card_no='GC-1', amount=Decimal('25'))
    db_session.add(card)
    db_session.commit()
    return card


class TestPaymentStatus:

    def test_status_rules(self):
        eps = Decimal('0.01')
        assert next_payment_status(Decimal('0'), Decimal('30'), eps) == 'UNPAID'
        assert next_payment_status(Decimal('10'), Decimal('30'), eps) == 'PARTIAL'
        assert next_payment_status(Decimal('29.99'), Decimal('30'), eps) == 'PAID'
        assert next_payment_status(Decimal('10'), Decimal('30'), eps, previous='PAID', reversal=True) == 'REFUNDED'
        assert next_payment_status(Decimal('0'), Decimal('30'), eps, previous='PARTIAL', reversal=True) == 'UNPAID'


class TestAllocate:

    def test_split_payment_on_completion(self, warehouse, widget, stock, settings):
        stock(widget, warehouse, 5)
        sale = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 3}],
            complete=True,
            payments=[
                {'amount': '10', 'method': 'CASH'},
                {'amount': '20', 'method': 'CARD', 'detail': {'card_last4': '4242', 'card_type': 'visa'}},
            ],
            settings=settings,
        )
        assert sale.payment_status == 'PAID'
        assert sale.paid_amount == Decimal('30.00')
        card = [p for p in payment_service.list_payments(sale.id) if p.method == 'CARD'][0]
        assert card.detail.card_last4 == '4242'

    def test_partial_then_paid(self, pending_sale, settings):
        payment_service.allocate(document_id=pending_sale.id, amount='10', method='CASH', settings=settings)
        assert db.session.get(Document, pending_sale.id).payment_status == 'PARTIAL'
        payment_service.allocate(document_id=pending_sale.id, amount='20', method='BANK_TRANSFER', settings=settings)
        document = db.session.get(Document, pending_sale.id)
        assert document.payment_status == 'PAID'
        assert document.paid_amount == Decimal('30.00')

    def test_over_allocation(self, pending_sale, settings):
        payment_service.allocate(document_id=pending_sale.id, amount='25', method='CASH', settings=settings)
        with pytest.raises(PaymentOverAllocation):
            payment_service.allocate(document_id=pending_sale.id, amount='6', method='CASH', settings=settings)
        assert db.session.query(Payment).count() == 1

    def test_payment_failure_rolls_back_completion(self, warehouse, widget, stock, settings):
        stock(widget, warehouse, 5)
        with pytest.raises(PaymentOverAllocation):
            settlement_service.create_document(
                'SALE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 1}],
                complete=True, payments=[{'amount': '50', 'method': 'CASH'}], settings=settings,
            )
        assert db.session.query(Document).count() == 0

    def test_draft_cannot_be_paid(self, warehouse, widget, settings):
        sale = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 1}], settings=settings
        )
        with pytest.raises(InvalidStateTransition):
            payment_service.allocate(document_id=sale.id, amount='5', method='CASH', settings=settings)

    def test_stock_documents_take_no_payments(self, warehouse, widget, settings):
        adjustment = settlement_service.create_document(
            'ADJUSTMENT', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 1, 'action': '+'}],
            complete=True, settings=settings,
        )
        with pytest.raises(ValidationError):
            payment_service.allocate(document_id=adjustment.id, amount='5', method='CASH', settings=settings)

    def test_cash_change(self, pending_sale, settings):
        payment = payment_service.allocate(
            document_id=pending_sale.id, amount='30', method='CASH', tendered='50', settings=settings
        )
        assert payment.change == Decimal('20.00')

    def test_tendered_only_for_cash(self, pending_sale, settings):
        with pytest.raises(ValidationError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='30', method='CARD', tendered='50',
                detail={'card_last4': '1111'}, settings=settings,
            )

    def test_detail_validation(self, pending_sale, settings):
        with pytest.raises(ValidationError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='5', method='CARD', detail={'card_last4': '42'},
                settings=settings,
            )
        with pytest.raises(ValidationError):
            payment_service.allocate(document_id=pending_sale.id, amount='5', method='CHEQUE', settings=settings)
        with pytest.raises(ValidationError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='5', method='CASH', detail={'note': 'x'}, settings=settings
            )

    def test_unknown_method(self, pending_sale, settings):
        with pytest.raises(ValidationError):
            payment_service.allocate(document_id=pending_sale.id, amount='5', method='BARTER', settings=settings)

    def test_deposit_without_document(self, customer, settings):
        payment_service.allocate(
            document_id=None, customer_id=customer.id, amount='15', method='CASH', settings=settings
        )
        assert db.session.get(Customer, customer.id).deposit == Decimal('15')

    def test_deposit_needs_customer(self, settings):
        with pytest.raises(ValidationError):
            payment_service.allocate(document_id=None, amount='15', method='CASH', settings=settings)


class TestGiftCard:

    def test_debits_balance(self, pending_sale, gift_card, settings):
        payment_service.allocate(
            document_id=pending_sale.id, amount='20', method='GIFT_CARD',
            detail={'gift_card_id': gift_card.id}, settings=settings,
        )
        assert db.session.get(GiftCard, gift_card.id).balance == Decimal('5')

    def test_insufficient_balance(self, pending_sale, gift_card, settings):
        payment_service.allocate(
            document_id=pending_sale.id, amount='20', method='GIFT_CARD',
            detail={'gift_card_id': gift_card.id}, settings=settings,
        )
        with pytest.raises(FundingSourceError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='10', method='GIFT_CARD',
                detail={'gift_card_id': gift_card.id}, settings=settings,
            )
        assert db.session.get(GiftCard, gift_card.id).balance == Decimal('5')

    def test_reversal_restores_balance(self, pending_sale, gift_card, settings):
        payment = payment_service.allocate(
            document_id=pending_sale.id, amount='20', method='GIFT_CARD',
            detail={'gift_card_id': gift_card.id}, settings=settings,
        )
        payment_service.reverse(payment.id, reason='card swap', settings=settings)
        assert db.session.get(GiftCard, gift_card.id).balance == Decimal('25')


class TestRewardPointPayments:

    @pytest.fixture
    def points_customer(self, customer):
        db.session.add(RewardPoint(customer_id=customer.id, entry_type='EARN', points=Decimal('50'), deducted_points=0))
        db.session.get(Customer, customer.id).points = Decimal('50')
        db.session.commit()
        return customer

    def test_redeem_and_refund(self, pending_sale, points_customer, reward_settings):
        payment = payment_service.allocate(
            document_id=pending_sale.id, amount='20', method='REWARD_POINTS', settings=reward_settings
        )
        assert payment.detail.points == Decimal('20')
        assert db.session.get(Customer, points_customer.id).points == Decimal('30')

        payment_service.reverse(payment.id, settings=reward_settings)
        assert db.session.get(Customer, points_customer.id).points == Decimal('50')
        refund = db.session.query(RewardPoint).filter_by(entry_type='REFUND').one()
        assert refund.expired_at is None

    def test_not_enough_points(self, pending_sale, points_customer, reward_settings):
        payment_service.allocate(
            document_id=pending_sale.id, amount='10', method='CASH', settings=reward_settings
        )
        payment_service.allocate(
            document_id=pending_sale.id, amount='15', method='REWARD_POINTS', settings=reward_settings
        )
        with pytest.raises(FundingSourceError):
            settlement_service.create_document(
                'SALE', warehouse_id=pending_sale.warehouse_id, customer_id=points_customer.id,
                lines=[{'product_id': pending_sale.lines[0].product_id, 'qty': 5}],
                complete=True, payments=[{'amount': '40', 'method': 'REWARD_POINTS'}],
                settings=reward_settings,
            )
        assert db.session.get(Customer, points_customer.id).points == Decimal('35')

    def test_disabled_policy(self, pending_sale, points_customer, settings):
        with pytest.raises(FundingSourceError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='5', method='REWARD_POINTS', settings=settings
            )


class TestReversal:

    def test_reverse_paid_document(self, pending_sale, settings):
        payment = payment_service.allocate(
            document_id=pending_sale.id, amount='30', method='CASH', settings=settings
        )
        reversal = payment_service.reverse(payment.id, user_id=4, reason='refund', settings=settings)
        assert reversal.amount == Decimal('-30')
        assert reversal.status == 'REVERSAL'
        assert reversal.reversal_of_id == payment.id

        original = db.session.get(Payment, payment.id)
        assert original.status == 'REVERSED'
        assert original.reversal_reason == 'refund'

        document = db.session.get(Document, pending_sale.id)
        assert document.payment_status == 'REFUNDED'
        assert document.paid_amount == Decimal('0')

    def test_reverse_partial_goes_back_to_unpaid(self, pending_sale, settings):
        payment = payment_service.allocate(
            document_id=pending_sale.id, amount='10', method='CASH', settings=settings
        )
        payment_service.reverse(payment.id, settings=settings)
        assert db.session.get(Document, pending_sale.id).payment_status == 'UNPAID'

    def test_cannot_reverse_twice(self, pending_sale, settings):
        payment = payment_service.allocate(
            document_id=pending_sale.id, amount='10', method='CASH', settings=settings
        )
        reversal = payment_service.reverse(payment.id, settings=settings)
        with pytest.raises(InvalidStateTransition):
            payment_service.reverse(payment.id, settings=settings)
        with pytest.raises(InvalidStateTransition):
            payment_service.reverse(reversal.id, settings=settings)

    def test_cancel_blocked_by_live_payment(self, pending_sale, settings):
        payment_service.allocate(document_id=pending_sale.id, amount='10', method='CASH', settings=settings)
        with pytest.raises(InvalidStateTransition):
            settlement_service.transition(pending_sale.id, 'CANCELLED', settings=settings)


class TestInstallments:

    def test_plan_and_payment(self, pending_sale, settings):
        plan = payment_service.create_installment_plan(
            document_id=pending_sale.id, months=3, down_payment='6',
            first_payment_date=date(2026, 1, 31), settings=settings,
        )
        installments = plan.installments
        assert [i.amount for i in installments] == [Decimal('8'), Decimal('8'), Decimal('8')]
        assert [i.payment_date for i in installments] == [date(2026, 1, 31), date(2026, 2, 28), date(2026, 3, 31)]

        first = installments[0]
        payment_service.allocate(
            document_id=pending_sale.id, amount='8', method='INSTALLMENT',
            detail={'installment_id': first.id}, settings=settings,
        )
        assert db.session.get(Installment, first.id).status == 'PAID'

        with pytest.raises(FundingSourceError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='8', method='INSTALLMENT',
                detail={'installment_id': first.id}, settings=settings,
            )

    def test_installment_amount_must_match(self, pending_sale, settings):
        plan = payment_service.create_installment_plan(document_id=pending_sale.id, months=2, settings=settings)
        with pytest.raises(ValidationError):
            payment_service.allocate(
                document_id=pending_sale.id, amount='5', method='INSTALLMENT',
                detail={'installment_id': plan.installments[0].id}, settings=settings,
            )

    def test_one_plan_per_sale(self, pending_sale, settings):
        payment_service.create_installment_plan(document_id=pending_sale.id, months=2, settings=settings)
        with pytest.raises(ValidationError):
            payment_service.create_installment_plan(document_id=pending_sale.id, months=4, settings=settings)

    def test_plan_needs_a_sale(self, warehouse, widget, settings):
        purchase = settlement_service.create_document(
            'PURCHASE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 1}],
            complete=True, settings=settings,
        )
        with pytest.raises(ValidationError):
            payment_service.create_installment_plan(document_id=purchase.id, months=2, settings=settings)
