# Overview: Pytest coverage for sale and purchase returns.

from datetime import date, timedelta
from decimal import Decimal

import pytest

from wareledger.errors import InvalidStateTransition, ValidationError
from wareledger.extensions import db
from wareledger.models import Document, DocumentLine
from wareledger.services import settlement_service, stock_ledger_service


def _complete(document_id, settings):
    settlement_service.transition(document_id, 'PENDING', settings=settings)
    return settlement_service.transition(document_id, 'COMPLETED', settings=settings)


@pytest.fixture
def completed_sale(warehouse, widget, customer, stock, settings):
    stock(widget, warehouse, 10)
    return settlement_service.create_document(
        'SALE', warehouse_id=warehouse.id, customer_id=customer.id,
        lines=[{'product_id': widget.id, 'qty': 5, 'discount': '10'}],
        complete=True, settings=settings,
    )


class TestSaleReturn:

    def test_return_restocks(self, warehouse, widget, completed_sale, settings):
        line = completed_sale.lines[0]
        ret = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 2}], settings=settings)
        assert ret.document_type == 'SALE_RETURN'
        assert ret.status == 'DRAFT'
        assert ret.return_of_document_id == completed_sale.id
        assert ret.customer_id == completed_sale.customer_id
        assert ret.reference_no.startswith('RR-')

        _complete(ret.id, settings)
        assert stock_ledger_service.quantity_of(widget.id, warehouse.id) == Decimal('7')
        assert db.session.get(DocumentLine, line.id).return_qty == Decimal('2')

    def test_discount_is_pro_rated(self, completed_sale, settings):
        line = completed_sale.lines[0]
        ret = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 2}], settings=settings)
        assert ret.lines[0].discount == Decimal('4.00')
        assert ret.lines[0].unit_price == Decimal('10')
        # 2 x 10 - 4
        assert ret.grand_total == Decimal('16.00')

    def test_cannot_return_more_than_sold(self, completed_sale, settings):
        line = completed_sale.lines[0]
        first = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 4}], settings=settings)
        _complete(first.id, settings)
        with pytest.raises(ValidationError):
            settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 2}], settings=settings)

    def test_competing_drafts_checked_at_completion(self, completed_sale, settings):
        line = completed_sale.lines[0]
        first = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 4}], settings=settings)
        second = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 3}], settings=settings)
        _complete(first.id, settings)
        with pytest.raises(ValidationError):
            _complete(second.id, settings)
        assert db.session.get(DocumentLine, line.id).return_qty == Decimal('4')

    def test_only_completed_documents(self, warehouse, widget, settings):
        sale = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 1}], settings=settings
        )
        with pytest.raises(ValidationError):
            settlement_service.create_return(sale.id, [{'line_id': sale.lines[0].id, 'qty': 1}], settings=settings)

    def test_foreign_line_rejected(self, completed_sale, warehouse, gadget, stock, settings):
        stock(gadget, warehouse, 2)
        other = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': gadget.id, 'qty': 1}],
            complete=True, settings=settings,
        )
        with pytest.raises(ValidationError):
            settlement_service.create_return(
                completed_sale.id, [{'line_id': other.lines[0].id, 'qty': 1}], settings=settings
            )

    def test_returned_sale_cannot_be_deleted(self, completed_sale, settings):
        line = completed_sale.lines[0]
        ret = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 1}], settings=settings)
        _complete(ret.id, settings)
        with pytest.raises(InvalidStateTransition):
            settlement_service.delete_document(completed_sale.id, reverse=True, settings=settings)

    def test_deleting_return_gives_back_quantity(self, warehouse, widget, completed_sale, settings):
        line = completed_sale.lines[0]
        ret = settlement_service.create_return(completed_sale.id, [{'line_id': line.id, 'qty': 2}], settings=settings)
        _complete(ret.id, settings)
        settlement_service.delete_document(ret.id, reverse=True, settings=settings)
        assert db.session.get(DocumentLine, line.id).return_qty == Decimal('0')
        assert stock_ledger_service.quantity_of(widget.id, warehouse.id) == Decimal('5')

    def test_batch_sale_returns_to_original_batches(self, warehouse, batch_product, stock, settings):
        early = stock_ledger_service.create_batch(
            product_id=batch_product.id, batch_no='E', expired_date=date.today() + timedelta(days=2)
        )
        late = stock_ledger_service.create_batch(
            product_id=batch_product.id, batch_no='L', expired_date=date.today() + timedelta(days=20)
        )
        stock(batch_product, warehouse, 3, batch_id=early.id)
        stock(batch_product, warehouse, 5, batch_id=late.id)
        sale = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': batch_product.id, 'qty': 5}],
            complete=True, settings=settings,
        )
        ret = settlement_service.create_return(sale.id, [{'line_id': sale.lines[0].id, 'qty': 4}], settings=settings)
        _complete(ret.id, settings)

        assert stock_ledger_service.quantity_of(batch_product.id, warehouse.id, batch_id=early.id) == Decimal('3')
        assert stock_ledger_service.quantity_of(batch_product.id, warehouse.id, batch_id=late.id) == Decimal('4')
        assert stock_ledger_service.quantity_of(batch_product.id, warehouse.id) == Decimal('0')

    def test_deleted_return_frees_its_batches(self, warehouse, batch_product, stock, settings):
        early = stock_ledger_service.create_batch(
            product_id=batch_product.id, batch_no='E', expired_date=date.today() + timedelta(days=2)
        )
        late = stock_ledger_service.create_batch(
            product_id=batch_product.id, batch_no='L', expired_date=date.today() + timedelta(days=20)
        )
        stock(batch_product, warehouse, 3, batch_id=early.id)
        stock(batch_product, warehouse, 5, batch_id=late.id)
        sale = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': batch_product.id, 'qty': 5}],
            complete=True, settings=settings,
        )
        line_id = sale.lines[0].id

        first = settlement_service.create_return(sale.id, [{'line_id': line_id, 'qty': 3}], settings=settings)
        _complete(first.id, settings)
        settlement_service.delete_document(first.id, reverse=True, settings=settings)
        assert stock_ledger_service.quantity_of(batch_product.id, warehouse.id, batch_id=early.id) == Decimal('0')

        again = settlement_service.create_return(sale.id, [{'line_id': line_id, 'qty': 3}], settings=settings)
        _complete(again.id, settings)
        assert stock_ledger_service.quantity_of(batch_product.id, warehouse.id, batch_id=early.id) == Decimal('3')
        assert stock_ledger_service.quantity_of(batch_product.id, warehouse.id, batch_id=late.id) == Decimal('3')


class TestPurchaseReturn:

    def test_purchase_return_takes_stock_out(self, warehouse, widget, settings):
        purchase = settlement_service.create_document(
            'PURCHASE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 10}],
            complete=True, settings=settings,
        )
        ret = settlement_service.create_return(
            purchase.id, [{'line_id': purchase.lines[0].id, 'qty': 3}], settings=settings
        )
        assert ret.document_type == 'PURCHASE_RETURN'
        assert ret.lines[0].unit_price == Decimal('6')
        _complete(ret.id, settings)
        assert stock_ledger_service.quantity_of(widget.id, warehouse.id) == Decimal('7')
        movement = stock_ledger_service.list_movements(document_id=ret.id)[0]
        assert movement.reason == 'PURCHASE_RETURN'
        assert db.session.get(Document, ret.id).payment_status is None
