# Overview: Pytest coverage for the JSON API routes.

from decimal import Decimal

import pytest


def _create_sale(client, warehouse, product, qty=3, **extra):
    body = {
        'document_type': 'SALE',
        'warehouse_id': warehouse.id,
        'lines': [{'product_id': product.id, 'qty': str(qty)}],
    }
    body.update(extra)
    return client.post('/api/documents', json=body)


class TestHealth:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['checks']['database']['status'] == 'healthy'


class TestUnitRoutes:

    def test_create_and_convert(self, client, piece):
        response = client.post('/api/units', json={
            'code': 'dz', 'name': 'Dozen', 'base_unit_id': piece.id, 'operator': '*', 'operation_value': '12',
        })
        assert response.status_code == 201
        dozen = response.get_json()['unit']

        response = client.post('/api/units/convert', json={
            'quantity': '2', 'from_unit_id': dozen['id'], 'to_unit_id': piece.id,
        })
        assert response.status_code == 200
        assert Decimal(response.get_json()['quantity']) == Decimal('24')

    def test_missing_fields(self, client):
        response = client.post('/api/units', json={'code': 'x'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'validation_error'


class TestStockRoutes:

    def test_adjust_and_query(self, client, warehouse, widget):
        response = client.post('/api/stock/adjust', json={
            'product_id': widget.id, 'warehouse_id': warehouse.id, 'quantity_delta': '5', 'note': 'count',
        })
        assert response.status_code == 200
        assert Decimal(response.get_json()['qty']) == Decimal('5')

        response = client.get(f'/api/stock?product_id={widget.id}&warehouse_id={warehouse.id}')
        assert Decimal(response.get_json()['qty']) == Decimal('5')

        movements = client.get(f'/api/stock/movements?product_id={widget.id}').get_json()['movements']
        assert len(movements) == 1

        assert client.get('/api/stock/verify').get_json() == {'ok': True, 'problems': []}

    def test_adjust_below_zero(self, client, warehouse, widget):
        response = client.post('/api/stock/adjust', json={
            'product_id': widget.id, 'warehouse_id': warehouse.id, 'quantity_delta': '-1',
        })
        assert response.status_code == 409
        assert response.get_json()['code'] == 'insufficient_stock'


class TestDocumentRoutes:

    def test_checkout_flow(self, client, warehouse, widget, stock):
        stock(widget, warehouse, 10)
        response = _create_sale(client, warehouse, widget, complete=True,
                                payments=[{'amount': '30', 'method': 'CASH'}])
        assert response.status_code == 201
        document = response.get_json()['document']
        assert document['status'] == 'COMPLETED'
        assert document['payment_status'] == 'PAID'
        assert document['reference_no'] == 'SR-000001'
        assert len(document['lines']) == 1
        assert len(document['payments']) == 1

        fetched = client.get(f"/api/documents/{document['id']}").get_json()['document']
        assert fetched['id'] == document['id']

        listing = client.get('/api/documents?document_type=SALE').get_json()
        assert listing['total'] == 1

    def test_draft_lines_and_transition(self, client, warehouse, widget, gadget, stock):
        stock(widget, warehouse, 10)
        stock(gadget, warehouse, 10)
        document = _create_sale(client, warehouse, widget, qty=1).get_json()['document']

        response = client.post(f"/api/documents/{document['id']}/lines", json={'product_id': gadget.id, 'qty': '2'})
        assert response.status_code == 201
        assert Decimal(response.get_json()['document']['grand_total']) == Decimal('60')

        response = client.post(f"/api/documents/{document['id']}/transition", json={'status': 'pending'})
        assert response.get_json()['document']['status'] == 'PENDING'

        response = client.post(f"/api/documents/{document['id']}/transition", json={
            'status': 'COMPLETED', 'payments': [{'amount': '20', 'method': 'CASH'}],
        })
        document = response.get_json()['document']
        assert document['status'] == 'COMPLETED'
        assert document['payment_status'] == 'PARTIAL'

    def test_insufficient_stock_names_lines(self, client, warehouse, widget):
        response = _create_sale(client, warehouse, widget, complete=True)
        assert response.status_code == 409
        data = response.get_json()
        assert data['code'] == 'insufficient_stock'
        assert len(data['details']['lines']) == 1

    def test_invalid_transition(self, client, warehouse, widget):
        document = _create_sale(client, warehouse, widget).get_json()['document']
        response = client.post(f"/api/documents/{document['id']}/transition", json={'status': 'DRAFT'})
        assert response.status_code == 409
        assert response.get_json()['code'] == 'invalid_state_transition'

    def test_unknown_document(self, client):
        response = client.get('/api/documents/999')
        assert response.status_code == 404
        assert response.get_json()['code'] == 'not_found'

    def test_missing_type(self, client):
        response = client.post('/api/documents', json={'lines': []})
        assert response.status_code == 400

    def test_purchase_fulfilment(self, client, warehouse, widget):
        document = client.post('/api/documents', json={
            'document_type': 'PURCHASE', 'warehouse_id': warehouse.id,
            'lines': [{'product_id': widget.id, 'qty': '10'}],
        }).get_json()['document']
        client.post(f"/api/documents/{document['id']}/transition", json={'status': 'PENDING'})
        line_id = document['lines'][0]['id']

        response = client.post(f"/api/documents/{document['id']}/fulfill", json={'lines': {str(line_id): '4'}})
        assert response.status_code == 200
        assert Decimal(response.get_json()['document']['lines'][0]['fulfilled_qty']) == Decimal('4')

        qty = client.get(f'/api/stock?product_id={widget.id}&warehouse_id={warehouse.id}').get_json()['qty']
        assert Decimal(qty) == Decimal('4')

    def test_return_and_delete(self, client, warehouse, widget, stock):
        stock(widget, warehouse, 10)
        sale = _create_sale(client, warehouse, widget, complete=True).get_json()['document']

        response = client.post(f"/api/documents/{sale['id']}/returns", json={
            'lines': [{'line_id': sale['lines'][0]['id'], 'qty': '1'}], 'complete': True,
        })
        assert response.status_code == 201
        returned = response.get_json()['document']
        assert returned['document_type'] == 'SALE_RETURN'
        assert returned['status'] == 'COMPLETED'

        response = client.delete(f"/api/documents/{returned['id']}")
        assert response.status_code == 409

        response = client.delete(f"/api/documents/{returned['id']}?reverse=true", json={'reason': 'mistake'})
        assert response.status_code == 200
        assert response.get_json()['document']['status'] == 'DELETED'

    def test_quotation_convert(self, client, warehouse, widget):
        quotation = client.post('/api/documents', json={
            'document_type': 'QUOTATION', 'warehouse_id': warehouse.id,
            'lines': [{'product_id': widget.id, 'qty': '2'}],
        }).get_json()['document']
        client.post(f"/api/documents/{quotation['id']}/transition", json={'status': 'PENDING'})

        response = client.post(f"/api/documents/{quotation['id']}/convert", json={})
        assert response.status_code == 201
        sale = response.get_json()['document']
        assert sale['document_type'] == 'SALE'
        assert sale['status'] == 'DRAFT'
        assert sale['source_document_id'] == quotation['id']


class TestPaymentRoutes:

    @pytest.fixture
    def pending_sale(self, client, warehouse, widget, stock):
        stock(widget, warehouse, 10)
        sale = _create_sale(client, warehouse, widget).get_json()['document']
        client.post(f"/api/documents/{sale['id']}/transition", json={'status': 'PENDING'})
        return sale

    def test_allocate_list_reverse(self, client, pending_sale):
        response = client.post('/api/payments', json={
            'document_id': pending_sale['id'], 'amount': '30', 'method': 'cash', 'tendered': '50',
        })
        assert response.status_code == 201
        payment = response.get_json()['payment']
        assert Decimal(payment['change']) == Decimal('20')

        payments = client.get(f"/api/payments?document_id={pending_sale['id']}").get_json()['payments']
        assert [p['id'] for p in payments] == [payment['id']]
        assert client.get(f"/api/payments/{payment['id']}").status_code == 200

        response = client.post(f"/api/payments/{payment['id']}/reverse", json={'reason': 'wrong till'})
        assert response.status_code == 200
        assert Decimal(response.get_json()['reversal']['amount']) == Decimal('-30')

    def test_over_allocation(self, client, pending_sale):
        response = client.post('/api/payments', json={
            'document_id': pending_sale['id'], 'amount': '31', 'method': 'CASH',
        })
        assert response.status_code == 409
        assert response.get_json()['code'] == 'payment_over_allocation'

    def test_list_needs_document(self, client):
        assert client.get('/api/payments').status_code == 400

    def test_installment_plan(self, client, pending_sale):
        response = client.post('/api/payments/installment-plans', json={
            'document_id': pending_sale['id'], 'months': 3, 'down_payment': '6',
        })
        assert response.status_code == 201
        plan = response.get_json()['plan']
        assert len(plan['installments']) == 3

    def test_installment_months_must_be_integer(self, client, pending_sale):
        response = client.post('/api/payments/installment-plans', json={
            'document_id': pending_sale['id'], 'months': 'three',
        })
        assert response.status_code == 400


class TestRegisterRoutes:

    def test_register_session(self, client, warehouse, widget, stock):
        stock(widget, warehouse, 10)
        response = client.post('/api/registers/open', json={
            'warehouse_id': warehouse.id, 'cash_in_hand': '50',
        }, headers={'X-User-Id': '7'})
        assert response.status_code == 201
        register = response.get_json()['register']
        assert register['user_id'] == 7

        duplicate = client.post('/api/registers/open', json={'user_id': 7, 'warehouse_id': warehouse.id})
        assert duplicate.status_code == 409
        assert duplicate.get_json()['code'] == 'register_error'

        _create_sale(client, warehouse, widget, qty=1, complete=True, cash_register_id=register['id'],
                     payments=[{'amount': '10', 'method': 'CASH'}])
        response = client.post(f"/api/registers/{register['id']}/outflows", json={'kind': 'expense', 'amount': '5'})
        assert response.status_code == 201

        summary = client.get(f"/api/registers/{register['id']}").get_json()['register']
        assert Decimal(summary['expected_balance']) == Decimal('55')

        response = client.post(f"/api/registers/{register['id']}/close", json={'actual_cash': '55'})
        closed = response.get_json()['register']
        assert closed['status'] == 'CLOSED'
        assert Decimal(closed['variance']) == Decimal('0')

        listing = client.get('/api/registers?status=CLOSED').get_json()['registers']
        assert [r['id'] for r in listing] == [register['id']]

    def test_open_needs_user(self, client, warehouse):
        response = client.post('/api/registers/open', json={'warehouse_id': warehouse.id})
        assert response.status_code == 400
