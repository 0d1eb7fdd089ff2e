# Overview: Pytest coverage for concurrent writers against the same stock, coupon and document.

"""
Each worker runs in its own app context, so it gets its own session and
connection to the file-backed test database.
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from wareledger.errors import CouponUnavailable, InsufficientStock, LockTimeout, PaymentOverAllocation
from wareledger.extensions import db
from wareledger.models import Coupon, Document, Payment, Warehouse
from wareledger.services import payment_service, settlement_service, stock_ledger_service
from wareledger.services.concurrency import run_with_retry


def _run_workers(app, target, count):
    results = []
    lock = threading.Lock()

    def worker(n):
        with app.app_context():
            try:
                value = target(n)
                with lock:
                    results.append(value)
            except Exception as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


class TestConcurrentSales:

    def test_no_oversell_under_contention(self, app, warehouse, widget, stock):
        stock(widget, warehouse, 30)
        warehouse_id, product_id = warehouse.id, widget.id

        def sell(_):
            sale = settlement_service.create_document(
                'SALE', warehouse_id=warehouse_id, lines=[{'product_id': product_id, 'qty': 1}], complete=True
            )
            return sale.reference_no

        results = _run_workers(app, sell, 50)

        sold = [r for r in results if isinstance(r, str)]
        refused = [r for r in results if isinstance(r, InsufficientStock)]
        assert len(sold) == 30
        assert len(refused) == 20
        assert len(set(sold)) == 30

        db.session.expire_all()
        assert stock_ledger_service.quantity_of(product_id, warehouse_id) == Decimal('0')
        assert stock_ledger_service.verify_stock_levels() == []
        # refused sales roll back entirely, drafts included
        assert db.session.query(Document).filter_by(document_type='SALE').count() == 30

    def test_coupon_quantity_holds(self, app, warehouse, widget, stock):
        stock(widget, warehouse, 50)
        db.session.add(Coupon(code='FIRST3', type='fixed', amount=Decimal('1'), quantity=3))
        db.session.commit()
        warehouse_id, product_id = warehouse.id, widget.id

        def sell(_):
            return settlement_service.create_document(
                'SALE', warehouse_id=warehouse_id, coupon_code='FIRST3',
                lines=[{'product_id': product_id, 'qty': 1}], complete=True,
            ).id

        results = _run_workers(app, sell, 10)

        assert sum(1 for r in results if isinstance(r, int)) == 3
        assert all(isinstance(r, (int, CouponUnavailable)) for r in results)
        db.session.expire_all()
        assert db.session.query(Coupon).filter_by(code='FIRST3').one().used == 3


class TestConcurrentPayments:

    def test_payments_never_exceed_grand_total(self, app, warehouse, widget, stock, settings):
        stock(widget, warehouse, 10)
        sale = settlement_service.create_document(
            'SALE', warehouse_id=warehouse.id, lines=[{'product_id': widget.id, 'qty': 3}], settings=settings
        )
        settlement_service.transition(sale.id, 'PENDING', settings=settings)
        sale_id = sale.id

        def pay(_):
            return payment_service.allocate(document_id=sale_id, amount='10', method='CASH').id

        results = _run_workers(app, pay, 6)

        assert sum(1 for r in results if isinstance(r, int)) == 3
        assert sum(1 for r in results if isinstance(r, PaymentOverAllocation)) == 3
        db.session.expire_all()
        assert db.session.query(Payment).filter_by(document_id=sale_id).count() == 3
        document = db.session.get(Document, sale_id)
        assert document.payment_status == 'PAID'
        assert document.paid_amount == Decimal('30')


class TestRetry:

    @staticmethod
    def _locked():
        return OperationalError('UPDATE stock_levels SET qty=?', {}, Exception('database is locked'))

    def test_exhausted_attempts_raise_lock_timeout(self, warehouse):
        calls = []

        def always_locked():
            calls.append(1)
            db.session.add(Warehouse(code=f'TMP{len(calls)}', name='Scratch', is_active=True))
            db.session.flush()
            raise self._locked()

        with pytest.raises(LockTimeout) as exc:
            run_with_retry(always_locked, attempts=3, backoff_base=0)

        assert exc.value.details == {'attempts': 3}
        assert exc.value.http_status == 503
        assert len(calls) == 3
        # every failed attempt was rolled back
        assert db.session.query(Warehouse).count() == 1

    def test_recovers_after_one_conflict(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise self._locked()
            return 'done'

        assert run_with_retry(flaky, attempts=3, backoff_base=0) == 'done'
        assert len(calls) == 2

    def test_other_database_errors_are_not_retried(self):
        calls = []

        def broken():
            calls.append(1)
            raise OperationalError('SELECT 1', {}, Exception('no such table: nowhere'))

        with pytest.raises(OperationalError):
            run_with_retry(broken, attempts=3, backoff_base=0)
        assert len(calls) == 1

    def test_lock_timeout_is_503_on_the_api(self, client, warehouse, widget, monkeypatch):
        def contended(**kwargs):
            raise LockTimeout('Could not acquire lock, retry later', details={'attempts': 5})

        monkeypatch.setattr(stock_ledger_service, 'apply_delta', contended)
        response = client.post('/api/stock/adjust', json={
            'product_id': widget.id, 'warehouse_id': warehouse.id, 'quantity_delta': '1',
        })
        assert response.status_code == 503
        assert response.get_json()['code'] == 'lock_timeout'
