# Overview: Pytest coverage for the Flask CLI command groups.

from datetime import timedelta
from decimal import Decimal

from wareledger.extensions import db
from wareledger.models import RewardPoint, StockLevel, Tax, Unit, Warehouse
from wareledger.models.customers import REWARD_EARN
from wareledger.services import register_service
from wareledger.time_utils import utcnow


class TestSystemInit:

    def test_init_is_idempotent(self, app):
        runner = app.test_cli_runner()
        first = runner.invoke(args=['system', 'init'])
        assert first.exit_code == 0
        assert 'PASS Created warehouse' in first.output
        assert 'DONE wareledger initialized.' in first.output

        second = runner.invoke(args=['system', 'init'])
        assert second.exit_code == 0
        assert 'PASS Using existing warehouse' in second.output
        assert db.session.query(Warehouse).count() == 1
        assert db.session.query(Unit).filter_by(code='pc').count() == 1
        assert db.session.query(Tax).count() == 1


class TestLedgerCommands:

    def test_quantity(self, app, warehouse, widget, stock):
        stock(widget, warehouse, 7)
        result = app.test_cli_runner().invoke(
            args=['ledger', 'quantity', '--product-id', str(widget.id), '--warehouse-id', str(warehouse.id)]
        )
        assert result.exit_code == 0
        assert Decimal(result.output.strip()) == Decimal('7')

    def test_verify_passes(self, app, warehouse, widget, stock):
        stock(widget, warehouse, 7)
        result = app.test_cli_runner().invoke(args=['ledger', 'verify'])
        assert result.exit_code == 0
        assert 'PASS Stock levels match their movements.' in result.output

    def test_verify_reports_drift(self, app, warehouse, widget, stock):
        stock(widget, warehouse, 7)
        level = db.session.query(StockLevel).one()
        level.qty = Decimal('9')
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['ledger', 'verify'])
        assert result.exit_code == 1
        assert 'FAIL 1 stock level(s) drifted' in result.output


class TestRegisterCommands:

    def test_empty(self, app):
        result = app.test_cli_runner().invoke(args=['registers', 'list'])
        assert 'No register sessions found.' in result.output

    def test_lists_sessions(self, app, warehouse, settings):
        register_service.open_register(user_id=3, warehouse_id=warehouse.id, cash_in_hand='20', settings=settings)
        result = app.test_cli_runner().invoke(args=['registers', 'list', '--status', 'OPEN'])
        assert result.exit_code == 0
        assert 'OPEN' in result.output


class TestMaintenanceCommands:

    def test_nothing_to_expire(self, app):
        result = app.test_cli_runner().invoke(args=['maintenance', 'expire-points'])
        assert result.exit_code == 0
        assert 'No reward points to expire.' in result.output

    def test_expires_due_points(self, app, customer):
        db.session.add(RewardPoint(
            customer_id=customer.id, entry_type=REWARD_EARN, points=Decimal('5'), deducted_points=0,
            expired_at=utcnow() - timedelta(days=1),
        ))
        customer.points = Decimal('5')
        db.session.commit()

        result = app.test_cli_runner().invoke(args=['maintenance', 'expire-points'])
        assert result.exit_code == 0
        assert f'Customer {customer.id}: expired 5.000000 point(s)' in result.output
