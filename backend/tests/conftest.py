"""
Pytest fixtures for wareledger backend tests.

Provides a file-backed SQLite database (so worker threads can share it),
per-test table cleanup, catalog fixtures and a test client.
"""

from decimal import Decimal

import pytest

from wareledger import create_app
from wareledger.extensions import db
from wareledger.models import (
    ComboComponent, Customer, Product, ProductVariant, Tax, Unit, Variant, Warehouse,
)
from wareledger.models.catalog import PRODUCT_TYPE_COMBO
from wareledger.services import stock_ledger_service, unit_service
from wareledger.settings import EngineSettings, RewardPointPolicy


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp('db') / 'wareledger-test.sqlite3'
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'WARELEDGER_LOCK_TIMEOUT_SECONDS': 30,
        'WARELEDGER_LOCK_ATTEMPTS': 8,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Clear all data but keep schema."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def reward_settings():
    """Points enabled: one point per 10 spent, one point redeems for 1.00."""
    return EngineSettings(
        reward_points=RewardPointPolicy(
            enabled=True,
            per_point_amount=Decimal('10'),
            minimum_amount=Decimal('0'),
            redeem_value=Decimal('1'),
        )
    )


@pytest.fixture
def warehouse(db_session):
    wh = Warehouse(code='MAIN', name='Main Warehouse', is_active=True)
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture
def second_warehouse(db_session):
    wh = Warehouse(code='EAST', name='East Warehouse', is_active=True)
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture
def piece(db_session):
    return unit_service.create_unit(code='pc', name='Piece')


@pytest.fixture
def box(piece):
    """1 box = 12 pieces."""
    return unit_service.create_unit(code='box', name='Box', base_unit_id=piece.id, operator='*', operation_value=12)


@pytest.fixture
def vat(db_session):
    tax = Tax(name='VAT 10', rate=Decimal('10'), is_active=True)
    db_session.add(tax)
    db_session.commit()
    return tax


@pytest.fixture
def make_product(db_session, piece):
    """Factory for products stocked in pieces."""
    counter = {'n': 0}

    def _make(**overrides):
        counter['n'] += 1
        values = {
            'code': f'P{counter["n"]:03d}',
            'name': f'Product {counter["n"]}',
            'unit_id': piece.id,
            'price': Decimal('10'),
            'cost': Decimal('6'),
        }
        values.update(overrides)
        product = Product(**values)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture
def widget(make_product):
    return make_product(code='WIDGET', name='Widget')


@pytest.fixture
def gadget(make_product):
    return make_product(code='GADGET', name='Gadget', price=Decimal('25'), cost=Decimal('15'))


@pytest.fixture
def batch_product(make_product):
    return make_product(code='MILK', name='Milk', is_batch=True, price=Decimal('2'), cost=Decimal('1'))


@pytest.fixture
def variant_product(db_session, make_product):
    """T-shirt with a Small and a Large variant; Large costs 5 more."""
    product = make_product(code='TSHIRT', name='T-Shirt', is_variant=True, price=Decimal('20'))
    small = Variant(name='Small')
    large = Variant(name='Large')
    db_session.add_all([small, large])
    db_session.flush()
    db_session.add_all([
        ProductVariant(product_id=product.id, variant_id=small.id, item_code='TS-S'),
        ProductVariant(product_id=product.id, variant_id=large.id, item_code='TS-L', additional_price=Decimal('5')),
    ])
    db_session.commit()
    return product, small, large


@pytest.fixture
def combo(db_session, make_product, widget, gadget):
    """Gift pack: 2 widgets and 1 gadget."""
    product = make_product(code='PACK', name='Gift Pack', type=PRODUCT_TYPE_COMBO, price=Decimal('40'))
    db_session.add_all([
        ComboComponent(combo_product_id=product.id, component_product_id=widget.id, qty=Decimal('2')),
        ComboComponent(combo_product_id=product.id, component_product_id=gadget.id, qty=Decimal('1')),
    ])
    db_session.commit()
    return product


@pytest.fixture
def customer(db_session):
    c = Customer(name='Alice Buyer', email='alice@example.com')
    db_session.add(c)
    db_session.commit()
    return c


@pytest.fixture
def stock(settings):
    """Put opening stock on the ledger: stock(product, warehouse, qty, batch_id=..., variant_id=...)."""

    def _stock(product, warehouse, qty, **kwargs):
        return stock_ledger_service.apply_delta(
            product_id=product.id,
            warehouse_id=warehouse.id,
            quantity_delta=qty,
            reason='OPENING',
            settings=settings,
            **kwargs,
        )

    return _stock
