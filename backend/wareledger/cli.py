# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/wareledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to the app factory package (PowerShell: $env:FLASK_APP="wareledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: default warehouse, base unit and a zero-rate tax.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger quantity --product-id 1 --warehouse-id 1 [--variant-id 2 --batch-id 3]
#   Print the quantity on hand for one stock key.
# - python -m flask ledger verify
#   Replay movements against stock levels; exits non-zero on drift.
#
# Register inspection:
# - python -m flask registers list --status OPEN
#   List register sessions with optional filters.
#
# Maintenance:
# - python -m flask maintenance expire-points
#   Expire reward points past their expiry date.

import click
from flask.cli import with_appcontext

from .amounts import decimal_str
from .extensions import db
from .models import Tax, Unit, Warehouse
from .services import register_service, reward_service, stock_ledger_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--warehouse-code', default='MAIN', help='Default warehouse code')
@click.option('--warehouse-name', default='Main Warehouse', help='Default warehouse name')
@with_appcontext
def init_system(warehouse_code, warehouse_name):
    """Seed the default warehouse, base unit and tax (safe to run twice)."""
    click.echo("START Initializing wareledger...")

    warehouse = db.session.query(Warehouse).filter_by(code=warehouse_code).first()
    if not warehouse:
        warehouse = Warehouse(code=warehouse_code, name=warehouse_name, is_active=True)
        db.session.add(warehouse)
        db.session.commit()
        click.echo(f"PASS Created warehouse: {warehouse.name} (ID: {warehouse.id})")
    else:
        click.echo(f"PASS Using existing warehouse: {warehouse.name} (ID: {warehouse.id})")

    unit = db.session.query(Unit).filter_by(code='pc').first()
    if not unit:
        unit = Unit(code='pc', name='Piece', is_active=True)
        db.session.add(unit)
        db.session.commit()
        click.echo(f"PASS Created base unit: {unit.code} (ID: {unit.id})")
    else:
        click.echo(f"PASS Using existing base unit: {unit.code} (ID: {unit.id})")

    tax = db.session.query(Tax).filter_by(name='No Tax').first()
    if not tax:
        tax = Tax(name='No Tax', rate=0, is_active=True)
        db.session.add(tax)
        db.session.commit()
        click.echo(f"PASS Created tax: {tax.name} (ID: {tax.id})")

    click.echo("DONE wareledger initialized.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('quantity')
@click.option('--product-id', type=int, required=True)
@click.option('--warehouse-id', type=int, required=True)
@click.option('--variant-id', type=int, default=None)
@click.option('--batch-id', type=int, default=None)
@with_appcontext
def ledger_quantity(product_id, warehouse_id, variant_id, batch_id):
    """Print the quantity on hand for one (product, warehouse, variant, batch) key."""
    qty = stock_ledger_service.quantity_of(product_id, warehouse_id, variant_id, batch_id)
    click.echo(decimal_str(qty))


@ledger_group.command('verify')
@with_appcontext
def ledger_verify():
    """Replay every level from its movements and report drift."""
    problems = stock_ledger_service.verify_stock_levels()
    if not problems:
        click.echo("PASS Stock levels match their movements.")
        return

    click.echo(f"FAIL {len(problems)} stock level(s) drifted from their movements:")
    click.echo(f"{'Level':<7} {'Product':<9} {'Warehouse':<10} {'Variant':<8} {'Batch':<7} {'Stored':<16} {'Replayed'}")
    for p in problems:
        click.echo(
            f"{p['stock_level_id']:<7} {p['product_id']:<9} {p['warehouse_id']:<10} "
            f"{str(p['variant_id'] or '-'):<8} {str(p['batch_id'] or '-'):<7} {p['stored']:<16} {p['replayed']}"
        )
    raise SystemExit(1)


@click.group('registers')
def registers_group():
    """Cash register session commands."""


@registers_group.command('list')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--warehouse-id', type=int, help='Filter by warehouse ID')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def list_registers_cli(status, warehouse_id, limit):
    """
    List register sessions.

    Example:
        flask registers list
        flask registers list --status OPEN
    """
    registers = register_service.list_registers(status=status, warehouse_id=warehouse_id, limit=limit)
    if not registers:
        click.echo("No register sessions found.")
        return

    click.echo("\n" + "=" * 90)
    click.echo(f"{'ID':<5} {'User':<6} {'Warehouse':<10} {'Status':<8} {'Cash in hand':<14} {'Closing':<12} {'Variance'}")
    click.echo("=" * 90)
    for r in registers:
        click.echo(
            f"{r.id:<5} {r.user_id:<6} {r.warehouse_id:<10} {r.status:<8} "
            f"{decimal_str(r.cash_in_hand):<14} {decimal_str(r.closing_balance) or '-':<12} "
            f"{decimal_str(r.variance) or '-'}"
        )


@click.group('maintenance')
def maintenance_group():
    """Periodic maintenance commands."""


@maintenance_group.command('expire-points')
@with_appcontext
def expire_points_cli():
    """Expire reward points whose expiry date has passed."""
    expired = reward_service.expire_reward_points()
    if not expired:
        click.echo("No reward points to expire.")
        return
    for customer_id, points in expired.items():
        click.echo(f"Customer {customer_id}: expired {points} point(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
    app.cli.add_command(registers_group)
    app.cli.add_command(maintenance_group)
