# Overview: Flask CLI command groups for bootstrap and stock inspection.

# backend/stockpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` for migrated databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo store with products and lots expiring on different days.
#
# Stock:
# - python -m flask stock receive --store-id 1 --product-id 1 --quantity 10 --expires 2026-11-01
#   Receive a new lot (audit INSERT).
# - python -m flask stock show --store-id 1 --product-id 1
#   List lots in consumption order (soonest expiration first) with the total.
# - python -m flask stock audit --store-id 1 --hours 24
#   Recent audit records plus hourly contention buckets.

from datetime import timedelta

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product, Store
from .services import inventory_service, stock_audit_service
from .services.inventory_service import InventoryError
from .services.unit_of_work import UnitOfWork
from .time_utils import parse_iso_datetime, utcnow


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the current models."""
    db.create_all()
    click.echo("PASS Tables created (existing tables left untouched).")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, audit trail included!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' for demo data.")


@system_group.command('seed-demo')
@click.option('--store-name', default='Main Store', show_default=True, help='Demo store name')
@with_appcontext
def seed_demo(store_name):
    """
    Idempotent demo data: one store, three products, lots on staggered expirations.
    """
    store = db.session.query(Store).filter_by(name=store_name).first()
    if not store:
        store = Store(name=store_name, code="MAIN")
        db.session.add(store)
        db.session.commit()
        click.echo(f"PASS Created store: {store.name} (ID: {store.id})")
    else:
        click.echo(f"PASS Using existing store: {store.name} (ID: {store.id})")

    demo_products = [
        ("MILK-1L", "Whole milk 1L", 129, [(24, 3), (12, 10)]),
        ("YOG-4", "Plain yogurt x4", 249, [(10, 7), (10, 14)]),
        ("RICE-1K", "Basmati rice 1kg", 399, [(40, None)]),
    ]

    now = utcnow()
    for sku, name, price_cents, lots in demo_products:
        product = db.session.query(Product).filter_by(store_id=store.id, sku=sku).first()
        if product:
            click.echo(f"WARN  Product '{sku}' already exists, skipping...")
            continue

        product = Product(store_id=store.id, sku=sku, name=name, price_cents=price_cents, is_active=True)
        db.session.add(product)
        db.session.commit()

        with UnitOfWork() as uow:
            for quantity, expires_in_days in lots:
                inventory_service.receive_lot(
                    uow,
                    product_id=product.id,
                    store_id=store.id,
                    quantity=quantity,
                    expiration_date=now + timedelta(days=expires_in_days) if expires_in_days else None,
                    purchase_price_cents=price_cents // 2,
                    reorder_threshold=5,
                )
        click.echo(f"PASS Created product {sku} with {len(lots)} lot(s)")

    click.echo("DONE Demo data ready.")


@click.group('stock')
def stock_group():
    """Stock lot inspection and receipt."""


@stock_group.command('receive')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, required=True, help='Units received')
@click.option('--expires', default=None, help='Expiration date (YYYY-MM-DD or ISO-8601)')
@click.option('--cost-cents', type=int, default=None, help='Purchase price per unit in cents')
@click.option('--supplier-id', type=int, default=None, help='Supplier ID')
@click.option('--reorder-threshold', type=int, default=None, help='Low-stock threshold for this lot')
@with_appcontext
def receive_cli(store_id, product_id, quantity, expires, cost_cents, supplier_id, reorder_threshold):
    """Receive a new lot."""
    try:
        expiration_date = parse_iso_datetime(expires)
    except ValueError:
        raise click.BadParameter(f"not an ISO-8601 date: {expires}", param_hint="--expires")

    try:
        with UnitOfWork() as uow:
            lot = inventory_service.receive_lot(
                uow,
                product_id=product_id,
                store_id=store_id,
                quantity=quantity,
                expiration_date=expiration_date,
                purchase_price_cents=cost_cents,
                supplier_id=supplier_id,
                reorder_threshold=reorder_threshold,
            )
    except InventoryError as e:
        raise click.ClickException(str(e))

    click.echo(f"PASS Received lot {lot.id}: {lot.quantity} units (version {lot.version})")


@stock_group.command('show')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--product-id', type=int, required=True, help='Product ID')
@with_appcontext
def show_cli(store_id, product_id):
    """List lots in the order a sale would consume them."""
    lots = inventory_service.list_lots(UnitOfWork(), product_id, store_id)
    if not lots:
        click.echo("No lots.")
        return

    click.echo(f"{'LOT':>6}  {'QTY':>6}  {'VER':>4}  EXPIRES")
    for lot in lots:
        expires = lot.expiration_date.date().isoformat() if lot.expiration_date else "-"
        click.echo(f"{lot.id:>6}  {lot.quantity:>6}  {lot.version:>4}  {expires}")
    click.echo(f"TOTAL {sum(lot.quantity for lot in lots)}")


@stock_group.command('audit')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--hours', type=int, default=24, show_default=True, help='Trailing window')
@with_appcontext
def audit_cli(store_id, hours):
    """Recent stock audit records and contention buckets."""
    logs = stock_audit_service.get_recent_modifications(store_id, hours)
    click.echo(f"{len(logs)} audit record(s) in the last {hours}h")
    for log in logs:
        click.echo(
            f"  {log.modified_at:%Y-%m-%d %H:%M:%S}  {log.operation_type:<6}  lot {log.lot_id}: "
            f"{log.old_quantity} -> {log.new_quantity} (v{log.old_version} -> v{log.new_version})"
        )

    stats = stock_audit_service.get_concurrency_statistics(store_id, hours)
    if stats:
        click.echo("Busy hours (several lots modified):")
        for bucket in stats:
            click.echo(
                f"  {bucket['activity_date']} {bucket['activity_hour']:02d}h  "
                f"lots={bucket['distinct_lots']} ops={bucket['total_operations']}"
            )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
