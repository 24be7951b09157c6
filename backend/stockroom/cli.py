# Overview: Flask CLI command group for bootstrap, ledger inspection and demo data.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask stock <command> [options]
#
# - python -m flask stock init-db
#   Create any missing tables (use `flask db upgrade` for migrated deployments).
# - python -m flask stock reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask stock seed-demo
#   Add a small demo catalog plus one sale, all through the ledger.
# - python -m flask stock verify-ledgers [--include-orphans]
#   Replay every product ledger; exits 1 if any disagrees with stock.
# - python -m flask stock low-stock
#   List products at or below their minimum stock.

import click
from flask.cli import with_appcontext

from .extensions import db
from .money import format_cents
from .services.inventory_service import InventoryStore
from .services.invariants import ledger_problems
from .services.ledger_service import movements_for
from .services.query_service import DEFAULT_PRODUCT_SORT, low_stock, sort_records
from .services.transaction_engine import get_engine

DEMO_PRODUCTS = [
    {"sku": "CAB-USB-C", "name": "USB-C Cable", "category": "Accessories",
     "unit_cost_cents": 400, "margin_percent": 150, "stock": 40, "min_stock": 10},
    {"sku": "KB-MECH-01", "name": "Mechanical Keyboard", "category": "Peripherals",
     "unit_cost_cents": 4500, "margin_percent": 40, "stock": 8, "min_stock": 3},
    {"sku": "MS-WL-02", "name": "Wireless Mouse", "category": "Peripherals",
     "unit_cost_cents": 1200, "margin_percent": 60, "stock": 3, "min_stock": 5},
    {"sku": "NB-A5-DOT", "name": "Dotted Notebook A5", "category": "Stationery",
     "unit_cost_cents": 250, "margin_percent": 100, "stock": 60, "min_stock": 15},
]


@click.group('stock')
def stock_group():
    """Stock ledger bootstrap and inspection commands."""


@stock_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@stock_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask stock seed-demo' for sample data.")


@stock_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Idempotent: products whose SKU already exists are skipped."""
    engine = get_engine()
    inventory = InventoryStore()

    created = []
    for fields in DEMO_PRODUCTS:
        if inventory.by_sku(fields["sku"]) is not None:
            click.echo(f"SKIP {fields['sku']} already exists")
            continue
        product = engine.create_product(dict(fields))
        created.append(product)
        click.echo(f"PASS Created {product.sku} ({product.name}) with stock {product.stock}")

    if created:
        first = created[0]
        sale = engine.complete_sale(
            [{"product_id": first.id, "quantity": 2}],
            customer={"name": "Walk-in Customer"},
            payment_method="CASH",
            processed_by="seed-demo",
        )
        click.echo(f"PASS Recorded demo sale {sale.document_number} total {format_cents(sale.total_cents)}")


@stock_group.command('verify-ledgers')
@click.option('--include-orphans', is_flag=True, help='Also replay ledgers of deleted products')
@with_appcontext
def verify_ledgers(include_orphans):
    """Replay every ledger and compare the result with the stored stock."""
    inventory = InventoryStore()
    failures = 0
    checked = 0

    for product in inventory.all():
        checked += 1
        problems = ledger_problems(product.id, product.stock, movements_for(product.id, newest_first=False))
        for problem in problems:
            click.echo(f"FAIL {problem}")
        failures += 1 if problems else 0

    if include_orphans:
        for product_id in inventory.orphaned_product_ids():
            checked += 1
            movements = movements_for(product_id, newest_first=False)
            # No stock to compare against; the chain must still replay to its own tail
            problems = ledger_problems(product_id, movements[-1].balance_after, movements)
            for problem in problems:
                click.echo(f"FAIL orphaned {problem}")
            failures += 1 if problems else 0

    if failures:
        click.echo(f"FAIL {failures} of {checked} ledger(s) inconsistent")
        raise SystemExit(1)
    click.echo(f"PASS {checked} ledger(s) consistent")


@stock_group.command('low-stock')
@with_appcontext
def low_stock_command():
    """List products at or below their minimum stock."""
    products = sort_records(low_stock(InventoryStore().all()), DEFAULT_PRODUCT_SORT)
    if not products:
        click.echo("PASS No products below minimum stock")
        return

    click.echo(f"{'SKU':<16} {'Name':<32} {'Stock':>6} {'Min':>6}")
    click.echo("-" * 63)
    for p in products:
        click.echo(f"{p.sku:<16} {p.name[:32]:<32} {p.stock:>6} {p.min_stock:>6}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(stock_group)
