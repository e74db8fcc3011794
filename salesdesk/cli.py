# Overview: Flask CLI command groups for bootstrap, demo data, and stock/sales reports.

# salesdesk/cli.py
# Commands Legend:
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; use `flask db upgrade` once migrations are in play).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Insert a few items and salespeople to click around with.
#
# Reports:
# - python -m flask reports low-stock
#   Active items at or below their minStock threshold.
# - python -m flask reports salespeople [--start 2024-01-01] [--end 2024-01-31]
#   Allocated / sold / returned units and revenue per salesperson.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Item, Salesperson
from .services import item_service, reporting_service, salesperson_service
from .validation import ServiceError


DEMO_ITEMS = [
    {"sku": "WTR-500", "name": "Bottled Water 500ml", "category": "Drinks", "price_cents": 1000, "stock": 200, "min_stock": 40},
    {"sku": "SNK-CHP", "name": "Potato Chips", "category": "Snacks", "price_cents": 1550, "stock": 120, "min_stock": 25},
    {"sku": "SNK-NUT", "name": "Roasted Peanuts", "category": "Snacks", "price_cents": 800, "stock": 80, "min_stock": 20},
    {"sku": "ICE-VAN", "name": "Vanilla Ice Cream", "category": "Frozen", "price_cents": 2500, "stock": 15, "min_stock": 20},
]

DEMO_SALESPEOPLE = [
    {"name": "Ama Mensah", "phone": "+233-20-000-0001"},
    {"name": "Kofi Boateng", "phone": "+233-20-000-0002"},
    {"name": "Efua Owusu", "phone": None},
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema is in place")


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

    click.echo("PASS Database reset complete")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo items and salespeople (skips SKUs/names that already exist)."""
    for row in DEMO_ITEMS:
        existing = db.session.query(Item).filter_by(sku=row["sku"], is_active=True).first()
        if existing:
            click.echo(f"WARN  Item '{row['sku']}' already exists, skipping...")
            continue
        try:
            item = item_service.create_item(patch=dict(row))
        except ServiceError as e:
            click.echo(f"FAIL Could not create item '{row['sku']}': {e.message}")
            continue
        click.echo(f"PASS Created item: {item.name} (ID: {item.id}, SKU: {item.sku}, stock {item.stock})")

    for row in DEMO_SALESPEOPLE:
        existing = db.session.query(Salesperson).filter_by(name=row["name"], is_active=True).first()
        if existing:
            click.echo(f"WARN  Salesperson '{row['name']}' already exists, skipping...")
            continue
        person = salesperson_service.create_salesperson(patch=dict(row))
        click.echo(f"PASS Created salesperson: {person.name} (ID: {person.id})")


@click.group('reports')
def reports_group():
    """Read-only reports for the terminal."""


@reports_group.command('low-stock')
@with_appcontext
def low_stock():
    """List active items at or below minStock."""
    items = item_service.list_low_stock_items()
    if not items:
        click.echo("PASS No items are low on stock")
        return

    click.echo(f"{'ID':<5} {'SKU':<12} {'Name':<30} {'Stock':<8} {'Min'}")
    click.echo("-" * 65)
    for item in items:
        click.echo(f"{item.id:<5} {item.sku:<12} {item.name[:30]:<30} {item.stock:<8} {item.min_stock}")


@reports_group.command('salespeople')
@click.option('--start', default=None, help='First day (YYYY-MM-DD), inclusive')
@click.option('--end', default=None, help='Last day (YYYY-MM-DD), inclusive')
@with_appcontext
def salespeople_report(start, end):
    """Per-salesperson allocated / sold / returned units and revenue."""
    try:
        report = reporting_service.salesperson_performance(start=start, end=end)
    except ServiceError as e:
        raise click.BadParameter(e.message)

    click.echo(f"{'ID':<5} {'Name':<25} {'Alloc':<7} {'Sold':<7} {'Ret':<7} {'Revenue':<12} {'Conv %'}")
    click.echo("-" * 75)
    for row in report["rows"]:
        click.echo(
            f"{row['salespersonId']:<5} {row['salespersonName'][:25]:<25} "
            f"{row['totalAllocated']:<7} {row['totalSold']:<7} {row['totalReturned']:<7} "
            f"{row['totalRevenue']:<12.2f} {row['conversionRate']}"
        )

    totals = report["totals"]
    click.echo("-" * 75)
    click.echo(
        f"{'':<5} {'TOTAL':<25} {totals['totalAllocated']:<7} {totals['totalSold']:<7} "
        f"{totals['totalReturned']:<7} {totals['totalRevenue']:<12.2f} {totals['conversionRate']}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(reports_group)
