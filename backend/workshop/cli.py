# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/workshop/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and any missing default settings.
# - python -m flask system seed-defaults
#   Seed sample categories, items and services for a fresh environment.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List staff with role and active status.
# - python -m flask users create --name "Ali" --email ali@workshop.local --role admin
#   Create a staff member (prompts if options are omitted).
#
# Stock ledger:
# - python -m flask stock reconcile
#   Compare every item's on-hand quantity with its movement sum.
# - python -m flask stock low
#   List active items at or below their reorder level.

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .actor import VALID_ROLES
from .errors import WorkshopError
from .models import Category, InventoryItem, ServiceCategory, Service
from .services import catalog_service, settings_service, stock_service, user_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """Create tables and seed any missing settings. Safe to rerun."""
    db.create_all()
    click.echo("PASS Schema ready")

    created = settings_service.seed_default_settings()
    click.echo(f"PASS Settings seeded ({created} new)")


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


CATEGORY_SEED = [
    ("Engine Oil", "Engine and gear oils"),
    ("Filters", "Oil, air and fuel filters"),
    ("Brakes", "Pads, shoes and fluid"),
]

ITEM_SEED = [
    # sku, name, category, cost, price, opening stock, reorder level, unit
    ("OIL-5W30-5L", "Engine Oil 5W-30 (5L)", "Engine Oil", 2500, 3500, 20, 5, "btl"),
    ("OIL-10W40-1L", "Engine Oil 10W-40 (1L)", "Engine Oil", 600, 900, 30, 10, "btl"),
    ("FLT-OIL-STD", "Oil Filter (standard)", "Filters", 450, 800, 25, 8, "pcs"),
    ("FLT-AIR-STD", "Air Filter (standard)", "Filters", 700, 1200, 15, 5, "pcs"),
    ("BRK-PAD-FR", "Brake Pads (front set)", "Brakes", 1800, 3000, 10, 4, "set"),
    ("BRK-FLUID-DOT4", "Brake Fluid DOT4 (500ml)", "Brakes", 350, 600, 12, 4, "btl"),
]

SERVICE_CATEGORY_SEED = [
    ("Maintenance", "Routine servicing"),
    ("Repairs", "Mechanical repair work"),
]

SERVICE_SEED = [
    ("Oil Change", "Maintenance", 1500, 30),
    ("General Service", "Maintenance", 4500, 120),
    ("Brake Inspection", "Repairs", 1000, 30),
    ("Brake Pad Replacement", "Repairs", 2500, 60),
]


@system_group.command('seed-defaults')
@with_appcontext
def seed_defaults():
    """
    Seed a small workshop catalog so a fresh environment is immediately usable.

    Safe to rerun: rows are matched by name/SKU and skipped when present.
    """
    settings_service.seed_default_settings()

    categories = {}
    for name, description in CATEGORY_SEED:
        category = db.session.query(Category).filter_by(name=name).first()
        if category is None:
            category = catalog_service.create_category({"name": name, "description": description})
        categories[name] = category.id

    created_items = 0
    for sku, name, category, cost, price, stock, reorder, unit in ITEM_SEED:
        if db.session.query(InventoryItem).filter_by(sku=sku).first():
            continue
        catalog_service.create_item({
            "sku": sku,
            "name": name,
            "category_id": categories[category],
            "cost_price_cents": cost,
            "selling_price_cents": price,
            "current_stock": stock,
            "reorder_level": reorder,
            "unit": unit,
        })
        created_items += 1

    service_categories = {}
    for name, description in SERVICE_CATEGORY_SEED:
        category = db.session.query(ServiceCategory).filter_by(name=name).first()
        if category is None:
            category = catalog_service.create_service_category({"name": name, "description": description})
        service_categories[name] = category.id

    created_services = 0
    for name, category, price, minutes in SERVICE_SEED:
        if db.session.query(Service).filter_by(name=name).first():
            continue
        catalog_service.create_service({
            "name": name,
            "category_id": service_categories[category],
            "base_price_cents": price,
            "duration_minutes": minutes,
        })
        created_services += 1

    click.echo(f"PASS Seeded {created_items} item(s) and {created_services} service(s)")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, role):
    """Create a staff member."""
    try:
        user = user_service.create_user(name=name, email=email, role=role)
    except WorkshopError as e:
        click.echo(f"FAIL Failed to create user: {e.message}")
        return

    click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}'")
    click.echo(f"     User ID: {user.id}")


@users_group.command('list')
@click.option('--active-only', is_flag=True, help='Hide deactivated users')
@with_appcontext
def list_users(active_only):
    """List all users with their roles."""
    users = user_service.list_users(active=True if active_only else None)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<24} {'Email':<30} {'Role':<12} {'Active'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<24} {user.email:<30} {user.role:<12} {active_str}")

    click.echo("="*80 + "\n")


@click.group('stock')
def stock_group():
    """Stock ledger inspection commands."""


@stock_group.command('reconcile')
@with_appcontext
def reconcile_stock():
    """Report items whose on-hand quantity disagrees with the ledger."""
    mismatches = stock_service.reconcile_all()

    if not mismatches:
        click.echo("PASS Stock ledger reconciles for every item")
        return

    for row in mismatches:
        current_app.logger.error(
            "Stock ledger mismatch item=%s sku=%s on_hand=%s ledger=%s",
            row["item_id"], row["sku"], row["current_stock"], row["ledger_quantity"],
        )
        click.echo(
            f"FAIL {row['sku']:<16} {row['name']:<30} on hand {row['current_stock']:>6}"
            f"  ledger {row['ledger_quantity']:>6}  diff {row['difference']:>+6}"
        )
    raise SystemExit(1)


@stock_group.command('low')
@with_appcontext
def low_stock():
    """List active items at or below their reorder level."""
    items = catalog_service.list_low_stock_items()

    if not items:
        click.echo("No low-stock items.")
        return

    click.echo(f"{'SKU':<16} {'Name':<30} {'Stock':>6} {'Reorder':>8}")
    for item in items:
        click.echo(f"{item.sku:<16} {item.name:<30} {item.current_stock:>6} {item.reorder_level:>8}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
