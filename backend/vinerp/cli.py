# Overview: Flask CLI command groups for bootstrap, demo data and user inspection.

# backend/vinerp/cli.py
# Commands Legend (run from the repository root):
# Prereqs:
# - Activate your virtualenv and `pip install -e .`
# - Use: flask --app vinerp <group> <command> [options]
#
# Bootstrap:
# - flask --app vinerp vinerp init-db
#   Create all tables, the primary location, the settings row and an admin user.
# - flask --app vinerp vinerp seed-demo
#   Load a small demo catalog (units, products with opening stock, a customer, a bank).
# - flask --app vinerp vinerp reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - flask --app vinerp users list
# - flask --app vinerp users create --username kassa1 --permission process_returns --permission edit_price

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Location, User, Product
from .permissions import ADMIN, ALL_PERMISSIONS
from .services import catalog_service
from .services.catalog_service import CatalogError
from .services.settings_service import get_settings


@click.group('vinerp')
def vinerp_group():
    """Store bootstrap commands."""


def _ensure_primary_location() -> Location:
    location = db.session.query(Location).filter_by(is_primary=True).first()
    if location is None:
        location = db.session.query(Location).order_by(Location.id).first()
    if location is None:
        location = catalog_service.create_location({"name": "Main Store", "type": "STORE", "is_primary": True})
        click.echo(f"PASS Created primary location: {location.name} (ID: {location.id})")
    else:
        click.echo(f"PASS Using existing location: {location.name} (ID: {location.id})")
    return location


@vinerp_group.command('init-db')
@with_appcontext
def init_db():
    """
    Idempotent bootstrap.

    Creates:
    - All tables (db.create_all; use `flask db upgrade` when migrations exist)
    - A primary location (if none exists)
    - The AppSettings row
    - An "admin" user holding the admin permission
    """
    click.echo("START Initializing VinERP database...")
    db.create_all()
    click.echo("PASS Tables created")

    _ensure_primary_location()

    settings = get_settings()
    db.session.commit()
    click.echo(f"PASS Settings ready (currency: {settings.currency})")

    admin = db.session.query(User).filter_by(username="admin").first()
    if admin is None:
        admin = catalog_service.create_user({"username": "admin", "permissions": [ADMIN]})
        click.echo(f"PASS Created user: admin (ID: {admin.id})")
    else:
        click.echo(f"WARN  User 'admin' already exists, skipping...")

    click.echo("\n" + "="*60)
    click.echo("DONE VinERP initialized")
    click.echo("="*60)
    click.echo(f"\nSend `X-User-Id: {admin.id}` with API requests to act as admin.\n")


@vinerp_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Load a small demo catalog. Skips anything that already exists."""
    location = _ensure_primary_location()

    units = {}
    for name, short in (("ədəd", "pc"), ("kq", "kg"), ("litr", "l")):
        existing = next((u for u in catalog_service.list_lookup("units") if u.name == name), None)
        units[short] = existing or catalog_service.create_lookup("units", {"name": name, "short_name": short})

    demo_products = [
        ("P-0001", "4760000000011", "Mineral water 0.5L", "pc", 80, 45, 120),
        ("P-0002", "4760000000028", "White bread", "pc", 60, 35, 40),
        ("P-0003", "4760000000035", "Tomatoes", "kg", 350, 210, 25),
        ("P-0004", "4760000000042", "Sunflower oil", "l", 520, 390, 30),
    ]
    created = 0
    for code, barcode, name, unit, price, cost, qty in demo_products:
        if db.session.query(Product).filter_by(code=code).first() is not None:
            continue
        try:
            catalog_service.create_product({
                "code": code,
                "barcode": barcode,
                "name": name,
                "unit_id": units[unit].id,
                "sales_price_cents": price,
                "purchase_price_cents": cost,
                "stocks": {location.id: qty},
            })
            created += 1
        except CatalogError as e:
            click.echo(f"FAIL Failed to create product {code}: {e}")
    click.echo(f"PASS Created {created} products")

    if not catalog_service.list_customers("Demo"):
        catalog_service.create_customer({"name": "Demo Customer", "type": "individual", "discount_rate": 5})
        click.echo("PASS Created customer: Demo Customer (5% discount)")

    if not catalog_service.list_banks():
        bank = catalog_service.create_bank({"name": "Demo Bank", "account_number": "AZ00DEMO0000000001"})
        click.echo(f"PASS Created bank: {bank.name} (ID: {bank.id})")

    click.echo("DONE Demo data loaded")


@vinerp_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        return
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset (all data deleted). Run `init-db` next.")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """Operator inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = catalog_service.list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Active':<8} {'Register':<10} {'Permissions'}")
    click.echo("="*80)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        register = user.assigned_cash_register_id or "-"
        perms = ", ".join(user.permissions or []) or "-"
        click.echo(f"{user.id:<5} {user.username:<20} {active_str:<8} {register:<10} {perms}")
    click.echo("="*80 + "\n")


@users_group.command('create')
@click.option('--username', required=True)
@click.option('--first-name', default=None)
@click.option('--last-name', default=None)
@click.option('--permission', 'permissions', multiple=True, type=click.Choice(ALL_PERMISSIONS))
@with_appcontext
def create_user_cli(username, first_name, last_name, permissions):
    """Create an operator with the given permission codes."""
    try:
        user = catalog_service.create_user({
            "username": username,
            "first_name": first_name,
            "last_name": last_name,
            "permissions": list(permissions),
        })
    except CatalogError as e:
        click.echo(f"FAIL {e}")
        return
    click.echo(f"PASS Created user: {user.username} (ID: {user.id})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(vinerp_group)
    app.cli.add_command(users_group)
