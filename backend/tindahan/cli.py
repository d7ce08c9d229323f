# Overview: Flask CLI command groups for bootstrap, inspection, and imports.

# backend/tindahan/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to tindahan (PowerShell: $env:FLASK_APP="tindahan").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables and the three cash channels (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Products:
# - python -m flask products import-csv products.csv
#   All-or-nothing import of a template CSV; prints row errors on rejection.
# - python -m flask products low-stock
#   List products at or below their minimum stock.
#
# Expirations:
# - python -m flask expirations list --days 7
#   List unresolved batches expiring within the horizon.
#
# Cash:
# - python -m flask cash balance
#   Print the cash, GCash and PayMaya balances.

import click
from flask.cli import with_appcontext

from .errors import SettlementError
from .extensions import db
from .money import from_cents
from .services import cash_service, expiration_service, import_service, stock_service
from .validation import MAX_DAYS


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and seed the cash channels."""
    db.create_all()
    cash_service.ensure_channels()
    db.session.commit()
    click.echo("PASS Database initialized (cash, gcash, paymaya channels ready)")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("WARN  This deletes ALL data. Re-run with --yes to confirm.")
        return
    db.drop_all()
    db.create_all()
    cash_service.ensure_channels()
    db.session.commit()
    click.echo("PASS Database reset")


@click.group('products')
def products_group():
    """Product inspection and bulk import."""


@products_group.command('import-csv')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_csv(path):
    """Import a CSV laid out like the download template."""
    with open(path, newline='', encoding='utf-8-sig') as fh:
        records = import_service.read_csv(fh)

    try:
        created = import_service.import_products(records)
    except SettlementError as e:
        click.echo(f"FAIL {e.message}")
        for row_error in e.details.get("row_errors", []):
            for field, message in row_error["errors"].items():
                click.echo(f"   row {row_error['row']}: {field}: {message}")
        raise SystemExit(1)

    click.echo(f"PASS Imported {len(created)} product(s)")


@products_group.command('low-stock')
@with_appcontext
def low_stock():
    """List products with 0 < quantity <= min_stock."""
    products = stock_service.low_stock_products()
    if not products:
        click.echo("No low-stock products")
        return
    for p in products:
        click.echo(f"{p.id:>5}  {p.name:<40} qty={p.quantity:<5} min={p.min_stock}")


@click.group('expirations')
def expirations_group():
    """Near-expiration watch list."""


@expirations_group.command('list')
@click.option('--days', type=click.IntRange(0, MAX_DAYS), default=None, help='Alert horizon in days (default from config)')
@with_appcontext
def list_expirations(days):
    rows = expiration_service.near_expiration(horizon_days=days)
    if not rows:
        click.echo("No batches near expiration")
        return
    for row in rows:
        flag = "EXPIRED" if row["isExpired"] else f"{row['daysUntilExpiration']}d"
        click.echo(
            f"{row['expirationDate']}  {flag:<8} {row['name']:<40} batch={row['quantity']} stock={row['productQuantity']}"
        )


@click.group('cash')
def cash_group():
    """Cash channel inspection."""


@cash_group.command('balance')
@with_appcontext
def cash_balance():
    for channel, cents in cash_service.get_balances().items():
        click.echo(f"{channel:<8} {from_cents(cents):>12,.2f}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(products_group)
    app.cli.add_command(expirations_group)
    app.cli.add_command(cash_group)
