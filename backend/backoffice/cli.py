# Overview: Flask CLI command groups for database reset and ledger/price maintenance.

# backend/backoffice/cli.py
# Run from the backend directory:
# - Set FLASK_APP to backoffice (PowerShell: $env:FLASK_APP="backoffice").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Stock ledger:
# - python -m flask stock reconcile [--product-id 1] [--fix]
#   Rebuild stock from the movement ledger and report drift; --fix rewrites the projection.
#
# Prices:
# - python -m flask prices check
#   List (product, price type) pairs with more than one open price interval.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .services import ledger_service, price_history_service
from .validation import ServiceError


@click.group('system')
def system_group():
    """System maintenance commands."""


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@with_appcontext
def reset_db(yes):
    """Drop every table and create the schema again. Development and tests only."""
    if not yes:
        click.confirm("WARN Every product, sale and movement will be deleted. Continue?", abort=True)

    db.drop_all()
    db.create_all()
    click.echo("PASS Schema recreated, all tables empty.")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and repair."""


@stock_group.command('reconcile')
@click.option('--product-id', type=int, default=None, help='Only this product')
@click.option('--fix', is_flag=True, help='Rewrite drifted stock to the ledger value')
@with_appcontext
def reconcile_stock(product_id, fix):
    """Compare each product's stock with the sum of its movements."""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]

    drifted = 0
    for pid in product_ids:
        try:
            report = ledger_service.reconcile_stock(pid, fix=fix)
        except ServiceError as e:
            click.echo(f"FAIL product {pid}: {e.message}")
            drifted += 1
            continue

        if report["consistent"]:
            click.echo(f"PASS product {pid}: stock={report['projected_stock']} ({report['movement_count']} movements)")
            continue

        drifted += 1
        click.echo(
            f"DRIFT product {pid}: stock={report['projected_stock']} "
            f"ledger={report['ledger_stock']} chain_breaks={len(report['chain_breaks'])}"
        )
        if report["fixed"]:
            click.echo(f"FIXED product {pid}: stock set to {report['ledger_stock']}")

    click.echo(f"\nChecked {len(product_ids)} product(s), {drifted} with drift")
    if drifted and not fix:
        raise SystemExit(1)


@click.group('prices')
def prices_group():
    """Price timeline checks."""


@prices_group.command('check')
@with_appcontext
def check_prices():
    """Report (product, price type) pairs with more than one open interval."""
    overlaps = price_history_service.find_overlapping_open_entries()
    if not overlaps:
        click.echo("PASS No overlapping open price intervals")
        return

    for row in overlaps:
        click.echo(
            f"FAIL product {row['product_id']} {row['price_type']}: "
            f"{row['open_entries']} open intervals"
        )
    raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(prices_group)
