# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/stockpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Ledger bootstrap/inspection:
# - python -m flask ledger init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
# - python -m flask ledger seed
#   Insert a small sample catalogue; opening stock is recorded as movements.
# - python -m flask ledger verify [--product-id 1]
#   Check every product balance against its folded movement log.
#
# Caisse inspection:
# - python -m flask caisse sessions --status active --limit 20
#   List recent caisse sessions with optional filters.

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import Product
from .services import balance_service, caisse_service, catalog_service


SEED_PRODUCTS = [
    {"sku": "CAFE-250", "name": "Coffee 250g", "cost_price": "3.10", "selling_price": "6.50", "min_stock_level": 5, "opening_stock": 40},
    {"sku": "THE-100", "name": "Green tea 100g", "cost_price": "2.00", "selling_price": "4.20", "min_stock_level": 5, "opening_stock": 25},
    {"sku": "SUCRE-1K", "name": "Sugar 1kg", "cost_price": "0.90", "selling_price": "1.80", "min_stock_level": 10, "opening_stock": 60},
    {"sku": "LAIT-1L", "name": "Milk 1L", "cost_price": "0.70", "selling_price": "1.20", "min_stock_level": 12, "opening_stock": 8},
]


@click.group('ledger')
def ledger_group():
    """Ledger bootstrap and consistency commands."""


@ledger_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for the current DATABASE_URL."""
    db.create_all()
    click.echo("PASS Tables created")


@ledger_group.command('seed')
@with_appcontext
def seed():
    """Insert the sample catalogue. Existing SKUs are skipped."""
    created = 0
    for payload in SEED_PRODUCTS:
        if db.session.query(Product.id).filter_by(sku=payload["sku"]).first() is not None:
            click.echo(f"SKIP {payload['sku']} already exists")
            continue
        product = catalog_service.create_product(dict(payload))
        created += 1
        click.echo(f"PASS {product.sku}: {product.name} (stock {product.stock_quantity})")
    click.echo(f"\nDONE {created} product(s) created")


@ledger_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Verify a single product')
@with_appcontext
def verify(product_id):
    """
    Check stock_quantity == fold(movements) == latest new_balance for products.

    Exits with status 1 when any product has drifted.
    """
    try:
        reports = [balance_service.verify_balance(product_id)] if product_id else balance_service.verify_all_balances()
    except LedgerError as e:
        raise click.ClickException(e.message)

    drifted = [r for r in reports if not r["consistent"]]
    for report in reports:
        status = "PASS" if report["consistent"] else "FAIL"
        click.echo(
            f"{status} product {report['product_id']}: stored={report['stock_quantity']} "
            f"folded={report['folded_balance']} last={report['last_new_balance']} "
            f"broken_links={len(report['broken_links'])}"
        )

    click.echo(f"\n{len(reports) - len(drifted)}/{len(reports)} product(s) consistent")
    if drifted:
        raise SystemExit(1)


@click.group('caisse')
def caisse_group():
    """Caisse session inspection commands."""


@caisse_group.command('sessions')
@click.option('--user-id', type=int, default=None)
@click.option('--status', type=click.Choice(['active', 'closed']), default=None)
@click.option('--limit', type=int, default=20)
@with_appcontext
def list_sessions(user_id, status, limit):
    """List recent caisse sessions."""
    sessions = caisse_service.list_sessions(user_id=user_id, status=status, limit=limit)
    if not sessions:
        click.echo("No sessions found")
        return
    for s in sessions:
        line = f"{s.id} user={s.user_id} {s.status} opened={s.opened_at} current={s.current_amount}"
        if s.status == "closed":
            line += f" expected={s.expected_amount} counted={s.closing_amount} diff={s.difference}"
        click.echo(line)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(ledger_group)
    app.cli.add_command(caisse_group)
