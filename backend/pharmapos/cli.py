# Overview: Flask CLI command groups for seeding, ledger inspection, and maintenance.

# backend/pharmapos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to pharmapos (PowerShell: $env:FLASK_APP="pharmapos").
# - Use: python -m flask <group> <command> [options]
#
# Catalog:
# - python -m flask catalog seed-demo
#   Create a few demo products with unit presets and opening stock (idempotent by name).
#
# Stock ledger:
# - python -m flask stock verify [--product-id 1]
#   Compare cached stock against the movement history; exits 1 on mismatch.
# - python -m flask stock correct --product-id 1 --quantity 40 --reason "Shelf count"
#   Record a CORRECTION movement to an absolute stock level.
#
# Reports:
# - python -m flask reports stock-audit [--start 2026-01-01] [--end 2026-01-31]
#   Print the stock audit and reorder recommendations for a period.
#
# Carts:
# - python -m flask carts evict-idle [--ttl-seconds 3600]
#   Drop in-memory carts idle longer than the TTL (only affects this process).

import sys

import click
from flask.cli import with_appcontext

from .errors import PosError
from .extensions import db
from .models import Product
from .services import audit_service, catalog_service, stock_ledger_service
from .services.cart_service import cart_sessions
from .time_utils import resolve_period

# name, category, product_type, cost per base unit (cents), unit prices (cents) in preset order, opening stock
DEMO_PRODUCTS = [
    ("Paracetamol 500mg", "Analgesics", "tablets", 2, [5, 50, 450], 1000),
    ("Amoxicillin 250mg", "Antibiotics", "tablets", 6, [15, 150, 1400], 300),
    ("Cough Syrup 100ml", "Cold & Flu", "syrup", 180, [350, 350], 40),
    ("Multivitamin Tonic", "Supplements", "liquid_bottle", 2, [400, 750, 1800], 5000),
    ("Blood Pressure Check", "Services", "service", 0, [200], 1000),
]


@click.group('catalog')
def catalog_group():
    """Unit catalog commands."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create demo products with unit presets and opening stock."""
    created = 0
    for name, category, product_type, cost, prices, opening in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            click.echo(f"SKIP {name} already exists")
            continue

        units = catalog_service.default_units(product_type)
        for unit, price in zip(units, prices):
            unit["price_cents"] = price

        product = catalog_service.create_product(
            patch={
                "name": name,
                "category": category,
                "product_type": product_type,
                "cost_price_cents": cost,
                "reorder_level": 20,
            },
            units=units,
            opening_stock=opening,
            actor_id="cli",
            actor_name="seed-demo",
        )
        created += 1
        click.echo(f"PASS Created {product.name} (ID: {product.id}, stock: {product.stock_quantity})")

    click.echo(f"\nDONE {created} product(s) created")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and correction."""


@stock_group.command('verify')
@click.option('--product-id', type=int, default=None, help='Only check one product')
@with_appcontext
def verify_stock(product_id):
    """Check cached stock against the movement history."""
    mismatches = stock_ledger_service.verify_ledger(product_id)
    if not mismatches:
        click.echo("PASS Stock ledger is consistent")
        return

    for m in mismatches:
        click.echo(
            f"FAIL {m['name']} (ID: {m['product_id']}): cached {m['stock_quantity']}, "
            f"history {m['history_total']}, difference {m['difference']}"
        )
    sys.exit(1)


@stock_group.command('correct')
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True, help='Absolute stock level in base units')
@click.option('--reason', required=True)
@click.option('--actor', default='cli', help='Actor id recorded on the movement')
@with_appcontext
def correct_stock(product_id, quantity, reason, actor):
    """Record a CORRECTION to an absolute stock level."""
    try:
        new_stock = stock_ledger_service.set_stock_level(product_id, quantity, reason, actor_id=actor)
    except PosError as e:
        click.echo(f"ERROR {e.message} {e.details}")
        sys.exit(1)
    click.echo(f"PASS Product {product_id} stock is now {new_stock}")


@click.group('reports')
def reports_group():
    """Reporting commands."""


@reports_group.command('stock-audit')
@click.option('--start', default=None, help='ISO date/datetime (default: start of this month)')
@click.option('--end', default=None, help='ISO date/datetime (default: end of this month)')
@with_appcontext
def stock_audit(start, end):
    """Print the stock audit and reorder recommendations."""
    try:
        start_dt, end_dt = resolve_period(start, end)
    except ValueError as e:
        click.echo(f"ERROR {e}")
        sys.exit(1)

    summary = audit_service.build_audit_report(start_dt, end_dt)
    click.echo(f"Stock audit {start_dt.date()} .. {end_dt.date()}")
    click.echo(f"  Opening value: {summary.total_opening_value_cents / 100:,.2f}")
    click.echo(f"  Closing value: {summary.total_closing_value_cents / 100:,.2f}")
    click.echo(f"  COGS:          {summary.total_cogs_cents / 100:,.2f}")
    click.echo(f"  Missing value: {summary.total_missing_value_cents / 100:,.2f}")

    if summary.recommendations:
        click.echo("\nReorder recommendations:")
        for r in summary.recommendations:
            click.echo(
                f"  [{r.priority.upper():8}] {r.name}: stock {r.current_stock}, sold {r.total_sold}, "
                f"{r.days_of_stock} days left, reorder {r.suggested_reorder}"
            )

    for anomaly in summary.anomalies:
        click.echo(f"WARN {anomaly.kind}: {anomaly.message}")


@click.group('carts')
def carts_group():
    """In-memory cart session maintenance."""


@carts_group.command('evict-idle')
@click.option('--ttl-seconds', type=float, default=None, help='Defaults to CART_SESSION_TTL_SECONDS')
@with_appcontext
def evict_idle_carts(ttl_seconds):
    """Drop carts idle longer than the TTL."""
    evicted = cart_sessions.evict_idle(ttl_seconds)
    click.echo(f"PASS Evicted {evicted} idle cart(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(catalog_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(reports_group)
    app.cli.add_command(carts_group)
