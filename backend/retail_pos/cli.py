# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/retail_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (idempotent; prefer "flask db upgrade" in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog:
# - python -m flask catalog seed-demo
#   Insert a handful of demo products (skips SKUs that already exist).
# - python -m flask catalog stock [--low-only]
#   List products with on-hand quantity and stock status.
#
# Invoices:
# - python -m flask invoices show [--date 2026-10-19]
#   Show the next invoice number that would be issued for a day.
#
# Audit:
# - python -m flask audit recent [--limit 20] [--event-type sale_created]
#   Show the most recent activity events.

import click
from datetime import datetime
from flask.cli import with_appcontext

from .extensions import db
from .models import Product
from .models.inventory import STOCK_LOW, STOCK_OUT
from .services import invoice_service
from .services.audit_service import recent_events
from .time_utils import date_key, local_today, to_utc_z


DEMO_PRODUCTS = [
    # sku, name, price_cents, cost_price_cents, quantity, reorder_level
    ("DEMO-001", "Basmati Rice 5kg", 64900, 52000, 40, 10),
    ("DEMO-002", "Sunflower Oil 1L", 17500, 14800, 60, 15),
    ("DEMO-003", "Green Tea 100 bags", 32000, 21000, 25, 5),
    ("DEMO-004", "Dish Soap 500ml", 9900, 6100, 8, 10),
    ("DEMO-005", "AA Batteries (4 pack)", 14900, 9800, 0, 5),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database schema ready.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask catalog seed-demo' for sample data.")


@click.group('catalog')
def catalog_group():
    """Product catalog inspection and demo data."""


@catalog_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Insert demo products.

    Example:
        flask catalog seed-demo
    """
    created = 0
    for sku, name, price_cents, cost_cents, quantity, reorder_level in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(sku=sku).first():
            click.echo(f"WARN  Product '{sku}' already exists, skipping...")
            continue
        db.session.add(
            Product(
                sku=sku,
                name=name,
                price_cents=price_cents,
                cost_price_cents=cost_cents,
                quantity=quantity,
                reorder_level=reorder_level,
                is_active=True,
            )
        )
        created += 1
    db.session.commit()
    click.echo(f"PASS Created {created} demo product(s)")


@catalog_group.command('stock')
@click.option('--low-only', is_flag=True, help='Only show low and out-of-stock products')
@with_appcontext
def list_stock(low_only):
    """List products with on-hand quantity and stock status."""
    products = db.session.query(Product).order_by(Product.id).all()
    if low_only:
        products = [p for p in products if p.stock_status in (STOCK_LOW, STOCK_OUT)]

    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'SKU':<12} {'Name':<30} {'Qty':>6} {'Reorder':>8} {'Status':<14} {'Active'}")
    click.echo("="*90)

    for p in products:
        click.echo(
            f"{p.id:<5} {p.sku:<12} {p.name[:30]:<30} {p.quantity:>6} {p.reorder_level:>8} "
            f"{p.stock_status:<14} {'yes' if p.is_active else 'no'}"
        )

    click.echo("="*90)
    click.echo(f"Total: {len(products)} product(s)\n")


@click.group('invoices')
def invoices_group():
    """Invoice sequence inspection."""


@invoices_group.command('show')
@click.option('--date', 'day', default=None, help='Calendar day (YYYY-MM-DD); defaults to today')
@with_appcontext
def show_next_invoice(day):
    """
    Show the next invoice number for a day without allocating it.

    Example:
        flask invoices show
        flask invoices show --date 2026-10-19
    """
    try:
        on_date = datetime.strptime(day, "%Y-%m-%d").date() if day else local_today()
    except ValueError:
        raise click.BadParameter("expected YYYY-MM-DD", param_hint="--date")

    ordinal = invoice_service.peek_next_ordinal(on_date)
    number = invoice_service.format_invoice_number(date_key(on_date), ordinal)
    click.echo(f"Next invoice for {on_date.isoformat()}: {number} ({ordinal - 1} issued)")


@click.group('audit')
def audit_group():
    """Activity event inspection."""


@audit_group.command('recent')
@click.option('--limit', type=int, default=20, help='Max events to show')
@click.option('--event-type', default=None, help='Filter by event type (e.g. sale_created)')
@with_appcontext
def recent_audit_events(limit, event_type):
    """
    Show the most recent activity events.

    Example:
        flask audit recent
        flask audit recent --event-type sale_refunded --limit 5
    """
    events = recent_events(limit=limit, event_type=event_type)

    if not events:
        click.echo("No events found.")
        return

    click.echo("\n" + "="*110)
    click.echo(f"{'ID':<6} {'When':<22} {'Event':<22} {'Outcome':<9} {'Actor':<12} {'Target':<14} {'Description'}")
    click.echo("="*110)

    for event in events:
        target = f"{event.target_type or '-'}:{event.target_id or '-'}"
        click.echo(
            f"{event.id:<6} {to_utc_z(event.occurred_at) or '-':<22} {event.event_type:<22} "
            f"{event.outcome:<9} {event.actor_id or '-':<12} {target:<14} {event.description}"
        )

    click.echo("="*110 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(audit_group)
