# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/retail_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates tables and the default stock location.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Inventory inspection/maintenance:
# - python -m flask inventory low-stock [--location-id 1]
#   List stock records at or below their low stock threshold.
# - python -m flask inventory verify [--product-id 1]
#   Check quantity == sum of ledger deltas (one product, or everything).
# - python -m flask inventory restock --product-id 1 --quantity 20 [--note "PO 1234"]
#   Book a restock ledger entry.
#
# Orders:
# - python -m flask orders show ORD-000001
#   Show an order with its lines and status history.
# - python -m flask orders transition ORD-000001 Packed [--notes "..."]
#   Move an order through the lifecycle (same rules as the API).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import inventory_service, order_service, products_service
from .services.errors import LedgerError
from .validation import ValidationError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize the database: create missing tables and the default location.

    Safe to run repeatedly.
    """
    click.echo("START Initializing retail ledger...")
    db.create_all()
    location = products_service.get_default_location()
    db.session.commit()
    click.echo(f"PASS Default location: {location.name} (ID: {location.id})")
    click.echo("DONE System initialized.")


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


@click.group('inventory')
def inventory_group():
    """Inventory ledger inspection and maintenance."""


@inventory_group.command('low-stock')
@click.option('--location-id', type=int, help='Filter by location ID')
@with_appcontext
def low_stock_cli(location_id):
    """
    List stock records at or below their threshold.

    Example:
        flask inventory low-stock
        flask inventory low-stock --location-id 2
    """
    records = inventory_service.list_low_stock(location_id=location_id)
    if not records:
        click.echo("No low stock items.")
        return

    default_threshold = inventory_service.default_low_stock_threshold()
    click.echo("\n" + "="*80)
    click.echo(f"{'Product':<8} {'SKU':<16} {'Name':<30} {'Loc':<5} {'Qty':>6} {'Thresh':>7}")
    click.echo("="*80)
    for record in records:
        threshold = record.low_stock_threshold if record.low_stock_threshold is not None else default_threshold
        click.echo(
            f"{record.product_id:<8} {record.product.sku:<16} {record.product.name[:30]:<30} "
            f"{record.location_id:<5} {record.quantity:>6} {threshold:>7}"
        )
    click.echo("="*80 + "\n")


@inventory_group.command('verify')
@click.option('--product-id', type=int, help='Verify a single product (default location)')
@with_appcontext
def verify_cli(product_id):
    """
    Check that stock quantities match the ledger.

    Exits with status 1 if any drift is found.
    """
    if product_id is not None:
        try:
            result = inventory_service.verify_ledger(product_id)
        except LedgerError as e:
            raise click.ClickException(e.message)
        drift = [] if result["consistent"] else [result]
    else:
        drift = inventory_service.reconcile_ledger()

    if not drift:
        click.echo("PASS Inventory matches ledger.")
        return

    for row in drift:
        click.echo(
            f"FAIL product {row['product_id']} location {row['location_id']}: "
            f"quantity={row['quantity']} ledger_sum={row['ledger_sum']}"
        )
    raise SystemExit(1)


@inventory_group.command('restock')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--quantity', type=int, required=True, help='Units received (> 0)')
@click.option('--location-id', type=int, help='Location ID (default location if omitted)')
@click.option('--note', help='Free-text note stored on the ledger entry')
@with_appcontext
def restock_cli(product_id, quantity, location_id, note):
    """Book a restock ledger entry."""
    try:
        tx = inventory_service.restock(
            product_id=product_id,
            quantity=quantity,
            location_id=location_id,
            note=note,
        )
    except (LedgerError, ValidationError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Restocked product {product_id}: +{quantity} (now {tx.quantity_after})")


@click.group('orders')
def orders_group():
    """Order inspection and lifecycle commands."""


def _order_by_ref(ref: str):
    if ref.isdigit():
        return order_service.get_order(int(ref))
    return order_service.get_order_by_number(ref)


@orders_group.command('show')
@click.argument('ref')
@with_appcontext
def show_order_cli(ref):
    """Show an order by id or order number."""
    try:
        order = _order_by_ref(ref)
    except LedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"{order.order_number}  {order.status}"
               + (f" / {order.delivery_status}" if order.delivery_status else ""))
    click.echo(f"  Channel: {order.channel}  Payment: {order.payment_method} ({order.payment_status})")
    click.echo(f"  Next: {order.expected_action}")
    if order.tracking_number:
        click.echo(f"  Tracking: {order.tracking_number} via {order.carrier}, ETA {order.estimated_delivery}")
    click.echo("  Lines:")
    for line in order.lines:
        click.echo(
            f"    {line.line_number}. {line.product.name} x{line.quantity} "
            f"@ {line.unit_price_cents} = {line.line_total_cents}"
        )
    click.echo(f"  Subtotal {order.subtotal_cents}  Tax {order.tax_cents}  Total {order.total_cents}")
    click.echo("  History:")
    for entry in order.history:
        click.echo(
            f"    {entry.created_at}  {entry.status}"
            + (f" / {entry.delivery_status}" if entry.delivery_status else "")
            + (f"  ({entry.notes})" if entry.notes else "")
        )


@orders_group.command('transition')
@click.argument('ref')
@click.argument('status')
@click.option('--notes', help='Notes recorded in the status history')
@click.option('--carrier', help='Carrier (when shipping)')
@with_appcontext
def transition_order_cli(ref, status, notes, carrier):
    """Move an order (id or number) to STATUS."""
    try:
        order = _order_by_ref(ref)
        order = order_service.transition_order(order.id, status, notes=notes, carrier=carrier)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS {order.order_number} is now {order.status} ({order.expected_action})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(orders_group)
