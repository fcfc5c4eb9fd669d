# Overview: Flask CLI command groups for bootstrap, stock receipt, and payment polling.

# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--tenant "Tenant Name"] [--tenant-code MAIN] [--branch "Main Branch"]
#   Idempotent bootstrap: creates a default tenant and branch.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant inspection:
# - python -m flask tenants list
#   List tenants with their branches.
#
# Inventory:
# - python -m flask inventory receive --branch-id 1 --product-id 3 --quantity 24 [--reorder-level 5]
#   Receive stock into a branch (creates the record on first receipt).
# - python -m flask inventory list --branch-id 1 [--low-stock]
#   Show branch stock.
#
# Payments:
# - python -m flask payments poll-pending [--limit 100]
#   Poll every pending mobile-money payment once and settle the ones that moved.
#   Meant to be run by an external scheduler (cron, systemd timer).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch, Tenant
from .services import inventory_service, payment_service
from .services.concurrency import PersistenceError
from .services.inventory_service import InventoryError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Default Pharmacy', help='Tenant name')
@click.option('--tenant-code', default='DEFAULT', help='Tenant code')
@click.option('--branch', 'branch_name', default='Main Branch', help='Branch name')
@with_appcontext
def init_system(tenant_name, tenant_code, branch_name):
    """
    Create the tables plus a default tenant and branch when missing.

    Safe to run repeatedly.
    """
    click.echo("START Initializing PharmaPOS...")
    db.create_all()

    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if not tenant:
        tenant = Tenant(name=tenant_name, code=tenant_code, is_active=True)
        db.session.add(tenant)
        db.session.commit()
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")
    else:
        click.echo(f"PASS Using existing tenant: {tenant.name} (ID: {tenant.id})")

    branch = db.session.query(Branch).filter_by(tenant_id=tenant.id).first()
    if not branch:
        branch = Branch(tenant_id=tenant.id, name=branch_name, code="MAIN", is_active=True)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Tenant: {tenant.name})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    click.echo("DONE PharmaPOS initialized")


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


@click.group('tenants')
def tenants_group():
    """Tenant inspection commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants and their branches."""
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Branches'}")
    click.echo("="*80)

    for tenant in tenants:
        active_str = "Yes" if tenant.is_active else "No"
        branches = ", ".join(f"{b.id}:{b.name}" for b in tenant.branches) or "-"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code or '-':<15} {active_str:<8} {branches}")

    click.echo("="*80 + "\n")


@click.group('inventory')
def inventory_group():
    """Branch stock commands."""


@inventory_group.command('receive')
@click.option('--branch-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--reorder-level', type=int, default=None)
@click.option('--batch-number', default=None)
@with_appcontext
def receive_cli(branch_id, product_id, quantity, reorder_level, batch_number):
    """Receive stock into a branch."""
    try:
        record = inventory_service.receive_stock(
            branch_id=branch_id,
            product_id=product_id,
            quantity=quantity,
            reorder_level=reorder_level,
            batch_number=batch_number,
        )
    except (InventoryError, PersistenceError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(
        f"PASS Received {quantity} of product {product_id} at branch {branch_id}; "
        f"on hand: {record.quantity_on_hand}"
    )


@inventory_group.command('list')
@click.option('--branch-id', type=int, required=True)
@click.option('--low-stock', is_flag=True, help='Only records at or below reorder level')
@click.option('--limit', type=int, default=200)
@with_appcontext
def list_inventory_cli(branch_id, low_stock, limit):
    """Show stock at a branch."""
    records, total = inventory_service.list_inventory(
        branch_id=branch_id, low_stock=low_stock, page=1, page_size=limit
    )
    if not records:
        click.echo("No inventory records found.")
        return

    click.echo(f"\n{'Product':<8} {'Name':<35} {'On hand':>8} {'Reorder':>8}  Low")
    click.echo("-"*70)
    for record in records:
        name = record.product.name if record.product else "?"
        low = "LOW" if record.is_low_stock else ""
        click.echo(f"{record.product_id:<8} {name[:35]:<35} {record.quantity_on_hand:>8} {record.reorder_level:>8}  {low}")
    click.echo(f"\n{len(records)} of {total} records\n")


@click.group('payments')
def payments_group():
    """Payment maintenance commands."""


@payments_group.command('poll-pending')
@click.option('--limit', type=int, default=100, help='Maximum payments to poll')
@with_appcontext
def poll_pending_cli(limit):
    """Poll pending mobile-money payments and settle the ones that moved."""
    result = payment_service.poll_pending_payments(limit=limit)
    click.echo(
        f"PASS Polled {result['polled']} payment(s): "
        f"{result['settled']} settled, {result['errors']} error(s)"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(payments_group)
