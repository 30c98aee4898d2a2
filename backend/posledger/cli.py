# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent). Use "flask db upgrade" for migrated deployments.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo branch (prefix BR1), a supplier, a few products and opening stock.
#
# Stock cache maintenance:
# - python -m flask stock reconcile --branch-id 1
#   List products whose cached quantity differs from the ledger.
# - python -m flask stock fix-cache --branch-id 1
#   Rewrite the branch stock cache from the ledger.
#
# Shifts:
# - python -m flask shifts check --shift-id 1
#   Compare a shift's running totals with its sales documents.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Branch
from .services import catalog_service, inventory_service, reconciliation_service
from .validation import PosError


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


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
    click.echo("PASS Database reset")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Create a demo branch with products and opening stock."""
    session = db.session
    branch = session.query(Branch).filter_by(code="BR1").first()
    if branch is not None:
        click.echo(f"WARN Demo branch already exists (ID: {branch.id}), skipping")
        return

    branch = catalog_service.create_branch(session, name="Main Branch", code="BR1", invoice_prefix="BR1")
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, prefix {branch.invoice_prefix})")

    supplier = catalog_service.create_supplier(session, name="Demo Supplier")
    click.echo(f"PASS Created supplier: {supplier.name} (ID: {supplier.id})")

    demo_products = [
        ("WidgetA", "1000000000001", 1000, 600),
        ("WidgetB", "1000000000002", 2500, 1400),
        ("Gadget", "1000000000003", 4999, 3000),
    ]
    for name, barcode, price, cost in demo_products:
        product = catalog_service.create_product(
            session,
            name=name,
            barcode=barcode,
            selling_price_cents=price,
            cost_price_cents=cost,
        )
        inventory_service.adjust_stock(session, {
            "product_id": product.id,
            "branch_id": branch.id,
            "quantity": 50,
            "notes": "Opening stock",
        })
        click.echo(f"PASS Created product: {product.name} (ID: {product.id}) with 50 on hand")


@click.group('stock')
def stock_group():
    """Stock ledger and cache maintenance."""


@stock_group.command('reconcile')
@click.option('--branch-id', type=int, required=True, help='Branch to check')
@with_appcontext
def reconcile(branch_id):
    """List products whose cached quantity differs from the ledger."""
    try:
        mismatches = reconciliation_service.reconcile_stock(db.session, branch_id)
    except PosError as e:
        raise click.ClickException(e.message)

    if not mismatches:
        click.echo(f"PASS Branch {branch_id}: cache matches ledger")
        return

    click.echo(f"WARN Branch {branch_id}: {len(mismatches)} mismatch(es)")
    click.echo(f"{'ID':<6} {'Barcode':<16} {'Cached':>8} {'Ledger':>8}  Name")
    click.echo("-" * 60)
    for row in mismatches:
        click.echo(
            f"{row['product_id']:<6} {row['barcode'] or '-':<16} "
            f"{row['cached_qty']:>8} {row['actual_qty']:>8}  {row['product_name']}"
        )


@stock_group.command('fix-cache')
@click.option('--branch-id', type=int, required=True, help='Branch to rebuild')
@with_appcontext
def fix_cache(branch_id):
    """Rewrite the branch stock cache from the ledger."""
    try:
        fixed = reconciliation_service.fix_stock_cache(db.session, branch_id)
    except PosError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Branch {branch_id}: {fixed} cache row(s) updated")


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('check')
@click.option('--shift-id', type=int, required=True)
@with_appcontext
def check_shift(shift_id):
    """Compare a shift's running totals with its sales documents."""
    try:
        result = reconciliation_service.reconcile_shift_totals(db.session, shift_id)
    except PosError as e:
        raise click.ClickException(e.message)

    for key, stored in result["stored"].items():
        actual = result["actual"][key]
        marker = "PASS" if stored == actual else "FAIL"
        click.echo(f"{marker} {key}: stored={stored} actual={actual}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(shifts_group)
