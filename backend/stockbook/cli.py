# Overview: Flask CLI command groups for bootstrap, inspection, and repair.

# backend/stockbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask system init-db
#   Create any missing tables.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Companies:
# - python -m flask companies list
#   List companies with balances.
# - python -m flask companies create --name "Acme" --srd 1000.00 --usd 250.00
#   Create a company with opening balances (major units).
# - python -m flask companies add-location --company-id 1 --name "Warehouse"
#   Add a stock location to a company.
#
# Inventory consistency:
# - python -m flask inventory check-consistency [--fix]
#   Compare batch-tracked items against their batches and look for negative
#   balances. --fix reconciles every batch-tracked item.
# - python -m flask inventory sync-item 42
#   Reconcile one item from its batches.
# - python -m flask inventory refresh-stock-values [--company-id 1]
#   Recompute cached stock value rollups.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Company, Item, Location
from .money_utils import format_cents, to_cents
from .services.errors import InventoryError


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create any missing tables (no-op for existing ones)."""
    db.create_all()
    click.echo("PASS Database tables ready")


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
    click.echo("PASS Database reset complete")


@click.group('companies')
def companies_group():
    """Company (tenant) management commands."""


@companies_group.command('list')
@with_appcontext
def list_companies():
    """List all companies with cash balances."""
    companies = db.session.query(Company).order_by(Company.id.asc()).all()

    if not companies:
        click.echo("No companies found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'SRD':>14} {'USD':>14} {'Items':>8}")
    click.echo("="*80)

    for company in companies:
        item_count = db.session.query(Item).filter_by(company_id=company.id).count()
        click.echo(
            f"{company.id:<5} {company.name:<30} "
            f"{format_cents(company.cash_balance_srd_cents):>14} "
            f"{format_cents(company.cash_balance_usd_cents):>14} {item_count:>8}"
        )

    click.echo("="*80 + "\n")


@companies_group.command('create')
@click.option('--name', required=True, help='Company name')
@click.option('--srd', default="0", help='Opening SRD balance, major units')
@click.option('--usd', default="0", help='Opening USD balance, major units')
@with_appcontext
def create_company_cli(name, srd, usd):
    """Create a company with opening cash balances."""
    existing = db.session.query(Company).filter_by(name=name).first()
    if existing:
        click.echo(f"FAIL Company '{name}' already exists")
        return

    try:
        srd_cents = to_cents(srd)
        usd_cents = to_cents(usd)
    except ValueError as e:
        raise click.BadParameter(str(e))
    if srd_cents < 0 or usd_cents < 0:
        raise click.BadParameter("opening balances must be >= 0")

    company = Company(name=name, cash_balance_srd_cents=srd_cents, cash_balance_usd_cents=usd_cents)
    db.session.add(company)
    db.session.commit()

    click.echo(f"PASS Created company: {company.name} (ID: {company.id})")


@companies_group.command('add-location')
@click.option('--company-id', type=int, required=True, help='Company ID')
@click.option('--name', required=True, help='Location name')
@click.option('--description', default=None, help='Optional description')
@with_appcontext
def add_location_cli(company_id, name, description):
    """Add a stock location to a company."""
    company = db.session.get(Company, company_id)
    if not company:
        click.echo(f"FAIL Company {company_id} not found")
        return

    existing = db.session.query(Location).filter_by(company_id=company_id, name=name).first()
    if existing:
        click.echo(f"FAIL Location '{name}' already exists in {company.name}")
        return

    location = Location(company_id=company_id, name=name, description=description)
    db.session.add(location)
    db.session.commit()

    click.echo(f"PASS Created location: {location.name} (ID: {location.id}) in {company.name}")


@click.group('inventory')
def inventory_group():
    """Batch consistency and stock valuation commands."""


@inventory_group.command('check-consistency')
@click.option('--fix', is_flag=True, help='Reconcile every batch-tracked item after checking')
@with_appcontext
def check_consistency(fix):
    """Run the batch and cash-balance sweeps; exit 1 when problems remain."""
    from .services.batch_service import (
        sync_all_batch_items,
        validate_company_cash_balances,
        validate_item_batch_consistency,
    )

    report = validate_item_batch_consistency()
    click.echo(
        f"Batch-tracked items: {report.total_items} "
        f"(consistent {report.consistent_items}, inconsistent {report.inconsistent_items})"
    )
    for error in report.errors:
        click.echo(f"  FAIL {error}")

    if fix and report.errors:
        results = sync_all_batch_items()
        failed = [r for r in results if not r["success"]]
        click.echo(f"FIX  Synced {len(results) - len(failed)}/{len(results)} items")
        for r in failed:
            click.echo(f"  FAIL {r['name']} ({r['item_id']}): {r['error']}")
        report = validate_item_batch_consistency()

    cash = validate_company_cash_balances()
    for error in cash.errors:
        click.echo(f"  FAIL {error}")

    if report.valid and cash.valid:
        click.echo("PASS All checks passed")
        return

    raise SystemExit(1)


@inventory_group.command('sync-item')
@click.argument('item_id', type=int)
@with_appcontext
def sync_item(item_id):
    """Reconcile one item's quantity from its batches."""
    from .services.batch_service import sync_item_quantity_from_batches

    try:
        item = sync_item_quantity_from_batches(item_id)
    except InventoryError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if not item.use_batch_system:
        click.echo(f"SKIP Item {item.id} does not use the batch system")
        return
    click.echo(f"PASS {item.name} ({item.id}): quantity_in_stock={item.quantity_in_stock} status={item.status}")


@inventory_group.command('refresh-stock-values')
@click.option('--company-id', type=int, default=None, help='Only this company')
@with_appcontext
def refresh_stock_values(company_id):
    """Recompute cached stock value rollups at the configured exchange rate."""
    from .services.valuation_service import refresh_company_stock_value

    if company_id is not None:
        company_ids = [company_id]
    else:
        company_ids = [cid for (cid,) in db.session.query(Company.id).order_by(Company.id.asc()).all()]

    for cid in company_ids:
        try:
            company = refresh_company_stock_value(cid)
        except InventoryError as e:
            click.echo(f"FAIL {e.message}")
            raise SystemExit(1)
        click.echo(
            f"PASS {company.name}: SRD {format_cents(company.stock_value_srd_cents)} "
            f"/ USD {format_cents(company.stock_value_usd_cents)}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(companies_group)
    app.cli.add_command(inventory_group)
