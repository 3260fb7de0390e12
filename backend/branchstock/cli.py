# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/branchstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "branchstock:create_app" (PowerShell: $env:FLASK_APP="branchstock:create_app").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--branch "Casa Central"]
#   Idempotent bootstrap: creates all tables, a first branch and a central admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users and tokens:
# - python -m flask users list
#   List all users with role, branch and active status.
# - python -m flask users create --username ana --role admin_sucursal --branch-id 1
#   Create a user (prompts if options are omitted).
# - python -m flask users token ana [--hours 24]
#   Issue a bearer token for a user. The token is shown once.
#
# Data maintenance:
# - python -m flask stock migrate-legacy [--dry-run]
#   Move legacy available_quantity values into quantity.
# - python -m flask orders backfill-base-price [--dry-run]
#   Fill missing base_price_at_sale_cents from the current product price.

import click
from datetime import timedelta
from flask.cli import with_appcontext

from .errors import BranchStockError
from .extensions import db
from .models import Branch, BranchStock, OrderItem, Product, User
from .models.auth import ROLE_BRANCH_ADMIN, ROLE_CENTRAL_ADMIN, ROLES
from .services import session_service
from .services.auth_service import create_user, get_user_by_username, list_users as list_users_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--branch', 'branch_name', default='Casa Central', help='Name of the first branch')
@click.option('--number', 'branch_number', default='0000000000', help='Contact number of the first branch')
@click.option('--admin', 'admin_username', default='admin', help='Username of the central admin')
@with_appcontext
def init_system(branch_name, branch_number, admin_username):
    """
    Initialize the system with a first branch and a central admin.

    Safe to run more than once: existing rows are reused.
    """
    click.echo("START Initializing system...")
    db.create_all()

    branch = db.session.query(Branch).filter_by(name=branch_name).first()
    if not branch:
        branch = Branch(name=branch_name, number=branch_number)
        db.session.add(branch)
        db.session.commit()
        click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id})")
    else:
        click.echo(f"PASS Using existing branch: {branch.name} (ID: {branch.id})")

    admin = db.session.query(User).filter_by(username=admin_username).first()
    if not admin:
        admin = create_user(admin_username, role=ROLE_CENTRAL_ADMIN, fullname="Central admin")
        click.echo(f"PASS Created central admin: {admin.username} (ID: {admin.id})")
    else:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")

    click.echo("\nDONE System initialized.")
    click.echo(f"Issue a token with: python -m flask users token {admin.username}")


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


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their role and branch."""
    users = list_users_service()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<16} {'Branch':<8} {'Active'}")
    click.echo("="*90)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        branch_str = str(user.branch_id) if user.branch_id else "-"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email or '-':<30} {user.role:<16} {branch_str:<8} {active_str}")

    click.echo("="*90 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--role', type=click.Choice(ROLES), prompt=True, help='Role')
@click.option('--branch-id', type=int, default=None, help='Branch (required for admin_sucursal)')
@click.option('--email', default=None, help='Email address')
@click.option('--fullname', default=None, help='Full name')
@click.option('--phone', default=None, help='Phone number')
@with_appcontext
def create_user_cmd(username, role, branch_id, email, fullname, phone):
    """Create a user. Branch admins also become the branch's admin when it has none."""
    try:
        user = create_user(username, role=role, branch_id=branch_id, email=email, fullname=fullname, phone=phone)
    except BranchStockError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)

    if role == ROLE_BRANCH_ADMIN:
        branch = db.session.get(Branch, branch_id)
        if branch.admin_user_id is None:
            branch.admin_user_id = user.id
            db.session.commit()
            click.echo(f"PASS {user.username} is now admin of branch {branch.name}")

    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@users_group.command('token')
@click.argument('username')
@click.option('--hours', type=int, default=24, help='Token lifetime in hours')
@with_appcontext
def issue_token(username, hours):
    """Issue a bearer token for a user."""
    try:
        user = get_user_by_username(username)
        _session, token = session_service.create_session(user.id, lifetime=timedelta(hours=hours))
    except BranchStockError as e:
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    except ValueError as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)

    click.echo(f"PASS Token for {user.username} (valid {hours}h, shown once):")
    click.echo(token)


@click.group('stock')
def stock_group():
    """Branch stock maintenance commands."""


@stock_group.command('migrate-legacy')
@click.option('--dry-run', is_flag=True, help='Report without writing')
@with_appcontext
def migrate_legacy_stock(dry_run):
    """
    Move legacy available_quantity values into quantity.

    Entries that already have quantity keep it; the legacy value is cleared.
    """
    entries = db.session.query(BranchStock).filter(BranchStock.available_quantity.isnot(None)).all()
    if not entries:
        click.echo("PASS No legacy stock entries found.")
        return

    for entry in entries:
        click.echo(
            f"branch={entry.branch_id} product={entry.product_id} "
            f"available_quantity={entry.available_quantity} -> quantity={entry.available}"
        )
        if not dry_run:
            entry.apply_levels(entry.levels)

    if dry_run:
        click.echo(f"DRY RUN {len(entries)} entries would be migrated.")
        return

    db.session.commit()
    click.echo(f"PASS Migrated {len(entries)} stock entries.")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('backfill-base-price')
@click.option('--dry-run', is_flag=True, help='Report without writing')
@with_appcontext
def backfill_base_price(dry_run):
    """Fill base_price_at_sale_cents on old order items from the current product price."""
    items = db.session.query(OrderItem).filter(OrderItem.base_price_at_sale_cents.is_(None)).all()
    if not items:
        click.echo("PASS Every order item already has a base price.")
        return

    updated = 0
    skipped = 0
    for item in items:
        product = db.session.get(Product, item.product_id)
        if product is None:
            skipped += 1
            continue
        if not dry_run:
            item.base_price_at_sale_cents = product.price_cents
        updated += 1

    if dry_run:
        click.echo(f"DRY RUN {updated} items would be updated, {skipped} without product.")
        return

    db.session.commit()
    click.echo(f"PASS Updated {updated} order items ({skipped} skipped, product deleted).")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(orders_group)
