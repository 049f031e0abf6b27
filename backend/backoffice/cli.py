# Overview: Flask CLI command groups for bootstrap, seeding and offline replay.

# backend/backoffice/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenancy:
# - python -m flask tenants create --name "Toko Maju" --code "MAJU"
# - python -m flask tenants list
# - python -m flask branches create --tenant-id 1 --name "Cabang Pusat"
# - python -m flask users create --tenant-id 1 --username owner --name "Owner" --role OWNER [--branch-id 1]
#
# Stock:
# - python -m flask stock set --user-id 1 --variant-id 1 --branch-id 1 --quantity 50 [--price-cents 150000]
#   First-write or recount of a stock record (records an adjustment).
#
# Offline sync:
# - python -m flask sync replay batch.json --user-id 3
#   Replay a JSON list (or {"transactions": [...]}) of offline sales.

import json

import click
from flask.cli import with_appcontext

from .errors import EngineError
from .extensions import db
from .models import Branch, Tenant, User
from .permissions import ALL_ROLES, Role
from .services import stock_service, sync_service
from .services.tenant_service import actor_for_user


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Unique tenant code')
@with_appcontext
def create_tenant(name, code):
    if db.session.query(Tenant).filter_by(code=code).first():
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        raise SystemExit(1)
    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code})")


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found")
        return
    for tenant in tenants:
        status = "active" if tenant.is_active else "inactive"
        click.echo(f"{tenant.id:>4}  {tenant.code:<12} {tenant.name} ({status})")


@click.group('branches')
def branches_group():
    """Branch management commands."""


@branches_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--code', default=None)
@with_appcontext
def create_branch(tenant_id, name, code):
    if not db.session.get(Tenant, tenant_id):
        click.echo(f"FAIL Tenant {tenant_id} not found")
        raise SystemExit(1)
    branch = Branch(tenant_id=tenant_id, name=name, code=code)
    db.session.add(branch)
    db.session.commit()
    click.echo(f"PASS Created branch: {branch.name} (ID: {branch.id}, Tenant: {tenant_id})")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--username', required=True)
@click.option('--name', required=True)
@click.option('--role', type=click.Choice(ALL_ROLES, case_sensitive=False), required=True)
@click.option('--branch-id', type=int, default=None)
@with_appcontext
def create_user(tenant_id, username, name, role, branch_id):
    role = role.upper()
    if role == Role.KASIR and branch_id is None:
        click.echo("FAIL KASIR users need --branch-id")
        raise SystemExit(1)
    if branch_id is not None:
        branch = db.session.get(Branch, branch_id)
        if not branch or branch.tenant_id != tenant_id:
            click.echo(f"FAIL Branch {branch_id} not found in tenant {tenant_id}")
            raise SystemExit(1)
    user = User(tenant_id=tenant_id, branch_id=branch_id, username=username, name=name, role=role)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {username} (ID: {user.id}) with role {role}")


@click.group('stock')
def stock_group():
    """Stock seeding commands."""


@stock_group.command('set')
@click.option('--user-id', type=int, required=True, help='Acting user')
@click.option('--variant-id', type=int, required=True)
@click.option('--branch-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--price-cents', type=int, default=None)
@with_appcontext
def set_stock(user_id, variant_id, branch_id, quantity, price_cents):
    try:
        actor = actor_for_user(user_id)
        stock = stock_service.upsert_stock(actor, variant_id, branch_id, quantity, price_cents)
    except EngineError as exc:
        click.echo(f"FAIL {exc.message}")
        raise SystemExit(1)
    click.echo(f"PASS Stock for variant {variant_id} at branch {branch_id}: {stock.quantity}")


@click.group('sync')
def sync_group():
    """Offline sync commands."""


@sync_group.command('replay')
@click.argument('batch_file', type=click.File('r'))
@click.option('--user-id', type=int, required=True, help='User the sales are replayed as')
@with_appcontext
def replay_batch(batch_file, user_id):
    """Replay an offline batch exported from a POS terminal."""
    data = json.load(batch_file)
    if isinstance(data, dict):
        data = data.get("transactions")
    try:
        actor = actor_for_user(user_id)
        result = sync_service.replay(actor, data)
    except EngineError as exc:
        click.echo(f"FAIL {exc.message}")
        raise SystemExit(1)

    click.echo(f"PASS {result['success']} synced, {result['failed']} failed")
    for entry in result["results"]:
        click.echo(f"  {entry['local_id']} -> {entry['transaction_no']} ({entry['status']})")
    for error in result["errors"]:
        click.echo(f"  FAIL {error['local_id']}: {error['error']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(branches_group)
    app.cli.add_command(users_group)
    app.cli.add_command(stock_group)
    app.cli.add_command(sync_group)
