# Overview: Flask CLI command groups for bootstrap, tenant setup, and subscription maintenance.

# backend/retail/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenant management (MULTI-TENANT):
# - python -m flask tenants list
#   List all tenants with plan and subscription status.
# - python -m flask tenants create --name "Acme Corp" --code "ACME" [--plan starter] [--status trial]
#   Create a tenant and its subscription.
#
# Subscriptions:
# - python -m flask subscriptions usage --tenant-id 1
#   Print usage against plan limits, with warnings.
# - python -m flask subscriptions suspend-expired
#   Suspend every trial/active subscription whose billing window has ended.

import click
from flask.cli import with_appcontext

from .errors import RetailError
from .extensions import db
from .models import PLAN_CONFIGURATIONS, SubscriptionStatus, Tenant
from .services import subscription_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left alone)."""
    db.create_all()
    click.echo("PASS Database initialized.")


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

    click.echo("PASS Database reset complete.")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants():
    """List all tenants."""
    tenants = db.session.query(Tenant).order_by(Tenant.id.asc()).all()

    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<15} {'Active':<8} {'Plan':<14} {'Status'}")
    click.echo("=" * 80)

    for tenant in tenants:
        sub = tenant.subscription
        active_str = "Yes" if tenant.is_active else "No"
        plan = sub.plan_type if sub else "-"
        status = sub.status if sub else "-"
        click.echo(f"{tenant.id:<5} {tenant.name:<30} {tenant.code:<15} {active_str:<8} {plan:<14} {status}")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--code', required=True, help='Short code (unique)')
@click.option('--plan', 'plan_type', default='starter', type=click.Choice(sorted(PLAN_CONFIGURATIONS)), help='Subscription plan')
@click.option('--status', default=SubscriptionStatus.TRIAL.value,
              type=click.Choice([s.value for s in SubscriptionStatus]), help='Initial subscription status')
@with_appcontext
def create_tenant_cli(name, code, plan_type, status):
    """Create a new tenant with a subscription."""
    existing = db.session.query(Tenant).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Tenant with code '{code}' already exists")
        return

    tenant = Tenant(name=name, code=code, is_active=True)
    db.session.add(tenant)
    db.session.commit()

    try:
        subscription_service.create_subscription(tenant.id, plan_type=plan_type, status=status)
    except RetailError as exc:
        click.echo(f"FAIL Could not create subscription: {exc.message}")
        return

    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code}, Plan: {plan_type})")


@click.group('subscriptions')
def subscriptions_group():
    """Subscription maintenance commands."""


@subscriptions_group.command('usage')
@click.option('--tenant-id', type=int, required=True, help='Tenant ID')
@with_appcontext
def usage_cli(tenant_id):
    """Show usage against plan limits."""
    try:
        analysis = subscription_service.get_usage_analysis(tenant_id)
    except RetailError as exc:
        click.echo(f"FAIL {exc.message}")
        return

    click.echo(f"Tenant {tenant_id}: plan={analysis['plan_type']} status={analysis['status']}")
    for resource, limit in analysis["usage_limits"].items():
        used = analysis["current_usage"][
            {"sales": "sales_this_month", "api_calls": "api_calls_this_month"}.get(resource, resource)
        ]
        limit_str = "unlimited" if limit == -1 else str(limit)
        click.echo(f"  {resource:<10} {used:>8} / {limit_str:<10} ({analysis['usage_percentages'][resource]}%)")
    for warning in analysis["warnings"]:
        click.echo(f"WARN {warning}")


@subscriptions_group.command('suspend-expired')
@with_appcontext
def suspend_expired_cli():
    """Suspend subscriptions whose billing window has ended."""
    suspended = subscription_service.suspend_expired_subscriptions()
    if not suspended:
        click.echo("No expired subscriptions.")
        return
    click.echo(f"PASS Suspended {len(suspended)} subscription(s): tenant ids {', '.join(map(str, suspended))}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(subscriptions_group)
