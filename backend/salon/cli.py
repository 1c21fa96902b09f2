# Overview: Flask CLI command groups for database bootstrap and discount rule maintenance.

# backend/salon/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables (idempotent) and the automatic discount rule rows.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Discount rules:
# - python -m flask discounts ensure-defaults
#   Upsert the one active rule row per automatic discount type.
# - python -m flask discounts list [--all]
#   List discount rules (--all includes soft-deleted rules).

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import discount_rules_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create tables and automatic discount rules. Safe to run repeatedly."""
    click.echo("BUILD  Creating all tables...")
    db.create_all()

    rules = discount_rules_service.ensure_system_rules()
    db.session.commit()

    click.echo(f"PASS Database ready ({len(rules)} automatic discount rules).")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init-db' to seed discount rules.")


@click.group('discounts')
def discounts_group():
    """Discount rule commands."""


@discounts_group.command('ensure-defaults')
@with_appcontext
def ensure_defaults():
    """Create any missing automatic discount rule rows."""
    rules = discount_rules_service.ensure_system_rules()
    db.session.commit()
    for rule in rules:
        click.echo(f"PASS {rule.type:<18} -> {rule.name} (ID: {rule.id})")


@discounts_group.command('list')
@click.option('--all', 'include_deleted', is_flag=True, help='Include soft-deleted rules')
@with_appcontext
def list_discounts(include_deleted):
    """List discount rules."""
    rules = discount_rules_service.list_rules(include_deleted=include_deleted)
    if not rules:
        click.echo("No discount rules found.")
        return

    click.echo(f"{'ID':<5} {'TYPE':<18} {'VALUE':<10} {'ACTIVE':<7} NAME")
    click.echo("-" * 70)
    for rule in rules:
        value = f"{rule.value}%" if rule.is_percentage else f"{rule.value}"
        active = "yes" if rule.is_active else "no"
        click.echo(f"{rule.id:<5} {rule.type:<18} {value:<10} {active:<7} {rule.name}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(discounts_group)
