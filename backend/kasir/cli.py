# backend/kasir/cli.py
# Commands (run from the backend directory, FLASK_APP=wsgi.py):
#
# System bootstrap:
# - flask system init
#   Idempotent: creates tables, one user per role and a default category.
# - flask system create-user --name "Siti" --email siti@kasir.local --role CASHIER
#   Create a user (prompts for the password).
#
# Payments:
# - flask payments reconcile-pending [--limit 100]
#   Re-check every PENDING digital transaction that has a gateway invoice id.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Category
from .models.auth import VALID_ROLES, ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER
from .services.auth_service import create_user, PasswordValidationError
from .services import payment_service
from .validation import ValidationError, ConflictError


DEFAULT_PASSWORD = "Password123!"

DEFAULT_USERS = [
    ("Administrator", "admin@kasir.local", ROLE_ADMIN),
    ("Manager", "manager@kasir.local", ROLE_MANAGER),
    ("Cashier", "cashier@kasir.local", ROLE_CASHIER),
]


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create the schema, default users for each role and a default category.

    SECURITY: Change the default passwords immediately in production!
    """
    click.echo("START Initializing Kasir...")

    db.create_all()
    click.echo("PASS Database tables ready")

    for name, email, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        create_user(name=name, email=email, password=DEFAULT_PASSWORD, role=role)
        click.echo(f"PASS Created user: {email} with role {role}")

    if not db.session.query(Category).filter_by(name="General").first():
        db.session.add(Category(name="General", description="Default category"))
        db.session.commit()
        click.echo("PASS Created default category: General")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for _, email, role in DEFAULT_USERS:
        click.echo(f"   {role:<8} -> {email} / {DEFAULT_PASSWORD}")


@system_group.command('create-user')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--role', type=click.Choice(VALID_ROLES, case_sensitive=False), default=ROLE_CASHIER, show_default=True)
@click.password_option()
@with_appcontext
def create_user_command(name, email, role, password):
    """Create a user."""
    try:
        user = create_user(name=name, email=email, password=password, role=role)
    except PasswordValidationError as e:
        raise click.ClickException(f"Password validation failed: {e}")
    except (ValidationError, ConflictError) as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user: {user.email} (ID: {user.id}) with role {user.role}")


@click.group('payments')
def payments_group():
    """Payment reconciliation commands."""


@payments_group.command('reconcile-pending')
@click.option('--limit', type=int, default=None, help='Check at most this many transactions')
@with_appcontext
def reconcile_pending_command(limit):
    """Ask the gateway for the status of every pending digital transaction."""
    summary = payment_service.reconcile_pending(limit=limit)
    click.echo(
        f"PASS Checked {summary['checked']} transaction(s): "
        f"{summary['changed']} changed, {summary['failed']} gateway failure(s)"
    )
    for status, count in sorted(summary["statuses"].items()):
        click.echo(f"   {status:<8} {count}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(payments_group)
