# Overview: Flask CLI command groups for bootstrap, inspection, and overdue checks.

# backend/invoicedesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app wsgi <group> <command> [options]
#
# Database:
# - python -m flask --app wsgi db upgrade
#   Apply migrations (preferred for real deployments).
# - python -m flask --app wsgi system init-db
#   Create any missing tables directly from the models (dev/test).
# - python -m flask --app wsgi system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask --app wsgi users create --name "Ama Mensah" --email ceo@shop.local --password "Password123!" --role ceo
#   Create a user (prompts if options are omitted).
# - python -m flask --app wsgi users list
#
# Invoices:
# - python -m flask --app wsgi invoices list [--status pending] [--customer ama]
# - python -m flask --app wsgi invoices check-overdue
#   Log every overdue credit invoice and write an OVERDUE_ALERT activity entry.
#   Meant to be run daily from cron.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .models.auth import VALID_ROLES
from .models.invoices import VALID_STATUSES
from .services.auth_service import create_user, PasswordValidationError
from .services import invoice_service
from .totals import cents_to_amount


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


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

    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--name', prompt=True, help='Display name')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(VALID_ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(name, email, password, role):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter, one lowercase letter and one digit
    - At least one special character
    """
    try:
        user = create_user(name=name, email=email, password=password, role=role)
        click.echo(f"PASS Created user: {user.name} ({user.email}) with role '{user.role}'")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        raise SystemExit(1)
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")
        raise SystemExit(1)


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users."""
    users = db.session.query(User).order_by(User.id).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<25} {'Email':<30} {'Role':<9} {'Active'}")
    click.echo("="*80)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.name:<25} {user.email:<30} {user.role:<9} {active_str}")

    click.echo("="*80 + "\n")


@click.group('invoices')
def invoices_group():
    """Invoice inspection and overdue alerts."""


@invoices_group.command('list')
@click.option('--status', type=click.Choice(list(VALID_STATUSES)), help='Filter by status')
@click.option('--customer', help='Customer name contains (case-insensitive)')
@with_appcontext
def list_invoices_cli(status, customer):
    """List invoices, newest sale first."""
    invoices = invoice_service.list_invoices(status=status, customer_name=customer)

    if not invoices:
        click.echo("No invoices found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'Receipt':<18} {'Sale date':<20} {'Customer':<25} {'Type':<7} {'Status':<8} {'Total':>10} {'Balance':>10}")
    click.echo("="*100)

    for inv in invoices:
        click.echo(
            f"{inv.receipt_number:<18} {inv.sale_date:%Y-%m-%d %H:%M}{'':<4} {inv.customer_name[:25]:<25} "
            f"{inv.payment_type:<7} {inv.status:<8} "
            f"{cents_to_amount(inv.final_amount_cents):>10.2f} {cents_to_amount(inv.remaining_balance_cents):>10.2f}"
        )

    click.echo("="*100 + "\n")


@invoices_group.command('check-overdue')
@with_appcontext
def check_overdue_cli():
    """Log and audit every overdue credit invoice."""
    overdue = invoice_service.check_overdue_invoices()

    if not overdue:
        click.echo("PASS No overdue invoices")
        return

    click.echo(f"WARN {len(overdue)} invoice(s) are overdue:")
    for inv in overdue:
        click.echo(
            f"- Invoice {inv.receipt_number}: {inv.customer_name}, "
            f"Outstanding: {cents_to_amount(inv.remaining_balance_cents):.2f}, "
            f"Due: {inv.due_date:%Y-%m-%d}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(invoices_group)
