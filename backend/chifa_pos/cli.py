# Overview: Flask CLI command groups for bootstrap and inspection.

# backend/chifa_pos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated deployments).
#
# Pharmacy (tenant) management:
# - python -m flask pharmacies create --name "Pharmacie El Amel" --code "AMEL"
# - python -m flask pharmacies list
#
# Identity:
# - python -m flask tokens issue --pharmacy-id 1 --actor-id u-42 --name "Karim B." [--employee]
#   Prints the bearer token once; only its hash is stored.
#
# Drawers and sessions:
# - python -m flask drawers create --pharmacy-id 1 --code CAISSE-1 --name "Comptoir"
# - python -m flask drawers list --pharmacy-id 1 [--all]
# - python -m flask sessions list --pharmacy-id 1 [--status open] [--limit 20]

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Pharmacy, CashDrawer
from .services import cash_session_service, identity_service
from .validation import SettlementError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


# =============================================================================
# PHARMACY MANAGEMENT COMMANDS
# =============================================================================

@click.group('pharmacies')
def pharmacies_group():
    """Pharmacy (tenant) management commands."""


@pharmacies_group.command('list')
@with_appcontext
def list_pharmacies():
    """List all pharmacies."""
    pharmacies = db.session.query(Pharmacy).order_by(Pharmacy.id).all()

    if not pharmacies:
        click.echo("No pharmacies found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Name':<35} {'Code':<15} {'Active':<8} {'Drawers'}")
    click.echo("="*70)

    for pharmacy in pharmacies:
        drawer_count = db.session.query(CashDrawer).filter_by(pharmacy_id=pharmacy.id).count()
        active_str = "Yes" if pharmacy.is_active else "No"
        click.echo(f"{pharmacy.id:<5} {pharmacy.name:<35} {pharmacy.code:<15} {active_str:<8} {drawer_count}")

    click.echo("="*70 + "\n")


@pharmacies_group.command('create')
@click.option('--name', required=True, help='Pharmacy name')
@click.option('--code', required=True, help='Short code (unique)')
@with_appcontext
def create_pharmacy_cli(name, code):
    """Create a new pharmacy (tenant)."""
    existing = db.session.query(Pharmacy).filter_by(code=code).first()
    if existing:
        click.echo(f"FAIL Pharmacy with code '{code}' already exists")
        return

    pharmacy = Pharmacy(name=name, code=code, is_active=True)
    db.session.add(pharmacy)
    db.session.commit()

    click.echo(f"PASS Created pharmacy: {pharmacy.name} (ID: {pharmacy.id}, Code: {pharmacy.code})")


# =============================================================================
# IDENTITY COMMANDS
# =============================================================================

@click.group('tokens')
def tokens_group():
    """Bearer token commands for the identity adapter."""


@tokens_group.command('issue')
@click.option('--pharmacy-id', type=int, required=True, help='Pharmacy ID')
@click.option('--actor-id', required=True, help='Actor identifier from the identity provider')
@click.option('--name', 'display_name', required=True, help='Actor display name')
@click.option('--employee', is_flag=True, help='Actor is a pharmacy employee')
@with_appcontext
def issue_token_cli(pharmacy_id, actor_id, display_name, employee):
    """Issue a bearer token. The plaintext is printed once."""
    try:
        record, token = identity_service.issue_token(
            pharmacy_id=pharmacy_id,
            actor_id=actor_id,
            actor_display_name=display_name,
            is_employee=employee,
        )
    except SettlementError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Token issued for {record.actor_display_name} (pharmacy {record.pharmacy_id})")
    click.echo(token)


# =============================================================================
# DRAWER / SESSION COMMANDS
# =============================================================================

@click.group('drawers')
def drawers_group():
    """Cash drawer inspection and bootstrap commands."""


@drawers_group.command('create')
@click.option('--pharmacy-id', type=int, required=True, help='Pharmacy ID')
@click.option('--code', required=True, help='Drawer code (unique within the pharmacy)')
@click.option('--name', required=True, help='Drawer name')
@with_appcontext
def create_drawer_cli(pharmacy_id, code, name):
    """
    Create a cash drawer.

    Example:
        flask drawers create --pharmacy-id 1 --code CAISSE-1 --name "Comptoir principal"
    """
    pharmacy = db.session.query(Pharmacy).filter_by(id=pharmacy_id).first()
    if not pharmacy:
        click.echo(f"FAIL Pharmacy ID {pharmacy_id} not found")
        return

    try:
        drawer = cash_session_service.create_drawer(pharmacy_id, code, name)
    except SettlementError as e:
        click.echo(f"FAIL {e.message}")
        return

    click.echo(f"PASS Created drawer: {drawer.code} - {drawer.name} (ID: {drawer.id})")


@drawers_group.command('list')
@click.option('--pharmacy-id', type=int, required=True, help='Pharmacy ID')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive drawers too')
@with_appcontext
def list_drawers_cli(pharmacy_id, show_all):
    """List drawers with their open session, if any."""
    drawers = cash_session_service.list_drawers(pharmacy_id, include_inactive=show_all)

    if not drawers:
        click.echo("No drawers found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Code':<15} {'Name':<30} {'Active':<8} {'Open session'}")
    click.echo("="*80)

    for drawer in drawers:
        session = cash_session_service.get_open_session(pharmacy_id, drawer.id)
        active_str = "Yes" if drawer.is_active else "No"
        session_str = session.session_number if session else "-"
        click.echo(f"{drawer.id:<5} {drawer.code:<15} {drawer.name:<30} {active_str:<8} {session_str}")

    click.echo("="*80 + "\n")


@click.group('sessions')
def sessions_group():
    """Drawer session inspection commands."""


@sessions_group.command('list')
@click.option('--pharmacy-id', type=int, required=True, help='Pharmacy ID')
@click.option('--drawer-id', type=int, help='Filter by drawer ID')
@click.option('--status', type=click.Choice(['open', 'closed']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max sessions to show')
@with_appcontext
def list_sessions_cli(pharmacy_id, drawer_id, status, limit):
    """
    List drawer sessions, newest first.

    Example:
        flask sessions list --pharmacy-id 1 --status open
    """
    sessions, total = cash_session_service.list_sessions(
        pharmacy_id, drawer_id=drawer_id, status=status, limit=limit
    )

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Number':<26} {'Status':<8} {'Opened by':<20} {'Opening':>12} {'Variance':>12}")
    click.echo("="*100)

    for s in sessions:
        variance = s.variance_cash_cents if s.variance_cash_cents is not None else "-"
        click.echo(
            f"{s.id:<5} {s.session_number:<26} {s.status:<8} {(s.opened_by_name or s.opened_by):<20} "
            f"{s.opening_balance_cents:>12} {variance:>12}"
        )

    click.echo("="*100)
    click.echo(f"Showing {len(sessions)} of {total} session(s)\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(pharmacies_group)
    app.cli.add_command(tokens_group)
    app.cli.add_command(drawers_group)
    app.cli.add_command(sessions_group)
