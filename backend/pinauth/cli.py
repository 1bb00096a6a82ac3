# Overview: Flask CLI command groups for bootstrap, staff setup, and maintenance.

# backend/pinauth/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (use "flask db upgrade" for migrated deployments).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Staff setup:
# - python -m flask staff create --id staff-7 --name "Somchai" --role staff --pin 4821
#   Create a staff identity (prompts for the PIN if omitted).
# - python -m flask staff list [--all]
#   List staff identities with role and active status.
# - python -m flask staff set-pin staff-7
#   Replace a PIN and revoke every session the staff member holds.
# - python -m flask staff deactivate staff-7
#   Deactivate a staff member and revoke every session.
# - python -m flask staff unlock staff-7 --device tablet-3
#   Clear failed attempts and any lockout for a staff member on one tablet.
#
# Devices:
# - python -m flask devices list
#   List registered tablets and when they were last seen.
#
# Maintenance:
# - python -m flask maintenance sweep-sessions
#   Mark expired sessions as revoked.
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired/revoked sessions older than the retention window.
# - python -m flask maintenance cleanup-audit --retention-days 90
#   Operator retention tool: delete audit entries older than the window.

import click
from flask.cli import with_appcontext

from .errors import PinValidationError
from .extensions import db
from .models import ROLES
from .services import attempt_service, audit_service, identity_service, session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that don't exist yet."""
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

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask staff create' to add staff.")


@click.group('staff')
def staff_group():
    """Staff identity setup commands."""


@staff_group.command('create')
@click.option('--id', 'identity_id', prompt=True, help='Staff identifier')
@click.option('--name', prompt=True, help='Display name')
@click.option('--role', type=click.Choice(list(ROLES)), default='staff', show_default=True, help='Role')
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='PIN')
@with_appcontext
def create_staff_cli(identity_id, name, role, pin):
    """
    Create a staff identity with its PIN.

    PIN must be exactly PIN_LENGTH digits and not a
    trivially guessable pattern (1234, 0000, 1212, birth years...).
    """
    try:
        identity = identity_service.create_identity(identity_id, name, role=role, pin=pin)
        click.echo(f"PASS Created staff: {identity.id} ({identity.display_name}) with role '{identity.role}'")
        click.echo("SECURITY PIN securely hashed with bcrypt")
    except PinValidationError as e:
        click.echo(f"FAIL PIN validation failed: {str(e)}")
    except ValueError as e:
        click.echo(f"FAIL Failed to create staff: {str(e)}")


@staff_group.command('list')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated staff')
@with_appcontext
def list_staff(include_inactive):
    """List staff identities."""
    identities = identity_service.list_identities(include_inactive=include_inactive)

    if not identities:
        click.echo("No staff found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<20} {'Name':<30} {'Role':<10} {'Active':<8} {'PIN'}")
    click.echo("=" * 80)

    for identity in identities:
        active_str = "Yes" if identity.is_active else "No"
        pin_str = "set" if identity.credential is not None else "none"
        click.echo(f"{identity.id:<20} {identity.display_name:<30} {identity.role:<10} {active_str:<8} {pin_str}")

    click.echo("=" * 80 + "\n")


@staff_group.command('set-pin')
@click.argument('identity_id')
@click.option('--pin', prompt=True, hide_input=True, confirmation_prompt=True, help='New PIN')
@with_appcontext
def set_pin_cli(identity_id, pin):
    """Replace a staff member's PIN and revoke all of their sessions."""
    try:
        revoked = identity_service.reset_pin(identity_id, pin)
        click.echo(f"PASS PIN updated for {identity_id}. Revoked {revoked} sessions.")
    except PinValidationError as e:
        click.echo(f"FAIL PIN validation failed: {str(e)}")
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")


@staff_group.command('deactivate')
@click.argument('identity_id')
@with_appcontext
def deactivate_cli(identity_id):
    """Deactivate a staff member and revoke all of their sessions."""
    try:
        revoked = identity_service.deactivate_identity(identity_id)
        click.echo(f"PASS Deactivated {identity_id}. Revoked {revoked} sessions.")
    except ValueError as e:
        click.echo(f"FAIL {str(e)}")


@staff_group.command('unlock')
@click.argument('identity_id')
@click.option('--device', 'device_id', required=True, help='Device fingerprint of the locked tablet')
@click.option('--by', 'unlocked_by', default='cli', show_default=True, help='Recorded as the unlocking operator')
@with_appcontext
def unlock_cli(identity_id, device_id, unlocked_by):
    """Clear a PIN lockout for one staff member on one tablet."""
    if attempt_service.unlock(identity_id, device_id, unlocked_by=unlocked_by):
        click.echo(f"PASS Cleared lockout for {identity_id} on {device_id}.")
    else:
        click.echo(f"INFO {identity_id} on {device_id} has no failed attempts to clear.")


@click.group('devices')
def devices_group():
    """Shared tablet inspection commands."""


@devices_group.command('list')
@with_appcontext
def list_devices_cli():
    """List registered devices."""
    devices = identity_service.list_devices()

    if not devices:
        click.echo("No devices registered.")
        return

    for device in devices:
        label = device.label or "-"
        click.echo(f"{device.id:<40} {label:<20} last seen {device.last_seen_at} from {device.last_address or '-'}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('sweep-sessions')
@with_appcontext
def sweep_sessions_cli():
    """Mark expired sessions as revoked."""
    swept = session_service.sweep_expired_sessions()
    click.echo(f"Swept {swept} expired sessions.")


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=None, help='Defaults to SESSION_RETENTION_DAYS')
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """Delete expired and revoked sessions older than the retention window."""
    deleted = session_service.cleanup_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} old sessions.")


@maintenance_group.command('cleanup-audit')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_audit_cli(retention_days):
    """
    Operator retention tool: delete audit entries older than the window.

    The service itself never deletes audit entries; run this only as part
    of your audit retention policy. Default retention: 90 days.
    """
    deleted = audit_service.cleanup_audit_entries(retention_days=retention_days)
    click.echo(f"Deleted {deleted} audit entries older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(staff_group)
    app.cli.add_command(devices_group)
    app.cli.add_command(maintenance_group)
