# Overview: Service-layer operations for staff identities and shared devices.

"""
Staff Identity and Device Registry

The authentication core reads identities through three calls only:
get_identity(), get_credential_hash() and credential_is_current(). Everything
else here is the administrative side (create, PIN reset, role change,
deactivation) used by the CLI and the manager routes.

Identities are never deleted. Deactivation sets is_active=False and revokes
every session the identity holds; a PIN reset does the same, so a
compromised PIN cannot keep an old session alive.

Devices are registered on first use by their fingerprint and only touched
afterwards.
"""

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import StaffIdentity, Credential, Device, ROLES, ROLE_STAFF
from . import credential_service
from .concurrency import identity_locks, run_with_retry
from pinauth.time_utils import utcnow


def get_identity(identity_id: str) -> StaffIdentity | None:
    """Identity by id, or None when it does not exist."""
    if not identity_id:
        return None
    return run_with_retry(lambda: db.session.get(StaffIdentity, identity_id))


def get_credential_hash(identity_id: str) -> str | None:
    """Stored PIN hash for an identity, or None. Always read from the store."""
    return run_with_retry(
        lambda: db.session.query(Credential.pin_hash).filter_by(identity_id=identity_id).scalar()
    )


def credential_is_current(identity_id: str, pin_hash: str | None) -> bool:
    """
    True while the identity is active and still holds pin_hash.

    Login calls this under identity_locks right before issuing a session, so
    a PIN reset or deactivation that lands after verification wins.
    """
    if pin_hash is None:
        return False
    active = run_with_retry(
        lambda: db.session.query(StaffIdentity.is_active).filter_by(id=identity_id).scalar()
    )
    return bool(active) and get_credential_hash(identity_id) == pin_hash


def create_identity(identity_id: str, display_name: str, role: str = ROLE_STAFF, pin: str | None = None) -> StaffIdentity:
    """
    Create a staff identity, optionally with its first PIN.

    Raises ValueError on duplicate id or unknown role,
    PinValidationError if the PIN doesn't meet requirements.
    """
    identity_id = (identity_id or "").strip()
    display_name = (display_name or "").strip()
    if not identity_id:
        raise ValueError("Identity id is required")
    if not display_name:
        raise ValueError("Display name is required")
    if role not in ROLES:
        raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
    if db.session.get(StaffIdentity, identity_id) is not None:
        raise ValueError("Identity already exists")

    if pin is not None:
        # Validate before anything is written
        credential_service.validate_pin(pin)

    identity = StaffIdentity(
        id=identity_id,
        display_name=display_name,
        role=role,
        is_active=True,
        created_at=utcnow(),
    )
    db.session.add(identity)
    db.session.commit()

    if pin is not None:
        credential_service.set_credential(identity_id, pin)
    return identity


def list_identities(include_inactive: bool = False) -> list[StaffIdentity]:
    query = db.session.query(StaffIdentity)
    if not include_inactive:
        query = query.filter_by(is_active=True)
    return query.order_by(StaffIdentity.id).all()


def reset_pin(identity_id: str, new_pin: str) -> int:
    """
    Replace the identity's PIN and end all of its sessions.

    Returns count of sessions revoked.
    """
    from . import session_service

    with identity_locks.hold(identity_id):
        credential_service.set_credential(identity_id, new_pin)
        return session_service.revoke_all(identity_id, reason="PIN reset")


def change_role(identity_id: str, role: str) -> StaffIdentity:
    if role not in ROLES:
        raise ValueError(f"Role must be one of: {', '.join(ROLES)}")
    identity = db.session.get(StaffIdentity, identity_id)
    if identity is None:
        raise ValueError("Identity not found")
    identity.role = role
    db.session.commit()
    return identity


def deactivate_identity(identity_id: str) -> int:
    """
    Soft-delete an identity and revoke all of its sessions.

    Idempotent. Returns count of sessions revoked.
    """
    from . import session_service

    identity = db.session.get(StaffIdentity, identity_id)
    if identity is None:
        raise ValueError("Identity not found")

    with identity_locks.hold(identity_id):
        if identity.is_active:
            identity.is_active = False
            identity.deactivated_at = utcnow()
            db.session.commit()

        return session_service.revoke_all(identity_id, reason="Identity deactivated")


def register_device(fingerprint: str, label: str | None = None, address: str | None = None) -> Device:
    """
    Get or create the device for a fingerprint and mark it as seen now.
    """
    def _op():
        now = utcnow()
        device = db.session.get(Device, fingerprint)
        if device is None:
            device = Device(
                id=fingerprint,
                label=label,
                first_seen_at=now,
                last_seen_at=now,
                last_address=address,
            )
            db.session.add(device)
            try:
                db.session.commit()
                return device
            except IntegrityError:
                # Registered concurrently by another request
                db.session.rollback()
                device = db.session.get(Device, fingerprint)

        device.last_seen_at = now
        if address:
            device.last_address = address
        if label and not device.label:
            device.label = label
        db.session.commit()
        return device

    return run_with_retry(_op)


def list_devices() -> list[Device]:
    return db.session.query(Device).order_by(Device.last_seen_at.desc()).all()
