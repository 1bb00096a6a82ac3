from __future__ import annotations

from ..extensions import db
from pinauth.time_utils import to_utc_z


ROLE_STAFF = "staff"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_STAFF, ROLE_MANAGER, ROLE_ADMIN)


class StaffIdentity(db.Model):
    """
    Staff member who signs in to shared tablets with a PIN.

    Identities are soft-deleted (is_active=False) and never destroyed, so
    audit entries keep pointing at a real record.
    """
    __tablename__ = "staff_identities"

    id = db.Column(db.String(64), primary_key=True)  # e.g. "staff-7"
    display_name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(16), nullable=False, default=ROLE_STAFF)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deactivated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    pin_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    credential = db.relationship(
        "Credential",
        backref=db.backref("identity", lazy=True),
        uselist=False,
        lazy=True,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "deactivated_at": to_utc_z(self.deactivated_at),
            "pin_changed_at": to_utc_z(self.pin_changed_at),
        }


class Credential(db.Model):
    """
    One-way hashed PIN owned by exactly one identity.

    pin_hash is a bcrypt hash string; the salt is embedded in it.
    hash_version records algorithm and cost (e.g. "bcrypt-12") so hashes can
    be upgraded later. Replaced wholesale on PIN reset, never read back.
    """
    __tablename__ = "credentials"

    id = db.Column(db.Integer, primary_key=True)
    identity_id = db.Column(
        db.String(64), db.ForeignKey("staff_identities.id"), nullable=False, unique=True, index=True
    )
    pin_hash = db.Column(db.String(255), nullable=False)
    hash_version = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class Device(db.Model):
    """
    Physical shared tablet, keyed by its stable fingerprint token.

    Registered on first use; becomes inactive only through disuse.
    """
    __tablename__ = "devices"

    id = db.Column(db.String(128), primary_key=True)  # fingerprint, e.g. "tablet-3"
    label = db.Column(db.String(128), nullable=True)
    first_seen_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_address = db.Column(db.String(45), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "first_seen_at": to_utc_z(self.first_seen_at),
            "last_seen_at": to_utc_z(self.last_seen_at),
            "last_address": self.last_address,
        }
