from __future__ import annotations

from ..extensions import db
from pinauth.time_utils import to_utc_z


# Closed set of audit event kinds (stable outbound schema)
EVENT_LOGIN_SUCCESS = "LoginSuccess"
EVENT_LOGIN_FAILURE = "LoginFailure"
EVENT_LOCKOUT = "Lockout"
EVENT_SESSION_REVOKED = "SessionRevoked"
EVENT_CSRF_REJECTED = "CsrfRejected"
EVENT_KINDS = (
    EVENT_LOGIN_SUCCESS,
    EVENT_LOGIN_FAILURE,
    EVENT_LOCKOUT,
    EVENT_SESSION_REVOKED,
    EVENT_CSRF_REJECTED,
)


class AttemptRecord(db.Model):
    """
    Consecutive failed PIN attempts for one (identity, device) pair.

    identity_id is deliberately not a foreign key: attempts against
    identifiers that do not exist are tracked exactly like real ones, so
    lockout behaviour cannot be used to enumerate staff.

    INVARIANT: lockout_until, when set, is strictly greater than
    last_failure_at + LOCKOUT_BASE_DELAY_SECONDS.
    """
    __tablename__ = "attempt_records"
    __table_args__ = (
        db.UniqueConstraint("identity_id", "device_id", name="uq_attempt_records_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    identity_id = db.Column(db.String(64), nullable=False)
    device_id = db.Column(db.String(128), nullable=False)

    failure_count = db.Column(db.Integer, nullable=False, default=0)
    last_failure_at = db.Column(db.DateTime(timezone=True), nullable=True)
    lockout_until = db.Column(db.DateTime(timezone=True), nullable=True)
    # Number of lockouts since the last success; drives exponential backoff
    lockout_count = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "identity_id": self.identity_id,
            "device_id": self.device_id,
            "failure_count": self.failure_count,
            "last_failure_at": to_utc_z(self.last_failure_at),
            "lockout_until": to_utc_z(self.lockout_until),
            "lockout_count": self.lockout_count,
        }


class SessionToken(db.Model):
    """
    Session bound to one identity on one device.

    Only the SHA-256 hash of the session token is stored, and likewise only
    the hash of the current anti-forgery token. Sessions are logically
    destroyed by setting is_revoked; rows are purged later by maintenance.
    """
    __tablename__ = "sessions"
    __table_args__ = (
        db.Index("ix_sessions_pair_active", "identity_id", "device_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    identity_id = db.Column(db.String(64), db.ForeignKey("staff_identities.id"), nullable=False, index=True)
    device_id = db.Column(db.String(128), db.ForeignKey("devices.id"), nullable=False, index=True)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    absolute_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(128), nullable=True)

    csrf_token_hash = db.Column(db.String(64), nullable=True)
    csrf_issued_at = db.Column(db.DateTime(timezone=True), nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    identity = db.relationship("StaffIdentity", backref=db.backref("sessions", lazy=True))
    device = db.relationship("Device", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "identity_id": self.identity_id,
            "device_id": self.device_id,
            "issued_at": to_utc_z(self.issued_at),
            "expires_at": to_utc_z(self.expires_at),
            "absolute_expires_at": to_utc_z(self.absolute_expires_at),
            "last_activity_at": to_utc_z(self.last_activity_at),
            "is_revoked": self.is_revoked,
            "revoked_reason": self.revoked_reason,
        }


class AuditEntry(db.Model):
    """
    Authentication audit trail.

    IMMUTABLE: Never update or delete from the core. Append-only; retention
    is an external concern (see the maintenance CLI).

    outcome keeps distinctions the caller never sees, e.g. "unknown_identity"
    versus "invalid_pin".
    """
    __tablename__ = "audit_entries"
    __table_args__ = (
        db.Index("ix_audit_entries_kind_occurred", "event_kind", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    event_kind = db.Column(db.String(32), nullable=False)
    identity_id = db.Column(db.String(64), nullable=True, index=True)  # Nullable for unknown identities
    device_id = db.Column(db.String(128), nullable=True)
    outcome = db.Column(db.String(128), nullable=False)
    ip_address = db.Column(db.String(45), nullable=True)

    def to_event(self) -> dict:
        """Stable outbound event schema for the reporting consumer."""
        return {
            "timestamp": to_utc_z(self.occurred_at),
            "eventKind": self.event_kind,
            "identityId": self.identity_id,
            "deviceId": self.device_id,
            "outcome": self.outcome,
        }
