# Overview: Append-only audit trail for authentication events.

"""
Authentication Audit Log

Every login success/failure, lockout, session revocation and CSRF rejection
is appended here. The log is a write-only sink for the rest of the core.

FAILURE POLICY: append() never raises. If the store rejects the write, the
session is rolled back and the entry is emitted on the "pinauth.audit"
logger instead. Callers must commit their own state before appending, so a
rollback here can never undo an attempt counter or a revocation.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..models import AuditEntry, EVENT_KINDS
from pinauth.time_utils import utcnow, to_utc_z


fallback_logger = logging.getLogger("pinauth.audit")


def append(
    event_kind: str,
    device_id: str | None,
    outcome: str,
    identity_id: str | None = None,
    ip_address: str | None = None,
) -> AuditEntry | None:
    """
    Append one audit entry.

    Returns the stored entry, or None when it could only be written to the
    secondary log channel.
    """
    if event_kind not in EVENT_KINDS:
        raise ValueError(f"Unknown audit event kind: {event_kind}")

    occurred_at = utcnow()
    try:
        entry = AuditEntry(
            occurred_at=occurred_at,
            event_kind=event_kind,
            identity_id=identity_id,
            device_id=device_id,
            outcome=outcome,
            ip_address=ip_address,
        )
        db.session.add(entry)
        db.session.commit()
        return entry
    except Exception:
        try:
            db.session.rollback()
        except Exception:
            fallback_logger.exception("Audit rollback failed")
        fallback_logger.warning(
            "audit entry not persisted: timestamp=%s eventKind=%s identityId=%s deviceId=%s outcome=%s",
            to_utc_z(occurred_at),
            event_kind,
            identity_id,
            device_id,
            outcome,
            exc_info=True,
        )
        return None


def recent_events(limit: int = 100, event_kind: str | None = None) -> list[dict]:
    """Latest entries in the outbound event schema, newest first."""
    query = db.session.query(AuditEntry)
    if event_kind:
        query = query.filter(AuditEntry.event_kind == event_kind)
    entries = query.order_by(AuditEntry.occurred_at.desc(), AuditEntry.id.desc()).limit(limit).all()
    return [entry.to_event() for entry in entries]


def cleanup_audit_entries(*, retention_days: int = 90) -> int:
    """
    Delete audit entries older than retention_days.

    Retention belongs to the operator; only the maintenance CLI calls this.
    """
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(AuditEntry).filter(
        AuditEntry.occurred_at < cutoff
    ).delete()
    db.session.commit()
    return deleted
