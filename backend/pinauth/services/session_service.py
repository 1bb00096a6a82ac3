# Overview: Service-layer operations for PIN login and session lifecycle.

"""
Session Manager for Shared Tablets

Issues, validates and revokes session tokens bound to one (identity, device)
pair, and owns the PIN login flow that ties the other components together.

LOGIN ORDER (never reordered):
1. RateLimiter.check(device, address)      -> RateLimited
2. AttemptTracker.is_locked(identity, dev) -> Locked (even for a correct PIN)
3. CredentialStore.verify(identity, pin)   -> UnknownIdentity folds into InvalidCredentials
4. AttemptTracker.record_failure/success  -> Locked if a concurrent failure
                                            locked the pair meanwhile
5. under the pair and identity locks: confirm the verified credential is
   still current, revoke prior session for the pair, issue new session
6. issue the CSRF token

SESSION LIFETIME:
- Tokens: 32 random bytes (hex), stored only as SHA-256 hashes
- expires_at = issued_at + SESSION_IDLE_TIMEOUT_SECONDS, slid forward on each
  successful validation
- absolute_expires_at = issued_at + SESSION_ABSOLUTE_TIMEOUT_SECONDS, never moves
- A device holds at most one active session per identity: a new login for
  the same pair revokes the previous one first
- Revocation (logout, PIN reset, deactivation, sweep) sets is_revoked

Every outcome is written to the audit log after the state it describes has
been committed.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from ..errors import (
    Expired,
    InvalidCredentials,
    Locked,
    RateLimited,
    Revoked,
    SessionNotFound,
    UnknownIdentity,
)
from ..extensions import db, rate_limiter
from ..models import (
    SessionToken,
    StaffIdentity,
    EVENT_LOGIN_FAILURE,
    EVENT_LOGIN_SUCCESS,
    EVENT_LOCKOUT,
    EVENT_SESSION_REVOKED,
)
from . import attempt_service, audit_service, credential_service, csrf_service, identity_service
from .attempt_service import AttemptState
from .concurrency import identity_locks, pair_locks, session_locks, run_with_retry
from pinauth.time_utils import utcnow


@dataclass
class LoginResult:
    """
    Everything the tablet needs after a successful PIN login.

    session_token and csrf_token are plaintext and exist only here.
    """
    session: SessionToken
    identity: StaffIdentity
    session_token: str
    csrf_token: str


def generate_token() -> str:
    """Cryptographically secure 64-character hex session token."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """
    Hash token for database storage using SHA-256.

    Tokens are high-entropy, so a fast hash is sufficient.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def login(
    identity_id: str,
    candidate_pin: str,
    device_id: str,
    source_address: str | None,
    user_agent: str | None = None,
) -> LoginResult:
    """
    Authenticate a PIN on a device and open a session.

    Returns LoginResult on success.

    Raises RateLimited, Locked or InvalidCredentials. InvalidCredentials is
    raised for both a wrong PIN and an unknown/inactive identity.
    """
    allowed, retry_after = rate_limiter.check(device_id, source_address)
    if not allowed:
        audit_service.append(
            EVENT_LOGIN_FAILURE, device_id, "rate_limited",
            identity_id=None, ip_address=source_address,
        )
        raise RateLimited(retry_after)

    locked, retry_after = attempt_service.is_locked(identity_id, device_id)
    if locked:
        audit_service.append(
            EVENT_LOGIN_FAILURE, device_id, "locked",
            identity_id=_audit_identity(identity_id), ip_address=source_address,
        )
        raise Locked(retry_after)

    known_identity = True
    issued_against = identity_service.get_credential_hash(identity_id)
    try:
        matched = credential_service.verify(identity_id, candidate_pin)
    except UnknownIdentity:
        known_identity = False
        matched = False

    if not matched:
        state = attempt_service.record_failure(identity_id, device_id)
        audit_identity = identity_id if known_identity else None
        audit_service.append(
            EVENT_LOGIN_FAILURE, device_id,
            "invalid_pin" if known_identity else "unknown_identity",
            identity_id=audit_identity, ip_address=source_address,
        )
        if state is AttemptState.LOCKED:
            _, retry_after = attempt_service.is_locked(identity_id, device_id)
            audit_service.append(
                EVENT_LOCKOUT, device_id, f"locked_for_{retry_after or 0}s",
                identity_id=audit_identity, ip_address=source_address,
            )
            raise Locked(retry_after or 1)
        raise InvalidCredentials()

    # A concurrent failure may have locked the pair since the is_locked check
    if attempt_service.record_success(identity_id, device_id) is AttemptState.LOCKED:
        _, retry_after = attempt_service.is_locked(identity_id, device_id)
        audit_service.append(
            EVENT_LOGIN_FAILURE, device_id, "locked",
            identity_id=identity_id, ip_address=source_address,
        )
        raise Locked(retry_after or 1)

    identity_service.register_device(device_id, address=source_address)

    superseded = []

    def _issue():
        with pair_locks.hold((identity_id, device_id)), identity_locks.hold(identity_id):
            # PIN reset or deactivation since verification
            if not identity_service.credential_is_current(identity_id, issued_against):
                return None
            superseded.extend(_revoke_pair(identity_id, device_id, reason="Superseded by new login"))
            return _create_session(identity_id, device_id, source_address, user_agent)

    issued = run_with_retry(_issue)
    if issued is None:
        audit_service.append(
            EVENT_LOGIN_FAILURE, device_id, "credential_changed",
            identity_id=identity_id, ip_address=source_address,
        )
        raise InvalidCredentials()
    session, token = issued

    for old in superseded:
        audit_service.append(
            EVENT_SESSION_REVOKED, old.device_id, "superseded",
            identity_id=old.identity_id, ip_address=source_address,
        )

    csrf_token = csrf_service.issue(session)
    audit_service.append(
        EVENT_LOGIN_SUCCESS, device_id, "session_issued",
        identity_id=identity_id, ip_address=source_address,
    )
    current_app.logger.info("PIN login for identity=%s device=%s", identity_id, device_id)

    identity = db.session.get(StaffIdentity, identity_id)
    return LoginResult(session=session, identity=identity, session_token=token, csrf_token=csrf_token)


def _audit_identity(identity_id: str) -> str | None:
    """identity_id if it names a real identity, else None."""
    return identity_id if identity_service.get_identity(identity_id) is not None else None


def _revoke_pair(identity_id: str, device_id: str, reason: str) -> list[SessionToken]:
    """Revoke every active session for the pair. Caller holds the pair lock."""
    now = utcnow()
    sessions = db.session.query(SessionToken).filter_by(
        identity_id=identity_id,
        device_id=device_id,
        is_revoked=False,
    ).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = reason
    db.session.commit()
    return sessions


def _create_session(identity_id, device_id, ip_address, user_agent) -> tuple[SessionToken, str]:
    config = current_app.config
    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        token_hash=hash_token(plaintext_token),
        identity_id=identity_id,
        device_id=device_id,
        issued_at=now,
        expires_at=now + timedelta(seconds=config["SESSION_IDLE_TIMEOUT_SECONDS"]),
        absolute_expires_at=now + timedelta(seconds=config["SESSION_ABSOLUTE_TIMEOUT_SECONDS"]),
        last_activity_at=now,
        is_revoked=False,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _find_by_token(token: str) -> SessionToken | None:
    if not token:
        return None
    return db.session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()


def validate(token: str, ip_address: str | None = None) -> SessionToken:
    """
    Validate a session token and refresh its idle expiry.

    Returns the live SessionToken.

    Raises:
    - SessionNotFound if no session has this token
    - Expired once expires_at or absolute_expires_at has passed
    - Revoked if the session was revoked or its identity is deactivated
    """
    session = run_with_retry(lambda: _find_by_token(token))
    if session is None:
        raise SessionNotFound()

    idle = timedelta(seconds=current_app.config["SESSION_IDLE_TIMEOUT_SECONDS"])
    deactivated = False

    def _apply():
        nonlocal deactivated
        db.session.refresh(session)
        now = utcnow()

        if now >= session.expires_at or now >= session.absolute_expires_at:
            raise Expired()
        if session.is_revoked:
            raise Revoked()

        identity = session.identity
        if identity is None or not identity.is_active:
            session.is_revoked = True
            session.revoked_at = now
            session.revoked_reason = "Identity deactivated"
            db.session.commit()
            deactivated = True
            return

        session.last_activity_at = now
        session.expires_at = min(now + idle, session.absolute_expires_at)
        db.session.commit()

    def _op():
        with session_locks.hold(session.id):
            _apply()

    run_with_retry(_op)

    if deactivated:
        audit_service.append(
            EVENT_SESSION_REVOKED, session.device_id, "identity_deactivated",
            identity_id=session.identity_id, ip_address=ip_address,
        )
        raise Revoked()
    return session


def revoke(token: str, reason: str = "User logout", ip_address: str | None = None) -> bool:
    """
    Revoke a session token.

    Idempotent: returns True if this call revoked it, False if it was
    unknown or already revoked.
    """
    session = run_with_retry(lambda: _find_by_token(token))
    if session is None:
        return False

    def _op():
        with session_locks.hold(session.id):
            db.session.refresh(session)
            if session.is_revoked:
                return False
            session.is_revoked = True
            session.revoked_at = utcnow()
            session.revoked_reason = reason
            db.session.commit()
            return True

    revoked = run_with_retry(_op)

    if revoked:
        audit_service.append(
            EVENT_SESSION_REVOKED, session.device_id, reason,
            identity_id=session.identity_id, ip_address=ip_address,
        )
    return revoked


def revoke_all(identity_id: str, reason: str = "Revoke all sessions") -> int:
    """
    Revoke all active sessions for an identity on every device.

    Idempotent. Returns count of sessions revoked by this call.
    """
    def _op():
        now = utcnow()
        sessions = db.session.query(SessionToken).filter_by(
            identity_id=identity_id,
            is_revoked=False,
        ).all()
        for session in sessions:
            session.is_revoked = True
            session.revoked_at = now
            session.revoked_reason = reason
        db.session.commit()
        return sessions

    revoked = run_with_retry(_op)
    for session in revoked:
        audit_service.append(
            EVENT_SESSION_REVOKED, session.device_id, reason,
            identity_id=identity_id,
        )
    if revoked:
        current_app.logger.info("Revoked %d sessions for identity=%s (%s)", len(revoked), identity_id, reason)
    return len(revoked)


def active_session_count() -> int:
    now = utcnow()
    return db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        SessionToken.expires_at > now,
        SessionToken.absolute_expires_at > now,
    ).count()


def sweep_expired_sessions() -> int:
    """
    Mark expired but unrevoked sessions as revoked.

    Returns count of sessions swept.
    """
    now = utcnow()
    sessions = db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        or_(
            SessionToken.expires_at <= now,
            SessionToken.absolute_expires_at <= now,
        ),
    ).all()
    for session in sessions:
        session.is_revoked = True
        session.revoked_at = now
        session.revoked_reason = "Expired"
    db.session.commit()
    return len(sessions)


def cleanup_sessions(retention_days: int | None = None) -> int:
    """
    Delete expired and revoked sessions older than the retention window.

    Returns count of sessions deleted.
    """
    if retention_days is None:
        retention_days = current_app.config["SESSION_RETENTION_DAYS"]
    now = utcnow()
    cutoff = now - timedelta(days=retention_days)

    deleted = db.session.query(SessionToken).filter(
        or_(
            SessionToken.expires_at < now,
            SessionToken.is_revoked.is_(True),
        ),
        SessionToken.issued_at < cutoff,
    ).delete(synchronize_session=False)

    db.session.commit()
    return deleted
