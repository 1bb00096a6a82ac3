# Overview: Service-layer operations for anti-forgery tokens bound to sessions.

"""
CSRF Guard (double-submission, strict one-time use)

Each session carries exactly one live anti-forgery token. The token is
handed to the tablet out-of-band from the session credential (login response
body, then the X-CSRF-Token response header) and must be echoed in the
X-CSRF-Token request header on every state-changing request. A cross-origin
forgery can replay the session cookie but cannot read the token.

ROTATION: a token is accepted at most once. Acceptance is an atomic
compare-and-swap on the stored hash, so two requests racing with the same
token cannot both succeed; the loser gets CsrfMismatch.

Only SHA-256 hashes of tokens are stored, like session tokens.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets

from sqlalchemy import update

from ..errors import CsrfMismatch
from ..extensions import db
from ..models import SessionToken, EVENT_CSRF_REJECTED
from . import audit_service
from .concurrency import run_with_retry
from pinauth.time_utils import utcnow


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue(session: SessionToken) -> str:
    """
    Issue a fresh token for the session, replacing any previous one.

    Returns the plaintext token; only its hash is stored.
    """
    token = generate_token()

    def _op():
        session.csrf_token_hash = hash_token(token)
        session.csrf_issued_at = utcnow()
        db.session.commit()

    run_with_retry(_op)
    return token


def validate(session: SessionToken, presented_token: str | None) -> bool:
    """
    Check a presented token against the session's live token.

    Side-effect free. A token issued for another session never matches,
    because each session stores only the hash of its own token.
    """
    if not presented_token or not session.csrf_token_hash:
        return False
    return hmac.compare_digest(hash_token(presented_token), session.csrf_token_hash)


def rotate(session: SessionToken, presented_token: str | None, ip_address: str | None = None) -> str:
    """
    Accept the presented token once and replace it.

    Returns the next token for the caller.

    Raises CsrfMismatch if the token is missing, stale, replayed or belongs
    to a different session.
    """
    if validate(session, presented_token):
        next_token = generate_token()

        def _swap():
            result = db.session.execute(
                update(SessionToken)
                .where(
                    SessionToken.id == session.id,
                    SessionToken.csrf_token_hash == hash_token(presented_token),
                )
                .values(csrf_token_hash=hash_token(next_token), csrf_issued_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            return result.rowcount

        if run_with_retry(_swap) == 1:
            db.session.refresh(session)
            return next_token

    audit_service.append(
        EVENT_CSRF_REJECTED,
        device_id=session.device_id,
        outcome="missing_token" if not presented_token else "token_mismatch",
        identity_id=session.identity_id,
        ip_address=ip_address,
    )
    raise CsrfMismatch()
