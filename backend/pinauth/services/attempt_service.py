"""
PIN Attempt Tracking and Lockout

Counts consecutive failed PIN verifications per (identity, device) pair and
derives the lockout state. Keyed on the pair, not the identity: many staff
share few tablets, and one mistyping employee must not lock a colleague out
of the same tablet, nor themselves out of every tablet.

STATE MACHINE (derived from the AttemptRecord, never stored):
- CLEAR:   no failures since the last success
- WARNING: 1..N-1 failures, or a lockout that has elapsed
- LOCKED:  lockout_until is in the future

Transitions:
- failure in CLEAR/WARNING increments the count; reaching N (LOCKOUT_THRESHOLD)
  sets lockout_until = now + backoff(lockout_count) and bumps lockout_count
- an elapsed lockout reads as WARNING; the count stays at N, so the very next
  failure locks again with a longer backoff
- success resets everything to CLEAR, except while LOCKED (left as is)
- a manager unlock resets everything to CLEAR from any state

Backoff for the n-th lockout (n from 0):
    min(LOCKOUT_BASE_DELAY_SECONDS * LOCKOUT_BACKOFF_FACTOR ** (n + 1), LOCKOUT_MAX_SECONDS)

CONCURRENCY: every transition for a pair runs under the pair's KeyedLock and
a row lock, and commits before returning. Two concurrent failures can never
both observe "below threshold". Committed increments are never rolled back,
even if the caller has gone away.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import AttemptRecord, EVENT_LOCKOUT
from . import audit_service, identity_service
from .concurrency import attempt_locks, lock_for_update, run_with_retry
from pinauth.time_utils import utcnow, seconds_until


class AttemptState(str, Enum):
    CLEAR = "clear"
    WARNING = "warning"
    LOCKED = "locked"


def lockout_duration(lockout_count: int) -> timedelta:
    """Length of the next lockout given how many came before it."""
    config = current_app.config
    base = config["LOCKOUT_BASE_DELAY_SECONDS"]
    seconds = base * config["LOCKOUT_BACKOFF_FACTOR"] ** (lockout_count + 1)
    return timedelta(seconds=min(seconds, config["LOCKOUT_MAX_SECONDS"]))


def derive_state(record: AttemptRecord | None, now: datetime) -> AttemptState:
    if record is None:
        return AttemptState.CLEAR
    if record.lockout_until is not None and record.lockout_until > now:
        return AttemptState.LOCKED
    if record.failure_count > 0:
        return AttemptState.WARNING
    return AttemptState.CLEAR


def _find(identity_id: str, device_id: str, *, for_update: bool = False) -> AttemptRecord | None:
    query = db.session.query(AttemptRecord).filter_by(
        identity_id=identity_id, device_id=device_id
    )
    if for_update:
        query = lock_for_update(query)
    return query.first()


def _get_or_create(identity_id: str, device_id: str) -> AttemptRecord:
    """Row-locked record for the pair, inserting it on first failure."""
    record = _find(identity_id, device_id, for_update=True)
    if record is not None:
        return record

    record = AttemptRecord(
        identity_id=identity_id, device_id=device_id, failure_count=0, lockout_count=0
    )
    db.session.add(record)
    try:
        db.session.flush()
    except IntegrityError:
        # Another process inserted the pair first
        db.session.rollback()
        record = _find(identity_id, device_id, for_update=True)
    return record


def record_failure(identity_id: str, device_id: str) -> AttemptState:
    """
    Record one failed verification for the pair.

    Returns the new state. LOCKED means this failure triggered the lockout.
    """
    threshold = current_app.config["LOCKOUT_THRESHOLD"]

    def _op():
        with attempt_locks.hold((identity_id, device_id)):
            now = utcnow()
            record = _get_or_create(identity_id, device_id)

            # A concurrent attempt already tripped the lockout; don't escalate it twice
            if derive_state(record, now) is AttemptState.LOCKED:
                db.session.commit()
                return AttemptState.LOCKED

            record.failure_count = min(record.failure_count + 1, threshold)
            record.last_failure_at = now
            record.updated_at = now

            if record.failure_count >= threshold:
                record.lockout_until = now + lockout_duration(record.lockout_count)
                record.lockout_count += 1

            db.session.commit()
            return derive_state(record, now)

    state = run_with_retry(_op)

    if state is AttemptState.LOCKED:
        current_app.logger.warning(
            "PIN lockout for identity=%s device=%s", identity_id, device_id
        )
    return state


def record_success(identity_id: str, device_id: str) -> AttemptState:
    """
    Reset the pair to CLEAR after a successful verification.

    A lockout that a concurrent failure set after the caller's is_locked()
    check stays in force: the record is left untouched and LOCKED is
    returned, so the caller must not issue a session.
    """

    def _op():
        with attempt_locks.hold((identity_id, device_id)):
            record = _find(identity_id, device_id, for_update=True)
            if record is None:
                return AttemptState.CLEAR

            now = utcnow()
            if derive_state(record, now) is AttemptState.LOCKED:
                db.session.commit()
                return AttemptState.LOCKED

            record.failure_count = 0
            record.lockout_count = 0
            record.lockout_until = None
            record.updated_at = now
            db.session.commit()
            return AttemptState.CLEAR

    return run_with_retry(_op)


def unlock(identity_id: str, device_id: str, unlocked_by: str | None = None) -> bool:
    """
    Clear failures and any lockout for a pair (manager unlock).

    Returns True if the pair had anything to clear, False if it was already
    CLEAR. Backoff escalation starts over, as after a successful login.
    """

    def _op():
        with attempt_locks.hold((identity_id, device_id)):
            record = _find(identity_id, device_id, for_update=True)
            now = utcnow()
            if derive_state(record, now) is AttemptState.CLEAR:
                db.session.commit()
                return False

            record.failure_count = 0
            record.lockout_count = 0
            record.lockout_until = None
            record.updated_at = now
            db.session.commit()
            return True

    cleared = run_with_retry(_op)
    if cleared:
        known = identity_service.get_identity(identity_id) is not None
        audit_service.append(
            EVENT_LOCKOUT, device_id,
            f"unlocked_by_{unlocked_by}" if unlocked_by else "unlocked",
            identity_id=identity_id if known else None,
        )
        current_app.logger.info(
            "PIN lockout cleared for identity=%s device=%s by %s",
            identity_id, device_id, unlocked_by or "operator",
        )
    return cleared


def is_locked(identity_id: str, device_id: str) -> tuple[bool, int | None]:
    """
    Probe the lockout state without changing it.

    Returns:
    - (True, seconds_remaining) if locked
    - (False, None) if not locked
    """
    record = run_with_retry(lambda: _find(identity_id, device_id))
    now = utcnow()
    if derive_state(record, now) is AttemptState.LOCKED:
        return True, max(1, seconds_until(record.lockout_until, now))
    return False, None


def get_state(identity_id: str, device_id: str) -> AttemptState:
    record = run_with_retry(lambda: _find(identity_id, device_id))
    return derive_state(record, utcnow())


def get_lockout_status(identity_id: str, device_id: str) -> dict:
    """
    Lockout status for a pair, safe to show on the tablet.

    Returns dict with:
    - locked: bool
    - retry_after_seconds: int | None
    - attempts_remaining: int (before the next lockout)
    """
    threshold = current_app.config["LOCKOUT_THRESHOLD"]
    record = run_with_retry(lambda: _find(identity_id, device_id))
    now = utcnow()
    state = derive_state(record, now)

    failures = record.failure_count if record else 0
    if state is AttemptState.LOCKED:
        remaining = 0
    elif failures >= threshold:
        # Elapsed lockout: one more failure locks again
        remaining = 1
    else:
        remaining = threshold - failures

    return {
        "locked": state is AttemptState.LOCKED,
        "retry_after_seconds": seconds_until(record.lockout_until, now) if state is AttemptState.LOCKED else None,
        "attempts_remaining": remaining,
    }
