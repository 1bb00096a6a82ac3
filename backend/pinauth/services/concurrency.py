# Overview: Per-key serialisation and bounded retry for store operations.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import StoreUnavailable
from ..extensions import db


class KeyedLock:
    """
    One mutex per key, created on demand and dropped when nobody holds it.

    Serialises state transitions for the same key (e.g. one attempt record or
    one (identity, device) session slot) while leaving other keys untouched.
    Acquisition is bounded: a caller that cannot get the lock within the
    timeout receives StoreUnavailable instead of hanging.
    """

    def __init__(self, name: str):
        self.name = name
        self._guard = threading.Lock()
        self._locks: dict[object, list] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key, timeout: float | None = None):
        if timeout is None:
            timeout = current_app.config["STORE_TIMEOUT_SECONDS"]

        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        acquired = entry[0].acquire(timeout=timeout)
        try:
            if not acquired:
                raise StoreUnavailable()
            yield
        finally:
            if acquired:
                entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Transitions of one (identity, device) attempt record
attempt_locks = KeyedLock("attempts")
# Session issuance/revocation for one (identity, device) pair
pair_locks = KeyedLock("session-pairs")
# Mutations of a single session row
session_locks = KeyedLock("sessions")
# Credential replacement and deactivation of one identity
identity_locks = KeyedLock("identities")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    In-process KeyedLock covers the single-process SQLite case.
    """
    return query.with_for_update()


TRANSIENT_STORE_ERRORS = (OperationalError, PoolTimeoutError, StaleDataError)


def run_with_retry(func, *, attempts: int = 2, backoff_base: float | None = None):
    """
    Execute a store operation, retrying once on transient failures.

    Retries on OperationalError (locked/unreachable database), pool
    checkout timeouts and StaleDataError. When the last attempt fails, the
    error surfaces as StoreUnavailable so callers get a generic "try again"
    rather than a hang or a stack trace. AuthError raised by func passes
    through untouched.
    """
    if backoff_base is None:
        backoff_base = current_app.config["STORE_RETRY_BACKOFF_SECONDS"]

    for attempt in range(attempts):
        try:
            return func()
        except TRANSIENT_STORE_ERRORS as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning("Store unavailable after %d attempts: %s", attempts, exc)
                raise StoreUnavailable() from exc
            time.sleep(backoff_base * (2 ** attempt))
        except StoreUnavailable:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
