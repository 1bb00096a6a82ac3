# Overview: Service-layer operations for PIN credentials; hashing, verification and policy.

"""
PIN Credential Store

Holds one salted, one-way hashed PIN per staff identity. Knows nothing about
sessions or lockouts.

SECURITY NOTES:
- PINs hashed with bcrypt (cost factor PIN_HASH_ROUNDS, salt embedded in hash)
- bcrypt.checkpw compares hashes in constant time, so response time does not
  depend on how many leading digits matched
- Unknown, inactive or credential-less identities raise UnknownIdentity after
  running the same bcrypt work as a wrong PIN; callers convert it into the
  generic InvalidCredentials error
- New PINs must be exactly PIN_LENGTH digits and not a common pattern
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..errors import PinValidationError, UnknownIdentity
from ..extensions import db
from ..models import Credential, StaffIdentity
from .concurrency import run_with_retry
from pinauth.time_utils import utcnow


# Common 4-digit choices that are guessed first
COMMON_PINS = {
    "1212", "2121", "1313", "3131", "1414", "4141", "1515", "5151",
    "0101", "0102", "0201", "0202", "1225", "1224", "0401", "0501",
    "0701", "0801", "0901", "1001", "1101", "1201", "2002", "3003",
    "4004", "5005", "1357", "2468", "1590", "7410", "8520", "9630",
}

_dummy_hash: bytes | None = None


def _dummy_pin_hash() -> bytes:
    """Hash compared against when there is no real credential."""
    global _dummy_hash
    if _dummy_hash is None:
        rounds = current_app.config["PIN_HASH_ROUNDS"]
        _dummy_hash = bcrypt.hashpw(b"0" * 8, bcrypt.gensalt(rounds=rounds))
    return _dummy_hash


def is_weak_pin(pin: str) -> bool:
    """
    True for PINs that follow an easily guessed pattern.

    Covers repeated digits (1111), ascending/descending runs (1234, 9876,
    with wrap-around like 7890), alternating pairs (1212, 4545), likely
    years (1950-2029) and the COMMON_PINS list.
    """
    digits = [int(ch) for ch in pin]
    if len(set(digits)) == 1:
        return True

    steps = {(b - a) % 10 for a, b in zip(digits, digits[1:])}
    if steps in ({1}, {9}):
        return True

    if len(pin) % 2 == 0 and pin == pin[:2] * (len(pin) // 2):
        return True

    if len(pin) == 4 and 1950 <= int(pin) <= 2029:
        return True

    return pin in COMMON_PINS


def validate_pin(pin: str) -> None:
    """
    Validate a new PIN against format and strength requirements.

    Raises PinValidationError if requirements not met.
    """
    length = current_app.config["PIN_LENGTH"]
    if not isinstance(pin, str) or not re.fullmatch(r"[0-9]+", pin or ""):
        raise PinValidationError("PIN must contain only digits")
    if len(pin) != length:
        raise PinValidationError(f"PIN must be exactly {length} digits")
    if current_app.config["PIN_REJECT_WEAK"] and is_weak_pin(pin):
        raise PinValidationError("PIN uses a common pattern that is easily guessed")


def hash_pin(pin: str) -> tuple[str, str]:
    """
    Validate and hash a PIN.

    Returns (pin_hash, hash_version).
    """
    validate_pin(pin)
    rounds = current_app.config["PIN_HASH_ROUNDS"]
    hashed = bcrypt.hashpw(pin.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8"), f"bcrypt-{rounds}"


def _checkpw(candidate_pin: str, pin_hash: bytes) -> bool:
    try:
        return bcrypt.checkpw(candidate_pin.encode("utf-8"), pin_hash)
    except ValueError:
        # bcrypt rejects both malformed hashes and, from 5.0, inputs over 72 bytes
        current_app.logger.error(
            "PIN hash check failed: stored hash malformed or candidate PIN rejected by bcrypt"
        )
        return False


def verify(identity_id: str, candidate_pin: str) -> bool:
    """
    Check a candidate PIN for an identity.

    Returns True on match, False on a wrong PIN.

    Raises UnknownIdentity when the identity does not exist, is inactive or
    has no credential; the same bcrypt comparison still runs so timing
    matches a wrong PIN.
    """
    candidate_pin = candidate_pin if isinstance(candidate_pin, str) else ""

    def _load():
        identity = db.session.get(StaffIdentity, identity_id)
        if identity is None or not identity.is_active or identity.credential is None:
            return None
        return identity.credential.pin_hash

    pin_hash = run_with_retry(_load)
    if pin_hash is None:
        _checkpw(candidate_pin, _dummy_pin_hash())
        raise UnknownIdentity(identity_id)

    return _checkpw(candidate_pin, pin_hash.encode("utf-8"))


def set_credential(identity_id: str, new_pin: str) -> Credential:
    """
    Replace the identity's credential with a hash of new_pin.

    The old credential row is deleted; nothing of it is kept.
    Callers are responsible for revoking the identity's sessions.

    Raises ValueError if the identity doesn't exist,
    PinValidationError if the PIN doesn't meet requirements.
    """
    identity = db.session.get(StaffIdentity, identity_id)
    if identity is None:
        raise ValueError("Identity not found")

    pin_hash, hash_version = hash_pin(new_pin)
    now = utcnow()

    existing = db.session.query(Credential).filter_by(identity_id=identity_id).first()
    if existing is not None:
        db.session.delete(existing)
        db.session.flush()

    credential = Credential(
        identity_id=identity_id,
        pin_hash=pin_hash,
        hash_version=hash_version,
        created_at=now,
    )
    identity.pin_changed_at = now
    db.session.add(credential)
    db.session.commit()
    return credential


def has_credential(identity_id: str) -> bool:
    return db.session.query(Credential).filter_by(identity_id=identity_id).count() > 0
