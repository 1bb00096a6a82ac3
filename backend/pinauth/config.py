# backend/pinauth/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: list[str]) -> list[str]:
    value = os.environ.get(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the process by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pinauth.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Store access never waits longer than this (connections, row locks, key locks)
    STORE_TIMEOUT_SECONDS = float(os.environ.get("STORE_TIMEOUT_SECONDS", "5"))
    STORE_RETRY_BACKOFF_SECONDS = float(os.environ.get("STORE_RETRY_BACKOFF_SECONDS", "0.05"))

    # PIN policy
    PIN_LENGTH = int(os.environ.get("PIN_LENGTH", "4"))
    PIN_HASH_ROUNDS = int(os.environ.get("PIN_HASH_ROUNDS", "12"))
    PIN_REJECT_WEAK = _env_bool("PIN_REJECT_WEAK", True)

    # Lockout policy per (identity, device)
    LOCKOUT_THRESHOLD = int(os.environ.get("LOCKOUT_THRESHOLD", "3"))
    LOCKOUT_BASE_DELAY_SECONDS = float(os.environ.get("LOCKOUT_BASE_DELAY_SECONDS", "10"))
    LOCKOUT_BACKOFF_FACTOR = float(os.environ.get("LOCKOUT_BACKOFF_FACTOR", "3"))
    LOCKOUT_MAX_SECONDS = float(os.environ.get("LOCKOUT_MAX_SECONDS", "900"))

    # Attempt throttling per device and per source address
    RATE_LIMIT_ATTEMPTS = int(os.environ.get("RATE_LIMIT_ATTEMPTS", "10"))
    RATE_LIMIT_WINDOW_SECONDS = float(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", "60"))
    RATE_LIMIT_TRUST_FORWARDED = _env_bool("RATE_LIMIT_TRUST_FORWARDED", False)

    # Sessions: idle timeout slides on activity, absolute timeout is a hard ceiling
    SESSION_IDLE_TIMEOUT_SECONDS = int(os.environ.get("SESSION_IDLE_TIMEOUT_SECONDS", "1800"))
    SESSION_ABSOLUTE_TIMEOUT_SECONDS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_SECONDS", "28800"))
    SESSION_RETENTION_DAYS = int(os.environ.get("SESSION_RETENTION_DAYS", "30"))
    SESSION_COOKIE_NAME = os.environ.get("SESSION_COOKIE_NAME", "pin_session")
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", False)

    CSRF_HEADER_NAME = os.environ.get("CSRF_HEADER_NAME", "X-CSRF-Token")

    # Response hardening
    SECURITY_HEADERS_ENABLED = _env_bool("SECURITY_HEADERS_ENABLED", True)
    HSTS_ENABLED = _env_bool("HSTS_ENABLED", False)
    CORS_ALLOWED_ORIGINS = _env_list(
        "CORS_ALLOWED_ORIGINS",
        [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        ],
    )


def engine_options_for(database_uri: str, timeout: float) -> dict:
    """
    Build SQLAlchemy engine options that bound every wait on the store.

    SQLite gets a busy timeout and may be shared across request threads;
    server databases get a pool checkout timeout and a connect timeout.
    """
    if database_uri.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout, "check_same_thread": False}}

    options: dict = {"pool_timeout": timeout, "pool_pre_ping": True}
    if database_uri.startswith(("postgresql", "mysql")):
        options["connect_args"] = {"connect_timeout": max(1, int(timeout))}
    return options


def validate_config(config) -> None:
    """
    Reject policy values that would break lockout or session invariants.

    Raises ValueError naming the offending key.
    """
    if config["PIN_LENGTH"] < 4:
        raise ValueError("PIN_LENGTH must be at least 4")
    if config["LOCKOUT_THRESHOLD"] < 1:
        raise ValueError("LOCKOUT_THRESHOLD must be at least 1")
    if config["LOCKOUT_BASE_DELAY_SECONDS"] <= 0:
        raise ValueError("LOCKOUT_BASE_DELAY_SECONDS must be positive")
    # lockout_until must always land strictly after last failure + base delay
    if config["LOCKOUT_BACKOFF_FACTOR"] <= 1:
        raise ValueError("LOCKOUT_BACKOFF_FACTOR must be greater than 1")
    if config["LOCKOUT_MAX_SECONDS"] <= config["LOCKOUT_BASE_DELAY_SECONDS"]:
        raise ValueError("LOCKOUT_MAX_SECONDS must exceed LOCKOUT_BASE_DELAY_SECONDS")
    if config["RATE_LIMIT_ATTEMPTS"] < 1 or config["RATE_LIMIT_WINDOW_SECONDS"] <= 0:
        raise ValueError("RATE_LIMIT_ATTEMPTS and RATE_LIMIT_WINDOW_SECONDS must be positive")
    if config["SESSION_IDLE_TIMEOUT_SECONDS"] <= 0:
        raise ValueError("SESSION_IDLE_TIMEOUT_SECONDS must be positive")
    if config["SESSION_ABSOLUTE_TIMEOUT_SECONDS"] < config["SESSION_IDLE_TIMEOUT_SECONDS"]:
        raise ValueError("SESSION_ABSOLUTE_TIMEOUT_SECONDS must be at least SESSION_IDLE_TIMEOUT_SECONDS")
    if config["STORE_TIMEOUT_SECONDS"] <= 0:
        raise ValueError("STORE_TIMEOUT_SECONDS must be positive")
