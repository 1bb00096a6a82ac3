"""
Pytest fixtures for PIN authentication tests.

Provides a fresh app + in-memory database per test, a controllable clock,
staff seeding helpers and test client login helpers.
"""

from datetime import datetime, timedelta

import pytest

from pinauth import create_app
from pinauth.extensions import db, rate_limiter
from pinauth.services import (
    attempt_service,
    audit_service,
    credential_service,
    csrf_service,
    identity_service,
    session_service,
)


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'PIN_HASH_ROUNDS': 4,
    'STORE_RETRY_BACKOFF_SECONDS': 0.0,
    'SECRET_KEY': 'test',
}


def build_app(**overrides):
    config = dict(TEST_CONFIG)
    config.update(overrides)
    return create_app(config)


@pytest.fixture(scope='function')
def app():
    """Create application for testing with an empty database."""
    app = build_app()

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


class FakeClock:
    """Stand-in for utcnow() that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


CLOCKED_MODULES = (
    attempt_service,
    audit_service,
    credential_service,
    csrf_service,
    identity_service,
    session_service,
)


@pytest.fixture(scope='function')
def clock(monkeypatch):
    """Freeze service time at a known instant; advance with clock.advance()."""
    fake = FakeClock(datetime(2026, 10, 17, 12, 0, 0))
    for module in CLOCKED_MODULES:
        monkeypatch.setattr(module, 'utcnow', fake)
    return fake


@pytest.fixture(scope='function')
def make_staff(app):
    """Factory: create a staff identity with a PIN."""
    def _make(identity_id='staff-7', pin='4821', role='staff', display_name=None):
        return identity_service.create_identity(
            identity_id,
            display_name or identity_id.title(),
            role=role,
            pin=pin,
        )
    return _make


@pytest.fixture(scope='function')
def staff(make_staff):
    """Staff member "staff-7" with PIN 4821."""
    return make_staff()


@pytest.fixture(scope='function')
def manager(make_staff):
    """Manager "mgr-1" with PIN 7395."""
    return make_staff('mgr-1', pin='7395', role='manager', display_name='Manager One')


@pytest.fixture(autouse=True)
def _fresh_rate_limiter():
    rate_limiter.reset()
    yield
    rate_limiter.reset()


def login(client, identity_id='staff-7', pin='4821', device='tablet-1', **extra):
    """Helper: POST a PIN login and return the response."""
    payload = {'identity_id': identity_id, 'pin': pin, 'device_fingerprint': device}
    payload.update(extra)
    return client.post('/api/auth/login', json=payload)


def csrf_headers(token: str) -> dict:
    """Helper to create CSRF headers."""
    return {'X-CSRF-Token': token}
