"""
CSRF guard tests: one live token per session, accepted at most once.
"""

import threading

import pytest

from pinauth.errors import CsrfMismatch
from pinauth.extensions import db
from pinauth.models import AuditEntry, SessionToken, EVENT_CSRF_REJECTED
from pinauth.services import csrf_service, identity_service, session_service

from conftest import build_app


def _login(device="tablet-1"):
    return session_service.login("staff-7", "4821", device, "10.0.0.5")


class TestCsrfGuard:

    def test_issued_token_validates(self, staff):
        result = _login()
        assert csrf_service.validate(result.session, result.csrf_token) is True
        assert result.session.csrf_token_hash != result.csrf_token

    def test_validate_has_no_side_effects(self, staff):
        result = _login()
        csrf_service.validate(result.session, result.csrf_token)
        assert csrf_service.validate(result.session, result.csrf_token) is True

    def test_rotation_is_one_time(self, staff):
        result = _login()
        next_token = csrf_service.rotate(result.session, result.csrf_token)

        assert next_token != result.csrf_token
        assert csrf_service.validate(result.session, next_token) is True
        with pytest.raises(CsrfMismatch):
            csrf_service.rotate(result.session, result.csrf_token)

    def test_token_bound_to_its_session(self, staff):
        first = _login(device="tablet-1")
        second = _login(device="tablet-2")
        assert csrf_service.validate(second.session, first.csrf_token) is False
        with pytest.raises(CsrfMismatch):
            csrf_service.rotate(second.session, first.csrf_token)

    @pytest.mark.parametrize("presented,outcome", [(None, "missing_token"), ("bogus", "token_mismatch")])
    def test_rejection_is_audited(self, staff, presented, outcome):
        result = _login()
        with pytest.raises(CsrfMismatch):
            csrf_service.rotate(result.session, presented, ip_address="10.0.0.5")

        [entry] = db.session.query(AuditEntry).filter_by(event_kind=EVENT_CSRF_REJECTED).all()
        assert entry.outcome == outcome
        assert entry.identity_id == "staff-7"
        assert entry.device_id == "tablet-1"

    def test_reissue_replaces_token(self, staff):
        result = _login()
        fresh = csrf_service.issue(result.session)
        assert csrf_service.validate(result.session, result.csrf_token) is False
        assert csrf_service.validate(result.session, fresh) is True


class TestConcurrentRotation:

    def test_same_token_accepted_once(self, tmp_path):
        app = build_app(SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'csrf.db'}")
        with app.app_context():
            db.create_all()
            identity_service.create_identity("staff-7", "Staff Seven", pin="4821")
            result = session_service.login("staff-7", "4821", "tablet-1", "10.0.0.5")
            session_id = result.session.id
            token = result.csrf_token
            db.session.remove()

        barrier = threading.Barrier(4)
        outcomes = []

        def worker():
            with app.app_context():
                session = db.session.get(SessionToken, session_id)
                barrier.wait()
                try:
                    csrf_service.rotate(session, token)
                    outcomes.append("accepted")
                except CsrfMismatch:
                    outcomes.append("rejected")
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("accepted") == 1
        assert outcomes.count("rejected") == 3

        with app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
