"""
Audit log tests.
"""

import logging
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from pinauth.extensions import db
from pinauth.models import AuditEntry, EVENT_LOGIN_FAILURE, EVENT_LOGIN_SUCCESS
from pinauth.services import audit_service


class TestAppend:

    def test_entry_uses_outbound_schema(self, app, clock):
        entry = audit_service.append(EVENT_LOGIN_SUCCESS, "tablet-1", "session_issued", identity_id="staff-7")
        assert entry.to_event() == {
            "timestamp": "2026-10-17T12:00:00Z",
            "eventKind": "LoginSuccess",
            "identityId": "staff-7",
            "deviceId": "tablet-1",
            "outcome": "session_issued",
        }

    def test_unknown_identity_recorded_without_identity(self, app, clock):
        audit_service.append(EVENT_LOGIN_FAILURE, "tablet-1", "unknown_identity")
        [event] = audit_service.recent_events()
        assert event["identityId"] is None

    def test_unknown_kind_rejected(self, app):
        with pytest.raises(ValueError):
            audit_service.append("Bogus", "tablet-1", "nope")

    def test_store_failure_goes_to_fallback_log(self, app, monkeypatch, caplog):
        def broken_entry(**kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(audit_service, "AuditEntry", broken_entry)
        with caplog.at_level(logging.WARNING, logger="pinauth.audit"):
            result = audit_service.append(EVENT_LOGIN_FAILURE, "tablet-1", "invalid_pin", identity_id="staff-7")

        assert result is None
        assert "eventKind=LoginFailure" in caplog.text
        monkeypatch.undo()
        assert db.session.query(AuditEntry).count() == 0


class TestQueries:

    def test_recent_events_newest_first_and_filtered(self, app, clock):
        audit_service.append(EVENT_LOGIN_FAILURE, "tablet-1", "invalid_pin", identity_id="staff-7")
        clock.advance(5)
        audit_service.append(EVENT_LOGIN_SUCCESS, "tablet-1", "session_issued", identity_id="staff-7")

        events = audit_service.recent_events()
        assert [e["eventKind"] for e in events] == ["LoginSuccess", "LoginFailure"]
        assert len(audit_service.recent_events(event_kind=EVENT_LOGIN_FAILURE)) == 1

    def test_cleanup_respects_retention(self, app, clock):
        audit_service.append(EVENT_LOGIN_FAILURE, "tablet-1", "invalid_pin")
        clock.advance(timedelta(days=91).total_seconds())
        audit_service.append(EVENT_LOGIN_FAILURE, "tablet-1", "invalid_pin")

        assert audit_service.cleanup_audit_entries(retention_days=90) == 1
        assert db.session.query(AuditEntry).count() == 1
