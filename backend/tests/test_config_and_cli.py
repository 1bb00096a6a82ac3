"""
Configuration validation and CLI command tests.
"""

import pytest

from pinauth.config import engine_options_for
from pinauth.extensions import db
from pinauth.models import SessionToken, StaffIdentity
from pinauth.services import attempt_service, session_service

from conftest import build_app


class TestConfig:

    @pytest.mark.parametrize(
        "overrides",
        [
            {"LOCKOUT_BACKOFF_FACTOR": 1},
            {"LOCKOUT_MAX_SECONDS": 5},
            {"LOCKOUT_THRESHOLD": 0},
            {"PIN_LENGTH": 3},
            {"SESSION_ABSOLUTE_TIMEOUT_SECONDS": 60},
        ],
    )
    def test_inconsistent_policy_rejected(self, overrides):
        with pytest.raises(ValueError):
            build_app(**overrides)

    def test_sqlite_engine_options(self):
        options = engine_options_for("sqlite:///pinauth.sqlite3", 5)
        assert options == {"connect_args": {"timeout": 5, "check_same_thread": False}}

    def test_server_engine_options(self):
        options = engine_options_for("postgresql://db/pinauth", 2.5)
        assert options["pool_timeout"] == 2.5
        assert options["connect_args"] == {"connect_timeout": 2}


class TestCli:

    def test_staff_create_and_list(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["staff", "create", "--id", "staff-7", "--name", "Somchai", "--pin", "4821"])
        assert "PASS Created staff: staff-7" in result.output

        result = runner.invoke(args=["staff", "list"])
        assert "staff-7" in result.output
        assert "Somchai" in result.output

    def test_staff_create_rejects_weak_pin(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["staff", "create", "--id", "staff-7", "--name", "Somchai", "--pin", "1111"])
        assert "FAIL PIN validation failed" in result.output
        assert db.session.get(StaffIdentity, "staff-7") is None

    def test_staff_create_requires_exact_pin_length(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["staff", "create", "--id", "staff-7", "--name", "Somchai", "--pin", "48213"])
        assert "FAIL PIN validation failed: PIN must be exactly 4 digits" in result.output
        assert db.session.get(StaffIdentity, "staff-7") is None

    def test_staff_unlock(self, app, staff, clock):
        for _ in range(3):
            attempt_service.record_failure("staff-7", "tablet-3")

        runner = app.test_cli_runner()
        result = runner.invoke(args=["staff", "unlock", "staff-7", "--device", "tablet-3", "--by", "mgr-1"])
        assert "PASS Cleared lockout for staff-7 on tablet-3." in result.output
        assert attempt_service.is_locked("staff-7", "tablet-3") == (False, None)

        again = runner.invoke(args=["staff", "unlock", "staff-7", "--device", "tablet-3"])
        assert "no failed attempts to clear" in again.output

    def test_set_pin_revokes_sessions(self, app, staff):
        session_service.login("staff-7", "4821", "tablet-1", "10.0.0.5")
        runner = app.test_cli_runner()
        result = runner.invoke(args=["staff", "set-pin", "staff-7", "--pin", "6047"], input="6047\n")
        assert "Revoked 1 sessions" in result.output

    def test_deactivate_unknown(self, app):
        result = app.test_cli_runner().invoke(args=["staff", "deactivate", "ghost"])
        assert "FAIL Identity not found" in result.output

    def test_maintenance_commands(self, app, staff, clock):
        session_service.login("staff-7", "4821", "tablet-1", "10.0.0.5")
        clock.advance(1801)

        runner = app.test_cli_runner()
        assert "Swept 1 expired sessions." in runner.invoke(args=["maintenance", "sweep-sessions"]).output
        clock.advance(31 * 86400)
        assert "Deleted 1 old sessions." in runner.invoke(args=["maintenance", "cleanup-sessions"]).output
        assert db.session.query(SessionToken).count() == 0

        result = runner.invoke(args=["maintenance", "cleanup-audit", "--retention-days", "90"])
        assert "Deleted 0 audit entries" in result.output

    def test_cleanup_audit_documented_as_operator_tool(self, app):
        result = app.test_cli_runner().invoke(args=["maintenance", "cleanup-audit", "--help"])
        assert "Operator retention tool" in result.output

    def test_devices_list(self, app, staff):
        session_service.login("staff-7", "4821", "tablet-1", "10.0.0.5")
        result = app.test_cli_runner().invoke(args=["devices", "list"])
        assert "tablet-1" in result.output
