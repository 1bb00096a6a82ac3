"""
HTTP tests for the PIN authentication API.

Covers the end-to-end tablet flows:
- A: three wrong PINs lock the (staff, tablet) pair, even for the correct PIN
- B: CSRF tokens rotate on every state change; a stale token is refused
- C: deactivating staff ends their live session
plus logout, lockout status, security headers and manager staff admin.
"""

import pytest

from pinauth.extensions import rate_limiter
from pinauth.services import identity_service

from conftest import csrf_headers, login


# =============================================================================
# LOGIN
# =============================================================================


class TestLogin:

    def test_success_sets_cookie_and_returns_tokens(self, client, staff):
        resp = login(client)
        assert resp.status_code == 200

        data = resp.get_json()
        assert len(data["session_token"]) == 64
        assert data["csrf_token"]
        assert data["expires_at"].endswith("Z")
        assert data["identity"] == {"id": "staff-7", "display_name": "Staff-7", "role": "staff"}

        cookie = resp.headers["Set-Cookie"]
        assert cookie.startswith("pin_session=")
        assert "HttpOnly" in cookie
        assert "SameSite=Strict" in cookie

    def test_identifier_alias_and_fingerprint_header(self, client, staff):
        resp = client.post(
            "/api/auth/login",
            json={"identifier": "staff-7", "pin": "4821"},
            headers={"X-Device-Fingerprint": "tablet-9"},
        )
        assert resp.status_code == 200

    @pytest.mark.parametrize(
        "payload",
        [
            {"pin": "4821", "device_fingerprint": "tablet-1"},
            {"identity_id": "staff-7", "device_fingerprint": "tablet-1"},
            {"identity_id": "staff-7", "pin": "4821"},
        ],
    )
    def test_missing_fields_rejected(self, client, staff, payload):
        resp = client.post("/api/auth/login", json=payload)
        assert resp.status_code == 400

    def test_oversized_pin_rejected(self, client, staff):
        resp = login(client, pin="4" * 100)
        assert resp.status_code == 400
        assert "pin_session" not in resp.headers.get("Set-Cookie", "")

    def test_unknown_identity_response_matches_wrong_pin(self, client, staff):
        unknown = login(client, identity_id="ghost")
        wrong = login(client, pin="6047")

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.get_json() == wrong.get_json() == {
            "error": "invalid_credentials",
            "message": "Incorrect PIN.",
        }

    def test_rate_limited(self, client, staff):
        rate_limiter.configure(2, 60)
        login(client, pin="6047", device="tablet-1")
        login(client, pin="6047", device="tablet-2")

        resp = login(client, device="tablet-3")
        assert resp.status_code == 429
        assert resp.get_json()["error"] == "rate_limited"
        assert int(resp.headers["Retry-After"]) >= 1


# =============================================================================
# SCENARIO A: LOCKOUT
# =============================================================================


class TestLockoutScenario:

    def test_three_wrong_pins_lock_the_pair(self, client, staff):
        first = login(client, pin="6047", device="tablet-3")
        second = login(client, pin="6047", device="tablet-3")
        third = login(client, pin="6047", device="tablet-3")
        assert [first.status_code, second.status_code] == [401, 401]
        assert third.status_code == 429

        correct = login(client, device="tablet-3")
        assert correct.status_code == 429
        body = correct.get_json()
        assert body["error"] == "locked"
        assert body["retry_after_seconds"] > 0
        assert int(correct.headers["Retry-After"]) > 0
        assert "pin_session" not in correct.headers.get("Set-Cookie", "")

        # A different tablet is unaffected
        assert login(client, device="tablet-4").status_code == 200

    def test_lockout_status_endpoint(self, client, staff):
        login(client, pin="6047", device="tablet-3")

        resp = client.get("/api/auth/lockout-status?identity_id=staff-7&device_fingerprint=tablet-3")
        assert resp.status_code == 200
        assert resp.get_json() == {"locked": False, "retry_after_seconds": None, "attempts_remaining": 2}

        login(client, pin="6047", device="tablet-3")
        login(client, pin="6047", device="tablet-3")
        status = client.get("/api/auth/lockout-status?identity_id=staff-7&device_fingerprint=tablet-3").get_json()
        assert status["locked"] is True
        assert status["attempts_remaining"] == 0

    def test_lockout_status_requires_pair(self, client):
        assert client.get("/api/auth/lockout-status?identity_id=staff-7").status_code == 400


# =============================================================================
# SCENARIO B: CSRF ROTATION
# =============================================================================


class TestCsrfScenario:

    def _create(self, client, token, staff_id):
        return client.post(
            "/api/admin/staff",
            json={"id": staff_id, "display_name": "New Hire", "pin": "6047"},
            headers=csrf_headers(token),
        )

    def test_stale_token_refused_fresh_token_rotates(self, client, manager):
        first_token = login(client, identity_id="mgr-1", pin="7395").get_json()["csrf_token"]

        resp = self._create(client, first_token, "staff-20")
        assert resp.status_code == 201
        second_token = resp.headers["X-CSRF-Token"]
        assert second_token != first_token

        stale = self._create(client, first_token, "staff-21")
        assert stale.status_code == 403
        assert stale.get_json()["error"] == "csrf_mismatch"
        assert identity_service.get_identity("staff-21") is None

        fresh = self._create(client, second_token, "staff-21")
        assert fresh.status_code == 201
        assert fresh.headers["X-CSRF-Token"] not in (first_token, second_token)

    def test_missing_token_refused(self, client, manager):
        login(client, identity_id="mgr-1", pin="7395")
        resp = client.post("/api/admin/staff", json={"id": "staff-20", "display_name": "New Hire"})
        assert resp.status_code == 403

    def test_safe_methods_need_no_token(self, client, manager):
        login(client, identity_id="mgr-1", pin="7395")
        resp = client.get("/api/auth/session")
        assert resp.status_code == 200
        assert resp.get_json()["identity"]["id"] == "mgr-1"
        assert "X-CSRF-Token" not in resp.headers

    def test_bearer_token_accepted(self, app, manager):
        data = login(app.test_client(), identity_id="mgr-1", pin="7395").get_json()
        other_client = app.test_client()
        resp = other_client.get(
            "/api/auth/session",
            headers={"Authorization": f"Bearer {data['session_token']}"},
        )
        assert resp.status_code == 200


# =============================================================================
# SCENARIO C: DEACTIVATION
# =============================================================================


class TestDeactivationScenario:

    def test_deactivated_staff_session_revoked(self, client, staff):
        login(client)
        assert client.get("/api/auth/session").status_code == 200

        identity_service.deactivate_identity("staff-7")

        resp = client.get("/api/auth/session")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "session_revoked"

    def test_no_session(self, client):
        resp = client.get("/api/auth/session")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "session_not_found"


# =============================================================================
# LOGOUT
# =============================================================================


class TestLogout:

    def test_logout_is_csrf_exempt_and_idempotent(self, client, staff):
        token = login(client).get_json()["session_token"]

        resp = client.post("/api/auth/logout")
        assert resp.status_code == 204
        assert client.get("/api/auth/session").status_code == 401

        again = client.post("/api/auth/logout", json={"session_token": token})
        assert again.status_code == 204

    def test_logout_without_token(self, client):
        assert client.post("/api/auth/logout").status_code == 400


# =============================================================================
# MANAGER STAFF ADMIN
# =============================================================================


class TestStaffAdmin:

    def test_staff_role_cannot_manage(self, client, staff):
        login(client)
        assert client.get("/api/admin/staff").status_code == 403

    def test_list_staff(self, client, staff, manager):
        login(client, identity_id="mgr-1", pin="7395")
        data = client.get("/api/admin/staff").get_json()
        assert data["count"] == 2
        assert {s["id"] for s in data["staff"]} == {"staff-7", "mgr-1"}

    def test_pin_reset_revokes_sessions(self, app, client, staff, manager):
        staff_client = app.test_client()
        assert login(staff_client).status_code == 200

        csrf = login(client, identity_id="mgr-1", pin="7395", device="tablet-2").get_json()["csrf_token"]
        resp = client.put("/api/admin/staff/staff-7/pin", json={"pin": "6047"}, headers=csrf_headers(csrf))
        assert resp.status_code == 200
        assert resp.get_json()["sessions_revoked"] == 1

        assert staff_client.get("/api/auth/session").status_code == 401
        assert login(staff_client, pin="6047").status_code == 200

    def test_weak_pin_reset_rejected(self, client, staff, manager):
        csrf = login(client, identity_id="mgr-1", pin="7395").get_json()["csrf_token"]
        resp = client.put("/api/admin/staff/staff-7/pin", json={"pin": "1234"}, headers=csrf_headers(csrf))
        assert resp.status_code == 400

    def test_deactivate_staff(self, client, staff, manager):
        csrf = login(client, identity_id="mgr-1", pin="7395").get_json()["csrf_token"]
        resp = client.post("/api/admin/staff/staff-7/deactivate", headers=csrf_headers(csrf))
        assert resp.status_code == 200
        assert identity_service.get_identity("staff-7").is_active is False

    def test_manager_unlocks_locked_pair(self, client, staff, manager):
        for _ in range(3):
            login(client, pin="6047", device="tablet-3")
        assert login(client, device="tablet-3").status_code == 429

        csrf = login(client, identity_id="mgr-1", pin="7395", device="tablet-1").get_json()["csrf_token"]
        resp = client.post("/api/admin/lockouts/staff-7/tablet-3/unlock", headers=csrf_headers(csrf))
        assert resp.status_code == 200
        assert resp.get_json() == {
            "unlocked": True,
            "lockout": {"locked": False, "retry_after_seconds": None, "attempts_remaining": 3},
        }
        assert resp.headers["X-CSRF-Token"] != csrf

        assert login(client, device="tablet-3").status_code == 200

    def test_unlock_requires_csrf_and_manager(self, app, client, staff, manager):
        login(client, identity_id="mgr-1", pin="7395")
        assert client.post("/api/admin/lockouts/staff-7/tablet-3/unlock").status_code == 403

        staff_client = app.test_client()
        csrf = login(staff_client).get_json()["csrf_token"]
        resp = staff_client.post("/api/admin/lockouts/staff-7/tablet-3/unlock", headers=csrf_headers(csrf))
        assert resp.status_code == 403

    def test_manager_cannot_create_admin(self, client, manager):
        csrf = login(client, identity_id="mgr-1", pin="7395").get_json()["csrf_token"]
        resp = client.post(
            "/api/admin/staff",
            json={"id": "boss", "display_name": "Boss", "role": "admin"},
            headers=csrf_headers(csrf),
        )
        assert resp.status_code == 403


# =============================================================================
# SECURITY HEADERS AND HEALTH
# =============================================================================


class TestHeaders:

    def test_security_headers_on_every_response(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "frame-ancestors 'none'" in resp.headers["Content-Security-Policy"]
        assert "Strict-Transport-Security" not in resp.headers

    def test_api_responses_not_cached(self, client, staff):
        resp = login(client)
        assert resp.headers["Cache-Control"] == "no-store"

    def test_cors_for_allowed_origin(self, client):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"
        assert "X-CSRF-Token" in resp.headers["Access-Control-Allow-Headers"]

    def test_no_cors_for_unknown_origin(self, client):
        resp = client.get("/health", headers={"Origin": "https://evil.example"})
        assert "Access-Control-Allow-Origin" not in resp.headers
