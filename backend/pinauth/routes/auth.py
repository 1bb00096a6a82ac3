# Overview: Flask API routes for PIN login, logout and session checks; parses input and returns JSON responses.

# backend/pinauth/routes/auth.py
"""
PIN Authentication API routes

SECURITY FEATURES:
- Attempt throttling per device and per source address
- Per (staff, tablet) lockout with exponential backoff
- Identical "Incorrect PIN" response for unknown and wrong identities
- Session token in an HttpOnly cookie, CSRF token returned out-of-band
"""

from flask import Blueprint, current_app, g, jsonify, make_response, request

from ..decorators import (
    bad_request,
    client_address,
    json_body,
    require_auth,
    session_token_from,
)
from ..errors import AuthError, error_response
from ..services import attempt_service, session_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

# Longer input is never a valid PIN and bcrypt refuses over 72 bytes
MAX_PIN_INPUT_LENGTH = 32


def _device_fingerprint(data: dict) -> str | None:
    value = data.get("device_fingerprint") or request.headers.get("X-Device-Fingerprint")
    return value.strip() if isinstance(value, str) and value.strip() else None


@auth_bp.post("/login")
def login_route():
    """
    Authenticate a staff PIN on a shared tablet and open a session.

    Request body:
    {
        "identity_id": "staff-7",          // or "identifier"
        "pin": "4821",
        "device_fingerprint": "tablet-3"   // or X-Device-Fingerprint header
    }

    Returns session_token, csrf_token and expires_at on success; the session
    token is also set as an HttpOnly cookie. The csrf_token must be echoed in
    the X-CSRF-Token header of the next state-changing request.
    """
    try:
        data = json_body()
        identity_id = data.get("identity_id") or data.get("identifier")
        pin = data.get("pin")
        device_id = _device_fingerprint(data)

        if not identity_id or not isinstance(identity_id, str):
            return bad_request("identity_id is required")
        if not pin or not isinstance(pin, str):
            return bad_request("pin is required")
        if len(pin) > MAX_PIN_INPUT_LENGTH:
            return bad_request("pin is too long")
        if not device_id:
            return bad_request("device_fingerprint is required")

        result = session_service.login(
            identity_id=identity_id.strip(),
            candidate_pin=pin,
            device_id=device_id,
            source_address=client_address(request),
            user_agent=request.headers.get("User-Agent"),
        )

        session = result.session
        response = make_response(jsonify({
            "session_token": result.session_token,
            "csrf_token": result.csrf_token,
            "expires_at": to_utc_z(session.expires_at),
            "absolute_expires_at": to_utc_z(session.absolute_expires_at),
            "identity": {
                "id": result.identity.id,
                "display_name": result.identity.display_name,
                "role": result.identity.role,
            },
            "device_id": session.device_id,
        }), 200)
        response.set_cookie(
            current_app.config["SESSION_COOKIE_NAME"],
            result.session_token,
            max_age=current_app.config["SESSION_ABSOLUTE_TIMEOUT_SECONDS"],
            httponly=True,
            secure=current_app.config["SESSION_COOKIE_SECURE"],
            samesite="Strict",
        )
        return response

    except AuthError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to login by PIN")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke the session (logout). Always 204 once a token is presented.

    Token from body {"session_token": ...}, the session cookie or
    Authorization: Bearer. Exempt from CSRF so a tablet with a stale
    anti-forgery token can still sign out.
    """
    try:
        data = json_body()
        token = data.get("session_token") or session_token_from(request)
        if not token:
            return bad_request("session_token is required")

        session_service.revoke(token, reason="User logout", ip_address=client_address(request))

        response = make_response("", 204)
        response.delete_cookie(current_app.config["SESSION_COOKIE_NAME"])
        return response

    except AuthError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to logout")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@auth_bp.get("/session")
@require_auth
def session_route():
    """Current identity and session expiry (refreshes the idle timeout)."""
    context = g.auth_context
    return jsonify({
        "identity": {
            "id": context.identity.id,
            "display_name": context.identity.display_name,
            "role": context.identity.role,
        },
        "session": context.session.to_dict(),
    }), 200


@auth_bp.get("/lockout-status")
def lockout_status_route():
    """
    Lockout countdown for a (staff, tablet) pair.

    Query params: identity_id, device_fingerprint
    Unknown identities report the same way as real ones.
    """
    identity_id = request.args.get("identity_id") or request.args.get("identifier")
    device_id = request.args.get("device_fingerprint") or request.headers.get("X-Device-Fingerprint")
    if not identity_id or not device_id:
        return bad_request("identity_id and device_fingerprint are required")

    try:
        return jsonify(attempt_service.get_lockout_status(identity_id, device_id)), 200
    except AuthError as e:
        return error_response(e)
