# Overview: Flask API routes for staff management by managers; parses input and returns JSON responses.

# backend/pinauth/routes/admin.py
"""
Admin routes for staff identities and tablets.

Provides endpoints for:
- Staff management (list, create, PIN reset, role change, deactivate)
- Lockout unlock for a (staff, tablet) pair
- Device listing

All endpoints require a live session with the manager or admin role.
State-changing endpoints also consume the CSRF token.
PIN reset and deactivation revoke every session the staff member holds.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bad_request, json_body, require_auth, require_role
from ..errors import AuthError, PinValidationError, error_response
from ..models import ROLE_ADMIN, ROLE_MANAGER, ROLES
from ..services import attempt_service, identity_service


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/staff")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def list_staff():
    """
    List staff identities.

    Query params:
    - include_inactive: bool (default false) - include deactivated staff
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    identities = identity_service.list_identities(include_inactive=include_inactive)
    return jsonify({"staff": [i.to_dict() for i in identities], "count": len(identities)})


@admin_bp.post("/staff")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def create_staff():
    """
    Create a staff identity.

    Request body:
    {
        "id": "staff-12",
        "display_name": "Somchai",
        "role": "staff",    // staff | manager | admin (admin only by admins)
        "pin": "4821"       // optional
    }
    """
    data = json_body()
    role = data.get("role") or "staff"
    if role == ROLE_ADMIN and g.current_identity.role != ROLE_ADMIN:
        return jsonify({"error": "forbidden", "message": "Only admins can create admins"}), 403

    try:
        identity = identity_service.create_identity(
            identity_id=data.get("id"),
            display_name=data.get("display_name"),
            role=role,
            pin=data.get("pin"),
        )
        return jsonify({"staff": identity.to_dict()}), 201
    except PinValidationError as e:
        return bad_request(str(e))
    except ValueError as e:
        return bad_request(str(e))
    except Exception:
        current_app.logger.exception("Failed to create staff identity")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@admin_bp.put("/staff/<identity_id>/pin")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def reset_staff_pin(identity_id: str):
    """
    Replace a staff member's PIN and sign them out everywhere.

    Request body: {"pin": "4821"}
    """
    data = json_body()
    pin = data.get("pin")
    if not pin:
        return bad_request("pin is required")

    try:
        revoked = identity_service.reset_pin(identity_id, pin)
        return jsonify({"message": "PIN reset", "sessions_revoked": revoked}), 200
    except PinValidationError as e:
        return bad_request(str(e))
    except ValueError as e:
        return jsonify({"error": "not_found", "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to reset PIN")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@admin_bp.put("/staff/<identity_id>/role")
@require_auth
@require_role(ROLE_ADMIN)
def change_staff_role(identity_id: str):
    """Change a staff member's role. Request body: {"role": "manager"}"""
    role = json_body().get("role")
    if role not in ROLES:
        return bad_request(f"role must be one of: {', '.join(ROLES)}")

    try:
        identity = identity_service.change_role(identity_id, role)
        return jsonify({"staff": identity.to_dict()}), 200
    except ValueError as e:
        return jsonify({"error": "not_found", "message": str(e)}), 404


@admin_bp.post("/staff/<identity_id>/deactivate")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def deactivate_staff(identity_id: str):
    """Deactivate a staff identity (soft delete) and revoke its sessions."""
    if identity_id == g.current_identity.id:
        return bad_request("You cannot deactivate yourself")

    try:
        revoked = identity_service.deactivate_identity(identity_id)
        return jsonify({"message": "Staff deactivated", "sessions_revoked": revoked}), 200
    except ValueError as e:
        return jsonify({"error": "not_found", "message": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to deactivate staff identity")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@admin_bp.post("/lockouts/<identity_id>/<device_id>/unlock")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def unlock_pair(identity_id: str, device_id: str):
    """
    Clear failed PIN attempts and any lockout for staff on one tablet.

    Unknown identities are accepted so the response reveals nothing.
    Returns whether anything was cleared plus the fresh lockout status.
    """
    try:
        cleared = attempt_service.unlock(identity_id, device_id, unlocked_by=g.current_identity.id)
        status = attempt_service.get_lockout_status(identity_id, device_id)
        return jsonify({"unlocked": cleared, "lockout": status}), 200
    except AuthError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to clear lockout")
        return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


@admin_bp.get("/devices")
@require_auth
@require_role(ROLE_MANAGER, ROLE_ADMIN)
def list_devices():
    devices = identity_service.list_devices()
    return jsonify({"devices": [d.to_dict() for d in devices], "count": len(devices)})
