# Overview: Request authorisation gate and route decorators.

from dataclasses import dataclass
from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import AuthError, Forbidden, SessionNotFound, error_response
from .models import SessionToken, StaffIdentity
from .services import csrf_service, session_service


STATE_CHANGING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


@dataclass
class AuthContext:
    """Identity and session for an authorised request."""
    identity: StaffIdentity
    session: SessionToken
    # Next anti-forgery token, set when this request consumed one
    csrf_token: str | None = None


def client_address(req) -> str | None:
    """Source address, honouring X-Forwarded-For only when configured."""
    if current_app.config["RATE_LIMIT_TRUST_FORWARDED"]:
        forwarded = req.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return req.remote_addr


def session_token_from(req) -> str | None:
    """Session token from the session cookie or an Authorization: Bearer header."""
    token = req.cookies.get(current_app.config["SESSION_COOKIE_NAME"])
    if token:
        return token
    auth_header = req.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


def authorize(req, *, check_csrf: bool | None = None) -> AuthContext:
    """
    Single gate that route handlers call before running business logic.

    - Validates the session (liveness, expiry, revocation, deactivation)
    - For state-changing methods, consumes the X-CSRF-Token header value and
      issues the next token (strict one-time use)

    Raises AuthError (SessionNotFound, Expired, Revoked, CsrfMismatch,
    StoreUnavailable).
    """
    token = session_token_from(req)
    if not token:
        raise SessionNotFound()

    address = client_address(req)
    session = session_service.validate(token, ip_address=address)

    if check_csrf is None:
        check_csrf = req.method.upper() in STATE_CHANGING_METHODS

    next_csrf = None
    if check_csrf:
        presented = req.headers.get(current_app.config["CSRF_HEADER_NAME"])
        next_csrf = csrf_service.rotate(session, presented, ip_address=address)

    return AuthContext(identity=session.identity, session=session, csrf_token=next_csrf)


def require_auth(f):
    """
    Require a live session (and a fresh CSRF token on state changes).

    Sets Flask g attributes:
    - g.current_identity: the authenticated StaffIdentity
    - g.auth_context: the full AuthContext

    The rotated CSRF token is returned in the X-CSRF-Token response header,
    including on error responses from the wrapped route.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            context = authorize(request)
        except AuthError as e:
            return error_response(e)

        g.current_identity = context.identity
        g.auth_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """Require the authenticated identity to hold one of the given roles."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            identity = getattr(g, "current_identity", None)
            if identity is None:
                return error_response(SessionNotFound())
            if identity.role not in roles:
                current_app.logger.warning(
                    "Role check failed for identity=%s on %s (needs %s)",
                    identity.id, request.path, ",".join(roles),
                )
                return error_response(Forbidden())
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def attach_csrf_header(response):
    """after_request hook: hand the next CSRF token back out-of-band."""
    context = g.get("auth_context")
    if context is not None and context.csrf_token:
        response.headers[current_app.config["CSRF_HEADER_NAME"]] = context.csrf_token
        response.headers.add("Access-Control-Expose-Headers", current_app.config["CSRF_HEADER_NAME"])
    return response


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def bad_request(message: str):
    return jsonify({"error": "bad_request", "message": message}), 400
