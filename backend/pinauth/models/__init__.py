from .identity import StaffIdentity, Credential, Device, ROLES, ROLE_STAFF, ROLE_MANAGER, ROLE_ADMIN
from .security import (
    AttemptRecord,
    SessionToken,
    AuditEntry,
    EVENT_KINDS,
    EVENT_LOGIN_SUCCESS,
    EVENT_LOGIN_FAILURE,
    EVENT_LOCKOUT,
    EVENT_SESSION_REVOKED,
    EVENT_CSRF_REJECTED,
)

__all__ = [
    'StaffIdentity', 'Credential', 'Device', 'ROLES', 'ROLE_STAFF', 'ROLE_MANAGER', 'ROLE_ADMIN',
    'AttemptRecord', 'SessionToken', 'AuditEntry',
    'EVENT_KINDS', 'EVENT_LOGIN_SUCCESS', 'EVENT_LOGIN_FAILURE', 'EVENT_LOCKOUT',
    'EVENT_SESSION_REVOKED', 'EVENT_CSRF_REJECTED',
]
