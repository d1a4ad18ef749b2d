"""
Security module - Audit trail, background maintenance and constants.
"""

from ballotvault.security.audit import (
    AuditAction,
    AuditEntry,
    AuditLog,
    AuditRecord,
    LoginAttempt,
)
from ballotvault.security.constants import (
    MAX_LOGIN_ATTEMPTS,
    LOCKOUT_DURATION_SECONDS,
    SESSION_TIMEOUT_SECONDS,
)

__all__ = [
    "AuditAction",
    "AuditEntry",
    "AuditLog",
    "AuditRecord",
    "LoginAttempt",
    "MAX_LOGIN_ATTEMPTS",
    "LOCKOUT_DURATION_SECONDS",
    "SESSION_TIMEOUT_SECONDS",
]
