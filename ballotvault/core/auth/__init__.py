"""
BallotVault Authentication Module
=================================

Provides:
- Iterated SHA-256 password hashing with legacy fallback verification
- Role-based access control over a closed permission set
- Account storage with lockout state
- Session management with expiration and address pinning

Security Properties:
- Constant-time digest comparison
- Generic login failures
- Secure session tokens (only hashes stored)
- Automatic lockout on repeated failures
"""

from ballotvault.core.auth.password_hashing import (
    PasswordHasher,
    VerificationStrategy,
)
from ballotvault.core.auth.roles import (
    Permission,
    Role,
    RoleModel,
    normalize_role,
)
from ballotvault.core.auth.credential_store import (
    Account,
    AccountSummary,
    CredentialStore,
)
from ballotvault.core.auth.session_control import (
    Session,
    SessionManager,
)
from ballotvault.core.auth.authentication import AuthenticationService

__all__ = [
    "PasswordHasher",
    "VerificationStrategy",
    "Permission",
    "Role",
    "RoleModel",
    "normalize_role",
    "Account",
    "AccountSummary",
    "CredentialStore",
    "Session",
    "SessionManager",
    "AuthenticationService",
]
