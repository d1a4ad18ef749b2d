"""
BallotVault - Credential and Session Security for Election Administration
=========================================================================

Password hashing with legacy verification, account lockout, role-based
permissions, server-side sessions and a tamper-evident audit trail.

Security Notice:
- No digests, salts or tokens are logged
- Fail-closed on storage failure
- Every security decision is audited
"""

from ballotvault.core.config import BallotVaultConfig
from ballotvault.core.logging import get_secure_logger

__version__ = "0.1.0"

__all__ = ["BallotVaultConfig", "get_secure_logger", "__version__"]
