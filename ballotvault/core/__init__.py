"""
Core module - Configuration, logging, results and authentication.
"""

from ballotvault.core.config import BallotVaultConfig
from ballotvault.core.logging import get_secure_logger, SecureLogFilter
from ballotvault.core.results import AuthResult, ErrorKind, Result

__all__ = [
    "BallotVaultConfig",
    "get_secure_logger",
    "SecureLogFilter",
    "AuthResult",
    "ErrorKind",
    "Result",
]
