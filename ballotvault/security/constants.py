"""
Security Constants
==================

Defaults used throughout the credential subsystem. Runtime values come from
``SecurityConfig``; these constants are its defaults and the fixed rules
that are not configurable.
"""

from typing import Final

# Account identifiers and names
MIN_ACCOUNT_ID_LENGTH: Final[int] = 1
MAX_ACCOUNT_ID_LENGTH: Final[int] = 50
ACCOUNT_ID_PATTERN: Final[str] = r"^[A-Za-z0-9_.\-]+$"
MIN_DISPLAY_NAME_LENGTH: Final[int] = 2
MAX_DISPLAY_NAME_LENGTH: Final[int] = 100

# Password Requirements
MIN_PASSWORD_LENGTH: Final[int] = 8
MAX_PASSWORD_LENGTH: Final[int] = 128
PASSWORD_REQUIRE_UPPERCASE: Final[bool] = True
PASSWORD_REQUIRE_LOWERCASE: Final[bool] = True
PASSWORD_REQUIRE_DIGIT: Final[bool] = True

# Password hashing
HASH_ITERATIONS: Final[int] = 10_000
SALT_LENGTH_BYTES: Final[int] = 32  # 256 bits
DIGEST_LENGTH_BYTES: Final[int] = 32  # SHA-256

# Lockout
MAX_LOGIN_ATTEMPTS: Final[int] = 5
LOCKOUT_DURATION_SECONDS: Final[int] = 900  # 15 minutes

# Sessions
SESSION_TIMEOUT_SECONDS: Final[int] = 1800  # 30 minutes
SESSION_TOKEN_BYTES: Final[int] = 32  # 256 bits of entropy

# Audit
SYSTEM_ACTOR: Final[str] = "system"
DEFAULT_AUDIT_LIMIT: Final[int] = 50
MAX_AUDIT_LIMIT: Final[int] = 1000

# Bootstrap and migration
DEFAULT_SUPER_ACCOUNT_ID: Final[str] = "superadmin"
DEFAULT_SUPER_ACCOUNT_NAME: Final[str] = "System Administrator"
LEGACY_TEMPORARY_PASSWORD: Final[str] = "Reset123!"
LEGACY_UNREGISTERED_MARKER: Final[str] = "__UNREGISTERED__"
