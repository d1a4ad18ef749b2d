"""
Validation Utilities
====================

Checks applied to account identifiers, display names and new passwords
before anything reaches the credential store.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional

from ballotvault.security.constants import (
    ACCOUNT_ID_PATTERN,
    MAX_ACCOUNT_ID_LENGTH,
    MAX_DISPLAY_NAME_LENGTH,
    MAX_PASSWORD_LENGTH,
    MIN_ACCOUNT_ID_LENGTH,
    MIN_DISPLAY_NAME_LENGTH,
    MIN_PASSWORD_LENGTH,
    PASSWORD_REQUIRE_DIGIT,
    PASSWORD_REQUIRE_LOWERCASE,
    PASSWORD_REQUIRE_UPPERCASE,
)


_ACCOUNT_ID_RE = re.compile(ACCOUNT_ID_PATTERN)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

# (enabled, check, message) for the character-class rules
_PASSWORD_RULES: List[tuple[bool, Callable[[str], bool], str]] = [
    (PASSWORD_REQUIRE_UPPERCASE, lambda p: any(c.isupper() for c in p),
     "Password must contain at least one uppercase letter"),
    (PASSWORD_REQUIRE_LOWERCASE, lambda p: any(c.islower() for c in p),
     "Password must contain at least one lowercase letter"),
    (PASSWORD_REQUIRE_DIGIT, lambda p: any(c.isdigit() for c in p),
     "Password must contain at least one digit"),
]


class ValidationError(ValueError):
    """Input was rejected; the message is safe to show to the caller."""


def validate_string_safe(
    value: str,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Check type, length bounds and the absence of control characters.

    Colon-delimited exports and single-line log entries break on embedded
    newlines or NUL bytes, so those are refused everywhere.

    Raises:
        ValidationError: On the first rule that fails
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    if not value:
        if allow_empty:
            return value
        raise ValidationError(f"{field_name} cannot be empty")
    if not min_length <= len(value) <= max_length:
        raise ValidationError(
            f"{field_name} must be between {min_length} and {max_length} characters"
        )
    if _CONTROL_CHARS_RE.search(value):
        raise ValidationError(f"{field_name} contains invalid characters")
    return value


def validate_account_id(account_id: str) -> str:
    """1-50 characters of letters, digits, ``_``, ``.`` or ``-``."""
    validate_string_safe(
        account_id,
        min_length=MIN_ACCOUNT_ID_LENGTH,
        max_length=MAX_ACCOUNT_ID_LENGTH,
        field_name="Account ID",
    )
    if not _ACCOUNT_ID_RE.match(account_id):
        raise ValidationError(
            "Account ID can only contain letters, digits, underscores, dots and hyphens"
        )
    return account_id


def validate_display_name(name: str) -> str:
    """Return the display name trimmed of surrounding whitespace."""
    if not isinstance(name, str):
        raise ValidationError("Display name must be a string")
    return validate_string_safe(
        name.strip(),
        min_length=MIN_DISPLAY_NAME_LENGTH,
        max_length=MAX_DISPLAY_NAME_LENGTH,
        field_name="Display name",
    )


def password_strength_errors(password: Optional[str]) -> List[str]:
    """Every strength rule ``password`` breaks; an empty list means it is acceptable."""
    if not isinstance(password, str):
        return ["Password must be a string"]
    if not password:
        return [f"Password must be at least {MIN_PASSWORD_LENGTH} characters"]

    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    elif len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")

    errors.extend(message for enabled, check, message in _PASSWORD_RULES if enabled and not check(password))
    return errors


def validate_password_strength(password: Optional[str]) -> str:
    errors = password_strength_errors(password)
    if errors:
        raise ValidationError("; ".join(errors))
    return password
