"""
Utils module - Input validation helpers.
"""

from ballotvault.utils.validators import (
    ValidationError,
    password_strength_errors,
    validate_account_id,
    validate_display_name,
    validate_password_strength,
    validate_string_safe,
)

__all__ = [
    "ValidationError",
    "password_strength_errors",
    "validate_account_id",
    "validate_display_name",
    "validate_password_strength",
    "validate_string_safe",
]
