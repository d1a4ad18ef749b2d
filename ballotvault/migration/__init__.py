"""
Migration module - Import of legacy credential files.
"""

from ballotvault.migration.legacy_import import (
    LegacyCredentialRecord,
    MigrationImporter,
    MigrationSummary,
    backup_legacy_source,
    is_legacy_digest,
    parse_legacy_credentials,
    parse_salt_lines,
    read_legacy_source,
)

__all__ = [
    "LegacyCredentialRecord",
    "MigrationImporter",
    "MigrationSummary",
    "backup_legacy_source",
    "is_legacy_digest",
    "parse_legacy_credentials",
    "parse_salt_lines",
    "read_legacy_source",
]
