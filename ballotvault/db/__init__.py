"""
Database module - SQLite persistence shared by the credential components.

Each component owns its own tables; this module only provides connections,
scoped transactions and timestamp helpers.
"""

from ballotvault.db.sqlite import (
    Clock,
    Database,
    StorageUnavailableError,
    from_iso,
    to_iso,
    utcnow,
)

__all__ = [
    "Clock",
    "Database",
    "StorageUnavailableError",
    "from_iso",
    "to_iso",
    "utcnow",
]
