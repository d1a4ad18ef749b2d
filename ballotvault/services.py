"""
Service Wiring
==============

Builds one instance of each security component per process and injects
collaborators explicitly. Callers (the HTTP gateway, the migration script,
tests) receive a ``SecurityServices`` bundle instead of reaching for
globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ballotvault.core.auth.authentication import AuthenticationService
from ballotvault.core.auth.credential_store import AccountCache, CredentialStore
from ballotvault.core.auth.password_hashing import PasswordHasher
from ballotvault.core.auth.roles import RoleModel
from ballotvault.core.auth.session_control import SessionManager
from ballotvault.core.config import BallotVaultConfig
from ballotvault.db import Clock, Database, utcnow
from ballotvault.migration.legacy_import import MigrationImporter
from ballotvault.security.audit import AuditLog
from ballotvault.security.maintenance import MaintenanceScheduler


@dataclass(frozen=True, slots=True)
class SecurityServices:
    """The wired security subsystem."""
    config: BallotVaultConfig
    database: Database
    hasher: PasswordHasher
    roles: RoleModel
    audit: AuditLog
    store: CredentialStore
    sessions: SessionManager
    auth: AuthenticationService
    importer: MigrationImporter
    maintenance: MaintenanceScheduler


def build_services(
    config: Optional[BallotVaultConfig] = None,
    clock: Clock = utcnow,
    database_path: Optional[Path] = None,
) -> SecurityServices:
    """
    Wire the subsystem.

    Args:
        config: Configuration (default: ``BallotVaultConfig.get_instance()``)
        clock: Source of the current UTC instant, shared by every component
        database_path: Overrides ``config.paths.database_path``

    Raises:
        StorageUnavailableError: If the schema cannot be created
    """
    config = config or BallotVaultConfig.get_instance()
    security = config.security

    database = Database(
        database_path or config.paths.database_path,
        timeout_seconds=security.db_timeout_seconds,
    )
    hasher = PasswordHasher(
        iterations=security.hash_iterations,
        salt_length=security.salt_length,
    )
    roles = RoleModel()
    audit = AuditLog(database, clock=clock)
    store = CredentialStore(
        database,
        hasher,
        clock=clock,
        audit_log=audit,
        cache=AccountCache(security.account_cache_size, security.account_cache_ttl_seconds),
    )
    sessions = SessionManager(
        database,
        clock=clock,
        audit=audit,
        default_ttl=security.session_timeout_seconds,
    )
    auth = AuthenticationService(
        store,
        audit,
        sessions=sessions,
        clock=clock,
        max_login_attempts=security.max_login_attempts,
        lockout_duration_seconds=security.lockout_duration_seconds,
        roles=roles,
    )
    importer = MigrationImporter(store, audit, clock=clock)
    maintenance = MaintenanceScheduler(
        sessions,
        audit,
        interval=security.sweep_interval_seconds,
        retention_days=security.audit_retention_days,
    )

    return SecurityServices(
        config=config,
        database=database,
        hasher=hasher,
        roles=roles,
        audit=audit,
        store=store,
        sessions=sessions,
        auth=auth,
        importer=importer,
        maintenance=maintenance,
    )
