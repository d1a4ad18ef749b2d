"""
Legacy Credential Import
========================

One-time import of the colon-delimited credential files written by the
previous election application.

Formats (one record per line, blank lines ignored):
    credentials:  account_id:display_name:digest_or_plaintext:role
    salts:        account_id:salt

A record whose third field is a base64 SHA-256 digest (32 bytes) and whose
salt is known keeps that digest, so the old password continues to work.
Every other record (plaintext, empty, ``null``, the unregistered marker, or
a digest without a salt) gets the temporary password and must change it
at first login.
"""

from __future__ import annotations

import base64
import binascii
import logging
import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ballotvault.core.auth.credential_store import CredentialStore
from ballotvault.core.auth.roles import normalize_role
from ballotvault.core.results import ErrorKind
from ballotvault.db import Clock, utcnow
from ballotvault.security.audit import AuditAction, AuditLog, AuditRecord
from ballotvault.security.constants import (
    DIGEST_LENGTH_BYTES,
    LEGACY_TEMPORARY_PASSWORD,
    LEGACY_UNREGISTERED_MARKER,
    SYSTEM_ACTOR,
)


_log = logging.getLogger("ballotvault.migration")

_NO_SECRET_MARKERS = frozenset({"", "null", LEGACY_UNREGISTERED_MARKER})


def is_legacy_digest(value: Optional[str]) -> bool:
    """Whether ``value`` is a base64-encoded SHA-256 digest."""
    if not value or value in _NO_SECRET_MARKERS:
        return False
    try:
        return len(base64.b64decode(value, validate=True)) == DIGEST_LENGTH_BYTES
    except (binascii.Error, ValueError):
        return False


@dataclass(frozen=True, slots=True)
class LegacyCredentialRecord:
    """One parsed line of the legacy credential file."""
    account_id: str
    display_name: str
    secret: str = field(repr=False)
    role: str = ""
    salt: Optional[str] = field(default=None, repr=False)

    @property
    def has_preserved_digest(self) -> bool:
        return bool(self.salt) and is_legacy_digest(self.secret)


@dataclass(slots=True)
class MigrationSummary:
    imported: int = 0
    preserved: int = 0
    temporary: int = 0
    skipped: int = 0
    failed: int = 0
    interrupted: bool = False

    def describe(self) -> str:
        text = (
            f"Imported {self.imported} account(s) ({self.preserved} with preserved digests, "
            f"{self.temporary} with temporary passwords); skipped {self.skipped}; failed {self.failed}"
        )
        return text + " (interrupted)" if self.interrupted else text


def parse_legacy_credentials(lines: Iterable[str]) -> List[LegacyCredentialRecord]:
    """
    Parse ``id:name:secret:role`` lines.

    Malformed lines are logged and skipped; fields past the fourth are ignored.
    """
    records = []
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue

        parts = line.split(":")
        if len(parts) < 4 or not parts[0].strip():
            _log.warning("Skipping malformed legacy credential line %d", number)
            continue

        records.append(LegacyCredentialRecord(
            account_id=parts[0].strip(),
            display_name=parts[1].strip(),
            secret=parts[2].strip(),
            role=parts[3].strip(),
        ))
    return records


def parse_salt_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``id:salt`` lines into a mapping. Malformed lines are skipped."""
    salts = {}
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue

        account_id, sep, salt = line.partition(":")
        if not sep or not account_id.strip() or not salt.strip():
            _log.warning("Skipping malformed legacy salt line %d", number)
            continue
        salts[account_id.strip()] = salt.strip()
    return salts


def read_legacy_source(
    credentials_path: Path,
    salts_path: Optional[Path] = None,
) -> List[LegacyCredentialRecord]:
    """
    Read the legacy files and attach each record's salt.

    Raises:
        FileNotFoundError: If the credential file does not exist
    """
    with open(credentials_path, "r", encoding="utf-8") as f:
        records = parse_legacy_credentials(f)

    salts: Dict[str, str] = {}
    if salts_path is not None:
        if salts_path.exists():
            with open(salts_path, "r", encoding="utf-8") as f:
                salts = parse_salt_lines(f)
        else:
            _log.warning("Legacy salt file %s not found; digests cannot be preserved", salts_path.name)

    return [
        LegacyCredentialRecord(
            account_id=r.account_id,
            display_name=r.display_name,
            secret=r.secret,
            role=r.role,
            salt=salts.get(r.account_id),
        )
        for r in records
    ]


def backup_legacy_source(source: Path, backup_dir: Path, clock: Clock = utcnow) -> Path:
    """Copy ``source`` to ``<backup_dir>/<name>.backup.<timestamp>``."""
    backup_dir.mkdir(parents=True, exist_ok=True)
    stamp = clock().strftime("%Y%m%dT%H%M%S%f")
    target = backup_dir / f"{source.name}.backup.{stamp}"
    shutil.copy2(source, target)
    _log.info("Backed up %s to %s", source.name, target)
    return target


class MigrationImporter:
    """
    Imports legacy records into a CredentialStore.

    Usage:
        importer = MigrationImporter(store, audit)
        count = importer.import_legacy_files(Path("database_admins.txt"),
                                             Path("database_admin_salts.txt"))

    Re-running is safe: any id already present in the store is skipped,
    including accounts deactivated since an earlier run.
    Each account and its ADMIN_MIGRATED entry commit together, so stopping
    between records never leaves a half-imported account.
    """

    __slots__ = ("_store", "_audit", "_clock", "_temporary_password")

    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLog,
        clock: Clock = utcnow,
        temporary_password: str = LEGACY_TEMPORARY_PASSWORD,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock
        self._temporary_password = temporary_password

    def run(
        self,
        records: Iterable[LegacyCredentialRecord],
        stop_event: Optional[threading.Event] = None,
    ) -> MigrationSummary:
        """Import ``records`` and report what happened to each."""
        summary = MigrationSummary()

        for record in records:
            if stop_event is not None and stop_event.is_set():
                _log.warning("Legacy import stopped before %s", record.account_id)
                summary.interrupted = True
                break

            existing = self._store.get(record.account_id, include_inactive=True)
            if existing.error is ErrorKind.STORAGE_UNAVAILABLE:
                _log.error("Legacy import aborted at %s: storage unavailable", record.account_id)
                summary.interrupted = True
                break
            if existing.ok:
                summary.skipped += 1
                continue

            role = normalize_role(record.role)

            if record.has_preserved_digest:
                result = self._store.create_with_preserved_digest(
                    record.account_id, record.display_name, record.secret, record.salt, role,
                    audit=AuditRecord(SYSTEM_ACTOR, AuditAction.ADMIN_MIGRATED,
                                      f"Migrated {record.account_id} with preserved digest"),
                    reactivate=False,
                )
            else:
                result = self._store.create(
                    record.account_id, record.display_name, self._temporary_password, role,
                    needs_password_reset=True,
                    audit=AuditRecord(SYSTEM_ACTOR, AuditAction.ADMIN_MIGRATED,
                                      f"Migrated {record.account_id} with temporary password"),
                    reactivate=False,
                )

            if result:
                summary.imported += 1
                if record.has_preserved_digest:
                    summary.preserved += 1
                else:
                    summary.temporary += 1
            elif result.error is ErrorKind.STORAGE_UNAVAILABLE:
                _log.error("Legacy import aborted at %s: storage unavailable", record.account_id)
                summary.interrupted = True
                break
            elif result.error is ErrorKind.CONFLICT:
                summary.skipped += 1
            else:
                _log.warning("Legacy record %s rejected: %s", record.account_id, result.message)
                summary.failed += 1

        self._audit.record(SYSTEM_ACTOR, AuditAction.MIGRATION_COMPLETED, summary.describe())
        _log.info("Legacy import finished: %s", summary.describe())
        return summary

    def import_legacy_credentials(
        self,
        records: Iterable[LegacyCredentialRecord],
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Returns:
            Number of accounts imported
        """
        return self.run(records, stop_event).imported

    def import_legacy_files(
        self,
        credentials_path: Path,
        salts_path: Optional[Path] = None,
        backup_dir: Optional[Path] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        """
        Back up the legacy files, then import them.

        Args:
            credentials_path: ``id:name:secret:role`` file
            salts_path: Optional ``id:salt`` file
            backup_dir: Where backups go (default: beside the credential file)
            stop_event: Checked between records

        Returns:
            Number of accounts imported

        Raises:
            FileNotFoundError: If the credential file does not exist
        """
        credentials_path = Path(credentials_path)
        salts_path = Path(salts_path) if salts_path is not None else None
        if not credentials_path.exists():
            raise FileNotFoundError(f"Legacy credential file not found: {credentials_path}")

        target_dir = Path(backup_dir) if backup_dir is not None else credentials_path.parent
        backup_legacy_source(credentials_path, target_dir, self._clock)
        if salts_path is not None and salts_path.exists():
            backup_legacy_source(salts_path, target_dir, self._clock)

        records = read_legacy_source(credentials_path, salts_path)
        return self.import_legacy_credentials(records, stop_event)
