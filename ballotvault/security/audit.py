"""
Tamper-Aware Audit Log
======================

Append-only audit trail of security events with a SHA-256 hash chain,
plus the login-attempt records used for forensic counting.

Entries are written either on their own (``record``, best-effort) or
inside a caller's open transaction (``append``) so that a mutation and the
entry describing it commit or roll back together.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Final, List, Optional, Tuple

from ballotvault.db import Clock, Database, StorageUnavailableError, from_iso, to_iso, utcnow
from ballotvault.security.constants import DEFAULT_AUDIT_LIMIT, MAX_AUDIT_LIMIT, SYSTEM_ACTOR


GENESIS_HASH: Final[str] = "genesis"

_log = logging.getLogger("ballotvault.audit")


class AuditAction(str, Enum):
    """Closed vocabulary of auditable actions."""
    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_BLOCKED = "LOGIN_BLOCKED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    ACCOUNT_UNLOCKED = "ACCOUNT_UNLOCKED"
    AUTH_STORAGE_UNAVAILABLE = "AUTH_STORAGE_UNAVAILABLE"

    # Sessions
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    SESSIONS_REVOKED = "SESSIONS_REVOKED"
    LOGOUT = "LOGOUT"

    # Passwords
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_CHANGE_FAILED = "PASSWORD_CHANGE_FAILED"
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_RESET_BY_SUPER = "PASSWORD_RESET_BY_SUPER"

    # Account administration
    ADMIN_CREATED = "ADMIN_CREATED"
    ADMIN_DEACTIVATED = "ADMIN_DEACTIVATED"
    ROLE_REASSIGNED = "ROLE_REASSIGNED"

    # Denied administrative requests
    UNAUTHORIZED_ADMIN_ADD = "UNAUTHORIZED_ADMIN_ADD"
    UNAUTHORIZED_ADMIN_DELETE = "UNAUTHORIZED_ADMIN_DELETE"
    UNAUTHORIZED_ROLE_CHANGE = "UNAUTHORIZED_ROLE_CHANGE"
    UNAUTHORIZED_PASSWORD_CHANGE = "UNAUTHORIZED_PASSWORD_CHANGE"
    UNAUTHORIZED_VIEW_ADMINS = "UNAUTHORIZED_VIEW_ADMINS"
    UNAUTHORIZED_VIEW_AUDIT = "UNAUTHORIZED_VIEW_AUDIT"

    # System
    SYSTEM_INIT = "SYSTEM_INIT"
    ADMIN_MIGRATED = "ADMIN_MIGRATED"
    MIGRATION_COMPLETED = "MIGRATION_COMPLETED"
    AUDIT_PRUNED = "AUDIT_PRUNED"

    @property
    def is_denial(self) -> bool:
        return self.value.startswith("UNAUTHORIZED_")


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """An audit entry that has not been written yet."""
    actor_id: str
    action: AuditAction
    details: str = ""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """A stored audit entry. Never mutated."""
    entry_id: int
    actor_id: str
    action: str
    details: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    timestamp: datetime
    previous_hash: str
    entry_hash: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "actor_id": self.actor_id,
            "action": self.action,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class LoginAttempt:
    account_id: str
    ip_address: Optional[str]
    success: bool
    timestamp: datetime


def compute_entry_hash(
    actor_id: str,
    action: str,
    details: str,
    ip_address: Optional[str],
    user_agent: Optional[str],
    timestamp: str,
    previous_hash: str,
) -> str:
    """Chain hash over every stored field of an entry and its predecessor's hash."""
    data = {
        "actor_id": actor_id,
        "action": action,
        "details": details,
        "ip_address": ip_address,
        "user_agent": user_agent,
        "timestamp": timestamp,
        "previous_hash": previous_hash,
    }
    return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()


def _clamp_limit(limit: int) -> int:
    return max(0, min(int(limit), MAX_AUDIT_LIMIT))


class AuditLog:
    """
    Append-only audit log over SQLite with tamper detection.

    Features:
    - Chained SHA-256 hashes (``previous_hash`` → ``entry_hash``)
    - Entries join the caller's transaction when atomicity matters
    - Best-effort standalone writes that never abort the caller
    - Login-attempt records for forensic counting

    Usage:
        audit = AuditLog(db)
        audit.record("superadmin", AuditAction.ADMIN_CREATED, "Created a1")

        with db.transaction() as conn:
            conn.execute("UPDATE accounts ...")
            audit.append(conn, AuditRecord("superadmin", AuditAction.ROLE_REASSIGNED))
    """

    __slots__ = ("_db", "_clock")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS audit_logs (
        entry_id INTEGER PRIMARY KEY AUTOINCREMENT,
        actor_id TEXT NOT NULL,
        action TEXT NOT NULL,
        details TEXT NOT NULL DEFAULT '',
        ip_address TEXT,
        user_agent TEXT,
        timestamp TEXT NOT NULL,
        previous_hash TEXT NOT NULL,
        entry_hash TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_audit_actor ON audit_logs(actor_id, entry_id);
    CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp);

    CREATE TABLE IF NOT EXISTS login_attempts (
        attempt_id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL,
        ip_address TEXT,
        success INTEGER NOT NULL,
        timestamp TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_attempts_account ON login_attempts(account_id, timestamp);
    """

    def __init__(self, db: Database, clock: Clock = utcnow) -> None:
        self._db = db
        self._clock = clock
        self._db.initialize_schema(self._SCHEMA)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, conn: sqlite3.Connection, record: AuditRecord) -> AuditEntry:
        """
        Write an entry inside the caller's open write transaction.

        Errors propagate so the caller's transaction rolls back with it.
        """
        row = conn.execute(
            "SELECT entry_hash FROM audit_logs ORDER BY entry_id DESC LIMIT 1"
        ).fetchone()
        previous_hash = row["entry_hash"] if row else GENESIS_HASH

        action = AuditAction(record.action).value
        details = record.details or ""
        timestamp = to_iso(self._clock())
        entry_hash = compute_entry_hash(
            record.actor_id, action, details,
            record.ip_address, record.user_agent,
            timestamp, previous_hash,
        )

        cursor = conn.execute(
            """
            INSERT INTO audit_logs
                (actor_id, action, details, ip_address, user_agent,
                 timestamp, previous_hash, entry_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.actor_id, action, details,
                record.ip_address, record.user_agent,
                timestamp, previous_hash, entry_hash,
            ),
        )

        return AuditEntry(
            entry_id=cursor.lastrowid,
            actor_id=record.actor_id,
            action=action,
            details=details,
            ip_address=record.ip_address,
            user_agent=record.user_agent,
            timestamp=from_iso(timestamp),
            previous_hash=previous_hash,
            entry_hash=entry_hash,
        )

    def record(
        self,
        actor_id: str,
        action: AuditAction,
        details: str = "",
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """
        Write a standalone entry.

        Never raises: storage failures are logged and reported as False.
        """
        record = AuditRecord(actor_id, action, details, ip, user_agent)
        try:
            with self._db.transaction() as conn:
                self.append(conn, record)
            return True
        except (StorageUnavailableError, sqlite3.Error, ValueError) as e:
            _log.error("Audit write failed for %s by %s: %s", action, actor_id, e)
            return False

    def append_login_attempt(
        self,
        conn: sqlite3.Connection,
        account_id: str,
        ip: Optional[str],
        success: bool,
    ) -> None:
        conn.execute(
            "INSERT INTO login_attempts (account_id, ip_address, success, timestamp) "
            "VALUES (?, ?, ?, ?)",
            (account_id, ip, 1 if success else 0, to_iso(self._clock())),
        )

    def record_login_attempt(self, account_id: str, ip: Optional[str], success: bool) -> bool:
        """Best-effort standalone login-attempt record."""
        try:
            with self._db.transaction() as conn:
                self.append_login_attempt(conn, account_id, ip, success)
            return True
        except (StorageUnavailableError, sqlite3.Error) as e:
            _log.error("Login attempt record failed for %s: %s", account_id, e)
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            entry_id=row["entry_id"],
            actor_id=row["actor_id"],
            action=row["action"],
            details=row["details"],
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            timestamp=from_iso(row["timestamp"]),
            previous_hash=row["previous_hash"],
            entry_hash=row["entry_hash"],
        )

    def trail_for(self, account_id: str, limit: int = DEFAULT_AUDIT_LIMIT) -> List[AuditEntry]:
        """
        Entries written by ``account_id``, most recent first.

        Raises:
            StorageUnavailableError: If the log cannot be read
        """
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_logs WHERE actor_id = ? ORDER BY entry_id DESC LIMIT ?",
                (account_id, _clamp_limit(limit)),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def recent(self, limit: int = DEFAULT_AUDIT_LIMIT) -> List[AuditEntry]:
        """
        Entries across all actors, most recent first.

        Raises:
            StorageUnavailableError: If the log cannot be read
        """
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM audit_logs ORDER BY entry_id DESC LIMIT ?",
                (_clamp_limit(limit),),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count_login_attempts(
        self,
        account_id: str,
        success: Optional[bool] = None,
        since: Optional[datetime] = None,
    ) -> int:
        """Count recorded login attempts, optionally filtered by outcome and start time."""
        query = "SELECT COUNT(*) FROM login_attempts WHERE account_id = ?"
        params: list = [account_id]

        if success is not None:
            query += " AND success = ?"
            params.append(1 if success else 0)
        if since is not None:
            query += " AND timestamp >= ?"
            params.append(to_iso(since))

        with self._db.read() as conn:
            return conn.execute(query, params).fetchone()[0]

    def login_attempts_for(self, account_id: str, limit: int = DEFAULT_AUDIT_LIMIT) -> List[LoginAttempt]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM login_attempts WHERE account_id = ? "
                "ORDER BY attempt_id DESC LIMIT ?",
                (account_id, _clamp_limit(limit)),
            ).fetchall()
        return [
            LoginAttempt(
                account_id=row["account_id"],
                ip_address=row["ip_address"],
                success=bool(row["success"]),
                timestamp=from_iso(row["timestamp"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Retention and integrity
    # ------------------------------------------------------------------

    def prune_older_than(self, days: int) -> int:
        """
        Delete audit entries and login attempts older than ``days``.

        Both deletes commit together. When anything was removed an
        ``AUDIT_PRUNED`` entry is appended in the same transaction.

        Returns:
            Number of audit entries removed

        Raises:
            ValueError: If ``days`` is negative
            StorageUnavailableError: If the database cannot be written
        """
        if days < 0:
            raise ValueError("days must be non-negative")

        cutoff = to_iso(self._clock() - timedelta(days=days))

        with self._db.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM audit_logs WHERE timestamp < ?", (cutoff,)
            ).rowcount
            attempts = conn.execute(
                "DELETE FROM login_attempts WHERE timestamp < ?", (cutoff,)
            ).rowcount

            if removed:
                self.append(conn, AuditRecord(
                    SYSTEM_ACTOR,
                    AuditAction.AUDIT_PRUNED,
                    f"Removed {removed} audit entries and {attempts} login attempts older than {days} days",
                ))

        if removed or attempts:
            _log.info("Pruned %d audit entries and %d login attempts", removed, attempts)
        return removed

    def verify_integrity(self) -> Tuple[bool, int]:
        """
        Verify the hash chain.

        The oldest remaining entry anchors the chain, so pruning does not
        break verification; any edited, reordered or deleted entry after it
        does.

        Returns:
            Tuple of (is_valid, entries_checked)
        """
        previous_hash: Optional[str] = None
        count = 0

        try:
            with self._db.read() as conn:
                rows = conn.execute("SELECT * FROM audit_logs ORDER BY entry_id ASC")
                for row in rows:
                    if previous_hash is not None and row["previous_hash"] != previous_hash:
                        return False, count

                    expected = compute_entry_hash(
                        row["actor_id"], row["action"], row["details"],
                        row["ip_address"], row["user_agent"],
                        row["timestamp"], row["previous_hash"],
                    )
                    if expected != row["entry_hash"]:
                        return False, count

                    previous_hash = row["entry_hash"]
                    count += 1
        except StorageUnavailableError as e:
            _log.error("Audit integrity check could not read the log: %s", e)
            return False, count

        return True, count
