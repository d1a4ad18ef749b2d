"""
Credential Store
================

Durable administrator accounts with a bounded read-through cache.

Security Features:
- Digests and salts never appear in repr, logs or list views
- Every mutation and its audit entry commit in one transaction
- Cache entries are invalidated inside the write transaction and again
  after commit, so no reader sees stale role or active data
- Inactive accounts are kept (logical delete) and their ids may be reused
"""

from __future__ import annotations

import functools
import logging
import sqlite3
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Final, List, Optional, Tuple, Union

from ballotvault.core.auth.password_hashing import PasswordHasher
from ballotvault.core.auth.roles import Role, normalize_role
from ballotvault.core.results import ErrorKind, Result, STORAGE_FAILURE_MESSAGE
from ballotvault.db import Clock, Database, StorageUnavailableError, from_iso, to_iso, utcnow
from ballotvault.security.audit import AuditLog, AuditRecord
from ballotvault.utils.validators import (
    ValidationError,
    password_strength_errors,
    validate_account_id,
    validate_display_name,
)


DEFAULT_CACHE_SIZE: Final[int] = 256
DEFAULT_CACHE_TTL_SECONDS: Final[float] = 30.0

_log = logging.getLogger("ballotvault.credentials")


@dataclass(frozen=True, slots=True)
class AccountSummary:
    """Read-only projection for administrative list views. Carries no secrets."""
    account_id: str
    display_name: str
    role: Role
    is_active: bool
    needs_password_reset: bool
    locked_until: Optional[datetime]
    created_at: datetime
    last_login_at: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "display_name": self.display_name,
            "role": self.role.value,
            "is_active": self.is_active,
            "needs_password_reset": self.needs_password_reset,
            "locked_until": self.locked_until.isoformat() if self.locked_until else None,
            "created_at": self.created_at.isoformat(),
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
        }


@dataclass(frozen=True, slots=True)
class Account:
    """
    Administrator account.

    Note: password_digest and salt are never exposed in repr or str.
    """
    account_id: str
    display_name: str
    password_digest: str
    salt: str
    role: Role
    is_active: bool
    needs_password_reset: bool
    failed_attempts: int
    locked_until: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    last_login_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"Account(account_id={self.account_id!r}, display_name={self.display_name!r}, "
            f"role={self.role.value}, is_active={self.is_active})"
        )

    __str__ = __repr__

    def is_locked(self, now: datetime) -> bool:
        """Whether a lock is in force at ``now``."""
        return self.locked_until is not None and now < self.locked_until

    def summary(self) -> AccountSummary:
        return AccountSummary(
            account_id=self.account_id,
            display_name=self.display_name,
            role=self.role,
            is_active=self.is_active,
            needs_password_reset=self.needs_password_reset,
            locked_until=self.locked_until,
            created_at=self.created_at,
            last_login_at=self.last_login_at,
        )


class AccountCache:
    """
    Thread-safe LRU cache of accounts with a per-entry time-to-live.

    A write bumps a version counter; a reader that fetched from storage
    before the bump cannot repopulate the cache with what it read.
    """

    __slots__ = ("_entries", "_max_size", "_ttl", "_lock", "_version", "_time")

    def __init__(
        self,
        max_size: int = DEFAULT_CACHE_SIZE,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        time_source: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, Tuple[float, Account]] = OrderedDict()
        self._max_size = max(0, max_size)
        self._ttl = ttl_seconds
        self._lock = threading.Lock()
        self._version = 0
        self._time = time_source

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def get(self, account_id: str) -> Optional[Account]:
        with self._lock:
            item = self._entries.get(account_id)
            if item is None:
                return None
            stored_at, account = item
            if self._time() - stored_at > self._ttl:
                del self._entries[account_id]
                return None
            self._entries.move_to_end(account_id)
            return account

    def put(self, account: Account, seen_version: Optional[int] = None) -> None:
        """Cache ``account`` unless a write happened after ``seen_version``."""
        if self._max_size == 0:
            return
        with self._lock:
            if seen_version is not None and seen_version != self._version:
                return
            self._entries[account.account_id] = (self._time(), account)
            self._entries.move_to_end(account.account_id)
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)

    def invalidate(self, account_id: str) -> None:
        with self._lock:
            self._version += 1
            self._entries.pop(account_id, None)

    def clear(self) -> None:
        with self._lock:
            self._version += 1
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _storage_guarded(method):
    """Convert ``StorageUnavailableError`` into a STORAGE_UNAVAILABLE result."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except StorageUnavailableError as e:
            _log.error("Credential storage failure in %s: %s", method.__name__, e)
            return Result.failure(ErrorKind.STORAGE_UNAVAILABLE, STORAGE_FAILURE_MESSAGE)
    return wrapper


class CredentialStore:
    """
    Administrator accounts over SQLite.

    Usage:
        store = CredentialStore(db, PasswordHasher(), audit_log=audit)

        result = store.create("a1", "Alice", "Abc12345", Role.VOTER_MANAGER)
        if not result:
            print(result.error, result.message)

        account = store.get("a1").value

    Notes:
        - Mutations return ``Result``; expected failures are never raised.
        - Passing ``audit=AuditRecord(...)`` to a mutation writes that entry
          in the same transaction as the change.
        - ``exists``, ``list_*`` and ``count_active`` raise
          ``StorageUnavailableError`` when the database is unreachable.
    """

    __slots__ = ("_db", "_hasher", "_clock", "_audit_log", "_cache")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS accounts (
        account_id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL,
        password_digest TEXT NOT NULL,
        salt TEXT NOT NULL,
        role TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        needs_password_reset INTEGER NOT NULL DEFAULT 0,
        failed_attempts INTEGER NOT NULL DEFAULT 0 CHECK (failed_attempts >= 0),
        locked_until TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_login_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_accounts_role ON accounts(role, is_active);
    """

    _INSERT_SQL: Final[str] = """
    INSERT INTO accounts
        (account_id, display_name, password_digest, salt, role,
         is_active, needs_password_reset, failed_attempts,
         locked_until, created_at, updated_at, last_login_at)
    VALUES (?, ?, ?, ?, ?, 1, ?, 0, NULL, ?, ?, NULL)
    """

    # An inactive row with the same id is overwritten in place
    _REACTIVATE_CLAUSE: Final[str] = """
    ON CONFLICT(account_id) DO UPDATE SET
        display_name = excluded.display_name,
        password_digest = excluded.password_digest,
        salt = excluded.salt,
        role = excluded.role,
        is_active = 1,
        needs_password_reset = excluded.needs_password_reset,
        failed_attempts = 0,
        locked_until = NULL,
        updated_at = excluded.updated_at,
        last_login_at = NULL
    WHERE accounts.is_active = 0
    """

    _KEEP_EXISTING_CLAUSE: Final[str] = "ON CONFLICT(account_id) DO NOTHING"

    def __init__(
        self,
        db: Database,
        hasher: PasswordHasher,
        clock: Clock = utcnow,
        audit_log: Optional[AuditLog] = None,
        cache: Optional[AccountCache] = None,
    ) -> None:
        """
        Args:
            db: Shared database gateway
            hasher: Password hasher for new and changed passwords
            clock: Source of the current UTC instant
            audit_log: Writer for audit records passed to mutations
            cache: Account cache (default: 256 entries, 30 s TTL)
        """
        self._db = db
        self._hasher = hasher
        self._clock = clock
        self._audit_log = audit_log
        self._cache = cache if cache is not None else AccountCache()
        self._db.initialize_schema(self._SCHEMA)

    @property
    def hasher(self) -> PasswordHasher:
        return self._hasher

    @property
    def cache(self) -> AccountCache:
        return self._cache

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> Account:
        return Account(
            account_id=row["account_id"],
            display_name=row["display_name"],
            password_digest=row["password_digest"],
            salt=row["salt"],
            role=normalize_role(row["role"]),
            is_active=bool(row["is_active"]),
            needs_password_reset=bool(row["needs_password_reset"]),
            failed_attempts=row["failed_attempts"],
            locked_until=from_iso(row["locked_until"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            last_login_at=from_iso(row["last_login_at"]),
        )

    @staticmethod
    def _fetch(conn: sqlite3.Connection, account_id: str) -> Optional[Account]:
        row = conn.execute(
            "SELECT * FROM accounts WHERE account_id = ?", (account_id,)
        ).fetchone()
        return CredentialStore._row_to_account(row) if row else None

    def _append_audit(self, conn: sqlite3.Connection, audit: Optional[AuditRecord]) -> None:
        if audit is None:
            return
        if self._audit_log is None:
            _log.warning("Audit record %s dropped: no audit log configured", audit.action)
            return
        self._audit_log.append(conn, audit)

    def _hash_new_password(self, password: Optional[str]) -> Tuple[Optional[Result], str, str]:
        errors = password_strength_errors(password)
        if errors:
            return Result.failure(ErrorKind.INVALID_INPUT, "; ".join(errors)), "", ""

        salt = self._hasher.generate_salt()
        digest = self._hasher.hash(password, salt)
        if digest is None:
            return Result.failure(ErrorKind.INVALID_INPUT, "Password could not be hashed"), "", ""
        return None, digest, salt

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        account_id: str,
        display_name: str,
        password: str,
        role: Union[Role, str, None],
        needs_password_reset: bool = False,
        audit: Optional[AuditRecord] = None,
        reactivate: bool = True,
    ) -> Result:
        """
        Create an account, or reactivate an inactive one with the same id.

        With ``reactivate=False`` an inactive row is left alone and reported
        as CONFLICT.

        Returns:
            Result with the new ``Account``; INVALID_INPUT for malformed
            fields or a weak password, CONFLICT when an active account
            already holds the id
        """
        try:
            validate_account_id(account_id)
            display_name = validate_display_name(display_name)
        except ValidationError as e:
            return Result.failure(ErrorKind.INVALID_INPUT, str(e))

        failure, digest, salt = self._hash_new_password(password)
        if failure is not None:
            return failure

        return self._insert(
            account_id, display_name, digest, salt, role, needs_password_reset, audit, reactivate,
        )

    def create_with_preserved_digest(
        self,
        account_id: str,
        display_name: str,
        digest: str,
        salt: str,
        role: Union[Role, str, None],
        audit: Optional[AuditRecord] = None,
        reactivate: bool = True,
    ) -> Result:
        """
        Create an account that keeps an existing digest and salt.

        Used by the legacy importer; the digest is stored as-is and verified
        through the hasher's fallback strategies.
        """
        try:
            validate_account_id(account_id)
            display_name = validate_display_name(display_name)
        except ValidationError as e:
            return Result.failure(ErrorKind.INVALID_INPUT, str(e))

        if not digest or not salt:
            return Result.failure(ErrorKind.INVALID_INPUT, "Digest and salt are required")

        return self._insert(account_id, display_name, digest, salt, role, False, audit, reactivate)

    @_storage_guarded
    def _insert(
        self,
        account_id: str,
        display_name: str,
        digest: str,
        salt: str,
        role: Union[Role, str, None],
        needs_password_reset: bool,
        audit: Optional[AuditRecord],
        reactivate: bool = True,
    ) -> Result:
        now = to_iso(self._clock())
        role_value = normalize_role(role).value

        with self._db.transaction() as conn:
            cursor = conn.execute(
                self._INSERT_SQL + (self._REACTIVATE_CLAUSE if reactivate else self._KEEP_EXISTING_CLAUSE),
                (
                    account_id, display_name, digest, salt, role_value,
                    1 if needs_password_reset else 0, now, now,
                ),
            )
            if cursor.rowcount == 0:
                return Result.failure(
                    ErrorKind.CONFLICT, f"Account '{account_id}' already exists"
                )

            self._append_audit(conn, audit)
            self._cache.invalidate(account_id)
            account = self._fetch(conn, account_id)

        self._cache.invalidate(account_id)
        _log.info("Account %s created with role %s", account_id, role_value)
        return Result.success(account)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def exists(self, account_id: str) -> bool:
        """Whether an active account holds ``account_id``."""
        result = self.get(account_id)
        if result.error is ErrorKind.STORAGE_UNAVAILABLE:
            raise StorageUnavailableError(result.message)
        return result.ok

    @_storage_guarded
    def get(self, account_id: str, include_inactive: bool = False) -> Result:
        """
        Look up an account.

        Returns:
            Result with the ``Account``; NOT_FOUND when there is none (or it
            is inactive and ``include_inactive`` is False)
        """
        if not account_id:
            return Result.failure(ErrorKind.NOT_FOUND, "Account not found")

        account = self._cache.get(account_id)
        if account is None:
            seen_version = self._cache.version
            with self._db.read() as conn:
                account = self._fetch(conn, account_id)
            if account is not None:
                self._cache.put(account, seen_version)

        if account is None or not (account.is_active or include_inactive):
            return Result.failure(ErrorKind.NOT_FOUND, "Account not found")
        return Result.success(account)

    def _list(self, active_only: bool) -> List[AccountSummary]:
        query = "SELECT * FROM accounts"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY account_id"

        with self._db.read() as conn:
            rows = conn.execute(query).fetchall()
        return [self._row_to_account(row).summary() for row in rows]

    def list_active(self) -> List[AccountSummary]:
        return self._list(active_only=True)

    def list_all(self) -> List[AccountSummary]:
        return self._list(active_only=False)

    def count_active(self, role: Union[Role, str, None] = None) -> int:
        """Number of active accounts, optionally with the given role."""
        with self._db.read() as conn:
            if role is None:
                row = conn.execute("SELECT COUNT(*) FROM accounts WHERE is_active = 1").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM accounts WHERE is_active = 1 AND role = ?",
                    (normalize_role(role).value,),
                ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @_storage_guarded
    def _update_active(
        self,
        account_id: str,
        assignments: str,
        params: tuple,
        audit: Optional[AuditRecord] = None,
    ) -> Result:
        """Apply ``SET assignments`` to an active account, with its audit entry."""
        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE accounts SET {assignments}, updated_at = ? "
                "WHERE account_id = ? AND is_active = 1",
                (*params, to_iso(self._clock()), account_id),
            )
            if cursor.rowcount == 0:
                return Result.failure(ErrorKind.NOT_FOUND, "Account not found")

            self._append_audit(conn, audit)
            self._cache.invalidate(account_id)
            account = self._fetch(conn, account_id)

        self._cache.invalidate(account_id)
        return Result.success(account)

    def deactivate(self, account_id: str, audit: Optional[AuditRecord] = None) -> Result:
        """Logically delete an account. NOT_FOUND when it is missing or already inactive."""
        result = self._update_active(account_id, "is_active = 0", (), audit)
        if result:
            _log.info("Account %s deactivated", account_id)
        return result

    def update_password(
        self,
        account_id: str,
        new_password: str,
        force_reset: bool,
        audit: Optional[AuditRecord] = None,
    ) -> Result:
        """
        Store a new password under a fresh salt with the current scheme.

        The failure counter and any lock are cleared. ``force_reset`` sets
        the mandatory-change flag; otherwise it is cleared.
        """
        failure, digest, salt = self._hash_new_password(new_password)
        if failure is not None:
            return failure

        result = self._update_active(
            account_id,
            "password_digest = ?, salt = ?, needs_password_reset = ?, "
            "failed_attempts = 0, locked_until = NULL",
            (digest, salt, 1 if force_reset else 0),
            audit,
        )
        if result:
            _log.info("Password updated for %s", account_id)
        return result

    def update_role(
        self,
        account_id: str,
        role: Union[Role, str, None],
        audit: Optional[AuditRecord] = None,
    ) -> Result:
        role_value = normalize_role(role).value
        result = self._update_active(account_id, "role = ?", (role_value,), audit)
        if result:
            _log.info("Role of %s set to %s", account_id, role_value)
        return result

    def increment_failed_attempts(self, account_id: str) -> Result:
        """Result value is the account with its new counter."""
        return self._update_active(account_id, "failed_attempts = failed_attempts + 1", ())

    def reset_failed_attempts(self, account_id: str) -> Result:
        return self._update_active(account_id, "failed_attempts = 0", ())

    def lock(self, account_id: str, until: datetime) -> Result:
        return self._update_active(account_id, "locked_until = ?", (to_iso(until),))

    def unlock(self, account_id: str, audit: Optional[AuditRecord] = None) -> Result:
        """Clear the lock and the failure counter."""
        return self._update_active(account_id, "failed_attempts = 0, locked_until = NULL", (), audit)

    @_storage_guarded
    def record_failed_login(self, account_id: str, threshold: int, lock_until: datetime) -> Result:
        """
        Count one failed login and lock the account when the counter
        reaches ``threshold``, in one transaction.

        Returns:
            Result with ``(failed_attempts, locked)``
        """
        with self._db.transaction() as conn:
            row = conn.execute(
                """
                UPDATE accounts
                SET failed_attempts = failed_attempts + 1,
                    locked_until = CASE WHEN failed_attempts + 1 >= ? THEN ? ELSE locked_until END,
                    updated_at = ?
                WHERE account_id = ? AND is_active = 1
                RETURNING failed_attempts, locked_until
                """,
                (threshold, to_iso(lock_until), to_iso(self._clock()), account_id),
            ).fetchone()
            if row is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Account not found")
            self._cache.invalidate(account_id)

        self._cache.invalidate(account_id)
        attempts = row["failed_attempts"]
        return Result.success((attempts, attempts >= threshold))

    @_storage_guarded
    def record_successful_login(
        self,
        account_id: str,
        when: datetime,
        audit: Optional[AuditRecord] = None,
    ) -> Result:
        """
        Reset the failure counter and lock, stamp ``last_login_at`` and clear
        the mandatory-change flag.

        Returns:
            Result with True when the mandatory-change flag had been set
        """
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT needs_password_reset FROM accounts WHERE account_id = ? AND is_active = 1",
                (account_id,),
            ).fetchone()
            if row is None:
                return Result.failure(ErrorKind.NOT_FOUND, "Account not found")

            conn.execute(
                """
                UPDATE accounts
                SET failed_attempts = 0, locked_until = NULL,
                    needs_password_reset = 0, last_login_at = ?, updated_at = ?
                WHERE account_id = ?
                """,
                (to_iso(when), to_iso(self._clock()), account_id),
            )
            self._append_audit(conn, audit)
            self._cache.invalidate(account_id)

        self._cache.invalidate(account_id)
        return Result.success(bool(row["needs_password_reset"]))
