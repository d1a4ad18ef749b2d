"""
SQLite Storage
==============

Connection factory and scoped transactions shared by the credential store,
session manager and audit log.

Every operation opens its own short-lived connection with a bounded lock
timeout, so no call can hang on a busy database. Write transactions start
with ``BEGIN IMMEDIATE`` and are always either committed or rolled back when
the ``with`` block exits.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Final, Iterator, Optional


DEFAULT_TIMEOUT_SECONDS: Final[float] = 5.0

Clock = Callable[[], datetime]

_log = logging.getLogger("ballotvault.db")


class StorageUnavailableError(Exception):
    """Raised when the database cannot be reached, is locked past the timeout, or errors."""
    pass


def utcnow() -> datetime:
    """Default clock: the current instant in UTC."""
    return datetime.now(timezone.utc)


def to_iso(moment: Optional[datetime]) -> Optional[str]:
    """
    Serialize an instant for storage.

    Fixed microsecond precision in UTC keeps stored values lexically
    ordered, so SQL range predicates on the text columns are correct.
    """
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored instant."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Database:
    """
    Thin SQLite gateway.

    Usage:
        db = Database(path)
        db.initialize_schema(SCHEMA)

        with db.transaction() as conn:
            conn.execute("UPDATE ...")
            conn.execute("INSERT ...")   # both or neither

        with db.read() as conn:
            rows = conn.execute("SELECT ...").fetchall()
    """

    __slots__ = ("_db_path", "_timeout")

    def __init__(
        self,
        db_path: Path | str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Args:
            db_path: Path to the SQLite database file
            timeout_seconds: Upper bound on waiting for a database lock
        """
        self._db_path = Path(db_path)
        self._timeout = timeout_seconds

    @property
    def path(self) -> Path:
        return self._db_path

    def _get_connection(self) -> sqlite3.Connection:
        """Open a connection in manual transaction mode."""
        try:
            conn = sqlite3.connect(
                self._db_path,
                timeout=self._timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot open database: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute(f"PRAGMA busy_timeout = {int(self._timeout * 1000)}")
        except sqlite3.Error as e:
            conn.close()
            raise StorageUnavailableError(f"Cannot configure database: {e}") from e
        return conn

    def initialize_schema(self, schema: str) -> None:
        """
        Create tables and indexes if they don't exist.

        Raises:
            StorageUnavailableError: If the schema cannot be applied
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(schema)
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Cannot initialize schema: {e}") from e
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Scoped write transaction.

        Commits when the block exits normally and rolls back on any
        exception. ``sqlite3.Error`` raised inside the block is re-raised as
        ``StorageUnavailableError``; other exceptions propagate unchanged.
        """
        conn = self._get_connection()
        try:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageUnavailableError(f"Cannot begin transaction: {e}") from e

            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException as e:
                self._rollback(conn)
                if isinstance(e, sqlite3.Error):
                    raise StorageUnavailableError(f"Transaction failed: {e}") from e
                raise
        finally:
            conn.close()

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Connection for reads; each statement sees only committed data."""
        conn = self._get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageUnavailableError(f"Read failed: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            _log.error("Rollback failed: %s", e)
