"""
Session Control
================

Server-side sessions bound to an account, a client address and an expiry.

Security Features:
- Cryptographically random tokens (256 bits of entropy)
- Only the SHA-256 of a token is stored; tokens carry no decodable data
- Sessions are pinned to the client address they were issued to
- Expired sessions are deleted on detection and by a periodic sweep
- Validation never raises; every failure reads as "not valid"
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Final, List, Optional, Union

from ballotvault.db import Clock, Database, StorageUnavailableError, from_iso, to_iso, utcnow
from ballotvault.security.audit import AuditAction, AuditLog
from ballotvault.security.constants import SESSION_TIMEOUT_SECONDS, SESSION_TOKEN_BYTES


_log = logging.getLogger("ballotvault.sessions")


@dataclass(frozen=True, slots=True)
class Session:
    """
    An authenticated administrator's login.

    The token itself is returned once by ``SessionManager.create`` and is
    never stored or carried here.
    """
    session_id: str
    account_id: str
    client_address: Optional[str]
    user_agent: Optional[str]
    issued_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    token_hash: str = field(default="", repr=False, compare=False)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionManager:
    """
    Session lifecycle over SQLite.

    Usage:
        sessions = SessionManager(db, audit=audit)

        # After successful authentication
        token = sessions.create("a1", "10.0.0.5", "Mozilla/5.0")

        # On each request
        if sessions.validate(token, request_address):
            ...

        # Logout
        sessions.invalidate(token)

    Security Notes:
        - Validation does not extend ``expires_at``; it only refreshes
          ``last_activity_at``
        - A request from another address is rejected without ending the
          session for its rightful holder
    """

    __slots__ = ("_db", "_clock", "_audit", "_default_ttl")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS sessions (
        session_id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        token_hash TEXT UNIQUE NOT NULL,
        client_address TEXT,
        user_agent TEXT,
        issued_at TEXT NOT NULL,
        last_activity_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_account ON sessions(account_id);
    CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at);
    """

    def __init__(
        self,
        db: Database,
        clock: Clock = utcnow,
        audit: Optional[AuditLog] = None,
        default_ttl: Union[int, float, timedelta] = SESSION_TIMEOUT_SECONDS,
    ) -> None:
        """
        Args:
            db: Shared database gateway
            clock: Source of the current UTC instant
            audit: Optional audit log for session events (best-effort)
            default_ttl: Lifetime of a session when ``create`` is given none
                (default: 30 min)
        """
        self._db = db
        self._clock = clock
        self._audit = audit
        self._default_ttl = self._to_timedelta(default_ttl)
        self._db.initialize_schema(self._SCHEMA)

    @staticmethod
    def _to_timedelta(ttl: Union[int, float, timedelta]) -> timedelta:
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        if ttl <= timedelta(0):
            raise ValueError("Session lifetime must be positive")
        return ttl

    @staticmethod
    def _generate_token() -> str:
        return secrets.token_urlsafe(SESSION_TOKEN_BYTES)

    @staticmethod
    def _hash_token(token: str) -> str:
        # lone surrogates hash to a value no issued token can produce
        return hashlib.sha256(token.encode("utf-8", "surrogatepass")).hexdigest()

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            session_id=row["session_id"],
            account_id=row["account_id"],
            client_address=row["client_address"],
            user_agent=row["user_agent"],
            issued_at=from_iso(row["issued_at"]),
            last_activity_at=from_iso(row["last_activity_at"]),
            expires_at=from_iso(row["expires_at"]),
            token_hash=row["token_hash"],
        )

    def _audit_event(self, account_id: str, action: AuditAction, details: str = "",
                     ip: Optional[str] = None, user_agent: Optional[str] = None) -> None:
        if self._audit is not None:
            self._audit.record(account_id, action, details, ip, user_agent)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(
        self,
        account_id: str,
        client_address: Optional[str],
        user_agent: Optional[str] = None,
        ttl: Union[int, float, timedelta, None] = None,
    ) -> str:
        """
        Issue a session.

        Args:
            account_id: The authenticated account
            client_address: Address the session is pinned to
            user_agent: Optional client user agent
            ttl: Lifetime in seconds or as a timedelta (default: manager's)

        Returns:
            The session token. It is not retrievable again.

        Raises:
            ValueError: If ``account_id`` is empty or ``ttl`` is not positive
            StorageUnavailableError: If the session cannot be stored
        """
        if not account_id:
            raise ValueError("account_id is required")
        lifetime = self._default_ttl if ttl is None else self._to_timedelta(ttl)

        token = self._generate_token()
        now = self._clock()
        session_id = str(uuid.uuid4())

        with self._db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sessions (
                    session_id, account_id, token_hash, client_address,
                    user_agent, issued_at, last_activity_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    account_id,
                    self._hash_token(token),
                    client_address,
                    user_agent,
                    to_iso(now),
                    to_iso(now),
                    to_iso(now + lifetime),
                ),
            )

        self._audit_event(
            account_id, AuditAction.SESSION_CREATED,
            f"Session {session_id[:8]} issued", client_address, user_agent,
        )
        return token

    def resolve(self, token: Optional[str], client_address: Optional[str]) -> Optional[Session]:
        """
        The live session for ``token`` presented from ``client_address``.

        Refreshes ``last_activity_at`` on success. An expired session is
        deleted. Never raises.

        Returns:
            The Session, or None when the token is unknown, expired, or
            presented from another address
        """
        if not token or not isinstance(token, str):
            return None

        token_hash = self._hash_token(token)
        now = self._clock()

        try:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "SELECT * FROM sessions WHERE token_hash = ?", (token_hash,)
                ).fetchone()
                if row is None:
                    return None

                session = self._row_to_session(row)

                if session.is_expired(now):
                    conn.execute("DELETE FROM sessions WHERE session_id = ?", (session.session_id,))
                    expired = True
                else:
                    expired = False
                    if not hmac.compare_digest(
                        (session.client_address or "").encode("utf-8", "surrogatepass"),
                        str(client_address or "").encode("utf-8", "surrogatepass"),
                    ):
                        _log.warning(
                            "Session %s for %s presented from an unexpected address",
                            session.session_id[:8], session.account_id,
                        )
                        return None

                    conn.execute(
                        "UPDATE sessions SET last_activity_at = ? WHERE session_id = ?",
                        (to_iso(now), session.session_id),
                    )
        except StorageUnavailableError as e:
            _log.error("Session lookup failed: %s", e)
            return None

        if expired:
            self._audit_event(session.account_id, AuditAction.SESSION_EXPIRED, ip=client_address)
            return None

        return Session(
            session_id=session.session_id,
            account_id=session.account_id,
            client_address=session.client_address,
            user_agent=session.user_agent,
            issued_at=session.issued_at,
            last_activity_at=now,
            expires_at=session.expires_at,
            token_hash=session.token_hash,
        )

    def validate(self, token: Optional[str], client_address: Optional[str]) -> bool:
        """Whether ``token`` is a live session for ``client_address``. Never raises."""
        return self.resolve(token, client_address) is not None

    def invalidate(self, token: Optional[str]) -> bool:
        """
        End a session (logout).

        Returns:
            True if a session was removed. Never raises.
        """
        if not token or not isinstance(token, str):
            return False

        try:
            with self._db.transaction() as conn:
                row = conn.execute(
                    "DELETE FROM sessions WHERE token_hash = ? RETURNING account_id, client_address",
                    (self._hash_token(token),),
                ).fetchone()
        except StorageUnavailableError as e:
            _log.error("Session invalidation failed: %s", e)
            return False

        if row is None:
            return False

        self._audit_event(row["account_id"], AuditAction.LOGOUT, ip=row["client_address"])
        return True

    def invalidate_all_for(self, account_id: str) -> int:
        """
        End every session of an account.

        Returns:
            Number of sessions removed

        Raises:
            StorageUnavailableError: If the sessions cannot be removed
        """
        with self._db.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM sessions WHERE account_id = ?", (account_id,)
            ).rowcount

        if removed:
            _log.info("Revoked %d session(s) for %s", removed, account_id)
        return removed

    def sessions_for(self, account_id: str) -> List[Session]:
        """Unexpired sessions of an account, most recently active first."""
        with self._db.read() as conn:
            rows = conn.execute(
                """
                SELECT * FROM sessions
                WHERE account_id = ? AND expires_at > ?
                ORDER BY last_activity_at DESC
                """,
                (account_id, to_iso(self._clock())),
            ).fetchall()
        return [self._row_to_session(row) for row in rows]

    def sweep_expired(self) -> int:
        """
        Delete every session whose expiry has passed.

        Idempotent and safe to run alongside live logins.

        Returns:
            Number of sessions removed

        Raises:
            StorageUnavailableError: If the sweep cannot run
        """
        with self._db.transaction() as conn:
            removed = conn.execute(
                "DELETE FROM sessions WHERE expires_at <= ?", (to_iso(self._clock()),)
            ).rowcount

        if removed:
            _log.info("Swept %d expired session(s)", removed)
        return removed

    def __repr__(self) -> str:
        return f"SessionManager(db={self._db.path!s}, default_ttl={self._default_ttl})"
